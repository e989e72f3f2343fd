"""
Pipeline boundary.

Every operation returns a response record with success and, on failure,
error + error_code. Domain errors never cross this layer; the HTTP layer
only maps error codes to status codes.
"""

from datetime import date, datetime
from typing import Awaitable, Callable, Optional, TypeVar, Union

import structlog

from app.config import settings
from app.observability.metrics import staging_sessions_active
from app.oracles.classification import ClassificationOracle
from app.oracles.security_lookup import SecurityLookupOracle
from app.pipeline.orchestrator import IngestionPipeline, PipelineError
from app.pipeline.snapshot_matcher import SnapshotMatchError, coerce_date, find_nearby_snapshots
from app.pipeline.taxonomy import Taxonomy
from app.review.autosave import DebouncedAutosaver
from app.review.finalizer import FinalizeError, Finalizer
from app.review.staging import StagingError, StagingStore
from app.schemas.api import (
    BoundaryResponse, ConflictDecision, DuplicateDecision, DuplicatesResponse, FinalizeOptions,
    FinalizeResponse, IncomingFile, IngestResponse, NearbySnapshotsResponse, ResolutionResponse,
    ReviewResponse, SnapshotListResponse, UpdateStagedResponse,
)
from app.schemas.assets import StagedAssetPatch
from app.schemas.records import TempUploadRecord, utcnow
from app.storage.artifact_store import ArtifactStore
from app.storage.repository import AssetRepository, RepositoryError, load_taxonomy

logger = structlog.get_logger(__name__)

R = TypeVar("R", bound=BoundaryResponse)

DOMAIN_ERRORS = (PipelineError, StagingError, FinalizeError, RepositoryError, SnapshotMatchError)


class AutosaveRegistry:
    """
    One debounced autosaver per open review session. Savers of sessions past
    their expiry are dropped on the next registry access, so sessions that
    expire or are purged elsewhere do not keep theirs.
    """

    def __init__(self, staging: StagingStore, debounce_ms: Optional[int] = None):
        self.staging = staging
        self.debounce_ms = debounce_ms
        self._savers: dict[tuple[str, str], DebouncedAutosaver] = {}
        self._expires_at: dict[tuple[str, str], datetime] = {}

    def __len__(self) -> int:
        return len(self._savers)

    def for_session(self, upload: TempUploadRecord) -> DebouncedAutosaver:
        self.prune()
        user_id, session_id = upload.user_id, upload.id
        key = (user_id, session_id)
        if key not in self._savers:
            async def save(patches: list[StagedAssetPatch]) -> int:
                return await self.staging.apply_patches(user_id, session_id, patches, mode="debounced")

            self._savers[key] = DebouncedAutosaver(save, self.debounce_ms)
            staging_sessions_active.set(len(self._savers))
        self._expires_at[key] = upload.expires_at
        return self._savers[key]

    async def flush(self, user_id: str, session_id: str) -> int:
        self.prune()
        saver = self._savers.get((user_id, session_id))
        return await saver.flush() if saver is not None else 0

    def discard(self, user_id: str, session_id: str) -> None:
        key = (user_id, session_id)
        self._expires_at.pop(key, None)
        saver = self._savers.pop(key, None)
        if saver is not None:
            dropped = saver.cancel()
            if dropped:
                logger.warning("autosave_discarded", upload_id=session_id, patches=dropped)
            staging_sessions_active.set(len(self._savers))

    def prune(self, now: Optional[datetime] = None) -> int:
        """Discard savers of expired sessions. Returns how many were dropped."""
        now = now or utcnow()
        stale = [key for key, expires_at in self._expires_at.items() if expires_at <= now]
        for user_id, session_id in stale:
            self.discard(user_id, session_id)
        return len(stale)


class AssetPipelineService:

    def __init__(
        self,
        repository: AssetRepository,
        taxonomy: Taxonomy,
        oracle: Optional[ClassificationOracle] = None,
        lookup: Optional[SecurityLookupOracle] = None,
        artifacts: Optional[ArtifactStore] = None,
        debounce_ms: Optional[int] = None,
    ):
        self.repository = repository
        self.taxonomy = taxonomy
        self.artifacts = artifacts
        self.pipeline = IngestionPipeline(repository, taxonomy, oracle, lookup, artifacts)
        self.staging = StagingStore(repository, taxonomy)
        self.finalizer = Finalizer(repository)
        self.autosave = AutosaveRegistry(self.staging, debounce_ms)

    @classmethod
    async def create(cls, repository: AssetRepository, **kwargs) -> "AssetPipelineService":
        """Service over the repository's taxonomy, seeded on first use."""
        return cls(repository, await load_taxonomy(repository), **kwargs)

    async def _run(self, response_cls: type[R], operation: str, call: Callable[[], Awaitable[R]]) -> R:
        try:
            return await call()
        except DOMAIN_ERRORS as e:
            logger.warning("operation_failed", operation=operation, error=e.message, error_code=e.error_code)
            extra = {"summary": e.summary} if isinstance(e, PipelineError) and response_cls is IngestResponse else {}
            return response_cls(success=False, error=e.message, error_code=e.error_code, **extra)
        except Exception as e:
            logger.exception("operation_crashed", operation=operation, error=f"{type(e).__name__}: {e}")
            return response_cls(success=False, error="Internal error", error_code="INTERNAL_ERROR")

    # ── Ingest ───────────────────────────────────────────────

    async def ingest(self, user_id: str, files: list[IncomingFile]) -> IngestResponse:
        async def call() -> IngestResponse:
            return IngestResponse(summary=await self.pipeline.ingest(user_id, files))
        return await self._run(IngestResponse, "ingest", call)

    # ── Review ───────────────────────────────────────────────

    async def review(self, user_id: str, session_id: str) -> ReviewResponse:
        async def call() -> ReviewResponse:
            await self.autosave.flush(user_id, session_id)
            upload, assets = await self.staging.review(user_id, session_id)
            return ReviewResponse(upload=upload, assets=assets)
        return await self._run(ReviewResponse, "review", call)

    async def update_staged(
        self,
        user_id: str,
        session_id: str,
        patches: list[StagedAssetPatch],
        debounce: bool = False,
    ) -> UpdateStagedResponse:
        """Immediate writes apply now; debounced writes are queued on the session's autosaver."""
        async def call() -> UpdateStagedResponse:
            if debounce:
                upload = await self.staging.open_session(user_id, session_id)
                saver = self.autosave.for_session(upload)
                for patch in patches:
                    saver.schedule(patch)
                return UpdateStagedResponse(pending_count=saver.pending_count)

            await self.autosave.flush(user_id, session_id)
            count = await self.staging.apply_patches(user_id, session_id, patches)
            return UpdateStagedResponse(updated_count=count)
        return await self._run(UpdateStagedResponse, "update_staged", call)

    async def deselect(self, user_id: str, session_id: str, asset_ids: list[str]) -> UpdateStagedResponse:
        async def call() -> UpdateStagedResponse:
            await self.autosave.flush(user_id, session_id)
            return UpdateStagedResponse(updated_count=await self.staging.deselect(user_id, session_id, asset_ids))
        return await self._run(UpdateStagedResponse, "deselect", call)

    async def get_duplicates(self, user_id: str, session_id: str) -> DuplicatesResponse:
        async def call() -> DuplicatesResponse:
            await self.autosave.flush(user_id, session_id)
            groups, conflicts, stats = await self.staging.duplicates(user_id, session_id)
            return DuplicatesResponse(groups=groups, conflicts=conflicts, stats=stats)
        return await self._run(DuplicatesResponse, "get_duplicates", call)

    async def resolve_duplicates(
        self, user_id: str, session_id: str, decisions: list[DuplicateDecision],
    ) -> ResolutionResponse:
        async def call() -> ResolutionResponse:
            await self.autosave.flush(user_id, session_id)
            count, assets = await self.staging.resolve_duplicates(user_id, session_id, decisions)
            return ResolutionResponse(updated_count=count, assets=assets)
        return await self._run(ResolutionResponse, "resolve_duplicates", call)

    async def resolve_conflicts(
        self, user_id: str, session_id: str, decisions: list[ConflictDecision],
    ) -> ResolutionResponse:
        async def call() -> ResolutionResponse:
            await self.autosave.flush(user_id, session_id)
            count, assets = await self.staging.resolve_conflicts(user_id, session_id, decisions)
            return ResolutionResponse(updated_count=count, assets=assets)
        return await self._run(ResolutionResponse, "resolve_conflicts", call)

    async def cancel(self, user_id: str, session_id: str) -> BoundaryResponse:
        async def call() -> BoundaryResponse:
            self.autosave.discard(user_id, session_id)
            await self.staging.cancel(user_id, session_id)
            return BoundaryResponse()
        return await self._run(BoundaryResponse, "cancel", call)

    # ── Finalize ─────────────────────────────────────────────

    async def finalize(self, user_id: str, session_id: str, options: FinalizeOptions) -> FinalizeResponse:
        async def call() -> FinalizeResponse:
            await self.autosave.flush(user_id, session_id)
            response = await self.finalizer.finalize(user_id, session_id, options)
            self.autosave.discard(user_id, session_id)
            return response
        return await self._run(FinalizeResponse, "finalize", call)

    # ── Snapshots ────────────────────────────────────────────

    async def list_snapshots(self, user_id: str, limit: Optional[int] = None) -> SnapshotListResponse:
        async def call() -> SnapshotListResponse:
            snapshots = await self.repository.list_snapshots(user_id, limit or settings.SNAPSHOT_LOOKBACK_LIMIT)
            return SnapshotListResponse(snapshots=snapshots)
        return await self._run(SnapshotListResponse, "list_snapshots", call)

    async def nearby_snapshots(
        self, user_id: str, statement_date: Union[date, str], tolerance_days: Optional[int] = None,
    ) -> NearbySnapshotsResponse:
        async def call() -> NearbySnapshotsResponse:
            target = coerce_date(statement_date)
            snapshots = await self.repository.list_snapshots(user_id, settings.SNAPSHOT_LOOKBACK_LIMIT)
            nearby = find_nearby_snapshots(snapshots, target, tolerance_days)
            by_id = {s.id: s for s in snapshots}
            return NearbySnapshotsResponse(
                statement_date=target,
                nearby_snapshots=[by_id[i] for i in nearby.nearby_snapshot_ids],
                suggested_merge_id=nearby.suggested_merge_id,
                days_to_nearest=nearby.days_to_nearest,
            )
        return await self._run(NearbySnapshotsResponse, "nearby_snapshots", call)

    # ── Maintenance ──────────────────────────────────────────

    async def purge_expired(self) -> int:
        """Purge expired sessions and drop their autosavers. Errors propagate to the caller."""
        self.autosave.prune()
        return await self.staging.purge_expired(artifacts=self.artifacts)
