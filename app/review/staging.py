"""
Review staging store.

A review session is one ingested batch held for the user to inspect, edit,
deduplicate and finally commit. Sessions expire after STAGING_TTL_HOURS and
are closed by finalize (completed) or cancel (cancelled); a closed session
accepts no further edits.
"""

from datetime import datetime
from typing import Optional

import structlog
from pydantic import ValidationError

from app.config import settings
from app.models.enums import UploadStatus, VerifiedVia
from app.observability.metrics import sessions_purged_total, staged_updates_total
from app.pipeline.duplicate_detector import (
    DuplicateDetectionError, detect_conflicts, duplicate_stats, group_duplicates,
)
from app.pipeline.smart_merge import apply_conflict_resolutions, apply_duplicate_resolutions
from app.pipeline.taxonomy import Taxonomy
from app.schemas.api import ConflictDecision, DuplicateDecision
from app.schemas.assets import EDIT_TRACKED_FIELDS, StagedAsset, StagedAssetPatch
from app.schemas.contracts import AssetConflict, DuplicateGroup, DuplicateStats
from app.schemas.records import TempUploadRecord, utcnow
from app.storage.artifact_store import ArtifactStore
from app.storage.repository import AssetRepository, RepositoryError

logger = structlog.get_logger(__name__)

PURGE_BATCH_LIMIT = 500


class StagingError(Exception):
    def __init__(self, message: str, error_code: str, http_status: int = 400):
        self.message = message
        self.error_code = error_code
        self.http_status = http_status
        super().__init__(message)


def coalesce_patches(patches: list[StagedAssetPatch]) -> list[StagedAssetPatch]:
    """One patch per asset id, first-seen order, later fields winning."""
    by_id: dict[str, StagedAssetPatch] = {}
    for patch in patches:
        existing = by_id.get(patch.id)
        by_id[patch.id] = existing.merged_with(patch) if existing else patch
    return list(by_id.values())


class StagingStore:

    def __init__(self, repository: AssetRepository, taxonomy: Taxonomy):
        self.repository = repository
        self.taxonomy = taxonomy

    # ── Sessions ─────────────────────────────────────────────

    async def create_session(self, upload: TempUploadRecord, assets: list[StagedAsset]) -> TempUploadRecord:
        """Store the session row and its staged assets. A failed asset insert removes the row again."""
        try:
            await self.repository.create_upload(upload)
        except RepositoryError as e:
            raise StagingError("Failed to create upload session", "SESSION_CREATE_FAILED", 500) from e

        try:
            await self.repository.insert_staged_assets(upload.user_id, upload.id, assets)
        except RepositoryError as e:
            logger.error("staged_insert_failed", upload_id=upload.id, assets=len(assets), error=e.message)
            try:
                await self.repository.delete_upload(upload.user_id, upload.id)
            except RepositoryError as cleanup:
                logger.error("session_rollback_failed", upload_id=upload.id, error=cleanup.message)
            raise StagingError("Failed to save staged assets", "STAGING_FAILED", 500) from e

        logger.info("session_created", upload_id=upload.id, assets=len(assets), expires_at=upload.expires_at.isoformat())
        return upload

    async def get_session(self, user_id: str, session_id: str, now: Optional[datetime] = None) -> TempUploadRecord:
        """
        Raises:
            StagingError: 404 when missing or owned by someone else, 410 when expired
        """
        upload = await self.repository.get_upload(user_id, session_id)
        if upload is None:
            raise StagingError("Upload session not found", "SESSION_NOT_FOUND", 404)
        if upload.status != UploadStatus.COMPLETED.value and upload.is_expired(now):
            raise StagingError("Upload session has expired", "SESSION_EXPIRED", 410)
        return upload

    async def open_session(self, user_id: str, session_id: str, now: Optional[datetime] = None) -> TempUploadRecord:
        """A session that still accepts edits."""
        upload = await self.get_session(user_id, session_id, now)
        if upload.status == UploadStatus.COMPLETED.value:
            raise StagingError("Upload already finalized", "SESSION_FINALIZED", 409)
        if upload.status == UploadStatus.CANCELLED.value:
            raise StagingError("Upload session was cancelled", "SESSION_CANCELLED", 409)
        return upload

    async def review(self, user_id: str, session_id: str) -> tuple[TempUploadRecord, list[StagedAsset]]:
        upload = await self.get_session(user_id, session_id)
        assets = await self.repository.list_staged_assets(user_id, session_id)
        return upload, assets

    async def mark(self, upload: TempUploadRecord, status: UploadStatus, **changes) -> TempUploadRecord:
        updated = upload.model_copy(update={"status": status.value, "updated_at": utcnow(), **changes})
        await self.repository.update_upload(updated)
        return updated

    async def cancel(self, user_id: str, session_id: str) -> TempUploadRecord:
        upload = await self.open_session(user_id, session_id)
        cancelled = await self.mark(upload, UploadStatus.CANCELLED)
        logger.info("session_cancelled", upload_id=session_id)
        return cancelled

    async def purge_expired(
        self,
        now: Optional[datetime] = None,
        artifacts: Optional[ArtifactStore] = None,
        limit: int = PURGE_BATCH_LIMIT,
    ) -> int:
        """Delete expired, unfinalized sessions and their stored uploads."""
        expired = await self.repository.list_expired_uploads(now or utcnow(), limit)
        for upload in expired:
            await self.repository.delete_upload(upload.user_id, upload.id)
            if artifacts is not None:
                artifacts.delete_upload_artifacts(upload.id)
            sessions_purged_total.inc()

        if expired:
            logger.info("sessions_purged", count=len(expired))
        return len(expired)

    # ── Edits ────────────────────────────────────────────────

    def apply_patch(self, asset: StagedAsset, patch: StagedAssetPatch) -> StagedAsset:
        """
        The asset with the patch applied. A class or subclass change re-derives
        risk level and expected return from the taxonomy.
        """
        changes = patch.changes()

        if "asset_class" in changes or "asset_subclass" in changes:
            asset_class = changes.get("asset_class") or asset.asset_class
            subclass = changes.get("asset_subclass") or asset.asset_subclass
            mapping = self.taxonomy.find(asset_class, subclass)
            if mapping is None:
                raise StagingError(
                    f"Subclass '{subclass}' does not belong to asset class '{asset_class}'",
                    "SUBCLASS_CLASS_MISMATCH",
                )
            changes.update(
                asset_class=mapping.asset_class,
                asset_subclass=mapping.subclass_code,
                risk_level=mapping.risk_level,
                expected_return_pct=mapping.expected_return_midpoint,
                verified_via=VerifiedVia.MANUAL.value,
                confidence_score=1.0,
            )

        if any(f in changes and changes[f] != getattr(asset, f) for f in EDIT_TRACKED_FIELDS):
            changes["is_edited"] = True

        try:
            return StagedAsset.model_validate({**asset.model_dump(), **changes})
        except ValidationError as e:
            raise StagingError(f"Invalid changes for asset {asset.id}: {e.errors()[0]['msg']}",
                               "INVALID_PATCH") from e

    async def apply_patches(
        self,
        user_id: str,
        session_id: str,
        patches: list[StagedAssetPatch],
        mode: str = "immediate",
    ) -> int:
        """Persist a set of patches. All-or-nothing: one bad patch rejects the set."""
        upload = await self.open_session(user_id, session_id)
        patches = coalesce_patches(patches)
        if not patches:
            return 0

        ids = [p.id for p in patches]
        current = {a.id: a for a in await self.repository.list_staged_assets(user_id, session_id, ids)}
        missing = [i for i in ids if i not in current]
        if missing:
            raise StagingError(f"Asset {missing[0]} not found in upload session", "ASSET_NOT_FOUND", 404)

        updated = [self.apply_patch(current[p.id], p) for p in patches]
        count = await self._persist(upload, updated)
        staged_updates_total.labels(mode=mode).inc(count)
        logger.info("staged_assets_updated", upload_id=session_id, count=count, mode=mode)
        return count

    async def deselect(self, user_id: str, session_id: str, asset_ids: list[str]) -> int:
        """Removing an asset from a session only deselects it."""
        patches = [StagedAssetPatch(id=asset_id, is_selected=False) for asset_id in asset_ids]
        return await self.apply_patches(user_id, session_id, patches, mode="deselect")

    async def _persist(
        self,
        upload: TempUploadRecord,
        assets: list[StagedAsset],
        duplicates_found: Optional[int] = None,
    ) -> int:
        try:
            count = await self.repository.update_staged_assets(upload.user_id, upload.id, assets) if assets else 0
        except RepositoryError as e:
            raise StagingError("Failed to save changes", "UPDATE_FAILED", 500) from e

        changes = {} if duplicates_found is None else {"duplicates_found": duplicates_found}
        if upload.status == UploadStatus.PENDING.value or changes:
            status = UploadStatus.IN_REVIEW if upload.status == UploadStatus.PENDING.value else UploadStatus(upload.status)
            await self.mark(upload, status, **changes)
        return count

    # ── Duplicates ───────────────────────────────────────────

    async def duplicates(
        self, user_id: str, session_id: str,
    ) -> tuple[list[DuplicateGroup], list[AssetConflict], DuplicateStats]:
        """Duplicate groups inside the batch and conflicts with persisted holdings."""
        await self.get_session(user_id, session_id)
        assets = await self.repository.list_staged_assets(user_id, session_id)
        holdings = await self.repository.list_holding_summaries(user_id, settings.EXISTING_HOLDINGS_LIMIT)
        try:
            groups = group_duplicates(assets)
        except DuplicateDetectionError as e:
            raise StagingError(e.message, e.error_code, 500) from e
        return groups, detect_conflicts(assets, holdings), duplicate_stats(assets)

    async def resolve_duplicates(
        self, user_id: str, session_id: str, decisions: list[DuplicateDecision],
    ) -> tuple[int, list[StagedAsset]]:
        upload = await self.open_session(user_id, session_id)
        assets = await self.repository.list_staged_assets(user_id, session_id)
        try:
            resolved = apply_duplicate_resolutions(assets, group_duplicates(assets), decisions)
        except DuplicateDetectionError as e:
            raise StagingError(e.message, e.error_code) from e
        return await self._save_resolution(upload, assets, resolved, "duplicates")

    async def resolve_conflicts(
        self, user_id: str, session_id: str, decisions: list[ConflictDecision],
    ) -> tuple[int, list[StagedAsset]]:
        upload = await self.open_session(user_id, session_id)
        assets = await self.repository.list_staged_assets(user_id, session_id)
        holdings = await self.repository.list_holding_summaries(user_id, settings.EXISTING_HOLDINGS_LIMIT)
        try:
            resolved = apply_conflict_resolutions(assets, detect_conflicts(assets, holdings), decisions)
        except DuplicateDetectionError as e:
            raise StagingError(e.message, e.error_code) from e
        return await self._save_resolution(upload, assets, resolved, "conflicts")

    async def _save_resolution(
        self,
        upload: TempUploadRecord,
        before: list[StagedAsset],
        after: list[StagedAsset],
        kind: str,
    ) -> tuple[int, list[StagedAsset]]:
        changed = [new for old, new in zip(before, after) if new != old]
        remaining = sum(1 for a in after if a.is_duplicate)
        count = await self._persist(upload, changed, duplicates_found=remaining)
        staged_updates_total.labels(mode=f"resolve_{kind}").inc(count)
        logger.info("resolution_saved", upload_id=upload.id, kind=kind, updated=count, duplicates_left=remaining)
        return count, after
