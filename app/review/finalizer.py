"""
Finalizer: commits the selected staged assets of a review session as holdings.

Create mode inserts a new snapshot carrying the batch totals. Merge mode adds
the assets to an existing snapshot of the same user, drops the holdings they
replace and recomputes that snapshot's totals from what it now holds.
"""

import uuid
from datetime import datetime, time as dt_time, timezone
from typing import Optional

import structlog

from app.config import settings
from app.models.enums import UploadStatus
from app.observability.metrics import finalizations_total
from app.schemas.api import FinalizeOptions, FinalizeResponse
from app.schemas.assets import StagedAsset
from app.schemas.records import HoldingRecord, SnapshotRecord, SnapshotTotals, TempUploadRecord, utcnow
from app.storage.repository import AssetRepository, RepositoryError

logger = structlog.get_logger(__name__)


class FinalizeError(Exception):
    def __init__(self, message: str, error_code: str, http_status: int = 400):
        self.message = message
        self.error_code = error_code
        self.http_status = http_status
        super().__init__(message)


class NoAssetsSelectedError(FinalizeError):
    def __init__(self):
        super().__init__("No assets selected", "NO_ASSETS_SELECTED", 400)


def to_holding(asset: StagedAsset, user_id: str, snapshot_id: str) -> HoldingRecord:
    return HoldingRecord(
        id=str(uuid.uuid4()),
        user_id=user_id,
        snapshot_id=snapshot_id,
        name=asset.name,
        asset_class=asset.asset_class,
        asset_subclass=asset.asset_subclass,
        current_value=asset.current_value,
        quantity=asset.quantity,
        purchase_price=asset.purchase_price,
        purchase_date=asset.purchase_date,
        risk_level=asset.risk_level,
        expected_return_pct=asset.expected_return_pct,
        source_file=asset.source_file or None,
        confidence_score=asset.confidence_score,
        is_manually_verified=asset.is_edited,
        is_duplicate=asset.is_duplicate,
        isin=asset.isin,
        ticker_symbol=asset.ticker_symbol,
        exchange=asset.exchange,
        notes=asset.notes,
    )


def _snapshot_date(upload: TempUploadRecord) -> datetime:
    if upload.statement_date is None:
        return utcnow()
    return datetime.combine(upload.statement_date, dt_time.min, tzinfo=timezone.utc)


class Finalizer:

    def __init__(self, repository: AssetRepository, batch_size: Optional[int] = None):
        self.repository = repository
        self.batch_size = batch_size or settings.FINALIZE_BATCH_SIZE

    async def finalize(self, user_id: str, session_id: str, options: FinalizeOptions) -> FinalizeResponse:
        """
        Raises:
            NoAssetsSelectedError: nothing was selected; checked before any store access
            FinalizeError: session or target missing, session closed, or the insert failed
        """
        if not options.selected_asset_ids:
            raise NoAssetsSelectedError()

        mode = "merge" if options.merge_mode else "create"
        try:
            response = await self._finalize(user_id, session_id, options, mode)
        except FinalizeError as e:
            finalizations_total.labels(mode=mode, status=e.error_code).inc()
            raise
        finalizations_total.labels(mode=mode, status="success").inc()
        return response

    async def _finalize(self, user_id: str, session_id: str, options: FinalizeOptions, mode: str) -> FinalizeResponse:
        upload = await self._load_session(user_id, session_id)

        assets = await self.repository.list_staged_assets(user_id, session_id, options.selected_asset_ids)
        if not assets:
            raise FinalizeError("No valid assets found", "NO_VALID_ASSETS", 404)

        if options.merge_mode:
            if not options.target_snapshot_id:
                raise FinalizeError("Merge mode needs a target snapshot", "TARGET_REQUIRED")
            snapshot = await self.repository.get_snapshot(user_id, options.target_snapshot_id)
            if snapshot is None:
                raise FinalizeError("Target snapshot not found", "TARGET_NOT_FOUND", 404)
            saved = await self._merge_into(snapshot, upload, assets)
            message = f"Added {saved} assets to existing snapshot"
        else:
            snapshot = await self._create_snapshot(upload, assets, options.snapshot_name)
            saved = await self._insert_holdings(snapshot, assets, rollback=True)
            message = f"Created new snapshot with {saved} assets"

        try:
            await self.repository.update_upload(upload.model_copy(update={
                "status": UploadStatus.COMPLETED.value,
                "updated_at": utcnow(),
            }))
        except RepositoryError as e:
            # holdings are committed; the session simply stays open until it expires
            logger.error("session_complete_failed", upload_id=session_id, error=e.message)

        logger.info("finalized", upload_id=session_id, snapshot_id=snapshot.id, mode=mode, assets_saved=saved)
        return FinalizeResponse(
            snapshot_id=snapshot.id,
            assets_saved=saved,
            merged=options.merge_mode,
            message=message,
        )

    async def _load_session(self, user_id: str, session_id: str) -> TempUploadRecord:
        upload = await self.repository.get_upload(user_id, session_id)
        if upload is None:
            raise FinalizeError("Upload session not found", "SESSION_NOT_FOUND", 404)
        if upload.status == UploadStatus.COMPLETED.value:
            raise FinalizeError("Upload already finalized", "SESSION_FINALIZED", 409)
        if upload.status == UploadStatus.CANCELLED.value:
            raise FinalizeError("Upload session was cancelled", "SESSION_CANCELLED", 409)
        if upload.is_expired():
            raise FinalizeError("Upload session has expired", "SESSION_EXPIRED", 410)
        return upload

    async def _create_snapshot(
        self, upload: TempUploadRecord, assets: list[StagedAsset], name: Optional[str],
    ) -> SnapshotRecord:
        totals = SnapshotTotals.from_holdings(assets)
        snapshot = SnapshotRecord(
            id=str(uuid.uuid4()),
            user_id=upload.user_id,
            snapshot_name=name or upload.suggested_snapshot_name,
            snapshot_date=_snapshot_date(upload),
            statement_date=upload.statement_date,
            source_files=list(upload.file_names),
            notes=f"Uploaded via review workflow. Original upload ID: {upload.id}",
            **totals.model_dump(),
        )
        try:
            return await self.repository.create_snapshot(snapshot)
        except RepositoryError as e:
            raise FinalizeError("Failed to create snapshot", "SNAPSHOT_CREATE_FAILED", 500) from e

    async def _insert_holdings(self, snapshot: SnapshotRecord, assets: list[StagedAsset], rollback: bool) -> int:
        holdings = [to_holding(a, snapshot.user_id, snapshot.id) for a in assets]
        saved = 0
        for start in range(0, len(holdings), self.batch_size):
            batch = holdings[start:start + self.batch_size]
            try:
                await self.repository.insert_holdings(batch)
            except RepositoryError as e:
                logger.error("holding_insert_failed", snapshot_id=snapshot.id, saved=saved, error=e.message)
                if rollback:
                    await self._rollback(snapshot)
                raise FinalizeError(f"Failed to save assets: {e.message}", "INSERT_FAILED", 500) from e
            saved += len(batch)
        return saved

    async def _rollback(self, snapshot: SnapshotRecord) -> None:
        try:
            await self.repository.delete_snapshot(snapshot.user_id, snapshot.id)
            logger.info("snapshot_rolled_back", snapshot_id=snapshot.id)
        except RepositoryError as e:
            logger.error("snapshot_rollback_failed", snapshot_id=snapshot.id, error=e.message)

    async def _merge_into(self, snapshot: SnapshotRecord, upload: TempUploadRecord, assets: list[StagedAsset]) -> int:
        saved = await self._insert_holdings(snapshot, assets, rollback=False)

        replaced = [a.replaces_asset_id for a in assets if a.replaces_asset_id]
        source_files = list(snapshot.source_files)
        source_files.extend(f for f in upload.file_names if f not in source_files)

        try:
            if replaced:
                removed = await self.repository.delete_holdings(snapshot.user_id, snapshot.id, replaced)
                logger.info("replaced_holdings_removed", snapshot_id=snapshot.id,
                            requested=len(replaced), removed=removed)

            holdings = await self.repository.list_holdings(snapshot.user_id, snapshot.id)
            await self.repository.update_snapshot(snapshot.model_copy(update={
                **SnapshotTotals.from_holdings(holdings).model_dump(),
                "source_files": source_files,
                "updated_at": utcnow(),
            }))
        except RepositoryError as e:
            raise FinalizeError(f"Assets saved but snapshot update failed: {e.message}",
                                "SNAPSHOT_UPDATE_FAILED", 500) from e
        return saved
