"""
AssetRepository over PostgreSQL with the SQLAlchemy 2 async ORM.
Each call runs in its own session and commits before returning.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Optional

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.database import async_session_factory
from app.models.enums import UploadStatus
from app.models.tables import AssetSubclassMapping, Holding, Snapshot, TempAsset, TempUpload, UploadLog
from app.pipeline.taxonomy import SubclassMapping
from app.schemas.assets import StagedAsset
from app.schemas.contracts import HoldingSummary
from app.schemas.records import HoldingRecord, SnapshotRecord, TempUploadRecord, UploadLogRecord
from app.storage.repository import AssetRepository, RepositoryError

logger = structlog.get_logger(__name__)


def _staged_values(asset: StagedAsset) -> dict:
    values = asset.model_dump(exclude={"duplicate_matches"})
    values["duplicate_matches"] = [m.model_dump(mode="json") for m in asset.duplicate_matches]
    return values


class SqlAssetRepository(AssetRepository):

    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        self.session_factory = session_factory or async_session_factory

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error("repository_failed", operation=operation, error=str(e))
                raise RepositoryError(f"{operation} failed: {type(e).__name__}") from e

    # ── Snapshots ────────────────────────────────────────────

    async def list_snapshots(self, user_id: str, limit: int) -> list[SnapshotRecord]:
        async with self._session("list_snapshots") as session:
            result = await session.execute(
                select(Snapshot)
                .where(Snapshot.user_id == user_id)
                .order_by(Snapshot.statement_date.desc().nulls_last(), Snapshot.created_at.desc())
                .limit(limit)
            )
            return [SnapshotRecord.model_validate(row, from_attributes=True) for row in result.scalars()]

    async def get_snapshot(self, user_id: str, snapshot_id: str) -> Optional[SnapshotRecord]:
        async with self._session("get_snapshot") as session:
            row = await session.get(Snapshot, snapshot_id)
            if row is None or row.user_id != user_id:
                return None
            return SnapshotRecord.model_validate(row, from_attributes=True)

    async def create_snapshot(self, snapshot: SnapshotRecord) -> SnapshotRecord:
        async with self._session("create_snapshot") as session:
            session.add(Snapshot(**snapshot.model_dump()))
        return snapshot

    async def update_snapshot(self, snapshot: SnapshotRecord) -> None:
        values = snapshot.model_dump(exclude={"id", "user_id", "created_at"})
        async with self._session("update_snapshot") as session:
            await session.execute(
                update(Snapshot)
                .where(Snapshot.id == snapshot.id, Snapshot.user_id == snapshot.user_id)
                .values(**values)
            )

    async def delete_snapshot(self, user_id: str, snapshot_id: str) -> None:
        async with self._session("delete_snapshot") as session:
            await session.execute(
                delete(Holding).where(Holding.snapshot_id == snapshot_id, Holding.user_id == user_id)
            )
            await session.execute(
                delete(Snapshot).where(Snapshot.id == snapshot_id, Snapshot.user_id == user_id)
            )

    # ── Holdings ─────────────────────────────────────────────

    async def list_holding_summaries(self, user_id: str, limit: int) -> list[HoldingSummary]:
        async with self._session("list_holding_summaries") as session:
            result = await session.execute(
                select(Holding, Snapshot.snapshot_name)
                .join(Snapshot, Snapshot.id == Holding.snapshot_id)
                .where(Holding.user_id == user_id)
                .order_by(Holding.created_at.desc())
                .limit(limit)
            )
            return [
                HoldingSummary(
                    id=h.id,
                    name=h.name,
                    current_value=h.current_value,
                    asset_class=h.asset_class,
                    asset_subclass=h.asset_subclass,
                    snapshot_id=h.snapshot_id,
                    snapshot_name=snapshot_name,
                    source_file=h.source_file,
                )
                for h, snapshot_name in result.all()
            ]

    async def list_holdings(self, user_id: str, snapshot_id: str) -> list[HoldingRecord]:
        async with self._session("list_holdings") as session:
            result = await session.execute(
                select(Holding)
                .where(Holding.user_id == user_id, Holding.snapshot_id == snapshot_id)
                .order_by(Holding.created_at)
            )
            return [HoldingRecord.model_validate(row, from_attributes=True) for row in result.scalars()]

    async def insert_holdings(self, holdings: list[HoldingRecord]) -> None:
        async with self._session("insert_holdings") as session:
            session.add_all([Holding(**h.model_dump()) for h in holdings])

    async def delete_holdings(self, user_id: str, snapshot_id: str, holding_ids: list[str]) -> int:
        if not holding_ids:
            return 0
        async with self._session("delete_holdings") as session:
            result = await session.execute(
                delete(Holding).where(
                    Holding.user_id == user_id,
                    Holding.snapshot_id == snapshot_id,
                    Holding.id.in_(holding_ids),
                )
            )
            return result.rowcount or 0

    # ── Review sessions ──────────────────────────────────────

    async def create_upload(self, upload: TempUploadRecord) -> None:
        async with self._session("create_upload") as session:
            session.add(TempUpload(**upload.model_dump()))

    async def get_upload(self, user_id: str, upload_id: str) -> Optional[TempUploadRecord]:
        async with self._session("get_upload") as session:
            row = await session.get(TempUpload, upload_id)
            if row is None or row.user_id != user_id:
                return None
            return TempUploadRecord.model_validate(row, from_attributes=True)

    async def update_upload(self, upload: TempUploadRecord) -> None:
        values = upload.model_dump(exclude={"id", "user_id", "created_at"})
        async with self._session("update_upload") as session:
            await session.execute(
                update(TempUpload)
                .where(TempUpload.id == upload.id, TempUpload.user_id == upload.user_id)
                .values(**values)
            )

    async def delete_upload(self, user_id: str, upload_id: str) -> None:
        async with self._session("delete_upload") as session:
            await session.execute(
                delete(TempAsset).where(TempAsset.upload_id == upload_id, TempAsset.user_id == user_id)
            )
            await session.execute(
                delete(TempUpload).where(TempUpload.id == upload_id, TempUpload.user_id == user_id)
            )

    async def list_expired_uploads(self, now: datetime, limit: int) -> list[TempUploadRecord]:
        async with self._session("list_expired_uploads") as session:
            result = await session.execute(
                select(TempUpload)
                .where(TempUpload.expires_at <= now, TempUpload.status != UploadStatus.COMPLETED.value)
                .order_by(TempUpload.expires_at)
                .limit(limit)
            )
            return [TempUploadRecord.model_validate(row, from_attributes=True) for row in result.scalars()]

    async def insert_staged_assets(self, user_id: str, upload_id: str, assets: list[StagedAsset]) -> None:
        async with self._session("insert_staged_assets") as session:
            session.add_all([
                TempAsset(upload_id=upload_id, user_id=user_id, position=i, **_staged_values(a))
                for i, a in enumerate(assets)
            ])

    async def list_staged_assets(
        self, user_id: str, upload_id: str, asset_ids: Optional[list[str]] = None,
    ) -> list[StagedAsset]:
        query = select(TempAsset).where(TempAsset.upload_id == upload_id, TempAsset.user_id == user_id)
        if asset_ids is not None:
            query = query.where(TempAsset.id.in_(asset_ids))
        async with self._session("list_staged_assets") as session:
            result = await session.execute(query.order_by(TempAsset.position))
            return [StagedAsset.model_validate(row, from_attributes=True) for row in result.scalars()]

    async def update_staged_assets(self, user_id: str, upload_id: str, assets: list[StagedAsset]) -> int:
        updated = 0
        async with self._session("update_staged_assets") as session:
            for asset in assets:
                values = _staged_values(asset)
                values.pop("id")
                result = await session.execute(
                    update(TempAsset)
                    .where(
                        TempAsset.id == asset.id,
                        TempAsset.upload_id == upload_id,
                        TempAsset.user_id == user_id,
                    )
                    .values(**values)
                )
                updated += result.rowcount or 0
        return updated

    # ── Taxonomy ─────────────────────────────────────────────

    async def list_subclass_mappings(self) -> list[SubclassMapping]:
        async with self._session("list_subclass_mappings") as session:
            result = await session.execute(
                select(AssetSubclassMapping)
                .where(AssetSubclassMapping.is_active.is_(True))
                .order_by(AssetSubclassMapping.sort_order)
            )
            return [
                SubclassMapping(
                    asset_class=row.asset_class,
                    subclass_code=row.subclass_code,
                    display_name=row.display_name,
                    risk_level=row.risk_level,
                    expected_return_range=row.expected_return_range,
                    expected_return_midpoint=row.expected_return_midpoint,
                    keyword_patterns=tuple(row.keyword_patterns or ()),
                    description=row.description,
                    sort_order=row.sort_order,
                    is_active=row.is_active,
                )
                for row in result.scalars()
            ]

    async def seed_subclass_mappings(self, mappings: list[SubclassMapping]) -> None:
        async with self._session("seed_subclass_mappings") as session:
            for m in mappings:
                values = m.model_dump()
                values["keyword_patterns"] = list(m.keyword_patterns)
                await session.merge(AssetSubclassMapping(**values))

    # ── Upload logs ──────────────────────────────────────────

    async def add_upload_log(self, log: UploadLogRecord) -> None:
        values = log.model_dump(exclude={"id"} if log.id is None else None)
        async with self._session("add_upload_log") as session:
            session.add(UploadLog(**values))
