"""
Persistence interface for the pipeline.
Every read and write is scoped to the calling user; a record owned by someone
else is reported exactly like a missing one.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

import structlog

from app.pipeline.taxonomy import DEFAULT_TAXONOMY, SubclassMapping, Taxonomy
from app.schemas.assets import StagedAsset
from app.schemas.contracts import HoldingSummary
from app.schemas.records import HoldingRecord, SnapshotRecord, TempUploadRecord, UploadLogRecord

logger = structlog.get_logger(__name__)


class RepositoryError(Exception):
    """A store operation failed."""
    def __init__(self, message: str, error_code: str = "PERSISTENCE_FAILED"):
        self.message = message
        self.error_code = error_code
        super().__init__(message)


class AssetRepository(ABC):

    # ── Snapshots ────────────────────────────────────────────

    @abstractmethod
    async def list_snapshots(self, user_id: str, limit: int) -> list[SnapshotRecord]:
        """Most recent statement date first; undated snapshots last."""

    @abstractmethod
    async def get_snapshot(self, user_id: str, snapshot_id: str) -> Optional[SnapshotRecord]:
        ...

    @abstractmethod
    async def create_snapshot(self, snapshot: SnapshotRecord) -> SnapshotRecord:
        ...

    @abstractmethod
    async def update_snapshot(self, snapshot: SnapshotRecord) -> None:
        ...

    @abstractmethod
    async def delete_snapshot(self, user_id: str, snapshot_id: str) -> None:
        """Remove a snapshot together with its holdings."""

    # ── Holdings ─────────────────────────────────────────────

    @abstractmethod
    async def list_holding_summaries(self, user_id: str, limit: int) -> list[HoldingSummary]:
        """Newest holdings first, with their snapshot names."""

    @abstractmethod
    async def list_holdings(self, user_id: str, snapshot_id: str) -> list[HoldingRecord]:
        ...

    @abstractmethod
    async def insert_holdings(self, holdings: list[HoldingRecord]) -> None:
        ...

    @abstractmethod
    async def delete_holdings(self, user_id: str, snapshot_id: str, holding_ids: list[str]) -> int:
        """Delete the given holdings of one snapshot. Returns how many went."""

    # ── Review sessions ──────────────────────────────────────

    @abstractmethod
    async def create_upload(self, upload: TempUploadRecord) -> None:
        ...

    @abstractmethod
    async def get_upload(self, user_id: str, upload_id: str) -> Optional[TempUploadRecord]:
        ...

    @abstractmethod
    async def update_upload(self, upload: TempUploadRecord) -> None:
        ...

    @abstractmethod
    async def delete_upload(self, user_id: str, upload_id: str) -> None:
        """Remove a session and its staged assets."""

    @abstractmethod
    async def list_expired_uploads(self, now: datetime, limit: int) -> list[TempUploadRecord]:
        """Expired sessions that were never finalized, across all users."""

    @abstractmethod
    async def insert_staged_assets(self, user_id: str, upload_id: str, assets: list[StagedAsset]) -> None:
        ...

    @abstractmethod
    async def list_staged_assets(
        self, user_id: str, upload_id: str, asset_ids: Optional[list[str]] = None,
    ) -> list[StagedAsset]:
        """Staged assets in ingest order, optionally restricted to the given ids."""

    @abstractmethod
    async def update_staged_assets(self, user_id: str, upload_id: str, assets: list[StagedAsset]) -> int:
        """Overwrite the stored rows for these assets. Returns how many matched."""

    # ── Taxonomy ─────────────────────────────────────────────

    @abstractmethod
    async def list_subclass_mappings(self) -> list[SubclassMapping]:
        ...

    @abstractmethod
    async def seed_subclass_mappings(self, mappings: list[SubclassMapping]) -> None:
        ...

    # ── Upload logs ──────────────────────────────────────────

    @abstractmethod
    async def add_upload_log(self, log: UploadLogRecord) -> None:
        ...


async def load_taxonomy(repository: AssetRepository) -> Taxonomy:
    """The stored taxonomy, seeding the built-in table when the store holds none."""
    mappings = await repository.list_subclass_mappings()
    if not mappings:
        await repository.seed_subclass_mappings(DEFAULT_TAXONOMY)
        logger.info("taxonomy_seeded", entries=len(DEFAULT_TAXONOMY))
        mappings = DEFAULT_TAXONOMY
    return Taxonomy(mappings)
