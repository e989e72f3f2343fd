"""
Request and response records of the pipeline boundary.
Every response carries success, and error/error_code when it failed.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.enums import ConflictAction, DuplicateAction
from app.schemas.assets import StagedAsset, StagedAssetPatch
from app.schemas.contracts import (
    AssetConflict, DuplicateGroup, DuplicateStats, FileDateGroup, StatementDateResult,
)
from app.schemas.records import SnapshotRecord, TempUploadRecord


class BoundaryResponse(BaseModel):
    success: bool = True
    error: Optional[str] = None
    error_code: Optional[str] = None


# ── Ingest ───────────────────────────────────────────────────

class IncomingFile(BaseModel):
    """One uploaded file as handed to ingest()."""
    file_name: str
    content: bytes
    content_type: Optional[str] = None


class FileDetail(BaseModel):
    name: str
    size_kb: float
    file_format: Optional[str] = None
    assets_found: int = 0
    rows_dropped: int = 0
    status: str  # success, failed
    error: Optional[str] = None
    error_code: Optional[str] = None
    fallback_used: Optional[str] = None
    statement_date: Optional[StatementDateResult] = None


class BatchSummary(BaseModel):
    upload_id: Optional[str] = None
    total_files: int = 0
    successful_files: int = 0
    failed_files: int = 0
    file_details: list[FileDetail] = Field(default_factory=list)
    total_assets: int = 0
    total_value: Decimal = Decimal(0)
    duplicate_stats: DuplicateStats = Field(default_factory=DuplicateStats)
    classification_failures: int = 0
    statement_date: Optional[StatementDateResult] = None
    statement_date_groups: list[FileDateGroup] = Field(default_factory=list)
    processing_time_ms: int = 0
    oracle_usage: dict[str, Any] = Field(default_factory=dict)


class IngestResponse(BoundaryResponse):
    summary: Optional[BatchSummary] = None


# ── Review ───────────────────────────────────────────────────

class ReviewResponse(BoundaryResponse):
    upload: Optional[TempUploadRecord] = None
    assets: list[StagedAsset] = Field(default_factory=list)


class UpdateStagedRequest(BaseModel):
    patches: list[StagedAssetPatch]
    debounce: bool = False


class UpdateStagedResponse(BoundaryResponse):
    updated_count: int = 0
    pending_count: int = 0


class DeselectRequest(BaseModel):
    asset_ids: list[str]


class DuplicatesResponse(BoundaryResponse):
    groups: list[DuplicateGroup] = Field(default_factory=list)
    conflicts: list[AssetConflict] = Field(default_factory=list)
    stats: Optional[DuplicateStats] = None


class DuplicateDecision(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    group_id: str
    action: DuplicateAction
    asset_ids_to_keep: list[str] = Field(default_factory=list)


class ConflictDecision(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    conflict_id: str
    action: ConflictAction


class ResolveDuplicatesRequest(BaseModel):
    decisions: list[DuplicateDecision]


class ResolveConflictsRequest(BaseModel):
    decisions: list[ConflictDecision]


class ResolutionResponse(BoundaryResponse):
    updated_count: int = 0
    assets: list[StagedAsset] = Field(default_factory=list)


# ── Finalize ─────────────────────────────────────────────────

class FinalizeOptions(BaseModel):
    selected_asset_ids: list[str] = Field(default_factory=list)
    merge_mode: bool = False
    target_snapshot_id: Optional[str] = None
    snapshot_name: Optional[str] = None


class FinalizeResponse(BoundaryResponse):
    snapshot_id: Optional[str] = None
    assets_saved: int = 0
    merged: bool = False
    message: Optional[str] = None


# ── Snapshots ────────────────────────────────────────────────

class SnapshotListResponse(BoundaryResponse):
    snapshots: list[SnapshotRecord] = Field(default_factory=list)


class NearbySnapshotsResponse(BoundaryResponse):
    statement_date: Optional[date] = None
    nearby_snapshots: list[SnapshotRecord] = Field(default_factory=list)
    suggested_merge_id: Optional[str] = None
    days_to_nearest: Optional[int] = None
