"""
Contracts between pipeline stages.
Extractors, resolvers, oracles and matchers hand these to each other; none of
them is persisted as-is.
"""

import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.enums import (
    AssetClass, ConflictAction, DateConfidence, DateSource, DuplicateRecommendation,
    SecurityType, SnapshotMatchType, SuggestedAction,
)
from app.schemas.assets import RawAsset, StagedAsset


# ── Extraction ───────────────────────────────────────────────

class ExtractionResult(BaseModel):
    """Everything an extractor produced for one file."""
    raw_assets: list[RawAsset] = Field(default_factory=list)
    document_text: str = ""
    # As-of date an extraction oracle reported alongside the assets, if any
    statement_date_hint: Optional[datetime.date] = None
    rows_dropped: int = 0
    fallback_used: Optional[str] = None  # headerless, ai_tabular, ocr_vision, ocr_tesseract
    page_count: Optional[int] = None


# ── Statement Date ───────────────────────────────────────────

class StatementDateResult(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    date: Optional[datetime.date] = None
    confidence: DateConfidence = DateConfidence.LOW
    source: DateSource
    original_text: Optional[str] = None

    @property
    def is_acceptable(self) -> bool:
        """A tier's answer is taken only when it has a date and is not low-confidence."""
        return self.date is not None and self.confidence != DateConfidence.LOW.value


# ── Security Lookup ──────────────────────────────────────────

class LookupResult(BaseModel):
    """Answer from the security lookup oracle. found=False is the miss sentinel."""
    model_config = ConfigDict(use_enum_values=True)

    found: bool
    security_name: Optional[str] = None
    security_type: SecurityType = SecurityType.UNKNOWN
    asset_class: Optional[AssetClass] = None
    asset_subclass: Optional[str] = None
    exchange: Optional[str] = None
    sector: Optional[str] = None
    market_cap: Optional[str] = None  # large_cap, mid_cap, small_cap
    confidence: float = 0.0

    @classmethod
    def not_found(cls) -> "LookupResult":
        return cls(found=False)


# ── Snapshot Matching ────────────────────────────────────────

class SnapshotMatchResult(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    match_type: SnapshotMatchType
    matched_snapshot_id: Optional[str] = None
    days_difference: Optional[int] = None
    suggested_action: SuggestedAction


class NearbySnapshots(BaseModel):
    nearby_snapshot_ids: list[str] = Field(default_factory=list)
    suggested_merge_id: Optional[str] = None
    days_to_nearest: Optional[int] = None  # None when nothing is dated


class FileDateGroup(BaseModel):
    """Files whose statement dates fall close enough to share one snapshot."""
    statement_date: datetime.date
    file_names: list[str]
    date_label: str = ""  # "Mar 31, 2024", or "Mar 28-31" when the files span several days
    suggested_snapshot_name: str
    match: SnapshotMatchResult


# ── Duplicates ───────────────────────────────────────────────

class DuplicateGroup(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    id: str
    assets: list[StagedAsset]
    recommendation: DuplicateRecommendation

    @property
    def asset_ids(self) -> list[str]:
        return [a.id for a in self.assets]


class HoldingSummary(BaseModel):
    """Compact view of a persisted holding used when reconciling against a new batch."""
    id: str
    name: str
    current_value: Decimal
    asset_class: str
    asset_subclass: Optional[str] = None
    snapshot_id: Optional[str] = None
    snapshot_name: Optional[str] = None
    source_file: Optional[str] = None


class AssetConflict(BaseModel):
    """A staged asset that resembles a holding already in a snapshot."""
    model_config = ConfigDict(use_enum_values=True)

    id: str
    staged_asset: StagedAsset
    existing: HoldingSummary
    recommendation: ConflictAction


class DuplicateStats(BaseModel):
    total_assets: int = 0
    duplicates_found: int = 0
    exact_duplicates: int = 0
    name_and_value_duplicates: int = 0
    name_only_duplicates: int = 0
