"""
Persisted records as the repository hands them back.
The ORM rows in app/models/tables.py map onto these one-to-one.
"""

import secrets
import string
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from app.config import settings
from app.models.enums import (
    AssetClass, DateConfidence, DateSource, MergeDecision, RiskLevel, SourceType, UploadStatus,
)

_ID_ALPHABET = string.ascii_lowercase + string.digits


def _random_suffix(length: int) -> str:
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))


def new_upload_id(now: Optional[datetime] = None) -> str:
    """tmp_YYYYMMDD_xxxxxxx"""
    now = now or datetime.now(timezone.utc)
    return f"tmp_{now.strftime('%Y%m%d')}_{_random_suffix(7)}"


def new_staged_asset_id() -> str:
    """tmp_asset_ followed by 13 random characters."""
    return f"tmp_asset_{_random_suffix(13)}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Class -> snapshot total column
CLASS_TOTAL_FIELDS = {
    AssetClass.EQUITY.value: "equity_total",
    AssetClass.DEBT.value: "debt_total",
    AssetClass.CASH.value: "cash_total",
    AssetClass.REAL_ESTATE.value: "real_estate_total",
    AssetClass.OTHER.value: "other_assets_total",
}


class SnapshotTotals(BaseModel):
    total_networth: Decimal = Decimal(0)
    equity_total: Decimal = Decimal(0)
    debt_total: Decimal = Decimal(0)
    cash_total: Decimal = Decimal(0)
    real_estate_total: Decimal = Decimal(0)
    other_assets_total: Decimal = Decimal(0)

    @classmethod
    def from_holdings(cls, holdings) -> "SnapshotTotals":
        """Totals by class over anything with asset_class and current_value."""
        totals = {field: Decimal(0) for field in CLASS_TOTAL_FIELDS.values()}
        networth = Decimal(0)
        for h in holdings:
            value = Decimal(h.current_value)
            networth += value
            field = CLASS_TOTAL_FIELDS.get(getattr(h.asset_class, "value", h.asset_class))
            if field:
                totals[field] += value
        return cls(total_networth=networth, **totals)


class SnapshotRecord(SnapshotTotals):
    model_config = ConfigDict(use_enum_values=True)

    id: str
    user_id: str
    snapshot_name: Optional[str] = None
    snapshot_date: datetime
    statement_date: Optional[date] = None
    source_type: SourceType = SourceType.UPLOAD
    source_files: list[str] = Field(default_factory=list)
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class HoldingRecord(BaseModel):
    """A finalized asset row under a snapshot."""
    model_config = ConfigDict(use_enum_values=True)

    id: str
    user_id: str
    snapshot_id: str
    name: str
    asset_class: AssetClass
    asset_subclass: str
    current_value: Decimal
    quantity: Optional[Decimal] = None
    purchase_price: Optional[Decimal] = None
    purchase_date: Optional[date] = None
    risk_level: Optional[RiskLevel] = None
    expected_return_pct: Optional[Decimal] = None
    source_file: Optional[str] = None
    confidence_score: Optional[float] = None
    is_manually_verified: bool = False
    is_duplicate: bool = False
    isin: Optional[str] = None
    ticker_symbol: Optional[str] = None
    exchange: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class TempUploadRecord(BaseModel):
    """A review session: one ingested batch awaiting finalize."""
    model_config = ConfigDict(use_enum_values=True)

    id: str = Field(default_factory=new_upload_id)
    user_id: str
    file_names: list[str]
    total_assets: int = 0
    total_value: Decimal = Decimal(0)
    statement_date: Optional[date] = None
    statement_date_confidence: Optional[DateConfidence] = None
    statement_date_source: Optional[DateSource] = None
    suggested_snapshot_name: Optional[str] = None
    matched_snapshot_id: Optional[str] = None
    merge_decision: Optional[MergeDecision] = None
    processing_time_ms: Optional[int] = None
    duplicates_found: int = 0
    status: UploadStatus = UploadStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime = Field(
        default_factory=lambda: utcnow() + timedelta(hours=settings.STAGING_TTL_HOURS)
    )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    @property
    def is_closed(self) -> bool:
        return self.status in (UploadStatus.COMPLETED.value, UploadStatus.CANCELLED.value)


class UploadLogRecord(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    id: Optional[str] = None
    user_id: str
    snapshot_id: Optional[str] = None
    file_name: str
    file_type: str
    file_size_bytes: Optional[int] = None
    status: str  # uploaded, parsing, classifying, completed, failed
    assets_parsed: int = 0
    assets_saved: int = 0
    duplicates_found: int = 0
    error_message: Optional[str] = None
    uploaded_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
