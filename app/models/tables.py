"""
SQLAlchemy ORM models.
Enum-valued columns hold the plain string values from app/models/enums.py.
"""

import uuid
from datetime import datetime, date
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    BigInteger,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.database import Base


def _uuid_str() -> str:
    return str(uuid.uuid4())


# ────────────────────────────────────────────────────────────
# SNAPSHOTS
# ────────────────────────────────────────────────────────────
class Snapshot(Base):
    __tablename__ = "snapshots"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), primary_key=True, default=_uuid_str,
        server_default=text("gen_random_uuid()")
    )
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    snapshot_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    snapshot_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    statement_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    total_networth: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=0)
    equity_total: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=0)
    debt_total: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=0)
    cash_total: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=0)
    real_estate_total: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=0)
    other_assets_total: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=0)
    source_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default="upload", server_default="upload"
    )
    source_files: Mapped[list[str]] = mapped_column(ARRAY(Text), nullable=False, default=list)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("NOW()")
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("NOW()")
    )

    holdings = relationship("Holding", back_populates="snapshot", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_snapshots_user", "user_id"),
        Index("idx_snapshots_statement_date", "user_id", "statement_date"),
    )


# ────────────────────────────────────────────────────────────
# HOLDINGS
# ────────────────────────────────────────────────────────────
class Holding(Base):
    __tablename__ = "holdings"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), primary_key=True, default=_uuid_str,
        server_default=text("gen_random_uuid()")
    )
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    snapshot_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("snapshots.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    asset_class: Mapped[str] = mapped_column(String(20), nullable=False)
    asset_subclass: Mapped[str] = mapped_column(String(50), nullable=False)
    current_value: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    quantity: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 6), nullable=True)
    purchase_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 4), nullable=True)
    purchase_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    risk_level: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    expected_return_pct: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    source_file: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    confidence_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    is_manually_verified: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default="false"
    )
    is_duplicate: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default="false"
    )
    isin: Mapped[Optional[str]] = mapped_column(String(12), nullable=True)
    ticker_symbol: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    exchange: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("NOW()")
    )

    snapshot = relationship("Snapshot", back_populates="holdings")

    __table_args__ = (
        Index("idx_holdings_user", "user_id", "created_at"),
        Index("idx_holdings_snapshot", "snapshot_id"),
    )


# ────────────────────────────────────────────────────────────
# REVIEW SESSIONS
# ────────────────────────────────────────────────────────────
class TempUpload(Base):
    __tablename__ = "temp_uploads"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    file_names: Mapped[list[str]] = mapped_column(ARRAY(Text), nullable=False)
    total_assets: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_value: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=0)
    statement_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    statement_date_confidence: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    statement_date_source: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    suggested_snapshot_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    matched_snapshot_id: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False), nullable=True)
    merge_decision: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    processing_time_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    duplicates_found: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending", server_default="pending"
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    assets = relationship("TempAsset", back_populates="upload", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_temp_uploads_user", "user_id"),
        Index("idx_temp_uploads_expires", "expires_at",
              postgresql_where=text("status <> 'completed'")),
    )


class TempAsset(Base):
    __tablename__ = "temp_assets"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    upload_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("temp_uploads.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    asset_class: Mapped[str] = mapped_column(String(20), nullable=False)
    asset_subclass: Mapped[str] = mapped_column(String(50), nullable=False)
    current_value: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    quantity: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 6), nullable=True)
    purchase_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 4), nullable=True)
    purchase_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    risk_level: Mapped[str] = mapped_column(String(20), nullable=False)
    expected_return_pct: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    confidence_score: Mapped[float] = mapped_column(Float, nullable=False)
    verified_via: Mapped[str] = mapped_column(String(10), nullable=False)
    security_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    source_file: Mapped[str] = mapped_column(Text, nullable=False, default="")
    isin: Mapped[Optional[str]] = mapped_column(String(12), nullable=True)
    ticker_symbol: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    exchange: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_duplicate: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    duplicate_matches: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    is_selected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_edited: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    replaces_asset_id: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("NOW()")
    )

    upload = relationship("TempUpload", back_populates="assets")

    __table_args__ = (
        Index("idx_temp_assets_upload", "upload_id", "position"),
    )


# ────────────────────────────────────────────────────────────
# TAXONOMY
# ────────────────────────────────────────────────────────────
class AssetSubclassMapping(Base):
    __tablename__ = "asset_subclass_mappings"

    subclass_code: Mapped[str] = mapped_column(String(50), primary_key=True)
    asset_class: Mapped[str] = mapped_column(String(20), nullable=False)
    display_name: Mapped[str] = mapped_column(Text, nullable=False)
    risk_level: Mapped[str] = mapped_column(String(20), nullable=False)
    expected_return_range: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    expected_return_midpoint: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    keyword_patterns: Mapped[list[str]] = mapped_column(ARRAY(Text), nullable=False, default=list)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default="true"
    )

    __table_args__ = (
        UniqueConstraint("asset_class", "subclass_code", name="uq_subclass_class_code"),
        Index("idx_subclass_active", "is_active", postgresql_where=text("is_active = TRUE")),
    )


# ────────────────────────────────────────────────────────────
# UPLOAD LOGS
# ────────────────────────────────────────────────────────────
class UploadLog(Base):
    __tablename__ = "upload_logs"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), primary_key=True, default=_uuid_str,
        server_default=text("gen_random_uuid()")
    )
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    snapshot_id: Mapped[Optional[str]] = mapped_column(
        UUID(as_uuid=False), ForeignKey("snapshots.id", ondelete="SET NULL"), nullable=True
    )
    file_name: Mapped[str] = mapped_column(Text, nullable=False)
    file_type: Mapped[str] = mapped_column(String(20), nullable=False)
    file_size_bytes: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    assets_parsed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    assets_saved: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    duplicates_found: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("NOW()")
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_upload_logs_user", "user_id", "uploaded_at"),
    )
