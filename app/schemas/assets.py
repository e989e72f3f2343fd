"""
Asset records flowing through the pipeline.
RawAsset -> ClassifiedAsset -> StagedAsset -> persisted holding.

Records are frozen: every edit goes through model_copy(update=...) so the
previous value stays intact for whoever still holds it.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.enums import (
    AssetClass, CandidateKind, MatchType, RiskLevel, SecurityType, VerifiedVia,
)


class RawAsset(BaseModel):
    """A holding as read from a statement, before classification."""
    model_config = ConfigDict(frozen=True, use_enum_values=True)

    name: str = Field(min_length=1)
    current_value: Decimal = Field(gt=0)
    quantity: Optional[Decimal] = None
    purchase_price: Optional[Decimal] = None
    purchase_date: Optional[date] = None
    source_file: str = ""
    isin: Optional[str] = None
    ticker_symbol: Optional[str] = None
    exchange: Optional[str] = None
    notes: Optional[str] = None


class ClassifiedAsset(RawAsset):
    asset_class: AssetClass
    asset_subclass: str
    risk_level: RiskLevel
    expected_return_pct: Decimal
    confidence_score: float = Field(ge=0.0, le=1.0)
    verified_via: VerifiedVia
    security_type: Optional[SecurityType] = None


class DuplicateMatch(BaseModel):
    """One candidate another record may duplicate. Derived, never edited."""
    model_config = ConfigDict(frozen=True, use_enum_values=True)

    candidate_id: Optional[str] = None
    candidate_name: str
    candidate_value: Decimal
    candidate_source: str
    candidate_kind: CandidateKind = CandidateKind.STAGED
    similarity_score: float = Field(ge=0.0, le=1.0)
    match_type: MatchType


class StagedAsset(ClassifiedAsset):
    """A classified asset living in a review session."""
    id: str
    is_duplicate: bool = False
    duplicate_matches: list[DuplicateMatch] = Field(default_factory=list)
    is_selected: bool = True
    is_edited: bool = False
    # Persisted holding this asset supersedes when finalized into its snapshot
    replaces_asset_id: Optional[str] = None


# Fields whose change marks a staged asset as user-edited
EDIT_TRACKED_FIELDS = frozenset({"name", "current_value", "asset_class", "asset_subclass"})


class StagedAssetPatch(BaseModel):
    """Partial update of one staged asset, keyed by id. Unset fields are untouched."""
    model_config = ConfigDict(use_enum_values=True)

    id: str
    name: Optional[str] = Field(default=None, min_length=1)
    current_value: Optional[Decimal] = Field(default=None, gt=0)
    quantity: Optional[Decimal] = None
    purchase_price: Optional[Decimal] = None
    purchase_date: Optional[date] = None
    asset_class: Optional[AssetClass] = None
    asset_subclass: Optional[str] = None
    isin: Optional[str] = None
    ticker_symbol: Optional[str] = None
    exchange: Optional[str] = None
    notes: Optional[str] = None
    is_selected: Optional[bool] = None
    is_duplicate: Optional[bool] = None
    duplicate_matches: Optional[list[DuplicateMatch]] = None

    def changes(self) -> dict:
        """Fields the caller actually sent, without the id."""
        return self.model_dump(exclude_unset=True, exclude={"id"})

    def merged_with(self, later: "StagedAssetPatch") -> "StagedAssetPatch":
        """Coalesce two patches for the same asset; the later one wins per field."""
        if later.id != self.id:
            raise ValueError(f"Cannot coalesce patches for {self.id} and {later.id}")
        combined = {**self.changes(), **later.changes()}
        return StagedAssetPatch.model_validate({"id": self.id, **combined})
