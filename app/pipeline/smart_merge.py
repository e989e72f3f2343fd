"""
Deterministic merging of duplicate and conflicting assets, and the resolution
actions a reviewer applies to duplicate groups and conflicts.

Merge rules:
- current_value and quantity are summed
- the longest name wins
- classification comes from the most confident member
- identifiers come from the first member that has them
- purchase date/price come from the earliest-dated member
- source files and notes are combined without repeats
"""

from typing import Optional

import structlog

from app.models.enums import CandidateKind, ConflictAction, DuplicateAction
from app.pipeline.duplicate_detector import DuplicateDetectionError
from app.schemas.api import ConflictDecision, DuplicateDecision
from app.schemas.assets import StagedAsset
from app.schemas.contracts import AssetConflict, DuplicateGroup, HoldingSummary

logger = structlog.get_logger(__name__)


def _first(values) -> Optional[object]:
    return next((v for v in values if v), None)


def _unique_join(values, separator: str) -> Optional[str]:
    seen: list[str] = []
    for value in values:
        if value and value.strip() and value not in seen:
            seen.append(value)
    return separator.join(seen) if seen else None


def smart_merge(assets: list[StagedAsset]) -> StagedAsset:
    """Collapse a group into one record that keeps the first member's id."""
    if not assets:
        raise DuplicateDetectionError("Cannot merge an empty asset list")
    if len(assets) == 1:
        return assets[0]

    base = max(assets, key=lambda a: a.confidence_score)  # first on ties
    longest = max(assets, key=lambda a: len(a.name))

    quantity = sum((a.quantity for a in assets if a.quantity), start=0)
    dated = sorted((a for a in assets if a.purchase_date), key=lambda a: a.purchase_date)
    if dated:
        purchase_date = dated[0].purchase_date
        purchase_price = dated[0].purchase_price
    else:
        purchase_date = None
        purchase_price = _first(a.purchase_price for a in assets)

    return assets[0].model_copy(update={
        "name": longest.name,
        "current_value": sum(a.current_value for a in assets),
        "quantity": quantity if quantity > 0 else None,
        "asset_class": base.asset_class,
        "asset_subclass": base.asset_subclass,
        "risk_level": base.risk_level,
        "expected_return_pct": base.expected_return_pct,
        "security_type": base.security_type,
        "verified_via": base.verified_via,
        "confidence_score": max(a.confidence_score for a in assets),
        "isin": _first(a.isin for a in assets),
        "ticker_symbol": _first(a.ticker_symbol for a in assets),
        "exchange": _first(a.exchange for a in assets),
        "purchase_date": purchase_date,
        "purchase_price": purchase_price,
        "source_file": _unique_join((a.source_file for a in assets), ", ") or "",
        "notes": _unique_join((a.notes for a in assets), " | "),
        "replaces_asset_id": _first(a.replaces_asset_id for a in assets),
        "is_edited": any(a.is_edited for a in assets),
        "is_duplicate": False,
        "duplicate_matches": [],
        "is_selected": True,
    })


def merge_with_existing(existing: HoldingSummary, staged: StagedAsset) -> StagedAsset:
    """
    Fold a persisted holding's value into the staged asset. The holding is
    replaced by the staged asset when the batch is finalized.
    """
    name = existing.name if len(existing.name) > len(staged.name) else staged.name
    note = f"Updated from {staged.source_file}"
    notes = f"{staged.notes} | {note}" if staged.notes else note
    remaining = [m for m in staged.duplicate_matches if m.candidate_id != existing.id]

    return staged.model_copy(update={
        "name": name,
        "current_value": staged.current_value + existing.current_value,
        "notes": notes,
        "replaces_asset_id": existing.id,
        "duplicate_matches": remaining,
        "is_duplicate": bool(remaining),
        "is_selected": True,
    })


def _cleared(asset: StagedAsset, selected: bool) -> StagedAsset:
    return asset.model_copy(update={"is_duplicate": False, "duplicate_matches": [], "is_selected": selected})


def apply_duplicate_resolutions(
    staged: list[StagedAsset],
    groups: list[DuplicateGroup],
    decisions: list[DuplicateDecision],
) -> list[StagedAsset]:
    """
    Apply reviewer decisions to duplicate groups and return the whole batch.
    Nothing is removed: dropped members are deselected.
    """
    by_group = {g.id: g for g in groups}
    updated: dict[str, StagedAsset] = {}

    for decision in decisions:
        group = by_group.get(decision.group_id)
        if group is None:
            raise DuplicateDetectionError(f"Unknown duplicate group '{decision.group_id}'")
        members = [updated.get(a.id, a) for a in group.assets]
        action = decision.action

        if action in (DuplicateAction.KEEP_BOTH.value, DuplicateAction.IGNORE.value):
            for member in members:
                updated[member.id] = _cleared(member, selected=True)

        elif action == DuplicateAction.MERGE.value:
            merged = smart_merge(members)
            updated[merged.id] = merged
            for member in members[1:]:
                updated[member.id] = _cleared(member, selected=False)

        elif action == DuplicateAction.DELETE_ONE.value:
            keep = set(decision.asset_ids_to_keep)
            if not keep or not keep <= {m.id for m in members}:
                raise DuplicateDetectionError(
                    f"delete_one for group '{group.id}' must keep at least one of its members"
                )
            for member in members:
                updated[member.id] = _cleared(member, selected=member.id in keep)

        logger.info("duplicate_group_resolved", group_id=group.id, action=action, members=len(members))

    return [updated.get(a.id, a) for a in staged]


def apply_conflict_resolutions(
    staged: list[StagedAsset],
    conflicts: list[AssetConflict],
    decisions: list[ConflictDecision],
) -> list[StagedAsset]:
    """Apply reviewer decisions to staged-vs-holding conflicts and return the whole batch."""
    by_conflict = {c.id: c for c in conflicts}
    current = {a.id: a for a in staged}

    for decision in decisions:
        conflict = by_conflict.get(decision.conflict_id)
        if conflict is None:
            raise DuplicateDetectionError(f"Unknown conflict '{decision.conflict_id}'")

        asset = current[conflict.staged_asset.id]
        existing = conflict.existing
        remaining = [
            m for m in asset.duplicate_matches
            if not (m.candidate_kind == CandidateKind.HOLDING.value and m.candidate_id == existing.id)
        ]
        action = decision.action

        if action == ConflictAction.MERGE_VALUES.value:
            asset = merge_with_existing(existing, asset)
        else:
            update = {"duplicate_matches": remaining, "is_duplicate": bool(remaining)}
            if action == ConflictAction.REPLACE_OLD.value:
                update.update(replaces_asset_id=existing.id, is_selected=True)
            elif action == ConflictAction.KEEP_BOTH.value:
                update.update(is_selected=True)
            elif action == ConflictAction.SKIP_NEW.value:
                update.update(is_selected=False)
            asset = asset.model_copy(update=update)

        current[asset.id] = asset
        logger.info("conflict_resolved", conflict_id=conflict.id, action=action, holding_id=existing.id)

    return [current[a.id] for a in staged]
