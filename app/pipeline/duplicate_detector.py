"""
Duplicate detection across a staged batch and the user's persisted holdings.

Scoring:
    name   = Levenshtein ratio of normalised, token-sorted names (0-100)
    value  = 100 within the value tolerance, then falls 2 points per extra %
    score  = 0.7 * name + 0.3 * value

A pair is a duplicate when both name and score reach the threshold (85).
Grouping is transitive (union-find keyed by staged id), so A~B and B~C put
A, B and C in one group.
"""

import re
from decimal import Decimal
from typing import Iterable, Optional

import structlog
from rapidfuzz.distance import Levenshtein

from app.config import settings
from app.models.enums import (
    CandidateKind, ConflictAction, DuplicateRecommendation, MatchType,
)
from app.observability.metrics import duplicates_detected_total
from app.schemas.assets import DuplicateMatch, StagedAsset
from app.schemas.contracts import AssetConflict, DuplicateGroup, DuplicateStats, HoldingSummary

logger = structlog.get_logger(__name__)

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")

TOLERANCE_ABSOLUTE = "absolute"
TOLERANCE_RELATIVE = "relative"


class DuplicateDetectionError(Exception):
    """Staged input is malformed (missing or repeated ids)."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
        self.error_code = "DUPLICATE_INPUT_INVALID"


# ─── Similarity ───────────────────────────────────────────────

def normalize_name(name: str) -> str:
    return _NON_ALNUM.sub("", name.lower()).strip()


def name_similarity(a: str, b: str) -> float:
    """0-100. Word order does not matter."""
    sorted_a = " ".join(sorted(normalize_name(a).split()))
    sorted_b = " ".join(sorted(normalize_name(b).split()))
    return Levenshtein.normalized_similarity(sorted_a, sorted_b) * 100


def value_similarity(a: Decimal, b: Decimal, tolerance_pct: Optional[float] = None) -> float:
    """0-100, relative to the larger value."""
    tolerance_pct = settings.DUPLICATE_VALUE_TOLERANCE_PCT if tolerance_pct is None else tolerance_pct
    a, b = float(a), float(b)
    if a == 0 or b == 0:
        return 100.0 if a == b else 0.0

    pct = abs(a - b) / max(a, b) * 100
    if pct <= tolerance_pct:
        return 100.0
    return max(0.0, 100 - (pct - tolerance_pct) * 2)


def match_type_for(name_score: float, value_score: float) -> MatchType:
    if name_score == 100 and value_score == 100:
        return MatchType.EXACT
    if name_score >= 90 and value_score >= 90:
        return MatchType.NAME_AND_VALUE
    return MatchType.NAME


def values_within_tolerance(
    a: Decimal,
    b: Decimal,
    tolerance: Optional[float] = None,
    mode: Optional[str] = None,
) -> bool:
    """Used to find the record a match points at when the match carries no id."""
    tolerance = settings.DUPLICATE_MATCH_VALUE_TOLERANCE if tolerance is None else tolerance
    mode = mode or settings.DUPLICATE_MATCH_TOLERANCE_MODE
    diff = abs(float(a) - float(b))
    if mode == TOLERANCE_RELATIVE:
        return diff <= tolerance * max(float(a), float(b))
    return diff < tolerance


def recommend_for_group(assets: list[StagedAsset]) -> DuplicateRecommendation:
    """Value spread across the group: <=5% merge, >50% keep both, otherwise ask."""
    if len(assets) < 2:
        return DuplicateRecommendation.KEEP_BOTH

    values = [a.current_value for a in assets]
    avg = sum(values) / len(values)
    if avg == 0:
        return DuplicateRecommendation.ASK_USER
    spread_pct = (max(values) - min(values)) / avg * 100

    if spread_pct <= 5:
        return DuplicateRecommendation.MERGE
    if spread_pct > 50:
        return DuplicateRecommendation.KEEP_BOTH
    return DuplicateRecommendation.ASK_USER


# ─── Conflicts ────────────────────────────────────────────────

def conflict_name_similarity(a: str, b: str) -> float:
    """Coarse 0-100: equal 100, containment 80, else word overlap."""
    compact_a = re.sub(r"[^a-z0-9]", "", a.lower())
    compact_b = re.sub(r"[^a-z0-9]", "", b.lower())
    if compact_a == compact_b:
        return 100.0
    if compact_a in compact_b or compact_b in compact_a:
        return 80.0

    tokens_a = set(normalize_name(a).split())
    tokens_b = set(normalize_name(b).split())
    union = tokens_a | tokens_b
    if not union:
        return 0.0
    return len(tokens_a & tokens_b) / len(union) * 100


def recommend_for_conflict(staged: StagedAsset, existing: HoldingSummary) -> ConflictAction:
    if conflict_name_similarity(staged.name, existing.name) < 70:
        return ConflictAction.KEEP_BOTH

    avg = (staged.current_value + existing.current_value) / 2
    diff_pct = abs(staged.current_value - existing.current_value) / avg * 100 if avg else Decimal(0)

    if diff_pct <= 10:
        return ConflictAction.MERGE_VALUES
    if 20 < diff_pct <= 50:
        return ConflictAction.REPLACE_OLD
    if diff_pct > 50:
        return ConflictAction.KEEP_BOTH
    return ConflictAction.MERGE_VALUES


# ─── Union-Find ───────────────────────────────────────────────

class UnionFind:
    """Disjoint sets over string keys, with path compression and union by rank."""

    def __init__(self, keys: Iterable[str] = ()):
        self._parent: dict[str, str] = {}
        self._rank: dict[str, int] = {}
        for key in keys:
            self.add(key)

    def add(self, key: str) -> None:
        if key not in self._parent:
            self._parent[key] = key
            self._rank[key] = 0

    def find(self, key: str) -> str:
        root = key
        while self._parent[root] != root:
            root = self._parent[root]
        while self._parent[key] != root:
            self._parent[key], key = root, self._parent[key]
        return root

    def union(self, a: str, b: str) -> None:
        root_a, root_b = self.find(a), self.find(b)
        if root_a == root_b:
            return
        if self._rank[root_a] < self._rank[root_b]:
            root_a, root_b = root_b, root_a
        self._parent[root_b] = root_a
        if self._rank[root_a] == self._rank[root_b]:
            self._rank[root_a] += 1

    def groups(self) -> list[list[str]]:
        """Members per set, in insertion order of their first member."""
        by_root: dict[str, list[str]] = {}
        for key in self._parent:
            by_root.setdefault(self.find(key), []).append(key)
        return list(by_root.values())


# ─── Detector ─────────────────────────────────────────────────

class DuplicateDetector:

    def __init__(
        self,
        similarity_threshold: Optional[float] = None,
        value_tolerance_pct: Optional[float] = None,
        name_weight: Optional[float] = None,
        value_weight: Optional[float] = None,
    ):
        self.similarity_threshold = (
            settings.DUPLICATE_SIMILARITY_THRESHOLD if similarity_threshold is None else similarity_threshold
        )
        self.value_tolerance_pct = (
            settings.DUPLICATE_VALUE_TOLERANCE_PCT if value_tolerance_pct is None else value_tolerance_pct
        )
        self.name_weight = settings.DUPLICATE_NAME_WEIGHT if name_weight is None else name_weight
        self.value_weight = settings.DUPLICATE_VALUE_WEIGHT if value_weight is None else value_weight

    def compare(self, name_a: str, value_a: Decimal, name_b: str, value_b: Decimal) -> Optional[tuple[float, MatchType]]:
        """(score 0-1, match type) when the pair is a duplicate, else None."""
        name_score = name_similarity(name_a, name_b)
        if name_score < self.similarity_threshold:
            return None

        value_score = value_similarity(value_a, value_b, self.value_tolerance_pct)
        score = name_score * self.name_weight + value_score * self.value_weight
        if score < self.similarity_threshold:
            return None

        return round(score / 100, 4), match_type_for(name_score, value_score)

    def matches_for(self, asset: StagedAsset, holdings: list[HoldingSummary]) -> list[DuplicateMatch]:
        matches = []
        for holding in holdings:
            compared = self.compare(asset.name, asset.current_value, holding.name, holding.current_value)
            if compared is None:
                continue
            score, match_type = compared
            matches.append(DuplicateMatch(
                candidate_id=holding.id,
                candidate_name=holding.name,
                candidate_value=holding.current_value,
                candidate_source=holding.source_file or "Unknown",
                candidate_kind=CandidateKind.HOLDING,
                similarity_score=score,
                match_type=match_type,
            ))
        return matches

    def detect_batch(self, staged: list[StagedAsset], holdings: list[HoldingSummary]) -> list[StagedAsset]:
        """
        Compare each asset with the persisted holdings and with the assets
        before it in the batch. Duplicates start deselected.
        """
        validate_staged(staged)
        result: list[StagedAsset] = []

        for asset in staged:
            matches = self.matches_for(asset, holdings)

            for earlier in result:
                compared = self.compare(asset.name, asset.current_value, earlier.name, earlier.current_value)
                if compared is None:
                    continue
                score, match_type = compared
                matches.append(DuplicateMatch(
                    candidate_id=earlier.id,
                    candidate_name=earlier.name,
                    candidate_value=earlier.current_value,
                    candidate_source=earlier.source_file or "Current upload",
                    candidate_kind=CandidateKind.STAGED,
                    similarity_score=score,
                    match_type=match_type,
                ))

            matches.sort(key=lambda m: m.similarity_score, reverse=True)
            is_duplicate = bool(matches)
            if is_duplicate:
                duplicates_detected_total.labels(match_type=matches[0].match_type).inc()

            result.append(asset.model_copy(update={
                "is_duplicate": is_duplicate,
                "duplicate_matches": matches,
                "is_selected": not is_duplicate,
            }))

        logger.info("duplicates_detected", assets=len(result), holdings=len(holdings),
                    duplicates=sum(1 for a in result if a.is_duplicate))
        return result

    def detect(self, staged: list[StagedAsset], holdings: list[HoldingSummary]) -> list[DuplicateGroup]:
        """Fresh matches for the batch, grouped."""
        return group_duplicates(self.detect_batch(staged, holdings))


def validate_staged(staged: list[StagedAsset]) -> None:
    seen: set[str] = set()
    for asset in staged:
        if not asset.id:
            raise DuplicateDetectionError(f"Staged asset '{asset.name}' has no id")
        if asset.id in seen:
            raise DuplicateDetectionError(f"Staged asset id '{asset.id}' appears more than once")
        seen.add(asset.id)


def _resolve_staged_candidate(match: DuplicateMatch, asset: StagedAsset,
                              staged: list[StagedAsset], ids: set[str]) -> Optional[str]:
    if match.candidate_id:
        return match.candidate_id if match.candidate_id in ids else None
    for other in staged:
        if other.id == asset.id:
            continue
        if other.name == match.candidate_name and values_within_tolerance(other.current_value, match.candidate_value):
            return other.id
    return None


def group_duplicates(staged: list[StagedAsset]) -> list[DuplicateGroup]:
    """
    Transitive groups from the duplicate matches already on the staged assets.
    Matches pointing at persisted holdings are conflicts, not group members.
    Groups of one are dropped.
    """
    validate_staged(staged)
    ids = {a.id for a in staged}
    forest = UnionFind(a.id for a in staged)

    for asset in staged:
        if not asset.is_duplicate:
            continue
        for match in asset.duplicate_matches:
            if match.candidate_kind == CandidateKind.HOLDING.value:
                continue
            other_id = _resolve_staged_candidate(match, asset, staged, ids)
            if other_id is not None:
                forest.union(asset.id, other_id)

    by_id = {a.id: a for a in staged}
    groups: list[DuplicateGroup] = []
    for member_ids in forest.groups():
        if len(member_ids) < 2:
            continue
        members = [by_id[i] for i in member_ids]
        groups.append(DuplicateGroup(
            id=f"group-{len(groups)}",
            assets=members,
            recommendation=recommend_for_group(members),
        ))
    return groups


def detect_conflicts(staged: list[StagedAsset], holdings: list[HoldingSummary]) -> list[AssetConflict]:
    """One conflict per (staged asset, persisted holding) match."""
    by_id = {h.id: h for h in holdings}
    conflicts: list[AssetConflict] = []

    for asset in staged:
        if not asset.is_duplicate:
            continue
        for match in asset.duplicate_matches:
            if match.candidate_kind != CandidateKind.HOLDING.value:
                continue
            existing = by_id.get(match.candidate_id) if match.candidate_id else None
            if existing is None:
                existing = next(
                    (h for h in holdings
                     if h.name == match.candidate_name
                     and values_within_tolerance(h.current_value, match.candidate_value)),
                    None,
                )
            if existing is None:
                continue
            conflicts.append(AssetConflict(
                id=f"conflict-{asset.id}-{existing.id}",
                staged_asset=asset,
                existing=existing,
                recommendation=recommend_for_conflict(asset, existing),
            ))

    return conflicts


def duplicate_stats(staged: list[StagedAsset]) -> DuplicateStats:
    """Counts by the type of each duplicate's best match."""
    duplicates = [a for a in staged if a.is_duplicate]

    def best_is(match_type: MatchType) -> int:
        return sum(1 for a in duplicates if a.duplicate_matches and a.duplicate_matches[0].match_type == match_type.value)

    return DuplicateStats(
        total_assets=len(staged),
        duplicates_found=len(duplicates),
        exact_duplicates=best_is(MatchType.EXACT),
        name_and_value_duplicates=best_is(MatchType.NAME_AND_VALUE),
        name_only_duplicates=best_is(MatchType.NAME),
    )
