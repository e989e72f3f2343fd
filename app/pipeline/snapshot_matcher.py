"""
Snapshot matcher.
Decides whether a batch dated D should merge into an existing snapshot or
become a new one, from the day distance to the user's dated snapshots:

    0 days         -> exact, merge
    <= 15 days     -> close, prompt the user
    further / none -> none, create new
"""

from datetime import date, datetime
from typing import Optional, Union

import structlog

from app.config import settings
from app.models.enums import SnapshotMatchType, SuggestedAction
from app.observability.metrics import snapshot_matches_total
from app.schemas.contracts import FileDateGroup, NearbySnapshots, SnapshotMatchResult, StatementDateResult
from app.schemas.records import SnapshotRecord

logger = structlog.get_logger(__name__)

UNTITLED_SNAPSHOT = "Untitled Snapshot"

DateInput = Union[date, str, None]


class SnapshotMatchError(Exception):
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
        self.error_code = "INVALID_STATEMENT_DATE"


def coerce_date(value: DateInput) -> date:
    """A date, or an ISO YYYY-MM-DD string. Raises SnapshotMatchError otherwise."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip())
        except ValueError as e:
            raise SnapshotMatchError(f"Invalid statement date '{value}'") from e
    raise SnapshotMatchError(f"Invalid statement date {value!r}")


def _distances(snapshots: list[SnapshotRecord], target: date) -> list[tuple[int, SnapshotRecord]]:
    dated = [(abs((target - s.statement_date).days), s) for s in snapshots if s.statement_date]
    return sorted(dated, key=lambda pair: pair[0])


def find_nearby_snapshots(
    snapshots: list[SnapshotRecord],
    statement_date: DateInput,
    tolerance_days: Optional[int] = None,
) -> NearbySnapshots:
    """Dated snapshots within the tolerance, nearest first."""
    tolerance_days = settings.SNAPSHOT_CLOSE_MATCH_DAYS if tolerance_days is None else tolerance_days
    try:
        target = coerce_date(statement_date)
    except SnapshotMatchError:
        return NearbySnapshots()

    ranked = _distances(snapshots, target)
    if not ranked:
        return NearbySnapshots()

    nearest_days, nearest = ranked[0]
    return NearbySnapshots(
        nearby_snapshot_ids=[s.id for days, s in ranked if days <= tolerance_days],
        suggested_merge_id=nearest.id if nearest_days <= tolerance_days else None,
        days_to_nearest=nearest_days,
    )


def match(snapshots: list[SnapshotRecord], statement_date: DateInput) -> SnapshotMatchResult:
    """Exact, close or none. An invalid date degrades to none."""
    none = SnapshotMatchResult(match_type=SnapshotMatchType.NONE, suggested_action=SuggestedAction.CREATE_NEW)

    try:
        target = coerce_date(statement_date)
    except SnapshotMatchError as e:
        logger.warning("snapshot_match_invalid_date", error=e.message)
        snapshot_matches_total.labels(match_type=SnapshotMatchType.NONE.value).inc()
        return none

    nearby = find_nearby_snapshots(snapshots, target, settings.SNAPSHOT_CLOSE_MATCH_DAYS)
    days = nearby.days_to_nearest

    if days is None or days > settings.SNAPSHOT_CLOSE_MATCH_DAYS:
        result = none
    elif days == settings.SNAPSHOT_EXACT_MATCH_DAYS:
        result = SnapshotMatchResult(
            match_type=SnapshotMatchType.EXACT,
            matched_snapshot_id=nearby.suggested_merge_id,
            days_difference=0,
            suggested_action=SuggestedAction.MERGE,
        )
    else:
        result = SnapshotMatchResult(
            match_type=SnapshotMatchType.CLOSE,
            matched_snapshot_id=nearby.suggested_merge_id,
            days_difference=days,
            suggested_action=SuggestedAction.PROMPT,
        )

    snapshot_matches_total.labels(match_type=result.match_type).inc()
    logger.debug("snapshot_matched", statement_date=target.isoformat(), match_type=result.match_type,
                 days=result.days_difference, snapshot_id=result.matched_snapshot_id)
    return result


def generate_snapshot_name(
    statement_date: DateInput,
    date_range: Optional[tuple[DateInput, DateInput]] = None,
) -> str:
    """
    "November 2024" for a single date; "November 28-30, 2024" for a short
    range inside one month; otherwise the month of the range end.
    """
    try:
        single = coerce_date(statement_date)
    except SnapshotMatchError:
        return UNTITLED_SNAPSHOT

    if date_range is None:
        return single.strftime("%B %Y")

    try:
        start, end = coerce_date(date_range[0]), coerce_date(date_range[1])
    except SnapshotMatchError:
        return single.strftime("%B %Y")

    if start == end:
        return end.strftime("%B %Y")

    days = abs((end - start).days)
    if start.month == end.month and days <= settings.SNAPSHOT_GROUPING_TOLERANCE_DAYS:
        return f"{start.strftime('%B %d')}-{end.strftime('%d, %Y')}"

    return end.strftime("%B %Y")


def format_date_range(start_date: DateInput, end_date: DateInput) -> str:
    """"Nov 28-30" inside one month, "Nov 28 - Dec 01" across months. Empty when invalid."""
    try:
        start, end = coerce_date(start_date), coerce_date(end_date)
    except SnapshotMatchError:
        return ""

    if start.month == end.month:
        return f"{start.strftime('%b %d')}-{end.strftime('%d')}"
    return f"{start.strftime('%b %d')} - {end.strftime('%b %d')}"


def group_files_by_statement_date(
    files: list[tuple[str, StatementDateResult]],
    snapshots: list[SnapshotRecord],
) -> list[FileDateGroup]:
    """
    First-fit grouping: a file joins the first group whose anchor date is
    within the grouping tolerance. Each group is matched on its anchor date.
    Files without a date are left out.
    """
    tolerance = settings.SNAPSHOT_GROUPING_TOLERANCE_DAYS
    groups: list[dict] = []

    for file_name, result in files:
        if result.date is None:
            continue

        home = next((g for g in groups if abs((result.date - g["anchor"]).days) <= tolerance), None)
        if home is not None:
            home["files"].append((file_name, result.date))
            continue

        groups.append({
            "anchor": result.date,
            "files": [(file_name, result.date)],
            "match": match(snapshots, result.date),
        })

    out: list[FileDateGroup] = []
    for g in groups:
        dates = sorted(d for _, d in g["files"])
        if dates[0] == dates[-1]:
            name = generate_snapshot_name(g["anchor"])
            label = g["anchor"].strftime("%b %d, %Y")
        else:
            name = generate_snapshot_name(dates[-1], (dates[0], dates[-1]))
            label = format_date_range(dates[0], dates[-1])
        out.append(FileDateGroup(
            statement_date=g["anchor"],
            file_names=[f for f, _ in g["files"]],
            date_label=label,
            suggested_snapshot_name=name,
            match=g["match"],
        ))
    return out


def primary_group(groups: list[FileDateGroup]) -> Optional[FileDateGroup]:
    """The group with the most files; the earliest one on ties."""
    if not groups:
        return None
    return max(groups, key=lambda g: len(g.file_names))
