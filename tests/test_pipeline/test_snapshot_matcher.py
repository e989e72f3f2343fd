"""
Tests for snapshot matching, naming and file grouping.
"""

from datetime import date, datetime

import pytest

from app.pipeline.snapshot_matcher import (
    SnapshotMatchError, coerce_date, find_nearby_snapshots, format_date_range, generate_snapshot_name,
    group_files_by_statement_date, match, primary_group,
)
from app.schemas.contracts import StatementDateResult
from app.schemas.records import SnapshotRecord


def snapshot(snapshot_id: str, statement_date) -> SnapshotRecord:
    return SnapshotRecord(id=snapshot_id, user_id="user-1", snapshot_date=datetime(2024, 4, 1),
                          statement_date=statement_date)


@pytest.fixture
def snapshots():
    return [
        snapshot("snap-feb", date(2024, 2, 29)),
        snapshot("snap-mar", date(2024, 3, 31)),
        snapshot("snap-undated", None),
    ]


def dated(file_name: str, value) -> tuple[str, StatementDateResult]:
    return file_name, StatementDateResult(date=value, confidence="high", source="document_content")


class TestCoerceDate:

    def test_accepts_dates_and_iso_strings(self):
        assert coerce_date(date(2024, 3, 31)) == date(2024, 3, 31)
        assert coerce_date(datetime(2024, 3, 31, 18, 0)) == date(2024, 3, 31)
        assert coerce_date(" 2024-03-31 ") == date(2024, 3, 31)

    @pytest.mark.parametrize("value", ["31/03/2024", "", None, 20240331])
    def test_rejects_everything_else(self, value):
        with pytest.raises(SnapshotMatchError) as exc:
            coerce_date(value)
        assert exc.value.error_code == "INVALID_STATEMENT_DATE"


class TestMatch:

    def test_exact(self, snapshots):
        result = match(snapshots, date(2024, 3, 31))
        assert result.match_type == "exact"
        assert result.matched_snapshot_id == "snap-mar"
        assert result.days_difference == 0
        assert result.suggested_action == "merge"

    def test_close(self, snapshots):
        result = match(snapshots, "2024-04-10")
        assert result.match_type == "close"
        assert result.matched_snapshot_id == "snap-mar"
        assert result.days_difference == 10
        assert result.suggested_action == "prompt"

    def test_boundary_is_close(self, snapshots):
        assert match(snapshots, date(2024, 4, 15)).match_type == "close"
        assert match(snapshots, date(2024, 4, 16)).match_type == "none"

    def test_far(self, snapshots):
        result = match(snapshots, date(2024, 6, 30))
        assert result.match_type == "none"
        assert result.matched_snapshot_id is None
        assert result.suggested_action == "create_new"

    def test_no_snapshots(self):
        assert match([], date(2024, 3, 31)).match_type == "none"

    def test_invalid_date_degrades(self, snapshots):
        result = match(snapshots, "March 31st")
        assert result.match_type == "none"
        assert result.suggested_action == "create_new"


class TestFindNearbySnapshots:

    def test_nearest_first(self, snapshots):
        result = find_nearby_snapshots(snapshots, date(2024, 3, 20), tolerance_days=30)
        assert result.nearby_snapshot_ids == ["snap-mar", "snap-feb"]
        assert result.suggested_merge_id == "snap-mar"
        assert result.days_to_nearest == 11

    def test_default_tolerance(self, snapshots):
        result = find_nearby_snapshots(snapshots, date(2024, 3, 20))
        assert result.nearby_snapshot_ids == ["snap-mar"]

    def test_nothing_close(self, snapshots):
        result = find_nearby_snapshots(snapshots, date(2023, 1, 1))
        assert result.nearby_snapshot_ids == []
        assert result.suggested_merge_id is None
        assert result.days_to_nearest == 424

    def test_invalid_date(self, snapshots):
        result = find_nearby_snapshots(snapshots, "soon")
        assert result.nearby_snapshot_ids == []
        assert result.days_to_nearest is None


class TestNaming:

    def test_single_date(self):
        assert generate_snapshot_name(date(2024, 11, 30)) == "November 2024"

    def test_short_range_in_one_month(self):
        name = generate_snapshot_name(date(2024, 11, 30), (date(2024, 11, 28), date(2024, 11, 30)))
        assert name == "November 28-30, 2024"

    def test_long_range_uses_end_month(self):
        assert generate_snapshot_name("2024-11-30", ("2024-11-01", "2024-11-30")) == "November 2024"

    def test_range_across_months(self):
        assert generate_snapshot_name("2024-12-02", ("2024-11-29", "2024-12-02")) == "December 2024"

    def test_invalid(self):
        assert generate_snapshot_name("someday") == "Untitled Snapshot"

    def test_format_date_range(self):
        assert format_date_range(date(2024, 11, 28), date(2024, 11, 30)) == "Nov 28-30"
        assert format_date_range("2024-11-28", "2024-12-01") == "Nov 28 - Dec 01"
        assert format_date_range("bad", "2024-12-01") == ""


class TestGroupFiles:

    def test_groups_close_dates(self, snapshots):
        files = [
            dated("zerodha.csv", date(2024, 3, 31)),
            dated("cams.pdf", date(2024, 3, 28)),
            dated("fd.pdf", date(2024, 6, 30)),
            ("mystery.xlsx", StatementDateResult(source="filename")),
        ]
        groups = group_files_by_statement_date(files, snapshots)

        assert [g.file_names for g in groups] == [["zerodha.csv", "cams.pdf"], ["fd.pdf"]]
        assert groups[0].statement_date == date(2024, 3, 31)
        assert groups[0].suggested_snapshot_name == "March 28-31, 2024"
        assert groups[0].date_label == "Mar 28-31"
        assert groups[0].match.match_type == "exact"
        assert groups[1].suggested_snapshot_name == "June 2024"
        assert groups[1].date_label == "Jun 30, 2024"
        assert groups[1].match.match_type == "none"

    def test_first_fit_against_anchor(self):
        files = [
            dated("a.csv", date(2024, 3, 1)),
            dated("b.csv", date(2024, 3, 7)),
            dated("c.csv", date(2024, 3, 12)),
        ]
        groups = group_files_by_statement_date(files, [])
        assert [g.file_names for g in groups] == [["a.csv", "b.csv"], ["c.csv"]]
        assert [g.date_label for g in groups] == ["Mar 01-07", "Mar 12, 2024"]

    def test_primary_group(self, snapshots):
        groups = group_files_by_statement_date([
            dated("fd.pdf", date(2024, 6, 30)),
            dated("zerodha.csv", date(2024, 3, 31)),
            dated("cams.pdf", date(2024, 3, 29)),
        ], snapshots)
        assert primary_group(groups).file_names == ["zerodha.csv", "cams.pdf"]
        assert primary_group([]) is None
