"""
Tests for duplicate detection, grouping and conflict recommendations.
"""

from decimal import Decimal

import pytest

from app.pipeline.duplicate_detector import (
    DuplicateDetectionError, DuplicateDetector, UnionFind, conflict_name_similarity, detect_conflicts,
    duplicate_stats, group_duplicates, match_type_for, name_similarity, recommend_for_conflict,
    recommend_for_group, value_similarity, values_within_tolerance,
)
from app.schemas.contracts import HoldingSummary
from tests.conftest import make_match, make_staged


def holding(holding_id: str, name: str, value: str, source_file: str = "march.csv") -> HoldingSummary:
    return HoldingSummary(id=holding_id, name=name, current_value=Decimal(value), asset_class="equity",
                          asset_subclass="direct_stocks", snapshot_id="snap-1", source_file=source_file)


class TestSimilarity:

    def test_name_ignores_case_punctuation_and_order(self):
        assert name_similarity("Reliance Industries Ltd.", "reliance industries ltd") == 100
        assert name_similarity("Bank HDFC", "HDFC Bank") == 100

    def test_name_different(self):
        assert name_similarity("Infosys", "Wipro") < 50

    def test_value_within_tolerance(self):
        assert value_similarity(Decimal("100"), Decimal("104")) == 100.0

    def test_value_decays_beyond_tolerance(self):
        assert value_similarity(Decimal("90"), Decimal("100")) == pytest.approx(90.0)

    def test_value_floor(self):
        assert value_similarity(Decimal("10"), Decimal("100")) == 0.0

    def test_value_zero(self):
        assert value_similarity(Decimal("0"), Decimal("0")) == 100.0
        assert value_similarity(Decimal("0"), Decimal("5")) == 0.0

    def test_match_types(self):
        assert match_type_for(100, 100) == "exact"
        assert match_type_for(95, 92) == "name_and_value"
        assert match_type_for(88, 100) == "name"

    def test_values_within_tolerance(self):
        assert values_within_tolerance(Decimal("100.00"), Decimal("100.50"))
        assert not values_within_tolerance(Decimal("100"), Decimal("101"))
        assert values_within_tolerance(Decimal("100"), Decimal("101"), tolerance=0.02, mode="relative")


class TestUnionFind:

    def test_transitive(self):
        forest = UnionFind(["a", "b", "c", "d"])
        forest.union("a", "b")
        forest.union("c", "b")
        assert forest.find("a") == forest.find("c")
        assert sorted(map(sorted, forest.groups())) == [["a", "b", "c"], ["d"]]


class TestDetectBatch:

    def test_repeat_within_batch(self):
        staged = [
            make_staged("s1", "Reliance Industries Ltd", "50000", source_file="zerodha.csv"),
            make_staged("s2", "RELIANCE INDUSTRIES LTD.", "50000", source_file="hdfc.csv"),
        ]
        result = DuplicateDetector().detect_batch(staged, [])

        first, second = result
        assert not first.is_duplicate
        assert first.is_selected
        assert second.is_duplicate
        assert not second.is_selected
        match = second.duplicate_matches[0]
        assert match.candidate_id == "s1"
        assert match.candidate_kind == "staged"
        assert match.candidate_source == "zerodha.csv"
        assert match.match_type == "exact"
        assert match.similarity_score == 1.0

    def test_same_name_far_value_is_not_duplicate(self):
        staged = [make_staged("s1", "HDFC Bank", "10000"), make_staged("s2", "HDFC Bank", "30000")]
        result = DuplicateDetector().detect_batch(staged, [])
        assert not any(a.is_duplicate for a in result)

    def test_against_holdings(self):
        staged = [make_staged("s1", "Infosys Ltd", "20000")]
        holdings = [holding("h1", "Infosys Ltd", "18000", source_file="feb.csv"), holding("h2", "Wipro", "20000")]
        result = DuplicateDetector().detect_batch(staged, holdings)

        asset = result[0]
        assert asset.is_duplicate
        assert [m.candidate_id for m in asset.duplicate_matches] == ["h1"]
        match = asset.duplicate_matches[0]
        assert match.candidate_kind == "holding"
        assert match.candidate_source == "feb.csv"
        assert match.match_type == "name_and_value"
        assert match.similarity_score == pytest.approx(0.97)

    def test_matches_sorted_best_first(self):
        staged = [make_staged("s1", "TCS", "20000")]
        holdings = [holding("h1", "TCS", "22000"), holding("h2", "TCS", "20000")]
        result = DuplicateDetector().detect_batch(staged, holdings)
        assert [m.candidate_id for m in result[0].duplicate_matches] == ["h2", "h1"]

    def test_repeated_ids_rejected(self):
        staged = [make_staged("s1", "A", "1"), make_staged("s1", "B", "2")]
        with pytest.raises(DuplicateDetectionError) as exc:
            DuplicateDetector().detect_batch(staged, [])
        assert exc.value.error_code == "DUPLICATE_INPUT_INVALID"

    def test_detect_groups(self):
        staged = [
            make_staged("s1", "Parag Parikh Flexi Cap", "40000"),
            make_staged("s2", "Parag Parikh Flexi Cap", "40500"),
            make_staged("s3", "Gold ETF", "9000"),
        ]
        groups = DuplicateDetector().detect(staged, [])
        assert len(groups) == 1
        assert groups[0].asset_ids == ["s1", "s2"]
        assert groups[0].recommendation == "merge"


class TestGroupDuplicates:

    def test_transitive_grouping(self):
        staged = [
            make_staged("a", "Axis Bluechip", "100"),
            make_staged("b", "Axis Bluechip Fund", "100", is_duplicate=True,
                        duplicate_matches=[make_match("a", "Axis Bluechip", "100")]),
            make_staged("c", "Axis Blue Chip Fund", "100", is_duplicate=True,
                        duplicate_matches=[make_match("b", "Axis Bluechip Fund", "100")]),
            make_staged("d", "Gold", "100"),
        ]
        groups = group_duplicates(staged)
        assert len(groups) == 1
        assert groups[0].id == "group-0"
        assert groups[0].asset_ids == ["a", "b", "c"]

    def test_match_without_id_resolved_by_name_and_value(self):
        staged = [
            make_staged("a", "Nifty Bees", "5000.00"),
            make_staged("b", "Nifty Bees", "5000.40", is_duplicate=True,
                        duplicate_matches=[make_match(None, "Nifty Bees", "5000.00")]),
        ]
        assert group_duplicates(staged)[0].asset_ids == ["a", "b"]

    def test_holding_matches_do_not_group(self):
        staged = [
            make_staged("a", "Infosys", "100", is_duplicate=True,
                        duplicate_matches=[make_match("h1", "Infosys", "100", kind="holding")]),
        ]
        assert group_duplicates(staged) == []


class TestRecommendations:

    @pytest.mark.parametrize("values,expected", [
        (["100", "103"], "merge"),
        (["100", "200"], "keep_both"),
        (["100", "120"], "ask_user"),
    ])
    def test_group(self, values, expected):
        assets = [make_staged(f"s{i}", "X", v) for i, v in enumerate(values)]
        assert recommend_for_group(assets) == expected

    def test_conflict_name_similarity(self):
        assert conflict_name_similarity("HDFC Bank", "hdfc bank") == 100.0
        assert conflict_name_similarity("Infosys", "Infosys Ltd") == 80.0
        assert conflict_name_similarity("HDFC Bank", "HDFC Mid Cap") == 25.0

    @pytest.mark.parametrize("existing_value,expected", [
        ("105", "merge_values"),
        ("115", "merge_values"),
        ("130", "replace_old"),
        ("300", "keep_both"),
    ])
    def test_conflict_by_value_gap(self, existing_value, expected):
        staged = make_staged("s1", "HDFC Bank", "100")
        assert recommend_for_conflict(staged, holding("h1", "HDFC Bank", existing_value)) == expected

    def test_conflict_different_names(self):
        staged = make_staged("s1", "HDFC Bank", "100")
        assert recommend_for_conflict(staged, holding("h1", "ICICI Prudential", "100")) == "keep_both"


class TestConflictsAndStats:

    def test_detect_conflicts(self):
        holdings = [holding("h1", "Infosys Ltd", "18000")]
        staged = DuplicateDetector().detect_batch([make_staged("s1", "Infosys Ltd", "18200")], holdings)
        conflicts = detect_conflicts(staged, holdings)

        assert len(conflicts) == 1
        assert conflicts[0].id == "conflict-s1-h1"
        assert conflicts[0].existing.id == "h1"
        assert conflicts[0].recommendation == "merge_values"

    def test_stats(self):
        holdings = [holding("h1", "Infosys Ltd", "18000")]
        staged = DuplicateDetector().detect_batch([
            make_staged("s1", "Infosys Ltd", "18000"),
            make_staged("s2", "Infosys Ltd", "20000"),
            make_staged("s3", "Gold", "5000"),
        ], holdings)
        stats = duplicate_stats(staged)

        assert stats.total_assets == 3
        assert stats.duplicates_found == 2
        assert stats.exact_duplicates == 1
        assert stats.name_and_value_duplicates == 1
        assert stats.name_only_duplicates == 0
