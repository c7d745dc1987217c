"""Tests for llm_council/ranking.py."""

from llm_council.models import StageOneResult, StageTwoResult
from llm_council.ranking import aggregate_rankings, assign_labels, label_for_index, parse_ranking


def test_label_for_index_wraps_after_z():
    assert label_for_index(0) == "A"
    assert label_for_index(25) == "Z"
    assert label_for_index(26) == "AA"
    assert label_for_index(27) == "AB"


def test_assign_labels_in_collection_order():
    stage1 = [StageOneResult("m/one", "x"), StageOneResult("m/two", "y"), StageOneResult("m/three", "z")]
    assert assign_labels(stage1) == {
        "Response A": "m/one",
        "Response B": "m/two",
        "Response C": "m/three",
    }


def test_parse_numbered_ranking():
    text = "Response A is fine.\n\nFINAL RANKING:\n1. Response B\n2. Response A"
    assert parse_ranking(text) == ["Response B", "Response A"]


def test_parse_ignores_labels_mentioned_before_marker():
    text = "Response C is weak but Response A shines.\nFINAL RANKING:\n1. Response A\n2. Response C"
    assert parse_ranking(text) == ["Response A", "Response C"]


def test_parse_marker_without_numbers_falls_back_to_label_order():
    text = "FINAL RANKING:\nResponse C, then Response A, and last Response B"
    assert parse_ranking(text) == ["Response C", "Response A", "Response B"]


def test_parse_without_marker_scans_full_text():
    text = "I liked Response B most, Response A second."
    assert parse_ranking(text) == ["Response B", "Response A"]


def test_parse_garbage_returns_empty():
    assert parse_ranking("I refuse to rank these.") == []


def test_parse_filters_unknown_and_duplicate_labels():
    text = "FINAL RANKING:\n1. Response B\n2. Response Z\n3. Response B\n4. Response A"
    assert parse_ranking(text, {"Response A", "Response B"}) == ["Response B", "Response A"]


def test_aggregate_averages_positions():
    label_map = {"Response A": "m/a", "Response B": "m/b"}
    stage2 = [
        StageTwoResult("m/a", "", ["Response B", "Response A"]),
        StageTwoResult("m/b", "", ["Response B", "Response A"]),
    ]
    result = aggregate_rankings(stage2, label_map)
    assert [r.model for r in result] == ["m/b", "m/a"]
    assert result[0].average_rank == 1.0
    assert result[1].average_rank == 2.0
    assert result[0].rankings_count == 2


def test_aggregate_rounds_to_two_decimals():
    label_map = {"Response A": "m/a", "Response B": "m/b"}
    stage2 = [
        StageTwoResult("r1", "", ["Response A", "Response B"]),
        StageTwoResult("r2", "", ["Response A", "Response B"]),
        StageTwoResult("r3", "", ["Response B", "Response A"]),
    ]
    result = {r.model: r for r in aggregate_rankings(stage2, label_map)}
    assert result["m/a"].average_rank == 1.33
    assert result["m/b"].average_rank == 1.67


def test_aggregate_skips_models_nobody_ranked():
    label_map = {"Response A": "m/a", "Response B": "m/b"}
    stage2 = [StageTwoResult("r1", "", ["Response A"])]
    result = aggregate_rankings(stage2, label_map)
    assert [r.model for r in result] == ["m/a"]


def test_aggregate_ties_keep_label_order_and_are_stable():
    label_map = {"Response A": "m/a", "Response B": "m/b"}
    stage2 = [
        StageTwoResult("r1", "", ["Response A", "Response B"]),
        StageTwoResult("r2", "", ["Response B", "Response A"]),
    ]
    first = aggregate_rankings(stage2, label_map)
    second = aggregate_rankings(stage2, label_map)
    assert [r.model for r in first] == ["m/a", "m/b"]
    assert first == second


def test_vote_count_matches_rankings_that_include_label():
    label_map = {"Response A": "m/a", "Response B": "m/b", "Response C": "m/c"}
    stage2 = [
        StageTwoResult("r1", "", ["Response A", "Response C"]),
        StageTwoResult("r2", "", ["Response C"]),
        StageTwoResult("r3", "", []),
    ]
    counts = {r.model: r.rankings_count for r in aggregate_rankings(stage2, label_map)}
    assert counts == {"m/a": 1, "m/c": 2}
