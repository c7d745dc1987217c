"""Tests for llm_council/output.py."""

from pathlib import Path

import pytest

from llm_council.discussion.state import (
    CompletionReason,
    DiscussionConfig,
    DiscussionMessage,
    DiscussionState,
    DiscussionStatus,
    InterventionType,
    UserIntervention,
)
from llm_council.models import (
    AggregateRanking,
    CouncilResult,
    RoundtableTurn,
    StageOneResult,
    StageThreeResult,
    StageTwoResult,
)
from llm_council.output import _slug, save_council_markdown, save_discussion_markdown, save_roundtable_markdown
from llm_council.roles import roles_from_config


def test_slug_basic():
    assert _slug("Should we use YAML or JSON?") == "should-we-use-yaml-or-json"


def test_slug_max_len():
    assert len(_slug("a" * 100)) <= 40


def test_slug_special_chars():
    result = _slug("API vs. SDK (2024)")
    assert "." not in result
    assert "(" not in result
    assert ")" not in result


@pytest.fixture
def council_result() -> CouncilResult:
    return CouncilResult(
        query="Should we use YAML or JSON?",
        stage1=[StageOneResult("openai/gpt-4o", "YAML."), StageOneResult("xai/grok-3", "JSON.")],
        stage2=[
            StageTwoResult(
                "openai/gpt-4o",
                "FINAL RANKING:\n1. Response B\n2. Response A",
                ["Response B", "Response A"],
            )
        ],
        stage3=StageThreeResult("google/gemini-pro", "## Decision\nUse YAML for config."),
        label_to_model={"Response A": "openai/gpt-4o", "Response B": "xai/grok-3"},
        aggregate_rankings=[AggregateRanking("xai/grok-3", 1.0, 1), AggregateRanking("openai/gpt-4o", 2.0, 1)],
    )


def test_save_council_markdown(tmp_path: Path, council_result: CouncilResult):
    saved = save_council_markdown(council_result, tmp_path / "nested" / "output")
    assert saved.exists()
    assert saved.suffix == ".md"
    assert "should-we-use-yaml-or-json" in saved.name

    content = saved.read_text(encoding="utf-8")
    assert "# LLM Council: Should we use YAML or JSON?" in content
    assert "**Chairman:** google/gemini-pro" in content
    assert "Response B (xai/grok-3), Response A (openai/gpt-4o)" in content
    assert "| 1 | xai/grok-3 | 1.00 | 1 |" in content
    assert "## Decision" in content


def test_save_council_markdown_slug_override(tmp_path: Path, council_result: CouncilResult):
    saved = save_council_markdown(council_result, tmp_path, slug_override="inbox-item")
    assert saved.name.endswith("_inbox-item.md")


def test_save_roundtable_markdown(tmp_path: Path):
    turns = [
        RoundtableTurn("t1", "openai/gpt-4o", "gpt-4o", "Tabs.", "2026-01-01T00:00:00+00:00"),
        RoundtableTurn("t2", "xai/grok-3", "grok-3", "Spaces.", "2026-01-01T00:00:01+00:00"),
    ]
    content = save_roundtable_markdown("Tabs or spaces?", turns, tmp_path).read_text(encoding="utf-8")
    assert "# Roundtable: Tabs or spaces?" in content
    assert "**Participants:** openai/gpt-4o, xai/grok-3" in content
    assert content.index("### gpt-4o") < content.index("### grok-3")


def test_save_discussion_markdown_places_interventions(tmp_path: Path, sample_roles):
    state = DiscussionState(
        id="d1",
        config=DiscussionConfig("Ban cars downtown?", roles_from_config(sample_roles, ["optimist", "pessimist"]), max_rounds=3),
    )
    state.messages = [
        DiscussionMessage("m1", 1, "optimist", "Optimist", "openai/gpt-4o", "Cleaner air.", 1.0),
        DiscussionMessage("m2", 1, "pessimist", "Pessimist", "anthropic/claude-sonnet", "Shops suffer.", 2.0),
    ]
    state.interventions = [UserIntervention("i1", InterventionType.CORRECTION, "Footfall rose in Oslo.", 1, 1.5)]
    state.status = DiscussionStatus.COMPLETED
    state.completion_reason = CompletionReason.MAX_ROUNDS

    content = save_discussion_markdown(state, tmp_path).read_text(encoding="utf-8")

    assert "**Outcome:** max_rounds" in content
    assert "Optimist (openai/gpt-4o)" in content
    first = content.index("Cleaner air.")
    note = content.index("> **User (correction):** Footfall rose in Oslo.")
    second = content.index("Shops suffer.")
    assert first < note < second


def test_save_discussion_markdown_shows_error(tmp_path: Path, sample_roles):
    state = DiscussionState(id="d1", config=DiscussionConfig("Topic", roles_from_config(sample_roles)))
    state.status = DiscussionStatus.TERMINATED
    state.error = "No configured provider can serve model 'openai/gpt-4o'"

    content = save_discussion_markdown(state, tmp_path).read_text(encoding="utf-8")

    assert "**Outcome:** terminated" in content
    assert "> Error: No configured provider" in content
