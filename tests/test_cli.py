"""Tests for llm_council/cli.py: intervention parsing, provider wiring and the click commands."""

import pytest
from click.testing import CliRunner

import llm_council.cli as cli
from llm_council.discussion.state import InterventionType
from llm_council.invoker import ModelProvider
from llm_council.providers.openai_provider import OpenAIProvider
from llm_council.storage import ConversationStore


@pytest.mark.parametrize(
    "line, expected",
    [
        ("Talk about costs", (InterventionType.REDIRECT, "Talk about costs")),
        ("/redirect Back to hiring", (InterventionType.REDIRECT, "Back to hiring")),
        ("/correct It was 2019, not 2021", (InterventionType.CORRECTION, "It was 2019, not 2021")),
        ("/DEEP  the second option ", (InterventionType.DEEP_DIVE, "the second option")),
        ("/stop", (InterventionType.TERMINATE, "The user ended the discussion.")),
        ("/stop enough", (InterventionType.TERMINATE, "enough")),
    ],
)
def test_parse_intervention(line, expected):
    assert cli.parse_intervention(line) == expected


@pytest.mark.parametrize("line", ["/shout hello", "/correct", "/redirect   "])
def test_parse_intervention_rejects(line):
    with pytest.raises(ValueError):
        cli.parse_intervention(line)


def test_build_invoker_uses_available_providers(sample_app_config, monkeypatch):
    monkeypatch.setenv("OPENROUTER_API_KEY", "test-key")
    invoker = cli.build_invoker(sample_app_config)

    providers = invoker.providers
    assert list(providers) == [ModelProvider.OPENROUTER]
    assert isinstance(providers[ModelProvider.OPENROUTER], OpenAIProvider)
    # unconfigured providers route through the gateway
    assert invoker.resolve_id("anthropic/claude-sonnet").model == "anthropic/claude-sonnet"


def test_build_invoker_skips_provider_without_key(sample_app_config, monkeypatch):
    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
    invoker = cli.build_invoker(sample_app_config)
    assert invoker.providers == {}
    assert invoker.resolve_id("openai/gpt-4o") is None


@pytest.fixture
def run_cli(sample_app_config, invoker, monkeypatch):
    monkeypatch.setattr(cli, "load_dotenv", lambda: None)
    monkeypatch.setattr(cli, "load_config", lambda: sample_app_config)
    monkeypatch.setattr(cli, "build_invoker", lambda config: invoker)
    runner = CliRunner()

    def _run(*args: str):
        return runner.invoke(cli.main, list(args))

    return _run


def test_ask_writes_transcript_and_conversation(run_cli, sample_app_config):
    result = run_cli("ask", "Should we use YAML or JSON?", "--skip-health-check")

    assert result.exit_code == 0, result.output
    transcripts = list(sample_app_config.output_dir.glob("*should-we-use-yaml-or-json.md"))
    assert len(transcripts) == 1
    assert "Stage 3: Synthesis" in transcripts[0].read_text(encoding="utf-8")
    stored = ConversationStore(sample_app_config.data_dir).list_conversations()
    assert [c.message_count for c in stored] == [2]


def test_roundtable_command(run_cli, sample_app_config):
    result = run_cli("roundtable", "Tabs or spaces?", "--models", "openai/gpt-4o,xai/grok-3", "--skip-health-check")

    assert result.exit_code == 0, result.output
    transcript = next(sample_app_config.output_dir.glob("*tabs-or-spaces.md"))
    assert "**Participants:** openai/gpt-4o, xai/grok-3" in transcript.read_text(encoding="utf-8")


def test_discuss_command(run_cli, sample_app_config):
    result = run_cli(
        "discuss", "Ban cars downtown?", "--roles", "optimist,pragmatist", "--max-rounds", "1", "--skip-health-check"
    )

    assert result.exit_code == 0, result.output
    content = next(sample_app_config.output_dir.glob("*ban-cars-downtown.md")).read_text(encoding="utf-8")
    assert "**Outcome:** max_rounds" in content
    assert "Round 1: Optimist" in content
    assert "Pessimist" not in content


def test_discuss_unknown_role_exits(run_cli):
    result = run_cli("discuss", "Topic", "--roles", "wizard", "--skip-health-check")
    assert result.exit_code == 1
    assert "Unknown role" in result.output


def test_health_reports_failures(run_cli, gateway):
    gateway.failing.add("google/gemini-pro")
    result = run_cli("health")
    assert result.exit_code == 1
    assert "FAIL" in result.output


def test_health_all_ok(run_cli):
    result = run_cli("health")
    assert result.exit_code == 0, result.output
    assert "FAIL" not in result.output


def test_history_empty(run_cli):
    result = run_cli("history")
    assert result.exit_code == 0
    assert "No conversations yet." in result.output


def test_history_show_missing(run_cli):
    result = run_cli("history", "--show", "nope")
    assert result.exit_code == 1
    assert "not found" in result.output


def test_inbox_processes_and_archives(run_cli, sample_app_config):
    inbox_dir = sample_app_config.inbox.dir
    inbox_dir.mkdir(parents=True)
    (inbox_dir / "city-cars.md").write_text(
        "---\nmode: discussion\nroles: optimist\nmax_rounds: 1\n---\nBan cars downtown?\n", encoding="utf-8"
    )
    (inbox_dir / "broken.md").write_text("---\nmode: debate\n---\nWhatever\n", encoding="utf-8")

    result = run_cli("inbox")

    assert result.exit_code == 0, result.output
    archived = sorted(p.name for p in sample_app_config.inbox.archive_dir.iterdir())
    assert any(name.endswith("_city-cars.md") and not name.startswith("FAILED_") for name in archived)
    assert any(name.startswith("FAILED_") and name.endswith("_broken.md") for name in archived)
    assert list(sample_app_config.output_dir.glob("*_city-cars.md"))
    assert not list(inbox_dir.glob("*.md"))


def test_inbox_empty(run_cli):
    result = run_cli("inbox")
    assert result.exit_code == 0
    assert "No files in inbox." in result.output


def test_config_error_exits(sample_app_config, monkeypatch):
    def broken():
        raise FileNotFoundError("settings.yaml not found")

    monkeypatch.setattr(cli, "load_dotenv", lambda: None)
    monkeypatch.setattr(cli, "load_config", broken)
    result = CliRunner().invoke(cli.main, ["history"])
    assert result.exit_code == 1
    assert "Config error" in result.output
