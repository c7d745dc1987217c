"""Load settings.yaml into typed dataclasses. Checks provider API keys at startup."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"

_VALID_CONSENSUS_MODES = ("heuristic", "combined")
_VALID_STRATEGIES = ("heuristic", "embedding", "llm_judge")


@dataclass
class ProviderConfig:
    name: str
    sdk: str
    api_key_env: str
    timeout_sec: int
    max_tokens: int
    base_url: str | None = None


@dataclass
class CouncilDefaults:
    models: list[str]
    chairman: str
    title_model: str
    timeout_sec: int = 120


@dataclass
class ConsensusConfig:
    mode: str = "heuristic"
    strategies: list[str] = field(default_factory=lambda: ["heuristic"])
    judge_model: str = "openai/gpt-4o-mini"
    embedding_model: str = "openai/text-embedding-3-small"
    embedding_threshold: float = 0.85
    min_messages: int = 6


@dataclass
class RoleConfig:
    id: str
    name: str
    persona: str
    model: str


@dataclass
class DiscussionDefaults:
    max_rounds: int = 20
    consensus_threshold: float = 0.7
    history_window: int = 10
    turn_timeout_sec: int = 120
    roles: list[RoleConfig] = field(default_factory=list)


@dataclass
class InboxConfig:
    dir: Path = Path("./inbox")
    archive_dir: Path = Path("./inbox/archive")


@dataclass
class AppConfig:
    council: CouncilDefaults
    discussion: DiscussionDefaults
    consensus: ConsensusConfig
    providers: dict[str, ProviderConfig]
    data_dir: Path = Path("./data/conversations")
    output_dir: Path = Path("./output")
    gateway: str | None = "openrouter"
    inbox: InboxConfig = field(default_factory=InboxConfig)
    available_providers: set[str] = field(default_factory=set)


def _load_consensus(raw: dict) -> ConsensusConfig:
    mode = str(raw.get("mode", "heuristic"))
    if mode not in _VALID_CONSENSUS_MODES:
        raise ValueError(f"Unknown consensus mode '{mode}', expected one of {_VALID_CONSENSUS_MODES}")
    strategies = [str(s) for s in raw.get("strategies", ["heuristic"])]
    unknown = [s for s in strategies if s not in _VALID_STRATEGIES]
    if unknown:
        raise ValueError(f"Unknown consensus strategies: {', '.join(unknown)}")
    return ConsensusConfig(
        mode=mode,
        strategies=strategies,
        judge_model=str(raw.get("judge_model", "openai/gpt-4o-mini")),
        embedding_model=str(raw.get("embedding_model", "openai/text-embedding-3-small")),
        embedding_threshold=float(raw.get("embedding_threshold", 0.85)),
        min_messages=int(raw.get("min_messages", 6)),
    )


def _load_roles(raw_roles: list[dict]) -> list[RoleConfig]:
    return [
        RoleConfig(
            id=str(r["id"]),
            name=str(r["name"]),
            persona=str(r.get("persona", "")).strip(),
            model=str(r["model"]),
        )
        for r in raw_roles
    ]


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing, ValueError on an
    unknown consensus mode or strategy.
    Logs missing API keys but does not raise: callers check
    available_providers.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    council_raw = raw["council"]
    council = CouncilDefaults(
        models=[str(m) for m in council_raw["models"]],
        chairman=str(council_raw["chairman"]),
        title_model=str(council_raw.get("title_model", council_raw["chairman"])),
        timeout_sec=int(council_raw.get("timeout_sec", 120)),
    )

    discussion_raw = raw.get("discussion", {})
    discussion = DiscussionDefaults(
        max_rounds=int(discussion_raw.get("max_rounds", 20)),
        consensus_threshold=float(discussion_raw.get("consensus_threshold", 0.7)),
        history_window=int(discussion_raw.get("history_window", 10)),
        turn_timeout_sec=int(discussion_raw.get("turn_timeout_sec", 120)),
        roles=_load_roles(raw.get("roles", [])),
    )

    consensus = _load_consensus(raw.get("consensus", {}))

    providers: dict[str, ProviderConfig] = {}
    available_providers: set[str] = set()

    for provider_name, provider_raw in raw["providers"].items():
        providers[provider_name] = ProviderConfig(
            name=provider_name,
            sdk=provider_raw["sdk"],
            api_key_env=provider_raw["api_key_env"],
            timeout_sec=int(provider_raw.get("timeout_sec", council.timeout_sec)),
            max_tokens=int(provider_raw.get("max_tokens", 4096)),
            base_url=provider_raw.get("base_url"),
        )

        api_key = os.environ.get(provider_raw["api_key_env"], "").strip()
        if api_key:
            available_providers.add(provider_name)
            logger.info("Provider available: %s", provider_name)
        else:
            logger.info(
                "Provider skipped (no API key): %s, set %s in .env",
                provider_name,
                provider_raw["api_key_env"],
            )

    paths_raw = raw.get("paths", {})
    inbox_raw = raw.get("inbox", {})

    return AppConfig(
        council=council,
        discussion=discussion,
        consensus=consensus,
        providers=providers,
        data_dir=Path(paths_raw.get("data_dir", "./data/conversations")),
        output_dir=Path(paths_raw.get("output_dir", "./output")),
        gateway=raw.get("gateway"),
        inbox=InboxConfig(
            dir=Path(inbox_raw.get("dir", "./inbox")),
            archive_dir=Path(inbox_raw.get("archive_dir", "./inbox/archive")),
        ),
        available_providers=available_providers,
    )
