"""Shared pytest fixtures."""

from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from config.config_loader import (
    AppConfig,
    ConsensusConfig,
    CouncilDefaults,
    DiscussionDefaults,
    InboxConfig,
    ProviderConfig,
    RoleConfig,
)
from llm_council.invoker import ModelInvoker, ModelProvider
from llm_council.models import ModelResponse
from llm_council.providers.base import AIProvider, ProviderError
from llm_council.storage import ConversationStore

COUNCIL_MODELS = ["openai/gpt-4o", "anthropic/claude-sonnet", "google/gemini-pro"]


class MockProvider(AIProvider):
    """Test double AIProvider.

    replies maps a wire model name to its reply. A list is consumed one item
    per call and its last item repeats. A callable is called with
    (model, messages, system_prompt) and returns the reply text.
    """

    def __init__(
        self,
        provider_name: str = "mock",
        replies: dict | None = None,
        default: str = "Mock response",
        failing: set[str] | None = None,
        embeddings: dict[str, list[float]] | None = None,
    ) -> None:
        self._name = provider_name
        self.replies = dict(replies or {})
        self.default = default
        self.failing = set(failing or ())
        self.embeddings = embeddings
        # Shadow the class method with an AsyncMock at the instance level so
        # tests can inspect calls; the ABC check passes on the class body.
        self.generate = AsyncMock(side_effect=self._reply)  # type: ignore[assignment]

    def name(self) -> str:
        return self._name

    async def _reply(self, model, messages, system_prompt=None, timeout_sec=None) -> ModelResponse:
        if model in self.failing:
            raise ProviderError(self._name, f"{model} is down")
        reply = self.replies.get(model, self.default)
        if callable(reply):
            reply = reply(model, messages, system_prompt)
        elif isinstance(reply, list):
            reply = reply.pop(0) if len(reply) > 1 else reply[0]
        return ModelResponse(provider=self._name, model=model, content=reply, latency_sec=0.1, token_count=10)

    async def generate(self, model, messages, system_prompt=None, timeout_sec=None) -> ModelResponse:  # type: ignore[override]
        """Default implementation; replaced by AsyncMock in __init__."""
        return await self._reply(model, messages, system_prompt, timeout_sec)

    async def embed(self, model: str, text: str) -> list[float]:
        if self.embeddings is None:
            return await super().embed(model, text)
        return self.embeddings.get(text, [1.0, 0.0, 0.0])


def calls_for(provider: MockProvider, model: str) -> list:
    """generate() calls made for one wire model name."""
    return [c for c in provider.generate.call_args_list if c.args[0] == model]


@pytest.fixture
def gateway() -> MockProvider:
    """Serves every model id through gateway routing (wire model == model id)."""
    return MockProvider("openrouter")


@pytest.fixture
def invoker(gateway: MockProvider) -> ModelInvoker:
    return ModelInvoker({ModelProvider.OPENROUTER: gateway}, default_timeout_sec=5)


@pytest.fixture
def sample_roles() -> list[RoleConfig]:
    return [
        RoleConfig(id="optimist", name="Optimist", persona="You highlight opportunities and upside.", model="openai/gpt-4o"),
        RoleConfig(id="pessimist", name="Pessimist", persona="You point out risks and weak assumptions.", model="anthropic/claude-sonnet"),
        RoleConfig(id="pragmatist", name="Pragmatist", persona="You focus on what is feasible right now.", model="google/gemini-pro"),
    ]


@pytest.fixture
def sample_app_config(tmp_path: Path, sample_roles: list[RoleConfig]) -> AppConfig:
    return AppConfig(
        council=CouncilDefaults(
            models=list(COUNCIL_MODELS),
            chairman="google/gemini-pro",
            title_model="openai/gpt-4o-mini",
            timeout_sec=5,
        ),
        discussion=DiscussionDefaults(
            max_rounds=2,
            consensus_threshold=0.7,
            history_window=10,
            turn_timeout_sec=5,
            roles=sample_roles,
        ),
        consensus=ConsensusConfig(),
        providers={
            "openrouter": ProviderConfig(
                name="openrouter",
                sdk="openai",
                api_key_env="OPENROUTER_API_KEY",
                timeout_sec=5,
                max_tokens=1024,
                base_url="https://openrouter.ai/api/v1",
            ),
        },
        data_dir=tmp_path / "data",
        output_dir=tmp_path / "output",
        inbox=InboxConfig(dir=tmp_path / "inbox", archive_dir=tmp_path / "inbox" / "archive"),
        available_providers={"openrouter"},
    )


@pytest.fixture
def store(tmp_path: Path) -> ConversationStore:
    return ConversationStore(tmp_path / "data")
