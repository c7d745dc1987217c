"""xAI Grok provider using openai SDK (OpenAI-compatible API)."""

from config.config_loader import ProviderConfig
from llm_council.providers.base import ProviderError
from llm_council.providers.openai_provider import OpenAIProvider


class XAIProvider(OpenAIProvider):
    """xAI Grok provider via OpenAI-compatible API. No embedding endpoint."""

    def __init__(self, config: ProviderConfig) -> None:
        if not config.base_url:
            raise ProviderError(config.name, "base_url is required for xAI provider")
        super().__init__(config)

    async def embed(self, model: str, text: str) -> list[float]:
        raise ProviderError(self.name(), "Embeddings are not supported by this provider")
