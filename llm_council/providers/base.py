"""Abstract base for all AI model providers."""

from abc import ABC, abstractmethod

from llm_council.models import ModelResponse

ChatMessage = dict[str, str]  # {"role": "user" | "assistant", "content": ...}


class ProviderError(Exception):
    """Raised when a provider call fails."""

    def __init__(self, provider_name: str, message: str) -> None:
        self.provider_name = provider_name
        super().__init__(f"[{provider_name}] {message}")


class AIProvider(ABC):
    """Abstract base for all AI model providers.

    One provider instance owns one SDK client and serves every model that
    the provider hosts.
    """

    @abstractmethod
    def name(self) -> str:
        """Return the short provider name (e.g. 'openai', 'anthropic')."""
        ...

    @abstractmethod
    async def generate(
        self,
        model: str,
        messages: list[ChatMessage],
        system_prompt: str | None = None,
        timeout_sec: float | None = None,
    ) -> ModelResponse:
        """Generate a chat completion.

        Args:
            model: Provider-side model name (without the provider prefix).
            messages: Ordered chat messages.
            system_prompt: Optional system instruction.
            timeout_sec: Per-call timeout; provider default when None.

        Returns:
            ModelResponse dataclass with content and metadata.

        Raises:
            ProviderError: On API failure, timeout, or empty response.
        """
        ...

    async def embed(self, model: str, text: str) -> list[float]:
        """Return an embedding vector for text.

        Raises:
            ProviderError: When the provider has no embedding endpoint or the call fails.
        """
        raise ProviderError(self.name(), "Embeddings are not supported by this provider")
