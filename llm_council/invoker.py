"""Model invoker: routes "<provider>/<model>" ids to provider adapters.

Every call is timeout-bounded and never raises for model failures: a failed
invocation comes back as a ProviderError value. Cancellation still propagates
so a caller can abort an in-flight call.
"""

import asyncio
import dataclasses
import logging
from dataclasses import dataclass
from enum import Enum

from llm_council.models import ModelResponse
from llm_council.providers.base import AIProvider, ChatMessage, ProviderError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SEC = 120.0


class ModelProvider(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    XAI = "xai"
    OPENROUTER = "openrouter"


@dataclass(frozen=True)
class ModelBinding:
    provider: ModelProvider
    model: str

    @classmethod
    def parse(cls, model_id: str) -> "ModelBinding":
        """Split "openai/gpt-4o" into provider and model name.

        Ids without a known provider prefix are bound to the OpenRouter
        gateway with the whole id as the model name.

        Raises:
            ValueError: On a blank id or a known prefix without a model name.
        """
        model_id = model_id.strip()
        if not model_id:
            raise ValueError("Model id cannot be empty")
        prefix, sep, rest = model_id.partition("/")
        try:
            provider = ModelProvider(prefix)
        except ValueError:
            return cls(ModelProvider.OPENROUTER, model_id)
        if not sep or not rest:
            raise ValueError(f"Model id '{model_id}' has no model name after the provider prefix")
        return cls(provider, rest)


@dataclass(frozen=True)
class ResolvedModel:
    """A model handle bound to a concrete provider client."""

    provider: AIProvider
    model: str       # name sent to the provider
    model_id: str    # id the caller asked for


@dataclass
class ModelTask:
    model_id: str
    messages: list[ChatMessage]
    system_prompt: str | None = None
    timeout_sec: float | None = None


class ModelInvoker:
    """Single entry point for all model calls."""

    def __init__(
        self,
        providers: dict[ModelProvider, AIProvider],
        default_timeout_sec: float = DEFAULT_TIMEOUT_SEC,
        gateway: ModelProvider | None = ModelProvider.OPENROUTER,
    ) -> None:
        self._providers = dict(providers)
        self._default_timeout_sec = default_timeout_sec
        self._gateway = gateway

    @property
    def providers(self) -> dict[ModelProvider, AIProvider]:
        return dict(self._providers)

    def resolve(self, binding: ModelBinding, model_id: str | None = None) -> ResolvedModel | None:
        """Bind a model to a provider client, or None when nothing can serve it."""
        model_id = model_id or f"{binding.provider.value}/{binding.model}"
        direct = self._providers.get(binding.provider)
        if direct is not None:
            return ResolvedModel(provider=direct, model=binding.model, model_id=model_id)

        gateway = self._providers.get(self._gateway) if self._gateway else None
        if gateway is not None:
            wire_model = (
                binding.model
                if binding.provider is ModelProvider.OPENROUTER
                else f"{binding.provider.value}/{binding.model}"
            )
            logger.debug("Routing %s through gateway %s", model_id, gateway.name())
            return ResolvedModel(provider=gateway, model=wire_model, model_id=model_id)
        return None

    def resolve_id(self, model_id: str) -> ResolvedModel | None:
        try:
            binding = ModelBinding.parse(model_id)
        except ValueError:
            return None
        return self.resolve(binding, model_id=model_id.strip())

    async def invoke(
        self,
        model_id: str,
        messages: list[ChatMessage],
        system_prompt: str | None = None,
        timeout_sec: float | None = None,
    ) -> ModelResponse | ProviderError:
        """Call one model. Never raises for model failures."""
        try:
            binding = ModelBinding.parse(model_id)
        except ValueError as exc:
            return ProviderError("invoker", str(exc))

        resolved = self.resolve(binding, model_id=model_id.strip())
        if resolved is None:
            err = ProviderError(binding.provider.value, f"No configured provider can serve '{model_id}'")
            logger.warning("%s", err)
            return err
        return await self.invoke_resolved(resolved, messages, system_prompt, timeout_sec)

    async def invoke_resolved(
        self,
        resolved: ResolvedModel,
        messages: list[ChatMessage],
        system_prompt: str | None = None,
        timeout_sec: float | None = None,
    ) -> ModelResponse | ProviderError:
        timeout = timeout_sec or self._default_timeout_sec
        provider_name = resolved.provider.name()
        try:
            response = await asyncio.wait_for(
                resolved.provider.generate(
                    resolved.model,
                    messages,
                    system_prompt=system_prompt,
                    timeout_sec=timeout,
                ),
                timeout=timeout,
            )
        except TimeoutError:
            err = ProviderError(provider_name, f"Request timed out after {timeout}s")
            logger.warning("Model %s failed: %s", resolved.model_id, err)
            return err
        except ProviderError as exc:
            logger.warning("Model %s failed: %s", resolved.model_id, exc)
            return exc
        except Exception as exc:
            err = ProviderError(provider_name, f"Unexpected error: {exc}")
            logger.warning("Model %s unexpected failure: %s", resolved.model_id, exc)
            return err

        if not response.content or not response.content.strip():
            err = ProviderError(provider_name, "Empty response content")
            logger.warning("Model %s failed: %s", resolved.model_id, err)
            return err
        return dataclasses.replace(response, model=resolved.model_id)

    async def invoke_parallel(self, tasks: list[ModelTask]) -> list[ModelResponse | ProviderError]:
        """Run tasks concurrently. One result slot per task, in task order."""
        return list(
            await asyncio.gather(
                *(self.invoke(t.model_id, t.messages, t.system_prompt, t.timeout_sec) for t in tasks)
            )
        )

    async def embed(self, model_id: str, text: str) -> list[float]:
        """Embed text with an embedding model.

        Raises:
            ProviderError: On an unresolvable model or a failed call.
        """
        resolved = self.resolve_id(model_id)
        if resolved is None:
            raise ProviderError("invoker", f"No configured provider can serve '{model_id}'")
        try:
            return await asyncio.wait_for(
                resolved.provider.embed(resolved.model, text),
                timeout=self._default_timeout_sec,
            )
        except TimeoutError as exc:
            raise ProviderError(resolved.provider.name(), "Embedding timed out") from exc
        except ProviderError:
            raise
        except Exception as exc:
            raise ProviderError(resolved.provider.name(), f"Embedding failed: {exc}") from exc
