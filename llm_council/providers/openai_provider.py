"""OpenAI provider using openai SDK with native async.

Also serves OpenAI-compatible gateways (OpenRouter) through ``base_url``.
"""

import asyncio
import logging
import os
import time

from openai import AsyncOpenAI

from config.config_loader import ProviderConfig
from llm_council.models import ModelResponse
from llm_council.providers.base import AIProvider, ChatMessage, ProviderError

logger = logging.getLogger(__name__)

_EMBED_INPUT_LIMIT = 8000


class OpenAIProvider(AIProvider):
    """OpenAI (or OpenAI-compatible) provider via openai SDK."""

    def __init__(self, config: ProviderConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env, "").strip()
        if not api_key:
            raise ProviderError(config.name, f"Missing API key: {config.api_key_env}")
        self._client = AsyncOpenAI(api_key=api_key, base_url=config.base_url)

    def name(self) -> str:
        return self._config.name

    async def generate(
        self,
        model: str,
        messages: list[ChatMessage],
        system_prompt: str | None = None,
        timeout_sec: float | None = None,
    ) -> ModelResponse:
        timeout = timeout_sec or self._config.timeout_sec
        payload = list(messages)
        if system_prompt:
            payload.insert(0, {"role": "system", "content": system_prompt})

        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.chat.completions.create(
                    model=model,
                    messages=payload,
                    max_tokens=self._config.max_tokens,
                ),
                timeout=timeout,
            )
        except TimeoutError as exc:
            raise ProviderError(self._config.name, f"Request timed out after {timeout}s") from exc
        except Exception as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}") from exc

        latency = time.monotonic() - start

        choice = response.choices[0] if response.choices else None
        if not choice or not choice.message.content:
            raise ProviderError(self._config.name, "Empty response content")

        token_count: int | None = None
        if response.usage:
            token_count = response.usage.total_tokens

        logger.info("%s %s: %.2fs, %s tokens", self._config.name, model, latency, token_count)

        return ModelResponse(
            provider=self._config.name,
            model=model,
            content=choice.message.content,
            latency_sec=latency,
            token_count=token_count,
        )

    async def embed(self, model: str, text: str) -> list[float]:
        try:
            response = await asyncio.wait_for(
                self._client.embeddings.create(model=model, input=text[:_EMBED_INPUT_LIMIT]),
                timeout=self._config.timeout_sec,
            )
        except TimeoutError as exc:
            raise ProviderError(self._config.name, f"Embedding timed out after {self._config.timeout_sec}s") from exc
        except Exception as exc:
            raise ProviderError(self._config.name, f"Embedding call failed: {exc}") from exc

        if not response.data:
            raise ProviderError(self._config.name, "Empty embedding response")
        return list(response.data[0].embedding)
