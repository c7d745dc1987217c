"""Gemini provider using google-genai SDK with native async."""

import asyncio
import logging
import os
import time

from google import genai
from google.genai import types as genai_types

from config.config_loader import ProviderConfig
from llm_council.models import ModelResponse
from llm_council.providers.base import AIProvider, ChatMessage, ProviderError

logger = logging.getLogger(__name__)


def _to_contents(messages: list[ChatMessage]) -> list[genai_types.Content]:
    return [
        genai_types.Content(
            role="model" if msg["role"] == "assistant" else "user",
            parts=[genai_types.Part.from_text(text=msg["content"])],
        )
        for msg in messages
    ]


class GeminiProvider(AIProvider):
    """Google Gemini provider via google-genai SDK."""

    def __init__(self, config: ProviderConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env, "").strip()
        if not api_key:
            raise ProviderError(config.name, f"Missing API key: {config.api_key_env}")
        self._client = genai.Client(api_key=api_key)

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
        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.aio.models.generate_content(
                    model=model,
                    contents=_to_contents(messages),
                    config=genai_types.GenerateContentConfig(
                        max_output_tokens=self._config.max_tokens,
                        system_instruction=system_prompt or None,
                    ),
                ),
                timeout=timeout,
            )
        except TimeoutError as exc:
            raise ProviderError(self._config.name, f"Request timed out after {timeout}s") from exc
        except Exception as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}") from exc

        latency = time.monotonic() - start

        if not response.text:
            raise ProviderError(self._config.name, "Empty response text")

        token_count: int | None = None
        if response.usage_metadata:
            token_count = response.usage_metadata.total_token_count

        logger.info("Gemini %s: %.2fs, %s tokens", model, latency, token_count)

        return ModelResponse(
            provider=self._config.name,
            model=model,
            content=response.text,
            latency_sec=latency,
            token_count=token_count,
        )

    async def embed(self, model: str, text: str) -> list[float]:
        try:
            response = await asyncio.wait_for(
                self._client.aio.models.embed_content(model=model, contents=text),
                timeout=self._config.timeout_sec,
            )
        except TimeoutError as exc:
            raise ProviderError(self._config.name, f"Embedding timed out after {self._config.timeout_sec}s") from exc
        except Exception as exc:
            raise ProviderError(self._config.name, f"Embedding call failed: {exc}") from exc

        if not response.embeddings or not response.embeddings[0].values:
            raise ProviderError(self._config.name, "Empty embedding response")
        return list(response.embeddings[0].values)
