"""Anthropic Claude provider using anthropic SDK with native async."""

import asyncio
import logging
import os
import time

import anthropic as anthropic_sdk

from config.config_loader import ProviderConfig
from llm_council.models import ModelResponse
from llm_council.providers.base import AIProvider, ChatMessage, ProviderError

logger = logging.getLogger(__name__)


def _normalize_messages(messages: list[ChatMessage]) -> list[ChatMessage]:
    """Merge consecutive same-role messages and make sure the first one is a user turn."""
    merged: list[ChatMessage] = []
    for msg in messages:
        role = "assistant" if msg["role"] == "assistant" else "user"
        if merged and merged[-1]["role"] == role:
            merged[-1] = {"role": role, "content": f"{merged[-1]['content']}\n\n{msg['content']}"}
        else:
            merged.append({"role": role, "content": msg["content"]})
    if not merged or merged[0]["role"] != "user":
        merged.insert(0, {"role": "user", "content": "(conversation so far)"})
    return merged


class AnthropicProvider(AIProvider):
    """Anthropic Claude provider via anthropic SDK."""

    def __init__(self, config: ProviderConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env, "").strip()
        if not api_key:
            raise ProviderError(config.name, f"Missing API key: {config.api_key_env}")
        self._client = anthropic_sdk.AsyncAnthropic(api_key=api_key)

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
        kwargs = {
            "model": model,
            "max_tokens": self._config.max_tokens,
            "messages": _normalize_messages(messages),
        }
        if system_prompt:
            kwargs["system"] = system_prompt

        start = time.monotonic()
        try:
            response = await asyncio.wait_for(self._client.messages.create(**kwargs), timeout=timeout)
        except TimeoutError as exc:
            raise ProviderError(self._config.name, f"Request timed out after {timeout}s") from exc
        except Exception as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}") from exc

        latency = time.monotonic() - start

        if not response.content:
            raise ProviderError(self._config.name, "Empty response content")

        text_blocks = [b.text for b in response.content if b.type == "text"]
        if not text_blocks:
            raise ProviderError(self._config.name, "No text blocks in response")

        token_count: int | None = None
        if response.usage:
            token_count = response.usage.input_tokens + response.usage.output_tokens

        logger.info("Anthropic %s: %.2fs, %s tokens", model, latency, token_count)

        return ModelResponse(
            provider=self._config.name,
            model=model,
            content="\n".join(text_blocks),
            latency_sec=latency,
            token_count=token_count,
        )
