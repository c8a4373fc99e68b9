"""LiteLLM-backed provider: one interface for OpenAI, Anthropic, Ollama, Mistral, etc."""

import asyncio
import logging
from typing import Any

import litellm

from shipspec.config import RuntimeConfig
from shipspec.llm.provider import LLMProvider, LLMResponse

logger = logging.getLogger(__name__)

RATE_LIMIT_BACKOFF_SECONDS = 2.0


class LiteLLMProvider(LLMProvider):
    """
    Generation through litellm.

    Model strings use litellm's "provider/model" form, e.g.
    "openai/gpt-4-turbo" or "anthropic/claude-sonnet-4-20250514".
    """

    def __init__(
        self,
        model: str,
        api_key: str | None = None,
        api_base: str | None = None,
        temperature: float = 0.0,
        max_retries: int = 3,
    ):
        self.model = model
        self.api_key = api_key
        self.api_base = api_base
        self.temperature = temperature
        self.max_retries = max_retries

    @classmethod
    def from_config(cls, config: RuntimeConfig) -> "LiteLLMProvider":
        return cls(
            model=config.model,
            api_key=config.api_key,
            api_base=config.api_base,
            temperature=config.temperature,
        )

    def _build_kwargs(
        self,
        messages: list[dict[str, Any]],
        system: str,
        max_tokens: int,
        response_format: dict[str, Any] | None,
        json_mode: bool,
    ) -> dict[str, Any]:
        full_messages = list(messages)
        if system:
            full_messages = [{"role": "system", "content": system}, *full_messages]

        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": full_messages,
            "max_tokens": max_tokens,
            "temperature": self.temperature,
        }
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base
        if response_format:
            kwargs["response_format"] = response_format
        elif json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        return kwargs

    def _to_response(self, response: Any) -> LLMResponse:
        choice = response.choices[0]
        usage = getattr(response, "usage", None)
        return LLMResponse(
            content=choice.message.content or "",
            model=getattr(response, "model", self.model) or self.model,
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            stop_reason=choice.finish_reason or "",
            raw_response=response,
        )

    def complete(
        self,
        messages: list[dict[str, Any]],
        system: str = "",
        max_tokens: int = 1024,
        response_format: dict[str, Any] | None = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        kwargs = self._build_kwargs(messages, system, max_tokens, response_format, json_mode)
        response = litellm.completion(num_retries=self.max_retries, **kwargs)
        return self._to_response(response)

    async def acomplete(
        self,
        messages: list[dict[str, Any]],
        system: str = "",
        max_tokens: int = 1024,
        response_format: dict[str, Any] | None = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        kwargs = self._build_kwargs(messages, system, max_tokens, response_format, json_mode)
        for attempt in range(self.max_retries + 1):
            try:
                response = await litellm.acompletion(**kwargs)
                break
            except litellm.RateLimitError:
                if attempt >= self.max_retries:
                    raise
                delay = RATE_LIMIT_BACKOFF_SECONDS * (2**attempt)
                logger.warning(f"⚠ Rate limited by {self.model}, retrying in {delay:.0f}s")
                await asyncio.sleep(delay)

        result = self._to_response(response)
        logger.debug(
            f"LLM call complete ({result.input_tokens} in / {result.output_tokens} out)",
            extra={"model": result.model},
        )
        return result
