"""LLM Provider abstraction for pluggable generation backends."""

import asyncio
import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from shipspec.errors import StructuredOutputError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


@dataclass
class LLMResponse:
    """Response from an LLM call."""

    content: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    stop_reason: str = ""
    raw_response: Any = None


def extract_json(text: str) -> Any:
    """
    Pull a JSON value out of a model response.

    Handles markdown code fences and leading/trailing prose around the
    outermost object or array.

    Raises:
        ValueError: If no parseable JSON is present
    """
    text = re.sub(r"^```(?:json)?\s*", "", text.strip(), flags=re.MULTILINE)
    text = re.sub(r"\s*```$", "", text, flags=re.MULTILINE).strip()

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    match = re.search(r"(\{.*\}|\[.*\])", text, re.DOTALL)
    if match:
        try:
            return json.loads(match.group(1))
        except json.JSONDecodeError as e:
            raise ValueError(f"invalid JSON: {e}") from e
    raise ValueError("no JSON object found in response")


class LLMProvider(ABC):
    """
    Abstract LLM provider - plug in any generation backend.

    Implementations supply ``complete``; async and structured variants are
    built on top of it and may be overridden for native async support.
    """

    model: str = ""

    @abstractmethod
    def complete(
        self,
        messages: list[dict[str, Any]],
        system: str = "",
        max_tokens: int = 1024,
        response_format: dict[str, Any] | None = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        """
        Generate a completion.

        Args:
            messages: Conversation history [{role: "user"|"assistant", content: str}]
            system: System prompt
            max_tokens: Maximum tokens to generate
            response_format: Optional structured output format, e.g.
                {"type": "json_schema", "json_schema": {"name": "...", "schema": {...}}}
            json_mode: If True, request a JSON object response

        Returns:
            LLMResponse with content and metadata
        """
        pass

    async def acomplete(
        self,
        messages: list[dict[str, Any]],
        system: str = "",
        max_tokens: int = 1024,
        response_format: dict[str, Any] | None = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        """Async completion. The default runs ``complete`` in a worker thread."""
        return await asyncio.to_thread(
            self.complete,
            messages,
            system,
            max_tokens,
            response_format,
            json_mode,
        )

    async def complete_structured(
        self,
        messages: list[dict[str, Any]],
        schema: type[ModelT],
        system: str = "",
        max_tokens: int = 2048,
    ) -> ModelT:
        """
        Generate a response and validate it against a pydantic model.

        Fails closed: a response that is not valid JSON or does not match the
        schema raises instead of being passed through.

        Raises:
            StructuredOutputError: If the response does not validate
        """
        response_format = {
            "type": "json_schema",
            "json_schema": {
                "name": schema.__name__,
                "schema": schema.model_json_schema(),
            },
        }
        response = await self.acomplete(
            messages=messages,
            system=system,
            max_tokens=max_tokens,
            response_format=response_format,
            json_mode=True,
        )
        return parse_structured(response.content, schema)


def parse_structured(content: str, schema: type[ModelT]) -> ModelT:
    """Validate a raw model response against ``schema``."""
    try:
        data = extract_json(content)
    except ValueError as e:
        raise StructuredOutputError(schema.__name__, str(e), raw=content) from e
    try:
        return schema.model_validate(data)
    except ValidationError as e:
        raise StructuredOutputError(schema.__name__, str(e), raw=content) from e
