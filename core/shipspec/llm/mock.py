"""Scripted LLM provider for tests and dry runs."""

import json
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel

from shipspec.llm.provider import LLMProvider, LLMResponse

ScriptedReply = str | dict | list | BaseModel | Exception | Callable[[list[dict[str, Any]]], Any]


class MockLLMProvider(LLMProvider):
    """
    Returns queued replies in order and records every call.

    Replies may be strings, JSON-able dicts/lists, pydantic models (serialized
    to JSON), exceptions (raised), or callables taking the messages and
    returning any of the above. When the queue runs out, ``default`` is used;
    if there is no default, the call fails.

    Example:
        llm = MockLLMProvider([{"satisfied": True, "follow_up_questions": []}, "# PRD"])
    """

    def __init__(
        self,
        replies: list[ScriptedReply] | None = None,
        default: ScriptedReply | None = None,
        model: str = "mock/scripted",
    ):
        self.replies = list(replies or [])
        self.default = default
        self.model = model
        self.calls: list[dict[str, Any]] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def queue(self, *replies: ScriptedReply) -> None:
        self.replies.extend(replies)

    def complete(
        self,
        messages: list[dict[str, Any]],
        system: str = "",
        max_tokens: int = 1024,
        response_format: dict[str, Any] | None = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        self.calls.append(
            {
                "messages": messages,
                "system": system,
                "response_format": response_format,
                "json_mode": json_mode,
            }
        )
        if self.replies:
            reply = self.replies.pop(0)
        elif self.default is not None:
            reply = self.default
        else:
            raise RuntimeError(f"MockLLMProvider has no reply queued for call {self.call_count}")

        if callable(reply) and not isinstance(reply, (BaseModel, Exception)):
            reply = reply(messages)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, BaseModel):
            content = reply.model_dump_json()
        elif isinstance(reply, (dict, list)):
            content = json.dumps(reply)
        else:
            content = str(reply)
        return LLMResponse(content=content, model=self.model)

    async def acomplete(
        self,
        messages: list[dict[str, Any]],
        system: str = "",
        max_tokens: int = 1024,
        response_format: dict[str, Any] | None = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        return self.complete(messages, system, max_tokens, response_format, json_mode)
