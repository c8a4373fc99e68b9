"""
Token budget helpers for context handed to generation steps.

Counts are a cheap chars/4 estimate. They only need to be monotonic and
bounded, not exact.
"""

import math
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol, TypeVar

TRUNCATION_MARKER = "\n\n[... content truncated due to token budget ...]"


class HasContent(Protocol):
    content: str


ChunkT = TypeVar("ChunkT", bound=HasContent)


@dataclass(frozen=True)
class TokenBudget:
    """Model context window and the slice of it kept back for the response."""

    max_context_tokens: int
    reserved_output_tokens: int

    @property
    def available(self) -> int:
        return available_context_budget(self)

    def fraction(self, share: float) -> int:
        """Integer share of the available budget (e.g. 0.7 for retrieved chunks)."""
        return math.floor(self.available * share)


def available_context_budget(budget: TokenBudget) -> int:
    """Tokens left for input context; never negative."""
    return max(0, budget.max_context_tokens - budget.reserved_output_tokens)


def count_tokens_approx(text: str) -> int:
    return math.ceil(len(text) / 4)


def count_chunk_tokens(chunks: Sequence[HasContent]) -> int:
    return sum(count_tokens_approx(chunk.content) for chunk in chunks)


def prune_chunks_by_budget(chunks: Sequence[ChunkT], budget: int) -> list[ChunkT]:
    """
    Keep the longest prefix of ``chunks`` that fits in ``budget`` tokens.

    Chunks arrive relevance-ranked, so the first chunk that does not fit ends
    the selection; later (smaller) chunks are not used to fill the gap.
    """
    total = 0
    result: list[ChunkT] = []
    for chunk in chunks:
        tokens = count_tokens_approx(chunk.content)
        if total + tokens > budget:
            break
        result.append(chunk)
        total += tokens
    return result


def truncate_text_by_budget(text: str, budget: int) -> str:
    """
    Cut free text down to roughly ``budget`` tokens.

    Prefers the latest natural break inside the limit: a newline or sentence
    end past 80% of it, or a space past 90%. Falls back to a hard cut. A
    visible marker is appended whenever text is dropped.
    """
    if count_tokens_approx(text) <= budget:
        return text
    return _cut_at_break(text, max(0, budget) * 4)


def truncate_text_by_chars(text: str, max_chars: int) -> str:
    """Same break-point rules as ``truncate_text_by_budget``, with a character limit."""
    if len(text) <= max_chars:
        return text
    return _cut_at_break(text, max(0, max_chars))


def _cut_at_break(text: str, char_limit: int) -> str:
    truncated = text[:char_limit]

    last_newline = truncated.rfind("\n")
    last_period = truncated.rfind(". ")
    last_space = truncated.rfind(" ")

    break_point = max(
        last_newline if last_newline > char_limit * 0.8 else -1,
        last_period + 1 if last_period > char_limit * 0.8 else -1,
        last_space if last_space > char_limit * 0.9 else -1,
    )

    if break_point > 0:
        return truncated[:break_point] + TRUNCATION_MARKER
    return truncated + TRUNCATION_MARKER
