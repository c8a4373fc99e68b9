"""
Interrupt/Resume protocol helpers.

A node suspends its thread by calling ``ctx.interrupt(type, payload)``. The
first time the node runs, that call raises NodeInterrupt; the executor saves
the signal in the checkpoint and returns it to the caller. When the caller
resumes, the node runs again from the top and the same call returns the
resume value instead of raising.

Because the node re-runs from the top, anything expensive must not happen
before the interrupt. Interruptible generators therefore work in two phases:

    Phase 1 (no pending artifact): generate, store it in ``pending_<x>``,
        return. The node's edge loops back to the node itself.
    Phase 2 (pending artifact present): skip generation, interrupt with the
        pending artifact, then act on the verdict.

Two families of review nodes interpret verdicts differently:

- Generation-review nodes (PRD, tech spec) need an explicit "approve".
  Anything else is revision feedback, and empty input is rejected.
- Review-only nodes (final report) treat empty input as approval, so pressing
  enter never triggers an endless regenerate/re-review cycle.
"""

from collections.abc import Mapping
from typing import Any

from shipspec.errors import InvalidResumeError, UnhandledInterruptError
from shipspec.schemas.checkpoint import InterruptSignal

APPROVAL_TOKEN = "approve"
REVIEW_APPROVAL_TOKENS = frozenset({"", "approve", "approved", "yes", "y", "ok", "lgtm"})


class NodeInterrupt(Exception):
    """Raised inside a node to suspend the thread."""

    def __init__(self, signal: InterruptSignal):
        self.signal = signal
        super().__init__(f"Interrupt '{signal.type}' from node '{signal.node_id}'")


def is_explicit_approval(verdict: str) -> bool:
    """True only for 'approve' (case-insensitive, surrounding whitespace ignored)."""
    return verdict.strip().lower() == APPROVAL_TOKEN


def is_review_approval(verdict: str) -> bool:
    """True for empty input or a common affirmative ('approve', 'yes', 'lgtm', ...)."""
    return verdict.strip().lower() in REVIEW_APPROVAL_TOKENS


def require_text_resume(
    value: Any,
    thread_id: str | None,
    field: str,
    allow_empty: bool = True,
) -> str:
    """
    Validate a free-text resume value (approval or feedback).

    Raises:
        InvalidResumeError: If the value is not a string, or is blank when
            ``allow_empty`` is False
    """
    if not isinstance(value, str):
        raise InvalidResumeError(thread_id, field, "a string", value)
    if not allow_empty and not value.strip():
        raise InvalidResumeError(
            thread_id, field, "'approve' or non-empty revision feedback", value
        )
    return value


def require_answers_resume(
    value: Any,
    thread_id: str | None,
    field: str,
) -> dict[str, str]:
    """
    Validate a multi-question resume value: a mapping of question index to answer.

    Keys are the question positions as strings ("0", "1", ...).

    Raises:
        InvalidResumeError: If the value is not a mapping of strings to strings
    """
    if not isinstance(value, Mapping):
        raise InvalidResumeError(
            thread_id, field, "an object mapping question index to answer", value
        )
    answers: dict[str, str] = {}
    for key, answer in value.items():
        if not isinstance(answer, str):
            raise InvalidResumeError(thread_id, f"{field}[{key}]", "a string answer", answer)
        answers[str(key)] = answer
    return answers


def pair_answers(questions: list[str], answers: Mapping[str, str]) -> list[dict[str, str]]:
    """Zip questions with answers keyed by position; unanswered questions get ''."""
    return [
        {"question": question, "answer": answers.get(str(i), "")}
        for i, question in enumerate(questions)
    ]


def expect_interrupt(
    signal: InterruptSignal | None,
    handled: list[str],
    thread_id: str | None = None,
) -> InterruptSignal | None:
    """
    Check an interrupt returned to a consumer against the types it can render.

    Raises:
        UnhandledInterruptError: If the signal's type is not in ``handled``
    """
    if signal is not None and signal.type not in handled:
        raise UnhandledInterruptError(signal.type, handled, thread_id=thread_id)
    return signal
