"""
Error taxonomy for graph execution.

Errors fall into a few families that callers treat differently:

- GraphConfigurationError: a bug in the graph definition. Fatal, never retried.
- ProtocolError: the caller broke the invoke/resume contract (bad resume payload,
  invoke on a suspended thread, resume with nothing pending). The thread is left
  untouched and can be driven again with a corrected call.
- CheckpointError: a thread's saved state is missing or unreadable.
- NodeExecutionError: a collaborator (LLM, search, retrieval) failed inside a node.
  The node's partial output was not merged, so the same call can be retried.
- StructuredOutputError: a model response did not match the requested schema.
"""

from typing import Any


class ShipSpecError(Exception):
    """Base class for all engine errors."""

    retriable: bool = False

    def __init__(self, message: str, thread_id: str | None = None):
        self.thread_id = thread_id
        if thread_id:
            message = f"[thread {thread_id}] {message}"
        super().__init__(message)


class GraphConfigurationError(ShipSpecError):
    """The graph definition is invalid (unknown edge target, bad state key, ...)."""

    pass


class UnhandledInterruptError(GraphConfigurationError):
    """An interrupt type reached a consumer that does not know how to handle it."""

    def __init__(self, interrupt_type: str, expected: list[str], thread_id: str | None = None):
        self.interrupt_type = interrupt_type
        self.expected = expected
        super().__init__(
            f"Unhandled interrupt type '{interrupt_type}' (expected one of {expected})",
            thread_id=thread_id,
        )


class ProtocolError(ShipSpecError):
    """The invoke/resume contract was violated by the caller."""

    pass


class InvalidResumeError(ProtocolError):
    """A resume value had the wrong shape for the node waiting on it."""

    def __init__(
        self,
        thread_id: str | None,
        field: str,
        expected: str,
        received: Any,
    ):
        self.field = field
        self.expected = expected
        self.received_type = type(received).__name__
        super().__init__(
            f"Invalid resume value for '{field}': expected {expected}, "
            f"received {self.received_type}",
            thread_id=thread_id,
        )


class ThreadSuspendedError(ProtocolError):
    """invoke() was called on a thread that is waiting for a resume value."""

    def __init__(self, thread_id: str, interrupt_type: str):
        self.interrupt_type = interrupt_type
        super().__init__(
            f"Thread is suspended on a '{interrupt_type}' interrupt; call resume() instead",
            thread_id=thread_id,
        )


class NoPendingInterruptError(ProtocolError):
    """resume() was called on a thread that is not waiting for input."""

    def __init__(self, thread_id: str, status: str):
        self.status = status
        super().__init__(
            f"Thread has no pending interrupt to resume (status: {status})",
            thread_id=thread_id,
        )


class CheckpointError(ShipSpecError):
    """Base class for checkpoint problems."""

    pass


class CheckpointNotFoundError(CheckpointError):
    """No checkpoint exists for a thread the caller asked to resume."""

    def __init__(self, thread_id: str):
        super().__init__(
            "No checkpoint found; cannot resume a thread that was never started",
            thread_id=thread_id,
        )


class CheckpointCorruptedError(CheckpointError):
    """A checkpoint exists but cannot be read back."""

    def __init__(self, thread_id: str, reason: str):
        self.reason = reason
        super().__init__(
            f"Checkpoint is corrupted or incomplete, cannot resume: {reason}. "
            "Delete the checkpoint to start the thread over.",
            thread_id=thread_id,
        )


class NodeExecutionError(ShipSpecError):
    """A node failed because one of its collaborators raised."""

    retriable = True

    def __init__(self, node_id: str, cause: BaseException, thread_id: str | None = None):
        self.node_id = node_id
        self.cause = cause
        super().__init__(
            f"Node '{node_id}' failed: {type(cause).__name__}: {cause}",
            thread_id=thread_id,
        )


class StructuredOutputError(ShipSpecError):
    """A structured generation did not validate against its schema."""

    def __init__(self, schema_name: str, reason: str, raw: str = ""):
        self.schema_name = schema_name
        self.raw = raw
        super().__init__(f"Structured output for '{schema_name}' failed validation: {reason}")
