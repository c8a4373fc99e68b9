"""
Checkpoint Schema - Per-thread state snapshots for resumability.

A thread has exactly one checkpoint. It is written after every node and
overwritten in place, so loading it always yields the latest state along with
where execution stopped and why.
"""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, model_validator

CHECKPOINT_SCHEMA_VERSION = 1


class ThreadStatus(StrEnum):
    """Where a thread stands between invocations."""

    RUNNING = "running"  # Stopped between nodes (crash or in-flight); next_node is set
    INTERRUPTED = "interrupted"  # Waiting for a resume value; pending_interrupt is set
    COMPLETED = "completed"  # Reached a terminal node


class InterruptSignal(BaseModel):
    """
    A node's request for external input.

    ``type`` is the discriminator consumers switch on ("clarification",
    "prd_review", "report_review", ...). ``payload`` carries whatever the
    human-facing layer needs to render the request.
    """

    type: str
    payload: dict[str, Any] = Field(default_factory=dict)
    node_id: str = ""
    created_at: str = Field(default_factory=lambda: datetime.now().isoformat())

    model_config = {"extra": "allow"}


class Checkpoint(BaseModel):
    """Latest saved state of one thread."""

    thread_id: str
    graph_id: str = ""
    schema_version: int = CHECKPOINT_SCHEMA_VERSION

    saved_at: str  # ISO 8601
    status: ThreadStatus

    current_node: str | None = None  # Last node that ran (or is suspended)
    next_node: str | None = None  # Node the next invoke/resume starts from
    pending_interrupt: InterruptSignal | None = None
    execution_path: list[str] = Field(default_factory=list)
    step_count: int = 0

    state: dict[str, Any]

    model_config = {"extra": "allow"}

    @model_validator(mode="after")
    def _check_consistency(self) -> "Checkpoint":
        if not self.thread_id:
            raise ValueError("thread_id is empty")
        if self.status == ThreadStatus.INTERRUPTED and self.pending_interrupt is None:
            raise ValueError("status is 'interrupted' but no pending interrupt was saved")
        if self.status != ThreadStatus.COMPLETED and not self.next_node:
            raise ValueError(f"status is '{self.status}' but next_node is missing")
        return self

    @classmethod
    def create(
        cls,
        thread_id: str,
        state: dict[str, Any],
        status: ThreadStatus,
        graph_id: str = "",
        current_node: str | None = None,
        next_node: str | None = None,
        pending_interrupt: InterruptSignal | None = None,
        execution_path: list[str] | None = None,
        step_count: int = 0,
    ) -> "Checkpoint":
        """Create a checkpoint stamped with the current time."""
        return cls(
            thread_id=thread_id,
            graph_id=graph_id,
            saved_at=datetime.now().isoformat(),
            status=status,
            current_node=current_node,
            next_node=next_node,
            pending_interrupt=pending_interrupt,
            execution_path=list(execution_path or []),
            step_count=step_count,
            state=state,
        )


class CheckpointSummary(BaseModel):
    """Lightweight listing entry for a stored thread."""

    thread_id: str
    graph_id: str = ""
    saved_at: str
    status: ThreadStatus
    next_node: str | None = None
    interrupt_type: str | None = None

    @classmethod
    def from_checkpoint(cls, checkpoint: Checkpoint) -> "CheckpointSummary":
        return cls(
            thread_id=checkpoint.thread_id,
            graph_id=checkpoint.graph_id,
            saved_at=checkpoint.saved_at,
            status=checkpoint.status,
            next_node=checkpoint.next_node,
            interrupt_type=(
                checkpoint.pending_interrupt.type if checkpoint.pending_interrupt else None
            ),
        )
