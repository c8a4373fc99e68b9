"""Persisted data models."""

from shipspec.schemas.checkpoint import (
    Checkpoint,
    CheckpointSummary,
    InterruptSignal,
    ThreadStatus,
)

__all__ = ["Checkpoint", "CheckpointSummary", "InterruptSignal", "ThreadStatus"]
