"""Checkpoint persistence backends."""

from shipspec.storage.checkpoint_store import (
    CheckpointStore,
    FileCheckpointStore,
    InMemoryCheckpointStore,
)

__all__ = ["CheckpointStore", "FileCheckpointStore", "InMemoryCheckpointStore"]
