"""
Checkpoint Store - Persists one checkpoint per thread.

Two backends share the CheckpointStore interface:

- InMemoryCheckpointStore: process lifetime only, for tests and one-shot runs.
- FileCheckpointStore: JSON files written atomically, for interactive sessions
  that may be resumed hours later from a new process.

Both return None for an unknown thread and raise CheckpointCorruptedError for
a thread whose saved data cannot be read back. They never fall back to a
fresh start on their own.
"""

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path

from pydantic import ValidationError

from shipspec.errors import CheckpointCorruptedError
from shipspec.schemas.checkpoint import Checkpoint, CheckpointSummary
from shipspec.utils.io import atomic_write

logger = logging.getLogger(__name__)

_THREAD_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")


def _parse_checkpoint(thread_id: str, raw: str) -> Checkpoint:
    """Validate serialized checkpoint data, raising CheckpointCorruptedError on failure."""
    if not raw.strip():
        raise CheckpointCorruptedError(thread_id, "checkpoint file is empty")
    try:
        checkpoint = Checkpoint.model_validate_json(raw)
    except ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ())) or "checkpoint"
        raise CheckpointCorruptedError(thread_id, f"{location}: {first.get('msg', e)}") from e
    if checkpoint.thread_id != thread_id:
        raise CheckpointCorruptedError(
            thread_id, f"file belongs to thread '{checkpoint.thread_id}'"
        )
    return checkpoint


class CheckpointStore(ABC):
    """Interface for per-thread checkpoint persistence."""

    @abstractmethod
    async def save(self, checkpoint: Checkpoint) -> None:
        """Persist a checkpoint, replacing any previous one for the same thread."""

    @abstractmethod
    async def load(self, thread_id: str) -> Checkpoint | None:
        """
        Load the checkpoint for a thread.

        Returns:
            The checkpoint, or None if the thread has never been saved

        Raises:
            CheckpointCorruptedError: If saved data exists but is unreadable
        """

    @abstractmethod
    async def delete(self, thread_id: str) -> bool:
        """Remove a thread's checkpoint. Returns True if one existed."""

    @abstractmethod
    async def list_threads(self) -> list[CheckpointSummary]:
        """Summaries of every readable stored thread."""

    async def exists(self, thread_id: str) -> bool:
        try:
            return await self.load(thread_id) is not None
        except CheckpointCorruptedError:
            return True


class InMemoryCheckpointStore(CheckpointStore):
    """
    Keeps serialized checkpoints in a dict.

    Checkpoints are stored as JSON so that a caller mutating a loaded state
    cannot alter what is saved, and so that both backends validate the same way.
    """

    def __init__(self):
        self._data: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def save(self, checkpoint: Checkpoint) -> None:
        async with self._lock:
            self._data[checkpoint.thread_id] = checkpoint.model_dump_json()
        logger.debug(f"Saved in-memory checkpoint for {checkpoint.thread_id}")

    async def load(self, thread_id: str) -> Checkpoint | None:
        raw = self._data.get(thread_id)
        if raw is None:
            return None
        return _parse_checkpoint(thread_id, raw)

    async def delete(self, thread_id: str) -> bool:
        async with self._lock:
            return self._data.pop(thread_id, None) is not None

    async def list_threads(self) -> list[CheckpointSummary]:
        summaries = []
        for thread_id, raw in list(self._data.items()):
            try:
                checkpoint = _parse_checkpoint(thread_id, raw)
            except CheckpointCorruptedError as e:
                logger.warning(f"Skipping unreadable checkpoint: {e}")
                continue
            summaries.append(CheckpointSummary.from_checkpoint(checkpoint))
        return sorted(summaries, key=lambda s: s.saved_at)


class FileCheckpointStore(CheckpointStore):
    """
    Stores each thread's checkpoint as a JSON file with atomic writes.

    Directory structure:
        {base_path}/
            threads/
                {thread_id}.json
    """

    def __init__(self, base_path: Path | str):
        """
        Initialize the store.

        Args:
            base_path: Root directory (e.g., ~/.shipspec/checkpoints/)
        """
        self.base_path = Path(base_path)
        self.threads_dir = self.base_path / "threads"
        self._write_lock = asyncio.Lock()

    def _path_for(self, thread_id: str) -> Path:
        if not _THREAD_ID_PATTERN.match(thread_id):
            raise ValueError(
                f"Invalid thread id {thread_id!r}: use letters, digits, '.', '_' or '-'"
            )
        return self.threads_dir / f"{thread_id}.json"

    async def save(self, checkpoint: Checkpoint) -> None:
        """
        Atomically write a checkpoint.

        Uses temp file + rename so a crash mid-write leaves the previous
        checkpoint intact.

        Raises:
            OSError: If the file write fails
        """
        path = self._path_for(checkpoint.thread_id)

        def _write():
            with atomic_write(path) as f:
                f.write(checkpoint.model_dump_json(indent=2))

        async with self._write_lock:
            await asyncio.to_thread(_write)
        logger.debug(f"Saved checkpoint {path.name} (status={checkpoint.status})")

    async def load(self, thread_id: str) -> Checkpoint | None:
        path = self._path_for(thread_id)

        def _read() -> str | None:
            if not path.exists():
                return None
            try:
                return path.read_text(encoding="utf-8")
            except UnicodeDecodeError as e:
                raise CheckpointCorruptedError(thread_id, f"not valid UTF-8 ({e})") from e

        raw = await asyncio.to_thread(_read)
        if raw is None:
            return None
        return _parse_checkpoint(thread_id, raw)

    async def delete(self, thread_id: str) -> bool:
        path = self._path_for(thread_id)

        def _delete() -> bool:
            try:
                path.unlink()
            except FileNotFoundError:
                return False
            return True

        async with self._write_lock:
            deleted = await asyncio.to_thread(_delete)
        if deleted:
            logger.info(f"Deleted checkpoint for thread {thread_id}")
        return deleted

    async def list_threads(self) -> list[CheckpointSummary]:
        def _scan() -> list[tuple[str, str]]:
            if not self.threads_dir.exists():
                return []
            return [
                (p.stem, p.read_text(encoding="utf-8", errors="replace"))
                for p in sorted(self.threads_dir.glob("*.json"))
            ]

        summaries = []
        for thread_id, raw in await asyncio.to_thread(_scan):
            try:
                checkpoint = _parse_checkpoint(thread_id, raw)
            except CheckpointCorruptedError as e:
                logger.warning(f"Skipping unreadable checkpoint: {e}")
                continue
            summaries.append(CheckpointSummary.from_checkpoint(checkpoint))
        return sorted(summaries, key=lambda s: s.saved_at)
