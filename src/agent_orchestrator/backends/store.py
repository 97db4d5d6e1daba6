"""
Append-only record stores.

MemoryStore keeps records in process; JsonlStore appends one JSON object per
line to a file with fcntl locking for concurrent access safety.
"""

import fcntl
import json
import logging
from pathlib import Path

from .base import EntryFilter, LogEntry, PersistenceBackend


logger = logging.getLogger(__name__)


class MemoryStore(PersistenceBackend):
    """In-process record log."""

    def __init__(self):
        self._entries: list[LogEntry] = []

    def store(self, entry: LogEntry) -> None:
        self._entries.append(entry)

    def query(self, entry_filter: EntryFilter | None = None) -> list[LogEntry]:
        return (entry_filter or EntryFilter()).apply(list(self._entries))


class JsonlStore(PersistenceBackend):
    """
    JSON-lines record log.

    Persists records to .swarm/records.jsonl. Writers take an exclusive lock,
    readers a shared one.
    """

    def __init__(self, store_path: Path | str | None = None):
        """
        Initialize the store.

        Args:
            store_path: Path to the store file. Defaults to .swarm/records.jsonl
        """
        if store_path is None:
            store_path = Path(".swarm") / "records.jsonl"
        self._path = Path(store_path)

    @property
    def path(self) -> Path:
        return self._path

    def store(self, entry: LogEntry) -> None:
        """Append a record to disk with locking."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(entry.to_dict(), default=str)
        with open(self._path, "a") as f:
            fcntl.flock(f.fileno(), fcntl.LOCK_EX)
            try:
                f.write(line + "\n")
            finally:
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)

    def query(self, entry_filter: EntryFilter | None = None) -> list[LogEntry]:
        """Read all records from disk, skipping corrupt lines."""
        if not self._path.exists():
            return []
        entries = []
        with open(self._path, "r") as f:
            fcntl.flock(f.fileno(), fcntl.LOCK_SH)
            try:
                lines = f.readlines()
            finally:
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        for number, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            try:
                entries.append(LogEntry.from_dict(json.loads(line)))
            except (json.JSONDecodeError, KeyError, TypeError):
                logger.warning("Skipping corrupt record at %s:%d", self._path, number)
        return (entry_filter or EntryFilter()).apply(entries)
