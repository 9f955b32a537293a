"""Storage port interface for the memory store's backing file.

The store never rewrites its file in place: every mutation is one appended,
independently verifiable record. Replaying the records in order rebuilds the
entry set.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from engram.domain.entities import Entry


@dataclass
class LoadResult:
    """Entries rebuilt by replaying a record log.

    Attributes:
        entries: Live entries in insertion order.
        records: Number of records replayed (header included).
        truncated_bytes: Bytes dropped from a torn trailing record, 0 if none.
    """

    entries: list[Entry] = field(default_factory=list)
    records: int = 0
    truncated_bytes: int = 0


class EntryLog(Protocol):
    """Append-only log of store mutations."""

    @property
    def path(self) -> Path:
        """Location of the backing file."""
        ...

    def load(self, recover_truncated: bool = False) -> LoadResult:
        """Open (or create) the log and replay it.

        Raises:
            CorruptStoreError: If a record fails validation.
            StoreIOError: If the file cannot be read or created.
        """
        ...

    def append_add(self, entry: Entry) -> None:
        """Durably record an added entry."""
        ...

    def append_remove(self, entry_id: str) -> None:
        """Durably record a removal."""
        ...

    def append_clear(self) -> None:
        """Durably record that every entry was removed."""
        ...

    def rewrite(self, entries: list[Entry]) -> None:
        """Atomically replace the log with one holding only ``entries``."""
        ...

    def size_bytes(self) -> int:
        """Current size of the backing file."""
        ...

    def close(self) -> None:
        """Flush and release the file handle."""
        ...
