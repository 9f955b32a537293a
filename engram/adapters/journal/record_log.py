"""Append-only record log backing the memory store.

Each line of the file is one self-describing record::

    <blake3 hex digest of body> <json body>\\n

The body carries a sequence number and an op (``header``, ``add``,
``remove``, ``clear``). Replaying the records in order rebuilds the entry set.
A record is only ever appended, so a crash can at worst leave one torn record
at the end of the file; everything before it is still verifiable.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Any, Self

import blake3

from engram.domain.entities import Entry
from engram.domain.exceptions import (
    CorruptStoreError,
    StoreIOError,
    StoreSerializationError,
)
from engram.ports.storage import LoadResult

logger = logging.getLogger(__name__)

LOG_FORMAT = "engram-log"
LOG_VERSION = 1
DEFAULT_LOG_NAME = "entries.log"

_DIGEST_LEN = 64


class _StructuralError(Exception):
    """A record that is not even well-formed (torn write candidate)."""


class _SemanticError(Exception):
    """A well-formed record whose content contradicts the log."""


@dataclass
class _Segment:
    offset: int
    raw: bytes
    terminated: bool


def resolve_log_path(path: str | Path) -> Path:
    """Map a storage path to the log file.

    An existing directory holds the log under ``entries.log``; anything else is
    the log file itself.
    """
    p = Path(path).expanduser()
    if p.is_dir():
        return p / DEFAULT_LOG_NAME
    return p


def encode_record(body: dict[str, Any]) -> bytes:
    """Encode one record line (digest, space, JSON, newline).

    Raises:
        StoreSerializationError: If the body is not JSON-encodable (e.g. NaN).
    """
    try:
        payload = json.dumps(
            body, separators=(",", ":"), ensure_ascii=False, allow_nan=False
        ).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise StoreSerializationError(str(e)) from e
    digest = blake3.blake3(payload).hexdigest()
    return digest.encode("ascii") + b" " + payload + b"\n"


def _iter_segments(data: bytes) -> Iterator[_Segment]:
    offset = 0
    size = len(data)
    while offset < size:
        end = data.find(b"\n", offset)
        if end == -1:
            yield _Segment(offset, data[offset:], terminated=False)
            return
        yield _Segment(offset, data[offset:end], terminated=True)
        offset = end + 1


def _decode_segment(segment: _Segment) -> dict[str, Any]:
    if not segment.terminated:
        raise _StructuralError("incomplete record (missing line terminator)")
    raw = segment.raw
    if len(raw) <= _DIGEST_LEN + 1 or raw[_DIGEST_LEN : _DIGEST_LEN + 1] != b" ":
        raise _StructuralError("malformed record framing")
    digest = raw[:_DIGEST_LEN].decode("ascii", errors="replace")
    payload = raw[_DIGEST_LEN + 1 :]
    if blake3.blake3(payload).hexdigest() != digest:
        raise _StructuralError("checksum mismatch")
    try:
        body = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise _StructuralError(f"undecodable record body: {e}") from e
    if not isinstance(body, dict):
        raise _StructuralError("record body is not an object")
    return body


class _Replay:
    """Applies decoded records in order, validating them against each other."""

    def __init__(self) -> None:
        self.entries: dict[str, Entry] = {}
        self.seen_ids: set[str] = set()
        self.next_seq = 0

    @property
    def dimension(self) -> int | None:
        for entry in self.entries.values():
            return entry.dimension
        return None

    def apply(self, body: dict[str, Any]) -> None:
        seq = body.get("seq")
        if seq != self.next_seq:
            raise _SemanticError(f"expected sequence {self.next_seq}, found {seq!r}")
        op = body.get("op")
        if self.next_seq == 0:
            if op != "header" or body.get("format") != LOG_FORMAT:
                raise _SemanticError("missing log header")
            if body.get("version") != LOG_VERSION:
                raise _SemanticError(f"unsupported log version {body.get('version')!r}")
        elif op == "add":
            self._apply_add(body.get("entry"))
        elif op == "remove":
            entry_id = body.get("id")
            if entry_id not in self.entries:
                raise _SemanticError(f"remove of unknown entry {entry_id!r}")
            del self.entries[entry_id]
        elif op == "clear":
            self.entries.clear()
        else:
            raise _SemanticError(f"unknown op {op!r}")
        self.next_seq += 1

    def _apply_add(self, data: Any) -> None:
        if not isinstance(data, dict):
            raise _SemanticError("add record without entry")
        try:
            entry = Entry.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise _SemanticError(f"undecodable entry: {e}") from e
        if not entry.text or not entry.embedding:
            raise _SemanticError(f"entry {entry.id} has empty text or embedding")
        if entry.id in self.seen_ids:
            raise _SemanticError(f"entry id {entry.id} reused")
        dimension = self.dimension
        if dimension is not None and entry.dimension != dimension:
            raise _SemanticError(
                f"entry {entry.id} has dimension {entry.dimension}, expected {dimension}"
            )
        self.seen_ids.add(entry.id)
        self.entries[entry.id] = entry


def replay_bytes(data: bytes) -> _Replay:
    """Replay a whole log image.

    Raises:
        CorruptStoreError: At the first invalid record. ``recoverable`` is set
            when the bad record is a malformed final record.
    """
    state = _Replay()
    segments = list(_iter_segments(data))
    for index, segment in enumerate(segments):
        is_last = index == len(segments) - 1
        try:
            state.apply(_decode_segment(segment))
        except _StructuralError as e:
            raise CorruptStoreError(str(e), segment.offset, recoverable=is_last) from e
        except _SemanticError as e:
            raise CorruptStoreError(str(e), segment.offset) from e
    if segments and state.next_seq == 0:
        raise CorruptStoreError("missing log header", 0)
    return state


class RecordLog:
    """File-backed implementation of the EntryLog port.

    The file handle stays open in append mode between calls; every append is
    flushed and (when ``fsync`` is on) synced before returning, so a record the
    caller saw succeed survives a crash.
    """

    def __init__(self, path: str | Path, *, fsync: bool = True) -> None:
        """Initialize the log.

        Args:
            path: Log file, or an existing directory to hold ``entries.log``.
            fsync: Sync file contents to disk after each write.
        """
        self._path = resolve_log_path(path)
        self._fsync = fsync
        self._file: IO[bytes] | None = None
        self._next_seq = 0
        self._size = 0

    @property
    def path(self) -> Path:
        return self._path

    def load(self, recover_truncated: bool = False) -> LoadResult:
        """Open or create the log and replay its records.

        Args:
            recover_truncated: Truncate a malformed final record instead of
                failing. The drop is logged at WARNING level.

        Returns:
            LoadResult with the live entries.

        Raises:
            CorruptStoreError: If a record fails validation and cannot (or may
                not) be recovered.
            StoreIOError: If the file cannot be read or created.
        """
        self.close()
        try:
            data = self._path.read_bytes() if self._path.exists() else b""
        except OSError as e:
            raise StoreIOError(f"cannot read {self._path}: {e}") from e

        truncated_bytes = 0
        try:
            state = replay_bytes(data)
        except CorruptStoreError as e:
            if not (e.recoverable and recover_truncated):
                logger.error("Refusing to load %s: %s", self._path, e.message)
                raise
            truncated_bytes = len(data) - e.offset
            logger.warning(
                "Truncating %d bytes of incomplete trailing record from %s at byte %d",
                truncated_bytes,
                self._path,
                e.offset,
            )
            data = data[: e.offset]
            self._truncate(e.offset)
            state = replay_bytes(data)

        self._open_append()
        self._size = len(data)
        self._next_seq = state.next_seq
        if self._next_seq == 0:
            self._write({"op": "header", "format": LOG_FORMAT, "version": LOG_VERSION})
            self._sync_dir()
            logger.info("Created record log %s", self._path)

        entries = list(state.entries.values())
        logger.debug(
            "Replayed %d records from %s (%d live entries)",
            self._next_seq,
            self._path,
            len(entries),
        )
        return LoadResult(
            entries=entries, records=self._next_seq, truncated_bytes=truncated_bytes
        )

    def append_add(self, entry: Entry) -> None:
        self._write({"op": "add", "entry": entry.to_dict()})

    def append_remove(self, entry_id: str) -> None:
        self._write({"op": "remove", "id": entry_id})

    def append_clear(self) -> None:
        self._write({"op": "clear"})

    def rewrite(self, entries: list[Entry]) -> None:
        """Atomically replace the log with one holding only ``entries``.

        The new image is written to a sibling temp file, synced, then renamed
        over the old log, so a crash leaves either the old or the new file.
        """
        lines = [
            encode_record(
                {"seq": 0, "op": "header", "format": LOG_FORMAT, "version": LOG_VERSION}
            )
        ]
        for seq, entry in enumerate(entries, start=1):
            lines.append(encode_record({"seq": seq, "op": "add", "entry": entry.to_dict()}))
        image = b"".join(lines)

        tmp_path = self._path.with_name(self._path.name + ".tmp")
        try:
            with tmp_path.open("wb") as f:
                f.write(image)
                f.flush()
                os.fsync(f.fileno())
            self.close()
            os.replace(tmp_path, self._path)
        except OSError as e:
            raise StoreIOError(f"cannot rewrite {self._path}: {e}") from e
        finally:
            if tmp_path.exists():
                tmp_path.unlink()
            # Reopens the new log, or the untouched old one after a failure
            if self._file is None:
                self._open_append()
        self._size = len(image)
        self._next_seq = len(entries) + 1
        self._sync_dir()

    def size_bytes(self) -> int:
        return self._size

    def close(self) -> None:
        """Close the file handle if open.

        Safe to call multiple times.
        """
        if self._file is not None:
            try:
                self._file.close()
            except OSError as e:
                raise StoreIOError(f"cannot close {self._path}: {e}") from e
            finally:
                self._file = None

    def __enter__(self) -> Self:
        """Enter context manager."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> bool:
        """Exit context manager, closing the file."""
        self.close()
        return False

    def _open_append(self) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._file = self._path.open("ab")
        except OSError as e:
            raise StoreIOError(f"cannot open {self._path}: {e}") from e

    def _write(self, body: dict[str, Any]) -> None:
        if self._file is None:
            raise StoreIOError(f"record log {self._path} is not open")
        line = encode_record({"seq": self._next_seq, **body})
        try:
            self._file.write(line)
            self._file.flush()
            if self._fsync:
                os.fsync(self._file.fileno())
        except OSError as e:
            # Drop any partial bytes so later appends stay verifiable
            self._rollback()
            raise StoreIOError(f"cannot append to {self._path}: {e}") from e
        self._size += len(line)
        self._next_seq += 1

    def _rollback(self) -> None:
        try:
            if self._file is not None:
                self._file.truncate(self._size)
        except OSError as e:
            logger.error("Could not roll back partial record in %s: %s", self._path, e)

    def _truncate(self, size: int) -> None:
        try:
            with self._path.open("r+b") as f:
                f.truncate(size)
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            raise StoreIOError(f"cannot truncate {self._path}: {e}") from e

    def _sync_dir(self) -> None:
        if not self._fsync or os.name != "posix":
            return
        try:
            fd = os.open(self._path.parent, os.O_RDONLY)
        except OSError as e:
            raise StoreIOError(f"cannot sync directory of {self._path}: {e}") from e
        try:
            os.fsync(fd)
        finally:
            os.close(fd)


def inspect_log(path: str | Path) -> dict[str, Any]:
    """Validate a log without modifying it.

    Returns:
        Dict with ``path``, ``bytes``, ``records``, ``entries``, ``dimension``
        and, when invalid, ``error``, ``offset`` and ``recoverable``.

    Raises:
        StoreIOError: If the file cannot be read.
    """
    log_path = resolve_log_path(path)
    try:
        data = log_path.read_bytes()
    except OSError as e:
        raise StoreIOError(f"cannot read {log_path}: {e}") from e
    report: dict[str, Any] = {"path": str(log_path), "bytes": len(data)}
    try:
        state = replay_bytes(data)
    except CorruptStoreError as e:
        report.update(error=e.message, offset=e.offset, recoverable=e.recoverable)
        return report
    report.update(
        records=state.next_seq, entries=len(state.entries), dimension=state.dimension
    )
    return report
