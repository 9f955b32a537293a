"""Local vector memory store.

Owns the in-memory entry set and its record log. Every mutating call writes
its record to the log first and only then updates memory, so a response the
host receives always describes durable state.

The store has exactly one client and is driven from a single sequential
loop; it holds no locks.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from pathlib import Path
from typing import Any

from engram.adapters.journal.record_log import RecordLog, resolve_log_path
from engram.core.store.dedup import check_duplicate, find_duplicate_groups
from engram.core.store.similarity import EmbeddingMatrix, rank, score_all
from engram.core.store.text_search import DEFAULT_TEXT_THRESHOLD, score_text
from engram.domain.config import StoreConfig
from engram.domain.entities import (
    AddResult,
    DuplicateBehavior,
    DuplicateCheck,
    DuplicateGroup,
    Entry,
    Lookup,
    MetadataFilter,
    MetadataMatchMode,
    StoreSummary,
    TextMatchMode,
)
from engram.domain.exceptions import (
    DimensionMismatchError,
    DuplicateEntryError,
    EmptyEmbeddingError,
    EmptyTextError,
    EntryNotFoundError,
    InvalidRegexError,
    StoreNotLoadedError,
)
from engram.ports.storage import EntryLog

logger = logging.getLogger(__name__)

# Used by duplicate checks when detection is disabled in config
DEFAULT_DUPLICATE_THRESHOLD = 0.95

LogFactory = Callable[[Path, bool], EntryLog]


def _default_log_factory(path: Path, fsync: bool) -> EntryLog:
    return RecordLog(path, fsync=fsync)


class MemoryStore:
    """Persistent store of text entries and their embeddings.

    Starts uninitialized; ``initialize`` loads (or creates) the backing log.
    Every other operation raises StoreNotLoadedError until then.
    """

    def __init__(
        self,
        config: StoreConfig | None = None,
        log_factory: LogFactory = _default_log_factory,
    ) -> None:
        """Create an uninitialized store.

        Args:
            config: Default store configuration.
            log_factory: Builds the EntryLog for a storage path.
        """
        self._base_config = config or StoreConfig()
        self.config = self._base_config
        self._log_factory = log_factory
        self._log: EntryLog | None = None
        self._entries: dict[str, Entry] = {}
        self._ordered: list[Entry] | None = None
        self._matrix = EmbeddingMatrix()
        self._recovered = False

    # -- Lifecycle -----------------------------------------------------------

    @property
    def initialized(self) -> bool:
        return self._log is not None

    @property
    def dimension(self) -> int | None:
        for entry in self._entries.values():
            return entry.dimension
        return None

    def initialize(
        self,
        storage_path: str | Path | None = None,
        *,
        config: StoreConfig | None = None,
        recover_truncated: bool = False,
    ) -> StoreSummary:
        """Open or create the backing log and load its entries.

        Re-initializing with the path already open only applies ``config``;
        entries are never loaded twice. A different path closes the current
        log first.

        Args:
            storage_path: Log file or directory. Falls back to
                ``config.storage_path``.
            config: Overrides for this store session.
            recover_truncated: Drop a torn final record instead of failing.

        Raises:
            CorruptStoreError: If the log fails validation.
            StoreIOError: If the log cannot be read or created.
            ValueError: If no storage path is given or configured.
        """
        effective = config or self._base_config
        path_value = storage_path if storage_path is not None else effective.storage_path
        if path_value is None:
            raise ValueError("storagePath is required (none configured)")
        log_path = resolve_log_path(path_value)

        if self._log is not None and self._log.path == log_path:
            self.config = effective
            logger.debug("Store already initialized at %s", log_path)
            return self._summary()

        if self._log is not None:
            logger.info("Switching store from %s to %s", self._log.path, log_path)
            self.close()

        log = self._log_factory(log_path, effective.fsync)
        result = log.load(recover_truncated=recover_truncated)

        self.config = effective
        self._log = log
        self._entries = {entry.id: entry for entry in result.entries}
        self._recovered = result.truncated_bytes > 0
        self._invalidate()
        logger.info(
            "Store initialized at %s with %d entries", log_path, len(self._entries)
        )
        return self._summary()

    def close(self) -> None:
        """Flush and close the backing log; the store becomes uninitialized."""
        if self._log is None:
            return
        log, self._log = self._log, None
        self._entries = {}
        self._invalidate()
        log.close()
        logger.info("Store closed (%s)", log.path)

    # -- Mutations -----------------------------------------------------------

    def add(
        self,
        text: str,
        embedding: list[float],
        metadata: dict[str, Any] | None = None,
        *,
        force: bool = False,
    ) -> AddResult:
        """Add one entry unless it duplicates an existing one.

        Raises:
            StoreNotLoadedError: Before initialize.
            EmptyTextError: If ``text`` is empty.
            EmptyEmbeddingError: If ``embedding`` is empty.
            DimensionMismatchError: If the vector length differs from the store's.
            DuplicateEntryError: If a near-duplicate exists and the behaviour is
                "error".
            StoreIOError, StoreSerializationError: If the record cannot be written.
        """
        log = self._require_loaded()
        if not text:
            raise EmptyTextError()
        if not embedding:
            raise EmptyEmbeddingError()
        self._check_dimension(embedding)

        threshold = self.config.duplicate_threshold
        similarity: float | None = None
        if not force and threshold is not None and self._entries:
            check = self._nearest_duplicate(embedding, threshold)
            similarity = check.similarity
            if check.is_duplicate and check.existing is not None:
                assert check.similarity is not None
                behavior = self.config.duplicate_behavior
                if behavior is DuplicateBehavior.ERROR:
                    raise DuplicateEntryError(check.similarity, check.existing.id)
                if behavior is DuplicateBehavior.WARN:
                    logger.warning(
                        "Skipping near-duplicate of %s (similarity %.4f)",
                        check.existing.id,
                        check.similarity,
                    )
                return AddResult(
                    id=check.existing.id, duplicate=True, similarity=check.similarity
                )

        entry = Entry.create(text, embedding, metadata)
        log.append_add(entry)
        self._entries[entry.id] = entry
        self._invalidate()
        logger.debug("Added entry %s (dim=%d)", entry.id, entry.dimension)
        return AddResult(id=entry.id, similarity=similarity)

    def add_batch(self, items: list[dict[str, Any]], *, force: bool = False) -> list[AddResult]:
        """Add entries one by one, stopping at the first failure.

        Entries added before a failure stay stored; each add is durable on its
        own.

        Args:
            items: Dicts with ``text``, ``embedding`` and optional ``metadata``.
        """
        return [
            self.add(
                item["text"], item["embedding"], item.get("metadata"), force=force
            )
            for item in items
        ]

    def remove(self, entry_id: str) -> Entry:
        """Remove an entry by id.

        Raises:
            StoreNotLoadedError: Before initialize.
            EntryNotFoundError: If the id is unknown.
        """
        log = self._require_loaded()
        entry = self._entries.get(entry_id)
        if entry is None:
            raise EntryNotFoundError(entry_id)
        log.append_remove(entry_id)
        del self._entries[entry_id]
        self._invalidate()
        logger.debug("Removed entry %s", entry_id)
        return entry

    def remove_batch(self, entry_ids: list[str]) -> int:
        """Remove the ids that exist; unknown ids are ignored.

        Returns:
            Number of entries removed.
        """
        self._require_loaded()
        removed = 0
        for entry_id in entry_ids:
            if entry_id in self._entries:
                self.remove(entry_id)
                removed += 1
        return removed

    def clear(self) -> int:
        """Remove every entry.

        Returns:
            Number of entries removed.
        """
        log = self._require_loaded()
        count = len(self._entries)
        log.append_clear()
        self._entries = {}
        self._invalidate()
        logger.info("Cleared %d entries", count)
        return count

    def compact(self) -> dict[str, int]:
        """Rewrite the log so it holds only live entries.

        Returns:
            Dict with ``count``, ``bytesBefore`` and ``bytesAfter``.
        """
        log = self._require_loaded()
        before = log.size_bytes()
        log.rewrite(self._snapshot())
        after = log.size_bytes()
        logger.info("Compacted %s: %d -> %d bytes", log.path, before, after)
        return {"count": len(self._entries), "bytesBefore": before, "bytesAfter": after}

    # -- Reads ---------------------------------------------------------------

    def get(self, entry_id: str) -> Entry:
        """Look up an entry by id.

        Raises:
            EntryNotFoundError: If the id is unknown.
        """
        self._require_loaded()
        entry = self._entries.get(entry_id)
        if entry is None:
            raise EntryNotFoundError(entry_id)
        return entry

    def list_entries(self, offset: int = 0, limit: int | None = None) -> tuple[list[Entry], int]:
        """Entries in insertion order, optionally paginated.

        Returns:
            (page, total) where total is the full entry count.
        """
        self._require_loaded()
        entries = self._snapshot()
        end = None if limit is None else offset + limit
        return entries[offset:end], len(entries)

    def size(self) -> int:
        self._require_loaded()
        return len(self._entries)

    def search(
        self,
        query_embedding: list[float],
        top_k: int | None = None,
        min_score: float | None = None,
    ) -> list[Lookup]:
        """Exact cosine-similarity search.

        Results are ordered by descending score; equal scores keep insertion
        order. An empty store returns no results.

        Raises:
            EmptyEmbeddingError: If the query is empty.
            DimensionMismatchError: If the query length differs from the store's.
        """
        self._require_loaded()
        if not query_embedding:
            raise EmptyEmbeddingError()
        if not self._entries:
            return []
        self._check_dimension(query_embedding)

        entries = self._snapshot()
        matrix, norms = self._matrix.get(entries)
        scores = score_all(matrix, norms, query_embedding)
        k = top_k if top_k is not None else self.config.default_top_k
        return [Lookup(entry=entries[i], score=float(scores[i])) for i in rank(scores, k, min_score)]

    def search_by_pattern(
        self, pattern: str, *, ignore_case: bool = False, limit: int | None = None
    ) -> list[Entry]:
        """Entries whose text matches a regular expression, in insertion order.

        Raises:
            InvalidRegexError: If the pattern does not compile or is too long.
        """
        self._require_loaded()
        compiled = self._compile(pattern, re.IGNORECASE if ignore_case else 0)
        matches = [e for e in self._snapshot() if compiled.search(e.text)]
        return matches if limit is None else matches[:limit]

    def text_search(
        self,
        query: str,
        mode: TextMatchMode = TextMatchMode.FUZZY,
        threshold: float | None = None,
        limit: int | None = None,
    ) -> list[Lookup]:
        """Lexical search over entry text.

        Results are ordered by descending score; equal scores keep insertion
        order. ``threshold`` (default 0.3) applies to the graded modes (token,
        fuzzy) only.

        Raises:
            EmptyTextError: If the query is empty.
            InvalidRegexError: In regex mode, if the query is not a valid pattern.
        """
        self._require_loaded()
        if not query:
            raise EmptyTextError("search")
        compiled = self._compile(query) if mode is TextMatchMode.REGEX else None
        if threshold is None:
            threshold = DEFAULT_TEXT_THRESHOLD

        hits = []
        for entry in self._snapshot():
            score = score_text(query, entry.text, mode, threshold, compiled)
            if score is not None:
                hits.append(Lookup(entry=entry, score=score))
        hits.sort(key=lambda hit: -hit.score)
        return hits if limit is None else hits[:limit]

    def check_duplicate(
        self, embedding: list[float], threshold: float | None = None
    ) -> DuplicateCheck:
        """Look for a near-duplicate without storing anything."""
        self._require_loaded()
        if not embedding:
            raise EmptyEmbeddingError()
        if not self._entries:
            return DuplicateCheck(is_duplicate=False)
        self._check_dimension(embedding)
        return self._nearest_duplicate(embedding, self._threshold(threshold))

    def find_duplicates(self, threshold: float | None = None) -> list[DuplicateGroup]:
        """Group stored near-duplicates around their earliest entry."""
        self._require_loaded()
        return find_duplicate_groups(self._snapshot(), self._threshold(threshold))

    def filter_by_metadata(self, filters: list[MetadataFilter]) -> list[Entry]:
        """Entries matching every filter, in insertion order.

        Raises:
            InvalidRegexError: If a regex filter's pattern is invalid.
        """
        self._require_loaded()
        for f in filters:
            if f.mode is MetadataMatchMode.REGEX:
                if not isinstance(f.value, str):
                    raise InvalidRegexError(repr(f.value), "pattern must be a string")
                self._compile(f.value)
        return [e for e in self._snapshot() if all(f.matches(e.metadata) for f in filters)]

    def filter_by_date_range(
        self, after: int | None = None, before: int | None = None
    ) -> list[Entry]:
        """Entries created within [after, before] (epoch ms, inclusive)."""
        self._require_loaded()
        return [
            e
            for e in self._snapshot()
            if (after is None or e.created_at >= after)
            and (before is None or e.created_at <= before)
        ]

    # -- Internals -----------------------------------------------------------

    def _require_loaded(self) -> EntryLog:
        if self._log is None:
            raise StoreNotLoadedError()
        return self._log

    def _summary(self) -> StoreSummary:
        assert self._log is not None
        return StoreSummary(
            path=str(self._log.path),
            count=len(self._entries),
            dimension=self.dimension,
            recovered=self._recovered,
        )

    def _snapshot(self) -> list[Entry]:
        if self._ordered is None:
            self._ordered = list(self._entries.values())
        return self._ordered

    def _compile(self, pattern: str, flags: int = 0) -> re.Pattern[str]:
        max_len = self.config.max_regex_pattern_length
        if len(pattern) > max_len:
            raise InvalidRegexError(pattern, f"pattern longer than {max_len} characters")
        try:
            return re.compile(pattern, flags)
        except re.error as e:
            raise InvalidRegexError(pattern, str(e)) from e

    def _invalidate(self) -> None:
        self._ordered = None
        self._matrix.invalidate()

    def _check_dimension(self, vector: list[float]) -> None:
        dimension = self.dimension
        if dimension is not None and len(vector) != dimension:
            raise DimensionMismatchError(dimension, len(vector))

    def _threshold(self, threshold: float | None) -> float:
        if threshold is not None:
            return threshold
        return self.config.duplicate_threshold or DEFAULT_DUPLICATE_THRESHOLD

    def _nearest_duplicate(self, embedding: list[float], threshold: float) -> DuplicateCheck:
        entries = self._snapshot()
        matrix, norms = self._matrix.get(entries)
        return check_duplicate(embedding, entries, matrix, norms, threshold)
