"""Store engine methods.

Binds the ``store/*`` protocol surface to a MemoryStore instance. The store
is constructed by the caller (the server entrypoint) and passed in; there is
no module-level store.
"""

import logging
from typing import Any

from engram.adapters.rpc.dispatcher import Dispatcher
from engram.adapters.rpc.params import (
    AddBatchParams,
    AddParams,
    CheckDuplicateParams,
    DateRangeParams,
    IdParams,
    IdsParams,
    InitializeParams,
    ListParams,
    MetadataFilterParams,
    PatternParams,
    SearchParams,
    TextSearchParams,
    ThresholdParams,
)
from engram.core.store.memory_store import MemoryStore

logger = logging.getLogger(__name__)


class StoreMethods:
    """Handlers for every ``store/*`` method."""

    def __init__(self, store: MemoryStore) -> None:
        self.store = store

    def initialize(self, params: Any) -> dict[str, Any]:
        p = InitializeParams.decode(params, self.store.config)
        summary = self.store.initialize(
            p.storage_path, config=p.config, recover_truncated=p.recover_truncated
        )
        return summary.to_dict()

    def add(self, params: Any) -> dict[str, Any]:
        p = AddParams.decode(params)
        return self.store.add(p.text, p.embedding, p.metadata, force=p.force).to_dict()

    def add_batch(self, params: Any) -> dict[str, Any]:
        p = AddBatchParams.decode(params)
        results = self.store.add_batch(
            [{"text": e.text, "embedding": e.embedding, "metadata": e.metadata} for e in p.entries],
            force=p.force,
        )
        return {"results": [r.to_dict() for r in results]}

    def search(self, params: Any) -> dict[str, Any]:
        p = SearchParams.decode(params)
        lookups = self.store.search(p.query_embedding, p.top_k, p.min_score)
        return {"results": [lookup.to_dict() for lookup in lookups]}

    def search_by_pattern(self, params: Any) -> dict[str, Any]:
        p = PatternParams.decode(params)
        entries = self.store.search_by_pattern(
            p.pattern, ignore_case=p.ignore_case, limit=p.limit
        )
        return {"entries": [e.to_dict() for e in entries]}

    def text_search(self, params: Any) -> dict[str, Any]:
        p = TextSearchParams.decode(params)
        results = self.store.text_search(p.query, p.mode, p.threshold, p.limit)
        return {"results": [r.to_dict() for r in results]}

    def get(self, params: Any) -> dict[str, Any]:
        p = IdParams.decode(params)
        return {"entry": self.store.get(p.id).to_dict()}

    def remove(self, params: Any) -> dict[str, Any]:
        p = IdParams.decode(params)
        removed = self.store.remove(p.id)
        return {"id": removed.id, "removed": True}

    def remove_batch(self, params: Any) -> dict[str, Any]:
        p = IdsParams.decode(params)
        return {"removed": self.store.remove_batch(p.ids)}

    def list(self, params: Any) -> dict[str, Any]:
        p = ListParams.decode(params)
        page, total = self.store.list_entries(p.offset, p.limit)
        return {"entries": [e.to_dict() for e in page], "total": total, "offset": p.offset}

    def clear(self, params: Any) -> dict[str, Any]:
        return {"removed": self.store.clear()}

    def check_duplicate(self, params: Any) -> dict[str, Any]:
        p = CheckDuplicateParams.decode(params)
        return self.store.check_duplicate(p.embedding, p.threshold).to_dict()

    def find_duplicates(self, params: Any) -> dict[str, Any]:
        p = ThresholdParams.decode(params)
        return {"groups": [g.to_dict() for g in self.store.find_duplicates(p.threshold)]}

    def filter_by_metadata(self, params: Any) -> dict[str, Any]:
        p = MetadataFilterParams.decode(params)
        return {"entries": [e.to_dict() for e in self.store.filter_by_metadata(p.filters)]}

    def filter_by_date_range(self, params: Any) -> dict[str, Any]:
        p = DateRangeParams.decode(params)
        entries = self.store.filter_by_date_range(p.after, p.before)
        return {"entries": [e.to_dict() for e in entries]}

    def size(self, params: Any) -> dict[str, Any]:
        return {"count": self.store.size(), "dimension": self.store.dimension}

    def compact(self, params: Any) -> dict[str, Any]:
        return self.store.compact()

    def close(self, params: Any) -> dict[str, Any]:
        self.store.close()
        return {}


def register_store_methods(dispatcher: Dispatcher, store: MemoryStore) -> StoreMethods:
    """Register all ``store/*`` methods on a dispatcher.

    Returns:
        The StoreMethods instance the handlers are bound to.
    """
    methods = StoreMethods(store)
    table = {
        "store/initialize": methods.initialize,
        "store/add": methods.add,
        "store/addBatch": methods.add_batch,
        "store/search": methods.search,
        "store/searchByPattern": methods.search_by_pattern,
        "store/textSearch": methods.text_search,
        "store/get": methods.get,
        "store/remove": methods.remove,
        "store/removeBatch": methods.remove_batch,
        "store/list": methods.list,
        "store/clear": methods.clear,
        "store/checkDuplicate": methods.check_duplicate,
        "store/findDuplicates": methods.find_duplicates,
        "store/filterByMetadata": methods.filter_by_metadata,
        "store/filterByDateRange": methods.filter_by_date_range,
        "store/size": methods.size,
        "store/compact": methods.compact,
        "store/close": methods.close,
    }
    for name, handler in table.items():
        dispatcher.register(name, handler)
    logger.debug("Registered %d store methods", len(table))
    return methods
