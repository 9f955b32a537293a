"""Persistence across engine restarts and recovery from torn writes."""

from pathlib import Path

import pytest

from engram.adapters.rpc.dispatcher import Dispatcher
from engram.adapters.rpc.store_methods import register_store_methods
from engram.core.store.memory_store import MemoryStore
from engram.domain.config import StoreConfig
from tests.helpers import request_line, run_engine


def _session(tmp_path: Path, lines: list[bytes], **init_params):
    """Run one engine process lifetime: initialize, ``lines``, close on EOF."""
    store = MemoryStore(StoreConfig(fsync=False))
    dispatcher = Dispatcher("store")
    register_store_methods(dispatcher, store)
    init = request_line(0, "store/initialize", {"storagePath": str(tmp_path), **init_params})
    try:
        return run_engine(dispatcher, [init, *lines])
    finally:
        store.close()


def _add(request_id: int, text: str, embedding: list[float]) -> bytes:
    return request_line(request_id, "store/add", {"text": text, "embedding": embedding})


class TestRestart:
    """Entries written by one session are visible to the next."""

    def test_entries_survive_restart(self, tmp_path: Path) -> None:
        _, first = _session(
            tmp_path,
            [_add(1, "alpha", [1.0, 0.0]), _add(2, "beta", [0.0, 1.0])],
        )
        alpha_id = first[1].result["id"]

        _, second = _session(
            tmp_path,
            [
                request_line(1, "store/list"),
                request_line(2, "store/search", {"queryEmbedding": [1.0, 0.1], "topK": 1}),
            ],
        )

        assert second[0].result["count"] == 2
        assert second[0].result["dimension"] == 2
        assert [e["text"] for e in second[1].result["entries"]] == ["alpha", "beta"]
        assert second[2].result["results"][0]["entry"]["id"] == alpha_id

    def test_removals_and_clear_survive_restart(self, tmp_path: Path) -> None:
        _, first = _session(tmp_path, [_add(1, "alpha", [1.0, 0.0])])
        alpha_id = first[1].result["id"]
        _session(
            tmp_path,
            [
                request_line(1, "store/remove", {"id": alpha_id}),
                _add(2, "beta", [0.0, 1.0]),
            ],
        )

        _, third = _session(tmp_path, [request_line(1, "store/get", {"id": alpha_id})])

        assert third[0].result["count"] == 1
        assert third[1].error["data"]["storeCode"] == "ENTRY_NOT_FOUND"

        _session(tmp_path, [request_line(1, "store/clear")])
        _, fourth = _session(tmp_path, [])
        assert fourth[0].result["count"] == 0

    def test_removed_id_is_never_reissued(self, tmp_path: Path) -> None:
        _, first = _session(
            tmp_path,
            [_add(1, "alpha", [1.0, 0.0])],
        )
        alpha_id = first[1].result["id"]
        _, second = _session(
            tmp_path,
            [
                request_line(1, "store/remove", {"id": alpha_id}),
                _add(2, "alpha", [1.0, 0.0]),
            ],
        )

        assert second[2].result["id"] != alpha_id


class TestTornTail:
    """A final record cut short by a crash."""

    @pytest.fixture
    def torn_store(self, tmp_path: Path) -> Path:
        _session(tmp_path, [_add(1, "kept", [1.0, 0.0]), _add(2, "torn", [0.0, 1.0])])
        log_path = tmp_path / "entries.log"
        log_path.write_bytes(log_path.read_bytes()[:-7])
        return log_path

    def test_fails_without_recovery(self, tmp_path: Path, torn_store: Path) -> None:
        damaged = torn_store.read_bytes()

        _, responses = _session(tmp_path, [request_line(1, "store/size")])

        data = responses[0].error["data"]
        assert data["storeCode"] == "STORE_CORRUPT"
        assert data["recoverable"] is True
        assert "recoverTruncated" in data["hint"]
        assert responses[1].error["data"]["storeCode"] == "STORE_NOT_LOADED"
        assert torn_store.read_bytes() == damaged

    def test_recovers_on_request(self, tmp_path: Path, torn_store: Path) -> None:
        _, responses = _session(
            tmp_path,
            [request_line(1, "store/list"), _add(2, "after", [0.0, 1.0])],
            recoverTruncated=True,
        )

        assert responses[0].result["recovered"] is True
        assert responses[0].result["count"] == 1
        assert [e["text"] for e in responses[1].result["entries"]] == ["kept"]

        _, reopened = _session(tmp_path, [request_line(1, "store/list")])
        assert reopened[0].result["recovered"] is False
        assert [e["text"] for e in reopened[1].result["entries"]] == ["kept", "after"]

    def test_mid_log_corruption_is_never_recovered(self, tmp_path: Path) -> None:
        _session(tmp_path, [_add(1, "a", [1.0, 0.0]), _add(2, "b", [0.0, 1.0])])
        log_path = tmp_path / "entries.log"
        lines = log_path.read_bytes().split(b"\n")
        lines[1] = lines[1][:20] + b"X" + lines[1][21:]
        log_path.write_bytes(b"\n".join(lines))

        _, responses = _session(tmp_path, [], recoverTruncated=True)

        data = responses[0].error["data"]
        assert data["storeCode"] == "STORE_CORRUPT"
        assert data["recoverable"] is False


class TestCompaction:
    """Rewriting the log down to live entries."""

    def test_compact_shrinks_log_and_keeps_ids(self, tmp_path: Path) -> None:
        _, first = _session(
            tmp_path,
            [
                _add(1, "keep", [1.0, 0.0]),
                _add(2, "drop", [0.0, 1.0]),
            ],
        )
        keep_id = first[1].result["id"]
        drop_id = first[2].result["id"]

        _, second = _session(
            tmp_path,
            [
                request_line(1, "store/remove", {"id": drop_id}),
                request_line(2, "store/compact"),
            ],
        )
        compacted = second[2].result
        assert compacted["count"] == 1
        assert compacted["bytesAfter"] < compacted["bytesBefore"]

        _, third = _session(tmp_path, [request_line(1, "store/get", {"id": keep_id})])
        assert third[1].result["entry"]["text"] == "keep"
