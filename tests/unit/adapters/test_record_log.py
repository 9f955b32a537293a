"""Unit tests for the append-only record log."""

import json
import logging
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from engram.adapters.journal.record_log import (
    DEFAULT_LOG_NAME,
    RecordLog,
    encode_record,
    inspect_log,
    resolve_log_path,
)
from engram.domain.entities import Entry
from engram.domain.exceptions import CorruptStoreError, StoreIOError, StoreSerializationError


@pytest.fixture
def log_path(tmp_path: Path) -> Path:
    return tmp_path / "entries.log"


def _open(path: Path, recover_truncated: bool = False) -> tuple[RecordLog, list[Entry]]:
    log = RecordLog(path, fsync=False)
    result = log.load(recover_truncated=recover_truncated)
    return log, result.entries


class TestRecordFormat:
    """Tests for the on-disk record shape."""

    def test_new_log_starts_with_header(self, log_path: Path) -> None:
        log, entries = _open(log_path)
        log.close()

        assert entries == []
        digest, body = log_path.read_bytes().rstrip(b"\n").split(b" ", 1)
        assert len(digest) == 64
        assert json.loads(body) == {
            "seq": 0,
            "op": "header",
            "format": "engram-log",
            "version": 1,
        }

    def test_encode_record_rejects_nan(self) -> None:
        with pytest.raises(StoreSerializationError):
            encode_record({"seq": 1, "op": "add", "entry": {"embedding": [float("nan")]}})

    def test_directory_path_holds_default_log_name(self, tmp_path: Path) -> None:
        assert resolve_log_path(tmp_path) == tmp_path / DEFAULT_LOG_NAME
        assert resolve_log_path(tmp_path / "x.log") == tmp_path / "x.log"


class TestReplay:
    """Tests for rebuilding entries from the log."""

    def test_replays_add_remove_clear(self, log_path: Path) -> None:
        log, _ = _open(log_path)
        a = Entry.create("alpha", [1.0, 0.0])
        b = Entry.create("beta", [0.0, 1.0], {"tag": "x"})
        c = Entry.create("gamma", [1.0, 1.0])
        log.append_add(a)
        log.append_add(b)
        log.append_remove(a.id)
        log.close()

        _, entries = _open(log_path)
        assert entries == [b]

        log, _ = _open(log_path)
        log.append_clear()
        log.append_add(c)
        log.close()

        _, entries = _open(log_path)
        assert [e.text for e in entries] == ["gamma"]

    def test_entries_keep_created_at_and_metadata(self, log_path: Path) -> None:
        log, _ = _open(log_path)
        entry = Entry.create("alpha", [0.5, 0.5], {"n": 1, "tags": ["a"]})
        log.append_add(entry)
        log.close()

        _, entries = _open(log_path)
        assert entries[0].created_at == entry.created_at
        assert entries[0].metadata == {"n": 1, "tags": ["a"]}

    def test_records_count_includes_header(self, log_path: Path) -> None:
        log, _ = _open(log_path)
        log.append_add(Entry.create("a", [1.0]))
        log.close()

        with RecordLog(log_path, fsync=False) as reopened:
            result = reopened.load()
        assert result.records == 2


class TestCorruption:
    """Tests for integrity validation and truncated-tail recovery."""

    def _write_two_entries(self, log_path: Path) -> None:
        log, _ = _open(log_path)
        log.append_add(Entry.create("a", [1.0, 0.0]))
        log.append_add(Entry.create("b", [0.0, 1.0]))
        log.close()

    def test_torn_final_record_fails_without_recovery(self, log_path: Path) -> None:
        self._write_two_entries(log_path)
        data = log_path.read_bytes()
        log_path.write_bytes(data[:-10])

        with pytest.raises(CorruptStoreError) as exc_info:
            _open(log_path)

        assert exc_info.value.recoverable is True
        assert log_path.read_bytes() == data[:-10]

    def test_torn_final_record_recovered_on_request(
        self, log_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        self._write_two_entries(log_path)
        data = log_path.read_bytes()
        last_start = data.rstrip(b"\n").rfind(b"\n") + 1
        log_path.write_bytes(data[:-10])

        with caplog.at_level(logging.WARNING):
            log = RecordLog(log_path, fsync=False)
            result = log.load(recover_truncated=True)
            log.close()

        assert [e.text for e in result.entries] == ["a"]
        assert result.truncated_bytes == len(data) - 10 - last_start
        assert log_path.read_bytes() == data[:last_start]
        assert any("Truncating" in r.getMessage() for r in caplog.records)

    def test_appends_after_recovery_are_valid(self, log_path: Path) -> None:
        self._write_two_entries(log_path)
        log_path.write_bytes(log_path.read_bytes()[:-3])

        log, _ = _open(log_path, recover_truncated=True)
        log.append_add(Entry.create("c", [1.0, 1.0]))
        log.close()

        _, entries = _open(log_path)
        assert [e.text for e in entries] == ["a", "c"]

    def test_checksum_mismatch_in_middle_is_fatal(self, log_path: Path) -> None:
        self._write_two_entries(log_path)
        lines = log_path.read_bytes().split(b"\n")
        lines[1] = lines[1].replace(b'"a"', b'"z"')
        log_path.write_bytes(b"\n".join(lines))

        with pytest.raises(CorruptStoreError) as exc_info:
            _open(log_path, recover_truncated=True)

        assert exc_info.value.recoverable is False
        assert "checksum" in exc_info.value.message

    def test_semantic_error_in_last_record_is_not_recoverable(
        self, log_path: Path
    ) -> None:
        self._write_two_entries(log_path)
        with log_path.open("ab") as f:
            f.write(encode_record({"seq": 3, "op": "remove", "id": "no-such-id"}))

        with pytest.raises(CorruptStoreError) as exc_info:
            _open(log_path, recover_truncated=True)

        assert exc_info.value.recoverable is False

    def test_sequence_gap_is_corruption(self, log_path: Path) -> None:
        self._write_two_entries(log_path)
        with log_path.open("ab") as f:
            f.write(encode_record({"seq": 9, "op": "clear"}))

        with pytest.raises(CorruptStoreError, match="sequence"):
            _open(log_path)

    def test_dimension_mismatch_on_load_is_corruption(self, log_path: Path) -> None:
        self._write_two_entries(log_path)
        entry = Entry.create("c", [1.0, 2.0, 3.0])
        with log_path.open("ab") as f:
            f.write(encode_record({"seq": 3, "op": "add", "entry": entry.to_dict()}))

        with pytest.raises(CorruptStoreError, match="dimension"):
            _open(log_path)

    def test_reused_id_is_corruption(self, log_path: Path) -> None:
        log, _ = _open(log_path)
        entry = Entry.create("a", [1.0])
        log.append_add(entry)
        log.append_remove(entry.id)
        log.close()
        with log_path.open("ab") as f:
            f.write(encode_record({"seq": 3, "op": "add", "entry": entry.to_dict()}))

        with pytest.raises(CorruptStoreError, match="reused"):
            _open(log_path)

    def test_missing_header_is_corruption(self, log_path: Path) -> None:
        log_path.write_bytes(encode_record({"seq": 0, "op": "clear"}))

        with pytest.raises(CorruptStoreError, match="header"):
            _open(log_path)


class TestWrites:
    """Tests for append failure handling and compaction."""

    def test_failed_append_raises_io_error_and_keeps_sequence(
        self, log_path: Path
    ) -> None:
        log, _ = _open(log_path)
        size = log.size_bytes()
        log.close()
        failing = MagicMock()
        failing.write.side_effect = OSError("No space left on device")
        log._file = failing

        with pytest.raises(StoreIOError, match="No space left"):
            log.append_clear()

        failing.truncate.assert_called_once_with(size)
        assert log.size_bytes() == size

    def test_rewrite_keeps_only_live_entries(self, log_path: Path) -> None:
        log, _ = _open(log_path)
        keep = Entry.create("keep", [1.0, 0.0])
        drop = Entry.create("drop", [0.0, 1.0])
        log.append_add(keep)
        log.append_add(drop)
        log.append_remove(drop.id)
        before = log.size_bytes()

        log.rewrite([keep])
        after = log.size_bytes()
        log.append_add(Entry.create("later", [1.0, 1.0]))
        log.close()

        assert after < before
        assert not log_path.with_name(log_path.name + ".tmp").exists()
        _, entries = _open(log_path)
        assert [e.text for e in entries] == ["keep", "later"]
        assert entries[0].id == keep.id


class TestInspectLog:
    """Tests for read-only verification."""

    def test_reports_valid_log(self, log_path: Path) -> None:
        log, _ = _open(log_path)
        log.append_add(Entry.create("a", [1.0, 2.0]))
        log.close()

        report = inspect_log(log_path)

        assert report["records"] == 2
        assert report["entries"] == 1
        assert report["dimension"] == 2
        assert "error" not in report

    def test_reports_corruption_without_modifying(self, log_path: Path) -> None:
        log, _ = _open(log_path)
        log.append_add(Entry.create("a", [1.0, 2.0]))
        log.close()
        damaged = log_path.read_bytes()[:-5]
        log_path.write_bytes(damaged)

        report = inspect_log(log_path)

        assert report["recoverable"] is True
        assert "error" in report
        assert log_path.read_bytes() == damaged

    def test_missing_file_is_io_error(self, tmp_path: Path) -> None:
        with pytest.raises(StoreIOError):
            inspect_log(tmp_path / "absent.log")
