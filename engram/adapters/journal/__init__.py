"""Append-only record log storage for the memory store."""

from engram.adapters.journal.record_log import RecordLog, inspect_log, resolve_log_path

__all__ = ["RecordLog", "inspect_log", "resolve_log_path"]
