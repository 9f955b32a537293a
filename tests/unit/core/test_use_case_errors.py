"""Tests for request error formatting and logging."""

import logging

import pytest

from engram.core.use_case_errors import format_error_message, log_use_case_error
from engram.domain.exceptions import EntryNotFoundError, StoreIOError


class TestFormatErrorMessage:
    """Tests for format_error_message."""

    def test_domain_error_uses_its_message(self) -> None:
        error = EntryNotFoundError("abc")

        assert format_error_message(error, "store/get") == error.message

    def test_os_error_mentions_filesystem(self) -> None:
        message = format_error_message(PermissionError("denied"), "store/add")

        assert "I/O error" in message
        assert "permissions" in message

    def test_value_error_includes_operation(self) -> None:
        message = format_error_message(ValueError("bad value"), "store/search")

        assert message == "store/search failed: bad value"

    def test_other_errors_are_generic(self) -> None:
        message = format_error_message(KeyError("secret"), "store/list")

        assert "secret" not in message
        assert "store/list" in message


class TestLogUseCaseError:
    """Tests for log_use_case_error severity."""

    def test_domain_error_logs_warning(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.DEBUG):
            log_use_case_error(StoreIOError("disk full"), "store/add")

        assert caplog.records[-1].levelno == logging.WARNING

    def test_runtime_error_logs_error(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.DEBUG):
            log_use_case_error(RuntimeError("oops"), "prompt")

        assert caplog.records[-1].levelno == logging.ERROR

    def test_unexpected_error_logs_traceback(self, caplog: pytest.LogCaptureFixture) -> None:
        try:
            raise KeyError("k")
        except KeyError as e:
            with caplog.at_level(logging.DEBUG):
                log_use_case_error(e, "store/get")

        assert caplog.records[-1].exc_info is not None
