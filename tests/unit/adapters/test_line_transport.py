"""Unit tests for the line-delimited transport."""

import io
import json

import pytest

from engram.adapters.rpc.protocol import Response
from engram.adapters.rpc.transport import LineTransport


class _FailingWriter(io.BytesIO):
    def write(self, data: bytes) -> int:
        raise BrokenPipeError("stdout closed")


class TestLineTransport:
    """Tests for framing input and output."""

    def test_yields_lines_and_skips_blank_ones(self) -> None:
        reader = io.BytesIO(b'{"a": 1}\n\n   \n{"b": 2}\n')
        transport = LineTransport(reader, io.BytesIO())

        lines = list(transport.lines())

        assert lines == [b'{"a": 1}\n', b'{"b": 2}\n']
        assert transport.lines_read == 4

    def test_last_line_without_newline_is_yielded(self) -> None:
        transport = LineTransport(io.BytesIO(b'{"a": 1}'), io.BytesIO())

        assert list(transport.lines()) == [b'{"a": 1}']

    def test_empty_input_yields_nothing(self) -> None:
        assert list(LineTransport(io.BytesIO(b""), io.BytesIO()).lines()) == []

    def test_send_writes_one_line_per_response(self) -> None:
        writer = io.BytesIO()
        transport = LineTransport(io.BytesIO(), writer)

        transport.send(Response.success({"ok": True}, 1))
        transport.send(Response.success(None, 2))

        lines = writer.getvalue().decode("utf-8").splitlines()
        assert [json.loads(line)["id"] for line in lines] == [1, 2]
        assert transport.responses_written == 2

    def test_send_propagates_stream_errors(self) -> None:
        transport = LineTransport(io.BytesIO(), _FailingWriter())

        with pytest.raises(OSError):
            transport.send(Response.success(1, 1))

    def test_unencodable_response_writes_nothing(self) -> None:
        writer = io.BytesIO()
        transport = LineTransport(io.BytesIO(), writer)

        with pytest.raises(ValueError):
            transport.send(Response.success(float("inf"), 1))
        assert writer.getvalue() == b""
