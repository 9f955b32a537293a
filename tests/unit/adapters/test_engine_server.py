"""Unit tests for the engine server loop."""

import io
import signal
from unittest.mock import MagicMock

import pytest

from engram.adapters.rpc.dispatcher import Dispatcher
from engram.adapters.rpc.protocol import INTERNAL_ERROR, INVALID_REQUEST, PARSE_ERROR
from engram.adapters.rpc.server import EngineServer, _ShutdownRequested
from engram.adapters.rpc.transport import LineTransport
from tests.helpers import parse_responses, request_line, run_engine


@pytest.fixture
def dispatcher() -> Dispatcher:
    dispatcher = Dispatcher("test")
    dispatcher.register("echo", lambda params: params)
    return dispatcher


def _server(dispatcher: Dispatcher, data: bytes = b"", writer=None, on_shutdown=None):
    writer = writer if writer is not None else io.BytesIO()
    transport = LineTransport(io.BytesIO(data), writer)
    return EngineServer(transport, dispatcher, on_shutdown=on_shutdown), writer


class TestHandleLine:
    """Tests for turning single lines into responses."""

    def test_valid_request(self, dispatcher: Dispatcher) -> None:
        server, _ = _server(dispatcher)

        response = server.handle_line(request_line(3, "echo", {"a": 1}))

        assert response.id == 3
        assert response.result == {"a": 1}
        assert server.requests_served == 1

    def test_invalid_json_is_parse_error_with_null_id(self, dispatcher: Dispatcher) -> None:
        server, _ = _server(dispatcher)

        response = server.handle_line(b"{not json\n")

        assert response.id is None
        assert response.error["code"] == PARSE_ERROR
        assert server.requests_served == 0

    def test_missing_method_is_invalid_request(self, dispatcher: Dispatcher) -> None:
        server, _ = _server(dispatcher)

        response = server.handle_line(b'{"jsonrpc": "2.0", "id": 4}\n')

        assert response.error["code"] == INVALID_REQUEST
        assert response.id == 4


class TestServeLoop:
    """Tests for the read/dispatch/write loop."""

    def test_answers_in_order_and_exits_zero_on_eof(self, dispatcher: Dispatcher) -> None:
        lines = [request_line(i, "echo", {"n": i}) for i in (5, 1, 9)]

        code, responses = run_engine(dispatcher, lines)

        assert code == 0
        assert [r.id for r in responses] == [5, 1, 9]
        assert [r.result["n"] for r in responses] == [5, 1, 9]

    def test_blank_lines_are_skipped(self, dispatcher: Dispatcher) -> None:
        code, responses = run_engine(dispatcher, [b"\n", b"   \n", request_line(1, "echo")])

        assert code == 0
        assert len(responses) == 1

    def test_bad_line_does_not_stop_the_loop(self, dispatcher: Dispatcher) -> None:
        code, responses = run_engine(dispatcher, [b"garbage\n", request_line(2, "echo")])

        assert code == 0
        assert responses[0].error["code"] == PARSE_ERROR
        assert responses[1].id == 2
        assert not responses[1].is_error()

    def test_unencodable_result_becomes_internal_error(self) -> None:
        dispatcher = Dispatcher("test")
        dispatcher.register("nan", lambda params: {"value": float("nan")})
        dispatcher.register("object", lambda params: object())

        code, responses = run_engine(
            dispatcher, [request_line(1, "nan"), request_line(2, "object")]
        )

        assert code == 0
        assert [r.id for r in responses] == [1, 2]
        assert all(r.error["code"] == INTERNAL_ERROR for r in responses)

    def test_output_failure_exits_one(self, dispatcher: Dispatcher) -> None:
        writer = MagicMock()
        writer.write.side_effect = BrokenPipeError("closed")
        server, _ = _server(dispatcher, request_line(1, "echo"), writer=writer)

        assert server.run(install_signal_handlers=False) == 1

    def test_on_shutdown_called_once(self, dispatcher: Dispatcher) -> None:
        on_shutdown = MagicMock()
        server, _ = _server(dispatcher, request_line(1, "echo"), on_shutdown=on_shutdown)

        server.run(install_signal_handlers=False)

        on_shutdown.assert_called_once_with()

    def test_on_shutdown_called_after_fatal_error(self, dispatcher: Dispatcher) -> None:
        on_shutdown = MagicMock()
        writer = MagicMock()
        writer.write.side_effect = OSError("disk gone")
        server, _ = _server(
            dispatcher, request_line(1, "echo"), writer=writer, on_shutdown=on_shutdown
        )

        server.run(install_signal_handlers=False)

        on_shutdown.assert_called_once_with()


class TestSignals:
    """Tests for SIGTERM/SIGINT handling."""

    def test_handlers_installed_and_restored(self, dispatcher: Dispatcher) -> None:
        before = signal.getsignal(signal.SIGTERM)
        server, _ = _server(dispatcher)

        server.setup_signal_handlers()
        try:
            assert signal.getsignal(signal.SIGTERM) is not before
        finally:
            server.restore_signal_handlers()

        assert signal.getsignal(signal.SIGTERM) is before

    def test_signal_while_idle_interrupts(self, dispatcher: Dispatcher) -> None:
        server, _ = _server(dispatcher)
        server.setup_signal_handlers()
        try:
            handler = signal.getsignal(signal.SIGTERM)
            with pytest.raises(_ShutdownRequested):
                handler(signal.SIGTERM, None)
        finally:
            server.restore_signal_handlers()

        assert server.running is False

    def test_signal_while_busy_finishes_current_request(self) -> None:
        def stop(params):
            signal.getsignal(signal.SIGTERM)(signal.SIGTERM, None)
            return {"stopped": True}

        dispatcher = Dispatcher("test")
        dispatcher.register("stop", stop)
        dispatcher.register("echo", lambda params: params)
        data = request_line(1, "stop") + request_line(2, "echo")
        server, writer = _server(dispatcher, data)

        code = server.run()

        responses = parse_responses(writer.getvalue())
        assert code == 0
        assert [r.id for r in responses] == [1]
        assert responses[0].result == {"stopped": True}
