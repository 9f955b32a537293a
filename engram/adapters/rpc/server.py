"""Engine server run loop.

The server:
1. Reads one request line from the transport
2. Dispatches it and waits for the handler to finish
3. Writes exactly one response line
4. Repeats until EOF (exit 0) or a fatal stream error (exit 1)

Requests are handled strictly one at a time, in arrival order.
"""

import logging
import signal
import sys
from collections.abc import Callable
from pathlib import Path

from engram.adapters.rpc.dispatcher import Dispatcher
from engram.adapters.rpc.protocol import INTERNAL_ERROR, ProtocolError, Request, Response
from engram.adapters.rpc.transport import LineTransport

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class _ShutdownRequested(Exception):
    """Raised from the signal handler to leave a blocking read."""


def configure_logging(level: str = "INFO", log_file: Path | None = None) -> None:
    """Send engine logs to stderr (and optionally a file).

    stdout carries protocol responses only, so no handler may write there.
    """
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )


class EngineServer:
    """Sequential request/response loop over a line transport."""

    def __init__(
        self,
        transport: LineTransport,
        dispatcher: Dispatcher,
        on_shutdown: Callable[[], None] | None = None,
    ):
        """Initialize the server.

        Args:
            transport: Framed input/output streams
            dispatcher: Method table of the engine being served
            on_shutdown: Called once when the loop ends, however it ends
        """
        self.transport = transport
        self.dispatcher = dispatcher
        self.on_shutdown = on_shutdown
        self.running = False
        self.requests_served = 0
        self._busy = False
        self._previous_handlers: dict[int, object] = {}

    def setup_signal_handlers(self) -> None:
        """Set up signal handlers for graceful shutdown.

        An idle loop stops at once; a busy one finishes and answers the
        current request first.
        """

        def signal_handler(signum, frame):
            logger.info(f"Received signal {signum}, shutting down...")
            self.running = False
            if not self._busy:
                raise _ShutdownRequested()

        for signum in (signal.SIGTERM, signal.SIGINT):
            self._previous_handlers[signum] = signal.signal(signum, signal_handler)

    def restore_signal_handlers(self) -> None:
        for signum, handler in self._previous_handlers.items():
            if handler is not None:
                signal.signal(signum, handler)
        self._previous_handlers.clear()

    def handle_line(self, line: bytes) -> Response:
        """Turn one input line into its response. Never raises."""
        try:
            request = Request.from_json(line)
        except ProtocolError as e:
            logger.warning("Rejected request line: %s", e.message)
            return Response.failure(e.code, e.message, e.request_id)

        self.requests_served += 1
        return self.dispatcher.dispatch(request)

    def _send(self, response: Response) -> None:
        try:
            self.transport.send(response)
        except (TypeError, ValueError):
            logger.exception("Response for id=%s could not be encoded", response.id)
            self.transport.send(
                Response.failure(
                    INTERNAL_ERROR,
                    "Internal error: result could not be encoded",
                    response.id,
                )
            )

    def serve_forever(self) -> None:
        """Main loop. Returns on EOF or after a shutdown signal.

        Raises:
            OSError: If the input or output stream fails.
        """
        logger.info(f"{self.dispatcher.name} engine started")
        self.running = True
        for line in self.transport.lines():
            self._busy = True
            try:
                self._send(self.handle_line(line))
            finally:
                self._busy = False
            if not self.running:
                break
        logger.info(f"{self.dispatcher.name} engine stopped")

    def cleanup(self) -> None:
        """Release engine resources."""
        self.running = False
        self.restore_signal_handlers()
        if self.on_shutdown is not None:
            self.on_shutdown()
        logger.info(f"Served {self.requests_served} requests")

    def run(self, install_signal_handlers: bool = True) -> int:
        """Run the server until EOF.

        Returns:
            Process exit code: 0 on EOF or signal, 1 on a fatal stream error.
        """
        try:
            if install_signal_handlers:
                self.setup_signal_handlers()
            self.serve_forever()
        except _ShutdownRequested:
            logger.info("Shutdown requested while idle")
        except OSError as e:
            logger.error(f"Fatal transport error: {e}")
            return 1
        finally:
            self.cleanup()
        return 0
