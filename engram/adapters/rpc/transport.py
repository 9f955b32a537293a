"""Line-delimited transport over a pair of byte streams.

Frames the input stream into lines and writes each response as exactly one
line, flushed immediately. The transport knows nothing about payloads; any
``OSError`` on either stream propagates to the caller as fatal.
"""

import logging
from collections.abc import Iterator
from typing import BinaryIO

from engram.adapters.rpc.protocol import Response

logger = logging.getLogger(__name__)


class LineTransport:
    """One-request-in, one-response-out framing in arrival order."""

    def __init__(self, reader: BinaryIO, writer: BinaryIO) -> None:
        """Initialize the transport.

        Args:
            reader: Binary input stream (e.g. ``sys.stdin.buffer``).
            writer: Binary output stream (e.g. ``sys.stdout.buffer``).
        """
        self._reader = reader
        self._writer = writer
        self.lines_read = 0
        self.responses_written = 0

    def lines(self) -> Iterator[bytes]:
        """Yield non-blank input lines until EOF.

        Blocks on the underlying stream; the next line is not read until the
        caller asks for it.
        """
        while True:
            line = self._reader.readline()
            if not line:
                logger.debug("Input stream closed after %d lines", self.lines_read)
                return
            self.lines_read += 1
            if not line.strip():
                continue
            yield line

    def send(self, response: Response) -> None:
        """Write one response line and flush.

        Raises:
            TypeError, ValueError: If the response is not JSON-encodable.
            OSError: If the output stream fails.
        """
        payload = response.to_json().encode("utf-8")
        self._writer.write(payload)
        self._writer.flush()
        self.responses_written += 1
