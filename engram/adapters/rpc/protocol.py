"""JSON-RPC protocol for engine communication.

JSON-RPC 2.0 style messages, one JSON object per line. Requests carry a
caller-chosen non-negative integer ``id`` that every response echoes.
"""

import json
import logging
from typing import Any

logger = logging.getLogger(__name__)

JSONRPC_VERSION = "2.0"

# Reserved JSON-RPC codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

# Application codes
STORE_ERROR = -32000
ENGINE_ERROR = -32001


class ProtocolError(Exception):
    """A line that is not a well-formed request.

    Attributes:
        code: PARSE_ERROR or INVALID_REQUEST.
        message: Human-readable reason.
        request_id: The request id, when it could be recovered.
    """

    def __init__(self, code: int, message: str, request_id: int | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.request_id = request_id


def _valid_id(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


class Request:
    """JSON-RPC request message."""

    def __init__(self, method: str, params: dict[str, Any] | Any, request_id: int = 1):
        """Create a request.

        Args:
            method: Method name (e.g., "store/add")
            params: Method parameters
            request_id: Request ID echoed in the response
        """
        self.method = method
        self.params = params
        self.id = request_id

    def to_json(self) -> str:
        """Serialize to JSON string with newline."""
        data = {
            "jsonrpc": JSONRPC_VERSION,
            "id": self.id,
            "method": self.method,
            "params": self.params,
        }
        return json.dumps(data) + "\n"

    @classmethod
    def from_json(cls, line: str | bytes) -> "Request":
        """Deserialize from one input line.

        Args:
            line: JSON text (with or without newline), str or UTF-8 bytes

        Returns:
            Request object. ``params`` is ``{}`` when absent or null.

        Raises:
            ProtocolError: PARSE_ERROR if the line is not JSON; INVALID_REQUEST
                if it is JSON but not a request object.
        """
        try:
            text = line.decode("utf-8") if isinstance(line, bytes) else line
            data = json.loads(text.strip())
        except UnicodeDecodeError as e:
            raise ProtocolError(PARSE_ERROR, f"Parse error: invalid UTF-8: {e}") from e
        except json.JSONDecodeError as e:
            raise ProtocolError(PARSE_ERROR, f"Parse error: invalid JSON: {e}") from e

        if not isinstance(data, dict):
            raise ProtocolError(INVALID_REQUEST, "Invalid request: must be a JSON object")

        raw_id = data.get("id")
        request_id = raw_id if _valid_id(raw_id) else None
        if request_id is None:
            raise ProtocolError(
                INVALID_REQUEST,
                "Invalid request: 'id' must be a non-negative integer",
            )

        method = data.get("method")
        if not isinstance(method, str) or not method:
            raise ProtocolError(
                INVALID_REQUEST,
                "Invalid request: 'method' must be a non-empty string",
                request_id=request_id,
            )

        params = data.get("params")
        return cls(
            method=method,
            params={} if params is None else params,
            request_id=request_id,
        )


class Response:
    """JSON-RPC response message.

    Exactly one of ``result`` / ``error`` is serialized.
    """

    def __init__(
        self,
        result: Any = None,
        error: dict[str, Any] | None = None,
        request_id: int | None = None,
    ):
        """Create a response.

        Args:
            result: Result value (if success)
            error: Error dict with 'code', 'message' and optional 'data'
            request_id: Request ID, None when it could not be recovered
        """
        self.result = result
        self.error = error
        self.id = request_id

    def to_json(self) -> str:
        """Serialize to JSON string with newline.

        Raises:
            TypeError, ValueError: If the result is not JSON-encodable.
        """
        data: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": self.id}
        if self.error is not None:
            data["error"] = self.error
        else:
            data["result"] = self.result
        return json.dumps(data, allow_nan=False) + "\n"

    @classmethod
    def from_json(cls, line: str) -> "Response":
        """Deserialize from JSON string.

        Raises:
            ProtocolError: If JSON is invalid
        """
        try:
            data = json.loads(line.strip())
        except json.JSONDecodeError as e:
            raise ProtocolError(PARSE_ERROR, f"Invalid JSON: {e}") from e

        if not isinstance(data, dict):
            raise ProtocolError(INVALID_REQUEST, "Response must be a JSON object")

        return cls(
            result=data.get("result"),
            error=data.get("error"),
            request_id=data.get("id"),
        )

    @classmethod
    def success(cls, result: Any, request_id: int | None) -> "Response":
        """Create a success response."""
        return cls(result=result, error=None, request_id=request_id)

    @classmethod
    def failure(
        cls,
        code: int,
        message: str,
        request_id: int | None = None,
        data: dict[str, Any] | None = None,
    ) -> "Response":
        """Create an error response."""
        error: dict[str, Any] = {"code": code, "message": message}
        if data is not None:
            error["data"] = data
        return cls(result=None, error=error, request_id=request_id)

    def is_error(self) -> bool:
        """Check if this response is an error."""
        return self.error is not None
