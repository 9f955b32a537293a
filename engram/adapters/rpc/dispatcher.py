"""Method dispatch and error mapping.

A Dispatcher binds method names to handlers and turns every outcome of a
handler into exactly one Response. It never raises for a failed request:
unknown methods, bad params, domain errors and unexpected exceptions all
become error responses.
"""

import logging
from collections.abc import Callable
from typing import Any

from engram.adapters.rpc.params import InvalidParamsError
from engram.adapters.rpc.protocol import (
    ENGINE_ERROR,
    INTERNAL_ERROR,
    INVALID_PARAMS,
    METHOD_NOT_FOUND,
    STORE_ERROR,
    Request,
    Response,
)
from engram.core.use_case_errors import format_error_message, log_use_case_error
from engram.domain.exceptions import EmbedderError, StoreError

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Any]


def error_to_response(
    error: Exception, request_id: int | None, method: str = "request"
) -> Response:
    """Map an exception raised by a handler to its protocol error response.

    Store errors carry ``data.storeCode``, embedder errors ``data.engineCode``,
    both with the error's structured extras and hint.
    """
    if isinstance(error, InvalidParamsError):
        return Response.failure(
            INVALID_PARAMS, f"Invalid params: {error.message}", request_id
        )
    if isinstance(error, StoreError):
        data: dict[str, Any] = {"storeCode": error.code, **error.to_error_data()}
        if error.hint:
            data["hint"] = error.hint
        return Response.failure(STORE_ERROR, error.message, request_id, data)
    if isinstance(error, EmbedderError):
        data = {"engineCode": error.code, **error.to_error_data()}
        if error.hint:
            data["hint"] = error.hint
        return Response.failure(ENGINE_ERROR, error.message, request_id, data)
    return Response.failure(
        INTERNAL_ERROR, format_error_message(error, method), request_id
    )


class Dispatcher:
    """Routes requests to registered handlers.

    Handlers take the raw ``params`` value and return a JSON-encodable result.
    They signal bad params with InvalidParamsError and domain failures with
    StoreError / EmbedderError.
    """

    def __init__(self, name: str) -> None:
        """Create an empty dispatcher.

        Args:
            name: Engine name used in logs (e.g. "store").
        """
        self.name = name
        self._handlers: dict[str, Handler] = {}

    def register(self, method: str, handler: Handler) -> None:
        """Bind a method name to a handler.

        Raises:
            ValueError: If the method is already registered.
        """
        if method in self._handlers:
            raise ValueError(f"Method already registered: {method}")
        self._handlers[method] = handler

    @property
    def methods(self) -> list[str]:
        return sorted(self._handlers)

    def dispatch(self, request: Request) -> Response:
        """Execute one request and build its response."""
        handler = self._handlers.get(request.method)
        if handler is None:
            logger.warning("Unknown method: %s", request.method)
            return Response.failure(
                METHOD_NOT_FOUND, f"Method not found: {request.method}", request.id
            )

        logger.debug("Dispatching %s (id=%s)", request.method, request.id)
        try:
            result = handler(request.params)
        except (KeyboardInterrupt, SystemExit):
            raise
        except Exception as e:
            if not isinstance(e, InvalidParamsError):
                log_use_case_error(e, request.method)
            return error_to_response(e, request.id, request.method)
        return Response.success(result, request.id)
