"""Error formatting and logging for request handling.

Provides consistent handling of exceptions that escape an engine method.
Domain errors already carry user-facing messages; anything else is logged
with context and reported with a generic message.

Design principles:
1. KeyboardInterrupt and SystemExit are always re-raised (never caught)
2. EngramDomainError subclasses are domain errors with user-friendly messages
3. Unexpected exceptions are logged with traceback and converted to generic
   error messages that do not leak internals
"""

import logging

from engram.domain.exceptions import EngramDomainError

logger = logging.getLogger(__name__)


def format_error_message(exception: Exception, operation_name: str) -> str:
    """Format an exception into a user-friendly error message.

    - EngramDomainError: Uses the error's message directly
    - OSError: Adds context about permissions/disk space
    - ValueError/RuntimeError: Includes exception message with operation context
    - Other exceptions: Returns a generic "internal error" message

    Args:
        exception: The exception that was caught.
        operation_name: Name of the operation (e.g., "store/add").

    Returns:
        User-friendly error message string.
    """
    if isinstance(exception, EngramDomainError):
        return exception.message
    elif isinstance(exception, OSError):
        return (
            f"I/O error: {exception}. "
            "Check file permissions, disk space, and filesystem access."
        )
    elif isinstance(exception, (ValueError, RuntimeError)):
        return f"{operation_name} failed: {exception}"
    else:
        return f"Internal error during {operation_name}. Check logs for details."


def log_use_case_error(exception: Exception, operation_name: str) -> None:
    """Log an exception with severity matching its type.

    - EngramDomainError: WARNING level (expected caller-facing errors)
    - OSError/ValueError/RuntimeError: ERROR level
    - Other exceptions: EXCEPTION level (includes traceback)

    Args:
        exception: The exception that was caught.
        operation_name: Name of the operation for log messages.
    """
    if isinstance(exception, EngramDomainError):
        logger.warning("%s: %s", operation_name, exception.message)
    elif isinstance(exception, OSError):
        logger.error(f"I/O error during {operation_name}: {exception}")
    elif isinstance(exception, (ValueError, RuntimeError)):
        logger.error(f"Error during {operation_name}: {exception}")
    else:
        logger.exception(f"Unexpected error during {operation_name}")
