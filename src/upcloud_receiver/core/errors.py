"""
Unified error handling for the UpCloud metrics receiver.

Exit Codes:
- 0: Success
- 10: Configuration error
- 11: API error (UpCloud API failure)
- 127: Unknown/internal error
"""

from __future__ import annotations

import functools
import sys
import traceback
from enum import IntEnum
from typing import Any, Callable, Sequence, TypeVar

import structlog

logger = structlog.get_logger()


class ExitCode(IntEnum):
    """Standardized exit codes for CLI commands."""

    SUCCESS = 0
    CONFIG_ERROR = 10
    API_ERROR = 11
    UNKNOWN_ERROR = 127


class ReceiverError(Exception):
    """Base exception for receiver errors with exit code support."""

    exit_code: ExitCode = ExitCode.UNKNOWN_ERROR
    show_traceback: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(ReceiverError):
    """Raised for invalid or contradictory receiver settings."""

    exit_code = ExitCode.CONFIG_ERROR


class SecretResolutionError(ConfigurationError):
    """Raised when a credential file cannot be read or is empty."""


class APIError(ReceiverError):
    """Raised when the UpCloud API request or response handling fails."""

    exit_code = ExitCode.API_ERROR


class PayloadDecodeError(APIError):
    """Raised when a metrics response has an unexpected structure."""


class SnapshotConversionError(APIError):
    """Raised when a load balancer snapshot holds no numeric metrics."""


class ReceiverStateError(ReceiverError):
    """Raised on an invalid receiver lifecycle transition."""


class ScrapeError(ReceiverError):
    """Joined errors collected during one scrape cycle."""

    exit_code = ExitCode.API_ERROR

    def __init__(self, errors: Sequence[BaseException]):
        self.errors = list(errors)
        super().__init__("; ".join(str(err) for err in self.errors))


# Type variable for decorated functions
F = TypeVar("F", bound=Callable[..., int])


def main_with_error_handling(
    *,
    show_traceback: bool = False,
    log_errors: bool = True,
) -> Callable[[F], F]:
    """
    Decorator for CLI main functions that provides unified error handling.

    Exit codes:
        - ReceiverError subclasses: Uses the error's exit_code
        - KeyboardInterrupt: Returns 130 (standard for SIGINT)
        - Other exceptions: Returns 127 (unknown error)
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> int:
            try:
                return func(*args, **kwargs)
            except ReceiverError as e:
                if log_errors:
                    logger.error(
                        "command_error",
                        error_type=type(e).__name__,
                        message=e.message,
                        exit_code=e.exit_code,
                        **e.details,
                    )
                if e.show_traceback or show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return e.exit_code
            except KeyboardInterrupt:
                if log_errors:
                    logger.info("command_interrupted")
                return 130  # Standard exit code for SIGINT
            except Exception as e:
                if log_errors:
                    logger.error(
                        "unexpected_error",
                        error_type=type(e).__name__,
                        message=str(e),
                        exit_code=ExitCode.UNKNOWN_ERROR,
                    )
                if show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return ExitCode.UNKNOWN_ERROR

        return wrapper  # type: ignore[return-value]

    return decorator


def format_error_message(error: ReceiverError) -> str:
    """Format an error message for display to users."""
    msg = error.message
    if error.details:
        detail_str = ", ".join(f"{k}={v}" for k, v in error.details.items())
        msg = f"{msg} ({detail_str})"
    return msg
