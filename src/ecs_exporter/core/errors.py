"""
Error taxonomy for the exporter.

Remote API failures are split into two kinds that drive the retry policy:

- transient: throttling, server-side faults, timeouts and connection errors.
  Retried with exponential backoff.
- permanent: auth failures, unknown clusters, invalid parameters and
  malformed responses. Never retried.

Everything below the cluster boundary is caught and recorded on the
snapshot. Only startup failures end the process, with these exit codes:

- 0: Success
- 1: Partial failure (`collect` finished but some clusters failed)
- 10: Configuration error
- 11: Provider error (orchestration API unusable)
- 12: Startup error (e.g. cannot bind the listening port)
- 127: Unknown/internal error
"""

from __future__ import annotations

import functools
import sys
import traceback
from enum import IntEnum, StrEnum
from typing import Any, Callable, TypeVar

import structlog

logger = structlog.get_logger()


class ExitCode(IntEnum):
    """Process exit codes for CLI entry points."""

    SUCCESS = 0
    PARTIAL_FAILURE = 1
    CONFIG_ERROR = 10
    PROVIDER_ERROR = 11
    STARTUP_ERROR = 12
    UNKNOWN_ERROR = 127


class ErrorKind(StrEnum):
    """Classification of a remote API failure."""

    transient = "transient"
    permanent = "permanent"


class ExporterError(Exception):
    """Base exception for exporter errors with exit code support."""

    exit_code: ExitCode = ExitCode.UNKNOWN_ERROR
    show_traceback: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(ExporterError):
    """Raised when settings cannot be loaded or are inconsistent."""

    exit_code = ExitCode.CONFIG_ERROR


class StartupError(ExporterError):
    """Raised when the process cannot start serving."""

    exit_code = ExitCode.STARTUP_ERROR


class APIError(ExporterError):
    """A failed call against the orchestration API."""

    exit_code = ExitCode.PROVIDER_ERROR
    kind: ErrorKind = ErrorKind.permanent

    def __init__(
        self,
        message: str,
        *,
        operation: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.operation = operation
        self.code = code


class TransientAPIError(APIError):
    """Throttling, 5xx or network failure; worth retrying."""

    kind = ErrorKind.transient


class PermanentAPIError(APIError):
    """Auth, not-found or malformed response; retrying will not help."""

    kind = ErrorKind.permanent


class ClusterDeadlineExceeded(ExporterError):
    """A cluster's describe sequence ran past its deadline."""


class CycleOverrunError(ExporterError):
    """A build cycle ran past the outer cycle deadline."""


class SnapshotOrderError(ExporterError):
    """A snapshot was published with a capture timestamp that does not increase."""


# Type variable for decorated functions
F = TypeVar("F", bound=Callable[..., int])


def main_with_error_handling(
    *,
    show_traceback: bool = False,
    log_errors: bool = True,
) -> Callable[[F], F]:
    """
    Decorator for CLI entry points that maps exceptions to exit codes.

    Exit codes:
        - ExporterError subclasses: Uses the error's exit_code
        - KeyboardInterrupt: Returns 130 (standard for SIGINT)
        - Other exceptions: Returns 127 (unknown error)
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> int:
            try:
                return func(*args, **kwargs)
            except ExporterError as e:
                if log_errors:
                    logger.error(
                        "command_error",
                        error_type=type(e).__name__,
                        message=e.message,
                        exit_code=int(e.exit_code),
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
                        exit_code=int(ExitCode.UNKNOWN_ERROR),
                    )
                if show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return ExitCode.UNKNOWN_ERROR

        return wrapper  # type: ignore[return-value]

    return decorator
