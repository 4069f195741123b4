"""Shared exception hierarchy for sinkmorph services.

All service-layer exceptions inherit from ``ServiceError`` which carries:

- ``error_code``: a machine-readable uppercase string (e.g. ``"JOB_NOT_FOUND"``)
- ``context``: an optional dict of structured metadata for diagnostics

The numerical core never raises these; it raises ``ValueError`` for invalid
input and otherwise degrades gracefully.  The service layer translates.
"""

from __future__ import annotations

from typing import Any


class ServiceError(RuntimeError):
    """Base class for all sinkmorph service exceptions.

    Parameters
    ----------
    message:
        Human-readable error description.
    error_code:
        Machine-readable code such as ``"JOB_NOT_FOUND"`` or
        ``"QUEUE_FULL"``.  Defaults to ``"SERVICE_ERROR"``.
    context:
        Optional dict of structured metadata (job_id, mode, etc.)
        that will be included in error responses and log records.
    """

    def __init__(
        self,
        message: str = "",
        *,
        error_code: str = "SERVICE_ERROR",
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code: str = error_code
        self.context: dict[str, Any] = context or {}


class NotFoundError(ServiceError):
    """Raised when a requested job does not exist (or was evicted)."""

    def __init__(
        self,
        message: str = "",
        *,
        error_code: str = "NOT_FOUND",
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, error_code=error_code, context=context)


class InvalidStateError(ServiceError):
    """Raised when an operation is invalid for the current job state."""

    def __init__(
        self,
        message: str = "",
        *,
        error_code: str = "INVALID_STATE",
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, error_code=error_code, context=context)


class TransientError(ServiceError):
    """Raised for retry-able failures (solve queue full, worker stopped).

    The ``retry_after`` field suggests how many seconds the client should
    wait before retrying.
    """

    def __init__(
        self,
        message: str = "",
        *,
        error_code: str = "TRANSIENT_ERROR",
        context: dict[str, Any] | None = None,
        retry_after: int = 5,
    ) -> None:
        super().__init__(message, error_code=error_code, context=context)
        self.retry_after: int = retry_after


class ValidationError(ServiceError):
    """Raised when a solve or blend request fails input validation."""

    def __init__(
        self,
        message: str = "",
        *,
        error_code: str = "VALIDATION_ERROR",
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, error_code=error_code, context=context)


class ConfigurationError(ServiceError):
    """Raised when the service is misconfigured (e.g. unavailable compute backend)."""

    def __init__(
        self,
        message: str = "",
        *,
        error_code: str = "CONFIGURATION_ERROR",
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, error_code=error_code, context=context)
