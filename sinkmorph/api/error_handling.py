"""Decorator mapping service exceptions to structured HTTP error responses.

Every error response uses the same JSON envelope::

    {
        "error": {
            "code": "JOB_NOT_FOUND",
            "message": "job 3f2a does not exist",
            "details": {"job_id": "3f2a"}
        }
    }

Transient errors (full or stopped queue) carry a ``Retry-After`` header.
"""

import functools
import logging
import time
from collections.abc import Callable, Coroutine
from typing import Any

from fastapi import HTTPException, Request
from starlette.responses import JSONResponse

from sinkmorph.exceptions import (
    ConfigurationError,
    InvalidStateError,
    NotFoundError,
    ServiceError,
    TransientError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Checked in order; subclasses before ServiceError.
_STATUS_MAP: tuple[tuple[type[ServiceError], int, int], ...] = (
    (NotFoundError, 404, logging.WARNING),
    (InvalidStateError, 409, logging.WARNING),
    (ValidationError, 422, logging.WARNING),
    (TransientError, 503, logging.WARNING),
    (ConfigurationError, 500, logging.ERROR),
    (ServiceError, 400, logging.WARNING),
)


def _build_error_body(code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    """Build the canonical ``{"error": {...}}`` envelope."""
    return {
        "error": {
            "code": code,
            "message": message,
            "details": details or {},
        }
    }


def _extract_request_meta(args: tuple[Any, ...], kwargs: dict[str, Any]) -> dict[str, str | None]:
    request: Request | None = None
    for a in (*args, *kwargs.values()):
        if isinstance(a, Request):
            request = a
            break
    if request is not None:
        return {
            "request_id": request.headers.get("X-Request-ID"),
            "endpoint": f"{request.method} {request.url.path}",
        }
    return {"request_id": None, "endpoint": None}


def error_response(exc: ServiceError) -> JSONResponse:
    """Translate a service exception into its JSON error response."""
    status = next(code for cls, code, _ in _STATUS_MAP if isinstance(exc, cls))
    headers = {"Retry-After": str(exc.retry_after)} if isinstance(exc, TransientError) else None
    return JSONResponse(
        status_code=status,
        headers=headers,
        content=_build_error_body(exc.error_code, str(exc), exc.context),
    )


def service_errors(fn: Callable[..., Coroutine[Any, Any, Any]]) -> Callable[..., Coroutine[Any, Any, Any]]:
    """Maps ServiceError subclasses to structured JSON error responses.

    Exception mapping:
    - ``NotFoundError``      -> 404
    - ``InvalidStateError``  -> 409
    - ``ValidationError``    -> 422
    - ``TransientError``     -> 503  (with ``Retry-After`` header)
    - ``ConfigurationError`` -> 500
    - ``ServiceError`` (base)-> 400
    - Any other exception    -> 500 (catch-all)
    """

    @functools.wraps(fn)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        t0 = time.monotonic()
        try:
            return await fn(*args, **kwargs)
        except ServiceError as exc:
            response = error_response(exc)
            level = next(lvl for cls, _, lvl in _STATUS_MAP if isinstance(exc, cls))
            _log_service_error(exc, response.status_code, t0, args, kwargs, level=level)
            return response
        except HTTPException:
            raise
        except Exception:
            duration_ms = (time.monotonic() - t0) * 1000
            meta = _extract_request_meta(args, kwargs)
            logger.exception(
                "unhandled exception in %s | request_id=%s endpoint=%s duration_ms=%.1f",
                fn.__qualname__,
                meta.get("request_id"),
                meta.get("endpoint"),
                duration_ms,
            )
            return JSONResponse(
                status_code=500,
                content=_build_error_body(
                    "INTERNAL_ERROR",
                    "An unexpected error occurred. Check logs for details.",
                    {},
                ),
            )

    # FastAPI resolves the signature through __wrapped__ with the original globals.
    wrapper.__annotations__ = {}
    return wrapper


def _log_service_error(
    exc: ServiceError,
    status: int,
    t0: float,
    args: tuple[Any, ...],
    kwargs: dict[str, Any],
    *,
    level: int = logging.WARNING,
) -> None:
    duration_ms = (time.monotonic() - t0) * 1000
    meta = _extract_request_meta(args, kwargs)
    logger.log(
        level,
        "%s -> %d | code=%s request_id=%s endpoint=%s duration_ms=%.1f context=%s",
        type(exc).__name__,
        status,
        exc.error_code,
        meta.get("request_id"),
        meta.get("endpoint"),
        duration_ms,
        exc.context,
        exc_info=(level >= logging.ERROR),
    )
