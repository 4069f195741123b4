"""Request correlation-ID middleware.

Every request gets an ``X-Request-ID`` header (the caller's own value is
reused when present) and the ID is bound into the structured-logging context
via :func:`sinkmorph.logging_config.log_context`, so every log line emitted
while serving the request, including solver warnings, can be traced together.
"""

import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from sinkmorph.logging_config import log_context

_HEADER = "X-Request-ID"

_SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(_HEADER) or uuid.uuid4().hex
        with log_context(request_id=request_id):
            response = await call_next(request)
        response.headers[_HEADER] = request_id
        for key, value in _SECURITY_HEADERS.items():
            response.headers.setdefault(key, value)
        return response
