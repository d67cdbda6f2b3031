"""Request ID tracing middleware — adds X-Request-ID to every response."""
from __future__ import annotations

import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# Read by the logging filter so every log line carries the delivery's ID
request_id_var: ContextVar[str] = ContextVar("request_id", default="-")

# Processors that tag their deliveries with an ID header
_UPSTREAM_ID_HEADERS = ("x-request-id", "webhook-id")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Attach a request ID to every request/response for tracing.

    - X-Request-ID from the caller is honored, then the processor's webhook-id
    - Otherwise a UUID4 is generated
    - Response always includes X-Request-ID header
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        rid = next(
            (request.headers[h] for h in _UPSTREAM_ID_HEADERS if request.headers.get(h)),
            None,
        ) or str(uuid.uuid4())
        token = request_id_var.set(rid)
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)
        response.headers["X-Request-ID"] = rid
        return response
