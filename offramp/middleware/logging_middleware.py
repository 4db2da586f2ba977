"""
Proxy request logging.

Each call to the settlement proxy is logged once with its route, status
and duration. The request id is bound to structlog's contextvars so every
provider and service log line emitted while handling the call carries it,
and it is echoed back in ``x-request-id``.
"""

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.stdlib.get_logger("offramp.http")

# Probed by load balancers every few seconds
QUIET_PATHS = frozenset({"/healthz", "/"})


def _upstream_for(path: str) -> str:
    if path.startswith("/settlement/"):
        return "settlement"
    if path == "/healthz":
        return "health"
    return "local"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log proxied requests with request id, upstream, status and timing."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:12]
        path = request.url.path

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id, upstream=_upstream_for(path))

        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers["x-request-id"] = request_id
            return response
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 1)

            # 502 means the settlement provider failed, not this service
            if status_code >= 500 and status_code != 502:
                log = logger.error
            elif status_code >= 400:
                log = logger.warning
            elif path in QUIET_PATHS:
                log = logger.debug
            else:
                log = logger.info

            log(
                "proxy_request",
                method=request.method,
                path=path,
                query=str(request.url.query) or None,
                status=status_code,
                duration_ms=duration_ms,
            )
            structlog.contextvars.clear_contextvars()
