"""
Request correlation middleware.

Every request gets an id (the caller's X-Request-ID when present), a
structlog context carrying that id plus the requester, one completion log
line and a latency sample keyed by route template.
"""

import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
import structlog

from waitroom.core.identity import MAX_REQUESTER_ID_LENGTH, REQUESTER_HEADER
from waitroom.core.logging import get_logger
from waitroom.core.metrics import record_http_request

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# Scrapes and probes would drown the access log
QUIET_PATHS = frozenset({"/metrics", "/health"})


def _route_label(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


class RequestLoggingMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:8]
        context = {"request_id": request_id, "method": request.method, "path": request.url.path}
        requester_id = request.headers.get(REQUESTER_HEADER, "").strip()
        if requester_id:
            context["requester_id"] = requester_id[:MAX_REQUESTER_ID_LENGTH]

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(**context)

        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            elapsed = time.perf_counter() - started
            record_http_request(request.method, _route_label(request), 500, elapsed)
            logger.error("request_failed", error=str(e), duration_ms=round(elapsed * 1000, 2))
            raise

        elapsed = time.perf_counter() - started
        duration_ms = round(elapsed * 1000, 2)
        record_http_request(request.method, _route_label(request), response.status_code, elapsed)
        if request.url.path not in QUIET_PATHS:
            logger.info("request_completed", status_code=response.status_code, duration_ms=duration_ms)

        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers["X-Response-Time"] = f"{duration_ms}ms"
        return response
