"""
Trace ID Middleware for Request Tracking

Generates or extracts trace IDs from incoming requests, binds them to
structlog context for automatic inclusion in all logs, and logs each
request's outcome and duration.
"""

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.get_logger()

SLOW_REQUEST_SECONDS = 1.0


class TraceMiddleware(BaseHTTPMiddleware):
    """
    Middleware to add trace ID to all requests for end-to-end tracking.

    - Extracts X-Trace-Id from request headers if present
    - Generates new UUID if not present
    - Binds trace_id to structlog context (appears in all logs)
    - Adds X-Trace-Id to response headers
    - Logs request completion; slow requests at warning level
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        trace_id = request.headers.get("X-Trace-Id") or str(uuid.uuid4())
        structlog.contextvars.bind_contextvars(trace_id=trace_id)
        start = time.perf_counter()

        try:
            response = await call_next(request)
            response.headers["X-Trace-Id"] = trace_id

            duration = time.perf_counter() - start
            log = logger.warning if duration > SLOW_REQUEST_SECONDS else logger.info
            log(
                "request_completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration * 1000, 1),
            )
            return response
        finally:
            structlog.contextvars.unbind_contextvars("trace_id")
