"""FastAPI middleware for request tracing and metrics"""

import uuid
import time
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from statement_ledger.infrastructure.observability.metrics import request_duration_histogram


def _endpoint_label(request: Request) -> str:
    # Route template keeps batch and group ids out of the label set
    route = request.scope.get("route")
    return getattr(route, "path", request.url.path)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Add unique request ID to each request for distributed tracing"""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class MetricsMiddleware(BaseHTTPMiddleware):
    """Record HTTP request metrics"""

    async def dispatch(self, request: Request, call_next):
        start_time = time.perf_counter()

        response = await call_next(request)

        request_duration_histogram.labels(
            method=request.method,
            endpoint=_endpoint_label(request),
            status=response.status_code,
        ).observe(time.perf_counter() - start_time)

        return response
