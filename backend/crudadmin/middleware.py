import re
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from .metrics import http_request_duration, http_requests_total
from .telemetry import (
    bind_request_context,
    clear_admin_context,
    clear_request_context,
    clear_user_context,
    log_json,
    scrub_sensitive_headers,
)


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        # Validate client-provided correlation ID (alphanumeric + hyphens, 8-64 chars)
        cid = request.headers.get("X-Request-ID")
        if cid and re.fullmatch(r"[A-Za-z0-9\-]{8,64}", cid):
            rid = cid
        else:
            rid = str(uuid.uuid4())

        request.state.request_id = rid
        ctx_token = bind_request_context(rid)
        clear_user_context()
        clear_admin_context()
        start = time.perf_counter()
        headers = scrub_sensitive_headers(dict(request.headers))
        try:
            response: Response = await call_next(request)
        except Exception as e:
            log_json(
                40,
                "request_failed",
                path=request.url.path,
                method=request.method,
                dur_ms=int((time.perf_counter() - start) * 1000),
                request_headers=headers,
                error=str(e),
            )
            raise
        finally:
            try:
                if "response" in locals():
                    response.headers["X-Request-ID"] = rid
                    log_json(
                        20,
                        "request_complete",
                        path=request.url.path,
                        method=request.method,
                        status=response.status_code,
                        dur_ms=int((time.perf_counter() - start) * 1000),
                        request_headers=headers,
                    )
            finally:
                clear_request_context(ctx_token)
                clear_user_context()
        return response


class HttpMetricsMiddleware(BaseHTTPMiddleware):
    """Record HTTP request metrics: count and duration per method+endpoint+status."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        start = time.perf_counter()
        response = await call_next(request)
        # Route templates keep label cardinality bounded (/admin/articles/{id}/edit).
        endpoint = request.url.path
        route = request.scope.get("route")
        if route is not None:
            endpoint = getattr(route, "path", None) or endpoint
        http_requests_total.labels(method=request.method, endpoint=endpoint, status=str(response.status_code)).inc()
        http_request_duration.labels(method=request.method, endpoint=endpoint).observe(time.perf_counter() - start)
        return response
