"""
HTTP middleware

- Request ID propagation (X-Request-ID)
- Prometheus request metrics
"""
import logging
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from secure_credentials import metrics

logger = logging.getLogger(__name__)

STATIC_PATHS = {"/", "/health", "/metrics", "/docs", "/openapi.json", "/redoc"}


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Tag every request with an X-Request-ID

    A client-supplied id is kept so a login can be traced from the web
    client through the device approval.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        if response.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} -> {response.status_code} (request_id={request_id})")
        return response


class HTTPMetricsMiddleware(BaseHTTPMiddleware):
    """Count requests and observe latency per method and normalized path"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        method = request.method
        endpoint = normalize_path(request.url.path)

        metrics.http_requests_in_progress.labels(method=method, endpoint=endpoint).inc()
        start_time = time.time()
        try:
            response = await call_next(request)
            metrics.http_requests_total.labels(
                method=method,
                endpoint=endpoint,
                status=response.status_code
            ).inc()
            metrics.http_request_duration_seconds.labels(
                method=method,
                endpoint=endpoint
            ).observe(time.time() - start_time)
            return response
        finally:
            metrics.http_requests_in_progress.labels(method=method, endpoint=endpoint).dec()


def normalize_path(path: str) -> str:
    """
    Collapse device and challenge ids so label cardinality stays bounded

    /v1/challenges/3f0c...-.../reject -> /v1/challenges/{id}/reject
    """
    if path in STATIC_PATHS:
        return path

    parts = []
    for part in path.split("/"):
        if not part:
            continue
        if part.isdigit() or (len(part) == 36 and part.count("-") == 4):
            parts.append("{id}")
        else:
            parts.append(part)
    return "/" + "/".join(parts)
