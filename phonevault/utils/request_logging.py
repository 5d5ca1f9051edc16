"""Request Logging Middleware - One structured log line per request

Binds a request_id into structlog's contextvars so every log emitted while
handling the request carries it. Bodies are never logged (they hold PII).
"""
import time
import uuid
from typing import Callable

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from phonevault.utils.metrics import record_http_request

logger = structlog.get_logger()

REQUEST_ID_HEADER = "X-Request-ID"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        start = time.time()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            duration = time.time() - start
            route = request.scope.get("route")
            route_path = getattr(route, "path", "unmatched")
            record_http_request(request.method, route_path, status_code, duration)
            logger.info(
                "Request handled",
                method=request.method,
                path=route_path,
                status=status_code,
                duration_ms=round(duration * 1000, 2),
            )
            structlog.contextvars.clear_contextvars()
