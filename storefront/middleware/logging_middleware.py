"""
Request logging middleware with correlation IDs for request tracing.
"""
import logging
import time
import uuid
from typing import Callable

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)


def get_request_id() -> str:
    """Get the current request ID from context."""
    return structlog.contextvars.get_contextvars().get("request_id", "")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Assigns a short request ID to each request, logs start and end with
    timing, and echoes the ID back in the X-Request-ID header.

    The ID is bound into structlog's context, so every line logged while
    the request is handled carries it.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())[:8]
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        path = request.url.path
        start_time = time.time()
        logger.info(
            f"-> {request.method} {path}",
            extra={
                "method": request.method,
                "path": path,
                "query": str(request.query_params),
                "phase": "request_start",
            },
        )

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.error(
                f"Error: {str(e)[:100]} ({duration_ms:.0f}ms)",
                extra={"duration_ms": round(duration_ms, 1), "phase": "request_error"},
                exc_info=True,
            )
            raise

        duration_ms = (time.time() - start_time) * 1000
        log_level = logging.INFO if response.status_code < 400 else logging.WARNING
        logger.log(
            log_level,
            f"<- {response.status_code} ({duration_ms:.0f}ms)",
            extra={
                "status_code": response.status_code,
                "duration_ms": round(duration_ms, 1),
                "phase": "request_end",
            },
        )

        response.headers["X-Request-ID"] = request_id
        return response
