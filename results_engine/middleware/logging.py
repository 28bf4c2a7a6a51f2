"""Request logging middleware."""

import logging
import time
from typing import Callable
from uuid import uuid4

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log each request with a request id, its dashboard session and duration."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid4())
        request.state.request_id = request_id
        session_id = _session_from_path(request.url.path)

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
            logger.error(
                f"{request.method} {request.url.path} failed after {duration_ms}ms: {e}",
                extra={"request_id": request_id, "session_id": session_id},
            )
            raise

        duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code} ({duration_ms}ms)",
            extra={"request_id": request_id, "session_id": session_id},
        )
        response.headers["X-Request-ID"] = request_id
        return response


def _session_from_path(path: str) -> str | None:
    # Path params are not resolved yet when middleware runs
    parts = path.strip("/").split("/")
    if "sessions" in parts:
        index = parts.index("sessions") + 1
        if index < len(parts):
            return parts[index]
    return None
