"""
Global middleware.
"""

from __future__ import annotations

import logging
import time
import uuid

from fastapi import FastAPI, Request

logger = logging.getLogger(__name__)

# Query parameters never written to the request log.
_REDACTED_PARAMS = ("code", "state")


def register_middleware(app: FastAPI) -> None:
    """Attach app-level middleware: request id and timing."""

    @app.middleware("http")
    async def request_timer(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        response.headers["X-Process-Time"] = f"{elapsed:.4f}"
        response.headers["X-Request-ID"] = request_id
        redacted = any(p in request.query_params for p in _REDACTED_PARAMS)
        logger.debug(
            "[%s] %s %s%s → %d — %.3fs",
            request_id,
            request.method,
            request.url.path,
            " (query redacted)" if redacted else "",
            response.status_code,
            elapsed,
        )
        return response
