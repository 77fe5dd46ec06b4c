"""
Global middleware.
"""

from __future__ import annotations

import logging
import time
import uuid

from fastapi import FastAPI, Request

logger = logging.getLogger(__name__)


def register_middleware(app: FastAPI) -> None:
    """Attach request id + timing to every response."""

    @app.middleware("http")
    async def request_timer(request: Request, call_next):
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:16]
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        response.headers["X-Process-Time"] = f"{elapsed:.4f}"
        response.headers["X-Request-ID"] = request_id
        if response.status_code >= 500:
            logger.warning(
                "%s %s → %d in %.3fs [%s]",
                request.method, request.url.path, response.status_code, elapsed, request_id,
            )
        else:
            logger.debug("%s %s — %.3fs [%s]", request.method, request.url.path, elapsed, request_id)
        return response
