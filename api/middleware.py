"""
Global middleware.
"""

from __future__ import annotations

import logging
import time

from fastapi import FastAPI, Request

logger = logging.getLogger(__name__)

_NO_STORE_PREFIX = "/api/v1/connections"


def register_middleware(app: FastAPI) -> None:
    """Attach app-level middleware."""

    @app.middleware("http")
    async def request_timer(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        response.headers["X-Process-Time"] = f"{elapsed:.4f}"
        if request.url.path.startswith(_NO_STORE_PREFIX):
            # authorization URLs and account data must not sit in shared caches
            response.headers["Cache-Control"] = "no-store"
        # path only: callback query strings carry authorization codes
        logger.debug(
            "%s %s → %d — %.3fs",
            request.method, request.url.path, response.status_code, elapsed,
        )
        return response
