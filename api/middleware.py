"""
Global middleware.
"""

from __future__ import annotations

import logging
import time

from fastapi import FastAPI, Request

from auth.dependencies import NEW_SESSION_COOKIE

logger = logging.getLogger(__name__)


def register_middleware(app: FastAPI) -> None:
    """Attach any app-level middleware."""

    @app.middleware("http")
    async def session_cookie(request: Request, call_next):
        response = await call_next(request)
        token = getattr(request.state, NEW_SESSION_COOKIE, None)
        if token:
            settings = request.app.state.settings
            response.set_cookie(
                settings.session_cookie_name,
                token,
                max_age=settings.session_expiry_seconds,
                httponly=True,
                samesite="lax",
                secure=settings.public_url.startswith("https://"),
            )
        return response

    @app.middleware("http")
    async def request_timer(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        response.headers["X-Process-Time"] = f"{elapsed:.4f}"
        logger.debug("%s %s — %.3fs", request.method, request.url.path, elapsed)
        return response
