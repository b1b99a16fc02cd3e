"""
sitebridge — application entry point.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.errors import register_exception_handlers
from api.middleware import register_middleware
from api.routes import router as api_router
from auth.session_store import build_session_store
from config.settings import Settings, config
from connectors.oauth import OAuthStateStore
from connectors.registry import ConnectorRegistry
from connectors.token_manager import CredentialManager
from core.jobs import JobManager
from core.orchestrator import PublicationOrchestrator
from utils.schemas import ConnectorType

logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
    stream=sys.stdout,
)
for _noisy in ("httpcore", "httpx", "aiosqlite", "sqlalchemy.engine"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Build the application.

    Parameters
    ----------
    settings  : defaults to the environment-loaded ``config``.
    transport : httpx transport for outbound calls (tests inject a mock).

    Raises ``ConfigurationError`` when the connector selection is unusable.
    """
    settings = settings or config
    app = FastAPI(
        title="sitebridge",
        version="1.0.0",
        description="Website storage and publication backend.",
    )

    session_store = build_session_store(settings.session_store_url, settings.token_encryption_key)
    oauth_states = OAuthStateStore(ttl_seconds=settings.oauth_state_ttl_seconds)
    registry = ConnectorRegistry.discover(
        settings, CredentialManager(session_store), oauth_states, transport=transport
    )
    jobs = JobManager(
        retention_seconds=settings.job_retention_seconds,
        session_scoped=settings.jobs_session_scoped,
    )

    app.state.settings = settings
    app.state.session_store = session_store
    app.state.oauth_states = oauth_states
    app.state.registry = registry
    app.state.jobs = jobs
    app.state.orchestrator = PublicationOrchestrator(jobs)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_middleware(app)
    register_exception_handlers(app)

    # Routes
    app.include_router(api_router, prefix="/api")

    @app.on_event("startup")
    async def on_startup():
        await registry.init(settings.default_website_id)
        app.state.reaper = asyncio.create_task(jobs.run_reaper(settings.job_reaper_interval_seconds))
        logger.info(
            "Connectors: storage=%s hosting=%s",
            [c.connector_id for c in registry.list(ConnectorType.STORAGE)],
            [c.connector_id for c in registry.list(ConnectorType.HOSTING)],
        )
        logger.info("Application ready to accept requests.")

    @app.on_event("shutdown")
    async def on_shutdown():
        reaper = getattr(app.state, "reaper", None)
        if reaper is not None:
            reaper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reaper
        await app.state.orchestrator.shutdown()
        await session_store.close()

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level="debug" if config.debug else "info",
    )
