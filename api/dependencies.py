"""
FastAPI dependencies (shared across routes).

Application services live on ``app.state`` (set up by ``main.create_app``);
routes import the accessors from this single place.
"""

from __future__ import annotations

from fastapi import Request

from auth.dependencies import get_session_id
from connectors.oauth import OAuthStateStore
from connectors.registry import ConnectorRegistry
from core.jobs import JobManager
from core.orchestrator import PublicationOrchestrator

__all__ = [
    "get_jobs",
    "get_oauth_states",
    "get_orchestrator",
    "get_registry",
    "get_session_id",
]


def get_registry(request: Request) -> ConnectorRegistry:
    return request.app.state.registry


def get_jobs(request: Request) -> JobManager:
    return request.app.state.jobs


def get_orchestrator(request: Request) -> PublicationOrchestrator:
    return request.app.state.orchestrator


def get_oauth_states(request: Request) -> OAuthStateStore:
    return request.app.state.oauth_states
