"""
Connector capability interfaces.

A *storage* connector persists website documents and their assets; a
*hosting* connector publishes built sites.  Every backend (local
filesystem, GitLab, …) subclasses one of them and is registered under a
string tag in ``ConnectorRegistry``.
"""

from __future__ import annotations

import getpass
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional

from utils.schemas import (
    ArtifactSet,
    ConnectorData,
    ConnectorKind,
    ConnectorType,
    ConnectorUser,
    FileInfo,
    PublishResult,
    PublishStatus,
    WebsiteDocument,
    WebsiteMeta,
    WebsiteMetaContent,
)

# Async callback receiving a publication progress percentage (0–100).
ProgressCallback = Callable[[int], Awaitable[None]]


class BaseConnector(ABC):
    """Identity and authentication shared by storage and hosting connectors."""

    # ── Identity ────────────────────────────────────────────────────────
    @property
    @abstractmethod
    def connector_id(self) -> str:
        """Unique tag: 'fs-storage', 'gitlab-hosting', …"""
        ...

    @property
    @abstractmethod
    def connector_type(self) -> ConnectorType:
        ...

    @property
    @abstractmethod
    def kind(self) -> ConnectorKind:
        """Credential kind this connector reads from the session."""
        ...

    @property
    @abstractmethod
    def display_name(self) -> str:
        ...

    @property
    def icon(self) -> str:
        return ""

    @property
    def color(self) -> str:
        return "#ffffff"

    @property
    def background(self) -> str:
        return "#000000"

    @property
    def disable_logout(self) -> bool:
        return False

    # ── Authentication ──────────────────────────────────────────────────

    @abstractmethod
    async def is_authenticated(self, session_id: str) -> bool:
        ...

    @abstractmethod
    async def auth_url(
        self,
        session_id: str,
        return_context: Optional[Dict[str, Any]] = None,
    ) -> Optional[str]:
        """
        Start a login flow and return the provider authorization URL.

        Returns
        -------
        ``None`` for connectors that need no OAuth.
        """
        ...

    @abstractmethod
    async def complete_oauth(self, session_id: str, code: str, state: str) -> Dict[str, Any]:
        """
        Finish the OAuth flow started by :meth:`auth_url`.

        Returns the ``return_context`` given when the flow started.
        """
        ...

    async def logout(self, session_id: str) -> None:
        """Forget this connector's credential for the session (optional)."""
        return None

    @abstractmethod
    async def get_user(self, session_id: str) -> ConnectorUser:
        """Account the session is logged into. Raises ``NotAuthenticated`` otherwise."""
        ...

    async def describe(self, session_id: str) -> ConnectorData:
        """Connector listing entry for the front-end."""
        logged_in = await self.is_authenticated(session_id)
        return ConnectorData(
            connector_id=self.connector_id,
            type=self.connector_type,
            display_name=self.display_name,
            icon=self.icon,
            color=self.color,
            background=self.background,
            disable_logout=self.disable_logout,
            is_logged_in=logged_in,
            oauth_url=None if logged_in else await self.auth_url(session_id),
        )


class NoAuthMixin:
    """For connectors that never need a login."""

    async def is_authenticated(self, session_id: str) -> bool:
        return True

    async def auth_url(
        self,
        session_id: str,
        return_context: Optional[Dict[str, Any]] = None,
    ) -> Optional[str]:
        return None

    async def complete_oauth(self, session_id: str, code: str, state: str) -> Dict[str, Any]:
        return {}

    async def get_user(self, session_id: str) -> ConnectorUser:
        try:
            name = getpass.getuser()
        except (KeyError, OSError):
            name = "local user"
        return ConnectorUser(name=name, picture=self.icon or None, connector=await self.describe(session_id))

    @property
    def disable_logout(self) -> bool:
        return True


class StorageConnector(BaseConnector):
    """Persists website documents and assets."""

    @property
    def connector_type(self) -> ConnectorType:
        return ConnectorType.STORAGE

    @abstractmethod
    async def list(self, session_id: str, path: str) -> List[FileInfo]:
        ...

    @abstractmethod
    async def read_document(self, session_id: str, path: str) -> WebsiteDocument:
        ...

    @abstractmethod
    async def write_document(self, session_id: str, path: str, doc: WebsiteDocument) -> None:
        ...

    @abstractmethod
    async def delete(self, session_id: str, path: str) -> None:
        ...

    @abstractmethod
    async def read_asset(self, session_id: str, path: str) -> bytes:
        ...

    @abstractmethod
    async def write_asset(self, session_id: str, path: str, content: bytes) -> None:
        ...

    # ── Website management ──────────────────────────────────────────────

    @abstractmethod
    async def duplicate(self, session_id: str, path: str) -> str:
        """
        Copy the website at *path* next to itself.

        Returns
        -------
        Path of the copy.  Its meta name gets a `` copy`` suffix.
        """
        ...

    @abstractmethod
    async def get_meta(self, session_id: str, path: str) -> WebsiteMeta:
        ...

    @abstractmethod
    async def set_meta(self, session_id: str, path: str, meta: WebsiteMetaContent) -> None:
        ...


class HostingConnector(BaseConnector):
    """Publishes built sites."""

    @property
    def connector_type(self) -> ConnectorType:
        return ConnectorType.HOSTING

    @abstractmethod
    async def publish(
        self,
        session_id: str,
        artifacts: ArtifactSet,
        target_path: str,
        job_id: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> PublishResult:
        ...

    @abstractmethod
    async def status(self, session_id: str, job_id: str) -> PublishStatus:
        ...
