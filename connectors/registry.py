"""
ConnectorRegistry — builds the configured connectors and looks them up by id.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

import httpx

from connectors.base import BaseConnector, HostingConnector, StorageConnector
from connectors.errors import ConfigurationError, NotFound
from connectors.fs_hosting import FsHosting
from connectors.fs_storage import FsStorage
from connectors.gitlab import GitLabHosting, GitLabOptions, GitLabStorage, gitlab_oauth_provider
from connectors.oauth import OAuthFlowManager, OAuthStateStore
from connectors.remote_client import RetryPolicy
from connectors.token_manager import CredentialManager
from utils.schemas import ConnectorKind, ConnectorType

logger = logging.getLogger(__name__)

STORAGE_TAGS = ("fs-storage", "gitlab-storage")
HOSTING_TAGS = ("fs-hosting", "gitlab-hosting")


class ConnectorRegistry:
    """
    Ordered storage and hosting connectors.

    The first connector of each type is the default when a request names
    none.
    """

    def __init__(self) -> None:
        self._storage: Dict[str, StorageConnector] = {}
        self._hosting: Dict[str, HostingConnector] = {}

    # ── Registration ────────────────────────────────────────────────────

    def register_storage(self, connector: StorageConnector) -> None:
        self._storage[connector.connector_id] = connector
        logger.info("Storage connector registered: %s", connector.connector_id)

    def register_hosting(self, connector: HostingConnector) -> None:
        self._hosting[connector.connector_id] = connector
        logger.info("Hosting connector registered: %s", connector.connector_id)

    @classmethod
    def discover(
        cls,
        settings,
        credentials: CredentialManager,
        state_store: OAuthStateStore,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "ConnectorRegistry":
        """
        Instantiate every connector named in ``settings``.

        Raises
        ------
        ConfigurationError
            unknown tag, no connector of a type, or GitLab selected without
            OAuth client credentials.
        """
        registry = cls()
        unknown = [t for t in settings.storage_connectors if t not in STORAGE_TAGS]
        unknown += [t for t in settings.hosting_connectors if t not in HOSTING_TAGS]
        if unknown:
            raise ConfigurationError(f"Unknown connector tag(s): {', '.join(unknown)}")
        if not settings.storage_connectors or not settings.hosting_connectors:
            raise ConfigurationError("At least one storage and one hosting connector are required")

        gitlab_oauth: Optional[OAuthFlowManager] = None
        gitlab_options: Optional[GitLabOptions] = None
        tags = list(settings.storage_connectors) + list(settings.hosting_connectors)
        if any(t.startswith("gitlab-") for t in tags):
            provider = gitlab_oauth_provider(settings)
            if not provider.is_configured():
                raise ConfigurationError("GitLab connectors need GITLAB_CLIENT_ID and GITLAB_CLIENT_SECRET")
            gitlab_oauth = OAuthFlowManager(
                provider,
                ConnectorKind.GITLAB,
                credentials,
                state_store,
                timeout=settings.remote_timeout_seconds,
                retry=RetryPolicy(**settings.get_retry_policy()),
                transport=transport,
            )
            gitlab_options = GitLabOptions.from_settings(settings)

        for tag in settings.storage_connectors:
            if tag == "fs-storage":
                registry.register_storage(FsStorage(settings.data_path))
            else:
                registry.register_storage(
                    GitLabStorage(credentials, gitlab_oauth, gitlab_options, transport=transport)
                )
        for tag in settings.hosting_connectors:
            if tag == "fs-hosting":
                registry.register_hosting(FsHosting(settings.hosting_path, settings.hosting_base_url))
            else:
                registry.register_hosting(
                    GitLabHosting(credentials, gitlab_oauth, gitlab_options, transport=transport)
                )
        return registry

    async def init(self, default_website_id: str) -> None:
        """Prepare local directories for the filesystem connectors."""
        for connector in list(self._storage.values()) + list(self._hosting.values()):
            if isinstance(connector, FsStorage):
                await connector.init(default_website_id)
            elif isinstance(connector, FsHosting):
                await connector.init()

    # ── Lookup ──────────────────────────────────────────────────────────

    def get_storage(self, connector_id: Optional[str] = None) -> StorageConnector:
        """Return the named storage connector, or the default one."""
        if not connector_id:
            return next(iter(self._storage.values()))
        try:
            return self._storage[connector_id]
        except KeyError:
            raise NotFound(f"storage connector '{connector_id}'") from None

    def get_hosting(self, connector_id: Optional[str] = None) -> HostingConnector:
        """Return the named hosting connector, or the default one."""
        if not connector_id:
            return next(iter(self._hosting.values()))
        try:
            return self._hosting[connector_id]
        except KeyError:
            raise NotFound(f"hosting connector '{connector_id}'") from None

    def get(self, connector_id: Optional[str], connector_type: Optional[ConnectorType] = None) -> BaseConnector:
        """Look a connector up by id, restricted to ``connector_type`` if given."""
        if connector_type == ConnectorType.STORAGE:
            return self.get_storage(connector_id)
        if connector_type == ConnectorType.HOSTING:
            return self.get_hosting(connector_id)
        if connector_id in self._storage:
            return self._storage[connector_id]
        return self.get_hosting(connector_id)

    def list(self, connector_type: Optional[ConnectorType] = None) -> List[BaseConnector]:
        storage: List[BaseConnector] = list(self._storage.values())
        hosting: List[BaseConnector] = list(self._hosting.values())
        if connector_type == ConnectorType.STORAGE:
            return storage
        if connector_type == ConnectorType.HOSTING:
            return hosting
        return storage + hosting
