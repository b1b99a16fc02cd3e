"""
Token manager — get / refresh / store per-session OAuth credentials.

This is the single interface connectors use to read a credential for a
given session + connector kind.  The credential itself always lives in the
``SessionStore``; nothing here caches it beyond one request.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, List, Optional

from auth.session_store import SessionStore
from connectors.errors import NotAuthenticated
from utils.schemas import ConnectorKind, Credential

logger = logging.getLogger(__name__)

# Coroutine exchanging a refresh token for a new credential.
Refresher = Callable[[Credential], Awaitable[Credential]]


class CredentialManager:
    """Thin facade over the session store for one credential kind at a time."""

    def __init__(self, store: SessionStore) -> None:
        self.store = store

    async def get(self, session_id: str, kind: ConnectorKind) -> Optional[Credential]:
        return await self.store.get_credential(session_id, kind)

    async def require(self, session_id: str, kind: ConnectorKind) -> Credential:
        credential = await self.get(session_id, kind)
        if credential is None:
            raise NotAuthenticated(context={"connector": kind.value})
        return credential

    async def store_credential(self, session_id: str, kind: ConnectorKind, credential: Credential) -> None:
        await self.store.set_credential(session_id, kind, credential)
        logger.info("Stored %s credential for session %s", kind.value, session_id[:8])

    async def clear(self, session_id: str, kind: ConnectorKind) -> None:
        await self.store.clear_credential(session_id, kind)
        logger.info("Cleared %s credential for session %s", kind.value, session_id[:8])

    async def connected_kinds(self, session_id: str) -> List[ConnectorKind]:
        session = await self.store.get(session_id)
        return list(session.credentials) if session else []

    def token_source(
        self,
        session_id: str,
        kind: ConnectorKind,
        refresher: Optional[Refresher] = None,
    ) -> "SessionTokenSource":
        return SessionTokenSource(self, session_id, kind, refresher)


class SessionTokenSource:
    """
    Access-token provider handed to ``RemoteApiClient``.

    One source lives as long as the client context it was built for, which
    may span many requests.  ``refresh()`` succeeds at most once per source,
    so a later 401 in the same context surfaces as ``NotAuthenticated``
    instead of looping on refresh.
    """

    def __init__(
        self,
        manager: CredentialManager,
        session_id: str,
        kind: ConnectorKind,
        refresher: Optional[Refresher],
    ) -> None:
        self._manager = manager
        self._session_id = session_id
        self._kind = kind
        self._refresher = refresher
        self._refreshed = False

    async def token(self) -> str:
        credential = await self._manager.require(self._session_id, self._kind)
        return credential.access_token

    async def can_refresh(self) -> bool:
        if self._refreshed or self._refresher is None:
            return False
        credential = await self._manager.get(self._session_id, self._kind)
        return bool(credential and credential.refresh_token)

    async def refresh(self) -> str:
        """Exchange the refresh token once and persist the new credential."""
        if self._refreshed:
            raise NotAuthenticated("Token refresh already attempted", context={"connector": self._kind.value})
        self._refreshed = True
        credential = await self._manager.require(self._session_id, self._kind)
        if not credential.refresh_token or self._refresher is None:
            raise NotAuthenticated(context={"connector": self._kind.value})
        try:
            refreshed = await self._refresher(credential)
        except NotAuthenticated:
            await self._manager.clear(self._session_id, self._kind)
            raise
        # Some providers rotate refresh tokens, others keep the old one
        if not refreshed.refresh_token:
            refreshed = refreshed.model_copy(update={"refresh_token": credential.refresh_token})
        await self._manager.store_credential(self._session_id, self._kind, refreshed)
        logger.info("Refreshed %s token for session %s", self._kind.value, self._session_id[:8])
        return refreshed.access_token
