"""
Session store — per-session credential storage.

The core never persists credentials itself: connectors go through a
``SessionStore`` (in-memory by default, SQLAlchemy-backed when
``SESSION_STORE_URL`` is set, see ``database/session_store.py``).
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Dict, Optional

from utils.schemas import ConnectorKind, Credential, Session, utcnow

logger = logging.getLogger(__name__)


class SessionStore(ABC):
    """Key-value store of ``Session`` objects keyed by session id."""

    @abstractmethod
    async def create(self) -> Session:
        ...

    @abstractmethod
    async def get(self, session_id: str) -> Optional[Session]:
        ...

    @abstractmethod
    async def set_credential(self, session_id: str, kind: ConnectorKind, credential: Credential) -> None:
        ...

    @abstractmethod
    async def clear_credential(self, session_id: str, kind: ConnectorKind) -> None:
        ...

    @abstractmethod
    async def delete(self, session_id: str) -> None:
        ...

    async def get_credential(self, session_id: str, kind: ConnectorKind) -> Optional[Credential]:
        session = await self.get(session_id)
        if session is None:
            return None
        return session.credentials.get(kind)

    async def close(self) -> None:
        return None


class InMemorySessionStore(SessionStore):
    """Process-local store.  Sessions are lost on restart."""

    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}
        self._lock = asyncio.Lock()

    async def create(self) -> Session:
        session = Session(session_id=uuid.uuid4().hex)
        async with self._lock:
            self._sessions[session.session_id] = session
        logger.debug("Created session %s", session.session_id)
        return session

    async def get(self, session_id: str) -> Optional[Session]:
        session = self._sessions.get(session_id)
        return session.model_copy(deep=True) if session else None

    async def set_credential(self, session_id: str, kind: ConnectorKind, credential: Credential) -> None:
        async with self._lock:
            current = self._sessions.get(session_id) or Session(session_id=session_id)
            credentials = dict(current.credentials)
            credentials[kind] = credential
            self._sessions[session_id] = current.model_copy(
                update={"credentials": credentials, "updated_at": utcnow()}
            )

    async def clear_credential(self, session_id: str, kind: ConnectorKind) -> None:
        async with self._lock:
            current = self._sessions.get(session_id)
            if current is None or kind not in current.credentials:
                return
            credentials = {k: v for k, v in current.credentials.items() if k != kind}
            self._sessions[session_id] = current.model_copy(
                update={"credentials": credentials, "updated_at": utcnow()}
            )

    async def delete(self, session_id: str) -> None:
        async with self._lock:
            self._sessions.pop(session_id, None)


def build_session_store(url: str = "", encryption_key: str = "") -> SessionStore:
    """Return the store selected by configuration."""
    if not url:
        logger.info("Using in-memory session store")
        return InMemorySessionStore()

    from database.session_store import SqlSessionStore

    logger.info("Using SQL session store")
    return SqlSessionStore(url, encryption_key=encryption_key)
