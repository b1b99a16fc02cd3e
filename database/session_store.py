"""
SqlSessionStore — durable ``SessionStore`` backed by SQLAlchemy async.

Credentials are encrypted with Fernet before they reach the database
(see ``connectors/encryption.py``).
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError

from auth.session_store import SessionStore
from connectors.encryption import TokenCipher
from connectors.errors import Internal
from database.models import CredentialRecord, SessionRecord
from database.session import create_engine, create_session_factory, create_tables
from utils.schemas import ConnectorKind, Credential, Session

logger = logging.getLogger(__name__)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo; every stored timestamp is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SqlSessionStore(SessionStore):
    def __init__(self, database_url: str, *, encryption_key: str = "") -> None:
        self._engine = create_engine(database_url)
        self._factory = create_session_factory(self._engine)
        self._cipher = TokenCipher(encryption_key)
        self._ready = False

    async def _ensure_tables(self) -> None:
        if not self._ready:
            await create_tables(self._engine)
            self._ready = True

    def _to_credential(self, row: CredentialRecord) -> Credential:
        return Credential(
            access_token=self._cipher.decrypt(row.access_token),
            refresh_token=self._cipher.decrypt(row.refresh_token),
            token_type=row.token_type or "Bearer",
            expires_at=_aware(row.expires_at),
            account_label=row.account_label,
        )

    def _to_session(self, record: SessionRecord) -> Session:
        credentials = {}
        for row in record.credentials:
            try:
                kind = ConnectorKind(row.kind)
            except ValueError:
                logger.warning("Ignoring credential of unknown kind %r", row.kind)
                continue
            credentials[kind] = self._to_credential(row)
        return Session(
            session_id=record.session_id,
            credentials=credentials,
            created_at=_aware(record.created_at),
            updated_at=_aware(record.updated_at),
        )

    # ── SessionStore API ────────────────────────────────────────────────

    async def create(self) -> Session:
        await self._ensure_tables()
        now = datetime.now(timezone.utc)
        record = SessionRecord(session_id=uuid.uuid4().hex, created_at=now, updated_at=now)
        try:
            async with self._factory() as db:
                db.add(record)
                await db.commit()
            return Session(session_id=record.session_id, created_at=now, updated_at=now)
        except SQLAlchemyError as exc:
            logger.error("create session error: %s", exc)
            raise Internal("session store unavailable") from exc

    async def get(self, session_id: str) -> Optional[Session]:
        await self._ensure_tables()
        try:
            async with self._factory() as db:
                record = await db.get(SessionRecord, session_id)
                return self._to_session(record) if record else None
        except SQLAlchemyError as exc:
            logger.error("get session error: %s", exc)
            raise Internal("session store unavailable") from exc

    async def set_credential(self, session_id: str, kind: ConnectorKind, credential: Credential) -> None:
        await self._ensure_tables()
        now = datetime.now(timezone.utc)
        try:
            async with self._factory() as db:
                record = await db.get(SessionRecord, session_id)
                if record is None:
                    record = SessionRecord(session_id=session_id)
                    db.add(record)
                row = await db.get(CredentialRecord, (session_id, kind.value))
                if row is None:
                    row = CredentialRecord(session_id=session_id, kind=kind.value)
                    db.add(row)
                row.access_token = self._cipher.encrypt(credential.access_token)
                row.refresh_token = self._cipher.encrypt(credential.refresh_token)
                row.token_type = credential.token_type
                row.expires_at = credential.expires_at
                row.account_label = credential.account_label
                row.stored_at = now
                record.updated_at = now
                await db.commit()
        except SQLAlchemyError as exc:
            logger.error("set_credential error: %s", exc)
            raise Internal("session store unavailable") from exc

    async def clear_credential(self, session_id: str, kind: ConnectorKind) -> None:
        await self._ensure_tables()
        try:
            async with self._factory() as db:
                await db.execute(
                    delete(CredentialRecord).where(
                        CredentialRecord.session_id == session_id,
                        CredentialRecord.kind == kind.value,
                    )
                )
                await db.commit()
        except SQLAlchemyError as exc:
            logger.error("clear_credential error: %s", exc)
            raise Internal("session store unavailable") from exc

    async def delete(self, session_id: str) -> None:
        await self._ensure_tables()
        try:
            async with self._factory() as db:
                await db.execute(delete(CredentialRecord).where(CredentialRecord.session_id == session_id))
                await db.execute(delete(SessionRecord).where(SessionRecord.session_id == session_id))
                await db.commit()
        except SQLAlchemyError as exc:
            logger.error("delete session error: %s", exc)
            raise Internal("session store unavailable") from exc

    async def close(self) -> None:
        await self._engine.dispose()
