"""
SQLAlchemy ORM models for the durable session store.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, relationship


class Base(DeclarativeBase):
    pass


class SessionRecord(Base):
    __tablename__ = "sessions"

    session_id = Column(String(64), primary_key=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    credentials = relationship(
        "CredentialRecord",
        back_populates="session",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class CredentialRecord(Base):
    __tablename__ = "session_credentials"
    session_id = Column(
        String(64),
        ForeignKey("sessions.session_id", ondelete="CASCADE"),
        primary_key=True,
    )
    kind = Column(String(32), primary_key=True)
    access_token = Column(Text, nullable=False)     # Fernet ciphertext when encryption is on
    refresh_token = Column(Text)
    token_type = Column(String(32), default="Bearer")
    expires_at = Column(DateTime(timezone=True))
    account_label = Column(String(128))
    stored_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    session = relationship("SessionRecord", back_populates="credentials")
