"""
SQLAlchemy ORM models for OAuth state and platform credentials.

Column types are portable (PostgreSQL in production, SQLite in tests).
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.orm import DeclarativeBase


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class OAuthState(Base):
    """Pending connect request; deleted when the callback consumes it."""

    __tablename__ = "oauth_states"

    # sha256 of the state value; the value itself is never stored
    state_digest = Column(String(64), primary_key=True)
    platform = Column(String(32), nullable=False)
    user_id = Column(String(64), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)


class PlatformCredential(Base):
    __tablename__ = "platform_credentials"
    __table_args__ = (
        # at most one active credential per (user, platform)
        Index(
            "uq_platform_credentials_active",
            "user_id",
            "platform",
            unique=True,
            postgresql_where=text("active"),
            sqlite_where=text("active = 1"),
        ),
        Index("ix_platform_credentials_expiry", "active", "expires_at"),
    )

    credential_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String(64), nullable=False, index=True)
    platform = Column(String(32), nullable=False)
    access_token = Column(Text, nullable=False)      # Fernet ciphertext
    refresh_token = Column(Text)                     # Fernet ciphertext
    token_type = Column(String(32), default="Bearer")
    expires_at = Column(DateTime(timezone=True))     # NULL for non-expiring tokens
    scopes = Column(JSON, default=list)
    account_id = Column(String(256))
    display_name = Column(String(256))
    profile_image_url = Column(Text)
    active = Column(Boolean, nullable=False, default=True)
    status = Column(String(32), nullable=False, default="active")
    error_message = Column(Text)
    token_generation = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    last_refreshed_at = Column(DateTime(timezone=True))
    deactivated_at = Column(DateTime(timezone=True))
