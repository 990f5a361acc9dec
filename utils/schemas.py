"""
Pydantic schemas for the connection lifecycle.

Token values are always ``SecretStr`` so they stay masked in ``repr``,
logs and serialised responses; call ``get_secret_value()`` at the point of use.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, SecretStr


# ═══════════════════════════════════════════════════════════════════════════════
# Provider responses
# ═══════════════════════════════════════════════════════════════════════════════


class TokenSet(BaseModel):
    """Normalised token endpoint response."""

    access_token: SecretStr
    refresh_token: Optional[SecretStr] = None
    expires_in: Optional[int] = None  # seconds; None for non-expiring tokens
    token_type: str = "Bearer"
    scopes: List[str] = Field(default_factory=list)

    def expires_at(self, now: datetime) -> Optional[datetime]:
        if self.expires_in is None:
            return None
        return now + timedelta(seconds=self.expires_in)


class AccountProfile(BaseModel):
    account_id: Optional[str] = None
    display_name: Optional[str] = None
    profile_image_url: Optional[str] = None


# ═══════════════════════════════════════════════════════════════════════════════
# Stored credentials
# ═══════════════════════════════════════════════════════════════════════════════


class CredentialStatus(str, Enum):
    ACTIVE = "active"
    DISCONNECTED = "disconnected"
    REPLACED = "replaced"
    RECONNECT_REQUIRED = "reconnect_required"


class ConnectionSummary(BaseModel):
    """What the dashboard shows for a connection. Carries no token fields."""

    credential_id: uuid.UUID
    platform: str
    account_id: Optional[str] = None
    display_name: Optional[str] = None
    profile_image_url: Optional[str] = None
    scopes: List[str] = Field(default_factory=list)
    active: bool
    status: CredentialStatus
    error_message: Optional[str] = None
    expires_at: Optional[datetime] = None
    created_at: datetime
    last_refreshed_at: Optional[datetime] = None


class Credential(ConnectionSummary):
    """Active credential with tokens decrypted for immediate use."""

    user_id: str
    access_token: SecretStr
    refresh_token: Optional[SecretStr] = None
    token_type: str = "Bearer"
    token_generation: int = 1

    def summary(self) -> ConnectionSummary:
        return ConnectionSummary(**self.model_dump(include=set(ConnectionSummary.model_fields)))

    def needs_refresh(self, now: datetime, buffer: timedelta) -> bool:
        """True when the token expires within ``buffer`` of ``now``."""
        if self.expires_at is None:
            return False
        return self.expires_at - now < buffer


# ═══════════════════════════════════════════════════════════════════════════════
# Connect / callback
# ═══════════════════════════════════════════════════════════════════════════════


class CorrelationToken(BaseModel):
    value: str
    platform: str
    user_id: str
    created_at: datetime
    expires_at: datetime
    marker: str = ""  # HMAC for the client-side cookie


class ConnectRequest(BaseModel):
    platform: str
    authorization_url: str
    state: str
    marker: str
    expires_at: datetime


class CallbackOutcome(BaseModel):
    platform: str
    success: bool
    error_code: Optional[str] = None
    reason: Optional[str] = None  # error class name, for logs and tests
    message: str = ""
    redirect_url: str
    credential: Optional[ConnectionSummary] = None


class RefreshOutcome(str, Enum):
    REFRESHED = "refreshed"
    SKIPPED = "skipped"
    DISCARDED = "discarded"
    RETRY_LATER = "retry_later"
    DEACTIVATED = "deactivated"
    FAILED = "failed"
