"""
OAuth state (CSRF correlation) tokens.

The state value travels through the provider redirect; only its SHA-256
digest is stored, in the shared ``oauth_states`` table, so whichever process
receives the callback can check it.  A second, HMAC-signed copy goes to the
browser as a path-scoped cookie so a callback replayed from another browser
is rejected even before the database is consulted.

Verification consumes the row: a replayed callback URL fails as a mismatch.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import timedelta

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from connectors.errors import CorrelationExpired, CorrelationMismatch
from database.models import OAuthState
from utils.clock import Clock, as_utc, utcnow
from utils.schemas import CorrelationToken

logger = logging.getLogger(__name__)

STATE_TTL_SECONDS = 600
COOKIE_PREFIX = "oauth_state_"


def _digest(value: str) -> str:
    return hashlib.sha256(value.encode()).hexdigest()


class StateIssuer:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        secret: str,
        *,
        ttl_seconds: int = STATE_TTL_SECONDS,
        clock: Clock = utcnow,
    ):
        if not secret:
            raise ValueError("OAuth state secret must not be empty")
        self._session_factory = session_factory
        self._secret = secret.encode()
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock

    async def issue(self, platform_id: str, user_id: str) -> CorrelationToken:
        value = secrets.token_urlsafe(32)
        now = self._clock()
        expires_at = now + self._ttl
        async with self._session_factory() as session:
            session.add(
                OAuthState(
                    state_digest=_digest(value),
                    platform=platform_id,
                    user_id=user_id,
                    created_at=now,
                    expires_at=expires_at,
                )
            )
            await session.commit()
        logger.debug("Issued OAuth state for %s (user %s)", platform_id, user_id)
        return CorrelationToken(
            value=value,
            platform=platform_id,
            user_id=user_id,
            created_at=now,
            expires_at=expires_at,
            marker=self.sign(platform_id, value),
        )

    async def verify(self, platform_id: str, value: str) -> CorrelationToken:
        """
        Check and consume a presented state value.

        Raises ``CorrelationMismatch`` for unknown, already-used or
        cross-platform values and ``CorrelationExpired`` once the lifetime
        has passed.
        """
        if not value:
            raise CorrelationMismatch(platform_id)
        digest = _digest(value)
        async with self._session_factory() as session:
            # single statement so two concurrent callbacks cannot both win;
            # a value presented to the wrong platform is left in place
            result = await session.execute(
                delete(OAuthState)
                .where(OAuthState.state_digest == digest, OAuthState.platform == platform_id)
                .returning(
                    OAuthState.state_digest,
                    OAuthState.platform,
                    OAuthState.user_id,
                    OAuthState.created_at,
                    OAuthState.expires_at,
                )
            )
            row = result.first()
            await session.commit()

        if row is None or not hmac.compare_digest(row.state_digest, digest):
            logger.warning("OAuth state mismatch for %s", platform_id)
            raise CorrelationMismatch(platform_id)
        expires_at = as_utc(row.expires_at)
        if expires_at <= self._clock():
            logger.info("OAuth state for %s expired", platform_id)
            raise CorrelationExpired(platform_id)

        return CorrelationToken(
            value=value,
            platform=row.platform,
            user_id=row.user_id,
            created_at=as_utc(row.created_at),
            expires_at=expires_at,
        )

    def sign(self, platform_id: str, value: str) -> str:
        return hmac.new(self._secret, f"{platform_id}:{value}".encode(), hashlib.sha256).hexdigest()

    def verify_marker(self, platform_id: str, value: str, marker: str | None) -> None:
        """Check the cookie copy of the state; raises ``CorrelationMismatch``."""
        if not marker or not value:
            raise CorrelationMismatch(platform_id)
        if not hmac.compare_digest(marker, self.sign(platform_id, value)):
            logger.warning("OAuth state cookie does not match callback for %s", platform_id)
            raise CorrelationMismatch(platform_id)

    async def purge_expired(self) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(OAuthState).where(OAuthState.expires_at <= self._clock())
            )
            await session.commit()
        if result.rowcount:
            logger.info("Purged %d expired OAuth states", result.rowcount)
        return result.rowcount or 0


def cookie_name(platform_id: str) -> str:
    return f"{COOKIE_PREFIX}{platform_id}"
