"""
Credential store — encrypted per-user platform credentials.

Token material is encrypted before it reaches the session and decrypted
only in ``get``.  Disconnects and replacements are soft: rows are
deactivated, never deleted, so the history of a connection survives.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from connectors.encryption import TokenCipher
from connectors.errors import CredentialNotFound
from database.models import PlatformCredential
from utils.clock import Clock, as_utc, utcnow
from utils.locks import KeyedLocks
from utils.schemas import (
    AccountProfile,
    ConnectionSummary,
    Credential,
    CredentialStatus,
    TokenSet,
)

logger = logging.getLogger(__name__)

_SAVE_ATTEMPTS = 2


class CredentialStore:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cipher: TokenCipher,
        *,
        clock: Clock = utcnow,
    ):
        self._session_factory = session_factory
        self._cipher = cipher
        self._clock = clock
        self._write_locks = KeyedLocks()

    async def save(
        self,
        user_id: str,
        platform: str,
        tokens: TokenSet,
        profile: Optional[AccountProfile] = None,
    ) -> ConnectionSummary:
        """
        Store a freshly connected credential.

        Any active credential for the same (user, platform) is deactivated
        in the same transaction as the insert.
        """
        # encrypt first: a failure here must not leave a half-written row
        access = self._cipher.encrypt(tokens.access_token.get_secret_value())
        refresh = self._cipher.encrypt_optional(
            tokens.refresh_token.get_secret_value() if tokens.refresh_token else None
        )
        profile = profile or AccountProfile()

        async with self._write_locks.hold((user_id, platform)):
            for attempt in range(1, _SAVE_ATTEMPTS + 1):
                now = self._clock()
                row = PlatformCredential(
                    credential_id=uuid.uuid4(),
                    user_id=user_id,
                    platform=platform,
                    access_token=access,
                    refresh_token=refresh,
                    token_type=tokens.token_type,
                    expires_at=tokens.expires_at(now),
                    scopes=list(tokens.scopes),
                    account_id=profile.account_id,
                    display_name=profile.display_name,
                    profile_image_url=profile.profile_image_url,
                    active=True,
                    status=CredentialStatus.ACTIVE.value,
                    error_message=None,
                    token_generation=1,
                    created_at=now,
                    last_refreshed_at=None,
                    deactivated_at=None,
                )
                try:
                    async with self._session_factory() as session:
                        async with session.begin():
                            replaced = await session.execute(
                                update(PlatformCredential)
                                .where(
                                    PlatformCredential.user_id == user_id,
                                    PlatformCredential.platform == platform,
                                    PlatformCredential.active.is_(True),
                                )
                                .values(
                                    active=False,
                                    status=CredentialStatus.REPLACED.value,
                                    deactivated_at=now,
                                )
                            )
                            session.add(row)
                    break
                except IntegrityError:
                    # another process inserted concurrently; its row gets replaced on retry
                    if attempt == _SAVE_ATTEMPTS:
                        raise
                    logger.info("Concurrent save for %s/%s, retrying", platform, user_id)

        logger.info(
            "Stored %s credential for user %s (replaced %d)",
            platform, user_id, replaced.rowcount or 0,
        )
        return _to_summary(row)

    async def get(self, user_id: str, platform: str) -> Credential:
        """Active credential with decrypted tokens; raises ``CredentialNotFound``."""
        async with self._session_factory() as session:
            row = await self._active_row(session, user_id, platform)
        if row is None:
            raise CredentialNotFound(platform)
        return self._to_credential(row)

    async def list_active(self, user_id: str) -> List[ConnectionSummary]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(PlatformCredential)
                .where(
                    PlatformCredential.user_id == user_id,
                    PlatformCredential.active.is_(True),
                )
                .order_by(PlatformCredential.platform)
            )
            rows = result.scalars().all()
        return [_to_summary(r) for r in rows]

    async def list_history(self, user_id: str, platform: str) -> List[ConnectionSummary]:
        """Every credential ever stored for the pair, newest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(PlatformCredential)
                .where(
                    PlatformCredential.user_id == user_id,
                    PlatformCredential.platform == platform,
                )
                .order_by(PlatformCredential.created_at.desc())
            )
            rows = result.scalars().all()
        return [_to_summary(r) for r in rows]

    async def revoke(self, user_id: str, platform: str) -> ConnectionSummary:
        """Soft-delete the active credential; raises ``CredentialNotFound``."""
        async with self._write_locks.hold((user_id, platform)):
            async with self._session_factory() as session:
                async with session.begin():
                    row = await self._active_row(session, user_id, platform)
                    if row is None:
                        raise CredentialNotFound(platform)
                    row.active = False
                    row.status = CredentialStatus.DISCONNECTED.value
                    row.deactivated_at = self._clock()
        logger.info("Disconnected %s for user %s", platform, user_id)
        return _to_summary(row)

    async def apply_refresh(
        self,
        credential_id: uuid.UUID,
        expected_generation: int,
        tokens: TokenSet,
    ) -> Optional[ConnectionSummary]:
        """
        Write refreshed tokens in place.

        Only commits if the credential is still active and nobody else
        refreshed it since ``expected_generation`` was read; returns
        ``None`` when the result is discarded.
        """
        access = self._cipher.encrypt(tokens.access_token.get_secret_value())
        values = {
            "access_token": access,
            "token_type": tokens.token_type,
            "expires_at": tokens.expires_at(self._clock()),
            "last_refreshed_at": self._clock(),
            "token_generation": PlatformCredential.token_generation + 1,
            "error_message": None,
        }
        if tokens.refresh_token is not None:
            values["refresh_token"] = self._cipher.encrypt(tokens.refresh_token.get_secret_value())
        if tokens.scopes:
            values["scopes"] = list(tokens.scopes)

        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(PlatformCredential)
                    .where(
                        PlatformCredential.credential_id == credential_id,
                        PlatformCredential.active.is_(True),
                        PlatformCredential.token_generation == expected_generation,
                    )
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if not result.rowcount:
                    logger.info("Discarded refresh for credential %s (deactivated or superseded)", credential_id)
                    return None
                row = await session.get(PlatformCredential, credential_id, populate_existing=True)
        return _to_summary(row)

    async def deactivate(
        self,
        credential_id: uuid.UUID,
        message: str,
        expected_generation: Optional[int] = None,
    ) -> bool:
        """
        Mark a credential as needing reconnection.

        With ``expected_generation`` the update only applies if no other
        writer has stored a newer token generation since it was read.
        Returns False when nothing changed.
        """
        conditions = [
            PlatformCredential.credential_id == credential_id,
            PlatformCredential.active.is_(True),
        ]
        if expected_generation is not None:
            conditions.append(PlatformCredential.token_generation == expected_generation)
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(PlatformCredential)
                    .where(*conditions)
                    .values(
                        active=False,
                        status=CredentialStatus.RECONNECT_REQUIRED.value,
                        error_message=message,
                        deactivated_at=self._clock(),
                    )
                    .execution_options(synchronize_session=False)
                )
        return bool(result.rowcount)

    async def refresh_candidates(self, cutoff: datetime) -> List[Tuple[str, str]]:
        """(user_id, platform) of active credentials expiring before ``cutoff``."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(PlatformCredential.user_id, PlatformCredential.platform)
                .where(
                    PlatformCredential.active.is_(True),
                    PlatformCredential.expires_at.is_not(None),
                    PlatformCredential.expires_at < cutoff,
                )
                .order_by(PlatformCredential.expires_at)
            )
            return [(r.user_id, r.platform) for r in result.all()]

    # ── Internals ───────────────────────────────────────────────────────

    @staticmethod
    async def _active_row(
        session: AsyncSession, user_id: str, platform: str
    ) -> Optional[PlatformCredential]:
        result = await session.execute(
            select(PlatformCredential).where(
                PlatformCredential.user_id == user_id,
                PlatformCredential.platform == platform,
                PlatformCredential.active.is_(True),
            )
        )
        return result.scalar_one_or_none()

    def _to_credential(self, row: PlatformCredential) -> Credential:
        return Credential(
            **_summary_fields(row),
            user_id=row.user_id,
            access_token=self._cipher.decrypt(row.access_token),
            refresh_token=self._cipher.decrypt_optional(row.refresh_token),
            token_type=row.token_type or "Bearer",
            token_generation=row.token_generation,
        )


def _summary_fields(row: PlatformCredential) -> dict:
    return {
        "credential_id": row.credential_id,
        "platform": row.platform,
        "account_id": row.account_id,
        "display_name": row.display_name,
        "profile_image_url": row.profile_image_url,
        "scopes": list(row.scopes or []),
        "active": row.active,
        "status": CredentialStatus(row.status),
        "error_message": row.error_message,
        "expires_at": as_utc(row.expires_at),
        "created_at": as_utc(row.created_at),
        "last_refreshed_at": as_utc(row.last_refreshed_at),
    }


def _to_summary(row: PlatformCredential) -> ConnectionSummary:
    return ConnectionSummary(**_summary_fields(row))
