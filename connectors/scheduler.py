"""
RefreshScheduler — keeps stored credentials ahead of their expiry.

A periodic asyncio task, independent of request handling.  Each refresh
runs under a per-(user, platform) lock and commits through the store's
generation check, so concurrent ticks (or a tick racing a manual refresh)
produce exactly one new token generation.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Dict, Optional, Protocol

from connectors.errors import ConnectorError, CredentialNotFound, RefreshFailed, reconnect_message
from connectors.exchanger import TokenExchanger
from connectors.platforms import display_name
from connectors.state import StateIssuer
from connectors.token_manager import CredentialStore
from utils.clock import Clock, utcnow
from utils.locks import KeyedLocks
from utils.schemas import Credential, RefreshOutcome

logger = logging.getLogger(__name__)

REFRESH_BUFFER_SECONDS = 300
REFRESH_INTERVAL_SECONDS = 60


class ReconnectNotifier(Protocol):
    async def __call__(self, user_id: str, platform: str, message: str) -> None: ...


async def log_reconnect_notice(user_id: str, platform: str, message: str) -> None:
    """Default notifier: the dashboard reads ``error_message`` from the stored credential."""
    logger.warning("User %s must reconnect %s: %s", user_id, platform, message)


class RefreshScheduler:
    def __init__(
        self,
        store: CredentialStore,
        exchanger: TokenExchanger,
        *,
        buffer_seconds: int = REFRESH_BUFFER_SECONDS,
        interval_seconds: float = REFRESH_INTERVAL_SECONDS,
        notifier: ReconnectNotifier = log_reconnect_notice,
        state_issuer: Optional[StateIssuer] = None,
        clock: Clock = utcnow,
    ):
        self._store = store
        self._exchanger = exchanger
        self._buffer = timedelta(seconds=buffer_seconds)
        self._interval = interval_seconds
        self._notifier = notifier
        self._state_issuer = state_issuer
        self._clock = clock
        self._locks = KeyedLocks()
        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()

    # ── One credential ──────────────────────────────────────────────────

    async def refresh_credential(
        self, user_id: str, platform: str, *, force: bool = False
    ) -> RefreshOutcome:
        """
        Refresh one credential if it is inside the refresh window
        (always, with ``force``).

        Transient provider failures return ``RETRY_LATER`` and leave the
        credential alone; terminal ones deactivate it and notify the user.
        If another writer stored a newer generation in the meantime the
        result is ``DISCARDED`` and nothing is written.
        Raises ``CredentialNotFound`` if there is no active credential, and
        ``RefreshFailed`` when ``force`` is set but the provider never issued
        a refresh token.
        """
        async with self._locks.hold((user_id, platform)):
            credential = await self._store.get(user_id, platform)
            now = self._clock()

            if credential.refresh_token is None:
                return await self._handle_missing_refresh_token(credential, force)
            if not force and not credential.needs_refresh(now, self._buffer):
                return RefreshOutcome.SKIPPED

            try:
                tokens = await self._exchanger.refresh(
                    platform, credential.refresh_token.get_secret_value()
                )
            except RefreshFailed as exc:
                if not exc.terminal:
                    logger.info("Refresh of %s for user %s will be retried next pass", platform, user_id)
                    return RefreshOutcome.RETRY_LATER
                return await self._deactivate(credential, exc.message)

            stored = await self._store.apply_refresh(
                credential.credential_id, credential.token_generation, tokens
            )
            if stored is None:
                return RefreshOutcome.DISCARDED
            logger.info("Refreshed %s token for user %s", platform, user_id)
            return RefreshOutcome.REFRESHED

    async def _handle_missing_refresh_token(self, credential: Credential, force: bool) -> RefreshOutcome:
        # nothing to refresh with: usable until it expires, then the user has to reconnect
        if credential.expires_at is None or credential.expires_at > self._clock():
            if force:
                name = display_name(credential.platform)
                raise RefreshFailed(
                    credential.platform,
                    terminal=True,
                    message=f"{name} does not allow renewing this connection. "
                    f"Reconnect {name} before it expires to keep scheduling posts.",
                )
            return RefreshOutcome.SKIPPED
        return await self._deactivate(credential, reconnect_message(credential.platform))

    async def _deactivate(self, credential: Credential, message: str) -> RefreshOutcome:
        changed = await self._store.deactivate(
            credential.credential_id, message, expected_generation=credential.token_generation
        )
        if not changed:
            # disconnected, or another worker already stored a newer generation
            logger.info(
                "Kept %s credential for user %s; it changed since it was read",
                credential.platform, credential.user_id,
            )
            return RefreshOutcome.DISCARDED
        logger.warning(
            "Deactivated %s credential for user %s; reconnect required",
            credential.platform, credential.user_id,
        )
        await self._notifier(credential.user_id, credential.platform, message)
        return RefreshOutcome.DEACTIVATED

    # ── Periodic pass ───────────────────────────────────────────────────

    async def run_once(self) -> Dict[RefreshOutcome, int]:
        """Refresh every credential inside the window; returns outcome counts."""
        counts: Dict[RefreshOutcome, int] = {}
        cutoff = self._clock() + self._buffer
        for user_id, platform in await self._store.refresh_candidates(cutoff):
            try:
                outcome = await self.refresh_credential(user_id, platform)
            except CredentialNotFound:
                # disconnected between the query and the lock
                outcome = RefreshOutcome.SKIPPED
            except ConnectorError as exc:
                logger.warning(
                    "Could not refresh %s for user %s: %s (%s)",
                    platform, user_id, exc.message, exc.code,
                )
                outcome = RefreshOutcome.FAILED
            except Exception:
                logger.exception("Unexpected error refreshing %s for user %s", platform, user_id)
                outcome = RefreshOutcome.FAILED
            counts[outcome] = counts.get(outcome, 0) + 1

        if self._state_issuer is not None:
            await self._state_issuer.purge_expired()
        if counts:
            logger.info("Refresh pass: %s", {k.value: v for k, v in counts.items()})
        return counts

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._loop(), name="credential-refresh")
        logger.info("Refresh scheduler started (every %ss, buffer %s)", self._interval, self._buffer)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stopping.set()
        await self._task
        self._task = None
        logger.info("Refresh scheduler stopped")

    async def _loop(self) -> None:
        while not self._stopping.is_set():
            try:
                await self.run_once()
            except Exception:
                # a bad pass must not kill the scheduler; next tick retries
                logger.exception("Refresh pass failed")
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass
