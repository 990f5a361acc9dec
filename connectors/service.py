"""
ConnectionService — the operations the dashboard calls.

Wires the registry, state issuer, exchanger, credential store and
scheduler together.  Callback failures never raise: they become a redirect
back to the connections view with one of the fixed error codes.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from connectors.errors import (
    ConnectorError,
    EncryptionFailure,
    MissingCallbackParameters,
    RefreshFailed,
)
from connectors.exchanger import TokenExchanger
from connectors.registry import ProviderRegistry
from connectors.scheduler import RefreshScheduler
from connectors.state import StateIssuer
from connectors.token_manager import CredentialStore
from utils.schemas import (
    CallbackOutcome,
    ConnectionSummary,
    ConnectRequest,
    RefreshOutcome,
)

logger = logging.getLogger(__name__)

# Error codes the callback redirect may carry, besides "<platform>_error"
MISSING_PARAMETERS = "missing_parameters"
INVALID_STATE = "invalid_state"
CONNECTION_FAILED = "connection_failed"


class ConnectionService:
    def __init__(
        self,
        registry: ProviderRegistry,
        state_issuer: StateIssuer,
        exchanger: TokenExchanger,
        store: CredentialStore,
        scheduler: RefreshScheduler,
        *,
        connections_view_url: str,
        secure_cookies: bool = False,
    ):
        self.registry = registry
        self.state_issuer = state_issuer
        self.exchanger = exchanger
        self.store = store
        self.scheduler = scheduler
        self._view_url = connections_view_url
        self.secure_cookies = secure_cookies

    def providers(self) -> List[Dict[str, Any]]:
        return self.registry.list_platforms()

    async def list_active(self, user_id: str) -> List[ConnectionSummary]:
        return await self.store.list_active(user_id)

    async def connect(self, user_id: str, platform_id: str) -> ConnectRequest:
        """Start a connection: issue state and build the provider redirect."""
        provider = self.registry.lookup(platform_id)
        token = await self.state_issuer.issue(platform_id, user_id)
        logger.info("Connect started: user=%s platform=%s", user_id, platform_id)
        return ConnectRequest(
            platform=platform_id,
            authorization_url=provider.authorization_url(token.value),
            state=token.value,
            marker=token.marker,
            expires_at=token.expires_at,
        )

    async def complete_callback(
        self,
        platform_id: str,
        *,
        code: Optional[str],
        state: Optional[str],
        error: Optional[str] = None,
        marker: Optional[str] = None,
    ) -> CallbackOutcome:
        """
        Finish a connection from the provider redirect.

        Raises ``UnknownPlatform`` for platforms that are not registered;
        every other failure is reported through the returned outcome.
        """
        self.registry.lookup(platform_id)

        if error:
            logger.warning("Provider returned error for %s: %s", platform_id, error[:100])
            return self._failure(
                platform_id,
                f"{platform_id}_error",
                f"{self.registry.lookup(platform_id).name} did not authorize the connection",
                reason="ProviderError",
            )

        try:
            missing = tuple(name for name, value in (("code", code), ("state", state)) if not value)
            if missing:
                raise MissingCallbackParameters(platform_id, missing)
            self.state_issuer.verify_marker(platform_id, state, marker)
            correlation = await self.state_issuer.verify(platform_id, state)
            tokens = await self.exchanger.exchange(platform_id, code)
            profile = await self.exchanger.fetch_profile(
                platform_id, tokens.access_token.get_secret_value()
            )
            summary = await self.store.save(correlation.user_id, platform_id, tokens, profile)
        except ConnectorError as exc:
            if isinstance(exc, EncryptionFailure):
                logger.error("Could not store %s credential: %s", platform_id, exc.message)
            error_code = exc.code if exc.code in (MISSING_PARAMETERS, INVALID_STATE) else CONNECTION_FAILED
            return self._failure(platform_id, error_code, exc.message, reason=type(exc).__name__)

        logger.info(
            "OAuth connected: user=%s platform=%s account=%s",
            correlation.user_id, platform_id, summary.display_name or summary.account_id,
        )
        return CallbackOutcome(
            platform=platform_id,
            success=True,
            message=f"Connected {self.registry.lookup(platform_id).name}",
            redirect_url=self._redirect({"connected": platform_id}),
            credential=summary,
        )

    async def disconnect(self, user_id: str, platform_id: str) -> ConnectionSummary:
        """Soft-delete the connection, then revoke at the provider if it supports it."""
        self.registry.lookup(platform_id)
        access_token: Optional[str] = None
        try:
            access_token = (await self.store.get(user_id, platform_id)).access_token.get_secret_value()
        except EncryptionFailure:
            logger.error("Stored %s token unreadable; skipping provider revocation", platform_id)

        summary = await self.store.revoke(user_id, platform_id)
        if access_token:
            await self.exchanger.revoke(platform_id, access_token)
        return summary

    async def refresh_now(self, user_id: str, platform_id: str) -> ConnectionSummary:
        """Refresh immediately; raises ``RefreshFailed`` with the cause on failure."""
        self.registry.lookup(platform_id)
        outcome = await self.scheduler.refresh_credential(user_id, platform_id, force=True)
        if outcome is RefreshOutcome.RETRY_LATER:
            raise RefreshFailed(platform_id, terminal=False)
        if outcome is RefreshOutcome.DEACTIVATED:
            raise RefreshFailed(platform_id, terminal=True)
        return (await self.store.get(user_id, platform_id)).summary()

    # ── Helpers ─────────────────────────────────────────────────────────

    def _failure(self, platform_id: str, error_code: str, message: str, *, reason: str) -> CallbackOutcome:
        logger.info("OAuth callback for %s failed: %s (%s)", platform_id, error_code, reason)
        return CallbackOutcome(
            platform=platform_id,
            success=False,
            error_code=error_code,
            reason=reason,
            message=message,
            redirect_url=self._redirect({"error": error_code, "platform": platform_id}),
        )

    def _redirect(self, params: Dict[str, str]) -> str:
        sep = "&" if "?" in self._view_url else "?"
        return f"{self._view_url}{sep}{urlencode(params)}"
