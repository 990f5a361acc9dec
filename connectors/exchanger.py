"""
TokenExchanger — talks to provider token endpoints.

One outbound request per call, bounded by the configured timeout, no
retries: authorization codes are single-use and refresh retries belong to
the scheduler's next pass.  Response bodies are only ever surfaced on the
error path, where they carry provider error descriptions, not tokens.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import SecretStr

from connectors.errors import ExchangeFailed, RefreshFailed
from connectors.registry import ProviderConfig, ProviderRegistry
from utils.schemas import AccountProfile, TokenSet

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0

# Status codes that mean the provider rejected the refresh token itself
_TERMINAL_REFRESH_STATUSES = {400, 401, 403}


class _ProviderError(Exception):
    """Internal: a failed token call, before it is typed as exchange/refresh."""

    def __init__(self, status: Optional[int], body: str, transient: bool):
        self.status = status
        self.body = body
        self.transient = transient
        super().__init__(f"status={status}")


class TokenExchanger:
    def __init__(
        self,
        registry: ProviderRegistry,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._registry = registry
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    # ── Grants ──────────────────────────────────────────────────────────

    async def exchange(self, platform_id: str, code: str) -> TokenSet:
        """Exchange an authorization code for tokens."""
        provider = self._registry.lookup(platform_id)
        try:
            payload = await self._post_token(
                provider,
                {
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": provider.redirect_uri,
                },
            )
        except _ProviderError as exc:
            logger.warning(
                "Code exchange failed for %s: status=%s transient=%s",
                platform_id, exc.status, exc.transient,
            )
            raise ExchangeFailed(
                platform_id,
                provider_status=exc.status,
                provider_body=exc.body,
                transient=exc.transient,
            ) from exc
        tokens = _parse_tokens(payload, provider)
        logger.info("Exchanged authorization code for %s", platform_id)
        return tokens

    async def refresh(self, platform_id: str, refresh_token: str) -> TokenSet:
        """Use a refresh token to get a new access token."""
        provider = self._registry.lookup(platform_id)
        try:
            payload = await self._post_token(
                provider,
                {"grant_type": "refresh_token", "refresh_token": refresh_token},
            )
        except _ProviderError as exc:
            # a 2xx here is an error document or a body without a token
            terminal = not exc.transient and (
                exc.status in _TERMINAL_REFRESH_STATUSES or (exc.status or 0) < 300
            )
            logger.warning(
                "Token refresh failed for %s: status=%s terminal=%s",
                platform_id, exc.status, terminal,
            )
            raise RefreshFailed(
                platform_id,
                terminal=terminal,
                provider_status=exc.status,
                provider_body=exc.body,
            ) from exc
        tokens = _parse_tokens(payload, provider)
        if tokens.refresh_token is None:
            # provider did not rotate: keep using the one we have
            tokens.refresh_token = SecretStr(refresh_token)
        return tokens

    # ── Account lookup / revocation ─────────────────────────────────────

    async def fetch_profile(self, platform_id: str, access_token: str) -> AccountProfile:
        """Read the connected account's id, name and picture, if the platform exposes them."""
        provider = self._registry.lookup(platform_id)
        if not provider.profile_url:
            return AccountProfile()
        try:
            async with self._client() as client:
                resp = await client.get(
                    provider.profile_url,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Profile lookup failed for %s: %s", platform_id, type(exc).__name__)
            return AccountProfile()
        return parse_profile(data)

    async def revoke(self, platform_id: str, token: str) -> bool:
        """Best-effort revocation at the provider."""
        provider = self._registry.lookup(platform_id)
        if not provider.revoke_url:
            return False
        try:
            async with self._client() as client:
                resp = await client.post(
                    provider.revoke_url,
                    data={
                        "token": token,
                        "client_id": provider.client_id,
                        "client_secret": provider.client_secret,
                    },
                )
                return resp.is_success
        except httpx.HTTPError:
            logger.warning("Token revocation failed for %s", platform_id, exc_info=True)
            return False

    # ── Internals ───────────────────────────────────────────────────────

    async def _post_token(self, provider: ProviderConfig, data: Dict[str, str]) -> Dict[str, Any]:
        form = {
            **data,
            "client_id": provider.client_id,
            "client_secret": provider.client_secret,
        }
        try:
            async with self._client() as client:
                resp = await client.post(
                    provider.token_url,
                    data=form,
                    headers={"Accept": "application/json"},
                )
        except httpx.TimeoutException as exc:
            raise _ProviderError(None, "timeout", transient=True) from exc
        except httpx.TransportError as exc:
            raise _ProviderError(None, type(exc).__name__, transient=True) from exc

        if resp.status_code >= 500 or resp.status_code == 429:
            raise _ProviderError(resp.status_code, resp.text, transient=True)
        if not resp.is_success:
            raise _ProviderError(resp.status_code, resp.text, transient=False)

        try:
            payload = resp.json()
        except ValueError as exc:
            raise _ProviderError(resp.status_code, "invalid JSON body", transient=False) from exc
        if not isinstance(payload, dict):
            raise _ProviderError(resp.status_code, "unexpected token response", transient=False)
        # some providers answer 200 with an error document
        if "error" in payload:
            error = payload.get("error_description") or payload["error"]
            raise _ProviderError(resp.status_code, str(error), transient=False)
        if not payload.get("access_token"):
            raise _ProviderError(resp.status_code, "response has no access_token", transient=False)
        return payload


def _parse_tokens(payload: Dict[str, Any], provider: ProviderConfig) -> TokenSet:
    expires_in = payload.get("expires_in")
    try:
        expires_in = int(expires_in) if expires_in not in (None, "") else None
    except (TypeError, ValueError):
        expires_in = None

    scope = payload.get("scope")
    if isinstance(scope, list):
        scopes = [str(s) for s in scope]
    elif isinstance(scope, str) and scope:
        scopes = scope.replace(",", " ").split()
    else:
        scopes = list(provider.scopes)

    return TokenSet(
        access_token=payload["access_token"],
        refresh_token=payload.get("refresh_token") or None,
        expires_in=expires_in,
        token_type=payload.get("token_type") or "Bearer",
        scopes=scopes,
    )


def parse_profile(data: Any) -> AccountProfile:
    """Map the common profile shapes (Graph, OIDC userinfo, Twitter/TikTok envelopes)."""
    if not isinstance(data, dict):
        return AccountProfile()
    if isinstance(data.get("data"), dict):
        data = data["data"]
    if isinstance(data.get("user"), dict):
        data = data["user"]

    account_id = data.get("id") or data.get("sub") or data.get("open_id")
    name = data.get("name") or data.get("display_name") or data.get("username") or data.get("login")

    picture = (
        data.get("picture")
        or data.get("avatar_url")
        or data.get("profile_image_url")
        or data.get("profile_image")
        or data.get("threads_profile_picture_url")
    )
    if isinstance(picture, dict):  # Graph API: {"data": {"url": ...}}
        picture = (picture.get("data") or {}).get("url")

    return AccountProfile(
        account_id=str(account_id) if account_id is not None else None,
        display_name=name,
        profile_image_url=picture if isinstance(picture, str) else None,
    )
