"""
ProviderRegistry — immutable map of platform id → OAuth endpoint configuration.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple
from urllib.parse import urlencode

from config.settings import Settings
from connectors.errors import UnknownPlatform
from connectors.platforms import PLATFORMS, PlatformInfo

logger = logging.getLogger(__name__)

# Keys accepted in ``provider_overrides`` for each platform
_OVERRIDABLE = {
    "authorize_url",
    "token_url",
    "scopes",
    "redirect_uri_template",
    "profile_url",
    "revoke_url",
    "extra_authorize_params",
}


@dataclass(frozen=True)
class ProviderConfig:
    platform_id: str
    name: str
    authorize_url: str
    token_url: str
    client_id: str
    client_secret: str = field(repr=False)
    redirect_uri: str = ""
    scopes: Tuple[str, ...] = ()
    profile_url: Optional[str] = None
    revoke_url: Optional[str] = None
    extra_authorize_params: Mapping[str, str] = field(default_factory=dict)

    def authorization_url(self, state: str) -> str:
        """Build the provider redirect for a connect request."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "state": state,
        }
        params.update(self.extra_authorize_params)
        sep = "&" if "?" in self.authorize_url else "?"
        return f"{self.authorize_url}{sep}{urlencode(params)}"


class ProviderRegistry:
    """Lookup table built once at startup; never mutated afterwards."""

    def __init__(self, providers: Iterable[ProviderConfig]):
        self._providers: Mapping[str, ProviderConfig] = MappingProxyType(
            {p.platform_id: p for p in providers}
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "ProviderRegistry":
        """Register every platform that has client credentials configured."""
        providers: List[ProviderConfig] = []
        unknown = set(settings.provider_overrides) - set(PLATFORMS)
        if unknown:
            raise ValueError(f"provider_overrides names unknown platforms: {sorted(unknown)}")

        for info in PLATFORMS.values():
            client_id, client_secret = settings.client_credentials(info.platform_id)
            if not (client_id and client_secret):
                logger.warning(
                    "Platform %s skipped — not configured (missing client_id/secret)",
                    info.platform_id,
                )
                continue
            overrides = settings.provider_overrides.get(info.platform_id, {})
            providers.append(_build(info, settings, client_id, client_secret, overrides))
            logger.info("Platform registered: %s (%s)", info.name, info.platform_id)
        return cls(providers)

    def lookup(self, platform_id: str) -> ProviderConfig:
        try:
            return self._providers[platform_id]
        except KeyError:
            raise UnknownPlatform(platform_id) from None

    def is_registered(self, platform_id: str) -> bool:
        return platform_id in self._providers

    def list_configured(self) -> List[str]:
        return list(self._providers.keys())

    def list_platforms(self) -> List[Dict[str, Any]]:
        """Display metadata for every known platform plus its configured flag."""
        return [
            {**info.to_display(), "configured": info.platform_id in self._providers}
            for info in PLATFORMS.values()
        ]


def _build(
    info: PlatformInfo,
    settings: Settings,
    client_id: str,
    client_secret: str,
    overrides: Mapping[str, Any],
) -> ProviderConfig:
    bad = set(overrides) - _OVERRIDABLE
    if bad:
        raise ValueError(f"Unsupported overrides for {info.platform_id}: {sorted(bad)}")

    scopes = overrides.get("scopes", info.scopes)
    if isinstance(scopes, str):
        scopes = scopes.split()
    extra = dict(info.extra_authorize_params)
    extra.update(overrides.get("extra_authorize_params", {}))

    return ProviderConfig(
        platform_id=info.platform_id,
        name=info.name,
        authorize_url=overrides.get("authorize_url", info.authorize_url),
        token_url=overrides.get("token_url", info.token_url),
        client_id=client_id,
        client_secret=client_secret,
        redirect_uri=settings.redirect_uri(
            info.platform_id, overrides.get("redirect_uri_template")
        ),
        scopes=tuple(scopes),
        profile_url=overrides.get("profile_url", info.profile_url),
        revoke_url=overrides.get("revoke_url", info.revoke_url),
        extra_authorize_params=MappingProxyType(extra),
    )
