"""
Error taxonomy for the connection lifecycle.

Every error carries a stable ``code`` (the value the dashboard sees in the
callback redirect or in a JSON error body) and the HTTP status the routes
answer with.  Messages never contain token material.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

_MAX_PROVIDER_BODY = 500


class ConnectorError(Exception):
    """Base class for all connection lifecycle errors."""

    code: str = "connector_error"
    status_code: int = 500

    def __init__(self, message: str, *, platform: Optional[str] = None):
        self.message = message
        self.platform = platform
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.platform:
            body["platform"] = self.platform
        return body


class UnknownPlatform(ConnectorError):
    code = "unknown_platform"
    status_code = 404

    def __init__(self, platform: str):
        super().__init__(f"Platform '{platform}' is not available", platform=platform)


class CorrelationMismatch(ConnectorError):
    code = "invalid_state"
    status_code = 400

    def __init__(self, platform: Optional[str] = None):
        super().__init__("OAuth state does not match a pending connection", platform=platform)


class CorrelationExpired(ConnectorError):
    code = "invalid_state"
    status_code = 400

    def __init__(self, platform: Optional[str] = None):
        super().__init__("OAuth state has expired, start the connection again", platform=platform)


class MissingCallbackParameters(ConnectorError):
    code = "missing_parameters"
    status_code = 400

    def __init__(self, platform: Optional[str] = None, missing: tuple[str, ...] = ()):
        self.missing = missing
        detail = ", ".join(missing) if missing else "code, state"
        super().__init__(f"OAuth callback is missing: {detail}", platform=platform)


class ExchangeFailed(ConnectorError):
    """Authorization-code exchange was rejected or could not complete."""

    code = "connection_failed"
    status_code = 502

    def __init__(
        self,
        platform: str,
        *,
        provider_status: Optional[int] = None,
        provider_body: str = "",
        transient: bool = False,
    ):
        self.provider_status = provider_status
        self.provider_body = provider_body[:_MAX_PROVIDER_BODY]
        self.transient = transient
        name = _display(platform)
        if transient:
            message = f"{name} is temporarily unavailable. Try connecting {name} again in a few minutes."
        else:
            message = f"{name} did not accept the authorization. Try connecting {name} again."
        super().__init__(message, platform=platform)

    @property
    def terminal(self) -> bool:
        return not self.transient


class RefreshFailed(ConnectorError):
    """Refresh-token exchange failed.

    ``terminal`` means the provider no longer accepts the refresh token and
    the user has to reconnect; otherwise the failure is expected to clear on
    a later attempt.
    """

    code = "refresh_failed"

    def __init__(
        self,
        platform: str,
        *,
        terminal: bool,
        provider_status: Optional[int] = None,
        provider_body: str = "",
        message: Optional[str] = None,
    ):
        self.terminal = terminal
        self.provider_status = provider_status
        self.provider_body = provider_body[:_MAX_PROVIDER_BODY]
        self.status_code = 409 if terminal else 503
        if message is None:
            message = (
                reconnect_message(platform)
                if terminal
                else f"Could not refresh the {_display(platform)} connection right now, try again shortly"
            )
        super().__init__(message, platform=platform)

    @property
    def transient(self) -> bool:
        return not self.terminal


class EncryptionFailure(ConnectorError):
    code = "encryption_failure"
    status_code = 500

    def __init__(self, message: str = "Token encryption failed"):
        super().__init__(message)


class CredentialNotFound(ConnectorError):
    code = "not_found"
    status_code = 404

    def __init__(self, platform: str):
        super().__init__(f"No active {_display(platform)} connection", platform=platform)


def reconnect_message(platform: str) -> str:
    """Short user-facing message for a connection that needs the user to act."""
    name = _display(platform)
    return f"Your {name} connection has expired or was revoked. Reconnect {name} to keep scheduling posts."


def _display(platform: str) -> str:
    # late import: platforms imports this module
    from connectors.platforms import display_name

    return display_name(platform)
