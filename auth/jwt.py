"""
Dashboard bearer tokens.

The dashboard signs in users elsewhere and hands this service a token of
the form ``base64url(json{"sub", "exp"}).hex(hmac_sha256)`` signed with
``config.session_secret`` (env var: ``SESSION_SECRET``).
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from base64 import urlsafe_b64decode, urlsafe_b64encode
from typing import Optional

from fastapi import HTTPException, status

from config.settings import config


def _sign(raw: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), raw, hashlib.sha256).hexdigest()


def create_token(
    user_id: str,
    *,
    secret: Optional[str] = None,
    expires_in: Optional[int] = None,
) -> str:
    """Create a signed token for ``user_id``."""
    secret = secret or config.session_secret
    ttl = config.session_expiry_seconds if expires_in is None else expires_in
    raw = json.dumps({"sub": user_id, "exp": int(time.time()) + ttl}).encode()
    return urlsafe_b64encode(raw).decode().rstrip("=") + "." + _sign(raw, secret)


def verify_token(token: str, *, secret: Optional[str] = None) -> str:
    """
    Verify token and return the user id.

    Raises ``HTTPException(401)`` on malformed, forged or expired tokens.
    """
    secret = secret or config.session_secret
    try:
        encoded, sig = token.split(".", 1)
        raw = urlsafe_b64decode(encoded + "=" * (-len(encoded) % 4))
        if not hmac.compare_digest(sig, _sign(raw, secret)):
            raise ValueError("bad signature")
        payload = json.loads(raw)
        if payload.get("exp", 0) < time.time():
            raise ValueError("token expired")
        return str(payload["sub"])
    except (ValueError, KeyError, TypeError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid or expired token: {exc}",
        ) from exc
