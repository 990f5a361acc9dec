"""
FastAPI dependencies for the connection routes.

``get_current_user_id`` resolves the bearer token; ``get_connection_service``
hands out the service instance the app built at startup.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from connectors.service import ConnectionService

_bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> str:
    """
    Extract and verify the Bearer token, returning the authenticated
    user id.
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Bearer token",
        )
    from auth.jwt import verify_token

    return verify_token(credentials.credentials)


def get_connection_service(request: Request) -> ConnectionService:
    return request.app.state.connections
