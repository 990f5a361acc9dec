"""
Connection API routes — providers, connect/callback, list, disconnect, refresh.

Route prefix: /api/v1/connections
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse

from auth.dependencies import get_connection_service, get_current_user_id
from connectors.errors import ConnectorError
from connectors.service import ConnectionService
from connectors.state import cookie_name
from utils.clock import utcnow
from utils.schemas import ConnectionSummary

logger = logging.getLogger(__name__)

router = APIRouter(tags=["connections"])


def _http_error(exc: ConnectorError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.to_dict())


def _cookie_path(request: Request) -> str:
    # /api/v1/connections/<platform>/connect → /api/v1/connections/<platform>
    return request.url.path.rsplit("/", 1)[0]


# ── Routes ─────────────────────────────────────────────────────────────


@router.get("/providers")
async def list_providers(
    service: ConnectionService = Depends(get_connection_service),
) -> List[Dict[str, Any]]:
    """
    List every platform with its display metadata and whether it is configured.
    No auth required; the dashboard uses it to render the connection cards.
    """
    return service.providers()


@router.get("", response_model=List[ConnectionSummary])
async def list_connections(
    user_id: str = Depends(get_current_user_id),
    service: ConnectionService = Depends(get_connection_service),
) -> List[ConnectionSummary]:
    """Active connections for the authenticated user (no tokens)."""
    return await service.list_active(user_id)


@router.get("/{platform}/connect")
async def connect(
    platform: str,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    service: ConnectionService = Depends(get_connection_service),
) -> JSONResponse:
    """
    Start the OAuth flow.

    Returns the provider authorization URL for the dashboard to navigate to,
    and sets the signed, path-scoped state cookie the callback checks.
    """
    try:
        req = await service.connect(user_id, platform)
    except ConnectorError as exc:
        raise _http_error(exc) from exc

    response = JSONResponse(
        {
            "platform": platform,
            "authorization_url": req.authorization_url,
            "expires_at": req.expires_at.isoformat(),
        }
    )
    response.set_cookie(
        cookie_name(platform),
        req.marker,
        max_age=max(int((req.expires_at - utcnow()).total_seconds()), 1),
        path=_cookie_path(request),
        httponly=True,
        secure=service.secure_cookies,
        samesite="lax",
    )
    return response


@router.get("/{platform}/callback")
async def oauth_callback(
    platform: str,
    request: Request,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    service: ConnectionService = Depends(get_connection_service),
) -> RedirectResponse:
    """
    Provider redirects here after consent.

    Always answers with a redirect back to the connections view, carrying
    ``connected=<platform>`` or ``error=<code>``.
    """
    try:
        outcome = await service.complete_callback(
            platform,
            code=code,
            state=state,
            error=error,
            marker=request.cookies.get(cookie_name(platform)),
        )
    except ConnectorError as exc:
        raise _http_error(exc) from exc

    response = RedirectResponse(outcome.redirect_url, status_code=303)
    response.delete_cookie(cookie_name(platform), path=_cookie_path(request))
    return response


@router.delete("/{platform}")
async def disconnect(
    platform: str,
    user_id: str = Depends(get_current_user_id),
    service: ConnectionService = Depends(get_connection_service),
) -> Dict[str, Any]:
    """Disconnect a platform; the stored credential is kept but deactivated."""
    try:
        summary = await service.disconnect(user_id, platform)
    except ConnectorError as exc:
        raise _http_error(exc) from exc
    return {"status": "disconnected", "connection": summary.model_dump(mode="json")}


@router.post("/{platform}/refresh", response_model=ConnectionSummary)
async def refresh(
    platform: str,
    user_id: str = Depends(get_current_user_id),
    service: ConnectionService = Depends(get_connection_service),
) -> ConnectionSummary:
    """Refresh the platform's token now."""
    try:
        return await service.refresh_now(user_id, platform)
    except ConnectorError as exc:
        raise _http_error(exc) from exc
