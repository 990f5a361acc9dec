"""
Test doubles shared across the suite.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs

import httpx

from connectors.platforms import PLATFORMS
from connectors.registry import ProviderConfig

VIEW_URL = "http://dashboard.test/dashboard/connections"
TEST_PLATFORMS = ("facebook", "linkedin")


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime.now(timezone.utc).replace(microsecond=0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeProvider:
    """
    Programmable token / profile / revoke endpoints.

    Token responses are served from a queue; with an empty queue the
    endpoint answers with a fresh token pair.
    """

    def __init__(self) -> None:
        self.token_responses: List[Any] = []
        self.requests: List[httpx.Request] = []
        self.profile: Dict[str, Any] = {
            "id": "page-42",
            "name": "Post Dominator Page",
            "picture": {"data": {"url": "https://img.test/page-42.png"}},
        }
        self._issued = 0

    def queue(self, status: int = 200, body: Any = None, exc: Optional[Exception] = None) -> None:
        self.token_responses.append(exc if exc is not None else (status, body))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.endswith("/token"):
            if self.token_responses:
                item = self.token_responses.pop(0)
                if isinstance(item, Exception):
                    raise item
                status, body = item
                if isinstance(body, str):
                    return httpx.Response(status, text=body)
                return httpx.Response(status, json=body)
            self._issued += 1
            return httpx.Response(
                200,
                json={
                    "access_token": f"access-{self._issued}",
                    "refresh_token": f"refresh-{self._issued}",
                    "expires_in": 3600,
                    "token_type": "bearer",
                },
            )
        if path.endswith("/me"):
            return httpx.Response(200, json=self.profile)
        if path.endswith("/revoke"):
            return httpx.Response(200, json={})
        return httpx.Response(404, json={"error": "not_found"})

    @property
    def token_requests(self) -> List[Dict[str, str]]:
        return [
            {k: v[0] for k, v in parse_qs(r.content.decode()).items()}
            for r in self.requests
            if r.url.path.endswith("/token")
        ]

    def paths(self) -> List[str]:
        return [r.url.path for r in self.requests]


def make_provider(platform_id: str) -> ProviderConfig:
    base = f"https://provider.test/{platform_id}"
    return ProviderConfig(
        platform_id=platform_id,
        name=PLATFORMS[platform_id].name,
        authorize_url=f"{base}/authorize",
        token_url=f"{base}/token",
        client_id=f"{platform_id}-client",
        client_secret=f"{platform_id}-secret",
        redirect_uri=f"http://localhost:8000/api/v1/connections/{platform_id}/callback",
        scopes=("pages_show_list", "pages_manage_posts"),
        profile_url=f"{base}/me",
        revoke_url=f"{base}/revoke",
    )


def token_body(access: str = "t1", refresh: Optional[str] = "r1", expires_in: Any = 3600) -> str:
    body: Dict[str, Any] = {"access_token": access, "token_type": "bearer"}
    if refresh is not None:
        body["refresh_token"] = refresh
    if expires_in is not None:
        body["expires_in"] = expires_in
    return json.dumps(body)

