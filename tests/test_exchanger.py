"""
Tests for connectors.exchanger — code exchange, refresh grants, profile parsing.
"""

from dataclasses import replace

import httpx
import pytest

from connectors.errors import ExchangeFailed, RefreshFailed, UnknownPlatform
from connectors.exchanger import TokenExchanger, parse_profile
from connectors.registry import ProviderRegistry
from tests.helpers import make_provider, token_body


class TestExchange:
    @pytest.mark.asyncio
    async def test_success(self, exchanger, fake_provider):
        fake_provider.queue(200, {"access_token": "t1", "refresh_token": "r1", "expires_in": "3600"})

        tokens = await exchanger.exchange("facebook", "abc123")

        assert tokens.access_token.get_secret_value() == "t1"
        assert tokens.refresh_token.get_secret_value() == "r1"
        assert tokens.expires_in == 3600
        assert tokens.scopes == ["pages_show_list", "pages_manage_posts"]

        form = fake_provider.token_requests[0]
        assert form["grant_type"] == "authorization_code"
        assert form["code"] == "abc123"
        assert form["client_id"] == "facebook-client"
        assert form["client_secret"] == "facebook-secret"
        assert form["redirect_uri"] == make_provider("facebook").redirect_uri

    @pytest.mark.asyncio
    async def test_granted_scope_string(self, exchanger, fake_provider):
        fake_provider.queue(200, {"access_token": "t1", "scope": "openid,profile w_member_social"})
        tokens = await exchanger.exchange("linkedin", "abc")
        assert tokens.scopes == ["openid", "profile", "w_member_social"]
        assert tokens.refresh_token is None
        assert tokens.expires_in is None

    @pytest.mark.asyncio
    async def test_rejected_code_is_terminal(self, exchanger, fake_provider):
        fake_provider.queue(400, {"error": "invalid_grant", "error_description": "Code was already redeemed"})

        with pytest.raises(ExchangeFailed) as exc_info:
            await exchanger.exchange("facebook", "abc123")

        err = exc_info.value
        assert err.terminal
        assert err.provider_status == 400
        assert "invalid_grant" in err.provider_body
        assert "abc123" not in err.message
        assert err.code == "connection_failed"

    @pytest.mark.asyncio
    async def test_rejected_code_message_names_platform_and_action(self, exchanger, fake_provider):
        fake_provider.queue(400, {"error": "invalid_grant"})

        with pytest.raises(ExchangeFailed) as exc_info:
            await exchanger.exchange("facebook", "abc123")

        message = exc_info.value.message
        assert message == "Facebook did not accept the authorization. Try connecting Facebook again."
        assert "400" not in message
        assert "facebook" not in message

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self, exchanger, fake_provider):
        fake_provider.queue(503, "upstream unavailable")
        with pytest.raises(ExchangeFailed) as exc_info:
            await exchanger.exchange("facebook", "abc123")
        assert exc_info.value.transient
        assert exc_info.value.provider_status == 503
        assert exc_info.value.message == (
            "Facebook is temporarily unavailable. Try connecting Facebook again in a few minutes."
        )

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self, exchanger, fake_provider):
        fake_provider.queue(exc=httpx.ReadTimeout("timed out"))
        with pytest.raises(ExchangeFailed) as exc_info:
            await exchanger.exchange("facebook", "abc123")
        assert exc_info.value.transient
        assert exc_info.value.provider_status is None

    @pytest.mark.asyncio
    async def test_error_document_with_200(self, exchanger, fake_provider):
        fake_provider.queue(200, {"error": "invalid_request"})
        with pytest.raises(ExchangeFailed) as exc_info:
            await exchanger.exchange("facebook", "abc123")
        assert exc_info.value.terminal

    @pytest.mark.asyncio
    async def test_missing_access_token(self, exchanger, fake_provider):
        fake_provider.queue(200, {"token_type": "bearer"})
        with pytest.raises(ExchangeFailed):
            await exchanger.exchange("facebook", "abc123")

    @pytest.mark.asyncio
    async def test_unknown_platform_makes_no_request(self, exchanger, fake_provider):
        with pytest.raises(UnknownPlatform):
            await exchanger.exchange("myspace", "abc123")
        assert fake_provider.requests == []


class TestRefresh:
    @pytest.mark.asyncio
    async def test_rotated_refresh_token(self, exchanger, fake_provider):
        fake_provider.queue(200, token_body("t2", "r2"))
        tokens = await exchanger.refresh("facebook", "r1")

        assert tokens.access_token.get_secret_value() == "t2"
        assert tokens.refresh_token.get_secret_value() == "r2"
        form = fake_provider.token_requests[0]
        assert form["grant_type"] == "refresh_token"
        assert form["refresh_token"] == "r1"

    @pytest.mark.asyncio
    async def test_keeps_refresh_token_when_not_rotated(self, exchanger, fake_provider):
        fake_provider.queue(200, token_body("t2", refresh=None))
        tokens = await exchanger.refresh("facebook", "r1")
        assert tokens.refresh_token.get_secret_value() == "r1"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [400, 401, 403])
    async def test_rejected_refresh_token_is_terminal(self, exchanger, fake_provider, status):
        fake_provider.queue(status, {"error": "invalid_grant"})
        with pytest.raises(RefreshFailed) as exc_info:
            await exchanger.refresh("facebook", "r1")
        assert exc_info.value.terminal
        assert exc_info.value.status_code == 409
        assert "Reconnect Facebook" in exc_info.value.message

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [429, 500, 502])
    async def test_provider_outage_is_transient(self, exchanger, fake_provider, status):
        fake_provider.queue(status, "try later")
        with pytest.raises(RefreshFailed) as exc_info:
            await exchanger.refresh("facebook", "r1")
        assert not exc_info.value.terminal
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_network_error_is_transient(self, exchanger, fake_provider):
        fake_provider.queue(exc=httpx.ConnectError("connection refused"))
        with pytest.raises(RefreshFailed) as exc_info:
            await exchanger.refresh("facebook", "r1")
        assert exc_info.value.transient


class TestProfile:
    @pytest.mark.asyncio
    async def test_fetch_profile(self, exchanger, fake_provider):
        profile = await exchanger.fetch_profile("facebook", "t1")
        assert profile.account_id == "page-42"
        assert profile.display_name == "Post Dominator Page"
        assert profile.profile_image_url == "https://img.test/page-42.png"
        assert fake_provider.requests[0].headers["Authorization"] == "Bearer t1"

    @pytest.mark.asyncio
    async def test_fetch_profile_failure_is_empty(self, registry):
        def handler(request):
            return httpx.Response(500)

        exchanger = TokenExchanger(registry, transport=httpx.MockTransport(handler))
        profile = await exchanger.fetch_profile("facebook", "t1")
        assert profile.account_id is None
        assert profile.display_name is None

    @pytest.mark.asyncio
    async def test_no_profile_url(self):
        registry = ProviderRegistry([replace(make_provider("facebook"), profile_url=None)])
        exchanger = TokenExchanger(registry, transport=httpx.MockTransport(lambda r: httpx.Response(500)))
        assert (await exchanger.fetch_profile("facebook", "t1")).account_id is None

    def test_twitter_envelope(self):
        profile = parse_profile({"data": {"id": "12", "username": "postdom", "profile_image_url": "https://x.test/a.png"}})
        assert profile.account_id == "12"
        assert profile.display_name == "postdom"
        assert profile.profile_image_url == "https://x.test/a.png"

    def test_tiktok_envelope(self):
        profile = parse_profile({"data": {"user": {"open_id": "oid", "display_name": "PD", "avatar_url": "https://t.test/a"}}})
        assert profile.account_id == "oid"
        assert profile.display_name == "PD"

    def test_oidc_userinfo(self):
        profile = parse_profile({"sub": "li-1", "name": "Ada", "picture": "https://li.test/p"})
        assert profile.account_id == "li-1"
        assert profile.profile_image_url == "https://li.test/p"

    def test_unexpected_shape(self):
        assert parse_profile(["not", "a", "dict"]).account_id is None


class TestRevoke:
    @pytest.mark.asyncio
    async def test_revoke_posts_token(self, exchanger, fake_provider):
        assert await exchanger.revoke("facebook", "t1") is True
        request = fake_provider.requests[0]
        assert request.url.path == "/facebook/revoke"
        assert b"token=t1" in request.content

    @pytest.mark.asyncio
    async def test_revoke_network_error_is_swallowed(self, registry):
        def handler(request):
            raise httpx.ConnectError("down")

        exchanger = TokenExchanger(registry, transport=httpx.MockTransport(handler))
        assert await exchanger.revoke("facebook", "t1") is False
