"""
Platform catalogue — static display metadata and default OAuth endpoints.

Resolved once at import.  Anything not listed here is not a platform the
dashboard can connect, and looking it up is an error.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, FrozenSet, Mapping, Optional, Tuple

from connectors.errors import UnknownPlatform

# Capability names shown on the connection cards
PUBLISH_POSTS = "publish_posts"
PUBLISH_VIDEO = "publish_video"
PUBLISH_STORIES = "publish_stories"
READ_INSIGHTS = "read_insights"


@dataclass(frozen=True)
class PlatformInfo:
    """Display metadata plus the endpoints a ProviderConfig starts from."""

    platform_id: str
    name: str
    color: str
    description: str
    api_name: str
    developer_portal: str
    capabilities: FrozenSet[str]
    authorize_url: str
    token_url: str
    scopes: Tuple[str, ...]
    profile_url: Optional[str] = None
    revoke_url: Optional[str] = None
    extra_authorize_params: Mapping[str, str] = field(default_factory=dict)

    def to_display(self) -> Dict[str, object]:
        return {
            "platform": self.platform_id,
            "name": self.name,
            "color": self.color,
            "description": self.description,
            "api_name": self.api_name,
            "developer_portal": self.developer_portal,
            "capabilities": sorted(self.capabilities),
        }


_GRAPH = "https://graph.facebook.com/v19.0"

_ALL_PLATFORMS: Tuple[PlatformInfo, ...] = (
    PlatformInfo(
        platform_id="facebook",
        name="Facebook",
        color="#1877F2",
        description="Connect your Facebook page to schedule posts and access insights",
        api_name="Facebook Graph API",
        developer_portal="https://developers.facebook.com",
        capabilities=frozenset({PUBLISH_POSTS, READ_INSIGHTS}),
        authorize_url="https://www.facebook.com/v19.0/dialog/oauth",
        token_url=f"{_GRAPH}/oauth/access_token",
        scopes=("pages_show_list", "pages_read_engagement", "pages_manage_posts"),
        profile_url=f"{_GRAPH}/me?fields=id,name,picture",
    ),
    PlatformInfo(
        platform_id="instagram",
        name="Instagram",
        color="#E4405F",
        description="Schedule posts, stories, and reels to your Instagram account",
        api_name="Instagram Graph API",
        developer_portal="https://developers.facebook.com/docs/instagram-api",
        capabilities=frozenset({PUBLISH_POSTS, PUBLISH_STORIES, PUBLISH_VIDEO, READ_INSIGHTS}),
        authorize_url="https://www.facebook.com/v19.0/dialog/oauth",
        token_url=f"{_GRAPH}/oauth/access_token",
        scopes=("instagram_basic", "instagram_content_publish", "pages_show_list"),
        profile_url=f"{_GRAPH}/me?fields=id,name,picture",
    ),
    PlatformInfo(
        platform_id="twitter",
        name="X (Twitter)",
        color="#000000",
        description="Post tweets, threads, and manage your X account",
        api_name="Twitter API v2",
        developer_portal="https://developer.twitter.com",
        capabilities=frozenset({PUBLISH_POSTS}),
        authorize_url="https://twitter.com/i/oauth2/authorize",
        token_url="https://api.twitter.com/2/oauth2/token",
        scopes=("tweet.read", "tweet.write", "users.read", "offline.access"),
        profile_url="https://api.twitter.com/2/users/me?user.fields=profile_image_url",
        revoke_url="https://api.twitter.com/2/oauth2/revoke",
    ),
    PlatformInfo(
        platform_id="linkedin",
        name="LinkedIn",
        color="#0A66C2",
        description="Share professional content and connect with your network",
        api_name="LinkedIn API",
        developer_portal="https://www.linkedin.com/developers",
        capabilities=frozenset({PUBLISH_POSTS}),
        authorize_url="https://www.linkedin.com/oauth/v2/authorization",
        token_url="https://www.linkedin.com/oauth/v2/accessToken",
        scopes=("openid", "profile", "w_member_social"),
        profile_url="https://api.linkedin.com/v2/userinfo",
    ),
    PlatformInfo(
        platform_id="tiktok",
        name="TikTok",
        color="#000000",
        description="Schedule and manage your TikTok content",
        api_name="TikTok Marketing API",
        developer_portal="https://developers.tiktok.com",
        capabilities=frozenset({PUBLISH_VIDEO}),
        authorize_url="https://www.tiktok.com/v2/auth/authorize/",
        token_url="https://open.tiktokapis.com/v2/oauth/token/",
        scopes=("user.info.basic", "video.publish"),
        profile_url="https://open.tiktokapis.com/v2/user/info/?fields=open_id,display_name,avatar_url",
        revoke_url="https://open.tiktokapis.com/v2/oauth/revoke/",
    ),
    PlatformInfo(
        platform_id="youtube",
        name="YouTube",
        color="#FF0000",
        description="Schedule video uploads and manage your YouTube channel",
        api_name="YouTube Data API v3",
        developer_portal="https://developers.google.com/youtube",
        capabilities=frozenset({PUBLISH_VIDEO, READ_INSIGHTS}),
        authorize_url="https://accounts.google.com/o/oauth2/v2/auth",
        token_url="https://oauth2.googleapis.com/token",
        scopes=(
            "https://www.googleapis.com/auth/youtube.upload",
            "https://www.googleapis.com/auth/youtube.readonly",
        ),
        profile_url="https://www.googleapis.com/oauth2/v2/userinfo",
        revoke_url="https://oauth2.googleapis.com/revoke",
        # refresh tokens are only issued for offline access with forced consent
        extra_authorize_params=MappingProxyType({"access_type": "offline", "prompt": "consent"}),
    ),
    PlatformInfo(
        platform_id="pinterest",
        name="Pinterest",
        color="#BD081C",
        description="Schedule pins and manage your Pinterest boards",
        api_name="Pinterest API",
        developer_portal="https://developers.pinterest.com",
        capabilities=frozenset({PUBLISH_POSTS}),
        authorize_url="https://www.pinterest.com/oauth/",
        token_url="https://api.pinterest.com/v5/oauth/token",
        scopes=("boards:read", "pins:read", "pins:write"),
        profile_url="https://api.pinterest.com/v5/user_account",
    ),
    PlatformInfo(
        platform_id="threads",
        name="Threads",
        color="#000000",
        description="Connect your Threads account to schedule posts",
        api_name="Threads API (via Instagram Graph API)",
        developer_portal="https://developers.facebook.com/docs/threads",
        capabilities=frozenset({PUBLISH_POSTS}),
        authorize_url="https://threads.net/oauth/authorize",
        token_url="https://graph.threads.net/oauth/access_token",
        scopes=("threads_basic", "threads_content_publish"),
        profile_url="https://graph.threads.net/v1.0/me?fields=id,username,threads_profile_picture_url",
    ),
)

PLATFORMS: Mapping[str, PlatformInfo] = MappingProxyType(
    {p.platform_id: p for p in _ALL_PLATFORMS}
)


def get_platform(platform_id: str) -> PlatformInfo:
    try:
        return PLATFORMS[platform_id]
    except KeyError:
        raise UnknownPlatform(platform_id) from None


def display_name(platform_id: str) -> str:
    """Human name for messages; falls back to the raw id for unknown platforms."""
    info = PLATFORMS.get(platform_id)
    return info.name if info else platform_id
