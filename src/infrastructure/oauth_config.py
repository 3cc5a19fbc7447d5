# src/infrastructure/oauth_config.py
import os
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from src.schemas.connection_schema import Platform

OAUTH_API_BASE_URL = os.getenv("OAUTH_API_BASE_URL", "http://localhost:8000")
OAUTH_APP_BASE_URL = os.getenv("OAUTH_APP_BASE_URL", "http://localhost:3000")
PROVIDER_HTTP_TIMEOUT = float(os.getenv("PROVIDER_HTTP_TIMEOUT", "30"))

GRAPH_API_BASE = "https://graph.facebook.com/v19.0"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
YOUTUBE_CHANNELS_URL = "https://www.googleapis.com/youtube/v3/channels"
LINKEDIN_TOKEN_URL = "https://www.linkedin.com/oauth/v2/accessToken"
LINKEDIN_USERINFO_URL = "https://api.linkedin.com/v2/userinfo"
LINKEDIN_ORG_ACLS_URL = "https://api.linkedin.com/rest/organizationAcls"
LINKEDIN_API_VERSION = "202401"


@dataclass(frozen=True)
class ProviderEndpoints:
    authorize_url: str
    scopes: Tuple[str, ...]
    scope_separator: str = " "
    extra_params: Dict[str, str] = field(default_factory=dict)

    @property
    def scope(self) -> str:
        return self.scope_separator.join(self.scopes)


PROVIDERS: Dict[Platform, ProviderEndpoints] = {
    Platform.FACEBOOK: ProviderEndpoints(
        authorize_url="https://www.facebook.com/v19.0/dialog/oauth",
        scopes=(
            "pages_show_list",
            "pages_read_engagement",
            "pages_manage_posts",
            "instagram_basic",
            "instagram_content_publish",
        ),
        scope_separator=",",
    ),
    Platform.YOUTUBE: ProviderEndpoints(
        authorize_url="https://accounts.google.com/o/oauth2/v2/auth",
        scopes=(
            "https://www.googleapis.com/auth/youtube.upload",
            "https://www.googleapis.com/auth/youtube",
        ),
        # google only returns a refresh token for offline access with forced consent
        extra_params={"access_type": "offline", "prompt": "consent"},
    ),
    Platform.LINKEDIN: ProviderEndpoints(
        authorize_url="https://www.linkedin.com/oauth/v2/authorization",
        scopes=(
            "openid",
            "profile",
            "email",
            "w_member_social",
            "w_organization_social",
            "r_organization_social",
            "rw_organization_admin",
        ),
    ),
}


@dataclass(frozen=True)
class ClientCredentials:
    client_id: Optional[str] = None
    client_secret: Optional[str] = None

    @property
    def complete(self) -> bool:
        return bool(self.client_id) and bool(self.client_secret)


@dataclass(frozen=True)
class ProviderSecretsConfig:
    """
    Injected client credentials and base URLs. Read-only for the connection core.
    """
    facebook: ClientCredentials = ClientCredentials()
    youtube: ClientCredentials = ClientCredentials()
    linkedin: ClientCredentials = ClientCredentials()
    api_base_url: str = OAUTH_API_BASE_URL
    app_base_url: str = OAUTH_APP_BASE_URL

    @classmethod
    def from_env(cls) -> "ProviderSecretsConfig":
        return cls(
            facebook=ClientCredentials(os.getenv("META_APP_ID"), os.getenv("META_APP_SECRET")),
            youtube=ClientCredentials(os.getenv("YOUTUBE_CLIENT_ID"), os.getenv("YOUTUBE_CLIENT_SECRET")),
            linkedin=ClientCredentials(os.getenv("LINKEDIN_CLIENT_ID"), os.getenv("LINKEDIN_CLIENT_SECRET")),
            api_base_url=os.getenv("OAUTH_API_BASE_URL", OAUTH_API_BASE_URL),
            app_base_url=os.getenv("OAUTH_APP_BASE_URL", OAUTH_APP_BASE_URL),
        )

    def credentials(self, platform: Platform) -> ClientCredentials:
        if platform == Platform.INSTAGRAM:
            # instagram rides on the meta app
            return self.facebook
        return getattr(self, Platform(platform).value)

    def is_configured(self, platform: Platform) -> bool:
        return self.credentials(platform).complete

    def redirect_uri(self, platform: Platform) -> str:
        return f"{self.api_base_url}/api/oauth?action=callback&platform={Platform(platform).value}"

    def settings_url(self) -> str:
        return f"{self.app_base_url}/settings"
