# src/services/token_exchange.py
"""
Provider-specific authorization-code exchanges.

Each exchange is a short chain of sequential provider calls. A failing
required step aborts the whole exchange with ProviderExchangeError (or a
MissingResourceError when the account has nothing to connect). Optional
steps go through ``attempt`` and are resolved by ``settle``, the only place
their failures are logged and dropped.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, TypeVar

import structlog
from pydantic import ValidationError

from src.infrastructure.oauth_config import (
    GOOGLE_TOKEN_URL,
    GRAPH_API_BASE,
    LINKEDIN_API_VERSION,
    LINKEDIN_ORG_ACLS_URL,
    LINKEDIN_TOKEN_URL,
    LINKEDIN_USERINFO_URL,
    YOUTUBE_CHANNELS_URL,
    ClientCredentials,
    ProviderSecretsConfig,
)
from src.infrastructure.provider_client import ProviderHttpClient
from src.schemas.connection_schema import (
    FacebookConnection,
    InstagramAccount,
    InstagramConnection,
    LinkedInConnection,
    Organization,
    Platform,
    PlatformConnection,
    ProbeResult,
    YouTubeConnection,
    utcnow,
)
from src.services.errors import (
    ConfigurationError,
    NoChannelFound,
    NoPageFound,
    ProviderExchangeError,
    RefreshTokenMissing,
    UnknownPlatform,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# linkedin wants the projection verbatim, so the query is part of the URL
LINKEDIN_ADMIN_ORGS_URL = (
    f"{LINKEDIN_ORG_ACLS_URL}?q=roleAssignee&role=ADMINISTRATOR&state=APPROVED"
    "&projection=(elements*(organizationalTarget~(id,localizedName)))"
)


@dataclass
class StepResult(Generic[T]):
    value: Optional[T] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def attempt(step: Awaitable[T]) -> StepResult[T]:
    try:
        return StepResult(value=await step)
    except (ProviderExchangeError, ValidationError) as exc:
        return StepResult(error=exc)


def settle(result: StepResult[T], provider: str, step: str, default: Optional[T] = None) -> Optional[T]:
    # best-effort failures end here
    if result.ok:
        return result.value
    logger.warning("best_effort_step_failed", provider=provider, step=step, error=str(result.error))
    return default


def _bearer(access_token: str, **extra: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {access_token}", **extra}


def _require_token(payload: Dict[str, Any], provider: str, step: str) -> str:
    token = payload.get("access_token")
    if not token:
        raise ProviderExchangeError(provider, step, "no access token returned")
    return token


class TokenExchangeClient:
    def __init__(
        self,
        http: ProviderHttpClient,
        secrets: ProviderSecretsConfig,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.http = http
        self.secrets = secrets
        self.clock = clock
        self._exchanges = {
            Platform.FACEBOOK: self.exchange_facebook,
            Platform.YOUTUBE: self.exchange_youtube,
            Platform.LINKEDIN: self.exchange_linkedin,
        }

    async def exchange(self, platform: Platform, code: str) -> List[PlatformConnection]:
        try:
            handler = self._exchanges[Platform(platform)]
        except (ValueError, KeyError):
            raise UnknownPlatform(str(platform))
        return await handler(code)

    def _credentials(self, platform: Platform) -> ClientCredentials:
        creds = self.secrets.credentials(platform)
        if not creds.complete:
            raise ConfigurationError(f"{platform.value} app credentials not configured")
        return creds

    # --- meta: page-based ---
    async def exchange_facebook(self, code: str) -> List[PlatformConnection]:
        creds = self._credentials(Platform.FACEBOOK)
        token_url = f"{GRAPH_API_BASE}/oauth/access_token"

        short_lived = await self.http.get(
            "facebook",
            "token exchange",
            token_url,
            params={
                "client_id": creds.client_id,
                "redirect_uri": self.secrets.redirect_uri(Platform.FACEBOOK),
                "client_secret": creds.client_secret,
                "code": code,
            },
        )
        short_token = _require_token(short_lived, "facebook", "token exchange")

        long_lived = await self.http.get(
            "facebook",
            "long-lived token exchange",
            token_url,
            params={
                "grant_type": "fb_exchange_token",
                "client_id": creds.client_id,
                "client_secret": creds.client_secret,
                "fb_exchange_token": short_token,
            },
        )
        user_token = _require_token(long_lived, "facebook", "long-lived token exchange")

        pages = await self.http.get(
            "facebook",
            "page lookup",
            f"{GRAPH_API_BASE}/me/accounts",
            params={"access_token": user_token, "fields": "name,access_token,instagram_business_account"},
        )
        data = pages.get("data") or []
        if not data:
            raise NoPageFound()

        # first page wins, there is no selection step
        page = data[0]
        page_token = page.get("access_token")
        if not page_token or not page.get("id"):
            raise ProviderExchangeError("facebook", "page lookup", "page entry has no id or access token")
        if len(data) > 1:
            logger.info("facebook_multiple_pages_first_selected", page_count=len(data), page_id=str(page["id"]))

        instagram = None
        linked = page.get("instagram_business_account") or {}
        if linked.get("id"):
            instagram = settle(
                await attempt(self._fetch_instagram_account(str(linked["id"]), page_token)),
                "facebook",
                "instagram lookup",
            )

        now = self.clock()
        page_connection = FacebookConnection(
            access_token=page_token,
            expires_at=None,
            page_id=str(page["id"]),
            page_name=page.get("name"),
            instagram_account=instagram,
            connected_at=now,
        )
        connections: List[PlatformConnection] = [page_connection]
        if instagram is not None:
            connections.append(
                InstagramConnection(
                    access_token=page_token,
                    expires_at=None,
                    page_id=page_connection.page_id,
                    page_name=page_connection.page_name,
                    instagram_account=instagram,
                    connected_at=now,
                )
            )
        logger.info("facebook_exchange_complete", page_id=page_connection.page_id, instagram_linked=instagram is not None)
        return connections

    async def _fetch_instagram_account(self, account_id: str, page_token: str) -> InstagramAccount:
        data = await self.http.get(
            "facebook",
            "instagram lookup",
            f"{GRAPH_API_BASE}/{account_id}",
            params={"fields": "id,username", "access_token": page_token},
        )
        if not data.get("id"):
            raise ProviderExchangeError("facebook", "instagram lookup", "account has no id")
        return InstagramAccount(id=str(data["id"]), username=data.get("username"))

    # --- google: channel with refresh token ---
    async def exchange_youtube(self, code: str) -> List[PlatformConnection]:
        creds = self._credentials(Platform.YOUTUBE)
        token = await self.http.post_form(
            "youtube",
            "token exchange",
            GOOGLE_TOKEN_URL,
            data={
                "client_id": creds.client_id,
                "client_secret": creds.client_secret,
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": self.secrets.redirect_uri(Platform.YOUTUBE),
            },
        )
        access_token = _require_token(token, "youtube", "token exchange")
        refresh_token = token.get("refresh_token")
        if not refresh_token:
            # an access token alone cannot renew itself, so this is not a connection
            logger.warning("youtube_refresh_token_missing")
            raise RefreshTokenMissing()

        channels = await self.http.get(
            "youtube",
            "channel lookup",
            YOUTUBE_CHANNELS_URL,
            params={"part": "snippet", "mine": "true"},
            headers=_bearer(access_token),
        )
        items = channels.get("items") or []
        if not items:
            raise NoChannelFound()
        channel = items[0]

        now = self.clock()
        connection = YouTubeConnection(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=now + timedelta(seconds=int(token.get("expires_in") or 3600)),
            channel_id=str(channel["id"]),
            channel_name=(channel.get("snippet") or {}).get("title"),
            connected_at=now,
        )
        logger.info("youtube_exchange_complete", channel_id=connection.channel_id)
        return [connection]

    async def refresh_youtube(self, connection: YouTubeConnection) -> YouTubeConnection:
        """
        Trade the stored refresh token for a fresh access token.
        Google may rotate the refresh token; the old one is kept otherwise.
        """
        if not connection.refresh_token:
            raise RefreshTokenMissing()
        creds = self._credentials(Platform.YOUTUBE)
        data = await self.http.post_form(
            "youtube",
            "token refresh",
            GOOGLE_TOKEN_URL,
            data={
                "client_id": creds.client_id,
                "client_secret": creds.client_secret,
                "refresh_token": connection.refresh_token,
                "grant_type": "refresh_token",
            },
        )
        access_token = _require_token(data, "youtube", "token refresh")
        refreshed = connection.model_copy(
            update={
                "access_token": access_token,
                "refresh_token": data.get("refresh_token") or connection.refresh_token,
                "expires_at": self.clock() + timedelta(seconds=int(data.get("expires_in") or 3600)),
            }
        )
        logger.info("youtube_token_refreshed", channel_id=connection.channel_id)
        return refreshed

    # --- linkedin: oidc ---
    async def exchange_linkedin(self, code: str) -> List[PlatformConnection]:
        creds = self._credentials(Platform.LINKEDIN)
        token = await self.http.post_form(
            "linkedin",
            "token exchange",
            LINKEDIN_TOKEN_URL,
            data={
                "grant_type": "authorization_code",
                "code": code,
                "client_id": creds.client_id,
                "client_secret": creds.client_secret,
                "redirect_uri": self.secrets.redirect_uri(Platform.LINKEDIN),
            },
        )
        access_token = _require_token(token, "linkedin", "token exchange")
        expires_in = token.get("expires_in")

        profile = await self.http.get(
            "linkedin",
            "profile lookup",
            LINKEDIN_USERINFO_URL,
            headers=_bearer(access_token, **{"LinkedIn-Version": LINKEDIN_API_VERSION}),
        )
        if not profile.get("sub"):
            raise ProviderExchangeError("linkedin", "profile lookup", "profile has no member id")

        organizations = settle(
            await attempt(self._fetch_organizations(access_token)),
            "linkedin",
            "organization lookup",
            default=[],
        )

        now = self.clock()
        connection = LinkedInConnection(
            access_token=access_token,
            expires_at=now + timedelta(seconds=int(expires_in)) if expires_in else None,
            user_id=str(profile["sub"]),
            user_name=profile.get("name"),
            user_email=profile.get("email"),
            organizations=organizations,
            connected_at=now,
        )
        logger.info("linkedin_exchange_complete", user_id=connection.user_id, organization_count=len(organizations))
        return [connection]

    async def _fetch_organizations(self, access_token: str) -> List[Organization]:
        data = await self.http.get(
            "linkedin",
            "organization lookup",
            LINKEDIN_ADMIN_ORGS_URL,
            headers=_bearer(access_token, **{"LinkedIn-Version": LINKEDIN_API_VERSION}),
        )
        elements = data.get("elements") or []
        if not isinstance(elements, list):
            raise ProviderExchangeError("linkedin", "organization lookup", "elements is not a list")
        organizations = []
        for element in elements:
            if not isinstance(element, dict):
                continue
            target = element.get("organizationalTarget~") or element.get("organizationalTarget")
            if not isinstance(target, dict):
                continue
            org_id, name = target.get("id"), target.get("localizedName")
            if org_id and name:
                organizations.append(Organization(id=str(org_id), name=name))
        return organizations

    # --- live checks ---
    async def probe(self, connection: PlatformConnection) -> ProbeResult:
        """Ping the provider with the stored credential."""
        try:
            if connection.platform == Platform.FACEBOOK:
                me = await self.http.get(
                    "facebook", "probe", f"{GRAPH_API_BASE}/me", params={"access_token": connection.access_token}
                )
                return ProbeResult(success=True, message=f"Connected as {me.get('name')}")
            if connection.platform == Platform.YOUTUBE:
                channels = await self.http.get(
                    "youtube",
                    "probe",
                    YOUTUBE_CHANNELS_URL,
                    params={"part": "snippet", "mine": "true"},
                    headers=_bearer(connection.access_token),
                )
                items = channels.get("items") or []
                if not items:
                    return ProbeResult(success=False, message="No YouTube channel found for this account")
                return ProbeResult(success=True, message=f"Connected to {items[0].get('snippet', {}).get('title')}")
            if connection.platform == Platform.LINKEDIN:
                profile = await self.http.get(
                    "linkedin",
                    "probe",
                    LINKEDIN_USERINFO_URL,
                    headers=_bearer(connection.access_token, **{"LinkedIn-Version": LINKEDIN_API_VERSION}),
                )
                return ProbeResult(success=True, message=f"Connected as {profile.get('name')}")
        except ProviderExchangeError as exc:
            return ProbeResult(success=False, message=exc.detail)
        raise UnknownPlatform(connection.platform)
