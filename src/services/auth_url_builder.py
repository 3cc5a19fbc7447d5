# src/services/auth_url_builder.py
import httpx
import structlog

from src.infrastructure.oauth_config import PROVIDERS, ProviderSecretsConfig
from src.infrastructure.state_store import AntiForgeryTokenStore
from src.schemas.connection_schema import AUTHORIZABLE_PLATFORMS, Platform
from src.services.errors import MissingClientId, UnknownPlatform

logger = structlog.get_logger(__name__)


class AuthUrlBuilder:
    def __init__(self, secrets: ProviderSecretsConfig, state_store: AntiForgeryTokenStore):
        self.secrets = secrets
        self.state_store = state_store

    async def build(self, platform: Platform) -> str:
        """
        Mint a state token for ``platform`` and return the provider's consent URL.
        """
        if platform not in AUTHORIZABLE_PLATFORMS:
            raise UnknownPlatform(str(platform))
        platform = Platform(platform)
        client_id = self.secrets.credentials(platform).client_id
        if not client_id:
            raise MissingClientId(platform.value)

        endpoints = PROVIDERS[platform]
        state = await self.state_store.issue(platform)
        params = {
            "client_id": client_id,
            "redirect_uri": self.secrets.redirect_uri(platform),
            "scope": endpoints.scope,
            **endpoints.extra_params,
            "state": state,
            "response_type": "code",
        }
        url = httpx.URL(endpoints.authorize_url).copy_merge_params(params)
        logger.info("oauth_auth_url_built", platform=platform.value)
        return str(url)
