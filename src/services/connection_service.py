# src/services/connection_service.py
from datetime import datetime
from typing import Callable, Dict, List, Optional

import structlog

from src.infrastructure.oauth_config import ProviderSecretsConfig
from src.infrastructure.settings_repo import ConnectionRepository
from src.infrastructure.state_store import AntiForgeryTokenStore
from src.schemas.connection_schema import (
    AUTHORIZABLE_PLATFORMS,
    ConnectionStatus,
    Platform,
    PlatformConnection,
    ProbeResult,
    utcnow,
)
from src.services.auth_url_builder import AuthUrlBuilder
from src.services.connection_status import EXPIRY_WARNING_DAYS, evaluate_connections
from src.services.errors import (
    MissingAuthorizationCode,
    MissingPlatform,
    ProviderExchangeError,
    UnknownPlatform,
)
from src.services.token_exchange import TokenExchangeClient

logger = structlog.get_logger(__name__)

# disconnecting a primary platform also removes what was derived from it
DERIVED_PLATFORMS = {Platform.FACEBOOK: (Platform.INSTAGRAM,)}


def parse_platform(value: Optional[str], authorizable_only: bool = False) -> Platform:
    if not value:
        raise MissingPlatform()
    try:
        platform = Platform(value)
    except ValueError:
        raise UnknownPlatform(value)
    if authorizable_only and platform not in AUTHORIZABLE_PLATFORMS:
        raise UnknownPlatform(value)
    return platform


class ConnectionService:
    """
    Connection lifecycle for the request surface: authorize, complete the
    callback, report status, disconnect, and hand tokens to publishers.
    """

    def __init__(
        self,
        repo: ConnectionRepository,
        state_store: AntiForgeryTokenStore,
        exchange_client: TokenExchangeClient,
        secrets: ProviderSecretsConfig,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repo = repo
        self.state_store = state_store
        self.exchange_client = exchange_client
        self.secrets = secrets
        self.clock = clock
        self.auth_urls = AuthUrlBuilder(secrets, state_store)

    async def build_auth_url(self, platform: Optional[str]) -> str:
        return await self.auth_urls.build(parse_platform(platform, authorizable_only=True))

    async def complete_authorization(
        self,
        platform: Optional[str],
        code: Optional[str],
        state: Optional[str],
        error: Optional[str] = None,
        error_description: Optional[str] = None,
    ) -> List[PlatformConnection]:
        """
        Handle the provider redirect. Nothing is persisted unless the state
        token verifies and every required exchange step succeeds.
        """
        target = parse_platform(platform, authorizable_only=True)
        if error:
            raise ProviderExchangeError(target.value, "authorization", error_description or error)
        if not code:
            raise MissingAuthorizationCode(target.value)

        await self.state_store.verify(target, state)
        connections = await self.exchange_client.exchange(target, code)
        # concurrent callbacks for one platform: the last upsert wins
        await self.repo.upsert(*connections)
        logger.info("oauth_connected", platform=target.value, stored=[c.platform for c in connections])
        return connections

    async def check_connections(self, warn_within_days: Optional[int] = EXPIRY_WARNING_DAYS) -> Dict[str, ConnectionStatus]:
        connections = await self.repo.list_by_prefix()
        return evaluate_connections(connections, self.secrets, self.clock(), warn_within_days=warn_within_days)

    async def disconnect(self, platform: Optional[str]) -> str:
        target = parse_platform(platform)
        await self.repo.delete(target, *DERIVED_PLATFORMS.get(target, ()))
        logger.info("oauth_disconnected", platform=target.value)
        return f"{target.value} disconnected successfully"

    async def get_token(self, platform: str) -> Optional[PlatformConnection]:
        """
        Stored connection for a publisher, renewing an expired YouTube access
        token first. Returns None when the platform is not connected.
        """
        target = parse_platform(platform)
        connection = await self.repo.get(target)
        if connection is None:
            return None
        expired = connection.expires_at is not None and self.clock() >= connection.expires_at
        if target == Platform.YOUTUBE and expired and connection.refresh_token:
            connection = await self.exchange_client.refresh_youtube(connection)
            await self.repo.upsert(connection)
        return connection

    async def test_connections(self) -> Dict[str, ProbeResult]:
        connections = await self.repo.list_by_prefix()
        results = {}
        for platform in AUTHORIZABLE_PLATFORMS:
            connection = connections.get(platform.value)
            if connection is None:
                results[platform.value] = ProbeResult(success=False, message="Not connected")
                continue
            results[platform.value] = await self.exchange_client.probe(connection)
        return results
