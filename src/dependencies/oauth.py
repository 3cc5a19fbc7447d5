# src/dependencies/oauth.py
from fastapi import Depends
from sqlmodel.ext.asyncio.session import AsyncSession

from src.dependencies.db import get_session_dep
from src.infrastructure.oauth_config import ProviderSecretsConfig
from src.infrastructure.provider_client import ProviderHttpClient
from src.infrastructure.redis_cache import get_redis
from src.infrastructure.settings_repo import ConnectionRepository
from src.infrastructure.state_store import AntiForgeryTokenStore
from src.services.connection_service import ConnectionService
from src.services.token_exchange import TokenExchangeClient


def get_provider_secrets() -> ProviderSecretsConfig:
    return ProviderSecretsConfig.from_env()


def get_provider_http_client() -> ProviderHttpClient:
    return ProviderHttpClient()


async def get_connection_service(
    session: AsyncSession = Depends(get_session_dep),
    redis_client=Depends(get_redis),
    secrets: ProviderSecretsConfig = Depends(get_provider_secrets),
    http: ProviderHttpClient = Depends(get_provider_http_client),
) -> ConnectionService:
    return ConnectionService(
        repo=ConnectionRepository(session),
        state_store=AntiForgeryTokenStore(redis_client),
        exchange_client=TokenExchangeClient(http, secrets),
        secrets=secrets,
    )
