# src/services/connection_status.py
import math
from datetime import datetime
from typing import Dict, Mapping, Optional

from src.infrastructure.oauth_config import ProviderSecretsConfig
from src.schemas.connection_schema import (
    ConnectionState,
    ConnectionStatus,
    Platform,
    PlatformConnection,
)

REPORTED_PLATFORMS = (Platform.FACEBOOK, Platform.INSTAGRAM, Platform.YOUTUBE, Platform.LINKEDIN)
EXPIRY_WARNING_DAYS = 30

_MISSING_SECRET_MESSAGES = {
    Platform.FACEBOOK: "Missing App Secret",
    Platform.INSTAGRAM: "Missing App Secret",
    Platform.YOUTUBE: "Missing Client Secret",
    Platform.LINKEDIN: "Missing Client ID/Secret",
}


def _connected(connection: PlatformConnection, message: str = "Connected", **extra) -> ConnectionStatus:
    return ConnectionStatus(
        state=ConnectionState.CONNECTED,
        connected=True,
        status=message,
        details=connection.provider_metadata,
        expires_at=connection.expires_at,
        connected_at=connection.connected_at,
        **extra,
    )


def _needs_reconnect(connection: PlatformConnection, **extra) -> ConnectionStatus:
    return ConnectionStatus(
        state=ConnectionState.NEEDS_RECONNECT,
        connected=False,
        status="Token expired",
        details=connection.provider_metadata,
        expires_at=connection.expires_at,
        connected_at=connection.connected_at,
        **extra,
    )


def evaluate_platform(
    platform: Platform,
    connection: Optional[PlatformConnection],
    secrets: ProviderSecretsConfig,
    now: datetime,
    warn_within_days: Optional[int] = EXPIRY_WARNING_DAYS,
) -> ConnectionStatus:
    if not secrets.is_configured(platform):
        return ConnectionStatus(
            state=ConnectionState.NOT_CONFIGURED,
            connected=False,
            status=_MISSING_SECRET_MESSAGES[platform],
        )
    if connection is None:
        return ConnectionStatus(state=ConnectionState.READY_TO_CONNECT, connected=False, status="Not connected")

    if platform in (Platform.FACEBOOK, Platform.INSTAGRAM):
        # page tokens never expire, a record is a live connection
        return _connected(connection)

    if platform == Platform.YOUTUBE:
        # connectivity follows the refresh token, not the access token expiry
        if connection.refresh_token:
            return _connected(connection)
        return _needs_reconnect(connection)

    if connection.expires_at is None:
        return _connected(connection)
    if now >= connection.expires_at:
        return _needs_reconnect(connection, days_left=0)

    days_left = math.ceil((connection.expires_at - now).total_seconds() / 86400)
    if warn_within_days is not None and days_left <= warn_within_days:
        return _connected(connection, message=f"Expires in {days_left} days", days_left=days_left)
    return _connected(connection, days_left=days_left)


def evaluate_connections(
    connections: Mapping[str, PlatformConnection],
    secrets: ProviderSecretsConfig,
    now: datetime,
    warn_within_days: Optional[int] = EXPIRY_WARNING_DAYS,
) -> Dict[str, ConnectionStatus]:
    """
    Derive the user-facing status of every reported platform.

    ``connections`` is keyed by platform name, as returned by
    ``ConnectionRepository.list_by_prefix``. Pure: no I/O, ``now`` is passed in.
    """
    return {
        platform.value: evaluate_platform(
            platform,
            connections.get(platform.value),
            secrets,
            now,
            warn_within_days=warn_within_days,
        )
        for platform in REPORTED_PLATFORMS
    }
