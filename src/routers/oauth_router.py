# src/routers/oauth_router.py
from typing import Optional, Tuple

import httpx
import structlog
from fastapi import APIRouter, Depends, status
from fastapi.responses import RedirectResponse

from src.dependencies.auth import get_bearer_token, require_admin
from src.dependencies.oauth import get_connection_service
from src.services.connection_service import ConnectionService
from src.services.errors import OAuthConnectionError, UnknownAction

logger = structlog.get_logger(__name__)
router = APIRouter(prefix="/api", tags=["oauth"])

# action names used by the first version of the settings page
LEGACY_ACTIONS = {
    "fb-auth-url": ("get-auth-url", "facebook"),
    "yt-auth-url": ("get-auth-url", "youtube"),
    "li-auth-url": ("get-auth-url", "linkedin"),
    "fb-callback": ("callback", "facebook"),
    "yt-callback": ("callback", "youtube"),
    "li-callback": ("callback", "linkedin"),
}


def _resolve_action(action: Optional[str], platform: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    if action in LEGACY_ACTIONS:
        action, implied = LEGACY_ACTIONS[action]
        platform = platform or implied
    return action, platform


def _settings_redirect(base_url: str, **params: str) -> RedirectResponse:
    url = httpx.URL(base_url).copy_merge_params(params)
    return RedirectResponse(str(url), status_code=status.HTTP_302_FOUND)


async def _get_auth_url(svc: ConnectionService, platform: Optional[str]) -> dict:
    return {"authUrl": await svc.build_auth_url(platform)}


async def _check_connections(svc: ConnectionService, platform: Optional[str]) -> dict:
    statuses = await svc.check_connections()
    return {"connections": {name: s.model_dump(mode="json") for name, s in statuses.items()}}


async def _test_connections(svc: ConnectionService, platform: Optional[str]) -> dict:
    results = await svc.test_connections()
    return {"results": {name: r.model_dump(mode="json") for name, r in results.items()}}


async def _disconnect(svc: ConnectionService, platform: Optional[str]) -> dict:
    return {"message": await svc.disconnect(platform)}


ADMIN_ACTIONS = {
    "get-auth-url": _get_auth_url,
    "check-connections": _check_connections,
    "test-connections": _test_connections,
    "disconnect": _disconnect,
}


async def _handle_callback(
    svc: ConnectionService,
    platform: Optional[str],
    code: Optional[str],
    state: Optional[str],
    error: Optional[str],
    error_description: Optional[str],
) -> RedirectResponse:
    """
    The browser arrives here from the provider, so every outcome is a redirect
    back to the settings page, never an API error body.
    """
    settings_url = svc.secrets.settings_url()
    connected = platform or "unknown"
    try:
        await svc.complete_authorization(platform, code, state, error=error, error_description=error_description)
    except OAuthConnectionError as exc:
        logger.warning(
            "oauth_callback_failed",
            platform=connected,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return _settings_redirect(settings_url, connected=connected, status="error", message=exc.user_message)
    except Exception as exc:
        logger.exception("oauth_callback_unexpected_error", platform=connected, error=str(exc))
        return _settings_redirect(
            settings_url, connected=connected, status="error", message="Connection failed. Please try again."
        )
    return _settings_redirect(settings_url, connected=connected, status="success")


@router.api_route("/oauth", methods=["GET", "POST"])
async def oauth(
    action: Optional[str] = None,
    platform: Optional[str] = None,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    error_description: Optional[str] = None,
    token: Optional[str] = Depends(get_bearer_token),
    svc: ConnectionService = Depends(get_connection_service),
):
    action, platform = _resolve_action(action, platform)
    if action == "callback":
        return await _handle_callback(svc, platform, code, state, error, error_description)

    handler = ADMIN_ACTIONS.get(action)
    if handler is None:
        raise UnknownAction(action)
    caller = require_admin(token)
    logger.info("oauth_action", action=action, platform=platform, user_id=caller.user_id)
    result = await handler(svc, platform)
    return {"success": True, **result}
