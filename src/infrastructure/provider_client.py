# src/infrastructure/provider_client.py
from typing import Any, Dict, Optional

import httpx
import structlog

from src.infrastructure.oauth_config import PROVIDER_HTTP_TIMEOUT
from src.services.errors import ProviderExchangeError

logger = structlog.get_logger(__name__)


def _error_text(payload: Any, response: httpx.Response) -> str:
    """Pull a readable message out of the provider's error payload."""
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            # graph api and google data apis: {"error": {"message": ...}}
            return str(error.get("message") or error)
        if error:
            # oauth token endpoints: {"error": "...", "error_description": "..."}
            return str(payload.get("error_description") or error)
        if payload.get("message"):
            return str(payload["message"])
    return f"HTTP {response.status_code}: {response.text[:200]}"


class ProviderHttpClient:
    """
    Thin JSON client for provider calls. One attempt per call, no retries;
    any error payload is raised as ProviderExchangeError tagged with the step.
    """

    def __init__(self, timeout: float = PROVIDER_HTTP_TIMEOUT, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def get(self, provider: str, step: str, url: str, params: Optional[Dict[str, Any]] = None, headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        async with self._client() as client:
            try:
                r = await client.get(url, params=params, headers=headers)
            except httpx.HTTPError as exc:
                logger.warning("provider_request_failed", provider=provider, step=step, error=str(exc))
                raise ProviderExchangeError(provider, step, str(exc)) from exc
        return self._parse(provider, step, r)

    async def post_form(self, provider: str, step: str, url: str, data: Dict[str, Any], headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        async with self._client() as client:
            try:
                r = await client.post(url, data=data, headers=headers)
            except httpx.HTTPError as exc:
                logger.warning("provider_request_failed", provider=provider, step=step, error=str(exc))
                raise ProviderExchangeError(provider, step, str(exc)) from exc
        return self._parse(provider, step, r)

    @staticmethod
    def _parse(provider: str, step: str, r: httpx.Response) -> Dict[str, Any]:
        try:
            payload = r.json()
        except ValueError:
            logger.warning("provider_non_json_response", provider=provider, step=step, status_code=r.status_code)
            raise ProviderExchangeError(provider, step, f"non-JSON response: {r.text[:200]}")

        if r.is_error or (isinstance(payload, dict) and payload.get("error")):
            detail = _error_text(payload, r)
            logger.warning("provider_error_response", provider=provider, step=step, status_code=r.status_code, detail=detail)
            raise ProviderExchangeError(provider, step, detail)

        if not isinstance(payload, dict):
            raise ProviderExchangeError(provider, step, "unexpected response shape")
        return payload
