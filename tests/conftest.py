import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from src.dependencies import auth
from src.dependencies.db import get_session_dep
from src.dependencies.oauth import get_provider_http_client, get_provider_secrets
from src.infrastructure.oauth_config import ClientCredentials, ProviderSecretsConfig
from src.infrastructure.provider_client import ProviderHttpClient
from src.infrastructure.redis_cache import get_redis
from src.infrastructure.settings_repo import ConnectionRepository
from src.infrastructure.state_store import AntiForgeryTokenStore
from src.main import app
from src.models.app_setting import AppSetting  # noqa: F401
from src.services.connection_service import ConnectionService
from src.services.token_exchange import TokenExchangeClient

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

GRAPH = "https://graph.facebook.com/v19.0"
GOOGLE_TOKEN = "https://oauth2.googleapis.com/token"
YT_CHANNELS = "https://www.googleapis.com/youtube/v3/channels"
LI_TOKEN = "https://www.linkedin.com/oauth/v2/accessToken"
LI_USERINFO = "https://api.linkedin.com/v2/userinfo"
LI_ORGS = "https://api.linkedin.com/rest/organizationAcls"

SECRETS = ProviderSecretsConfig(
    facebook=ClientCredentials("fb-app-id", "fb-app-secret"),
    youtube=ClientCredentials("yt-client-id", "yt-client-secret"),
    linkedin=ClientCredentials("li-client-id", "li-client-secret"),
    api_base_url="https://api.example.test",
    app_base_url="https://app.example.test",
)


class FakeRedis:
    """In-memory double for the redis commands the state store issues."""

    def __init__(self):
        self.data = {}
        self.ttls = {}

    async def set(self, key, value, ex=None):
        self.data[key] = value
        self.ttls[key] = ex
        return True

    async def get(self, key):
        value = self.data.get(key)
        # yield so other tasks can run between the read and whatever follows it
        await asyncio.sleep(0)
        return value

    def register_script(self, script):
        async def compare_and_delete(keys, args):
            [key], [expected] = keys, args
            if self.data.get(key) != expected:
                return 0
            del self.data[key]
            self.ttls.pop(key, None)
            return 1

        return compare_and_delete


class FrozenClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now = self.now + timedelta(**delta)


class ProviderStub:
    """
    Canned provider responses keyed by (method, host + path). Several
    responses for one route are served in order; the last one repeats.
    """

    def __init__(self):
        self.routes = {}
        self.calls = []

    def add(self, method: str, url: str, json=None, status: int = 200, text: str = None):
        parsed = httpx.URL(url)
        key = (method.upper(), f"{parsed.host}{parsed.path}")
        self.routes.setdefault(key, []).append((status, json, text))
        return self

    def called(self, url: str) -> list:
        parsed = httpx.URL(url)
        return [r for r in self.calls if r.url.host == parsed.host and r.url.path == parsed.path]

    # --- canned happy paths ---
    def facebook(self, pages=None, instagram=True, instagram_status=200):
        if pages is None:
            page = {"id": "page-1", "name": "Good Creative Media", "access_token": "page-token"}
            if instagram:
                page["instagram_business_account"] = {"id": "ig-1"}
            pages = [page]
        self.add("GET", f"{GRAPH}/oauth/access_token", json={"access_token": "short-token", "expires_in": 3600})
        self.add("GET", f"{GRAPH}/oauth/access_token", json={"access_token": "long-token", "expires_in": 5184000})
        self.add("GET", f"{GRAPH}/me/accounts", json={"data": pages})
        if instagram_status == 200:
            self.add("GET", f"{GRAPH}/ig-1", json={"id": "ig-1", "username": "goodcreative"})
        else:
            self.add("GET", f"{GRAPH}/ig-1", json={"error": {"message": "Unsupported get request"}}, status=instagram_status)
        return self

    def youtube(self, refresh_token="yt-refresh", items=None, expires_in=3599):
        token = {"access_token": "yt-access", "expires_in": expires_in, "token_type": "Bearer"}
        if refresh_token:
            token["refresh_token"] = refresh_token
        self.add("POST", GOOGLE_TOKEN, json=token)
        if items is None:
            items = [{"id": "UC123", "snippet": {"title": "Good Creative Channel"}}]
        self.add("GET", YT_CHANNELS, json={"items": items})
        return self

    def linkedin(self, orgs_status=200, expires_in=31536000):
        self.add("POST", LI_TOKEN, json={"access_token": "li-access", "expires_in": expires_in})
        self.add("GET", LI_USERINFO, json={"sub": "li-member-1", "name": "Julie Good", "email": "julie@example.test"})
        if orgs_status == 200:
            self.add(
                "GET",
                LI_ORGS,
                json={
                    "elements": [
                        {"organizationalTarget~": {"id": 1001, "localizedName": "Good Creative Media"}},
                        {"organizationalTarget~": {"id": 1002}},
                    ]
                },
            )
        else:
            self.add("GET", LI_ORGS, json={"status": orgs_status, "message": "Not enough permissions"}, status=orgs_status)
        return self

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        key = (request.method, f"{request.url.host}{request.url.path}")
        queue = self.routes.get(key)
        if not queue:
            return httpx.Response(404, json={"error": {"message": f"no stub for {key[1]}"}})
        status, body, text = queue.pop(0) if len(queue) > 1 else queue[0]
        if text is not None:
            return httpx.Response(status, text=text)
        return httpx.Response(status, json=body)


def make_token(sub: str = "admin-1", is_admin: bool = True, **claims) -> str:
    return jwt.encode({"sub": sub, "is_admin": is_admin, **claims}, auth.SECRET_KEY, algorithm=auth.ALGORITHM)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def provider():
    return ProviderStub()


@pytest.fixture
def http_client(provider):
    return ProviderHttpClient(transport=httpx.MockTransport(provider))


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'oauth_test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    def _make() -> AsyncSession:
        return AsyncSession(engine, expire_on_commit=False)

    yield _make
    await engine.dispose()


@pytest_asyncio.fixture
async def session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def repo(session):
    return ConnectionRepository(session)


@pytest.fixture
def state_store(fake_redis, clock):
    return AntiForgeryTokenStore(fake_redis, clock=clock)


@pytest.fixture
def exchange_client(http_client, clock):
    return TokenExchangeClient(http_client, SECRETS, clock=clock)


@pytest.fixture
def service(repo, state_store, exchange_client, clock):
    return ConnectionService(repo, state_store, exchange_client, SECRETS, clock=clock)


@pytest_asyncio.fixture
async def api_client(session_maker, fake_redis, http_client):
    async def override_session():
        async with session_maker() as session:
            yield session

    async def override_redis():
        return fake_redis

    app.dependency_overrides[get_session_dep] = override_session
    app.dependency_overrides[get_redis] = override_redis
    app.dependency_overrides[get_provider_secrets] = lambda: SECRETS
    app.dependency_overrides[get_provider_http_client] = lambda: http_client
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {make_token()}"}
