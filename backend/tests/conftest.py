# tests/conftest.py — Shared test fixtures
import fnmatch
import os
import uuid

import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["JWT_SECRET"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["ENVIRONMENT"] = "test"
os.environ["REDIS_URL"] = "redis://localhost:6379/15"
os.environ["OIDC_URL"] = "http://idp.test"
os.environ["OIDC_CLIENT_ID"] = "kanban-test"
os.environ["OIDC_CLIENT_SECRET"] = "kanban-test-secret"

from models import Base, User
from auth import SessionService
from cache import Cache
from database import enable_sqlite_foreign_keys, get_db_session
from oidc import IdentityGateway, get_identity_gateway
from main import app


# ============================================================
# FAKES
# ============================================================

class FakeRedis:
    """In-memory stand-in for redis.asyncio.Redis; set ``down`` to simulate an outage"""

    def __init__(self):
        self.store = {}
        self.ttls = {}
        self.down = False

    def _check(self):
        if self.down:
            raise RedisConnectionError("Connection refused")

    async def get(self, key):
        self._check()
        return self.store.get(key)

    async def set(self, key, value):
        self._check()
        self.store[key] = value

    async def setex(self, key, ttl, value):
        self._check()
        self.store[key] = value
        self.ttls[key] = ttl

    async def incr(self, key):
        self._check()
        value = int(self.store.get(key) or 0) + 1
        self.store[key] = str(value)
        return value

    async def delete(self, *keys):
        self._check()
        for key in keys:
            self.store.pop(key, None)
            self.ttls.pop(key, None)

    async def scan_iter(self, match="*"):
        self._check()
        for key in list(self.store):
            if fnmatch.fnmatch(key, match):
                yield key

    async def ping(self):
        self._check()
        return True

    async def aclose(self):
        pass


class FakeIdentityProvider:
    """httpx.MockTransport handler playing the OIDC provider"""

    def __init__(self):
        self.token_status = 200
        self.userinfo = {
            "sub": "idp-subject-1",
            "email": "alice@example.com",
            "name": "Alice Example",
            "picture": "https://example.com/alice.png",
        }
        self.head_status = 200
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "HEAD":
            return httpx.Response(self.head_status)
        if request.url.path.endswith("/token/"):
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"error": "invalid_grant"})
            return httpx.Response(200, json={"access_token": "idp-access-token", "token_type": "Bearer"})
        if request.url.path.endswith("/userinfo/"):
            return httpx.Response(200, json=self.userinfo)
        return httpx.Response(404)


# ============================================================
# FIXTURES
# ============================================================

@pytest_asyncio.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False)
    enable_sqlite_foreign_keys(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine):
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def cache(fake_redis):
    return Cache(fake_redis)


@pytest.fixture
def idp():
    return FakeIdentityProvider()


@pytest_asyncio.fixture(scope="function")
async def client(db_engine, cache, idp):
    """HTTP test client backed by the SQLite engine, the in-memory cache and the fake identity provider"""
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    idp_client = httpx.AsyncClient(transport=httpx.MockTransport(idp))
    gateway = IdentityGateway(app.state.settings, idp_client)

    app_cache = app.state.cache
    app.state.cache = cache
    app.dependency_overrides[get_db_session] = override_get_db
    app.dependency_overrides[get_identity_gateway] = lambda: gateway
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
    app.state.cache = app_cache
    await idp_client.aclose()


async def _make_user(db_session, email: str, name: str) -> User:
    user = User(
        id=str(uuid.uuid4()),
        subject=f"idp-{uuid.uuid4()}",
        email=email,
        name=name,
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture
async def test_user(db_session):
    """Create a test user"""
    return await _make_user(db_session, "testuser@kanban.dev", "Test User")


@pytest_asyncio.fixture
async def other_user(db_session):
    """A second user with no projects of their own"""
    return await _make_user(db_session, "other@kanban.dev", "Other User")


def get_auth_headers(user: User) -> dict:
    """Generate a session cookie header for a user"""
    token = SessionService(app.state.settings).create_token(user.id, user.email)
    return {"Cookie": f"session={token}"}


async def create_project(client: AsyncClient, headers: dict, name: str = "Test Project") -> dict:
    resp = await client.post("/api/projects", json={"name": name}, headers=headers)
    assert resp.status_code == 201
    return resp.json()


async def create_column(client: AsyncClient, headers: dict, project_id: str, name: str, position=None) -> dict:
    body = {"projectId": project_id, "name": name}
    if position is not None:
        body["position"] = position
    resp = await client.post("/api/columns", json=body, headers=headers)
    assert resp.status_code == 201
    return resp.json()


async def create_task(client: AsyncClient, headers: dict, project_id: str, column_id: str, title: str) -> dict:
    resp = await client.post(
        "/api/tasks",
        json={"projectId": project_id, "columnId": column_id, "title": title},
        headers=headers,
    )
    assert resp.status_code == 201
    return resp.json()
