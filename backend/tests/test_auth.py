# tests/test_auth.py — Sign-in flow, session tokens & the session gate
from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import pytest
from httpx import AsyncClient
from jose import jwt
from sqlalchemy import select

from auth import ALGORITHM, SessionService
from errors import Unauthenticated
from models import User
from tests.conftest import app, get_auth_headers


@pytest.mark.asyncio
class TestSessionTokens:
    async def test_token_round_trip(self):
        sessions = SessionService(app.state.settings)
        token = sessions.create_token("user-1", "u1@example.com")
        session = sessions.verify_token(token)
        assert session.user_id == "user-1"
        assert session.email == "u1@example.com"
        assert session.jti

    async def test_token_claims(self):
        sessions = SessionService(app.state.settings)
        token = sessions.create_token("user-1", "u1@example.com")
        claims = jwt.get_unverified_claims(token)
        assert claims["userId"] == "user-1"
        assert claims["exp"] - claims["iat"] == 7 * 24 * 3600

    async def test_wrong_secret_rejected(self):
        forged = jwt.encode(
            {"userId": "user-1", "email": "u1@example.com"},
            "some-other-secret-that-is-long-enough-to-pass",
            algorithm=ALGORITHM,
        )
        with pytest.raises(Unauthenticated):
            SessionService(app.state.settings).verify_token(forged)

    async def test_expired_token_rejected(self):
        sessions = SessionService(app.state.settings)
        token = sessions.create_token("user-1", "u1@example.com", expires_delta=timedelta(seconds=-5))
        with pytest.raises(Unauthenticated) as exc:
            sessions.verify_token(token)
        assert exc.value.message == "Session expired"

    async def test_missing_claims_rejected(self):
        token = jwt.encode({"sub": "user-1"}, app.state.settings.jwt_secret, algorithm=ALGORITHM)
        with pytest.raises(Unauthenticated):
            SessionService(app.state.settings).verify_token(token)


@pytest.mark.asyncio
class TestLoginFlow:
    async def test_login_redirects_to_provider(self, client: AsyncClient):
        res = await client.get("/api/auth/login")
        assert res.status_code == 302
        location = urlparse(res.headers["location"])
        assert location.netloc == "idp.test"
        assert location.path == "/application/o/authorize/"
        params = parse_qs(location.query)
        assert params["client_id"] == ["kanban-test"]
        assert params["response_type"] == ["code"]
        assert params["scope"] == ["openid profile email"]
        assert params["state"][0]

    async def test_callback_creates_user_and_session(self, client: AsyncClient, db_session):
        res = await client.get("/api/auth/callback", params={"code": "abc", "state": "xyz"})
        assert res.status_code == 302
        assert res.headers["location"] == "/"
        set_cookie = res.headers["set-cookie"]
        assert "session=" in set_cookie
        assert "HttpOnly" in set_cookie
        assert "samesite=lax" in set_cookie.lower()

        result = await db_session.execute(select(User).where(User.subject == "idp-subject-1"))
        user = result.scalar_one()
        assert user.email == "alice@example.com"
        assert user.name == "Alice Example"

        token = res.cookies["session"]
        session = SessionService(app.state.settings).verify_token(token)
        assert session.user_id == user.id

    async def test_callback_updates_existing_user(self, client: AsyncClient, db_session, idp):
        await client.get("/api/auth/callback", params={"code": "first"})
        idp.userinfo = {**idp.userinfo, "email": "alice@new.example.com", "name": "Alice N."}
        await client.get("/api/auth/callback", params={"code": "second"})

        result = await db_session.execute(select(User).where(User.subject == "idp-subject-1"))
        users = result.scalars().all()
        assert len(users) == 1
        assert users[0].email == "alice@new.example.com"

    async def test_callback_provider_error(self, client: AsyncClient):
        res = await client.get("/api/auth/callback", params={"error": "access_denied"})
        assert res.status_code == 302
        assert res.headers["location"] == "/login?error=auth_failed"

    async def test_callback_without_code(self, client: AsyncClient):
        res = await client.get("/api/auth/callback")
        assert res.status_code == 302
        assert res.headers["location"] == "/login?error=no_code"

    async def test_callback_token_exchange_failure(self, client: AsyncClient, idp):
        idp.token_status = 400
        res = await client.get("/api/auth/callback", params={"code": "bad"})
        assert res.status_code == 302
        assert res.headers["location"] == "/login?error=server_error"

    async def test_callback_state_enforced(self, client: AsyncClient, monkeypatch):
        monkeypatch.setattr(app.state.settings, "oidc_enforce_state", True)
        res = await client.get("/api/auth/callback", params={"code": "abc", "state": "forged"})
        assert res.status_code == 302
        assert res.headers["location"] == "/login?error=invalid_state"

    async def test_login_page_shows_error(self, client: AsyncClient):
        res = await client.get("/login", params={"error": "no_code"})
        assert res.status_code == 200
        assert "did not return an authorization code" in res.text
        assert "/api/auth/login" in res.text


@pytest.mark.asyncio
class TestSessionEndpoints:
    async def test_me(self, client: AsyncClient, test_user):
        res = await client.get("/api/auth/me", headers=get_auth_headers(test_user))
        assert res.status_code == 200
        data = res.json()
        assert data["id"] == test_user.id
        assert data["email"] == "testuser@kanban.dev"

    async def test_bearer_header_accepted(self, client: AsyncClient, test_user):
        token = SessionService(app.state.settings).create_token(test_user.id, test_user.email)
        res = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert res.status_code == 200

    async def test_logout_revokes_session(self, client: AsyncClient, test_user, fake_redis):
        headers = get_auth_headers(test_user)
        res = await client.post("/api/auth/logout", headers=headers)
        assert res.status_code == 200
        assert res.json() == {"status": "logged_out"}
        assert any(key.startswith("session:revoked:") for key in fake_redis.store)

        res = await client.get("/api/auth/me", headers=headers)
        assert res.status_code == 401
        assert res.json() == {"error": "Unauthorized"}

    async def test_revoked_session_cannot_load_pages(self, client: AsyncClient, test_user):
        headers = get_auth_headers(test_user)
        await client.post("/api/auth/logout", headers=headers)

        res = await client.get("/", headers=headers)
        assert res.status_code == 302
        assert res.headers["location"] == "/login"

    async def test_logout_while_cache_down(self, client: AsyncClient, test_user, fake_redis):
        fake_redis.down = True
        res = await client.post("/api/auth/logout", headers=get_auth_headers(test_user))
        assert res.status_code == 200


@pytest.mark.asyncio
class TestSessionGate:
    async def test_api_without_session(self, client: AsyncClient):
        res = await client.get("/api/projects")
        assert res.status_code == 401
        assert res.json() == {"error": "Unauthorized"}

    async def test_api_with_expired_session(self, client: AsyncClient, test_user):
        token = SessionService(app.state.settings).create_token(
            test_user.id, test_user.email, expires_delta=timedelta(seconds=-5),
        )
        res = await client.get("/api/projects", headers={"Cookie": f"session={token}"})
        assert res.status_code == 401

    async def test_page_without_session_redirects(self, client: AsyncClient):
        res = await client.get("/")
        assert res.status_code == 302
        assert res.headers["location"] == "/login"

    async def test_page_with_session(self, client: AsyncClient, test_user):
        res = await client.get("/", headers=get_auth_headers(test_user))
        assert res.status_code == 200

    async def test_public_paths_open(self, client: AsyncClient):
        res = await client.get("/login")
        assert res.status_code == 200

    async def test_security_headers(self, client: AsyncClient):
        res = await client.get("/login")
        assert res.headers["X-Content-Type-Options"] == "nosniff"
        assert res.headers["X-Frame-Options"] == "DENY"
        assert "X-Request-ID" in res.headers
