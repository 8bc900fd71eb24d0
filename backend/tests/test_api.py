"""
End-to-end HTTP tests.

The app is built with create_app() against the per-test SQLite database;
requests go through httpx.AsyncClient over ASGITransport, so the auth
dependencies, exception handlers and analytics middleware all run.
"""

import os

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from aftersales.auth.hashing import hash_password
from aftersales.core.config import Settings
from aftersales.main import create_app
from aftersales.models.analytics import AnalyticsSummary
from aftersales.models.user import (
    ROLE_MANAGER,
    ROLE_TECHNICIAN,
    ROLE_VIEWER,
    SessionRecord,
    User,
)

EMAIL = "tech@dealer.example"
PASSWORD = "torque-wrench-42"


@pytest.fixture
def app_settings():
    return Settings(
        DATABASE_URL="sqlite+aiosqlite://",
        JWT_SECRET=os.environ["JWT_SECRET"],
        STATIC_API_KEYS={
            "k1": {"name": "Kiosk", "permissions": ["read"], "rate_limit": 2},
            "admin-key": {"name": "Bootstrap", "permissions": ["*"]},
            "retired-key": {"name": "Retired", "active": False},
        },
    )


@pytest_asyncio.fixture
async def client(session_factory, app_settings):
    app = create_app(session_factory=session_factory, app_settings=app_settings)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest_asyncio.fixture
async def user(session):
    user = User(
        email=EMAIL,
        password_hash=hash_password(PASSWORD),
        full_name="Bay 3",
        role=ROLE_TECHNICIAN,
        is_active=True,
    )
    session.add(user)
    await session.commit()
    return user


def _assert_error_body(resp, status, error=None):
    assert resp.status_code == status
    body = resp.json()
    assert body["success"] is False
    assert body["timestamp"]
    if error is not None:
        assert body["error"] == error
    return body


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "healthy"}


class TestRejections:
    @pytest.mark.asyncio
    async def test_missing_credential(self, client):
        resp = await client.get("/v1/analytics/overview")
        _assert_error_body(resp, 401)
        assert "Bearer" in resp.headers["WWW-Authenticate"]

    @pytest.mark.asyncio
    async def test_unknown_key(self, client):
        resp = await client.get("/v1/analytics/overview", headers={"X-API-Key": "who-knows"})
        _assert_error_body(resp, 401, "Invalid API key.")

    @pytest.mark.asyncio
    async def test_inactive_key(self, client):
        resp = await client.get("/v1/analytics/overview", headers={"X-API-Key": "retired-key"})
        _assert_error_body(resp, 403, "API key is inactive.")

    @pytest.mark.asyncio
    async def test_rate_limit(self, client):
        headers = {"X-API-Key": "k1"}
        assert (await client.get("/v1/analytics/overview", headers=headers)).status_code == 200
        assert (await client.get("/v1/analytics/keys", headers=headers)).status_code == 200

        resp = await client.get("/v1/analytics/overview", headers=headers)
        _assert_error_body(resp, 429, "Rate limit exceeded. Maximum 2 requests per hour.")

    @pytest.mark.asyncio
    async def test_permission_denied(self, client):
        resp = await client.get("/v1/api-keys", headers={"X-API-Key": "k1"})
        _assert_error_body(resp, 403, "Missing required permission 'admin'.")

    @pytest.mark.asyncio
    async def test_tampered_token(self, client, user):
        login = await client.post("/auth/login", json={"email": EMAIL, "password": PASSWORD})
        token = login.json()["data"]["access_token"]
        header, payload, _ = token.split(".")

        resp = await client.get("/auth/me", headers={"Authorization": f"Bearer {header}.{payload}.AAAA"})
        _assert_error_body(resp, 401)


class TestApiKeyCredentialForms:
    @pytest.mark.asyncio
    async def test_authorization_apikey_scheme(self, client):
        resp = await client.get("/auth/me", headers={"Authorization": "ApiKey k1"})
        assert resp.status_code == 200
        assert resp.json()["data"]["kind"] == "api_key"

    @pytest.mark.asyncio
    async def test_legacy_bearer_key(self, client):
        resp = await client.get("/auth/me", headers={"Authorization": "Bearer k1"})
        assert resp.json()["data"]["name"] == "Kiosk"

    @pytest.mark.asyncio
    async def test_query_key_on_analytics_only(self, client):
        assert (await client.get("/v1/analytics/overview?api_key=k1")).status_code == 200
        assert (await client.get("/auth/me?api_key=k1")).status_code == 401


class TestApiKeyManagement:
    @pytest.mark.asyncio
    async def test_lifecycle(self, client):
        admin = {"X-API-Key": "admin-key"}

        created = await client.post(
            "/v1/api-keys",
            json={"name": "Parts counter", "permissions": ["read", "bogus"], "rate_limit": 50},
            headers=admin,
        )
        assert created.status_code == 201
        body = created.json()
        assert body["success"] is True
        data = body["data"]
        raw_key = data["api_key"]
        assert data["permissions"] == ["read"]
        assert data["created_by"] == "Bootstrap"
        assert data["prefix"] == raw_key[:12]

        listed = await client.get("/v1/api-keys", headers=admin)
        assert [k["name"] for k in listed.json()["data"]] == ["Parts counter"]
        assert "api_key" not in listed.json()["data"][0]

        new_key = {"X-API-Key": raw_key}
        assert (await client.get("/v1/analytics/overview", headers=new_key)).status_code == 200

        patched = await client.patch(
            f"/v1/api-keys/{data['id']}", json={"rate_limit": 5}, headers=admin,
        )
        assert patched.json()["data"]["rate_limit"] == 5

        deleted = await client.delete(f"/v1/api-keys/{data['id']}", headers=admin)
        assert deleted.status_code == 200
        assert deleted.json()["data"]["is_active"] is False

        _assert_error_body(
            await client.get("/v1/analytics/overview", headers=new_key), 401, "Invalid API key.",
        )

    @pytest.mark.asyncio
    async def test_unknown_id(self, client):
        resp = await client.get(
            "/v1/api-keys/00000000-0000-4000-8000-000000000000",
            headers={"X-API-Key": "admin-key"},
        )
        _assert_error_body(resp, 404, "API key not found.")


class TestSessions:
    @pytest.mark.asyncio
    async def test_login_me_logout(self, client, session, user):
        resp = await client.post("/auth/login", json={"email": EMAIL, "password": PASSWORD})
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["token_type"] == "Bearer"
        assert data["user"]["email"] == EMAIL
        session_id = data["session_id"]
        assert await session.get(SessionRecord, session_id) is not None

        bearer = {"Authorization": f"Bearer {data['access_token']}"}
        me = (await client.get("/auth/me", headers=bearer)).json()["data"]
        assert me["kind"] == "user"
        assert me["role"] == ROLE_TECHNICIAN
        assert "services.write" in me["permissions"]

        out = await client.post("/auth/logout", headers={**bearer, "X-Session-ID": session_id})
        assert out.status_code == 200
        session.expunge_all()
        assert await session.get(SessionRecord, session_id) is None

    @pytest.mark.asyncio
    async def test_wrong_password(self, client, user):
        resp = await client.post("/auth/login", json={"email": EMAIL, "password": "nope"})
        _assert_error_body(resp, 401, "Invalid email or password.")

    @pytest.mark.asyncio
    async def test_throttled_after_five_failures(self, client, user):
        for _ in range(5):
            await client.post("/auth/login", json={"email": EMAIL, "password": "nope"})
        resp = await client.post("/auth/login", json={"email": EMAIL, "password": PASSWORD})
        _assert_error_body(resp, 429)

    @pytest.mark.asyncio
    async def test_login_fails_closed_when_store_is_down(self, tmp_path, app_settings):
        # database file without any tables
        empty = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}")
        factory = async_sessionmaker(bind=empty, class_=AsyncSession, expire_on_commit=False)
        app = create_app(session_factory=factory, app_settings=app_settings)
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as down:
            resp = await down.post("/auth/login", json={"email": EMAIL, "password": PASSWORD})
        await empty.dispose()

        assert resp.headers["content-type"].startswith("application/json")
        _assert_error_body(resp, 503, "Authentication service is temporarily unavailable.")

    @pytest.mark.asyncio
    async def test_logout_all_requires_a_user_session(self, client):
        resp = await client.post("/auth/logout-all", headers={"X-API-Key": "admin-key"})
        _assert_error_body(resp, 403)


class TestAnalyticsMiddleware:
    @pytest.mark.asyncio
    async def test_denied_requests_are_counted(self, client, session):
        headers = {"X-API-Key": "k1"}
        for _ in range(3):
            await client.get("/v1/analytics/overview", headers=headers)
        await client.get("/v1/analytics/overview")

        rows = (
            await session.execute(select(AnalyticsSummary).order_by(AnalyticsSummary.key_identity))
        ).scalars().all()
        summary = {r.key_identity: (r.endpoint, r.total_requests, r.success_count, r.fail_count) for r in rows}
        assert summary == {
            "Kiosk": ("analytics", 3, 2, 1),
            "anonymous": ("analytics", 1, 0, 1),
        }

    @pytest.mark.asyncio
    async def test_overview_reports_recorded_traffic(self, client):
        admin = {"X-API-Key": "admin-key"}
        await client.get("/v1/analytics/keys", headers=admin)

        resp = await client.get("/v1/analytics/overview?days=1", headers=admin)
        data = resp.json()["data"]
        assert data["period_days"] == 1
        assert data["total_requests"] == 1
        assert data["success_count"] + data["fail_count"] == data["total_requests"]


class TestStaffRolesOnApiRoutes:
    async def _bearer_for(self, client, session, email, role):
        session.add(User(
            email=email,
            password_hash=hash_password(PASSWORD),
            full_name=role.title(),
            role=role,
            is_active=True,
        ))
        await session.commit()
        login = await client.post("/auth/login", json={"email": email, "password": PASSWORD})
        return {"Authorization": f"Bearer {login.json()['data']['access_token']}"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("role", [ROLE_VIEWER, ROLE_MANAGER])
    async def test_analytics_readers(self, client, session, role):
        bearer = await self._bearer_for(client, session, f"{role}@dealer.example", role)
        resp = await client.get("/v1/analytics/overview", headers=bearer)
        assert resp.status_code == 200
        assert resp.json()["success"] is True

    @pytest.mark.asyncio
    async def test_technician_cannot_read_analytics(self, client, session):
        bearer = await self._bearer_for(client, session, "bay4@dealer.example", ROLE_TECHNICIAN)
        resp = await client.get("/v1/analytics/overview", headers=bearer)
        _assert_error_body(resp, 403, "Missing required permission 'read'.")

    @pytest.mark.asyncio
    async def test_manager_cannot_manage_keys(self, client, session):
        bearer = await self._bearer_for(client, session, "boss@dealer.example", ROLE_MANAGER)
        resp = await client.get("/v1/api-keys", headers=bearer)
        _assert_error_body(resp, 403, "Missing required permission 'admin'.")
