"""End-to-end tests of the HTTP API over an in-process client."""

import asyncio
from datetime import datetime, timezone

import pytest

from authvault.testing.utils import create_test_settings

PASSWORD = "Abc12345!"


def register_payload(email="a@b.com", username="alice", password=PASSWORD):
    return {
        "email": email,
        "username": username,
        "password": password,
        "confirmPassword": password,
        "acceptTerms": True,
    }


def auth_header(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


async def register(client, **kwargs):
    response = await client.post("/auth/register", json=register_payload(**kwargs))
    assert response.status_code == 201, response.text
    return response.json()["data"]


class TestEnvelope:
    """Tests for the response envelope and headers."""

    @pytest.mark.asyncio
    async def test_health(self, api_client):
        """The health endpoint reports healthy."""
        response = await api_client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["status"] == "healthy"
        assert "timestamp" in body

    @pytest.mark.asyncio
    async def test_security_headers(self, api_client):
        """Responses carry security headers."""
        response = await api_client.get("/health")

        assert response.headers["x-content-type-options"] == "nosniff"

    @pytest.mark.asyncio
    async def test_invalid_json_body(self, api_client):
        """Malformed JSON is a validation error."""
        response = await api_client.post(
            "/auth/login",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "validation_error"

    @pytest.mark.asyncio
    async def test_validation_details_use_wire_names(self, api_client):
        """Validation details name wire fields."""
        payload = register_payload()
        del payload["acceptTerms"]

        response = await api_client.post("/auth/register", json=payload)

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert any(d["field"] == "acceptTerms" for d in body["error"]["details"])


class TestRegisterAndLogin:
    """Tests for registration and login."""

    @pytest.mark.asyncio
    async def test_register_sets_cookies(self, api_client):
        """Registration returns 201 and sets auth cookies."""
        response = await api_client.post("/auth/register", json=register_payload())

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["user"]["email"] == "a@b.com"
        assert "password_hash" not in data["user"]
        assert data["tokens"]["token_type"] == "bearer"
        assert data["tokens"]["refresh_token"]
        for name in ("auth-token", "session-token", "csrf-token", "refresh-token"):
            assert name in response.cookies

    @pytest.mark.asyncio
    async def test_duplicate_registration_conflicts(self, api_client):
        """Registering the same account twice returns 409."""
        await register(api_client)

        response = await api_client.post("/auth/register", json=register_payload())

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "conflict"

    @pytest.mark.asyncio
    async def test_availability(self, api_client):
        """The availability check reports taken fields."""
        await register(api_client)

        response = await api_client.get(
            "/auth/register", params={"email": "A@B.com", "username": "bob"}
        )

        data = response.json()["data"]
        assert data["email"]["available"] is False
        assert data["username"]["available"] is True

    @pytest.mark.asyncio
    async def test_login_and_profile(self, api_client):
        """A login token opens the profile."""
        await register(api_client)
        api_client.cookies.clear()

        response = await api_client.post(
            "/auth/login", json={"email": "A@B.com", "password": PASSWORD}
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert "refresh_token" not in data["tokens"]
        assert response.headers["X-RateLimit-Limit"] == "10"

        profile = await api_client.get(
            "/auth/profile", headers=auth_header(data["tokens"]["access_token"])
        )
        assert profile.status_code == 200
        assert profile.json()["data"]["user"]["username"] == "alice"

    @pytest.mark.asyncio
    async def test_profile_requires_auth(self, api_client):
        """The profile needs credentials."""
        response = await api_client.get("/auth/profile")

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    @pytest.mark.asyncio
    async def test_lockout_after_failures(self, api_client):
        """Repeated failures lock the account with a future unlock time."""
        await register(api_client)
        api_client.cookies.clear()
        wrong = {"email": "a@b.com", "password": "Wrong1234!"}

        statuses = []
        for _ in range(6):
            response = await api_client.post("/auth/login", json=wrong)
            statuses.append(response.status_code)

        assert statuses[:4] == [401, 401, 401, 401]
        assert statuses[4:] == [403, 403]
        error = response.json()["error"]
        assert error["code"] == "account_locked"
        locked_until = datetime.fromisoformat(error["details"]["locked_until"])
        assert locked_until > datetime.now(timezone.utc)

        # The right password does not get through a lock either
        response = await api_client.post(
            "/auth/login", json={"email": "a@b.com", "password": PASSWORD}
        )
        assert response.status_code == 403


class TestSessions:
    """Tests for session endpoints."""

    @pytest.mark.asyncio
    async def test_cookie_session_works_without_header(self, api_client):
        """Cookies alone authenticate a browser."""
        await register(api_client)

        response = await api_client.get("/auth/session")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["authenticated"] is True
        assert data["stats"]["active_sessions"] == 1

    @pytest.mark.asyncio
    async def test_list_sessions_marks_current(self, api_client):
        """The session list marks the caller's session."""
        data = await register(api_client)
        api_client.cookies.clear()
        await api_client.post("/auth/login", json={"email": "a@b.com", "password": PASSWORD})
        api_client.cookies.clear()

        response = await api_client.get(
            "/auth/sessions", headers=auth_header(data["tokens"]["access_token"])
        )

        sessions = response.json()["data"]["sessions"]
        assert len(sessions) == 2
        assert [s["current"] for s in sessions].count(True) == 1

    @pytest.mark.asyncio
    async def test_refresh_from_body(self, api_client):
        """A refresh token in the body renews access."""
        data = await register(api_client)
        api_client.cookies.clear()

        response = await api_client.post(
            "/auth/refresh", json={"refreshToken": data["tokens"]["refresh_token"]}
        )

        assert response.status_code == 200
        tokens = response.json()["data"]["tokens"]
        assert tokens["rotated"] is False
        assert "auth-token" in response.cookies

    @pytest.mark.asyncio
    async def test_refresh_token_listing(self, api_client):
        """Refresh tokens are listed by hash prefix only."""
        data = await register(api_client)

        response = await api_client.get(
            "/auth/refresh", headers=auth_header(data["tokens"]["access_token"])
        )

        tokens = response.json()["data"]["tokens"]
        assert len(tokens) == 1
        assert tokens[0]["token_hash"].endswith("...")
        assert data["tokens"]["refresh_token"] not in response.text

    @pytest.mark.asyncio
    async def test_logout_revokes_access_token(self, api_client):
        """Logout stops the access token working."""
        data = await register(api_client)
        api_client.cookies.clear()
        headers = auth_header(data["tokens"]["access_token"])

        response = await api_client.post("/auth/logout", headers=headers)
        assert response.status_code == 200
        assert response.json()["data"]["sessions"] == 1

        response = await api_client.get("/auth/profile", headers=headers)
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_update_profile(self, api_client):
        """PUT /auth/profile changes the email and reports what changed."""
        data = await register(api_client)
        api_client.cookies.clear()

        response = await api_client.put(
            "/auth/profile",
            headers=auth_header(data["tokens"]["access_token"]),
            json={"email": "new@b.com"},
        )

        assert response.status_code == 200
        body = response.json()["data"]
        assert body["user"]["email"] == "new@b.com"
        assert body["changes"] == ["email"]

    @pytest.mark.asyncio
    async def test_update_profile_conflict(self, api_client):
        """Taking an email that is already registered returns 409."""
        await register(api_client, email="taken@b.com", username="bob")
        data = await register(api_client)
        api_client.cookies.clear()

        response = await api_client.patch(
            "/auth/profile",
            headers=auth_header(data["tokens"]["access_token"]),
            json={"email": "taken@b.com"},
        )

        assert response.status_code == 409
        assert response.json()["error"]["details"] == {"field": "email"}


class TestRotation:
    """Tests for refresh token rotation over HTTP."""

    @pytest.fixture
    def authvault_settings(self):
        return create_test_settings(
            refresh_token_expire_days=1, refresh_rotation_threshold_minutes=48 * 60
        )

    @pytest.mark.asyncio
    async def test_remember_me_refresh_rotates(self, api_client):
        """A near-expiry refresh rotates and the old token fails."""
        await register(api_client)
        api_client.cookies.clear()
        login = await api_client.post(
            "/auth/login",
            json={"email": "a@b.com", "password": PASSWORD, "rememberMe": True},
        )
        original = login.json()["data"]["tokens"]["refresh_token"]
        api_client.cookies.clear()

        response = await api_client.post("/auth/refresh", json={"refreshToken": original})

        assert response.status_code == 200
        tokens = response.json()["data"]["tokens"]
        assert tokens["rotated"] is True
        assert tokens["refresh_token"] != original
        assert "refresh-token" in response.cookies

        api_client.cookies.clear()
        reused = await api_client.post("/auth/refresh", json={"refreshToken": original})
        assert reused.status_code == 401


class TestChangePassword:
    """Tests for password changes over HTTP."""

    @pytest.mark.asyncio
    async def test_change_password_ends_sessions(self, api_client):
        """Changing the password ends existing sessions."""
        data = await register(api_client)
        api_client.cookies.clear()
        headers = auth_header(data["tokens"]["access_token"])

        response = await api_client.post(
            "/auth/change-password",
            headers=headers,
            json={
                "currentPassword": PASSWORD,
                "newPassword": "Xyz98765!",
                "confirmPassword": "Xyz98765!",
            },
        )

        assert response.status_code == 200
        assert (await api_client.get("/auth/profile", headers=headers)).status_code == 401
        login = await api_client.post(
            "/auth/login", json={"email": "a@b.com", "password": "Xyz98765!"}
        )
        assert login.status_code == 200

    @pytest.mark.asyncio
    async def test_concurrent_changes_one_success(self, api_client):
        """Concurrent changes succeed at most once."""
        data = await register(api_client)
        api_client.cookies.clear()
        headers = auth_header(data["tokens"]["access_token"])

        def change(i):
            new = f"Xyz9876{i}!"
            return api_client.post(
                "/auth/change-password",
                headers=headers,
                json={
                    "currentPassword": PASSWORD,
                    "newPassword": new,
                    "confirmPassword": new,
                },
            )

        responses = await asyncio.gather(*(change(i) for i in range(5)))

        statuses = [r.status_code for r in responses]
        assert statuses.count(200) <= 1
        assert all(status in (200, 401, 409) for status in statuses)


class TestAdmin:
    """Tests for admin endpoints."""

    @pytest.fixture
    async def admin_headers(self, authvault_app, api_client):
        service = authvault_app.state.auth_service
        await service.create_account("root@example.com", "rootuser", PASSWORD, role="admin")
        response = await api_client.post(
            "/auth/login", json={"email": "root@example.com", "password": PASSWORD}
        )
        api_client.cookies.clear()
        return auth_header(response.json()["data"]["tokens"]["access_token"])

    @pytest.mark.asyncio
    async def test_non_admin_forbidden(self, api_client):
        """Regular accounts cannot use admin endpoints."""
        data = await register(api_client)
        api_client.cookies.clear()

        response = await api_client.get(
            "/admin/accounts", headers=auth_header(data["tokens"]["access_token"])
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_list_and_lock_accounts(self, api_client, admin_headers):
        """Admins list accounts and lock them."""
        user = (await register(api_client))["user"]
        api_client.cookies.clear()

        listing = await api_client.get("/admin/accounts", headers=admin_headers)
        assert listing.json()["data"]["total"] == 2

        response = await api_client.patch(
            f"/admin/accounts/{user['id']}", headers=admin_headers, json={"isLocked": True}
        )
        assert response.status_code == 200
        assert response.json()["data"]["user"]["is_locked"] is True

        login = await api_client.post(
            "/auth/login", json={"email": "a@b.com", "password": PASSWORD}
        )
        assert login.status_code == 403

    @pytest.mark.asyncio
    async def test_force_logout(self, api_client, admin_headers):
        """Admins can log another account out everywhere."""
        data = await register(api_client)
        api_client.cookies.clear()

        response = await api_client.delete(
            "/auth/logout", headers=admin_headers, params={"userId": data["user"]["id"]}
        )
        assert response.status_code == 200

        profile = await api_client.get(
            "/auth/profile", headers=auth_header(data["tokens"]["access_token"])
        )
        assert profile.status_code == 401

    @pytest.mark.asyncio
    async def test_cleanup(self, api_client, admin_headers):
        """Admins can trigger cleanup."""
        response = await api_client.post("/admin/cleanup", headers=admin_headers)

        assert response.status_code == 200
        assert "sessions" in response.json()["data"]["removed"]


class TestRateLimits:
    """Tests for rate limiting over HTTP."""

    @pytest.mark.asyncio
    async def test_register_limit(self, api_client):
        """The registration limit answers 429 with Retry-After."""
        bad = {"email": "a@b.com"}
        for _ in range(3):
            response = await api_client.post("/auth/register", json=bad)
            assert response.status_code == 400

        response = await api_client.post("/auth/register", json=bad)

        assert response.status_code == 429
        assert int(response.headers["Retry-After"]) > 0
        assert response.json()["error"]["code"] == "rate_limit_exceeded"
