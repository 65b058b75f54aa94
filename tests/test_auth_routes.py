"""HTTP tests for the auth, users and health routes."""

import asyncio

import pytest
from conftest import STRONG_PASSWORD, FailingCache
from fastapi.testclient import TestClient
from main import create_app
from services.container import assemble_services, build_memory_services
from services.password_hasher import PasswordHasher
from services.stores.memory_store import MemoryCredentialStore, MemoryTokenRecordStore

API = "/api/v1"

ALICE = {
    "email": "alice@example.com",
    "username": "alice",
    "password": STRONG_PASSWORD,
    "firstName": "Alice",
}


@pytest.fixture
def client(services):
    with TestClient(create_app(services)) as test_client:
        yield test_client


def register(client, body=None):
    return client.post(f"{API}/auth/register", json=body or ALICE)


def bearer(response):
    token = response.json()["data"]["tokens"]["accessToken"]
    return {"Authorization": f"Bearer {token}"}


class TestRegister:
    def test_register_returns_envelope_and_cookie(self, client):
        response = register(client)

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert "timestamp" in body["meta"]
        user = body["data"]["user"]
        assert user["email"] == "alice@example.com"
        assert user["profile"]["firstName"] == "Alice"
        assert user["status"] == "active"
        assert "passwordHash" not in user
        assert body["data"]["tokens"]["expiresIn"] == 24 * 60 * 60
        assert "refreshToken" in response.cookies
        set_cookie = response.headers["set-cookie"].lower()
        assert "httponly" in set_cookie
        assert "samesite=strict" in set_cookie

    def test_duplicate_email_conflict(self, client):
        register(client)
        response = register(client, {**ALICE, "username": "alice2"})

        assert response.status_code == 409
        error = response.json()["error"]
        assert error["code"] == "CONFLICT"
        assert error["statusCode"] == 409
        assert error["details"][0]["field"] == "email"

    @pytest.mark.parametrize(
        "override",
        [
            {"email": "not-an-email"},
            {"username": "al"},
            {"username": "alice_smith"},
            {"password": "alllowercase1!"},
            {"password": "Sh0rt!"},
        ],
    )
    def test_invalid_payload(self, client, override):
        response = register(client, {**ALICE, **override})

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["details"]

    def test_registration_rate_limited_per_ip(self, client):
        for i in range(3):
            register(client, {**ALICE, "email": f"a{i}@example.com", "username": f"alice{i}"})

        response = register(client)

        assert response.status_code == 429
        assert response.json()["error"]["code"] == "RATE_LIMIT_REGISTRATION"
        assert int(response.headers["retry-after"]) > 0


class TestLogin:
    def test_login_by_username(self, client):
        register(client)
        client.cookies.clear()

        response = client.post(
            f"{API}/auth/login", json={"identifier": "alice", "password": STRONG_PASSWORD}
        )

        assert response.status_code == 200
        assert response.json()["data"]["user"]["username"] == "alice"
        assert "refreshToken" in response.cookies

    def test_wrong_password_is_generic(self, client):
        register(client)
        response = client.post(
            f"{API}/auth/login", json={"identifier": "alice", "password": "Wr0ng$pass"}
        )
        unknown = client.post(
            f"{API}/auth/login", json={"identifier": "bob", "password": "Wr0ng$pass"}
        )

        assert response.status_code == unknown.status_code == 401
        assert response.json()["error"]["message"] == unknown.json()["error"]["message"]
        assert response.json()["error"]["code"] == "AUTH_INVALID"

    def test_failed_logins_are_rate_limited(self, client):
        register(client)
        for _ in range(5):
            client.post(
                f"{API}/auth/login", json={"identifier": "alice", "password": "Wr0ng$pass"}
            )

        response = client.post(
            f"{API}/auth/login", json={"identifier": "alice", "password": STRONG_PASSWORD}
        )

        assert response.status_code == 429
        assert response.json()["error"]["code"] == "RATE_LIMIT_LOGIN"

    def test_suspended_account_forbidden(self, client, services):
        from schemas.auth import UserStatus

        user_id = register(client).json()["data"]["user"]["id"]
        client.portal.call(services.credential_store.set_status, user_id, UserStatus.SUSPENDED)

        response = client.post(
            f"{API}/auth/login", json={"identifier": "alice", "password": STRONG_PASSWORD}
        )

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "AUTH_FORBIDDEN"


class TestRefreshAndLogout:
    def test_refresh_with_cookie_rotates(self, client):
        register(client)
        old_token = client.cookies.get("refreshToken")

        response = client.post(f"{API}/auth/refresh")

        assert response.status_code == 200
        new_token = response.cookies.get("refreshToken")
        assert new_token and new_token != old_token

        client.cookies.clear()
        replay = client.post(f"{API}/auth/refresh", json={"refreshToken": old_token})
        assert replay.status_code == 401
        assert replay.json()["error"]["code"] == "AUTH_INVALID"

    def test_refresh_without_token(self, client):
        response = client.post(f"{API}/auth/refresh")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "AUTH_REQUIRED"

    def test_logout_then_refresh_fails(self, client):
        register(client)
        token = client.cookies.get("refreshToken")

        response = client.post(f"{API}/auth/logout")
        assert response.status_code == 200
        assert response.json()["data"]["message"] == "Logged out successfully"

        client.cookies.clear()
        response = client.post(f"{API}/auth/refresh", json={"refreshToken": token})
        assert response.status_code == 401

    def test_logout_all(self, client):
        registered = register(client)
        client.post(f"{API}/auth/login", json={"identifier": "alice", "password": STRONG_PASSWORD})

        response = client.post(f"{API}/auth/logout-all", headers=bearer(registered))

        assert response.status_code == 200
        assert response.json()["data"]["revoked"] == 2


class TestUsers:
    def test_me_requires_bearer(self, client):
        response = client.get(f"{API}/users/me")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "AUTH_REQUIRED"

    def test_me_rejects_refresh_token_as_bearer(self, client):
        register(client)
        token = client.cookies.get("refreshToken")

        response = client.get(f"{API}/users/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "AUTH_INVALID"

    def test_get_and_patch_profile(self, client):
        headers = bearer(register(client))

        me = client.get(f"{API}/users/me", headers=headers)
        assert me.status_code == 200
        assert me.json()["data"]["username"] == "alice"

        patched = client.patch(
            f"{API}/users/me",
            headers=headers,
            json={"profile": {"bio": "Hello", "avatarUrl": "https://example.com/a.png"}},
        )
        assert patched.status_code == 200
        profile = patched.json()["data"]["profile"]
        assert profile["bio"] == "Hello"
        assert profile["firstName"] == "Alice"

        assert client.get(f"{API}/users/me", headers=headers).json()["data"]["profile"]["bio"] == "Hello"

    def test_patch_requires_a_field(self, client):
        headers = bearer(register(client))

        response = client.patch(f"{API}/users/me", headers=headers, json={"profile": {}})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"


class TestHealthAndErrors:
    def test_liveness_and_readiness(self, client):
        assert client.get(f"{API}/health/liveness").status_code == 200

        response = client.get(f"{API}/health/readiness")
        assert response.status_code == 200
        checks = response.json()["data"]["checks"]
        assert checks["storage"] == "healthy"
        assert isinstance(checks["breakers"], list)

    def test_unknown_route_is_enveloped(self, client):
        response = client.get(f"{API}/nope")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    def test_correlation_id_is_echoed(self, client):
        response = client.get(f"{API}/health/liveness", headers={"X-Correlation-ID": "abc123"})

        assert response.headers["x-correlation-id"] == "abc123"


class SlowHasher(PasswordHasher):
    async def hash(self, password):
        await asyncio.sleep(0.5)
        return await super().hash(password)


class TestResilience:
    def test_cache_outage_does_not_block_auth(self, settings, hasher):
        services = assemble_services(
            settings,
            credential_store=MemoryCredentialStore(),
            token_store=MemoryTokenRecordStore(),
            cache=FailingCache(),
            hasher=hasher,
        )
        with TestClient(create_app(services)) as client:
            registered = register(client)
            assert registered.status_code == 201

            login = client.post(
                f"{API}/auth/login", json={"identifier": "alice", "password": STRONG_PASSWORD}
            )
            assert login.status_code == 200

            me = client.get(f"{API}/users/me", headers=bearer(login))
            assert me.status_code == 200
            assert me.json()["data"]["username"] == "alice"

            ready = client.get(f"{API}/health/readiness")
            assert ready.status_code == 200
            assert ready.json()["data"]["checks"]["cache"] == "degraded"

    def test_global_limit_applies_to_every_route(self, settings, hasher):
        limited = settings.model_copy(update={"GLOBAL_RATE_LIMIT_ATTEMPTS": 3})
        with TestClient(create_app(build_memory_services(limited, hasher=hasher))) as client:
            for _ in range(3):
                assert client.get(f"{API}/health/liveness").status_code == 200

            response = client.get(f"{API}/users/me")

            assert response.status_code == 429
            error = response.json()["error"]
            assert error["code"] == "RATE_LIMIT_EXCEEDED"
            assert error["message"] == "Too many requests, please try again later"
            assert 0 < int(response.headers["retry-after"]) <= 60

            # Budgets are per client IP
            other = client.get(
                f"{API}/health/liveness", headers={"X-Forwarded-For": "203.0.113.9"}
            )
            assert other.status_code == 200

    def test_slow_request_times_out(self, settings):
        impatient = settings.model_copy(update={"REQUEST_TIMEOUT_SECONDS": 0.05})
        services = build_memory_services(impatient, hasher=SlowHasher(rounds=4))
        with TestClient(create_app(services)) as client:
            response = register(client)

            assert response.status_code == 408
            error = response.json()["error"]
            assert error["code"] == "REQUEST_TIMEOUT"
            assert error["message"] == "Request took too long to process"
            assert client.get(f"{API}/health/liveness").status_code == 200


def test_register_login_refresh_reuse_scenario(client):
    password = "Password123!@#"
    registered = client.post(
        f"{API}/auth/register",
        json={"email": "alice@x.com", "username": "alice", "password": password},
    )
    assert registered.status_code == 201
    assert registered.json()["data"]["tokens"]["accessToken"]

    login = client.post(
        f"{API}/auth/login", json={"identifier": "alice", "password": password}
    )
    assert login.status_code == 200
    original = login.cookies.get("refreshToken")

    client.cookies.clear()
    refreshed = client.post(f"{API}/auth/refresh", json={"refreshToken": original})
    assert refreshed.status_code == 200
    assert refreshed.cookies.get("refreshToken") != original

    client.cookies.clear()
    reused = client.post(f"{API}/auth/refresh", json={"refreshToken": original})
    assert reused.status_code == 401
    assert reused.json()["error"]["code"] == "AUTH_INVALID"
