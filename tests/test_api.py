"""
API response and contract tests: health endpoints, auth flows, envelopes, headers.
"""

import asyncio

import pytest
from fastapi.testclient import TestClient

from core.config import Settings
from core.security import hash_password
from main import create_app
from services.identity_store import InMemoryIdentityStore
from utils.cache import InMemoryCache

PASSWORD = "s3cure-passw0rd"


def register(client: TestClient, email: str = "bob@example.com", username: str = "bob") -> dict:
    r = client.post("/api/auth/register", json={"email": email, "username": username, "password": PASSWORD})
    assert r.status_code == 201, r.text
    return r.json()["data"]


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


# Health


def test_health_ok(client: TestClient) -> None:
    r = client.get("/health-check")
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["status"] == "ok"
    assert data["service"] == "route-guard"


def test_health_detailed(client: TestClient) -> None:
    r = client.get("/health-check/detailed")
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["checks"]["cache"] == "ok"
    assert data["process"]["rss_mb"] > 0


def test_health_ready(client: TestClient) -> None:
    r = client.get("/health-check/ready")
    assert r.status_code == 200
    assert r.json()["data"]["ready"] is True


def test_health_live(client: TestClient) -> None:
    r = client.get("/health-check/live")
    assert r.status_code == 200
    assert r.content == b""


def test_system_routes_are_not_prefixed(client: TestClient) -> None:
    assert client.get("/api/health-check").status_code == 404


def test_secure_headers_present(client: TestClient) -> None:
    r = client.get("/health-check")
    assert r.headers.get("X-Content-Type-Options") == "nosniff"
    assert r.headers.get("X-Frame-Options") == "DENY"
    assert "X-Response-Time-Ms" in r.headers
    assert "Strict-Transport-Security" not in r.headers


def test_request_id_is_echoed_or_assigned(client: TestClient) -> None:
    assert client.get("/health-check", headers={"X-Request-ID": "abc123"}).headers["X-Request-ID"] == "abc123"
    assert client.get("/health-check").headers["X-Request-ID"]


def test_unknown_route_uses_error_envelope(client: TestClient) -> None:
    r = client.get("/api/nope")
    assert r.status_code == 404
    body = r.json()
    assert body["success"] is False
    assert body["code"] == "NOT_FOUND"
    assert body["statusCode"] == 404

    r = client.get("/api/auth/login")
    assert r.status_code == 405
    assert r.json()["code"] == "METHOD_NOT_ALLOWED"


def test_openapi_lists_compiled_routes(client: TestClient) -> None:
    r = client.get("/openapi.json")
    assert r.status_code == 200
    paths = r.json()["paths"]
    assert "/health-check" in paths
    assert "/api/auth/login" in paths
    assert "/api/auth/users/{userId}/revoke" in paths


# Auth


def test_register_and_me(client: TestClient) -> None:
    data = register(client)
    assert data["user"]["email"] == "bob@example.com"
    assert data["user"]["roles"] == ["user"]
    assert data["token_type"] == "Bearer"
    assert "password_hash" not in data["user"]

    r = client.get("/api/auth/me", headers=bearer(data["access_token"]))
    assert r.status_code == 200
    assert r.json()["data"]["username"] == "bob"


def test_api_responses_carry_rate_limit_headers(client: TestClient, auth_headers: dict[str, str]) -> None:
    r = client.get("/api/auth/me", headers=auth_headers)
    assert r.status_code == 200
    assert r.headers["RateLimit-Limit"] == "1000"


def test_register_validation_and_duplicates(client: TestClient) -> None:
    r = client.post("/api/auth/register", json={"email": "not-an-email", "username": "bob", "password": PASSWORD})
    assert r.status_code == 400
    assert r.json()["code"] == "VALIDATION_ERROR"
    assert r.json()["details"][0]["path"] == "body.email"

    register(client)
    r = client.post("/api/auth/register", json={"email": "BOB@example.com", "username": "bobby", "password": PASSWORD})
    assert r.status_code == 409
    assert r.json()["code"] == "DUPLICATE_ERROR"


def test_register_is_rate_limited(client: TestClient) -> None:
    for i in range(3):
        register(client, email=f"u{i}@example.com", username=f"user{i}")
    r = client.post("/api/auth/register", json={"email": "u9@example.com", "username": "user9", "password": PASSWORD})
    assert r.status_code == 429
    assert r.json()["code"] == "RATE_LIMIT_EXCEEDED"
    assert r.json()["details"]["retryAfter"] >= 1
    assert int(r.headers["Retry-After"]) >= 1


def test_login(client: TestClient) -> None:
    register(client)

    r = client.post("/api/auth/login", json={"email": "bob@example.com", "password": "wrong-password"})
    assert r.status_code == 401
    assert r.json()["code"] == "INVALID_CREDENTIALS"

    r = client.post("/api/auth/login", json={"email": "nobody@example.com", "password": PASSWORD})
    assert r.status_code == 401
    assert r.json()["code"] == "INVALID_CREDENTIALS"

    r = client.post("/api/auth/login", json={"email": "bob@example.com", "password": PASSWORD})
    assert r.status_code == 200
    assert r.json()["data"]["access_token"]


def test_me_requires_token(client: TestClient) -> None:
    r = client.get("/api/auth/me")
    assert r.status_code == 401
    assert r.json()["code"] == "TOKEN_REQUIRED"

    r = client.get("/api/auth/me", headers=bearer("garbage"))
    assert r.status_code == 401
    assert r.json()["code"] == "INVALID_TOKEN"


def test_refresh_token_cannot_be_used_as_access_token(client: TestClient) -> None:
    data = register(client)
    r = client.get("/api/auth/me", headers=bearer(data["refresh_token"]))
    assert r.status_code == 401
    assert r.json()["code"] == "INVALID_TOKEN"


def test_refresh(client: TestClient) -> None:
    data = register(client)

    r = client.post("/api/auth/refresh", json={"refresh_token": data["refresh_token"]})
    assert r.status_code == 200
    new_access = r.json()["data"]["access_token"]
    assert new_access != data["access_token"]
    assert client.get("/api/auth/me", headers=bearer(new_access)).status_code == 200

    r = client.post("/api/auth/refresh", json={"refresh_token": data["access_token"]})
    assert r.status_code == 401
    assert r.json()["code"] == "INVALID_REFRESH_TOKEN"


def test_logout_revokes_token(client: TestClient) -> None:
    data = register(client)
    headers = bearer(data["access_token"])

    r = client.post("/api/auth/logout", headers=headers, json={"refresh_token": data["refresh_token"]})
    assert r.status_code == 200

    r = client.get("/api/auth/me", headers=headers)
    assert r.status_code == 401
    assert r.json()["code"] == "TOKEN_REVOKED"

    r = client.post("/api/auth/refresh", json={"refresh_token": data["refresh_token"]})
    assert r.status_code == 401
    assert r.json()["code"] == "TOKEN_REVOKED"


def test_logout_all_revokes_every_token(client: TestClient) -> None:
    data = register(client)
    r = client.post("/api/auth/login", json={"email": "bob@example.com", "password": PASSWORD})
    second = r.json()["data"]["access_token"]

    assert client.post("/api/auth/logout-all", headers=bearer(data["access_token"])).status_code == 200

    r = client.get("/api/auth/me", headers=bearer(second))
    assert r.status_code == 401
    assert r.json()["code"] == "USER_TOKENS_REVOKED"

    r = client.post("/api/auth/refresh", json={"refresh_token": data["refresh_token"]})
    assert r.status_code == 401
    assert r.json()["code"] == "USER_TOKENS_REVOKED"


def test_admin_can_revoke_user(client: TestClient, identity_store: InMemoryIdentityStore) -> None:
    victim = register(client)
    asyncio.run(
        identity_store.create_user("root@example.com", "root", hash_password(PASSWORD), roles=["admin"])
    )
    r = client.post("/api/auth/login", json={"email": "root@example.com", "password": PASSWORD})
    admin_token = r.json()["data"]["access_token"]

    r = client.post("/api/auth/users/missing/revoke", headers=bearer(admin_token))
    assert r.status_code == 404

    r = client.post(f"/api/auth/users/{victim['user']['id']}/revoke", headers=bearer(admin_token))
    assert r.status_code == 200
    assert r.json()["data"] == {"userId": victim["user"]["id"]}

    r = client.get("/api/auth/me", headers=bearer(victim["access_token"]))
    assert r.json()["code"] == "USER_TOKENS_REVOKED"
    assert client.get("/api/auth/me", headers=bearer(admin_token)).status_code == 200


def test_non_admin_cannot_revoke(client: TestClient) -> None:
    data = register(client)
    r = client.post(f"/api/auth/users/{data['user']['id']}/revoke", headers=bearer(data["access_token"]))
    assert r.status_code == 403
    assert r.json()["code"] == "INSUFFICIENT_ROLE"

    r = client.post(f"/api/auth/users/{data['user']['id']}/revoke")
    assert r.status_code == 401


def test_deactivated_user_cannot_log_in_or_refresh(client: TestClient, identity_store: InMemoryIdentityStore) -> None:
    data = register(client)
    asyncio.run(identity_store.deactivate(data["user"]["id"]))

    r = client.post("/api/auth/login", json={"email": "bob@example.com", "password": PASSWORD})
    assert r.status_code == 401
    assert r.json()["code"] == "INVALID_CREDENTIALS"

    r = client.post("/api/auth/refresh", json={"refresh_token": data["refresh_token"]})
    assert r.status_code == 401
    assert r.json()["code"] == "INVALID_REFRESH_TOKEN"


def test_forwarded_for_is_ignored_by_default(client: TestClient) -> None:
    for i in range(5):
        r = client.post(
            "/api/auth/login",
            json={"email": "nobody@example.com", "password": PASSWORD},
            headers={"X-Forwarded-For": f"198.51.100.{i}"},
        )
        assert r.status_code == 401
    r = client.post(
        "/api/auth/login",
        json={"email": "nobody@example.com", "password": PASSWORD},
        headers={"X-Forwarded-For": "198.51.100.99"},
    )
    assert r.status_code == 429


# Production


@pytest.fixture
def production_client() -> TestClient:
    settings = Settings(
        ENVIRONMENT="production",
        JWT_SECRET="p" * 40,
        JWT_REFRESH_SECRET="q" * 40,
    )
    return TestClient(create_app(settings, cache=InMemoryCache(), identity_store=InMemoryIdentityStore()))


def test_production_keeps_client_error_details(production_client: TestClient) -> None:
    r = production_client.post("/api/auth/login", json={"email": "not-an-email", "password": PASSWORD})
    assert r.status_code == 400
    assert r.json()["details"][0]["path"] == "body.email"

    for _ in range(4):
        production_client.post("/api/auth/login", json={"email": "nobody@example.com", "password": PASSWORD})
    r = production_client.post("/api/auth/login", json={"email": "nobody@example.com", "password": PASSWORD})
    assert r.status_code == 429
    assert r.json()["details"]["retryAfter"] >= 1
    assert "Strict-Transport-Security" in r.headers
