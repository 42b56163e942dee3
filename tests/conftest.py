"""
Pytest fixtures: settings, app, test client, token service, cache, auth headers.
"""

import os

# main builds the app at import time; settings must be in place first.
os.environ.setdefault("JWT_SECRET", "test-access-secret-0123456789abcdef0123")
os.environ.setdefault("JWT_REFRESH_SECRET", "test-refresh-secret-0123456789abcdef01")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("REDIS_URL", "")

import pytest
from fastapi.testclient import TestClient

from core.config import Settings, get_settings
from core.revocation import RevocationStore
from core.security import TokenService
from main import create_app
from models.tokens import Identity
from services.identity_store import InMemoryIdentityStore
from utils.cache import InMemoryCache

ACCESS_SECRET = os.environ["JWT_SECRET"]
REFRESH_SECRET = os.environ["JWT_REFRESH_SECRET"]


class FakeClock:
    """Manually advanced clock for caches and limiters."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def token_service() -> TokenService:
    return TokenService(ACCESS_SECRET, refresh_secret=REFRESH_SECRET, access_ttl="1h", refresh_ttl="7d")


@pytest.fixture
def cache() -> InMemoryCache:
    return InMemoryCache()


@pytest.fixture
def revocation_store(cache: InMemoryCache, token_service: TokenService) -> RevocationStore:
    return RevocationStore(cache, token_service)


@pytest.fixture
def identity() -> Identity:
    return Identity(
        id="user-1",
        email="alice@example.com",
        username="alice",
        roles=["user"],
        permissions=["reports:read"],
    )


@pytest.fixture
def identity_store() -> InMemoryIdentityStore:
    return InMemoryIdentityStore()


@pytest.fixture
def app(settings: Settings, identity_store: InMemoryIdentityStore):
    """Fresh app per test: new cache, new limiter windows, empty user store."""
    return create_app(settings, cache=InMemoryCache(), identity_store=identity_store)


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


@pytest.fixture
def auth_headers(app, identity: Identity) -> dict[str, str]:
    """Valid bearer header for protected routes, signed by the app's token service."""
    token = app.state.token_service.issue_access_token(identity)
    return {"Authorization": f"Bearer {token}"}
