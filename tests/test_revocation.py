"""
Revocation store tests: per-token and per-subject deny-list, TTLs, cache outages.
"""

import time
from typing import Any

import pytest
from jose import jwt

from core.config import get_settings
from core.exceptions import MissingJtiError, RevocationStoreError
from core.revocation import RevocationStore, subject_key, token_key
from core.security import TokenService
from models.tokens import Identity
from utils.cache import CacheError, InMemoryCache

SECRET = get_settings().JWT_SECRET


class UnreachableCache:
    """Every call fails the way RedisCache does when Redis is down."""

    async def get(self, key: str) -> Any:
        raise CacheError("connection refused")

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        raise CacheError("connection refused")

    async def delete(self, key: str) -> bool:
        raise CacheError("connection refused")

    async def ttl(self, key: str) -> int | None:
        raise CacheError("connection refused")

    async def ping(self) -> bool:
        return False

    async def close(self) -> None:
        return None


def test_key_contract() -> None:
    assert token_key("abc") == "blacklist:abc"
    assert subject_key("42") == "blacklist:user:42"


@pytest.mark.asyncio
async def test_revoke_then_is_revoked(
    revocation_store: RevocationStore, token_service: TokenService, identity: Identity
) -> None:
    token = token_service.issue_access_token(identity)
    other = token_service.issue_access_token(identity)
    assert await revocation_store.is_revoked(token) is False

    assert await revocation_store.revoke_token(token) is True

    assert await revocation_store.is_revoked(token) is True
    assert await revocation_store.is_revoked(other) is False


@pytest.mark.asyncio
async def test_revoked_entry_ttl_matches_remaining_lifetime(
    revocation_store: RevocationStore, cache: InMemoryCache, token_service: TokenService, identity: Identity
) -> None:
    token = token_service.issue_access_token(identity)
    await revocation_store.revoke_token(token)

    jti = token_service.decode_without_verify(token)["jti"]
    ttl = await cache.ttl(token_key(jti))
    assert ttl is not None
    assert 3590 <= ttl <= 3600


@pytest.mark.asyncio
async def test_revoking_expired_token_is_a_noop(
    revocation_store: RevocationStore, cache: InMemoryCache, token_service: TokenService, identity: Identity
) -> None:
    past = TokenService(SECRET, clock=lambda: time.time() - 7200)
    expired = past.issue_access_token(identity)

    assert await revocation_store.revoke_token(expired) is False
    assert await cache.get(token_key(token_service.decode_without_verify(expired)["jti"])) is None


@pytest.mark.asyncio
async def test_revoke_token_without_jti(revocation_store: RevocationStore, token_service: TokenService) -> None:
    now = int(time.time())
    token = jwt.encode({"sub": "u", "iat": now, "exp": now + 60}, SECRET, algorithm="HS256")

    with pytest.raises(MissingJtiError):
        await revocation_store.revoke_token(token)
    assert await revocation_store.is_revoked(token) is False


@pytest.mark.asyncio
async def test_revoke_token_with_non_finite_exp(revocation_store: RevocationStore, cache: InMemoryCache) -> None:
    token = jwt.encode({"jti": "x", "sub": "u", "exp": float("inf")}, SECRET, algorithm="HS256")

    assert await revocation_store.revoke_token(token) is False
    assert await cache.get(token_key("x")) is None


@pytest.mark.asyncio
async def test_revoke_garbage_token(revocation_store: RevocationStore) -> None:
    with pytest.raises(MissingJtiError):
        await revocation_store.revoke_token("not-a-token")


@pytest.mark.asyncio
async def test_subject_revocation_is_scoped(revocation_store: RevocationStore) -> None:
    await revocation_store.revoke_all_for_subject("user-1")

    assert await revocation_store.is_subject_revoked("user-1") is True
    assert await revocation_store.is_subject_revoked("user-2") is False


@pytest.mark.asyncio
async def test_subject_revocation_defaults_to_refresh_lifetime(
    revocation_store: RevocationStore, cache: InMemoryCache
) -> None:
    await revocation_store.revoke_all_for_subject("user-1")
    ttl = await cache.ttl(subject_key("user-1"))
    assert ttl == 7 * 86400


@pytest.mark.asyncio
async def test_subject_revocation_expires(clock, token_service: TokenService) -> None:
    store = RevocationStore(InMemoryCache(clock=clock), token_service)
    await store.revoke_all_for_subject("user-1", ttl_seconds=60)

    clock.advance(59)
    assert await store.is_subject_revoked("user-1") is True
    clock.advance(2)
    assert await store.is_subject_revoked("user-1") is False


@pytest.mark.asyncio
async def test_subject_revocation_rejects_non_positive_ttl(revocation_store: RevocationStore) -> None:
    with pytest.raises(ValueError):
        await revocation_store.revoke_all_for_subject("user-1", ttl_seconds=0)


@pytest.mark.asyncio
async def test_check_reports_both_predicates(
    revocation_store: RevocationStore, token_service: TokenService, identity: Identity
) -> None:
    token = token_service.issue_access_token(identity)
    status = await revocation_store.check(token, identity.id)
    assert not status.revoked

    await revocation_store.revoke_all_for_subject(identity.id)
    status = await revocation_store.check(token, identity.id)
    assert status.subject_revoked
    assert not status.token_revoked
    assert status.revoked


@pytest.mark.asyncio
async def test_unreachable_cache_fails_open_by_default(token_service: TokenService, identity: Identity) -> None:
    store = RevocationStore(UnreachableCache(), token_service)
    token = token_service.issue_access_token(identity)

    assert await store.is_revoked(token) is False
    assert await store.is_subject_revoked(identity.id) is False


@pytest.mark.asyncio
async def test_unreachable_cache_fails_closed_when_configured(
    token_service: TokenService, identity: Identity
) -> None:
    store = RevocationStore(UnreachableCache(), token_service, fail_closed=True)
    token = token_service.issue_access_token(identity)

    assert await store.is_revoked(token) is True
    assert await store.is_subject_revoked(identity.id) is True


@pytest.mark.asyncio
async def test_write_failure_surfaces(token_service: TokenService, identity: Identity) -> None:
    store = RevocationStore(UnreachableCache(), token_service)
    token = token_service.issue_access_token(identity)

    with pytest.raises(RevocationStoreError):
        await store.revoke_token(token)
    with pytest.raises(RevocationStoreError):
        await store.revoke_all_for_subject(identity.id)
