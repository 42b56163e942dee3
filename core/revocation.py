"""
Token deny-list on top of a key/TTL cache.

Individual tokens are revoked by jti under `blacklist:{jti}`; every token of a
subject is revoked under `blacklist:user:{sub}`. Entries carry a TTL equal to
the lifetime left on what they guard, so the cache never holds an entry that
outlives every token it could match.

Read failures are fail-open by default: an unreachable cache is logged at
error level and treated as "not revoked", keeping authenticated traffic
flowing while the cache is down. Set REVOCATION_FAIL_CLOSED to invert this.
Write failures always raise RevocationStoreError so a logout is never
reported as successful when nothing was written.
"""

import asyncio
from dataclasses import dataclass

from core.exceptions import MissingJtiError, RevocationStoreError
from core.security import TokenService
from utils.cache import CacheBackend, CacheError
from utils.logging import get_logger

logger = get_logger(__name__)

KEY_PREFIX = "blacklist:"


def token_key(jti: str) -> str:
    return f"{KEY_PREFIX}{jti}"


def subject_key(subject_id: str) -> str:
    return f"{KEY_PREFIX}user:{subject_id}"


@dataclass(frozen=True)
class RevocationStatus:
    token_revoked: bool
    subject_revoked: bool

    @property
    def revoked(self) -> bool:
        return self.token_revoked or self.subject_revoked


class RevocationStore:
    """Revokes tokens and answers whether a token or subject is revoked."""

    def __init__(
        self,
        cache: CacheBackend,
        token_service: TokenService,
        *,
        fail_closed: bool = False,
    ) -> None:
        self._cache = cache
        self._tokens = token_service
        self._fail_closed = fail_closed

    async def revoke_token(self, token: str) -> bool:
        """
        Deny-list a single token until it would have expired anyway.
        Returns False when the token is already expired and nothing was written.
        """
        claims = self._tokens.decode_without_verify(token)
        jti = claims.get("jti")
        if not isinstance(jti, str) or not jti:
            logger.warning("revoke_without_jti")
            raise MissingJtiError()

        ttl = self._tokens.remaining_lifetime(claims)
        if ttl <= 0:
            logger.info("revoke_skipped_expired", extra={"jti": jti})
            return False

        try:
            await self._cache.set(token_key(jti), True, ttl)
        except CacheError as e:
            logger.error("revoke_token_failed", extra={"jti": jti, "error": str(e)})
            raise RevocationStoreError() from e
        logger.info("token_revoked", extra={"jti": jti, "ttl_seconds": ttl})
        return True

    async def revoke_all_for_subject(self, subject_id: str, ttl_seconds: int | None = None) -> None:
        """
        Deny-list every token of a subject. The horizon must cover the
        longest-lived token type; it defaults to the refresh-token lifetime.
        """
        ttl = self._tokens.refresh_token_lifetime if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            raise ValueError("ttl_seconds must be positive")
        try:
            await self._cache.set(subject_key(subject_id), True, ttl)
        except CacheError as e:
            logger.error("revoke_subject_failed", extra={"subject_id": subject_id, "error": str(e)})
            raise RevocationStoreError() from e
        logger.info("subject_tokens_revoked", extra={"subject_id": subject_id, "ttl_seconds": ttl})

    async def is_revoked(self, token: str) -> bool:
        """A token without jti cannot be individually revoked: returns False."""
        jti = self._tokens.decode_without_verify(token).get("jti")
        if not isinstance(jti, str) or not jti:
            return False
        return await self._lookup(token_key(jti), jti=jti)

    async def is_subject_revoked(self, subject_id: str) -> bool:
        return await self._lookup(subject_key(subject_id), subject_id=subject_id)

    async def check(self, token: str, subject_id: str) -> RevocationStatus:
        """Both predicates, looked up concurrently."""
        token_revoked, subject_revoked = await asyncio.gather(
            self.is_revoked(token),
            self.is_subject_revoked(subject_id),
        )
        return RevocationStatus(token_revoked=token_revoked, subject_revoked=subject_revoked)

    async def _lookup(self, key: str, **context: str) -> bool:
        try:
            return await self._cache.get(key) is True
        except CacheError as e:
            logger.error(
                "revocation_lookup_failed",
                extra={**context, "error": str(e), "fail_closed": self._fail_closed},
            )
            return self._fail_closed
