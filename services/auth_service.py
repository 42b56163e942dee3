"""
Auth business logic: registration, login, token refresh and logout.
Password hashing is CPU-bound; it runs in the default executor so the event
loop keeps serving other requests.
"""

import asyncio
from typing import Any

from core.exceptions import (
    AuthenticationError,
    InvalidCredentialsError,
    NotFoundError,
    TokenError,
)
from core.revocation import RevocationStore
from core.security import TokenService, hash_password, verify_password
from models.tokens import AccessTokenClaims, TokenPair
from services.identity_store import IdentityStore, StoredUser
from utils.logging import get_logger

logger = get_logger(__name__)


def public_user(user: StoredUser) -> dict[str, Any]:
    """User fields safe to return to clients."""
    return {
        "id": user.id,
        "email": user.email,
        "username": user.username,
        "roles": list(user.roles),
        "permissions": list(user.permissions),
    }


class AuthService:
    def __init__(
        self,
        token_service: TokenService,
        revocation_store: RevocationStore,
        identity_store: IdentityStore,
    ) -> None:
        self._tokens = token_service
        self._revocations = revocation_store
        self._users = identity_store

    async def register(self, email: str, username: str, password: str) -> tuple[StoredUser, TokenPair]:
        loop = asyncio.get_running_loop()
        password_hash = await loop.run_in_executor(None, hash_password, password)
        user = await self._users.create_user(email, username, password_hash)
        logger.info("user_registered", extra={"subject_id": user.id})
        return user, self._tokens.issue_token_pair(user.to_identity())

    async def login(self, email: str, password: str) -> tuple[StoredUser, TokenPair]:
        """
        Same error for unknown email, wrong password and inactive account, so
        the response never reveals which accounts exist.
        """
        user = await self._users.find_by_email(email)
        if user is None:
            logger.info("login_failed", extra={"reason": "unknown_email"})
            raise InvalidCredentialsError()
        loop = asyncio.get_running_loop()
        if not await loop.run_in_executor(None, verify_password, password, user.password_hash):
            logger.info("login_failed", extra={"reason": "bad_password", "subject_id": user.id})
            raise InvalidCredentialsError()
        if not user.is_active:
            logger.info("login_failed", extra={"reason": "inactive", "subject_id": user.id})
            raise InvalidCredentialsError()
        logger.info("login_succeeded", extra={"subject_id": user.id})
        return user, self._tokens.issue_token_pair(user.to_identity())

    async def refresh(self, refresh_token: str) -> dict[str, Any]:
        """
        Trade a refresh token for a new access token. The refresh token itself
        is checked against the deny-list, and the identity is reloaded so role
        changes take effect on the next access token.
        """
        try:
            claims = self._tokens.verify_refresh_token(refresh_token)
        except TokenError as e:
            raise AuthenticationError("Invalid or expired refresh token", code="INVALID_REFRESH_TOKEN") from e

        status = await self._revocations.check(refresh_token, claims.sub)
        if status.token_revoked:
            raise AuthenticationError("Refresh token has been revoked", code="TOKEN_REVOKED")
        if status.subject_revoked:
            raise AuthenticationError("All user tokens have been revoked", code="USER_TOKENS_REVOKED")

        user = await self._users.find_by_id(claims.sub)
        if user is None or not user.is_active:
            raise AuthenticationError("User not found or inactive", code="INVALID_REFRESH_TOKEN")

        logger.info("access_token_refreshed", extra={"subject_id": user.id})
        return {
            "access_token": self._tokens.issue_access_token(user.to_identity()),
            "token_type": "Bearer",
            "expires_in": self._tokens.access_token_lifetime,
        }

    async def logout(self, access_token: str, refresh_token: str | None = None) -> None:
        """Revoke the presented access token and, when supplied, its refresh token."""
        if refresh_token:
            try:
                self._tokens.verify_refresh_token(refresh_token)
            except TokenError as e:
                raise AuthenticationError("Invalid or expired refresh token", code="INVALID_REFRESH_TOKEN") from e
        await self._revocations.revoke_token(access_token)
        if refresh_token:
            await self._revocations.revoke_token(refresh_token)

    async def logout_all(self, claims: AccessTokenClaims) -> None:
        await self._revocations.revoke_all_for_subject(claims.sub)

    async def revoke_user(self, user_id: str) -> None:
        """Admin action: invalidate every outstanding token of another user."""
        if await self._users.find_by_id(user_id) is None:
            raise NotFoundError("User not found")
        await self._revocations.revoke_all_for_subject(user_id)
