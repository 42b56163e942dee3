"""
Bearer-token authentication for compiled routes, and role/permission guards.

Each request walks one state machine:

    NoToken      -> Rejected(TOKEN_REQUIRED)
    TokenPresent -> verify
        invalid  -> Rejected(INVALID_TOKEN)
        valid    -> check token and subject deny-list entries
            token revoked   -> Rejected(TOKEN_REVOKED)
            subject revoked -> Rejected(USER_TOKENS_REVOKED)
            neither         -> Authorized

Every stage returns a tagged result instead of raising, so each failure
reason can be asserted on its own. Only the middleware turns a rejection
into an HTTP 401.
"""

from dataclasses import dataclass
from enum import Enum

from fastapi import Request, Response

from core.exceptions import AuthenticationError, AuthorizationError, TokenError
from core.middleware import CallNext, RouteMiddleware
from core.revocation import RevocationStore
from core.security import TokenService
from models.tokens import AccessTokenClaims
from utils.logging import get_logger

logger = get_logger(__name__)

BEARER_PREFIX = "bearer "


class AuthFailure(Enum):
    TOKEN_REQUIRED = ("TOKEN_REQUIRED", "Access token required")
    INVALID_TOKEN = ("INVALID_TOKEN", "Invalid or expired token")
    TOKEN_REVOKED = ("TOKEN_REVOKED", "Token has been revoked")
    USER_TOKENS_REVOKED = ("USER_TOKENS_REVOKED", "All user tokens have been revoked")

    def __init__(self, code: str, message: str) -> None:
        self.code = code
        self.message = message


@dataclass(frozen=True)
class Authorized:
    claims: AccessTokenClaims
    token: str


@dataclass(frozen=True)
class Rejected:
    failure: AuthFailure


AuthOutcome = Authorized | Rejected


def extract_bearer_token(authorization: str | None) -> str | None:
    """Token from 'Bearer <token>'; None when absent, empty, or another scheme."""
    if not authorization or not authorization.lower().startswith(BEARER_PREFIX):
        return None
    token = authorization[len(BEARER_PREFIX):].strip()
    return token or None


class AuthorizationMiddleware:
    """Route middleware that authenticates the caller or rejects with 401."""

    def __init__(self, token_service: TokenService, revocation_store: RevocationStore) -> None:
        self._tokens = token_service
        self._revocations = revocation_store

    async def authenticate(self, authorization: str | None) -> AuthOutcome:
        token = extract_bearer_token(authorization)
        if token is None:
            return Rejected(AuthFailure.TOKEN_REQUIRED)
        verified = self.verify(token)
        if isinstance(verified, Rejected):
            return verified
        return await self.check_revocation(token, verified)

    def verify(self, token: str) -> AccessTokenClaims | Rejected:
        try:
            return self._tokens.verify_access_token(token)
        except TokenError:
            return Rejected(AuthFailure.INVALID_TOKEN)

    async def check_revocation(self, token: str, claims: AccessTokenClaims) -> AuthOutcome:
        status = await self._revocations.check(token, claims.sub)
        if status.token_revoked:
            return Rejected(AuthFailure.TOKEN_REVOKED)
        if status.subject_revoked:
            return Rejected(AuthFailure.USER_TOKENS_REVOKED)
        return Authorized(claims=claims, token=token)

    async def __call__(self, request: Request, call_next: CallNext) -> Response:
        outcome = await self.authenticate(request.headers.get("Authorization"))
        if isinstance(outcome, Rejected):
            logger.info(
                "authentication_rejected",
                extra={"code": outcome.failure.code, "path": request.url.path},
            )
            raise AuthenticationError(outcome.failure.message, code=outcome.failure.code)
        request.state.user = outcome.claims
        request.state.token = outcome.token
        return await call_next(request)


def current_user(request: Request) -> AccessTokenClaims:
    """Claims attached by AuthorizationMiddleware; 401 if the route ran without it."""
    user = getattr(request.state, "user", None)
    if not isinstance(user, AccessTokenClaims):
        raise AuthenticationError(code="AUTHENTICATION_REQUIRED")
    return user


def require_permissions(*permissions: str) -> RouteMiddleware:
    """Guard: caller must hold every listed permission."""

    async def permission_guard(request: Request, call_next: CallNext) -> Response:
        user = current_user(request)
        if not user.has_permissions(permissions):
            logger.info("permission_denied", extra={"subject_id": user.sub, "required": list(permissions)})
            raise AuthorizationError("Insufficient permissions", code="INSUFFICIENT_PERMISSIONS")
        return await call_next(request)

    return permission_guard


def require_roles(*roles: str) -> RouteMiddleware:
    """Guard: caller must hold at least one listed role."""

    async def role_guard(request: Request, call_next: CallNext) -> Response:
        user = current_user(request)
        if not user.has_any_role(roles):
            logger.info("role_denied", extra={"subject_id": user.sub, "required": list(roles)})
            raise AuthorizationError("Insufficient role privileges", code="INSUFFICIENT_ROLE")
        return await call_next(request)

    return role_guard
