"""
Token issuance and verification, plus password hashing.

TokenService signs access and refresh tokens with separate HMAC secrets and
verifies them fail-closed: anything that cannot be positively confirmed as a
well-formed, correctly signed, unexpired token of the expected type raises.
"""

import math
import re
import secrets
import time
from collections.abc import Callable
from typing import Any

from jose import JWTError, jwt
from jose.exceptions import JOSEError
from passlib.context import CryptContext
from pydantic import ValidationError

from core.config import Settings, get_settings
from core.exceptions import ConfigurationError, InvalidTokenError, WrongTokenTypeError
from models.tokens import AccessTokenClaims, Identity, RefreshTokenClaims, TokenPair
from utils.logging import get_logger

logger = get_logger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=get_settings().BCRYPT_ROUNDS)

MIN_SECRET_LENGTH = 32
REFRESH_TOKEN_TYPE = "refresh"

_DURATION_PATTERN = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$")
_UNIT_SECONDS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_duration(value: str | int) -> int:
    """
    Convert '30s', '15m', '1h', '7d' (or bare seconds) to seconds.
    Raises ConfigurationError for anything else, including zero.
    """
    if isinstance(value, int) and not isinstance(value, bool):
        seconds = value
    else:
        match = _DURATION_PATTERN.match(str(value))
        if not match:
            raise ConfigurationError(f"Invalid duration: {value!r}")
        amount, unit = match.groups()
        seconds = int(amount) * _UNIT_SECONDS[unit]
    if seconds <= 0:
        raise ConfigurationError(f"Duration must be positive: {value!r}")
    return seconds


def _check_secret(name: str, secret: str) -> None:
    if not secret:
        raise ConfigurationError(f"{name} is required")
    if len(secret) < MIN_SECRET_LENGTH:
        raise ConfigurationError(f"{name} must be at least {MIN_SECRET_LENGTH} characters")


class TokenService:
    """
    Issues and verifies signed access/refresh tokens.
    Stateless: revocation lives in core.revocation.RevocationStore.
    """

    def __init__(
        self,
        secret: str,
        *,
        refresh_secret: str | None = None,
        access_ttl: str | int = "1h",
        refresh_ttl: str | int = "7d",
        algorithm: str = "HS256",
        clock: Callable[[], float] = time.time,
    ) -> None:
        _check_secret("JWT_SECRET", secret)
        if refresh_secret:
            _check_secret("JWT_REFRESH_SECRET", refresh_secret)
        self._secret = secret
        self._refresh_secret = refresh_secret or secret
        self._access_ttl = parse_duration(access_ttl)
        self._refresh_ttl = parse_duration(refresh_ttl)
        self._algorithm = algorithm
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "TokenService":
        return cls(
            settings.JWT_SECRET,
            refresh_secret=settings.JWT_REFRESH_SECRET or None,
            access_ttl=settings.JWT_EXPIRES_IN,
            refresh_ttl=settings.JWT_REFRESH_EXPIRES_IN,
            algorithm=settings.JWT_ALGORITHM,
            **kwargs,
        )

    @property
    def access_token_lifetime(self) -> int:
        return self._access_ttl

    @property
    def refresh_token_lifetime(self) -> int:
        return self._refresh_ttl

    def now(self) -> int:
        return int(self._clock())

    def issue_access_token(self, identity: Identity) -> str:
        """Sign {sub, email, username, roles, permissions, jti, iat, exp}."""
        iat = self.now()
        payload = {
            "sub": str(identity.id),
            "email": identity.email,
            "username": identity.username,
            "roles": list(identity.roles),
            "permissions": list(identity.permissions),
            "jti": _new_jti(),
            "iat": iat,
            "exp": iat + self._access_ttl,
        }
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def issue_refresh_token(self, subject_id: str) -> str:
        """Sign {sub, type: "refresh", jti, iat, exp} with the refresh secret."""
        iat = self.now()
        payload = {
            "sub": str(subject_id),
            "type": REFRESH_TOKEN_TYPE,
            "jti": _new_jti(),
            "iat": iat,
            "exp": iat + self._refresh_ttl,
        }
        return jwt.encode(payload, self._refresh_secret, algorithm=self._algorithm)

    def issue_token_pair(self, identity: Identity) -> TokenPair:
        return TokenPair(
            access_token=self.issue_access_token(identity),
            refresh_token=self.issue_refresh_token(identity.id),
            expires_in=self._access_ttl,
        )

    def verify_access_token(self, token: str) -> AccessTokenClaims:
        payload = self._decode(token, self._secret)
        if payload.get("type") == REFRESH_TOKEN_TYPE:
            logger.info("token_type_mismatch", extra={"expected": "access", "jti": payload.get("jti")})
            raise WrongTokenTypeError()
        try:
            return AccessTokenClaims.model_validate(payload)
        except ValidationError as e:
            logger.info("token_claims_invalid", extra={"expected": "access", "errors": e.error_count()})
            raise InvalidTokenError() from e

    def verify_refresh_token(self, token: str) -> RefreshTokenClaims:
        payload = self._decode(token, self._refresh_secret)
        if payload.get("type") != REFRESH_TOKEN_TYPE:
            logger.info("token_type_mismatch", extra={"expected": "refresh", "jti": payload.get("jti")})
            raise WrongTokenTypeError("Invalid or expired refresh token")
        try:
            return RefreshTokenClaims.model_validate(payload)
        except ValidationError as e:
            logger.info("token_claims_invalid", extra={"expected": "refresh", "errors": e.error_count()})
            raise InvalidTokenError("Invalid or expired refresh token") from e

    def decode_without_verify(self, token: str) -> dict[str, Any]:
        """
        Claims without signature or expiry checks. For logging and revocation
        bookkeeping only; never a trust decision. Returns {} for garbage.
        """
        if not isinstance(token, str) or not token:
            return {}
        try:
            claims = jwt.get_unverified_claims(token)
        except (JOSEError, ValueError, TypeError, AttributeError):
            return {}
        return dict(claims) if isinstance(claims, dict) else {}

    def remaining_lifetime(self, claims: AccessTokenClaims | RefreshTokenClaims | dict[str, Any]) -> int:
        """max(0, exp - now) in seconds; 0 when exp is absent or unusable."""
        exp = claims.get("exp") if isinstance(claims, dict) else claims.exp
        if not isinstance(exp, (int, float)) or isinstance(exp, bool) or not math.isfinite(exp):
            return 0
        return max(0, int(exp) - self.now())

    def _decode(self, token: str, key: str) -> dict[str, Any]:
        if not isinstance(token, str) or not token:
            raise InvalidTokenError()
        try:
            # Expiry is checked below against the injected clock.
            payload = jwt.decode(
                token,
                key,
                algorithms=[self._algorithm],
                options={"verify_exp": False, "verify_aud": False},
            )
        except JWTError as e:
            logger.info("token_rejected", extra={"reason": str(e)})
            raise InvalidTokenError() from e
        exp = payload.get("exp")
        if not isinstance(exp, int) or isinstance(exp, bool):
            logger.info("token_rejected", extra={"reason": "missing exp"})
            raise InvalidTokenError()
        if exp <= self.now():
            logger.info("token_rejected", extra={"reason": "expired", "jti": payload.get("jti")})
            raise InvalidTokenError()
        return payload


def _new_jti() -> str:
    return secrets.token_urlsafe(16)


def hash_password(plain: str) -> str:
    """Hash password for storage. Use with verify_password on login."""
    return pwd_context.hash(plain)


def verify_password(plain: str, hashed: str) -> bool:
    """Verify plain password against stored hash."""
    return pwd_context.verify(plain, hashed)
