"""
Token claim shapes. These mirror the JWT wire format exactly, so a verified
payload validates straight into them.
"""

from typing import Literal

from pydantic import BaseModel, Field


class Identity(BaseModel):
    """Authenticated principal supplied by the identity store at login."""

    id: str = Field(..., min_length=1)
    email: str
    username: str
    roles: list[str] = Field(default_factory=list)
    permissions: list[str] = Field(default_factory=list)

    model_config = {"frozen": True}


class AccessTokenClaims(BaseModel):
    """Payload of an access token: {sub, email, username, roles, permissions, jti, iat, exp}."""

    sub: str = Field(..., min_length=1)
    email: str
    username: str
    roles: list[str]
    permissions: list[str]
    jti: str = Field(..., min_length=1)
    iat: int
    exp: int

    model_config = {"frozen": True}

    def has_permissions(self, required: list[str] | tuple[str, ...]) -> bool:
        return set(required) <= set(self.permissions)

    def has_any_role(self, required: list[str] | tuple[str, ...]) -> bool:
        return any(role in self.roles for role in required)


class RefreshTokenClaims(BaseModel):
    """Payload of a refresh token: {sub, type: "refresh", jti, iat, exp}."""

    sub: str = Field(..., min_length=1)
    type: Literal["refresh"]
    jti: str = Field(..., min_length=1)
    iat: int
    exp: int

    model_config = {"frozen": True}


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int
