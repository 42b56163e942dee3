"""
Authentication API: register, login, refresh, logout and token revocation.
Mounted under the API prefix (default /api/auth).
"""

from fastapi import Request
from pydantic import BaseModel, Field

from core.auth import current_user, require_roles
from core.routing import ApiDoc, ApiResponse, Auth, Controller, RateLimit, Validate
from models.schemas import ServiceResponse
from services.auth_service import AuthService, public_user

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
USERNAME_PATTERN = r"^[A-Za-z0-9_]+$"

auth = Controller("/auth", description="Authentication", tags=["auth"])


class RegisterBody(BaseModel):
    email: str = Field(..., max_length=254, pattern=EMAIL_PATTERN)
    username: str = Field(..., min_length=3, max_length=30, pattern=USERNAME_PATTERN)
    password: str = Field(..., min_length=8, max_length=128)

    model_config = {"extra": "forbid"}


class RegisterRequest(BaseModel):
    body: RegisterBody


class LoginBody(BaseModel):
    email: str = Field(..., max_length=254, pattern=EMAIL_PATTERN)
    password: str = Field(..., min_length=1, max_length=128)


class LoginRequest(BaseModel):
    body: LoginBody


class RefreshBody(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class RefreshRequest(BaseModel):
    body: RefreshBody


class LogoutBody(BaseModel):
    refresh_token: str | None = None


class LogoutRequest(BaseModel):
    body: LogoutBody | None = None


class UserIdParams(BaseModel):
    userId: str = Field(..., min_length=1, max_length=64)


class RevokeUserRequest(BaseModel):
    params: UserIdParams


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


@auth.post("/register", description="Create an account and return a token pair")
@RateLimit(window_ms=60 * 60 * 1000, max=3, message="Too many registration attempts, try again later")
@Validate(RegisterRequest)
@ApiResponse(201, "User registered")
@ApiResponse(409, "Email or username already taken")
async def register(request: Request) -> ServiceResponse:
    body = request.state.validated.body
    user, tokens = await _service(request).register(body.email, body.username, body.password)
    return ServiceResponse.ok(
        "User registered successfully",
        {"user": public_user(user), **tokens.model_dump()},
        status_code=201,
    )


@auth.post("/login", description="Exchange credentials for a token pair")
@RateLimit(window_ms=15 * 60 * 1000, max=5, message="Too many login attempts, try again later")
@Validate(LoginRequest)
@ApiResponse(401, "Invalid email or password")
async def login(request: Request) -> ServiceResponse:
    body = request.state.validated.body
    user, tokens = await _service(request).login(body.email, body.password)
    return ServiceResponse.ok("Login successful", {"user": public_user(user), **tokens.model_dump()})


@auth.post("/refresh", description="Exchange a refresh token for a new access token")
@RateLimit(window_ms=15 * 60 * 1000, max=10)
@Validate(RefreshRequest)
async def refresh(request: Request) -> ServiceResponse:
    body = request.state.validated.body
    data = await _service(request).refresh(body.refresh_token)
    return ServiceResponse.ok("Token refreshed", data)


@auth.post("/logout", description="Revoke the presented access token")
@Auth()
@Validate(LogoutRequest)
async def logout(request: Request) -> ServiceResponse:
    validated = request.state.validated
    refresh_token = validated.body.refresh_token if validated.body else None
    await _service(request).logout(request.state.token, refresh_token)
    return ServiceResponse.ok("Logged out")


@auth.post("/logout-all", description="Revoke every token of the caller")
@Auth()
async def logout_all(request: Request) -> ServiceResponse:
    await _service(request).logout_all(current_user(request))
    return ServiceResponse.ok("Logged out from all sessions")


@auth.get("/me", description="Claims of the authenticated caller")
@Auth()
@ApiDoc(summary="Current user", tags=["auth", "profile"])
async def me(request: Request) -> ServiceResponse:
    user = current_user(request)
    return ServiceResponse.ok(
        "Current user",
        {
            "id": user.sub,
            "email": user.email,
            "username": user.username,
            "roles": user.roles,
            "permissions": user.permissions,
        },
    )


@auth.post(
    "/users/:userId/revoke",
    middlewares=[require_roles("admin")],
    description="Revoke every token of a user (admin)",
)
@Auth()
@Validate(RevokeUserRequest)
@ApiResponse(403, "Caller is not an admin")
async def revoke_user(request: Request) -> ServiceResponse:
    user_id = request.state.validated.params.userId
    await _service(request).revoke_user(user_id)
    return ServiceResponse.ok("User tokens revoked", {"userId": user_id})
