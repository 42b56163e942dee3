"""Application configuration via environment variables."""

from functools import lru_cache
from typing import Annotated, Literal

from fastapi import Depends
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Placeholder secrets shipped in sample env files; never acceptable in production.
WEAK_SECRETS = frozenset(
    {
        "change-me",
        "change-me-in-production",
        "secret",
        "jwt-secret",
        "refresh-secret",
        "your-secret-key",
    }
)


class Settings(BaseSettings):
    """Environment-based configuration. Validated at startup."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    APP_NAME: str = Field(default="route-guard", description="Service name for logs and headers")
    ENVIRONMENT: Literal["development", "staging", "production", "test"] = Field(
        default="development", description="Deployment environment"
    )
    DEBUG: bool = Field(default=False, description="Enable debug mode")

    HOST: str = Field(default="0.0.0.0", description="Bind address; 0.0.0.0 for containers")
    PORT: int = Field(default=8000, ge=1, le=65535)
    API_PREFIX: str = Field(default="api", description="Prefix for non-system routes, without slashes")
    CORS_ORIGINS: str = Field(default="*", description="Comma-separated origins or *")

    JWT_SECRET: str = Field(default="", description="HMAC secret for access tokens")
    JWT_REFRESH_SECRET: str = Field(default="", description="HMAC secret for refresh tokens; falls back to JWT_SECRET")
    JWT_ALGORITHM: Literal["HS256", "HS384", "HS512"] = Field(default="HS256")
    JWT_EXPIRES_IN: str = Field(default="1h", description="Access token lifetime, e.g. 30s, 15m, 1h, 7d")
    JWT_REFRESH_EXPIRES_IN: str = Field(default="7d", description="Refresh token lifetime")
    BCRYPT_ROUNDS: int = Field(default=12, ge=4, le=15, description="Password hashing cost")

    REDIS_URL: str | None = Field(default=None, description="Revocation cache; unset uses in-process memory")
    REVOCATION_FAIL_CLOSED: bool = Field(
        default=False, description="Treat an unreachable revocation cache as 'revoked' instead of 'not revoked'"
    )

    RATE_LIMIT_ENABLED: bool = Field(default=True, description="API-wide limiter for prefixed routes")
    RATE_LIMIT_REQUESTS: int = Field(default=1000, ge=1)
    RATE_LIMIT_WINDOW_SECONDS: int = Field(default=60, ge=1)
    RATE_LIMIT_IPV6_SUBNET: int = Field(default=56, ge=32, le=128, description="IPv6 prefix length used as client key")

    TRUST_PROXY: bool = Field(default=False, description="Trust X-Forwarded-For; enable only behind a proxy that sets it")
    PROXY_HEADER_COUNT: int = Field(default=1, ge=0, description="Number of proxies in front")

    LOG_LEVEL: str = Field(default="INFO")
    LOG_JSON: bool = Field(default=False, description="JSON logs for cloud aggregators")

    @model_validator(mode="after")
    def reject_weak_secrets_in_production(self) -> "Settings":
        if not self.is_production:
            return self
        for name in ("JWT_SECRET", "JWT_REFRESH_SECRET"):
            value = getattr(self, name)
            if value.lower() in WEAK_SECRETS:
                raise ValueError(f"{name} is using a default or weak value")
        return self

    @property
    def cors_origins_list(self) -> list[str]:
        if self.CORS_ORIGINS.strip() == "*":
            return ["*"]
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def api_prefix_path(self) -> str:
        """API_PREFIX as a mount path: 'api' -> '/api', '' -> ''."""
        stripped = self.API_PREFIX.strip("/")
        return f"/{stripped}" if stripped else ""

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance. Use for DI; avoids re-reading env on every request."""
    return Settings()


SettingsDep = Annotated[Settings, Depends(get_settings)]
