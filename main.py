"""
Application entry point. Builds the token/revocation services, compiles the
declared routes and wires the app-wide middleware.
Run: uvicorn main:app --host 0.0.0.0 --port 8000
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import api.routes  # noqa: F401  (declares controllers into the default registry)
from core.auth import AuthorizationMiddleware
from core.config import Settings, get_settings
from core.error_handler import install_exception_handlers
from core.middleware import RequestIdMiddleware, RequestTimingMiddleware, SecureHeadersMiddleware
from core.ratelimit import RateLimitGuard, RateLimitOptions, client_key_from_settings
from core.revocation import RevocationStore
from core.routing import MetadataRegistry, RouteCompiler, default_registry, register_routes
from core.security import TokenService
from services.auth_service import AuthService
from services.identity_store import IdentityStore, InMemoryIdentityStore
from utils.cache import CacheBackend, create_cache
from utils.logging import get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: log configuration.
    Shutdown: close the revocation cache connection.
    """
    settings: Settings = app.state.settings
    logger.info(
        "startup",
        extra={
            "app": settings.APP_NAME,
            "env": settings.ENVIRONMENT,
            "log_level": settings.LOG_LEVEL,
            "cache": "redis" if settings.REDIS_URL else "memory",
        },
    )
    yield
    await app.state.cache.close()
    logger.info("shutdown", extra={"app": settings.APP_NAME})


def create_app(
    settings: Settings | None = None,
    *,
    cache: CacheBackend | None = None,
    identity_store: IdentityStore | None = None,
    registry: MetadataRegistry = default_registry,
) -> FastAPI:
    """Factory for FastAPI app. Enables testing with overrides."""
    settings = settings or get_settings()
    app = FastAPI(
        title=settings.APP_NAME,
        description="Declarative routes with bearer-token authorization and revocation",
        version="1.0.0",
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Fails fast on missing or short secrets and malformed lifetimes.
    token_service = TokenService.from_settings(settings)
    cache = cache or create_cache(settings)
    revocation_store = RevocationStore(cache, token_service, fail_closed=settings.REVOCATION_FAIL_CLOSED)
    identity_store = identity_store or InMemoryIdentityStore()

    app.state.settings = settings
    app.state.cache = cache
    app.state.token_service = token_service
    app.state.revocation_store = revocation_store
    app.state.identity_store = identity_store
    app.state.auth_service = AuthService(token_service, revocation_store, identity_store)

    key_func = client_key_from_settings(settings)
    global_limit = None
    if settings.RATE_LIMIT_ENABLED:
        global_limit = RateLimitGuard(
            RateLimitOptions(
                window_ms=settings.RATE_LIMIT_WINDOW_SECONDS * 1000,
                max=settings.RATE_LIMIT_REQUESTS,
            ),
            key_func=key_func,
            name="api",
        )
    compiler = RouteCompiler(
        settings.api_prefix_path,
        authenticate=AuthorizationMiddleware(token_service, revocation_store),
        global_rate_limit=global_limit,
        key_func=key_func,
    )
    app.state.routes = register_routes(app, registry, compiler)
    install_exception_handlers(app)

    # Added last runs first: request id is assigned before anything logs.
    app.add_middleware(RequestTimingMiddleware)
    app.add_middleware(SecureHeadersMiddleware, hsts=settings.is_production)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=settings.cors_origins_list != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After", "RateLimit-Limit", "RateLimit-Remaining"],
    )
    app.add_middleware(RequestIdMiddleware)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    s = get_settings()
    uvicorn.run(
        "main:app",
        host=s.HOST,
        port=s.PORT,
        reload=s.ENVIRONMENT == "development",
        log_level=s.LOG_LEVEL.lower(),
    )
