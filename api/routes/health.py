"""
Health and readiness endpoints for load balancers and Kubernetes.
System routes: mounted at the root, outside the API prefix and the API-wide
rate limit. No auth required; keep payloads minimal for fast checks.
"""

import asyncio
import os
import time

import psutil
from fastapi import Request, Response

from core.routing import Controller
from models.schemas import ServiceResponse

health = Controller("/health-check", description="Health", is_system_route=True, tags=["health"])

_STARTED_AT = time.time()


def _process_stats() -> dict[str, float | int]:
    process = psutil.Process(os.getpid())
    memory = process.memory_info()
    return {
        "rss_mb": round(memory.rss / (1024 * 1024), 2),
        "vms_mb": round(memory.vms / (1024 * 1024), 2),
        "cpu_percent": round(process.cpu_percent(interval=None), 2),
        "threads": process.num_threads(),
    }


@health.get("/", description="Liveness with service identity")
async def health_check(request: Request) -> ServiceResponse:
    settings = request.app.state.settings
    return ServiceResponse.ok(
        "Service is healthy",
        {
            "status": "ok",
            "service": settings.APP_NAME,
            "environment": settings.ENVIRONMENT,
            "uptime_seconds": round(time.time() - _STARTED_AT, 2),
        },
    )


@health.get("/detailed", description="Process and dependency details")
async def detailed(request: Request) -> ServiceResponse:
    """
    psutil calls read /proc and can block briefly; run in executor.
    """
    loop = asyncio.get_running_loop()
    process = await loop.run_in_executor(None, _process_stats)
    cache_ok = await request.app.state.cache.ping()
    return ServiceResponse.ok(
        "Service details",
        {
            "status": "ok" if cache_ok else "degraded",
            "uptime_seconds": round(time.time() - _STARTED_AT, 2),
            "process": process,
            "checks": {"cache": "ok" if cache_ok else "unavailable"},
        },
    )


@health.get("/ready", description="Readiness: can the instance accept traffic")
async def ready(request: Request) -> ServiceResponse:
    checks = {"config": "loaded"}
    cache_ok = await request.app.state.cache.ping()
    checks["cache"] = "ok" if cache_ok else "unavailable"
    if not cache_ok and request.app.state.settings.REVOCATION_FAIL_CLOSED:
        # Every authenticated request would be rejected.
        return ServiceResponse(
            success=False, message="Not ready", data={"ready": False, "checks": checks}, status_code=503
        )
    return ServiceResponse.ok("Ready", {"ready": True, "checks": checks})


@health.get("/live", description="Minimal live check for proxies")
async def live(request: Request) -> Response:
    """200 with no body. For Nginx/Cloudflare health checks."""
    return Response(status_code=200)
