"""
Per-route request throttling keyed by client IP.

A RateLimitGuard is route middleware: it either lets the request through with
RateLimit-* headers or raises RateLimitExceeded (429 + Retry-After). Each
guard owns its window state, so a route-specific limit and the API-wide limit
count independently.
In-memory implementation; run one worker per limit domain or front with a
shared limiter for multi-replica consistency.
"""

import asyncio
import ipaddress
import math
import time
from collections.abc import Callable
from dataclasses import dataclass

from fastapi import Request, Response

from core.config import Settings
from core.exceptions import RateLimitExceeded
from core.middleware import CallNext
from utils.logging import get_logger

logger = get_logger(__name__)

UNKNOWN_CLIENT = "unknown"


@dataclass(frozen=True)
class RateLimitOptions:
    """{window_ms, max, message?} as declared on a route."""

    window_ms: int
    max: int
    message: str | None = None

    def __post_init__(self) -> None:
        if self.window_ms <= 0 or self.max <= 0:
            raise ValueError("window_ms and max must be positive")

    @property
    def window_seconds(self) -> float:
        return self.window_ms / 1000


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after: int = 0


class SlidingWindowLimiter:
    """Counts hits per key over the trailing window; prunes idle keys once per window."""

    def __init__(self, options: RateLimitOptions, clock: Callable[[], float] = time.monotonic) -> None:
        self.options = options
        self._clock = clock
        self._hits: dict[str, list[float]] = {}
        self._lock = asyncio.Lock()
        self._last_sweep = clock()

    async def hit(self, key: str) -> RateDecision:
        window = self.options.window_seconds
        limit = self.options.max
        async with self._lock:
            now = self._clock()
            self._sweep(now)
            timestamps = [t for t in self._hits.get(key, []) if now - t < window]
            if len(timestamps) >= limit:
                self._hits[key] = timestamps
                retry_after = max(1, math.ceil(timestamps[0] + window - now))
                return RateDecision(allowed=False, limit=limit, remaining=0, retry_after=retry_after)
            timestamps.append(now)
            self._hits[key] = timestamps
            return RateDecision(allowed=True, limit=limit, remaining=limit - len(timestamps))

    def _sweep(self, now: float) -> None:
        window = self.options.window_seconds
        if now - self._last_sweep < window:
            return
        self._last_sweep = now
        for key in [k for k, ts in self._hits.items() if not ts or now - ts[-1] >= window]:
            del self._hits[key]


def normalize_ip(raw: str, ipv6_subnet: int = 56) -> str:
    """
    Canonical client key: IPv4 as-is, IPv4-mapped IPv6 collapsed to IPv4,
    other IPv6 grouped into its /ipv6_subnet network. Unparseable input is
    returned stripped so it still keys consistently.
    """
    candidate = raw.strip()
    try:
        address = ipaddress.ip_address(candidate.strip("[]"))
    except ValueError:
        return candidate or UNKNOWN_CLIENT
    if isinstance(address, ipaddress.IPv6Address):
        if address.ipv4_mapped is not None:
            return str(address.ipv4_mapped)
        network = ipaddress.IPv6Network((address, ipv6_subnet), strict=False)
        return str(network)
    return str(address)


def client_key(
    request: Request,
    *,
    trust_proxy: bool = False,
    proxy_header_count: int = 1,
    ipv6_subnet: int = 56,
) -> str:
    """Resolve client IP; respect X-Forwarded-For when behind proxy (Nginx/Cloudflare)."""
    if trust_proxy:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            parts = [p.strip() for p in forwarded.split(",") if p.strip()]
            if parts:
                # Rightmost entries were appended by our own proxies
                idx = max(0, len(parts) - max(1, proxy_header_count))
                return normalize_ip(parts[idx], ipv6_subnet)
    host = request.client.host if request.client else ""
    return normalize_ip(host, ipv6_subnet) if host else UNKNOWN_CLIENT


def client_key_from_settings(settings: Settings) -> Callable[[Request], str]:
    def resolve(request: Request) -> str:
        return client_key(
            request,
            trust_proxy=settings.TRUST_PROXY,
            proxy_header_count=settings.PROXY_HEADER_COUNT,
            ipv6_subnet=settings.RATE_LIMIT_IPV6_SUBNET,
        )

    return resolve


class RateLimitGuard:
    """Route middleware enforcing one RateLimitOptions."""

    def __init__(
        self,
        options: RateLimitOptions,
        *,
        key_func: Callable[[Request], str] = client_key,
        clock: Callable[[], float] = time.monotonic,
        name: str = "route",
    ) -> None:
        self.options = options
        self.name = name
        self._key_func = key_func
        self._limiter = SlidingWindowLimiter(options, clock)

    async def __call__(self, request: Request, call_next: CallNext) -> Response:
        key = self._key_func(request)
        decision = await self._limiter.hit(key)
        if not decision.allowed:
            logger.warning(
                "rate_limit_exceeded",
                extra={"client_ip": key, "path": request.url.path, "limiter": self.name},
            )
            raise RateLimitExceeded(decision.retry_after, self.options.message)
        response = await call_next(request)
        response.headers["RateLimit-Limit"] = str(decision.limit)
        response.headers["RateLimit-Remaining"] = str(decision.remaining)
        return response

    def __repr__(self) -> str:
        return f"RateLimitGuard({self.name}, max={self.options.max}, window_ms={self.options.window_ms})"
