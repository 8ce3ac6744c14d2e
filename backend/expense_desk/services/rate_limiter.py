"""Fixed-window request rate limiting keyed by client IP and endpoint.

Each endpoint has a rule (limit per window). The first request for a
``(ip, endpoint)`` key opens a window; requests are allowed while the
window count is below the limit, and once it is reached every request
is rejected until the window expires.

Two stores implement the counters:

``MemoryRateLimitStore``
    Per-process dictionary, the default. Counters are not shared between
    processes, so N instances allow N times the limit.
``RedisRateLimitStore``
    Shared counters (``SET NX EX`` + ``INCR``) for multi-instance
    deployments; select it with ``RATE_LIMIT_BACKEND=redis``.
"""

from __future__ import annotations

import datetime as dt
import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol

from fastapi import Depends, Request
from redis import asyncio as aioredis

from expense_desk.core.config import settings

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass(frozen=True)
class RateLimitRule:
    limit: int
    window_seconds: int
    message: str


DEFAULT_RULE = RateLimitRule(30, 60, "Demasiadas solicitudes. Intenta más tarde.")

DEFAULT_RULES: Dict[str, RateLimitRule] = {
    "/analyze-receipt": RateLimitRule(10, 60, "Demasiados análisis de recibos. Intenta en 1 minuto."),
    "/auth/signup": RateLimitRule(3, 300, "Demasiados intentos de registro. Intenta en 5 minutos."),
    "/auth/signin": RateLimitRule(5, 300, "Demasiados intentos de login. Intenta en 5 minutos."),
}


def normalise_endpoint(endpoint: str) -> str:
    endpoint = (endpoint or "").strip()
    if not endpoint.startswith("/"):
        endpoint = "/" + endpoint
    return endpoint.rstrip("/") or "/"


def rule_for(endpoint: str, rules: Optional[Dict[str, RateLimitRule]] = None) -> RateLimitRule:
    return (rules if rules is not None else DEFAULT_RULES).get(endpoint, DEFAULT_RULE)


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after: Optional[int] = None
    message: Optional[str] = None

    def reset_iso(self) -> str:
        return dt.datetime.fromtimestamp(self.reset_at, tz=dt.timezone.utc).isoformat().replace("+00:00", "Z")

    def headers(self) -> Dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after)
            headers["X-RateLimit-Reset"] = self.reset_iso()
        return headers

    def body(self) -> Dict[str, object]:
        return {
            "error": "Rate limit exceeded",
            "message": self.message,
            "retryAfter": self.retry_after,
        }


class RateLimitExceeded(Exception):
    """Raised by the ``rate_limit`` dependency; rendered as a 429 response."""

    def __init__(self, result: RateLimitResult) -> None:
        self.result = result
        super().__init__(result.message or "Rate limit exceeded")


class RateLimitStore(Protocol):
    async def hit(self, key: str, rule: RateLimitRule) -> RateLimitResult: ...


def _retry_after(reset_at: float, now: float, window: int) -> int:
    return min(window, max(1, math.ceil(reset_at - now)))


class MemoryRateLimitStore:
    """In-process fixed-window counters.

    Only touched from the event loop thread, so no locking is needed.
    Expired entries are swept every ``sweep_interval`` seconds.
    """

    def __init__(self, clock: Clock = time.time, sweep_interval: float = 300.0) -> None:
        self._clock = clock
        self._entries: Dict[str, list] = {}  # key -> [count, reset_at]
        self._sweep_interval = sweep_interval
        self._last_sweep = clock()

    def __len__(self) -> int:
        return len(self._entries)

    def sweep(self, now: Optional[float] = None) -> int:
        now = self._clock() if now is None else now
        expired = [k for k, (_, reset_at) in self._entries.items() if now >= reset_at]
        for k in expired:
            del self._entries[k]
        self._last_sweep = now
        return len(expired)

    async def hit(self, key: str, rule: RateLimitRule) -> RateLimitResult:
        now = self._clock()
        if now - self._last_sweep >= self._sweep_interval:
            self.sweep(now)

        entry = self._entries.get(key)
        if entry is None or now >= entry[1]:
            reset_at = now + rule.window_seconds
            self._entries[key] = [1, reset_at]
            return RateLimitResult(True, rule.limit, rule.limit - 1, reset_at)

        count, reset_at = entry
        if count < rule.limit:
            entry[0] = count + 1
            return RateLimitResult(True, rule.limit, rule.limit - entry[0], reset_at)

        return RateLimitResult(
            False,
            rule.limit,
            0,
            reset_at,
            retry_after=_retry_after(reset_at, now, rule.window_seconds),
            message=rule.message,
        )


class RedisRateLimitStore:
    """Fixed-window counters shared through Redis."""

    def __init__(self, client, clock: Clock = time.time, prefix: str = "rl") -> None:
        self._client = client
        self._clock = clock
        self._prefix = prefix

    async def hit(self, key: str, rule: RateLimitRule) -> RateLimitResult:
        redis_key = f"{self._prefix}:{key}"
        pipe = self._client.pipeline()
        pipe.set(redis_key, 0, ex=rule.window_seconds, nx=True)
        pipe.incr(redis_key)
        pipe.pttl(redis_key)
        _, count, pttl = await pipe.execute()
        now = self._clock()
        count = int(count)
        ttl = (int(pttl) / 1000.0) if pttl is not None and int(pttl) > 0 else float(rule.window_seconds)
        reset_at = now + ttl
        if count <= rule.limit:
            return RateLimitResult(True, rule.limit, rule.limit - count, reset_at)
        return RateLimitResult(
            False,
            rule.limit,
            0,
            reset_at,
            retry_after=_retry_after(reset_at, now, rule.window_seconds),
            message=rule.message,
        )


class RateLimiter:
    """Applies endpoint rules to a counter store."""

    def __init__(self, store: RateLimitStore, rules: Optional[Dict[str, RateLimitRule]] = None) -> None:
        self.store = store
        self.rules = dict(DEFAULT_RULES if rules is None else rules)

    def rule_for(self, endpoint: str) -> RateLimitRule:
        return rule_for(normalise_endpoint(endpoint), self.rules)

    async def check(self, client_ip: str, endpoint: str) -> RateLimitResult:
        endpoint = normalise_endpoint(endpoint)
        result = await self.store.hit(f"{client_ip}:{endpoint}", self.rule_for(endpoint))
        if not result.allowed:
            logger.warning("rate limit exceeded ip=%s endpoint=%s retry_after=%s", client_ip, endpoint, result.retry_after)
        return result


def client_ip(request: Request) -> str:
    """Best-effort client address: proxy headers first, then the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = (request.headers.get("x-real-ip") or "").strip()
    if real_ip:
        return real_ip
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


_limiter: Optional[RateLimiter] = None


def build_rate_limiter() -> RateLimiter:
    backend = (settings.RATE_LIMIT_BACKEND or "memory").lower()
    if backend == "redis":
        client = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
        logger.info("rate limiter using redis store")
        return RateLimiter(RedisRateLimitStore(client))
    return RateLimiter(MemoryRateLimitStore())


def get_rate_limiter() -> RateLimiter:
    """FastAPI dependency returning the process-wide limiter."""
    global _limiter
    if _limiter is None:
        _limiter = build_rate_limiter()
    return _limiter


def rate_limit(endpoint: str):
    """Build a dependency enforcing the rule for ``endpoint`` on the caller's IP."""

    async def _dependency(request: Request, limiter: RateLimiter = Depends(get_rate_limiter)) -> RateLimitResult:
        result = await limiter.check(client_ip(request), endpoint)
        if not result.allowed:
            raise RateLimitExceeded(result)
        return result

    return _dependency
