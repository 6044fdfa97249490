# SPDX-License-Identifier: Apache-2.0

import logging
import time
from collections import defaultdict, deque
from typing import Deque

import redis
from fastapi import Request
from fastapi.responses import JSONResponse

from .config import settings
from .exceptions import RateLimitExceeded
from .telemetry import log_json


class InMemoryRateLimiter:
    """Lightweight dev/test fallback; not intended for high-concurrency or multi-process use."""

    def __init__(self, max_keys: int = 5000, key_ttl_seconds: int = 900):
        # max_keys bounds the number of tracked principals; key_ttl_seconds prunes idle keys.
        self.store: dict[str, Deque[float]] = defaultdict(deque)
        self.last_seen: dict[str, float] = {}
        self.max_keys = max_keys
        self.key_ttl_seconds = key_ttl_seconds

    def _prune(self, now: float, window: int) -> None:
        cutoff = now - max(window, self.key_ttl_seconds)
        stale = [k for k, ts in self.last_seen.items() if ts < cutoff]
        for key in stale:
            self.store.pop(key, None)
            self.last_seen.pop(key, None)

    def _evict_if_needed(self) -> None:
        if len(self.last_seen) < self.max_keys:
            return
        oldest_key = min(self.last_seen, key=self.last_seen.get)
        self.store.pop(oldest_key, None)
        self.last_seen.pop(oldest_key, None)

    def check(self, key: str, limit: int, window: int) -> tuple[int, int]:
        """Returns (remaining, limit) for rate limit headers."""
        now = time.time()
        self._prune(now, window)
        q = self.store.get(key)
        if q is None:
            self._evict_if_needed()
            q = self.store[key]
        while q and now - q[0] > window:
            q.popleft()
        if len(q) >= limit:
            raise RateLimitExceeded(limit, window)
        q.append(now)
        self.last_seen[key] = now
        return (limit - len(q), limit)

    def reset(self) -> None:
        self.store.clear()
        self.last_seen.clear()


class RedisRateLimiter:
    def __init__(self, client: "redis.Redis"):
        self.client = client

    def check(self, key: str, limit: int, window: int) -> tuple[int, int]:
        now = int(time.time())
        bucket = now // window
        rk = f"ratelimit:{key}:{bucket}"

        with self.client.pipeline() as pipe:
            pipe.incr(rk)
            pipe.expire(rk, window * 2)
            count, _ = pipe.execute()

        if count > limit:
            raise RateLimitExceeded(limit, window)

        return max(0, limit - count), limit


class RateLimiter:
    def __init__(self, redis_client: "redis.Redis | None"):
        self._memory_limiter = InMemoryRateLimiter()
        self._redis_limiter = RedisRateLimiter(redis_client) if redis_client else None
        self._fallback_logged = False

    @property
    def store(self):
        return self._memory_limiter.store

    def reset(self) -> None:
        self._memory_limiter.reset()

    def check(self, key: str, limit: int, window: int) -> tuple[int, int]:
        if self._redis_limiter is None:
            return self._memory_limiter.check(key, limit, window)

        try:
            return self._redis_limiter.check(key, limit, window)
        except RateLimitExceeded:
            raise
        except redis.RedisError as exc:
            if not self._fallback_logged:
                self._fallback_logged = True
                log_json(30, "ratelimit_degraded", reason=f"redis error: {exc}")
            return self._memory_limiter.check(key, limit, window)


def _build_redis_client() -> "redis.Redis | None":
    if not settings.REDIS_URL:
        return None
    try:
        return redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)
    except (redis.RedisError, ValueError) as exc:
        logging.warning("Failed to init Redis for rate limiting: %s", exc)
        return None


limiter = RateLimiter(_build_redis_client())


def check_rate_limit(key: str, limit: int, window: int = 60) -> tuple[int, int]:
    """
    Enforce a fixed-window rate limit for the given key.

    Returns (remaining, limit) for header decoration.
    """
    return limiter.check(key, limit, window)


async def rate_limit_middleware(request: Request, call_next):
    ip = request.client.host if request.client else "unknown"
    key = f"ip:{ip}"
    limit = settings.RATE_LIMIT_PER_MINUTE

    try:
        remaining, _ = check_rate_limit(key, limit)
    except RateLimitExceeded as exc:
        # Return a proper response so outer middleware (correlation, etc.) can decorate it.
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=exc.headers)

    response = await call_next(request)
    response.headers["X-RateLimit-Limit"] = str(limit)
    response.headers["X-RateLimit-Remaining"] = str(remaining)
    return response
