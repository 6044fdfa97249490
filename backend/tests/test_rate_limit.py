import pytest
import redis

from crudadmin.exceptions import RateLimitExceeded
from crudadmin.rate_limit import InMemoryRateLimiter, RateLimiter, RedisRateLimiter


class _FakePipeline:
    def __init__(self, store: dict[str, int]):
        self.store = store
        self.ops: list[tuple[str, str]] = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def incr(self, key: str) -> None:
        self.ops.append(("incr", key))

    def expire(self, key: str, ttl: int) -> None:
        self.ops.append(("expire", key))

    def execute(self):
        results = []
        for op, key in self.ops:
            if op == "incr":
                self.store[key] = self.store.get(key, 0) + 1
                results.append(self.store[key])
            else:
                results.append(True)
        return results


class _FakeRedis:
    def __init__(self):
        self.store: dict[str, int] = {}

    def pipeline(self):
        return _FakePipeline(self.store)


class _BrokenRedis:
    def pipeline(self):
        raise redis.ConnectionError("redis down")


def test_in_memory_limiter_counts_down():
    limiter = InMemoryRateLimiter()
    assert limiter.check("k", 2, 60) == (1, 2)
    assert limiter.check("k", 2, 60) == (0, 2)
    with pytest.raises(RateLimitExceeded) as exc:
        limiter.check("k", 2, 60)
    assert exc.value.status_code == 429
    assert exc.value.headers["Retry-After"] == "60"


def test_in_memory_limiter_keys_are_independent():
    limiter = InMemoryRateLimiter()
    limiter.check("a", 1, 60)
    assert limiter.check("b", 1, 60) == (0, 1)


def test_in_memory_limiter_evicts_oldest_key():
    limiter = InMemoryRateLimiter(max_keys=2)
    limiter.check("a", 5, 60)
    limiter.check("b", 5, 60)
    limiter.check("c", 5, 60)
    assert set(limiter.store) == {"b", "c"}


def test_redis_limiter_fixed_window():
    fake = _FakeRedis()
    limiter = RedisRateLimiter(fake)
    assert limiter.check("admin:1", 2, 60) == (1, 2)
    assert limiter.check("admin:1", 2, 60) == (0, 2)
    with pytest.raises(RateLimitExceeded):
        limiter.check("admin:1", 2, 60)
    assert all(key.startswith("ratelimit:admin:1:") for key in fake.store)


def test_limiter_falls_back_to_memory_on_redis_error(caplog):
    limiter = RateLimiter(_BrokenRedis())
    assert limiter.check("k", 1, 60) == (0, 1)
    with pytest.raises(RateLimitExceeded):
        limiter.check("k", 1, 60)
    degraded = [r for r in caplog.records if isinstance(r.msg, dict) and r.msg.get("event") == "ratelimit_degraded"]
    assert len(degraded) == 1


def test_limiter_without_redis_uses_memory():
    limiter = RateLimiter(None)
    limiter.check("k", 3, 60)
    assert "k" in limiter.store
    limiter.reset()
    assert limiter.store == {}


def test_global_limit_decorates_responses(client, monkeypatch):
    from crudadmin.config import settings

    monkeypatch.setattr(settings, "RATE_LIMIT_PER_MINUTE", 2)
    first = client.get("/health")
    assert first.headers["X-RateLimit-Limit"] == "2"
    assert first.headers["X-RateLimit-Remaining"] == "1"
    client.get("/health")

    blocked = client.get("/health")
    assert blocked.status_code == 429
    assert blocked.json() == {"detail": "Rate limit exceeded"}
    assert blocked.headers["Retry-After"] == "60"
    assert blocked.headers.get("X-Request-ID")
