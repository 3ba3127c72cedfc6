from datetime import UTC, datetime

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from ratekeeper.core.config import Settings
from ratekeeper.domain.window import CounterRecord, QuotaKey
from ratekeeper.infra.cache import (
    CacheError,
    NullCounterCache,
    RedisCounterCache,
    build_counter_cache,
)
from ratekeeper.infra.cache.redis_cache import cache_key, decode_record, encode_record

KEY = QuotaKey(identity="10.0.0.1", resource="/search")
RECORD = CounterRecord(
    count=2,
    window_start=datetime(2026, 3, 1, 12, 0, 0, 123456, tzinfo=UTC),
    last_updated=datetime(2026, 3, 1, 12, 0, 1, tzinfo=UTC),
)


class FakeRedis:
    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.ttls: dict[str, int | None] = {}
        self.closed = False

    async def get(self, name: str) -> str | None:
        return self.values.get(name)

    async def set(self, name: str, value: str, ex: int | None = None) -> bool:
        self.values[name] = value
        self.ttls[name] = ex
        return True

    async def delete(self, *names: str) -> int:
        return sum(1 for name in names if self.values.pop(name, None) is not None)

    async def info(self, section: str | None = None) -> dict:
        return {"keyspace_hits": 4, "keyspace_misses": 1}

    async def aclose(self) -> None:
        self.closed = True


class FailingRedis:
    def __init__(self, error: Exception) -> None:
        self.error = error

    async def get(self, name: str) -> str | None:
        raise self.error

    async def set(self, name: str, value: str, ex: int | None = None) -> bool:
        raise self.error

    async def delete(self, *names: str) -> int:
        raise self.error

    async def info(self, section: str | None = None) -> dict:
        raise self.error

    async def aclose(self) -> None:
        raise self.error


def test_cache_key_is_namespaced() -> None:
    assert cache_key("rate_limit", KEY) == "rate_limit:10.0.0.1:/search"


def test_decode_rejects_malformed_payload() -> None:
    with pytest.raises(CacheError):
        decode_record('{"count": 1}')


def test_encoded_record_keeps_microseconds() -> None:
    assert decode_record(encode_record(RECORD)) == RECORD


@pytest.mark.asyncio
async def test_set_then_get_returns_record() -> None:
    redis = FakeRedis()
    cache = RedisCounterCache(redis, prefix="rl")

    assert await cache.set(KEY, RECORD, ttl_seconds=30)
    assert redis.ttls["rl:10.0.0.1:/search"] == 30
    assert await cache.get(KEY) == RECORD


@pytest.mark.asyncio
async def test_ttl_is_at_least_one_second() -> None:
    redis = FakeRedis()
    cache = RedisCounterCache(redis)

    await cache.set(KEY, RECORD, ttl_seconds=0)

    assert redis.ttls[cache_key("rate_limit", KEY)] == 1


@pytest.mark.asyncio
async def test_delete_removes_entry() -> None:
    redis = FakeRedis()
    cache = RedisCounterCache(redis)
    await cache.set(KEY, RECORD, ttl_seconds=10)

    assert await cache.delete(KEY)
    assert await cache.get(KEY) is None


@pytest.mark.asyncio
async def test_malformed_entry_reads_as_miss() -> None:
    redis = FakeRedis()
    redis.values[cache_key("rate_limit", KEY)] = "not json"
    cache = RedisCounterCache(redis)

    assert await cache.get(KEY) is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [RedisConnectionError("refused"), RedisTimeoutError("timed out"), OSError("reset")],
)
async def test_failures_never_escape_adapter(error: Exception) -> None:
    cache = RedisCounterCache(FailingRedis(error))

    assert await cache.get(KEY) is None
    assert await cache.set(KEY, RECORD, ttl_seconds=10) is False
    assert await cache.delete(KEY) is False
    assert await cache.stats() is None
    await cache.close()


@pytest.mark.asyncio
async def test_stats_and_close() -> None:
    redis = FakeRedis()
    cache = RedisCounterCache(redis)

    assert await cache.stats() == {"keyspace_hits": 4, "keyspace_misses": 1}
    await cache.close()
    assert redis.closed


@pytest.mark.asyncio
async def test_null_cache_is_always_a_miss() -> None:
    cache = NullCounterCache()

    assert not cache.enabled
    assert await cache.set(KEY, RECORD, ttl_seconds=10) is False
    assert await cache.get(KEY) is None
    assert await cache.delete(KEY) is False
    assert await cache.stats() is None


def test_factory_selects_implementation() -> None:
    assert isinstance(build_counter_cache(Settings(cache_enabled=False)), NullCounterCache)

    cache = build_counter_cache(
        Settings(cache_enabled=True, redis_url="redis://cache:6379/2", cache_key_prefix="rk")
    )
    assert isinstance(cache, RedisCounterCache)
    assert cache.prefix == "rk"
