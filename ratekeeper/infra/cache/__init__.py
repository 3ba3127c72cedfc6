"""Counter cache adapters (Redis mirror or no cache at all)."""

from ratekeeper.infra.cache.base import CacheError, CounterCache, NullCounterCache
from ratekeeper.infra.cache.factory import build_counter_cache
from ratekeeper.infra.cache.redis_cache import RedisCounterCache

__all__ = [
    "CacheError",
    "CounterCache",
    "NullCounterCache",
    "RedisCounterCache",
    "build_counter_cache",
]
