import logging

from redis.asyncio import Redis

from ratekeeper.core.config import Settings
from ratekeeper.infra.cache.base import CounterCache, NullCounterCache
from ratekeeper.infra.cache.redis_cache import RedisCounterCache

logger = logging.getLogger(__name__)


def build_counter_cache(settings: Settings) -> CounterCache:
    if not settings.cache_enabled:
        logger.info("Counter cache disabled; decisions use the database only")
        return NullCounterCache()

    # Connections are opened lazily; an unreachable Redis only degrades to misses.
    client = Redis.from_url(
        settings.redis_url,
        decode_responses=True,
        socket_connect_timeout=settings.cache_socket_timeout_seconds,
        socket_timeout=settings.cache_socket_timeout_seconds,
    )
    logger.info("Counter cache enabled with prefix '%s'", settings.cache_key_prefix)
    return RedisCounterCache(client, prefix=settings.cache_key_prefix)
