import json
import logging
from datetime import datetime
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import RedisError

from ratekeeper.domain.window import CounterRecord, QuotaKey
from ratekeeper.infra.cache.base import CacheError

logger = logging.getLogger(__name__)


def cache_key(prefix: str, key: QuotaKey) -> str:
    return f"{prefix}:{key.identity}:{key.resource}"


def encode_record(record: CounterRecord) -> str:
    return json.dumps(
        {
            "count": record.count,
            "window_start": record.window_start.isoformat(),
            "last_updated": record.last_updated.isoformat(),
        }
    )


def decode_record(raw: str | bytes) -> CounterRecord:
    try:
        data = json.loads(raw)
        return CounterRecord(
            count=int(data["count"]),
            window_start=datetime.fromisoformat(data["window_start"]),
            last_updated=datetime.fromisoformat(data["last_updated"]),
        )
    except (ValueError, TypeError, KeyError) as exc:
        raise CacheError(f"Malformed cached counter: {raw!r}") from exc


class RedisCounterCache:
    """Redis mirror of counter rows.

    Every failure (connection, timeout, malformed payload) is logged and turned
    into a miss or ``False``; callers never see an exception from here.
    """

    enabled = True

    def __init__(self, client: Redis, prefix: str = "rate_limit") -> None:
        self.client = client
        self.prefix = prefix

    async def get(self, key: QuotaKey) -> CounterRecord | None:
        full_key = cache_key(self.prefix, key)
        try:
            raw = await self.client.get(full_key)
            if raw is None:
                return None
            return decode_record(raw)
        except (RedisError, OSError, CacheError) as exc:
            logger.warning("Cache get failed for %s: %s", full_key, exc)
            return None

    async def set(self, key: QuotaKey, record: CounterRecord, ttl_seconds: int) -> bool:
        full_key = cache_key(self.prefix, key)
        try:
            await self.client.set(full_key, encode_record(record), ex=max(1, ttl_seconds))
            return True
        except (RedisError, OSError) as exc:
            logger.warning("Cache set failed for %s: %s", full_key, exc)
            return False

    async def delete(self, key: QuotaKey) -> bool:
        full_key = cache_key(self.prefix, key)
        try:
            await self.client.delete(full_key)
            return True
        except (RedisError, OSError) as exc:
            logger.warning("Cache delete failed for %s: %s", full_key, exc)
            return False

    async def stats(self) -> dict[str, Any] | None:
        try:
            return await self.client.info("stats")
        except (RedisError, OSError) as exc:
            logger.warning("Cache stats unavailable: %s", exc)
            return None

    async def close(self) -> None:
        try:
            await self.client.aclose()
        except (RedisError, OSError) as exc:
            logger.warning("Closing cache client failed: %s", exc)
