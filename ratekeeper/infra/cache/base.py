from typing import Any, Protocol

from ratekeeper.domain.window import CounterRecord, QuotaKey


class CacheError(RuntimeError):
    """Raised inside cache adapters only; never crosses the adapter boundary."""


class CounterCache(Protocol):
    enabled: bool

    async def get(self, key: QuotaKey) -> CounterRecord | None: ...

    async def set(self, key: QuotaKey, record: CounterRecord, ttl_seconds: int) -> bool: ...

    async def delete(self, key: QuotaKey) -> bool: ...

    async def stats(self) -> dict[str, Any] | None: ...

    async def close(self) -> None: ...


class NullCounterCache:
    enabled = False

    async def get(self, key: QuotaKey) -> CounterRecord | None:
        _ = key
        return None

    async def set(self, key: QuotaKey, record: CounterRecord, ttl_seconds: int) -> bool:
        _ = key
        _ = record
        _ = ttl_seconds
        return False

    async def delete(self, key: QuotaKey) -> bool:
        _ = key
        return False

    async def stats(self) -> dict[str, Any] | None:
        return None

    async def close(self) -> None:
        return None
