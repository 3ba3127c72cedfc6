import asyncio
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from time import monotonic


@dataclass(frozen=True, slots=True)
class RateLimitRule:
    limit: int
    window_seconds: int


class InMemoryRateLimiter:
    """Per-process sliding-log limiter used to throttle the service's own endpoints.

    State belongs to the instance, so each application owns (and drops) its own
    log. It is unrelated to the durable quota counters.
    """

    def __init__(self, clock: Callable[[], float] = monotonic) -> None:
        self._events: dict[str, deque[float]] = {}
        self._clock = clock
        self._lock = asyncio.Lock()

    async def allow(self, key: str, rule: RateLimitRule) -> bool:
        now = self._clock()
        cutoff = now - rule.window_seconds

        async with self._lock:
            events = self._events.setdefault(key, deque())
            while events and events[0] <= cutoff:
                events.popleft()

            if len(events) >= rule.limit:
                return False

            events.append(now)
            self._evict_idle(cutoff)
            return True

    def _evict_idle(self, cutoff: float) -> None:
        idle = [key for key, events in self._events.items() if not events or events[-1] <= cutoff]
        for key in idle:
            del self._events[key]

    def tracked_keys(self) -> int:
        return len(self._events)
