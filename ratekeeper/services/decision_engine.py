import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ratekeeper.domain.enums import WindowAction
from ratekeeper.domain.window import (
    CounterRecord,
    Decision,
    FixedWindow,
    QuotaKey,
    QuotaRule,
    WindowStep,
)
from ratekeeper.infra.cache.base import CounterCache, NullCounterCache
from ratekeeper.infra.db.repositories import CounterRepository
from ratekeeper.services.errors import StoreTransientError, StoreUnavailableError

logger = logging.getLogger(__name__)

_ONE_SECOND = timedelta(seconds=1)


@dataclass(frozen=True, slots=True)
class DecisionOutcome:
    decision: Decision
    action: WindowAction
    record: CounterRecord
    cache_hit: bool


class DecisionEngine:
    """Fixed-window admission decisions backed by the counter table.

    The database row lock is the only mutual exclusion: every decision reads
    the counter ``FOR UPDATE``, applies one ``FixedWindow`` step and commits in
    a single transaction. The cache is consulted and refreshed around that
    transaction but never decides anything on its own.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: CounterCache | None = None,
        counters_factory: Callable[[AsyncSession], CounterRepository] = CounterRepository,
        cache_max_ttl_seconds: int = 3600,
    ) -> None:
        self.session_factory = session_factory
        self.cache = cache or NullCounterCache()
        self.counters_factory = counters_factory
        self.cache_max_ttl_seconds = cache_max_ttl_seconds

    async def decide(
        self,
        identity: str,
        resource: str,
        max_requests: int,
        window_ms: int,
        now: datetime | None = None,
    ) -> Decision:
        outcome = await self.evaluate(identity, resource, max_requests, window_ms, now)
        return outcome.decision

    async def evaluate(
        self,
        identity: str,
        resource: str,
        max_requests: int,
        window_ms: int,
        now: datetime | None = None,
    ) -> DecisionOutcome:
        now = _as_utc(now or datetime.now(UTC))
        key = QuotaKey(identity=identity, resource=resource)
        rule = QuotaRule(max_requests=max_requests, window_ms=window_ms)

        cached = await self.cache.get(key)

        # A cancelled caller must not abort a half-applied transaction.
        transaction = asyncio.ensure_future(self._transact(key, rule, now))
        transaction.add_done_callback(_collect_result)
        step = await asyncio.shield(transaction)

        await self._refresh_cache(key, rule, now, cached, step)

        logger.debug(
            "Decision for %s:%s -> %s (count=%d)",
            identity,
            resource,
            step.action.value,
            step.record.count,
        )
        return DecisionOutcome(
            decision=step.decision,
            action=step.action,
            record=step.record,
            cache_hit=cached is not None,
        )

    async def _transact(self, key: QuotaKey, rule: QuotaRule, now: datetime) -> WindowStep:
        async with self.session_factory() as session:
            try:
                await session.connection()
            except (SQLAlchemyError, OSError) as exc:
                logger.error("Counter store unreachable: %s", exc)
                raise StoreUnavailableError("counter store unreachable") from exc

            counters = self.counters_factory(session)
            try:
                step = await self._apply(counters, key, rule, now)
                await session.commit()
            except (SQLAlchemyError, OSError) as exc:
                logger.error(
                    "Counter transaction failed for %s:%s",
                    key.identity,
                    key.resource,
                    exc_info=True,
                )
                await _rollback(session)
                raise StoreTransientError(key) from exc
            except StoreTransientError:
                await _rollback(session)
                raise
            return step

    async def _apply(
        self,
        counters: CounterRepository,
        key: QuotaKey,
        rule: QuotaRule,
        now: datetime,
    ) -> WindowStep:
        record = await counters.read_for_update(key)
        if record is None:
            created = await counters.insert(key, window_start=now, now=now)
            if created is not None:
                return WindowStep(
                    action=WindowAction.CREATE, decision=Decision.allow(), record=created
                )
            # Lost the first-write race; the winner's row now exists.
            record = await counters.read_for_update(key)
            if record is None:
                raise StoreTransientError(key)

        step = FixedWindow.advance(record, rule, now)
        if step.action is WindowAction.DENY:
            return step

        persisted = await counters.update(
            key,
            count=step.record.count,
            window_start=step.record.window_start,
            last_updated=step.record.last_updated,
        )
        return WindowStep(action=step.action, decision=step.decision, record=persisted)

    async def _refresh_cache(
        self,
        key: QuotaKey,
        rule: QuotaRule,
        now: datetime,
        cached: CounterRecord | None,
        step: WindowStep,
    ) -> None:
        if step.action is WindowAction.DENY and cached == step.record:
            return
        ttl_seconds = self._ttl_for(step.record, rule, now)
        if not await self.cache.set(key, step.record, ttl_seconds):
            logger.debug("Counter for %s:%s not cached", key.identity, key.resource)

    def _ttl_for(self, record: CounterRecord, rule: QuotaRule, now: datetime) -> int:
        remaining = record.window_end(rule) - now
        seconds = -(-remaining // _ONE_SECOND)
        return max(1, min(self.cache_max_ttl_seconds, seconds))


def _collect_result(task: asyncio.Future) -> None:
    # Failures are logged in _transact; mark them retrieved for abandoned callers.
    if not task.cancelled():
        task.exception()


async def _rollback(session: AsyncSession) -> None:
    try:
        await session.rollback()
    except (SQLAlchemyError, OSError):
        logger.warning("Rollback failed; connection will be discarded", exc_info=True)


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)
