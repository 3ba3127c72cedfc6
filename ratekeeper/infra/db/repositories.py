from datetime import datetime

from sqlalchemy import Select, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ratekeeper.domain.window import CounterRecord, QuotaKey
from ratekeeper.infra.db.models import RateLimit


def _to_record(row: RateLimit) -> CounterRecord:
    return CounterRecord(
        count=row.request_count,
        window_start=row.window_start,
        last_updated=row.last_updated,
    )


class CounterRepository:
    """Counter rows for one session; the caller owns commit and rollback."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    @staticmethod
    def _by_key(key: QuotaKey) -> Select[tuple[RateLimit]]:
        return select(RateLimit).where(
            RateLimit.ip_address == key.identity,
            RateLimit.endpoint == key.resource,
        )

    async def read_for_update(self, key: QuotaKey) -> CounterRecord | None:
        # Blocks while another transaction holds the row.
        stmt = (
            self._by_key(key)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        row = result.scalar_one_or_none()
        return _to_record(row) if row is not None else None

    async def insert(
        self, key: QuotaKey, window_start: datetime, now: datetime
    ) -> CounterRecord | None:
        """Create the first counter for ``key``.

        Returns None when a concurrent transaction created it first; the
        savepoint keeps the surrounding transaction usable after the conflict.
        """
        row = RateLimit(
            ip_address=key.identity,
            endpoint=key.resource,
            request_count=1,
            window_start=window_start,
            last_updated=now,
        )
        try:
            async with self.session.begin_nested():
                self.session.add(row)
                await self.session.flush()
        except IntegrityError:
            return None
        return _to_record(row)

    async def update(
        self,
        key: QuotaKey,
        count: int,
        window_start: datetime,
        last_updated: datetime,
    ) -> CounterRecord:
        stmt = (
            update(RateLimit)
            .where(
                RateLimit.ip_address == key.identity,
                RateLimit.endpoint == key.resource,
            )
            .values(
                request_count=count,
                window_start=window_start,
                last_updated=last_updated,
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)
        return CounterRecord(count=count, window_start=window_start, last_updated=last_updated)
