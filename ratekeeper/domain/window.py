from dataclasses import dataclass
from datetime import datetime, timedelta

from ratekeeper.domain.enums import WindowAction

_ONE_MICROSECOND = timedelta(microseconds=1)


@dataclass(frozen=True, slots=True)
class QuotaKey:
    identity: str
    resource: str


@dataclass(frozen=True, slots=True)
class QuotaRule:
    max_requests: int
    window_ms: int

    @property
    def window(self) -> timedelta:
        return timedelta(milliseconds=self.window_ms)


@dataclass(frozen=True, slots=True)
class CounterRecord:
    count: int
    window_start: datetime
    last_updated: datetime

    def window_end(self, rule: QuotaRule) -> datetime:
        return self.window_start + rule.window


@dataclass(frozen=True, slots=True)
class Decision:
    allowed: bool
    retry_after_ms: int | None = None

    @classmethod
    def allow(cls) -> "Decision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, retry_after_ms: int) -> "Decision":
        return cls(allowed=False, retry_after_ms=retry_after_ms)


@dataclass(frozen=True, slots=True)
class WindowStep:
    action: WindowAction
    decision: Decision
    record: CounterRecord


class FixedWindow:
    """Fixed-window counter with lazy reset.

    A window opens at the first request after the previous one elapsed and
    lasts ``window_ms``; the counter is only reset when a request observes the
    elapsed window. ``advance`` is pure: callers persist the returned record.
    """

    @staticmethod
    def is_expired(record: CounterRecord, rule: QuotaRule, now: datetime) -> bool:
        return record.window_end(rule) <= now

    @staticmethod
    def retry_after_ms(record: CounterRecord, rule: QuotaRule, now: datetime) -> int:
        remaining_us = (record.window_end(rule) - now) // _ONE_MICROSECOND
        if remaining_us <= 0:
            return 0
        # Round up so a request denied before the boundary never sees 0.
        return -(-remaining_us // 1000)

    @classmethod
    def advance(
        cls, record: CounterRecord | None, rule: QuotaRule, now: datetime
    ) -> WindowStep:
        if record is None:
            return WindowStep(
                action=WindowAction.CREATE,
                decision=Decision.allow(),
                record=CounterRecord(count=1, window_start=now, last_updated=now),
            )

        if cls.is_expired(record, rule, now):
            return WindowStep(
                action=WindowAction.RESET,
                decision=Decision.allow(),
                record=CounterRecord(count=1, window_start=now, last_updated=now),
            )

        if record.count < rule.max_requests:
            return WindowStep(
                action=WindowAction.INCREMENT,
                decision=Decision.allow(),
                record=CounterRecord(
                    count=record.count + 1,
                    window_start=record.window_start,
                    last_updated=now,
                ),
            )

        return WindowStep(
            action=WindowAction.DENY,
            decision=Decision.deny(cls.retry_after_ms(record, rule, now)),
            record=record,
        )
