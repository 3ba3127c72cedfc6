from datetime import UTC, datetime

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import IntegrityError

from ratekeeper.domain.window import CounterRecord, QuotaKey
from ratekeeper.infra.db.models import RateLimit
from ratekeeper.infra.db.repositories import CounterRepository

KEY = QuotaKey(identity="2001:db8::1", resource="/v1/payments")
NOW = datetime(2026, 7, 1, 8, 30, tzinfo=UTC)


class FakeResult:
    def __init__(self, row: RateLimit | None) -> None:
        self.row = row

    def scalar_one_or_none(self) -> RateLimit | None:
        return self.row


class FakeSavepoint:
    def __init__(self, session: "CapturingSession") -> None:
        self.session = session

    async def __aenter__(self) -> "FakeSavepoint":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        self.session.savepoints.append("rollback" if exc_type else "release")
        return False


class CapturingSession:
    def __init__(self, row: RateLimit | None = None, flush_error: Exception | None = None) -> None:
        self.row = row
        self.flush_error = flush_error
        self.statements: list = []
        self.added: list = []
        self.savepoints: list[str] = []

    async def execute(self, statement):
        self.statements.append(statement)
        return FakeResult(self.row)

    def begin_nested(self) -> FakeSavepoint:
        return FakeSavepoint(self)

    def add(self, instance) -> None:
        self.added.append(instance)

    async def flush(self) -> None:
        if self.flush_error is not None:
            raise self.flush_error


def compiled(statement) -> str:
    return str(statement.compile(dialect=postgresql.dialect()))


@pytest.mark.asyncio
async def test_read_for_update_locks_the_row() -> None:
    row = RateLimit(
        ip_address=KEY.identity,
        endpoint=KEY.resource,
        request_count=4,
        window_start=NOW,
        last_updated=NOW,
    )
    session = CapturingSession(row)

    record = await CounterRepository(session).read_for_update(KEY)

    assert record == CounterRecord(count=4, window_start=NOW, last_updated=NOW)
    sql = compiled(session.statements[0])
    assert "FROM rate_limits" in sql
    assert "FOR UPDATE" in sql


@pytest.mark.asyncio
async def test_insert_creates_first_counter_in_savepoint() -> None:
    session = CapturingSession()

    record = await CounterRepository(session).insert(KEY, window_start=NOW, now=NOW)

    assert record == CounterRecord(count=1, window_start=NOW, last_updated=NOW)
    assert session.savepoints == ["release"]
    assert session.added[0].ip_address == KEY.identity
    assert session.added[0].endpoint == KEY.resource


@pytest.mark.asyncio
async def test_insert_conflict_reports_existing_row() -> None:
    conflict = IntegrityError("INSERT INTO rate_limits", None, Exception("duplicate key"))
    session = CapturingSession(flush_error=conflict)

    record = await CounterRepository(session).insert(KEY, window_start=NOW, now=NOW)

    assert record is None
    assert session.savepoints == ["rollback"]


@pytest.mark.asyncio
async def test_update_writes_count_and_window() -> None:
    session = CapturingSession()

    record = await CounterRepository(session).update(
        KEY, count=2, window_start=NOW, last_updated=NOW
    )

    assert record == CounterRecord(count=2, window_start=NOW, last_updated=NOW)
    sql = compiled(session.statements[0])
    assert sql.startswith("UPDATE rate_limits SET request_count=")
    assert "WHERE rate_limits.ip_address =" in sql


def test_schema_matches_counter_table_layout() -> None:
    table = RateLimit.__table__

    assert table.c.ip_address.type.length == 45
    assert table.c.endpoint.type.length == 255
    assert not table.c.window_start.nullable
    assert {index.name for index in table.indexes} == {"idx_rate_limits_ip_endpoint"}
    unique = [c for c in table.constraints if c.name == "uq_rate_limits_ip_endpoint"]
    assert [col.name for col in unique[0].columns] == ["ip_address", "endpoint"]
