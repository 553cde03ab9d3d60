from datetime import datetime, timezone
from typing import Any, cast

import pytest
from booking_engine.database import engine_options
from booking_engine.infrastructure.repositories import SqlAlchemyRewardRepository
from booking_engine.models import RewardAccount
from booking_engine.usecases.context import EngineContext
from sqlalchemy import func, select
from sqlalchemy.dialects import mysql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

CUSTOMER = 31


class RecordingSession:
    """Collects statements instead of running them; `scalar` answers from a queue."""

    def __init__(self, *scalars: Any) -> None:
        self.statements: list[Any] = []
        self._scalars = list(scalars)

    async def scalar(self, stmt: Any) -> Any:
        self.statements.append(stmt)
        return self._scalars.pop(0)

    async def execute(self, stmt: Any) -> None:
        self.statements.append(stmt)


def _sql(stmt: Any, dialect: Any) -> str:
    return str(stmt.compile(dialect=dialect))


def _account(account_id: int = 1) -> RewardAccount:
    return RewardAccount(
        id=account_id,
        customer_id=CUSTOMER,
        lock_version=0,
        created_at=datetime.now(timezone.utc).replace(tzinfo=None),
    )


def test_mysql_engine_reads_committed_rows() -> None:
    options = engine_options("mysql+aiomysql://app:app@db:3306/booking")
    assert options["isolation_level"] == "READ COMMITTED"
    assert options["pool_pre_ping"] is True


def test_sqlite_engine_keeps_driver_defaults() -> None:
    assert engine_options("sqlite+aiosqlite:///./booking.db") == {}


@pytest.mark.asyncio
async def test_redemption_account_read_is_a_locking_read() -> None:
    session = RecordingSession(_account())
    repo = SqlAlchemyRewardRepository(cast(AsyncSession, session))

    account = await repo.get_account_for_update(CUSTOMER)

    assert account is not None
    first = _sql(session.statements[0], mysql.dialect())
    assert first.startswith("SELECT")
    assert "FOR UPDATE" in first
    assert _sql(session.statements[1], mysql.dialect()).startswith("UPDATE reward_accounts")


@pytest.mark.asyncio
async def test_missing_account_is_not_locked() -> None:
    session = RecordingSession(None)
    repo = SqlAlchemyRewardRepository(cast(AsyncSession, session))

    assert await repo.get_account_for_update(CUSTOMER) is None
    assert len(session.statements) == 1


@pytest.mark.asyncio
async def test_account_insert_ignores_duplicate_customer() -> None:
    existing = _account(7)
    session = RecordingSession(None, existing)
    repo = SqlAlchemyRewardRepository(cast(AsyncSession, session))

    assert await repo.get_or_create_account(CUSTOMER) is existing
    insert_stmt = session.statements[1]
    assert _sql(insert_stmt, mysql.dialect()).startswith("INSERT IGNORE INTO reward_accounts")
    assert _sql(insert_stmt, sqlite.dialect()).startswith("INSERT OR IGNORE INTO reward_accounts")


@pytest.mark.asyncio
async def test_first_booking_race_reuses_the_winning_account(
    ctx: EngineContext, session_factory, monkeypatch: pytest.MonkeyPatch
) -> None:
    async with ctx.uow_factory() as uow:
        winner = await uow.rewards.get_or_create_account(CUSTOMER)

    async with ctx.uow_factory() as uow:
        real_get_account = uow.rewards.get_account
        lookups: list[int] = []

        async def stale_then_real(customer_id: int) -> RewardAccount | None:
            # First lookup ran before the other booking committed its account.
            lookups.append(customer_id)
            if len(lookups) == 1:
                return None
            return await real_get_account(customer_id)

        monkeypatch.setattr(uow.rewards, "get_account", stale_then_real)
        loser = await uow.rewards.get_or_create_account(CUSTOMER)

    assert loser.id == winner.id
    assert len(lookups) == 2
    async with session_factory() as session:
        count = await session.scalar(
            select(func.count(RewardAccount.id)).where(RewardAccount.customer_id == CUSTOMER)
        )
    assert count == 1
