from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .repositories import (
    SqlAlchemyBookingRepository,
    SqlAlchemyRescheduleRepository,
    SqlAlchemyRewardRepository,
    SqlAlchemySlotRepository,
)


class SqlAlchemyUnitOfWork:
    """One session, one transaction, all four repositories bound to it."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def __aenter__(self) -> "SqlAlchemyUnitOfWork":
        self.session = self.session_factory()
        self.slots = SqlAlchemySlotRepository(self.session)
        self.bookings = SqlAlchemyBookingRepository(self.session)
        self.reschedules = SqlAlchemyRescheduleRepository(self.session)
        self.rewards = SqlAlchemyRewardRepository(self.session)
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> None:
        try:
            if exc_type is None:
                await self.session.commit()
            else:
                await self.session.rollback()
        finally:
            await self.session.close()


def unit_of_work_factory(session_factory: async_sessionmaker[AsyncSession]):
    def factory() -> SqlAlchemyUnitOfWork:
        return SqlAlchemyUnitOfWork(session_factory)

    return factory
