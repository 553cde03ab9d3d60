from datetime import date, time
from typing import AsyncIterator, Awaitable, Callable, List, Tuple

import pytest
import pytest_asyncio
from booking_engine.config import Settings
from booking_engine.database import build_engine, build_session_factory, init_models
from booking_engine.domain.collaborators import Collaborators, FallbackSizeResolver, NotificationEvent
from booking_engine.domain.pricing import DEFAULT_SERVICES, ServiceCatalog
from booking_engine.infrastructure.unit_of_work import unit_of_work_factory
from booking_engine.models import Booking, TimeSlot
from booking_engine.usecases.context import EngineContext
from booking_engine.utils.time import utc_now_naive
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

# 2030-06-03 is a Monday.
WEEK_START = date(2030, 6, 3)


class RecordingNotifier:
    def __init__(self) -> None:
        self.events: List[Tuple[NotificationEvent, str]] = []

    async def notify(self, event: NotificationEvent, booking: Booking) -> None:
        self.events.append((event, booking.reference))


class RecordingPayments:
    def __init__(self) -> None:
        self.captured: List[str] = []

    async def capture(self, booking: Booking) -> None:
        self.captured.append(booking.reference)


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncIterator[AsyncEngine]:
    db_engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'bookings.db'}")
    await init_models(db_engine)
    yield db_engine
    await db_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(engine)


@pytest.fixture
def settings() -> Settings:
    return Settings(database_url="sqlite+aiosqlite://", payment_model="pay_on_completion")


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def payments() -> RecordingPayments:
    return RecordingPayments()


@pytest.fixture
def ctx(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
    notifier: RecordingNotifier,
    payments: RecordingPayments,
) -> EngineContext:
    return EngineContext(
        uow_factory=unit_of_work_factory(session_factory),
        catalog=ServiceCatalog(DEFAULT_SERVICES),
        collaborators=Collaborators(
            size_resolver=FallbackSizeResolver("medium"),
            payments=payments,
            notifier=notifier,
        ),
        settings=settings,
    )


SlotFactory = Callable[..., Awaitable[TimeSlot]]


@pytest.fixture
def add_slot(session_factory: async_sessionmaker[AsyncSession]) -> SlotFactory:
    async def _add(
        *,
        slot_date: date = WEEK_START,
        start: time = time(10, 0),
        end: time = time(11, 0),
        capacity: int = 1,
        used: int = 0,
        blocked: bool = False,
    ) -> TimeSlot:
        now = utc_now_naive()
        slot = TimeSlot(
            slot_date=slot_date,
            start_time=start,
            end_time=end,
            capacity_max=capacity,
            capacity_used=used,
            is_blocked=blocked,
            version=1,
            created_at=now,
            updated_at=now,
        )
        async with session_factory() as session:
            async with session.begin():
                session.add(slot)
        return slot

    return _add


@pytest.fixture
def load_slot(session_factory: async_sessionmaker[AsyncSession]) -> Callable[[int], Awaitable[TimeSlot]]:
    async def _load(slot_id: int) -> TimeSlot:
        async with session_factory() as session:
            slot = await session.get(TimeSlot, slot_id)
            assert slot is not None
            return slot

    return _load


@pytest.fixture
def load_booking(session_factory: async_sessionmaker[AsyncSession]) -> Callable[[int], Awaitable[Booking]]:
    async def _load(booking_id: int) -> Booking:
        async with session_factory() as session:
            booking = await session.get(Booking, booking_id)
            assert booking is not None
            return booking

    return _load
