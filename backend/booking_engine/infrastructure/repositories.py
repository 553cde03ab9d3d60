from __future__ import annotations

from datetime import date, datetime
from typing import AsyncIterator, List, Optional, cast

from sqlalchemy import CursorResult, delete, func, insert, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.errors import InvariantViolation
from ..domain.repositories import BookingRepository, RescheduleRepository, RewardRepository, SlotRepository
from ..domain.schedule import PlannedSlot
from ..models import (
    Booking,
    BookingStatus,
    RescheduleRequest,
    RescheduleStatus,
    RewardAccount,
    RewardTransaction,
    RewardTransactionType,
    TimeSlot,
)
from ..utils.time import utc_now_naive


def _rowcount(result: object) -> int:
    return cast(CursorResult, result).rowcount


class SqlAlchemySlotRepository(SlotRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, slot_id: int) -> TimeSlot | None:
        # Always re-read: occupancy is changed by guarded UPDATEs that bypass the identity map.
        return await self.session.get(TimeSlot, slot_id, populate_existing=True)

    async def create_if_absent(self, planned: PlannedSlot) -> TimeSlot | None:
        existing = await self.session.scalar(
            select(TimeSlot.id).where(
                TimeSlot.slot_date == planned.slot_date,
                TimeSlot.start_time == planned.start_time,
            )
        )
        if existing is not None:
            return None
        now = utc_now_naive()
        slot = TimeSlot(
            slot_date=planned.slot_date,
            start_time=planned.start_time,
            end_time=planned.end_time,
            capacity_max=planned.capacity,
            capacity_used=0,
            is_blocked=False,
            version=1,
            created_at=now,
            updated_at=now,
        )
        self.session.add(slot)
        await self.session.flush()
        return slot

    async def list_for_dates(self, start: date, end: date) -> List[TimeSlot]:
        stmt = (
            select(TimeSlot)
            .where(TimeSlot.slot_date >= start, TimeSlot.slot_date <= end)
            .order_by(TimeSlot.slot_date, TimeSlot.start_time, TimeSlot.id)
        )
        return list(await self.session.scalars(stmt))

    async def stream_available(self, start: date, end: date) -> AsyncIterator[TimeSlot]:
        stmt = (
            select(TimeSlot)
            .where(
                TimeSlot.slot_date >= start,
                TimeSlot.slot_date <= end,
                TimeSlot.is_blocked.is_(False),
                TimeSlot.capacity_used < TimeSlot.capacity_max,
            )
            .order_by(TimeSlot.slot_date, TimeSlot.start_time, TimeSlot.id)
        )
        result = await self.session.stream_scalars(stmt)
        async for slot in result:
            yield slot

    async def try_reserve(self, slot_id: int, expected_version: Optional[int]) -> bool:
        stmt = (
            update(TimeSlot)
            .where(
                TimeSlot.id == slot_id,
                TimeSlot.is_blocked.is_(False),
                TimeSlot.capacity_used < TimeSlot.capacity_max,
            )
            .values(
                capacity_used=TimeSlot.capacity_used + 1,
                version=TimeSlot.version + 1,
                updated_at=utc_now_naive(),
            )
            .execution_options(synchronize_session=False)
        )
        if expected_version is not None:
            stmt = stmt.where(TimeSlot.version == expected_version)
        result = await self.session.execute(stmt)
        return _rowcount(result) == 1

    async def try_release(self, slot_id: int) -> bool:
        stmt = (
            update(TimeSlot)
            .where(TimeSlot.id == slot_id, TimeSlot.capacity_used > 0)
            .values(
                capacity_used=TimeSlot.capacity_used - 1,
                version=TimeSlot.version + 1,
                updated_at=utc_now_naive(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return _rowcount(result) == 1

    async def set_blocked(self, slot_id: int, blocked: bool) -> TimeSlot | None:
        stmt = (
            update(TimeSlot)
            .where(TimeSlot.id == slot_id)
            .values(is_blocked=blocked, version=TimeSlot.version + 1, updated_at=utc_now_naive())
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if _rowcount(result) != 1:
            return None
        return await self.get(slot_id)

    async def delete_unused_before(self, cutoff: date) -> int:
        in_use = select(Booking.id).where(
            Booking.slot_id == TimeSlot.id,
            Booking.status != BookingStatus.CANCELLED,
        )
        candidates = select(TimeSlot.id).where(
            TimeSlot.slot_date < cutoff,
            TimeSlot.capacity_used == 0,
            ~in_use.exists(),
        )
        ids = list(await self.session.scalars(candidates))
        if not ids:
            return 0
        await self.session.execute(
            update(Booking)
            .where(Booking.slot_id.in_(ids), Booking.status == BookingStatus.CANCELLED)
            .values(slot_id=None)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(
            delete(TimeSlot)
            .where(TimeSlot.id.in_(ids), TimeSlot.capacity_used == 0)
            .execution_options(synchronize_session=False)
        )
        return _rowcount(result)


class SqlAlchemyBookingRepository(BookingRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, booking_id: int) -> Booking | None:
        return await self.session.get(Booking, booking_id, populate_existing=True)

    async def get_for_update(self, booking_id: int) -> Booking | None:
        stmt = select(Booking).where(Booking.id == booking_id).with_for_update()
        result = await self.session.scalar(stmt.execution_options(populate_existing=True))
        return result if isinstance(result, Booking) else None

    async def reference_exists(self, reference: str) -> bool:
        stmt = select(Booking.id).where(Booking.reference == reference)
        return await self.session.scalar(stmt) is not None

    async def create(
        self,
        *,
        reference: str,
        slot_id: int,
        customer_id: int,
        vehicle_id: int,
        service_id: str,
        vehicle_size: str,
        status: BookingStatus,
        total_price_pence: int,
    ) -> Booking:
        now = utc_now_naive()
        booking = Booking(
            reference=reference,
            slot_id=slot_id,
            customer_id=customer_id,
            vehicle_id=vehicle_id,
            service_id=service_id,
            vehicle_size=vehicle_size,
            status=status,
            total_price_pence=total_price_pence,
            reschedule_count=0,
            version=1,
            created_at=now,
            updated_at=now,
        )
        self.session.add(booking)
        await self.session.flush()
        return booking

    async def save(self, booking: Booking) -> Booking:
        booking.updated_at = utc_now_naive()
        self.session.add(booking)
        await self.session.flush()
        return booking

    async def count_completed_for_customer(self, customer_id: int) -> int:
        stmt = select(func.count(Booking.id)).where(
            Booking.customer_id == customer_id,
            Booking.status == BookingStatus.COMPLETED,
        )
        return int(await self.session.scalar(stmt) or 0)

    async def count_active_for_slot(self, slot_id: int) -> int:
        stmt = select(func.count(Booking.id)).where(
            Booking.slot_id == slot_id,
            Booking.status != BookingStatus.CANCELLED,
        )
        return int(await self.session.scalar(stmt) or 0)

    async def list_by_customer(self, customer_id: int) -> List[Booking]:
        stmt = (
            select(Booking)
            .where(Booking.customer_id == customer_id)
            .order_by(Booking.created_at.desc(), Booking.id.desc())
        )
        return list(await self.session.scalars(stmt))


class SqlAlchemyRescheduleRepository(RescheduleRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def has_pending(self, booking_id: int) -> bool:
        stmt = select(RescheduleRequest.id).where(
            RescheduleRequest.booking_id == booking_id,
            RescheduleRequest.status == RescheduleStatus.PENDING,
        )
        return await self.session.scalar(stmt) is not None

    async def create(
        self,
        *,
        booking_id: int,
        original_slot_id: Optional[int],
        requested_slot_id: int,
        reason: Optional[str],
        expires_at: datetime,
    ) -> RescheduleRequest:
        request = RescheduleRequest(
            booking_id=booking_id,
            original_slot_id=original_slot_id,
            requested_slot_id=requested_slot_id,
            status=RescheduleStatus.PENDING,
            reason=reason,
            created_at=utc_now_naive(),
            expires_at=expires_at,
        )
        self.session.add(request)
        await self.session.flush()
        return request

    async def get_for_update(self, request_id: int) -> RescheduleRequest | None:
        stmt = select(RescheduleRequest).where(RescheduleRequest.id == request_id).with_for_update()
        result = await self.session.scalar(stmt.execution_options(populate_existing=True))
        return result if isinstance(result, RescheduleRequest) else None

    async def list_pending_expired(self, now: datetime) -> List[RescheduleRequest]:
        stmt = (
            select(RescheduleRequest)
            .where(
                RescheduleRequest.status == RescheduleStatus.PENDING,
                RescheduleRequest.expires_at <= now,
            )
            .order_by(RescheduleRequest.id)
            .with_for_update()
        )
        return list(await self.session.scalars(stmt))

    async def list_for_booking(self, booking_id: int) -> List[RescheduleRequest]:
        stmt = (
            select(RescheduleRequest)
            .where(RescheduleRequest.booking_id == booking_id)
            .order_by(RescheduleRequest.created_at, RescheduleRequest.id)
        )
        return list(await self.session.scalars(stmt))

    async def save(self, request: RescheduleRequest) -> RescheduleRequest:
        self.session.add(request)
        await self.session.flush()
        return request


class SqlAlchemyRewardRepository(RewardRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_account(self, customer_id: int) -> RewardAccount | None:
        stmt = select(RewardAccount).where(RewardAccount.customer_id == customer_id)
        result = await self.session.scalar(stmt)
        return result if isinstance(result, RewardAccount) else None

    async def get_account_for_update(self, customer_id: int) -> RewardAccount | None:
        stmt = select(RewardAccount).where(RewardAccount.customer_id == customer_id).with_for_update()
        result = await self.session.scalar(stmt.execution_options(populate_existing=True))
        if not isinstance(result, RewardAccount):
            return None
        # SQLite drops FOR UPDATE; the write takes its database lock instead.
        await self.session.execute(
            update(RewardAccount)
            .where(RewardAccount.id == result.id)
            .values(lock_version=RewardAccount.lock_version + 1)
            .execution_options(synchronize_session=False)
        )
        return result

    async def get_or_create_account(self, customer_id: int) -> RewardAccount:
        account = await self.get_account(customer_id)
        if account is not None:
            return account
        # A concurrent first booking may have inserted the row already; that row is reused.
        stmt = (
            insert(RewardAccount)
            .values(customer_id=customer_id, lock_version=0, created_at=utc_now_naive())
            .prefix_with("IGNORE", dialect="mysql")
            .prefix_with("OR IGNORE", dialect="sqlite")
        )
        await self.session.execute(stmt)
        account = await self.get_account(customer_id)
        if account is None:
            raise InvariantViolation(f"reward account for customer {customer_id} missing after insert")
        return account

    def _live(self, now: datetime):
        return or_(
            RewardTransaction.transaction_type == RewardTransactionType.REDEEMED,
            RewardTransaction.expires_at.is_(None),
            RewardTransaction.expires_at > now,
        )

    async def balance(self, account_id: int, now: datetime) -> int:
        stmt = select(func.coalesce(func.sum(RewardTransaction.points_amount), 0)).where(
            RewardTransaction.account_id == account_id,
            self._live(now),
        )
        return int(await self.session.scalar(stmt) or 0)

    async def net_for_booking(self, account_id: int, booking_id: int, now: datetime) -> int:
        stmt = select(func.coalesce(func.sum(RewardTransaction.points_amount), 0)).where(
            RewardTransaction.account_id == account_id,
            RewardTransaction.related_booking_id == booking_id,
            self._live(now),
        )
        return int(await self.session.scalar(stmt) or 0)

    async def add(
        self,
        *,
        account_id: int,
        transaction_type: RewardTransactionType,
        points_amount: int,
        related_booking_id: Optional[int],
        description: Optional[str],
        expires_at: Optional[datetime],
    ) -> RewardTransaction:
        transaction = RewardTransaction(
            account_id=account_id,
            transaction_type=transaction_type,
            points_amount=points_amount,
            related_booking_id=related_booking_id,
            description=description,
            created_at=utc_now_naive(),
            expires_at=expires_at,
        )
        self.session.add(transaction)
        await self.session.flush()
        return transaction

    async def history(self, account_id: int) -> List[RewardTransaction]:
        stmt = (
            select(RewardTransaction)
            .where(RewardTransaction.account_id == account_id)
            .order_by(RewardTransaction.created_at, RewardTransaction.id)
        )
        return list(await self.session.scalars(stmt))
