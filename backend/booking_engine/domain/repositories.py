from __future__ import annotations

from datetime import date, datetime
from typing import AsyncIterator, Callable, Optional, Protocol

from ..models import (
    Booking,
    BookingStatus,
    RescheduleRequest,
    RewardAccount,
    RewardTransaction,
    RewardTransactionType,
    TimeSlot,
)
from .schedule import PlannedSlot


class SlotRepository(Protocol):
    async def get(self, slot_id: int) -> TimeSlot | None: ...

    async def create_if_absent(self, planned: PlannedSlot) -> TimeSlot | None: ...

    async def list_for_dates(self, start: date, end: date) -> list[TimeSlot]: ...

    def stream_available(self, start: date, end: date) -> AsyncIterator[TimeSlot]: ...

    async def try_reserve(self, slot_id: int, expected_version: Optional[int]) -> bool: ...

    async def try_release(self, slot_id: int) -> bool: ...

    async def set_blocked(self, slot_id: int, blocked: bool) -> TimeSlot | None: ...

    async def delete_unused_before(self, cutoff: date) -> int: ...


class BookingRepository(Protocol):
    async def get(self, booking_id: int) -> Booking | None: ...

    async def get_for_update(self, booking_id: int) -> Booking | None: ...

    async def reference_exists(self, reference: str) -> bool: ...

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
    ) -> Booking: ...

    async def save(self, booking: Booking) -> Booking: ...

    async def count_completed_for_customer(self, customer_id: int) -> int: ...

    async def count_active_for_slot(self, slot_id: int) -> int: ...

    async def list_by_customer(self, customer_id: int) -> list[Booking]: ...


class RescheduleRepository(Protocol):
    async def has_pending(self, booking_id: int) -> bool: ...

    async def create(
        self,
        *,
        booking_id: int,
        original_slot_id: Optional[int],
        requested_slot_id: int,
        reason: Optional[str],
        expires_at: datetime,
    ) -> RescheduleRequest: ...

    async def get_for_update(self, request_id: int) -> RescheduleRequest | None: ...

    async def list_pending_expired(self, now: datetime) -> list[RescheduleRequest]: ...

    async def list_for_booking(self, booking_id: int) -> list[RescheduleRequest]: ...

    async def save(self, request: RescheduleRequest) -> RescheduleRequest: ...


class RewardRepository(Protocol):
    async def get_account(self, customer_id: int) -> RewardAccount | None: ...

    async def get_or_create_account(self, customer_id: int) -> RewardAccount: ...

    async def get_account_for_update(self, customer_id: int) -> RewardAccount | None: ...

    async def balance(self, account_id: int, now: datetime) -> int: ...

    async def net_for_booking(self, account_id: int, booking_id: int, now: datetime) -> int: ...

    async def add(
        self,
        *,
        account_id: int,
        transaction_type: RewardTransactionType,
        points_amount: int,
        related_booking_id: Optional[int],
        description: Optional[str],
        expires_at: Optional[datetime],
    ) -> RewardTransaction: ...

    async def history(self, account_id: int) -> list[RewardTransaction]: ...


class UnitOfWork(Protocol):
    """One transaction. Commits on clean exit, rolls back when the block raises."""

    slots: SlotRepository
    bookings: BookingRepository
    reschedules: RescheduleRepository
    rewards: RewardRepository

    async def __aenter__(self) -> "UnitOfWork": ...

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> None: ...


UnitOfWorkFactory = Callable[[], UnitOfWork]
