from datetime import date, datetime, time
from typing import List, Optional

from pydantic import BaseModel, Field, field_serializer

from .domain.pricing import VehicleSize
from .domain.services import RescheduleDecision
from .models import (
    Booking,
    BookingStatus,
    RescheduleRequest,
    RescheduleStatus,
    RewardTransaction,
    RewardTransactionType,
    TimeSlot,
)
from .usecases.rewards import RewardSummary
from .utils.time import utc_naive_to_local


class SlotRead(BaseModel):
    slot_id: int
    slot_date: date
    start_time: time
    end_time: time
    capacity_max: int
    capacity_used: int
    remaining: int
    is_blocked: bool
    version: int

    @field_serializer("start_time", "end_time")
    def _ser_time(self, value: time) -> str:
        return value.strftime("%H:%M")

    @classmethod
    def from_db(cls, *, slot: TimeSlot) -> "SlotRead":
        return cls(
            slot_id=slot.id,
            slot_date=slot.slot_date,
            start_time=slot.start_time,
            end_time=slot.end_time,
            capacity_max=slot.capacity_max,
            capacity_used=slot.capacity_used,
            remaining=slot.remaining,
            is_blocked=slot.is_blocked,
            version=slot.version,
        )


class WeekGenerate(BaseModel):
    week_start: date
    working_days: List[int] = Field(default_factory=lambda: [0, 1, 2, 3, 4, 5])
    day_start: time = time(10, 0)
    day_end: time = time(18, 0)
    slots_per_day: int = Field(default=5, ge=1)
    slot_minutes: int = Field(default=60, ge=1)
    capacity: int = Field(default=1, ge=1)


class WeekGenerated(BaseModel):
    week_start: date
    created: int
    skipped: int
    slots: List[SlotRead]


class SlotBlock(BaseModel):
    blocked: bool


class SlotCleanup(BaseModel):
    before: Optional[date] = None


class SlotCleanupResult(BaseModel):
    before: date
    deleted: int


class QuoteRequest(BaseModel):
    service_id: str
    vehicle_size: VehicleSize
    slot_date: date
    is_repeat_customer: bool = False


class QuoteRead(BaseModel):
    service_id: str
    vehicle_size: VehicleSize
    slot_date: date
    is_repeat_customer: bool
    total_price_pence: int


class BookingCreate(BaseModel):
    vehicle_id: int
    service_id: str
    slot_id: int
    vehicle_size: Optional[VehicleSize] = None
    quoted_price_pence: Optional[int] = Field(default=None, ge=0)
    slot_version: Optional[int] = Field(default=None, ge=1)


class BookingCancel(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class BookingRead(BaseModel):
    booking_id: int
    reference: str
    slot_id: Optional[int]
    customer_id: int
    vehicle_id: int
    service_id: str
    vehicle_size: str
    status: BookingStatus
    total_price_pence: int
    reschedule_count: int
    cancellation_reason: Optional[str] = None
    version: int
    created_at: datetime
    updated_at: datetime

    @field_serializer("created_at", "updated_at")
    def _ser_datetime(self, dt: datetime) -> str:
        return dt.isoformat()

    @classmethod
    def from_db(cls, *, booking: Booking) -> "BookingRead":
        return cls(
            booking_id=booking.id,
            reference=booking.reference,
            slot_id=booking.slot_id,
            customer_id=booking.customer_id,
            vehicle_id=booking.vehicle_id,
            service_id=booking.service_id,
            vehicle_size=booking.vehicle_size,
            status=booking.status,
            total_price_pence=booking.total_price_pence,
            reschedule_count=booking.reschedule_count,
            cancellation_reason=booking.cancellation_reason,
            version=booking.version,
            created_at=utc_naive_to_local(booking.created_at),
            updated_at=utc_naive_to_local(booking.updated_at),
        )


class RescheduleCreate(BaseModel):
    slot_id: int
    reason: Optional[str] = Field(default=None, max_length=500)


class RescheduleResolve(BaseModel):
    decision: RescheduleDecision
    note: Optional[str] = Field(default=None, max_length=500)


class RescheduleRead(BaseModel):
    request_id: int
    booking_id: int
    original_slot_id: Optional[int]
    requested_slot_id: int
    status: RescheduleStatus
    reason: Optional[str] = None
    resolution_note: Optional[str] = None
    created_at: datetime
    expires_at: datetime
    resolved_at: Optional[datetime] = None

    @field_serializer("created_at", "expires_at", "resolved_at")
    def _ser_datetime(self, dt: Optional[datetime]) -> Optional[str]:
        return dt.isoformat() if dt is not None else None

    @classmethod
    def from_db(cls, *, request: RescheduleRequest) -> "RescheduleRead":
        return cls(
            request_id=request.id,
            booking_id=request.booking_id,
            original_slot_id=request.original_slot_id,
            requested_slot_id=request.requested_slot_id,
            status=request.status,
            reason=request.reason,
            resolution_note=request.resolution_note,
            created_at=utc_naive_to_local(request.created_at),
            expires_at=utc_naive_to_local(request.expires_at),
            resolved_at=utc_naive_to_local(request.resolved_at) if request.resolved_at else None,
        )


class RescheduleResolved(BaseModel):
    request: RescheduleRead
    booking: BookingRead


class RewardRedeem(BaseModel):
    points_amount: int = Field(ge=1)
    description: Optional[str] = Field(default=None, max_length=255)


class RewardTransactionRead(BaseModel):
    transaction_id: int
    transaction_type: RewardTransactionType
    points_amount: int
    related_booking_id: Optional[int] = None
    description: Optional[str] = None
    created_at: datetime
    expires_at: Optional[datetime] = None

    @field_serializer("created_at", "expires_at")
    def _ser_datetime(self, dt: Optional[datetime]) -> Optional[str]:
        return dt.isoformat() if dt is not None else None

    @classmethod
    def from_db(cls, *, transaction: RewardTransaction) -> "RewardTransactionRead":
        return cls(
            transaction_id=transaction.id,
            transaction_type=transaction.transaction_type,
            points_amount=transaction.points_amount,
            related_booking_id=transaction.related_booking_id,
            description=transaction.description,
            created_at=utc_naive_to_local(transaction.created_at),
            expires_at=utc_naive_to_local(transaction.expires_at) if transaction.expires_at else None,
        )


class RewardSummaryRead(BaseModel):
    customer_id: int
    balance: int
    tier: str
    history: List[RewardTransactionRead]

    @classmethod
    def from_summary(cls, summary: RewardSummary) -> "RewardSummaryRead":
        return cls(
            customer_id=summary.customer_id,
            balance=summary.balance,
            tier=summary.tier,
            history=[RewardTransactionRead.from_db(transaction=tx) for tx in summary.history],
        )
