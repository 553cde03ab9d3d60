from __future__ import annotations

from datetime import date, datetime, time
from enum import StrEnum
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, Enum, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql.sqltypes import BigInteger, Date, DateTime, Integer, String, Time

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
BigIntPK = BigInteger().with_variant(Integer, "sqlite")


class Base(DeclarativeBase):
    pass


class BookingStatus(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


ACTIVE_BOOKING_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)


class RescheduleStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"


class RewardTransactionType(StrEnum):
    EARNED = "earned"
    REDEEMED = "redeemed"


def _str_enum(enum_cls: type[StrEnum]) -> Enum:
    return Enum(
        enum_cls,
        values_callable=lambda members: [e.value for e in members],
        native_enum=False,
    )


class TimeSlot(Base):
    __tablename__ = "time_slots"
    __table_args__ = (
        CheckConstraint("start_time < end_time", name="chk_slots_time"),
        CheckConstraint("capacity_max >= 1", name="chk_slots_capacity_max"),
        CheckConstraint("capacity_used >= 0", name="chk_slots_capacity_used_min"),
        CheckConstraint("capacity_used <= capacity_max", name="chk_slots_capacity_used_max"),
        UniqueConstraint("slot_date", "start_time", name="uq_slots_date_start"),
        Index("idx_slots_date", "slot_date"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    slot_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    capacity_max: Mapped[int] = mapped_column(Integer, nullable=False)
    capacity_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_blocked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    bookings: Mapped[list["Booking"]] = relationship(back_populates="slot")

    @property
    def remaining(self) -> int:
        return max(self.capacity_max - self.capacity_used, 0)

    @property
    def duration_minutes(self) -> int:
        start = self.start_time.hour * 60 + self.start_time.minute
        end = self.end_time.hour * 60 + self.end_time.minute
        return end - start


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint("total_price_pence >= 0", name="chk_bookings_price"),
        UniqueConstraint("reference", name="uq_bookings_reference"),
        Index("idx_bookings_slot", "slot_id"),
        Index("idx_bookings_customer", "customer_id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    reference: Mapped[str] = mapped_column(String(32), nullable=False)
    # Nulled only for cancelled bookings whose slot has been purged.
    slot_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("time_slots.id", ondelete="SET NULL"), nullable=True
    )
    customer_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    vehicle_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    service_id: Mapped[str] = mapped_column(String(64), nullable=False)
    vehicle_size: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[BookingStatus] = mapped_column(
        _str_enum(BookingStatus), nullable=False, default=BookingStatus.PENDING
    )
    total_price_pence: Mapped[int] = mapped_column(Integer, nullable=False)
    reschedule_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    slot: Mapped[Optional["TimeSlot"]] = relationship(back_populates="bookings")


class RescheduleRequest(Base):
    __tablename__ = "reschedule_requests"
    __table_args__ = (
        Index("idx_reschedule_booking_status", "booking_id", "status"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    booking_id: Mapped[int] = mapped_column(ForeignKey("bookings.id"), nullable=False)
    original_slot_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    requested_slot_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[RescheduleStatus] = mapped_column(
        _str_enum(RescheduleStatus), nullable=False, default=RescheduleStatus.PENDING
    )
    reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    resolution_note: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)


class RewardAccount(Base):
    """One row per customer. Redemptions lock it; the balance is never stored here."""

    __tablename__ = "reward_accounts"
    __table_args__ = (UniqueConstraint("customer_id", name="uq_reward_accounts_customer"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    customer_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    lock_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    transactions: Mapped[list["RewardTransaction"]] = relationship(back_populates="account")


class RewardTransaction(Base):
    __tablename__ = "reward_transactions"
    __table_args__ = (
        CheckConstraint(
            "(transaction_type = 'earned' AND points_amount > 0)"
            " OR (transaction_type = 'redeemed' AND points_amount < 0)",
            name="chk_reward_tx_sign",
        ),
        Index("idx_reward_tx_account_created", "account_id", "created_at"),
        Index("idx_reward_tx_booking", "related_booking_id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("reward_accounts.id"), nullable=False)
    transaction_type: Mapped[RewardTransactionType] = mapped_column(
        _str_enum(RewardTransactionType), nullable=False
    )
    points_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    related_booking_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)

    account: Mapped["RewardAccount"] = relationship(back_populates="transactions")
