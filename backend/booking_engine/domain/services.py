from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import StrEnum
from typing import Optional

from ..models import ACTIVE_BOOKING_STATUSES, BookingStatus
from .errors import (
    AlreadyTerminalError,
    RescheduleNotAllowedError,
    SlotUnavailableError,
    ValidationError,
    VersionConflictError,
)
from .pricing import round_half_up


@dataclass(frozen=True)
class SlotSnapshot:
    is_blocked: bool
    capacity_max: int
    capacity_used: int
    version: int


def explain_reservation_failure(snapshot: Optional[SlotSnapshot], *, expected_version: Optional[int]) -> SlotUnavailableError:
    """
    Pure: turn the state of a slot whose guarded increment matched no row
    into the error the caller should see.
    """
    if snapshot is None:
        return SlotUnavailableError("slot not found")
    if snapshot.is_blocked:
        return SlotUnavailableError("slot is blocked")
    if snapshot.capacity_used >= snapshot.capacity_max:
        return SlotUnavailableError("slot is fully booked")
    if expected_version is not None and snapshot.version != expected_version:
        return VersionConflictError("slot changed since it was read")
    # Capacity freed up between the update and this read; still a lost race.
    return SlotUnavailableError("slot is no longer available")


def ensure_active(status: BookingStatus) -> None:
    if status not in ACTIVE_BOOKING_STATUSES:
        raise AlreadyTerminalError(f"booking is already {status.value}")


def ensure_reschedulable(
    *,
    status: BookingStatus,
    reschedule_count: int,
    max_reschedules: int,
    current_slot_id: Optional[int],
    new_slot_id: int,
) -> None:
    ensure_active(status)
    if current_slot_id == new_slot_id:
        raise ValidationError("booking already uses this slot")
    if reschedule_count >= max_reschedules:
        raise RescheduleNotAllowedError("maximum reschedule limit reached")


def points_for_price(price_pence: int, *, base_points: int, points_per_pound: int) -> int:
    """Fixed booking bonus plus points per whole pound spent (rounded half-up)."""
    if price_pence <= 0:
        return base_points
    per_pound = round_half_up(Decimal(price_pence) / Decimal(100) * points_per_pound)
    return base_points + per_pound


TIER_THRESHOLDS = (
    ("platinum", 2000),
    ("gold", 1000),
    ("silver", 500),
    ("bronze", 0),
)


def tier_for_balance(balance: int) -> str:
    for tier, minimum in TIER_THRESHOLDS:
        if balance >= minimum:
            return tier
    return "bronze"


def make_reference(prefix: str, today: date) -> str:
    return f"{prefix}-{today:%y%m%d}-{secrets.token_hex(3).upper()}"


class RescheduleDecision(StrEnum):
    APPROVE = "approve"
    REJECT = "reject"
    EXPIRE = "expire"
