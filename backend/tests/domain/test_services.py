import re
from datetime import date

import pytest
from booking_engine.domain.errors import (
    AlreadyTerminalError,
    RescheduleNotAllowedError,
    SlotUnavailableError,
    ValidationError,
    VersionConflictError,
)
from booking_engine.domain.services import (
    SlotSnapshot,
    ensure_active,
    ensure_reschedulable,
    explain_reservation_failure,
    make_reference,
    points_for_price,
    tier_for_balance,
)
from booking_engine.models import BookingStatus


def test_missing_slot_is_unavailable() -> None:
    err = explain_reservation_failure(None, expected_version=None)
    assert type(err) is SlotUnavailableError
    assert "not found" in str(err)


def test_blocked_slot_reported_before_capacity() -> None:
    snap = SlotSnapshot(is_blocked=True, capacity_max=1, capacity_used=1, version=3)
    assert "blocked" in str(explain_reservation_failure(snap, expected_version=None))


def test_full_slot_is_unavailable() -> None:
    snap = SlotSnapshot(is_blocked=False, capacity_max=2, capacity_used=2, version=3)
    err = explain_reservation_failure(snap, expected_version=3)
    assert type(err) is SlotUnavailableError
    assert "fully booked" in str(err)


def test_stale_version_is_a_conflict() -> None:
    snap = SlotSnapshot(is_blocked=False, capacity_max=2, capacity_used=1, version=4)
    err = explain_reservation_failure(snap, expected_version=3)
    assert isinstance(err, VersionConflictError)


def test_ensure_active_rejects_terminal_states() -> None:
    ensure_active(BookingStatus.PENDING)
    ensure_active(BookingStatus.CONFIRMED)
    for status in (BookingStatus.CANCELLED, BookingStatus.COMPLETED):
        with pytest.raises(AlreadyTerminalError):
            ensure_active(status)


def test_reschedule_limit_enforced() -> None:
    with pytest.raises(RescheduleNotAllowedError):
        ensure_reschedulable(
            status=BookingStatus.CONFIRMED,
            reschedule_count=3,
            max_reschedules=3,
            current_slot_id=1,
            new_slot_id=2,
        )


def test_reschedule_to_same_slot_rejected() -> None:
    with pytest.raises(ValidationError):
        ensure_reschedulable(
            status=BookingStatus.CONFIRMED,
            reschedule_count=0,
            max_reschedules=3,
            current_slot_id=1,
            new_slot_id=1,
        )


def test_points_are_base_plus_per_pound() -> None:
    assert points_for_price(5900, base_points=50, points_per_pound=1) == 109
    # 54.50 pounds rounds half-up to 55
    assert points_for_price(5450, base_points=50, points_per_pound=1) == 105
    assert points_for_price(0, base_points=50, points_per_pound=1) == 50


@pytest.mark.parametrize(
    "balance,tier",
    [(0, "bronze"), (499, "bronze"), (500, "silver"), (1000, "gold"), (1999, "gold"), (2000, "platinum")],
)
def test_tier_for_balance(balance: int, tier: str) -> None:
    assert tier_for_balance(balance) == tier


def test_reference_format() -> None:
    reference = make_reference("L4D", date(2030, 6, 3))
    assert re.fullmatch(r"L4D-300603-[0-9A-F]{6}", reference)
