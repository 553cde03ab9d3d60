import logging
from dataclasses import dataclass, field
from datetime import date
from typing import AsyncIterator, Callable, List, Optional

from ..domain.errors import InvariantViolation, NotFoundError, ValidationError
from ..domain.repositories import SlotRepository
from ..domain.schedule import WeeklyTemplate, expand_week
from ..domain.services import SlotSnapshot, explain_reservation_failure
from ..models import TimeSlot

logger = logging.getLogger(__name__)

SlotPredicate = Callable[[TimeSlot], bool]


@dataclass
class GenerationResult:
    week_start: date
    created: List[TimeSlot] = field(default_factory=list)
    skipped: int = 0


async def generate_slots(
    slot_repo: SlotRepository,
    *,
    week_start: date,
    template: WeeklyTemplate,
) -> GenerationResult:
    """Create the week's slots that do not exist yet. Existing slots are left untouched."""
    planned = expand_week(week_start, template)
    result = GenerationResult(week_start=week_start)
    for item in planned:
        slot = await slot_repo.create_if_absent(item)
        if slot is None:
            result.skipped += 1
        else:
            result.created.append(slot)
    logger.info(
        "generated slots for week %s: %d created, %d already present",
        week_start.isoformat(),
        len(result.created),
        result.skipped,
    )
    return result


def fits_duration(minimum_minutes: int) -> SlotPredicate:
    """Predicate keeping slots long enough for a job of `minimum_minutes`."""

    def predicate(slot: TimeSlot) -> bool:
        return slot.duration_minutes >= minimum_minutes

    return predicate


def find_available(
    slot_repo: SlotRepository,
    *,
    start: date,
    end: date,
    predicate: Optional[SlotPredicate] = None,
) -> AsyncIterator[TimeSlot]:
    """
    Lazily yield bookable slots between `start` and `end` (inclusive), ordered
    by date, start time, then id. The range is validated before anything is read.
    """
    if not isinstance(start, date) or not isinstance(end, date):
        raise ValidationError("start and end must be calendar dates")
    if start > end:
        raise ValidationError("start must not be after end")
    return _iter_available(slot_repo, start, end, predicate)


async def _iter_available(
    slot_repo: SlotRepository,
    start: date,
    end: date,
    predicate: Optional[SlotPredicate],
) -> AsyncIterator[TimeSlot]:
    async for slot in slot_repo.stream_available(start, end):
        if predicate is None or predicate(slot):
            yield slot


async def reserve(
    slot_repo: SlotRepository,
    *,
    slot_id: int,
    expected_version: Optional[int] = None,
) -> TimeSlot:
    """
    Claim one unit of capacity. The check and the increment are one guarded
    UPDATE, so concurrent callers racing for the last unit cannot both win.
    """
    if await slot_repo.try_reserve(slot_id, expected_version):
        slot = await slot_repo.get(slot_id)
        if slot is None or slot.capacity_used > slot.capacity_max:
            raise InvariantViolation(f"slot {slot_id} inconsistent after reservation")
        return slot

    current = await slot_repo.get(slot_id)
    snapshot = (
        None
        if current is None
        else SlotSnapshot(
            is_blocked=current.is_blocked,
            capacity_max=current.capacity_max,
            capacity_used=current.capacity_used,
            version=current.version,
        )
    )
    raise explain_reservation_failure(snapshot, expected_version=expected_version)


async def release(slot_repo: SlotRepository, *, slot_id: int) -> TimeSlot:
    """Give back one unit of capacity. Releasing an empty slot is a caller bug."""
    if not await slot_repo.try_release(slot_id):
        current = await slot_repo.get(slot_id)
        if current is None:
            logger.error("release of missing slot %s", slot_id)
            raise InvariantViolation(f"cannot release slot {slot_id}: slot does not exist")
        logger.error("release would drive slot %s below zero capacity", slot_id)
        raise InvariantViolation(f"cannot release slot {slot_id}: no capacity in use")
    slot = await slot_repo.get(slot_id)
    if slot is None:
        raise InvariantViolation(f"slot {slot_id} vanished during release")
    return slot


async def set_slot_blocked(slot_repo: SlotRepository, *, slot_id: int, blocked: bool) -> TimeSlot:
    slot = await slot_repo.set_blocked(slot_id, blocked)
    if slot is None:
        raise NotFoundError("slot not found")
    logger.info("slot %s %s", slot_id, "blocked" if blocked else "unblocked")
    return slot


async def cleanup_slots(slot_repo: SlotRepository, *, before: date) -> int:
    """Delete slots dated before `before` that no live booking uses."""
    if not isinstance(before, date):
        raise ValidationError("before must be a calendar date")
    deleted = await slot_repo.delete_unused_before(before)
    logger.info("cleaned up %d unused slots dated before %s", deleted, before.isoformat())
    return deleted
