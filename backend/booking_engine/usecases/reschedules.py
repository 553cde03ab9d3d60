import asyncio
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from ..domain.errors import (
    DuplicatePendingRequestError,
    InvariantViolation,
    NotFoundError,
    RequestAlreadyResolvedError,
    RescheduleExpiredError,
    RescheduleInconsistencyError,
    SlotUnavailableError,
)
from ..domain.repositories import RescheduleRepository
from ..domain.services import RescheduleDecision, ensure_active, ensure_reschedulable
from ..models import Booking, RescheduleRequest, RescheduleStatus, TimeSlot
from ..utils.time import utc_now_naive
from .bookings import compensate_reservation, shielded_claim
from . import slots as slot_usecase
from .context import EngineContext

logger = logging.getLogger(__name__)


async def request_reschedule(
    ctx: EngineContext,
    *,
    booking_id: int,
    new_slot_id: int,
    reason: Optional[str] = None,
    customer_id: Optional[int] = None,
) -> RescheduleRequest:
    """Record the customer's wish to move. Slot occupancy is not touched here."""
    async with ctx.uow_factory() as uow:
        booking = await uow.bookings.get_for_update(booking_id)
        if booking is None or (customer_id is not None and booking.customer_id != customer_id):
            raise NotFoundError("booking not found")
        ensure_reschedulable(
            status=booking.status,
            reschedule_count=booking.reschedule_count,
            max_reschedules=ctx.settings.max_reschedules_per_booking,
            current_slot_id=booking.slot_id,
            new_slot_id=new_slot_id,
        )
        target = await uow.slots.get(new_slot_id)
        if target is None:
            raise NotFoundError("slot not found")
        if target.is_blocked or target.remaining == 0:
            raise SlotUnavailableError("requested slot is not available")
        if await uow.reschedules.has_pending(booking.id):
            raise DuplicatePendingRequestError("booking already has a pending reschedule request")

        request = await uow.reschedules.create(
            booking_id=booking.id,
            original_slot_id=booking.slot_id,
            requested_slot_id=new_slot_id,
            reason=reason,
            expires_at=utc_now_naive() + timedelta(hours=ctx.settings.reschedule_request_ttl_hours),
        )

    logger.info("reschedule request %s: booking %s -> slot %s", request.id, booking.reference, new_slot_id)
    await ctx.collaborators.notify("reschedule.requested", booking)
    return request


async def _load_pending(reschedule_repo: RescheduleRepository, request_id: int) -> RescheduleRequest:
    request = await reschedule_repo.get_for_update(request_id)
    if request is None:
        raise NotFoundError("reschedule request not found")
    if request.status != RescheduleStatus.PENDING:
        raise RequestAlreadyResolvedError(f"reschedule request is already {request.status.value}")
    return request


def _close(request: RescheduleRequest, status: RescheduleStatus, note: Optional[str], now: datetime) -> None:
    request.status = status
    request.resolution_note = note
    request.resolved_at = now


async def _claim_requested_slot(
    ctx: EngineContext, request_id: int, now: datetime
) -> Optional[tuple[int, TimeSlot]]:
    """Reserve the requested slot; returns None after marking an overdue request expired."""
    async with ctx.uow_factory() as uow:
        request = await _load_pending(uow.reschedules, request_id)
        if request.expires_at <= now:
            _close(request, RescheduleStatus.EXPIRED, "expired before approval", now)
            await uow.reschedules.save(request)
            return None
        booking = await uow.bookings.get(request.booking_id)
        if booking is None:
            raise InvariantViolation(f"reschedule request {request_id} points at a missing booking")
        ensure_active(booking.status)
        if booking.slot_id is None:
            raise InvariantViolation(f"active booking {booking.id} has no slot")
        new_slot = await slot_usecase.reserve(uow.slots, slot_id=request.requested_slot_id)
        return booking.slot_id, new_slot


async def resolve_reschedule(
    ctx: EngineContext,
    *,
    request_id: int,
    decision: RescheduleDecision,
    note: Optional[str] = None,
    now: Optional[datetime] = None,
) -> tuple[RescheduleRequest, Booking]:
    """
    Approve, reject or expire a pending request.

    Approval claims the new slot first and commits that claim; if the slot is
    gone the booking is untouched and the request stays pending. The old slot
    is then released and the booking moved in a second transaction. If that
    second step fails the new claim is released again; a failure of the
    release itself is reported as an inconsistency for an operator.
    """
    now = now or utc_now_naive()
    if decision != RescheduleDecision.APPROVE:
        return await _close_without_swap(ctx, request_id=request_id, decision=decision, note=note, now=now)

    claim = await shielded_claim(
        ctx,
        _claim_requested_slot(ctx, request_id, now),
        lambda claimed: claimed[1].id if claimed else None,
    )
    if claim is None:
        raise RescheduleExpiredError("reschedule request has expired")
    old_slot_id, new_slot = claim

    try:
        async with ctx.uow_factory() as uow:
            request = await _load_pending(uow.reschedules, request_id)
            booking = await uow.bookings.get_for_update(request.booking_id)
            if booking is None:
                raise InvariantViolation(f"booking {request.booking_id} disappeared during reschedule")
            ensure_active(booking.status)
            if booking.slot_id != old_slot_id:
                raise InvariantViolation(f"booking {booking.id} changed slot during reschedule")

            await slot_usecase.release(uow.slots, slot_id=old_slot_id)
            booking.slot_id = new_slot.id
            booking.reschedule_count += 1
            booking.version += 1
            await uow.bookings.save(booking)
            _close(request, RescheduleStatus.APPROVED, note, now)
            await uow.reschedules.save(request)
    except InvariantViolation as exc:
        await asyncio.shield(compensate_reservation(ctx, new_slot.id))
        logger.critical(
            "reschedule request %s: swap from slot %s to %s failed after the new slot was claimed: %s",
            request_id,
            old_slot_id,
            new_slot.id,
            exc,
        )
        raise RescheduleInconsistencyError(str(exc)) from exc
    except BaseException:
        await asyncio.shield(compensate_reservation(ctx, new_slot.id))
        raise

    logger.info("booking %s moved from slot %s to slot %s", booking.reference, old_slot_id, new_slot.id)
    await ctx.collaborators.notify("booking.rescheduled", booking)
    return request, booking


async def _close_without_swap(
    ctx: EngineContext,
    *,
    request_id: int,
    decision: RescheduleDecision,
    note: Optional[str],
    now: datetime,
) -> tuple[RescheduleRequest, Booking]:
    status = RescheduleStatus.REJECTED if decision == RescheduleDecision.REJECT else RescheduleStatus.EXPIRED
    async with ctx.uow_factory() as uow:
        request = await _load_pending(uow.reschedules, request_id)
        booking = await uow.bookings.get(request.booking_id)
        if booking is None:
            raise InvariantViolation(f"reschedule request {request_id} points at a missing booking")
        _close(request, status, note, now)
        await uow.reschedules.save(request)

    logger.info("reschedule request %s %s", request_id, status.value)
    if status == RescheduleStatus.REJECTED:
        await ctx.collaborators.notify("reschedule.rejected", booking)
    return request, booking


async def expire_stale_requests(ctx: EngineContext, *, now: Optional[datetime] = None) -> List[RescheduleRequest]:
    now = now or utc_now_naive()
    async with ctx.uow_factory() as uow:
        stale = await uow.reschedules.list_pending_expired(now)
        for request in stale:
            _close(request, RescheduleStatus.EXPIRED, "expired without a decision", now)
            await uow.reschedules.save(request)
    if stale:
        logger.info("expired %d stale reschedule requests", len(stale))
    return stale


async def list_booking_requests(
    ctx: EngineContext,
    *,
    booking_id: int,
    customer_id: Optional[int] = None,
) -> List[RescheduleRequest]:
    async with ctx.uow_factory() as uow:
        booking = await uow.bookings.get(booking_id)
        if booking is None or (customer_id is not None and booking.customer_id != customer_id):
            raise NotFoundError("booking not found")
        return await uow.reschedules.list_for_booking(booking_id)
