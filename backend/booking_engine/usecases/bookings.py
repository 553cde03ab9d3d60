"""
Booking allocation and cancellation.

A booking attempt moves through: requested -> slot reserved -> priced ->
persisted -> complete, or rolled back. The slot reservation is committed on
its own before the booking row is written; if anything after it fails (an
error, a price mismatch, a caller timeout) the reservation is released again
in a separate transaction before the error reaches the caller.
"""

import asyncio
import logging
from datetime import date, timedelta
from typing import Awaitable, Callable, List, Optional, TypeVar

from ..domain.errors import InvariantViolation, NotFoundError, ValidationError
from ..domain.pricing import VehicleSize, compute_price, resolve_size
from ..domain.repositories import BookingRepository
from ..domain.services import ensure_active, make_reference, points_for_price
from ..models import Booking, BookingStatus, RescheduleStatus, TimeSlot
from ..utils.time import local_today, utc_now_naive
from . import rewards as reward_usecase
from . import slots as slot_usecase
from .context import EngineContext

logger = logging.getLogger(__name__)

_REFERENCE_ATTEMPTS = 5

T = TypeVar("T")


def quote_price(
    ctx: EngineContext,
    *,
    service_id: str,
    vehicle_size: str | VehicleSize,
    slot_date: date,
    is_repeat_customer: bool,
) -> int:
    return compute_price(
        ctx.catalog,
        service_id=service_id,
        vehicle_size=vehicle_size,
        slot_date=slot_date,
        is_repeat_customer=is_repeat_customer,
        repeat_discount_percent=ctx.settings.repeat_customer_discount_percent,
    )


async def create_booking(
    ctx: EngineContext,
    *,
    customer_id: int,
    vehicle_id: int,
    service_id: str,
    slot_id: int,
    vehicle_size: Optional[str | VehicleSize] = None,
    quoted_price_pence: Optional[int] = None,
    expected_slot_version: Optional[int] = None,
) -> tuple[Booking, TimeSlot]:
    # Everything that can be rejected as bad input is checked before the slot is touched.
    ctx.catalog.get(service_id)
    if vehicle_size is not None:
        size = resolve_size(vehicle_size)
    else:
        size = resolve_size(await ctx.collaborators.size_resolver.resolve(vehicle_id))
    if quoted_price_pence is not None and quoted_price_pence < 0:
        raise ValidationError("quoted_price_pence must not be negative")

    async with ctx.uow_factory() as uow:
        is_repeat = await uow.bookings.count_completed_for_customer(customer_id) > 0

    slot = await shielded_claim(ctx, _reserve_slot(ctx, slot_id, expected_slot_version), lambda reserved: reserved.id)
    logger.info("slot %s reserved for customer %s (%d/%d)", slot_id, customer_id, slot.capacity_used, slot.capacity_max)

    try:
        price = quote_price(
            ctx,
            service_id=service_id,
            vehicle_size=size,
            slot_date=slot.slot_date,
            is_repeat_customer=is_repeat,
        )
        if quoted_price_pence is not None and quoted_price_pence != price:
            logger.error(
                "quoted price %d does not match charge %d for customer %s service %s size %s slot %s",
                quoted_price_pence,
                price,
                customer_id,
                service_id,
                size.value,
                slot_id,
            )
            raise InvariantViolation("quoted price does not match the charge")

        initial_status = (
            BookingStatus.PENDING if ctx.settings.payment_model == "prepaid" else BookingStatus.CONFIRMED
        )
        async with ctx.uow_factory() as uow:
            reference = await _unique_reference(uow.bookings, ctx.settings.booking_reference_prefix)
            booking = await uow.bookings.create(
                reference=reference,
                slot_id=slot.id,
                customer_id=customer_id,
                vehicle_id=vehicle_id,
                service_id=service_id,
                vehicle_size=size.value,
                status=initial_status,
                total_price_pence=price,
            )
            points = points_for_price(
                price,
                base_points=ctx.settings.points_base_per_booking,
                points_per_pound=ctx.settings.points_per_pound,
            )
            if points > 0:
                await reward_usecase.earn(
                    uow.rewards,
                    customer_id=customer_id,
                    booking_id=booking.id,
                    points_amount=points,
                    expires_at=utc_now_naive() + timedelta(days=ctx.settings.points_expiry_days),
                    description=f"Booking {reference}",
                )
    except BaseException:
        # Also runs on cancellation: a caller timeout must not leak the reservation.
        await asyncio.shield(compensate_reservation(ctx, slot_id))
        raise

    logger.info("booking %s created on slot %s for %d pence", booking.reference, slot_id, price)
    await ctx.collaborators.notify("booking.created", booking)
    if booking.status == BookingStatus.CONFIRMED:
        await _capture_payment(ctx, booking)
    return booking, slot


async def _unique_reference(booking_repo: BookingRepository, prefix: str) -> str:
    for _ in range(_REFERENCE_ATTEMPTS):
        reference = make_reference(prefix, local_today())
        if not await booking_repo.reference_exists(reference):
            return reference
    raise InvariantViolation("could not allocate a unique booking reference")


async def _reserve_slot(ctx: EngineContext, slot_id: int, expected_version: Optional[int]) -> TimeSlot:
    async with ctx.uow_factory() as uow:
        return await slot_usecase.reserve(uow.slots, slot_id=slot_id, expected_version=expected_version)


async def shielded_claim(
    ctx: EngineContext,
    claim: Awaitable[T],
    claimed_slot: Callable[[T], Optional[int]],
) -> T:
    """
    Await a unit of work that reserves a slot without letting a caller
    cancellation cut it off between its commit and its return.

    If the caller is cancelled, the claim still runs to the end and whatever
    slot it reserved (``claimed_slot(result)``) is released again.
    """
    task = asyncio.ensure_future(claim)
    try:
        return await asyncio.shield(task)
    except asyncio.CancelledError:
        await asyncio.shield(_release_abandoned_claim(ctx, task, claimed_slot))
        raise


async def _release_abandoned_claim(
    ctx: EngineContext,
    task: "asyncio.Future[T]",
    claimed_slot: Callable[[T], Optional[int]],
) -> None:
    try:
        result = await task
    except Exception:
        logger.info("slot claim abandoned by its caller did not complete", exc_info=True)
        return
    slot_id = claimed_slot(result)
    if slot_id is not None:
        await compensate_reservation(ctx, slot_id)


async def compensate_reservation(ctx: EngineContext, slot_id: int) -> None:
    try:
        async with ctx.uow_factory() as uow:
            await slot_usecase.release(uow.slots, slot_id=slot_id)
    except Exception:
        logger.critical("failed to release slot %s after an aborted operation; capacity leaked", slot_id, exc_info=True)
        return
    logger.warning("released slot %s after an aborted operation", slot_id)


async def _capture_payment(ctx: EngineContext, booking: Booking) -> None:
    try:
        await ctx.collaborators.payments.capture(booking)
    except Exception:
        logger.error("payment capture failed for booking %s", booking.reference, exc_info=True)


async def _load_booking(booking_repo: BookingRepository, booking_id: int, customer_id: Optional[int]) -> Booking:
    booking = await booking_repo.get_for_update(booking_id)
    if booking is None or (customer_id is not None and booking.customer_id != customer_id):
        raise NotFoundError("booking not found")
    return booking


async def cancel_booking(
    ctx: EngineContext,
    *,
    booking_id: int,
    reason: Optional[str] = None,
    customer_id: Optional[int] = None,
) -> Booking:
    """
    Cancel, free the slot, offset the booking's reward points and close any
    pending reschedule request, all in one transaction.
    """
    async with ctx.uow_factory() as uow:
        booking = await _load_booking(uow.bookings, booking_id, customer_id)
        ensure_active(booking.status)
        if booking.slot_id is None:
            raise InvariantViolation(f"active booking {booking.id} has no slot")

        await slot_usecase.release(uow.slots, slot_id=booking.slot_id)
        booking.status = BookingStatus.CANCELLED
        booking.cancellation_reason = reason
        booking.version += 1
        await uow.bookings.save(booking)

        await reward_usecase.reverse_booking_points(
            uow.rewards,
            customer_id=booking.customer_id,
            booking_id=booking.id,
        )
        for request in await uow.reschedules.list_for_booking(booking.id):
            if request.status == RescheduleStatus.PENDING:
                request.status = RescheduleStatus.REJECTED
                request.resolution_note = "booking cancelled"
                request.resolved_at = utc_now_naive()
                await uow.reschedules.save(request)

    logger.info("booking %s cancelled (%s)", booking.reference, reason or "no reason given")
    await ctx.collaborators.notify("booking.cancelled", booking)
    return booking


async def confirm_booking(ctx: EngineContext, *, booking_id: int) -> Booking:
    async with ctx.uow_factory() as uow:
        booking = await _load_booking(uow.bookings, booking_id, None)
        ensure_active(booking.status)
        if booking.status != BookingStatus.PENDING:
            raise ValidationError("booking is already confirmed")
        booking.status = BookingStatus.CONFIRMED
        booking.version += 1
        await uow.bookings.save(booking)

    await ctx.collaborators.notify("booking.confirmed", booking)
    await _capture_payment(ctx, booking)
    return booking


async def complete_booking(ctx: EngineContext, *, booking_id: int) -> Booking:
    """Completed bookings keep their slot unit: the slot did serve them."""
    async with ctx.uow_factory() as uow:
        booking = await _load_booking(uow.bookings, booking_id, None)
        ensure_active(booking.status)
        if booking.status != BookingStatus.CONFIRMED:
            raise ValidationError("booking must be confirmed before it can be completed")
        booking.status = BookingStatus.COMPLETED
        booking.version += 1
        await uow.bookings.save(booking)

    await ctx.collaborators.notify("booking.completed", booking)
    return booking


async def get_booking(ctx: EngineContext, *, booking_id: int, customer_id: Optional[int] = None) -> Booking:
    async with ctx.uow_factory() as uow:
        booking = await uow.bookings.get(booking_id)
    if booking is None or (customer_id is not None and booking.customer_id != customer_id):
        raise NotFoundError("booking not found")
    return booking


async def list_customer_bookings(ctx: EngineContext, *, customer_id: int) -> List[Booking]:
    async with ctx.uow_factory() as uow:
        return await uow.bookings.list_by_customer(customer_id)
