import logging
from typing import Any, List

from fastapi import APIRouter, Depends, HTTPException, Path, status

from ..deps import get_current_customer_id, get_engine_context, require_admin
from ..domain.errors import (
    AlreadyTerminalError,
    NotFoundError,
    SlotUnavailableError,
    ValidationError,
    VersionConflictError,
)
from ..models import BookingStatus
from ..schemas import BookingCancel, BookingCreate, BookingRead
from ..usecases import bookings as booking_usecase
from ..usecases.context import EngineContext
from ..utils.audit_log import emit_audit_log

logger = logging.getLogger(__name__)

router = APIRouter(prefix="", tags=["bookings"])
admin_router = APIRouter(prefix="/admin/bookings", tags=["bookings"], dependencies=[Depends(require_admin)])


def _audit(**kwargs: Any) -> None:
    try:
        emit_audit_log(**kwargs)
    except RuntimeError:
        logger.error("audit log failed for %s", kwargs.get("action"), exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="audit log failed")


@router.post("/bookings", response_model=BookingRead, status_code=status.HTTP_201_CREATED)
async def create_booking(
    payload: BookingCreate,
    ctx: EngineContext = Depends(get_engine_context),
    customer_id: int = Depends(get_current_customer_id),
) -> BookingRead:
    try:
        booking, slot = await booking_usecase.create_booking(
            ctx,
            customer_id=customer_id,
            vehicle_id=payload.vehicle_id,
            service_id=payload.service_id,
            slot_id=payload.slot_id,
            vehicle_size=payload.vehicle_size,
            quoted_price_pence=payload.quoted_price_pence,
            expected_slot_version=payload.slot_version,
        )
    except VersionConflictError:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="slot changed, reload availability")
    except SlotUnavailableError:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="slot no longer available, pick another")
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))

    _audit(
        action="booking.created",
        initiator="customer",
        booking_id=booking.id,
        slot_id=slot.id,
        customer_id=customer_id,
        status_from=None,
        status_to=booking.status,
        version=booking.version,
        extra={"total_price_pence": booking.total_price_pence, "reference": booking.reference},
    )
    return BookingRead.from_db(booking=booking)


@router.get("/me/bookings", response_model=List[BookingRead])
async def list_my_bookings(
    ctx: EngineContext = Depends(get_engine_context),
    customer_id: int = Depends(get_current_customer_id),
) -> list[BookingRead]:
    rows = await booking_usecase.list_customer_bookings(ctx, customer_id=customer_id)
    return [BookingRead.from_db(booking=booking) for booking in rows]


@router.get("/me/bookings/{booking_id}", response_model=BookingRead)
async def get_my_booking(
    booking_id: int = Path(..., ge=1),
    ctx: EngineContext = Depends(get_engine_context),
    customer_id: int = Depends(get_current_customer_id),
) -> BookingRead:
    try:
        booking = await booking_usecase.get_booking(ctx, booking_id=booking_id, customer_id=customer_id)
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="booking not found")
    return BookingRead.from_db(booking=booking)


@router.post("/me/bookings/{booking_id}/cancel", response_model=BookingRead)
async def cancel_booking(
    payload: BookingCancel,
    booking_id: int = Path(..., ge=1),
    ctx: EngineContext = Depends(get_engine_context),
    customer_id: int = Depends(get_current_customer_id),
) -> BookingRead:
    try:
        booking = await booking_usecase.cancel_booking(
            ctx,
            booking_id=booking_id,
            reason=payload.reason,
            customer_id=customer_id,
        )
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="booking not found")
    except AlreadyTerminalError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))

    _audit(
        action="booking.cancelled",
        initiator="customer",
        booking_id=booking.id,
        slot_id=booking.slot_id,
        customer_id=customer_id,
        status_to=BookingStatus.CANCELLED,
        version=booking.version,
        message=payload.reason,
    )
    return BookingRead.from_db(booking=booking)


@admin_router.post("/{booking_id}/confirm", response_model=BookingRead)
async def confirm_booking(
    booking_id: int = Path(..., ge=1),
    ctx: EngineContext = Depends(get_engine_context),
) -> BookingRead:
    try:
        booking = await booking_usecase.confirm_booking(ctx, booking_id=booking_id)
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="booking not found")
    except (AlreadyTerminalError, ValidationError) as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))

    _audit(
        action="booking.confirmed",
        initiator="admin",
        booking_id=booking.id,
        slot_id=booking.slot_id,
        customer_id=booking.customer_id,
        status_from=BookingStatus.PENDING,
        status_to=booking.status,
        version=booking.version,
    )
    return BookingRead.from_db(booking=booking)


@admin_router.post("/{booking_id}/complete", response_model=BookingRead)
async def complete_booking(
    booking_id: int = Path(..., ge=1),
    ctx: EngineContext = Depends(get_engine_context),
) -> BookingRead:
    try:
        booking = await booking_usecase.complete_booking(ctx, booking_id=booking_id)
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="booking not found")
    except (AlreadyTerminalError, ValidationError) as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))

    _audit(
        action="booking.completed",
        initiator="admin",
        booking_id=booking.id,
        slot_id=booking.slot_id,
        customer_id=booking.customer_id,
        status_from=BookingStatus.CONFIRMED,
        status_to=booking.status,
        version=booking.version,
    )
    return BookingRead.from_db(booking=booking)
