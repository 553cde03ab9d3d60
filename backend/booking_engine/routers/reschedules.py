import logging
from typing import Any, List

from fastapi import APIRouter, Depends, HTTPException, Path, status

from ..deps import get_current_customer_id, get_engine_context, require_admin
from ..domain.errors import (
    AlreadyTerminalError,
    DuplicatePendingRequestError,
    NotFoundError,
    RequestAlreadyResolvedError,
    RescheduleExpiredError,
    RescheduleNotAllowedError,
    SlotUnavailableError,
    ValidationError,
)
from ..models import RescheduleStatus
from ..schemas import BookingRead, RescheduleCreate, RescheduleRead, RescheduleResolve, RescheduleResolved
from ..usecases import reschedules as reschedule_usecase
from ..usecases.context import EngineContext
from ..utils.audit_log import emit_audit_log

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/me/bookings", tags=["reschedules"])
admin_router = APIRouter(prefix="/admin/reschedule-requests", tags=["reschedules"], dependencies=[Depends(require_admin)])


def _audit(**kwargs: Any) -> None:
    try:
        emit_audit_log(**kwargs)
    except RuntimeError:
        logger.error("audit log failed for %s", kwargs.get("action"), exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="audit log failed")


@router.post(
    "/{booking_id}/reschedule-requests",
    response_model=RescheduleRead,
    status_code=status.HTTP_201_CREATED,
)
async def request_reschedule(
    payload: RescheduleCreate,
    booking_id: int = Path(..., ge=1),
    ctx: EngineContext = Depends(get_engine_context),
    customer_id: int = Depends(get_current_customer_id),
) -> RescheduleRead:
    try:
        request = await reschedule_usecase.request_reschedule(
            ctx,
            booking_id=booking_id,
            new_slot_id=payload.slot_id,
            reason=payload.reason,
            customer_id=customer_id,
        )
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    except RescheduleNotAllowedError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    except (DuplicatePendingRequestError, SlotUnavailableError, AlreadyTerminalError) as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))

    _audit(
        action="reschedule.requested",
        initiator="customer",
        booking_id=booking_id,
        slot_id=request.original_slot_id,
        customer_id=customer_id,
        status_to=request.status,
        extra={"reschedule_request_id": request.id, "slot_id_to": request.requested_slot_id},
    )
    return RescheduleRead.from_db(request=request)


@router.get("/{booking_id}/reschedule-requests", response_model=List[RescheduleRead])
async def list_reschedule_requests(
    booking_id: int = Path(..., ge=1),
    ctx: EngineContext = Depends(get_engine_context),
    customer_id: int = Depends(get_current_customer_id),
) -> list[RescheduleRead]:
    try:
        rows = await reschedule_usecase.list_booking_requests(ctx, booking_id=booking_id, customer_id=customer_id)
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="booking not found")
    return [RescheduleRead.from_db(request=request) for request in rows]


@admin_router.post("/{request_id}/resolve", response_model=RescheduleResolved)
async def resolve_reschedule(
    payload: RescheduleResolve,
    request_id: int = Path(..., ge=1),
    ctx: EngineContext = Depends(get_engine_context),
) -> RescheduleResolved:
    try:
        request, booking = await reschedule_usecase.resolve_reschedule(
            ctx,
            request_id=request_id,
            decision=payload.decision,
            note=payload.note,
        )
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    except RescheduleExpiredError:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="reschedule request has expired")
    except SlotUnavailableError:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="requested slot no longer available")
    except (RequestAlreadyResolvedError, AlreadyTerminalError) as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))

    if request.status == RescheduleStatus.APPROVED:
        _audit(
            action="booking.rescheduled",
            initiator="admin",
            booking_id=booking.id,
            slot_id=booking.slot_id,
            customer_id=booking.customer_id,
            status_from=booking.status,
            status_to=booking.status,
            version=booking.version,
            extra={"reschedule_request_id": request.id, "slot_id_from": request.original_slot_id},
        )
    else:
        _audit(
            action="reschedule.rejected" if request.status == RescheduleStatus.REJECTED else "reschedule.expired",
            initiator="admin",
            booking_id=booking.id,
            slot_id=booking.slot_id,
            customer_id=booking.customer_id,
            status_from=RescheduleStatus.PENDING,
            status_to=request.status,
            message=request.resolution_note,
            extra={"reschedule_request_id": request.id},
        )
    return RescheduleResolved(
        request=RescheduleRead.from_db(request=request),
        booking=BookingRead.from_db(booking=booking),
    )


@admin_router.post("/expire", response_model=List[RescheduleRead])
async def expire_stale(ctx: EngineContext = Depends(get_engine_context)) -> list[RescheduleRead]:
    expired = await reschedule_usecase.expire_stale_requests(ctx)
    for request in expired:
        _audit(
            action="reschedule.expired",
            initiator="system",
            booking_id=request.booking_id,
            slot_id=request.original_slot_id,
            customer_id=None,
            status_from=RescheduleStatus.PENDING,
            status_to=request.status,
            extra={"reschedule_request_id": request.id},
        )
    return [RescheduleRead.from_db(request=request) for request in expired]
