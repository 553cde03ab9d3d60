from fastapi import APIRouter, Depends, HTTPException, status

from ..deps import get_engine_context
from ..domain.errors import ValidationError
from ..schemas import QuoteRead, QuoteRequest
from ..usecases import bookings as booking_usecase
from ..usecases.context import EngineContext

router = APIRouter(prefix="/pricing", tags=["pricing"])


@router.post("/quote", response_model=QuoteRead)
async def quote(
    payload: QuoteRequest,
    ctx: EngineContext = Depends(get_engine_context),
) -> QuoteRead:
    try:
        price = booking_usecase.quote_price(
            ctx,
            service_id=payload.service_id,
            vehicle_size=payload.vehicle_size,
            slot_date=payload.slot_date,
            is_repeat_customer=payload.is_repeat_customer,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    return QuoteRead(
        service_id=payload.service_id,
        vehicle_size=payload.vehicle_size,
        slot_date=payload.slot_date,
        is_repeat_customer=payload.is_repeat_customer,
        total_price_pence=price,
    )
