import logging
from datetime import date, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..deps import get_session, require_admin
from ..domain.errors import NotFoundError, ValidationError
from ..domain.schedule import build_weekly_template
from ..infrastructure.repositories import SqlAlchemySlotRepository
from ..schemas import SlotBlock, SlotCleanup, SlotCleanupResult, SlotRead, WeekGenerate, WeekGenerated
from ..usecases import slots as slot_usecase
from ..utils.time import local_today

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/slots", tags=["slots"])
admin_router = APIRouter(prefix="/admin/slots", tags=["slots"], dependencies=[Depends(require_admin)])


@router.get("/availability", response_model=List[SlotRead])
async def list_availability(
    start: date = Query(..., description="first day (inclusive)"),
    end: date = Query(..., description="last day (inclusive)"),
    min_duration: Optional[int] = Query(default=None, ge=1, description="only slots at least this many minutes long"),
    session: AsyncSession = Depends(get_session),
) -> list[SlotRead]:
    slot_repo = SqlAlchemySlotRepository(session)
    predicate = slot_usecase.fits_duration(min_duration) if min_duration is not None else None
    try:
        slots = slot_usecase.find_available(slot_repo, start=start, end=end, predicate=predicate)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    return [SlotRead.from_db(slot=slot) async for slot in slots]


@admin_router.post("/generate-week", response_model=WeekGenerated, status_code=status.HTTP_201_CREATED)
async def generate_week(
    payload: WeekGenerate,
    session: AsyncSession = Depends(get_session),
) -> WeekGenerated:
    slot_repo = SqlAlchemySlotRepository(session)
    try:
        template = build_weekly_template(
            working_days=payload.working_days,
            day_start=payload.day_start,
            day_end=payload.day_end,
            slots_per_day=payload.slots_per_day,
            slot_minutes=payload.slot_minutes,
            capacity=payload.capacity,
        )
        async with session.begin():
            result = await slot_usecase.generate_slots(slot_repo, week_start=payload.week_start, template=template)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    except IntegrityError:
        # Another generator created the same (date, start) concurrently; a retry skips it.
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="week is being generated concurrently, retry")

    return WeekGenerated(
        week_start=result.week_start,
        created=len(result.created),
        skipped=result.skipped,
        slots=[SlotRead.from_db(slot=slot) for slot in result.created],
    )


@admin_router.post("/{slot_id}/block", response_model=SlotRead)
async def set_blocked(
    payload: SlotBlock,
    slot_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
) -> SlotRead:
    slot_repo = SqlAlchemySlotRepository(session)
    async with session.begin():
        try:
            slot = await slot_usecase.set_slot_blocked(slot_repo, slot_id=slot_id, blocked=payload.blocked)
        except NotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="slot not found")
    return SlotRead.from_db(slot=slot)


@admin_router.post("/cleanup", response_model=SlotCleanupResult)
async def cleanup(
    payload: SlotCleanup,
    session: AsyncSession = Depends(get_session),
) -> SlotCleanupResult:
    before = payload.before or local_today() - timedelta(days=get_settings().slot_retention_days)
    slot_repo = SqlAlchemySlotRepository(session)
    async with session.begin():
        deleted = await slot_usecase.cleanup_slots(slot_repo, before=before)
    return SlotCleanupResult(before=before, deleted=deleted)
