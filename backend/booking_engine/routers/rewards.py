import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_current_customer_id, get_session
from ..domain.errors import InsufficientPointsError
from ..infrastructure.repositories import SqlAlchemyRewardRepository
from ..schemas import RewardRedeem, RewardSummaryRead, RewardTransactionRead
from ..usecases import rewards as reward_usecase
from ..utils.audit_log import emit_audit_log

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/me/rewards", tags=["rewards"])


@router.get("", response_model=RewardSummaryRead)
async def get_my_rewards(
    session: AsyncSession = Depends(get_session),
    customer_id: int = Depends(get_current_customer_id),
) -> RewardSummaryRead:
    reward_repo = SqlAlchemyRewardRepository(session)
    summary = await reward_usecase.get_summary(reward_repo, customer_id=customer_id)
    return RewardSummaryRead.from_summary(summary)


@router.post("/redeem", response_model=RewardTransactionRead, status_code=status.HTTP_201_CREATED)
async def redeem_points(
    payload: RewardRedeem,
    session: AsyncSession = Depends(get_session),
    customer_id: int = Depends(get_current_customer_id),
) -> RewardTransactionRead:
    reward_repo = SqlAlchemyRewardRepository(session)
    async with session.begin():
        try:
            transaction = await reward_usecase.redeem(
                reward_repo,
                customer_id=customer_id,
                points_amount=payload.points_amount,
                description=payload.description,
            )
        except InsufficientPointsError as exc:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))

    try:
        emit_audit_log(
            action="reward.redeemed",
            initiator="customer",
            booking_id=None,
            slot_id=None,
            customer_id=customer_id,
            extra={"points_amount": payload.points_amount, "transaction_id": transaction.id},
        )
    except RuntimeError:
        logger.error("audit log failed for reward.redeemed", exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="audit log failed")
    return RewardTransactionRead.from_db(transaction=transaction)
