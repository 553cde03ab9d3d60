import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from ..domain.errors import InsufficientPointsError, ValidationError
from ..domain.repositories import RewardRepository
from ..domain.services import tier_for_balance
from ..models import RewardTransaction, RewardTransactionType
from ..utils.time import utc_now_naive

logger = logging.getLogger(__name__)


@dataclass
class RewardSummary:
    customer_id: int
    balance: int
    tier: str
    history: List[RewardTransaction] = field(default_factory=list)


async def earn(
    reward_repo: RewardRepository,
    *,
    customer_id: int,
    booking_id: Optional[int],
    points_amount: int,
    expires_at: Optional[datetime],
    description: Optional[str] = None,
) -> RewardTransaction:
    if points_amount <= 0:
        raise ValidationError("points_amount must be positive")
    account = await reward_repo.get_or_create_account(customer_id)
    transaction = await reward_repo.add(
        account_id=account.id,
        transaction_type=RewardTransactionType.EARNED,
        points_amount=points_amount,
        related_booking_id=booking_id,
        description=description,
        expires_at=expires_at,
    )
    logger.info("customer %s earned %d points (booking %s)", customer_id, points_amount, booking_id)
    return transaction


async def redeem(
    reward_repo: RewardRepository,
    *,
    customer_id: int,
    points_amount: int,
    description: Optional[str] = None,
    now: Optional[datetime] = None,
) -> RewardTransaction:
    """
    Spend points. The account row is locked before the balance is read, so two
    redemptions for the same customer serialise and the second sees the first.
    """
    if points_amount <= 0:
        raise ValidationError("points_amount must be positive")
    now = now or utc_now_naive()
    account = await reward_repo.get_account_for_update(customer_id)
    if account is None:
        raise InsufficientPointsError(f"requested {points_amount} points, balance is 0")

    balance = await reward_repo.balance(account.id, now)
    if balance < points_amount:
        raise InsufficientPointsError(f"requested {points_amount} points, balance is {max(balance, 0)}")
    transaction = await reward_repo.add(
        account_id=account.id,
        transaction_type=RewardTransactionType.REDEEMED,
        points_amount=-points_amount,
        related_booking_id=None,
        description=description or "Points redeemed",
        expires_at=None,
    )
    logger.info("customer %s redeemed %d points", customer_id, points_amount)
    return transaction


async def reverse_booking_points(
    reward_repo: RewardRepository,
    *,
    customer_id: int,
    booking_id: int,
    now: Optional[datetime] = None,
) -> Optional[RewardTransaction]:
    """
    Offset the unexpired points a booking earned with a `redeemed` entry.
    The original entries stay as they are. The offset is capped at the current
    balance so the ledger never goes negative.
    """
    now = now or utc_now_naive()
    account = await reward_repo.get_account_for_update(customer_id)
    if account is None:
        return None

    outstanding = await reward_repo.net_for_booking(account.id, booking_id, now)
    balance = await reward_repo.balance(account.id, now)
    amount = min(outstanding, balance)
    if amount <= 0:
        return None
    if amount < outstanding:
        logger.warning(
            "booking %s reversal capped at %d of %d points (points already spent)",
            booking_id,
            amount,
            outstanding,
        )
    return await reward_repo.add(
        account_id=account.id,
        transaction_type=RewardTransactionType.REDEEMED,
        points_amount=-amount,
        related_booking_id=booking_id,
        description="Reversal for cancelled booking",
        expires_at=None,
    )


async def get_summary(
    reward_repo: RewardRepository,
    *,
    customer_id: int,
    now: Optional[datetime] = None,
) -> RewardSummary:
    now = now or utc_now_naive()
    account = await reward_repo.get_account(customer_id)
    if account is None:
        return RewardSummary(customer_id=customer_id, balance=0, tier=tier_for_balance(0))
    balance = max(await reward_repo.balance(account.id, now), 0)
    return RewardSummary(
        customer_id=customer_id,
        balance=balance,
        tier=tier_for_balance(balance),
        history=await reward_repo.history(account.id),
    )
