from datetime import date, datetime, timezone
from typing import Any, cast

import pytest
from booking_engine.config import Settings
from booking_engine.domain.collaborators import Collaborators, FallbackSizeResolver
from booking_engine.domain.errors import InsufficientPointsError
from booking_engine.domain.pricing import DEFAULT_SERVICES, ServiceCatalog, VehicleSize
from booking_engine.models import RewardTransaction, RewardTransactionType
from booking_engine.routers import pricing as pricing_router
from booking_engine.routers import rewards as rewards_router
from booking_engine.schemas import QuoteRequest, RewardRedeem
from booking_engine.usecases.context import EngineContext
from booking_engine.usecases.rewards import RewardSummary
from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncSession


class DummySession:
    async def __aenter__(self) -> "DummySession":
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> bool:
        return False

    def begin(self) -> "DummySession":
        return self


def _ctx() -> EngineContext:
    return EngineContext(
        uow_factory=lambda: None,  # type: ignore[arg-type,return-value]
        catalog=ServiceCatalog(DEFAULT_SERVICES),
        collaborators=Collaborators(size_resolver=FallbackSizeResolver("medium")),
        settings=Settings(),
    )


def _transaction(points: int) -> RewardTransaction:
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    return RewardTransaction(
        id=1,
        account_id=1,
        transaction_type=RewardTransactionType.REDEEMED if points < 0 else RewardTransactionType.EARNED,
        points_amount=points,
        related_booking_id=None,
        description="Points redeemed",
        created_at=now,
        expires_at=None,
    )


@pytest.mark.asyncio
async def test_quote_matches_pricing_rules() -> None:
    payload = QuoteRequest(service_id="full_valet", vehicle_size=VehicleSize.LARGE, slot_date=date(2030, 6, 3))
    result = await pricing_router.quote(payload=payload, ctx=_ctx())
    assert result.total_price_pence == 5900


@pytest.mark.asyncio
async def test_quote_unknown_service_returns_422() -> None:
    payload = QuoteRequest(service_id="wax", vehicle_size=VehicleSize.SMALL, slot_date=date(2030, 6, 3))
    with pytest.raises(HTTPException) as excinfo:
        await pricing_router.quote(payload=payload, ctx=_ctx())
    assert excinfo.value.status_code == 422


@pytest.mark.asyncio
async def test_redeem_emits_audit(monkeypatch: pytest.MonkeyPatch) -> None:
    transaction = _transaction(-100)

    async def fake_redeem(reward_repo: object, **kwargs: Any) -> RewardTransaction:
        assert kwargs["customer_id"] == 4
        assert kwargs["points_amount"] == 100
        return transaction

    calls: list[dict[str, Any]] = []
    monkeypatch.setattr(rewards_router, "SqlAlchemyRewardRepository", lambda s: s)
    monkeypatch.setattr(rewards_router.reward_usecase, "redeem", fake_redeem)
    monkeypatch.setattr(rewards_router, "emit_audit_log", lambda **kwargs: calls.append(kwargs))

    result = await rewards_router.redeem_points(
        payload=RewardRedeem(points_amount=100),
        session=cast(AsyncSession, DummySession()),
        customer_id=4,
    )
    assert result.points_amount == -100
    assert calls[0]["action"] == "reward.redeemed"
    assert calls[0]["extra"]["points_amount"] == 100


@pytest.mark.asyncio
async def test_redeem_beyond_balance_returns_409(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_redeem(*args: object, **kwargs: object) -> RewardTransaction:
        raise InsufficientPointsError("requested 100 points, balance is 20")

    monkeypatch.setattr(rewards_router, "SqlAlchemyRewardRepository", lambda s: s)
    monkeypatch.setattr(rewards_router.reward_usecase, "redeem", fake_redeem)

    with pytest.raises(HTTPException) as excinfo:
        await rewards_router.redeem_points(
            payload=RewardRedeem(points_amount=100),
            session=cast(AsyncSession, DummySession()),
            customer_id=4,
        )
    assert excinfo.value.status_code == 409


@pytest.mark.asyncio
async def test_summary_lists_history(monkeypatch: pytest.MonkeyPatch) -> None:
    summary = RewardSummary(customer_id=4, balance=600, tier="silver", history=[_transaction(600)])

    async def fake_summary(reward_repo: object, *, customer_id: int) -> RewardSummary:
        return summary

    monkeypatch.setattr(rewards_router, "SqlAlchemyRewardRepository", lambda s: s)
    monkeypatch.setattr(rewards_router.reward_usecase, "get_summary", fake_summary)

    result = await rewards_router.get_my_rewards(session=cast(AsyncSession, DummySession()), customer_id=4)
    assert result.tier == "silver"
    assert [tx.points_amount for tx in result.history] == [600]
