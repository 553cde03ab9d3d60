import secrets
from typing import AsyncIterator

from fastapi import Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from .config import get_settings
from .database import async_session
from .domain.collaborators import Collaborators, FallbackSizeResolver
from .domain.pricing import DEFAULT_SERVICES, ServiceCatalog
from .infrastructure.unit_of_work import unit_of_work_factory
from .usecases.context import EngineContext


async def get_session() -> AsyncIterator[AsyncSession]:
    async with async_session() as session:
        yield session


async def get_current_customer_id(x_customer_id: str | None = Header(default=None)) -> int:
    if x_customer_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="X-Customer-Id header required")
    try:
        customer_id = int(x_customer_id)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid X-Customer-Id") from exc
    if customer_id < 1:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid X-Customer-Id")
    return customer_id


async def require_admin(x_admin_token: str | None = Header(default=None)) -> None:
    expected = get_settings().admin_token
    if x_admin_token is None or not secrets.compare_digest(x_admin_token, expected):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="admin token required")


async def get_engine_context() -> EngineContext:
    settings = get_settings()
    return EngineContext(
        uow_factory=unit_of_work_factory(async_session),
        catalog=ServiceCatalog(DEFAULT_SERVICES),
        collaborators=Collaborators(size_resolver=FallbackSizeResolver(settings.default_vehicle_size)),
        settings=settings,
    )
