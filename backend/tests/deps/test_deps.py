import pytest
from booking_engine.config import get_settings
from booking_engine.deps import get_current_customer_id, get_engine_context, require_admin
from booking_engine.domain.pricing import VehicleSize
from fastapi import HTTPException


@pytest.fixture(autouse=True)
def _admin_token(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("ADMIN_TOKEN", "s3cret")
    monkeypatch.setenv("DEFAULT_VEHICLE_SIZE", "large")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.mark.asyncio
async def test_customer_id_from_header() -> None:
    assert await get_current_customer_id(x_customer_id="42") == 42


@pytest.mark.asyncio
async def test_missing_customer_header_is_401() -> None:
    with pytest.raises(HTTPException) as excinfo:
        await get_current_customer_id(x_customer_id=None)
    assert excinfo.value.status_code == 401


@pytest.mark.asyncio
@pytest.mark.parametrize("value", ["abc", "0", "-3"])
async def test_invalid_customer_header_is_400(value: str) -> None:
    with pytest.raises(HTTPException) as excinfo:
        await get_current_customer_id(x_customer_id=value)
    assert excinfo.value.status_code == 400


@pytest.mark.asyncio
async def test_admin_token_accepted() -> None:
    await require_admin(x_admin_token="s3cret")


@pytest.mark.asyncio
@pytest.mark.parametrize("token", [None, "wrong"])
async def test_admin_token_rejected(token: str | None) -> None:
    with pytest.raises(HTTPException) as excinfo:
        await require_admin(x_admin_token=token)
    assert excinfo.value.status_code == 403


@pytest.mark.asyncio
async def test_engine_context_uses_settings() -> None:
    ctx = await get_engine_context()
    assert ctx.settings.admin_token == "s3cret"
    assert await ctx.collaborators.size_resolver.resolve(1) == VehicleSize.LARGE
    assert "full_valet" in ctx.catalog
