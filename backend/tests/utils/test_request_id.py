import logging

import pytest
from booking_engine.domain.errors import InvariantViolation
from booking_engine.main import GENERIC_FAILURE_DETAIL, invariant_violation_handler, request_id_middleware
from booking_engine.utils.request_id import (
    REQUEST_ID_HEADER,
    RequestIdLogFilter,
    generate_request_id,
    get_request_id,
    resolve_request_id,
    set_request_id,
)
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient


def _app() -> FastAPI:
    app = FastAPI()

    @app.get("/check")
    async def check() -> dict[str, str]:
        return {"rid": get_request_id() or ""}

    @app.get("/broken")
    async def broken() -> dict[str, str]:
        raise InvariantViolation("slot 3 capacity_used=-1")

    app.middleware("http")(request_id_middleware)
    app.add_exception_handler(InvariantViolation, invariant_violation_handler)
    return app


def test_request_id_set_and_get() -> None:
    set_request_id("req-abc")
    assert get_request_id() == "req-abc"
    set_request_id(None)
    assert get_request_id() is None


def test_generated_ids_are_unique() -> None:
    assert generate_request_id() != generate_request_id()


def test_log_filter_stamps_records() -> None:
    record = logging.LogRecord("x", logging.INFO, __file__, 1, "hello", None, None)
    set_request_id("req-log")
    assert RequestIdLogFilter().filter(record) is True
    set_request_id(None)
    assert getattr(record, "request_id") == "req-log"


@pytest.mark.asyncio
async def test_middleware_generates_and_echoes_id() -> None:
    transport = ASGITransport(app=_app())
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.get("/check")
    assert resp.status_code == 200
    assert resp.headers.get(REQUEST_ID_HEADER)
    assert resp.json()["rid"] == resp.headers[REQUEST_ID_HEADER]


@pytest.mark.asyncio
async def test_middleware_keeps_incoming_id() -> None:
    transport = ASGITransport(app=_app())
    async with AsyncClient(transport=transport, base_url="http://test", headers={REQUEST_ID_HEADER: "req-custom-123"}) as client:
        resp = await client.get("/check")
    assert resp.headers[REQUEST_ID_HEADER] == "req-custom-123"
    assert resp.json()["rid"] == "req-custom-123"


@pytest.mark.asyncio
async def test_invariant_violation_hidden_behind_generic_message() -> None:
    transport = ASGITransport(app=_app(), raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.get("/broken")
    assert resp.status_code == 500
    assert resp.json() == {"detail": GENERIC_FAILURE_DETAIL}
    assert "capacity_used" not in resp.text


@pytest.mark.parametrize("incoming", [None, "", "   ", "x" * 200, "bad\nid"])
def test_unusable_incoming_ids_are_replaced(incoming: str | None) -> None:
    resolved = resolve_request_id(incoming)
    assert resolved != incoming
    assert len(resolved) == 32


def test_usable_incoming_id_is_kept() -> None:
    assert resolve_request_id(" req-42 ") == "req-42"
