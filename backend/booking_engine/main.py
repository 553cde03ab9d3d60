import logging
from typing import Awaitable, Callable

from fastapi import FastAPI, Request, Response, status
from fastapi.responses import JSONResponse

from .domain.errors import InvariantViolation
from .routers import bookings, pricing, reschedules, rewards, slots
from .utils.request_id import REQUEST_ID_HEADER, RequestIdLogFilter, resolve_request_id, set_request_id

logger = logging.getLogger(__name__)

GENERIC_FAILURE_DETAIL = "something went wrong, please try again"


def configure_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s [%(request_id)s] %(name)s: %(message)s")
    for handler in logging.getLogger().handlers:
        handler.addFilter(RequestIdLogFilter())


async def request_id_middleware(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
    set_request_id(request_id)
    try:
        response = await call_next(request)
    finally:
        set_request_id(None)
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


async def invariant_violation_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("invariant violation on %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": GENERIC_FAILURE_DETAIL},
    )


configure_logging()

app = FastAPI(title="Booking Engine API")
app.middleware("http")(request_id_middleware)
app.add_exception_handler(InvariantViolation, invariant_violation_handler)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


app.include_router(slots.router)
app.include_router(slots.admin_router)
app.include_router(pricing.router)
app.include_router(bookings.router)
app.include_router(bookings.admin_router)
app.include_router(reschedules.router)
app.include_router(reschedules.admin_router)
app.include_router(rewards.router)
