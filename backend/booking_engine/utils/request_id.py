from __future__ import annotations

import logging
import uuid
from contextvars import ContextVar
from typing import Optional

REQUEST_ID_HEADER = "X-Request-ID"
MAX_REQUEST_ID_LENGTH = 128

_request_id_ctx: ContextVar[Optional[str]] = ContextVar("booking_request_id", default=None)


def generate_request_id() -> str:
    return uuid.uuid4().hex


def resolve_request_id(incoming: Optional[str]) -> str:
    """Reuse a caller-supplied id when it is usable, otherwise mint one."""
    if incoming:
        incoming = incoming.strip()
    if not incoming or len(incoming) > MAX_REQUEST_ID_LENGTH or not incoming.isprintable():
        return generate_request_id()
    return incoming


def set_request_id(request_id: Optional[str]) -> None:
    """Bind the id to the current task; None clears it."""
    _request_id_ctx.set(request_id)


def get_request_id() -> Optional[str]:
    return _request_id_ctx.get()


class RequestIdLogFilter(logging.Filter):
    """Stamp records with `request_id` so format strings can reference it."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id() or "-"
        return True
