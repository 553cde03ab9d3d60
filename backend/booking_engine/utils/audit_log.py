from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional

from .request_id import get_request_id

AuditAction = Literal[
    "booking.created",
    "booking.confirmed",
    "booking.cancelled",
    "booking.completed",
    "booking.rescheduled",
    "reschedule.requested",
    "reschedule.rejected",
    "reschedule.expired",
    "reward.redeemed",
]
AuditInitiator = Literal["customer", "admin", "system"]

AUDIT_LOGGER_NAME = "audit"


def _build_audit_logger() -> logging.Logger:
    audit_logger = logging.getLogger(AUDIT_LOGGER_NAME)
    audit_logger.setLevel(logging.INFO)
    if not audit_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(message)s"))
        audit_logger.addHandler(handler)
    # One JSON document per line; the root formatter would wrap it.
    audit_logger.propagate = False
    return audit_logger


_audit_logger = _build_audit_logger()


@dataclass
class AuditEntry:
    action: AuditAction
    initiator: AuditInitiator
    booking_id: Optional[int]
    slot_id: Optional[int]
    customer_id: Optional[int]
    status_from: Optional[str] = None
    status_to: Optional[str] = None
    version: Optional[int] = None
    message: Optional[str] = None
    request_id: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    extra: dict[str, Any] = field(default_factory=dict)

    def as_json(self) -> str:
        body = asdict(self)
        extra = body.pop("extra")
        body["level"] = "info"
        clashes = sorted(extra.keys() & body.keys())
        if clashes:
            raise ValueError(f"audit extra keys shadow core fields: {', '.join(clashes)}")
        body.update(extra)
        return json.dumps({k: v for k, v in body.items() if v is not None}, ensure_ascii=True, default=str)


def _status(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


def emit_audit_log(
    *,
    action: AuditAction,
    initiator: AuditInitiator,
    booking_id: Optional[int],
    slot_id: Optional[int],
    customer_id: Optional[int],
    status_from: Optional[Any] = None,
    status_to: Optional[Any] = None,
    version: Optional[int] = None,
    message: Optional[str] = None,
    extra: Optional[dict[str, Any]] = None,
) -> None:
    """
    Write one audit line for a state change.

    Raises RuntimeError when the line cannot be written; callers treat a
    missing audit record as a failed request.
    """
    entry = AuditEntry(
        action=action,
        initiator=initiator,
        booking_id=booking_id,
        slot_id=slot_id,
        customer_id=customer_id,
        status_from=_status(status_from),
        status_to=_status(status_to),
        version=version,
        message=message,
        request_id=get_request_id(),
        extra=dict(extra or {}),
    )
    line = entry.as_json()
    try:
        _audit_logger.info(line)
    except Exception as exc:
        raise RuntimeError(f"failed to emit audit log for {action}") from exc
