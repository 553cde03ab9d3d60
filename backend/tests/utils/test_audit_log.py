import json
from typing import Any, List

import pytest
from booking_engine.models import BookingStatus
from booking_engine.utils import audit_log
from booking_engine.utils.request_id import set_request_id


def test_emit_audit_log_outputs_json(monkeypatch) -> None:
    messages: List[str] = []

    class DummyLogger:
        def info(self, message: str) -> None:
            messages.append(message)

    dummy_logger = DummyLogger()
    monkeypatch.setattr(audit_log, "_audit_logger", dummy_logger)

    set_request_id("req-123")
    audit_log.emit_audit_log(
        action="booking.created",
        initiator="customer",
        booking_id=1,
        slot_id=2,
        customer_id=4,
        status_from=None,
        status_to=BookingStatus.CONFIRMED,
        version=1,
        extra={"total_price_pence": 5900},
    )
    set_request_id(None)
    assert len(messages) == 1
    payload = json.loads(messages[0])
    assert payload["action"] == "booking.created"
    assert payload["initiator"] == "customer"
    assert payload["request_id"] == "req-123"
    assert payload["status_to"] == "confirmed"
    assert payload["total_price_pence"] == 5900
    assert "status_from" not in payload
    assert "timestamp" in payload


def test_emit_audit_log_raises_on_logger_failure(monkeypatch) -> None:
    class DummyLogger:
        def info(self, _: Any) -> None:
            raise ValueError("fail")

    dummy_logger = DummyLogger()
    monkeypatch.setattr(audit_log, "_audit_logger", dummy_logger)

    with pytest.raises(RuntimeError):
        audit_log.emit_audit_log(
            action="booking.cancelled",
            initiator="customer",
            booking_id=1,
            slot_id=2,
            customer_id=4,
            status_from=BookingStatus.CONFIRMED,
            status_to=BookingStatus.CANCELLED,
            version=2,
        )


def test_audit_entry_merges_extra_and_drops_empty_fields() -> None:
    entry = audit_log.AuditEntry(
        action="reward.redeemed",
        initiator="customer",
        booking_id=None,
        slot_id=None,
        customer_id=7,
        extra={"points_amount": 250},
    )
    payload = json.loads(entry.as_json())
    assert payload["points_amount"] == 250
    assert payload["level"] == "info"
    assert "booking_id" not in payload
    assert "extra" not in payload


def test_extra_cannot_overwrite_correlation_id(monkeypatch) -> None:
    messages: List[str] = []

    class DummyLogger:
        def info(self, message: str) -> None:
            messages.append(message)

    monkeypatch.setattr(audit_log, "_audit_logger", DummyLogger())
    with pytest.raises(ValueError, match="request_id"):
        audit_log.emit_audit_log(
            action="reschedule.requested",
            initiator="customer",
            booking_id=1,
            slot_id=2,
            customer_id=4,
            extra={"request_id": 3},
        )
    assert messages == []
