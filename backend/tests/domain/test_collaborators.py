import logging
from typing import cast

import pytest
from booking_engine.domain.collaborators import Collaborators, FallbackSizeResolver, LoggingNotifier, NoopPaymentGateway
from booking_engine.domain.errors import UnknownSizeError
from booking_engine.domain.pricing import VehicleSize
from booking_engine.models import Booking


class ExplodingNotifier:
    async def notify(self, event: str, booking: Booking) -> None:
        raise ConnectionError("smtp down")


@pytest.mark.asyncio
async def test_fallback_resolver_returns_default_size() -> None:
    resolver = FallbackSizeResolver("large")
    assert await resolver.resolve(42) == VehicleSize.LARGE


def test_fallback_resolver_rejects_unknown_default() -> None:
    with pytest.raises(UnknownSizeError):
        FallbackSizeResolver("lorry")


@pytest.mark.asyncio
async def test_failed_notification_is_logged_not_raised(caplog: pytest.LogCaptureFixture) -> None:
    collaborators = Collaborators(size_resolver=FallbackSizeResolver("medium"), notifier=ExplodingNotifier())
    booking = cast(Booking, Booking(reference="L4D-300603-ABCDEF"))
    with caplog.at_level(logging.WARNING):
        await collaborators.notify("booking.created", booking)
    assert "booking.created failed" in caplog.text


@pytest.mark.asyncio
async def test_default_collaborators_only_log(caplog: pytest.LogCaptureFixture) -> None:
    collaborators = Collaborators(size_resolver=FallbackSizeResolver("medium"))
    assert isinstance(collaborators.payments, NoopPaymentGateway)
    assert isinstance(collaborators.notifier, LoggingNotifier)

    booking = cast(Booking, Booking(reference="L4D-300603-123ABC"))
    with caplog.at_level(logging.INFO):
        await collaborators.payments.capture(booking)
        await collaborators.notify("booking.confirmed", booking)
    assert "payment capture skipped for booking L4D-300603-123ABC" in caplog.text
    assert "notification booking.confirmed for booking L4D-300603-123ABC" in caplog.text
