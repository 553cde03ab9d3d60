"""Outbound collaborators the engine calls but does not implement."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Literal, Protocol

from ..models import Booking
from .pricing import VehicleSize, resolve_size

logger = logging.getLogger(__name__)

NotificationEvent = Literal[
    "booking.created",
    "booking.confirmed",
    "booking.cancelled",
    "booking.completed",
    "booking.rescheduled",
    "reschedule.requested",
    "reschedule.rejected",
]


class VehicleSizeResolver(Protocol):
    async def resolve(self, vehicle_id: int) -> VehicleSize: ...


class PaymentGateway(Protocol):
    async def capture(self, booking: Booking) -> None: ...


class Notifier(Protocol):
    async def notify(self, event: NotificationEvent, booking: Booking) -> None: ...


class FallbackSizeResolver:
    """Used when no make/model lookup is wired in: every vehicle gets the default size."""

    def __init__(self, default_size: str | VehicleSize) -> None:
        self.default_size = resolve_size(default_size)

    async def resolve(self, vehicle_id: int) -> VehicleSize:
        return self.default_size


class NoopPaymentGateway:
    async def capture(self, booking: Booking) -> None:
        logger.info("payment capture skipped for booking %s (no gateway configured)", booking.reference)


class LoggingNotifier:
    async def notify(self, event: NotificationEvent, booking: Booking) -> None:
        logger.info("notification %s for booking %s", event, booking.reference)


@dataclass
class Collaborators:
    size_resolver: VehicleSizeResolver
    payments: PaymentGateway = field(default_factory=NoopPaymentGateway)
    notifier: Notifier = field(default_factory=LoggingNotifier)

    async def notify(self, event: NotificationEvent, booking: Booking) -> None:
        """Best effort: a failed notification never fails the booking operation."""
        try:
            await self.notifier.notify(event, booking)
        except Exception:
            logger.warning("notification %s failed for booking %s", event, booking.reference, exc_info=True)
