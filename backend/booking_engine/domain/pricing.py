"""
Price calculation for a booking.

Prices are integer pence end to end. Size multipliers and the repeat-customer
discount are applied with ``Decimal`` and rounded half-up to whole pence, so a
quote shown to the customer and the charge taken at reservation time are the
same integer for the same inputs.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from enum import StrEnum
from typing import Iterable, Mapping

from .errors import UnknownServiceError, UnknownSizeError, ValidationError


class VehicleSize(StrEnum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"
    EXTRA_LARGE = "extra_large"


SIZE_MULTIPLIERS: Mapping[VehicleSize, Decimal] = {
    VehicleSize.SMALL: Decimal("1.00"),
    VehicleSize.MEDIUM: Decimal("1.09"),
    VehicleSize.LARGE: Decimal("1.18"),
    VehicleSize.EXTRA_LARGE: Decimal("1.27"),
}


@dataclass(frozen=True)
class Service:
    id: str
    label: str
    base_duration_minutes: int
    base_price_pence: int


class ServiceCatalog:
    """Read-only lookup of the services on offer."""

    def __init__(self, services: Iterable[Service]) -> None:
        self._services = {service.id: service for service in services}

    def get(self, service_id: str) -> Service:
        try:
            return self._services[service_id]
        except KeyError:
            raise UnknownServiceError(f"unknown service: {service_id}") from None

    def __contains__(self, service_id: object) -> bool:
        return service_id in self._services


DEFAULT_SERVICES = (
    Service(id="full_valet", label="Full Valet", base_duration_minutes=120, base_price_pence=5000),
)


def resolve_size(value: str | VehicleSize) -> VehicleSize:
    try:
        return VehicleSize(value)
    except ValueError:
        raise UnknownSizeError(f"unknown vehicle size: {value}") from None


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_price(
    catalog: ServiceCatalog,
    *,
    service_id: str,
    vehicle_size: str | VehicleSize,
    slot_date: date,
    is_repeat_customer: bool,
    repeat_discount_percent: int = 0,
) -> int:
    """
    Return the total price in pence.

    The size multiplier is applied to the service base price and rounded;
    the repeat-customer discount is then taken off that rounded figure and
    rounded again. No I/O, identical output for identical input.
    """
    service = catalog.get(service_id)
    size = resolve_size(vehicle_size)
    if not isinstance(slot_date, date):
        raise ValidationError("slot_date must be a calendar date")
    if not 0 <= repeat_discount_percent <= 100:
        raise ValidationError("repeat_discount_percent must be between 0 and 100")

    sized = round_half_up(Decimal(service.base_price_pence) * SIZE_MULTIPLIERS[size])
    if not is_repeat_customer or repeat_discount_percent == 0:
        return sized
    keep = Decimal(100 - repeat_discount_percent) / Decimal(100)
    return round_half_up(Decimal(sized) * keep)
