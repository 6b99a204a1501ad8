# Bill computation from meter readings, the booking's billing cycle and the property's utility rates.
# compute_bill is pure; load_booking_pricing is the only storage read.
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Mapping, Optional

from sqlalchemy.orm import Session

from . import models
from .errors import NotFound
from .rates import UtilityRates

logger = logging.getLogger("roomledger.billing")

ZERO = Decimal("0")
CENT = Decimal("0.01")
UNIT_STEP = Decimal("0.0001")

# Leading numeric prefix, e.g. "12.5kWh" -> "12.5"
_NUMERIC_PREFIX = re.compile(r"^\s*[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")


def round2(value: Decimal) -> Decimal:
    """Round half away from zero to two decimal places."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def round_quantity(value: Decimal) -> Decimal:
    """Round meter units and per-unit rates to the four places they are stored with."""
    return Decimal(value).quantize(UNIT_STEP, rounding=ROUND_HALF_UP)


def parse_amount(value: Any) -> Decimal:
    """
    Leniently coerce user input to a non-negative Decimal.

    Never raises: missing, non-numeric, non-finite and negative values become 0,
    as does anything that is not a string or a number (lists, objects).
    Strings with trailing garbage keep their numeric prefix ("12abc" -> 12).
    """
    if value is None or isinstance(value, bool):
        return ZERO
    if isinstance(value, Decimal):
        parsed = value
    elif isinstance(value, (int, float)):
        parsed = Decimal(str(value))
    elif isinstance(value, str):
        match = _NUMERIC_PREFIX.match(value)
        if not match:
            return ZERO
        try:
            parsed = Decimal(match.group(0).strip())
        except InvalidOperation:
            return ZERO
    else:
        return ZERO
    if not parsed.is_finite() or parsed < 0:
        return ZERO
    return parsed


@dataclass(frozen=True)
class BookingPricing:
    """The booking -> room -> property chain a bill is priced from."""

    booking_id: int
    property_id: int
    room_id: int
    billing_cycle: str
    price_monthly: Decimal
    price_term: Decimal

    def room_price(self) -> Decimal:
        return self.price_term if self.billing_cycle == "term" else self.price_monthly


@dataclass(frozen=True)
class MeterReadings:
    water_units: Decimal = ZERO
    electric_units: Decimal = ZERO
    other_charges: Decimal = ZERO

    @classmethod
    def parse(cls, raw: Mapping[str, Any]) -> "MeterReadings":
        return cls(
            water_units=round_quantity(parse_amount(raw.get("water_units"))),
            electric_units=round_quantity(parse_amount(raw.get("electric_units"))),
            other_charges=round2(parse_amount(raw.get("other_charges"))),
        )


@dataclass(frozen=True)
class BillLineItems:
    billing_cycle: str
    room_price: Decimal
    water_units: Decimal
    water_rate: Decimal
    water_total: Decimal
    electric_units: Decimal
    electric_rate: Decimal
    electric_total: Decimal
    other_charges: Decimal
    total_amount: Decimal


def load_booking_pricing(db: Session, booking_id: int) -> BookingPricing:
    """Resolve booking -> room -> property; NotFound if any link is missing."""
    row = (
        db.query(
            models.Booking.id,
            models.Booking.billing_cycle,
            models.Room.id,
            models.Room.price_monthly,
            models.Room.price_term,
            models.Property.id,
        )
        .join(models.Room, models.Room.id == models.Booking.room_id)
        .join(models.Property, models.Property.id == models.Room.property_id)
        .filter(models.Booking.id == booking_id)
        .first()
    )
    if row is None:
        raise NotFound("Booking not found", {"booking_id": booking_id})
    b_id, cycle, room_id, price_monthly, price_term, property_id = row
    return BookingPricing(
        booking_id=b_id,
        property_id=property_id,
        room_id=room_id,
        billing_cycle=cycle or "monthly",
        price_monthly=parse_amount(price_monthly),
        price_term=parse_amount(price_term),
    )


def compute_bill(
    booking: BookingPricing,
    rates: UtilityRates,
    readings: MeterReadings,
    include_room_price: bool,
) -> BillLineItems:
    """
    Price one bill.

    room_price is the monthly or term price depending on the booking's cycle, or 0
    when the room price is not included. Units and rates are already at their
    stored precision, so the persisted breakdown multiplies out to the total;
    only the total is rounded to the cent.
    """
    room_price = booking.room_price() if include_room_price else ZERO
    water_rate = round_quantity(parse_amount(rates.water))
    electric_rate = round_quantity(parse_amount(rates.electric))
    water_total = readings.water_units * water_rate
    electric_total = readings.electric_units * electric_rate
    total = round2(room_price + water_total + electric_total + readings.other_charges)

    logger.debug(
        "bill.computed",
        extra={
            "booking_id": booking.booking_id,
            "billing_cycle": booking.billing_cycle,
            "include_room_price": include_room_price,
            "total_amount": str(total),
        },
    )
    return BillLineItems(
        billing_cycle=booking.billing_cycle,
        room_price=room_price,
        water_units=readings.water_units,
        water_rate=water_rate,
        water_total=water_total,
        electric_units=readings.electric_units,
        electric_rate=electric_rate,
        electric_total=electric_total,
        other_charges=readings.other_charges,
        total_amount=total,
    )


def apply_line_items(bill: models.Bill, items: BillLineItems, booking_id: int, note: Optional[str]) -> models.Bill:
    """Copy computed values onto a bill row (new or edited)."""
    bill.booking_id = booking_id
    bill.billing_cycle = items.billing_cycle
    bill.room_price = items.room_price
    bill.water_units = items.water_units
    bill.water_rate = items.water_rate
    bill.electric_units = items.electric_units
    bill.electric_rate = items.electric_rate
    bill.other_charges = items.other_charges
    bill.note = note or None
    bill.total_amount = items.total_amount
    return bill
