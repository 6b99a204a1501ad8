# Utility rate lookup: the per-unit electric/water price configured for a property.
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Literal, Optional

from sqlalchemy.orm import Session

from . import models

UtilityType = Literal["electric", "water"]
UTILITY_TYPES = ("electric", "water")

ZERO = Decimal("0")
# Rates are stored with four decimal places
RATE_STEP = Decimal("0.0001")


@dataclass(frozen=True)
class UtilityRates:
    water: Decimal = ZERO
    electric: Decimal = ZERO


def _latest_rate_row(db: Session, property_id: int, utility_type: str) -> Optional[models.UtilityRate]:
    return (
        db.query(models.UtilityRate)
        .filter(
            models.UtilityRate.property_id == property_id,
            models.UtilityRate.type == utility_type,
        )
        .order_by(models.UtilityRate.effective_from.desc(), models.UtilityRate.id.desc())
        .first()
    )


def resolve_rate(db: Session, property_id: int, utility_type: UtilityType) -> Decimal:
    """
    Return the active rate for (property, utility type).

    The most recent effective row wins. A property without a configured rate
    resolves to 0 instead of failing, so bills can still be raised.
    """
    if utility_type not in UTILITY_TYPES:
        raise ValueError(f"unknown utility type: {utility_type}")
    row = _latest_rate_row(db, property_id, utility_type)
    if row is None or row.rate is None:
        return ZERO
    return Decimal(str(row.rate))


def resolve_rates(db: Session, property_id: int) -> UtilityRates:
    return UtilityRates(
        water=resolve_rate(db, property_id, "water"),
        electric=resolve_rate(db, property_id, "electric"),
    )


def record_rate(db: Session, property_id: int, utility_type: UtilityType, rate: Decimal) -> models.UtilityRate:
    """Append a new effective rate row at stored precision; the caller owns the transaction."""
    if utility_type not in UTILITY_TYPES:
        raise ValueError(f"unknown utility type: {utility_type}")
    row = models.UtilityRate(
        property_id=property_id,
        type=utility_type,
        rate=Decimal(rate).quantize(RATE_STEP, rounding=ROUND_HALF_UP),
        effective_from=datetime.now(timezone.utc),
    )
    db.add(row)
    return row
