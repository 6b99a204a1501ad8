# Bill endpoints for owners/staff/admins: price sheet, create/edit (computed server-side),
# payment confirmation, LINE delivery, delete. Tenant-side payment lives in routes/rent.py.
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..audit import record_activity
from ..billing import MeterReadings, apply_line_items, compute_bill, load_booking_pricing
from ..db import atomic, get_db
from ..errors import Conflict, ValidationError
from ..lifecycle import confirm_payment, reset_after_edit
from ..notifications import build_bill_message, send_message
from ..rate_limit import rate_limit
from ..rates import resolve_rates
from ..scope import AccessScope, Principal
from .. import models, schemas
from .auth import get_scope, require_roles

router = APIRouter()
logger = logging.getLogger("roomledger.bills")

MANAGERS = ("admin", "owner", "staff")


def _price(db: Session, scope: AccessScope, booking_id: int, readings: MeterReadings, include_room_price: bool):
    """Resolve the booking chain and current rates, then compute line items."""
    booking = scope.fetch(db, "booking", booking_id)
    if booking.status == "cancelled":
        raise Conflict("Cannot bill a cancelled booking", {"booking_id": booking.id})
    pricing = load_booking_pricing(db, booking.id)
    rates = resolve_rates(db, pricing.property_id)
    return compute_bill(pricing, rates, readings, include_room_price)


@router.get("/bills/prices", response_model=List[schemas.RoomPriceRow])
def list_room_prices(
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    _: Principal = Depends(require_roles(*MANAGERS)),
) -> List[schemas.RoomPriceRow]:
    """Confirmed bookings in scope with their room prices and latest bill, by property then room."""
    latest_bill = (
        db.query(models.Bill.booking_id.label("booking_id"), func.max(models.Bill.id).label("bill_id"))
        .group_by(models.Bill.booking_id)
        .subquery()
    )
    q = (
        db.query(models.Booking, models.Room, models.Property, models.User, models.Bill)
        .join(models.Room, models.Room.id == models.Booking.room_id)
        .join(models.Property, models.Property.id == models.Room.property_id)
        .join(models.User, models.User.id == models.Booking.user_id)
        .outerjoin(latest_bill, latest_bill.c.booking_id == models.Booking.id)
        .outerjoin(models.Bill, models.Bill.id == latest_bill.c.bill_id)
        .filter(models.Booking.status == "confirmed")
    )
    rows = scope.restrict(q, "booking").order_by(models.Property.name.asc(), models.Room.name.asc()).all()
    return [
        schemas.RoomPriceRow(
            booking_id=booking.id,
            billing_cycle=booking.billing_cycle,
            room_id=room.id,
            room_name=room.name,
            room_code=room.code,
            price_monthly=room.price_monthly,
            price_term=room.price_term,
            deposit=room.deposit,
            property_id=prop.id,
            property_name=prop.name,
            tenant_id=user.id,
            tenant_fullname=user.fullname,
            latest_bill_id=bill.id if bill else None,
            latest_bill_status=bill.status if bill else None,
        )
        for booking, room, prop, user, bill in rows
    ]


@router.get("/bills/by-booking/{booking_id}", response_model=List[schemas.BillRead])
def list_bills_for_booking(
    booking_id: int,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
) -> List[models.Bill]:
    scope.fetch(db, "booking", booking_id)
    return (
        db.query(models.Bill)
        .filter(models.Bill.booking_id == booking_id)
        .order_by(models.Bill.billing_date.desc(), models.Bill.id.desc())
        .all()
    )


@router.post(
    "/bills",
    response_model=schemas.BillRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("write"))],
)
def create_bill(
    payload: schemas.BillCreate,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    principal: Principal = Depends(require_roles(*MANAGERS)),
) -> models.Bill:
    """
    Raise a bill against a booking.

    Readings are parsed leniently (bad input counts as 0). The total is computed
    and rounded here once and stored; the current rates are stored alongside.
    """
    readings = MeterReadings.parse(payload.model_dump())
    with atomic(db):
        items = _price(db, scope, payload.booking_id, readings, payload.include_room_price)
        bill = apply_line_items(models.Bill(status="unpaid"), items, payload.booking_id, payload.note)
        db.add(bill)
    db.refresh(bill)
    logger.info("bill.created", extra={"bill_id": bill.id, "booking_id": bill.booking_id, "total": str(bill.total_amount)})
    background.add_task(
        record_activity, principal.id, "add_bill", "bill", bill.id, f"{principal.username} billed booking {bill.booking_id}"
    )
    return bill


@router.put(
    "/bills/{bill_id}",
    response_model=schemas.BillRead,
    dependencies=[Depends(rate_limit("write"))],
)
def update_bill(
    bill_id: int,
    payload: schemas.BillUpdate,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    principal: Principal = Depends(require_roles(*MANAGERS)),
) -> models.Bill:
    """Recompute a bill from new readings; any edit puts it back to unpaid."""
    bill = scope.fetch(db, "bill", bill_id)
    booking_id = payload.booking_id or bill.booking_id
    readings = MeterReadings.parse(payload.model_dump())
    with atomic(db):
        items = _price(db, scope, booking_id, readings, payload.include_room_price)
        apply_line_items(bill, items, booking_id, payload.note)
        reset_after_edit(bill)
    db.refresh(bill)
    background.add_task(record_activity, principal.id, "edit_bill", "bill", bill.id, f"{principal.username} edited bill {bill.id}")
    return bill


@router.put(
    "/bills/{bill_id}/confirm",
    response_model=schemas.BillRead,
    dependencies=[Depends(rate_limit("write"))],
)
def confirm_bill(
    bill_id: int,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    principal: Principal = Depends(require_roles(*MANAGERS)),
) -> models.Bill:
    bill = scope.fetch(db, "bill", bill_id)
    was_paid = bill.status == "paid"
    with atomic(db):
        confirm_payment(bill, datetime.now(timezone.utc), principal.role)
    db.refresh(bill)
    if not was_paid:
        background.add_task(
            record_activity, principal.id, "confirm_bill", "bill", bill.id, f"{principal.username} confirmed payment of bill {bill.id}"
        )
    return bill


@router.post(
    "/bills/{bill_id}/send",
    response_model=schemas.NotifyResult,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(rate_limit("write"))],
)
def send_bill(
    bill_id: int,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    _: Principal = Depends(require_roles(*MANAGERS)),
) -> schemas.NotifyResult:
    """Queue the bill as a LINE message to its tenant; delivery happens after the response."""
    bill = scope.fetch(db, "bill", bill_id)
    row = (
        db.query(models.User.line_user_id, models.Room.name, models.Property.name)
        .join(models.Booking, models.Booking.user_id == models.User.id)
        .join(models.Room, models.Room.id == models.Booking.room_id)
        .join(models.Property, models.Property.id == models.Room.property_id)
        .filter(models.Booking.id == bill.booking_id)
        .first()
    )
    line_user_id: Optional[str] = row[0] if row else None
    if not line_user_id:
        raise ValidationError("Tenant has no LINE account linked", {"bill_id": bill.id})
    message = build_bill_message(bill, room_name=row[1], property_name=row[2])
    background.add_task(send_message, line_user_id, message)
    return schemas.NotifyResult(queued=True)


@router.delete(
    "/bills/{bill_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(rate_limit("write"))],
)
def delete_bill(
    bill_id: int,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    principal: Principal = Depends(require_roles(*MANAGERS)),
) -> None:
    bill = scope.fetch(db, "bill", bill_id)
    with atomic(db):
        db.delete(bill)
    background.add_task(record_activity, principal.id, "delete_bill", "bill", bill_id, f"{principal.username} deleted bill {bill_id}")
