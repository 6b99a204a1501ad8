# Tenant-side rent endpoints: list own bills and report a payment.
from __future__ import annotations

from datetime import datetime, timezone
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from ..audit import record_activity
from ..db import atomic, get_db
from ..lifecycle import mark_pending
from ..rate_limit import rate_limit
from ..scope import AccessScope, Principal
from .. import models, schemas
from .auth import get_scope, require_roles

router = APIRouter()


@router.get("/rent", response_model=List[schemas.RentItem])
def list_rent(
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    _: Principal = Depends(require_roles("tenant")),
) -> List[schemas.RentItem]:
    """Every bill of the tenant's confirmed bookings, newest booking then newest bill first."""
    q = (
        db.query(models.Bill, models.Booking, models.Room, models.Property)
        .join(models.Booking, models.Booking.id == models.Bill.booking_id)
        .join(models.Room, models.Room.id == models.Booking.room_id)
        .join(models.Property, models.Property.id == models.Room.property_id)
        .filter(models.Booking.status == "confirmed")
    )
    rows = (
        scope.restrict(q, "bill")
        .order_by(models.Booking.start_date.desc(), models.Bill.billing_date.desc(), models.Bill.id.desc())
        .all()
    )
    return [
        schemas.RentItem(
            booking_id=booking.id,
            room_name=room.name,
            room_code=room.code,
            property_name=prop.name,
            property_address=prop.address,
            billing_cycle=booking.billing_cycle,
            bill=schemas.BillRead.model_validate(bill),
        )
        for bill, booking, room, prop in rows
    ]


@router.put(
    "/rent/{bill_id}/pay",
    response_model=schemas.BillRead,
    dependencies=[Depends(rate_limit("write"))],
)
def report_payment(
    bill_id: int,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    principal: Principal = Depends(require_roles("tenant")),
) -> models.Bill:
    """Tenant says the bill is paid; it waits as pending until owner/staff confirm."""
    bill = scope.fetch(db, "bill", bill_id)
    with atomic(db):
        mark_pending(bill, datetime.now(timezone.utc))
    db.refresh(bill)
    background.add_task(
        record_activity, principal.id, "pay_bill", "bill", bill.id, f"{principal.username} reported payment of bill {bill.id}"
    )
    return bill
