# Booking endpoints: request/create, edit, status changes, cancel, and role-shaped listing.
# Availability is re-checked inside the write transaction, after the room row is locked.
from __future__ import annotations

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.orm import Session

from ..audit import record_activity
from ..availability import ensure_room_available, is_room_available, lock_room
from ..db import atomic, get_db
from ..errors import Conflict, NotFound, ValidationError
from ..rate_limit import rate_limit
from ..scope import AccessScope, Principal
from .. import models, schemas
from .auth import get_principal, get_scope, require_roles

router = APIRouter()
logger = logging.getLogger("roomledger.bookings")

MANAGERS = ("admin", "owner", "staff")


# Sanity check for date ranges; ranges are closed, so a single day is valid
def validate_dates(start_date: date, end_date: date) -> None:
    if start_date > end_date:
        raise ValidationError("start_date must not be after end_date")


def _detail_query(db: Session):
    return (
        db.query(models.Booking, models.Room, models.Property, models.User)
        .join(models.Room, models.Room.id == models.Booking.room_id)
        .join(models.Property, models.Property.id == models.Room.property_id)
        .join(models.User, models.User.id == models.Booking.user_id)
    )


def _tenant_item(booking: models.Booking, room: models.Room, prop: models.Property) -> schemas.BookingTenantItem:
    return schemas.BookingTenantItem(
        **schemas.BookingRead.model_validate(booking).model_dump(),
        room_name=room.name,
        room_code=room.code,
        property_id=prop.id,
        property_name=prop.name,
    )


def _managed_item(
    booking: models.Booking, room: models.Room, prop: models.Property, user: models.User
) -> schemas.BookingManagedItem:
    return schemas.BookingManagedItem(
        **_tenant_item(booking, room, prop).model_dump(),
        tenant_username=user.username,
        tenant_fullname=user.fullname,
    )


@router.get("/bookings", response_model=schemas.BookingList)
def list_bookings(
    status_filter: Optional[schemas.BookingStatus] = Query(default=None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
):
    """
    Bookings visible to the caller, newest first.

    The `view` tag says which shape the items have: admins get "all", owners/staff
    get "managed" (both include the tenant), tenants and guests get "tenant".
    """
    q = scope.restrict(_detail_query(db), "booking")
    if status_filter:
        q = q.filter(models.Booking.status == status_filter)
    rows = q.order_by(models.Booking.created_at.desc(), models.Booking.id.desc()).offset(offset).limit(limit).all()

    if scope.unrestricted:
        return schemas.BookingListAll(view="all", items=[_managed_item(*row) for row in rows])
    if scope.is_manager:
        return schemas.BookingListManaged(view="managed", items=[_managed_item(*row) for row in rows])
    return schemas.BookingListTenant(view="tenant", items=[_tenant_item(b, r, p) for b, r, p, _ in rows])


@router.get("/bookings/availability", response_model=schemas.AvailabilityRead)
def check_availability(
    room_id: int = Query(..., ge=1),
    start_date: date = Query(...),
    end_date: date = Query(...),
    db: Session = Depends(get_db),
) -> schemas.AvailabilityRead:
    validate_dates(start_date, end_date)
    if db.get(models.Room, room_id) is None:
        raise NotFound("Room not found", {"room_id": room_id})
    return schemas.AvailabilityRead(
        room_id=room_id,
        start_date=start_date,
        end_date=end_date,
        available=is_room_available(db, room_id, start_date, end_date),
    )


@router.post(
    "/bookings",
    response_model=schemas.BookingRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("write"))],
)
def create_booking(
    payload: schemas.BookingCreate,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    principal: Principal = Depends(get_principal),
) -> models.Booking:
    """
    Create a booking.

    Tenants and guests request rooms for themselves (always pending). Owners, staff
    and admins book on a tenant's behalf via user_id and may create it confirmed.
    Either way the range must not collide with a confirmed booking of the room.
    """
    validate_dates(payload.start_date, payload.end_date)

    if principal.role in ("tenant", "guest"):
        user_id = principal.id
        status_val = "pending"
    elif principal.role in MANAGERS:
        if payload.user_id is None:
            raise ValidationError("user_id is required when booking on behalf of a tenant")
        tenant = db.get(models.User, payload.user_id)
        if tenant is None or tenant.role not in ("tenant", "guest"):
            raise NotFound("Tenant not found", {"user_id": payload.user_id})
        user_id = tenant.id
        status_val = payload.status or "pending"
    else:
        raise ValidationError("Unsupported role for booking")

    with atomic(db):
        room = lock_room(db, payload.room_id)
        if principal.role in MANAGERS:
            scope.ensure_property(room.property_id)
        ensure_room_available(db, room.id, payload.start_date, payload.end_date)
        obj = models.Booking(
            room_id=room.id,
            user_id=user_id,
            start_date=payload.start_date,
            end_date=payload.end_date,
            billing_cycle=payload.billing_cycle,
            status=status_val,
        )
        db.add(obj)
    db.refresh(obj)
    logger.info("booking.created", extra={"booking_id": obj.id, "room_id": obj.room_id, "status": obj.status})
    background.add_task(
        record_activity, principal.id, "add_booking", "booking", obj.id, f"{principal.username} booked room {obj.room_id}"
    )
    return obj


@router.put(
    "/bookings/{booking_id}",
    response_model=schemas.BookingRead,
    dependencies=[Depends(rate_limit("write"))],
)
def update_booking(
    booking_id: int,
    payload: schemas.BookingUpdate,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
) -> models.Booking:
    obj = scope.fetch(db, "booking", booking_id)
    if obj.status == "cancelled":
        raise Conflict("Cancelled bookings cannot be edited", {"booking_id": obj.id})
    if not scope.is_manager and not scope.unrestricted and obj.status != "pending":
        raise Conflict("Only pending bookings can be edited by the tenant", {"booking_id": obj.id})

    start_date = payload.start_date or obj.start_date
    end_date = payload.end_date or obj.end_date
    validate_dates(start_date, end_date)

    with atomic(db):
        lock_room(db, obj.room_id)
        ensure_room_available(db, obj.room_id, start_date, end_date, exclude_booking_id=obj.id)
        obj.start_date = start_date
        obj.end_date = end_date
        if payload.billing_cycle:
            obj.billing_cycle = payload.billing_cycle
    db.refresh(obj)
    return obj


@router.put(
    "/bookings/{booking_id}/status",
    response_model=schemas.BookingRead,
    dependencies=[Depends(rate_limit("write"))],
)
def set_booking_status(
    booking_id: int,
    payload: schemas.BookingStatusUpdate,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    principal: Principal = Depends(require_roles(*MANAGERS)),
) -> models.Booking:
    """
    Advance a booking: pending <-> confirmed, or cancel it.

    Confirming re-checks the room against other confirmed bookings. Cancelled is terminal.
    """
    obj = scope.fetch(db, "booking", booking_id)
    if obj.status == payload.status:
        return obj
    if obj.status == "cancelled":
        raise Conflict("Booking is cancelled", {"booking_id": obj.id})

    with atomic(db):
        if payload.status == "confirmed":
            lock_room(db, obj.room_id)
            ensure_room_available(db, obj.room_id, obj.start_date, obj.end_date, exclude_booking_id=obj.id)
        obj.status = payload.status
    db.refresh(obj)
    logger.info("booking.status_changed", extra={"booking_id": obj.id, "status": obj.status})
    background.add_task(
        record_activity,
        principal.id,
        f"{payload.status}_booking",
        "booking",
        obj.id,
        f"{principal.username} set booking {obj.id} to {obj.status}",
    )
    return obj


@router.delete(
    "/bookings/{booking_id}",
    response_model=schemas.BookingRead,
    dependencies=[Depends(rate_limit("write"))],
)
def cancel_booking(
    booking_id: int,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
) -> models.Booking:
    obj = scope.fetch(db, "booking", booking_id)
    # Idempotent cancel: a cancelled booking stays as it is
    if obj.status != "cancelled":
        with atomic(db):
            obj.status = "cancelled"
        db.refresh(obj)
    return obj
