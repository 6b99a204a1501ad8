# Tenant management for owners/staff/admins: accounts plus their room bookings.
# Multi-room writes are one transaction: any room that fails its availability
# check rolls back the account and every booking written before it.
from __future__ import annotations

import logging
from collections import OrderedDict
from datetime import date
from typing import Dict, List, Optional, Tuple

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..audit import record_activity
from ..availability import ACTIVE_BOOKING_STATUSES, ensure_room_available, lock_room
from ..db import atomic, get_db
from ..errors import Conflict, Forbidden, NotFound
from ..rate_limit import rate_limit
from ..scope import AccessScope, Principal
from .. import models, schemas
from .auth import ensure_identity_free, get_scope, hash_password, require_roles
from .bookings import validate_dates

router = APIRouter()
logger = logging.getLogger("roomledger.tenants")

MANAGERS = ("admin", "owner", "staff")
TENANT_ROLES = ("tenant", "guest")


def default_period(start_date: Optional[date], end_date: Optional[date]) -> Tuple[date, date]:
    """Missing dates default to today through the same day next year."""
    start = start_date or date.today()
    if end_date is not None:
        return start, end_date
    try:
        return start, start.replace(year=start.year + 1)
    except ValueError:
        # Feb 29 -> Feb 28
        return start, start.replace(year=start.year + 1, day=28)


def _load_tenant(db: Session, tenant_id: int) -> models.User:
    user = db.get(models.User, tenant_id)
    if user is None or user.role not in TENANT_ROLES:
        raise NotFound("Tenant not found", {"tenant_id": tenant_id})
    return user


def _scoped_bookings(db: Session, scope: AccessScope, tenant_id: int) -> List[models.Booking]:
    q = db.query(models.Booking).filter(models.Booking.user_id == tenant_id)
    return scope.restrict(q, "booking").order_by(models.Booking.id.asc()).all()


def _ensure_manages_tenant(db: Session, scope: AccessScope, tenant_id: int) -> None:
    """Owners/staff may only touch tenants holding a booking in one of their properties."""
    if scope.unrestricted:
        return
    if not _scoped_bookings(db, scope, tenant_id):
        raise Forbidden("Not allowed to manage this tenant")


def _book_rooms(
    db: Session,
    scope: AccessScope,
    tenant_id: int,
    payload: schemas.TenantBase,
) -> List[models.Booking]:
    """Check and insert one booking per room; runs inside the caller's transaction."""
    start, end = default_period(payload.start_date, payload.end_date)
    validate_dates(start, end)
    created: List[models.Booking] = []
    for room_id in payload.room_ids:
        room = lock_room(db, room_id)
        scope.ensure_property(room.property_id)
        ensure_room_available(db, room.id, start, end)
        booking = models.Booking(
            user_id=tenant_id,
            room_id=room.id,
            status=payload.status,
            start_date=start,
            end_date=end,
            billing_cycle=payload.billing_cycles.get(room.id, "monthly"),
        )
        db.add(booking)
        # later rooms in the same request must see this one
        db.flush()
        created.append(booking)
    return created


def _release_bookings(db: Session, bookings: List[models.Booking]) -> None:
    """Remove bookings being replaced; billed bookings are cancelled so bill history survives."""
    for booking in bookings:
        has_bills = db.query(models.Bill.id).filter(models.Bill.booking_id == booking.id).first() is not None
        if has_bills:
            booking.status = "cancelled"
        else:
            db.delete(booking)
    db.flush()


@router.get("/tenants", response_model=schemas.TenantList)
def list_tenants(
    property_id: Optional[int] = Query(default=None, ge=1),
    room_id: Optional[int] = Query(default=None, ge=1),
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    _: Principal = Depends(require_roles(*MANAGERS)),
):
    """Tenants and guests with active bookings in scope, grouped per person, latest booking first."""
    q = (
        db.query(models.Booking, models.Room, models.Property, models.User)
        .join(models.Room, models.Room.id == models.Booking.room_id)
        .join(models.Property, models.Property.id == models.Room.property_id)
        .join(models.User, models.User.id == models.Booking.user_id)
        .filter(models.User.role.in_(TENANT_ROLES), models.Booking.status.in_(ACTIVE_BOOKING_STATUSES))
    )
    q = scope.restrict(q, "booking")
    if property_id is not None:
        q = q.filter(models.Property.id == property_id)
    if room_id is not None:
        q = q.filter(models.Room.id == room_id)

    grouped: "OrderedDict[int, Dict]" = OrderedDict()
    for booking, room, prop, user in q.order_by(models.Booking.id.desc()).all():
        entry = grouped.get(user.id)
        if entry is None:
            entry = grouped[user.id] = {"user": user, "bookings": []}
        entry["bookings"].append(
            schemas.TenantBooking(
                booking_id=booking.id,
                property_id=prop.id,
                property_name=prop.name,
                room_id=room.id,
                room_name=room.name,
                room_code=room.code,
                start_date=booking.start_date,
                end_date=booking.end_date,
                status=booking.status,
                billing_cycle=booking.billing_cycle,
            )
        )

    items = [
        schemas.TenantSummary(
            **schemas.UserRead.model_validate(entry["user"]).model_dump(),
            status=entry["bookings"][0].status,
            bookings=entry["bookings"],
        )
        for entry in grouped.values()
    ]
    if scope.unrestricted:
        return schemas.TenantListAll(view="all", items=items)
    return schemas.TenantListManaged(view="managed", items=items)


@router.post(
    "/tenants",
    response_model=schemas.TenantWriteResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("write"))],
)
def create_tenant(
    payload: schemas.TenantCreate,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    principal: Principal = Depends(require_roles(*MANAGERS)),
) -> schemas.TenantWriteResponse:
    with atomic(db):
        ensure_identity_free(db, payload.username, None)
        tenant = models.User(
            username=payload.username,
            fullname=payload.fullname,
            phone=payload.phone,
            password_hash=hash_password(payload.password),
            role="tenant",
        )
        db.add(tenant)
        db.flush()
        bookings = _book_rooms(db, scope, tenant.id, payload)
    db.refresh(tenant)
    for b in bookings:
        db.refresh(b)
    logger.info("tenant.created", extra={"tenant_id": tenant.id, "rooms": list(payload.room_ids)})
    background.add_task(
        record_activity,
        principal.id,
        "add_tenant",
        "user",
        tenant.id,
        f"{principal.username} added tenant {tenant.fullname or tenant.username}",
    )
    return schemas.TenantWriteResponse(
        tenant=schemas.UserRead.model_validate(tenant),
        bookings=[schemas.BookingRead.model_validate(b) for b in bookings],
    )


@router.put(
    "/tenants/{tenant_id}",
    response_model=schemas.TenantWriteResponse,
    dependencies=[Depends(rate_limit("write"))],
)
def update_tenant(
    tenant_id: int,
    payload: schemas.TenantUpdate,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    principal: Principal = Depends(require_roles(*MANAGERS)),
) -> schemas.TenantWriteResponse:
    """
    Update a tenant and replace their bookings in the caller's properties.

    The old bookings are released, then every requested room is re-checked and
    booked, all in one transaction. A guest becomes a tenant.
    """
    tenant = _load_tenant(db, tenant_id)
    _ensure_manages_tenant(db, scope, tenant.id)
    with atomic(db):
        if payload.username and payload.username != tenant.username:
            ensure_identity_free(db, payload.username, None, exclude_user_id=tenant.id)
            tenant.username = payload.username
        if payload.fullname is not None:
            tenant.fullname = payload.fullname
        if payload.phone is not None:
            tenant.phone = payload.phone
        if payload.password:
            tenant.password_hash = hash_password(payload.password)
        if tenant.role == "guest":
            tenant.role = "tenant"

        _release_bookings(db, _scoped_bookings(db, scope, tenant.id))
        bookings = _book_rooms(db, scope, tenant.id, payload)
    db.refresh(tenant)
    for b in bookings:
        db.refresh(b)
    background.add_task(
        record_activity,
        principal.id,
        "edit_tenant",
        "user",
        tenant.id,
        f"{principal.username} edited tenant {tenant.fullname or tenant.username}",
    )
    return schemas.TenantWriteResponse(
        tenant=schemas.UserRead.model_validate(tenant),
        bookings=[schemas.BookingRead.model_validate(b) for b in bookings],
    )


@router.delete(
    "/tenants/{tenant_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(rate_limit("write"))],
)
def delete_tenant(
    tenant_id: int,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    principal: Principal = Depends(require_roles(*MANAGERS)),
) -> None:
    """Delete a tenant account; refused while bookings elsewhere or bills still reference it."""
    tenant = _load_tenant(db, tenant_id)
    _ensure_manages_tenant(db, scope, tenant.id)
    with atomic(db):
        all_bookings = db.query(models.Booking).filter(models.Booking.user_id == tenant.id).all()
        if len(all_bookings) != len(_scoped_bookings(db, scope, tenant.id)):
            raise Forbidden("Tenant has bookings in properties you do not manage")
        bills = (
            db.query(func.count(models.Bill.id))
            .join(models.Booking, models.Booking.id == models.Bill.booking_id)
            .filter(models.Booking.user_id == tenant.id)
            .scalar()
        )
        if bills:
            raise Conflict("Tenant still has bills", {"tenant_id": tenant.id, "reasons": {"bills": bills}})

        for booking in all_bookings:
            db.delete(booking)
        db.query(models.MaintenanceRequest).filter(models.MaintenanceRequest.user_id == tenant.id).delete(
            synchronize_session=False
        )
        db.query(models.Review).filter(models.Review.user_id == tenant.id).delete(synchronize_session=False)
        db.query(models.Package).filter(models.Package.user_id == tenant.id).update(
            {models.Package.user_id: None}, synchronize_session=False
        )
        db.delete(tenant)
    background.add_task(
        record_activity, principal.id, "delete_tenant", "user", tenant_id, f"{principal.username} deleted tenant {tenant_id}"
    )


@router.put(
    "/tenants/{tenant_id}/confirm",
    response_model=schemas.TenantWriteResponse,
    dependencies=[Depends(rate_limit("write"))],
)
def confirm_tenant(
    tenant_id: int,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    principal: Principal = Depends(require_roles(*MANAGERS)),
) -> schemas.TenantWriteResponse:
    """Confirm the tenant's pending bookings in scope and promote a guest to tenant."""
    tenant = _load_tenant(db, tenant_id)
    _ensure_manages_tenant(db, scope, tenant.id)
    pending = [b for b in _scoped_bookings(db, scope, tenant.id) if b.status == "pending"]
    if not pending:
        raise NotFound("No pending bookings for this tenant", {"tenant_id": tenant.id})
    with atomic(db):
        for booking in pending:
            lock_room(db, booking.room_id)
            ensure_room_available(db, booking.room_id, booking.start_date, booking.end_date, exclude_booking_id=booking.id)
            booking.status = "confirmed"
            db.flush()
        if tenant.role == "guest":
            tenant.role = "tenant"
    db.refresh(tenant)
    for b in pending:
        db.refresh(b)
    background.add_task(
        record_activity, principal.id, "confirm_tenant", "user", tenant.id, f"{principal.username} confirmed tenant {tenant.id}"
    )
    return schemas.TenantWriteResponse(
        tenant=schemas.UserRead.model_validate(tenant),
        bookings=[schemas.BookingRead.model_validate(b) for b in pending],
    )
