# Property endpoints.
# Anyone can browse properties; owners/staff/admins manage the ones in their scope.
# Creating a property writes the property, its two utility rates and the owner binding in one transaction.
from datetime import date
from typing import Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..audit import record_activity
from ..availability import ACTIVE_BOOKING_STATUSES, room_statuses
from ..db import atomic, get_db
from ..errors import Conflict, NotFound, ValidationError
from ..rate_limit import rate_limit
from ..rates import record_rate, resolve_rates
from ..scope import AccessScope, Principal
from .. import models, schemas
from .auth import get_scope, require_roles

# Router namespace for property APIs
router = APIRouter()


def _avg_ratings(db: Session, property_ids: List[int]) -> Dict[int, float]:
    if not property_ids:
        return {}
    rows = (
        db.query(models.Review.property_id, func.avg(models.Review.rating))
        .filter(models.Review.property_id.in_(property_ids))
        .group_by(models.Review.property_id)
        .all()
    )
    return {pid: round(float(avg), 1) for pid, avg in rows if avg is not None}


def _owner_ids(db: Session, property_id: int) -> List[int]:
    rows = (
        db.query(models.PropertyOwner.owner_id)
        .filter(models.PropertyOwner.property_id == property_id)
        .order_by(models.PropertyOwner.owner_id)
        .all()
    )
    return [r[0] for r in rows]


def _bind_owners(db: Session, property_id: int, owner_ids: List[int]) -> None:
    """Replace the owner set; every id must be an existing owner account."""
    found = set()
    if owner_ids:
        rows = db.query(models.User.id).filter(models.User.id.in_(owner_ids), models.User.role == "owner").all()
        found = {r[0] for r in rows}
    missing = sorted(set(owner_ids) - found)
    if missing:
        raise ValidationError("owner_ids must reference owner accounts", {"owner_ids": missing})
    db.query(models.PropertyOwner).filter(models.PropertyOwner.property_id == property_id).delete(
        synchronize_session=False
    )
    for owner_id in sorted(found):
        db.add(models.PropertyOwner(property_id=property_id, owner_id=owner_id))


def _managed_view(db: Session, prop: models.Property, rating: Optional[float]) -> schemas.PropertyManaged:
    rates = resolve_rates(db, prop.id)
    rooms_count = db.query(func.count(models.Room.id)).filter(models.Room.property_id == prop.id).scalar() or 0
    tenants_count = (
        db.query(func.count(func.distinct(models.Booking.user_id)))
        .join(models.Room, models.Room.id == models.Booking.room_id)
        .filter(models.Room.property_id == prop.id, models.Booking.status == "confirmed")
        .scalar()
        or 0
    )
    return schemas.PropertyManaged(
        **schemas.PropertyRead.model_validate(prop).model_dump(),
        rates=schemas.UtilityRatesRead(electric=rates.electric, water=rates.water),
        rooms_count=rooms_count,
        tenants_count=tenants_count,
        avg_rating=rating,
        owner_ids=_owner_ids(db, prop.id),
    )


@router.get("/properties", response_model=List[schemas.PropertySummary])
def list_properties(db: Session = Depends(get_db)) -> List[schemas.PropertySummary]:
    """
    Public listing, newest first.

    Each entry carries its room count, how many rooms are currently available,
    the cheapest monthly/term prices and the average review rating.
    """
    props = db.query(models.Property).order_by(models.Property.id.desc()).all()
    ratings = _avg_ratings(db, [p.id for p in props])
    today = date.today()
    items: List[schemas.PropertySummary] = []
    for prop in props:
        rooms = db.query(models.Room).filter(models.Room.property_id == prop.id).all()
        statuses = room_statuses(db, [r.id for r in rooms], today)
        monthly = [r.price_monthly for r in rooms if r.price_monthly is not None]
        term = [r.price_term for r in rooms if r.price_term is not None]
        items.append(
            schemas.PropertySummary(
                **schemas.PropertyRead.model_validate(prop).model_dump(),
                rooms_count=len(rooms),
                available_rooms=sum(1 for s in statuses.values() if s == "available"),
                min_price_monthly=min(monthly) if monthly else None,
                min_price_term=min(term) if term else None,
                avg_rating=ratings.get(prop.id),
            )
        )
    return items


@router.get("/properties/mine", response_model=List[schemas.PropertyManaged])
def list_my_properties(
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    _: Principal = Depends(require_roles("admin", "owner", "staff")),
) -> List[schemas.PropertyManaged]:
    props = scope.restrict(db.query(models.Property), "property").order_by(models.Property.id.desc()).all()
    ratings = _avg_ratings(db, [p.id for p in props])
    return [_managed_view(db, p, ratings.get(p.id)) for p in props]


@router.get("/properties/{property_id}", response_model=schemas.PropertyDetail)
def get_property(property_id: int, db: Session = Depends(get_db)) -> schemas.PropertyDetail:
    prop = db.get(models.Property, property_id)
    if not prop:
        raise NotFound("Property not found", {"property_id": property_id})

    rates = resolve_rates(db, prop.id)
    rooms = (
        db.query(models.Room)
        .filter(models.Room.property_id == prop.id)
        .order_by(models.Room.name.asc(), models.Room.id.asc())
        .all()
    )
    statuses = room_statuses(db, [r.id for r in rooms], date.today())
    reviews = (
        db.query(models.Review)
        .filter(models.Review.property_id == prop.id)
        .order_by(models.Review.created_at.desc(), models.Review.id.desc())
        .all()
    )
    facilities = (
        db.query(models.Facility)
        .filter(models.Facility.property_id == prop.id)
        .order_by(models.Facility.name.asc(), models.Facility.id.asc())
        .all()
    )
    room_items = [
        schemas.RoomWithStatus(**schemas.RoomRead.model_validate(r).model_dump(), status=statuses[r.id])
        for r in rooms
    ]
    return schemas.PropertyDetail(
        **schemas.PropertyRead.model_validate(prop).model_dump(),
        rates=schemas.UtilityRatesRead(electric=rates.electric, water=rates.water),
        rooms=room_items,
        reviews=[schemas.ReviewRead.model_validate(r) for r in reviews],
        facilities=[schemas.FacilityRead.model_validate(f) for f in facilities],
        available_rooms=sum(1 for r in room_items if r.status == "available"),
        avg_rating=_avg_ratings(db, [prop.id]).get(prop.id),
    )


@router.post(
    "/properties",
    response_model=schemas.PropertyManaged,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("write"))],
)
def create_property(
    payload: schemas.PropertyCreate,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_roles("admin", "owner")),
) -> schemas.PropertyManaged:
    """
    Create a property with its electric/water rates and owner binding.

    Owners are bound to what they create; admins choose owner_ids.
    All rows commit together or not at all.
    """
    with atomic(db):
        prop = models.Property(
            name=payload.name,
            address=payload.address,
            image=payload.image,
            description=payload.description,
        )
        db.add(prop)
        db.flush()
        record_rate(db, prop.id, "electric", payload.electric_rate)
        record_rate(db, prop.id, "water", payload.water_rate)
        if principal.role == "owner":
            db.add(models.PropertyOwner(property_id=prop.id, owner_id=principal.id))
        else:
            _bind_owners(db, prop.id, payload.owner_ids)
    db.refresh(prop)
    background.add_task(
        record_activity, principal.id, "add_property", "property", prop.id, f"{principal.username} added property {prop.name}"
    )
    return _managed_view(db, prop, None)


@router.put(
    "/properties/{property_id}",
    response_model=schemas.PropertyManaged,
    dependencies=[Depends(rate_limit("write"))],
)
def update_property(
    property_id: int,
    payload: schemas.PropertyUpdate,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    principal: Principal = Depends(require_roles("admin", "owner")),
) -> schemas.PropertyManaged:
    prop = scope.fetch(db, "property", property_id)
    with atomic(db):
        for field in ("name", "address", "image", "description"):
            value = getattr(payload, field)
            if value is not None:
                setattr(prop, field, value)
        # Rate changes append a new effective row; history stays intact
        if payload.electric_rate is not None:
            record_rate(db, prop.id, "electric", payload.electric_rate)
        if payload.water_rate is not None:
            record_rate(db, prop.id, "water", payload.water_rate)
        if payload.owner_ids is not None and principal.role == "admin":
            _bind_owners(db, prop.id, payload.owner_ids)
    db.refresh(prop)
    background.add_task(
        record_activity, principal.id, "edit_property", "property", prop.id, f"{principal.username} edited property {prop.name}"
    )
    return _managed_view(db, prop, _avg_ratings(db, [prop.id]).get(prop.id))


@router.delete(
    "/properties/{property_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(rate_limit("write"))],
)
def delete_property(
    property_id: int,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    principal: Principal = Depends(require_roles("admin", "owner")),
) -> None:
    """Delete a property once nothing references it; otherwise 409 with the blocking counts."""
    prop = scope.fetch(db, "property", property_id)
    name = prop.name
    with atomic(db):
        reasons: Dict[str, int] = {}
        owners = db.query(func.count()).select_from(models.PropertyOwner).filter(
            models.PropertyOwner.property_id == prop.id
        ).scalar()
        staff = db.query(func.count()).select_from(models.PropertyStaff).filter(
            models.PropertyStaff.property_id == prop.id
        ).scalar()
        rooms = db.query(func.count(models.Room.id)).filter(models.Room.property_id == prop.id).scalar()
        bookings = (
            db.query(func.count(models.Booking.id))
            .join(models.Room, models.Room.id == models.Booking.room_id)
            .filter(models.Room.property_id == prop.id, models.Booking.status.in_(ACTIVE_BOOKING_STATUSES))
            .scalar()
        )
        for key, count in (("owners", owners), ("staff", staff), ("rooms", rooms), ("bookings", bookings)):
            if count:
                reasons[key] = count
        if reasons:
            raise Conflict("Property is still in use", {"reasons": reasons})

        for model in (models.UtilityRate, models.Review, models.Package, models.Facility):
            db.query(model).filter(model.property_id == prop.id).delete(synchronize_session=False)
        db.delete(prop)
    background.add_task(
        record_activity, principal.id, "delete_property", "property", property_id, f"{principal.username} deleted property {name}"
    )
