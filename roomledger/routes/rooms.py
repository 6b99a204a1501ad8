# Room endpoints for owners/staff/admins; every query goes through the caller's scope.
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..audit import record_activity
from ..availability import ACTIVE_BOOKING_STATUSES, room_statuses
from ..db import atomic, get_db
from ..errors import Conflict, NotFound
from ..rate_limit import rate_limit
from ..scope import AccessScope, Principal
from .. import models, schemas
from .auth import get_scope, require_roles

router = APIRouter()

MANAGERS = ("admin", "owner", "staff")


def _ensure_code_free(db: Session, property_id: int, code: Optional[str], exclude_room_id: Optional[int] = None) -> None:
    if not code:
        return
    q = db.query(models.Room.id).filter(models.Room.property_id == property_id, models.Room.code == code)
    if exclude_room_id is not None:
        q = q.filter(models.Room.id != exclude_room_id)
    if q.first():
        raise Conflict("Room code already used in this property", {"code": code})


def _with_status(db: Session, rooms: List[models.Room]) -> List[schemas.RoomWithStatus]:
    statuses = room_statuses(db, [r.id for r in rooms], date.today())
    return [
        schemas.RoomWithStatus(**schemas.RoomRead.model_validate(r).model_dump(), status=statuses[r.id])
        for r in rooms
    ]


@router.get("/rooms", response_model=List[schemas.RoomWithStatus])
def list_rooms(
    property_id: Optional[int] = Query(default=None, ge=1),
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    _: Principal = Depends(require_roles(*MANAGERS)),
) -> List[schemas.RoomWithStatus]:
    q = scope.restrict(db.query(models.Room), "room")
    if property_id is not None:
        q = q.filter(models.Room.property_id == property_id)
    rooms = q.order_by(models.Room.property_id.asc(), models.Room.name.asc(), models.Room.id.asc()).all()
    return _with_status(db, rooms)


@router.get("/rooms/{room_id}", response_model=schemas.RoomWithStatus)
def get_room(
    room_id: int,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    _: Principal = Depends(require_roles(*MANAGERS)),
) -> schemas.RoomWithStatus:
    room = scope.fetch(db, "room", room_id)
    return _with_status(db, [room])[0]


@router.post(
    "/rooms",
    response_model=schemas.RoomRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("write"))],
)
def create_room(
    payload: schemas.RoomCreate,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    principal: Principal = Depends(require_roles(*MANAGERS)),
) -> models.Room:
    if db.get(models.Property, payload.property_id) is None:
        raise NotFound("Property not found", {"property_id": payload.property_id})
    scope.ensure_property(payload.property_id)
    with atomic(db):
        _ensure_code_free(db, payload.property_id, payload.code)
        room = models.Room(**payload.model_dump())
        db.add(room)
    db.refresh(room)
    background.add_task(
        record_activity, principal.id, "add_room", "room", room.id, f"{principal.username} added room {room.name}"
    )
    return room


@router.put(
    "/rooms/{room_id}",
    response_model=schemas.RoomRead,
    dependencies=[Depends(rate_limit("write"))],
)
def update_room(
    room_id: int,
    payload: schemas.RoomUpdate,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    principal: Principal = Depends(require_roles(*MANAGERS)),
) -> models.Room:
    room = scope.fetch(db, "room", room_id)
    changes = payload.model_dump(exclude_unset=True)
    with atomic(db):
        if "code" in changes:
            _ensure_code_free(db, room.property_id, changes["code"], exclude_room_id=room.id)
        for field, value in changes.items():
            setattr(room, field, value)
    db.refresh(room)
    background.add_task(
        record_activity, principal.id, "edit_room", "room", room.id, f"{principal.username} edited room {room.name}"
    )
    return room


@router.delete(
    "/rooms/{room_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(rate_limit("write"))],
)
def delete_room(
    room_id: int,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    principal: Principal = Depends(require_roles(*MANAGERS)),
) -> None:
    """Delete a room that no pending/confirmed booking and no bill still references."""
    room = scope.fetch(db, "room", room_id)
    name = room.name
    with atomic(db):
        active = (
            db.query(func.count(models.Booking.id))
            .filter(models.Booking.room_id == room.id, models.Booking.status.in_(ACTIVE_BOOKING_STATUSES))
            .scalar()
        )
        billed = (
            db.query(func.count(models.Bill.id))
            .join(models.Booking, models.Booking.id == models.Bill.booking_id)
            .filter(models.Booking.room_id == room.id)
            .scalar()
        )
        reasons = {k: v for k, v in (("bookings", active), ("bills", billed)) if v}
        if reasons:
            raise Conflict("Room is still in use", {"room_id": room.id, "reasons": reasons})

        # Only cancelled, unbilled bookings remain at this point
        db.query(models.Booking).filter(models.Booking.room_id == room.id).delete(synchronize_session=False)
        db.query(models.MaintenanceRequest).filter(models.MaintenanceRequest.room_id == room.id).delete(
            synchronize_session=False
        )
        db.query(models.Furniture).filter(models.Furniture.room_id == room.id).delete(synchronize_session=False)
        db.delete(room)
    background.add_task(record_activity, principal.id, "delete_room", "room", room_id, f"{principal.username} deleted room {name}")
