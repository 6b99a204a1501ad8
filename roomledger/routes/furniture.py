# Room furniture inventory: what each room is equipped with, kept by owners/staff.
from collections import defaultdict
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.orm import Session

from ..audit import record_activity
from ..db import atomic, get_db
from ..errors import NotFound
from ..rate_limit import rate_limit
from ..scope import AccessScope, Principal
from .. import models, schemas
from .auth import get_scope, require_roles

router = APIRouter()

MANAGERS = ("admin", "owner", "staff")


def _ensure_target_room(db: Session, scope: AccessScope, room_id: int) -> None:
    if db.get(models.Room, room_id) is None:
        raise NotFound("Room not found", {"room_id": room_id})
    scope.ensure(db, "room", room_id)


@router.get("/furniture", response_model=List[schemas.FurnitureGroup])
def list_furniture(
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    _: Principal = Depends(require_roles(*MANAGERS)),
) -> List[schemas.FurnitureGroup]:
    """Inventory grouped by property, ordered by room code within each group."""
    props = (
        scope.restrict(db.query(models.Property), "property")
        .order_by(models.Property.name.asc(), models.Property.id.asc())
        .all()
    )
    rows = (
        scope.restrict(db.query(models.Furniture, models.Room), "furniture")
        .join(models.Room, models.Room.id == models.Furniture.room_id)
        .order_by(models.Room.code.asc(), models.Furniture.name.asc(), models.Furniture.id.asc())
        .all()
    )
    by_property = defaultdict(list)
    for item, room in rows:
        by_property[room.property_id].append(
            schemas.FurnitureItem(
                **schemas.FurnitureRead.model_validate(item).model_dump(),
                room_name=room.name,
                room_code=room.code,
            )
        )
    return [
        schemas.FurnitureGroup(property_id=p.id, property_name=p.name, furniture=by_property.get(p.id, []))
        for p in props
    ]


@router.post(
    "/furniture",
    response_model=schemas.FurnitureRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("write"))],
)
def create_furniture(
    payload: schemas.FurnitureCreate,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    principal: Principal = Depends(require_roles(*MANAGERS)),
) -> models.Furniture:
    _ensure_target_room(db, scope, payload.room_id)
    with atomic(db):
        item = models.Furniture(room_id=payload.room_id, name=payload.name, quantity=payload.quantity)
        db.add(item)
    db.refresh(item)
    background.add_task(
        record_activity,
        principal.id,
        "add_furniture",
        "room",
        item.room_id,
        f"{principal.username} added {item.quantity} x {item.name}",
    )
    return item


@router.put(
    "/furniture/{furniture_id}",
    response_model=schemas.FurnitureRead,
    dependencies=[Depends(rate_limit("write"))],
)
def update_furniture(
    furniture_id: int,
    payload: schemas.FurnitureUpdate,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    principal: Principal = Depends(require_roles(*MANAGERS)),
) -> models.Furniture:
    item = scope.fetch(db, "furniture", furniture_id)
    data = payload.model_dump(exclude_none=True)
    if "room_id" in data and data["room_id"] != item.room_id:
        _ensure_target_room(db, scope, data["room_id"])
    with atomic(db):
        for field, value in data.items():
            setattr(item, field, value)
    db.refresh(item)
    background.add_task(
        record_activity, principal.id, "edit_furniture", "room", item.room_id, f"{principal.username} edited {item.name}"
    )
    return item


@router.delete(
    "/furniture/{furniture_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(rate_limit("write"))],
)
def delete_furniture(
    furniture_id: int,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    principal: Principal = Depends(require_roles(*MANAGERS)),
) -> None:
    item = scope.fetch(db, "furniture", furniture_id)
    room_id, name = item.room_id, item.name
    with atomic(db):
        db.delete(item)
    background.add_task(
        record_activity, principal.id, "delete_furniture", "room", room_id, f"{principal.username} removed {name}"
    )
