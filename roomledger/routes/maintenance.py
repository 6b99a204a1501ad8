# Maintenance requests: tenants report and manage their own; owners/staff/admins track progress.
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.orm import Session

from ..audit import record_activity
from ..db import atomic, get_db
from ..errors import Forbidden, NotFound
from ..lifecycle import cancel_maintenance, edit_maintenance, set_maintenance_progress
from ..rate_limit import rate_limit
from ..scope import AccessScope, Principal
from .. import models, schemas
from .auth import get_scope, require_roles

router = APIRouter()


@router.get("/maintenance", response_model=List[schemas.MaintenanceRead])
def list_maintenance(
    status_filter: Optional[schemas.MaintenanceStatus] = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
) -> List[models.MaintenanceRequest]:
    q = scope.restrict(db.query(models.MaintenanceRequest), "maintenance")
    if status_filter:
        q = q.filter(models.MaintenanceRequest.status == status_filter)
    return q.order_by(models.MaintenanceRequest.created_at.desc(), models.MaintenanceRequest.id.desc()).all()


@router.post(
    "/maintenance",
    response_model=schemas.MaintenanceRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("write"))],
)
def create_maintenance(
    payload: schemas.MaintenanceCreate,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_roles("tenant")),
) -> models.MaintenanceRequest:
    """A tenant may only report problems in a room they hold a confirmed booking for."""
    if db.get(models.Room, payload.room_id) is None:
        raise NotFound("Room not found", {"room_id": payload.room_id})
    holds_room = (
        db.query(models.Booking.id)
        .filter(
            models.Booking.user_id == principal.id,
            models.Booking.room_id == payload.room_id,
            models.Booking.status == "confirmed",
        )
        .first()
    )
    if holds_room is None:
        raise Forbidden("You can only report maintenance for your own room")

    with atomic(db):
        obj = models.MaintenanceRequest(
            user_id=principal.id,
            room_id=payload.room_id,
            description=payload.description,
            status="pending",
        )
        db.add(obj)
    db.refresh(obj)
    background.add_task(
        record_activity,
        principal.id,
        "create_maintenance",
        "maintenance_request",
        obj.id,
        f"{principal.username} reported maintenance for room {obj.room_id}",
    )
    return obj


@router.put(
    "/maintenance/{maintenance_id}",
    response_model=schemas.MaintenanceRead,
    dependencies=[Depends(rate_limit("write"))],
)
def update_maintenance(
    maintenance_id: int,
    payload: schemas.MaintenanceUpdate,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    _: Principal = Depends(require_roles("tenant")),
) -> models.MaintenanceRequest:
    obj = scope.fetch(db, "maintenance", maintenance_id)
    with atomic(db):
        edit_maintenance(obj, payload.description)
    db.refresh(obj)
    return obj


@router.put(
    "/maintenance/{maintenance_id}/cancel",
    response_model=schemas.MaintenanceRead,
    dependencies=[Depends(rate_limit("write"))],
)
def cancel_maintenance_request(
    maintenance_id: int,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    principal: Principal = Depends(require_roles("tenant")),
) -> models.MaintenanceRequest:
    obj = scope.fetch(db, "maintenance", maintenance_id)
    with atomic(db):
        cancel_maintenance(obj)
    db.refresh(obj)
    background.add_task(
        record_activity,
        principal.id,
        "cancel_maintenance",
        "maintenance_request",
        obj.id,
        f"{principal.username} cancelled maintenance request {obj.id}",
    )
    return obj


@router.put(
    "/maintenance/{maintenance_id}/status",
    response_model=schemas.MaintenanceRead,
    dependencies=[Depends(rate_limit("write"))],
)
def set_maintenance_status(
    maintenance_id: int,
    payload: schemas.MaintenanceStatusUpdate,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    principal: Principal = Depends(require_roles("admin", "owner", "staff")),
) -> models.MaintenanceRequest:
    obj = scope.fetch(db, "maintenance", maintenance_id)
    with atomic(db):
        set_maintenance_progress(obj, payload.status)
    db.refresh(obj)
    background.add_task(
        record_activity,
        principal.id,
        "update_maintenance_status",
        "maintenance_request",
        obj.id,
        f"{principal.username} set maintenance request {obj.id} to {obj.status}",
    )
    return obj


@router.delete(
    "/maintenance/{maintenance_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(rate_limit("write"))],
)
def delete_maintenance(
    maintenance_id: int,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    _: Principal = Depends(require_roles("tenant", "admin", "owner", "staff")),
) -> None:
    obj = scope.fetch(db, "maintenance", maintenance_id)
    with atomic(db):
        db.delete(obj)
