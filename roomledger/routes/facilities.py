# Property facilities (amenities) kept by owners/staff and shown on the public property page.
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


def _ensure_target_property(db: Session, scope: AccessScope, property_id: int) -> None:
    if db.get(models.Property, property_id) is None:
        raise NotFound("Property not found", {"property_id": property_id})
    scope.ensure_property(property_id)


@router.get("/facilities", response_model=List[schemas.FacilityGroup])
def list_facilities(
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    _: Principal = Depends(require_roles(*MANAGERS)),
) -> List[schemas.FacilityGroup]:
    """Facilities grouped by property, one group per property in scope (empty groups included)."""
    props = (
        scope.restrict(db.query(models.Property), "property")
        .order_by(models.Property.name.asc(), models.Property.id.asc())
        .all()
    )
    rows = (
        scope.restrict(db.query(models.Facility), "facility")
        .order_by(models.Facility.created_at.desc(), models.Facility.id.desc())
        .all()
    )
    by_property = defaultdict(list)
    for row in rows:
        by_property[row.property_id].append(schemas.FacilityRead.model_validate(row))
    return [
        schemas.FacilityGroup(property_id=p.id, property_name=p.name, facilities=by_property.get(p.id, []))
        for p in props
    ]


@router.post(
    "/facilities",
    response_model=schemas.FacilityRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("write"))],
)
def create_facility(
    payload: schemas.FacilityCreate,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    principal: Principal = Depends(require_roles(*MANAGERS)),
) -> models.Facility:
    _ensure_target_property(db, scope, payload.property_id)
    with atomic(db):
        facility = models.Facility(property_id=payload.property_id, name=payload.name, icon=payload.icon)
        db.add(facility)
    db.refresh(facility)
    background.add_task(
        record_activity,
        principal.id,
        "add_facility",
        "property",
        facility.property_id,
        f"{principal.username} added facility {facility.name}",
    )
    return facility


@router.put(
    "/facilities/{facility_id}",
    response_model=schemas.FacilityRead,
    dependencies=[Depends(rate_limit("write"))],
)
def update_facility(
    facility_id: int,
    payload: schemas.FacilityUpdate,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    principal: Principal = Depends(require_roles(*MANAGERS)),
) -> models.Facility:
    facility = scope.fetch(db, "facility", facility_id)
    # Moving a facility needs access to both properties
    if payload.property_id != facility.property_id:
        _ensure_target_property(db, scope, payload.property_id)
    with atomic(db):
        facility.property_id = payload.property_id
        facility.name = payload.name
        facility.icon = payload.icon
    db.refresh(facility)
    background.add_task(
        record_activity,
        principal.id,
        "edit_facility",
        "property",
        facility.property_id,
        f"{principal.username} edited facility {facility.name}",
    )
    return facility


@router.delete(
    "/facilities/{facility_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(rate_limit("write"))],
)
def delete_facility(
    facility_id: int,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    principal: Principal = Depends(require_roles(*MANAGERS)),
) -> None:
    facility = scope.fetch(db, "facility", facility_id)
    property_id, name = facility.property_id, facility.name
    with atomic(db):
        db.delete(facility)
    background.add_task(
        record_activity, principal.id, "delete_facility", "property", property_id, f"{principal.username} deleted facility {name}"
    )
