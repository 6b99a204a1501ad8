# Staff accounts and their property bindings.
# Owners only ever see or change bindings to their own properties; a staff member
# shared with another owner keeps those other bindings.
from collections import defaultdict
from typing import Dict, List

from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.orm import Session

from ..audit import record_activity
from ..db import atomic, get_db
from ..errors import Forbidden, NotFound, ValidationError
from ..rate_limit import rate_limit
from ..scope import AccessScope, Principal
from .. import models, schemas
from .auth import ensure_identity_free, get_scope, hash_password, require_roles

router = APIRouter()


def _bindings(db: Session, scope: AccessScope, staff_ids=None) -> Dict[int, List[int]]:
    q = scope.restrict(db.query(models.PropertyStaff), "staff_assignment")
    if staff_ids is not None:
        q = q.filter(models.PropertyStaff.staff_id.in_(staff_ids))
    out: Dict[int, List[int]] = defaultdict(list)
    for row in q.order_by(models.PropertyStaff.property_id.asc()).all():
        out[row.staff_id].append(row.property_id)
    return out


def _staff_read(user: models.User, property_ids: List[int]) -> schemas.StaffRead:
    return schemas.StaffRead(**schemas.UserRead.model_validate(user).model_dump(), property_ids=property_ids)


def _load_staff(db: Session, scope: AccessScope, staff_id: int) -> models.User:
    user = db.get(models.User, staff_id)
    if user is None or user.role != "staff":
        raise NotFound("Staff member not found", {"staff_id": staff_id})
    if not scope.unrestricted and not _bindings(db, scope, [staff_id]):
        raise Forbidden("Not allowed to manage this staff member")
    return user


def _bind(db: Session, scope: AccessScope, staff_id: int, property_ids: List[int]) -> None:
    for property_id in sorted(set(property_ids)):
        if db.get(models.Property, property_id) is None:
            raise NotFound("Property not found", {"property_id": property_id})
        scope.ensure_property(property_id)
        db.add(models.PropertyStaff(property_id=property_id, staff_id=staff_id))


@router.get("/staff", response_model=List[schemas.StaffRead])
def list_staff(
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    _: Principal = Depends(require_roles("admin", "owner", "staff")),
) -> List[schemas.StaffRead]:
    bindings = _bindings(db, scope)
    if scope.unrestricted:
        users = db.query(models.User).filter(models.User.role == "staff")
    else:
        users = db.query(models.User).filter(models.User.id.in_(list(bindings)))
    return [_staff_read(u, bindings.get(u.id, [])) for u in users.order_by(models.User.id.asc()).all()]


@router.post(
    "/staff",
    response_model=schemas.StaffRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("write"))],
)
def create_staff(
    payload: schemas.StaffCreate,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    principal: Principal = Depends(require_roles("admin", "owner")),
) -> schemas.StaffRead:
    with atomic(db):
        ensure_identity_free(db, payload.username, payload.email)
        user = models.User(
            username=payload.username,
            fullname=payload.fullname,
            email=payload.email,
            phone=payload.phone,
            password_hash=hash_password(payload.password),
            role="staff",
        )
        db.add(user)
        db.flush()
        _bind(db, scope, user.id, payload.property_ids)
    db.refresh(user)
    background.add_task(
        record_activity, principal.id, "add_staff", "user", user.id, f"{principal.username} added staff {user.username}"
    )
    return _staff_read(user, _bindings(db, scope, [user.id]).get(user.id, []))


@router.put(
    "/staff/{staff_id}",
    response_model=schemas.StaffRead,
    dependencies=[Depends(rate_limit("write"))],
)
def update_staff(
    staff_id: int,
    payload: schemas.StaffUpdate,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    principal: Principal = Depends(require_roles("admin", "owner")),
) -> schemas.StaffRead:
    """Update profile fields; property_ids replaces the bindings inside the caller's scope."""
    user = _load_staff(db, scope, staff_id)
    if payload.property_ids is not None and not payload.property_ids:
        raise ValidationError("property_ids must not be empty", {"staff_id": staff_id})
    with atomic(db):
        if payload.email is not None and payload.email != user.email:
            ensure_identity_free(db, None, payload.email, exclude_user_id=user.id)
            user.email = payload.email
        if payload.fullname is not None:
            user.fullname = payload.fullname
        if payload.phone is not None:
            user.phone = payload.phone
        if payload.password:
            user.password_hash = hash_password(payload.password)
        if payload.property_ids is not None:
            scope.restrict(
                db.query(models.PropertyStaff).filter(models.PropertyStaff.staff_id == user.id), "staff_assignment"
            ).delete(synchronize_session=False)
            db.flush()
            _bind(db, scope, user.id, payload.property_ids)
    db.refresh(user)
    background.add_task(
        record_activity, principal.id, "edit_staff", "user", user.id, f"{principal.username} edited staff {user.username}"
    )
    return _staff_read(user, _bindings(db, scope, [user.id]).get(user.id, []))


@router.delete(
    "/staff/{staff_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(rate_limit("write"))],
)
def delete_staff(
    staff_id: int,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    principal: Principal = Depends(require_roles("admin", "owner")),
) -> None:
    """Unbind from the caller's properties; the account goes once no binding is left."""
    user = _load_staff(db, scope, staff_id)
    with atomic(db):
        scope.restrict(
            db.query(models.PropertyStaff).filter(models.PropertyStaff.staff_id == user.id), "staff_assignment"
        ).delete(synchronize_session=False)
        db.flush()
        remaining = db.query(models.PropertyStaff.property_id).filter(models.PropertyStaff.staff_id == user.id).first()
        if remaining is None:
            db.delete(user)
    background.add_task(
        record_activity, principal.id, "delete_staff", "user", staff_id, f"{principal.username} removed staff {staff_id}"
    )
