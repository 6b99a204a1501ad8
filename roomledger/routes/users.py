# User administration (admin only) and self-service profile edits.
from typing import Dict, List, Optional, Sequence

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..audit import record_activity
from ..availability import ACTIVE_BOOKING_STATUSES
from ..db import atomic, get_db
from ..errors import Conflict, NotFound, ValidationError
from ..rate_limit import rate_limit
from ..scope import MANAGER_ROLES, Principal
from .. import models, schemas
from .auth import ensure_identity_free, get_current_user, hash_password, require_roles

router = APIRouter()


def _binding_model(role: str):
    return models.PropertyOwner if role == "owner" else models.PropertyStaff


def _binding_user_column(role: str):
    return models.PropertyOwner.owner_id if role == "owner" else models.PropertyStaff.staff_id


def _bind_properties(db: Session, user_id: int, role: str, property_ids: Sequence[int]) -> None:
    """Add owner/staff bindings; existing bindings are kept."""
    if not property_ids:
        return
    if role not in MANAGER_ROLES:
        raise ValidationError("Only owner and staff accounts are bound to properties", {"role": role})
    wanted = sorted(set(property_ids))
    found = {pid for (pid,) in db.query(models.Property.id).filter(models.Property.id.in_(wanted)).all()}
    missing = [pid for pid in wanted if pid not in found]
    if missing:
        raise NotFound("Property not found", {"property_ids": missing})
    model, column = _binding_model(role), _binding_user_column(role)
    bound = {pid for (pid,) in db.query(model.property_id).filter(column == user_id).all()}
    for pid in wanted:
        if pid in bound:
            continue
        if role == "owner":
            db.add(models.PropertyOwner(property_id=pid, owner_id=user_id))
        else:
            db.add(models.PropertyStaff(property_id=pid, staff_id=user_id))


def _unbind_all(db: Session, user_id: int) -> None:
    db.query(models.PropertyOwner).filter(models.PropertyOwner.owner_id == user_id).delete(synchronize_session=False)
    db.query(models.PropertyStaff).filter(models.PropertyStaff.staff_id == user_id).delete(synchronize_session=False)


def _load_user(db: Session, user_id: int) -> models.User:
    user = db.get(models.User, user_id)
    if user is None:
        raise NotFound("User not found", {"user_id": user_id})
    return user


@router.get("/users", response_model=List[schemas.UserRead])
def list_users(
    role: Optional[schemas.Role] = Query(default=None),
    db: Session = Depends(get_db),
    _: Principal = Depends(require_roles("admin")),
) -> List[models.User]:
    q = db.query(models.User)
    if role:
        q = q.filter(models.User.role == role)
    return q.order_by(models.User.id.asc()).all()


@router.get("/users/owners", response_model=List[schemas.OwnerOption])
def list_owners(
    db: Session = Depends(get_db),
    _: Principal = Depends(require_roles("admin")),
) -> List[models.User]:
    """Owner accounts to choose from when binding a property."""
    return db.query(models.User).filter(models.User.role == "owner").order_by(models.User.username.asc()).all()


@router.post(
    "/users",
    response_model=schemas.UserRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("write"))],
)
def create_user(
    payload: schemas.UserCreate,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_roles("admin")),
) -> models.User:
    with atomic(db):
        ensure_identity_free(db, payload.username, payload.email)
        user = models.User(
            username=payload.username,
            fullname=payload.fullname,
            email=payload.email,
            phone=payload.phone,
            line_user_id=payload.line_user_id,
            password_hash=hash_password(payload.password),
            role=payload.role,
        )
        db.add(user)
        db.flush()
        _bind_properties(db, user.id, user.role, payload.property_ids)
    db.refresh(user)
    background.add_task(
        record_activity,
        principal.id,
        "add_user",
        "user",
        user.id,
        f"{principal.username} created {user.role} account {user.username}",
    )
    return user


@router.put(
    "/users/me",
    response_model=schemas.UserRead,
    dependencies=[Depends(rate_limit("write"))],
)
def update_profile(
    payload: schemas.ProfileUpdate,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> models.User:
    """Edit the caller's own profile; omitted fields stay as they are, empty strings clear them."""
    data = payload.model_dump(exclude_unset=True)
    password = data.pop("password", None)
    if data.get("username") is None:
        data.pop("username", None)
    with atomic(db):
        ensure_identity_free(db, data.get("username"), data.get("email"), exclude_user_id=user.id)
        for field, value in data.items():
            # Empty strings clear optional fields
            setattr(user, field, value if field == "username" else (value or None))
        if password:
            user.password_hash = hash_password(password)
    db.refresh(user)
    background.add_task(
        record_activity, user.id, "edit_profile", "user", user.id, f"{user.username} edited their profile"
    )
    return user


@router.put(
    "/users/{user_id}",
    response_model=schemas.UserRead,
    dependencies=[Depends(rate_limit("write"))],
)
def update_user(
    user_id: int,
    payload: schemas.UserUpdate,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_roles("admin")),
) -> models.User:
    """
    Edit any account.

    Leaving the owner or staff role drops the account's property bindings;
    property_ids adds bindings for the (new) owner or staff role.
    """
    user = _load_user(db, user_id)
    data = payload.model_dump(exclude_unset=True)
    password = data.pop("password", None)
    property_ids = data.pop("property_ids", [])
    new_role = data.pop("role", None) or user.role
    if data.get("username") is None:
        data.pop("username", None)
    with atomic(db):
        ensure_identity_free(db, data.get("username"), data.get("email"), exclude_user_id=user.id)
        for field, value in data.items():
            setattr(user, field, value)
        if password:
            user.password_hash = hash_password(password)
        if new_role != user.role and user.role in MANAGER_ROLES:
            _unbind_all(db, user.id)
        user.role = new_role
        _bind_properties(db, user.id, new_role, property_ids)
    db.refresh(user)
    background.add_task(
        record_activity, principal.id, "update_user", "user", user.id, f"{principal.username} updated user {user.username}"
    )
    return user


@router.delete(
    "/users/{user_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(rate_limit("write"))],
)
def delete_user(
    user_id: int,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_roles("admin")),
) -> None:
    """Delete an account nothing depends on; otherwise 409 with the blocking counts."""
    user = _load_user(db, user_id)
    if user.id == principal.id:
        raise ValidationError("Administrators cannot delete their own account", {"user_id": user.id})
    username = user.username
    with atomic(db):
        reasons: Dict[str, int] = {}
        if user.role in MANAGER_ROLES:
            model, column = _binding_model(user.role), _binding_user_column(user.role)
            bound = db.query(func.count()).select_from(model).filter(column == user.id).scalar()
            if bound:
                reasons["properties"] = bound
        active = (
            db.query(func.count(models.Booking.id))
            .filter(models.Booking.user_id == user.id, models.Booking.status.in_(ACTIVE_BOOKING_STATUSES))
            .scalar()
        )
        bills = (
            db.query(func.count(models.Bill.id))
            .join(models.Booking, models.Booking.id == models.Bill.booking_id)
            .filter(models.Booking.user_id == user.id)
            .scalar()
        )
        for key, count in (("bookings", active), ("bills", bills)):
            if count:
                reasons[key] = count
        if reasons:
            raise Conflict("User is still in use", {"user_id": user.id, "reasons": reasons})

        _unbind_all(db, user.id)
        db.query(models.Booking).filter(models.Booking.user_id == user.id).delete(synchronize_session=False)
        db.query(models.MaintenanceRequest).filter(models.MaintenanceRequest.user_id == user.id).delete(
            synchronize_session=False
        )
        db.query(models.Review).filter(models.Review.user_id == user.id).delete(synchronize_session=False)
        db.query(models.Package).filter(models.Package.user_id == user.id).update(
            {models.Package.user_id: None}, synchronize_session=False
        )
        db.delete(user)
    background.add_task(
        record_activity, principal.id, "delete_user", "user", user_id, f"{principal.username} deleted user {username}"
    )
