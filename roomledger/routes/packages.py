# Front-desk parcels: owners/staff log and notify, the recipient tenant confirms pickup.
# Package status only moves forward; "received" is terminal.
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.orm import Session

from ..audit import record_activity
from ..db import atomic, get_db
from ..errors import ValidationError
from ..lifecycle import set_package_status
from ..notifications import build_package_message, send_message
from ..rate_limit import rate_limit
from ..scope import AccessScope, Principal
from .. import models, schemas
from .auth import get_scope, require_roles

router = APIRouter()

MANAGERS = ("admin", "owner", "staff")


def _ensure_recipient(db: Session, user_id: Optional[int]) -> None:
    if user_id is None:
        return
    user = db.get(models.User, user_id)
    if user is None or user.role != "tenant":
        raise ValidationError("Package recipient must be a tenant", {"user_id": user_id})


@router.get("/packages", response_model=List[schemas.PackageRead])
def list_packages(
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
) -> List[models.Package]:
    q = scope.restrict(db.query(models.Package), "package")
    return q.order_by(models.Package.created_at.desc(), models.Package.id.desc()).all()


@router.post(
    "/packages",
    response_model=schemas.PackageRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("write"))],
)
def create_package(
    payload: schemas.PackageCreate,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    principal: Principal = Depends(require_roles(*MANAGERS)),
) -> models.Package:
    scope.ensure_property(payload.property_id)
    _ensure_recipient(db, payload.user_id)
    with atomic(db):
        pkg = models.Package(
            property_id=payload.property_id,
            user_id=payload.user_id,
            name=payload.name,
            description=payload.description,
            price=payload.price,
            status="pending",
        )
        db.add(pkg)
    db.refresh(pkg)
    background.add_task(
        record_activity,
        principal.id,
        "create_package",
        "package",
        pkg.id,
        f"{principal.username} logged package {pkg.name} at property {pkg.property_id}",
    )
    return pkg


@router.put(
    "/packages/{package_id}",
    response_model=schemas.PackageRead,
    dependencies=[Depends(rate_limit("write"))],
)
def update_package(
    package_id: int,
    payload: schemas.PackageUpdate,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    principal: Principal = Depends(require_roles(*MANAGERS)),
) -> models.Package:
    pkg = scope.fetch(db, "package", package_id)
    data = payload.model_dump(exclude_unset=True)
    new_status = data.pop("status", None)
    if "user_id" in data:
        _ensure_recipient(db, data["user_id"])
    with atomic(db):
        for field, value in data.items():
            setattr(pkg, field, value)
        if new_status is not None:
            set_package_status(pkg, new_status, datetime.now(timezone.utc))
    db.refresh(pkg)
    background.add_task(
        record_activity, principal.id, "update_package", "package", pkg.id, f"{principal.username} edited package {pkg.name}"
    )
    return pkg


@router.put(
    "/packages/{package_id}/tenant",
    response_model=schemas.PackageRead,
    dependencies=[Depends(rate_limit("write"))],
)
def receive_package(
    package_id: int,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    principal: Principal = Depends(require_roles("tenant")),
) -> models.Package:
    """The recipient confirms pickup. Confirming twice is harmless."""
    pkg = scope.fetch(db, "package", package_id)
    already = pkg.status == "received"
    with atomic(db):
        set_package_status(pkg, "received", datetime.now(timezone.utc))
    db.refresh(pkg)
    if not already:
        background.add_task(
            record_activity,
            principal.id,
            "receive_package",
            "package",
            pkg.id,
            f"{principal.username} picked up package {pkg.name}",
        )
    return pkg


@router.post(
    "/packages/{package_id}/notify",
    response_model=schemas.NotifyResult,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(rate_limit("write"))],
)
def notify_package(
    package_id: int,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    _: Principal = Depends(require_roles(*MANAGERS)),
) -> schemas.NotifyResult:
    pkg = scope.fetch(db, "package", package_id)
    recipient = db.get(models.User, pkg.user_id) if pkg.user_id else None
    if recipient is None or not recipient.line_user_id:
        raise ValidationError("Recipient has no LINE account linked", {"package_id": pkg.id})
    prop = db.get(models.Property, pkg.property_id)
    message = build_package_message(pkg, property_name=prop.name if prop else "")
    background.add_task(send_message, recipient.line_user_id, message)
    return schemas.NotifyResult(queued=True)


@router.delete(
    "/packages/{package_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(rate_limit("write"))],
)
def delete_package(
    package_id: int,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    principal: Principal = Depends(require_roles(*MANAGERS)),
) -> None:
    pkg = scope.fetch(db, "package", package_id)
    with atomic(db):
        db.delete(pkg)
    background.add_task(
        record_activity, principal.id, "delete_package", "package", package_id, f"{principal.username} deleted package {package_id}"
    )
