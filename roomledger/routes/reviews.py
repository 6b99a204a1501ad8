# Property reviews. Tenants review properties they have stayed at; managers read
# the reviews of their own properties; admins read everything.
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.orm import Session

from ..audit import record_activity
from ..db import atomic, get_db
from ..errors import Forbidden, NotFound
from ..rate_limit import rate_limit
from ..scope import AccessScope, Principal
from .. import models, schemas
from .auth import get_scope, require_roles

router = APIRouter()


def _has_stayed(db: Session, user_id: int, property_id: int) -> bool:
    hit = (
        db.query(models.Booking.id)
        .join(models.Room, models.Room.id == models.Booking.room_id)
        .filter(
            models.Booking.user_id == user_id,
            models.Booking.status == "confirmed",
            models.Room.property_id == property_id,
        )
        .first()
    )
    return hit is not None


@router.get("/reviews", response_model=List[schemas.ReviewRead])
def list_reviews(
    property_id: Optional[int] = Query(default=None, ge=1),
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
) -> List[models.Review]:
    q = scope.restrict(db.query(models.Review), "review")
    if property_id is not None:
        q = q.filter(models.Review.property_id == property_id)
    return q.order_by(models.Review.created_at.desc(), models.Review.id.desc()).all()


@router.post(
    "/reviews",
    response_model=schemas.ReviewRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("write"))],
)
def create_review(
    payload: schemas.ReviewCreate,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_roles("tenant")),
) -> models.Review:
    if db.get(models.Property, payload.property_id) is None:
        raise NotFound("Property not found", {"property_id": payload.property_id})
    if not _has_stayed(db, principal.id, payload.property_id):
        raise Forbidden("You can only review properties you have a confirmed booking at")
    with atomic(db):
        review = models.Review(
            property_id=payload.property_id,
            user_id=principal.id,
            rating=payload.rating,
            comment=payload.comment,
        )
        db.add(review)
    db.refresh(review)
    background.add_task(
        record_activity,
        principal.id,
        "add_review",
        "property",
        review.property_id,
        f"{principal.username} rated property {review.property_id} {review.rating}/5",
    )
    return review


@router.put(
    "/reviews/{review_id}",
    response_model=schemas.ReviewRead,
    dependencies=[Depends(rate_limit("write"))],
)
def update_review(
    review_id: int,
    payload: schemas.ReviewUpdate,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    _: Principal = Depends(require_roles("tenant")),
) -> models.Review:
    review = scope.fetch(db, "review", review_id)
    with atomic(db):
        for field, value in payload.model_dump(exclude_unset=True).items():
            setattr(review, field, value)
    db.refresh(review)
    return review


@router.delete(
    "/reviews/{review_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(rate_limit("write"))],
)
def delete_review(
    review_id: int,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    _: Principal = Depends(require_roles("tenant", "admin")),
) -> None:
    review = scope.fetch(db, "review", review_id)
    with atomic(db):
        db.delete(review)
