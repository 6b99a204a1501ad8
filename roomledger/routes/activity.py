# Activity feed: admins see everything; owners/staff see entries about their properties and rooms.
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy import and_, false, or_, select
from sqlalchemy.orm import Session

from ..db import get_db
from ..scope import AccessScope, Principal
from .. import models, schemas
from .auth import get_scope, require_roles

router = APIRouter()

FEED_LIMIT = 50


@router.get("/activity", response_model=List[schemas.ActivityRead])
def list_activity(
    limit: int = Query(default=FEED_LIMIT, ge=1, le=FEED_LIMIT),
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_scope),
    _: Principal = Depends(require_roles("admin", "owner", "staff")),
) -> List[models.ActivityLog]:
    q = db.query(models.ActivityLog)
    if not scope.unrestricted:
        ids = sorted(scope.property_ids or ())
        if ids:
            rooms = select(models.Room.id).where(models.Room.property_id.in_(ids))
            q = q.filter(
                or_(
                    and_(models.ActivityLog.target_type == "property", models.ActivityLog.target_id.in_(ids)),
                    and_(models.ActivityLog.target_type == "room", models.ActivityLog.target_id.in_(rooms)),
                )
            )
        else:
            q = q.filter(false())
    return q.order_by(models.ActivityLog.created_at.desc(), models.ActivityLog.id.desc()).limit(limit).all()
