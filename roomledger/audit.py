# Activity log sink: who did what to which record.
# Writes go through a dedicated session so an audit failure can never roll back
# (or be rolled back by) the request's own transaction.
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from . import models
from .db import SessionLocal

logger = logging.getLogger("roomledger.audit")


def record_activity(
    actor_id: Optional[int],
    action: str,
    target_type: str,
    target_id: Optional[int],
    description: Optional[str] = None,
) -> None:
    """Append one ActivityLog row; failures are logged and swallowed."""
    db = SessionLocal()
    try:
        db.add(
            models.ActivityLog(
                user_id=actor_id,
                action=action,
                target_type=target_type,
                target_id=target_id,
                description=description,
            )
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning(
            "audit.write_failed",
            extra={"action": action, "target_type": target_type, "target_id": target_id, "error": str(exc)},
        )
    finally:
        db.close()
