# Room availability: whether a date range collides with the room's confirmed bookings.
from __future__ import annotations

import logging
from datetime import date
from typing import Dict, Optional, Sequence, Set

from sqlalchemy import or_
from sqlalchemy.orm import Session

from . import models
from .db import supports_row_locks
from .errors import Conflict, NotFound

logger = logging.getLogger("roomledger.availability")

# Bookings in these states hold a room against deletion
ACTIVE_BOOKING_STATUSES = ("pending", "confirmed")


def ranges_overlap(a_start: date, a_end: date, b_start: date, b_end: date) -> bool:
    """
    Closed-interval overlap: sharing a boundary day counts as overlapping.

    NOT (a_end < b_start OR a_start > b_end)
    """
    return not (a_end < b_start or a_start > b_end)


def _confirmed_overlaps(
    db: Session,
    room_id: int,
    start_date: date,
    end_date: date,
    exclude_booking_id: Optional[int] = None,
):
    q = db.query(models.Booking.id).filter(
        models.Booking.room_id == room_id,
        models.Booking.status == "confirmed",
        ~or_(
            models.Booking.end_date < start_date,
            models.Booking.start_date > end_date,
        ),
    )
    if exclude_booking_id is not None:
        q = q.filter(models.Booking.id != exclude_booking_id)
    return q


def is_room_available(
    db: Session,
    room_id: int,
    start_date: date,
    end_date: date,
    exclude_booking_id: Optional[int] = None,
) -> bool:
    """True when no other confirmed booking of the room overlaps [start_date, end_date]."""
    hit = _confirmed_overlaps(db, room_id, start_date, end_date, exclude_booking_id).first()
    return hit is None


def lock_room(db: Session, room_id: int) -> models.Room:
    """
    Load the room, taking a row lock where the dialect supports it.

    Concurrent bookings of the same room then serialize on this row until the
    surrounding transaction ends.
    """
    q = db.query(models.Room).filter(models.Room.id == room_id)
    if supports_row_locks(db):
        q = q.with_for_update()
    room = q.first()
    if room is None:
        raise NotFound("Room not found", {"room_id": room_id})
    return room


def ensure_room_available(
    db: Session,
    room_id: int,
    start_date: date,
    end_date: date,
    exclude_booking_id: Optional[int] = None,
) -> None:
    """Raise Conflict naming the room when the range collides with a confirmed booking."""
    if not is_room_available(db, room_id, start_date, end_date, exclude_booking_id):
        logger.info(
            "room.unavailable",
            extra={"room_id": room_id, "start_date": str(start_date), "end_date": str(end_date)},
        )
        raise Conflict(f"Room {room_id} is already booked for the requested dates", {"room_id": room_id})


def room_status(is_booked: bool, open_maintenance: bool) -> str:
    """Display status of a room: maintenance outranks booked, booked outranks available."""
    if open_maintenance:
        return "maintenance"
    if is_booked:
        return "booked"
    return "available"


# Maintenance in these states takes a room out of service
OPEN_MAINTENANCE_STATUSES = ("pending", "in_progress")


def occupied_room_ids(db: Session, room_ids: Sequence[int], on: date) -> Set[int]:
    """Rooms holding a confirmed booking that has not ended by `on`."""
    if not room_ids:
        return set()
    rows = (
        db.query(models.Booking.room_id)
        .filter(
            models.Booking.room_id.in_(list(room_ids)),
            models.Booking.status == "confirmed",
            models.Booking.end_date >= on,
        )
        .distinct()
        .all()
    )
    return {r[0] for r in rows}


def maintenance_room_ids(db: Session, room_ids: Sequence[int]) -> Set[int]:
    if not room_ids:
        return set()
    rows = (
        db.query(models.MaintenanceRequest.room_id)
        .filter(
            models.MaintenanceRequest.room_id.in_(list(room_ids)),
            models.MaintenanceRequest.status.in_(OPEN_MAINTENANCE_STATUSES),
        )
        .distinct()
        .all()
    )
    return {r[0] for r in rows}


def room_statuses(db: Session, room_ids: Sequence[int], on: date) -> Dict[int, str]:
    """Display status for each room id."""
    booked = occupied_room_ids(db, room_ids, on)
    repairing = maintenance_room_ids(db, room_ids)
    return {rid: room_status(rid in booked, rid in repairing) for rid in room_ids}
