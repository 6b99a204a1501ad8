# Role-based record scoping.
#
# Every list/detail/mutate path narrows its query through AccessScope instead of
# building per-route role conditionals. ENTITY_PATHS says how each entity reaches
# a property (for owners/staff) and a user (for tenants); the principal's role
# picks which of the two predicates applies.
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, Optional, Sequence

from sqlalchemy import false, select, true
from sqlalchemy.orm import Query, Session
from sqlalchemy.sql.elements import ColumnElement

from . import models
from .errors import Forbidden, NotFound

ROLES = ("admin", "owner", "staff", "tenant", "guest")
MANAGER_ROLES = ("owner", "staff")


@dataclass(frozen=True)
class Principal:
    """The authenticated actor behind a request."""

    id: int
    role: str
    username: str


def _rooms_in(property_ids: Sequence[int]):
    return select(models.Room.id).where(models.Room.property_id.in_(property_ids))


def _bookings_in(property_ids: Sequence[int]):
    return (
        select(models.Booking.id)
        .join(models.Room, models.Room.id == models.Booking.room_id)
        .where(models.Room.property_id.in_(property_ids))
    )


def _bookings_of(user_id: int):
    return select(models.Booking.id).where(models.Booking.user_id == user_id)


@dataclass(frozen=True)
class EntityPath:
    model: type
    # predicate for "record belongs to one of these properties"
    managed: Callable[[Sequence[int]], ColumnElement]
    # predicate for "record belongs to this user"; None when tenants never see the entity
    owned: Optional[Callable[[int], ColumnElement]] = None
    # guests also match `owned` (their own booking requests)
    guest_owned: bool = False


ENTITY_PATHS: Dict[str, EntityPath] = {
    "property": EntityPath(
        models.Property,
        managed=lambda ids: models.Property.id.in_(ids),
    ),
    "room": EntityPath(
        models.Room,
        managed=lambda ids: models.Room.property_id.in_(ids),
    ),
    "booking": EntityPath(
        models.Booking,
        managed=lambda ids: models.Booking.room_id.in_(_rooms_in(ids)),
        owned=lambda uid: models.Booking.user_id == uid,
        guest_owned=True,
    ),
    "bill": EntityPath(
        models.Bill,
        managed=lambda ids: models.Bill.booking_id.in_(_bookings_in(ids)),
        owned=lambda uid: models.Bill.booking_id.in_(_bookings_of(uid)),
    ),
    "maintenance": EntityPath(
        models.MaintenanceRequest,
        managed=lambda ids: models.MaintenanceRequest.room_id.in_(_rooms_in(ids)),
        owned=lambda uid: models.MaintenanceRequest.user_id == uid,
    ),
    "package": EntityPath(
        models.Package,
        managed=lambda ids: models.Package.property_id.in_(ids),
        owned=lambda uid: models.Package.user_id == uid,
    ),
    "review": EntityPath(
        models.Review,
        managed=lambda ids: models.Review.property_id.in_(ids),
        owned=lambda uid: models.Review.user_id == uid,
    ),
    "staff_assignment": EntityPath(
        models.PropertyStaff,
        managed=lambda ids: models.PropertyStaff.property_id.in_(ids),
    ),
    "facility": EntityPath(
        models.Facility,
        managed=lambda ids: models.Facility.property_id.in_(ids),
    ),
    "furniture": EntityPath(
        models.Furniture,
        managed=lambda ids: models.Furniture.room_id.in_(_rooms_in(ids)),
    ),
}


@dataclass(frozen=True)
class AccessScope:
    """
    What a principal may see or change.

    property_ids is None for admins (unrestricted); owners and staff carry the set of
    properties they are bound to; tenants and guests carry an empty set and are
    matched on user_id instead.
    """

    principal: Principal
    property_ids: Optional[FrozenSet[int]]

    @property
    def unrestricted(self) -> bool:
        return self.property_ids is None

    @property
    def is_manager(self) -> bool:
        return self.principal.role in MANAGER_ROLES

    def predicate(self, entity: str) -> ColumnElement:
        path = ENTITY_PATHS[entity]
        if self.unrestricted:
            return true()
        role = self.principal.role
        if role in MANAGER_ROLES:
            if not self.property_ids:
                return false()
            return path.managed(sorted(self.property_ids))
        if path.owned is not None and (role == "tenant" or (role == "guest" and path.guest_owned)):
            return path.owned(self.principal.id)
        # guests and tenants on manager-only entities see nothing
        return false()

    def restrict(self, query: Query, entity: str) -> Query:
        return query.filter(self.predicate(entity))

    def allows(self, db: Session, entity: str, record_id: int) -> bool:
        model = ENTITY_PATHS[entity].model
        pk = model.__mapper__.primary_key[0]
        hit = db.query(pk).filter(pk == record_id, self.predicate(entity)).first()
        return hit is not None

    def ensure(self, db: Session, entity: str, record_id: int) -> None:
        """Raise Forbidden unless the record is inside this scope."""
        if not self.allows(db, entity, record_id):
            raise Forbidden(f"Not allowed to access this {entity.replace('_', ' ')}")

    def fetch(self, db: Session, entity: str, record_id: int):
        """
        Load a record for a detail/mutate path.

        An absent record raises NotFound; an existing record outside the scope
        raises Forbidden.
        """
        model = ENTITY_PATHS[entity].model
        obj = db.get(model, record_id)
        if obj is None:
            raise NotFound(f"{entity.replace('_', ' ').capitalize()} not found", {f"{entity}_id": record_id})
        self.ensure(db, entity, record_id)
        return obj

    def can_manage_property(self, property_id: int) -> bool:
        if self.unrestricted:
            return True
        return self.is_manager and property_id in (self.property_ids or frozenset())

    def ensure_property(self, property_id: int) -> None:
        if not self.can_manage_property(property_id):
            raise Forbidden("Not allowed to manage this property")


def scope_for(db: Session, principal: Principal) -> AccessScope:
    """Resolve the principal's scope from the owner/staff bindings."""
    if principal.role == "admin":
        return AccessScope(principal=principal, property_ids=None)
    if principal.role == "owner":
        rows = (
            db.query(models.PropertyOwner.property_id)
            .filter(models.PropertyOwner.owner_id == principal.id)
            .all()
        )
        return AccessScope(principal=principal, property_ids=frozenset(r[0] for r in rows))
    if principal.role == "staff":
        rows = (
            db.query(models.PropertyStaff.property_id)
            .filter(models.PropertyStaff.staff_id == principal.id)
            .all()
        )
        return AccessScope(principal=principal, property_ids=frozenset(r[0] for r in rows))
    return AccessScope(principal=principal, property_ids=frozenset())
