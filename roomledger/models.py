# SQLAlchemy ORM models for the rental domain (users, properties, rooms, bookings, bills, ...).
# Keep business rules out of models; they live in billing/availability/scope/lifecycle.
from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import declarative_mixin

from .db import Base

# Money is stored to the cent; meter units and per-unit rates keep four places
Money = Numeric(12, 2)
Quantity = Numeric(12, 4)


@declarative_mixin
class TimestampMixin:
    """Common UTC-aware timestamps automatically managed by the database.

    - created_at: set on insert
    - updated_at: set on insert and updated on each modification
    """
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class User(Base, TimestampMixin):
    """Application user account.

    Roles:
    - admin: platform operator, unrestricted
    - owner: owns one or more properties
    - staff: works at one or more properties on behalf of owners
    - tenant: rents rooms, receives bills and packages
    - guest: registered but not yet renting
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    username = Column(String(100), nullable=False, unique=True, index=True)
    fullname = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True, unique=True, index=True)
    phone = Column(String(50), nullable=True)
    line_user_id = Column(String(100), nullable=True)
    profile_image = Column(String(500), nullable=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, index=True, default="guest")


class Property(Base, TimestampMixin):
    """A dormitory/apartment building; root aggregate for rooms, rates and assignments."""
    __tablename__ = "properties"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    address = Column(String(500), nullable=True)
    image = Column(String(500), nullable=True)
    description = Column(Text, nullable=True)


class PropertyOwner(Base):
    __tablename__ = "property_owners"

    property_id = Column(Integer, ForeignKey("properties.id"), primary_key=True)
    owner_id = Column(Integer, ForeignKey("users.id"), primary_key=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class PropertyStaff(Base):
    __tablename__ = "property_staff"

    property_id = Column(Integer, ForeignKey("properties.id"), primary_key=True)
    staff_id = Column(Integer, ForeignKey("users.id"), primary_key=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class UtilityRate(Base):
    """Per-unit price of a metered utility.

    Append-only: a rate change inserts a new row. The row with the latest
    effective_from (then highest id) is the active rate for (property_id, type).
    """
    __tablename__ = "utility_rates"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    property_id = Column(Integer, ForeignKey("properties.id"), nullable=False, index=True)
    type = Column(String(20), nullable=False)  # "electric" or "water"
    rate = Column(Quantity, nullable=False, default=0)
    effective_from = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_utility_rates_lookup", "property_id", "type", "effective_from"),
    )


class Room(Base, TimestampMixin):
    __tablename__ = "rooms"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    property_id = Column(Integer, ForeignKey("properties.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    code = Column(String(50), nullable=True)
    description = Column(Text, nullable=True)
    price_monthly = Column(Money, nullable=True)
    price_term = Column(Money, nullable=True)
    deposit = Column(Money, nullable=True)
    has_ac = Column(Boolean, nullable=False, default=False)
    has_fan = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        UniqueConstraint("property_id", "code", name="uq_rooms_property_code"),
    )


class Booking(Base, TimestampMixin):
    """Occupancy of a room by a tenant.

    Status transitions:
    pending -> confirmed
       └──────────┴──> cancelled

    Confirmed bookings of one room never overlap (closed date intervals).
    """
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    room_id = Column(Integer, ForeignKey("rooms.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    billing_cycle = Column(String(20), nullable=False, default="monthly")

    # Availability checks scan a room's confirmed bookings by date
    __table_args__ = (
        Index("ix_bookings_room_status_start", "room_id", "status", "start_date"),
        Index("ix_bookings_room_end", "room_id", "end_date"),
    )


class Bill(Base, TimestampMixin):
    """Charges raised against a booking.

    total_amount is rounded once at write time and is the only total ever shown.
    Rates are snapshotted so the breakdown stays consistent after a rate change.
    """
    __tablename__ = "bills"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    billing_date = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    billing_cycle = Column(String(20), nullable=False)
    room_price = Column(Money, nullable=False, default=0)
    water_units = Column(Quantity, nullable=False, default=0)
    water_rate = Column(Quantity, nullable=False, default=0)
    electric_units = Column(Quantity, nullable=False, default=0)
    electric_rate = Column(Quantity, nullable=False, default=0)
    other_charges = Column(Money, nullable=False, default=0)
    note = Column(Text, nullable=True)
    total_amount = Column(Money, nullable=False, default=0)
    status = Column(String(20), nullable=False, default="unpaid", index=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)


class MaintenanceRequest(Base, TimestampMixin):
    __tablename__ = "maintenance_requests"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    room_id = Column(Integer, ForeignKey("rooms.id"), nullable=False, index=True)
    description = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, default="pending")


class Package(Base, TimestampMixin):
    """Parcel received at the front desk for a tenant; 'received' is terminal."""
    __tablename__ = "packages"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    property_id = Column(Integer, ForeignKey("properties.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Money, nullable=False, default=0)
    status = Column(String(20), nullable=False, default="pending")
    received_at = Column(DateTime(timezone=True), nullable=True)


class Facility(Base, TimestampMixin):
    """An amenity a property advertises (wifi, laundry, parking, ...)."""
    __tablename__ = "property_facilities"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    property_id = Column(Integer, ForeignKey("properties.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    icon = Column(String(100), nullable=False)


class Furniture(Base, TimestampMixin):
    """Inventory line for a room: an item and how many of it the room holds."""
    __tablename__ = "room_furniture"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    room_id = Column(Integer, ForeignKey("rooms.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)


class Review(Base, TimestampMixin):
    __tablename__ = "reviews"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    property_id = Column(Integer, ForeignKey("properties.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    rating = Column(Integer, nullable=False)
    comment = Column(Text, nullable=True)


class ActivityLog(Base):
    """Append-only audit trail of who did what to which record."""
    __tablename__ = "activity_log"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, nullable=True, index=True)  # actor; kept after the user is removed
    action = Column(String(100), nullable=False)
    target_type = Column(String(50), nullable=False)
    target_id = Column(Integer, nullable=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_activity_log_target", "target_type", "target_id"),
    )
