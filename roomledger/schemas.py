# Pydantic models (request/response DTOs) used by the API layer.
# Keep models minimal and serializable; business logic lives in the core modules.
from pydantic import BaseModel, Field, ConfigDict, field_validator, EmailStr
from typing import Any, Dict, List, Literal, Union, Optional
from datetime import date, datetime
from decimal import Decimal


# Authentication and user models

# User roles within the system
Role = Literal["admin", "owner", "staff", "tenant", "guest"]

# Lenient numeric input: bill readings accept anything; numbers and free text ("12", "12.5kWh")
# are parsed by the billing module and everything else counts as 0
Reading = Any


def _strip(v):
    if isinstance(v, str):
        v = v.strip()
    return v


def _normalize_email(v):
    # Lowercase, trimmed; empty string means "no email"
    if isinstance(v, str):
        v = v.strip().lower()
        if not v:
            return None
    return v


# API response for a user record
class UserRead(BaseModel):
    id: int
    username: str
    fullname: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    line_user_id: Optional[str] = None
    profile_image: Optional[str] = None
    role: Role

    model_config = ConfigDict(from_attributes=True)


# Request payload for self-registration (always creates a guest)
class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=100)
    password: str = Field(..., min_length=8)
    fullname: Optional[str] = Field(default=None, max_length=255)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, max_length=50)

    @field_validator("username", "fullname", mode="before")
    @classmethod
    def strip_username(cls, v):
        return _strip(v)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v):
        return _normalize_email(v)


# Request payload for admin-created accounts (any role).
# property_ids binds an owner or staff account to those properties.
class UserCreate(RegisterRequest):
    role: Role = "guest"
    line_user_id: Optional[str] = Field(default=None, max_length=100)
    property_ids: List[int] = Field(default_factory=list)


# Admin edit of any account; omitted fields are left unchanged
class UserUpdate(BaseModel):
    username: Optional[str] = Field(default=None, min_length=3, max_length=100)
    password: Optional[str] = Field(default=None, min_length=8)
    fullname: Optional[str] = Field(default=None, max_length=255)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, max_length=50)
    line_user_id: Optional[str] = Field(default=None, max_length=100)
    role: Optional[Role] = None
    property_ids: List[int] = Field(default_factory=list)

    @field_validator("username", "fullname", mode="before")
    @classmethod
    def strip_username(cls, v):
        return _strip(v)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v):
        return _normalize_email(v)


# Self-service profile edit; the role never changes here
class ProfileUpdate(BaseModel):
    username: Optional[str] = Field(default=None, min_length=3, max_length=100)
    password: Optional[str] = Field(default=None, min_length=8)
    fullname: Optional[str] = Field(default=None, max_length=255)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, max_length=50)
    line_user_id: Optional[str] = Field(default=None, max_length=100)
    profile_image: Optional[str] = Field(default=None, max_length=500)

    @field_validator("username", "fullname", mode="before")
    @classmethod
    def strip_username(cls, v):
        return _strip(v)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v):
        return _normalize_email(v)


class OwnerOption(BaseModel):
    id: int
    username: str
    fullname: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


# Request payload for logging in
class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)

    @field_validator("username", mode="before")
    @classmethod
    def strip_username(cls, v):
        return _strip(v)


# OAuth2-style token response bundled with the current user profile
class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserRead


class UsernameCheck(BaseModel):
    username: str = Field(..., min_length=1)

    @field_validator("username", mode="before")
    @classmethod
    def strip_username(cls, v):
        return _strip(v)


class EmailCheck(BaseModel):
    email: EmailStr

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v):
        return _normalize_email(v)


class IdentityAvailability(BaseModel):
    available: bool


# Properties
# Base attributes for a property (shared by create/read)
class PropertyBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    address: Optional[str] = Field(default=None, max_length=500)
    image: Optional[str] = Field(default=None, max_length=500)
    description: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v):
        return _strip(v)


# Payload for creating a property together with its utility rates and owner binding.
# owner_ids is honoured for admins only; an owner always binds themselves.
class PropertyCreate(PropertyBase):
    electric_rate: Decimal = Field(default=Decimal("0"), ge=0)
    water_rate: Decimal = Field(default=Decimal("0"), ge=0)
    owner_ids: List[int] = Field(default_factory=list)


# Partial update; a rate given here is appended as a new effective rate
class PropertyUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    address: Optional[str] = Field(default=None, max_length=500)
    image: Optional[str] = Field(default=None, max_length=500)
    description: Optional[str] = None
    electric_rate: Optional[Decimal] = Field(default=None, ge=0)
    water_rate: Optional[Decimal] = Field(default=None, ge=0)
    owner_ids: Optional[List[int]] = None

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v):
        return _strip(v)


# Response shape when reading a property from the API
class PropertyRead(PropertyBase):
    id: int

    model_config = ConfigDict(from_attributes=True)


class UtilityRatesRead(BaseModel):
    electric: Decimal
    water: Decimal


# Public listing entry
class PropertySummary(PropertyRead):
    rooms_count: int
    available_rooms: int
    min_price_monthly: Optional[Decimal] = None
    min_price_term: Optional[Decimal] = None
    avg_rating: Optional[float] = None


# Owner/staff/admin listing entry
class PropertyManaged(PropertyRead):
    rates: UtilityRatesRead
    rooms_count: int
    tenants_count: int
    avg_rating: Optional[float] = None
    owner_ids: List[int] = Field(default_factory=list)


# Rooms
class RoomBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    code: Optional[str] = Field(default=None, max_length=50)
    description: Optional[str] = None
    price_monthly: Optional[Decimal] = Field(default=None, ge=0)
    price_term: Optional[Decimal] = Field(default=None, ge=0)
    deposit: Optional[Decimal] = Field(default=None, ge=0)
    has_ac: bool = False
    has_fan: bool = False

    @field_validator("name", "code", mode="before")
    @classmethod
    def strip_name(cls, v):
        return _strip(v)


class RoomCreate(RoomBase):
    property_id: int = Field(..., ge=1)


class RoomUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    code: Optional[str] = Field(default=None, max_length=50)
    description: Optional[str] = None
    price_monthly: Optional[Decimal] = Field(default=None, ge=0)
    price_term: Optional[Decimal] = Field(default=None, ge=0)
    deposit: Optional[Decimal] = Field(default=None, ge=0)
    has_ac: Optional[bool] = None
    has_fan: Optional[bool] = None

    @field_validator("name", "code", mode="before")
    @classmethod
    def strip_name(cls, v):
        return _strip(v)


class RoomRead(RoomBase):
    id: int
    property_id: int

    model_config = ConfigDict(from_attributes=True)


# Room with its derived occupancy status
class RoomWithStatus(RoomRead):
    status: Literal["available", "booked", "maintenance"]


# Reviews
class ReviewCreate(BaseModel):
    property_id: int = Field(..., ge=1)
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(default=None, max_length=2000)


class ReviewUpdate(BaseModel):
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    comment: Optional[str] = Field(default=None, max_length=2000)


class ReviewRead(BaseModel):
    id: int
    property_id: int
    user_id: int
    rating: int
    comment: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# Property detail: rates, rooms with status, and reviews
class FacilityRead(BaseModel):
    id: int
    property_id: int
    name: str
    icon: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PropertyDetail(PropertyRead):
    rates: UtilityRatesRead
    rooms: List[RoomWithStatus]
    reviews: List[ReviewRead]
    facilities: List[FacilityRead] = Field(default_factory=list)
    available_rooms: int
    avg_rating: Optional[float] = None


# Bookings
BillingCycle = Literal["monthly", "term"]
BookingStatus = Literal["pending", "confirmed", "cancelled"]


# Common booking fields shared by create/read
class BookingBase(BaseModel):
    room_id: int = Field(..., ge=1)
    start_date: date
    end_date: date
    billing_cycle: BillingCycle = "monthly"


# Request payload for creating a booking.
# Tenants book for themselves; owner/staff may pass user_id and an initial status.
class BookingCreate(BookingBase):
    user_id: Optional[int] = None
    status: Optional[Literal["pending", "confirmed"]] = None


class BookingUpdate(BaseModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    billing_cycle: Optional[BillingCycle] = None


class BookingStatusUpdate(BaseModel):
    status: BookingStatus


# API response for a booking record
class BookingRead(BookingBase):
    id: int
    user_id: int
    status: BookingStatus
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# Booking enriched with its room/property, as shown to tenants
class BookingTenantItem(BookingRead):
    room_name: str
    room_code: Optional[str] = None
    property_id: int
    property_name: str


# Booking enriched with the tenant, as shown to owners/staff/admins
class BookingManagedItem(BookingTenantItem):
    tenant_username: str
    tenant_fullname: Optional[str] = None


# Role-tagged list responses
class BookingListAll(BaseModel):
    view: Literal["all"]
    items: List[BookingManagedItem]


class BookingListManaged(BaseModel):
    view: Literal["managed"]
    items: List[BookingManagedItem]


class BookingListTenant(BaseModel):
    view: Literal["tenant"]
    items: List[BookingTenantItem]


BookingList = Union[BookingListAll, BookingListManaged, BookingListTenant]


class AvailabilityRead(BaseModel):
    room_id: int
    start_date: date
    end_date: date
    available: bool


# Tenants
class TenantBase(BaseModel):
    room_ids: List[int] = Field(..., min_length=1)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    status: Literal["pending", "confirmed"] = "confirmed"
    # Per-room cycle keyed by room id; rooms not listed bill monthly
    billing_cycles: Dict[int, BillingCycle] = Field(default_factory=dict)


class TenantCreate(TenantBase):
    username: str = Field(..., min_length=3, max_length=100)
    password: str = Field(..., min_length=8)
    fullname: Optional[str] = Field(default=None, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=50)

    @field_validator("username", "fullname", mode="before")
    @classmethod
    def strip_username(cls, v):
        return _strip(v)


class TenantUpdate(TenantBase):
    username: Optional[str] = Field(default=None, min_length=3, max_length=100)
    password: Optional[str] = None
    fullname: Optional[str] = Field(default=None, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=50)

    @field_validator("username", "fullname", mode="before")
    @classmethod
    def strip_username(cls, v):
        return _strip(v)


class TenantBooking(BaseModel):
    booking_id: int
    property_id: int
    property_name: str
    room_id: int
    room_name: str
    room_code: Optional[str] = None
    start_date: date
    end_date: date
    status: BookingStatus
    billing_cycle: BillingCycle


# One tenant (or guest) with their active bookings, newest first
class TenantSummary(UserRead):
    status: Optional[BookingStatus] = None
    bookings: List[TenantBooking]


class TenantListAll(BaseModel):
    view: Literal["all"]
    items: List[TenantSummary]


class TenantListManaged(BaseModel):
    view: Literal["managed"]
    items: List[TenantSummary]


TenantList = Union[TenantListAll, TenantListManaged]


class TenantWriteResponse(BaseModel):
    tenant: UserRead
    bookings: List[BookingRead]


# Bills
# Readings are coerced leniently by the billing module; nothing here rejects a typo
class BillCreate(BaseModel):
    booking_id: int = Field(..., ge=1)
    water_units: Reading = None
    electric_units: Reading = None
    other_charges: Reading = None
    include_room_price: bool = False
    note: Optional[str] = Field(default=None, max_length=2000)


class BillUpdate(BaseModel):
    booking_id: Optional[int] = Field(default=None, ge=1)
    water_units: Reading = None
    electric_units: Reading = None
    other_charges: Reading = None
    include_room_price: bool = False
    note: Optional[str] = Field(default=None, max_length=2000)


BillStatus = Literal["unpaid", "pending", "paid"]


class BillRead(BaseModel):
    id: int
    booking_id: int
    billing_date: datetime
    billing_cycle: BillingCycle
    room_price: Decimal
    water_units: Decimal
    water_rate: Decimal
    electric_units: Decimal
    electric_rate: Decimal
    other_charges: Decimal
    note: Optional[str] = None
    total_amount: Decimal
    status: BillStatus
    paid_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# Confirmed booking with its room prices and latest bill, for the billing screen
class RoomPriceRow(BaseModel):
    booking_id: int
    billing_cycle: BillingCycle
    room_id: int
    room_name: str
    room_code: Optional[str] = None
    price_monthly: Optional[Decimal] = None
    price_term: Optional[Decimal] = None
    deposit: Optional[Decimal] = None
    property_id: int
    property_name: str
    tenant_id: int
    tenant_fullname: Optional[str] = None
    latest_bill_id: Optional[int] = None
    latest_bill_status: Optional[BillStatus] = None


# Tenant rent view: one entry per bill of a confirmed booking
class RentItem(BaseModel):
    booking_id: int
    room_name: str
    room_code: Optional[str] = None
    property_name: str
    property_address: Optional[str] = None
    billing_cycle: BillingCycle
    bill: BillRead


# Notifications are delivered after the response; queued means a recipient was found
class NotifyResult(BaseModel):
    queued: bool


# Maintenance
MaintenanceStatus = Literal["pending", "in_progress", "completed", "cancelled"]


class MaintenanceCreate(BaseModel):
    room_id: int = Field(..., ge=1)
    description: str = Field(..., min_length=1, max_length=2000)

    @field_validator("description", mode="before")
    @classmethod
    def strip_description(cls, v):
        return _strip(v)


class MaintenanceUpdate(BaseModel):
    description: str = Field(..., min_length=1, max_length=2000)

    @field_validator("description", mode="before")
    @classmethod
    def strip_description(cls, v):
        return _strip(v)


class MaintenanceStatusUpdate(BaseModel):
    status: Literal["pending", "in_progress", "completed"]


class MaintenanceRead(BaseModel):
    id: int
    user_id: int
    room_id: int
    description: str
    status: MaintenanceStatus
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# Packages
class PackageCreate(BaseModel):
    property_id: int = Field(..., ge=1)
    user_id: Optional[int] = None
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    price: Decimal = Field(default=Decimal("0"), ge=0)

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v):
        return _strip(v)


class PackageUpdate(BaseModel):
    user_id: Optional[int] = Field(default=None, ge=1)
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(default=None, ge=0)
    status: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v):
        return _strip(v)

    # Omit a field to leave it unchanged; null would clear a required column
    @field_validator("name", "price")
    @classmethod
    def not_null(cls, v, info):
        if v is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return v


class PackageRead(BaseModel):
    id: int
    property_id: int
    user_id: Optional[int] = None
    name: str
    description: Optional[str] = None
    price: Decimal
    status: Literal["pending", "received"]
    received_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# Staff
class StaffCreate(BaseModel):
    username: str = Field(..., min_length=3, max_length=100)
    password: str = Field(..., min_length=8)
    fullname: Optional[str] = Field(default=None, max_length=255)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, max_length=50)
    property_ids: List[int] = Field(..., min_length=1)

    @field_validator("username", "fullname", mode="before")
    @classmethod
    def strip_username(cls, v):
        return _strip(v)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v):
        return _normalize_email(v)


class StaffUpdate(BaseModel):
    fullname: Optional[str] = Field(default=None, max_length=255)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, max_length=50)
    password: Optional[str] = Field(default=None, min_length=8)
    property_ids: Optional[List[int]] = None

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v):
        return _normalize_email(v)


class StaffRead(UserRead):
    property_ids: List[int]


# Activity
class ActivityRead(BaseModel):
    id: int
    user_id: Optional[int] = None
    action: str
    target_type: str
    target_id: Optional[int] = None
    description: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# Facilities (property amenities)
class FacilityCreate(BaseModel):
    property_id: int = Field(..., ge=1)
    name: str = Field(..., min_length=1, max_length=255)
    icon: str = Field(..., min_length=1, max_length=100)

    @field_validator("name", "icon", mode="before")
    @classmethod
    def strip_text(cls, v):
        return _strip(v)


# A facility is replaced as a whole, like it is created
class FacilityUpdate(FacilityCreate):
    pass


class FacilityGroup(BaseModel):
    property_id: int
    property_name: str
    facilities: List[FacilityRead]


# Furniture (per-room inventory)
class FurnitureCreate(BaseModel):
    room_id: int = Field(..., ge=1)
    name: str = Field(..., min_length=1, max_length=255)
    quantity: int = Field(default=1, ge=0)

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v):
        return _strip(v)


class FurnitureUpdate(BaseModel):
    room_id: Optional[int] = Field(default=None, ge=1)
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    quantity: Optional[int] = Field(default=None, ge=0)

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v):
        return _strip(v)


class FurnitureRead(BaseModel):
    id: int
    room_id: int
    name: str
    quantity: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class FurnitureItem(FurnitureRead):
    room_name: str
    room_code: Optional[str] = None


class FurnitureGroup(BaseModel):
    property_id: int
    property_name: str
    furniture: List[FurnitureItem]
