from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import JSON, Column
from sqlmodel import Field, Session, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # SQLite hands datetimes back without tzinfo; those are stored as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class EntityType(str, Enum):
    USER = "User"
    HOSPITAL = "Hospital"
    NGO = "NGO"
    ADMIN = "Admin"


class ResourceType(str, Enum):
    EQUIPMENT = "EQUIPMENT"
    MEDICINE = "MEDICINE"


class ResourceStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    IN_USE = "IN_USE"
    MAINTENANCE = "MAINTENANCE"
    DISPOSED = "DISPOSED"
    EXPIRED = "EXPIRED"
    RESERVED = "RESERVED"


class RequestStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"
    EXPIRED = "EXPIRED"


class RequestPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


PRIORITY_RANK = {
    RequestPriority.LOW.value: 0,
    RequestPriority.MEDIUM.value: 1,
    RequestPriority.HIGH.value: 2,
    RequestPriority.URGENT.value: 3,
}

BLOOD_GROUPS = ("A+", "A-", "B+", "B-", "AB+", "AB-", "O+", "O-")


class CenterStatus(str, Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"
    SUSPENDED = "Suspended"


class TimeSlot(str, Enum):
    MORNING = "Morning"  # 9:00 - 12:00
    AFTERNOON = "Afternoon"  # 13:00 - 16:00
    EVENING = "Evening"  # 17:00 - 20:00


class AppointmentStatus(str, Enum):
    SCHEDULED = "Scheduled"
    CONFIRMED = "Confirmed"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    RESCHEDULED = "Rescheduled"
    NO_SHOW = "No Show"
    DEFERRED = "Deferred"


class DonationStatus(str, Enum):
    AVAILABLE = "available"
    USED = "used"
    EXPIRED = "expired"
    DISCARDED = "discarded"


# ---------------------------------------------------------------- accounts


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_name: str = Field(index=True, unique=True)
    full_name: str
    email: str = Field(index=True, unique=True)
    password_hash: str
    phone: str
    blood_type: str
    gender: str
    date_of_birth: date
    city: Optional[str] = None
    pin_code: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class Hospital(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    email: str = Field(index=True, unique=True)
    password_hash: str
    contact_name: str
    contact_phone: str
    emergency_phone: str
    street: str
    city: str = Field(index=True)
    state: str
    pin_code: str
    location: dict = Field(sa_column=Column(JSON, nullable=False))
    registration_number: Optional[str] = Field(default=None, unique=True)
    specialties: list = Field(default_factory=list, sa_column=Column(JSON))
    is_verified: bool = False
    created_at: datetime = Field(default_factory=utcnow)


class NGO(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    email: str = Field(index=True, unique=True)
    password_hash: str
    contact_name: str
    contact_phone: str
    reg_number: str = Field(unique=True)
    street: Optional[str] = None
    city: str = Field(index=True)
    state: Optional[str] = None
    pin_code: str
    location: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    is_verified: bool = False
    created_at: datetime = Field(default_factory=utcnow)


class Admin(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    email: str = Field(index=True, unique=True)
    password_hash: str
    created_at: datetime = Field(default_factory=utcnow)


ENTITY_MODELS = {
    EntityType.USER.value: User,
    EntityType.HOSPITAL.value: Hospital,
    EntityType.NGO.value: NGO,
    EntityType.ADMIN.value: Admin,
}


def resolve_entity(session: Session, entity_type: str, entity_id: int):
    """Load the row a ``(entity_type, entity_id)`` reference points at, or None."""
    model = ENTITY_MODELS.get(entity_type)
    if model is None:
        return None
    return session.get(model, entity_id)


# ---------------------------------------------------------------- sharing


class Resource(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    resource_type: str = Field(index=True)  # EQUIPMENT | MEDICINE

    owner_id: int = Field(index=True)
    owner_type: str  # Hospital | NGO | User

    location: dict = Field(sa_column=Column(JSON, nullable=False))
    address: Optional[dict] = Field(default=None, sa_column=Column(JSON))

    status: str = Field(default=ResourceStatus.AVAILABLE.value, index=True)
    status_updated_at: datetime = Field(default_factory=utcnow)
    status_history: list = Field(default_factory=list, sa_column=Column(JSON))

    is_verified: bool = False
    verified_by: Optional[int] = None
    verified_at: Optional[datetime] = None

    details: dict = Field(default_factory=dict, sa_column=Column(JSON))

    # medicine stock
    quantity_available: Optional[int] = None
    unit: Optional[str] = None
    expiry_date: Optional[datetime] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    version: int = 1


class Request(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)

    requester_id: int = Field(index=True)
    requester_type: str  # Hospital | NGO

    resource_id: int = Field(foreign_key="resource.id", index=True)
    resource_type: str

    quantity_requested: int
    quantity_approved: Optional[int] = None

    start_date: datetime
    end_date: datetime

    status: str = Field(default=RequestStatus.PENDING.value, index=True)
    status_history: list = Field(default_factory=list, sa_column=Column(JSON))

    priority: str = RequestPriority.MEDIUM.value
    purpose: str
    requirements: Optional[str] = None
    urgency_justification: Optional[str] = None
    preferred_location: Optional[dict] = Field(default=None, sa_column=Column(JSON))

    approval_details: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    communication: list = Field(default_factory=list, sa_column=Column(JSON))

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    version: int = 1


# ---------------------------------------------------------------- donation


class Center(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    ngo_id: int = Field(foreign_key="ngo.id", index=True)
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = None
    city: str = Field(index=True)
    pin_code: str
    location: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    blood_inventory: list = Field(default_factory=list, sa_column=Column(JSON))
    facilities: list = Field(default_factory=list, sa_column=Column(JSON))
    status: str = CenterStatus.ACTIVE.value
    created_at: datetime = Field(default_factory=utcnow)
    version: int = 1


class DonationAppointment(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    center_id: int = Field(foreign_key="center.id", index=True)
    date: datetime
    time_slot: str
    status: str = AppointmentStatus.SCHEDULED.value
    status_history: list = Field(default_factory=list, sa_column=Column(JSON))
    health_information: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    cancellation_reason: Optional[str] = None
    reschedule_count: int = 0
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    version: int = 1


class BloodDonation(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    center_id: int = Field(foreign_key="center.id", index=True)
    appointment_id: Optional[int] = Field(default=None, foreign_key="donationappointment.id")
    blood_group: str
    units: int = 1
    donated_at: datetime = Field(default_factory=utcnow)
    expiry_date: datetime
    status: str = DonationStatus.AVAILABLE.value
