import re
from datetime import date, datetime, timezone
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from models import (
    AppointmentStatus,
    RequestPriority,
    RequestStatus,
    ResourceStatus,
    ResourceType,
    TimeSlot,
)

PHONE_PATTERN = r"^\+?[\d\s-]{10,}$"
PIN_CODE_PATTERN = r"^\d{6}$"
REGISTRATION_PATTERN = r"(?i)^[A-Z0-9-]{5,}$"
PASSWORD_RE = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&])[A-Za-z\d@$!%*?&]{8,}$")

BloodGroup = Literal["A+", "A-", "B+", "B-", "AB+", "AB-", "O+", "O-"]
EQUIPMENT_CONDITIONS = ("EXCELLENT", "GOOD", "FAIR", "NEEDS_REPAIR")


def _strong_password(value: str) -> str:
    if not PASSWORD_RE.match(value):
        raise ValueError(
            "Password must contain uppercase, lowercase, number and special character"
        )
    return value


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class GeoPoint(BaseModel):
    type: Literal["Point"] = "Point"
    coordinates: List[float]

    @field_validator("coordinates")
    @classmethod
    def check_coordinates(cls, coords: List[float]) -> List[float]:
        if len(coords) != 2:
            raise ValueError("Coordinates must be [longitude, latitude]")
        lng, lat = coords
        if not (-180 <= lng <= 180 and -90 <= lat <= 90):
            raise ValueError("Invalid coordinates")
        return coords


class Address(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pin_code: Optional[str] = Field(default=None, pattern=PIN_CODE_PATTERN)


class LoginData(BaseModel):
    email: EmailStr
    password: str


# ---------------------------------------------------------------- accounts


class UserCreate(BaseModel):
    user_name: str = Field(min_length=3, max_length=20)
    full_name: str = Field(min_length=3, max_length=50)
    email: EmailStr
    password: str = Field(min_length=8)
    phone: str = Field(pattern=PHONE_PATTERN)
    blood_type: BloodGroup
    gender: Literal["Male", "Female"]
    date_of_birth: date
    city: Optional[str] = None
    pin_code: Optional[str] = Field(default=None, pattern=PIN_CODE_PATTERN)

    @field_validator("password")
    @classmethod
    def check_password(cls, value: str) -> str:
        return _strong_password(value)

    @field_validator("date_of_birth")
    @classmethod
    def check_age(cls, value: date) -> date:
        today = date.today()
        age = today.year - value.year - ((today.month, today.day) < (value.month, value.day))
        if not 18 <= age <= 65:
            raise ValueError("Age must be between 18 and 65 years")
        return value


class UserRead(BaseModel):
    id: int
    user_name: str
    full_name: str
    email: EmailStr
    phone: str
    blood_type: str
    gender: str
    date_of_birth: date
    city: Optional[str] = None
    pin_code: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class HospitalCreate(BaseModel):
    name: str = Field(min_length=3)
    email: EmailStr
    password: str = Field(min_length=8)
    contact_name: str
    contact_phone: str = Field(pattern=PHONE_PATTERN)
    emergency_phone: str = Field(pattern=PHONE_PATTERN)
    street: str
    city: str
    state: str
    pin_code: str = Field(pattern=PIN_CODE_PATTERN)
    location: GeoPoint
    registration_number: Optional[str] = Field(default=None, pattern=REGISTRATION_PATTERN)
    specialties: List[str] = []

    @field_validator("password")
    @classmethod
    def check_password(cls, value: str) -> str:
        return _strong_password(value)


class HospitalRead(BaseModel):
    id: int
    name: str
    email: EmailStr
    contact_name: str
    contact_phone: str
    emergency_phone: str
    street: str
    city: str
    state: str
    pin_code: str
    location: dict
    registration_number: Optional[str] = None
    specialties: List[str]
    is_verified: bool

    model_config = ConfigDict(from_attributes=True)


class NGOCreate(BaseModel):
    name: str = Field(min_length=3)
    email: EmailStr
    password: str = Field(min_length=8)
    contact_name: str
    contact_phone: str = Field(pattern=PHONE_PATTERN)
    reg_number: str = Field(pattern=REGISTRATION_PATTERN)
    street: Optional[str] = None
    city: str
    state: Optional[str] = None
    pin_code: str = Field(pattern=PIN_CODE_PATTERN)
    location: Optional[GeoPoint] = None

    @field_validator("password")
    @classmethod
    def check_password(cls, value: str) -> str:
        return _strong_password(value)


class NGOUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=3)
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pin_code: Optional[str] = Field(default=None, pattern=PIN_CODE_PATTERN)
    location: Optional[GeoPoint] = None


class NGORead(BaseModel):
    id: int
    name: str
    email: EmailStr
    contact_name: str
    contact_phone: str
    reg_number: str
    street: Optional[str] = None
    city: str
    state: Optional[str] = None
    pin_code: str
    location: Optional[dict] = None
    is_verified: bool

    model_config = ConfigDict(from_attributes=True)


class AdminRead(BaseModel):
    id: int
    name: str
    email: EmailStr

    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------- sharing


class ResourceCreate(BaseModel):
    name: str = Field(min_length=3, max_length=100)
    resource_type: ResourceType
    location: GeoPoint
    address: Optional[Address] = None
    details: dict[str, Any] = {}
    quantity_available: Optional[int] = Field(default=None, ge=1)
    unit: Optional[Literal["strips", "bottles", "units", "vials", "tubes"]] = None
    expiry_date: Optional[datetime] = None

    @model_validator(mode="after")
    def check_variant(self):
        if self.resource_type == ResourceType.MEDICINE:
            if self.quantity_available is None or self.unit is None:
                raise ValueError("Medicine needs quantity_available and unit")
            if self.expiry_date is None:
                raise ValueError("Medicine needs an expiry_date")
            if _aware(self.expiry_date) <= datetime.now(timezone.utc):
                raise ValueError("Expiry date must be in the future")
            if not self.details.get("category"):
                raise ValueError("Medicine category is required")
        else:
            if self.details.get("condition") not in EQUIPMENT_CONDITIONS:
                raise ValueError(
                    "Equipment condition must be one of " + ", ".join(EQUIPMENT_CONDITIONS)
                )
        return self


class ResourceRead(BaseModel):
    id: int
    name: str
    resource_type: str
    owner_id: int
    owner_type: str
    location: dict
    address: Optional[dict] = None
    status: str
    status_updated_at: datetime
    is_verified: bool
    verified_by: Optional[int] = None
    verified_at: Optional[datetime] = None
    details: dict
    quantity_available: Optional[int] = None
    unit: Optional[str] = None
    expiry_date: Optional[datetime] = None
    created_at: datetime
    version: int

    model_config = ConfigDict(from_attributes=True)


class ResourceStatusUpdate(BaseModel):
    status: ResourceStatus
    reason: Optional[str] = Field(default=None, max_length=500)
    expected_version: Optional[int] = None


class RequestCreate(BaseModel):
    resource_id: int
    quantity: int = Field(ge=1)
    start_date: datetime
    end_date: datetime
    priority: RequestPriority = RequestPriority.MEDIUM
    purpose: str = Field(min_length=10, max_length=500)
    requirements: Optional[str] = None
    urgency_justification: Optional[str] = None
    preferred_location: Optional[GeoPoint] = None

    @model_validator(mode="after")
    def check_window(self):
        if _aware(self.end_date) <= _aware(self.start_date):
            raise ValueError("End date must be after start date")
        return self


class RequestStatusUpdate(BaseModel):
    status: RequestStatus
    reason: Optional[str] = Field(default=None, max_length=500)
    quantity_approved: Optional[int] = Field(default=None, ge=1)
    conditions: Optional[str] = None
    notes: Optional[str] = None
    expected_version: Optional[int] = None


class Attachment(BaseModel):
    name: str
    url: str
    type: Optional[str] = None


class CommunicationCreate(BaseModel):
    message: str = Field(min_length=1, max_length=2000)
    attachments: List[Attachment] = []


class RequestRead(BaseModel):
    id: int
    requester_id: int
    requester_type: str
    resource_id: int
    resource_type: str
    quantity_requested: int
    quantity_approved: Optional[int] = None
    start_date: datetime
    end_date: datetime
    status: str
    status_history: list
    priority: str
    purpose: str
    requirements: Optional[str] = None
    urgency_justification: Optional[str] = None
    preferred_location: Optional[dict] = None
    approval_details: Optional[dict] = None
    communication: list
    created_at: datetime
    updated_at: datetime
    version: int

    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------- donation


class CenterCreate(BaseModel):
    name: str = Field(min_length=3)
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)
    city: str
    pin_code: str = Field(pattern=PIN_CODE_PATTERN)
    location: Optional[GeoPoint] = None
    facilities: List[
        Literal["Blood Testing", "Blood Storage", "Transport", "Emergency Response"]
    ] = []


class CenterRead(BaseModel):
    id: int
    name: str
    ngo_id: int
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = None
    city: str
    pin_code: str
    location: Optional[dict] = None
    blood_inventory: list
    facilities: list
    status: str
    version: int

    model_config = ConfigDict(from_attributes=True)


class InventoryUpdate(BaseModel):
    blood_group: BloodGroup
    change: int


class DonationCreate(BaseModel):
    user_id: int
    blood_group: BloodGroup
    units: int = Field(default=1, ge=1, le=2)
    appointment_id: Optional[int] = None


class HealthInformation(BaseModel):
    hemoglobin: Optional[float] = Field(default=None, ge=12.5, le=20)
    systolic: Optional[int] = Field(default=None, ge=90, le=180)
    diastolic: Optional[int] = Field(default=None, ge=60, le=100)
    weight: Optional[float] = Field(default=None, ge=50)
    temperature: Optional[float] = Field(default=None, ge=35.5, le=37.5)
    pulse_rate: Optional[int] = Field(default=None, ge=60, le=100)


class AppointmentCreate(BaseModel):
    center_id: int
    date: datetime
    time_slot: TimeSlot
    notes: Optional[str] = None

    @field_validator("date")
    @classmethod
    def check_future(cls, value: datetime) -> datetime:
        if _aware(value) <= datetime.now(timezone.utc):
            raise ValueError("Appointment date must be in the future")
        return value


class AppointmentReschedule(AppointmentCreate):
    center_id: Optional[int] = None


class AppointmentStatusUpdate(BaseModel):
    status: AppointmentStatus
    reason: Optional[str] = None
    health_information: Optional[HealthInformation] = None
    expected_version: Optional[int] = None


class AppointmentRead(BaseModel):
    id: int
    user_id: int
    center_id: int
    date: datetime
    time_slot: str
    status: str
    status_history: list
    health_information: Optional[dict] = None
    cancellation_reason: Optional[str] = None
    reschedule_count: int
    notes: Optional[str] = None
    version: int

    model_config = ConfigDict(from_attributes=True)


class DonationRead(BaseModel):
    id: int
    user_id: int
    center_id: int
    appointment_id: Optional[int] = None
    blood_group: str
    units: int
    donated_at: datetime
    expiry_date: datetime
    status: str

    model_config = ConfigDict(from_attributes=True)

