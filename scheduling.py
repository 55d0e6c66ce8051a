"""Donation appointments and the donations recorded against them."""
import logging
from datetime import datetime, time, timedelta
from typing import List, Optional

from sqlalchemy import func
from sqlmodel import Session, select

from db import commit_versioned
from errors import ConflictError, ValidationError
from lifecycle import adjust_inventory_line
from models import (
    AppointmentStatus,
    BloodDonation,
    Center,
    CenterStatus,
    DonationAppointment,
    TimeSlot,
    as_utc,
    utcnow,
)

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (AppointmentStatus.SCHEDULED.value, AppointmentStatus.CONFIRMED.value)
MAX_RESCHEDULES = 3
CANCELLATION_WINDOW = timedelta(hours=24)
BLOOD_SHELF_LIFE = timedelta(days=42)


def _day_bounds(day: datetime):
    start = datetime.combine(as_utc(day).date(), time.min, tzinfo=as_utc(day).tzinfo)
    return start, start + timedelta(days=1)


def _coerce_slot(time_slot: str) -> str:
    try:
        return TimeSlot(time_slot).value
    except ValueError:
        raise ValidationError(f"Invalid time slot: {time_slot}") from None


def _has_booking_on(session: Session, user_id: int, day: datetime, exclude_id: Optional[int] = None) -> bool:
    start, end = _day_bounds(day)
    stmt = select(DonationAppointment.id).where(
        DonationAppointment.user_id == user_id,
        DonationAppointment.date >= start,
        DonationAppointment.date < end,
        DonationAppointment.status.in_(ACTIVE_STATUSES),
    )
    if exclude_id is not None:
        stmt = stmt.where(DonationAppointment.id != exclude_id)
    return session.exec(stmt).first() is not None


def book_appointment(
    session: Session,
    user_id: int,
    center: Center,
    date: datetime,
    time_slot: str,
    notes: Optional[str] = None,
) -> DonationAppointment:
    if as_utc(date) <= utcnow():
        raise ValidationError("Appointment date must be in the future")
    time_slot = _coerce_slot(time_slot)
    if center.status != CenterStatus.ACTIVE.value:
        raise ValidationError("Center is not accepting appointments")
    if _has_booking_on(session, user_id, date):
        raise ValidationError("You already have an appointment on this day")

    status = AppointmentStatus.SCHEDULED.value
    appointment = DonationAppointment(
        user_id=user_id,
        center_id=center.id,
        date=as_utc(date),
        time_slot=time_slot,
        status=status,
        status_history=[
            {"status": status, "updatedBy": user_id, "reason": None, "updatedAt": utcnow().isoformat()}
        ],
        notes=notes,
    )
    session.add(appointment)
    session.commit()
    session.refresh(appointment)
    logger.info("Appointment %s booked for user %s at center %s", appointment.id, user_id, center.id)
    return appointment


def _apply_appointment_status(
    appointment: DonationAppointment, new_status: str, updated_by: int, reason: Optional[str]
) -> None:
    try:
        new_status = AppointmentStatus(new_status).value
    except ValueError:
        raise ValidationError("Invalid status") from None

    appointment.status = new_status
    appointment.status_history = [
        *appointment.status_history,
        {
            "status": new_status,
            "updatedBy": updated_by,
            "reason": reason,
            "updatedAt": utcnow().isoformat(),
        },
    ]
    if new_status == AppointmentStatus.CANCELLED.value:
        appointment.cancellation_reason = reason


def update_appointment_status(
    session: Session,
    appointment: DonationAppointment,
    new_status: str,
    updated_by: int,
    reason: Optional[str] = None,
    health_information: Optional[dict] = None,
    expected_version: Optional[int] = None,
) -> DonationAppointment:
    if expected_version is not None and expected_version != appointment.version:
        raise ConflictError(f"DonationAppointment is at version {appointment.version}")
    _apply_appointment_status(appointment, new_status, updated_by, reason)
    if health_information:
        appointment.health_information = {**health_information, "recordedAt": utcnow().isoformat()}
    logger.info("Appointment %s is now %s", appointment.id, appointment.status)
    return commit_versioned(session, appointment)


def can_reschedule(appointment: DonationAppointment) -> bool:
    return appointment.reschedule_count < MAX_RESCHEDULES and appointment.status in ACTIVE_STATUSES


def is_within_cancellation_window(appointment: DonationAppointment, now: Optional[datetime] = None) -> bool:
    """True while the appointment is at least 24 hours away."""
    now = now or utcnow()
    return as_utc(appointment.date) - now >= CANCELLATION_WINDOW


def reschedule_appointment(
    session: Session,
    appointment: DonationAppointment,
    date: datetime,
    time_slot: str,
    updated_by: int,
) -> DonationAppointment:
    if not can_reschedule(appointment):
        raise ValidationError("Maximum reschedule limit reached or appointment is closed")
    if as_utc(date) <= utcnow():
        raise ValidationError("Appointment date must be in the future")
    if _has_booking_on(session, appointment.user_id, date, exclude_id=appointment.id):
        raise ValidationError("You already have an appointment on this day")

    time_slot = _coerce_slot(time_slot)
    _apply_appointment_status(
        appointment, AppointmentStatus.SCHEDULED.value, updated_by,
        f"Rescheduled from {as_utc(appointment.date).isoformat()} {appointment.time_slot}",
    )
    appointment.date = as_utc(date)
    appointment.time_slot = time_slot
    appointment.reschedule_count += 1
    return commit_versioned(session, appointment)


def find_upcoming(session: Session, user_id: int) -> List[DonationAppointment]:
    stmt = (
        select(DonationAppointment)
        .where(
            DonationAppointment.user_id == user_id,
            DonationAppointment.date > utcnow(),
            DonationAppointment.status.in_(ACTIVE_STATUSES),
        )
        .order_by(DonationAppointment.date.asc())
    )
    return list(session.exec(stmt).all())


def slot_availability(session: Session, center_id: int, day: datetime) -> dict:
    """Number of live bookings per time slot at a centre on one day."""
    start, end = _day_bounds(day)
    stmt = (
        select(DonationAppointment.time_slot, func.count(DonationAppointment.id))
        .where(
            DonationAppointment.center_id == center_id,
            DonationAppointment.date >= start,
            DonationAppointment.date < end,
            DonationAppointment.status.in_(ACTIVE_STATUSES),
        )
        .group_by(DonationAppointment.time_slot)
    )
    counts = {slot.value: 0 for slot in TimeSlot}
    for slot, count in session.exec(stmt).all():
        counts[slot] = count
    return counts


def record_donation(
    session: Session,
    center: Center,
    user_id: int,
    blood_group: str,
    units: int,
    recorded_by: int,
    appointment: Optional[DonationAppointment] = None,
) -> BloodDonation:
    """
    Store a donation, add its units to the centre inventory and close the
    appointment it came from.
    """
    if appointment is not None:
        if appointment.user_id != user_id or appointment.center_id != center.id:
            raise ValidationError("Appointment does not match donor and center")
        if appointment.status not in ACTIVE_STATUSES + (AppointmentStatus.IN_PROGRESS.value,):
            raise ValidationError(f"Appointment is {appointment.status.lower()}")

    donated_at = utcnow()
    donation = BloodDonation(
        user_id=user_id,
        center_id=center.id,
        appointment_id=appointment.id if appointment else None,
        blood_group=blood_group,
        units=units,
        donated_at=donated_at,
        expiry_date=donated_at + BLOOD_SHELF_LIFE,
    )
    session.add(donation)
    adjust_inventory_line(center, blood_group, units)
    if appointment is not None:
        _apply_appointment_status(
            appointment, AppointmentStatus.COMPLETED.value, recorded_by, "Donation recorded"
        )
        commit_versioned(session, center, appointment)
    else:
        commit_versioned(session, center)
    session.refresh(donation)

    logger.info(
        "Donation %s of %s x%s recorded at center %s", donation.id, blood_group, units, center.id
    )
    return donation
