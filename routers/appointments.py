from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException

from db import SessionDep
from models import AppointmentStatus, Center, DonationAppointment
from responses import api_response
from scheduling import (
    ACTIVE_STATUSES,
    book_appointment,
    find_upcoming,
    is_within_cancellation_window,
    reschedule_appointment,
    slot_availability,
    update_appointment_status,
)
from schemas import (
    AppointmentCreate,
    AppointmentRead,
    AppointmentReschedule,
    AppointmentStatusUpdate,
)
from .auth import CurrentEntityDep, require_roles

router = APIRouter(tags=["appointments"])

DonorDep = Annotated[dict, Depends(require_roles("user"))]
StaffDep = Annotated[dict, Depends(require_roles("user", "ngo"))]


def _get_center(session: SessionDep, center_id: int) -> Center:
    center = session.get(Center, center_id)
    if center is None:
        raise HTTPException(status_code=404, detail="Center not found")
    return center


def _get_appointment(session: SessionDep, appointment_id: int) -> DonationAppointment:
    appointment = session.get(DonationAppointment, appointment_id)
    if appointment is None:
        raise HTTPException(status_code=404, detail="Appointment not found")
    return appointment


@router.post("/", status_code=201)
def book(appointment_in: AppointmentCreate, session: SessionDep, current: DonorDep):
    center = _get_center(session, appointment_in.center_id)
    appointment = book_appointment(
        session,
        current["entity"].id,
        center,
        appointment_in.date,
        appointment_in.time_slot.value,
        appointment_in.notes,
    )
    return api_response(AppointmentRead.model_validate(appointment), "Appointment booked", 201)


@router.get("/upcoming")
def upcoming(session: SessionDep, current: DonorDep):
    appointments = find_upcoming(session, current["entity"].id)
    return api_response(
        [AppointmentRead.model_validate(a) for a in appointments], "Upcoming appointments"
    )


@router.get("/availability")
def availability(center_id: int, date: datetime, session: SessionDep, current: CurrentEntityDep):
    center = _get_center(session, center_id)
    return api_response(
        {"centerId": center.id, "date": date.date(), "slots": slot_availability(session, center.id, date)},
        "Availability fetched",
    )


@router.patch("/{appointment_id}/status")
def change_status(
    appointment_id: int,
    update: AppointmentStatusUpdate,
    session: SessionDep,
    current: StaffDep,
):
    """
    Donors may only cancel their own appointment, and only until 24 hours
    before it. The NGO running the centre can set any status.
    """
    appointment = _get_appointment(session, appointment_id)

    if current["role"] == "user":
        if appointment.user_id != current["entity"].id:
            raise HTTPException(status_code=404, detail="Appointment not found")
        if update.status != AppointmentStatus.CANCELLED:
            raise HTTPException(status_code=403, detail="Donors can only cancel appointments")
        if appointment.status not in ACTIVE_STATUSES:
            raise HTTPException(
                status_code=400,
                detail="Only scheduled or confirmed appointments can be cancelled",
            )
        if not is_within_cancellation_window(appointment):
            raise HTTPException(
                status_code=400,
                detail="Appointments can only be cancelled 24 hours in advance",
            )
    else:
        center = session.get(Center, appointment.center_id)
        if center is None or center.ngo_id != current["entity"].id:
            raise HTTPException(status_code=403, detail="Appointment is not at one of your centers")

    appointment = update_appointment_status(
        session,
        appointment,
        update.status.value,
        current["entity"].id,
        reason=update.reason,
        health_information=(
            update.health_information.model_dump(exclude_none=True)
            if update.health_information
            else None
        ),
        expected_version=update.expected_version,
    )
    return api_response(AppointmentRead.model_validate(appointment), "Appointment updated")


@router.post("/{appointment_id}/reschedule")
def reschedule(
    appointment_id: int,
    update: AppointmentReschedule,
    session: SessionDep,
    current: DonorDep,
):
    appointment = _get_appointment(session, appointment_id)
    if appointment.user_id != current["entity"].id:
        raise HTTPException(status_code=404, detail="Appointment not found")

    if update.center_id is not None and update.center_id != appointment.center_id:
        raise HTTPException(status_code=400, detail="Book a new appointment to change center")

    appointment = reschedule_appointment(
        session, appointment, update.date, update.time_slot.value, current["entity"].id
    )
    return api_response(AppointmentRead.model_validate(appointment), "Appointment rescheduled")
