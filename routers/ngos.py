import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func
from sqlmodel import select

from db import SessionDep
from lifecycle import update_inventory
from models import NGO, BloodDonation, Center, DonationAppointment, User, utcnow
from responses import api_response
from scheduling import ACTIVE_STATUSES, record_donation
from schemas import (
    CenterCreate,
    CenterRead,
    DonationCreate,
    DonationRead,
    InventoryUpdate,
    LoginData,
    NGOCreate,
    NGORead,
    NGOUpdate,
)
from .auth import hash_password, login_response, require_roles
from .hospitals import sharing_summary

logger = logging.getLogger(__name__)

router = APIRouter(tags=["ngos"])

NGODep = Annotated[dict, Depends(require_roles("ngo"))]


def _own_center(session: SessionDep, center_id: int, ngo_id: int) -> Center:
    center = session.get(Center, center_id)
    if center is None or center.ngo_id != ngo_id:
        raise HTTPException(status_code=404, detail="Center not found")
    return center


@router.post("/register", status_code=201)
def register_ngo(ngo_in: NGOCreate, session: SessionDep):
    email = ngo_in.email.lower()
    existing = session.exec(
        select(NGO).where((NGO.email == email) | (NGO.reg_number == ngo_in.reg_number))
    ).first()
    if existing:
        raise HTTPException(
            status_code=409,
            detail="NGO with email already exists"
            if existing.email == email
            else "Registration number already registered",
        )

    ngo = NGO(
        **ngo_in.model_dump(exclude={"password", "email", "location"}),
        email=email,
        location=ngo_in.location.model_dump() if ngo_in.location else None,
        password_hash=hash_password(ngo_in.password),
    )
    session.add(ngo)
    session.commit()
    session.refresh(ngo)
    logger.info("Registered NGO %s", ngo.id)

    return api_response(NGORead.model_validate(ngo), "NGO registered successfully", 201)


@router.post("/login")
def login_ngo(payload: LoginData, session: SessionDep):
    return login_response(session, "ngo", payload, NGORead)


@router.get("/profile/me")
def get_own_profile(current: NGODep):
    return api_response(NGORead.model_validate(current["entity"]), "Profile fetched")


@router.patch("/profile/me")
def update_own_profile(update: NGOUpdate, session: SessionDep, current: NGODep):
    ngo = current["entity"]
    changes = update.model_dump(exclude_unset=True, exclude={"location"})
    for field, value in changes.items():
        setattr(ngo, field, value)
    if update.location is not None:
        ngo.location = update.location.model_dump()
    session.add(ngo)
    session.commit()
    session.refresh(ngo)
    return api_response(NGORead.model_validate(ngo), "Profile updated")


@router.get("/analytics")
def get_ngo_analytics(session: SessionDep, current: NGODep):
    """
    Dashboard numbers: resource sharing activity plus blood stock, donations
    and upcoming appointments across the NGO's centres.
    """
    ngo = current["entity"]
    centers = session.exec(select(Center).where(Center.ngo_id == ngo.id)).all()
    center_ids = [c.id for c in centers]

    stock: dict = {}
    for center in centers:
        for line in center.blood_inventory:
            stock[line["bloodGroup"]] = stock.get(line["bloodGroup"], 0) + line["available"]

    donations = 0
    upcoming = 0
    if center_ids:
        donations = session.exec(
            select(func.count(BloodDonation.id)).where(BloodDonation.center_id.in_(center_ids))
        ).one()
        upcoming = session.exec(
            select(func.count(DonationAppointment.id)).where(
                DonationAppointment.center_id.in_(center_ids),
                DonationAppointment.date > utcnow(),
                DonationAppointment.status.in_(ACTIVE_STATUSES),
            )
        ).one()

    return api_response(
        {
            **sharing_summary(session, "NGO", ngo.id),
            "centers": len(centers),
            "bloodStock": stock,
            "donations": donations,
            "upcomingAppointments": upcoming,
        },
        "Analytics fetched",
    )


@router.post("/centers", status_code=201)
def create_center(center_in: CenterCreate, session: SessionDep, current: NGODep):
    ngo = current["entity"]
    center = Center(
        **center_in.model_dump(exclude={"location"}),
        location=center_in.location.model_dump() if center_in.location else None,
        ngo_id=ngo.id,
    )
    session.add(center)
    session.commit()
    session.refresh(center)
    return api_response(CenterRead.model_validate(center), "Center created successfully", 201)


@router.get("/centers")
def list_centers(session: SessionDep, current: NGODep):
    ngo = current["entity"]
    centers = session.exec(
        select(Center).where(Center.ngo_id == ngo.id).order_by(Center.id)
    ).all()
    return api_response(
        [CenterRead.model_validate(c) for c in centers], "Centers fetched successfully"
    )


@router.patch("/centers/{center_id}/inventory")
def update_center_inventory(
    center_id: int,
    update: InventoryUpdate,
    session: SessionDep,
    current: NGODep,
):
    center = _own_center(session, center_id, current["entity"].id)
    center = update_inventory(session, center, update.blood_group, update.change)
    return api_response(CenterRead.model_validate(center), "Inventory updated")


@router.post("/centers/{center_id}/donations", status_code=201)
def create_donation(
    center_id: int,
    donation_in: DonationCreate,
    session: SessionDep,
    current: NGODep,
):
    ngo = current["entity"]
    center = _own_center(session, center_id, ngo.id)
    if session.get(User, donation_in.user_id) is None:
        raise HTTPException(status_code=404, detail="Donor not found")

    appointment = None
    if donation_in.appointment_id is not None:
        appointment = session.get(DonationAppointment, donation_in.appointment_id)
        if appointment is None:
            raise HTTPException(status_code=404, detail="Appointment not found")

    donation = record_donation(
        session,
        center,
        donation_in.user_id,
        donation_in.blood_group,
        donation_in.units,
        recorded_by=ngo.id,
        appointment=appointment,
    )
    return api_response(DonationRead.model_validate(donation), "Donation recorded", 201)
