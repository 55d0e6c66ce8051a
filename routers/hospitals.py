import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func
from sqlmodel import select

from db import SessionDep
from models import Hospital, Request, RequestStatus, Resource
from responses import api_response
from schemas import HospitalCreate, HospitalRead, LoginData
from .auth import email_taken, hash_password, login_response, require_roles

logger = logging.getLogger(__name__)

router = APIRouter(tags=["hospitals"])

HospitalDep = Annotated[dict, Depends(require_roles("hospital"))]


@router.post("/register", status_code=201)
def register_hospital(hospital_in: HospitalCreate, session: SessionDep):
    email = hospital_in.email.lower()
    if email_taken(session, Hospital, email):
        raise HTTPException(status_code=409, detail="Hospital with email already exists")
    if hospital_in.registration_number and session.exec(
        select(Hospital).where(Hospital.registration_number == hospital_in.registration_number)
    ).first():
        raise HTTPException(status_code=409, detail="Registration number already registered")

    hospital = Hospital(
        **hospital_in.model_dump(exclude={"password", "email", "location"}),
        email=email,
        location=hospital_in.location.model_dump(),
        password_hash=hash_password(hospital_in.password),
    )
    session.add(hospital)
    session.commit()
    session.refresh(hospital)
    logger.info("Registered hospital %s", hospital.id)

    return api_response(
        HospitalRead.model_validate(hospital), "Hospital registered successfully", 201
    )


@router.post("/login")
def login_hospital(payload: LoginData, session: SessionDep):
    return login_response(session, "hospital", payload, HospitalRead)


@router.get("/profile/me")
def get_own_profile(current: HospitalDep):
    return api_response(HospitalRead.model_validate(current["entity"]), "Profile fetched")


def sharing_summary(session: SessionDep, entity_type: str, entity_id: int) -> dict:
    """
    Counts behind the hospital and NGO dashboards: resources owned by status,
    requests made by status, and requests waiting on this owner.
    """
    owned = session.exec(
        select(Resource.status, func.count(Resource.id))
        .where(Resource.owner_type == entity_type, Resource.owner_id == entity_id)
        .group_by(Resource.status)
    ).all()

    made = session.exec(
        select(Request.status, func.count(Request.id))
        .where(Request.requester_type == entity_type, Request.requester_id == entity_id)
        .group_by(Request.status)
    ).all()

    awaiting = session.exec(
        select(func.count(Request.id))
        .join(Resource, Resource.id == Request.resource_id)
        .where(
            Resource.owner_type == entity_type,
            Resource.owner_id == entity_id,
            Request.status == RequestStatus.PENDING.value,
        )
    ).one()

    return {
        "resourcesByStatus": dict(owned),
        "requestsByStatus": dict(made),
        "incomingPendingRequests": awaiting,
    }


@router.get("/analytics")
def get_hospital_analytics(session: SessionDep, current: HospitalDep):
    hospital = current["entity"]
    return api_response(
        sharing_summary(session, "Hospital", hospital.id), "Analytics fetched"
    )
