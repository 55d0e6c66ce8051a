# routers/users.py
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import select

from db import SessionDep
from models import User
from responses import api_response
from schemas import LoginData, UserCreate, UserRead
from .auth import email_taken, hash_password, login_response, require_roles

logger = logging.getLogger(__name__)

router = APIRouter(tags=["users"])

DonorDep = Annotated[dict, Depends(require_roles("user"))]


@router.post("/register", status_code=201)
def register_user(user_in: UserCreate, session: SessionDep):
    """
    Register a donor account with a hashed password.
    """
    email = user_in.email.lower()
    if email_taken(session, User, email):
        raise HTTPException(status_code=409, detail="Email already registered")
    if session.exec(select(User).where(User.user_name == user_in.user_name)).first():
        raise HTTPException(status_code=409, detail="Username already taken")

    user = User(
        **user_in.model_dump(exclude={"password", "email"}),
        email=email,
        password_hash=hash_password(user_in.password),
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    logger.info("Registered user %s", user.id)

    return api_response(UserRead.model_validate(user), "User registered successfully", 201)


@router.post("/login")
def login_user(payload: LoginData, session: SessionDep):
    return login_response(session, "user", payload, UserRead)


@router.get("/profile/me")
def get_own_profile(current: DonorDep):
    """
    Profile of the logged-in donor.
    """
    return api_response(UserRead.model_validate(current["entity"]), "Profile fetched")
