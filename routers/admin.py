from typing import Annotated

from fastapi import APIRouter, Depends

from db import SessionDep
from lifecycle import expire_overdue_requests
from responses import api_response
from schemas import AdminRead, LoginData
from .auth import login_response, require_roles

router = APIRouter(tags=["admin"])

AdminDep = Annotated[dict, Depends(require_roles("admin"))]


@router.post("/login")
def login_admin(payload: LoginData, session: SessionDep):
    return login_response(session, "admin", payload, AdminRead)


@router.post("/requests/expire")
def expire_requests(session: SessionDep, current: AdminDep):
    """
    Close every pending or approved request whose end date has passed.
    """
    expired = expire_overdue_requests(session, current["entity"].id)
    return api_response(
        {"expired": [r.id for r in expired], "count": len(expired)},
        "Overdue requests expired",
    )
