from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func
from sqlmodel import select

from db import SessionDep
from lifecycle import add_communication, create_request, transition_request
from models import Request, RequestStatus, Resource, resolve_entity
from responses import api_response, paginated
from schemas import CommunicationCreate, RequestCreate, RequestRead, RequestStatusUpdate
from .auth import CurrentEntityDep, require_roles
from .resources import is_owner

router = APIRouter(tags=["requests"])

RequesterDep = Annotated[dict, Depends(require_roles("hospital", "ngo"))]
ParticipantDep = Annotated[dict, Depends(require_roles("hospital", "ngo", "admin"))]

# statuses only the resource owner (or an admin) may set
OWNER_DECISIONS = (
    RequestStatus.APPROVED.value,
    RequestStatus.REJECTED.value,
    RequestStatus.COMPLETED.value,
)


def _is_requester(current: dict, req: Request) -> bool:
    return (
        current["entity_type"] == req.requester_type
        and current["entity"].id == req.requester_id
    )


def _load(session: SessionDep, request_id: int):
    req = session.get(Request, request_id)
    if req is None:
        raise HTTPException(status_code=404, detail="Request not found")
    resource = session.get(Resource, req.resource_id)
    if resource is None:
        raise HTTPException(status_code=400, detail="Associated resource not found")
    return req, resource


def _ensure_party(current: dict, req: Request, resource: Resource) -> None:
    if current["role"] == "admin":
        return
    if not (_is_requester(current, req) or is_owner(current, resource)):
        raise HTTPException(
            status_code=403,
            detail="You are not a party to this request.",
        )


@router.post("/", status_code=201)
def submit_request(request_in: RequestCreate, session: SessionDep, current: RequesterDep):
    resource = session.get(Resource, request_in.resource_id)
    if resource is None:
        raise HTTPException(status_code=404, detail="Resource not found")

    req = create_request(
        session,
        resource,
        requester_id=current["entity"].id,
        requester_type=current["entity_type"],
        quantity=request_in.quantity,
        start_date=request_in.start_date,
        end_date=request_in.end_date,
        purpose=request_in.purpose,
        priority=request_in.priority.value,
        requirements=request_in.requirements,
        urgency_justification=request_in.urgency_justification,
        preferred_location=(
            request_in.preferred_location.model_dump() if request_in.preferred_location else None
        ),
    )
    return api_response(RequestRead.model_validate(req), "Request submitted", 201)


@router.get("/")
def list_my_requests(
    session: SessionDep,
    current: RequesterDep,
    status: Optional[str] = None,
    resource_id: Optional[int] = None,
    priority: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=50),
):
    """
    Requests made by the logged-in hospital or NGO, newest first.
    """
    query = select(Request).where(
        Request.requester_type == current["entity_type"],
        Request.requester_id == current["entity"].id,
    )
    if status is not None:
        query = query.where(Request.status == status)
    if resource_id is not None:
        query = query.where(Request.resource_id == resource_id)
    if priority is not None:
        query = query.where(Request.priority == priority)

    total = session.exec(select(func.count()).select_from(query.subquery())).one()
    rows = session.exec(
        query.order_by(Request.created_at.desc(), Request.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()
    items = [RequestRead.model_validate(r) for r in rows]
    return api_response(paginated(items, total, page, limit), "Requests fetched")


@router.get("/{request_id}")
def get_request(request_id: int, session: SessionDep, current: CurrentEntityDep):
    req, resource = _load(session, request_id)
    _ensure_party(current, req, resource)

    requester = resolve_entity(session, req.requester_type, req.requester_id)
    return api_response(
        {
            **RequestRead.model_validate(req).model_dump(),
            "requesterName": requester.name if requester else None,
            "resourceName": resource.name,
        },
        "Request fetched",
    )


@router.patch("/{request_id}/status")
def change_request_status(
    request_id: int,
    update: RequestStatusUpdate,
    session: SessionDep,
    current: ParticipantDep,
):
    """
    Decide on a request.

    The resource owner or an admin approves, rejects and completes. Either
    side may cancel. Expiry is left to admins.
    """
    req, resource = _load(session, request_id)
    target = update.status.value
    is_admin = current["role"] == "admin"

    if target in OWNER_DECISIONS:
        allowed = is_admin or is_owner(current, resource)
    elif target == RequestStatus.CANCELLED.value:
        allowed = is_admin or is_owner(current, resource) or _is_requester(current, req)
    else:
        allowed = is_admin

    if not allowed:
        raise HTTPException(
            status_code=403,
            detail=f"You cannot mark this request {target}.",
        )

    req = transition_request(
        session,
        req,
        resource,
        target,
        current["entity"].id,
        current["entity_type"],
        reason=update.reason,
        quantity_approved=update.quantity_approved,
        conditions=update.conditions,
        notes=update.notes,
        expected_version=update.expected_version,
    )
    return api_response(RequestRead.model_validate(req), "Request status updated")


@router.post("/{request_id}/communication", status_code=201)
def post_message(
    request_id: int,
    message_in: CommunicationCreate,
    session: SessionDep,
    current: ParticipantDep,
):
    req, resource = _load(session, request_id)
    _ensure_party(current, req, resource)

    req = add_communication(
        session,
        req,
        {"id": current["entity"].id, "type": current["entity_type"]},
        message_in.message,
        [a.model_dump() for a in message_in.attachments],
    )
    return api_response(RequestRead.model_validate(req), "Message added", 201)
