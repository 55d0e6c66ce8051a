import math
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy import func
from sqlmodel import select

from db import SessionDep
from lifecycle import find_pending_requests, update_resource_status, verify_resource
from models import Request, Resource, as_utc
from responses import api_response, paginated
from schemas import RequestRead, ResourceCreate, ResourceRead, ResourceStatusUpdate
from .auth import CurrentEntityDep, require_roles

router = APIRouter(tags=["resources"])

OwnerDep = Annotated[dict, Depends(require_roles("hospital", "ngo", "user"))]
AdminDep = Annotated[dict, Depends(require_roles("admin"))]

EARTH_RADIUS_KM = 6371.0


def distance_km(a: list, b: list) -> float:
    """Great-circle distance between two [longitude, latitude] pairs."""
    lng1, lat1 = map(math.radians, a)
    lng2, lat2 = map(math.radians, b)
    dlat = lat2 - lat1
    dlng = lng2 - lng1
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(h))


def is_owner(current: dict, resource: Resource) -> bool:
    return (
        current["entity_type"] == resource.owner_type
        and current["entity"].id == resource.owner_id
    )


def get_resource_or_404(session: SessionDep, resource_id: int) -> Resource:
    resource = session.get(Resource, resource_id)
    if resource is None:
        raise HTTPException(status_code=404, detail="Resource not found")
    return resource


def _ensure_owner_or_admin(current: dict, resource: Resource) -> None:
    if current["role"] != "admin" and not is_owner(current, resource):
        raise HTTPException(
            status_code=403,
            detail="Only the owner or an admin can manage this resource.",
        )


@router.get("/")
def list_resources(
    session: SessionDep,
    resource_type: Optional[str] = None,
    status: Optional[str] = None,
    owner_type: Optional[str] = None,
    owner_id: Optional[int] = None,
    verified: Optional[bool] = None,
    near_lng: Optional[float] = Query(default=None, ge=-180, le=180),
    near_lat: Optional[float] = Query(default=None, ge=-90, le=90),
    radius_km: float = Query(default=10, ge=1, le=100),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=50),
):
    """
    List resources, optionally filtered by type, status, owner and
    verification, or by distance from a point (nearest first).
    """
    query = select(Resource)

    if resource_type is not None:
        query = query.where(Resource.resource_type == resource_type)

    if status is not None:
        query = query.where(Resource.status == status)

    if owner_type is not None:
        query = query.where(Resource.owner_type == owner_type)

    if owner_id is not None:
        query = query.where(Resource.owner_id == owner_id)

    if verified is not None:
        query = query.where(Resource.is_verified == verified)

    offset = (page - 1) * limit

    if (near_lng is None) != (near_lat is None):
        raise HTTPException(status_code=400, detail="near_lng and near_lat go together")

    if near_lng is not None:
        origin = [near_lng, near_lat]
        nearby = []
        for resource in session.exec(query).all():
            distance = distance_km(origin, resource.location["coordinates"])
            if distance <= radius_km:
                nearby.append((distance, resource))
        nearby.sort(key=lambda pair: pair[0])
        items = [
            {**ResourceRead.model_validate(r).model_dump(), "distanceKm": round(d, 2)}
            for d, r in nearby[offset:offset + limit]
        ]
        return api_response(paginated(items, len(nearby), page, limit), "Resources fetched")

    total = session.exec(select(func.count()).select_from(query.subquery())).one()
    rows = session.exec(
        query.order_by(Resource.created_at.desc(), Resource.id.desc()).offset(offset).limit(limit)
    ).all()
    items = [ResourceRead.model_validate(r) for r in rows]
    return api_response(paginated(items, total, page, limit), "Resources fetched")


@router.post("/", status_code=201)
def create_resource(resource_in: ResourceCreate, session: SessionDep, current: OwnerDep):
    """
    Share a piece of equipment or a medicine batch owned by the caller.
    """
    resource = Resource(
        name=resource_in.name,
        resource_type=resource_in.resource_type.value,
        owner_id=current["entity"].id,
        owner_type=current["entity_type"],
        location=resource_in.location.model_dump(),
        address=resource_in.address.model_dump() if resource_in.address else None,
        details=resource_in.details,
        quantity_available=resource_in.quantity_available,
        unit=resource_in.unit,
        expiry_date=as_utc(resource_in.expiry_date) if resource_in.expiry_date else None,
    )
    session.add(resource)
    session.commit()
    session.refresh(resource)
    return api_response(ResourceRead.model_validate(resource), "Resource added", 201)


@router.get("/{resource_id}")
def get_resource(resource_id: int, session: SessionDep):
    resource = get_resource_or_404(session, resource_id)
    return api_response(ResourceRead.model_validate(resource), "Resource fetched")


@router.patch("/{resource_id}/status")
def change_resource_status(
    resource_id: int,
    update: ResourceStatusUpdate,
    session: SessionDep,
    current: CurrentEntityDep,
):
    resource = get_resource_or_404(session, resource_id)
    _ensure_owner_or_admin(current, resource)

    resource = update_resource_status(
        session,
        resource,
        update.status.value,
        current["entity"].id,
        update.reason,
        expected_version=update.expected_version,
    )
    return api_response(ResourceRead.model_validate(resource), "Resource status updated")


@router.get("/{resource_id}/history")
def get_resource_history(resource_id: int, session: SessionDep, current: CurrentEntityDep):
    resource = get_resource_or_404(session, resource_id)
    return api_response(
        {
            "resourceId": resource.id,
            "current": resource.status,
            "lastUpdated": resource.status_updated_at,
            "history": resource.status_history,
        },
        "Resource history fetched",
    )


@router.patch("/{resource_id}/verify")
def verify(resource_id: int, session: SessionDep, current: AdminDep):
    resource = get_resource_or_404(session, resource_id)
    resource = verify_resource(session, resource, current["entity"].id)
    return api_response(ResourceRead.model_validate(resource), "Resource verified")


@router.get("/{resource_id}/pending-requests")
def pending_requests(resource_id: int, session: SessionDep, current: CurrentEntityDep):
    """
    Requests waiting on a decision, most urgent and oldest first.
    """
    resource = get_resource_or_404(session, resource_id)
    _ensure_owner_or_admin(current, resource)
    requests = find_pending_requests(session, resource.id)
    return api_response(
        [RequestRead.model_validate(r) for r in requests], "Pending requests fetched"
    )


@router.delete("/{resource_id}", status_code=204)
def delete_resource(resource_id: int, session: SessionDep, current: CurrentEntityDep):
    resource = get_resource_or_404(session, resource_id)

    # Only the owner can withdraw a resource
    if not is_owner(current, resource):
        raise HTTPException(
            status_code=403,
            detail="You can only delete resources you shared.",
        )

    # Requests keep their history; retire the resource with DISPOSED instead
    referenced = session.exec(
        select(Request).where(Request.resource_id == resource_id)
    ).first()

    if referenced:
        raise HTTPException(
            status_code=400,
            detail="Cannot delete a resource with request history; mark it DISPOSED instead.",
        )

    session.delete(resource)
    session.commit()
    return Response(status_code=204)
