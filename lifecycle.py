"""
Resource-sharing workflow: resource status changes, the request lifecycle
(PENDING -> APPROVED/REJECTED -> COMPLETED, with CANCELLED and EXPIRED exits)
and centre blood inventory. Neither resources nor requests restrict which
status may follow which.

Every function mutates the row it is given, appends to the row's history
where it has one, and persists through ``commit_versioned`` so two writers
holding the same version cannot both win.
"""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import case, or_
from sqlmodel import Session, select

from db import commit_versioned
from errors import ConflictError, ValidationError
from models import (
    BLOOD_GROUPS,
    PRIORITY_RANK,
    Center,
    EntityType,
    Request,
    RequestPriority,
    RequestStatus,
    Resource,
    ResourceStatus,
    ResourceType,
    as_utc,
    utcnow,
)

logger = logging.getLogger(__name__)

APPROVER_TYPES = (EntityType.HOSPITAL.value, EntityType.NGO.value, EntityType.ADMIN.value)
REQUESTER_TYPES = (EntityType.HOSPITAL.value, EntityType.NGO.value)

UNREQUESTABLE = (ResourceStatus.DISPOSED.value, ResourceStatus.EXPIRED.value)


def _coerce(enum_cls, value, label: str) -> str:
    try:
        return enum_cls(value).value
    except ValueError:
        raise ValidationError(f"Invalid {label}: {value}") from None


def _check_version(entity, expected_version: Optional[int]) -> None:
    if expected_version is not None and expected_version != entity.version:
        raise ConflictError(
            f"{type(entity).__name__} is at version {entity.version}, "
            f"not {expected_version}"
        )


def validate_request_window(start_date: datetime, end_date: datetime) -> None:
    if as_utc(end_date) <= as_utc(start_date):
        raise ValidationError("End date must be after start date")


# ---------------------------------------------------------------- resources


def _apply_resource_status(
    resource: Resource, new_status: str, updated_by: int, reason: Optional[str]
) -> None:
    new_status = _coerce(ResourceStatus, new_status, "resource status")
    now = utcnow()
    resource.status_history = [
        *resource.status_history,
        {
            "status": resource.status,
            "timestamp": as_utc(resource.status_updated_at).isoformat(),
            "updatedBy": updated_by,
            "reason": reason,
        },
    ]
    logger.info(
        "Resource %s status %s -> %s by %s", resource.id, resource.status, new_status, updated_by
    )
    resource.status = new_status
    resource.status_updated_at = now
    resource.updated_at = now


def update_resource_status(
    session: Session,
    resource: Resource,
    new_status: str,
    updated_by: int,
    reason: Optional[str] = None,
    expected_version: Optional[int] = None,
) -> Resource:
    """
    Move a resource to ``new_status``.

    The history entry records the status being left and when it was entered.
    Any status may follow any other.
    """
    _check_version(resource, expected_version)
    _apply_resource_status(resource, new_status, updated_by, reason)
    return commit_versioned(session, resource)


def verify_resource(session: Session, resource: Resource, admin_id: int) -> Resource:
    resource.is_verified = True
    resource.verified_by = admin_id
    resource.verified_at = utcnow()
    resource.updated_at = resource.verified_at
    return commit_versioned(session, resource)


# ---------------------------------------------------------------- requests


def create_request(
    session: Session,
    resource: Resource,
    requester_id: int,
    requester_type: str,
    quantity: int,
    start_date: datetime,
    end_date: datetime,
    purpose: str,
    priority: str = "MEDIUM",
    requirements: Optional[str] = None,
    urgency_justification: Optional[str] = None,
    preferred_location: Optional[dict] = None,
) -> Request:
    if requester_type not in REQUESTER_TYPES:
        raise ValidationError(f"{requester_type} accounts cannot request resources")
    validate_request_window(start_date, end_date)
    if not 10 <= len(purpose) <= 500:
        raise ValidationError("Purpose must be between 10 and 500 characters")
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1")
    if resource.owner_type == requester_type and resource.owner_id == requester_id:
        raise ValidationError("You cannot request your own resource")
    if resource.status in UNREQUESTABLE:
        raise ValidationError(f"Resource is {resource.status.lower()}")
    if (
        resource.resource_type == ResourceType.MEDICINE.value
        and quantity > (resource.quantity_available or 0)
    ):
        raise ValidationError("Requested quantity not available")

    request = Request(
        requester_id=requester_id,
        requester_type=requester_type,
        resource_id=resource.id,
        resource_type=resource.resource_type,
        quantity_requested=quantity,
        start_date=as_utc(start_date),
        end_date=as_utc(end_date),
        priority=_coerce(RequestPriority, priority, "priority"),
        purpose=purpose,
        requirements=requirements,
        urgency_justification=urgency_justification,
        preferred_location=preferred_location,
    )
    session.add(request)
    session.commit()
    session.refresh(request)
    logger.info(
        "Request %s created by %s %s for resource %s",
        request.id, requester_type, requester_id, resource.id,
    )
    return request


def _apply_request_status(
    request: Request,
    new_status: str,
    updated_by: int,
    updater_type: str,
    reason: Optional[str],
) -> None:
    new_status = _coerce(RequestStatus, new_status, "request status")
    if updater_type not in APPROVER_TYPES:
        raise ValidationError(f"Invalid updater type: {updater_type}")

    now = utcnow()
    request.status_history = [
        *request.status_history,
        {
            "status": request.status,
            "updatedBy": updated_by,
            "updaterType": updater_type,
            "timestamp": now.isoformat(),
            "reason": reason,
        },
    ]
    logger.info(
        "Request %s status %s -> %s by %s %s",
        request.id, request.status, new_status, updater_type, updated_by,
    )
    request.status = new_status
    request.updated_at = now

    if new_status == RequestStatus.APPROVED.value:
        request.approval_details = {
            "approvedBy": updated_by,
            "approverType": updater_type,
            "approvedAt": now.isoformat(),
        }


def update_request_status(
    session: Session,
    request: Request,
    new_status: str,
    updated_by: int,
    updater_type: str,
    reason: Optional[str] = None,
    expected_version: Optional[int] = None,
) -> Request:
    """
    Move a request to ``new_status`` and persist it.

    The history entry records the status being left together with who made
    the change. Any status may follow any other, and every transition to
    APPROVED replaces ``approval_details`` outright.
    """
    _check_version(request, expected_version)
    _apply_request_status(request, new_status, updated_by, updater_type, reason)
    return commit_versioned(session, request)


def _sync_stock_status(resource: Resource, updated_by: int, reason: str) -> None:
    if resource.quantity_available == 0 and resource.status == ResourceStatus.AVAILABLE.value:
        _apply_resource_status(resource, ResourceStatus.IN_USE.value, updated_by, "Stock exhausted")
    elif resource.quantity_available and resource.status == ResourceStatus.IN_USE.value:
        _apply_resource_status(resource, ResourceStatus.AVAILABLE.value, updated_by, reason)


def _release_resource(resource: Resource, request: Request, updated_by: int, reason: str) -> bool:
    """Give back what an approved request holds. Returns True if the resource changed."""
    if resource.resource_type == ResourceType.EQUIPMENT.value:
        if resource.status != ResourceStatus.RESERVED.value:
            return False
        _apply_resource_status(resource, ResourceStatus.AVAILABLE.value, updated_by, reason)
        return True
    if not request.quantity_approved:
        return False
    resource.quantity_available = (resource.quantity_available or 0) + request.quantity_approved
    resource.updated_at = utcnow()
    _sync_stock_status(resource, updated_by, reason)
    return True


def transition_request(
    session: Session,
    request: Request,
    resource: Resource,
    new_status: str,
    updated_by: int,
    updater_type: str,
    reason: Optional[str] = None,
    quantity_approved: Optional[int] = None,
    conditions: Optional[str] = None,
    notes: Optional[str] = None,
    expected_version: Optional[int] = None,
) -> Request:
    """
    ``update_request_status`` plus the effect on the shared resource.

    Only an APPROVED request holds the resource: approved medicine is taken
    out of stock and approved equipment is reserved. Leaving APPROVED gives
    the hold back, except that completing a medicine request consumes it.
    Approving again re-sizes the existing hold instead of taking a second one.
    """
    _check_version(request, expected_version)
    new_status = _coerce(RequestStatus, new_status, "request status")
    held = request.status == RequestStatus.APPROVED.value
    is_equipment = resource.resource_type == ResourceType.EQUIPMENT.value

    quantity = None
    if new_status == RequestStatus.APPROVED.value:
        quantity = quantity_approved or request.quantity_requested
        if quantity > request.quantity_requested:
            raise ValidationError("Approved quantity exceeds requested quantity")
        if is_equipment and not held and resource.status != ResourceStatus.AVAILABLE.value:
            raise ValidationError(f"Equipment is {resource.status.lower()}")
        in_stock = (resource.quantity_available or 0) + (
            (request.quantity_approved or 0) if held else 0
        )
        if not is_equipment and quantity > in_stock:
            raise ValidationError("Requested quantity exceeds available stock")

    previous_quantity = request.quantity_approved or 0
    _apply_request_status(request, new_status, updated_by, updater_type, reason)
    label = f"Request {request.id} {new_status.lower()}"

    resource_changed = False
    if new_status == RequestStatus.APPROVED.value:
        request.quantity_approved = quantity
        request.approval_details = {
            **request.approval_details,
            "conditions": conditions,
            "notes": notes,
        }
        if is_equipment:
            if not held:
                _apply_resource_status(resource, ResourceStatus.RESERVED.value, updated_by, label)
                resource_changed = True
        else:
            resource.quantity_available = (
                (resource.quantity_available or 0) + (previous_quantity if held else 0) - quantity
            )
            resource.updated_at = utcnow()
            _sync_stock_status(resource, updated_by, label)
            resource_changed = True
    elif held and not (new_status == RequestStatus.COMPLETED.value and not is_equipment):
        resource_changed = _release_resource(resource, request, updated_by, label)

    if resource_changed:
        return commit_versioned(session, request, resource)
    return commit_versioned(session, request)


def add_communication(
    session: Session,
    request: Request,
    sender: dict,
    message: str,
    attachments: Optional[List[dict]] = None,
) -> Request:
    """Append ``{sender, message, timestamp, attachments}`` to the thread."""
    if sender.get("type") not in APPROVER_TYPES:
        raise ValidationError(f"Invalid sender type: {sender.get('type')}")
    request.communication = [
        *request.communication,
        {
            "sender": {"id": sender["id"], "type": sender["type"]},
            "message": message,
            "timestamp": utcnow().isoformat(),
            "attachments": list(attachments or []),
        },
    ]
    request.updated_at = utcnow()
    return commit_versioned(session, request)


def find_pending_requests(session: Session, resource_id: int) -> List[Request]:
    """PENDING requests for a resource, most urgent first, oldest first within a priority."""
    rank = case(PRIORITY_RANK, value=Request.priority, else_=-1)
    stmt = (
        select(Request)
        .where(
            Request.resource_id == resource_id,
            Request.status == RequestStatus.PENDING.value,
        )
        .order_by(rank.desc(), Request.created_at.asc(), Request.id.asc())
    )
    return list(session.exec(stmt).all())


def expire_overdue_requests(
    session: Session, expired_by: int, now: Optional[datetime] = None
) -> List[Request]:
    """Expire every open request whose window has closed."""
    now = now or utcnow()
    stmt = select(Request).where(
        or_(
            Request.status == RequestStatus.PENDING.value,
            Request.status == RequestStatus.APPROVED.value,
        )
    )
    expired = []
    for request in session.exec(stmt).all():
        if as_utc(request.end_date) > now:
            continue
        resource = session.get(Resource, request.resource_id)
        transition_request(
            session,
            request,
            resource,
            RequestStatus.EXPIRED.value,
            expired_by,
            EntityType.ADMIN.value,
            reason="Request window closed",
        )
        expired.append(request)
    logger.info("Expired %d overdue requests", len(expired))
    return expired


# ---------------------------------------------------------------- centres


def adjust_inventory_line(center: Center, blood_group: str, change: int) -> None:
    """
    Adjust the available units of one blood group, creating the line if needed.

    Available units never drop below zero.
    """
    if blood_group not in BLOOD_GROUPS:
        raise ValidationError(f"Invalid blood group: {blood_group}")

    now = utcnow().isoformat()
    inventory = [dict(line) for line in center.blood_inventory]
    line = next((i for i in inventory if i["bloodGroup"] == blood_group), None)
    if line is None:
        inventory.append(
            {
                "bloodGroup": blood_group,
                "available": max(0, change),
                "reserved": 0,
                "lastUpdated": now,
            }
        )
    else:
        line["available"] = max(0, line["available"] + change)
        line["lastUpdated"] = now

    center.blood_inventory = inventory
    logger.info("Center %s inventory %s changed by %s", center.id, blood_group, change)


def update_inventory(session: Session, center: Center, blood_group: str, change: int) -> Center:
    adjust_inventory_line(center, blood_group, change)
    return commit_versioned(session, center)
