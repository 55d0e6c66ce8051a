from datetime import timedelta

import pytest
from sqlmodel import Session

from db import engine
from errors import ConflictError, ValidationError
from lifecycle import (
    create_request,
    expire_overdue_requests,
    find_pending_requests,
    transition_request,
    update_inventory,
    update_request_status,
    update_resource_status,
    validate_request_window,
)
from models import Center, Resource, utcnow

POINT = {"type": "Point", "coordinates": [77.59, 12.97]}


def make_resource(session, **overrides) -> Resource:
    fields = {
        "name": "Infusion Pump",
        "resource_type": "EQUIPMENT",
        "owner_id": 1,
        "owner_type": "NGO",
        "location": POINT,
        "details": {"condition": "GOOD"},
    }
    fields.update(overrides)
    resource = Resource(**fields)
    session.add(resource)
    session.commit()
    session.refresh(resource)
    return resource


def make_medicine(session, quantity=10) -> Resource:
    return make_resource(
        session,
        name="Amoxicillin",
        resource_type="MEDICINE",
        details={"category": "Antibiotic"},
        quantity_available=quantity,
        unit="strips",
        expiry_date=utcnow() + timedelta(days=90),
    )


def open_request(session, resource, priority="MEDIUM", quantity=1, requester_id=1):
    now = utcnow()
    return create_request(
        session,
        resource,
        requester_id=requester_id,
        requester_type="Hospital",
        quantity=quantity,
        start_date=now + timedelta(days=1),
        end_date=now + timedelta(days=2),
        purpose="Post-operative care for two patients",
        priority=priority,
    )


def test_resource_status_appends_previous_status(session):
    resource = make_resource(session)
    entered_at = resource.status_updated_at

    resource = update_resource_status(session, resource, "MAINTENANCE", 9, "Annual service")

    assert resource.status == "MAINTENANCE"
    assert len(resource.status_history) == 1
    entry = resource.status_history[0]
    assert entry["status"] == "AVAILABLE"
    assert entry["updatedBy"] == 9
    assert entry["reason"] == "Annual service"
    assert entry["timestamp"].startswith(entered_at.isoformat()[:19])
    assert resource.version == 2


def test_resource_status_any_order_and_history_grows(session):
    resource = make_resource(session)
    for status in ("DISPOSED", "AVAILABLE", "IN_USE"):
        resource = update_resource_status(session, resource, status, 1)

    assert [h["status"] for h in resource.status_history] == ["AVAILABLE", "DISPOSED", "AVAILABLE"]
    assert resource.status == "IN_USE"


def test_resource_status_rejects_unknown_value(session):
    resource = make_resource(session)
    with pytest.raises(ValidationError):
        update_resource_status(session, resource, "LOST", 1)
    session.refresh(resource)
    assert resource.status_history == []


def test_stale_copy_raises_conflict(session):
    resource_id = make_resource(session).id

    with Session(engine) as first, Session(engine) as second:
        mine = first.get(Resource, resource_id)
        theirs = second.get(Resource, resource_id)

        update_resource_status(first, mine, "MAINTENANCE", 1)
        with pytest.raises(ConflictError):
            update_resource_status(second, theirs, "IN_USE", 2)

    session.expire_all()
    stored = session.get(Resource, resource_id)
    assert stored.status == "MAINTENANCE"
    assert len(stored.status_history) == 1


def test_expected_version_mismatch_raises_conflict(session):
    resource = make_resource(session)
    with pytest.raises(ConflictError):
        update_resource_status(session, resource, "IN_USE", 1, expected_version=7)


def test_approval_records_approver(session):
    request = open_request(session, make_resource(session))

    request = update_request_status(session, request, "APPROVED", 7, "Admin", "ok")

    assert request.status == "APPROVED"
    assert len(request.status_history) == 1
    assert request.status_history[0]["status"] == "PENDING"
    assert request.status_history[0]["updaterType"] == "Admin"
    assert request.approval_details["approvedBy"] == 7
    assert request.approval_details["approverType"] == "Admin"
    assert request.approval_details["approvedAt"]


def test_completed_request_can_return_to_pending(session):
    request = open_request(session, make_resource(session))
    for status in ("APPROVED", "COMPLETED", "PENDING"):
        request = update_request_status(session, request, status, 1, "Admin")

    assert request.status == "PENDING"
    assert [h["status"] for h in request.status_history] == ["PENDING", "APPROVED", "COMPLETED"]


def test_reapproval_overwrites_approval_details(session):
    request = open_request(session, make_resource(session))
    request = update_request_status(session, request, "APPROVED", 3, "NGO", "first")
    first_approved_at = request.approval_details["approvedAt"]

    request = update_request_status(session, request, "APPROVED", 7, "Admin", "second")

    assert request.approval_details["approvedBy"] == 7
    assert request.approval_details["approverType"] == "Admin"
    assert request.approval_details["approvedAt"] >= first_approved_at
    assert [h["status"] for h in request.status_history] == ["PENDING", "APPROVED"]


def test_request_updater_type_checked(session):
    request = open_request(session, make_resource(session))
    with pytest.raises(ValidationError):
        update_request_status(session, request, "APPROVED", 1, "User")


def test_inverted_window_rejected(session):
    resource = make_resource(session)
    now = utcnow()
    with pytest.raises(ValidationError):
        validate_request_window(now, now)
    with pytest.raises(ValidationError):
        create_request(
            session, resource, 1, "Hospital", 1,
            start_date=now + timedelta(days=2),
            end_date=now + timedelta(days=1),
            purpose="Backup unit for theatre two",
        )


def test_owner_cannot_request_own_resource(session):
    resource = make_resource(session, owner_type="Hospital", owner_id=1)
    with pytest.raises(ValidationError):
        open_request(session, resource)


def test_medicine_request_checks_stock(session):
    with pytest.raises(ValidationError):
        open_request(session, make_medicine(session, quantity=3), quantity=5)


def test_pending_requests_sorted_by_priority_then_age(session):
    resource = make_resource(session)
    low = open_request(session, resource, "LOW")
    urgent_first = open_request(session, resource, "URGENT")
    high = open_request(session, resource, "HIGH")
    urgent_second = open_request(session, resource, "URGENT")
    rejected = open_request(session, resource, "URGENT")
    update_request_status(session, rejected, "REJECTED", 1, "NGO")

    pending = find_pending_requests(session, resource.id)

    assert [r.id for r in pending] == [urgent_first.id, urgent_second.id, high.id, low.id]


def test_approving_medicine_deducts_stock(session):
    medicine = make_medicine(session, quantity=4)
    request = open_request(session, medicine, quantity=4)

    transition_request(session, request, medicine, "APPROVED", 1, "NGO", conditions="Cold chain")

    assert request.quantity_approved == 4
    assert request.approval_details["conditions"] == "Cold chain"
    assert medicine.quantity_available == 0
    assert medicine.status == "IN_USE"


def test_cancelling_approved_medicine_returns_stock(session):
    medicine = make_medicine(session, quantity=5)
    request = open_request(session, medicine, quantity=3)
    transition_request(session, request, medicine, "APPROVED", 1, "NGO", quantity_approved=2)

    transition_request(session, request, medicine, "CANCELLED", 1, "Hospital", reason="Plans changed")

    assert request.status == "CANCELLED"
    assert medicine.quantity_available == 5


def test_equipment_reserved_then_released_on_completion(session):
    resource = make_resource(session)
    request = open_request(session, resource)

    transition_request(session, request, resource, "APPROVED", 1, "NGO")
    assert resource.status == "RESERVED"

    transition_request(session, request, resource, "COMPLETED", 1, "NGO")
    assert resource.status == "AVAILABLE"
    assert [h["status"] for h in resource.status_history] == ["AVAILABLE", "RESERVED"]


def test_approval_over_requested_quantity_leaves_request_untouched(session):
    medicine = make_medicine(session)
    request = open_request(session, medicine, quantity=2)

    with pytest.raises(ValidationError):
        transition_request(session, request, medicine, "APPROVED", 1, "NGO", quantity_approved=3)

    assert request.status == "PENDING"
    assert request.status_history == []


def test_expire_overdue_requests(session):
    resource = make_resource(session)
    now = utcnow()
    overdue = create_request(
        session, resource, 1, "Hospital", 1,
        start_date=now - timedelta(days=3),
        end_date=now - timedelta(days=1),
        purpose="Last week's dialysis sessions",
    )
    current = open_request(session, resource)

    expired = expire_overdue_requests(session, expired_by=1)

    assert [r.id for r in expired] == [overdue.id]
    session.refresh(current)
    assert current.status == "PENDING"
    assert overdue.status == "EXPIRED"
    assert overdue.status_history[-1]["reason"] == "Request window closed"


def test_inventory_never_negative(session):
    center = Center(name="Central Bank", ngo_id=1, city="Bengaluru", pin_code="560001")
    session.add(center)
    session.commit()
    session.refresh(center)

    center = update_inventory(session, center, "A+", 2)
    assert center.blood_inventory[0]["available"] == 2

    center = update_inventory(session, center, "A+", -10)
    assert center.blood_inventory[0]["available"] == 0
    assert len(center.blood_inventory) == 1


def test_inventory_rejects_unknown_group(session):
    center = Center(name="Central Bank", ngo_id=1, city="Bengaluru", pin_code="560001")
    session.add(center)
    session.commit()
    with pytest.raises(ValidationError):
        update_inventory(session, center, "C+", 1)


def test_reapproving_medicine_resizes_the_hold(session):
    medicine = make_medicine(session, quantity=10)
    request = open_request(session, medicine, quantity=4)
    transition_request(session, request, medicine, "APPROVED", 1, "NGO", quantity_approved=4)
    assert medicine.quantity_available == 6

    transition_request(session, request, medicine, "APPROVED", 2, "Admin", quantity_approved=2)

    assert medicine.quantity_available == 8
    assert request.quantity_approved == 2
    assert request.approval_details["approvedBy"] == 2


def test_reapproving_equipment_keeps_single_reservation(session):
    resource = make_resource(session)
    request = open_request(session, resource)
    transition_request(session, request, resource, "APPROVED", 1, "NGO")

    transition_request(session, request, resource, "APPROVED", 1, "NGO", notes="New slot")

    assert resource.status == "RESERVED"
    assert len(resource.status_history) == 1
    assert request.approval_details["notes"] == "New slot"


def test_reopening_approved_request_releases_stock(session):
    medicine = make_medicine(session, quantity=3)
    request = open_request(session, medicine, quantity=3)
    transition_request(session, request, medicine, "APPROVED", 1, "NGO")
    assert medicine.status == "IN_USE"

    transition_request(session, request, medicine, "PENDING", 1, "Admin", reason="Reopened")

    assert request.status == "PENDING"
    assert medicine.quantity_available == 3
    assert medicine.status == "AVAILABLE"


def test_completed_medicine_is_consumed(session):
    medicine = make_medicine(session, quantity=5)
    request = open_request(session, medicine, quantity=2)
    transition_request(session, request, medicine, "APPROVED", 1, "NGO")

    transition_request(session, request, medicine, "COMPLETED", 1, "NGO")
    transition_request(session, request, medicine, "PENDING", 1, "Admin")

    assert medicine.quantity_available == 3
