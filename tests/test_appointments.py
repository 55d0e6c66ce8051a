from datetime import timedelta

import pytest

from models import DonationAppointment, utcnow
from scheduling import can_reschedule, is_within_cancellation_window


@pytest.fixture
def center(client, ngo):
    resp = client.post(
        "/ngos/centers",
        json={"name": "Jayanagar Centre", "city": "Bengaluru", "pin_code": "560041"},
        headers=ngo["headers"],
    )
    return resp.json()["data"]


def book(client, donor, center, days=3, slot="Morning"):
    return client.post(
        "/appointments/",
        json={
            "center_id": center["id"],
            "date": (utcnow() + timedelta(days=days)).isoformat(),
            "time_slot": slot,
        },
        headers=donor["headers"],
    )


def test_book_and_list_upcoming(client, donor, center):
    resp = book(client, donor, center)
    assert resp.status_code == 201
    appointment = resp.json()["data"]
    assert appointment["status"] == "Scheduled"
    assert appointment["status_history"][0]["status"] == "Scheduled"

    upcoming = client.get("/appointments/upcoming", headers=donor["headers"]).json()["data"]
    assert [a["id"] for a in upcoming] == [appointment["id"]]


def test_past_date_rejected(client, donor, center):
    assert book(client, donor, center, days=-1).status_code == 400


def test_one_booking_per_day(client, donor, center):
    assert book(client, donor, center, slot="Morning").status_code == 201
    resp = book(client, donor, center, slot="Evening")
    assert resp.status_code == 400
    assert resp.json()["message"] == "You already have an appointment on this day"


def test_only_donors_book(client, hospital, center):
    assert book(client, hospital, center).status_code == 403


def test_availability_counts_slots(client, donor, center, hospital):
    appointment = book(client, donor, center, days=4, slot="Afternoon").json()["data"]

    resp = client.get(
        "/appointments/availability",
        params={"center_id": center["id"], "date": appointment["date"]},
        headers=hospital["headers"],
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["slots"] == {"Morning": 0, "Afternoon": 1, "Evening": 0}


def test_donor_cancels_own_appointment(client, donor, center):
    appointment = book(client, donor, center).json()["data"]

    resp = client.patch(
        f"/appointments/{appointment['id']}/status",
        json={"status": "Cancelled", "reason": "Travelling"},
        headers=donor["headers"],
    )
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["status"] == "Cancelled"
    assert data["cancellation_reason"] == "Travelling"
    assert [h["status"] for h in data["status_history"]] == ["Scheduled", "Cancelled"]


def test_closed_appointment_cannot_be_cancelled(client, donor, ngo, center):
    cancelled = book(client, donor, center).json()["data"]
    path = f"/appointments/{cancelled['id']}/status"
    body = {"status": "Cancelled", "reason": "Travelling"}
    assert client.patch(path, json=body, headers=donor["headers"]).status_code == 200

    resp = client.patch(path, json=body, headers=donor["headers"])
    assert resp.status_code == 400
    assert resp.json()["message"] == "Only scheduled or confirmed appointments can be cancelled"

    completed = book(client, donor, center, days=5).json()["data"]
    path = f"/appointments/{completed['id']}/status"
    resp = client.patch(path, json={"status": "Completed"}, headers=ngo["headers"])
    assert resp.json()["data"]["status"] == "Completed"

    assert client.patch(path, json=body, headers=donor["headers"]).status_code == 400
    upcoming = client.get("/appointments/upcoming", headers=donor["headers"]).json()["data"]
    assert upcoming == []


def test_donor_cannot_confirm(client, donor, center):
    appointment = book(client, donor, center).json()["data"]
    resp = client.patch(
        f"/appointments/{appointment['id']}/status",
        json={"status": "Confirmed"},
        headers=donor["headers"],
    )
    assert resp.status_code == 403


def test_late_cancellation_refused(client, donor, center):
    appointment = book(client, donor, center, days=0.5).json()["data"]
    resp = client.patch(
        f"/appointments/{appointment['id']}/status",
        json={"status": "Cancelled"},
        headers=donor["headers"],
    )
    assert resp.status_code == 400


def test_ngo_records_health_check(client, donor, ngo, center):
    appointment = book(client, donor, center).json()["data"]
    resp = client.patch(
        f"/appointments/{appointment['id']}/status",
        json={
            "status": "Confirmed",
            "health_information": {"hemoglobin": 13.5, "pulse_rate": 72},
        },
        headers=ngo["headers"],
    )
    assert resp.status_code == 200
    info = resp.json()["data"]["health_information"]
    assert info["hemoglobin"] == 13.5
    assert "recordedAt" in info


def test_reschedule_limit(client, donor, center):
    appointment = book(client, donor, center).json()["data"]
    path = f"/appointments/{appointment['id']}/reschedule"

    for days in (5, 6, 7):
        resp = client.post(
            path,
            json={"date": (utcnow() + timedelta(days=days)).isoformat(), "time_slot": "Evening"},
            headers=donor["headers"],
        )
        assert resp.status_code == 200, resp.text

    data = resp.json()["data"]
    assert data["reschedule_count"] == 3
    assert data["time_slot"] == "Evening"

    resp = client.post(
        path,
        json={"date": (utcnow() + timedelta(days=8)).isoformat(), "time_slot": "Morning"},
        headers=donor["headers"],
    )
    assert resp.status_code == 400


def test_window_helpers():
    now = utcnow()
    appointment = DonationAppointment(
        user_id=1, center_id=1, date=now + timedelta(hours=30), time_slot="Morning"
    )
    assert is_within_cancellation_window(appointment, now)
    assert not is_within_cancellation_window(appointment, now + timedelta(hours=7))

    assert can_reschedule(appointment)
    appointment.reschedule_count = 3
    assert not can_reschedule(appointment)
