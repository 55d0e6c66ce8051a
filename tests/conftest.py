import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SECRET_KEY", "test-secret")

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel

from db import engine
from main import app
from models import Admin, utcnow
from routers.auth import hash_password

PASSWORD = "Str0ng@Pass"
POINT = {"type": "Point", "coordinates": [77.5946, 12.9716]}


@pytest.fixture(autouse=True)
def fresh_db():
    SQLModel.metadata.create_all(engine)
    yield
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def session():
    with Session(engine) as s:
        yield s


def login(client, path: str, email: str, password: str = PASSWORD) -> dict:
    resp = client.post(path, json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    # the login sets a cookie; tests authenticate with explicit headers instead
    client.cookies.clear()
    return {"Authorization": f"Bearer {resp.json()['data']['accessToken']}"}


def hospital_payload(**overrides) -> dict:
    payload = {
        "name": "City General Hospital",
        "email": "hospital@example.com",
        "password": PASSWORD,
        "contact_name": "Dr. Rao",
        "contact_phone": "+91 9876543210",
        "emergency_phone": "+91 9876500000",
        "street": "1 MG Road",
        "city": "Bengaluru",
        "state": "Karnataka",
        "pin_code": "560001",
        "location": POINT,
        "registration_number": "HOSP-0001",
    }
    payload.update(overrides)
    return payload


def ngo_payload(**overrides) -> dict:
    payload = {
        "name": "Red Drop Foundation",
        "email": "ngo@example.com",
        "password": PASSWORD,
        "contact_name": "Meera",
        "contact_phone": "+91 9123456780",
        "reg_number": "NGO-12345",
        "city": "Bengaluru",
        "pin_code": "560002",
        "location": {"type": "Point", "coordinates": [77.60, 12.98]},
    }
    payload.update(overrides)
    return payload


def user_payload(**overrides) -> dict:
    payload = {
        "user_name": "asha",
        "full_name": "Asha Kumar",
        "email": "asha@example.com",
        "password": PASSWORD,
        "phone": "+91 9000000001",
        "blood_type": "O+",
        "gender": "Female",
        "date_of_birth": "1990-05-01",
        "city": "Bengaluru",
    }
    payload.update(overrides)
    return payload


def register(client, path: str, payload: dict) -> int:
    resp = client.post(path, json=payload)
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]["id"]


@pytest.fixture
def hospital(client):
    payload = hospital_payload()
    entity_id = register(client, "/hospitals/register", payload)
    return {"id": entity_id, "headers": login(client, "/hospitals/login", payload["email"])}


@pytest.fixture
def other_hospital(client):
    payload = hospital_payload(
        name="Lakeside Clinic", email="lakeside@example.com", registration_number="HOSP-0002"
    )
    entity_id = register(client, "/hospitals/register", payload)
    return {"id": entity_id, "headers": login(client, "/hospitals/login", payload["email"])}


@pytest.fixture
def ngo(client):
    payload = ngo_payload()
    entity_id = register(client, "/ngos/register", payload)
    return {"id": entity_id, "headers": login(client, "/ngos/login", payload["email"])}


@pytest.fixture
def donor(client):
    payload = user_payload()
    entity_id = register(client, "/users/register", payload)
    return {"id": entity_id, "headers": login(client, "/users/login", payload["email"])}


@pytest.fixture
def admin(client, session):
    account = Admin(name="Root", email="admin@example.com", password_hash=hash_password(PASSWORD))
    session.add(account)
    session.commit()
    session.refresh(account)
    return {"id": account.id, "headers": login(client, "/admin/login", account.email)}


def equipment_payload(**overrides) -> dict:
    payload = {
        "name": "Portable Ventilator",
        "resource_type": "EQUIPMENT",
        "location": POINT,
        "details": {"condition": "GOOD", "manufacturer": "Acme"},
    }
    payload.update(overrides)
    return payload


def medicine_payload(**overrides) -> dict:
    payload = {
        "name": "Paracetamol 500mg",
        "resource_type": "MEDICINE",
        "location": POINT,
        "details": {"category": "Analgesic"},
        "quantity_available": 10,
        "unit": "strips",
        "expiry_date": (utcnow() + timedelta(days=180)).isoformat(),
    }
    payload.update(overrides)
    return payload


def request_payload(resource_id: int, **overrides) -> dict:
    now = utcnow()
    payload = {
        "resource_id": resource_id,
        "quantity": 1,
        "start_date": (now + timedelta(days=1)).isoformat(),
        "end_date": (now + timedelta(days=3)).isoformat(),
        "purpose": "Needed for ICU patients this week",
        "priority": "HIGH",
    }
    payload.update(overrides)
    return payload
