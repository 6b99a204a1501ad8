# Pytest configuration for backend API tests.
# Forces a local SQLite DB, disables Redis, keeps LINE offline and wires JWT secrets for deterministic runs.
import os
from dataclasses import dataclass
from typing import Callable, Dict, Iterator

import pytest
from fastapi.testclient import TestClient

# Test-time environment: local SQLite DB, Redis disabled, predictable JWT secret, no LINE token
os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("ROOMLEDGER_JWT_SECRET", "test-secret")
os.environ["LINE_CHANNEL_ACCESS_TOKEN"] = ""

import sys
# Ensure the repo root is on sys.path so 'roomledger' resolves when running pytest from anywhere
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from roomledger.main import app  # noqa: E402
from roomledger.db import Base, SessionLocal, engine  # noqa: E402
from roomledger import models  # noqa: E402
from roomledger.routes.auth import hash_password  # noqa: E402

PASSWORD = "changeme123"


@dataclass
class Account:
    id: int
    username: str
    headers: Dict[str, str]


@pytest.fixture(scope="session", autouse=True)
def _bootstrap_db() -> Iterator[None]:
    """
    Session-level database bootstrap using a local SQLite file.

    Drops and recreates schema once per test session to ensure a clean slate.
    """
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def _clean_db() -> Iterator[None]:
    """
    Function-level isolation: drop and recreate schema before each test.

    Simple but effective for this small suite; avoids transactional complexity.
    """
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture()
def client() -> Iterator[TestClient]:
    """
    FastAPI TestClient bound to the application for HTTP-level tests.
    """
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def make_user(client: TestClient) -> Callable[..., Account]:
    """
    Factory: insert a user with any role straight into the DB, then log in over HTTP.

    Self-registration only ever creates guests, so privileged accounts are seeded here.
    """

    def _make(username: str, role: str, **fields) -> Account:
        db = SessionLocal()
        try:
            user = models.User(username=username, role=role, password_hash=hash_password(PASSWORD), **fields)
            db.add(user)
            db.commit()
            user_id = user.id
        finally:
            db.close()
        r = client.post("/auth/login", json={"username": username, "password": PASSWORD})
        assert r.status_code == 200, r.text
        return Account(id=user_id, username=username, headers={"Authorization": f"Bearer {r.json()['access_token']}"})

    return _make


@pytest.fixture()
def make_property(client: TestClient) -> Callable[..., dict]:
    def _make(owner: Account, name: str = "Sunrise Dorm", electric_rate: str = "7", water_rate: str = "18") -> dict:
        r = client.post(
            "/api/v1/properties",
            headers=owner.headers,
            json={"name": name, "address": "1 Main Rd", "electric_rate": electric_rate, "water_rate": water_rate},
        )
        assert r.status_code == 201, r.text
        return r.json()

    return _make


@pytest.fixture()
def make_room(client: TestClient) -> Callable[..., dict]:
    def _make(manager: Account, property_id: int, code: str = "A101", price_monthly: str = "4500", price_term: str = "25000") -> dict:
        r = client.post(
            "/api/v1/rooms",
            headers=manager.headers,
            json={
                "property_id": property_id,
                "name": f"Room {code}",
                "code": code,
                "price_monthly": price_monthly,
                "price_term": price_term,
            },
        )
        assert r.status_code == 201, r.text
        return r.json()

    return _make


@pytest.fixture()
def book(client: TestClient) -> Callable[..., "object"]:
    """Factory: owner/staff books a room for a tenant; returns the raw response."""

    def _book(manager: Account, tenant_id: int, room_id: int, start: str, end: str, status: str = "confirmed", cycle: str = "monthly"):
        return client.post(
            "/api/v1/bookings",
            headers=manager.headers,
            json={
                "room_id": room_id,
                "user_id": tenant_id,
                "start_date": start,
                "end_date": end,
                "status": status,
                "billing_cycle": cycle,
            },
        )

    return _book


@pytest.fixture()
def rental(make_user, make_property, make_room, book) -> Dict[str, object]:
    """An owner with one property and room, and a tenant holding a confirmed monthly booking."""
    owner = make_user("owner1", "owner", fullname="Olivia Owner")
    prop = make_property(owner)
    room = make_room(owner, prop["id"])
    tenant = make_user("tenant1", "tenant", fullname="Tom Tenant", line_user_id="U-line-tom")
    r = book(owner, tenant.id, room["id"], "2024-01-01", "2024-01-31")
    assert r.status_code == 201, r.text
    return {"owner": owner, "property": prop, "room": room, "tenant": tenant, "booking": r.json()}
