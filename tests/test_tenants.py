# Tenant management: multi-room creation, replacement and removal are all-or-nothing.
from fastapi.testclient import TestClient

from roomledger import models
from roomledger.db import SessionLocal


def tenant_payload(username: str, room_ids, **extra):
    payload = {
        "username": username,
        "password": "changeme123",
        "fullname": "Nina Newcomer",
        "room_ids": room_ids,
        "start_date": "2024-01-01",
        "end_date": "2024-06-30",
    }
    payload.update(extra)
    return payload


def test_create_tenant_with_two_rooms(client: TestClient, rental, make_room):
    owner = rental["owner"]
    r1 = make_room(owner, rental["property"]["id"], code="B201")
    r2 = make_room(owner, rental["property"]["id"], code="B202")

    r = client.post(
        "/api/v1/tenants",
        headers=owner.headers,
        json=tenant_payload("nina", [r1["id"], r2["id"]], billing_cycles={str(r2["id"]): "term"}),
    )
    assert r.status_code == 201, r.text
    body = r.json()
    assert body["tenant"]["role"] == "tenant"
    cycles = {b["room_id"]: b["billing_cycle"] for b in body["bookings"]}
    assert cycles == {r1["id"]: "monthly", r2["id"]: "term"}
    assert all(b["status"] == "confirmed" for b in body["bookings"])


def test_failed_room_rolls_back_everything(client: TestClient, rental, make_room):
    owner = rental["owner"]
    free_room = make_room(owner, rental["property"]["id"], code="B201")
    taken_room = rental["room"]["id"]

    r = client.post("/api/v1/tenants", headers=owner.headers, json=tenant_payload("nina", [free_room["id"], taken_room]))
    assert r.status_code == 409, r.text
    assert r.json()["room_id"] == taken_room

    db = SessionLocal()
    try:
        assert db.query(models.User).filter(models.User.username == "nina").first() is None
        assert db.query(models.Booking).filter(models.Booking.room_id == free_room["id"]).count() == 0
    finally:
        db.close()


def test_duplicate_username_is_conflict(client: TestClient, rental, make_room):
    owner = rental["owner"]
    room = make_room(owner, rental["property"]["id"], code="B201")
    r = client.post("/api/v1/tenants", headers=owner.headers, json=tenant_payload("tenant1", [room["id"]]))
    assert r.status_code == 409
    assert r.json()["field"] == "username"


def test_replacing_rooms_is_atomic(client: TestClient, rental, make_room, make_user, book):
    owner = rental["owner"]
    room_b = make_room(owner, rental["property"]["id"], code="B201")
    room_c = make_room(owner, rental["property"]["id"], code="B202")
    blocker = make_user("tenant2", "tenant")
    assert book(owner, blocker.id, room_c["id"], "2024-01-01", "2024-12-31").status_code == 201

    tenant_id = rental["tenant"].id
    r = client.put(
        f"/api/v1/tenants/{tenant_id}",
        headers=owner.headers,
        json={"room_ids": [room_b["id"], room_c["id"]], "start_date": "2024-01-01", "end_date": "2024-06-30"},
    )
    assert r.status_code == 409
    # original booking is untouched after the rollback
    items = client.get("/api/v1/bookings", headers=rental["tenant"].headers).json()["items"]
    assert [(b["room_id"], b["status"]) for b in items] == [(rental["room"]["id"], "confirmed")]

    r = client.put(
        f"/api/v1/tenants/{tenant_id}",
        headers=owner.headers,
        json={"room_ids": [room_b["id"]], "start_date": "2024-01-01", "end_date": "2024-06-30", "phone": "0800000000"},
    )
    assert r.status_code == 200, r.text
    assert [b["room_id"] for b in r.json()["bookings"]] == [room_b["id"]]
    assert r.json()["tenant"]["phone"] == "0800000000"


def test_list_tenants_groups_bookings(client: TestClient, rental, make_room, book):
    owner = rental["owner"]
    room_b = make_room(owner, rental["property"]["id"], code="B201")
    book(owner, rental["tenant"].id, room_b["id"], "2024-02-01", "2024-02-28")

    body = client.get("/api/v1/tenants", headers=owner.headers).json()
    assert body["view"] == "managed"
    assert len(body["items"]) == 1
    assert len(body["items"][0]["bookings"]) == 2


def test_confirm_guest_promotes_to_tenant(client: TestClient, rental, make_user):
    guest = make_user("guest1", "guest")
    r = client.post(
        "/api/v1/bookings",
        headers=guest.headers,
        json={"room_id": rental["room"]["id"], "start_date": "2024-03-01", "end_date": "2024-03-31"},
    )
    assert r.status_code == 201

    r = client.put(f"/api/v1/tenants/{guest.id}/confirm", headers=rental["owner"].headers)
    assert r.status_code == 200, r.text
    assert r.json()["tenant"]["role"] == "tenant"
    assert r.json()["bookings"][0]["status"] == "confirmed"
    assert client.get("/auth/me", headers=guest.headers).json()["role"] == "tenant"


def test_delete_tenant_blocked_by_bills(client: TestClient, rental):
    owner = rental["owner"]
    tenant_id = rental["tenant"].id
    bill = client.post("/api/v1/bills", headers=owner.headers, json={"booking_id": rental["booking"]["id"]}).json()

    r = client.delete(f"/api/v1/tenants/{tenant_id}", headers=owner.headers)
    assert r.status_code == 409
    assert r.json()["reasons"] == {"bills": 1}

    client.delete(f"/api/v1/bills/{bill['id']}", headers=owner.headers)
    assert client.delete(f"/api/v1/tenants/{tenant_id}", headers=owner.headers).status_code == 204
    assert client.get("/api/v1/bookings", headers=owner.headers).json()["items"] == []


def test_foreign_owner_cannot_manage_tenant(client: TestClient, rental, make_user):
    stranger = make_user("owner2", "owner")
    assert client.delete(f"/api/v1/tenants/{rental['tenant'].id}", headers=stranger.headers).status_code == 403
