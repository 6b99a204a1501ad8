# Booking API test suite: self-service requests, manager approval, edits, cancellation and role views.
from fastapi.testclient import TestClient


def request_booking(client: TestClient, account, room_id: int, start: str, end: str):
    return client.post(
        "/api/v1/bookings",
        headers=account.headers,
        json={"room_id": room_id, "start_date": start, "end_date": end},
    )


def test_guest_request_is_pending_until_confirmed(client: TestClient, rental, make_user):
    guest = make_user("guest1", "guest")
    room_id = rental["room"]["id"]

    r = request_booking(client, guest, room_id, "2024-03-01", "2024-08-31")
    assert r.status_code == 201, r.text
    booking = r.json()
    assert booking["status"] == "pending"
    assert booking["user_id"] == guest.id

    r = client.put(
        f"/api/v1/bookings/{booking['id']}/status", headers=rental["owner"].headers, json={"status": "confirmed"}
    )
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "confirmed"


def test_self_service_cannot_pick_status(client: TestClient, rental):
    tenant = rental["tenant"]
    r = client.post(
        "/api/v1/bookings",
        headers=tenant.headers,
        json={"room_id": rental["room"]["id"], "start_date": "2024-05-01", "end_date": "2024-05-31", "status": "confirmed"},
    )
    assert r.status_code == 201
    assert r.json()["status"] == "pending"


def test_tenant_may_only_edit_pending_booking(client: TestClient, rental):
    tenant = rental["tenant"]
    confirmed_id = rental["booking"]["id"]
    r = client.put(f"/api/v1/bookings/{confirmed_id}", headers=tenant.headers, json={"end_date": "2024-02-28"})
    assert r.status_code == 409

    pending = request_booking(client, tenant, rental["room"]["id"], "2024-06-01", "2024-06-30").json()
    r = client.put(f"/api/v1/bookings/{pending['id']}", headers=tenant.headers, json={"end_date": "2024-07-15"})
    assert r.status_code == 200, r.text
    assert r.json()["end_date"] == "2024-07-15"


def test_manager_edit_rechecks_availability(client: TestClient, rental, make_user, book):
    other = make_user("tenant2", "tenant")
    later = book(rental["owner"], other.id, rental["room"]["id"], "2024-03-01", "2024-03-31").json()

    r = client.put(
        f"/api/v1/bookings/{later['id']}", headers=rental["owner"].headers, json={"start_date": "2024-01-20"}
    )
    assert r.status_code == 409
    # moving within its own range does not collide with itself
    r = client.put(f"/api/v1/bookings/{later['id']}", headers=rental["owner"].headers, json={"end_date": "2024-04-10"})
    assert r.status_code == 200, r.text


def test_cancel_is_idempotent_and_terminal(client: TestClient, rental):
    owner = rental["owner"]
    booking_id = rental["booking"]["id"]

    for _ in range(2):
        r = client.delete(f"/api/v1/bookings/{booking_id}", headers=owner.headers)
        assert r.status_code == 200
        assert r.json()["status"] == "cancelled"

    r = client.put(f"/api/v1/bookings/{booking_id}/status", headers=owner.headers, json={"status": "confirmed"})
    assert r.status_code == 409


def test_cancelled_room_can_be_rebooked(client: TestClient, rental, make_user, book):
    client.delete(f"/api/v1/bookings/{rental['booking']['id']}", headers=rental["owner"].headers)
    other = make_user("tenant2", "tenant")
    r = book(rental["owner"], other.id, rental["room"]["id"], "2024-01-15", "2024-02-15")
    assert r.status_code == 201, r.text


def test_list_views_are_tagged_by_role(client: TestClient, rental, make_user):
    admin = make_user("admin1", "admin")

    r = client.get("/api/v1/bookings", headers=admin.headers)
    assert r.json()["view"] == "all"
    assert r.json()["items"][0]["tenant_username"] == "tenant1"

    r = client.get("/api/v1/bookings", headers=rental["owner"].headers)
    assert r.json()["view"] == "managed"

    r = client.get("/api/v1/bookings", headers=rental["tenant"].headers)
    body = r.json()
    assert body["view"] == "tenant"
    assert body["items"][0]["room_code"] == "A101"
    assert "tenant_username" not in body["items"][0]


def test_manager_must_name_the_tenant(client: TestClient, rental):
    r = client.post(
        "/api/v1/bookings",
        headers=rental["owner"].headers,
        json={"room_id": rental["room"]["id"], "start_date": "2024-05-01", "end_date": "2024-05-31"},
    )
    assert r.status_code == 400


def test_missing_booking_is_404(client: TestClient, rental):
    r = client.delete("/api/v1/bookings/9999", headers=rental["owner"].headers)
    assert r.status_code == 404
    assert r.json()["code"] == "not_found"


def test_unauthenticated_write_is_401(client: TestClient, rental):
    r = client.post(
        "/api/v1/bookings",
        json={"room_id": rental["room"]["id"], "start_date": "2024-05-01", "end_date": "2024-05-31"},
    )
    assert r.status_code == 401
