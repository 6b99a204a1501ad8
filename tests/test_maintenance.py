# Maintenance requests: tenants report for their own rooms, managers track progress.
from fastapi.testclient import TestClient


def report(client: TestClient, account, room_id: int, description: str = "Aircon is dripping"):
    return client.post("/api/v1/maintenance", headers=account.headers, json={"room_id": room_id, "description": description})


def test_tenant_reports_and_owner_progresses(client: TestClient, rental):
    tenant, owner = rental["tenant"], rental["owner"]
    r = report(client, tenant, rental["room"]["id"])
    assert r.status_code == 201, r.text
    req = r.json()
    assert req["status"] == "pending"

    r = client.put(f"/api/v1/maintenance/{req['id']}", headers=tenant.headers, json={"description": "Aircon leaks water"})
    assert r.status_code == 200
    assert r.json()["description"] == "Aircon leaks water"

    r = client.put(f"/api/v1/maintenance/{req['id']}/status", headers=owner.headers, json={"status": "in_progress"})
    assert r.status_code == 200
    assert r.json()["status"] == "in_progress"

    # work has started: the tenant can no longer edit or cancel
    assert client.put(f"/api/v1/maintenance/{req['id']}", headers=tenant.headers, json={"description": "x"}).status_code == 409
    assert client.put(f"/api/v1/maintenance/{req['id']}/cancel", headers=tenant.headers).status_code == 409

    r = client.get("/api/v1/maintenance", params={"status": "in_progress"}, headers=owner.headers)
    assert [m["id"] for m in r.json()] == [req["id"]]


def test_report_requires_confirmed_booking_of_room(client: TestClient, rental, make_user, make_room):
    other_room = make_room(rental["owner"], rental["property"]["id"], code="C1")
    assert report(client, rental["tenant"], other_room["id"]).status_code == 403
    assert report(client, rental["tenant"], 9999).status_code == 404


def test_tenant_cancels_pending_request(client: TestClient, rental):
    tenant, owner = rental["tenant"], rental["owner"]
    req = report(client, tenant, rental["room"]["id"]).json()
    r = client.put(f"/api/v1/maintenance/{req['id']}/cancel", headers=tenant.headers)
    assert r.status_code == 200
    assert r.json()["status"] == "cancelled"

    r = client.put(f"/api/v1/maintenance/{req['id']}/status", headers=owner.headers, json={"status": "completed"})
    assert r.status_code == 409


def test_tenant_cannot_set_progress(client: TestClient, rental):
    tenant = rental["tenant"]
    req = report(client, tenant, rental["room"]["id"]).json()
    r = client.put(f"/api/v1/maintenance/{req['id']}/status", headers=tenant.headers, json={"status": "completed"})
    assert r.status_code == 403


def test_delete_request(client: TestClient, rental):
    tenant = rental["tenant"]
    req = report(client, tenant, rental["room"]["id"]).json()
    assert client.delete(f"/api/v1/maintenance/{req['id']}", headers=tenant.headers).status_code == 204
    assert client.get("/api/v1/maintenance", headers=tenant.headers).json() == []
