# Packages: logged by owners/staff, picked up by the recipient; "received" is terminal.
from fastapi.testclient import TestClient


def log_package(client: TestClient, rental, **extra):
    payload = {"property_id": rental["property"]["id"], "user_id": rental["tenant"].id, "name": "Parcel", "price": "35"}
    payload.update(extra)
    r = client.post("/api/v1/packages", headers=rental["owner"].headers, json=payload)
    assert r.status_code == 201, r.text
    return r.json()


def test_recipient_picks_up_package(client: TestClient, rental):
    pkg = log_package(client, rental)
    assert pkg["status"] == "pending"

    r = client.put(f"/api/v1/packages/{pkg['id']}/tenant", headers=rental["tenant"].headers)
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "received"
    assert r.json()["received_at"] is not None

    # confirming pickup twice is harmless
    r = client.put(f"/api/v1/packages/{pkg['id']}/tenant", headers=rental["tenant"].headers)
    assert r.status_code == 200


def test_received_package_cannot_go_back(client: TestClient, rental):
    owner = rental["owner"]
    pkg = log_package(client, rental)
    client.put(f"/api/v1/packages/{pkg['id']}", headers=owner.headers, json={"status": "received"})

    r = client.put(f"/api/v1/packages/{pkg['id']}", headers=owner.headers, json={"status": "pending"})
    assert r.status_code == 409
    assert r.json()["code"] == "conflict"

    # other fields remain editable
    r = client.put(f"/api/v1/packages/{pkg['id']}", headers=owner.headers, json={"name": "Big parcel"})
    assert r.status_code == 200
    assert r.json()["status"] == "received"


def test_unknown_status_is_rejected(client: TestClient, rental):
    pkg = log_package(client, rental)
    r = client.put(f"/api/v1/packages/{pkg['id']}", headers=rental["owner"].headers, json={"status": "lost"})
    assert r.status_code == 400


def test_recipient_must_be_tenant(client: TestClient, rental, make_user):
    guest = make_user("guest1", "guest")
    r = client.post(
        "/api/v1/packages",
        headers=rental["owner"].headers,
        json={"property_id": rental["property"]["id"], "user_id": guest.id, "name": "Parcel"},
    )
    assert r.status_code == 400


def test_notify_and_delete(client: TestClient, rental):
    owner = rental["owner"]
    pkg = log_package(client, rental)
    r = client.post(f"/api/v1/packages/{pkg['id']}/notify", headers=owner.headers)
    assert r.status_code == 202
    assert r.json() == {"queued": True}

    assert client.delete(f"/api/v1/packages/{pkg['id']}", headers=rental["tenant"].headers).status_code == 403
    assert client.delete(f"/api/v1/packages/{pkg['id']}", headers=owner.headers).status_code == 204
    assert client.get("/api/v1/packages", headers=owner.headers).json() == []


def test_required_fields_cannot_be_cleared(client: TestClient, rental):
    owner = rental["owner"]
    pkg = log_package(client, rental)
    for field in ("name", "price"):
        r = client.put(f"/api/v1/packages/{pkg['id']}", headers=owner.headers, json={field: None})
        assert r.status_code == 422, r.text

    r = client.put(f"/api/v1/packages/{pkg['id']}", headers=owner.headers, json={"description": None})
    assert r.status_code == 200
    assert r.json()["name"] == "Parcel"
