# Bill API: server-side totals, payment flow, edit reset and delivery queueing.
from decimal import Decimal

from fastapi.testclient import TestClient


def create_bill(client: TestClient, account, booking_id: int, **readings):
    payload = {"booking_id": booking_id, "water_units": 10, "electric_units": 50, "other_charges": 0, "include_room_price": True}
    payload.update(readings)
    return client.post("/api/v1/bills", headers=account.headers, json=payload)


def test_bill_total_computed_from_current_rates(client: TestClient, rental):
    r = create_bill(client, rental["owner"], rental["booking"]["id"])
    assert r.status_code == 201, r.text
    bill = r.json()
    assert Decimal(str(bill["total_amount"])) == Decimal("5030.00")
    assert Decimal(str(bill["water_rate"])) == Decimal("18")
    assert Decimal(str(bill["electric_rate"])) == Decimal("7")
    assert bill["status"] == "unpaid"
    assert bill["paid_at"] is None


def test_garbage_readings_count_as_zero(client: TestClient, rental):
    r = create_bill(client, rental["owner"], rental["booking"]["id"], water_units="n/a", electric_units="12abc")
    assert r.status_code == 201, r.text
    assert Decimal(str(r.json()["total_amount"])) == Decimal("4584.00")

    # lists and objects are not readings either, but they never reject the bill
    r = create_bill(client, rental["owner"], rental["booking"]["id"], water_units=[1], electric_units={"kwh": 3}, other_charges=[])
    assert r.status_code == 201, r.text
    bill = r.json()
    assert Decimal(str(bill["water_units"])) == 0
    assert Decimal(str(bill["electric_units"])) == 0
    assert Decimal(str(bill["total_amount"])) == Decimal("4500.00")


def test_room_price_only_when_requested(client: TestClient, rental):
    r = client.post(
        "/api/v1/bills",
        headers=rental["owner"].headers,
        json={"booking_id": rental["booking"]["id"], "water_units": 10},
    )
    assert r.status_code == 201, r.text
    assert Decimal(str(r.json()["room_price"])) == 0
    assert Decimal(str(r.json()["total_amount"])) == Decimal("180.00")


def test_stored_breakdown_multiplies_out_to_total(client: TestClient, rental):
    owner = rental["owner"]
    r = create_bill(client, owner, rental["booking"]["id"], water_units="0.125", electric_units=0, include_room_price=False)
    assert r.status_code == 201, r.text
    bill = r.json()
    assert Decimal(str(bill["water_units"])) == Decimal("0.125")
    assert Decimal(str(bill["total_amount"])) == Decimal("2.25")
    assert round(Decimal(str(bill["water_units"])) * Decimal(str(bill["water_rate"])), 2) == Decimal("2.25")

    # fractional rates are kept, not cut to cents
    prop_id = rental["property"]["id"]
    r = client.put(f"/api/v1/properties/{prop_id}", headers=owner.headers, json={"electric_rate": "4.125"})
    assert Decimal(str(r.json()["rates"]["electric"])) == Decimal("4.125")
    bill = create_bill(client, owner, rental["booking"]["id"], water_units=0, electric_units=100, include_room_price=False).json()
    assert Decimal(str(bill["electric_rate"])) == Decimal("4.125")
    assert Decimal(str(bill["total_amount"])) == Decimal("412.50")


def test_paid_bill_edit_resets_to_unpaid(client: TestClient, rental):
    owner = rental["owner"]
    bill = create_bill(client, owner, rental["booking"]["id"]).json()

    r = client.put(f"/api/v1/bills/{bill['id']}/confirm", headers=owner.headers)
    assert r.status_code == 200
    assert r.json()["status"] == "paid"
    assert r.json()["paid_at"] is not None

    r = client.put(
        f"/api/v1/bills/{bill['id']}",
        headers=owner.headers,
        json={"water_units": 10, "electric_units": 50, "other_charges": 0, "note": "meter re-read"},
    )
    assert r.status_code == 200, r.text
    edited = r.json()
    assert edited["status"] == "unpaid"
    assert edited["paid_at"] is None
    assert edited["note"] == "meter re-read"


def test_tenant_pays_then_owner_confirms(client: TestClient, rental):
    owner, tenant = rental["owner"], rental["tenant"]
    bill = create_bill(client, owner, rental["booking"]["id"]).json()

    r = client.get("/api/v1/rent", headers=tenant.headers)
    assert r.status_code == 200
    assert [item["bill"]["id"] for item in r.json()] == [bill["id"]]

    r = client.put(f"/api/v1/rent/{bill['id']}/pay", headers=tenant.headers)
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "pending"
    claimed_at = r.json()["paid_at"]

    # reporting twice is not a valid transition
    r = client.put(f"/api/v1/rent/{bill['id']}/pay", headers=tenant.headers)
    assert r.status_code == 409

    for _ in range(2):
        r = client.put(f"/api/v1/bills/{bill['id']}/confirm", headers=owner.headers)
        assert r.status_code == 200
        assert r.json()["status"] == "paid"
        assert r.json()["paid_at"] == claimed_at


def test_tenant_cannot_confirm_or_create(client: TestClient, rental):
    tenant = rental["tenant"]
    bill = create_bill(client, rental["owner"], rental["booking"]["id"]).json()
    assert client.put(f"/api/v1/bills/{bill['id']}/confirm", headers=tenant.headers).status_code == 403
    assert create_bill(client, tenant, rental["booking"]["id"]).status_code == 403


def test_cancelled_booking_cannot_be_billed(client: TestClient, rental):
    booking_id = rental["booking"]["id"]
    client.delete(f"/api/v1/bookings/{booking_id}", headers=rental["owner"].headers)
    r = create_bill(client, rental["owner"], booking_id)
    assert r.status_code == 409


def test_price_sheet_shows_latest_bill(client: TestClient, rental):
    owner = rental["owner"]
    create_bill(client, owner, rental["booking"]["id"])
    second = create_bill(client, owner, rental["booking"]["id"], water_units=1).json()

    r = client.get("/api/v1/bills/prices", headers=owner.headers)
    assert r.status_code == 200
    rows = r.json()
    assert len(rows) == 1
    assert rows[0]["latest_bill_id"] == second["id"]
    assert rows[0]["tenant_fullname"] == "Tom Tenant"

    r = client.get(f"/api/v1/bills/by-booking/{rental['booking']['id']}", headers=owner.headers)
    assert len(r.json()) == 2


def test_send_bill_is_queued(client: TestClient, rental, make_user, book):
    owner = rental["owner"]
    bill = create_bill(client, owner, rental["booking"]["id"]).json()
    r = client.post(f"/api/v1/bills/{bill['id']}/send", headers=owner.headers)
    assert r.status_code == 202, r.text
    assert r.json() == {"queued": True}

    # a tenant without a LINE account cannot be messaged
    other = make_user("tenant2", "tenant")
    b = book(owner, other.id, rental["room"]["id"], "2024-02-01", "2024-02-29").json()
    other_bill = create_bill(client, owner, b["id"]).json()
    r = client.post(f"/api/v1/bills/{other_bill['id']}/send", headers=owner.headers)
    assert r.status_code == 400


def test_delete_bill(client: TestClient, rental):
    owner = rental["owner"]
    bill = create_bill(client, owner, rental["booking"]["id"]).json()
    assert client.delete(f"/api/v1/bills/{bill['id']}", headers=owner.headers).status_code == 204
    assert client.delete(f"/api/v1/bills/{bill['id']}", headers=owner.headers).status_code == 404
