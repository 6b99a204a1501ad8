# Staff accounts: owners add staff to their properties and only touch their own bindings.
from fastapi.testclient import TestClient


def add_staff(client: TestClient, owner, property_ids, username: str = "staff1"):
    return client.post(
        "/api/v1/staff",
        headers=owner.headers,
        json={"username": username, "password": "changeme123", "fullname": "Sam Staff", "property_ids": property_ids},
    )


def test_owner_adds_and_lists_staff(client: TestClient, rental):
    owner = rental["owner"]
    r = add_staff(client, owner, [rental["property"]["id"]])
    assert r.status_code == 201, r.text
    staff = r.json()
    assert staff["role"] == "staff"
    assert staff["property_ids"] == [rental["property"]["id"]]

    listed = client.get("/api/v1/staff", headers=owner.headers).json()
    assert [s["username"] for s in listed] == ["staff1"]


def test_owner_cannot_bind_staff_to_foreign_property(client: TestClient, rental, make_user, make_property):
    stranger = make_user("owner2", "owner")
    foreign = make_property(stranger, name="Elsewhere")
    r = add_staff(client, rental["owner"], [rental["property"]["id"], foreign["id"]])
    assert r.status_code == 403
    # nothing was created
    assert client.post("/auth/check-username", json={"username": "staff1"}).json() == {"available": True}


def test_shared_staff_keeps_other_owner_binding(client: TestClient, rental, make_user, make_property):
    owner = rental["owner"]
    staff = add_staff(client, owner, [rental["property"]["id"]]).json()
    admin = make_user("admin1", "admin")
    other_owner = make_user("owner2", "owner")
    other_prop = make_property(other_owner, name="Elsewhere")

    r = client.put(
        f"/api/v1/staff/{staff['id']}",
        headers=admin.headers,
        json={"property_ids": [rental["property"]["id"], other_prop["id"]]},
    )
    assert r.status_code == 200, r.text
    assert sorted(r.json()["property_ids"]) == sorted([rental["property"]["id"], other_prop["id"]])

    # first owner removes the staff member from their property only
    assert client.delete(f"/api/v1/staff/{staff['id']}", headers=owner.headers).status_code == 204
    listed = client.get("/api/v1/staff", headers=other_owner.headers).json()
    assert [(s["id"], s["property_ids"]) for s in listed] == [(staff["id"], [other_prop["id"]])]
    assert client.get("/api/v1/staff", headers=owner.headers).json() == []

    # last binding gone: the account is removed
    assert client.delete(f"/api/v1/staff/{staff['id']}", headers=other_owner.headers).status_code == 204
    assert client.get("/api/v1/staff", headers=admin.headers).json() == []


def test_staff_cannot_manage_staff(client: TestClient, rental):
    add_staff(client, rental["owner"], [rental["property"]["id"]])
    login = client.post("/auth/login", json={"username": "staff1", "password": "changeme123"}).json()
    headers = {"Authorization": f"Bearer {login['access_token']}"}
    r = client.post(
        "/api/v1/staff",
        headers=headers,
        json={"username": "staff2", "password": "changeme123", "property_ids": [rental["property"]["id"]]},
    )
    assert r.status_code == 403
