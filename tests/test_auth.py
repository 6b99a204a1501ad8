# Authentication: self-registration, login, identity checks and role gates.
from fastapi.testclient import TestClient


def register(client: TestClient, username: str, email: str = None):
    payload = {"username": username, "password": "changeme123", "fullname": "Gina Guest"}
    if email:
        payload["email"] = email
    return client.post("/auth/register", json=payload)


def test_register_creates_guest_and_logs_in(client: TestClient):
    r = register(client, "gina", "Gina@Example.com ")
    assert r.status_code == 201, r.text
    data = r.json()
    assert data["user"]["role"] == "guest"
    assert data["user"]["email"] == "gina@example.com"

    r = client.post("/auth/login", json={"username": "gina", "password": "changeme123"})
    assert r.status_code == 200
    token = r.json()["access_token"]
    me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"}).json()
    assert me["username"] == "gina"


def test_register_rejects_taken_identity(client: TestClient):
    assert register(client, "gina", "gina@example.com").status_code == 201
    r = register(client, "gina", "other@example.com")
    assert r.status_code == 409
    assert r.json()["field"] == "username"
    r = register(client, "gina2", "gina@example.com")
    assert r.status_code == 409
    assert r.json()["field"] == "email"


def test_identity_checks(client: TestClient):
    register(client, "gina", "gina@example.com")
    assert client.post("/auth/check-username", json={"username": "gina"}).json() == {"available": False}
    assert client.post("/auth/check-username", json={"username": "nobody"}).json() == {"available": True}
    assert client.post("/auth/check-email", json={"email": "GINA@example.com"}).json() == {"available": False}


def test_bad_credentials_and_tokens(client: TestClient):
    register(client, "gina")
    r = client.post("/auth/login", json={"username": "gina", "password": "wrong-password"})
    assert r.status_code == 401
    assert client.get("/auth/me").status_code == 401
    assert client.get("/auth/me", headers={"Authorization": "Bearer not-a-jwt"}).status_code == 401


def test_admin_only_user_management(client: TestClient, make_user):
    admin = make_user("admin1", "admin")
    owner = make_user("owner1", "owner")

    r = client.post(
        "/api/v1/users",
        headers=admin.headers,
        json={"username": "owner2", "password": "changeme123", "role": "owner"},
    )
    assert r.status_code == 201, r.text
    assert r.json()["role"] == "owner"

    owners = client.get("/api/v1/users", params={"role": "owner"}, headers=admin.headers).json()
    assert sorted(u["username"] for u in owners) == ["owner1", "owner2"]

    r = client.get("/api/v1/users", headers=owner.headers)
    assert r.status_code == 403
    assert r.json()["code"] == "forbidden"


def test_healthz(client: TestClient):
    assert client.get("/healthz").json() == {"status": "ok"}
