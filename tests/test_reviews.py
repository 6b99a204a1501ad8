# Reviews and the activity feed.
from fastapi.testclient import TestClient


def test_tenant_reviews_property_they_stay_at(client: TestClient, rental, make_user, make_property):
    tenant = rental["tenant"]
    prop_id = rental["property"]["id"]
    r = client.post("/api/v1/reviews", headers=tenant.headers, json={"property_id": prop_id, "rating": 4, "comment": "Quiet"})
    assert r.status_code == 201, r.text
    review = r.json()

    detail = client.get(f"/api/v1/properties/{prop_id}").json()
    assert detail["avg_rating"] == 4.0
    assert [rv["id"] for rv in detail["reviews"]] == [review["id"]]

    r = client.put(f"/api/v1/reviews/{review['id']}", headers=tenant.headers, json={"rating": 5})
    assert r.status_code == 200
    assert r.json()["rating"] == 5
    assert r.json()["comment"] == "Quiet"

    stranger = make_user("owner2", "owner")
    elsewhere = make_property(stranger, name="Elsewhere")
    r = client.post("/api/v1/reviews", headers=tenant.headers, json={"property_id": elsewhere["id"], "rating": 1})
    assert r.status_code == 403


def test_reviews_are_scoped(client: TestClient, rental, make_user, book):
    owner = rental["owner"]
    other = make_user("tenant2", "tenant")
    book(owner, other.id, rental["room"]["id"], "2024-02-01", "2024-02-29")
    mine = client.post("/api/v1/reviews", headers=rental["tenant"].headers, json={"property_id": rental["property"]["id"], "rating": 3}).json()
    theirs = client.post("/api/v1/reviews", headers=other.headers, json={"property_id": rental["property"]["id"], "rating": 5}).json()

    assert [rv["id"] for rv in client.get("/api/v1/reviews", headers=rental["tenant"].headers).json()] == [mine["id"]]
    assert len(client.get("/api/v1/reviews", headers=owner.headers).json()) == 2
    assert client.delete(f"/api/v1/reviews/{theirs['id']}", headers=rental["tenant"].headers).status_code == 403
    assert client.delete(f"/api/v1/reviews/{mine['id']}", headers=rental["tenant"].headers).status_code == 204


def test_activity_feed_is_scoped(client: TestClient, rental, make_user, make_property):
    owner = rental["owner"]
    admin = make_user("admin1", "admin")
    stranger = make_user("owner2", "owner")
    make_property(stranger, name="Elsewhere")

    own_feed = client.get("/api/v1/activity", headers=owner.headers).json()
    actions = {entry["action"] for entry in own_feed}
    assert {"add_property", "add_room"} <= actions
    assert all(entry["user_id"] == owner.id for entry in own_feed)

    stranger_feed = client.get("/api/v1/activity", headers=stranger.headers).json()
    assert [entry["action"] for entry in stranger_feed] == ["add_property"]

    assert len(client.get("/api/v1/activity", headers=admin.headers).json()) > len(own_feed)
    assert client.get("/api/v1/activity", headers=rental["tenant"].headers).status_code == 403
