from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from community_connect.main import _incident_service, app
from community_connect.services.categories import CATEGORY_UUIDS, SUBCATEGORY_UUIDS

client = TestClient(app)

BRISBANE_POINT = {"type": "Point", "coordinates": [153.0251, -27.4698]}


@pytest.fixture(autouse=True)
def offline_geocoder(monkeypatch):
    async def fake_geocode(query):
        return BRISBANE_POINT

    monkeypatch.setattr(_incident_service.geocoder, "geocode", fake_geocode)


def _register(prefix="user", **extra):
    body = {"username": f"{prefix}_{uuid4().hex[:8]}", "password": "password123", "firstName": prefix.title()}
    body.update(extra)
    res = client.post("/api/auth/register", json=body)
    assert res.status_code == 201, res.text
    data = res.json()
    return data["user"], {"Authorization": f"Bearer {data['token']}"}


def _report(headers, title="Pothole on Queen St"):
    res = client.post(
        "/api/incidents/report",
        json={
            "categoryId": CATEGORY_UUIDS["INFRASTRUCTURE"],
            "subcategoryId": SUBCATEGORY_UUIDS["ROAD_HAZARDS"],
            "title": title,
            "location": "Queen St, Brisbane City",
        },
        headers=headers,
    )
    assert res.status_code == 201, res.text
    return res.json()


def test_health():
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json()["ok"] is True


def test_auth_flow():
    user, headers = _register("reader")
    assert user["role"] == "user"
    assert "passwordHash" not in user

    me = client.get("/api/auth/user", headers=headers)
    assert me.status_code == 200
    assert me.json()["id"] == user["id"]

    login = client.post("/api/auth/login", json={"username": user["username"], "password": "password123"})
    assert login.status_code == 200
    bad = client.post("/api/auth/login", json={"username": user["username"], "password": "nope"})
    assert bad.status_code == 401
    assert bad.json()["detail"]["code"] == "invalid_credentials"

    dupe = client.post("/api/auth/register", json={"username": user["username"], "password": "password123"})
    assert dupe.status_code == 409
    assert dupe.json()["detail"]["code"] == "username_taken"


def test_requires_token():
    assert client.get("/api/auth/user").status_code == 401
    assert client.get("/api/auth/user", headers={"Authorization": "Bearer junk"}).status_code == 401


def test_report_and_owner_checks():
    _, author = _register("author")
    _, other = _register("other")

    incident = _report(author)
    assert incident["id"].startswith("user:")
    assert incident["source"] == "user"
    assert incident["subcategory"] == "Road Hazards"
    assert "brisbane" in incident["regionIds"]

    denied = client.put(f"/api/unified-incidents/{incident['id']}", json={"title": "mine"}, headers=other)
    assert denied.status_code == 403

    updated = client.put(f"/api/unified-incidents/{incident['id']}", json={"title": "Fixed title"}, headers=author)
    assert updated.status_code == 200
    assert updated.json()["title"] == "Fixed title"

    unknown = client.post(
        "/api/incidents/report",
        json={"categoryId": "nope", "subcategoryId": "nope", "title": "x", "location": "Brisbane"},
        headers=author,
    )
    assert unknown.status_code == 400

    deleted = client.delete(f"/api/unified-incidents/{incident['id']}", headers=author)
    assert deleted.json()["success"] is True
    assert client.put(f"/api/unified-incidents/{incident['id']}", json={"title": "x"}, headers=author).status_code == 404


def test_comments_likes_and_reply_notifications():
    commenter, commenter_headers = _register("commenter")
    _, replier = _register("replier")
    incident = _report(commenter_headers)

    comment = client.post(
        f"/api/incidents/{incident['id']}/comments", json={"content": "Still there"}, headers=commenter_headers
    )
    assert comment.status_code == 201
    reply = client.post(
        f"/api/incidents/{incident['id']}/comments",
        json={"content": "Saw it too", "parentCommentId": comment.json()["id"]},
        headers=replier,
    )
    assert reply.status_code == 201

    comments = client.get(f"/api/incidents/{incident['id']}/comments").json()
    assert [c["content"] for c in comments] == ["Still there", "Saw it too"]

    inbox = client.get("/api/notifications", headers=commenter_headers).json()
    assert any(n["type"] == "comment_reply" for n in inbox)

    liked = client.post(f"/api/incidents/{incident['id']}/likes/toggle", headers=replier).json()
    assert liked == {"liked": True, "count": 1}
    unliked = client.post(f"/api/incidents/{incident['id']}/likes/toggle", headers=replier).json()
    assert unliked == {"liked": False, "count": 0}


def test_unified_collection():
    _, headers = _register("mapper")
    incident = _report(headers, title="Flooded underpass")

    res = client.get("/api/unified", params={"source": "user"})
    assert res.status_code == 200
    body = res.json()
    assert body["type"] == "FeatureCollection"
    assert body["metadata"]["totalFeatures"] == len(body["features"])
    assert incident["id"] in {f["properties"]["id"] for f in body["features"]}

    bad = client.get("/api/unified", params={"southwest": "x", "northeast": "-27,153"})
    assert bad.status_code == 400


def test_messaging_round_trip():
    alice, alice_headers = _register("alice")
    bob, bob_headers = _register("bob")

    conv = client.post("/api/conversations", json={"otherUserId": bob["id"]}, headers=alice_headers)
    assert conv.status_code == 201
    conv_id = conv.json()["id"]

    sent = client.post(f"/api/conversations/{conv_id}/messages", json={"content": "Hi Bob"}, headers=alice_headers)
    assert sent.status_code == 201

    assert client.get("/api/messages/unread-count", headers=bob_headers).json() == {"count": 1}
    inbox = client.get("/api/notifications", headers=bob_headers).json()
    assert inbox[0]["type"] == "new_message"
    assert inbox[0]["message"] == "Alice: Hi Bob"

    read = client.patch(f"/api/conversations/{conv_id}/read", headers=bob_headers)
    assert read.json()["updated"] == 1

    _, eve = _register("eve")
    assert client.get(f"/api/conversations/{conv_id}/messages", headers=eve).status_code == 403


def test_ad_review_flow():
    owner, owner_headers = _register("owner")
    _, admin_headers = _register("admin", username="admin_tester")
    _, regular = _register("regular")

    ad_body = {
        "businessName": "Beach Cafe",
        "title": "Half price coffee",
        "content": "All week",
        "suburb": "Mooloolaba",
        "dailyBudget": 5,
    }
    refused = client.post("/api/ads/create", json=ad_body, headers=owner_headers)
    assert refused.status_code == 403

    upgraded = client.post("/api/users/upgrade-to-business", json={"businessName": "Beach Cafe"}, headers=owner_headers)
    assert upgraded.json()["accountType"] == "business"

    created = client.post("/api/ads/create", json=ad_body, headers=owner_headers)
    assert created.status_code == 201
    ad_id = created.json()["id"]

    assert client.get("/api/admin/ads/pending", headers=regular).status_code == 403
    pending = client.get("/api/admin/ads/pending", headers=admin_headers).json()
    assert ad_id in {a["id"] for a in pending}

    approved = client.put(f"/api/admin/ads/{ad_id}/approve", headers=admin_headers)
    assert approved.json()["status"] == "active"

    live = client.get("/api/ads", params={"suburb": "Mooloolaba", "limit": 10}).json()
    assert ad_id in {a["id"] for a in live}

    inbox = client.get("/api/notifications", headers=owner_headers).json()
    assert inbox[0]["type"] == "ad_approved"
    assert owner["id"] == created.json()["userId"]


def test_push_endpoints_without_firebase():
    _, headers = _register("pusher")
    assert client.post("/api/push/subscribe", json={"token": "fcm-1"}, headers=headers).json() == {"success": True}

    res = client.post("/api/push/test", headers=headers)
    assert res.status_code == 503
    assert res.json()["detail"]["code"] == "push_disabled"

    removed = client.post("/api/push/unsubscribe", json={"token": "fcm-1"}, headers=headers).json()
    assert removed == {"success": True, "removed": True}
