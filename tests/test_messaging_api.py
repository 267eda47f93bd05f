from datetime import datetime, timedelta

from app.saleshub.db import session_scope
from app.saleshub.modules.messaging.models import MessageThread


def _thread(client, login, user_ids):
    h = login("rep@example.com")
    customer = client.post(
        "/api/crm/customers",
        json={"firstName": "Robin", "lastName": "Hauler", "email": "robin@example.com"},
        headers=h,
    ).json["customer"]
    r = client.post(
        "/api/crm/threads",
        json={"customerId": customer["id"], "subject": "Your 7x16 quote", "body": "Here are the numbers."},
        headers=h,
    )
    assert r.status_code == 201, r.json
    return h, customer, r.json


def test_thread_and_portal_reply(client, login, user_ids):
    h, customer, created = _thread(client, login, user_ids)
    thread = created["thread"]
    token = created["portalUrl"].rsplit("/", 1)[1]
    assert created["portalUrl"] == f"/reply/{token}"
    assert thread["assignedToId"] == user_ids["rep@example.com"]
    assert [m["direction"] for m in thread["messages"]] == ["outbound"]

    client.get("/auth/logout")
    view = client.get(f"/api/reply-portal/{token}")
    assert view.status_code == 200
    assert view.json["subject"] == "Your 7x16 quote"
    assert view.json["customerFirstName"] == "Robin"
    assert "senderUserId" not in view.json["messages"][0]

    r = client.post(f"/api/reply-portal/{token}", json={"body": "Can you do 200 less?"})
    assert r.status_code == 201
    assert client.post(f"/api/reply-portal/{token}", json={"body": "  "}).status_code == 400

    h = login("rep@example.com")
    listed = client.get("/api/crm/threads?unread=1").json["threads"]
    assert [t["id"] for t in listed] == [thread["id"]]
    assert listed[0]["unreadForRep"] is True

    detail = client.get(f"/api/crm/threads/{thread['id']}").json["thread"]
    assert [m["direction"] for m in detail["messages"]] == ["outbound", "inbound"]
    assert detail["unreadForRep"] is False

    notes = client.get("/api/notifications").json
    replies = [n for n in notes["notifications"] if n["type"] == "reply"]
    assert len(replies) == 1
    assert replies[0]["link"] == f"/crm/threads/{thread['id']}"

    r = client.post("/api/notifications/mark-read", json={"ids": [replies[0]["id"]]}, headers=h)
    assert r.json["updated"] == 1
    r = client.post("/api/notifications/mark-read", json={"all": True}, headers=h)
    assert r.json["unreadCount"] == 0

    r = client.post(f"/api/crm/threads/{thread['id']}/messages", json={"body": "Sure."}, headers=h)
    assert r.status_code == 201
    assert r.json["message"]["direction"] == "outbound"


def test_other_rep_cannot_read_thread(client, login, user_ids):
    _, _, created = _thread(client, login, user_ids)
    login("rep2@example.com")
    assert client.get(f"/api/crm/threads/{created['thread']['id']}").status_code == 403
    assert client.get("/api/crm/threads").json["threads"] == []


def test_thread_validation(client, login, user_ids):
    h, customer, _ = _thread(client, login, user_ids)
    r = client.post("/api/crm/threads", json={"customerId": customer["id"], "body": "hi"}, headers=h)
    assert r.json["error"] == "Subject is required"
    r = client.post(
        "/api/crm/threads",
        json={"customerId": customer["id"], "subject": "x", "body": "hi", "channel": "fax"},
        headers=h,
    )
    assert r.json["error"] == "Invalid channel"
    assert client.post("/api/crm/threads", json={}, headers=h).status_code == 400


def test_portal_unknown_and_expired_tokens(app, client, login, user_ids):
    _, _, created = _thread(client, login, user_ids)
    token = created["portalUrl"].rsplit("/", 1)[1]

    r = client.get("/api/reply-portal/not-a-token")
    assert r.status_code == 404
    assert r.json["error"] == "Conversation not found"

    with session_scope(app) as s:
        thread = s.get(MessageThread, created["thread"]["id"])
        thread.portal_token_expiry = datetime.utcnow() - timedelta(minutes=1)

    r = client.get(f"/api/reply-portal/{token}")
    assert r.status_code == 410
    assert r.json["error"] == "This link has expired"


def test_portal_posts_are_rate_limited(client, login, user_ids):
    _, _, created = _thread(client, login, user_ids)
    token = created["portalUrl"].rsplit("/", 1)[1]
    for i in range(5):
        assert client.post(f"/api/reply-portal/{token}", json={"body": f"msg {i}"}).status_code == 201
    r = client.post(f"/api/reply-portal/{token}", json={"body": "one more"})
    assert r.status_code == 429


def test_thread_access_moves_with_customer_reassignment(client, login, user_ids):
    h, customer, created = _thread(client, login, user_ids)
    thread_id = created["thread"]["id"]
    token = created["portalUrl"].rsplit("/", 1)[1]

    h = login("owner@example.com")
    r = client.patch(
        f"/api/crm/customers/{customer['id']}",
        json={"assignedToId": user_ids["rep2@example.com"]},
        headers=h,
    )
    assert r.status_code == 200, r.json

    h = login("rep@example.com")
    assert client.get(f"/api/crm/customers/{customer['id']}").status_code == 403
    assert client.get(f"/api/crm/threads/{thread_id}").status_code == 403
    assert client.get("/api/crm/threads").json["threads"] == []
    r = client.post(f"/api/crm/threads/{thread_id}/messages", json={"body": "Still here"}, headers=h)
    assert r.status_code == 403

    login("rep2@example.com")
    detail = client.get(f"/api/crm/threads/{thread_id}")
    assert detail.status_code == 200
    assert detail.json["thread"]["assignedToId"] == user_ids["rep2@example.com"]
    assert [t["id"] for t in client.get("/api/crm/threads").json["threads"]] == [thread_id]

    client.get("/auth/logout")
    assert client.post(f"/api/reply-portal/{token}", json={"body": "Who do I talk to now?"}).status_code == 201

    login("rep2@example.com")
    replies = [n for n in client.get("/api/notifications").json["notifications"] if n["type"] == "reply"]
    assert len(replies) == 1
    login("rep@example.com")
    assert [n for n in client.get("/api/notifications").json["notifications"] if n["type"] == "reply"] == []
