def _create(client, headers, **payload):
    body = {"firstName": "Pat", "lastName": "Buyer", "email": "pat@example.com", "phone": "555-201-3344"}
    body.update(payload)
    return client.post("/api/crm/customers", json=body, headers=headers)


def test_anonymous_is_unauthorized(client):
    r = client.get("/api/crm/customers")
    assert r.status_code == 401


def test_missing_csrf_token_rejected(client, login):
    login("owner@example.com")
    r = client.post("/api/crm/customers", json={"firstName": "A", "lastName": "B", "email": "a@b.com"})
    assert r.status_code == 400
    assert "CSRF" in r.json["error"]


def test_create_assigns_rep_and_manager(client, login, user_ids):
    h = login("owner@example.com")
    r = _create(client, h, assignedToId=user_ids["rep@example.com"])
    assert r.status_code == 201
    c = r.json["customer"]
    assert c["assignedToId"] == user_ids["rep@example.com"]
    assert c["managerId"] == user_ids["manager@example.com"]
    assert c["repCode"] == "REP30001"
    assert c["phone"] == "5552013344"
    assert c["status"] == "new"


def test_create_validation_and_duplicate_email(client, login):
    h = login("owner@example.com")
    r = _create(client, h, lastName="")
    assert r.status_code == 400
    assert r.json["error"] == "First name and last name are required"

    r = _create(client, h, email=None, phone=None)
    assert r.status_code == 400
    assert r.json["error"] == "Either email or phone is required"

    assert _create(client, h).status_code == 201
    r = _create(client, h, firstName="Other")
    assert r.status_code == 409


def test_visibility_by_role(client, login, user_ids):
    h = login("owner@example.com")
    mine = _create(client, h, email="mine@example.com", assignedToId=user_ids["rep@example.com"]).json["customer"]
    other = _create(client, h, email="other@example.com", assignedToId=user_ids["rep2@example.com"]).json["customer"]

    login("rep@example.com")
    r = client.get("/api/crm/customers")
    assert r.status_code == 200
    assert [c["id"] for c in r.json["customers"]] == [mine["id"]]
    assert client.get(f"/api/crm/customers/{other['id']}").status_code == 403
    assert client.get(f"/api/crm/customers/{mine['id']}").status_code == 200

    # Search narrows within what the rep may see; it never widens it.
    r = client.get("/api/crm/customers?search=other")
    assert r.json["customers"] == []

    login("manager@example.com")
    ids = {c["id"] for c in client.get("/api/crm/customers").json["customers"]}
    assert ids == {mine["id"]}

    login("director@example.com")
    ids = {c["id"] for c in client.get("/api/crm/customers").json["customers"]}
    assert ids == {mine["id"], other["id"]}


def test_delete_rules(client, login, user_ids):
    h = login("owner@example.com")
    cid = _create(client, h, assignedToId=user_ids["rep@example.com"]).json["customer"]["id"]

    h = login("rep@example.com")
    r = client.delete(f"/api/crm/customers/{cid}", headers=h)
    assert r.status_code == 403
    assert r.json["error"] == "Salespeople cannot delete leads"

    h = login("director@example.com")
    assert client.delete(f"/api/crm/customers/{cid}", headers=h).status_code == 403

    h = login("owner@example.com")
    assert client.delete(f"/api/crm/customers/{cid}", headers=h).status_code == 200
    assert client.get(f"/api/crm/customers/{cid}").status_code == 404


def test_status_change_logs_activity(client, login, user_ids):
    h = login("owner@example.com")
    cid = _create(client, h, assignedToId=user_ids["rep@example.com"]).json["customer"]["id"]

    h = login("rep@example.com")
    r = client.patch(f"/api/crm/customers/{cid}/status", json={"status": "contacted"}, headers=h)
    assert r.status_code == 200
    assert r.json["customer"]["status"] == "contacted"

    r = client.patch(f"/api/crm/customers/{cid}/status", json={"status": "bogus"}, headers=h)
    assert r.status_code == 400

    detail = client.get(f"/api/crm/customers/{cid}").json
    subjects = [a["subject"] for a in detail["activities"]]
    assert "Status Changed" in subjects


def test_pipeline_and_dashboard(client, login):
    h = login("owner@example.com")
    _create(client, h)
    r = client.get("/api/crm/pipeline")
    assert r.status_code == 200
    columns = {col["status"]: col["count"] for col in r.json["columns"]}
    assert columns["new"] == 1

    r = client.get("/api/crm/dashboard")
    assert r.status_code == 200
    assert r.json["total"] == 1


def test_salesperson_cannot_export(client, login):
    h = login("rep@example.com")
    r = client.post("/api/crm/bulk-actions/export", json={}, headers=h)
    assert r.status_code == 403

    h = login("owner@example.com")
    _create(client, h)
    r = client.post("/api/crm/bulk-actions/export", json={}, headers=h)
    assert r.status_code == 200
    assert r.mimetype == "text/csv"
    assert "pat@example.com" in r.get_data(as_text=True)


def test_settings_owner_only_edit(client, login):
    h = login("director@example.com")
    assert client.get("/api/crm/settings").status_code == 200
    assert client.put("/api/crm/settings", json={"staleLeadDays": 10}, headers=h).status_code == 403

    h = login("owner@example.com")
    r = client.put("/api/crm/settings", json={"staleLeadDays": 10}, headers=h)
    assert r.status_code == 200
    assert r.json["settings"]["stale_lead_days"] == "10"
    assert client.put("/api/crm/settings", json={"staleLeadDays": 500}, headers=h).status_code == 400


def test_non_numeric_ids_are_rejected(client, login, user_ids):
    h = login("owner@example.com")
    r = _create(client, h, assignedToId="abc")
    assert r.status_code == 400
    assert r.json["error"] == "assignedToId must be a numeric id"

    c = _create(client, h).json["customer"]
    r = client.patch(f"/api/crm/customers/{c['id']}", json={"assignedToId": "rep"}, headers=h)
    assert r.status_code == 400
    assert r.json["error"] == "assignedToId must be a numeric id"

    r = client.post("/api/crm/activities", json={"customerId": "x", "type": "call", "subject": "Follow up"}, headers=h)
    assert r.status_code == 400
    assert r.json["error"] == "customerId must be a numeric id"
    r = client.post(
        "/api/crm/activities",
        json={"customerId": c["id"], "type": "call", "subject": "Follow up", "dueDate": "next week"},
        headers=h,
    )
    assert r.status_code == 400

    r = client.post("/api/crm/bulk-actions/status", json={"customerIds": ["x"], "status": "contacted"}, headers=h)
    assert r.status_code == 400
    assert r.json["error"] == "customerIds must be a numeric id"
    r = client.post("/api/crm/bulk-actions/export", json={"customerIds": [c["id"], "x"]}, headers=h)
    assert r.status_code == 400

    r = client.post("/api/crm/duplicates/merge", json={"masterId": c["id"], "duplicateIds": ["x"]}, headers=h)
    assert r.status_code == 400
    assert r.json["error"] == "duplicateIds must be a numeric id"
