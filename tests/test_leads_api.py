import io

LEAD = {
    "firstName": "Jordan",
    "lastName": "Hauler",
    "email": "jordan@example.com",
    "phone": "(270) 555-0101",
    "zip": "42101",
}


def test_prequalification_creates_scored_lead(client, login, user_ids):
    r = client.post("/api/leads/prequalification", json={**LEAD, "creditRange": "780+", "repCode": "rep30001"})
    assert r.status_code == 200
    assert r.json["success"] is True
    lead_id = r.json["leadId"]

    login("owner@example.com")
    c = client.get(f"/api/crm/customers/{lead_id}").json["customer"]
    assert c["assignedToId"] == user_ids["rep@example.com"]
    assert c["assignmentMethod"] == "rep_link"
    assert c["creditRange"] == "excellent_780_plus"
    assert c["leadScore"] == 50
    assert c["temperature"] == "warm"
    assert c["priority"] == "high"
    assert c["sourcePage"] == "/get-approved"


def test_prequalification_resubmission_updates_existing(client):
    first = client.post("/api/leads/prequalification", json=LEAD).json
    again = client.post("/api/leads/prequalification", json={**LEAD, "creditRange": "650_699"}).json
    assert again["leadId"] == first["leadId"]
    assert again["message"] == "Lead updated (existing customer)"


def test_organic_lead_is_unassigned(client, login):
    lead_id = client.post("/api/leads/prequalification", json=LEAD).json["leadId"]
    login("owner@example.com")
    c = client.get(f"/api/crm/customers/{lead_id}").json["customer"]
    assert c["assignedToId"] is None
    assert c["assignmentMethod"] == "organic"


def test_intake_validation(client):
    r = client.post("/api/leads/inbound", json={"firstName": "Only"})
    assert r.status_code == 400
    assert r.json["success"] is False


def test_api_key_enforced_when_configured(app, client):
    app.config["SALESHUB_API_KEY"] = "site-key"
    assert client.post("/api/leads/inbound", json=LEAD).status_code == 401
    assert client.post("/api/leads/inbound", json=LEAD, headers={"X-API-Key": "wrong"}).status_code == 401
    r = client.post("/api/leads/inbound", json=LEAD, headers={"X-API-Key": "site-key"})
    assert r.status_code == 201
    assert r.json["created"] is True


def test_validate_rep(client):
    r = client.get("/api/leads/validate-rep/rep30001")
    assert r.status_code == 200
    assert r.json["repCode"] == "REP30001"
    assert client.get("/api/leads/validate-rep/REP99999").status_code == 404


def test_duplicate_claim_is_locked_then_reassigned(client, login, user_ids):
    r = client.post("/api/leads/inbound", json={**LEAD, "repCode": "REP30001"})
    assert r.status_code == 201
    original_id = r.json["leadId"]

    r = client.post("/api/leads/inbound", json={**LEAD, "repCode": "REP30002", "trailerSize": "7x16"})
    assert r.status_code == 201
    assert r.json["lockedForReview"] is True
    locked_id = r.json["leadId"]
    assert locked_id != original_id

    # The locked copy stays with the original rep but is hidden from them.
    login("rep@example.com")
    ids = [c["id"] for c in client.get("/api/crm/customers").json["customers"]]
    assert ids == [original_id]

    h = login("manager@example.com")
    pending = client.get("/api/leads/duplicates").json
    assert pending["count"] == 1
    entry = pending["duplicates"][0]
    assert entry["originalLead"]["id"] == original_id
    assert entry["newRepInfo"]["repCode"] == "REP30002"

    r = client.post(
        "/api/leads/duplicates",
        json={"leadId": locked_id, "decision": "reassign_to_new", "notes": "rep2 met them at the lot"},
        headers=h,
    )
    assert r.status_code == 200
    assert r.json["message"] == "Lead reassigned to new rep"

    login("rep2@example.com")
    ids = [c["id"] for c in client.get("/api/crm/customers").json["customers"]]
    assert ids == [locked_id]


def test_duplicate_merge(client, login):
    original_id = client.post("/api/leads/inbound", json={**LEAD, "repCode": "REP30001"}).json["leadId"]
    locked_id = client.post("/api/leads/inbound", json={**LEAD, "repCode": "REP30002"}).json["leadId"]

    h = login("owner@example.com")
    r = client.post("/api/leads/duplicates", json={"leadId": locked_id, "decision": "merge"}, headers=h)
    assert r.status_code == 200
    assert client.get(f"/api/crm/customers/{locked_id}").status_code == 404
    detail = client.get(f"/api/crm/customers/{original_id}").json
    assert "Duplicate Review - Merged" in [a["subject"] for a in detail["activities"]]

    r = client.post("/api/leads/duplicates", json={"leadId": original_id, "decision": "merge"}, headers=h)
    assert r.status_code == 400


def test_salesperson_cannot_review_duplicates(client, login):
    login("rep@example.com")
    assert client.get("/api/leads/duplicates").status_code == 403


def test_csv_import_skips_repeats(client, login):
    csv_bytes = (
        "Name,Email,Phone,Zip,Rep Code\n"
        "Casey Trailer,casey@example.com,270-555-0199,42101,REP30001\n"
        "Casey Trailer,casey@example.com,270-555-0199,42101,REP30001\n"
        ",,,,\n"
        "NoContact,,,,\n"
    ).encode("utf-8")

    h = login("rep@example.com")
    r = client.post(
        "/api/leads/import",
        data={"file": (io.BytesIO(csv_bytes), "leads.csv")},
        content_type="multipart/form-data",
        headers=h,
    )
    assert r.status_code == 403

    h = login("owner@example.com")
    r = client.post(
        "/api/leads/import",
        data={"file": (io.BytesIO(csv_bytes), "leads.csv")},
        content_type="multipart/form-data",
        headers=h,
    )
    assert r.status_code == 200
    assert r.json["created"] == 1
    assert r.json["skipped"] == 2
    assert r.json["errors"] == 1

    # Re-importing the same sheet creates nothing new.
    r = client.post(
        "/api/leads/import",
        data={"file": (io.BytesIO(csv_bytes), "leads.csv")},
        content_type="multipart/form-data",
        headers=h,
    )
    assert r.json["created"] == 0
