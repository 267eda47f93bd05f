def test_create_user_assigns_role_and_rep_code(client, login, user_ids):
    h = login("director@example.com")
    r = client.post(
        "/api/admin/users",
        json={
            "email": "New.Manager@Example.com",
            "password": "long-enough",
            "role": "manager",
            "firstName": "Mia",
            "lastName": "Lead",
            "phone": "555.777.1212",
        },
        headers=h,
    )
    assert r.status_code == 201, r.json
    user = r.json["user"]
    assert user["email"] == "new.manager@example.com"
    assert user["role"] == "manager"
    assert user["repCode"].startswith("SMR")
    assert user["phone"] == "5557771212"

    emails = [u["email"] for u in client.get("/api/admin/users?role=manager").json["users"]]
    assert emails == ["manager@example.com", "new.manager@example.com"]

    events = client.get("/api/admin/audit?action=user.create").json["events"]
    assert events[0]["metadata"]["email"] == "new.manager@example.com"
    assert events[0]["actorEmail"] == "director@example.com"


def test_create_user_validation(client, login):
    h = login("owner@example.com")
    r = client.post("/api/admin/users", json={"email": "bad", "password": "x", "role": "wizard"}, headers=h)
    assert r.status_code == 400
    assert r.json["errors"] == [
        "Invalid email format.",
        "Password must be at least 8 characters.",
        "Role must be one of owner, director, manager, salesperson.",
    ]
    r = client.post("/api/admin/users", json={"email": "rep@example.com", "password": "long-enough"}, headers=h)
    assert r.json["errors"] == ["An account with this email already exists."]


def test_only_owner_creates_owner(client, login):
    h = login("director@example.com")
    r = client.post(
        "/api/admin/users",
        json={"email": "boss@example.com", "password": "long-enough", "role": "owner"},
        headers=h,
    )
    assert r.status_code == 403

    h = login("manager@example.com")
    r = client.post("/api/admin/users", json={"email": "x@example.com", "password": "long-enough"}, headers=h)
    assert r.status_code == 403
    assert r.json["error"] == "Only owners and directors can create accounts"


def test_toggle_manager_swaps_roles(client, login, user_ids):
    h = login("owner@example.com")
    rep_id = user_ids["rep2@example.com"]
    r = client.post(f"/api/admin/users/{rep_id}/toggle-manager", headers=h)
    assert r.json["user"]["role"] == "manager"
    r = client.post(f"/api/admin/users/{rep_id}/toggle-manager", headers=h)
    assert r.json["user"]["role"] == "salesperson"
    assert r.json["user"]["roles"] == ["salesperson"]

    r = client.post(f"/api/admin/users/{user_ids['director@example.com']}/toggle-manager", headers=h)
    assert r.status_code == 400
    assert client.post("/api/admin/users/9999/toggle-manager", headers=h).status_code == 404


def test_set_manager(client, login, user_ids):
    h = login("director@example.com")
    rep_id = user_ids["rep2@example.com"]
    r = client.post(
        f"/api/admin/users/{rep_id}/manager",
        json={"managerId": user_ids["manager@example.com"]},
        headers=h,
    )
    assert r.json["user"]["managerId"] == user_ids["manager@example.com"]

    r = client.post(f"/api/admin/users/{rep_id}/manager", json={"managerId": rep_id}, headers=h)
    assert r.status_code == 400
    r = client.post(
        f"/api/admin/users/{rep_id}/manager",
        json={"managerId": user_ids["rep@example.com"]},
        headers=h,
    )
    assert r.status_code == 400
    r = client.post(f"/api/admin/users/{rep_id}/manager", json={"managerId": None}, headers=h)
    assert r.json["user"]["managerId"] is None


def test_crm_admin_is_owner_only(client, login, user_ids):
    manager_id = user_ids["manager@example.com"]
    h = login("director@example.com")
    assert client.post(f"/api/admin/users/{manager_id}/toggle-crm-admin", headers=h).status_code == 403

    h = login("owner@example.com")
    r = client.post(f"/api/admin/users/{manager_id}/toggle-crm-admin", headers=h)
    assert r.json["user"]["canAdminCrm"] is True

    login("manager@example.com")
    assert client.get("/api/admin/audit").status_code == 200


def test_audit_filters(client, login):
    login("owner@example.com")
    events = client.get("/api/admin/audit?actorEmail=owner@").json["events"]
    assert events
    assert all(e["actorEmail"] == "owner@example.com" for e in events)
    assert client.get("/api/admin/audit?dateFrom=yesterday").status_code == 400

    login("rep@example.com")
    r = client.get("/api/admin/audit")
    assert r.status_code == 403
    assert r.json["error"] == "Audit log access denied"
