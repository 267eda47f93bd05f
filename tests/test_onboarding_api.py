import io

from app.saleshub.db import session_scope
from app.saleshub.models import PAYPLAN_PENDING, User
from app.saleshub.modules.onboarding.service import rep_code_prefix

NEW_PASSWORD = "joining-pw-1"


def _token(client, login):
    h = login("owner@example.com")
    r = client.post("/api/onboarding/tokens", headers=h)
    assert r.status_code == 201
    client.get("/auth/logout")
    return r.json


def _signup(client, token, **overrides):
    form = {
        "token": token,
        "firstName": "Nova",
        "lastName": "Closer",
        "email": "nova@example.com",
        "password": NEW_PASSWORD,
        "phone": "(270) 555-0101",
        "w9": (io.BytesIO(b"%PDF-1.4 w9"), "w9.pdf"),
    }
    form.update(overrides)
    return client.post("/api/onboarding/complete", data=form, content_type="multipart/form-data")


def _login_new(client):
    r = client.post("/auth/login", data={"email": "nova@example.com", "password": NEW_PASSWORD})
    assert r.status_code == 302
    with client.session_transaction() as sess:
        return {"X-CSRF-Token": sess["csrf_token"]}


def test_token_link_and_validation(client, login):
    created = _token(client, login)
    assert created["url"] == f"https://sales.example.com/join/{created['token']}"
    assert created["expiresAt"]

    r = client.post("/api/onboarding/validate-token", json={"token": created["token"]})
    assert r.status_code == 200
    assert r.json["valid"] is True
    assert client.post("/api/onboarding/validate-token", json={}).status_code == 400
    assert client.post("/api/onboarding/validate-token", json={"token": "nope"}).status_code == 404


def test_salespeople_cannot_issue_tokens(client, login):
    h = login("manager@example.com")
    assert client.post("/api/onboarding/tokens", headers=h).status_code == 403


def test_signup_creates_pending_rep(app, client, login):
    token = _token(client, login)["token"]
    r = _signup(client, token)
    assert r.status_code == 201, r.json
    assert r.json["repCode"].startswith("REP")

    with session_scope(app) as s:
        user = s.get(User, r.json["userId"])
        assert user.payplan_status == PAYPLAN_PENDING
        assert user.phone == "2705550101"
        assert user.w9_storage_key.endswith("w9.pdf")
        assert user.crm_role == "salesperson"

    r = _signup(client, token, email="other@example.com", w9=(io.BytesIO(b"x"), "w9.pdf"))
    assert r.status_code == 410
    r = client.post("/api/onboarding/validate-token", json={"token": token})
    assert r.status_code == 410


def test_signup_validation(client, login):
    token = _token(client, login)["token"]
    r = _signup(client, token, password="short", w9=(io.BytesIO(b"x"), "w9.docx"))
    assert r.status_code == 400
    assert "Password must be at least 8 characters" in r.json["error"]
    assert "W-9 must be a PDF or image" in r.json["error"]

    r = _signup(client, token, email="owner@example.com")
    assert r.status_code == 400
    assert r.json["error"] == "An account with this email already exists"


def test_payplan_gate_then_accept(client, login):
    token = _token(client, login)["token"]
    _signup(client, token)
    h = _login_new(client)

    r = client.get("/api/crm/customers")
    assert r.status_code == 403
    assert r.json["code"] == "PAYPLAN_REQUIRED"
    me = client.get("/api/me").json["user"]
    assert me["payplanStatus"] == PAYPLAN_PENDING

    r = client.post("/api/onboarding/payplan/accept", headers=h)
    assert r.status_code == 200
    assert client.get("/api/crm/customers").status_code == 200
    assert client.get("/api/me").json["user"]["payplanAcceptedAt"]


def test_payplan_decline_disables_account(client, login):
    token = _token(client, login)["token"]
    _signup(client, token)
    h = _login_new(client)

    r = client.post("/api/onboarding/payplan/decline", headers=h)
    assert r.json["accountStatus"] == "disabled_payplan_declined"

    r = client.get("/api/crm/customers")
    assert r.status_code == 403
    assert r.json["code"] == "ACCOUNT_DISABLED"


def test_rep_code_prefixes():
    assert rep_code_prefix("owner") == "VIP"
    assert rep_code_prefix("manager") == "SMR"
    assert rep_code_prefix("director") == "REP"
    assert rep_code_prefix(None) == "REP"
