PASSWORD = "pw-test-123"


def test_health_endpoints(client):
    assert client.get("/health").json == {"ok": True}
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_public_pages(client):
    assert b"SalesHub" in client.get("/").data
    assert client.get("/auth/login").status_code == 200


def test_dashboard_requires_login(client):
    r = client.get("/dashboard")
    assert r.status_code == 302
    assert "/auth/login" in r.headers["Location"]
    assert "next=" in r.headers["Location"]


def test_dashboard_renders_for_owner(client, login):
    login("owner@example.com")
    r = client.get("/dashboard")
    assert r.status_code == 200
    assert b"Welcome, Owner Tester" in r.data
    assert b"VIP10001" in r.data


def test_login_redirects_to_local_next_only(client):
    r = client.post("/auth/login", data={"email": "rep@example.com", "password": PASSWORD, "next": "/api/me"})
    assert r.headers["Location"].endswith("/api/me")
    client.get("/auth/logout")
    r = client.post(
        "/auth/login",
        data={"email": "rep@example.com", "password": PASSWORD, "next": "//evil.example.com"},
    )
    assert r.headers["Location"].endswith("/dashboard")


def test_login_is_rate_limited(client):
    for _ in range(5):
        r = client.post("/auth/login", data={"email": "rep@example.com", "password": "wrong"})
        assert r.headers["Location"].endswith("/auth/login")
    r = client.post("/auth/login", data={"email": "rep@example.com", "password": PASSWORD})
    assert r.headers["Location"].endswith("/auth/login")
    assert client.get("/api/me").status_code == 401


def test_unknown_api_path_is_json_404(client):
    r = client.get("/api/nope")
    assert r.status_code == 404
    assert r.json == {"error": "Not found"}
