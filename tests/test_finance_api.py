import pytest


def test_finance_requires_login(client):
    assert client.get("/api/finance/zip/42101").status_code == 401


def test_finance_mode(client, login):
    h = login("rep@example.com")
    r = client.post(
        "/api/finance/calculate",
        json={"mode": "finance", "price": 10000, "taxPct": 0, "apr": 0, "termMonths": 10},
        headers=h,
    )
    assert r.status_code == 200
    assert r.json["mode"] == "finance"
    assert r.json["location"] is None
    assert r.json["result"]["monthlyPayment"] == 1000
    assert r.json["result"]["aprPercent"] == 0


def test_tax_comes_from_zip_when_not_given(client, login):
    h = login("rep@example.com")
    r = client.post("/api/finance/calculate", json={"mode": "cash", "price": 1000, "zip": "42101"}, headers=h)
    assert r.json["taxPct"] == 9.5
    assert r.json["location"]["city"] == "Bowling Green"
    assert r.json["result"]["totalCash"] == pytest.approx(1095)


def test_numeric_zip_is_accepted(client, login):
    h = login("rep@example.com")
    r = client.post("/api/finance/calculate", json={"mode": "cash", "price": 1000, "zip": 42101}, headers=h)
    assert r.status_code == 200, r.json
    assert r.json["taxPct"] == 9.5
    assert r.json["location"]["city"] == "Bowling Green"


def test_rto_mode_with_up_front_charges(client, login):
    h = login("rep@example.com")
    r = client.post(
        "/api/finance/calculate",
        json={"mode": "rto", "price": 5000, "taxPct": 0, "termMonths": 36, "zip": "30301"},
        headers=h,
    )
    assert r.status_code == 200
    result = r.json["result"]
    assert result["rtoPrice"] == 6400
    assert result["monthlyTotal"] == 224
    assert result["upFront"]["totalUf"] == 473
    assert result["upFront"]["stateCode"] == "GA"

    r = client.post("/api/finance/calculate", json={"mode": "rto", "price": 5000}, headers=h)
    assert r.json["error"] == "termMonths is required for rent-to-own"
    r = client.post(
        "/api/finance/calculate",
        json={"mode": "rto", "price": 5000, "termMonths": 24, "zip": "07030"},
        headers=h,
    )
    assert r.status_code == 400
    assert r.json["error"] == "Rent-to-own is not available in New Jersey"


def test_calculate_validation(client, login):
    h = login("rep@example.com")
    assert client.post("/api/finance/calculate", json={"mode": "lease", "price": 1}, headers=h).status_code == 400
    r = client.post("/api/finance/calculate", json={"price": -5}, headers=h)
    assert r.json["error"] == "price must be a positive number"


def test_matrix(client, login):
    h = login("rep@example.com")
    r = client.post(
        "/api/finance/matrix",
        json={"price": 12000, "taxPct": 0, "apr": 0, "downs": [0, 2000], "terms": [12, 24]},
        headers=h,
    )
    rows = r.json["rows"]
    assert [row["down"] for row in rows] == [0, 2000]
    assert rows[0]["payments"][0] == {"termMonths": 12, "monthlyPayment": 1000, "totalPaid": 12000}
    assert rows[1]["payments"][1]["monthlyPayment"] == pytest.approx(416.67)

    r = client.post("/api/finance/matrix", json={"price": 1000, "downs": "0"}, headers=h)
    assert r.status_code == 400


def test_zip_and_rto_fee_lookups(client, login):
    login("rep@example.com")
    r = client.get("/api/finance/zip/40202")
    assert r.json == {"city": "Louisville", "state": "KY", "taxRate": 6.0, "county": "Jefferson"}
    assert client.get("/api/finance/zip/123").status_code == 400

    r = client.get("/api/finance/rto-fees/33101?monthlyRent=200")
    assert r.json["stateCode"] == "FL"
    assert r.json["config"]["stateName"] == "Florida"
    assert r.json["upFront"]["totalUf"] == 395
    assert "upFront" not in client.get("/api/finance/rto-fees/33101").json
