from datetime import datetime

import pytest

from app.saleshub.db import session_scope
from app.saleshub.modules.finance.zip_tax import location_by_zip
from app.saleshub.modules.quotes.models import Quote, QuoteCounter
from app.saleshub.modules.quotes.service import build_quote, next_quote_number


def _customer_and_trailer(client, login, user_ids):
    h = login("owner@example.com")
    customer = client.post(
        "/api/crm/customers",
        json={
            "firstName": "Quinn",
            "lastName": "Shopper",
            "email": "quinn@example.com",
            "zipCode": "42101",
            "assignedToId": user_ids["rep@example.com"],
        },
        headers=h,
    ).json["customer"]
    trailer = client.post(
        "/api/inventory",
        json={"vin": "QUOTEVIN000000001", "manufacturer": "Diamond Cargo", "model": "6X12SA", "cost": 4000},
        headers=h,
    ).json["trailer"]
    return customer, trailer


def test_rep_quotes_own_customer(client, login, user_ids):
    customer, trailer = _customer_and_trailer(client, login, user_ids)
    h = login("rep@example.com")

    r = client.post(
        "/api/quotes",
        json={"customerId": customer["id"], "trailerId": trailer["id"], "zip": "42101"},
        headers=h,
    )
    assert r.status_code == 201, r.json
    quote = r.json["quote"]
    assert quote["quoteNumber"] == f"Q-{datetime.utcnow():%Y-%m%d}-001"
    assert quote["price"] == pytest.approx(trailer["salePrice"])
    assert quote["taxRate"] == location_by_zip("42101").tax_rate
    assert quote["hasDocument"] is True
    assert len(quote["options"]["finance"]) == 12
    assert [o["term"] for o in quote["options"]["rto"]] == [24, 36, 48]

    r = client.get(f"/api/quotes/{quote['id']}")
    assert r.json["quote"]["quoteNumber"] == quote["quoteNumber"]

    r = client.get(f"/api/quotes/{quote['id']}/download")
    assert r.status_code == 200
    assert r.mimetype == "text/html"
    assert "attachment" in r.headers["Content-Disposition"]
    assert quote["quoteNumber"].encode() in r.data

    second = client.post("/api/quotes", json={"customerId": customer["id"], "price": 5000}, headers=h)
    assert second.json["quote"]["quoteNumber"].endswith("-002")


def test_quote_visibility_follows_customer(client, login, user_ids):
    customer, trailer = _customer_and_trailer(client, login, user_ids)
    h = login("rep2@example.com")
    r = client.post("/api/quotes", json={"customerId": customer["id"], "trailerId": trailer["id"]}, headers=h)
    assert r.status_code == 403


def test_quote_validation(client, login, user_ids):
    customer, _ = _customer_and_trailer(client, login, user_ids)
    h = login("owner@example.com")
    assert client.post("/api/quotes", json={}, headers=h).json["error"] == "customerId is required"
    r = client.post("/api/quotes", json={"customerId": customer["id"]}, headers=h)
    assert r.status_code == 400
    r = client.post("/api/quotes", json={"customerId": customer["id"], "trailerId": 999}, headers=h)
    assert r.status_code == 404
    assert client.get("/api/quotes/999").status_code == 404


def test_build_quote_options():
    options = build_quote(price=10000, tax_rate=6.0, fees=100, downs=[0], finance_terms=[36], rto_terms=[24])
    assert len(options["finance"]) == 1
    assert options["finance"][0]["monthlyPayment"] > 0
    assert options["rto"][0]["downPayment"] == 200
    assert options["cash"]["totalPrice"] == pytest.approx(10700)


def test_quote_of_deleted_customer_stays_with_its_author(client, login, user_ids):
    customer, trailer = _customer_and_trailer(client, login, user_ids)
    h = login("rep@example.com")
    quote = client.post(
        "/api/quotes", json={"customerId": customer["id"], "trailerId": trailer["id"]}, headers=h
    ).json["quote"]

    h = login("owner@example.com")
    assert client.delete(f"/api/crm/customers/{customer['id']}", headers=h).status_code == 200
    r = client.get(f"/api/quotes/{quote['id']}")
    assert r.status_code == 200
    assert r.json["quote"]["customerId"] is None

    login("rep2@example.com")
    r = client.get(f"/api/quotes/{quote['id']}")
    assert r.status_code == 403
    assert client.get(f"/api/quotes/{quote['id']}/download").status_code == 403

    login("manager@example.com")
    assert client.get(f"/api/quotes/{quote['id']}").status_code == 200

    login("rep@example.com")
    assert client.get(f"/api/quotes/{quote['id']}").status_code == 200


def test_quote_numbers_skip_numbers_already_issued(app):
    now = datetime(2026, 3, 14, 9, 30)
    with session_scope(app) as s:
        s.add(Quote(quote_number="Q-2026-0314-001", price=1000, tax_rate=6.0, created_at=now))
        s.flush()
        assert next_quote_number(s, now) == "Q-2026-0314-002"
        assert next_quote_number(s, now) == "Q-2026-0314-003"
        assert next_quote_number(s, datetime(2026, 3, 15)) == "Q-2026-0315-001"

    with session_scope(app) as s:
        assert s.get(QuoteCounter, "20260314").current_value == 3
        assert next_quote_number(s, now) == "Q-2026-0314-004"
