from datetime import date, timedelta

import pytest

from app.saleshub.modules.deals.numbering import (
    extract_color_from_features,
    format_deal_number,
    format_trailer_size,
)
from app.saleshub.modules.deals.service import profit_for


def _setup_sale(client, login, user_ids):
    h = login("owner@example.com")
    customer = client.post(
        "/api/crm/customers",
        json={
            "firstName": "Sam",
            "lastName": "Buyer",
            "email": "sam@example.com",
            "assignedToId": user_ids["rep@example.com"],
        },
        headers=h,
    ).json["customer"]
    trailer = client.post(
        "/api/inventory",
        json={
            "vin": "5NHUAB123XY000099",
            "manufacturer": "Diamond Cargo",
            "model": "7X16TA2",
            "length": 16,
            "width": 7,
            "height": 6.5,
            "cost": 5000,
            "features": ["Ramp Door", "Black"],
        },
        headers=h,
    ).json["trailer"]
    return h, customer, trailer


def _sale(customer, trailer, user_ids, **kw):
    body = {
        "customerId": customer["id"],
        "trailerId": trailer["id"],
        "soldByUserId": user_ids["rep@example.com"],
        "deliveryDate": date.today().isoformat(),
        "finalPrice": 7000,
        "dealType": "finance",
    }
    body.update(kw)
    return body


def test_mark_sold_snapshots_trailer(client, login, user_ids):
    h, customer, trailer = _setup_sale(client, login, user_ids)
    assert client.get("/api/deals/next-number").json["dealNumber"] == "DEAL-00001"

    r = client.post("/api/deals/mark-sold", json=_sale(customer, trailer, user_ids), headers=h)
    assert r.status_code == 200, r.json
    deal = r.json["deal"]
    assert r.json["dealNumber"] == "DEAL-00001"
    assert deal["profit"] == 2000
    assert deal["profitMargin"] == 40.0
    assert deal["soldByRepCode"] == "REP30001"
    assert deal["trailerSize"] == "7' x 16'"
    assert deal["trailerAxles"] == "Tandem"
    assert deal["trailerColor"] == "Black"
    assert deal["trailerHeight"] == "6'6\""

    assert client.get(f"/api/inventory/{trailer['id']}").json["trailer"]["status"] == "sold"
    assert client.get(f"/api/crm/customers/{customer['id']}").json["customer"]["status"] == "won"
    assert client.get("/api/deals/next-number").json["dealNumber"] == "DEAL-00002"

    r = client.post("/api/deals/mark-sold", json=_sale(customer, trailer, user_ids), headers=h)
    assert r.status_code == 400
    assert r.json["error"] == "This trailer has already been marked as sold"


def test_mark_sold_validation(client, login, user_ids):
    h, customer, trailer = _setup_sale(client, login, user_ids)
    cases = [
        ({"customerId": None}, "Customer ID is required"),
        ({"soldByUserId": None}, "Sold By (salesperson) is required"),
        ({"deliveryDate": ""}, "Delivery date is required"),
        ({"finalPrice": 0}, "Valid sale price is required"),
    ]
    for override, message in cases:
        r = client.post("/api/deals/mark-sold", json=_sale(customer, trailer, user_ids, **override), headers=h)
        assert r.status_code == 400
        assert r.json["error"] == message

    r = client.post("/api/deals/mark-sold", json=_sale(customer, trailer, user_ids, trailerId=9999), headers=h)
    assert r.status_code == 404


def test_only_directors_owners_and_crm_admins_mark_sold(client, login, user_ids):
    _, customer, trailer = _setup_sale(client, login, user_ids)
    h = login("manager@example.com")
    r = client.post("/api/deals/mark-sold", json=_sale(customer, trailer, user_ids), headers=h)
    assert r.status_code == 403


def test_my_sales_report(client, login, user_ids):
    h, customer, trailer = _setup_sale(client, login, user_ids)
    client.post("/api/deals/mark-sold", json=_sale(customer, trailer, user_ids), headers=h)

    login("rep@example.com")
    r = client.get("/api/reports/my-sales")
    assert r.status_code == 200
    summary = r.json["summary"]
    assert summary["totalSales"] == 1
    assert summary["totalRevenue"] == 7000
    assert summary["totalProfit"] == 2000
    assert summary["totalCommission"] == pytest.approx(400)
    assert summary["commissionRate"] == 20
    assert summary["avgMargin"] == 40.0
    assert len(r.json["monthlyBreakdown"]) == 12
    assert r.json["filters"]["manufacturers"] == ["Diamond Cargo"]
    assert r.json["repInfo"]["repCode"] == "REP30001"

    r = client.get("/api/reports/my-sales?manufacturer=Quality%20Cargo")
    assert r.json["summary"]["totalSales"] == 0
    assert client.get("/api/reports/my-sales?startDate=nope").status_code == 400

    login("rep2@example.com")
    assert client.get("/api/reports/my-sales").json["summary"]["totalSales"] == 0


def test_delivery_records_flow(client, login, user_ids):
    h = login("rep@example.com")
    today = date.today()
    r = client.post(
        "/api/delivery-records",
        json={
            "customerName": "Sam Buyer",
            "trailerIdentifier": "7x16 black",
            "deliveryDate": today.isoformat(),
            "commissionAmount": 400,
            "profitAmount": 2000,
        },
        headers=h,
    )
    assert r.status_code == 201
    record_id = r.json["deliveryRecord"]["id"]

    client.post(
        "/api/delivery-records",
        json={
            "customerName": "Old Sale",
            "trailerIdentifier": "6x12",
            "deliveryDate": (today - timedelta(days=45)).isoformat(),
            "commissionAmount": 100,
            "profitAmount": 500,
        },
        headers=h,
    )

    r = client.post("/api/delivery-records", json={"customerName": "x"}, headers=h)
    assert r.status_code == 400
    assert "trailerIdentifier is required" in r.json["error"]

    summary = client.get("/api/delivery-records/summary").json
    assert summary == {"totalDeliveries": 1, "totalCommission": 400.0, "totalProfit": 2000.0}

    records = client.get(f"/api/delivery-records?userId={user_ids['rep@example.com']}&limit=1").json
    assert len(records["deliveryRecords"]) == 1
    assert records["deliveryRecords"][0]["id"] == record_id

    assert client.delete("/api/delivery-records", json={"ids": [record_id]}, headers=h).status_code == 403

    h = login("manager@example.com")
    assert client.delete("/api/delivery-records", json={"ids": []}, headers=h).status_code == 400
    r = client.delete("/api/delivery-records", json={"ids": [record_id]}, headers=h)
    assert r.status_code == 200
    assert r.json["deletedCount"] == 1


def test_numbering_helpers():
    assert format_deal_number(42) == "DEAL-00042"
    assert format_trailer_size(16, 7) == "7' x 16'"
    assert format_trailer_size(20, 8.5) == "8.5' x 20'"
    assert format_trailer_size(None, 7) == "N/A"
    assert extract_color_from_features(["Ramp Door", "Charcoal Gray"]) == "Charcoal Gray"
    assert extract_color_from_features(["Ramp Door"]) is None


def test_profit_for():
    assert profit_for(7000, 5000) == (2000, 40.0)
    assert profit_for(7000, None) == (None, None)
    assert profit_for(7000, 0) == (None, None)
