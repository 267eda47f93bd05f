import io

import pytest
from openpyxl import Workbook

from app.saleshub.db import session_scope
from app.saleshub.models import User
from app.saleshub.modules.inventory.models import Trailer
from app.saleshub.modules.inventory.parsers import ParsedTrailer, ParseResult
from app.saleshub.modules.inventory.service import import_parsed_trailers


def _quality_workbook(rows):
    wb = Workbook()
    ws = wb.active
    ws.title = "PLAIN UNITS "
    ws.append(["VIN", "BASE", "DISC", "FINAL", "MODEL", "COLOR", "GVWR", "", "DOOR", "RAMP", "NOTES"])
    for row in rows:
        ws.append(row)
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def _upload(client, headers, data, filename="quality.xlsx", manufacturer="Quality Cargo"):
    return client.post(
        "/api/inventory/upload",
        data={"file": (io.BytesIO(data), filename), "manufacturer": manufacturer},
        content_type="multipart/form-data",
        headers=headers,
    )


def test_create_prices_from_cost(client, login):
    h = login("owner@example.com")
    r = client.post(
        "/api/inventory",
        json={"vin": "5nhuab123xy000010", "manufacturer": "Diamond Cargo", "model": "7X16TA2", "cost": 5425},
        headers=h,
    )
    assert r.status_code == 201
    t = r.json["trailer"]
    assert t["vin"] == "5NHUAB123XY000010"
    assert t["stockNumber"] == "5NHUAB123XY000010"
    assert t["salePrice"] == pytest.approx(6825)
    assert t["pricingStatus"] == "PRICED"
    assert t["status"] == "available"

    r = client.post("/api/inventory", json={"vin": "5NHUAB123XY000010", "manufacturer": "Diamond Cargo"}, headers=h)
    assert r.status_code == 409


def test_create_without_cost_asks_for_pricing(client, login):
    h = login("director@example.com")
    r = client.post("/api/inventory", json={"vin": "VIN0000000001", "manufacturer": "Panther Cargo"}, headers=h)
    assert r.status_code == 201
    assert r.json["trailer"]["salePrice"] is None
    assert r.json["trailer"]["pricingStatus"] == "ASK_FOR_PRICING"

    r = client.post("/api/inventory", json={"manufacturer": "Panther Cargo"}, headers=h)
    assert r.status_code == 400
    assert r.json["error"] == "VIN is required"


def test_salesperson_reads_but_cannot_write(client, login):
    h = login("owner@example.com")
    tid = client.post("/api/inventory", json={"vin": "VIN0000000002", "manufacturer": "Diamond Cargo"}, headers=h).json[
        "trailer"
    ]["id"]

    h = login("rep@example.com")
    assert client.get("/api/inventory").json["total"] == 1
    assert client.get(f"/api/inventory/{tid}").status_code == 200
    assert client.patch(f"/api/inventory/{tid}", json={"cost": 1}, headers=h).status_code == 403
    assert client.post("/api/inventory", json={"vin": "X", "manufacturer": "Y"}, headers=h).status_code == 403


def test_update_reprices_on_cost_change(client, login):
    h = login("owner@example.com")
    tid = client.post(
        "/api/inventory", json={"vin": "VIN0000000003", "manufacturer": "Quality Cargo", "cost": 8000}, headers=h
    ).json["trailer"]["id"]
    r = client.patch(f"/api/inventory/{tid}", json={"cost": 4000, "salePrice": None}, headers=h)
    assert r.status_code == 200
    assert r.json["trailer"]["salePrice"] == pytest.approx(5400)

    assert client.delete(f"/api/inventory/{tid}", headers=h).status_code == 200
    assert client.get(f"/api/inventory/{tid}").status_code == 404


def test_upload_quality_workbook_and_rollback(client, login):
    data = _quality_workbook(
        [
            ["5NHUAB123XY000001", 6000, -500, 5500, "7X16TA", "Black", "7000", None, "Barn", "", "extra vents"],
            ["5NHUAB123XY000002", 4000, 0, None, "6X12SA", "White", "2990", None, "Ramp", "", ""],
            [None, None, None, None, None, None, None, None, None, None, None],
        ]
    )
    h = login("owner@example.com")
    r = _upload(client, h, data)
    assert r.status_code == 200, r.json
    assert r.json["summary"] == {"total": 2, "new": 2, "updated": 0, "errors": 0}
    upload_id = r.json["report"]["id"]

    trailers = {t["vin"]: t for t in client.get("/api/inventory").json["trailers"]}
    first = trailers["5NHUAB123XY000001"]
    assert first["cost"] == 5500
    assert first["msrp"] == 6000
    assert first["salePrice"] == pytest.approx(6900)
    assert (first["width"], first["length"]) == (7.0, 16.0)
    assert "Black" in first["features"]
    assert trailers["5NHUAB123XY000002"]["cost"] == 4000

    # Same file again only updates.
    r = _upload(client, h, data)
    assert r.json["summary"]["new"] == 0
    assert r.json["summary"]["updated"] == 2

    assert len(client.get("/api/inventory/uploads").json["reports"]) == 2

    r = client.post(f"/api/inventory/uploads/{upload_id}/rollback", headers=h)
    assert r.status_code == 200
    assert r.json["details"]["deletedNew"] == 2
    assert client.get("/api/inventory").json["total"] == 0

    r = client.post(f"/api/inventory/uploads/{upload_id}/rollback", headers=h)
    assert r.status_code == 400


def test_upload_rejections(client, login):
    h = login("owner@example.com")
    data = _quality_workbook([])
    assert _upload(client, h, data, manufacturer="Acme Trailers").status_code == 400
    assert _upload(client, h, b"hello", filename="list.txt").status_code == 400
    r = _upload(client, h, data)
    assert r.status_code == 400
    assert r.json["error"] == "No trailers found in file"
    r = _upload(client, h, b"not a zip", filename="broken.xlsx")
    assert r.status_code == 400
    assert r.json["error"].startswith("Failed to parse file")


def test_only_owner_rolls_back(client, login):
    h = login("director@example.com")
    r = client.post("/api/inventory/uploads/1/rollback", headers=h)
    assert r.status_code == 403


def _parsed(vin, stock_number):
    return ParsedTrailer(
        vin=vin,
        stock_number=stock_number,
        manufacturer="Quality Cargo",
        model="7X16TA",
        year=2026,
        category="Cargo",
        width=7,
        length=16,
        height=None,
        cost=6000,
        msrp=None,
        sale_price=None,
    )


def test_import_rejects_repeated_stock_number_within_file(app, user_ids):
    result = ParseResult(
        trailers=[_parsed("DUPSTOCKVIN000001", "S-1"), _parsed("DUPSTOCKVIN000002", "S-1")],
        errors=[],
        total_rows_processed=2,
    )
    with session_scope(app) as s:
        owner = s.get(User, user_ids["owner@example.com"])
        upload = import_parsed_trailers(
            s, result, user=owner, filename="dupes.xlsx", manufacturer="Quality Cargo", file_type="xlsx"
        )
        assert upload.created_count == 1
        assert upload.new_vins == ["DUPSTOCKVIN000001"]
        assert upload.errors == [{"vin": "DUPSTOCKVIN000002", "error": "Duplicate stock number S-1 in file"}]

    with session_scope(app) as s:
        assert s.query(Trailer).filter(Trailer.stock_number == "S-1").count() == 1
