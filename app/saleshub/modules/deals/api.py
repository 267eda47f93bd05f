from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from app.saleshub.db import db_session
from app.saleshub.modules.deals import service
from app.saleshub.modules.deals.numbering import next_deal_number_preview
from app.saleshub.rbac import api_login_required, require_crm_roles
from app.saleshub.utils import ServiceError, parse_date, parse_int

bp = Blueprint("deals", __name__)


def _date_arg(name: str):
    raw = (request.args.get(name) or "").strip()
    if not raw:
        return None
    try:
        return parse_date(raw)
    except ValueError:
        raise ServiceError(f"{name} must be YYYY-MM-DD") from None


# ---------- Deals ----------
@bp.get("/deals/next-number")
@require_crm_roles("owner", "director", allow_crm_admin=True)
def deal_number_preview():
    return jsonify({"dealNumber": next_deal_number_preview(db_session())})


@bp.post("/deals/mark-sold")
@require_crm_roles(
    "owner",
    "director",
    allow_crm_admin=True,
    message="Permission denied. Only Directors, Owners, and CRM Admins can mark deals as sold.",
)
def mark_sold():
    s = db_session()
    req = service.parse_sale_request(request.get_json(silent=True) or {})
    deal = service.mark_sold(s, g.current_user, req)
    s.commit()
    return jsonify({
        "success": True,
        "deal": service.serialize_deal(deal),
        "dealNumber": deal.deal_number,
        "message": f"Deal {deal.deal_number} has been marked as sold",
    })


# ---------- Delivery records ----------
@bp.get("/delivery-records")
@api_login_required
def deliveries_list():
    records = service.list_delivery_records(
        db_session(),
        user_id=parse_int(request.args.get("userId")),
        start=_date_arg("startDate"),
        end=_date_arg("endDate"),
        limit=request.args.get("limit"),
    )
    return jsonify({"deliveryRecords": [service.serialize_delivery(r) for r in records]})


@bp.post("/delivery-records")
@api_login_required
def deliveries_create():
    s = db_session()
    record = service.create_delivery_record(s, g.current_user, request.get_json(silent=True) or {})
    s.commit()
    return jsonify({"deliveryRecord": service.serialize_delivery(record)}), 201


@bp.delete("/delivery-records")
@require_crm_roles(
    "owner",
    "director",
    "manager",
    message="Insufficient permissions. Only owners, directors, and managers can delete delivery records.",
)
def deliveries_delete():
    s = db_session()
    payload = request.get_json(silent=True) or {}
    deleted = service.delete_delivery_records(s, g.current_user, payload.get("ids"))
    s.commit()
    return jsonify({
        "success": True,
        "deletedCount": deleted,
        "message": f"Successfully deleted {deleted} delivery record(s)",
    })


@bp.get("/delivery-records/summary")
@api_login_required
def deliveries_summary():
    return jsonify(service.delivery_summary_last_30_days(db_session()))


# ---------- Reports ----------
@bp.get("/reports/my-sales")
@api_login_required
def my_sales():
    report = service.my_sales_report(
        db_session(),
        g.current_user,
        commission_rate=float(current_app.config.get("COMMISSION_RATE", 0.20)),
        start=_date_arg("startDate"),
        end=_date_arg("endDate"),
        manufacturer=(request.args.get("manufacturer") or "").strip() or None,
    )
    return jsonify(report)
