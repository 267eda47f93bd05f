from __future__ import annotations

from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import Blueprint, Response, g, jsonify, request

from app.saleshub.db import db_session
from app.saleshub.models import User
from app.saleshub.modules.crm import service
from app.saleshub.modules.crm.dedup import find_duplicates, merge_duplicates
from app.saleshub.modules.crm.models import Activity, Customer
from app.saleshub.modules.crm.permissions import (
    PermissionContext,
    build_permission_context,
    can_access_crm_settings,
    check_permission,
    has_full_crm_visibility,
)
from app.saleshub.modules.crm.scoring import recalculate_scores, suggest_next_action
from app.saleshub.rbac import api_login_required
from app.saleshub.utils import parse_int, pick, require_int_list

bp = Blueprint("crm", __name__)


def crm_context_required(fn: Callable[..., Any]) -> Callable[..., Any]:
    """Resolve g.crm_ctx for the logged-in user; users without a CRM role get 403."""

    @api_login_required
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        ctx = build_permission_context(db_session(), g.current_user)
        if ctx is None:
            g.missing_permission = "crm.role"
            return jsonify({"error": "No CRM access"}), 403
        g.crm_ctx = ctx
        return fn(*args, **kwargs)

    return wrapped


def _ctx() -> PermissionContext:
    return g.crm_ctx


def _user() -> User:
    return g.current_user


# ---------- Customers ----------
@bp.get("/customers")
@crm_context_required
def customers_list():
    s = db_session()
    q = service.visible_customers_query(
        s,
        _ctx(),
        search=(request.args.get("search") or request.args.get("q") or "").strip() or None,
        status=(request.args.get("status") or "").strip() or None,
        temperature=(request.args.get("temperature") or "").strip() or None,
        priority=(request.args.get("priority") or "").strip() or None,
        assigned_to_id=parse_int(request.args.get("assignedTo")),
    )
    limit = min(max(parse_int(request.args.get("limit")) or 200, 1), 500)
    offset = max(parse_int(request.args.get("offset")) or 0, 0)
    total = q.count()
    rows = service.ordered(q).offset(offset).limit(limit).all()
    ctx = _ctx()
    return jsonify({
        "customers": [
            service.serialize_customer(c, include_notes=check_permission(ctx, "view_all_notes", c).allowed)
            for c in rows
        ],
        "total": total,
    })


@bp.post("/customers")
@crm_context_required
def customers_create():
    s = db_session()
    payload = request.get_json(silent=True) or {}
    customer = service.create_customer(s, _ctx(), _user(), payload)
    s.commit()
    return jsonify({"customer": service.serialize_customer(customer)}), 201


@bp.get("/customers/<int:customer_id>")
@crm_context_required
def customer_detail(customer_id: int):
    s = db_session()
    ctx = _ctx()
    customer = service.get_customer_for(s, ctx, customer_id, "view")
    activities = (
        s.query(Activity)
        .filter(Activity.customer_id == customer.id)
        .order_by(Activity.created_at.desc())
        .limit(50)
        .all()
    )
    include_notes = check_permission(ctx, "view_all_notes", customer).allowed
    return jsonify({
        "customer": service.serialize_customer(customer, include_notes=include_notes),
        "activities": [service.serialize_activity(a) for a in activities],
        "nextAction": suggest_next_action(customer),
    })


@bp.patch("/customers/<int:customer_id>")
@crm_context_required
def customer_update(customer_id: int):
    s = db_session()
    customer = s.get(Customer, customer_id)
    if not customer:
        return jsonify({"error": "Customer not found"}), 404
    payload = request.get_json(silent=True) or {}
    service.update_customer(s, _ctx(), _user(), customer, payload)
    s.commit()
    return jsonify({"customer": service.serialize_customer(customer)})


@bp.delete("/customers/<int:customer_id>")
@crm_context_required
def customer_delete(customer_id: int):
    s = db_session()
    customer = s.get(Customer, customer_id)
    if not customer:
        return jsonify({"error": "Customer not found"}), 404
    service.delete_customer(s, _ctx(), _user(), customer)
    s.commit()
    return jsonify({"success": True})


@bp.patch("/customers/<int:customer_id>/status")
@crm_context_required
def customer_status(customer_id: int):
    s = db_session()
    customer = s.get(Customer, customer_id)
    if not customer:
        return jsonify({"error": "Customer not found"}), 404
    payload = request.get_json(silent=True) or {}
    status = (pick(payload, "status") or "").strip()
    service.change_status(
        s,
        _ctx(),
        _user(),
        customer,
        status,
        lost_reason=pick(payload, "lostReason", "lost_reason"),
        lost_reason_notes=pick(payload, "lostReasonNotes", "lost_reason_notes"),
    )
    s.commit()
    return jsonify({"customer": service.serialize_customer(customer)})


# ---------- Pipeline / activities ----------
@bp.get("/pipeline")
@crm_context_required
def pipeline():
    s = db_session()
    search = (request.args.get("search") or "").strip() or None
    return jsonify({"columns": service.pipeline(s, _ctx(), search)})


@bp.post("/activities")
@crm_context_required
def activities_create():
    s = db_session()
    payload = request.get_json(silent=True) or {}
    activity = service.add_activity(s, _ctx(), _user(), payload)
    s.commit()
    return jsonify({"activity": service.serialize_activity(activity)}), 201


# ---------- Bulk actions ----------
def _ids(payload: dict) -> list:
    ids = pick(payload, "customerIds", "customer_ids", "ids")
    return ids if isinstance(ids, list) else []


@bp.post("/bulk-actions/reassign")
@crm_context_required
def bulk_reassign():
    s = db_session()
    payload = request.get_json(silent=True) or {}
    new_user_id = parse_int(pick(payload, "assignedToId", "assigned_to_id"))
    if new_user_id is None:
        return jsonify({"error": "assignedToId is required"}), 400
    count = service.bulk_reassign(s, _ctx(), _user(), _ids(payload), new_user_id)
    s.commit()
    return jsonify({"success": True, "updated": count})


@bp.post("/bulk-actions/status")
@crm_context_required
def bulk_status():
    s = db_session()
    payload = request.get_json(silent=True) or {}
    count = service.bulk_status(s, _ctx(), _user(), _ids(payload), (pick(payload, "status") or "").strip())
    s.commit()
    return jsonify({"success": True, "updated": count})


@bp.post("/bulk-actions/tag")
@crm_context_required
def bulk_tag():
    s = db_session()
    payload = request.get_json(silent=True) or {}
    tags = pick(payload, "tags") or []
    mode = (pick(payload, "mode") or "add").strip()
    count = service.bulk_tag(s, _ctx(), _user(), _ids(payload), tags if isinstance(tags, list) else [], mode)
    s.commit()
    return jsonify({"success": True, "updated": count})


@bp.post("/bulk-actions/delete")
@crm_context_required
def bulk_delete():
    s = db_session()
    payload = request.get_json(silent=True) or {}
    count = service.bulk_delete(s, _ctx(), _user(), _ids(payload))
    s.commit()
    return jsonify({"success": True, "deleted": count})


@bp.post("/bulk-actions/export")
@crm_context_required
def bulk_export():
    s = db_session()
    payload = request.get_json(silent=True) or {}
    body = service.export_customers_csv(s, _ctx(), _user(), _ids(payload) or None)
    s.commit()
    return Response(
        body,
        mimetype="text/csv",
        headers={"Content-Disposition": "attachment; filename=customers.csv"},
    )


# ---------- Duplicates ----------
@bp.get("/duplicates")
@crm_context_required
def duplicates_find():
    if not has_full_crm_visibility(_ctx()):
        return jsonify({"error": "Only owners, directors and CRM admins can review duplicates"}), 403
    groups = find_duplicates(db_session())
    return jsonify({"groups": [g_.to_dict() for g_ in groups], "count": len(groups)})


@bp.post("/duplicates/merge")
@crm_context_required
def duplicates_merge():
    if not has_full_crm_visibility(_ctx()):
        return jsonify({"error": "Only owners, directors and CRM admins can merge duplicates"}), 403
    s = db_session()
    payload = request.get_json(silent=True) or {}
    master_id = parse_int(pick(payload, "masterId", "master_id"))
    dup_ids = pick(payload, "duplicateIds", "duplicate_ids")
    if master_id is None or not isinstance(dup_ids, list) or not dup_ids:
        return jsonify({"error": "masterId and duplicateIds are required"}), 400
    merged = merge_duplicates(s, master_id, require_int_list(dup_ids, "duplicateIds"), _user())
    s.commit()
    return jsonify({"success": True, "merged": merged})


# ---------- Scores / dashboard / settings ----------
@bp.post("/recalculate-scores")
@crm_context_required
def recalc_scores():
    s = db_session()
    rows = service.visible_customers_query(s, _ctx()).all()
    results = recalculate_scores(rows)
    s.commit()
    return jsonify({"success": True, "updated": len(results)})


@bp.get("/dashboard")
@crm_context_required
def dashboard():
    return jsonify(service.dashboard_summary(db_session(), _ctx()))


@bp.get("/settings")
@crm_context_required
def settings_get():
    can_view, can_edit = can_access_crm_settings(_ctx())
    if not can_view:
        return jsonify({"error": "You do not have access to CRM settings"}), 403
    return jsonify({"settings": service.crm_settings(db_session()), "canEdit": can_edit})


@bp.put("/settings")
@crm_context_required
def settings_put():
    _can_view, can_edit = can_access_crm_settings(_ctx())
    if not can_edit:
        return jsonify({"error": "You do not have permission to edit CRM settings"}), 403
    s = db_session()
    settings = service.update_crm_settings(s, _user(), request.get_json(silent=True) or {})
    s.commit()
    return jsonify({"settings": settings, "canEdit": True})

