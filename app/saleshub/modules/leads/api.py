from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from app.saleshub.db import db_session
from app.saleshub.modules.crm.api import crm_context_required
from app.saleshub.modules.crm.models import Customer
from app.saleshub.modules.crm.permissions import build_permission_context, can_manage_imports
from app.saleshub.modules.crm.service import auto_follow_ups_enabled
from app.saleshub.modules.leads import review
from app.saleshub.modules.leads.csv_import import import_leads_csv
from app.saleshub.modules.leads.intake import (
    parse_lead_input,
    resolve_rep,
    submit_inbound,
    submit_prequalification,
    validate_lead_input,
)
from app.saleshub.rbac import require_crm_roles
from app.saleshub.security import check_api_key
from app.saleshub.utils import clean_str, parse_int, pick

bp = Blueprint("leads", __name__)


def _api_key_ok() -> bool:
    return check_api_key(
        request,
        current_app.config.get("SALESHUB_API_KEY"),
        env=current_app.config.get("ENV"),
    )


def _unauthorized():
    current_app.logger.warning("Lead intake rejected: bad API key from %s", request.remote_addr)
    return jsonify({"success": False, "message": "Unauthorized"}), 401


def _validated_lead():
    lead = parse_lead_input(request.get_json(silent=True) or {})
    errs = validate_lead_input(lead)
    if errs:
        return lead, (jsonify({"success": False, "message": errs[0].message}), 400)
    return lead, None


@bp.post("/prequalification")
def prequalification():
    if not _api_key_ok():
        return _unauthorized()
    lead, err = _validated_lead()
    if err:
        return err
    s = db_session()
    result = submit_prequalification(s, lead)
    s.commit()
    return jsonify({"success": True, "leadId": result.customer.id, "message": result.message})


@bp.post("/inbound")
def inbound():
    if not _api_key_ok():
        return _unauthorized()
    lead, err = _validated_lead()
    if err:
        return err
    s = db_session()
    result = submit_inbound(s, lead, auto_follow_ups=auto_follow_ups_enabled(s))
    s.commit()
    return jsonify({
        "success": True,
        "leadId": result.customer.id,
        "created": result.created,
        "lockedForReview": result.locked,
        "message": result.message,
    }), (201 if result.created else 200)


@bp.get("/validate-rep/<code>")
def validate_rep(code: str):
    rep = resolve_rep(db_session(), code)
    if rep is None:
        return jsonify({"valid": False}), 404
    return jsonify({"valid": True, "repCode": rep.rep_code, "name": rep.display_name})


@bp.get("/duplicates")
@require_crm_roles("owner", "director", "manager", message="Only owners, directors and managers can review duplicates")
def duplicates_list():
    s = db_session()
    team_ids = None
    if g.current_user.crm_role == "manager":
        ctx = build_permission_context(s, g.current_user)
        team_ids = ctx.team_member_ids if ctx else frozenset({g.current_user.id})
    leads = review.pending_reviews(s, team_ids)
    return jsonify({"duplicates": leads, "count": len(leads)})


@bp.post("/duplicates")
@require_crm_roles("owner", "director", "manager", message="Only owners, directors and managers can review duplicates")
def duplicates_resolve():
    payload = request.get_json(silent=True) or {}
    lead_id = parse_int(pick(payload, "leadId", "lead_id"))
    decision = clean_str(pick(payload, "decision"))
    if lead_id is None or not decision:
        return jsonify({"error": "leadId and decision are required"}), 400

    s = db_session()
    if g.current_user.crm_role == "manager":
        lead = s.get(Customer, lead_id)
        ctx = build_permission_context(s, g.current_user)
        if lead is not None and ctx is not None and lead.assigned_to_id not in ctx.team_member_ids:
            return jsonify({"error": "Lead is not on your team"}), 403

    message = review.resolve_duplicate(s, g.current_user, lead_id, decision, clean_str(pick(payload, "notes")))
    s.commit()
    return jsonify({"success": True, "message": message})


@bp.post("/import")
@crm_context_required
def import_csv():
    if not can_manage_imports(g.crm_ctx):
        return jsonify({"error": "Only owners, directors and CRM admins can import leads"}), 403
    f = request.files.get("file")
    if f is None or not f.filename:
        return jsonify({"error": "CSV file is required"}), 400
    if not f.filename.lower().endswith(".csv"):
        return jsonify({"error": "Only .csv files are supported"}), 400

    s = db_session()
    report = import_leads_csv(s, g.current_user, f.read())
    s.commit()
    return jsonify({"success": True, **report.to_dict()})
