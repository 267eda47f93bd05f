from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from app.saleshub.db import db_session
from app.saleshub.modules.onboarding import service
from app.saleshub.rbac import api_session_required, require_crm_roles
from app.saleshub.storage import storage_from_config
from app.saleshub.utils import iso

bp = Blueprint("onboarding", __name__)
me_bp = Blueprint("me", __name__)


@bp.post("/tokens")
@require_crm_roles("owner", "director", message="Only owners and directors can create onboarding links")
def tokens_create():
    s = db_session()
    tok = service.create_token(s, g.current_user)
    s.commit()
    base = current_app.config.get("PUBLIC_BASE_URL") or ""
    return jsonify({
        "token": tok.token,
        "url": f"{base}/join/{tok.token}",
        "expiresAt": iso(tok.expires_at),
    }), 201


@bp.post("/validate-token")
def validate_token():
    payload = request.get_json(silent=True) or {}
    tok = service.check_token(db_session(), (payload.get("token") or "").strip() or None)
    return jsonify({"valid": True, "expiresAt": iso(tok.expires_at)})


@bp.post("/complete")
def complete():
    s = db_session()
    form = service.parse_signup_form(request.form)
    w9 = request.files.get("w9")
    user = service.complete_signup(
        s,
        form,
        w9_filename=w9.filename if w9 else None,
        w9_data=w9.read() if w9 else b"",
        w9_content_type=w9.mimetype if w9 else None,
        storage=storage_from_config(current_app.config),
    )
    s.commit()
    return jsonify({"success": True, "userId": user.id, "repCode": user.rep_code}), 201


@bp.post("/payplan/accept")
@api_session_required
def payplan_accept():
    s = db_session()
    service.accept_payplan(s, g.current_user)
    s.commit()
    return jsonify({"success": True, "payplanStatus": g.current_user.payplan_status})


@bp.post("/payplan/decline")
@api_session_required
def payplan_decline():
    s = db_session()
    service.decline_payplan(s, g.current_user)
    s.commit()
    return jsonify({
        "success": True,
        "payplanStatus": g.current_user.payplan_status,
        "accountStatus": g.current_user.account_status,
    })


@me_bp.get("/me")
@api_session_required
def me():
    return jsonify({"user": service.profile(g.current_user)})
