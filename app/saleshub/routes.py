from flask import Blueprint, g, render_template

from app.saleshub.db import db_session
from app.saleshub.rbac import require_permission

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    return render_template("public/index.html")


@bp.get("/dashboard")
@require_permission("crm.view")
def dashboard():
    user = g.current_user

    from app.saleshub.modules.crm.permissions import build_permission_context
    from app.saleshub.modules.crm.service import dashboard_summary

    s = db_session()
    ctx = build_permission_context(s, user)
    summary = dashboard_summary(s, ctx) if ctx else None
    return render_template("dashboard/index.html", user=user, ctx=ctx, summary=summary)


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """Liveness probe. No DB access."""
    return "ok", 200
