import logging
import os
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, g, jsonify, render_template, request, session
from sqlalchemy import inspect as sa_inspect

from app.saleshub.config import load_config
from app.saleshub.db import init_db, teardown_db_session
from app.saleshub.routes import bp as routes_bp
from app.saleshub.auth import bp as auth_bp, load_current_user
from app.saleshub.admin import bp as admin_bp
from app.saleshub.cron import bp as cron_bp
from app.saleshub.modules.crm.api import bp as crm_bp
from app.saleshub.modules.leads.api import bp as leads_bp
from app.saleshub.modules.inventory.api import bp as inventory_bp
from app.saleshub.modules.finance.api import bp as finance_bp
from app.saleshub.modules.deals.api import bp as deals_bp
from app.saleshub.modules.quotes.api import bp as quotes_bp
from app.saleshub.modules.messaging.api import notifications_bp, portal_bp, threads_bp
from app.saleshub.modules.onboarding.api import bp as onboarding_bp, me_bp
from app.saleshub.utils import ServiceError

logger = logging.getLogger(__name__)

# Endpoints that are called without a browser session (website forms, the
# customer reply portal, rep signup, schedulers) and so carry no CSRF token.
CSRF_EXEMPT_ENDPOINTS = frozenset(
    {
        "leads.prequalification",
        "leads.inbound",
        "reply_portal.portal_post",
        "onboarding.validate_token",
        "onboarding.complete",
        "cron.run",
    }
)

REQUIRED_TABLES = (
    "users",
    "customers",
    "activities",
    "trailers",
    "inventory_uploads",
    "deals",
    "deal_counters",
    "delivery_records",
    "quotes",
    "quote_counters",
    "message_threads",
    "notifications",
    "onboarding_tokens",
)


def _wants_json() -> bool:
    return request.path.startswith("/api/")


def create_app(config_overrides: dict | None = None) -> Flask:
    load_dotenv()
    app = Flask(__name__, template_folder="templates", static_folder="static")
    app.config.from_mapping(load_config())
    if config_overrides:
        app.config.update(config_overrides)
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    from app.saleshub.security import ensure_csrf_token, validate_csrf

    @app.context_processor
    def _inject_csrf() -> dict:
        return {"csrf_token": ensure_csrf_token()}

    @app.template_filter("dateformat")
    def _dateformat_filter(value, format: str = "%Y-%m-%d") -> str:
        if value is None:
            return "-"
        if hasattr(value, "strftime"):
            return value.strftime(format)
        return str(value)

    @app.template_filter("money")
    def _money_filter(value) -> str:
        if value is None:
            return "-"
        return f"${float(value):,.2f}"

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(("/static/", "/health", "/healthz")):
            return None
        ensure_csrf_token()
        session.permanent = True
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            endpoint = request.endpoint or ""
            if endpoint.startswith("auth.") or endpoint in CSRF_EXEMPT_ENDPOINTS:
                return None
            if not validate_csrf(request):
                if _wants_json():
                    return jsonify({"error": "CSRF token missing or invalid."}), 400
                return render_template("errors/400.html", message="CSRF token missing or invalid."), 400

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
        if not app.config.get("SALESHUB_API_KEY"):
            raise RuntimeError("SALESHUB_API_KEY must be set in production (website lead intake).")
        if not app.config.get("CRON_SECRET"):
            app.logger.warning("CRON_SECRET is not set; /api/cron/* will reject every call.")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = [
            key
            for key in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY")
            if not app.config.get(key)
        ]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(admin_bp, url_prefix="/api/admin")
    app.register_blueprint(cron_bp, url_prefix="/api/cron")
    app.register_blueprint(crm_bp, url_prefix="/api/crm")
    app.register_blueprint(threads_bp, url_prefix="/api/crm/threads")
    app.register_blueprint(leads_bp, url_prefix="/api/leads")
    app.register_blueprint(inventory_bp, url_prefix="/api/inventory")
    app.register_blueprint(finance_bp, url_prefix="/api/finance")
    app.register_blueprint(deals_bp, url_prefix="/api")
    app.register_blueprint(quotes_bp, url_prefix="/api/quotes")
    app.register_blueprint(portal_bp, url_prefix="/api/reply-portal")
    app.register_blueprint(notifications_bp, url_prefix="/api/notifications")
    app.register_blueprint(onboarding_bp, url_prefix="/api/onboarding")
    app.register_blueprint(me_bp, url_prefix="/api")

    def _load_user_wrapper():
        if request.path.startswith(("/static/", "/health", "/healthz")):
            g.current_user = None
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)
    app.teardown_appcontext(teardown_db_session)

    # Detect drift between the models and the database schema. Checked on the
    # first request (and re-checked while missing) so a migration run without
    # a restart clears the guard.
    app.config.setdefault("_schema_health_ok", False)
    app.config.setdefault("_schema_health_missing", [])

    def _run_schema_health_check() -> None:
        engine = app.extensions.get("sqlalchemy_engine")
        if engine is None:
            raise RuntimeError("sqlalchemy_engine not initialized")
        insp = sa_inspect(engine)
        missing = [t for t in REQUIRED_TABLES if not insp.has_table(t)]
        if insp.has_table("customers"):
            cols = {c["name"] for c in insp.get_columns("customers")}
            for col in ("locked_for_review", "import_row_hash"):
                if col not in cols:
                    missing.append(f"customers.{col}")
        app.config["_schema_health_missing"] = missing
        app.config["_schema_health_ok"] = not missing
        if missing:
            app.logger.error("DB schema out of date; run `alembic upgrade head`. Missing: %s", ", ".join(missing))

    @app.before_request
    def _schema_health_guardrail():  # type: ignore[no-redef]
        if app.config.get("_schema_health_ok"):
            return None
        if request.path.startswith(("/static/", "/health", "/healthz")):
            return None
        _run_schema_health_check()
        if app.config.get("_schema_health_ok"):
            return None
        if _wants_json():
            return jsonify({
                "error": "Database schema out of date",
                "missing": app.config.get("_schema_health_missing") or [],
            }), 503
        return None

    @app.errorhandler(ServiceError)
    def _service_error(e: ServiceError):  # type: ignore[no-redef]
        if e.status >= 500:
            app.logger.error("ServiceError %s on %s: %s", e.status, request.path, e.message)
        return jsonify({"error": e.message}), e.status

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        rid = getattr(g, "request_id", None)
        app.logger.exception("Unhandled 500 (request_id=%s)", rid)
        if _wants_json():
            return jsonify({"error": "Internal server error", "requestId": rid}), 500
        return render_template("errors/500.html"), 500

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        if _wants_json():
            return jsonify({"error": "Not found"}), 404
        return render_template("errors/404.html"), 404

    @app.errorhandler(405)
    def _err_405(e):  # type: ignore[no-redef]
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(403)
    def _err_403(e):  # type: ignore[no-redef]
        missing = getattr(g, "missing_permission", None)
        if missing:
            app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
        if _wants_json():
            return jsonify({"error": "Forbidden"}), 403
        return render_template("errors/403.html", missing_permission=missing), 403

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        limit_mb = int(app.config.get("MAX_CONTENT_LENGTH") or 0) // (1024 * 1024)
        return jsonify({"error": f"File too large. Maximum size is {limit_mb}MB."}), 413

    logger.info("create_app() complete; app ready to serve")
    return app
