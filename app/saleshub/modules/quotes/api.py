from __future__ import annotations

from flask import Blueprint, Response, current_app, g, jsonify, request

from app.saleshub.db import db_session
from app.saleshub.modules.crm.api import crm_context_required
from app.saleshub.modules.crm.permissions import PermissionContext, has_full_crm_visibility
from app.saleshub.modules.crm.service import get_customer_for
from app.saleshub.modules.quotes import service
from app.saleshub.modules.quotes.models import Quote
from app.saleshub.storage import StorageError, storage_from_config
from app.saleshub.utils import ServiceError, parse_int, pick

bp = Blueprint("quotes", __name__)


def _visible_quote(quote_id: int) -> Quote:
    """Quotes follow the visibility of the customer they were written for."""
    s = db_session()
    quote = s.get(Quote, quote_id)
    if quote is None:
        raise ServiceError("Quote not found", 404)
    if quote.customer_id is not None:
        get_customer_for(s, g.crm_ctx, quote.customer_id, "view")
    elif not _can_view_orphaned(g.crm_ctx, quote):
        raise ServiceError("You do not have access to this quote", 403)
    return quote


def _can_view_orphaned(ctx: PermissionContext, quote: Quote) -> bool:
    # Customer deleted: the author, their manager and full-visibility users keep access.
    if has_full_crm_visibility(ctx) or quote.created_by_user_id == ctx.user_id:
        return True
    return ctx.role == "manager" and quote.created_by_user_id in ctx.team_member_ids


@bp.post("")
@crm_context_required
def quotes_create():
    s = db_session()
    payload = request.get_json(silent=True) or {}
    customer_id = parse_int(pick(payload, "customerId", "customer_id"))
    if not customer_id:
        return jsonify({"error": "customerId is required"}), 400
    customer = get_customer_for(s, g.crm_ctx, customer_id, "view")
    quote = service.create_quote(s, g.current_user, customer, payload, storage_from_config(current_app.config))
    s.commit()
    return jsonify({
        "success": True,
        "quote": service.serialize_quote(quote),
        "message": f"Quote #{quote.quote_number} created successfully",
    }), 201


@bp.get("/<int:quote_id>")
@crm_context_required
def quote_detail(quote_id: int):
    return jsonify({"quote": service.serialize_quote(_visible_quote(quote_id))})


@bp.get("/<int:quote_id>/download")
@crm_context_required
def quote_download(quote_id: int):
    quote = _visible_quote(quote_id)
    try:
        data = service.quote_html(quote, storage_from_config(current_app.config))
    except StorageError:
        current_app.logger.warning("quote document missing from storage key=%s", quote.storage_key)
        return jsonify({"error": "Quote document not found"}), 404
    return Response(
        data,
        mimetype="text/html",
        headers={"Content-Disposition": f'attachment; filename="{quote.quote_number}.html"'},
    )
