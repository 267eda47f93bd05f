from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from app.saleshub.db import db_session
from app.saleshub.modules.crm.api import crm_context_required
from app.saleshub.modules.crm.service import get_customer_for
from app.saleshub.modules.messaging import service
from app.saleshub.modules.messaging.models import Notification
from app.saleshub.modules.messaging.notifications import mark_read, unread_count
from app.saleshub.rbac import api_login_required
from app.saleshub.security import SlidingWindowLimiter
from app.saleshub.utils import iso, parse_int, pick

threads_bp = Blueprint("threads", __name__)
portal_bp = Blueprint("reply_portal", __name__)
notifications_bp = Blueprint("notifications", __name__)

_PORTAL_RATE_LIMIT = 5
_PORTAL_RATE_WINDOW = 60  # seconds
portal_limiter = SlidingWindowLimiter(_PORTAL_RATE_LIMIT, _PORTAL_RATE_WINDOW)


# ---------- Threads (rep side) ----------
@threads_bp.get("")
@crm_context_required
def threads_list():
    threads = service.list_threads(
        db_session(),
        g.crm_ctx,
        customer_id=parse_int(request.args.get("customerId")),
        unread_only=(request.args.get("unread") or "").lower() in ("1", "true", "yes"),
    )
    return jsonify({"threads": [service.serialize_thread(t) for t in threads]})


@threads_bp.post("")
@crm_context_required
def threads_create():
    s = db_session()
    payload = request.get_json(silent=True) or {}
    customer_id = parse_int(pick(payload, "customerId", "customer_id"))
    if not customer_id:
        return jsonify({"error": "customerId is required"}), 400
    customer = get_customer_for(s, g.crm_ctx, customer_id, "view")
    thread = service.create_thread(
        s,
        g.current_user,
        customer,
        subject=pick(payload, "subject"),
        body=pick(payload, "body", "message"),
        channel=(pick(payload, "channel") or "email").strip().lower(),
    )
    s.commit()
    return jsonify({
        "thread": service.serialize_thread(thread, include_messages=True),
        "portalUrl": f"/reply/{thread.portal_token}",
    }), 201


@threads_bp.get("/<int:thread_id>")
@crm_context_required
def thread_detail(thread_id: int):
    s = db_session()
    thread = service.get_thread_for(s, g.crm_ctx, thread_id)
    service.mark_thread_read(thread, g.current_user.id)
    s.commit()
    return jsonify({"thread": service.serialize_thread(thread, include_messages=True)})


@threads_bp.post("/<int:thread_id>/messages")
@crm_context_required
def thread_send(thread_id: int):
    s = db_session()
    thread = service.get_thread_for(s, g.crm_ctx, thread_id)
    payload = request.get_json(silent=True) or {}
    message = service.send_message(
        s,
        g.current_user,
        thread,
        body=pick(payload, "body", "message"),
        channel=(pick(payload, "channel") or "email").strip().lower(),
    )
    s.commit()
    return jsonify({"message": service.serialize_message(message)}), 201


# ---------- Public reply portal ----------
@portal_bp.get("/<token>")
def portal_get(token: str):
    thread = service.thread_by_token(db_session(), token)
    return jsonify(service.portal_view(thread))


@portal_bp.post("/<token>")
def portal_post(token: str):
    ip = request.remote_addr or "unknown"
    if portal_limiter.is_limited(ip):
        return jsonify({"error": "Too many messages. Please wait a minute and try again."}), 429
    portal_limiter.hit(ip)

    s = db_session()
    thread = service.thread_by_token(s, token)
    payload = request.get_json(silent=True) or {}
    service.portal_reply(s, thread, pick(payload, "body", "message"))
    s.commit()
    return jsonify({"success": True}), 201


# ---------- In-app notifications ----------
def _serialize_notification(n: Notification) -> dict:
    return {
        "id": n.id,
        "type": n.type,
        "title": n.title,
        "body": n.body,
        "link": n.link,
        "readAt": iso(n.read_at),
        "createdAt": iso(n.created_at),
    }


@notifications_bp.get("")
@api_login_required
def notifications_list():
    s = db_session()
    user_id = g.current_user.id
    limit = min(max(parse_int(request.args.get("limit")) or 50, 1), 200)
    items = (
        s.query(Notification)
        .filter(Notification.user_id == user_id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(limit)
        .all()
    )
    return jsonify({"notifications": [_serialize_notification(n) for n in items], "unreadCount": unread_count(s, user_id)})


@notifications_bp.post("/mark-read")
@api_login_required
def notifications_mark_read():
    s = db_session()
    payload = request.get_json(silent=True) or {}
    ids = [i for i in (parse_int(x) for x in (payload.get("ids") or [])) if i is not None]
    updated = mark_read(s, g.current_user.id, ids, all_=bool(payload.get("all")))
    s.commit()
    return jsonify({"updated": updated, "unreadCount": unread_count(s, g.current_user.id)})
