from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from app.saleshub.audit import record_event
from app.saleshub.modules.crm.activities import log_activity
from app.saleshub.modules.crm.models import Customer
from app.saleshub.modules.crm.permissions import (
    PermissionContext,
    check_permission,
    has_full_crm_visibility,
    visibility_filter,
)
from app.saleshub.modules.messaging.models import Message, MessageThread
from app.saleshub.modules.messaging.notifications import notify_many
from app.saleshub.utils import ServiceError, clean_str, iso

if TYPE_CHECKING:
    from sqlalchemy.orm import Query, Session
    from app.saleshub.models import User

logger = logging.getLogger(__name__)

PORTAL_TOKEN_DAYS = 30
MAX_BODY_CHARS = 5000
CHANNELS = ("email", "sms", "portal", "note")


class PortalTokenError(ServiceError):
    pass


def serialize_message(m: Message) -> dict[str, Any]:
    return {
        "id": m.id,
        "direction": m.direction,
        "channel": m.channel,
        "fromName": m.from_name,
        "body": m.body_text,
        "senderUserId": m.sender_user_id,
        "createdAt": iso(m.created_at),
    }


def serialize_thread(t: MessageThread, *, include_messages: bool = False) -> dict[str, Any]:
    d: dict[str, Any] = {
        "id": t.id,
        "customerId": t.customer_id,
        "customerName": t.customer.full_name if t.customer else None,
        "assignedToId": t.assigned_to_id,
        "managerId": t.manager_id,
        "subject": t.subject,
        "unreadForRep": t.unread_for_rep,
        "unreadForManager": t.unread_for_manager,
        "lastMessageAt": iso(t.last_message_at),
        "portalTokenExpiry": iso(t.portal_token_expiry),
        "createdAt": iso(t.created_at),
    }
    if include_messages:
        d["messages"] = [serialize_message(m) for m in t.messages]
    return d


# ---------- Visibility ----------
# Thread access follows the customer's current assignment, not the copy on the thread.
def threads_query(s: "Session", ctx: PermissionContext) -> "Query":
    q = s.query(MessageThread)
    if has_full_crm_visibility(ctx):
        return q
    return q.join(Customer, MessageThread.customer_id == Customer.id).filter(visibility_filter(ctx))


def can_view_thread(ctx: PermissionContext, thread: MessageThread) -> bool:
    if thread.customer is None:
        return has_full_crm_visibility(ctx)
    return check_permission(ctx, "view", thread.customer).allowed


def sync_thread_assignment(s: "Session", customer: Customer) -> int:
    """Point the customer's threads at its current rep and manager. Returns threads updated."""
    return (
        s.query(MessageThread)
        .filter(MessageThread.customer_id == customer.id)
        .update(
            {MessageThread.assigned_to_id: customer.assigned_to_id, MessageThread.manager_id: customer.manager_id},
            synchronize_session="fetch",
        )
    )


def _is_unread_for(ctx: PermissionContext, thread: MessageThread) -> bool:
    if thread.assigned_to_id == ctx.user_id:
        return thread.unread_for_rep
    if thread.manager_id == ctx.user_id:
        return thread.unread_for_manager
    return thread.unread_for_rep or thread.unread_for_manager


def list_threads(
    s: "Session",
    ctx: PermissionContext,
    *,
    customer_id: int | None = None,
    unread_only: bool = False,
) -> list[MessageThread]:
    q = threads_query(s, ctx)
    if customer_id:
        q = q.filter(MessageThread.customer_id == customer_id)
    threads = q.order_by(MessageThread.last_message_at.desc(), MessageThread.id.desc()).all()
    if unread_only:
        threads = [t for t in threads if _is_unread_for(ctx, t)]
    return threads


def get_thread_for(s: "Session", ctx: PermissionContext, thread_id: int) -> MessageThread:
    thread = s.get(MessageThread, thread_id)
    if thread is None:
        raise ServiceError("Thread not found", 404)
    if not can_view_thread(ctx, thread):
        raise ServiceError("You do not have access to this conversation", 403)
    return thread


# ---------- Rep side ----------
def _body(raw: Any) -> str:
    body = clean_str(raw)
    if not body:
        raise ServiceError("Message body is required")
    if len(body) > MAX_BODY_CHARS:
        raise ServiceError(f"Message must be {MAX_BODY_CHARS} characters or fewer")
    return body


def _append(
    s: "Session",
    thread: MessageThread,
    *,
    direction: str,
    channel: str,
    body: str,
    from_name: str | None,
    sender: "User | None",
    now: datetime,
) -> Message:
    m = Message(
        thread_id=thread.id,
        direction=direction,
        channel=channel,
        from_name=from_name,
        body_text=body,
        sender_user_id=sender.id if sender else None,
        created_at=now,
    )
    s.add(m)
    thread.last_message_at = now
    return m


def create_thread(
    s: "Session",
    actor: "User",
    customer: Customer,
    *,
    subject: Any,
    body: Any,
    channel: str = "email",
    now: datetime | None = None,
) -> MessageThread:
    now = now or datetime.utcnow()
    subject_s = clean_str(subject)
    if not subject_s:
        raise ServiceError("Subject is required")
    body_s = _body(body)
    if channel not in CHANNELS:
        raise ServiceError("Invalid channel")

    thread = MessageThread(
        customer_id=customer.id,
        assigned_to_id=customer.assigned_to_id or actor.id,
        manager_id=customer.manager_id,
        subject=subject_s[:255],
        portal_token=secrets.token_urlsafe(32),
        portal_token_expiry=now + timedelta(days=PORTAL_TOKEN_DAYS),
        created_at=now,
    )
    s.add(thread)
    s.flush()
    _append(s, thread, direction="outbound", channel=channel, body=body_s, from_name=actor.display_name, sender=actor, now=now)
    log_activity(
        s,
        customer,
        user_id=actor.id,
        activity_type="email" if channel == "email" else "note",
        subject=f"Message sent: {thread.subject}",
        description=body_s[:500],
        touch=True,
    )
    record_event(
        s,
        actor=actor,
        action="messaging.thread.create",
        entity_type="MessageThread",
        entity_id=thread.id,
        metadata={"customer_id": customer.id, "channel": channel},
    )
    return thread


def mark_thread_read(thread: MessageThread, user_id: int) -> None:
    if thread.assigned_to_id == user_id:
        thread.unread_for_rep = False
    if thread.manager_id == user_id:
        thread.unread_for_manager = False


def send_message(
    s: "Session",
    actor: "User",
    thread: MessageThread,
    *,
    body: Any,
    channel: str = "email",
    now: datetime | None = None,
) -> Message:
    now = now or datetime.utcnow()
    body_s = _body(body)
    if channel not in CHANNELS:
        raise ServiceError("Invalid channel")
    m = _append(s, thread, direction="outbound", channel=channel, body=body_s, from_name=actor.display_name, sender=actor, now=now)
    mark_thread_read(thread, actor.id)
    if thread.customer is not None:
        log_activity(
            s,
            thread.customer,
            user_id=actor.id,
            activity_type="email" if channel == "email" else "note",
            subject=f"Message sent: {thread.subject}",
            description=body_s[:500],
            touch=True,
        )
    s.flush()
    return m


# ---------- Public reply portal ----------
def thread_by_token(s: "Session", token: str, now: datetime | None = None) -> MessageThread:
    now = now or datetime.utcnow()
    thread = s.query(MessageThread).filter(MessageThread.portal_token == token).one_or_none()
    if thread is None:
        raise PortalTokenError("Conversation not found", 404)
    if thread.portal_token_expiry < now:
        raise PortalTokenError("This link has expired", 410)
    return thread


def portal_view(thread: MessageThread) -> dict[str, Any]:
    """What the customer sees: no internal notes, no staff ids."""
    return {
        "subject": thread.subject,
        "customerFirstName": thread.customer.first_name if thread.customer else None,
        "expiresAt": iso(thread.portal_token_expiry),
        "messages": [
            {"direction": m.direction, "fromName": m.from_name, "body": m.body_text, "createdAt": iso(m.created_at)}
            for m in thread.messages
            if m.channel != "note"
        ],
    }


def portal_reply(s: "Session", thread: MessageThread, body: Any, now: datetime | None = None) -> Message:
    now = now or datetime.utcnow()
    body_s = _body(body)
    customer = thread.customer
    from_name = customer.full_name if customer else None
    if customer is not None and customer.assigned_to_id:
        thread.assigned_to_id = customer.assigned_to_id
        thread.manager_id = customer.manager_id
    m = _append(s, thread, direction="inbound", channel="portal", body=body_s, from_name=from_name, sender=None, now=now)
    thread.unread_for_rep = True
    if thread.manager_id:
        thread.unread_for_manager = True
    s.flush()

    if customer is not None:
        log_activity(
            s,
            customer,
            user_id=None,
            activity_type="note",
            subject=f"Customer replied: {thread.subject}",
            description=body_s[:500],
        )
    notify_many(
        s,
        [thread.assigned_to_id],
        type="reply",
        title=f"New reply from {from_name or 'customer'}",
        body=body_s[:200],
        link=f"/crm/threads/{thread.id}",
    )
    record_event(
        s,
        actor=None,
        action="messaging.portal.reply",
        entity_type="MessageThread",
        entity_id=thread.id,
        metadata={"chars": len(body_s)},
    )
    logger.info("portal reply thread_id=%s", thread.id)
    return m
