from __future__ import annotations

import csv
import io
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import case, func

from app.saleshub.audit import record_event
from app.saleshub.models import User
from app.saleshub.modules.crm.activities import log_activity
from app.saleshub.modules.crm.follow_ups import STALE_AFTER_DAYS, create_follow_up_tasks, on_status_change
from app.saleshub.modules.crm.models import CUSTOMER_STATUSES, Activity, CrmSetting, Customer
from app.saleshub.modules.crm.permissions import (
    PermissionContext,
    apply_visibility,
    can_reassign_to,
    check_permission,
    has_full_crm_visibility,
)
from app.saleshub.modules.crm.scoring import apply_score, response_time_minutes, suggest_next_action
from app.saleshub.modules.messaging.notifications import notify
from app.saleshub.modules.messaging.service import sync_thread_assignment
from app.saleshub.utils import (
    ServiceError,
    ValidationError,
    clean_str,
    iso,
    normalize_email,
    normalize_phone,
    pick,
    require_int,
    require_int_list,
)

if TYPE_CHECKING:
    from sqlalchemy.orm import Query, Session

logger = logging.getLogger(__name__)

LOST_REASONS = ("price", "financing", "competitor", "timing", "no_response", "other")
FINANCING_TYPES = ("cash", "finance", "rto")

PRIORITY_RANK = case(
    (Customer.priority == "urgent", 4),
    (Customer.priority == "high", 3),
    (Customer.priority == "medium", 2),
    (Customer.priority == "low", 1),
    else_=0,
)

DEFAULT_SETTINGS: dict[str, str] = {
    "stale_lead_days": str(STALE_AFTER_DAYS),
    "auto_follow_ups": "true",
}

EXPORT_COLUMNS = (
    "id",
    "first_name",
    "last_name",
    "email",
    "phone",
    "company_name",
    "status",
    "lead_score",
    "temperature",
    "priority",
    "assigned_to",
    "source",
    "created_at",
)


# ---------- Serialization ----------
def serialize_customer(c: Customer, *, include_notes: bool = True) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": c.id,
        "firstName": c.first_name,
        "lastName": c.last_name,
        "fullName": c.full_name,
        "email": c.email,
        "phone": c.phone,
        "companyName": c.company_name,
        "address": c.address,
        "city": c.city,
        "state": c.state,
        "zipCode": c.zip_code,
        "source": c.source,
        "sourcePage": c.source_page,
        "status": c.status,
        "assignedToId": c.assigned_to_id,
        "assignedToName": c.assigned_to.display_name if c.assigned_to else None,
        "managerId": c.manager_id,
        "repCode": c.rep_code,
        "assignmentMethod": c.assignment_method,
        "trailerSize": c.trailer_size,
        "trailerType": c.trailer_type,
        "stockNumber": c.stock_number,
        "financingType": c.financing_type,
        "vin": c.vin,
        "applied": c.applied,
        "creditRange": c.credit_range,
        "recommendedPath": c.recommended_path,
        "leadScore": c.lead_score,
        "temperature": c.temperature,
        "priority": c.priority,
        "daysInStage": c.days_in_stage,
        "responseTimeMinutes": c.response_time_minutes,
        "lastActivityAt": iso(c.last_activity_at),
        "lastContactedAt": iso(c.last_contacted_at),
        "tags": list(c.tags or []),
        "lostReason": c.lost_reason,
        "lostReasonNotes": c.lost_reason_notes,
        "lockedForReview": c.locked_for_review,
        "duplicateStatus": c.duplicate_status,
        "createdAt": iso(c.created_at),
        "updatedAt": iso(c.updated_at),
    }
    if include_notes:
        data["notes"] = c.notes
        data["managerNotes"] = c.manager_notes
        data["repNotes"] = c.rep_notes
    return data


def serialize_activity(a: Activity) -> dict[str, Any]:
    return {
        "id": a.id,
        "customerId": a.customer_id,
        "userId": a.user_id,
        "type": a.activity_type,
        "subject": a.subject,
        "description": a.description,
        "status": a.status,
        "priority": a.priority,
        "dueDate": iso(a.due_date),
        "completedAt": iso(a.completed_at),
        "createdAt": iso(a.created_at),
    }


# ---------- Queries ----------
def visible_customers_query(
    s: "Session",
    ctx: PermissionContext,
    *,
    search: str | None = None,
    status: str | None = None,
    temperature: str | None = None,
    priority: str | None = None,
    assigned_to_id: int | None = None,
) -> "Query":
    q = apply_visibility(s.query(Customer), ctx, search)
    if status:
        q = q.filter(Customer.status == status)
    if temperature:
        q = q.filter(Customer.temperature == temperature)
    if priority:
        q = q.filter(Customer.priority == priority)
    if assigned_to_id is not None:
        q = q.filter(Customer.assigned_to_id == assigned_to_id)
    return q


def ordered(q: "Query") -> "Query":
    return q.order_by(
        PRIORITY_RANK.desc(),
        Customer.lead_score.desc(),
        Customer.last_activity_at.is_(None),
        Customer.last_activity_at.desc(),
        Customer.created_at.desc(),
    )


def get_customer_for(s: "Session", ctx: PermissionContext, customer_id: int, action: str = "view") -> Customer:
    """Load a customer and enforce `action` on it (404 when missing, 403 with the reason otherwise)."""
    customer = s.get(Customer, customer_id)
    if customer is None:
        raise ServiceError("Customer not found", 404)
    check = check_permission(ctx, action, customer)
    if not check.allowed:
        raise ServiceError(check.reason or "Permission denied", 403)
    return customer


# ---------- Validation ----------
def validate_customer_payload(payload: dict[str, Any], *, partial: bool = False) -> list[ValidationError]:
    errs: list[ValidationError] = []
    first = clean_str(pick(payload, "firstName", "first_name"))
    last = clean_str(pick(payload, "lastName", "last_name"))
    email = normalize_email(pick(payload, "email"))
    phone = normalize_phone(pick(payload, "phone"))

    if not partial:
        if not first or not last:
            errs.append(ValidationError("name", "First name and last name are required"))
        if not email and not phone:
            errs.append(ValidationError("contact", "Either email or phone is required"))

    if email and "@" not in email:
        errs.append(ValidationError("email", "Email address is invalid"))

    status = clean_str(pick(payload, "status"))
    if status and status not in CUSTOMER_STATUSES:
        errs.append(ValidationError("status", f"Invalid status. Must be one of: {', '.join(CUSTOMER_STATUSES)}"))

    financing = clean_str(pick(payload, "financingType", "financing_type"))
    if financing and financing not in FINANCING_TYPES:
        errs.append(ValidationError("financingType", f"Financing type must be one of: {', '.join(FINANCING_TYPES)}"))

    lost_reason = clean_str(pick(payload, "lostReason", "lost_reason"))
    if lost_reason:
        if lost_reason not in LOST_REASONS:
            errs.append(ValidationError("lostReason", f"Lost reason must be one of: {', '.join(LOST_REASONS)}"))
        elif lost_reason == "other" and not clean_str(pick(payload, "lostReasonNotes", "lost_reason_notes")):
            errs.append(ValidationError("lostReasonNotes", "Please describe the lost reason"))
    return errs


# Payload key -> (model attribute, normaliser)
_EDITABLE_FIELDS: dict[str, tuple[tuple[str, ...], str, Any]] = {
    "first_name": (("firstName", "first_name"), "first_name", clean_str),
    "last_name": (("lastName", "last_name"), "last_name", clean_str),
    "email": (("email",), "email", normalize_email),
    "phone": (("phone",), "phone", normalize_phone),
    "company_name": (("companyName", "company_name"), "company_name", clean_str),
    "address": (("address",), "address", clean_str),
    "city": (("city",), "city", clean_str),
    "state": (("state",), "state", clean_str),
    "zip_code": (("zipCode", "zip_code", "zip"), "zip_code", clean_str),
    "source": (("source",), "source", clean_str),
    "trailer_size": (("trailerSize", "trailer_size"), "trailer_size", clean_str),
    "trailer_type": (("trailerType", "trailer_type"), "trailer_type", clean_str),
    "stock_number": (("stockNumber", "stock_number"), "stock_number", clean_str),
    "financing_type": (("financingType", "financing_type"), "financing_type", clean_str),
    "vin": (("vin",), "vin", lambda v: (clean_str(v) or "").upper() or None),
    "credit_range": (("creditRange", "credit_range"), "credit_range", clean_str),
    "recommended_path": (("recommendedPath", "recommended_path"), "recommended_path", clean_str),
    "lost_reason": (("lostReason", "lost_reason"), "lost_reason", clean_str),
    "lost_reason_notes": (("lostReasonNotes", "lost_reason_notes"), "lost_reason_notes", clean_str),
}
_NOTE_FIELDS: dict[str, tuple[str, ...]] = {
    "notes": ("notes",),
    "manager_notes": ("managerNotes", "manager_notes"),
    "rep_notes": ("repNotes", "rep_notes"),
}


def _check_assignee(s: "Session", ctx: PermissionContext, user_id: int) -> User:
    user = s.get(User, user_id)
    if user is None or not user.is_active:
        raise ServiceError("Assigned user not found", 400)
    if has_full_crm_visibility(ctx):
        return user
    if ctx.role == "manager":
        if user_id not in ctx.team_member_ids:
            raise ServiceError("You can only reassign leads to members of your team", 403)
        return user
    if user_id != ctx.user_id:
        raise ServiceError("Salespeople cannot reassign leads", 403)
    return user


def _assign(customer: Customer, user: User | None, method: str) -> None:
    customer.assigned_to_id = user.id if user else None
    customer.manager_id = user.manager_id if user else None
    customer.rep_code = user.rep_code if user else None
    customer.assignment_method = method


# ---------- Mutations ----------
def create_customer(s: "Session", ctx: PermissionContext, actor: User, payload: dict[str, Any]) -> Customer:
    check = check_permission(ctx, "create")
    if not check.allowed:
        raise ServiceError(check.reason or "Permission denied", 403)

    errs = validate_customer_payload(payload)
    if errs:
        raise ServiceError(errs[0].message, 400)

    email = normalize_email(pick(payload, "email"))
    if email and s.query(Customer.id).filter(Customer.email == email).first():
        raise ServiceError("Customer with this email already exists", 409)

    raw_assignee = pick(payload, "assignedToId", "assigned_to_id")
    if raw_assignee not in (None, ""):
        assignee = _check_assignee(s, ctx, require_int(raw_assignee, "assignedToId"))
    else:
        assignee = actor

    now = datetime.utcnow()
    customer = Customer(status="new", applied=False, tags=[], created_at=now, updated_at=now)
    for keys, attr, norm in _EDITABLE_FIELDS.values():
        value = pick(payload, *keys)
        if value is not None:
            setattr(customer, attr, norm(value))
    for attr, keys in _NOTE_FIELDS.items():
        setattr(customer, attr, clean_str(pick(payload, *keys)))
    status = clean_str(pick(payload, "status"))
    if status:
        customer.status = status
    customer.applied = bool(pick(payload, "applied"))
    customer.source = customer.source or "manual"
    tags = pick(payload, "tags")
    if isinstance(tags, list):
        customer.tags = [str(t) for t in tags]
    _assign(customer, assignee, "manual")
    apply_score(customer, now)

    s.add(customer)
    s.flush()

    log_activity(
        s,
        customer,
        user_id=actor.id,
        activity_type="note",
        subject="Customer Created",
        description=f"New customer added to CRM by {actor.display_name}",
    )
    record_event(
        s,
        actor=actor,
        action="crm.customer.create",
        entity_type="Customer",
        entity_id=customer.id,
        metadata={"email": customer.email, "assigned_to_id": customer.assigned_to_id},
    )
    if assignee.id != actor.id:
        notify(
            s,
            assignee.id,
            type="new_lead",
            title=f"New lead assigned: {customer.full_name}",
            link=f"/crm/customers/{customer.id}",
        )
    if auto_follow_ups_enabled(s):
        create_follow_up_tasks(s, customer, now)
    logger.info("Customer %s created by user %s", customer.id, actor.id)
    return customer


def update_customer(
    s: "Session",
    ctx: PermissionContext,
    actor: User,
    customer: Customer,
    payload: dict[str, Any],
) -> Customer:
    check = check_permission(ctx, "edit", customer)
    if not check.allowed:
        raise ServiceError(check.reason or "Permission denied", 403)

    errs = validate_customer_payload(payload, partial=True)
    if errs:
        raise ServiceError(errs[0].message, 400)

    changes: dict[str, Any] = {}
    for keys, attr, norm in _EDITABLE_FIELDS.values():
        if not any(k in payload for k in keys):
            continue
        new = norm(pick(payload, *keys))
        if attr in ("first_name", "last_name") and not new:
            raise ServiceError("First name and last name are required", 400)
        old = getattr(customer, attr)
        if new != old:
            changes[attr] = {"old": old, "new": new}
            setattr(customer, attr, new)

    if any(any(k in payload for k in keys) for keys in _NOTE_FIELDS.values()):
        notes_check = check_permission(ctx, "edit_notes", customer)
        if not notes_check.allowed:
            raise ServiceError(notes_check.reason or "Permission denied", 403)
        for attr, keys in _NOTE_FIELDS.items():
            if any(k in payload for k in keys):
                setattr(customer, attr, clean_str(pick(payload, *keys)))
                changes[attr] = "updated"

    if "tags" in payload and isinstance(payload["tags"], list):
        customer.tags = [str(t) for t in payload["tags"]]
        changes["tags"] = customer.tags

    if "applied" in payload:
        customer.applied = bool(payload["applied"])

    if customer.lost_reason == "other" and not customer.lost_reason_notes:
        raise ServiceError("Please describe the lost reason", 400)

    if customer.email and "email" in changes:
        clash = s.query(Customer.id).filter(Customer.email == customer.email, Customer.id != customer.id).first()
        if clash:
            raise ServiceError("Customer with this email already exists", 409)

    raw_assignee = pick(payload, "assignedToId", "assigned_to_id")
    new_assignee = require_int(raw_assignee, "assignedToId") if raw_assignee not in (None, "") else None
    if new_assignee is not None and new_assignee != customer.assigned_to_id:
        reassign_customer(s, ctx, actor, customer, new_assignee)
        changes["assigned_to_id"] = new_assignee

    now = datetime.utcnow()
    customer.updated_at = now
    apply_score(customer, now)

    record_event(
        s,
        actor=actor,
        action="crm.customer.edit",
        entity_type="Customer",
        entity_id=customer.id,
        metadata={"changes": changes},
    )
    return customer


def reassign_customer(s: "Session", ctx: PermissionContext, actor: User, customer: Customer, new_user_id: int) -> None:
    check = can_reassign_to(ctx, customer, new_user_id)
    if not check.allowed:
        raise ServiceError(check.reason or "Permission denied", 403)
    new_user = s.get(User, new_user_id)
    if new_user is None or not new_user.is_active:
        raise ServiceError("Assigned user not found", 400)

    old_name = customer.assigned_to.display_name if customer.assigned_to else "Unassigned"
    _assign(customer, new_user, "manual")
    sync_thread_assignment(s, customer)
    log_activity(
        s,
        customer,
        user_id=actor.id,
        activity_type="note",
        subject="Lead reassigned",
        description=f"Reassigned from {old_name} to {new_user.display_name} by {actor.display_name}",
    )
    notify(
        s,
        new_user.id,
        type="new_lead",
        title=f"Lead assigned to you: {customer.full_name}",
        link=f"/crm/customers/{customer.id}",
    )


def delete_customer(s: "Session", ctx: PermissionContext, actor: User, customer: Customer) -> None:
    check = check_permission(ctx, "delete", customer)
    if not check.allowed:
        raise ServiceError(check.reason or "Permission denied", 403)
    record_event(
        s,
        actor=actor,
        action="crm.customer.delete",
        entity_type="Customer",
        entity_id=customer.id,
        metadata={"name": customer.full_name, "email": customer.email},
    )
    s.delete(customer)
    logger.info("Customer %s deleted by user %s", customer.id, actor.id)


def change_status(
    s: "Session",
    ctx: PermissionContext,
    actor: User,
    customer: Customer,
    new_status: str,
    *,
    lost_reason: str | None = None,
    lost_reason_notes: str | None = None,
) -> Customer:
    if new_status not in CUSTOMER_STATUSES:
        raise ServiceError(f"Invalid status. Must be one of: {', '.join(CUSTOMER_STATUSES)}", 400)
    check = check_permission(ctx, "edit", customer)
    if not check.allowed:
        raise ServiceError(check.reason or "Permission denied", 403)

    if new_status == "dead" and lost_reason:
        if lost_reason == "other" and not lost_reason_notes:
            raise ServiceError("Please describe the lost reason", 400)
        customer.lost_reason = lost_reason
        customer.lost_reason_notes = lost_reason_notes

    old_status = customer.status
    now = datetime.utcnow()
    customer.status = new_status
    if new_status == "applied":
        customer.applied = True
    customer.updated_at = now
    apply_score(customer, now)
    customer.days_in_stage = 0

    log_activity(
        s,
        customer,
        user_id=actor.id,
        activity_type="status_change",
        subject="Status Changed",
        description=f"Status changed from {old_status} to {new_status}",
        touch=True,
    )
    if customer.assigned_to_id and customer.assigned_to_id != actor.id:
        notify(
            s,
            customer.assigned_to_id,
            type="status_change",
            title=f"{customer.full_name} moved to {new_status}",
            body=f"Changed by {actor.display_name}",
            link=f"/crm/customers/{customer.id}",
        )
    record_event(
        s,
        actor=actor,
        action="crm.customer.status",
        entity_type="Customer",
        entity_id=customer.id,
        metadata={"old": old_status, "new": new_status},
    )
    s.flush()
    if auto_follow_ups_enabled(s):
        on_status_change(s, customer, now)
    return customer


def add_activity(s: "Session", ctx: PermissionContext, actor: User, payload: dict[str, Any]) -> Activity:
    customer_id = pick(payload, "customerId", "customer_id")
    activity_type = clean_str(pick(payload, "type", "activityType", "activity_type"))
    subject = clean_str(pick(payload, "subject"))
    if not customer_id or not activity_type or not subject:
        raise ServiceError("customerId, type and subject are required", 400)

    customer = get_customer_for(s, ctx, require_int(customer_id, "customerId"), "view")
    check = check_permission(ctx, "edit_notes", customer)
    if not check.allowed:
        raise ServiceError(check.reason or "Permission denied", 403)

    due_raw = clean_str(pick(payload, "dueDate", "due_date"))
    try:
        due_date = datetime.fromisoformat(due_raw.replace("Z", "+00:00")).replace(tzinfo=None) if due_raw else None
    except ValueError:
        raise ServiceError("dueDate must be an ISO date", 400) from None
    status = clean_str(pick(payload, "status")) or ("scheduled" if due_date else "completed")

    first_contact = customer.response_time_minutes is None and activity_type in ("call", "email", "sms", "meeting")
    activity = log_activity(
        s,
        customer,
        user_id=actor.id,
        activity_type=activity_type,
        subject=subject,
        description=clean_str(pick(payload, "description")),
        status=status,
        priority=clean_str(pick(payload, "priority")),
        due_date=due_date,
        touch=True,
    )
    if first_contact and status == "completed":
        customer.response_time_minutes = response_time_minutes(customer.created_at, datetime.utcnow())
    s.flush()
    return activity


# ---------- Bulk ----------
def _bulk_targets(s: "Session", ctx: PermissionContext, ids: list[Any], action: str) -> list[Customer]:
    check = check_permission(ctx, "bulk_actions")
    if not check.allowed:
        raise ServiceError(check.reason or "Permission denied", 403)
    if not isinstance(ids, list) or not ids:
        raise ServiceError("customerIds must be a non-empty array", 400)
    targets: list[Customer] = []
    for raw in ids:
        customer = s.get(Customer, require_int(raw, "customerIds"))
        if customer is None:
            continue
        per_row = check_permission(ctx, action, customer)
        if not per_row.allowed:
            raise ServiceError(per_row.reason or "Permission denied", 403)
        targets.append(customer)
    return targets


def bulk_reassign(s: "Session", ctx: PermissionContext, actor: User, ids: list[Any], new_user_id: int) -> int:
    targets = _bulk_targets(s, ctx, ids, "reassign")
    for customer in targets:
        reassign_customer(s, ctx, actor, customer, new_user_id)
        customer.updated_at = datetime.utcnow()
    record_event(s, actor=actor, action="crm.bulk.reassign", entity_type="Customer",
                 metadata={"ids": [c.id for c in targets], "assigned_to_id": new_user_id})
    return len(targets)


def bulk_status(s: "Session", ctx: PermissionContext, actor: User, ids: list[Any], new_status: str) -> int:
    if new_status not in CUSTOMER_STATUSES:
        raise ServiceError(f"Invalid status. Must be one of: {', '.join(CUSTOMER_STATUSES)}", 400)
    targets = _bulk_targets(s, ctx, ids, "edit")
    for customer in targets:
        change_status(s, ctx, actor, customer, new_status)
    return len(targets)


def bulk_tag(s: "Session", ctx: PermissionContext, actor: User, ids: list[Any], tags: list[str], mode: str = "add") -> int:
    clean_tags = [t.strip() for t in tags if isinstance(t, str) and t.strip()]
    if not clean_tags:
        raise ServiceError("tags must be a non-empty array", 400)
    targets = _bulk_targets(s, ctx, ids, "edit")
    for customer in targets:
        current = list(customer.tags or [])
        if mode == "remove":
            customer.tags = [t for t in current if t not in clean_tags]
        else:
            customer.tags = list(dict.fromkeys([*current, *clean_tags]))
        customer.updated_at = datetime.utcnow()
    record_event(s, actor=actor, action="crm.bulk.tag", entity_type="Customer",
                 metadata={"ids": [c.id for c in targets], "tags": clean_tags, "mode": mode})
    return len(targets)


def bulk_delete(s: "Session", ctx: PermissionContext, actor: User, ids: list[Any]) -> int:
    targets = _bulk_targets(s, ctx, ids, "delete")
    for customer in targets:
        delete_customer(s, ctx, actor, customer)
    return len(targets)


def export_customers_csv(s: "Session", ctx: PermissionContext, actor: User, ids: list[Any] | None = None) -> str:
    check = check_permission(ctx, "export")
    if not check.allowed:
        raise ServiceError(check.reason or "Permission denied", 403)
    q = visible_customers_query(s, ctx)
    if ids:
        q = q.filter(Customer.id.in_(require_int_list(ids, "customerIds")))
    rows = ordered(q).all()

    buf = io.StringIO()
    w = csv.writer(buf)
    w.writerow(EXPORT_COLUMNS)
    for c in rows:
        w.writerow([
            c.id,
            c.first_name,
            c.last_name,
            c.email or "",
            c.phone or "",
            c.company_name or "",
            c.status,
            c.lead_score,
            c.temperature,
            c.priority,
            c.assigned_to.display_name if c.assigned_to else "",
            c.source or "",
            c.created_at.strftime("%Y-%m-%d") if c.created_at else "",
        ])
    record_event(s, actor=actor, action="crm.export", entity_type="Customer", metadata={"count": len(rows)})
    return buf.getvalue()


# ---------- Pipeline / dashboard ----------
def pipeline(s: "Session", ctx: PermissionContext, search: str | None = None) -> list[dict[str, Any]]:
    rows = ordered(visible_customers_query(s, ctx, search=search)).all()
    columns: dict[str, list[Customer]] = {st: [] for st in CUSTOMER_STATUSES}
    for c in rows:
        columns.setdefault(c.status, []).append(c)
    return [
        {
            "status": st,
            "count": len(columns[st]),
            "cards": [
                {
                    "id": c.id,
                    "name": c.full_name,
                    "leadScore": c.lead_score,
                    "temperature": c.temperature,
                    "priority": c.priority,
                    "assignedToName": c.assigned_to.display_name if c.assigned_to else None,
                    "daysInStage": c.days_in_stage,
                    "nextAction": suggest_next_action(c),
                }
                for c in columns[st]
            ],
        }
        for st in CUSTOMER_STATUSES
    ]


def _grouped_counts(q: "Query", column) -> dict[str, int]:
    return {k: int(v) for k, v in q.with_entities(column, func.count(Customer.id)).group_by(column).all()}


def dashboard_summary(s: "Session", ctx: PermissionContext, now: datetime | None = None) -> dict[str, Any]:
    now = now or datetime.utcnow()
    base = visible_customers_query(s, ctx)
    total = base.count()
    hot = ordered(base.filter(Customer.temperature == "hot")).limit(10).all()

    visible_ids = base.with_entities(Customer.id).subquery()
    overdue_q = (
        s.query(Activity)
        .filter(Activity.customer_id.in_(visible_ids.select()))
        .filter(
            (Activity.status == "overdue")
            | ((Activity.status == "scheduled") & (Activity.due_date.isnot(None)) & (Activity.due_date < now))
        )
    )
    return {
        "total": total,
        "byStatus": _grouped_counts(base, Customer.status),
        "byTemperature": _grouped_counts(base, Customer.temperature),
        "byPriority": _grouped_counts(base, Customer.priority),
        "hotLeads": [serialize_customer(c, include_notes=False) for c in hot],
        "overdueTasks": overdue_q.count(),
    }


# ---------- Settings ----------
def crm_settings(s: "Session") -> dict[str, str]:
    values = dict(DEFAULT_SETTINGS)
    for row in s.query(CrmSetting).all():
        if row.value is not None:
            values[row.key] = row.value
    return values


def auto_follow_ups_enabled(s: "Session") -> bool:
    return crm_settings(s).get("auto_follow_ups", "true").lower() in ("1", "true", "yes", "on")


def stale_lead_days(s: "Session") -> int:
    raw = crm_settings(s).get("stale_lead_days") or str(STALE_AFTER_DAYS)
    try:
        return max(1, int(raw))
    except ValueError:
        return STALE_AFTER_DAYS


def update_crm_settings(s: "Session", actor: User, payload: dict[str, Any]) -> dict[str, str]:
    updates: dict[str, str] = {}
    days = pick(payload, "staleLeadDays", "stale_lead_days")
    if days is not None:
        try:
            n = int(days)
        except (TypeError, ValueError):
            raise ServiceError("staleLeadDays must be a whole number", 400)
        if n < 1 or n > 90:
            raise ServiceError("staleLeadDays must be between 1 and 90", 400)
        updates["stale_lead_days"] = str(n)
    auto = pick(payload, "autoFollowUps", "auto_follow_ups")
    if auto is not None:
        updates["auto_follow_ups"] = "true" if auto in (True, "true", "1", 1, "on") else "false"

    now = datetime.utcnow()
    for key, value in updates.items():
        row = s.get(CrmSetting, key)
        if row is None:
            row = CrmSetting(key=key)
            s.add(row)
        row.value = value
        row.updated_at = now
        row.updated_by_user_id = actor.id
    if updates:
        record_event(s, actor=actor, action="crm.settings.update", entity_type="CrmSetting", metadata=updates)
    s.flush()
    return crm_settings(s)
