from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import TYPE_CHECKING, Any

from app.saleshub.audit import record_event
from app.saleshub.models import User
from app.saleshub.modules.crm.activities import log_activity
from app.saleshub.modules.crm.models import Activity, Customer
from app.saleshub.modules.messaging.service import sync_thread_assignment
from app.saleshub.utils import ServiceError, iso

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

DECISIONS = ("keep_original", "reassign_to_new", "merge")
MERGE_MARKER = "[MERGED FROM DUPLICATE]"
_NEW_REP_RE = re.compile(r"new rep ([A-Z]{3}\d+)")


def parse_new_rep_code(lock_reason: str | None) -> str | None:
    m = _NEW_REP_RE.search(lock_reason or "")
    return m.group(1) if m else None


def _lead_summary(c: Customer) -> dict[str, Any]:
    return {
        "id": c.id,
        "firstName": c.first_name,
        "lastName": c.last_name,
        "email": c.email,
        "phone": c.phone,
        "status": c.status,
        "leadScore": c.lead_score,
        "repCode": c.rep_code,
        "assignedToId": c.assigned_to_id,
        "assignedToName": c.assigned_to.display_name if c.assigned_to else None,
        "createdAt": iso(c.created_at),
    }


def pending_reviews(s: "Session", team_ids: frozenset[int] | None = None) -> list[dict[str, Any]]:
    """Locked duplicate claims, newest first. `team_ids` narrows to a manager's team."""
    q = s.query(Customer).filter(
        Customer.duplicate_status == "pending_review",
        Customer.locked_for_review == True,  # noqa: E712
    )
    if team_ids is not None:
        q = q.filter(Customer.assigned_to_id.in_(team_ids))

    out: list[dict[str, Any]] = []
    for lead in q.order_by(Customer.locked_at.desc()).all():
        entry = _lead_summary(lead)
        entry["lockReason"] = lead.lock_reason
        entry["lockedAt"] = iso(lead.locked_at)
        original = s.get(Customer, lead.duplicate_of_id) if lead.duplicate_of_id else None
        entry["originalLead"] = _lead_summary(original) if original else None

        new_rep_info = None
        code = parse_new_rep_code(lead.lock_reason)
        if code:
            rep = s.query(User).filter(User.rep_code == code).first()
            if rep is not None:
                new_rep_info = {"id": rep.id, "name": rep.display_name, "email": rep.email, "repCode": rep.rep_code}
        entry["newRepInfo"] = new_rep_info
        out.append(entry)
    return out


def _resolve(lead: Customer, actor: User, notes: str | None, now: datetime) -> None:
    lead.locked_for_review = False
    lead.duplicate_status = "resolved"
    lead.duplicate_resolved_at = now
    lead.duplicate_resolved_by_id = actor.id
    lead.duplicate_resolution_notes = notes
    lead.updated_at = now


def _join_merged(original: str | None, dup: str | None) -> str:
    return "\n".join(p for p in (original or "", MERGE_MARKER, dup or "") if p)


def resolve_duplicate(
    s: "Session",
    actor: User,
    lead_id: int,
    decision: str,
    notes: str | None = None,
    now: datetime | None = None,
) -> str:
    """Apply a manager's decision on a locked duplicate. Returns the response message."""
    if decision not in DECISIONS:
        raise ServiceError("Invalid decision. Must be keep_original, reassign_to_new, or merge", 400)

    now = now or datetime.utcnow()
    lead = s.get(Customer, lead_id)
    if lead is None:
        raise ServiceError("Lead not found", 404)
    if lead.duplicate_status != "pending_review":
        raise ServiceError("Lead is not pending review", 400)

    if decision == "keep_original":
        _resolve(lead, actor, notes, now)
        log_activity(
            s,
            lead,
            user_id=actor.id,
            activity_type="note",
            subject="Duplicate Review - Keep Original",
            description=f"{actor.display_name} kept the original assignment. {notes or ''}".strip(),
        )
        message = "Lead kept with original rep"

    elif decision == "reassign_to_new":
        code = parse_new_rep_code(lead.lock_reason)
        if not code:
            raise ServiceError("Could not determine new rep from lock reason", 400)
        new_rep = s.query(User).filter(User.rep_code == code).first()
        if new_rep is None:
            raise ServiceError(f"Rep {code} not found", 404)
        previous = lead.assigned_to_id
        lead.assigned_to_id = new_rep.id
        lead.manager_id = new_rep.manager_id
        lead.rep_code = new_rep.rep_code
        lead.assignment_method = "manual"
        sync_thread_assignment(s, lead)
        _resolve(lead, actor, notes, now)
        log_activity(
            s,
            lead,
            user_id=actor.id,
            activity_type="note",
            subject="Duplicate Review - Reassigned to New Rep",
            description=(
                f"{actor.display_name} reassigned the lead from user {previous} to "
                f"{new_rep.display_name} ({code}). {notes or ''}"
            ).strip(),
        )
        message = "Lead reassigned to new rep"

    else:
        original = s.get(Customer, lead.duplicate_of_id) if lead.duplicate_of_id else None
        if original is None:
            raise ServiceError("No original lead to merge with", 400)

        s.query(Activity).filter(Activity.customer_id == lead.id).update(
            {Activity.customer_id: original.id}, synchronize_session=False
        )
        original.notes = _join_merged(original.notes, lead.notes)
        original.manager_notes = _join_merged(original.manager_notes, lead.manager_notes)
        original.lead_score = max(original.lead_score or 0, lead.lead_score or 0)
        original.credit_range = lead.credit_range or original.credit_range
        original.recommended_path = lead.recommended_path or original.recommended_path
        original.last_activity_at = now
        original.updated_at = now

        log_activity(
            s,
            original,
            user_id=actor.id,
            activity_type="note",
            subject="Duplicate Review - Merged",
            description=f"{actor.display_name} merged duplicate lead #{lead.id} into this lead. {notes or ''}".strip(),
        )
        s.expire(lead, ["activities"])
        s.delete(lead)
        message = "Lead successfully merged"

    record_event(
        s,
        actor=actor,
        action=f"leads.duplicate.{decision}",
        entity_type="Customer",
        entity_id=lead_id,
        reason=notes,
    )
    s.flush()
    logger.info("Duplicate review %s on lead %s by user %s", decision, lead_id, actor.id)
    return message
