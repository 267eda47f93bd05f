from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sqlalchemy import func

from app.saleshub.audit import record_event
from app.saleshub.modules.crm.activities import log_activity
from app.saleshub.modules.crm.models import Activity, Customer
from app.saleshub.modules.deals.models import Deal
from app.saleshub.modules.messaging.models import MessageThread
from app.saleshub.modules.quotes.models import Quote
from app.saleshub.utils import ServiceError

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.saleshub.models import User

logger = logging.getLogger(__name__)

MERGED_PREFIX = "[MERGED] "


@dataclass
class DuplicateGroup:
    match_type: str  # exact-email, exact-phone, similar-name
    confidence: str  # high, medium
    leads: list[Customer] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "matchType": self.match_type,
            "confidence": self.confidence,
            "leads": [
                {
                    "id": c.id,
                    "firstName": c.first_name,
                    "lastName": c.last_name,
                    "email": c.email,
                    "phone": c.phone,
                    "createdAt": c.created_at.isoformat() if c.created_at else None,
                    "leadScore": c.lead_score,
                    "status": c.status,
                }
                for c in self.leads
            ],
        }


def _name_key(c: Customer) -> str:
    return re.sub(r"\s+", "", f"{c.first_name} {c.last_name}".lower())


def find_duplicates(s: "Session") -> list[DuplicateGroup]:
    groups: list[DuplicateGroup] = []

    dup_emails = [
        e
        for (e,) in s.query(Customer.email)
        .filter(Customer.email.isnot(None))
        .group_by(Customer.email)
        .having(func.count(Customer.id) > 1)
        .all()
    ]
    for email in dup_emails:
        leads = s.query(Customer).filter(Customer.email == email).order_by(Customer.created_at.asc()).all()
        groups.append(DuplicateGroup("exact-email", "high", leads))

    dup_phones = [
        p
        for (p,) in s.query(Customer.phone)
        .filter(Customer.phone.isnot(None))
        .group_by(Customer.phone)
        .having(func.count(Customer.id) > 1)
        .all()
    ]
    for phone in dup_phones:
        if any(lead.phone == phone for g in groups for lead in g.leads):
            continue
        leads = s.query(Customer).filter(Customer.phone == phone).order_by(Customer.created_at.asc()).all()
        groups.append(DuplicateGroup("exact-phone", "high", leads))

    by_name: dict[str, list[Customer]] = {}
    for c in s.query(Customer).order_by(Customer.created_at.asc()).all():
        by_name.setdefault(_name_key(c), []).append(c)

    grouped_ids = {lead.id for g in groups for lead in g.leads}
    for leads in by_name.values():
        if len(leads) < 2:
            continue
        if any(c.id in grouped_ids for c in leads):
            continue
        groups.append(DuplicateGroup("similar-name", "medium", leads))
        grouped_ids.update(c.id for c in leads)

    return groups


def _merge_text(master: str | None, dup: str | None) -> str | None:
    parts = [master or "", f"{MERGED_PREFIX}{dup}" if dup else ""]
    merged = "\n\n".join(p for p in parts if p)
    return merged or master


def _later(a, b):
    if a is None or b is None:
        return a or b
    return a if a > b else b


def merge_duplicates(s: "Session", master_id: int, duplicate_ids: list[int], actor: "User | None") -> int:
    """Fold duplicate leads into the master. Returns how many were merged."""
    master = s.get(Customer, master_id)
    if master is None:
        raise ServiceError("Master lead not found", 404)

    merged = 0
    for dup_id in duplicate_ids:
        if dup_id == master_id:
            continue
        dup = s.get(Customer, dup_id)
        if dup is None:
            continue

        s.query(Activity).filter(Activity.customer_id == dup.id).update(
            {Activity.customer_id: master.id}, synchronize_session=False
        )
        s.query(Deal).filter(Deal.customer_id == dup.id).update({Deal.customer_id: master.id}, synchronize_session=False)
        s.query(Quote).filter(Quote.customer_id == dup.id).update({Quote.customer_id: master.id}, synchronize_session=False)
        s.query(MessageThread).filter(MessageThread.customer_id == dup.id).update(
            {MessageThread.customer_id: master.id}, synchronize_session=False
        )

        master.notes = _merge_text(master.notes, dup.notes)
        master.manager_notes = _merge_text(master.manager_notes, dup.manager_notes)
        master.rep_notes = _merge_text(master.rep_notes, dup.rep_notes)
        master.tags = list(dict.fromkeys([*(master.tags or []), *(dup.tags or [])]))
        master.lead_score = max(master.lead_score or 0, dup.lead_score or 0)
        master.last_activity_at = _later(master.last_activity_at, dup.last_activity_at)

        log_activity(
            s,
            master,
            user_id=master.assigned_to_id,
            activity_type="note",
            subject="Lead Merged",
            description=f"Merged duplicate lead: {dup.full_name} ({dup.email or dup.phone})",
        )
        record_event(
            s,
            actor=actor,
            action="crm.customer.merge",
            entity_type="Customer",
            entity_id=master.id,
            metadata={"duplicate_id": dup.id, "duplicate_email": dup.email, "duplicate_phone": dup.phone},
        )

        # Activities were moved in bulk; drop the stale collection before the delete cascades.
        s.expire(dup, ["activities"])
        s.delete(dup)
        s.flush()
        merged += 1
        logger.info("Merged duplicate lead %s into %s", dup_id, master_id)

    return merged


def check_duplicate_on_create(
    s: "Session",
    email: str | None,
    phone: str | None,
    first_name: str | None,
    last_name: str | None,
) -> str | None:
    if email and s.query(Customer.id).filter(Customer.email == email).first():
        return f"Duplicate found: A lead with email {email} already exists."

    if phone and s.query(Customer.id).filter(Customer.phone == phone).first():
        return f"Duplicate found: A lead with phone {phone} already exists."

    if first_name and last_name:
        hit = (
            s.query(Customer.id)
            .filter(func.lower(Customer.first_name) == first_name.lower())
            .filter(func.lower(Customer.last_name) == last_name.lower())
            .first()
        )
        if hit:
            return (
                f"Possible duplicate: A lead named {first_name} {last_name} already exists. "
                "Please verify before creating."
            )

    return None
