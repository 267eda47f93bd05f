"""
Public lead intake: the get-approved prequalification form and the general
inbound endpoint used by website forms and partners.

Both paths normalise contact details the same way and look for an existing
lead by email OR phone before creating anything.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import or_

from app.saleshub.audit import record_event
from app.saleshub.models import Role, User
from app.saleshub.modules.crm.activities import log_activity
from app.saleshub.modules.crm.follow_ups import create_follow_up_tasks
from app.saleshub.modules.crm.models import Customer
from app.saleshub.modules.crm.scoring import apply_score
from app.saleshub.modules.messaging.notifications import notify, notify_many
from app.saleshub.utils import ValidationError, clean_str, normalize_email, normalize_phone, pick

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

CREDIT_RANGE_MAP: dict[str, str] = {
    "780+": "excellent_780_plus",
    "700_779": "good_700_779",
    "650_699": "fair_650_699",
    "620_649": "below_average_620_649",
    "below_620": "rebuilding_below_620",
}

CREDIT_SCORE_BASE: dict[str, int] = {
    "780+": 30,
    "700_779": 25,
    "650_699": 15,
    "620_649": 10,
    "below_620": 5,
}

HIGH_PRIORITY_RANGES = ("780+", "700_779")
PREQUAL_SOURCE_PAGE = "/get-approved"


@dataclass(frozen=True)
class LeadInput:
    first_name: str | None
    last_name: str | None
    email: str | None
    phone: str | None
    zip_code: str | None
    rep_code: str | None
    credit_range: str | None = None
    recommended_path: str | None = None
    source_page: str | None = None
    trailer_size: str | None = None
    trailer_type: str | None = None
    stock_number: str | None = None
    financing_type: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class IntakeResult:
    customer: Customer
    created: bool
    locked: bool = False

    @property
    def message(self) -> str:
        if self.locked:
            return "Lead received and queued for duplicate review"
        return "Lead created successfully" if self.created else "Lead updated (existing customer)"


def parse_lead_input(payload: dict[str, Any]) -> LeadInput:
    rep_code = clean_str(pick(payload, "repCode", "rep_code", "ref"))
    financing = clean_str(pick(payload, "financingType", "financing_type"))
    return LeadInput(
        first_name=clean_str(pick(payload, "firstName", "first_name")),
        last_name=clean_str(pick(payload, "lastName", "last_name")),
        email=normalize_email(pick(payload, "email")),
        phone=normalize_phone(pick(payload, "phone")),
        zip_code=clean_str(pick(payload, "zip", "zipCode", "zip_code")),
        rep_code=rep_code.upper() if rep_code else None,
        credit_range=clean_str(pick(payload, "creditRange", "credit_range")),
        recommended_path=clean_str(pick(payload, "recommendedPath", "recommended_path")),
        source_page=clean_str(pick(payload, "sourcePage", "source_page")),
        trailer_size=clean_str(pick(payload, "trailerSize", "trailer_size")),
        trailer_type=clean_str(pick(payload, "trailerType", "trailer_type")),
        stock_number=clean_str(pick(payload, "stockNumber", "stock_number")),
        financing_type=financing.lower() if financing else None,
        notes=clean_str(pick(payload, "notes", "message")),
    )


def validate_lead_input(lead: LeadInput) -> list[ValidationError]:
    errs: list[ValidationError] = []
    if not lead.first_name or not lead.last_name:
        errs.append(ValidationError("name", "First name and last name are required"))
    if not lead.email and not lead.phone:
        errs.append(ValidationError("contact", "Either email or phone is required"))
    return errs


def find_existing_lead(s: "Session", email: str | None, phone: str | None) -> Customer | None:
    clauses = []
    if email:
        clauses.append(Customer.email == email)
    if phone:
        clauses.append(Customer.phone == phone)
    if not clauses:
        return None
    return (
        s.query(Customer)
        .filter(or_(*clauses))
        .filter(Customer.duplicate_status.is_(None) | (Customer.duplicate_status != "pending_review"))
        .order_by(Customer.created_at.asc())
        .first()
    )


def resolve_rep(s: "Session", rep_code: str | None) -> User | None:
    if not rep_code:
        return None
    return s.query(User).filter(User.rep_code == rep_code.upper(), User.is_active == True).first()  # noqa: E712


# ---------- Prequalification ----------
def prequal_score(credit_range: str | None) -> int:
    return min(100, CREDIT_SCORE_BASE.get(credit_range or "", 0) + 20)


def prequal_temperature(score: int) -> str:
    if score >= 70:
        return "hot"
    if score < 40:
        return "cold"
    return "warm"


def prequal_priority(credit_range: str | None) -> str:
    return "high" if credit_range in HIGH_PRIORITY_RANGES else "medium"


def _resubmit(s: "Session", existing: Customer, lead: LeadInput, now: datetime, *, source: str) -> None:
    if lead.credit_range:
        existing.credit_range = CREDIT_RANGE_MAP.get(lead.credit_range, existing.credit_range)
    if lead.recommended_path:
        existing.recommended_path = lead.recommended_path
    existing.source_page = lead.source_page or existing.source_page
    if lead.zip_code:
        existing.zip_code = lead.zip_code
    existing.last_activity_at = now
    existing.updated_at = now

    log_activity(
        s,
        existing,
        user_id=existing.assigned_to_id,
        activity_type="note",
        subject="Lead Re-submitted",
        description=(
            f"Customer re-submitted the {source} form. "
            f"Credit range: {lead.credit_range or 'n/a'}, "
            f"recommended path: {lead.recommended_path or 'n/a'}"
        ),
    )


def submit_prequalification(s: "Session", lead: LeadInput, now: datetime | None = None) -> IntakeResult:
    now = now or datetime.utcnow()
    rep = resolve_rep(s, lead.rep_code)

    existing = find_existing_lead(s, lead.email, lead.phone)
    if existing is not None:
        _resubmit(s, existing, lead, now, source="prequalification")
        logger.info("Prequalification re-submitted for customer %s", existing.id)
        return IntakeResult(existing, created=False)

    score = prequal_score(lead.credit_range)
    customer = Customer(
        first_name=lead.first_name,
        last_name=lead.last_name,
        email=lead.email,
        phone=lead.phone,
        zip_code=lead.zip_code,
        status="new",
        source="website",
        source_page=PREQUAL_SOURCE_PAGE,
        credit_range=CREDIT_RANGE_MAP.get(lead.credit_range or "", lead.credit_range),
        recommended_path=lead.recommended_path,
        lead_score=score,
        temperature=prequal_temperature(score),
        priority=prequal_priority(lead.credit_range),
        applied=False,
        tags=[],
        last_activity_at=now,
        created_at=now,
        updated_at=now,
    )
    _assign_to_rep(customer, rep)
    s.add(customer)
    s.flush()

    description = "\n".join(
        [
            "New lead from the get-approved page.",
            f"Credit range: {lead.credit_range or 'n/a'}",
            f"Recommended path: {lead.recommended_path or 'n/a'}",
            f"ZIP: {lead.zip_code or 'n/a'}",
            f"Rep code: {lead.rep_code or 'none (organic)'}",
        ]
    )
    log_activity(
        s,
        customer,
        user_id=customer.assigned_to_id,
        activity_type="note",
        subject="Lead Created via Website",
        description=description,
    )
    if rep is not None:
        notify(
            s,
            rep.id,
            type="new_lead",
            title=f"New prequalification lead: {customer.full_name}",
            link=f"/crm/customers/{customer.id}",
        )
    record_event(
        s,
        actor=None,
        action="leads.prequalification.create",
        entity_type="Customer",
        entity_id=customer.id,
        metadata={"rep_code": lead.rep_code, "credit_range": lead.credit_range},
    )
    logger.info("Prequalification lead %s created (rep=%s)", customer.id, lead.rep_code or "-")
    return IntakeResult(customer, created=True)


# ---------- Inbound ----------
def _assign_to_rep(customer: Customer, rep: User | None) -> None:
    if rep is None:
        customer.assigned_to_id = None
        customer.manager_id = None
        customer.rep_code = None
        customer.assignment_method = "organic"
        return
    customer.assigned_to_id = rep.id
    customer.manager_id = rep.manager_id
    customer.rep_code = rep.rep_code
    customer.assignment_method = "rep_link"


def _review_recipients(s: "Session", original_rep_id: int | None) -> set[int]:
    ids = {
        u.id
        for u in s.query(User)
        .join(User.roles)
        .filter(Role.key.in_(("owner", "director")), User.is_active == True)  # noqa: E712
        .all()
    }
    if original_rep_id is not None:
        original_rep = s.get(User, original_rep_id)
        if original_rep is not None and original_rep.manager_id:
            ids.add(original_rep.manager_id)
    return ids


def _lock_duplicate_claim(
    s: "Session",
    original: Customer,
    lead: LeadInput,
    rep: User,
    matched_on: str,
    now: datetime,
) -> Customer:
    locked = Customer(
        first_name=lead.first_name,
        last_name=lead.last_name,
        email=lead.email,
        phone=lead.phone,
        zip_code=lead.zip_code,
        status="new",
        source="website",
        source_page=lead.source_page,
        trailer_size=lead.trailer_size,
        trailer_type=lead.trailer_type,
        stock_number=lead.stock_number,
        financing_type=lead.financing_type,
        notes=lead.notes,
        applied=False,
        tags=[],
        duplicate_status="pending_review",
        duplicate_of_id=original.id,
        locked_for_review=True,
        locked_at=now,
        lock_reason=f"Duplicate {matched_on} - new rep {rep.rep_code} attempted to claim",
        created_at=now,
        updated_at=now,
    )
    # Stays with the rep who already owns the customer until a manager decides.
    locked.assigned_to_id = original.assigned_to_id
    locked.manager_id = original.manager_id
    locked.rep_code = original.rep_code
    locked.assignment_method = "rep_link"
    apply_score(locked, now)
    s.add(locked)
    s.flush()

    log_activity(
        s,
        locked,
        user_id=original.assigned_to_id,
        activity_type="escalation",
        subject="Duplicate Lead - Pending Review",
        description=(
            f"Rep {rep.rep_code} ({rep.display_name}) submitted a lead matching existing "
            f"customer #{original.id} on {matched_on}. Locked until a manager reviews it."
        ),
        status="pending",
        priority="high",
    )
    notify_many(
        s,
        _review_recipients(s, original.assigned_to_id),
        type="duplicate_review",
        title=f"Duplicate lead needs review: {locked.full_name}",
        body=locked.lock_reason,
        link="/crm/duplicates",
    )
    record_event(
        s,
        actor=None,
        action="leads.inbound.duplicate_locked",
        entity_type="Customer",
        entity_id=locked.id,
        metadata={"duplicate_of_id": original.id, "new_rep_code": rep.rep_code, "matched_on": matched_on},
    )
    logger.info("Locked duplicate claim %s on customer %s by rep %s", locked.id, original.id, rep.rep_code)
    return locked


def submit_inbound(
    s: "Session",
    lead: LeadInput,
    now: datetime | None = None,
    *,
    auto_follow_ups: bool = True,
) -> IntakeResult:
    now = now or datetime.utcnow()
    rep = resolve_rep(s, lead.rep_code)

    existing = find_existing_lead(s, lead.email, lead.phone)
    if existing is not None:
        claims_other = (
            rep is not None
            and existing.assigned_to_id is not None
            and existing.assigned_to_id != rep.id
        )
        if claims_other:
            matched_on = "email" if lead.email and existing.email == lead.email else "phone"
            return IntakeResult(
                _lock_duplicate_claim(s, existing, lead, rep, matched_on, now),
                created=True,
                locked=True,
            )

        if rep is not None and existing.assigned_to_id is None:
            _assign_to_rep(existing, rep)
        for attr in ("trailer_size", "trailer_type", "stock_number", "financing_type"):
            value = getattr(lead, attr)
            if value:
                setattr(existing, attr, value)
        _resubmit(s, existing, lead, now, source="website")
        apply_score(existing, now)
        logger.info("Inbound lead re-submitted for customer %s", existing.id)
        return IntakeResult(existing, created=False)

    customer = Customer(
        first_name=lead.first_name,
        last_name=lead.last_name,
        email=lead.email,
        phone=lead.phone,
        zip_code=lead.zip_code,
        status="new",
        source="website",
        source_page=lead.source_page,
        trailer_size=lead.trailer_size,
        trailer_type=lead.trailer_type,
        stock_number=lead.stock_number,
        financing_type=lead.financing_type,
        credit_range=CREDIT_RANGE_MAP.get(lead.credit_range or "", lead.credit_range),
        recommended_path=lead.recommended_path,
        notes=lead.notes,
        applied=False,
        tags=[],
        created_at=now,
        updated_at=now,
    )
    _assign_to_rep(customer, rep)
    apply_score(customer, now)
    s.add(customer)
    s.flush()

    log_activity(
        s,
        customer,
        user_id=customer.assigned_to_id,
        activity_type="note",
        subject="Lead Created via Website",
        description=f"Inbound lead from {lead.source_page or 'website'} (rep code: {lead.rep_code or 'none'})",
    )
    if rep is not None:
        notify(
            s,
            rep.id,
            type="new_lead",
            title=f"New lead assigned: {customer.full_name}",
            link=f"/crm/customers/{customer.id}",
        )
    if auto_follow_ups:
        create_follow_up_tasks(s, customer, now)
    record_event(
        s,
        actor=None,
        action="leads.inbound.create",
        entity_type="Customer",
        entity_id=customer.id,
        metadata={"rep_code": lead.rep_code, "source_page": lead.source_page},
    )
    logger.info("Inbound lead %s created (rep=%s)", customer.id, customer.rep_code or "-")
    return IntakeResult(customer, created=True)
