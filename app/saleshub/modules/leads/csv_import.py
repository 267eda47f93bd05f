from __future__ import annotations

import csv
import hashlib
import io
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from app.saleshub.audit import record_event
from app.saleshub.modules.crm.activities import log_activity
from app.saleshub.modules.crm.dedup import check_duplicate_on_create
from app.saleshub.modules.crm.models import Customer
from app.saleshub.modules.crm.scoring import apply_score
from app.saleshub.modules.leads.intake import resolve_rep
from app.saleshub.utils import clean_str, normalize_email, normalize_phone

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.saleshub.models import User

logger = logging.getLogger(__name__)

NAME_HEADERS = ("Name", "Customer Name", "Full Name", "name", "Customer Names")
FIRST_NAME_HEADERS = ("First Name", "Customer First Name", "first_name", "First")
LAST_NAME_HEADERS = ("Last Name", "Customer Last Name", "last_name", "Last")
EMAIL_HEADERS = ("Email", "email", "E-mail", "Email Address")
PHONE_HEADERS = ("Phone", "Phone Number", "phone", "Customer Phone Number")
ZIP_HEADERS = ("ZIP", "Zip", "Zip Code", "Postal Code", "zip")
CITY_HEADERS = ("City", "city")
STATE_HEADERS = ("State", "state")
NOTE_HEADERS = ("Notes", "Note", "notes", "Manager Notes", "Rep Notes")
REP_CODE_HEADERS = ("Rep Code", "RepCode", "rep_code", "Salesperson Code")


@dataclass(frozen=True)
class SheetRow:
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    zip: str | None = None
    city: str | None = None
    state: str | None = None
    note: str | None = None
    rep_code: str | None = None

    def split_name(self) -> tuple[str, str]:
        parts = (self.name or "").split()
        if not parts:
            return "", ""
        if len(parts) == 1:
            return parts[0], ""
        return parts[0], " ".join(parts[1:])


@dataclass
class ImportReport:
    created: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "created": self.created,
            "skipped": self.skipped,
            "errors": len(self.errors),
            "errorDetails": self.errors[:50],
        }


def _first(row: dict[str, str], headers: tuple[str, ...]) -> str | None:
    for h in headers:
        value = row.get(h)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def row_to_lead(row: dict[str, str]) -> SheetRow:
    name = _first(row, NAME_HEADERS)
    if not name:
        first = _first(row, FIRST_NAME_HEADERS) or ""
        last = _first(row, LAST_NAME_HEADERS) or ""
        name = f"{first} {last}".strip() or None
    rep_code = _first(row, REP_CODE_HEADERS)
    return SheetRow(
        name=name,
        email=_first(row, EMAIL_HEADERS),
        phone=normalize_phone(_first(row, PHONE_HEADERS)),
        zip=_first(row, ZIP_HEADERS),
        city=_first(row, CITY_HEADERS),
        state=_first(row, STATE_HEADERS),
        note=_first(row, NOTE_HEADERS),
        rep_code=rep_code.upper() if rep_code else None,
    )


def hash_lead(lead: SheetRow) -> str:
    base = "|".join(
        [
            lead.name or "",
            (lead.email or "").lower(),
            lead.phone or "",
            lead.zip or "",
            lead.city or "",
            lead.state or "",
        ]
    )
    return hashlib.sha256(base.encode("utf-8")).hexdigest()


def read_rows(data: bytes) -> list[dict[str, str]]:
    text = data.decode("utf-8-sig", errors="replace")
    return list(csv.DictReader(io.StringIO(text)))


def import_leads_csv(s: "Session", actor: "User", data: bytes, now: datetime | None = None) -> ImportReport:
    now = now or datetime.utcnow()
    report = ImportReport()
    seen_hashes: set[str] = set()

    # Header is line 1, so data rows start at 2.
    for line_no, raw in enumerate(read_rows(data), start=2):
        lead = row_to_lead(raw)
        if not lead.name and not lead.email and not lead.phone:
            report.skipped += 1
            continue

        row_hash = hash_lead(lead)
        if row_hash in seen_hashes or s.query(Customer.id).filter(Customer.import_row_hash == row_hash).first():
            report.skipped += 1
            continue
        seen_hashes.add(row_hash)

        first, last = lead.split_name()
        email = normalize_email(lead.email)
        if not first:
            report.errors.append(f"Row {line_no}: name is required")
            continue
        if not email and not lead.phone:
            report.errors.append(f"Row {line_no}: email or phone is required")
            continue

        dup = check_duplicate_on_create(s, email, lead.phone, first, last or None)
        if dup:
            report.skipped += 1
            continue

        rep = resolve_rep(s, lead.rep_code)
        customer = Customer(
            first_name=first,
            last_name=last,
            email=email,
            phone=lead.phone,
            zip_code=lead.zip,
            city=lead.city,
            state=lead.state,
            notes=clean_str(lead.note),
            status="new",
            source="import",
            applied=False,
            tags=[],
            import_row_hash=row_hash,
            assigned_to_id=rep.id if rep else None,
            manager_id=rep.manager_id if rep else None,
            rep_code=rep.rep_code if rep else None,
            assignment_method="import",
            created_at=now,
            updated_at=now,
        )
        apply_score(customer, now)
        s.add(customer)
        s.flush()
        log_activity(
            s,
            customer,
            user_id=actor.id,
            activity_type="note",
            subject="Lead Imported",
            description=f"Imported from CSV by {actor.display_name}",
        )
        report.created += 1

    record_event(
        s,
        actor=actor,
        action="leads.import",
        entity_type="Customer",
        metadata={"created": report.created, "skipped": report.skipped, "errors": len(report.errors)},
    )
    logger.info(
        "Lead CSV import by user %s: created=%s skipped=%s errors=%s",
        actor.id,
        report.created,
        report.skipped,
        len(report.errors),
    )
    return report
