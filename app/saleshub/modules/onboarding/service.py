from __future__ import annotations

import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from werkzeug.security import generate_password_hash

from app.saleshub.audit import record_event
from app.saleshub.models import PAYPLAN_ACCEPTED, PAYPLAN_DECLINED, PAYPLAN_PENDING, Role, User
from app.saleshub.modules.onboarding.models import OnboardingToken
from app.saleshub.storage import Storage, build_storage_key
from app.saleshub.utils import ServiceError, ValidationError, clean_str, iso, normalize_email, normalize_phone

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

TOKEN_TTL_HOURS = 24
REP_CODE_ATTEMPTS = 10
MIN_PASSWORD_LENGTH = 8
W9_EXTENSIONS = (".pdf", ".png", ".jpg", ".jpeg")
DECLINED_ACCOUNT_STATUS = "disabled_payplan_declined"

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


# ---------- Rep codes ----------
def rep_code_prefix(role: str | None) -> str:
    if role == "owner":
        return "VIP"
    if role == "manager":
        return "SMR"
    return "REP"


def generate_rep_code(s: "Session", role: str | None) -> str:
    prefix = rep_code_prefix(role)
    for _ in range(REP_CODE_ATTEMPTS):
        code = f"{prefix}{10000 + secrets.randbelow(90000)}"
        if s.query(User.id).filter(User.rep_code == code).first() is None:
            return code
    raise ServiceError("Could not generate a unique rep code", 500)


# ---------- Tokens ----------
def create_token(s: "Session", actor: User, now: datetime | None = None) -> OnboardingToken:
    now = now or datetime.utcnow()
    tok = OnboardingToken(
        token=secrets.token_urlsafe(32),
        created_by_user_id=actor.id,
        created_at=now,
        expires_at=now + timedelta(hours=TOKEN_TTL_HOURS),
    )
    s.add(tok)
    s.flush()
    record_event(s, actor=actor, action="onboarding.token.create", entity_type="OnboardingToken", entity_id=tok.id)
    return tok


def check_token(s: "Session", token: str | None, now: datetime | None = None) -> OnboardingToken:
    now = now or datetime.utcnow()
    if not token:
        raise ServiceError("Token is required", 400)
    tok = s.query(OnboardingToken).filter(OnboardingToken.token == token).one_or_none()
    if tok is None:
        raise ServiceError("Invalid onboarding link", 404)
    if tok.used_at is not None:
        raise ServiceError("This onboarding link has already been used", 410)
    if tok.expires_at < now:
        raise ServiceError("This onboarding link has expired", 410)
    return tok


# ---------- Signup ----------
@dataclass(frozen=True)
class SignupForm:
    token: str | None
    first_name: str | None
    last_name: str | None
    email: str | None
    password: str
    phone: str | None


def parse_signup_form(form: Any) -> SignupForm:
    return SignupForm(
        token=clean_str(form.get("token")),
        first_name=clean_str(form.get("firstName") or form.get("first_name")),
        last_name=clean_str(form.get("lastName") or form.get("last_name")),
        email=normalize_email(form.get("email")),
        password=form.get("password") or "",
        phone=normalize_phone(form.get("phone")),
    )


def validate_signup(form: SignupForm, w9_filename: str | None) -> list[ValidationError]:
    errs: list[ValidationError] = []
    if not form.first_name:
        errs.append(ValidationError("firstName", "First name is required"))
    if not form.last_name:
        errs.append(ValidationError("lastName", "Last name is required"))
    if not form.email or not _EMAIL_RE.match(form.email):
        errs.append(ValidationError("email", "A valid email is required"))
    if len(form.password) < MIN_PASSWORD_LENGTH:
        errs.append(ValidationError("password", f"Password must be at least {MIN_PASSWORD_LENGTH} characters"))
    if not form.phone:
        errs.append(ValidationError("phone", "Phone is required"))
    if not w9_filename:
        errs.append(ValidationError("w9", "W-9 form is required"))
    elif not w9_filename.lower().endswith(W9_EXTENSIONS):
        errs.append(ValidationError("w9", "W-9 must be a PDF or image"))
    return errs


def complete_signup(
    s: "Session",
    form: SignupForm,
    *,
    w9_filename: str | None,
    w9_data: bytes,
    w9_content_type: str | None,
    storage: Storage,
    now: datetime | None = None,
) -> User:
    now = now or datetime.utcnow()
    tok = check_token(s, form.token, now)
    errs = validate_signup(form, w9_filename)
    if errs:
        raise ServiceError("; ".join(e.message for e in errs))
    if s.query(User.id).filter(User.email == form.email).first() is not None:
        raise ServiceError("An account with this email already exists")

    role = s.query(Role).filter(Role.key == "salesperson").one_or_none()
    if role is None:
        raise ServiceError("Salesperson role is not configured; run scripts/init_db.py", 500)

    user = User(
        email=form.email,
        password_hash=generate_password_hash(form.password),
        is_active=True,
        first_name=form.first_name,
        last_name=form.last_name,
        phone=form.phone,
        rep_code=generate_rep_code(s, "salesperson"),
        payplan_status=PAYPLAN_PENDING,
        account_status="active",
        onboarding_completed_at=now,
        created_at=now,
    )
    user.roles.append(role)
    s.add(user)
    s.flush()

    key = build_storage_key("w9", user.id, w9_filename or "w9.pdf", now.date())
    storage.put_bytes(key, w9_data, content_type=w9_content_type)
    user.w9_storage_key = key

    tok.used_at = now
    tok.used_by_user_id = user.id
    record_event(
        s,
        actor=user,
        action="onboarding.complete",
        entity_type="User",
        entity_id=user.id,
        metadata={"rep_code": user.rep_code, "token_id": tok.id},
    )
    logger.info("rep onboarded user_id=%s rep_code=%s", user.id, user.rep_code)
    return user


# ---------- Pay plan ----------
def accept_payplan(s: "Session", user: User, now: datetime | None = None) -> None:
    user.payplan_status = PAYPLAN_ACCEPTED
    user.payplan_accepted_at = now or datetime.utcnow()
    record_event(s, actor=user, action="onboarding.payplan.accept", entity_type="User", entity_id=user.id)


def decline_payplan(s: "Session", user: User) -> None:
    user.payplan_status = PAYPLAN_DECLINED
    user.account_status = DECLINED_ACCOUNT_STATUS
    record_event(
        s,
        actor=user,
        action="onboarding.payplan.decline",
        entity_type="User",
        entity_id=user.id,
        reason="Pay plan declined",
    )


def profile(user: User) -> dict[str, Any]:
    return {
        "id": user.id,
        "email": user.email,
        "firstName": user.first_name,
        "lastName": user.last_name,
        "name": user.display_name,
        "phone": user.phone,
        "repCode": user.rep_code,
        "role": user.crm_role,
        "canAdminCrm": user.can_admin_crm,
        "managerId": user.manager_id,
        "payplanStatus": user.payplan_status,
        "payplanAcceptedAt": iso(user.payplan_accepted_at),
        "accountStatus": user.account_status,
        "onboardingCompletedAt": iso(user.onboarding_completed_at),
    }
