from __future__ import annotations

import json
import re
from datetime import datetime, time, timedelta

from flask import Blueprint, g, jsonify, request
from werkzeug.security import generate_password_hash

from app.saleshub.audit import record_event
from app.saleshub.db import db_session
from app.saleshub.models import CRM_ROLE_KEYS, AuditEvent, Role, User
from app.saleshub.modules.onboarding.service import generate_rep_code
from app.saleshub.rbac import require_crm_roles
from app.saleshub.utils import iso, normalize_phone, parse_date, parse_int, pick

bp = Blueprint("admin", __name__)

_EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
MANAGER_CAPABLE = ("owner", "director", "manager")


def _current_user() -> User:
    return g.current_user


def serialize_user(u: User) -> dict:
    return {
        "id": u.id,
        "email": u.email,
        "name": u.display_name,
        "firstName": u.first_name,
        "lastName": u.last_name,
        "phone": u.phone,
        "repCode": u.rep_code,
        "role": u.crm_role,
        "roles": sorted(u.role_keys),
        "managerId": u.manager_id,
        "canAdminCrm": u.can_admin_crm,
        "isActive": u.is_active,
        "payplanStatus": u.payplan_status,
        "accountStatus": u.account_status,
        "createdAt": iso(u.created_at),
    }


def _user_or_404(user_id: int):
    user = db_session().get(User, user_id)
    if not user:
        return None, (jsonify({"error": "User not found"}), 404)
    return user, None


@bp.get("/users")
@require_crm_roles("owner", "director", "manager", allow_crm_admin=True)
def users_list():
    s = db_session()
    q = s.query(User)
    if (request.args.get("active") or "").lower() in ("1", "true"):
        q = q.filter(User.is_active.is_(True))
    users = q.order_by(User.email.asc()).all()
    role = (request.args.get("role") or "").strip()
    if role:
        users = [u for u in users if u.crm_role == role]
    return jsonify({"users": [serialize_user(u) for u in users]})


@bp.post("/users")
@require_crm_roles("owner", "director", message="Only owners and directors can create accounts")
def users_create():
    s = db_session()
    payload = request.get_json(silent=True) or {}
    email = (pick(payload, "email") or "").strip().lower()
    password = pick(payload, "password") or ""
    role_key = (pick(payload, "role") or "salesperson").strip().lower()

    errors = []
    if not email:
        errors.append("Email is required.")
    elif not _EMAIL_RE.match(email):
        errors.append("Invalid email format.")
    elif s.query(User).filter(User.email == email).one_or_none():
        errors.append("An account with this email already exists.")
    if len(password) < 8:
        errors.append("Password must be at least 8 characters.")
    if role_key not in CRM_ROLE_KEYS:
        errors.append(f"Role must be one of {', '.join(CRM_ROLE_KEYS)}.")
    if errors:
        return jsonify({"error": " ".join(errors), "errors": errors}), 400

    role = s.query(Role).filter(Role.key == role_key).one_or_none()
    if role is None:
        return jsonify({"error": f"Role {role_key} is not configured"}), 500
    if role_key == "owner" and _current_user().crm_role != "owner":
        return jsonify({"error": "Only owners can create owner accounts"}), 403

    new_user = User(
        email=email,
        password_hash=generate_password_hash(password),
        is_active=True,
        first_name=(pick(payload, "firstName", "first_name") or "").strip() or None,
        last_name=(pick(payload, "lastName", "last_name") or "").strip() or None,
        phone=normalize_phone(pick(payload, "phone")),
        manager_id=parse_int(pick(payload, "managerId", "manager_id")),
        rep_code=generate_rep_code(s, role_key),
    )
    new_user.roles.append(role)
    s.add(new_user)
    s.flush()
    record_event(
        s,
        actor=_current_user(),
        action="user.create",
        entity_type="User",
        entity_id=str(new_user.id),
        metadata={"email": email, "roles": [role_key], "rep_code": new_user.rep_code},
    )
    s.commit()
    return jsonify({"user": serialize_user(new_user)}), 201


@bp.post("/users/<int:user_id>/toggle-manager")
@require_crm_roles("owner", "director", message="Only owners and directors can change roles")
def users_toggle_manager(user_id: int):
    s = db_session()
    user, err = _user_or_404(user_id)
    if err:
        return err
    if user.crm_role in ("owner", "director"):
        return jsonify({"error": "Owners and directors cannot be toggled"}), 400

    before = sorted(user.role_keys)
    roles = {r.key: r for r in s.query(Role).filter(Role.key.in_(("manager", "salesperson"))).all()}
    if "manager" in user.role_keys:
        user.roles = [r for r in user.roles if r.key != "manager"]
        if "salesperson" not in user.role_keys and "salesperson" in roles:
            user.roles.append(roles["salesperson"])
    else:
        user.roles = [r for r in user.roles if r.key != "salesperson"]
        if "manager" in roles:
            user.roles.append(roles["manager"])
        # Reports of a demoted manager keep their manager_id; reassign explicitly.

    record_event(
        s,
        actor=_current_user(),
        action="user.toggle_manager",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"before": before, "after": sorted(user.role_keys)},
    )
    s.commit()
    return jsonify({"user": serialize_user(user)})


@bp.post("/users/<int:user_id>/manager")
@require_crm_roles("owner", "director", message="Only owners and directors can assign managers")
def users_set_manager(user_id: int):
    s = db_session()
    user, err = _user_or_404(user_id)
    if err:
        return err
    payload = request.get_json(silent=True) or {}
    manager_id = parse_int(pick(payload, "managerId", "manager_id"))
    if manager_id is not None:
        if manager_id == user.id:
            return jsonify({"error": "A user cannot manage themselves"}), 400
        manager = s.get(User, manager_id)
        if not manager or manager.crm_role not in MANAGER_CAPABLE:
            return jsonify({"error": "Manager must be an active manager, director or owner"}), 400

    before = user.manager_id
    user.manager_id = manager_id
    record_event(
        s,
        actor=_current_user(),
        action="user.set_manager",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"before": before, "after": manager_id},
    )
    s.commit()
    return jsonify({"user": serialize_user(user)})


@bp.post("/users/<int:user_id>/toggle-crm-admin")
@require_crm_roles("owner", message="Only owners can grant CRM admin")
def users_toggle_crm_admin(user_id: int):
    s = db_session()
    user, err = _user_or_404(user_id)
    if err:
        return err
    user.can_admin_crm = not user.can_admin_crm
    record_event(
        s,
        actor=_current_user(),
        action="user.toggle_crm_admin",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"can_admin_crm": user.can_admin_crm},
    )
    s.commit()
    return jsonify({"user": serialize_user(user)})


@bp.get("/audit")
@require_crm_roles("owner", "director", allow_crm_admin=True, message="Audit log access denied")
def audit_list():
    """
    Last 200 audit events with simple filters:
    - action (contains)
    - actorEmail (contains)
    - dateFrom / dateTo (YYYY-MM-DD, inclusive)
    """
    s = db_session()
    action = (request.args.get("action") or "").strip()
    actor_email = (request.args.get("actorEmail") or "").strip()
    try:
        date_from = parse_date(request.args.get("dateFrom"))
        date_to = parse_date(request.args.get("dateTo"))
    except ValueError:
        return jsonify({"error": "dateFrom/dateTo must be YYYY-MM-DD"}), 400

    q = s.query(AuditEvent)
    if action:
        q = q.filter(AuditEvent.action.like(f"%{action}%"))
    if actor_email:
        q = q.filter(AuditEvent.actor_user_email.like(f"%{actor_email.lower()}%"))
    if date_from:
        q = q.filter(AuditEvent.created_at >= datetime.combine(date_from, time.min))
    if date_to:
        q = q.filter(AuditEvent.created_at < datetime.combine(date_to + timedelta(days=1), time.min))

    events = q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(200).all()
    return jsonify({
        "events": [
            {
                "id": e.id,
                "createdAt": iso(e.created_at),
                "actorEmail": e.actor_user_email,
                "action": e.action,
                "entityType": e.entity_type,
                "entityId": e.entity_id,
                "reason": e.reason,
                "metadata": json.loads(e.metadata_json) if e.metadata_json else None,
                "clientIp": e.client_ip,
            }
            for e in events
        ]
    })
