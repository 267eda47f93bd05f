"""
CRM visibility engine.

Every customer read, list, search, export and message path goes through this
module. Row-level checks (`check_permission`) and list filters
(`visibility_filter` / `apply_visibility`) must agree: a customer a user
cannot view must never show up in one of their lists either.

Role matrix:
- owner: everything
- director: everything except delete
- CRM admin (`User.can_admin_crm`): everything
- manager: customers assigned to the team (reports + self) or owned via manager_id
- salesperson: only customers assigned to them
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sqlalchemy import and_, false, or_, true
from sqlalchemy.sql.elements import ColumnElement

from app.saleshub.models import User
from app.saleshub.modules.crm.models import Customer

if TYPE_CHECKING:
    from sqlalchemy.orm import Query, Session


CRM_ACTIONS = (
    "view",
    "create",
    "edit",
    "delete",
    "reassign",
    "view_all_notes",
    "edit_notes",
    "export",
    "bulk_actions",
)


@dataclass(frozen=True)
class PermissionContext:
    user_id: int
    email: str
    role: str
    can_admin_crm: bool = False
    manager_id: int | None = None
    team_member_ids: frozenset[int] = field(default_factory=frozenset)


@dataclass(frozen=True)
class PermissionCheck:
    allowed: bool
    reason: str | None = None

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = PermissionCheck(True)


def _deny(reason: str) -> PermissionCheck:
    return PermissionCheck(False, reason)


def build_permission_context(s: "Session", user: User | None) -> PermissionContext | None:
    """Returns None for users without a CRM role."""
    if user is None or not user.is_active:
        return None
    role = user.crm_role
    if role is None:
        return None

    team: frozenset[int] = frozenset()
    if role == "manager":
        report_ids = [uid for (uid,) in s.query(User.id).filter(User.manager_id == user.id).all()]
        team = frozenset([*report_ids, user.id])

    return PermissionContext(
        user_id=user.id,
        email=user.email,
        role=role,
        can_admin_crm=bool(user.can_admin_crm),
        manager_id=user.manager_id,
        team_member_ids=team,
    )


def has_full_crm_visibility(ctx: PermissionContext) -> bool:
    return ctx.role in ("owner", "director") or ctx.can_admin_crm


def can_access_audit_log(ctx: PermissionContext) -> bool:
    return has_full_crm_visibility(ctx)


def can_manage_imports(ctx: PermissionContext) -> bool:
    return has_full_crm_visibility(ctx)


def can_access_crm_settings(ctx: PermissionContext) -> tuple[bool, bool]:
    """(can_view, can_edit). Owner and CRM admin edit, director views."""
    if ctx.role == "owner" or ctx.can_admin_crm:
        return True, True
    if ctx.role == "director":
        return True, False
    return False, False


def is_on_team(ctx: PermissionContext, customer: Customer) -> bool:
    if customer.assigned_to_id is not None and customer.assigned_to_id in ctx.team_member_ids:
        return True
    return customer.manager_id is not None and customer.manager_id == ctx.user_id


def _check_manager(ctx: PermissionContext, action: str, customer: Customer | None) -> PermissionCheck:
    if action == "view":
        if customer is None:
            return ALLOW
        return ALLOW if is_on_team(ctx, customer) else _deny("Customer not on your team")

    if action in ("edit", "delete", "reassign"):
        if customer is None:
            return _deny("Customer ID required")
        if is_on_team(ctx, customer):
            return ALLOW
        return _deny(
            {
                "edit": "Can only edit leads assigned to your team",
                "delete": "Can only delete leads from your team",
                "reassign": "Can only reassign leads within your team",
            }[action]
        )

    if action in ("create", "view_all_notes", "edit_notes", "export", "bulk_actions"):
        return ALLOW
    return _deny("Unknown action")


def _check_salesperson(ctx: PermissionContext, action: str, customer: Customer | None) -> PermissionCheck:
    owns = customer is not None and customer.assigned_to_id == ctx.user_id

    if action == "view":
        # List view; rows are narrowed by visibility_filter.
        if customer is None:
            return ALLOW
        return ALLOW if owns else _deny("You can only view your own leads")
    if action == "edit":
        if customer is None:
            return _deny("Customer ID required")
        return ALLOW if owns else _deny("You can only edit your own leads")
    if action == "view_all_notes":
        if customer is None:
            return _deny("Customer ID required")
        return ALLOW if owns else _deny("You can only view notes on your own leads")
    if action in ("create", "edit_notes"):
        return ALLOW
    if action == "delete":
        return _deny("Salespeople cannot delete leads")
    if action == "reassign":
        return _deny("Salespeople cannot reassign leads")
    if action == "export":
        return _deny("Salespeople cannot export data")
    if action == "bulk_actions":
        return _deny("Salespeople cannot perform bulk actions")
    return _deny("Unknown action")


def check_permission(ctx: PermissionContext, action: str, customer: Customer | None = None) -> PermissionCheck:
    if ctx.role == "owner":
        return ALLOW
    if ctx.role == "director":
        if action == "delete":
            return _deny("Only owners can delete customers")
        return ALLOW
    if ctx.can_admin_crm:
        return ALLOW
    if ctx.role == "manager":
        return _check_manager(ctx, action, customer)
    if ctx.role == "salesperson":
        # Locked duplicates stay hidden until a manager resolves them.
        if customer is not None and customer.locked_for_review and action in ("view", "edit", "view_all_notes"):
            return _deny("Lead is locked for duplicate review")
        return _check_salesperson(ctx, action, customer)
    return _deny("Invalid role")


def can_reassign_to(ctx: PermissionContext, customer: Customer, new_user_id: int) -> PermissionCheck:
    check = check_permission(ctx, "reassign", customer)
    if not check.allowed:
        return check
    if ctx.role == "manager" and not ctx.can_admin_crm and new_user_id not in ctx.team_member_ids:
        return _deny("You can only reassign leads to members of your team")
    return ALLOW


def visibility_filter(ctx: PermissionContext) -> ColumnElement[bool]:
    if has_full_crm_visibility(ctx):
        return true()
    if ctx.role == "manager":
        return or_(
            Customer.assigned_to_id.in_(sorted(ctx.team_member_ids)),
            Customer.manager_id == ctx.user_id,
        )
    if ctx.role == "salesperson":
        return and_(
            Customer.assigned_to_id == ctx.user_id,
            Customer.locked_for_review == False,  # noqa: E712
        )
    return false()


def search_filter(term: str) -> ColumnElement[bool]:
    like = f"%{term.strip()}%"
    return or_(
        Customer.first_name.ilike(like),
        Customer.last_name.ilike(like),
        Customer.email.ilike(like),
        Customer.company_name.ilike(like),
        Customer.phone.ilike(like),
    )


def apply_visibility(q: "Query", ctx: PermissionContext, search: str | None = None) -> "Query":
    """
    Narrow a Customer query to what ctx may see.
    The search clause is AND-ed with the role clause so it can only narrow.
    """
    clause = visibility_filter(ctx)
    if search and search.strip():
        clause = and_(clause, search_filter(search))
    return q.filter(clause)


def visible_customer(s: "Session", ctx: PermissionContext, customer_id: int) -> Customer | None:
    """Fetch a customer only if ctx may see it; hidden rows look missing."""
    q = s.query(Customer).filter(Customer.id == customer_id)
    return apply_visibility(q, ctx).one_or_none()
