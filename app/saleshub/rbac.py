from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import abort, g, jsonify, redirect, request, url_for

from app.saleshub.models import PAYPLAN_ACCEPTED, User


def user_has_permission(user: User | None, permission_key: str) -> bool:
    if not user or not user.is_active:
        return False
    for role in user.roles:
        for perm in role.permissions:
            if perm.key == permission_key:
                return True
    return False


def payplan_block(user: User) -> tuple[dict[str, str], int] | None:
    """
    Account/pay-plan gate for protected APIs. Returns (body, status) when the
    user must be stopped, None otherwise.
    """
    status = user.account_status or "active"
    if status.startswith("disabled_"):
        return {"error": "Account disabled", "code": "ACCOUNT_DISABLED"}, 403
    if status == "banned":
        return {"error": "Account banned", "code": "ACCOUNT_BANNED"}, 403
    if user.payplan_status != PAYPLAN_ACCEPTED:
        return {"error": "Payplan acceptance required", "code": "PAYPLAN_REQUIRED"}, 403
    return None


def _current_user() -> User | None:
    user: User | None = getattr(g, "current_user", None)
    if not user or not user.is_active:
        return None
    return user


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """HTML routes: anonymous -> login redirect, unauthorized -> 403 page."""

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user = _current_user()
            if not user:
                nxt = request.full_path or request.path
                # Avoid trailing '?' from full_path when there is no query string.
                if nxt.endswith("?"):
                    nxt = nxt[:-1]
                return redirect(url_for("auth.login_get", next=nxt))
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                abort(403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator


def api_session_required(fn: Callable[..., Any]) -> Callable[..., Any]:
    """JSON routes a rep must reach before the pay-plan gate (profile, accept/decline)."""

    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        if not _current_user():
            return jsonify({"error": "Unauthorized"}), 401
        return fn(*args, **kwargs)

    return wrapped


def api_login_required(fn: Callable[..., Any]) -> Callable[..., Any]:
    """JSON routes: 401 for anonymous callers, then the account/pay-plan gate."""

    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user = _current_user()
        if not user:
            return jsonify({"error": "Unauthorized"}), 401
        blocked = payplan_block(user)
        if blocked:
            body, status = blocked
            return jsonify(body), status
        return fn(*args, **kwargs)

    return wrapped


def require_crm_roles(
    *roles: str,
    allow_crm_admin: bool = False,
    message: str = "Insufficient permissions",
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """JSON routes restricted to CRM roles (owner/director/manager/salesperson)."""

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @api_login_required
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User = g.current_user
            if user.crm_role in roles or (allow_crm_admin and user.can_admin_crm):
                return fn(*args, **kwargs)
            g.missing_permission = "role:" + "|".join(roles)
            return jsonify({"error": message}), 403

        return wrapped

    return decorator
