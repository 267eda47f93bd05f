import hmac
import secrets
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Request, session


def ensure_csrf_token() -> str:
    """Ensure a CSRF token exists in the session and return it."""
    token = session.get("csrf_token")
    if not token:
        token = secrets.token_urlsafe(32)
        session["csrf_token"] = token
    return token


def validate_csrf(req: Request) -> bool:
    """Validate CSRF token from header, form, or JSON body."""
    token = req.headers.get("X-CSRF-Token") or req.form.get("csrf_token")

    # Also check JSON body for API-style requests
    if not token and req.is_json:
        json_data = req.get_json(silent=True) or {}
        if isinstance(json_data, dict):
            token = json_data.get("csrf_token")

    return bool(token and token == session.get("csrf_token"))


def constant_time_equals(a: str | None, b: str | None) -> bool:
    if not a or not b:
        return False
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def check_api_key(req: Request, expected: str | None, *, env: str | None) -> bool:
    """
    X-API-Key check for website intake. With no key configured, intake stays
    open outside production so local form testing works.
    """
    if not expected:
        return (env or "").strip().lower() not in ("prod", "production")
    return constant_time_equals(req.headers.get("X-API-Key"), expected)


def check_cron_secret(req: Request, expected: str | None) -> bool:
    auth = req.headers.get("Authorization") or ""
    if not auth.startswith("Bearer "):
        return False
    return constant_time_equals(auth[len("Bearer "):].strip(), expected)


class SlidingWindowLimiter:
    """In-process per-key limiter (login attempts, reply portal posts)."""

    def __init__(self, limit: int, window_seconds: int):
        self.limit = limit
        self.window = timedelta(seconds=window_seconds)
        self._hits: dict[str, list[datetime]] = defaultdict(list)

    def _prune(self, key: str, now: datetime) -> list[datetime]:
        cutoff = now - self.window
        hits = [t for t in self._hits[key] if t > cutoff]
        self._hits[key] = hits
        return hits

    def is_limited(self, key: str) -> bool:
        return len(self._prune(key, datetime.utcnow())) >= self.limit

    def hit(self, key: str) -> None:
        self._hits[key].append(datetime.utcnow())

    def reset(self, key: str) -> None:
        self._hits.pop(key, None)

    def clear(self) -> None:
        self._hits.clear()
