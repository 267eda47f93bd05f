from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any


@dataclass(frozen=True)
class ValidationError:
    field: str
    message: str


class ServiceError(Exception):
    """Business-rule failure carrying the HTTP status the API should answer with."""

    def __init__(self, message: str, status: int = 400):
        super().__init__(message)
        self.message = message
        self.status = status


def normalize_email(raw: Any) -> str | None:
    v = str(raw or "").strip().lower()
    return v or None


def normalize_phone(raw: Any) -> str | None:
    digits = re.sub(r"\D", "", str(raw or ""))
    return digits or None


def clean_str(raw: Any) -> str | None:
    v = str(raw if raw is not None else "").strip()
    return v or None


def parse_date(s: str | None) -> date | None:
    """Parse YYYY-MM-DD (or an ISO datetime, keeping the date part)."""
    if not s:
        return None
    s = str(s).strip()
    if not s:
        return None
    if "T" in s:
        return datetime.fromisoformat(s.replace("Z", "+00:00")).date()
    return date.fromisoformat(s[:10])


def parse_float(raw: Any) -> float | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return float(raw)
    cleaned = re.sub(r"[$,\s]", "", str(raw))
    try:
        return float(cleaned)
    except ValueError:
        return None


def parse_int(raw: Any) -> int | None:
    if raw is None or raw == "" or isinstance(raw, bool):
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def require_int(raw: Any, field: str) -> int:
    """Client-supplied id; a non-numeric value is a 400, not a crash."""
    value = parse_int(raw)
    if value is None:
        raise ServiceError(f"{field} must be a numeric id", 400)
    return value


def require_int_list(raw: Any, field: str) -> list[int]:
    if not isinstance(raw, list):
        raise ServiceError(f"{field} must be an array", 400)
    return [require_int(v, field) for v in raw]


def iso(value: datetime | date | None) -> str | None:
    return value.isoformat() if value is not None else None


def pick(payload: dict[str, Any], *names: str) -> Any:
    """First present key among camelCase/snake_case variants."""
    for n in names:
        if n in payload and payload[n] is not None:
            return payload[n]
    return None
