"""
Lead scoring (0..100), temperature and priority.

Pure functions over Customer-like objects so they can run on unsaved rows,
in bulk recalculation, and in tests without a database.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class ScoreFactors:
    applied_credit: int = 0
    recent_activity: int = 0
    specific_trailer: int = 0
    needs_financing: int = 0
    complete_info: int = 0
    has_email: int = 0
    recently_created: int = 0
    no_recent_activity: int = 0
    stale_lead: int = 0
    total: int = 0


@dataclass(frozen=True)
class ScoreResult:
    customer_id: int | None
    score: int
    temperature: str
    priority: str
    days_in_stage: int


def _days_since(when: datetime | None, now: datetime) -> int | None:
    if when is None:
        return None
    return int((now - when).total_seconds() // 86400)


def _hours_since(when: datetime | None, now: datetime) -> float | None:
    if when is None:
        return None
    return (now - when).total_seconds() / 3600.0


def calculate_lead_score(customer: Any, now: datetime | None = None) -> tuple[int, ScoreFactors]:
    now = now or datetime.utcnow()
    score = 0
    f: dict[str, int] = {}

    if getattr(customer, "applied", False):
        f["applied_credit"] = 30

    days = _days_since(getattr(customer, "last_activity_at", None), now)
    if days is not None:
        if days <= 7:
            f["recent_activity"] = 20
        elif days > 30:
            f["stale_lead"] = -15
        elif days > 14:
            f["no_recent_activity"] = -10

    if getattr(customer, "stock_number", None):
        f["specific_trailer"] = 15

    if getattr(customer, "financing_type", None) in ("finance", "rto"):
        f["needs_financing"] = 10

    email = getattr(customer, "email", None)
    if email and getattr(customer, "phone", None):
        f["complete_info"] = 5
    if email:
        f["has_email"] = 3

    hours = _hours_since(getattr(customer, "created_at", None), now)
    if hours is not None and hours <= 24:
        f["recently_created"] = 5

    score = max(0, min(100, sum(f.values())))
    return score, ScoreFactors(total=score, **f)


def lead_temperature(score: int) -> str:
    if score >= 70:
        return "hot"
    if score >= 40:
        return "warm"
    if score >= 20:
        return "cold"
    return "dead"


def determine_priority(customer: Any, score: int, now: datetime | None = None) -> str:
    now = now or datetime.utcnow()
    if getattr(customer, "applied", False) or score >= 80:
        return "urgent"
    if score >= 60:
        return "high"
    hours = _hours_since(getattr(customer, "created_at", None), now)
    if hours is not None and hours <= 24:
        return "high"
    if score >= 40:
        return "medium"
    return "low"


def suggest_next_action(customer: Any, now: datetime | None = None) -> str:
    now = now or datetime.utcnow()
    if getattr(customer, "applied", False):
        return "Follow up on credit application immediately"
    days = _days_since(getattr(customer, "last_activity_at", None), now)
    if days is not None and days > 7:
        return "It's been a while - send a check-in message"
    if getattr(customer, "stock_number", None):
        return "Send trailer details and pricing"
    if not getattr(customer, "email", None) or not getattr(customer, "phone", None):
        return "Get complete contact information"
    return "Make initial contact and qualify lead"


def days_in_stage(customer: Any, now: datetime | None = None) -> int:
    days = _days_since(getattr(customer, "updated_at", None), now or datetime.utcnow())
    return days or 0


def response_time_minutes(created_at: datetime, first_activity_at: datetime | None) -> int | None:
    if first_activity_at is None:
        return None
    return int((first_activity_at - created_at).total_seconds() // 60)


def score_customer(customer: Any, now: datetime | None = None) -> ScoreResult:
    now = now or datetime.utcnow()
    score, _factors = calculate_lead_score(customer, now)
    return ScoreResult(
        customer_id=getattr(customer, "id", None),
        score=score,
        temperature=lead_temperature(score),
        priority=determine_priority(customer, score, now),
        days_in_stage=days_in_stage(customer, now),
    )


def apply_score(customer: Any, now: datetime | None = None) -> ScoreResult:
    """Score a customer and write the results back onto it."""
    result = score_customer(customer, now)
    customer.lead_score = result.score
    customer.temperature = result.temperature
    customer.priority = result.priority
    customer.days_in_stage = result.days_in_stage
    return result


def recalculate_scores(customers: Iterable[Any], now: datetime | None = None) -> list[ScoreResult]:
    now = now or datetime.utcnow()
    return [apply_score(c, now) for c in customers]
