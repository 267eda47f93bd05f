from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from app.saleshub.modules.crm.models import Activity, Customer

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


def log_activity(
    s: "Session",
    customer: Customer,
    *,
    user_id: int | None,
    activity_type: str,
    subject: str,
    description: str | None = None,
    status: str = "completed",
    priority: str | None = None,
    due_date: datetime | None = None,
    touch: bool = False,
) -> Activity:
    """
    Append a timeline entry. `touch=True` also bumps last_activity_at
    (user-initiated contact, not system bookkeeping).
    """
    now = datetime.utcnow()
    a = Activity(
        customer_id=customer.id,
        user_id=user_id,
        activity_type=activity_type,
        subject=subject[:255],
        description=description,
        status=status,
        priority=priority,
        due_date=due_date,
        completed_at=now if status == "completed" else None,
        created_at=now,
    )
    s.add(a)
    if touch:
        customer.last_activity_at = now
        if activity_type in ("call", "email", "sms", "meeting"):
            customer.last_contacted_at = now
    return a
