from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import func

from app.saleshub.modules.messaging.models import Notification

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


def notify(
    s: "Session",
    user_id: int | None,
    *,
    type: str,
    title: str,
    body: str | None = None,
    link: str | None = None,
) -> Notification | None:
    """Queue an in-app notification. No-op for unassigned records."""
    if user_id is None:
        return None
    n = Notification(user_id=user_id, type=type, title=title[:255], body=body, link=link)
    s.add(n)
    logger.debug("notification queued user_id=%s type=%s", user_id, type)
    return n


def notify_many(s: "Session", user_ids, **kwargs) -> int:
    sent = 0
    for uid in {u for u in user_ids if u is not None}:
        notify(s, uid, **kwargs)
        sent += 1
    return sent


def unread_count(s: "Session", user_id: int) -> int:
    return int(
        s.query(func.count(Notification.id))
        .filter(Notification.user_id == user_id, Notification.read_at.is_(None))
        .scalar()
        or 0
    )


def mark_read(s: "Session", user_id: int, ids: list[int] | None = None, *, all_: bool = False) -> int:
    q = s.query(Notification).filter(Notification.user_id == user_id, Notification.read_at.is_(None))
    if not all_:
        if not ids:
            return 0
        q = q.filter(Notification.id.in_(ids))
    now = datetime.utcnow()
    count = 0
    for n in q.all():
        n.read_at = now
        count += 1
    return count
