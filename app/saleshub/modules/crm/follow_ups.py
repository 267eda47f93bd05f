"""
Automated follow-up engine.

Status changes schedule call/email/task activities for the assigned rep;
the cron jobs flip past-due tasks to overdue and escalate stale leads.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from app.saleshub.models import Role, User
from app.saleshub.modules.crm.activities import log_activity
from app.saleshub.modules.crm.models import Activity, Customer
from app.saleshub.modules.messaging.notifications import notify

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

STALE_AFTER_DAYS = 7
STALE_SUBJECT = "Stale Lead Alert"


@dataclass(frozen=True)
class FollowUpRule:
    status: str
    days_after: int
    task_type: str
    subject: str
    description: str
    priority: str


FOLLOW_UP_RULES: tuple[FollowUpRule, ...] = (
    FollowUpRule("new", 0, "call", "Initial Contact Required",
                 "Make first contact with new lead. Introduce yourself and qualify their needs.", "urgent"),
    FollowUpRule("new", 1, "call", "Follow-Up: First Contact Attempt",
                 "Second attempt to reach new lead if no response from first contact.", "high"),
    FollowUpRule("contacted", 1, "email", "Send Product Information",
                 "Send email with trailer options matching their requirements.", "high"),
    FollowUpRule("contacted", 3, "call", "Check-In Call",
                 "Follow up to see if they reviewed the information and answer questions.", "medium"),
    FollowUpRule("qualified", 1, "task", "Send Credit Application",
                 "Send credit application link and financing information.", "high"),
    FollowUpRule("qualified", 3, "call", "Application Status Check",
                 "Call to see if they need help with credit application.", "medium"),
    FollowUpRule("qualified", 7, "call", "Final Follow-Up",
                 "Last attempt to move qualified lead forward before marking cold.", "low"),
    FollowUpRule("applied", 1, "task", "Check Application Status",
                 "Check with finance department on application status.", "high"),
    FollowUpRule("applied", 3, "call", "Update Customer on Application",
                 "Call customer with update on their credit application.", "medium"),
    FollowUpRule("approved", 0, "call", "Congratulations Call - Move to Close",
                 "Call immediately to congratulate and schedule delivery/pickup.", "urgent"),
    FollowUpRule("approved", 1, "task", "Finalize Paperwork",
                 "Prepare and send final purchase documents.", "high"),
    FollowUpRule("approved", 3, "call", "Close Deal",
                 "Final call to complete transaction and arrange delivery.", "urgent"),
)


def rules_for_status(status: str) -> list[FollowUpRule]:
    return [r for r in FOLLOW_UP_RULES if r.status == status]


def _due_at(now: datetime, days_after: int) -> datetime:
    day = now + timedelta(days=days_after)
    return day.replace(hour=9, minute=0, second=0, microsecond=0)


def create_follow_up_tasks(s: "Session", customer: Customer, now: datetime | None = None) -> int:
    """Schedule the tasks for the customer's current status. Returns tasks created."""
    now = now or datetime.utcnow()
    open_subjects = {
        subject
        for (subject,) in s.query(Activity.subject)
        .filter(Activity.customer_id == customer.id)
        .filter(Activity.activity_type.in_(("call", "email", "task")))
        .filter(Activity.status.in_(("scheduled", "pending", "overdue")))
        .all()
    }

    created = 0
    for rule in rules_for_status(customer.status):
        if rule.subject in open_subjects:
            continue
        log_activity(
            s,
            customer,
            user_id=customer.assigned_to_id,
            activity_type=rule.task_type,
            subject=rule.subject,
            description=rule.description,
            status="scheduled",
            priority=rule.priority,
            due_date=_due_at(now, rule.days_after),
        )
        created += 1

    if created:
        logger.info("Created %s follow-up task(s) for customer %s (status=%s)", created, customer.id, customer.status)
    return created


def on_status_change(s: "Session", customer: Customer, now: datetime | None = None) -> int:
    """Cancel scheduled tasks from the previous stage, then schedule the new stage's tasks."""
    s.query(Activity).filter(
        Activity.customer_id == customer.id,
        Activity.status == "scheduled",
    ).update({Activity.status: "cancelled"}, synchronize_session=False)
    s.flush()
    return create_follow_up_tasks(s, customer, now)


def send_overdue_reminders(s: "Session", now: datetime | None = None) -> int:
    now = now or datetime.utcnow()
    overdue = (
        s.query(Activity)
        .filter(Activity.status == "scheduled")
        .filter(Activity.due_date.isnot(None), Activity.due_date < now)
        .all()
    )
    for task in overdue:
        task.status = "overdue"
        customer = task.customer
        notify(
            s,
            task.user_id,
            type="overdue_task",
            title=f"Overdue: {task.subject}",
            body=f"{customer.full_name} - due {task.due_date:%Y-%m-%d %H:%M}",
            link=f"/crm/customers/{customer.id}",
        )
    if overdue:
        logger.info("Marked %s follow-up task(s) overdue", len(overdue))
    return len(overdue)


def _fallback_escalation_user(s: "Session") -> User | None:
    for key in ("manager", "director", "owner"):
        user = (
            s.query(User)
            .join(User.roles)
            .filter(Role.key == key, User.is_active == True)  # noqa: E712
            .order_by(User.id.asc())
            .first()
        )
        if user:
            return user
    return None


def detect_stale_leads(s: "Session", now: datetime | None = None, stale_days: int = STALE_AFTER_DAYS) -> int:
    now = now or datetime.utcnow()
    cutoff = now - timedelta(days=stale_days)

    leads = (
        s.query(Customer)
        .filter(Customer.status.notin_(("won", "dead")))
        .filter(
            ((Customer.last_activity_at.is_(None)) & (Customer.created_at < cutoff))
            | (Customer.last_activity_at < cutoff)
        )
        .all()
    )
    recently_escalated = {
        cid
        for (cid,) in s.query(Activity.customer_id)
        .filter(Activity.activity_type == "escalation", Activity.created_at >= cutoff)
        .distinct()
        .all()
    }

    fallback: User | None = None
    escalated = 0
    for lead in leads:
        if lead.id in recently_escalated:
            continue
        target_id = lead.manager_id
        if target_id is None:
            if fallback is None:
                fallback = _fallback_escalation_user(s)
            if fallback is None:
                continue
            target_id = fallback.id

        log_activity(
            s,
            lead,
            user_id=target_id,
            activity_type="escalation",
            subject=STALE_SUBJECT,
            description=(
                f"Lead {lead.full_name} has had no activity for {stale_days}+ days. "
                "Please review and take action."
            ),
            status="pending",
            priority="high",
        )
        notify(
            s,
            target_id,
            type="stale_lead",
            title=STALE_SUBJECT,
            body=f"{lead.full_name} has gone {stale_days}+ days without activity.",
            link=f"/crm/customers/{lead.id}",
        )
        escalated += 1

    if escalated:
        logger.info("Escalated %s stale lead(s)", escalated)
    return escalated
