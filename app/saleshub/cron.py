from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from flask import Blueprint, current_app, jsonify, request

from app.saleshub.db import db_session
from app.saleshub.modules.crm.follow_ups import detect_stale_leads, send_overdue_reminders
from app.saleshub.modules.crm.service import stale_lead_days
from app.saleshub.security import check_cron_secret

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

bp = Blueprint("cron", __name__)
logger = logging.getLogger(__name__)


def run_follow_ups(s: "Session", now: datetime | None = None) -> dict:
    reminders = send_overdue_reminders(s, now)
    logger.info("cron follow-ups: %s overdue reminders", reminders)
    return {"overdueReminders": reminders}


def run_stale_leads(s: "Session", now: datetime | None = None) -> dict:
    days = stale_lead_days(s)
    flagged = detect_stale_leads(s, now, stale_days=days)
    logger.info("cron stale-leads: %s flagged (window %s days)", flagged, days)
    return {"staleLeads": flagged, "staleDays": days}


JOBS = {
    "follow-ups": run_follow_ups,
    "stale-leads": run_stale_leads,
}


@bp.route("/<job>", methods=["GET", "POST"])
def run(job: str):
    if not check_cron_secret(request, current_app.config.get("CRON_SECRET")):
        return jsonify({"error": "Unauthorized"}), 401
    fn = JOBS.get(job)
    if fn is None:
        return jsonify({"error": "Unknown job"}), 404
    s = db_session()
    result = fn(s)
    s.commit()
    return jsonify({"success": True, "job": job, **result})
