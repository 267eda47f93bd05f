from datetime import datetime, timedelta

from app.saleshub.db import session_scope
from app.saleshub.modules.crm.models import Activity, Customer
from app.saleshub.modules.crm.follow_ups import rules_for_status

AUTH = {"Authorization": "Bearer cron-test-secret"}


def _aged_lead(app, client, login):
    h = login("rep@example.com")
    customer = client.post(
        "/api/crm/customers",
        json={"firstName": "Stale", "lastName": "Lead", "phone": "5550001111"},
        headers=h,
    ).json["customer"]
    client.get("/auth/logout")

    past = datetime.utcnow() - timedelta(days=10)
    with session_scope(app) as s:
        c = s.get(Customer, customer["id"])
        c.created_at = past
        c.last_activity_at = past
        scheduled = s.query(Activity).filter(Activity.customer_id == c.id, Activity.status == "scheduled").all()
        for task in scheduled:
            task.due_date = past
    return customer, len(scheduled)


def test_cron_requires_secret(client):
    assert client.get("/api/cron/follow-ups").status_code == 401
    r = client.post("/api/cron/follow-ups", headers={"Authorization": "Bearer wrong"})
    assert r.status_code == 401
    assert client.get("/api/cron/reindex", headers=AUTH).status_code == 404


def test_follow_ups_marks_overdue_and_notifies(app, client, login):
    customer, scheduled = _aged_lead(app, client, login)
    assert scheduled == len(rules_for_status("new"))

    r = client.post("/api/cron/follow-ups", headers=AUTH)
    assert r.status_code == 200
    assert r.json == {"success": True, "job": "follow-ups", "overdueReminders": scheduled}
    assert client.get("/api/cron/follow-ups", headers=AUTH).json["overdueReminders"] == 0

    login("rep@example.com")
    types = [n["type"] for n in client.get("/api/notifications").json["notifications"]]
    assert types.count("overdue_task") == scheduled


def test_stale_leads_escalate_to_manager_once(app, client, login):
    customer, _ = _aged_lead(app, client, login)

    r = client.get("/api/cron/stale-leads", headers=AUTH)
    assert r.json["staleLeads"] == 1
    assert r.json["staleDays"] == 7
    assert client.get("/api/cron/stale-leads", headers=AUTH).json["staleLeads"] == 0

    with session_scope(app) as s:
        escalation = s.query(Activity).filter(
            Activity.customer_id == customer["id"], Activity.activity_type == "escalation"
        ).one()
        assert escalation.status == "pending"

    login("manager@example.com")
    types = [n["type"] for n in client.get("/api/notifications").json["notifications"]]
    assert "stale_lead" in types
