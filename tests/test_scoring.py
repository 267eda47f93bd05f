"""
Unit tests for lead scoring.

Customers are plain namespaces: the scorer only reads attributes, so no
database is needed.
"""

from datetime import datetime, timedelta
from types import SimpleNamespace

from app.saleshub.modules.crm.scoring import (
    apply_score,
    calculate_lead_score,
    determine_priority,
    lead_temperature,
    response_time_minutes,
    score_customer,
    suggest_next_action,
)

NOW = datetime(2026, 3, 10, 12, 0, 0)


def _lead(**kw):
    base = dict(
        id=1,
        applied=False,
        last_activity_at=None,
        stock_number=None,
        financing_type=None,
        email=None,
        phone=None,
        created_at=NOW - timedelta(days=10),
        updated_at=NOW - timedelta(days=3),
    )
    base.update(kw)
    return SimpleNamespace(**base)


class TestCalculateLeadScore:
    def test_all_positive_factors(self):
        lead = _lead(
            applied=True,
            last_activity_at=NOW - timedelta(days=2),
            stock_number="D1234",
            financing_type="finance",
            email="a@b.com",
            phone="5551234567",
            created_at=NOW - timedelta(hours=2),
        )
        score, factors = calculate_lead_score(lead, NOW)
        assert score == 30 + 20 + 15 + 10 + 5 + 3 + 5
        assert factors.applied_credit == 30
        assert factors.recently_created == 5
        assert factors.total == score

    def test_empty_lead_scores_zero(self):
        score, _ = calculate_lead_score(_lead(), NOW)
        assert score == 0

    def test_score_never_negative(self):
        lead = _lead(last_activity_at=NOW - timedelta(days=45), email="a@b.com")
        score, factors = calculate_lead_score(lead, NOW)
        assert factors.stale_lead == -15
        assert score == 0

    def test_inactivity_penalties(self):
        _, mid = calculate_lead_score(_lead(last_activity_at=NOW - timedelta(days=20)), NOW)
        assert mid.no_recent_activity == -10
        _, recent = calculate_lead_score(_lead(last_activity_at=NOW - timedelta(days=7)), NOW)
        assert recent.recent_activity == 20

    def test_cash_buyers_get_no_financing_points(self):
        _, factors = calculate_lead_score(_lead(financing_type="cash"), NOW)
        assert factors.needs_financing == 0


def test_temperature_thresholds():
    assert lead_temperature(70) == "hot"
    assert lead_temperature(69) == "warm"
    assert lead_temperature(40) == "warm"
    assert lead_temperature(39) == "cold"
    assert lead_temperature(20) == "cold"
    assert lead_temperature(19) == "dead"


def test_priority_rules():
    assert determine_priority(_lead(applied=True), 10, NOW) == "urgent"
    assert determine_priority(_lead(), 80, NOW) == "urgent"
    assert determine_priority(_lead(), 65, NOW) == "high"
    assert determine_priority(_lead(created_at=NOW - timedelta(hours=3)), 10, NOW) == "high"
    assert determine_priority(_lead(), 45, NOW) == "medium"
    assert determine_priority(_lead(), 10, NOW) == "low"


def test_next_action_suggestions():
    assert suggest_next_action(_lead(applied=True), NOW).startswith("Follow up on credit application")
    assert "check-in" in suggest_next_action(_lead(last_activity_at=NOW - timedelta(days=9)), NOW)
    assert suggest_next_action(_lead(stock_number="X1"), NOW) == "Send trailer details and pricing"
    assert suggest_next_action(_lead(email="a@b.com"), NOW) == "Get complete contact information"
    assert suggest_next_action(_lead(email="a@b.com", phone="5551234567"), NOW) == "Make initial contact and qualify lead"


def test_apply_score_writes_back():
    lead = _lead(applied=True, email="a@b.com", phone="5551234567")
    result = apply_score(lead, NOW)
    assert lead.lead_score == result.score == 38
    assert lead.temperature == "cold"
    assert lead.priority == "urgent"
    assert lead.days_in_stage == 3


def test_score_customer_result():
    result = score_customer(_lead(id=42), NOW)
    assert result.customer_id == 42
    assert result.temperature == "dead"


def test_response_time_minutes():
    created = NOW - timedelta(hours=2)
    assert response_time_minutes(created, NOW) == 120
    assert response_time_minutes(created, None) is None
