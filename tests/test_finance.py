"""Payment math, RTO state fees and Kentucky ZIP tax lookup."""

import pytest

from app.saleshub.modules.finance.calculators import (
    calculate_cash,
    calculate_cash_discount,
    calculate_finance,
    calculate_monthly_payment,
    calculate_out_the_door,
    calculate_rto,
    calculate_rto_monthly,
    compare_rto_vs_finance,
    solve_apr,
)
from app.saleshub.modules.finance.fee_map import (
    DEFAULT_STATE,
    calculate_up_front_charges,
    fees_for_state,
    state_from_zip,
)
from app.saleshub.modules.finance.zip_tax import clean_zip, is_known_ky_zip, location_by_zip


class TestFinance:
    def test_zero_rate_is_straight_division(self):
        assert calculate_monthly_payment(10000, 0, 10) == 1000

    def test_standard_amortization(self):
        assert calculate_monthly_payment(10000, 12, 12) == pytest.approx(888.49, abs=0.01)

    def test_zero_principal_or_term(self):
        assert calculate_monthly_payment(0, 9.0, 36) == 0
        assert calculate_monthly_payment(5000, 9.0, 0) == 0

    def test_finance_includes_tax_and_fees_in_principal(self):
        r = calculate_finance(10000, 1000, 6, 200, 0, 10)
        assert r.taxes == pytest.approx(600)
        assert r.principal == pytest.approx(9800)
        assert r.monthly_payment == pytest.approx(980)
        assert r.total_paid == pytest.approx(10800)
        assert r.total_interest == 0

    def test_down_covers_everything(self):
        r = calculate_finance(1000, 2000, 0, 0, 8.99, 36)
        assert r.principal == 0
        assert r.monthly_payment == 0
        assert r.total_paid == 2000

    def test_solve_apr_recovers_rate(self):
        payment = calculate_monthly_payment(20000, 9.5, 60)
        assert solve_apr(20000, payment, 60) == pytest.approx(9.5, abs=1e-3)

    def test_solve_apr_degenerate_inputs(self):
        assert solve_apr(0, 100, 12) == 0
        assert solve_apr(1000, 0, 12) == 0


class TestRto:
    def test_rto_breakdown(self):
        r = calculate_rto(5000, 0, 6, 36)
        assert r.rto_price == 6400
        assert r.down == 200  # minimum down applies
        assert r.monthly_rent == pytest.approx(224)
        assert r.monthly_tax == pytest.approx(13.44)
        assert r.monthly_total == pytest.approx(237.44)
        assert r.due_at_signing == pytest.approx(536.44)
        assert r.total_paid == pytest.approx(8846.84)

    def test_rto_monthly_ignores_down(self):
        assert calculate_rto_monthly(5000, 0, 6) == calculate_rto_monthly(5000, 3000, 6)

    def test_compare(self):
        rto = calculate_rto(5000, 0, 6, 36)
        result = compare_rto_vs_finance(rto, 150, 36, 500)
        assert result["finance_total_cost"] == 5900
        assert result["rto_is_more_expensive"] is True


def test_cash_helpers():
    cash = calculate_cash(5000, 6, 100)
    assert cash.taxes == pytest.approx(300)
    assert cash.total_cash == pytest.approx(5400)
    assert calculate_out_the_door(5000, 6, 100) == pytest.approx(5400)
    assert calculate_cash_discount(5000, 10)["discounted_price"] == pytest.approx(4500)


class TestFeeMap:
    def test_state_from_zip(self):
        assert state_from_zip("30301") == "GA"
        assert state_from_zip("33101") == "FL"
        assert state_from_zip("07001") == "NJ"
        assert state_from_zip("42101") == DEFAULT_STATE
        assert state_from_zip("12") == DEFAULT_STATE
        assert state_from_zip(None) == DEFAULT_STATE
        assert state_from_zip(30301) == "GA"

    def test_new_jersey_blocks_rto(self):
        assert fees_for_state("nj").rto_allowed is False
        assert fees_for_state("ZZ").state_name == "Default"

    def test_up_front_charges(self):
        ga = calculate_up_front_charges(200, "30301")
        assert ga.security_deposit == 200
        assert ga.total_uf == pytest.approx(425)
        fl = calculate_up_front_charges(200, "33101")
        assert fl.total_uf == pytest.approx(395)
        assert fl.to_dict()["state_config"]["state_name"] == "Florida"


class TestZipTax:
    def test_warren_county(self):
        loc = location_by_zip("42101")
        assert loc.city == "Bowling Green"
        assert loc.tax_rate == 9.5

    def test_zip_plus_four(self):
        assert location_by_zip("42101-1234").tax_rate == 9.5

    def test_numeric_zip(self):
        assert clean_zip(42101) == "42101"
        assert location_by_zip(42101).city == "Bowling Green"

    def test_louisville_and_unknown(self):
        assert location_by_zip("40202").city == "Louisville"
        assert location_by_zip("99999").tax_rate == 6.0
        assert is_known_ky_zip("40502") is True
        assert is_known_ky_zip("99999") is False
