"""
Payment math for the finance desk and quotes.

All amounts are dollars, rates are percentages (6.0 means 6%). Nothing here
rounds; callers round for display.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass

RTO_BASE_MARKUP = 1400.0
RTO_MONTHLY_FACTOR = 0.035
RTO_MIN_DOWN = 200.0
RTO_DOC_FEE = 99.0
RTO_BUYOUT_FEE = 250.0


@dataclass(frozen=True)
class FinanceResult:
    principal: float
    monthly_payment: float
    total_paid: float
    total_interest: float
    taxes: float

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class RtoResult:
    rto_price: float
    down: float
    monthly_rent: float
    monthly_tax: float
    monthly_total: float
    due_at_signing: float
    buyout_fee: float
    total_paid: float
    doc_fee: float

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class CashResult:
    base_price: float
    added_options: float
    subtotal: float
    taxes: float
    fees: float
    total_cash: float

    def to_dict(self) -> dict:
        return asdict(self)


def calculate_monthly_payment(principal: float, apr_percent: float, term_months: int) -> float:
    if principal == 0 or term_months == 0:
        return 0.0
    r = apr_percent / 100 / 12
    if r == 0:
        return principal / term_months
    pow_ = (1 + r) ** term_months
    return principal * r * pow_ / (pow_ - 1)


def calculate_finance(
    price: float,
    down: float,
    tax_pct: float,
    fees: float,
    apr_percent: float,
    term_months: int,
) -> FinanceResult:
    taxes = price * (tax_pct / 100)
    principal = max(0.0, price - down + taxes + fees)
    if principal == 0 or term_months == 0:
        return FinanceResult(0.0, 0.0, down + fees, 0.0, taxes)

    payment = calculate_monthly_payment(principal, apr_percent, term_months)
    total_paid = payment * term_months + down
    total_interest = max(0.0, total_paid - down - price - fees)
    return FinanceResult(principal, payment, total_paid, total_interest, taxes)


def solve_apr(principal: float, payment: float, term_months: int, guess: float = 8.0) -> float:
    """APR (percent) that makes `payment` amortize `principal` over the term. Newton-Raphson."""
    if principal == 0 or term_months == 0 or payment == 0:
        return 0.0

    apr = max(0.0001, guess)
    for _ in range(30):
        r = apr / 100 / 12
        pow_ = (1 + r) ** term_months
        f = payment - principal * r * pow_ / (pow_ - 1)
        numerator = principal * (pow_ * (pow_ - 1) - r * term_months * (1 + r) ** (term_months - 1))
        df = -numerator / (pow_ - 1) ** 2
        if not math.isfinite(f) or not math.isfinite(df) or abs(df) < 1e-12:
            break
        next_apr = apr - (f / df) * 12 * 100
        if abs(next_apr - apr) < 1e-6:
            apr = next_apr
            break
        apr = max(0.0, next_apr)
        if apr == 0.0:
            break
    return max(0.0, apr)


def calculate_rto(
    price: float,
    down: float,
    tax_pct: float,
    term_months: int,
    *,
    base_markup: float = RTO_BASE_MARKUP,
    monthly_factor: float = RTO_MONTHLY_FACTOR,
    min_down: float = RTO_MIN_DOWN,
    doc_fee: float = RTO_DOC_FEE,
    buyout_fee: float = RTO_BUYOUT_FEE,
) -> RtoResult:
    rto_price = price + base_markup
    actual_down = max(down, min_down)
    monthly_rent = rto_price * monthly_factor
    monthly_tax = monthly_rent * (tax_pct / 100)
    monthly_total = monthly_rent + monthly_tax
    return RtoResult(
        rto_price=rto_price,
        down=actual_down,
        monthly_rent=monthly_rent,
        monthly_tax=monthly_tax,
        monthly_total=monthly_total,
        due_at_signing=actual_down + doc_fee + monthly_total,
        buyout_fee=buyout_fee,
        total_paid=monthly_total * term_months + actual_down + doc_fee,
        doc_fee=doc_fee,
    )


def calculate_rto_monthly(
    price: float,
    down: float,
    tax_pct: float,
    base_markup: float = RTO_BASE_MARKUP,
    monthly_factor: float = RTO_MONTHLY_FACTOR,
) -> float:
    # Down payment does not change RTO rent; kept for call-site symmetry with finance.
    monthly_rent = (price + base_markup) * monthly_factor
    return monthly_rent + monthly_rent * (tax_pct / 100)


def compare_rto_vs_finance(rto: RtoResult, finance_monthly: float, finance_term: int, finance_down: float) -> dict:
    finance_total = finance_monthly * finance_term + finance_down
    return {
        "rto_total_cost": rto.total_paid,
        "finance_total_cost": finance_total,
        "difference": abs(rto.total_paid - finance_total),
        "rto_is_more_expensive": rto.total_paid > finance_total,
    }


def calculate_cash(price: float, tax_pct: float, fees: float, added_options: float = 0.0) -> CashResult:
    subtotal = price + added_options
    taxes = subtotal * (tax_pct / 100)
    return CashResult(price, added_options, subtotal, taxes, fees, subtotal + taxes + fees)


def calculate_tax(price: float, tax_pct: float) -> float:
    return price * (tax_pct / 100)


def calculate_out_the_door(price: float, tax_pct: float, fees: float) -> float:
    return price + calculate_tax(price, tax_pct) + fees


def calculate_cash_discount(price: float, discount_percent: float) -> dict:
    discount = price * (discount_percent / 100)
    return {"original_price": price, "discount": discount, "discounted_price": price - discount}
