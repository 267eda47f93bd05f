"""
Trailer pricing.

Two rules are in play:
- desired price (what reps quote from cost): 25% markup, never less than $1,500 profit
- import pricing (uploaded inventory with no sale price): max(cost * 1.25, cost + $1,400)
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

MARKUP = 1.25
MIN_DESIRED_PROFIT = 1500.0
MIN_IMPORT_PROFIT = 1400.0

PRICED = "PRICED"
ASK_FOR_PRICING = "ASK_FOR_PRICING"

_TEXTUAL_COST_RE = re.compile(r"call|offer|tbd|n/a|price|contact", re.IGNORECASE)


@dataclass(frozen=True)
class PricingResult:
    price: float | None
    pricing_status: str


def calculate_desired_price(cost: float) -> float:
    standard = cost * MARKUP
    if standard - cost < MIN_DESIRED_PROFIT:
        return cost + MIN_DESIRED_PROFIT
    return standard


def _cost_value(cost_raw: Any) -> float | None:
    if cost_raw is None or isinstance(cost_raw, bool):
        return None
    if isinstance(cost_raw, (int, float)):
        return float(cost_raw)
    text = str(cost_raw).strip()
    if not text or _TEXTUAL_COST_RE.search(text):
        return None
    digits = re.sub(r"[^0-9.]", "", text)
    try:
        return float(digits)
    except ValueError:
        return None


def compute_selling_price(cost_raw: Any) -> PricingResult:
    cost = _cost_value(cost_raw)
    if cost is None or cost <= 0:
        return PricingResult(None, ASK_FOR_PRICING)
    return PricingResult(max(cost * MARKUP, cost + MIN_IMPORT_PROFIT), PRICED)
