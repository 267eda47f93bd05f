"""
Rent-to-own up-front charges by state.

Up-front charges (UF) = first month + security deposit + state fee + county
fee. They are collected at signing and never rolled into the monthly payment.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass


@dataclass(frozen=True)
class RtoFeeConfig:
    state_name: str
    security_deposit_rate: float  # multiple of the first month's rent
    state_fee: float
    county_fee: float = 0.0
    rto_allowed: bool = True
    notes: str | None = None


DEFAULT_STATE = "default"

RTO_FEE_MAP: dict[str, RtoFeeConfig] = {
    DEFAULT_STATE: RtoFeeConfig("Default", 1.0, 35),
    "GA": RtoFeeConfig("Georgia", 1.0, 25, notes="GA has lower state fees than average"),
    "FL": RtoFeeConfig("Florida", 0.75, 45, notes="FL has lower security deposit but higher state fee"),
    "AL": RtoFeeConfig("Alabama", 1.0, 30),
    "SC": RtoFeeConfig("South Carolina", 1.0, 35),
    "NC": RtoFeeConfig("North Carolina", 1.0, 40),
    "TN": RtoFeeConfig("Tennessee", 1.0, 35),
    "MS": RtoFeeConfig("Mississippi", 1.0, 30),
    "LA": RtoFeeConfig("Louisiana", 1.0, 35),
    "NJ": RtoFeeConfig("New Jersey", 0, 0, rto_allowed=False, notes="RTO is not permitted in New Jersey (state law)"),
    "TX": RtoFeeConfig("Texas", 1.0, 40),
    "VA": RtoFeeConfig("Virginia", 1.0, 35),
    "MD": RtoFeeConfig("Maryland", 1.0, 45),
    "PA": RtoFeeConfig("Pennsylvania", 1.0, 40),
    "NY": RtoFeeConfig("New York", 1.0, 50, notes="NY has higher filing fees"),
    "CA": RtoFeeConfig("California", 1.0, 55, notes="CA has highest filing fees"),
}

# Inclusive ZIP3 ranges (USPS allocation), Southeast plus NJ.
ZIP3_RANGES: tuple[tuple[int, int, str], ...] = (
    (300, 319, "GA"),
    (320, 349, "FL"),
    (350, 369, "AL"),
    (370, 385, "TN"),
    (386, 397, "MS"),
    (290, 299, "SC"),
    (270, 289, "NC"),
    (700, 714, "LA"),
    (70, 89, "NJ"),
)


@dataclass(frozen=True)
class UpFrontCharges:
    first_month_rent: float
    security_deposit: float
    state_fee: float
    county_fee: float
    total_uf: float
    state_code: str
    state_config: RtoFeeConfig

    def to_dict(self) -> dict:
        d = asdict(self)
        d["state_config"] = asdict(self.state_config)
        return d


def fees_for_state(state_code: str | None) -> RtoFeeConfig:
    return RTO_FEE_MAP.get((state_code or "").upper(), RTO_FEE_MAP[DEFAULT_STATE])


def state_from_zip(zip_code: str | int | None) -> str:
    digits = re.sub(r"\D", "", "" if zip_code is None else str(zip_code))
    if len(digits) < 3:
        return DEFAULT_STATE
    zip3 = int(digits[:3])
    for low, high, state in ZIP3_RANGES:
        if low <= zip3 <= high:
            return state
    return DEFAULT_STATE


def fees_for_zip(zip_code: str | None) -> RtoFeeConfig:
    return fees_for_state(state_from_zip(zip_code))


def calculate_up_front_charges(monthly_rent: float, zip_code: str | None) -> UpFrontCharges:
    state = state_from_zip(zip_code)
    config = fees_for_state(state)
    deposit = monthly_rent * config.security_deposit_rate
    total = monthly_rent + deposit + config.state_fee + config.county_fee
    return UpFrontCharges(monthly_rent, deposit, config.state_fee, config.county_fee, total, state, config)
