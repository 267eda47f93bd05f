from __future__ import annotations

import re
from typing import TYPE_CHECKING

from sqlalchemy import select

from app.saleshub.modules.deals.models import DealCounter

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

COUNTER_ID = 1

COMMON_COLORS = (
    "Black",
    "White",
    "Silver",
    "Charcoal",
    "Red",
    "Blue",
    "Green",
    "Orange",
    "Yellow",
    "Gray",
    "Brown",
    "Beige",
    "Tan",
    "Bronze",
)

_POLYCORE_RE = re.compile(r"(\w+)\s*polycore", re.IGNORECASE)


def format_deal_number(n: int) -> str:
    return f"DEAL-{n:05d}"


def generate_deal_number(s: "Session") -> str:
    """
    Next DEAL-NNNNN number. The counter row is read FOR UPDATE so two
    concurrent sales cannot draw the same number (Postgres; SQLite serializes
    writers anyway).
    """
    counter = s.execute(
        select(DealCounter).where(DealCounter.id == COUNTER_ID).with_for_update()
    ).scalar_one_or_none()
    if counter is None:
        counter = DealCounter(id=COUNTER_ID, current_value=0)
        s.add(counter)
    counter.current_value += 1
    s.flush()
    return format_deal_number(counter.current_value)


def next_deal_number_preview(s: "Session") -> str:
    counter = s.get(DealCounter, COUNTER_ID)
    return format_deal_number((counter.current_value if counter else 0) + 1)


def extract_color_from_features(features: list[str] | None) -> str | None:
    for feature in features or []:
        lowered = feature.lower()
        for color in COMMON_COLORS:
            if color.lower() in lowered:
                return color
        m = _POLYCORE_RE.search(feature)
        if m:
            return m.group(1)
    return None


def _feet(value: float) -> str:
    return f"{value:g}"


def format_trailer_size(length: float | None, width: float | None) -> str:
    if not length or not width:
        return "N/A"
    return f"{_feet(width)}' x {_feet(length)}'"
