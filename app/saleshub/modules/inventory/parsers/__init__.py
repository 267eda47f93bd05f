"""
Manufacturer inventory file parsers.

Parsers return plain ParsedTrailer rows; persisting them (upsert by VIN,
pricing, upload reports) is inventory.service's job.
"""
from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class ParsedTrailer:
    vin: str
    stock_number: str | None
    manufacturer: str
    model: str | None
    year: int | None
    category: str | None
    width: float | None
    length: float | None
    height: float | None
    cost: float | None
    msrp: float | None
    sale_price: float | None
    make_offer: bool = False
    features: list[str] = field(default_factory=list)
    color: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class ParseError:
    row_index: int | None
    message: str
    raw_data: str | None = None


@dataclass(frozen=True)
class ParseResult:
    trailers: list[ParsedTrailer]
    errors: list[ParseError]
    total_rows_processed: int
