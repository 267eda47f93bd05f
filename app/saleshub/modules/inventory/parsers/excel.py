"""
Manufacturer inventory spreadsheets (.xlsx).

Each manufacturer ships its own layout:
- Diamond Cargo: sheet "AVAILBLE" (sic), header on row 6, data from row 7.
  A stock #, B VIN, F model, G color, J height, R price (dealer cost),
  S new discounted price, AH notes/options.
- Quality Cargo: sheet "PLAIN UNITS " (trailing space), data from row 2.
  A VIN, B base price, C discount, D final price, E model, F color,
  G GVWR, I door, J ramp, K notes.
- Panther Cargo: first sheet, header row found by a "vin" cell in the first
  five rows; VIN in A, model in B, price in the last column.
"""

from __future__ import annotations

import logging
from datetime import date
from io import BytesIO
from typing import Any
from zipfile import BadZipFile

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from app.saleshub.modules.inventory.parsers import ParsedTrailer, ParseResult
from app.saleshub.modules.inventory.trailer_codes import (
    diamond_height,
    parse_color,
    parse_features,
    parse_height_feet,
    parse_size,
)
from app.saleshub.utils import parse_float

logger = logging.getLogger(__name__)

DIAMOND = "Diamond Cargo"
QUALITY = "Quality Cargo"
PANTHER = "Panther Cargo"
MANUFACTURERS = (DIAMOND, QUALITY, PANTHER)

DIAMOND_SHEET = "AVAILBLE"
QUALITY_SHEET = "PLAIN UNITS "


def _cell(row: tuple[Any, ...], idx: int) -> Any:
    return row[idx] if idx < len(row) else None


def _text(value: Any) -> str:
    if value is None:
        return ""
    text = str(value).strip()
    return "" if text.lower() == "nan" else text


def _rows(data: bytes, sheet_name: str | None) -> list[tuple[Any, ...]]:
    try:
        wb = load_workbook(BytesIO(data), read_only=True, data_only=True)
    except (BadZipFile, InvalidFileException) as e:
        raise ValueError(f"Not a readable .xlsx workbook: {e}") from e
    try:
        if sheet_name is None:
            ws = wb.worksheets[0] if wb.worksheets else None
            if ws is None:
                raise ValueError("Workbook has no sheets")
        else:
            if sheet_name not in wb.sheetnames:
                raise ValueError(f"Missing '{sheet_name}' sheet")
            ws = wb[sheet_name]
        return [tuple(r) for r in ws.iter_rows(values_only=True)]
    finally:
        wb.close()


def _dimensions(model: str) -> tuple[float | None, float | None]:
    size = parse_size(model)
    return size if size else (None, None)


def parse_diamond(data: bytes) -> ParseResult:
    rows = _rows(data, DIAMOND_SHEET)
    trailers: list[ParsedTrailer] = []
    year = date.today().year

    for idx in range(6, len(rows)):
        row = rows[idx]
        vin = _text(_cell(row, 1))
        if not vin:
            continue
        model = _text(_cell(row, 5)) or "Unknown"
        cost = parse_float(_cell(row, 17))
        discounted = _cell(row, 18)
        discounted_price = parse_float(discounted)
        width, length = _dimensions(model)
        height = parse_height_feet(_text(_cell(row, 9)))
        if height is None and width:
            height = diamond_height(width)
        color = _text(_cell(row, 6)) or parse_color(model).name
        trailers.append(
            ParsedTrailer(
                vin=vin,
                stock_number=_text(_cell(row, 0)) or vin,
                manufacturer=DIAMOND,
                model=model,
                year=year,
                category="enclosed",
                width=width,
                length=length,
                height=height,
                cost=cost,
                msrp=discounted_price if discounted_price and discounted_price > 0 else None,
                sale_price=discounted_price if discounted_price and discounted_price > 0 else None,
                make_offer=_text(discounted).upper() == "MAKE OFFER",
                features=parse_features(model),
                color=color,
                description=_text(_cell(row, 33)) or None,
            )
        )
    logger.info("Parsed %s trailers from %s", len(trailers), DIAMOND)
    return ParseResult(trailers, [], len(rows))


def parse_quality(data: bytes) -> ParseResult:
    rows = _rows(data, QUALITY_SHEET)
    trailers: list[ParsedTrailer] = []
    year = date.today().year

    for idx in range(1, len(rows)):
        row = rows[idx]
        vin = _text(_cell(row, 0))
        if not vin:
            continue
        base = parse_float(_cell(row, 1)) or 0.0
        discount = parse_float(_cell(row, 2)) or 0.0
        final = parse_float(_cell(row, 3))
        if final is None:
            final = base + discount
        model = _text(_cell(row, 4)) or "Unknown"
        width, length = _dimensions(model)
        notes = " | ".join(p for p in (_text(_cell(row, 8)), _text(_cell(row, 9)), _text(_cell(row, 10))) if p)
        trailers.append(
            ParsedTrailer(
                vin=vin,
                stock_number=vin,
                manufacturer=QUALITY,
                model=model,
                year=year,
                category="enclosed",
                width=width,
                length=length,
                height=None,
                cost=final if final > 0 else None,
                msrp=base if base > 0 else None,
                sale_price=None,
                features=parse_features(model),
                color=_text(_cell(row, 5)) or None,
                description=notes or None,
            )
        )
    logger.info("Parsed %s trailers from %s", len(trailers), QUALITY)
    return ParseResult(trailers, [], len(rows))


def parse_panther(data: bytes) -> ParseResult:
    rows = _rows(data, None)
    trailers: list[ParsedTrailer] = []
    year = date.today().year

    header_idx = 0
    for i in range(min(5, len(rows))):
        if any("vin" in _text(c).lower() for c in rows[i]):
            header_idx = i
            break

    for idx in range(header_idx + 1, len(rows)):
        row = rows[idx]
        vin = _text(_cell(row, 0))
        if not vin:
            continue
        model = _text(_cell(row, 1)) or "Unknown"
        populated = [c for c in row if c not in (None, "")]
        price = parse_float(populated[-1]) if populated else None
        lowered = model.lower()
        category = "utility"
        if "dump" in lowered:
            category = "dump"
        if "open" in lowered:
            category = "open"
        width, length = _dimensions(model)
        trailers.append(
            ParsedTrailer(
                vin=vin,
                stock_number=vin,
                manufacturer=PANTHER,
                model=model,
                year=year,
                category=category,
                width=width,
                length=length,
                height=None,
                cost=round(price * 0.75, 2) if price else None,
                msrp=price,
                sale_price=price,
                features=[],
                color=None,
                description=f"Panther {category} trailer",
            )
        )
    logger.info("Parsed %s trailers from %s", len(trailers), PANTHER)
    return ParseResult(trailers, [], len(rows))


PARSERS = {
    DIAMOND: parse_diamond,
    QUALITY: parse_quality,
    PANTHER: parse_panther,
}


def parse_workbook(data: bytes, manufacturer: str) -> ParseResult:
    parser = PARSERS.get(manufacturer)
    if parser is None:
        raise ValueError("Unknown manufacturer")
    return parser(data)
