"""
Manufacturer inventory PDFs.

Text is pulled with pdfplumber and each line is matched against the
model-code line layout:

    <VIN> <W>X<L><axle> <color>.<skin> <features> <height>' <cost>

e.g. "4X4TC1623R1234567 7X16TA2 B.080 R VN 7' $5,425.00". Lines that do not
match are ignored; matching lines with an unreadable cost are reported.
"""

from __future__ import annotations

import logging
import re
from datetime import date
from io import BytesIO

import pdfplumber

from app.saleshub.modules.inventory.parsers import ParsedTrailer, ParseError, ParseResult
from app.saleshub.modules.inventory.pricing import compute_selling_price
from app.saleshub.modules.inventory.trailer_codes import parse_color, parse_trailer_model

logger = logging.getLogger(__name__)

LINE_RE = re.compile(
    r"\b(?P<vin>[A-HJ-NPR-Z0-9]{11,17})\s+"
    r"(?P<model>\d+(?:\.\d+)?X\d+\S*.*?)\s+"
    r"(?P<cost>\$?\d{1,3}(?:,\d{3})*(?:\.\d{1,2})?|\$?\d+(?:\.\d{1,2})?|MAKE OFFER|CALL|TBD)\s*$"
)


def extract_text(pdf_bytes: bytes) -> str:
    text: list[str] = []
    try:
        with pdfplumber.open(BytesIO(pdf_bytes)) as pdf:
            for page in pdf.pages:
                text.append(page.extract_text() or "")
    except Exception as e:
        logger.warning("PDF text extraction failed: %s", e)
        raise ValueError(f"Could not read PDF: {e}") from e
    return "\n".join(text)


def parse_lines(text: str, manufacturer: str) -> ParseResult:
    trailers: list[ParsedTrailer] = []
    errors: list[ParseError] = []
    lines = text.splitlines()
    year = date.today().year

    for idx, raw in enumerate(lines, start=1):
        line = raw.strip()
        m = LINE_RE.search(line)
        if not m:
            continue
        vin = m.group("vin")
        model = m.group("model").strip()
        cost_raw = m.group("cost")
        pricing = compute_selling_price(cost_raw)
        cost = float(re.sub(r"[^0-9.]", "", cost_raw)) if pricing.price is not None else None
        if cost is None and cost_raw.upper() not in ("MAKE OFFER", "CALL", "TBD"):
            errors.append(ParseError(idx, "Unreadable cost", line))
            continue

        specs = parse_trailer_model(model)
        trailers.append(
            ParsedTrailer(
                vin=vin,
                stock_number=vin,
                manufacturer=manufacturer,
                model=model,
                year=year,
                category="enclosed",
                width=float(specs.width) if specs.width else None,
                length=float(specs.length) if specs.length else None,
                height=float(specs.interior_height) if specs.interior_height else None,
                cost=cost,
                msrp=None,
                sale_price=None,
                make_offer=cost is None,
                features=specs.features,
                color=parse_color(model).name,
                description=None,
            )
        )

    logger.info("Parsed %s trailers from PDF (%s lines)", len(trailers), len(lines))
    return ParseResult(trailers, errors, len(lines))


def parse_pdf(pdf_bytes: bytes, manufacturer: str) -> ParseResult:
    return parse_lines(extract_text(pdf_bytes), manufacturer)
