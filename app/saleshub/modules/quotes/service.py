from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from flask import render_template
from sqlalchemy import select

from app.saleshub.audit import record_event
from app.saleshub.modules.crm.activities import log_activity
from app.saleshub.modules.crm.models import Customer
from app.saleshub.modules.deals.numbering import format_trailer_size
from app.saleshub.modules.finance.calculators import calculate_cash, calculate_finance, calculate_rto
from app.saleshub.modules.finance.zip_tax import location_by_zip
from app.saleshub.modules.inventory.models import Trailer
from app.saleshub.modules.quotes.models import Quote, QuoteCounter
from app.saleshub.storage import Storage
from app.saleshub.utils import ServiceError, clean_str, iso, parse_float, parse_int, pick

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.saleshub.models import User

logger = logging.getLogger(__name__)

QUOTE_VALID_DAYS = 30
DEFAULT_APR = 8.99
DEFAULT_DOWNS = (0.0, 1000.0, 2000.0)
DEFAULT_FINANCE_TERMS = (24, 36, 48, 60)
DEFAULT_RTO_TERMS = (24, 36, 48)


def serialize_quote(q: Quote) -> dict[str, Any]:
    return {
        "id": q.id,
        "quoteNumber": q.quote_number,
        "customerId": q.customer_id,
        "trailerId": q.trailer_id,
        "createdByUserId": q.created_by_user_id,
        "price": q.price,
        "taxRate": q.tax_rate,
        "fees": q.fees,
        "zipCode": q.zip_code,
        "options": q.options or {},
        "status": q.status,
        "validUntil": iso(q.valid_until),
        "hasDocument": bool(q.storage_key),
        "createdAt": iso(q.created_at),
    }


def next_quote_number(s: "Session", now: datetime) -> str:
    """
    Q-YYYY-MMDD-NNN. The day's counter row is read FOR UPDATE, the same way
    deal numbers are drawn, so concurrent quotes never share a number.
    """
    prefix = f"Q-{now:%Y}-{now:%m%d}-"
    day = f"{now:%Y%m%d}"
    counter = s.execute(select(QuoteCounter).where(QuoteCounter.day == day).with_for_update()).scalar_one_or_none()
    if counter is None:
        # Quotes issued before the counter existed still occupy their numbers.
        issued = s.query(Quote).filter(Quote.quote_number.like(prefix + "%")).count()
        counter = QuoteCounter(day=day, current_value=issued)
        s.add(counter)
    counter.current_value += 1
    s.flush()
    return f"{prefix}{counter.current_value:03d}"


def _number_list(raw: Any, default: tuple, cast) -> list:
    if not isinstance(raw, list) or not raw:
        return list(default)
    values = [cast(v) for v in raw]
    return [v for v in values if v is not None]


def build_quote(
    *,
    price: float,
    tax_rate: float,
    fees: float = 0.0,
    apr: float = DEFAULT_APR,
    downs: list[float] | None = None,
    finance_terms: list[int] | None = None,
    rto_terms: list[int] | None = None,
    rto_down: float = 0.0,
) -> dict[str, Any]:
    """Finance grid (downs x terms), rent-to-own options and the cash total for one price."""
    downs = downs or list(DEFAULT_DOWNS)
    finance_terms = finance_terms or list(DEFAULT_FINANCE_TERMS)
    rto_terms = rto_terms or list(DEFAULT_RTO_TERMS)

    finance = []
    for down in downs:
        for term in finance_terms:
            r = calculate_finance(price, down, tax_rate, fees, apr, term)
            finance.append({
                "downPayment": down,
                "term": term,
                "apr": apr,
                "monthlyPayment": r.monthly_payment,
                "totalOfPayments": r.total_paid,
            })

    rto = []
    for term in rto_terms:
        r = calculate_rto(price, rto_down, tax_rate, term)
        rto.append({
            "downPayment": r.down,
            "term": term,
            "monthlyPayment": r.monthly_total,
            "dueAtSigning": r.due_at_signing,
            "totalRent": r.total_paid,
        })

    cash = calculate_cash(price, tax_rate, fees)
    return {
        "finance": finance,
        "rto": rto,
        "cash": {"totalPrice": cash.total_cash, "taxes": cash.taxes, "fees": cash.fees},
    }


def render_quote_html(quote_data: dict[str, Any]) -> str:
    return render_template("quotes/quote.html", **quote_data)


def _quote_context(quote: Quote, customer: Customer, trailer: Trailer | None, rep: "User") -> dict[str, Any]:
    return {
        "quote": serialize_quote(quote),
        "customer": {
            "name": customer.full_name,
            "email": customer.email,
            "phone": customer.phone,
        },
        "trailer": {
            "manufacturer": trailer.manufacturer,
            "model": trailer.model,
            "year": trailer.year,
            "stockNumber": trailer.stock_number,
            "vin": trailer.vin,
            "size": format_trailer_size(trailer.length, trailer.width),
        }
        if trailer
        else None,
        "rep": {"name": rep.display_name, "email": rep.email, "phone": rep.phone, "repCode": rep.rep_code},
        "options": quote.options or {},
    }


def create_quote(
    s: "Session",
    actor: "User",
    customer: Customer,
    payload: dict[str, Any],
    storage: Storage,
    now: datetime | None = None,
) -> Quote:
    now = now or datetime.utcnow()
    trailer = None
    trailer_id = parse_int(pick(payload, "trailerId", "trailer_id"))
    if trailer_id:
        trailer = s.get(Trailer, trailer_id)
        if trailer is None:
            raise ServiceError("Trailer not found", 404)

    price = parse_float(pick(payload, "price"))
    if price is None and trailer is not None:
        price = trailer.sale_price
    if price is None or price <= 0:
        raise ServiceError("A positive price is required (trailer has no sale price)")

    zip_code = clean_str(pick(payload, "zip", "zipCode", "zip_code")) or customer.zip_code
    tax_rate = parse_float(pick(payload, "taxRate", "tax_rate"))
    if tax_rate is None:
        tax_rate = location_by_zip(zip_code).tax_rate
    fees = parse_float(pick(payload, "fees")) or 0.0
    apr = parse_float(pick(payload, "apr")) or DEFAULT_APR

    options = build_quote(
        price=price,
        tax_rate=tax_rate,
        fees=fees,
        apr=apr,
        downs=_number_list(pick(payload, "downs"), DEFAULT_DOWNS, parse_float),
        finance_terms=_number_list(pick(payload, "terms", "financeTerms"), DEFAULT_FINANCE_TERMS, parse_int),
        rto_terms=_number_list(pick(payload, "rtoTerms", "rto_terms"), DEFAULT_RTO_TERMS, parse_int),
        rto_down=parse_float(pick(payload, "rtoDown", "rto_down")) or 0.0,
    )

    quote = Quote(
        quote_number=next_quote_number(s, now),
        customer_id=customer.id,
        trailer_id=trailer.id if trailer else None,
        created_by_user_id=actor.id,
        price=price,
        tax_rate=tax_rate,
        fees=fees,
        zip_code=zip_code,
        options=options,
        status="draft",
        valid_until=now + timedelta(days=QUOTE_VALID_DAYS),
        created_at=now,
    )
    s.add(quote)
    s.flush()

    html = render_quote_html(_quote_context(quote, customer, trailer, actor))
    key = f"quotes/{quote.quote_number}.html"
    storage.put_bytes(key, html.encode("utf-8"), content_type="text/html; charset=utf-8")
    quote.storage_key = key

    log_activity(
        s,
        customer,
        user_id=actor.id,
        activity_type="note",
        subject=f"Quote {quote.quote_number} created",
        description=f"Price ${price:,.2f}, tax {tax_rate}%",
    )
    record_event(
        s,
        actor=actor,
        action="quotes.create",
        entity_type="Quote",
        entity_id=quote.id,
        metadata={"quote_number": quote.quote_number, "customer_id": customer.id, "trailer_id": quote.trailer_id},
    )
    logger.info("quote %s created for customer %s", quote.quote_number, customer.id)
    return quote


def quote_html(quote: Quote, storage: Storage) -> bytes:
    if not quote.storage_key:
        raise ServiceError("Quote document not generated", 404)
    return storage.read_bytes(quote.storage_key)
