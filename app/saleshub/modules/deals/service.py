from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import func

from app.saleshub.audit import record_event
from app.saleshub.models import User
from app.saleshub.modules.crm.activities import log_activity
from app.saleshub.modules.crm.models import Customer
from app.saleshub.modules.deals.models import Deal, DeliveryRecord
from app.saleshub.modules.deals.numbering import (
    extract_color_from_features,
    format_trailer_size,
    generate_deal_number,
)
from app.saleshub.modules.inventory.models import Trailer
from app.saleshub.modules.inventory.trailer_codes import format_height, parse_axle
from app.saleshub.utils import ServiceError, ValidationError, clean_str, iso, parse_date, parse_float, parse_int, pick

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

DEAL_TYPES = ("cash", "finance", "rto")
DEFAULT_DELIVERY_LIMIT = 50
MAX_DELIVERY_LIMIT = 200


def serialize_deal(d: Deal) -> dict[str, Any]:
    return {
        "id": d.id,
        "dealNumber": d.deal_number,
        "customerId": d.customer_id,
        "customerName": d.customer.full_name if d.customer else None,
        "trailerId": d.trailer_id,
        "status": d.status,
        "dealType": d.deal_type,
        "finalPrice": d.final_price,
        "deliveryDate": iso(d.delivery_date),
        "soldByUserId": d.sold_by_user_id,
        "soldByRepCode": d.sold_by_rep_code,
        "soldByName": d.sold_by_name,
        "trailerVin": d.trailer_vin,
        "trailerCost": d.trailer_cost,
        "trailerManufacturer": d.trailer_manufacturer,
        "trailerCategory": d.trailer_category,
        "trailerSize": d.trailer_size,
        "trailerAxles": d.trailer_axles,
        "trailerColor": d.trailer_color,
        "trailerHeight": d.trailer_height,
        "trailerStockNumber": d.trailer_stock_number,
        "profit": d.profit,
        "profitMargin": d.profit_margin,
        "notes": d.notes,
        "markedSoldAt": iso(d.marked_sold_at),
        "markedSoldByUserId": d.marked_sold_by_user_id,
    }


def serialize_delivery(r: DeliveryRecord) -> dict[str, Any]:
    return {
        "id": r.id,
        "customerName": r.customer_name,
        "trailerIdentifier": r.trailer_identifier,
        "deliveryDate": iso(r.delivery_date),
        "commissionAmount": r.commission_amount,
        "profitAmount": r.profit_amount,
        "notes": r.notes,
        "createdByUserId": r.created_by_user_id,
        "createdBy": r.created_by.display_name if r.created_by else None,
        "createdAt": iso(r.created_at),
    }


# ---------- Mark as sold ----------
@dataclass(frozen=True)
class SaleRequest:
    customer_id: int
    sold_by_user_id: int
    delivery_date: date
    final_price: float
    trailer_id: int | None = None
    vin: str | None = None
    deal_type: str = "cash"
    notes: str | None = None


def parse_sale_request(payload: dict[str, Any]) -> SaleRequest:
    customer_id = parse_int(pick(payload, "customerId", "customer_id"))
    if not customer_id:
        raise ServiceError("Customer ID is required")
    sold_by = parse_int(pick(payload, "soldByUserId", "sold_by_user_id"))
    if not sold_by:
        raise ServiceError("Sold By (salesperson) is required")
    raw_date = pick(payload, "deliveryDate", "delivery_date")
    if not raw_date:
        raise ServiceError("Delivery date is required")
    try:
        delivery = parse_date(raw_date)
    except ValueError:
        raise ServiceError("Delivery date must be YYYY-MM-DD") from None
    price = parse_float(pick(payload, "finalPrice", "final_price"))
    if price is None or price <= 0:
        raise ServiceError("Valid sale price is required")
    deal_type = (clean_str(pick(payload, "dealType", "deal_type")) or "cash").lower()
    if deal_type not in DEAL_TYPES:
        raise ServiceError("dealType must be one of cash, finance, rto")
    return SaleRequest(
        customer_id=customer_id,
        sold_by_user_id=sold_by,
        delivery_date=delivery,
        final_price=price,
        trailer_id=parse_int(pick(payload, "trailerId", "trailer_id")),
        vin=clean_str(pick(payload, "vin")),
        deal_type=deal_type,
        notes=clean_str(pick(payload, "notes")),
    )


def trailer_snapshot(t: Trailer, vin_override: str | None = None) -> dict[str, Any]:
    axle_type, _weight = parse_axle(t.model or "")
    return {
        "trailer_vin": vin_override or t.vin,
        "trailer_cost": t.cost,
        "trailer_manufacturer": t.manufacturer,
        "trailer_category": t.category,
        "trailer_size": format_trailer_size(t.length, t.width),
        "trailer_axles": axle_type if t.model else None,
        "trailer_color": extract_color_from_features(t.features),
        "trailer_height": format_height(t.height) if t.height else None,
        "trailer_stock_number": t.stock_number,
    }


def profit_for(final_price: float, cost: float | None) -> tuple[float | None, float | None]:
    """(profit, margin %) against dealer cost; both None when cost is unknown."""
    if not cost or cost <= 0:
        return None, None
    profit = final_price - cost
    return round(profit, 2), round(profit / cost * 100, 2)


def mark_sold(s: "Session", actor: User, req: SaleRequest, now: datetime | None = None) -> Deal:
    now = now or datetime.utcnow()
    customer = s.get(Customer, req.customer_id)
    if customer is None:
        raise ServiceError("Customer not found", 404)
    seller = s.get(User, req.sold_by_user_id)
    if seller is None:
        raise ServiceError("Salesperson not found", 404)

    snapshot: dict[str, Any] = {}
    trailer = s.get(Trailer, req.trailer_id) if req.trailer_id else None
    if req.trailer_id and trailer is None:
        raise ServiceError("Trailer not found", 404)
    if trailer is not None:
        if trailer.status == "sold":
            raise ServiceError("This trailer has already been marked as sold")
        snapshot = trailer_snapshot(trailer, req.vin)
    elif req.vin:
        snapshot["trailer_vin"] = req.vin

    profit, margin = profit_for(req.final_price, snapshot.get("trailer_cost"))
    deal = Deal(
        deal_number=generate_deal_number(s),
        customer_id=customer.id,
        trailer_id=trailer.id if trailer else None,
        status="sold",
        deal_type=req.deal_type,
        final_price=req.final_price,
        delivery_date=req.delivery_date,
        sold_by_user_id=seller.id,
        sold_by_rep_code=seller.rep_code,
        sold_by_name=seller.display_name,
        profit=profit,
        profit_margin=margin,
        notes=req.notes,
        marked_sold_at=now,
        marked_sold_by_user_id=actor.id,
        created_at=now,
        **snapshot,
    )
    s.add(deal)

    if trailer is not None:
        trailer.status = "sold"
        trailer.sold_at = now
        trailer.sold_by_id = seller.id
        trailer.updated_at = now

    customer.status = "won"
    customer.updated_at = now
    s.flush()

    log_activity(
        s,
        customer,
        user_id=actor.id,
        activity_type="note",
        subject=f"Deal {deal.deal_number} marked as sold",
        description=(
            f"Sale completed by {seller.display_name} ({seller.rep_code or 'N/A'}). "
            f"Final price: ${req.final_price:,.2f}. Delivery date: {req.delivery_date.isoformat()}."
        ),
    )
    record_event(
        s,
        actor=actor,
        action="deals.mark_sold",
        entity_type="Deal",
        entity_id=deal.id,
        metadata={
            "deal_number": deal.deal_number,
            "customer_id": customer.id,
            "trailer_id": deal.trailer_id,
            "sold_by_user_id": seller.id,
            "final_price": req.final_price,
            "profit": profit,
        },
    )
    logger.info("deal %s created for customer %s", deal.deal_number, customer.id)
    return deal


# ---------- Delivery records ----------
def validate_delivery_payload(payload: dict[str, Any]) -> list[ValidationError]:
    errs: list[ValidationError] = []
    if not clean_str(pick(payload, "customerName", "customer_name")):
        errs.append(ValidationError("customerName", "customerName is required"))
    if not clean_str(pick(payload, "trailerIdentifier", "trailer_identifier")):
        errs.append(ValidationError("trailerIdentifier", "trailerIdentifier is required"))
    raw_date = pick(payload, "deliveryDate", "delivery_date")
    if not raw_date:
        errs.append(ValidationError("deliveryDate", "deliveryDate is required"))
    else:
        try:
            parse_date(raw_date)
        except ValueError:
            errs.append(ValidationError("deliveryDate", f"Invalid date value: {raw_date}"))
    for key, snake in (("commissionAmount", "commission_amount"), ("profitAmount", "profit_amount")):
        if parse_float(pick(payload, key, snake)) is None:
            errs.append(ValidationError(key, f"{key} must be a valid number"))
    return errs


def create_delivery_record(s: "Session", actor: User, payload: dict[str, Any]) -> DeliveryRecord:
    errs = validate_delivery_payload(payload)
    if errs:
        raise ServiceError("; ".join(e.message for e in errs))
    record = DeliveryRecord(
        customer_name=clean_str(pick(payload, "customerName", "customer_name")),
        trailer_identifier=clean_str(pick(payload, "trailerIdentifier", "trailer_identifier")),
        delivery_date=parse_date(pick(payload, "deliveryDate", "delivery_date")),
        commission_amount=parse_float(pick(payload, "commissionAmount", "commission_amount")),
        profit_amount=parse_float(pick(payload, "profitAmount", "profit_amount")),
        notes=clean_str(pick(payload, "notes")),
        created_by_user_id=actor.id,
    )
    s.add(record)
    s.flush()
    record_event(
        s,
        actor=actor,
        action="deliveries.create",
        entity_type="DeliveryRecord",
        entity_id=record.id,
        metadata={"trailer_identifier": record.trailer_identifier},
    )
    return record


def clamp_limit(raw: Any) -> int:
    limit = parse_int(raw) or DEFAULT_DELIVERY_LIMIT
    return min(max(limit, 1), MAX_DELIVERY_LIMIT)


def list_delivery_records(
    s: "Session",
    *,
    user_id: int | None = None,
    start: date | None = None,
    end: date | None = None,
    limit: Any = None,
) -> list[DeliveryRecord]:
    q = s.query(DeliveryRecord)
    if user_id:
        q = q.filter(DeliveryRecord.created_by_user_id == user_id)
    if start:
        q = q.filter(DeliveryRecord.delivery_date >= start)
    if end:
        q = q.filter(DeliveryRecord.delivery_date <= end)
    return q.order_by(DeliveryRecord.delivery_date.desc(), DeliveryRecord.id.desc()).limit(clamp_limit(limit)).all()


def delete_delivery_records(s: "Session", actor: User, ids: Any) -> int:
    if not isinstance(ids, list) or not ids:
        raise ServiceError("Invalid request. 'ids' must be a non-empty array.")
    int_ids = [i for i in (parse_int(x) for x in ids) if i is not None]
    deleted = s.query(DeliveryRecord).filter(DeliveryRecord.id.in_(int_ids)).delete(synchronize_session=False)
    record_event(
        s,
        actor=actor,
        action="deliveries.delete",
        entity_type="DeliveryRecord",
        metadata={"ids": int_ids, "deleted": deleted},
    )
    return deleted


def delivery_summary_last_30_days(s: "Session", today: date | None = None) -> dict[str, Any]:
    today = today or date.today()
    start = today - timedelta(days=30)
    count, commission, profit = (
        s.query(
            func.count(DeliveryRecord.id),
            func.coalesce(func.sum(DeliveryRecord.commission_amount), 0.0),
            func.coalesce(func.sum(DeliveryRecord.profit_amount), 0.0),
        )
        .filter(DeliveryRecord.delivery_date >= start, DeliveryRecord.delivery_date <= today)
        .one()
    )
    return {
        "totalDeliveries": int(count or 0),
        "totalCommission": float(commission or 0),
        "totalProfit": float(profit or 0),
    }


# ---------- Personal sales report ----------
def my_sales_report(
    s: "Session",
    user: User,
    *,
    commission_rate: float,
    start: date | None = None,
    end: date | None = None,
    manufacturer: str | None = None,
    year: int | None = None,
) -> dict[str, Any]:
    base = s.query(Deal).filter(Deal.status == "sold", Deal.sold_by_user_id == user.id)

    q = base
    if start:
        q = q.filter(Deal.delivery_date >= start)
    if end:
        q = q.filter(Deal.delivery_date <= end)
    if manufacturer:
        q = q.filter(Deal.trailer_manufacturer == manufacturer)
    deals = q.order_by(Deal.delivery_date.desc(), Deal.id.desc()).all()

    total_revenue = sum(d.final_price or 0 for d in deals)
    total_cost = sum(d.trailer_cost or 0 for d in deals)
    total_profit = sum(d.profit or 0 for d in deals)
    avg_margin = total_profit / total_cost * 100 if total_cost > 0 else 0.0

    manufacturers = sorted(
        m
        for (m,) in base.with_entities(Deal.trailer_manufacturer)
        .filter(Deal.trailer_manufacturer.isnot(None))
        .distinct()
        .all()
    )

    year = year or date.today().year
    months = [{"month": i, "sales": 0, "revenue": 0.0, "profit": 0.0, "commission": 0.0} for i in range(12)]
    in_year = base.filter(Deal.delivery_date >= date(year, 1, 1), Deal.delivery_date <= date(year, 12, 31))
    for d in in_year.all():
        bucket = months[d.delivery_date.month - 1]
        bucket["sales"] += 1
        bucket["revenue"] += d.final_price or 0
        bucket["profit"] += d.profit or 0
    for bucket in months:
        bucket["commission"] = bucket["profit"] * commission_rate

    rows = []
    for d in deals:
        row = serialize_deal(d)
        row["commission"] = (d.profit or 0) * commission_rate
        rows.append(row)

    return {
        "repInfo": {"name": user.display_name, "repCode": user.rep_code, "email": user.email},
        "deals": rows,
        "summary": {
            "totalSales": len(deals),
            "totalRevenue": total_revenue,
            "totalCost": total_cost,
            "totalProfit": total_profit,
            "totalCommission": total_profit * commission_rate,
            "avgMargin": round(avg_margin, 1),
            "commissionRate": round(commission_rate * 100),
        },
        "monthlyBreakdown": months,
        "filters": {"manufacturers": manufacturers},
    }
