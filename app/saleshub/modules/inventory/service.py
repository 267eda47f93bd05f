from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import or_
from werkzeug.utils import secure_filename

from app.saleshub.audit import record_event
from app.saleshub.modules.inventory.models import TRAILER_STATUSES, InventoryUpload, Trailer
from app.saleshub.modules.inventory.parsers import ParsedTrailer, ParseResult
from app.saleshub.modules.inventory.pricing import ASK_FOR_PRICING, PRICED, compute_selling_price
from app.saleshub.storage import Storage, build_storage_key
from app.saleshub.utils import ServiceError, ValidationError, clean_str, iso, parse_float, parse_int, pick

if TYPE_CHECKING:
    from sqlalchemy.orm import Query, Session
    from app.saleshub.models import User

logger = logging.getLogger(__name__)

CATEGORIES = ("enclosed", "utility", "dump", "open", "car hauler", "gooseneck", "flatbed", "concession", "motorcycle")


def serialize_trailer(t: Trailer) -> dict[str, Any]:
    return {
        "id": t.id,
        "vin": t.vin,
        "stockNumber": t.stock_number,
        "manufacturer": t.manufacturer,
        "model": t.model,
        "year": t.year,
        "category": t.category,
        "length": t.length,
        "width": t.width,
        "height": t.height,
        "msrp": t.msrp,
        "salePrice": t.sale_price,
        "cost": t.cost,
        "pricingStatus": t.pricing_status,
        "status": t.status,
        "features": t.features or [],
        "description": t.description,
        "location": t.location,
        "soldAt": iso(t.sold_at),
        "soldById": t.sold_by_id,
        "createdAt": iso(t.created_at),
        "updatedAt": iso(t.updated_at),
    }


def serialize_upload(u: InventoryUpload) -> dict[str, Any]:
    return {
        "id": u.id,
        "filename": u.filename,
        "manufacturer": u.manufacturer,
        "fileType": u.file_type,
        "uploadedBy": u.uploaded_by.email if u.uploaded_by else None,
        "rowsParsed": u.rows_parsed,
        "created": u.created_count,
        "updated": u.updated_count,
        "removed": u.removed_count,
        "newVins": u.new_vins or [],
        "updatedVins": u.updated_vins or [],
        "removedVins": u.removed_vins or [],
        "errors": u.errors or [],
        "createdAt": iso(u.created_at),
        "rolledBackAt": iso(u.rolled_back_at),
    }


def trailer_query(
    s: "Session",
    *,
    status: str | None = None,
    category: str | None = None,
    manufacturer: str | None = None,
    search: str | None = None,
) -> "Query":
    q = s.query(Trailer)
    if status:
        q = q.filter(Trailer.status == status)
    if category:
        q = q.filter(Trailer.category == category)
    if manufacturer:
        q = q.filter(Trailer.manufacturer == manufacturer)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(
            or_(
                Trailer.vin.ilike(like),
                Trailer.stock_number.ilike(like),
                Trailer.model.ilike(like),
                Trailer.manufacturer.ilike(like),
            )
        )
    return q.order_by(Trailer.created_at.desc(), Trailer.id.desc())


def validate_trailer_payload(payload: dict[str, Any], *, partial: bool = False) -> list[ValidationError]:
    errs: list[ValidationError] = []
    if not partial:
        if not clean_str(pick(payload, "vin")):
            errs.append(ValidationError("vin", "VIN is required"))
        if not clean_str(pick(payload, "manufacturer")):
            errs.append(ValidationError("manufacturer", "Manufacturer is required"))
    status = clean_str(pick(payload, "status"))
    if status and status not in TRAILER_STATUSES:
        errs.append(ValidationError("status", f"Invalid status. Must be one of: {', '.join(TRAILER_STATUSES)}"))
    for key, snake in (("msrp", "msrp"), ("salePrice", "sale_price"), ("cost", "cost")):
        raw = pick(payload, key, snake)
        if raw not in (None, "") and parse_float(raw) is None:
            errs.append(ValidationError(snake, f"{key} must be a number"))
    year = pick(payload, "year")
    if year not in (None, "") and parse_int(year) is None:
        errs.append(ValidationError("year", "year must be a whole number"))
    return errs


# (payload keys, attribute, normaliser)
_FIELDS: tuple[tuple[tuple[str, ...], str, Any], ...] = (
    (("stockNumber", "stock_number"), "stock_number", clean_str),
    (("manufacturer",), "manufacturer", clean_str),
    (("model",), "model", clean_str),
    (("year",), "year", parse_int),
    (("category",), "category", lambda v: (clean_str(v) or "").lower() or None),
    (("length",), "length", parse_float),
    (("width",), "width", parse_float),
    (("height",), "height", parse_float),
    (("msrp",), "msrp", parse_float),
    (("salePrice", "sale_price"), "sale_price", parse_float),
    (("cost",), "cost", parse_float),
    (("status",), "status", clean_str),
    (("description",), "description", clean_str),
    (("location",), "location", clean_str),
)


def _check_unique(s: "Session", vin: str | None, stock_number: str | None, exclude_id: int | None = None) -> None:
    if vin:
        q = s.query(Trailer.id).filter(Trailer.vin == vin)
        if exclude_id:
            q = q.filter(Trailer.id != exclude_id)
        if q.first():
            raise ServiceError("A trailer with this VIN already exists", 409)
    if stock_number:
        q = s.query(Trailer.id).filter(Trailer.stock_number == stock_number)
        if exclude_id:
            q = q.filter(Trailer.id != exclude_id)
        if q.first():
            raise ServiceError("A trailer with this stock number already exists", 409)


def _apply_pricing(t: Trailer) -> None:
    if t.sale_price and t.sale_price > 0:
        t.pricing_status = PRICED
        return
    result = compute_selling_price(t.cost)
    t.sale_price = round(result.price, 2) if result.price is not None else None
    t.pricing_status = result.pricing_status


def create_trailer(s: "Session", payload: dict[str, Any], user: "User") -> Trailer:
    errs = validate_trailer_payload(payload)
    if errs:
        raise ServiceError(errs[0].message, 400)

    vin = clean_str(pick(payload, "vin")).upper()
    stock = clean_str(pick(payload, "stockNumber", "stock_number")) or vin
    _check_unique(s, vin, stock)

    now = datetime.utcnow()
    t = Trailer(vin=vin, status="available", features=[], created_at=now, updated_at=now)
    for keys, attr, norm in _FIELDS:
        value = pick(payload, *keys)
        if value is not None:
            setattr(t, attr, norm(value))
    t.stock_number = stock
    features = pick(payload, "features")
    if isinstance(features, list):
        t.features = [str(f) for f in features]
    _apply_pricing(t)
    s.add(t)
    s.flush()

    record_event(
        s,
        actor=user,
        action="inventory.trailer.create",
        entity_type="Trailer",
        entity_id=t.id,
        metadata={"vin": t.vin, "stock_number": t.stock_number, "sale_price": t.sale_price},
    )
    return t


def update_trailer(s: "Session", t: Trailer, payload: dict[str, Any], user: "User") -> Trailer:
    errs = validate_trailer_payload(payload, partial=True)
    if errs:
        raise ServiceError(errs[0].message, 400)

    new_vin = clean_str(pick(payload, "vin"))
    new_stock = clean_str(pick(payload, "stockNumber", "stock_number"))
    _check_unique(s, new_vin.upper() if new_vin else None, new_stock, exclude_id=t.id)

    changes: dict[str, dict[str, Any]] = {}
    if new_vin and new_vin.upper() != t.vin:
        changes["vin"] = {"old": t.vin, "new": new_vin.upper()}
        t.vin = new_vin.upper()
    for keys, attr, norm in _FIELDS:
        if not any(k in payload for k in keys):
            continue
        new = norm(pick(payload, *keys))
        old = getattr(t, attr)
        if new != old:
            changes[attr] = {"old": old, "new": new}
            setattr(t, attr, new)
    features = pick(payload, "features")
    if isinstance(features, list):
        t.features = [str(f) for f in features]
        changes["features"] = {"new": t.features}
    if "cost" in changes or "sale_price" in changes:
        _apply_pricing(t)
    if t.status == "sold" and t.sold_at is None:
        t.sold_at = datetime.utcnow()
    t.updated_at = datetime.utcnow()

    if changes:
        record_event(
            s,
            actor=user,
            action="inventory.trailer.update",
            entity_type="Trailer",
            entity_id=t.id,
            metadata={"changes": changes},
        )
    return t


def delete_trailer(s: "Session", t: Trailer, user: "User") -> None:
    record_event(
        s,
        actor=user,
        action="inventory.trailer.delete",
        entity_type="Trailer",
        entity_id=t.id,
        metadata={"vin": t.vin, "stock_number": t.stock_number},
    )
    s.delete(t)


# ---------- Uploads ----------
def _features_with_color(p: ParsedTrailer) -> list[str]:
    features = list(p.features)
    if p.color and p.color not in features:
        features.append(p.color)
    return features


def _fill_from_parsed(t: Trailer, p: ParsedTrailer) -> None:
    t.model = p.model
    t.category = p.category or t.category
    t.width = p.width if p.width is not None else t.width
    t.length = p.length if p.length is not None else t.length
    t.height = p.height if p.height is not None else t.height
    t.msrp = p.msrp if p.msrp is not None else t.msrp
    t.cost = p.cost
    t.features = _features_with_color(p)
    if p.description:
        t.description = p.description
    if p.make_offer:
        t.sale_price = None
        t.pricing_status = ASK_FOR_PRICING
    elif p.sale_price:
        t.sale_price = p.sale_price
        t.pricing_status = PRICED
    else:
        t.sale_price = None
        _apply_pricing(t)


def import_parsed_trailers(
    s: "Session",
    result: ParseResult,
    *,
    user: "User",
    filename: str,
    manufacturer: str,
    file_type: str,
    storage_key: str | None = None,
) -> InventoryUpload:
    """Upsert parsed rows by VIN and write the upload report."""
    now = datetime.utcnow()
    upload = InventoryUpload(
        filename=filename,
        manufacturer=manufacturer,
        file_type=file_type,
        storage_key=storage_key,
        uploaded_by_user_id=user.id,
        rows_parsed=len(result.trailers),
        created_at=now,
    )
    s.add(upload)
    s.flush()

    new_vins: list[str] = []
    updated_vins: list[str] = []
    errors: list[dict[str, Any]] = [
        {"row": e.row_index, "error": e.message, "raw": e.raw_data} for e in result.errors
    ]
    seen: set[str] = set()
    seen_stock: set[str] = set()

    for p in result.trailers:
        vin = p.vin.strip().upper()
        if vin in seen:
            errors.append({"vin": vin, "error": "Duplicate VIN in file"})
            continue
        seen.add(vin)

        existing = s.query(Trailer).filter(Trailer.vin == vin).one_or_none()
        if existing is not None:
            _fill_from_parsed(existing, p)
            existing.updated_at = now
            updated_vins.append(vin)
            continue

        stock = (p.stock_number or vin).strip()
        if stock in seen_stock:
            errors.append({"vin": vin, "error": f"Duplicate stock number {stock} in file"})
            continue
        if s.query(Trailer.id).filter(Trailer.stock_number == stock).first():
            errors.append({"vin": vin, "error": f"Stock number {stock} already used by another trailer"})
            continue
        t = Trailer(
            vin=vin,
            stock_number=stock,
            manufacturer=p.manufacturer,
            year=p.year,
            status="available",
            upload_id=upload.id,
            created_at=now,
            updated_at=now,
        )
        _fill_from_parsed(t, p)
        s.add(t)
        seen_stock.add(stock)
        new_vins.append(vin)
    s.flush()

    upload.created_count = len(new_vins)
    upload.updated_count = len(updated_vins)
    upload.removed_count = 0
    upload.new_vins = new_vins
    upload.updated_vins = updated_vins
    upload.removed_vins = []
    upload.errors = errors

    record_event(
        s,
        actor=user,
        action="inventory.upload",
        entity_type="InventoryUpload",
        entity_id=upload.id,
        metadata={
            "filename": filename,
            "manufacturer": manufacturer,
            "created": len(new_vins),
            "updated": len(updated_vins),
            "errors": len(errors),
        },
    )
    logger.info(
        "Inventory upload %s (%s): %s new, %s updated, %s errors",
        upload.id,
        manufacturer,
        len(new_vins),
        len(updated_vins),
        len(errors),
    )
    return upload


def store_upload_file(storage: Storage, user: "User", filename: str, data: bytes, content_type: str | None) -> str:
    key = build_storage_key("inventory-uploads", user.id, secure_filename(filename) or "upload.bin")
    storage.put_bytes(key, data, content_type=content_type)
    return key


def rollback_upload(s: "Session", upload: InventoryUpload, user: "User") -> dict[str, Any]:
    if upload.rolled_back_at is not None:
        raise ServiceError("Upload has already been rolled back", 400)

    new_vins = upload.new_vins or []
    deleted = 0
    if new_vins:
        deleted = (
            s.query(Trailer)
            .filter(Trailer.vin.in_(new_vins), Trailer.status != "sold")
            .delete(synchronize_session=False)
        )
    updated_count = len(upload.updated_vins or [])
    update_note = None
    if updated_count:
        update_note = (
            f"Note: {updated_count} trailers were updated during this upload. "
            "Their previous values cannot be restored; they keep their current values."
        )

    upload.rolled_back_at = datetime.utcnow()
    upload.rolled_back_by_user_id = user.id
    record_event(
        s,
        actor=user,
        action="inventory.upload.rollback",
        entity_type="InventoryUpload",
        entity_id=upload.id,
        metadata={"deleted_new": deleted, "updated_count": updated_count},
    )
    logger.info("Inventory upload %s rolled back by user %s (%s trailers deleted)", upload.id, user.id, deleted)
    return {
        "deletedNew": deleted,
        "updatedCount": updated_count,
        "removedCount": len(upload.removed_vins or []),
        "updateNote": update_note,
    }
