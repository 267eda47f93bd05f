from __future__ import annotations

from dataclasses import asdict
from typing import Any

from flask import Blueprint, jsonify, request

from app.saleshub.modules.finance import calculators
from app.saleshub.modules.finance.fee_map import calculate_up_front_charges, fees_for_zip, state_from_zip
from app.saleshub.modules.finance.zip_tax import clean_zip, location_by_zip
from app.saleshub.rbac import api_login_required
from app.saleshub.utils import clean_str, parse_float, parse_int, pick

bp = Blueprint("finance", __name__)

DEFAULT_APR = 8.99
DEFAULT_DOWNS = (0, 500, 1000, 2000)
DEFAULT_TERMS = (24, 36, 48, 60)
MODES = ("finance", "rto", "cash")


def _camel(key: str) -> str:
    head, *rest = key.split("_")
    return head + "".join(p.title() for p in rest)


def camelize(value: Any) -> Any:
    """snake_case dict keys -> camelCase, floats rounded to cents."""
    if isinstance(value, dict):
        return {_camel(k): camelize(v) for k, v in value.items()}
    if isinstance(value, list):
        return [camelize(v) for v in value]
    if isinstance(value, float):
        return round(value, 2)
    return value


def _number(payload: dict, *keys: str, default: float = 0.0) -> float:
    value = parse_float(pick(payload, *keys))
    return default if value is None else value


def _tax_pct(payload: dict) -> tuple[float, dict | None]:
    """Explicit taxPct wins; otherwise the ZIP lookup decides."""
    explicit = parse_float(pick(payload, "taxPct", "tax_pct"))
    if explicit is not None:
        return explicit, None
    loc = location_by_zip(clean_str(pick(payload, "zip", "zipCode")))
    return loc.tax_rate, loc.to_dict()


@bp.post("/calculate")
@api_login_required
def calculate():
    payload = request.get_json(silent=True) or {}
    mode = (pick(payload, "mode", "type") or "finance").strip().lower()
    if mode not in MODES:
        return jsonify({"error": "mode must be one of finance, rto, cash"}), 400
    price = parse_float(pick(payload, "price"))
    if price is None or price <= 0:
        return jsonify({"error": "price must be a positive number"}), 400

    tax_pct, location = _tax_pct(payload)
    down = _number(payload, "down", "downPayment")
    fees = _number(payload, "fees")
    term = parse_int(pick(payload, "termMonths", "term_months", "term")) or 0

    if mode == "finance":
        apr = _number(payload, "apr", "aprPercent", default=DEFAULT_APR)
        result: dict = calculators.calculate_finance(price, down, tax_pct, fees, apr, term).to_dict()
        result["apr_percent"] = apr
    elif mode == "rto":
        if term <= 0:
            return jsonify({"error": "termMonths is required for rent-to-own"}), 400
        zip_code = clean_str(pick(payload, "zip", "zipCode")) or ""
        config = fees_for_zip(zip_code)
        if not config.rto_allowed:
            return jsonify({"error": f"Rent-to-own is not available in {config.state_name}"}), 400
        rto = calculators.calculate_rto(price, down, tax_pct, term)
        result = rto.to_dict()
        result["up_front"] = calculate_up_front_charges(rto.monthly_total, zip_code).to_dict()
    else:
        added = _number(payload, "addedOptions", "added_options")
        result = calculators.calculate_cash(price, tax_pct, fees, added).to_dict()

    return jsonify(camelize({"mode": mode, "tax_pct": tax_pct, "location": location, "result": result}))


@bp.post("/matrix")
@api_login_required
def matrix():
    payload = request.get_json(silent=True) or {}
    price = parse_float(pick(payload, "price"))
    if price is None or price <= 0:
        return jsonify({"error": "price must be a positive number"}), 400
    tax_pct, _location = _tax_pct(payload)
    fees = _number(payload, "fees")
    apr = _number(payload, "apr", "aprPercent", default=DEFAULT_APR)
    downs = pick(payload, "downs") or list(DEFAULT_DOWNS)
    terms = pick(payload, "terms") or list(DEFAULT_TERMS)
    if not isinstance(downs, list) or not isinstance(terms, list):
        return jsonify({"error": "downs and terms must be lists"}), 400

    rows = []
    for down in downs:
        d = parse_float(down) or 0.0
        cells = []
        for term in terms:
            t = parse_int(term) or 0
            fin = calculators.calculate_finance(price, d, tax_pct, fees, apr, t)
            cells.append({"term_months": t, "monthly_payment": fin.monthly_payment, "total_paid": fin.total_paid})
        rows.append({"down": d, "payments": cells})
    return jsonify(camelize({"price": price, "tax_pct": tax_pct, "apr_percent": apr, "rows": rows}))


@bp.get("/zip/<zip_code>")
@api_login_required
def zip_lookup(zip_code: str):
    if len(clean_zip(zip_code)) != 5:
        return jsonify({"error": "ZIP must have 5 digits"}), 400
    return jsonify(camelize(location_by_zip(zip_code).to_dict()))


@bp.get("/rto-fees/<zip_code>")
@api_login_required
def rto_fees(zip_code: str):
    monthly_rent = parse_float(request.args.get("monthlyRent"))
    body: dict = {"state_code": state_from_zip(zip_code), "config": asdict(fees_for_zip(zip_code))}
    if monthly_rent is not None:
        body["up_front"] = calculate_up_front_charges(monthly_rent, zip_code).to_dict()
    return jsonify(camelize(body))
