from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from app.saleshub.db import db_session
from app.saleshub.modules.inventory import service
from app.saleshub.modules.inventory.models import InventoryUpload, Trailer
from app.saleshub.modules.inventory.parsers.excel import MANUFACTURERS, parse_workbook
from app.saleshub.modules.inventory.parsers.pdf import parse_pdf
from app.saleshub.rbac import api_login_required, require_crm_roles
from app.saleshub.storage import storage_from_config
from app.saleshub.utils import parse_int

bp = Blueprint("inventory", __name__)

EXCEL_EXTENSIONS = (".xlsx", ".xlsm")


@bp.get("")
@api_login_required
def trailers_list():
    s = db_session()
    q = service.trailer_query(
        s,
        status=(request.args.get("status") or "").strip() or None,
        category=(request.args.get("category") or "").strip().lower() or None,
        manufacturer=(request.args.get("manufacturer") or "").strip() or None,
        search=(request.args.get("search") or "").strip() or None,
    )
    limit = min(max(parse_int(request.args.get("limit")) or 200, 1), 500)
    total = q.count()
    trailers = q.limit(limit).all()
    return jsonify({"trailers": [service.serialize_trailer(t) for t in trailers], "total": total})


@bp.post("")
@require_crm_roles("owner", "director", message="Only owners and directors can add inventory")
def trailers_create():
    s = db_session()
    t = service.create_trailer(s, request.get_json(silent=True) or {}, g.current_user)
    s.commit()
    return jsonify({"trailer": service.serialize_trailer(t)}), 201


@bp.get("/<int:trailer_id>")
@api_login_required
def trailer_detail(trailer_id: int):
    t = db_session().get(Trailer, trailer_id)
    if not t:
        return jsonify({"error": "Trailer not found"}), 404
    return jsonify({"trailer": service.serialize_trailer(t)})


@bp.patch("/<int:trailer_id>")
@require_crm_roles("owner", "director", message="Only owners and directors can edit inventory")
def trailer_update(trailer_id: int):
    s = db_session()
    t = s.get(Trailer, trailer_id)
    if not t:
        return jsonify({"error": "Trailer not found"}), 404
    service.update_trailer(s, t, request.get_json(silent=True) or {}, g.current_user)
    s.commit()
    return jsonify({"trailer": service.serialize_trailer(t)})


@bp.delete("/<int:trailer_id>")
@require_crm_roles("owner", "director", message="Only owners and directors can delete inventory")
def trailer_delete(trailer_id: int):
    s = db_session()
    t = s.get(Trailer, trailer_id)
    if not t:
        return jsonify({"error": "Trailer not found"}), 404
    service.delete_trailer(s, t, g.current_user)
    s.commit()
    return jsonify({"success": True})


@bp.post("/upload")
@require_crm_roles("owner", "director", message="Only owners and directors can upload inventory files")
def upload():
    f = request.files.get("file")
    if f is None or not f.filename:
        return jsonify({"error": "No file provided"}), 400
    manufacturer = (request.form.get("manufacturer") or "").strip()
    if not manufacturer:
        return jsonify({"error": "No manufacturer specified"}), 400

    name = f.filename.lower()
    data = f.read()
    try:
        if name.endswith(".pdf"):
            file_type = "pdf"
            result = parse_pdf(data, manufacturer)
        elif name.endswith(EXCEL_EXTENSIONS):
            if manufacturer not in MANUFACTURERS:
                return jsonify({"error": "Unknown manufacturer"}), 400
            file_type = "excel"
            result = parse_workbook(data, manufacturer)
        else:
            return jsonify({"error": "Invalid file type. Please upload an Excel (.xlsx) or PDF file."}), 400
    except ValueError as e:
        return jsonify({"error": f"Failed to parse file: {e}"}), 400

    if not result.trailers:
        return jsonify({"error": "No trailers found in file"}), 400

    s = db_session()
    storage_key = service.store_upload_file(
        storage_from_config(current_app.config), g.current_user, f.filename, data, f.mimetype
    )
    report = service.import_parsed_trailers(
        s,
        result,
        user=g.current_user,
        filename=f.filename,
        manufacturer=manufacturer,
        file_type=file_type,
        storage_key=storage_key,
    )
    s.commit()
    return jsonify({
        "success": True,
        "message": f"Successfully imported {len(result.trailers)} trailers",
        "summary": {
            "total": len(result.trailers),
            "new": report.created_count,
            "updated": report.updated_count,
            "errors": len(report.errors or []),
        },
        "report": service.serialize_upload(report),
    })


@bp.get("/uploads")
@require_crm_roles("owner", "director", message="Only owners and directors can view upload history")
def uploads_list():
    reports = (
        db_session()
        .query(InventoryUpload)
        .order_by(InventoryUpload.created_at.desc())
        .limit(50)
        .all()
    )
    return jsonify({"reports": [service.serialize_upload(r) for r in reports]})


@bp.post("/uploads/<int:upload_id>/rollback")
@require_crm_roles("owner", message="Only owners can rollback uploads")
def upload_rollback(upload_id: int):
    s = db_session()
    report = s.get(InventoryUpload, upload_id)
    if not report:
        return jsonify({"error": "Upload report not found"}), 404
    details = service.rollback_upload(s, report, g.current_user)
    s.commit()
    return jsonify({"success": True, "message": "Upload has been rolled back", "details": details})
