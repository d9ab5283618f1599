# routes/stock_submissions.py
from __future__ import annotations

import logging
import os
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from flask import Blueprint, current_app, jsonify, request
from werkzeug.utils import secure_filename

from config_constants import ALLOWED_ATTACHMENT_EXTENSIONS, STOCK_STATUSES
from db import db
from services.request_helpers import (
    day_range,
    delete_result,
    error,
    icontains,
    id_from_args,
    insert_result,
    non_empty_str,
    parse_datetime,
    require_role,
    to_number,
    update_result,
)
from services.stock_ledger import approved_shortfall, normalize_stock_type, stock_summary

logger = logging.getLogger(__name__)

leather_bp = Blueprint("leather_stock", __name__, url_prefix="/api/stock/leather")
materials_bp = Blueprint("material_stock", __name__, url_prefix="/api/stock/materials")

users_col = db["users"]

# Per-kind settings: collection, the field naming the stock type, the ledger
# category, and the extra required text fields.
STOCK_KINDS: Dict[str, Dict[str, Any]] = {
    "leather": {
        "collection": "leather",
        "type_field": "type",
        "category": "leather",
        "label": "Leather",
        "required_text": ("company",),
        "text_filters": ("type", "workerEmail", "company"),
    },
    "material": {
        "collection": "materials",
        "type_field": "material",
        "category": "material",
        "label": "Material",
        "required_text": (),
        "text_filters": ("material", "workerEmail"),
    },
}


# ----------------- Helpers -----------------
def _allowed_file(filename: str) -> bool:
    return "." in filename and filename.rsplit(".", 1)[1].lower() in ALLOWED_ATTACHMENT_EXTENSIONS


def _save_attachment(file_storage, kind: str) -> Optional[Dict[str, Any]]:
    """
    Save upload to <UPLOADS_ROOT>/<kind> with a unique safe name.
    Returns attachment metadata, or None when nothing was sent.
    """
    if not file_storage or not file_storage.filename:
        return None
    if not _allowed_file(file_storage.filename):
        raise ValueError(
            "Attachment must be one of: " + ", ".join(sorted(ALLOWED_ATTACHMENT_EXTENSIONS))
        )

    folder = os.path.join(current_app.config["UPLOADS_ROOT"], kind)
    os.makedirs(folder, exist_ok=True)

    safe_base = (secure_filename(file_storage.filename) or "attachment")[-80:]
    filename = f"{uuid.uuid4().hex}_{safe_base}"
    file_storage.save(os.path.join(folder, filename))
    return {
        "fileName": file_storage.filename,
        "storedName": filename,
        "contentType": file_storage.mimetype,
        "url": f"/uploads/{kind}/{filename}",
        "uploadedAt": datetime.utcnow(),
    }


def _request_payload() -> Dict[str, Any]:
    if request.is_json:
        data = request.get_json(silent=True)
        return data if isinstance(data, dict) else {}
    return request.form.to_dict()


def _build_filter(kind: str, args) -> Dict[str, Any]:
    cfg = STOCK_KINDS[kind]
    query: Dict[str, Any] = {}

    rng = day_range(args.get("startDate"), args.get("endDate"))
    if rng:
        query["date"] = rng

    status = args.get("status")
    if status and status != "all":
        query["status"] = status

    for field in cfg["text_filters"]:
        value = (args.get(field) or "").strip()
        if value:
            query[field] = icontains(value)
    return query


def _worker_phone(email: Optional[str], cache: Dict[str, str]) -> str:
    if not email:
        return "N/A"
    if email not in cache:
        try:
            worker = users_col.find_one({"email": email}, {"phone": 1, "phoneNumber": 1})
        except Exception:
            logger.exception("Error fetching worker info for email %s", email)
            worker = None
        cache[email] = (worker or {}).get("phone") or (worker or {}).get("phoneNumber") or "N/A"
    return cache[email]


def _validate_submission(kind: str, body: Dict[str, Any]) -> Optional[str]:
    cfg = STOCK_KINDS[kind]
    type_field = cfg["type_field"]

    if not non_empty_str(body.get(type_field)):
        return f"{cfg['label']} type is required and must be a non-empty string"

    qty = to_number(body.get("quantity"))
    if qty is None or qty <= 0:
        return "Quantity must be a positive number"

    if not non_empty_str(body.get("unit")):
        return "Unit is required and must be a non-empty string"

    for field in cfg["required_text"]:
        if not non_empty_str(body.get(field)):
            return f"{field.capitalize()} is required and must be a non-empty string"

    status = body.get("status")
    if status and status not in STOCK_STATUSES:
        return "Status must be pending, approved, or rejected"
    return None


def _removal_conflicts(kind: str, dropped: List[Dict[str, Any]], added: Optional[Tuple[Any, Any]] = None):
    """
    Approved entries in `dropped` leave the approved pool; `added` is the
    (type, quantity) an edited entry brings back. Returns one shortfall per
    type whose completed removals would then exceed what is approved.
    """
    cfg = STOCK_KINDS[kind]
    category = cfg["category"]
    by_type: Dict[str, List[Any]] = {}
    for entry in dropped:
        if entry.get("status") != "approved":
            continue
        key = normalize_stock_type(category, entry.get(cfg["type_field"]))
        by_type.setdefault(key, []).append(entry["_id"])

    conflicts = []
    for stock_type, ids in by_type.items():
        extra = 0
        if added and normalize_stock_type(category, added[0]) == stock_type:
            extra = added[1]
        shortfall = approved_shortfall(category, stock_type, ids, extra)
        if shortfall:
            conflicts.append(shortfall)
    return conflicts


def _conflict_response(kind: str, conflicts: List[Dict[str, Any]]):
    logger.warning("Rejected %s stock change: approved total would fall below removals %s", kind, conflicts)
    return error(
        "Change would leave less approved stock than has already been removed",
        409,
        conflicts=conflicts,
    )


# ----------------- Handlers -----------------
def _list_entries(kind: str):
    cfg = STOCK_KINDS[kind]
    try:
        query = _build_filter(kind, request.args)
        col = db[cfg["collection"]]
        items = list(col.find(query).sort("date", -1))

        phones: Dict[str, str] = {}
        enriched = [{**item, "workerPhone": _worker_phone(item.get("workerEmail"), phones)} for item in items]

        logger.info("Returning %d %s stock items", len(enriched), kind)
        return jsonify(enriched)
    except Exception as e:
        logger.exception("GET %s stock failed", kind)
        return error(str(e), 500)


def _summary(kind: str):
    try:
        return jsonify({"category": STOCK_KINDS[kind]["category"], "items": stock_summary(STOCK_KINDS[kind]["category"])})
    except Exception as e:
        logger.exception("GET %s stock summary failed", kind)
        return error(str(e), 500)


def _create_entry(kind: str):
    cfg = STOCK_KINDS[kind]
    type_field = cfg["type_field"]
    try:
        body = _request_payload()
        problem = _validate_submission(kind, body)
        if problem:
            return error(problem)

        try:
            attachment = _save_attachment(request.files.get("attachment"), kind)
        except ValueError as ve:
            return error(str(ve))

        stock_type = body[type_field].strip()
        if kind == "material":
            stock_type = stock_type.lower()

        doc = {k: v for k, v in body.items() if k not in ("_id", "workerName", "workerEmail")}
        doc.update({
            type_field: stock_type,
            "quantity": to_number(body.get("quantity")),
            "unit": body["unit"].strip(),
            "workerName": body.get("workerName") or "Unknown",
            "workerEmail": body.get("workerEmail") or "unknown@example.com",
            "date": parse_datetime(body.get("date")) or datetime.utcnow(),
            "status": body.get("status") or "pending",
            "createdAt": datetime.utcnow(),
        })
        for field in cfg["required_text"]:
            doc[field] = body[field].strip()
        if attachment:
            doc["attachment"] = attachment

        res = db[cfg["collection"]].insert_one(doc)
        logger.info("Created %s stock entry %s", kind, res.inserted_id)
        return jsonify(insert_result(res)), 201
    except Exception as e:
        logger.exception("POST %s stock failed", kind)
        return error(str(e), 500)


def _update_entry(kind: str):
    cfg = STOCK_KINDS[kind]
    type_field = cfg["type_field"]
    guard = require_role("admin", "Admin access required")
    if guard:
        return guard
    try:
        raw_id, oid = id_from_args(request.args)
        if not raw_id:
            return error("ID is required")
        if not oid:
            return error("Invalid ID format")

        body = request.get_json(silent=True) or {}
        if body.get("status") and body["status"] not in STOCK_STATUSES:
            return error("Status must be pending, approved, or rejected")

        update = {k: v for k, v in body.items() if k not in ("_id", "createdAt")}
        if "quantity" in body:
            qty = to_number(body.get("quantity"))
            if qty is None or qty <= 0:
                return error("Quantity must be a positive number")
            update["quantity"] = qty
        if type_field in update:
            if not non_empty_str(update[type_field]):
                return error(f"{cfg['label']} type must be a non-empty string")
            update[type_field] = normalize_stock_type(cfg["category"], update[type_field])
        if "date" in update:
            update["date"] = parse_datetime(update["date"]) or datetime.utcnow()
        update["updatedAt"] = datetime.utcnow()

        col = db[cfg["collection"]]
        current = col.find_one({"_id": oid})
        if not current:
            return error(f"{cfg['label']} stock entry not found", 404)

        after = {**current, **update}
        added = (after.get(type_field), after.get("quantity")) if after.get("status") == "approved" else None
        conflicts = _removal_conflicts(kind, [current], added)
        if conflicts:
            return _conflict_response(kind, conflicts)

        res = col.update_one({"_id": oid}, {"$set": update})
        if res.matched_count == 0:
            return error(f"{cfg['label']} stock entry not found", 404)

        logger.info("Updated %s stock entry %s", kind, raw_id)
        return jsonify(update_result(res))
    except Exception as e:
        logger.exception("PATCH %s stock failed", kind)
        return error(str(e), 500)


def _delete_entries(kind: str):
    cfg = STOCK_KINDS[kind]
    guard = require_role("admin", "Admin access required")
    if guard:
        return guard
    try:
        raw_id, oid = id_from_args(request.args)
        delete_type = request.args.get("deleteType")
        col = db[cfg["collection"]]

        if delete_type == "single" or (raw_id and not delete_type):
            if not raw_id:
                return error("ID is required")
            if not oid:
                return error("Invalid ID format")
            current = col.find_one({"_id": oid})
            if not current:
                return error(f"{cfg['label']} stock entry not found", 404)
            conflicts = _removal_conflicts(kind, [current])
            if conflicts:
                return _conflict_response(kind, conflicts)
            res = col.delete_one({"_id": oid})
            if res.deleted_count == 0:
                return error(f"{cfg['label']} stock entry not found", 404)
            logger.info("Deleted %s stock entry %s", kind, raw_id)
            return jsonify({
                "message": f"{cfg['label']} stock entry deleted successfully",
                **delete_result(res),
            })

        if delete_type == "bulk":
            args = {
                "startDate": request.args.get("startDate"),
                "endDate": request.args.get("endDate"),
                "status": request.args.get("status"),
                cfg["type_field"]: request.args.get(cfg["type_field"]),
            }
            query = _build_filter(kind, args)
            if not query:
                return error("Bulk delete requires at least one filter criteria")

            conflicts = _removal_conflicts(kind, list(col.find(query)))
            if conflicts:
                return _conflict_response(kind, conflicts)

            res = col.delete_many(query)
            logger.info("Bulk delete of %s stock removed %d entries", kind, res.deleted_count)
            return jsonify({
                "message": f"{res.deleted_count} {kind} stock entries deleted successfully",
                **delete_result(res),
            })

        return error("Invalid delete request. Specify deleteType as single or bulk")
    except Exception as e:
        logger.exception("DELETE %s stock failed", kind)
        return error(str(e), 500)


# ----------------- Leather -----------------
@leather_bp.route("", methods=["GET"])
def list_leather():
    return _list_entries("leather")


@leather_bp.route("/summary", methods=["GET"])
def leather_summary():
    return _summary("leather")


@leather_bp.route("", methods=["POST"])
def create_leather():
    return _create_entry("leather")


@leather_bp.route("", methods=["PATCH"])
def update_leather():
    return _update_entry("leather")


@leather_bp.route("", methods=["DELETE"])
def delete_leather():
    return _delete_entries("leather")


# ----------------- Materials -----------------
@materials_bp.route("", methods=["GET"])
def list_materials():
    return _list_entries("material")


@materials_bp.route("/summary", methods=["GET"])
def materials_summary():
    return _summary("material")


@materials_bp.route("", methods=["POST"])
def create_material():
    return _create_entry("material")


@materials_bp.route("", methods=["PATCH"])
def update_material():
    return _update_entry("material")


@materials_bp.route("", methods=["DELETE"])
def delete_material():
    return _delete_entries("material")
