# routes/removal.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from bson import ObjectId
from flask import Blueprint, jsonify, request

from config_constants import REMOVAL_CATEGORIES
from db import db
from services.activity_audit import log_audit
from services.request_helpers import (
    client_ip,
    error,
    id_from_args,
    non_empty_str,
    parse_datetime,
    require_role,
    to_number,
    user_agent,
)
from services.stock_ledger import (
    COMPLETED,
    find_removals,
    get_category_info,
    net_stock,
    normalize_stock_type,
    summarize_removals,
)

logger = logging.getLogger(__name__)

removal_bp = Blueprint("stock_removal", __name__, url_prefix="/api/stock/removal")

removal_logs_col = db["stock_removal_logs"]

REQUIRED_FIELDS = (
    "stockType",
    "removeQuantity",
    "availableQuantity",
    "purpose",
    "confirmedBy",
    "removalDate",
    "category",
)

# never taken from a PATCH body
IMMUTABLE_FIELDS = (
    "_id",
    "createdAt",
    "removalId",
    "category",
    "stockType",
    "materialType",
    "productId",
    "status",
)


def _category_label(category: str) -> str:
    return category.replace("_", " ").capitalize()


def _category_from_args() -> Optional[str]:
    category = request.args.get("category")
    return category if category in REMOVAL_CATEGORIES else None


# ----------------- GET -----------------
@removal_bp.route("", methods=["GET"])
def list_removals():
    try:
        category = request.args.get("category") or "all"
        if category != "all" and category not in REMOVAL_CATEGORIES:
            return error(f"Category must be one of: all, {', '.join(REMOVAL_CATEGORIES)}")

        removals = find_removals(
            category,
            start_date=request.args.get("startDate"),
            end_date=request.args.get("endDate"),
            stock_type=request.args.get("stockType"),
            confirmed_by=request.args.get("confirmedBy"),
            purpose=request.args.get("purpose"),
        )
        logger.info("Found %d stock removal records (category=%s)", len(removals), category)
        return jsonify({
            "removals": removals,
            "summary": summarize_removals(removals),
            "totalCount": len(removals),
            "category": category,
            "note": "Original records preserved - these are separate removal records",
        })
    except Exception as e:
        logger.exception("GET stock removals failed")
        return error(str(e), 500)


@removal_bp.route("/available", methods=["GET"])
def available_stock():
    try:
        category = _category_from_args()
        stock_type = (request.args.get("stockType") or "").strip()
        if not category:
            return error(f"Category must be one of: {', '.join(REMOVAL_CATEGORIES)}")
        if not stock_type:
            return error("stockType is required")
        status = net_stock(category, stock_type)
        status.pop("productData", None)
        return jsonify({"stockType": normalize_stock_type(category, stock_type), **status})
    except Exception as e:
        logger.exception("GET available stock failed")
        return error(str(e), 500)


# ----------------- POST -----------------
def _validate_removal(body: Dict[str, Any]):
    """Returns (error message, remove qty)."""
    for field in REQUIRED_FIELDS:
        if not body.get(field):
            return f"{field} is required", None

    if body["category"] not in REMOVAL_CATEGORIES:
        return (
            f"Category must be one of: {', '.join(REMOVAL_CATEGORIES)}. Current category: {body['category']}",
            None,
        )

    remove_qty = to_number(body.get("removeQuantity"))
    available_qty = to_number(body.get("availableQuantity"))
    if remove_qty is None or remove_qty <= 0:
        return "Remove quantity must be a positive number", None
    if available_qty is None or available_qty < 0:
        return "Available quantity must be a non-negative number", None
    if remove_qty > available_qty:
        return "Remove quantity cannot exceed available quantity", None

    if not non_empty_str(body.get("purpose")) or len(body["purpose"].strip()) < 3:
        return "Purpose must be at least 3 characters long", None
    if not non_empty_str(body.get("confirmedBy")) or len(body["confirmedBy"].strip()) < 2:
        return "Confirmed by must be at least 2 characters long", None
    if not parse_datetime(body.get("removalDate")):
        return "removalDate must be a valid date", None

    return None, remove_qty


def _build_removal_record(body: Dict[str, Any], stock: Dict[str, Any], remove_qty) -> Dict[str, Any]:
    category = body["category"]
    info = get_category_info(category)
    stock_type = normalize_stock_type(category, body["stockType"])
    now = datetime.utcnow()
    unit_cost = to_number(body.get("unitCost")) or 0
    net_before = stock["netAvailable"]

    record: Dict[str, Any] = {
        "category": category,
        info["stock_type_field"]: stock_type,
        "stockType": stock_type,
        "removeQuantity": remove_qty,
        "requestedQuantity": remove_qty,
        "actualRemovedQuantity": remove_qty,
        "availableQuantityBefore": net_before,
        "remainingQuantityAfter": net_before - remove_qty,
        "purpose": body["purpose"].strip(),
        "destination": (body.get("destination") or "").strip(),
        "confirmedBy": body["confirmedBy"].strip(),
        "removalDate": parse_datetime(body["removalDate"]),
        "createdAt": now,
        "updatedAt": now,
        "removedByAdmin": True,
        "clientIP": client_ip(request),
        "userAgent": user_agent(request),
        "removalId": ObjectId(),
        "status": COMPLETED,
        "unitCost": unit_cost,
        "totalCostRemoved": unit_cost * remove_qty,
        "notes": body.get("notes") or "",
        "attachments": body.get("attachments") or [],
        "approvedBy": body["confirmedBy"].strip(),
        "approvedAt": now,
        "stockCalculation": {
            "totalOriginalStock": stock["totalOriginal"],
            "totalPreviouslyRemoved": stock["totalRemoved"],
            "netAvailableBefore": net_before,
            "netAvailableAfter": net_before - remove_qty,
        },
    }

    product = stock.get("productData")
    if category == "finished_product":
        record["productName"] = (product or {}).get("productName") or body.get("productName") or "Unknown Product"
    if product:
        record["productContext"] = {
            "originalProductName": product.get("productName"),
            "productionJobId": product.get("productionJobId"),
            "originalFulfilledQuantity": product.get("originalFulfilledQuantity") or product.get("fulfilledQuantity"),
            "finishedAt": product.get("finishedAt"),
        }
        per_unit = (product.get("materialCostBreakdown") or {}).get("perUnit")
        if per_unit:
            record["financialImpact"] = {
                "unitCost": per_unit,
                "totalValueRemoved": per_unit * remove_qty,
            }
    return record


@removal_bp.route("", methods=["POST"])
def create_removal():
    guard = require_role("admin", "Admin access required for stock removal")
    if guard:
        return guard

    body: Dict[str, Any] = {}
    try:
        body = request.get_json(silent=True) or {}
        problem, remove_qty = _validate_removal(body)
        if problem:
            return error(problem)

        category = body["category"]
        stock_type = normalize_stock_type(category, body["stockType"])

        # check-then-act: re-verified after insert below
        stock = net_stock(category, stock_type)
        if remove_qty > stock["netAvailable"]:
            details = {k: v for k, v in stock.items() if k != "productData"}
            return error(
                f"Insufficient net stock available. Requested: {remove_qty}, Available: {stock['netAvailable']}",
                400,
                details=details,
            )

        record = _build_removal_record(body, stock, remove_qty)
        res = removal_logs_col.insert_one(record)

        after = net_stock(category, stock_type)
        if after["totalRemoved"] > after["totalOriginal"]:
            removal_logs_col.delete_one({"_id": res.inserted_id})
            logger.warning(
                "Concurrent removal over-withdrew %s %s; rolled back %s", category, stock_type, res.inserted_id
            )
            log_audit(
                f"{category}_removal_conflict",
                "stock_removal",
                res.inserted_id,
                {"category": category, "stockType": stock_type, "requestedQuantity": remove_qty},
                success=False,
            )
            return error("Stock changed while the removal was being recorded; please retry", 409)

        log_audit(
            f"{category}_removal_logged",
            "stock_removal",
            res.inserted_id,
            {
                "category": category,
                "stockType": stock_type,
                "requestedQuantity": remove_qty,
                "actualRemovedQuantity": remove_qty,
                "purpose": record["purpose"],
                "confirmedBy": record["confirmedBy"],
                "netStockBefore": stock["netAvailable"],
                "netStockAfter": after["netAvailable"],
            },
        )

        logger.info("%s removal logged: %s x%s (%s)", category, stock_type, remove_qty, res.inserted_id)
        return jsonify({
            "success": True,
            "message": f"{_category_label(category)} removal logged successfully - original records preserved",
            "removalId": str(res.inserted_id),
            "category": category,
            "actualQuantityRemoved": remove_qty,
            "data": {**record, "_id": res.inserted_id},
        }), 201
    except Exception as e:
        logger.exception("POST stock removal failed")
        log_audit(
            "stock_removal_failed",
            "stock_removal",
            None,
            {"error": str(e), "requestBody": body if isinstance(body, dict) else {}},
            success=False,
        )
        return error(str(e), 500)


# ----------------- PATCH -----------------
@removal_bp.route("", methods=["PATCH"])
def update_removal():
    guard = require_role("admin", "Admin access required for stock removal updates")
    if guard:
        return guard
    try:
        raw_id, oid = id_from_args(request.args)
        category = request.args.get("category")
        if not raw_id:
            return error("Removal ID is required")
        if not oid:
            return error("Invalid removal ID format")
        if category not in REMOVAL_CATEGORIES:
            return error("Valid category (leather, material, or finished_product) is required")

        existing = removal_logs_col.find_one({"_id": oid, "category": category})
        if not existing:
            return error("Stock removal record not found", 404)

        body = request.get_json(silent=True) or {}
        update = {k: v for k, v in body.items() if k not in IMMUTABLE_FIELDS}
        ignored = sorted(set(body) - set(update))

        if "actualRemovedQuantity" in update:
            qty = to_number(update["actualRemovedQuantity"])
            if qty is None or qty <= 0:
                return error("Removed quantity must be a positive number")
            others = net_stock(category, existing.get("stockType"), exclude_id=oid)
            if qty > others["netAvailable"]:
                return error(
                    f"Insufficient net stock available. Requested: {qty}, Available: {others['netAvailable']}",
                    400,
                )
            update["actualRemovedQuantity"] = qty
            update["removeQuantity"] = qty
        if "removalDate" in update:
            removal_date = parse_datetime(update["removalDate"])
            if not removal_date:
                return error("removalDate must be a valid date")
            update["removalDate"] = removal_date

        update.update({
            "updatedAt": datetime.utcnow(),
            "lastModifiedBy": "admin",
            "lastModifiedReason": body.get("updateReason") or "Manual update",
            "clientIP": client_ip(request),
            "userAgent": user_agent(request),
        })

        res = removal_logs_col.update_one({"_id": oid, "category": category}, {"$set": update})
        log_audit(
            f"{category}_removal_updated",
            "stock_removal",
            raw_id,
            {"category": category, "updatedFields": sorted(body.keys()), "originalData": existing},
        )
        return jsonify({
            "success": True,
            "message": f"{_category_label(category)} removal record updated successfully",
            "category": category,
            "modifiedCount": res.modified_count,
            "ignoredFields": ignored,
        })
    except Exception as e:
        logger.exception("PATCH stock removal failed")
        return error(str(e), 500)


# ----------------- DELETE -----------------
@removal_bp.route("", methods=["DELETE"])
def delete_removal():
    guard = require_role("admin", "Admin access required for stock removal deletion")
    if guard:
        return guard
    try:
        raw_id, oid = id_from_args(request.args)
        category = request.args.get("category")
        if not raw_id:
            return error("Removal ID is required")
        if not oid:
            return error("Invalid removal ID format")
        if category not in REMOVAL_CATEGORIES:
            return error("Valid category (leather, material, or finished_product) is required")

        record = removal_logs_col.find_one({"_id": oid, "category": category})
        if not record:
            return error("Stock removal record not found", 404)

        res = removal_logs_col.delete_one({"_id": oid, "category": category})
        log_audit(
            f"{category}_removal_deleted",
            "stock_removal",
            raw_id,
            {"category": category, "deletedRecord": record, "reason": "Manual deletion by admin"},
        )
        logger.info("Deleted %s removal %s", category, raw_id)
        return jsonify({
            "success": True,
            "message": f"{_category_label(category)} removal record deleted successfully",
            "category": category,
            "deletedCount": res.deleted_count,
        })
    except Exception as e:
        logger.exception("DELETE stock removal failed")
        return error(str(e), 500)
