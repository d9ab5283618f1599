# routes/production.py
from __future__ import annotations

import logging
from datetime import datetime

from flask import Blueprint, jsonify, request

from config_constants import JOB_STATUSES
from db import db
from services.request_helpers import (
    delete_result,
    error,
    id_from_args,
    insert_result,
    non_empty_str,
    require_role,
    to_number,
    update_result,
)
from services.stock_ledger import recompute_job_quantities

logger = logging.getLogger(__name__)

production_bp = Blueprint("production", __name__, url_prefix="/api/stock/production")

production_col = db["production"]

# written only by recompute_job_quantities
DERIVED_FIELDS = ("fulfilledQuantity", "remainingQuantity")


@production_bp.route("", methods=["GET"])
def list_jobs():
    try:
        query = {}
        status = request.args.get("status")
        if status and status != "all":
            query["status"] = status
        jobs = list(production_col.find(query).sort("date", -1))
        return jsonify(jobs)
    except Exception as e:
        logger.exception("GET production jobs failed")
        return error(str(e), 500)


@production_bp.route("", methods=["POST"])
def create_job():
    try:
        body = request.get_json(silent=True) or {}

        if not non_empty_str(body.get("productName")):
            return error("Product name is required")
        qty = to_number(body.get("quantity"))
        if qty is None or qty <= 0:
            return error("Quantity must be a positive number")
        status = body.get("status") or "pending"
        if status not in JOB_STATUSES:
            return error(f"Status must be one of: {', '.join(JOB_STATUSES)}")

        doc = {
            "productName": body["productName"].strip(),
            "description": body.get("description") or "",
            "quantity": qty,
            "unit": body.get("unit") or "pcs",
            "image": body.get("image"),
            "fulfilledQuantity": 0,
            "remainingQuantity": qty,
            "date": datetime.utcnow(),
            "status": status,
        }
        res = production_col.insert_one(doc)
        logger.info("Created production job %s (%s x%s)", res.inserted_id, doc["productName"], qty)
        return jsonify(insert_result(res)), 201
    except Exception as e:
        logger.exception("POST production job failed")
        return error(str(e), 500)


@production_bp.route("", methods=["PATCH"])
def update_job():
    try:
        raw_id, oid = id_from_args(request.args)
        if not raw_id:
            return error("ID is required")
        if not oid:
            return error("Invalid ID format")

        body = request.get_json(silent=True) or {}
        update = {k: v for k, v in body.items() if k not in ("_id", "date", *DERIVED_FIELDS)}

        if "status" in update and update["status"] not in JOB_STATUSES:
            return error(f"Status must be one of: {', '.join(JOB_STATUSES)}")
        if "quantity" in update:
            qty = to_number(update["quantity"])
            if qty is None or qty <= 0:
                return error("Quantity must be a positive number")
            update["quantity"] = qty
        update["updatedAt"] = datetime.utcnow()

        res = production_col.update_one({"_id": oid}, {"$set": update})
        if res.matched_count == 0:
            return error("Job not found", 404)

        if "quantity" in update:
            recompute_job_quantities(raw_id)
        return jsonify(update_result(res))
    except Exception as e:
        logger.exception("PATCH production job failed")
        return error(str(e), 500)


@production_bp.route("", methods=["DELETE"])
def delete_job():
    guard = require_role("admin")
    if guard:
        return guard
    try:
        raw_id, oid = id_from_args(request.args)
        if not raw_id:
            return error("ID is required")
        if not oid:
            return error("Invalid ID format")

        res = production_col.delete_one({"_id": oid})
        if res.deleted_count == 0:
            return error("Job not found", 404)
        logger.info("Deleted production job %s", raw_id)
        return jsonify({"message": "Deleted successfully", "result": delete_result(res)})
    except Exception as e:
        logger.exception("DELETE production job failed")
        return error(str(e), 500)
