# routes/finished_products.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict

from flask import Blueprint, jsonify, request

from db import db
from services.request_helpers import (
    day_range,
    delete_result,
    error,
    id_from_args,
    insert_result,
    require_role,
    safe_oid,
    update_result,
)
from services.stock_ledger import (
    approved_contributors,
    enrich_finished_product,
    recompute_job_quantities,
)

logger = logging.getLogger(__name__)

finished_products_bp = Blueprint(
    "finished_products",
    __name__,
    url_prefix="/api/stock/finished_products",
)

finished_products_col = db["finished_products"]
production_col = db["production"]
removal_logs_col = db["stock_removal_logs"]

# frozen at snapshot time, or derived on read
PROTECTED_FIELDS = (
    "_id",
    "productionJobId",
    "originalFulfilledQuantity",
    "fulfilledQuantity",
    "contributors",
    "finishedAt",
    "totalRemoved",
    "currentAvailableQuantity",
)


@finished_products_bp.route("", methods=["GET"])
def list_finished_products():
    try:
        query: Dict[str, Any] = {}
        rng = day_range(request.args.get("startDate"), request.args.get("endDate"))
        if rng:
            query["finishedAt"] = rng

        products = finished_products_col.find(query).sort("finishedAt", -1)
        return jsonify([enrich_finished_product(p) for p in products])
    except Exception as e:
        logger.exception("GET finished products failed")
        return error(str(e), 500)


@finished_products_bp.route("", methods=["POST"])
def create_finished_product():
    """
    Snapshot a production job into a finished product.
    The fulfilled quantity is frozen as originalFulfilledQuantity; removals
    are later counted against it, never against the live job.
    """
    guard = require_role("admin")
    if guard:
        return guard
    try:
        body = request.get_json(silent=True) or {}
        job_id = str(body.get("productionJobId") or "").strip()
        if not job_id:
            return error("productionJobId is required")
        job_oid = safe_oid(job_id)
        if not job_oid:
            return error("Invalid productionJobId format")

        job = production_col.find_one({"_id": job_oid})
        if not job:
            return error("Job not found", 404)

        if finished_products_col.find_one({"productionJobId": job_id}):
            return error("This production job has already been finished")

        # pick up any delivery confirmed since the last recompute
        recompute_job_quantities(job_id)
        job = production_col.find_one({"_id": job_oid}) or job

        fulfilled = job.get("fulfilledQuantity") or 0
        if fulfilled <= 0:
            return error("Cannot finish a job with no fulfilled quantity")

        now = datetime.utcnow()
        doc = {
            "productionJobId": job_id,
            "productName": job.get("productName"),
            "description": job.get("description") or "",
            "unit": job.get("unit") or "pcs",
            "image": job.get("image"),
            "quantity": job.get("quantity"),
            "fulfilledQuantity": fulfilled,
            "originalFulfilledQuantity": fulfilled,
            "contributors": approved_contributors(job_id),
            "notes": body.get("notes") or "",
            "finishedAt": now,
            "status": "finished",
        }
        if body.get("materialCostBreakdown"):
            doc["materialCostBreakdown"] = body["materialCostBreakdown"]

        res = finished_products_col.insert_one(doc)
        production_col.update_one(
            {"_id": job_oid},
            {"$set": {"status": "finished", "finishedAt": now, "updatedAt": now}},
        )
        logger.info("Job %s finished as product %s (qty=%s)", job_id, res.inserted_id, fulfilled)
        return jsonify(insert_result(res)), 201
    except Exception as e:
        logger.exception("POST finished product failed")
        return error(str(e), 500)


@finished_products_bp.route("", methods=["PATCH"])
def update_finished_product():
    try:
        raw_id, oid = id_from_args(request.args)
        if not raw_id:
            return error("ID is required")
        if not oid:
            return error("Invalid ID format")

        body = request.get_json(silent=True) or {}
        update = {k: v for k, v in body.items() if k not in PROTECTED_FIELDS}
        ignored = sorted(set(body) - set(update))
        if ignored:
            logger.info("Ignoring protected fields on finished product %s: %s", raw_id, ignored)
        update["updatedAt"] = datetime.utcnow()

        res = finished_products_col.update_one({"_id": oid}, {"$set": update})
        if res.matched_count == 0:
            return error("Finished product not found", 404)
        return jsonify({**update_result(res), "ignoredFields": ignored})
    except Exception as e:
        logger.exception("PATCH finished product failed")
        return error(str(e), 500)


@finished_products_bp.route("", methods=["DELETE"])
def delete_finished_product():
    guard = require_role("admin")
    if guard:
        return guard
    try:
        raw_id, oid = id_from_args(request.args)
        if not raw_id:
            return error("ID is required")
        if not oid:
            return error("Invalid ID format")

        res = finished_products_col.delete_one({"_id": oid})
        if res.deleted_count == 0:
            return error("Finished product not found", 404)

        # removal logs are not rolled back
        orphaned = removal_logs_col.count_documents({"category": "finished_product", "stockType": raw_id})
        if orphaned:
            logger.warning("Finished product %s deleted; %d removal log(s) left orphaned", raw_id, orphaned)
        return jsonify({
            "message": "Deleted successfully",
            "result": delete_result(res),
            "orphanedRemovalLogs": orphaned,
        })
    except Exception as e:
        logger.exception("DELETE finished product failed")
        return error(str(e), 500)
