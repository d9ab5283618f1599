# routes/production_apply.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict

from flask import Blueprint, jsonify, request

from config_constants import APPLICATION_STATUSES
from db import db
from services.request_helpers import (
    delete_result,
    error,
    id_from_args,
    insert_result,
    require_role,
    safe_oid,
    to_number,
    update_result,
)
from services.stock_ledger import recompute_job_quantities

logger = logging.getLogger(__name__)

production_apply_bp = Blueprint(
    "production_apply",
    __name__,
    url_prefix="/api/stock/production_apply",
)

applications_col = db["production_apply"]
production_col = db["production"]
users_col = db["users"]


def _worker_contact(worker_id: Any, cache: Dict[str, Dict[str, str]]) -> Dict[str, str]:
    key = str(worker_id or "")
    if key not in cache:
        oid = safe_oid(key)
        worker = users_col.find_one({"_id": oid}, {"phone": 1, "email": 1}) if oid else None
        cache[key] = {
            "workerPhone": (worker or {}).get("phone") or "N/A",
            "workerEmail": (worker or {}).get("email") or "N/A",
        }
    return cache[key]


# ----------------- GET -----------------
@production_apply_bp.route("", methods=["GET"])
def list_applications():
    try:
        query: Dict[str, Any] = {}
        job_id = request.args.get("jobId")
        if job_id:
            query["jobId"] = job_id
        status = request.args.get("status")
        if status and status != "all":
            query["status"] = status

        apps = list(applications_col.find(query).sort("appliedAt", -1))
        contacts: Dict[str, Dict[str, str]] = {}
        enriched = [{**a, **_worker_contact(a.get("workerId"), contacts)} for a in apps]
        return jsonify(enriched)
    except Exception as e:
        logger.exception("GET production applications failed")
        return error(str(e), 500)


# ----------------- POST -----------------
@production_apply_bp.route("", methods=["POST"])
def apply_for_job():
    guard = require_role("worker")
    if guard:
        return guard
    try:
        email = (request.headers.get("email") or "").strip()
        if not email:
            return error("Worker email not provided")

        body = request.get_json(silent=True) or {}
        job_id = str(body.get("jobId") or "").strip()
        qty = to_number(body.get("quantity"))
        if not job_id or not body.get("quantity"):
            return error("Job ID and quantity are required")
        if qty is None or qty <= 0:
            return error("Quantity must be a positive number")

        worker = users_col.find_one({"email": email})
        if not worker:
            return error("Worker not found", 404)

        job_oid = safe_oid(job_id)
        if not job_oid:
            return error("Invalid job ID format")
        job = production_col.find_one({"_id": job_oid})
        if not job:
            return error("Job not found", 404)
        if job.get("status") != "open":
            return error("Job not open for applications")

        # remaining is missing on jobs created before it was tracked
        available = job.get("remainingQuantity")
        if available is None:
            available = job.get("quantity", 0)
        if qty > (to_number(available) or 0):
            return error(f"Cannot apply for more than {available} (remaining quantity)")

        worker_id = str(worker["_id"])
        if applications_col.find_one({"jobId": job_id, "workerId": worker_id}):
            return error("You already applied for this job")

        res = applications_col.insert_one({
            "jobId": job_id,
            "productName": job.get("productName"),
            "workerId": worker_id,
            "workerName": worker.get("name"),
            "workerEmail": email,
            "quantity": qty,
            "note": body.get("note") or "",
            "status": "pending",
            "appliedAt": datetime.utcnow(),
        })
        logger.info("Worker %s applied for job %s (qty=%s)", email, job_id, qty)
        return jsonify(insert_result(res)), 201
    except Exception as e:
        logger.exception("POST production application failed")
        return error(str(e), 500)


# ----------------- PATCH -----------------
@production_apply_bp.route("", methods=["PATCH"])
def update_application():
    guard = require_role("admin")
    if guard:
        return guard
    try:
        raw_id, oid = id_from_args(request.args)
        if not raw_id:
            return error("Application ID is required")
        if not oid:
            return error("Invalid application ID format")

        current = applications_col.find_one({"_id": oid})
        if not current:
            return error("Application not found", 404)

        body = request.get_json(silent=True) or {}
        update = {k: v for k, v in body.items() if k not in ("_id", "jobId", "workerId", "appliedAt")}

        if "status" in update and update["status"] not in APPLICATION_STATUSES:
            return error("Status must be pending, approved, or rejected")

        qty = to_number(update.get("quantity", current.get("quantity")))
        if qty is None or qty <= 0:
            return error("Quantity must be a positive number")
        if "quantity" in update:
            update["quantity"] = qty

        if "deliveredQuantity" in update:
            delivered = to_number(update["deliveredQuantity"])
            if delivered is None or delivered < 0:
                return error("Delivered quantity must be a non-negative number")
            if delivered > qty:
                return error(f"Delivered quantity cannot exceed the approved quantity ({qty})")
            update["deliveredQuantity"] = delivered
            update["deliveredAt"] = datetime.utcnow()
        elif "quantity" in update and to_number(current.get("deliveredQuantity")) is not None:
            if to_number(current["deliveredQuantity"]) > qty:
                return error(f"Quantity cannot drop below the delivered quantity ({current['deliveredQuantity']})")

        update["updatedAt"] = datetime.utcnow()
        res = applications_col.update_one({"_id": oid}, {"$set": update})

        job = recompute_job_quantities(current.get("jobId"))
        logger.info("Application %s updated (status=%s)", raw_id, update.get("status", current.get("status")))
        return jsonify({**update_result(res), "job": job})
    except Exception as e:
        logger.exception("PATCH production application failed")
        return error(str(e), 500)


# ----------------- DELETE -----------------
@production_apply_bp.route("", methods=["DELETE"])
def delete_application():
    guard = require_role("admin")
    if guard:
        return guard
    try:
        raw_id, oid = id_from_args(request.args)
        if not raw_id:
            return error("Application ID is required")
        if not oid:
            return error("Invalid application ID format")

        application = applications_col.find_one({"_id": oid})
        if not application:
            return error("Application not found", 404)

        res = applications_col.delete_one({"_id": oid})
        recompute_job_quantities(application.get("jobId"))
        logger.info("Deleted application %s for job %s", raw_id, application.get("jobId"))
        return jsonify({"message": "Deleted successfully", "result": delete_result(res)})
    except Exception as e:
        logger.exception("DELETE production application failed")
        return error(str(e), 500)
