# routes/worker_payments.py
from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any, Dict

from flask import Blueprint, jsonify, request

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

logger = logging.getLogger(__name__)

worker_payments_bp = Blueprint("worker_payments", __name__, url_prefix="/api/worker-payment")

product_rates_col = db["product_rates"]
worker_payments_col = db["worker_payments"]


def _ensure_indexes() -> None:
    try:
        product_rates_col.create_index([("productName", 1)])
        worker_payments_col.create_index([("createdAt", -1)])
    except Exception:
        logger.warning("Could not create worker payment indexes", exc_info=True)


_ensure_indexes()


def _rate_for(product_name: str):
    doc = product_rates_col.find_one(
        {"productName": {"$regex": f"^{re.escape(product_name)}$", "$options": "i"}}
    )
    return to_number((doc or {}).get("ratePerUnit"))


def _require_id():
    raw_id, oid = id_from_args(request.args)
    if not raw_id:
        return None, error("ID is required")
    if not oid:
        return None, error("Invalid ID format")
    return oid, None


# ----------------- product rates -----------------
@worker_payments_bp.route("/product-rates", methods=["GET"])
def list_product_rates():
    try:
        return jsonify(list(product_rates_col.find().sort("productName", 1)))
    except Exception as e:
        logger.exception("GET product rates failed")
        return error(str(e), 500)


@worker_payments_bp.route("/product-rates", methods=["POST"])
def create_product_rate():
    try:
        body = request.get_json(silent=True) or {}
        name = body.get("productName")
        rate = to_number(body.get("ratePerUnit"))
        if not non_empty_str(name):
            return error("productName is required")
        if rate is None or rate <= 0:
            return error("ratePerUnit must be a positive number")

        name = name.strip()
        if _rate_for(name) is not None:
            return error(f"A rate for '{name}' already exists", 409)

        now = datetime.utcnow()
        res = product_rates_col.insert_one({
            "productName": name,
            "ratePerUnit": rate,
            "description": body.get("description") or "",
            "createdAt": now,
            "updatedAt": now,
        })
        logger.info("Product rate for %s set to %s", name, rate)
        return jsonify(insert_result(res)), 201
    except Exception as e:
        logger.exception("POST product rate failed")
        return error(str(e), 500)


@worker_payments_bp.route("/product-rates", methods=["PUT"])
def update_product_rate():
    try:
        oid, problem = _require_id()
        if problem:
            return problem

        body = request.get_json(silent=True) or {}
        update: Dict[str, Any] = {k: v for k, v in body.items() if k not in ("_id", "createdAt")}
        if "ratePerUnit" in update:
            rate = to_number(update["ratePerUnit"])
            if rate is None or rate <= 0:
                return error("ratePerUnit must be a positive number")
            update["ratePerUnit"] = rate
        if "productName" in update:
            if not non_empty_str(update["productName"]):
                return error("productName cannot be empty")
            update["productName"] = update["productName"].strip()
            clash = product_rates_col.find_one({
                "_id": {"$ne": oid},
                "productName": {"$regex": f"^{re.escape(update['productName'])}$", "$options": "i"},
            })
            if clash:
                return error(f"A rate for '{update['productName']}' already exists", 409)
        update["updatedAt"] = datetime.utcnow()

        res = product_rates_col.update_one({"_id": oid}, {"$set": update})
        if res.matched_count == 0:
            return error("Product rate not found", 404)
        return jsonify(update_result(res))
    except Exception as e:
        logger.exception("PUT product rate failed")
        return error(str(e), 500)


@worker_payments_bp.route("/product-rates", methods=["DELETE"])
def delete_product_rate():
    try:
        oid, problem = _require_id()
        if problem:
            return problem
        res = product_rates_col.delete_one({"_id": oid})
        if res.deleted_count == 0:
            return error("Product rate not found", 404)
        return jsonify({"message": "Deleted successfully", "result": delete_result(res)})
    except Exception as e:
        logger.exception("DELETE product rate failed")
        return error(str(e), 500)


# ----------------- payments -----------------
@worker_payments_bp.route("/payments", methods=["GET"])
def list_payments():
    try:
        query: Dict[str, Any] = {}
        if request.args.get("workerName"):
            query["workerName"] = request.args["workerName"]
        if request.args.get("productName"):
            query["productName"] = request.args["productName"]
        return jsonify(list(worker_payments_col.find(query).sort([("createdAt", -1), ("_id", -1)])))
    except Exception as e:
        logger.exception("GET worker payments failed")
        return error(str(e), 500)


@worker_payments_bp.route("/payments", methods=["POST"])
def create_payment():
    """
    Record a piece-rate payment. When totalPayment is omitted it is
    quantity x the product's ratePerUnit.
    """
    try:
        body = request.get_json(silent=True) or {}
        worker = body.get("workerName")
        product = body.get("productName")
        qty = to_number(body.get("quantity"))
        if not non_empty_str(worker) or not non_empty_str(product):
            return error("workerName and productName are required")
        if qty is None or qty <= 0:
            return error("quantity must be a positive number")

        rate = to_number(body.get("ratePerUnit"))
        if rate is None:
            rate = _rate_for(product.strip())

        total = to_number(body.get("totalPayment"))
        if total is None:
            if rate is None:
                return error(f"No rate configured for '{product}'; provide totalPayment", 400)
            total = round(qty * rate, 2)
        if total < 0:
            return error("totalPayment cannot be negative")

        now = datetime.utcnow()
        doc = {k: v for k, v in body.items() if k != "_id"}
        doc.update({
            "workerName": worker.strip(),
            "productName": product.strip(),
            "quantity": qty,
            "ratePerUnit": rate,
            "totalPayment": total,
            "createdAt": now,
            "updatedAt": now,
        })
        res = worker_payments_col.insert_one(doc)
        logger.info("Worker payment %s recorded for %s (%s)", res.inserted_id, doc["workerName"], total)
        return jsonify({**insert_result(res), "totalPayment": total}), 201
    except Exception as e:
        logger.exception("POST worker payment failed")
        return error(str(e), 500)


@worker_payments_bp.route("/payments", methods=["PUT"])
def update_payment():
    try:
        oid, problem = _require_id()
        if problem:
            return problem

        body = request.get_json(silent=True) or {}
        update = {k: v for k, v in body.items() if k not in ("_id", "createdAt")}
        for field in ("quantity", "ratePerUnit", "totalPayment"):
            if field in update:
                value = to_number(update[field])
                if value is None or value < 0:
                    return error(f"{field} must be a non-negative number")
                update[field] = value
        update["updatedAt"] = datetime.utcnow()

        res = worker_payments_col.update_one({"_id": oid}, {"$set": update})
        if res.matched_count == 0:
            return error("Payment not found", 404)
        return jsonify(update_result(res))
    except Exception as e:
        logger.exception("PUT worker payment failed")
        return error(str(e), 500)


@worker_payments_bp.route("/payments", methods=["DELETE"])
def delete_payment():
    try:
        oid, problem = _require_id()
        if problem:
            return problem
        res = worker_payments_col.delete_one({"_id": oid})
        if res.deleted_count == 0:
            return error("Payment not found", 404)
        return jsonify({"message": "Deleted successfully", "result": delete_result(res)})
    except Exception as e:
        logger.exception("DELETE worker payment failed")
        return error(str(e), 500)


@worker_payments_bp.route("/payments/reset", methods=["DELETE"])
def reset_payments():
    guard = require_role("admin")
    if guard:
        return guard
    try:
        res = worker_payments_col.delete_many({})
        logger.warning("Worker payments reset: %d record(s) removed", res.deleted_count)
        return jsonify({"message": "All worker payments cleared", "result": delete_result(res)})
    except Exception as e:
        logger.exception("Worker payments reset failed")
        return error(str(e), 500)
