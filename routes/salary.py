# routes/salary.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List

from flask import Blueprint, jsonify, request

from db import db
from services.request_helpers import day_range, parse_datetime, safe_oid, to_int, to_number

logger = logging.getLogger(__name__)

salary_bp = Blueprint("salary", __name__, url_prefix="/api/salary")

salary_col = db["salary"]

SALARY_TYPES = ("worker", "laborer")


# ----------------------------
# Helpers (advance payment math)
# ----------------------------
def _money(n: Any) -> float:
    try:
        return round(float(n or 0.0), 2)
    except Exception:
        return 0.0


def _sum_advances(advances: List[Dict[str, Any]]) -> float:
    return _money(sum(_money(a.get("amount")) for a in (advances or [])))


def _total_salary(doc: Dict[str, Any]) -> float:
    return _money(doc.get("totalSalaryAmount") or doc.get("amount"))


def _advance_status(paid: float, total: float) -> str:
    return "fully_paid" if paid >= total else "partial_paid"


def _message(msg: str, status: int = 400, **extra):
    return jsonify({"message": msg, **extra}), status


def _enrich(salary: Dict[str, Any]) -> Dict[str, Any]:
    advances = salary.get("advancePayments") or []
    total = _total_salary(salary)
    paid = _sum_advances(advances)
    remaining = total - paid

    status = salary.get("status") or "pending"
    if advances:
        status = "fully_paid" if remaining <= 0 else "partial_paid"

    return {
        **salary,
        "totalAdvancePaid": paid,
        "remainingBalance": _money(max(0.0, remaining)),
        "paymentProgress": round(paid / total * 100, 1) if total > 0 else 0,
        "hasAdvancePayments": bool(advances),
        "advancePaymentsCount": len(advances),
        "calculatedStatus": status,
        "displayAmount": total,
        "isAdvancePaymentSystem": bool(salary.get("totalSalaryAmount")),
    }


def _find_salary(raw_id):
    oid = safe_oid(raw_id)
    return oid, (salary_col.find_one({"_id": oid}) if oid else None)


# ----------------------------
# GET
# ----------------------------
@salary_bp.route("", methods=["GET"])
def list_salaries():
    try:
        query: Dict[str, Any] = {}
        rng = day_range(request.args.get("startDate"), request.args.get("endDate"))
        if rng:
            query["paymentDate"] = rng

        salary_type = request.args.get("type")
        if salary_type:
            query["type"] = salary_type
        if salary_type == "laborer" and request.args.get("addedBy"):
            query["addedBy"] = request.args["addedBy"]
        elif salary_type == "worker" and request.args.get("workerEmail"):
            query["workerEmail"] = request.args["workerEmail"]

        salaries = salary_col.find(query).sort([("paymentDate", -1), ("createdAt", -1)])
        return jsonify([_enrich(s) for s in salaries])
    except Exception:
        logger.exception("Error fetching salaries")
        return _message("Failed to fetch salaries", 500)


# ----------------------------
# POST
# ----------------------------
def _add_advance_payment(data: Dict[str, Any]):
    oid, existing = _find_salary(data.get("existingSalaryId"))
    if not oid:
        return _message("Invalid salary ID format")
    if not existing:
        return _message("Existing salary record not found", 404)

    amount = to_number(data.get("amount"))
    if amount is None or amount <= 0:
        return _message("Advance amount must be a positive number")

    current_total = _sum_advances(existing.get("advancePayments"))
    total_salary = _total_salary(existing)
    new_total = _money(current_total + amount)
    if new_total > total_salary:
        return _message(
            f"Advance amount ({amount}) would exceed remaining balance. "
            f"Current advances: {current_total}, Total salary: {total_salary}",
            400,
            currentAdvanceTotal=current_total,
            remainingBalance=_money(total_salary - current_total),
            requestedAmount=amount,
        )

    paid_date = parse_datetime(data.get("paymentDate")) or datetime.utcnow()
    advances = list(existing.get("advancePayments") or [])
    advances.append({
        "amount": amount,
        "paidDate": paid_date,
        "description": data.get("description") or "Additional advance payment",
        "paidBy": "admin",
    })
    status = _advance_status(new_total, total_salary)

    salary_col.update_one(
        {"_id": oid},
        {"$set": {
            "advancePayments": advances,
            "status": status,
            "amount": new_total,
            "paymentDate": paid_date,
            "updatedAt": datetime.utcnow(),
        }},
    )
    logger.info("Advance of %s added to salary %s (%s/%s)", amount, oid, new_total, total_salary)
    return jsonify({
        "message": "Advance payment added successfully",
        "advanceAmount": amount,
        "totalAdvancePaid": new_total,
        "remainingBalance": _money(max(0.0, total_salary - new_total)),
        "status": status,
        "totalSalaryAmount": total_salary,
    })


@salary_bp.route("", methods=["POST"])
def create_salary():
    try:
        data = request.get_json(silent=True) or {}

        if data.get("existingSalaryId"):
            return _add_advance_payment(data)

        for field in ("amount", "paymentDate", "type"):
            if not data.get(field):
                return _message(f"{field} is required")

        if data["type"] not in SALARY_TYPES:
            return _message("type must be worker or laborer")
        if data["type"] == "worker":
            if not data.get("workerEmail") or not data.get("workerName"):
                return _message("Worker email and name are required for worker salary")
        else:
            if not data.get("laborName"):
                return _message("Laborer name is required for laborer salary")
            data.setdefault("addedBy", "admin")

        amount = to_number(data.get("amount"))
        payment_date = parse_datetime(data.get("paymentDate"))
        if amount is None or amount <= 0:
            return _message("amount must be a positive number")
        if not payment_date:
            return _message("paymentDate must be a valid date")

        now = datetime.utcnow()
        is_advance = data.get("paymentType") == "advance" and data.get("totalSalaryAmount")
        base = {k: v for k, v in data.items() if k != "_id"}

        if is_advance:
            total = to_number(data.get("totalSalaryAmount"))
            if total is None or total <= 0:
                return _message("totalSalaryAmount must be a positive number")
            if amount > total:
                return _message("Advance amount cannot exceed total salary amount")
            doc = {
                **base,
                "totalSalaryAmount": total,
                "advancePayments": [{
                    "amount": amount,
                    "paidDate": payment_date,
                    "description": data.get("description") or "Initial advance payment",
                    "paidBy": "admin",
                }],
                "amount": amount,
                "paymentDate": payment_date,
                "createdAt": now,
                "updatedAt": now,
                "status": _advance_status(amount, total),
                "paymentType": "advance",
                "isAdvancePaymentSystem": True,
            }
        else:
            doc = {
                **base,
                "amount": amount,
                "paymentDate": payment_date,
                "createdAt": now,
                "updatedAt": now,
                "status": data.get("status") or "paid",
                "paymentType": "full",
                "isAdvancePaymentSystem": False,
            }

        res = salary_col.insert_one(doc)
        logger.info("Salary record %s created (%s, %s)", res.inserted_id, doc["type"], doc["paymentType"])
        total_amount = doc.get("totalSalaryAmount") or doc["amount"]
        return jsonify({
            "message": "Advance payment record created successfully" if is_advance else "Salary record created successfully",
            "id": str(res.inserted_id),
            "isAdvancePayment": bool(is_advance),
            "totalAmount": total_amount,
            "advanceAmount": amount if is_advance else None,
            "remainingBalance": _money(total_amount - amount) if is_advance else 0,
        }), 201
    except Exception:
        logger.exception("Error creating salary")
        return _message("Failed to create salary record", 500)


# ----------------------------
# PUT
# ----------------------------
def _update_advance_payment(oid, existing: Dict[str, Any], updates: Dict[str, Any]):
    index = to_int(updates.get("advanceIndex"))
    advances = list(existing.get("advancePayments") or [])
    if updates.get("advanceIndex") is None:
        return _message("Advance payment index is required")
    if index is None or index < 0 or index >= len(advances):
        return _message("Advance payment not found", 404)

    changes = updates.get("advanceData") or {}
    current = dict(advances[index])
    current.update({k: v for k, v in changes.items() if k not in ("amount", "paidDate")})
    amount = to_number(changes.get("amount"))
    if amount is not None and amount > 0:
        current["amount"] = amount
    if changes.get("paidDate"):
        current["paidDate"] = parse_datetime(changes["paidDate"]) or current.get("paidDate")
    advances[index] = current

    paid = _sum_advances(advances)
    total_salary = _total_salary(existing)
    if paid > total_salary:
        return _message(
            f"Advance payments ({paid}) would exceed total salary ({total_salary})",
            400,
        )
    status = _advance_status(paid, total_salary)

    salary_col.update_one(
        {"_id": oid},
        {"$set": {"advancePayments": advances, "status": status, "amount": paid, "updatedAt": datetime.utcnow()}},
    )
    return jsonify({
        "message": "Advance payment updated successfully",
        "totalAdvancePaid": paid,
        "remainingBalance": _money(max(0.0, total_salary - paid)),
        "status": status,
    })


@salary_bp.route("", methods=["PUT"])
def update_salary():
    try:
        raw_id = request.args.get("id")
        if not raw_id:
            return _message("Salary ID is required")
        oid, existing = _find_salary(raw_id)
        if not oid:
            return _message("Invalid salary ID format")
        if not existing:
            return _message("Salary record not found", 404)

        updates = request.get_json(silent=True) or {}
        updates.pop("_id", None)

        if updates.get("updateType") == "advance_payment":
            return _update_advance_payment(oid, existing, updates)

        # advances only change through the advance_payment paths
        for field in ("advancePayments", "createdAt"):
            updates.pop(field, None)

        data = {**updates, "updatedAt": datetime.utcnow()}
        if "amount" in updates:
            amount = to_number(updates["amount"])
            if amount is None or amount <= 0:
                return _message("amount must be a positive number")
            data["amount"] = amount
        if updates.get("paymentDate"):
            data["paymentDate"] = parse_datetime(updates["paymentDate"]) or existing.get("paymentDate")

        if "totalSalaryAmount" in updates:
            new_total = to_number(updates["totalSalaryAmount"])
            if new_total is None or new_total <= 0:
                return _message("totalSalaryAmount must be a positive number")
            if existing.get("advancePayments"):
                paid = _sum_advances(existing["advancePayments"])
                if paid > new_total:
                    return _message(
                        f"Total salary ({new_total}) cannot be less than advances already paid ({paid})",
                        400,
                        totalAdvancePaid=paid,
                    )
                data["status"] = _advance_status(paid, new_total)
                data["remainingBalance"] = _money(new_total - paid)
            data["totalSalaryAmount"] = new_total

        salary_col.update_one({"_id": oid}, {"$set": data})
        return jsonify({"message": "Salary record updated successfully"})
    except Exception:
        logger.exception("Error updating salary")
        return _message("Failed to update salary record", 500)


# ----------------------------
# DELETE
# ----------------------------
def _delete_advance_payment(oid, existing: Dict[str, Any], index: int):
    advances = list(existing.get("advancePayments") or [])
    if index < 0 or index >= len(advances):
        return _message("Advance payment not found", 404)

    del advances[index]
    paid = _sum_advances(advances)
    total_salary = _total_salary(existing)
    status = "pending" if not advances else _advance_status(paid, total_salary)

    salary_col.update_one(
        {"_id": oid},
        {"$set": {
            "advancePayments": advances,
            "status": status,
            "amount": paid or existing.get("totalSalaryAmount"),
            "updatedAt": datetime.utcnow(),
        }},
    )
    return jsonify({
        "message": "Advance payment deleted successfully",
        "totalAdvancePaid": paid,
        "remainingBalance": _money(max(0.0, total_salary - paid)),
        "status": status,
        "remainingAdvancePayments": len(advances),
    })


@salary_bp.route("", methods=["DELETE"])
def delete_salary():
    try:
        raw_id = request.args.get("id")
        if not raw_id:
            return _message("Salary ID is required")

        if request.args.get("deleteType") == "advance_payment":
            index = to_int(request.args.get("advanceIndex"))
            if index is None:
                return _message("Advance payment index is required")
            oid, existing = _find_salary(raw_id)
            if not oid:
                return _message("Invalid salary ID format")
            if not existing:
                return _message("Advance payment not found", 404)
            return _delete_advance_payment(oid, existing, index)

        oid, _ = _find_salary(raw_id)
        if not oid:
            return _message("Invalid salary ID format")
        res = salary_col.delete_one({"_id": oid})
        if res.deleted_count == 0:
            return _message("Salary record not found", 404)
        logger.info("Salary record %s deleted", raw_id)
        return jsonify({"message": "Salary record deleted successfully"})
    except Exception:
        logger.exception("Error deleting salary")
        return _message("Failed to delete salary record", 500)
