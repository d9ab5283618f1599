# routes/users.py
from __future__ import annotations

import logging
from datetime import datetime

from flask import Blueprint, jsonify, request

from db import db
from services.request_helpers import error, insert_result, non_empty_str, require_role, update_result

logger = logging.getLogger(__name__)

users_bp = Blueprint("users", __name__, url_prefix="/api/user")

users_col = db["users"]

USER_STATUSES = ("pending", "approved", "rejected", "blocked")


def _ensure_indexes() -> None:
    try:
        users_col.create_index([("email", 1)])
    except Exception:
        logger.warning("Could not create users indexes", exc_info=True)


_ensure_indexes()


@users_bp.route("", methods=["GET"])
def list_users():
    """All users, or an existence check when ?email= is given."""
    try:
        email = (request.args.get("email") or "").strip()
        if email:
            user = users_col.find_one({"email": email})
            return jsonify({"exists": bool(user), "user": user})
        return jsonify(list(users_col.find()))
    except Exception as e:
        logger.exception("GET users failed")
        return error(str(e), 500)


@users_bp.route("", methods=["POST"])
def create_user():
    try:
        body = request.get_json(silent=True) or {}
        email = (body.get("email") or "").strip() if isinstance(body.get("email"), str) else ""
        if not email:
            return error("Email is required")

        existing = users_col.find_one({"email": email})
        if existing:
            return jsonify({"message": "User already exists", "user": existing}), 200

        doc = {k: v for k, v in body.items() if k != "_id"}
        doc["email"] = email
        doc["status"] = body.get("status") or "pending"
        doc.setdefault("role", "worker")
        doc["createdAt"] = datetime.utcnow()

        res = users_col.insert_one(doc)
        logger.info("Registered user %s", email)
        return jsonify({"message": "User created", "result": insert_result(res)}), 201
    except Exception as e:
        logger.exception("POST user failed")
        return error(str(e), 500)


@users_bp.route("", methods=["PATCH"])
def update_user_status():
    guard = require_role("admin")
    if guard:
        return guard
    try:
        body = request.get_json(silent=True) or {}
        email = body.get("email")
        status = body.get("status")
        if not non_empty_str(email) or not non_empty_str(status):
            return error("Email and status required")
        if status not in USER_STATUSES:
            return error(f"Status must be one of: {', '.join(USER_STATUSES)}")

        res = users_col.update_one(
            {"email": email.strip()},
            {"$set": {"status": status, "updatedAt": datetime.utcnow()}},
        )
        if res.matched_count == 0:
            return error("User not found", 404)
        logger.info("User %s status set to %s", email, status)
        return jsonify({"message": "User status updated", "result": update_result(res)})
    except Exception as e:
        logger.exception("PATCH user failed")
        return error(str(e), 500)
