from __future__ import annotations

import logging
import math
import re
from datetime import datetime, time
from typing import Any, Dict, Optional, Tuple, Union

from bson import ObjectId
from flask import jsonify
from flask_login import current_user

logger = logging.getLogger(__name__)

Number = Union[int, float]


# ----------------------------
# Parsing
# ----------------------------
def safe_oid(val: Any) -> Optional[ObjectId]:
    if not val:
        return None
    if isinstance(val, ObjectId):
        return val
    try:
        return ObjectId(str(val))
    except Exception:
        return None


def to_number(val: Any) -> Optional[Number]:
    """
    Loose numeric parse of request values ("12", 12, "12.5").
    Integral values come back as int so stored quantities stay whole.
    Returns None for blanks, bools and anything unparseable.
    """
    if val is None or isinstance(val, bool):
        return None
    if isinstance(val, (int, float)):
        num = float(val)
    else:
        s = str(val).replace(",", "").strip()
        if s == "":
            return None
        try:
            num = float(s)
        except ValueError:
            return None
    if not math.isfinite(num):
        return None
    return int(num) if num.is_integer() else num


def to_int(val: Any) -> Optional[int]:
    try:
        return int(str(val).strip())
    except Exception:
        return None


def parse_day(s: Optional[str]) -> Optional[datetime]:
    """YYYY-MM-DD -> datetime at midnight; None if not parseable."""
    if not s:
        return None
    try:
        d = datetime.strptime(s[:10], "%Y-%m-%d").date()
        return datetime.combine(d, time.min)
    except Exception:
        return None


def parse_datetime(val: Any) -> Optional[datetime]:
    """Accepts datetimes, ISO strings (with or without trailing Z) and plain dates."""
    if isinstance(val, datetime):
        return val
    if not isinstance(val, str) or not val.strip():
        return None
    s = val.strip()
    if s.endswith("Z"):
        s = s[:-1]
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return parse_day(s)
    # stored as naive UTC
    if dt.tzinfo is not None:
        dt = (dt - dt.utcoffset()).replace(tzinfo=None)
    return dt


def day_range(start: Optional[str], end: Optional[str]) -> Optional[Dict[str, datetime]]:
    """
    Inclusive day range filter. Only applied when both ends parse.
    """
    start_dt = parse_day(start)
    end_dt = parse_day(end)
    if not start_dt or not end_dt:
        return None
    return {"$gte": start_dt, "$lte": datetime.combine(end_dt.date(), time.max)}


def icontains(value: str) -> Dict[str, str]:
    return {"$regex": re.escape(value.strip()), "$options": "i"}


def non_empty_str(val: Any) -> bool:
    return isinstance(val, str) and val.strip() != ""


# ----------------------------
# Request context
# ----------------------------
def client_ip(req) -> str:
    forwarded = req.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return req.headers.get("X-Real-IP") or req.remote_addr or "unknown"


def user_agent(req) -> str:
    return req.headers.get("User-Agent") or "unknown"


def current_role() -> str:
    return (getattr(current_user, "role", "") or "").lower()


def require_role(role: str, message: str = "Forbidden"):
    """
    Returns a (response, status) tuple when the caller lacks `role`, else None.
    """
    if current_role() != role:
        logger.warning("Rejected request needing role=%s (sent role=%r)", role, current_role() or None)
        return jsonify({"error": message}), 403
    return None


# ----------------------------
# Responses
# ----------------------------
def error(message: str, status: int = 400, **extra):
    body = {"error": message}
    body.update(extra)
    return jsonify(body), status


def insert_result(res) -> Dict[str, Any]:
    return {"acknowledged": bool(res.acknowledged), "insertedId": str(res.inserted_id)}


def update_result(res) -> Dict[str, Any]:
    return {
        "acknowledged": bool(res.acknowledged),
        "matchedCount": res.matched_count,
        "modifiedCount": res.modified_count,
    }


def delete_result(res) -> Dict[str, Any]:
    return {"acknowledged": bool(res.acknowledged), "deletedCount": res.deleted_count}


def id_from_args(args) -> Tuple[Optional[str], Optional[ObjectId]]:
    raw = (args.get("id") or "").strip()
    return raw or None, (ObjectId(raw) if raw and ObjectId.is_valid(raw) else None)
