from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from flask import g, request as flask_request

from db import db
from services.request_helpers import client_ip, current_role, user_agent

logger = logging.getLogger(__name__)

audit_logs_col = db["audit_logs"]


def ensure_audit_log_indexes() -> None:
    try:
        audit_logs_col.create_index([("timestamp", -1)])
        audit_logs_col.create_index([("resourceType", 1), ("timestamp", -1)])
        audit_logs_col.create_index([("action", 1), ("timestamp", -1)])
    except Exception:
        logger.warning("Could not create audit_logs indexes", exc_info=True)


def _safe_meta_from_request(req) -> Dict[str, Any]:
    allowlist = {
        "status",
        "quantity",
        "type",
        "material",
        "productName",
        "jobId",
        "productionJobId",
        "category",
        "stockType",
        "amount",
        "workerName",
        "workerEmail",
        "email",
    }
    meta: Dict[str, Any] = {}
    try:
        data = {}
        if req.is_json:
            data = req.get_json(silent=True) or {}
        elif req.form:
            data = req.form.to_dict()
        if not isinstance(data, dict):
            return {}
        for key in allowlist:
            if key in data and data[key] not in (None, ""):
                meta[key] = data[key]
    except Exception:
        return {}
    return meta


def log_audit(
    action: str,
    resource_type: str,
    resource_id: Any = None,
    details: Optional[Dict[str, Any]] = None,
    success: bool = True,
    req=None,
) -> Optional[str]:
    """
    Appends an audit_logs entry. Failures are logged and swallowed so a
    completed primary write is never reported as failed.
    """
    req_obj = req or flask_request
    doc = {
        "action": action,
        "resourceType": resource_type,
        "resourceId": str(resource_id) if resource_id is not None else None,
        "details": details or {},
        "role": current_role() or None,
        "timestamp": datetime.utcnow(),
        "clientIP": client_ip(req_obj),
        "userAgent": user_agent(req_obj),
        "success": success,
    }
    try:
        res = audit_logs_col.insert_one(doc)
        g.activity_logged = True
        return str(res.inserted_id)
    except Exception:
        logger.exception("Failed to write audit log for action=%s", action)
        return None


# (path fragment, resource type, label); first match wins, so longer paths go first
RESOURCE_MAP = [
    ("/api/stock/production_apply", "production_application", "Production Application"),
    ("/api/stock/production", "production_job", "Production Job"),
    ("/api/stock/finished_products", "finished_product", "Finished Product"),
    ("/api/stock/removal", "stock_removal", "Stock Removal"),
    ("/api/stock/leather", "leather", "Leather Stock"),
    ("/api/stock/materials", "material", "Material Stock"),
    ("/api/worker-payment/product-rates", "product_rate", "Product Rate"),
    ("/api/worker-payment/payments", "worker_payment", "Worker Payment"),
    ("/api/salary", "salary", "Salary"),
    ("/api/user", "user", "User"),
    ("/api/spreadsheetdata", "spreadsheet", "Spreadsheet"),
]

VERB_MAP = {
    "POST": "created",
    "PATCH": "updated",
    "PUT": "updated",
    "DELETE": "deleted",
}


def resolve_action_for_request(req) -> Tuple[str, str, Optional[str]]:
    """
    Best-effort action resolver for auto audit logging.
    """
    path = (req.path or "").lower()
    verb = VERB_MAP.get(req.method, "updated")
    if path.endswith("/reset"):
        verb = "reset"

    for fragment, resource_type, label in RESOURCE_MAP:
        if path.startswith(fragment):
            return f"{resource_type}.{verb}", f"{verb.capitalize()} {label}", resource_type

    endpoint = (req.endpoint or "request").replace(".", "_")
    return f"mutation.{endpoint}", f"Updated via {endpoint}", None


def should_log_request(req, response) -> bool:
    if getattr(g, "activity_logged", False):
        return False
    if req.method in ("GET", "HEAD", "OPTIONS"):
        return False
    if response is not None and response.status_code >= 400:
        return False
    if not req.endpoint or req.endpoint.startswith("static"):
        return False
    return True


def audit_request(req, response) -> None:
    if not should_log_request(req, response):
        return
    action, label, resource_type = resolve_action_for_request(req)
    meta = _safe_meta_from_request(req)
    log_audit(
        action=action,
        resource_type=resource_type or "record",
        resource_id=req.args.get("id"),
        details={**meta, "label": label, "path": req.path, "method": req.method},
        req=req,
    )
