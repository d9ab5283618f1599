"""
Derived stock quantities.

Nothing here is stored as a running balance: every figure is rebuilt from the
base records (approved stock submissions, finished-product snapshots, approved
job applications) and the append-only removal log each time it is asked for.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId

from db import db
from services.request_helpers import icontains, day_range, safe_oid, to_number

logger = logging.getLogger(__name__)

# ------------------ Collections ------------------
leather_col = db["leather"]
materials_col = db["materials"]
finished_products_col = db["finished_products"]
removal_logs_col = db["stock_removal_logs"]
production_col = db["production"]
applications_col = db["production_apply"]

# ------------------ Constants ------------------
COMPLETED = "completed"

# category -> where its stock lives and how a removal log names the item
CATEGORY_INFO: Dict[str, Dict[str, str]] = {
    "leather": {
        "stock_collection": "leather",
        "type_field": "type",
        "stock_type_field": "stockType",
    },
    "material": {
        "stock_collection": "materials",
        "type_field": "material",
        "stock_type_field": "materialType",
    },
    "finished_product": {
        "stock_collection": "finished_products",
        "type_field": "_id",
        "stock_type_field": "productId",
    },
}


class InvalidCategory(ValueError):
    pass


def _qty(val: Any) -> float:
    num = to_number(val)
    return float(num) if num is not None else 0.0


def _clean(n: float):
    n = round(float(n), 6)
    return int(n) if n.is_integer() else n


def get_category_info(category: str) -> Dict[str, str]:
    info = CATEGORY_INFO.get(category)
    if not info:
        raise InvalidCategory(
            f"Invalid category: {category}. Must be 'leather', 'material', or 'finished_product'"
        )
    return info


def normalize_stock_type(category: str, stock_type: Any) -> str:
    value = str(stock_type or "").strip()
    # materials are stored lower-cased on submission
    if category == "material":
        return value.lower()
    return value


def ensure_ledger_indexes() -> None:
    try:
        removal_logs_col.create_index([("category", 1), ("stockType", 1), ("status", 1)])
        removal_logs_col.create_index([("removalDate", -1), ("createdAt", -1)])
        leather_col.create_index([("type", 1), ("status", 1)])
        materials_col.create_index([("material", 1), ("status", 1)])
        applications_col.create_index([("jobId", 1), ("status", 1)])
    except Exception:
        logger.warning("Could not create stock ledger indexes", exc_info=True)


# ------------------ Removals ------------------
def total_removed(category: str, stock_type: str, exclude_id: Optional[ObjectId] = None) -> float:
    query: Dict[str, Any] = {
        "category": category,
        "stockType": normalize_stock_type(category, stock_type),
        "status": COMPLETED,
    }
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
    total = 0.0
    for r in removal_logs_col.find(query, {"actualRemovedQuantity": 1}):
        total += _qty(r.get("actualRemovedQuantity"))
    return total


def net_stock(category: str, stock_type: str, exclude_id: Optional[ObjectId] = None) -> Dict[str, Any]:
    """
    available = max(0, original - sum(completed removals for category+type))

    For leather and materials `original` is the sum of approved submissions of
    that type; for a finished product it is its frozen fulfilled quantity.
    `exclude_id` leaves one removal out of the sum (used when re-validating an
    edit to that removal).
    """
    info = get_category_info(category)
    stock_type = normalize_stock_type(category, stock_type)

    if category == "finished_product":
        oid = safe_oid(stock_type)
        product = finished_products_col.find_one({"_id": oid}) if oid else None
        if not product:
            return {
                "totalOriginal": 0,
                "totalRemoved": 0,
                "netAvailable": 0,
                "approvedEntries": 0,
                "category": category,
            }
        total_original = _qty(
            product.get("originalFulfilledQuantity") or product.get("fulfilledQuantity") or 0
        )
        removed = total_removed(category, stock_type, exclude_id)
        net = max(0.0, total_original - removed)
        logger.debug(
            "Finished product %s: original=%s removed=%s net=%s", stock_type, total_original, removed, net
        )
        return {
            "totalOriginal": _clean(total_original),
            "totalRemoved": _clean(removed),
            "netAvailable": _clean(net),
            "approvedEntries": 1,
            "category": category,
            "productData": product,
        }

    stock_col = db[info["stock_collection"]]
    approved = list(
        stock_col.find({info["type_field"]: stock_type, "status": "approved"}, {"quantity": 1})
    )
    total_original = sum(_qty(e.get("quantity")) for e in approved)
    removed = total_removed(category, stock_type, exclude_id)
    net = max(0.0, total_original - removed)
    logger.debug(
        "Stock %s (%s): original=%s removed=%s net=%s", stock_type, category, total_original, removed, net
    )
    return {
        "totalOriginal": _clean(total_original),
        "totalRemoved": _clean(removed),
        "netAvailable": _clean(net),
        "approvedEntries": len(approved),
        "category": category,
    }


def approved_total(category: str, stock_type: str, exclude_ids: Iterable[ObjectId] = ()) -> float:
    info = get_category_info(category)
    if category == "finished_product":
        raise InvalidCategory("Approved totals are only tracked for leather and material")
    query: Dict[str, Any] = {
        info["type_field"]: normalize_stock_type(category, stock_type),
        "status": "approved",
    }
    exclude_ids = list(exclude_ids)
    if exclude_ids:
        query["_id"] = {"$nin": exclude_ids}
    return sum(_qty(e.get("quantity")) for e in db[info["stock_collection"]].find(query, {"quantity": 1}))


def approved_shortfall(
    category: str,
    stock_type: str,
    exclude_ids: Iterable[ObjectId] = (),
    added_quantity: float = 0,
) -> Optional[Dict[str, Any]]:
    """
    Checks a pending change to approved submissions of one type: the entries in
    `exclude_ids` drop out and `added_quantity` comes in. Returns the figures
    when completed removals would then exceed the approved total, else None.
    """
    remaining = approved_total(category, stock_type, exclude_ids) + _qty(added_quantity)
    removed = total_removed(category, stock_type)
    if removed <= remaining:
        return None
    return {
        "stockType": normalize_stock_type(category, stock_type),
        "totalOriginalAfter": _clean(remaining),
        "totalRemoved": _clean(removed),
    }


def stock_summary(category: str) -> List[Dict[str, Any]]:
    """
    Per-type approved / removed / net totals for leather or materials.
    """
    info = get_category_info(category)
    if category == "finished_product":
        raise InvalidCategory("Stock summary is only available for leather and material")

    type_field = info["type_field"]
    approved: Dict[str, float] = {}
    entries: Dict[str, int] = {}
    for e in db[info["stock_collection"]].find({"status": "approved"}, {type_field: 1, "quantity": 1}):
        key = normalize_stock_type(category, e.get(type_field))
        if not key:
            continue
        approved[key] = approved.get(key, 0.0) + _qty(e.get("quantity"))
        entries[key] = entries.get(key, 0) + 1

    removed: Dict[str, float] = {}
    for r in removal_logs_col.find(
        {"category": category, "status": COMPLETED}, {"stockType": 1, "actualRemovedQuantity": 1}
    ):
        key = normalize_stock_type(category, r.get("stockType"))
        removed[key] = removed.get(key, 0.0) + _qty(r.get("actualRemovedQuantity"))

    rows = []
    for key in sorted(set(approved) | set(removed)):
        original = approved.get(key, 0.0)
        out = removed.get(key, 0.0)
        rows.append({
            "stockType": key,
            "totalOriginal": _clean(original),
            "totalRemoved": _clean(out),
            "netAvailable": _clean(max(0.0, original - out)),
            "approvedEntries": entries.get(key, 0),
        })
    return rows


# ------------------ Finished products ------------------
def enrich_finished_product(doc: Dict[str, Any]) -> Dict[str, Any]:
    product_id = str(doc.get("_id"))
    original = _qty(doc.get("originalFulfilledQuantity") or doc.get("fulfilledQuantity") or 0)
    removed = total_removed("finished_product", product_id)
    return {
        **doc,
        "totalRemoved": _clean(removed),
        "currentAvailableQuantity": _clean(max(0.0, original - removed)),
    }


# ------------------ Production jobs ------------------
def delivered_quantity(application: Dict[str, Any]) -> float:
    """Confirmed delivery when recorded, otherwise the requested quantity."""
    delivered = to_number(application.get("deliveredQuantity"))
    if delivered is None:
        return _qty(application.get("quantity"))
    return float(delivered)


def recompute_job_quantities(job_id: str) -> Optional[Dict[str, Any]]:
    """
    fulfilled = sum of approved deliveries; remaining = max(0, quantity - fulfilled).
    Closes the job at zero remaining and reopens a closed job that has room again.
    Returns the fields written, or None when the job no longer exists.
    """
    oid = safe_oid(job_id)
    job = production_col.find_one({"_id": oid}) if oid else None
    if not job:
        logger.warning("Recompute skipped: production job %s not found", job_id)
        return None

    approved = applications_col.find({"jobId": str(job_id), "status": "approved"})
    fulfilled = sum(delivered_quantity(a) for a in approved)
    remaining = max(0.0, _qty(job.get("quantity")) - fulfilled)

    updates: Dict[str, Any] = {
        "fulfilledQuantity": _clean(fulfilled),
        "remainingQuantity": _clean(remaining),
        "updatedAt": datetime.utcnow(),
    }
    status = job.get("status")
    if remaining == 0 and status in ("open", "pending"):
        updates["status"] = "closed"
    elif remaining > 0 and status == "closed":
        updates["status"] = "open"

    production_col.update_one({"_id": oid}, {"$set": updates})
    logger.info(
        "Job %s recomputed: fulfilled=%s remaining=%s status=%s",
        job_id, updates["fulfilledQuantity"], updates["remainingQuantity"], updates.get("status", status),
    )
    return updates


def approved_contributors(job_id: str) -> List[Dict[str, Any]]:
    out = []
    for a in applications_col.find({"jobId": str(job_id), "status": "approved"}).sort("appliedAt", 1):
        out.append({
            "applicationId": str(a["_id"]),
            "workerId": a.get("workerId"),
            "workerName": a.get("workerName"),
            "workerEmail": a.get("workerEmail"),
            "quantity": a.get("quantity"),
            "deliveredQuantity": _clean(delivered_quantity(a)),
        })
    return out


# ------------------ Removal ledger queries ------------------
def build_removal_query(
    category: str,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    stock_type: Optional[str] = None,
    confirmed_by: Optional[str] = None,
    purpose: Optional[str] = None,
) -> Dict[str, Any]:
    query: Dict[str, Any] = {"category": category}

    rng = day_range(start_date, end_date)
    if rng:
        query["removalDate"] = rng

    if stock_type and stock_type != "all":
        query[get_category_info(category)["stock_type_field"]] = icontains(stock_type)

    if confirmed_by and confirmed_by != "all":
        query["confirmedBy"] = icontains(confirmed_by)

    if purpose and purpose != "all":
        query["purpose"] = icontains(purpose)

    return query


def find_removals(category: str = "all", **filters) -> List[Dict[str, Any]]:
    categories: Iterable[str] = CATEGORY_INFO.keys() if category == "all" else [category]
    removals: List[Dict[str, Any]] = []
    for cat in categories:
        q = build_removal_query(cat, **filters)
        removals.extend(removal_logs_col.find(q))
    removals.sort(
        key=lambda r: (r.get("removalDate") or datetime.min, r.get("createdAt") or datetime.min),
        reverse=True,
    )
    return removals


def summarize_removals(removals: List[Dict[str, Any]], now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or datetime.utcnow()

    def _removed(r):
        return _qty(r.get("actualRemovedQuantity") or r.get("removeQuantity") or 0)

    def _bump(bucket: Dict[str, Dict[str, Any]], key: Any, qty: float):
        key = str(key) if key not in (None, "") else "unknown"
        entry = bucket.setdefault(key, {"count": 0, "totalQuantity": 0})
        entry["count"] += 1
        entry["totalQuantity"] = _clean(entry["totalQuantity"] + qty)

    summary: Dict[str, Any] = {
        "totalRemovals": len(removals),
        "totalQuantityRemoved": _clean(sum(_removed(r) for r in removals)),
        "uniqueStockTypes": len({
            r.get("stockType") or r.get("materialType") or r.get("productName") for r in removals
        }),
        "removalsThisMonth": sum(
            1 for r in removals
            if isinstance(r.get("removalDate"), datetime)
            and r["removalDate"].year == now.year
            and r["removalDate"].month == now.month
        ),
        "removalsByPurpose": {},
        "removalsByConfirmer": {},
        "removalsByCategory": {},
    }

    for r in removals:
        qty = _removed(r)
        _bump(summary["removalsByPurpose"], r.get("purpose"), qty)
        _bump(summary["removalsByConfirmer"], r.get("confirmedBy"), qty)
        _bump(summary["removalsByCategory"], r.get("category"), qty)

    return summary
