from datetime import datetime

import pytest
from bson import ObjectId

from services.stock_ledger import (
    InvalidCategory,
    approved_shortfall,
    approved_total,
    build_removal_query,
    net_stock,
    recompute_job_quantities,
    stock_summary,
    summarize_removals,
)


def _removal(db, category, stock_type, qty, status="completed", **extra):
    doc = {
        "category": category,
        "stockType": stock_type,
        "actualRemovedQuantity": qty,
        "status": status,
        "removalDate": datetime(2026, 3, 5),
        "createdAt": datetime(2026, 3, 5),
    }
    doc.update(extra)
    return db["stock_removal_logs"].insert_one(doc).inserted_id


def test_net_stock_counts_only_approved_entries(db, approved_stock):
    approved_stock("leather", "Cowhide", 10)
    approved_stock("leather", "Cowhide", 5)
    approved_stock("leather", "Cowhide", 100, status="pending")

    status = net_stock("leather", "Cowhide")
    assert status["totalOriginal"] == 15
    assert status["approvedEntries"] == 2
    assert status["netAvailable"] == 15


def test_net_stock_subtracts_completed_removals_only(db, approved_stock):
    approved_stock("leather", "Cowhide", 10)
    _removal(db, "leather", "Cowhide", 4)
    _removal(db, "leather", "Cowhide", 3, status="cancelled")
    _removal(db, "material", "Cowhide", 2)

    status = net_stock("leather", "Cowhide")
    assert status["totalRemoved"] == 4
    assert status["netAvailable"] == 6


def test_net_stock_never_negative(db, approved_stock):
    approved_stock("leather", "Suede", 3)
    _removal(db, "leather", "Suede", 5)

    status = net_stock("leather", "Suede")
    assert status["netAvailable"] == 0
    assert status["totalRemoved"] > status["totalOriginal"]


def test_approved_total_excludes_given_entries(db, approved_stock):
    first = approved_stock("leather", "Cowhide", 10)
    approved_stock("leather", "Cowhide", 4)
    approved_stock("leather", "Cowhide", 7, status="pending")

    assert approved_total("leather", "Cowhide") == 14
    assert approved_total("leather", "Cowhide", [ObjectId(first)]) == 4
    with pytest.raises(InvalidCategory):
        approved_total("finished_product", "x")


def test_approved_shortfall_reports_when_removals_exceed_remaining(db, approved_stock):
    first = approved_stock("leather", "Cowhide", 10)
    _removal(db, "leather", "Cowhide", 6)

    assert approved_shortfall("leather", "Cowhide") is None
    assert approved_shortfall("leather", "Cowhide", [ObjectId(first)], added_quantity=6) is None
    assert approved_shortfall("leather", "Cowhide", [ObjectId(first)], added_quantity=5) == {
        "stockType": "Cowhide",
        "totalOriginalAfter": 5,
        "totalRemoved": 6,
    }


def test_net_stock_exclude_id_leaves_one_removal_out(db, approved_stock):
    approved_stock("leather", "Cowhide", 10)
    rid = _removal(db, "leather", "Cowhide", 4)
    _removal(db, "leather", "Cowhide", 1)

    assert net_stock("leather", "Cowhide", exclude_id=rid)["netAvailable"] == 9


def test_material_types_match_case_insensitively(db, approved_stock):
    approved_stock("material", "thread", 20)
    _removal(db, "material", "thread", 5)

    status = net_stock("material", "Thread")
    assert status["totalOriginal"] == 20
    assert status["netAvailable"] == 15


def test_net_stock_finished_product_uses_frozen_quantity(db):
    pid = db["finished_products"].insert_one({
        "productName": "Wallet",
        "fulfilledQuantity": 50,
        "originalFulfilledQuantity": 40,
    }).inserted_id
    _removal(db, "finished_product", str(pid), 15)

    status = net_stock("finished_product", str(pid))
    assert status["totalOriginal"] == 40
    assert status["netAvailable"] == 25
    assert status["productData"]["productName"] == "Wallet"


def test_net_stock_missing_finished_product_is_zero(db):
    status = net_stock("finished_product", str(ObjectId()))
    assert status["netAvailable"] == 0
    assert status["approvedEntries"] == 0
    assert "productData" not in status


def test_net_stock_rejects_unknown_category():
    with pytest.raises(InvalidCategory):
        net_stock("plastic", "x")


def test_stock_summary_groups_per_type(db, approved_stock):
    approved_stock("leather", "Cowhide", 10)
    approved_stock("leather", "Goat", 4)
    approved_stock("leather", "Goat", 9, status="rejected")
    _removal(db, "leather", "Cowhide", 3)

    rows = {r["stockType"]: r for r in stock_summary("leather")}
    assert rows["Cowhide"]["netAvailable"] == 7
    assert rows["Goat"] == {
        "stockType": "Goat",
        "totalOriginal": 4,
        "totalRemoved": 0,
        "netAvailable": 4,
        "approvedEntries": 1,
    }


def test_stock_summary_not_available_for_finished_products():
    with pytest.raises(InvalidCategory):
        stock_summary("finished_product")


def _job(db, quantity, status="open"):
    return str(db["production"].insert_one({
        "productName": "Belt",
        "quantity": quantity,
        "fulfilledQuantity": 0,
        "remainingQuantity": quantity,
        "status": status,
    }).inserted_id)


def _application(db, job_id, quantity, status="approved", delivered=None):
    doc = {"jobId": job_id, "quantity": quantity, "status": status, "appliedAt": datetime.utcnow()}
    if delivered is not None:
        doc["deliveredQuantity"] = delivered
    return db["production_apply"].insert_one(doc).inserted_id


def test_recompute_prefers_delivered_quantity(db):
    job_id = _job(db, 10)
    _application(db, job_id, 4, delivered=3)
    _application(db, job_id, 2)
    _application(db, job_id, 5, status="pending")

    updates = recompute_job_quantities(job_id)
    assert updates["fulfilledQuantity"] == 5
    assert updates["remainingQuantity"] == 5
    assert "status" not in updates


def test_recompute_closes_job_at_zero_and_reopens(db):
    job_id = _job(db, 6)
    app_id = _application(db, job_id, 6)

    assert recompute_job_quantities(job_id)["status"] == "closed"
    assert db["production"].find_one({"_id": ObjectId(job_id)})["status"] == "closed"

    db["production_apply"].update_one({"_id": app_id}, {"$set": {"status": "rejected"}})
    updates = recompute_job_quantities(job_id)
    assert updates["status"] == "open"
    assert updates["remainingQuantity"] == 6


def test_recompute_remaining_never_negative(db):
    job_id = _job(db, 5)
    _application(db, job_id, 8)

    assert recompute_job_quantities(job_id)["remainingQuantity"] == 0


def test_recompute_missing_job_returns_none(db):
    assert recompute_job_quantities(str(ObjectId())) is None


def test_build_removal_query_uses_category_specific_field():
    query = build_removal_query(
        "material",
        start_date="2026-03-01",
        end_date="2026-03-31",
        stock_type="Thr",
        confirmed_by="all",
    )
    assert query["category"] == "material"
    assert query["materialType"]["$options"] == "i"
    assert "confirmedBy" not in query
    assert query["removalDate"]["$lte"].day == 31


def test_summarize_removals():
    removals = [
        {"category": "leather", "stockType": "Cowhide", "actualRemovedQuantity": 4,
         "purpose": "Cutting", "confirmedBy": "Ama", "removalDate": datetime(2026, 3, 2)},
        {"category": "leather", "stockType": "Goat", "actualRemovedQuantity": 1.5,
         "purpose": "Cutting", "confirmedBy": None, "removalDate": datetime(2026, 2, 2)},
    ]
    summary = summarize_removals(removals, now=datetime(2026, 3, 20))
    assert summary["totalRemovals"] == 2
    assert summary["totalQuantityRemoved"] == 5.5
    assert summary["uniqueStockTypes"] == 2
    assert summary["removalsThisMonth"] == 1
    assert summary["removalsByPurpose"]["Cutting"] == {"count": 2, "totalQuantity": 5.5}
    assert summary["removalsByConfirmer"]["unknown"]["count"] == 1
