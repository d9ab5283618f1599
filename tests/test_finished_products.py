from datetime import datetime

from bson import ObjectId

from conftest import ADMIN, worker_headers


def _fulfilled_job(client, db, make_worker, quantity=10, delivered=8):
    make_worker()
    job_id = client.post(
        "/api/stock/production",
        json={"productName": "Messenger Bag", "quantity": quantity, "status": "open", "unit": "pcs"},
    ).get_json()["insertedId"]
    app_id = client.post(
        "/api/stock/production_apply",
        json={"jobId": job_id, "quantity": delivered},
        headers=worker_headers(),
    ).get_json()["insertedId"]
    client.patch(f"/api/stock/production_apply?id={app_id}", json={"status": "approved"}, headers=ADMIN)
    return job_id


def _finish(client, job_id, **extra):
    return client.post("/api/stock/finished_products", json={"productionJobId": job_id, **extra}, headers=ADMIN)


def test_finish_job_snapshots_fulfilled_quantity(client, db, make_worker):
    job_id = _fulfilled_job(client, db, make_worker)
    resp = _finish(client, job_id, notes="batch A", materialCostBreakdown={"perUnit": 12.5})
    assert resp.status_code == 201

    product = db["finished_products"].find_one({})
    assert product["productionJobId"] == job_id
    assert product["fulfilledQuantity"] == 8
    assert product["originalFulfilledQuantity"] == 8
    assert product["contributors"][0]["workerEmail"] == "worker@example.com"
    assert product["materialCostBreakdown"]["perUnit"] == 12.5
    assert db["production"].find_one({"_id": ObjectId(job_id)})["status"] == "finished"


def test_finish_requires_admin(client, db, make_worker):
    job_id = _fulfilled_job(client, db, make_worker)
    resp = client.post("/api/stock/finished_products", json={"productionJobId": job_id})
    assert resp.status_code == 403


def test_finish_requires_job_id(client):
    resp = client.post("/api/stock/finished_products", json={}, headers=ADMIN)
    assert resp.status_code == 400


def test_finish_unknown_job_is_404(client):
    assert _finish(client, str(ObjectId())).status_code == 404


def test_job_can_only_be_finished_once(client, db, make_worker):
    job_id = _fulfilled_job(client, db, make_worker)
    assert _finish(client, job_id).status_code == 201
    assert _finish(client, job_id).status_code == 400


def test_job_without_fulfilment_cannot_be_finished(client, db):
    job_id = client.post("/api/stock/production", json={"productName": "Wallet", "quantity": 5}).get_json()["insertedId"]
    assert _finish(client, job_id).status_code == 400


def test_list_reports_current_availability(client, db, make_worker):
    job_id = _fulfilled_job(client, db, make_worker)
    product_id = _finish(client, job_id).get_json()["insertedId"]
    db["stock_removal_logs"].insert_one({
        "category": "finished_product",
        "stockType": product_id,
        "productId": product_id,
        "actualRemovedQuantity": 3,
        "status": "completed",
        "removalDate": datetime.utcnow(),
    })

    products = client.get("/api/stock/finished_products").get_json()
    assert len(products) == 1
    assert products[0]["totalRemoved"] == 3
    assert products[0]["currentAvailableQuantity"] == 5


def test_list_date_filter(client, db, make_worker):
    job_id = _fulfilled_job(client, db, make_worker)
    _finish(client, job_id)
    products = client.get("/api/stock/finished_products?startDate=2000-01-01&endDate=2000-01-31").get_json()
    assert products == []


def test_patch_ignores_frozen_fields(client, db, make_worker):
    job_id = _fulfilled_job(client, db, make_worker)
    product_id = _finish(client, job_id).get_json()["insertedId"]

    resp = client.patch(
        f"/api/stock/finished_products?id={product_id}",
        json={"notes": "re-stitched", "originalFulfilledQuantity": 500},
    )
    assert resp.status_code == 200
    assert resp.get_json()["ignoredFields"] == ["originalFulfilledQuantity"]
    product = db["finished_products"].find_one({"_id": ObjectId(product_id)})
    assert product["notes"] == "re-stitched"
    assert product["originalFulfilledQuantity"] == 8


def test_delete_reports_orphaned_removals(client, db, make_worker):
    job_id = _fulfilled_job(client, db, make_worker)
    product_id = _finish(client, job_id).get_json()["insertedId"]
    db["stock_removal_logs"].insert_one({
        "category": "finished_product",
        "stockType": product_id,
        "actualRemovedQuantity": 1,
        "status": "completed",
    })

    resp = client.delete(f"/api/stock/finished_products?id={product_id}", headers=ADMIN)
    assert resp.status_code == 200
    assert resp.get_json()["orphanedRemovalLogs"] == 1
    assert db["stock_removal_logs"].count_documents({}) == 1
