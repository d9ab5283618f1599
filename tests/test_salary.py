from bson import ObjectId


def _worker_salary(**overrides):
    body = {
        "type": "worker",
        "workerEmail": "worker@example.com",
        "workerName": "Kofi",
        "amount": 500,
        "paymentDate": "2026-03-15",
    }
    body.update(overrides)
    return body


def _advance_record(client, total=1000, first=300):
    resp = client.post(
        "/api/salary",
        json=_worker_salary(amount=first, paymentType="advance", totalSalaryAmount=total),
    )
    assert resp.status_code == 201
    return resp.get_json()["id"]


def test_full_salary_record(client, db):
    resp = client.post("/api/salary", json=_worker_salary())
    assert resp.status_code == 201
    doc = db["salary"].find_one({})
    assert doc["status"] == "paid"
    assert doc["paymentType"] == "full"
    assert doc["paymentDate"].day == 15


def test_salary_validation(client):
    assert client.post("/api/salary", json=_worker_salary(amount=None)).status_code == 400
    assert client.post("/api/salary", json=_worker_salary(type="contractor")).status_code == 400
    assert client.post("/api/salary", json=_worker_salary(workerEmail="")).status_code == 400
    assert client.post("/api/salary", json={"type": "laborer", "amount": 50, "paymentDate": "2026-03-01"}).status_code == 400
    assert client.post("/api/salary", json=_worker_salary(amount=-5)).status_code == 400


def test_laborer_salary_defaults_added_by(client, db):
    resp = client.post(
        "/api/salary",
        json={"type": "laborer", "laborName": "Yaw", "amount": 80, "paymentDate": "2026-03-02"},
    )
    assert resp.status_code == 201
    assert db["salary"].find_one({})["addedBy"] == "admin"


def test_advance_record_tracks_balance(client):
    _advance_record(client)
    salaries = client.get("/api/salary").get_json()
    assert salaries[0]["calculatedStatus"] == "partial_paid"
    assert salaries[0]["totalAdvancePaid"] == 300
    assert salaries[0]["remainingBalance"] == 700
    assert salaries[0]["paymentProgress"] == 30.0


def test_advance_cannot_exceed_total(client):
    resp = client.post("/api/salary", json=_worker_salary(amount=1200, paymentType="advance", totalSalaryAmount=1000))
    assert resp.status_code == 400


def test_add_advances_until_fully_paid(client, db):
    salary_id = _advance_record(client)

    over = client.post("/api/salary", json={"existingSalaryId": salary_id, "amount": 800})
    assert over.status_code == 400
    assert over.get_json()["remainingBalance"] == 700

    resp = client.post("/api/salary", json={"existingSalaryId": salary_id, "amount": 700})
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "fully_paid"

    doc = db["salary"].find_one({"_id": ObjectId(salary_id)})
    assert len(doc["advancePayments"]) == 2
    assert doc["amount"] == 1000


def test_add_advance_to_missing_record(client):
    resp = client.post("/api/salary", json={"existingSalaryId": str(ObjectId()), "amount": 10})
    assert resp.status_code == 404


def test_edit_single_advance(client, db):
    salary_id = _advance_record(client)
    resp = client.put(
        f"/api/salary?id={salary_id}",
        json={"updateType": "advance_payment", "advanceIndex": 0, "advanceData": {"amount": 1000}},
    )
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "fully_paid"

    too_much = client.put(
        f"/api/salary?id={salary_id}",
        json={"updateType": "advance_payment", "advanceIndex": 0, "advanceData": {"amount": 1500}},
    )
    assert too_much.status_code == 400

    missing = client.put(
        f"/api/salary?id={salary_id}",
        json={"updateType": "advance_payment", "advanceIndex": 4, "advanceData": {"amount": 1}},
    )
    assert missing.status_code == 404


def test_plain_update(client, db):
    salary_id = client.post("/api/salary", json=_worker_salary()).get_json()["id"]
    resp = client.put(f"/api/salary?id={salary_id}", json={"amount": "650", "note": "bonus"})
    assert resp.status_code == 200
    doc = db["salary"].find_one({"_id": ObjectId(salary_id)})
    assert doc["amount"] == 650
    assert doc["note"] == "bonus"


def test_total_cannot_drop_below_advances_paid(client, db):
    salary_id = _advance_record(client, total=1000, first=800)

    resp = client.put(f"/api/salary?id={salary_id}", json={"totalSalaryAmount": 300})
    assert resp.status_code == 400
    assert resp.get_json()["totalAdvancePaid"] == 800
    doc = db["salary"].find_one({"_id": ObjectId(salary_id)})
    assert doc["totalSalaryAmount"] == 1000
    assert doc["status"] == "partial_paid"

    assert client.put(f"/api/salary?id={salary_id}", json={"totalSalaryAmount": 0}).status_code == 400

    resp = client.put(f"/api/salary?id={salary_id}", json={"totalSalaryAmount": 800})
    assert resp.status_code == 200
    doc = db["salary"].find_one({"_id": ObjectId(salary_id)})
    assert doc["status"] == "fully_paid"
    assert doc["remainingBalance"] == 0


def test_plain_update_keeps_advance_history(client, db):
    salary_id = _advance_record(client, total=1000, first=800)

    resp = client.put(f"/api/salary?id={salary_id}", json={"advancePayments": [], "note": "recheck"})
    assert resp.status_code == 200
    doc = db["salary"].find_one({"_id": ObjectId(salary_id)})
    assert len(doc["advancePayments"]) == 1
    assert doc["advancePayments"][0]["amount"] == 800
    assert doc["note"] == "recheck"

    listed = client.get("/api/salary").get_json()[0]
    assert listed["totalAdvancePaid"] == 800
    assert listed["remainingBalance"] == 200


def test_delete_one_advance_then_record(client, db):
    salary_id = _advance_record(client)
    client.post("/api/salary", json={"existingSalaryId": salary_id, "amount": 200})

    resp = client.delete(f"/api/salary?id={salary_id}&deleteType=advance_payment&advanceIndex=0")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["totalAdvancePaid"] == 200
    assert body["remainingAdvancePayments"] == 1
    assert body["status"] == "partial_paid"

    assert client.delete(f"/api/salary?id={salary_id}").status_code == 200
    assert db["salary"].count_documents({}) == 0
    assert client.delete(f"/api/salary?id={salary_id}").status_code == 404


def test_date_range_includes_end_day(client):
    client.post("/api/salary", json=_worker_salary(paymentDate="2026-03-31T18:30:00"))
    client.post("/api/salary", json=_worker_salary(paymentDate="2026-04-01"))

    march = client.get("/api/salary?startDate=2026-03-01&endDate=2026-03-31").get_json()
    assert len(march) == 1


def test_filter_worker_salaries_by_email(client):
    client.post("/api/salary", json=_worker_salary())
    client.post("/api/salary", json=_worker_salary(workerEmail="other@example.com"))
    rows = client.get("/api/salary?type=worker&workerEmail=other@example.com").get_json()
    assert [r["workerEmail"] for r in rows] == ["other@example.com"]
