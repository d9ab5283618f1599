import os
import tempfile
from datetime import datetime

import mongomock
import pytest

os.environ["MONGODB_URI"] = "mongodb://localhost:27017"
os.environ["MONGODB_DB"] = "leatherworks_test"
os.environ["UPLOADS_ROOT"] = tempfile.mkdtemp(prefix="leatherworks-uploads-")

# must be active before db.py builds its client
_mongo_patch = mongomock.patch(servers=(("localhost", 27017),))
_mongo_patch.start()

from app import app as flask_app  # noqa: E402
from db import db as mongo_db  # noqa: E402

ADMIN = {"role": "admin"}


def worker_headers(email="worker@example.com"):
    return {"role": "worker", "email": email}


@pytest.fixture(autouse=True)
def clean_db():
    for name in mongo_db.list_collection_names():
        mongo_db.drop_collection(name)
    yield


@pytest.fixture
def app():
    flask_app.config.update(TESTING=True)
    return flask_app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def db():
    return mongo_db


@pytest.fixture
def make_worker(db):
    def _make(email="worker@example.com", name="Kofi", phone="0244000000"):
        res = db["users"].insert_one({
            "email": email,
            "name": name,
            "phone": phone,
            "role": "worker",
            "status": "approved",
        })
        return str(res.inserted_id)
    return _make


@pytest.fixture
def approved_stock(db):
    """Insert an approved leather/material submission straight into its collection."""
    def _make(kind, stock_type, quantity, status="approved"):
        collection, field = ("leather", "type") if kind == "leather" else ("materials", "material")
        res = db[collection].insert_one({
            field: stock_type,
            "quantity": quantity,
            "unit": "pcs",
            "company": "Tannery Ltd",
            "workerEmail": "worker@example.com",
            "date": datetime(2026, 3, 1),
            "status": status,
        })
        return str(res.inserted_id)
    return _make


@pytest.fixture
def open_job(client):
    def _make(quantity=10, product="Leather Bag"):
        resp = client.post(
            "/api/stock/production",
            json={"productName": product, "quantity": quantity, "status": "open"},
        )
        assert resp.status_code == 201
        return resp.get_json()["insertedId"]
    return _make
