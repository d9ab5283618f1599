from flask import Flask, jsonify, request, send_from_directory
from flask.json.provider import DefaultJSONProvider
from flask_login import LoginManager
from bson import ObjectId
from datetime import date, datetime
import logging
import os

from config_constants import LOG_LEVEL, MAX_UPLOAD_MB, SECRET_KEY, UPLOADS_ROOT
from user_model import load_user_from_request
from services.activity_audit import ensure_audit_log_indexes, audit_request
from services.stock_ledger import ensure_ledger_indexes

# ---------------- Stock Blueprints ----------------
from routes.stock_submissions import leather_bp, materials_bp
from routes.production import production_bp
from routes.production_apply import production_apply_bp
from routes.finished_products import finished_products_bp
from routes.removal import removal_bp

# ---------------- People & Payroll Blueprints ----------------
from routes.users import users_bp
from routes.salary import salary_bp
from routes.worker_payments import worker_payments_bp
from routes.spreadsheet import spreadsheet_bp

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


class MongoJSONProvider(DefaultJSONProvider):
    """Lets handlers jsonify raw Mongo documents."""

    @staticmethod
    def default(o):
        if isinstance(o, ObjectId):
            return str(o)
        if isinstance(o, (datetime, date)):
            return o.isoformat()
        return DefaultJSONProvider.default(o)


# ---------------- App & Auth Setup ----------------
app = Flask(__name__)
app.json = MongoJSONProvider(app)
app.secret_key = SECRET_KEY
app.config["MAX_CONTENT_LENGTH"] = MAX_UPLOAD_MB * 1024 * 1024
app.config["UPLOADS_ROOT"] = UPLOADS_ROOT
os.makedirs(app.config["UPLOADS_ROOT"], exist_ok=True)

ensure_audit_log_indexes()
ensure_ledger_indexes()

login_manager = LoginManager()
login_manager.init_app(app)


@login_manager.request_loader
def load_user(req):
    return load_user_from_request(req)


# ---------------- Blueprint Registration ----------------
app.register_blueprint(leather_bp)
app.register_blueprint(materials_bp)
app.register_blueprint(production_bp)
app.register_blueprint(production_apply_bp)
app.register_blueprint(finished_products_bp)
app.register_blueprint(removal_bp)

app.register_blueprint(users_bp)
app.register_blueprint(salary_bp)
app.register_blueprint(worker_payments_bp)
app.register_blueprint(spreadsheet_bp)


# ---------------- File Uploads ----------------
@app.route("/uploads/<path:filename>")
def serve_uploaded_file(filename):
    return send_from_directory(app.config["UPLOADS_ROOT"], filename)


@app.route("/health")
def health():
    return jsonify({"status": "ok"})


@app.errorhandler(413)
def upload_too_large(_e):
    return jsonify({"error": f"Upload exceeds {MAX_UPLOAD_MB} MB"}), 413


@app.after_request
def audit_mutations(response):
    audit_request(request, response)
    return response


if __name__ == "__main__":
    app.run(debug=True)
