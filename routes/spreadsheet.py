# routes/spreadsheet.py
from __future__ import annotations

import logging
from datetime import datetime

from flask import Blueprint, jsonify, request

from db import db
from services.request_helpers import error

logger = logging.getLogger(__name__)

spreadsheet_bp = Blueprint("spreadsheet", __name__, url_prefix="/api/spreadsheetdata")

spreadsheet_col = db["spreadsheet_data"]


@spreadsheet_bp.route("", methods=["GET"])
def get_spreadsheet():
    try:
        doc = spreadsheet_col.find_one()
        return jsonify((doc or {}).get("data") or {})
    except Exception as e:
        logger.exception("GET spreadsheet failed")
        return error(str(e), 500)


@spreadsheet_bp.route("", methods=["POST"])
def save_spreadsheet():
    """Single-document store: every save replaces what was there."""
    try:
        body = request.get_json(silent=True)
        if body is None:
            return error("JSON body required")
        data = body.get("data", body) if isinstance(body, dict) else body

        spreadsheet_col.replace_one({}, {"data": data, "createdAt": datetime.utcnow()}, upsert=True)
        return jsonify({"message": "Saved successfully"})
    except Exception as e:
        logger.exception("POST spreadsheet failed")
        return error(str(e), 500)
