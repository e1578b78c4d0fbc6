# Overview: Flask API routes for accounts receivable; parses input and returns JSON responses.

# backend/bizdesk/routes/receivables.py
from flask import Blueprint, request, jsonify, current_app

from ..services import receivable_service
from ..validation import optional_datetime
from .errors import DOMAIN_ERRORS, error_response, require_json


receivables_bp = Blueprint("receivables", __name__, url_prefix="/api/receivables")


@receivables_bp.get("/")
def list_receivables_route():
    receivables = receivable_service.list_receivables(
        customer_id=request.args.get("customer_id", type=int),
        status=request.args.get("status"),
    )
    return jsonify({"receivables": [r.to_dict() for r in receivables]}), 200


@receivables_bp.post("/<int:receivable_id>/receipts")
def record_receipt_route(receivable_id: int):
    """
    Post a customer receipt against a receivable.

    Request body:
    {
        "amount_cents": 3300,
        "payment_method": "bank_transfer",
        "payment_reference": "TRX-881",    (optional)
        "notes": "...",                    (optional)
        "paid_at": "2025-02-01T10:00:00Z", (optional)
        "operator": "alice"
    }
    """
    try:
        data = require_json()
        receivable = receivable_service.record_receipt(
            receivable_id,
            data.get("amount_cents"),
            payment_method=data.get("payment_method"),
            operator=data.get("operator"),
            payment_reference=data.get("payment_reference"),
            notes=data.get("notes"),
            paid_at=optional_datetime(data.get("paid_at"), "paid_at"),
        )
        return jsonify({"receivable": receivable.to_dict()}), 200

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record receipt")
        return jsonify({"error": "Internal server error"}), 500


@receivables_bp.post("/refresh")
def refresh_receivables_route():
    """Recompute open receivable statuses (pending -> overdue once past due)."""
    try:
        changed = receivable_service.refresh_overdue()
        return jsonify({"updated": changed}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
