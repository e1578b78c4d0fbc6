# Overview: Maps service-layer errors to JSON error responses shared by the API blueprints.

from flask import jsonify, request

from ..services.concurrency import PersistenceError
from ..services.invoice_service import (
    InsufficientStockWarning,
    InvoiceError,
    InvoiceNotFound,
    InvoiceStateError,
)
from ..services.membership_service import MemberNotFound, MembershipError
from ..services.receivable_service import ReceivableError, ReceivableNotFound
from ..services.stock_service import ProductNotFound, StockError
from ..validation import ConflictError, ValidationError


DOMAIN_ERRORS = (InvoiceError, StockError, ReceivableError, MembershipError, PersistenceError, ValueError)

NOT_FOUND_ERRORS = (InvoiceNotFound, ProductNotFound, ReceivableNotFound, MemberNotFound)
CONFLICT_ERRORS = (ConflictError, InvoiceStateError, InsufficientStockWarning)


def error_response(exc: Exception):
    """
    400 validation, 404 not found, 409 conflict / state / unconfirmed
    shortage, 500 rolled-back persistence failure.
    """
    if isinstance(exc, PersistenceError):
        details = dict(exc.details)
        if exc.step:
            details["step"] = exc.step
        return jsonify({"error": "Operation failed, please retry", "details": details}), 500

    details = getattr(exc, "details", None) or {}
    if isinstance(exc, NOT_FOUND_ERRORS):
        return jsonify({"error": str(exc), "details": details}), 404
    if isinstance(exc, CONFLICT_ERRORS):
        body = {"error": str(exc), "details": details}
        if isinstance(exc, InsufficientStockWarning):
            body["requires_confirmation"] = True
        return jsonify(body), 409
    if isinstance(exc, ValidationError):
        return jsonify({"error": str(exc)}), 400
    return jsonify({"error": str(exc), "details": details}), 400


def require_json() -> dict:
    """Request body as a dict; anything else is a ValidationError."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    return data


def require_confirmation(data: dict, action: str) -> None:
    if data.get("confirm") is not True:
        raise ValidationError(f'{action} requires "confirm": true')
