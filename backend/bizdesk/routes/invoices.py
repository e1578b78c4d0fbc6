# Overview: Flask API routes for invoices; parses input and returns JSON responses.

# backend/bizdesk/routes/invoices.py
"""
Invoice API Routes

WHY: Expose the invoice lifecycle (create, pay, refund, cancel, delete) over REST.

DESIGN:
- Routes only parse JSON into drafts and translate errors; all rules live
  in invoice_service
- Insufficient stock answers 409 with shortage details until the request is
  repeated with "confirm_insufficient_stock": true
- Cancel, delete and refund are destructive and require "confirm": true
"""

from dataclasses import asdict

from flask import Blueprint, request, jsonify, current_app

from ..services import invoice_service, membership_service, receivable_service, refund_service, stock_service
from ..services.invoice_service import InvoiceDraft, LineDraft, PaymentIntent
from ..services.refund_service import RefundLineDraft
from ..services.numbering_service import next_invoice_number
from ..validation import ValidationError
from .errors import DOMAIN_ERRORS, error_response, require_confirmation, require_json


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")

# related_type values whose related_id is an invoice id
INVOICE_STOCK_RELATED_TYPES = ("order", "cancellation", "deletion")


def _draft_from_json(data: dict) -> InvoiceDraft:
    items = data.get("items")
    if not isinstance(items, list):
        raise ValidationError("items must be a list")

    lines = []
    for item in items:
        if not isinstance(item, dict):
            raise ValidationError("Each item must be an object")
        lines.append(LineDraft(
            product_id=item.get("product_id"),
            quantity=item.get("quantity"),
            unit_price_cents=item.get("unit_price_cents"),
            discount_bps=item.get("discount_bps") or 0,
        ))

    payment = None
    raw_payment = data.get("payment")
    if raw_payment is not None:
        if not isinstance(raw_payment, dict):
            raise ValidationError("payment must be an object")
        payment = PaymentIntent(
            amount_cents=raw_payment.get("amount_cents", 0),
            payment_method=raw_payment.get("payment_method"),
            payment_reference=raw_payment.get("payment_reference"),
        )

    return InvoiceDraft(
        customer_id=data.get("customer_id"),
        created_by=data.get("created_by"),
        lines=lines,
        discount_cents=data.get("discount_cents", 0),
        shipping_fee_cents=data.get("shipping_fee_cents", 0),
        other_fees_cents=data.get("other_fees_cents", 0),
        tax_rate_bps=data.get("tax_rate_bps"),
        custom_number=data.get("invoice_number"),
        notes=data.get("notes"),
        payment=payment,
    )


def _invoice_payload(invoice) -> dict:
    receivable = receivable_service.get_for_invoice(invoice.id)
    return {
        "invoice": invoice.to_dict(),
        "receivable": receivable.to_dict() if receivable else None,
        "points_earned": membership_service.earned_for_invoice(invoice.id),
    }


# =============================================================================
# INVOICE CREATION
# =============================================================================

@invoices_bp.post("/")
def create_invoice_route():
    """
    Create and fulfil an invoice.

    Request body:
    {
        "customer_id": 1,
        "created_by": "alice",
        "items": [{"product_id": 3, "quantity": 2, "unit_price_cents": 1500, "discount_bps": 0}],
        "discount_cents": 0, "shipping_fee_cents": 0, "other_fees_cents": 0,
        "tax_rate_bps": 600,                      (optional, default from config)
        "invoice_number": "INV-CUSTOM-1",         (optional)
        "notes": "...",                           (optional)
        "payment": {"amount_cents": 2000, "payment_method": "cash", "payment_reference": null},
        "confirm_insufficient_stock": false
    }

    Returns:
        201: invoice, receivable (if any), points earned
        400: invalid draft
        409: custom number in use, or unconfirmed insufficient stock
        500: persistence failure (everything rolled back)
    """
    try:
        data = require_json()
        draft = _draft_from_json(data)
        invoice = invoice_service.create_invoice(
            draft,
            confirm_insufficient_stock=data.get("confirm_insufficient_stock") is True,
        )
        return jsonify(_invoice_payload(invoice)), 201

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/preview")
def preview_invoice_route():
    """Totals for a draft (member discount included) without writing anything."""
    try:
        draft = _draft_from_json(require_json())
        totals = invoice_service.preview_totals(draft)
        return jsonify({"totals": asdict(totals)}), 200

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to preview invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/next-number")
def next_number_route():
    """Number the next invoice would get if created now. Nothing is reserved."""
    return jsonify({"invoice_number": next_invoice_number()}), 200


# =============================================================================
# INVOICE QUERIES
# =============================================================================

@invoices_bp.get("/")
def list_invoices_route():
    customer_id = request.args.get("customer_id", type=int)
    invoices = invoice_service.list_invoices(
        customer_id=customer_id,
        payment_status=request.args.get("payment_status"),
        status=request.args.get("status"),
    )
    return jsonify({"invoices": [inv.to_dict(include_lines=False) for inv in invoices]}), 200


@invoices_bp.get("/<int:invoice_id>")
def get_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.get_invoice(invoice_id)
        return jsonify(_invoice_payload(invoice)), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)


@invoices_bp.get("/<int:invoice_id>/stock-transactions")
def invoice_stock_transactions_route(invoice_id: int):
    """Every stock movement booked against this invoice (sale, cancellation, deletion)."""
    transactions = stock_service.list_transactions(
        related_id=str(invoice_id),
        related_types=INVOICE_STOCK_RELATED_TYPES,
    )
    return jsonify({"transactions": [tx.to_dict() for tx in transactions]}), 200


# =============================================================================
# PAYMENT / CANCEL / DELETE
# =============================================================================

@invoices_bp.post("/<int:invoice_id>/payments")
def record_payment_route(invoice_id: int):
    """
    Record a later payment.

    Request body:
    {
        "amount_cents": 3300,
        "payment_method": "bank_transfer",   (optional)
        "payment_reference": "TRX-881",      (optional)
        "operator": "alice"                  (optional)
    }

    Amounts beyond the outstanding balance are clamped to the total.
    """
    try:
        data = require_json()
        invoice = invoice_service.record_payment(
            invoice_id,
            data.get("amount_cents"),
            payment_method=data.get("payment_method"),
            payment_reference=data.get("payment_reference"),
            operator=data.get("operator"),
        )
        return jsonify({"invoice": invoice.to_dict()}), 200

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record invoice payment")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/cancel")
def cancel_invoice_route(invoice_id: int):
    """
    Cancel an invoice and restore its stock.

    Request body:
    {
        "operator": "alice",
        "reason": "Customer changed mind",   (optional)
        "confirm": true
    }
    """
    try:
        data = require_json()
        require_confirmation(data, "Cancelling an invoice")
        invoice = invoice_service.cancel_invoice(
            invoice_id,
            operator=data.get("operator"),
            reason=data.get("reason"),
        )
        return jsonify({"invoice": invoice.to_dict()}), 200

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.delete("/<int:invoice_id>")
def delete_invoice_route(invoice_id: int):
    """
    Permanently delete an invoice (stock restored unless already cancelled).

    Request body: {"operator": "alice", "confirm": true}
    """
    try:
        data = require_json()
        require_confirmation(data, "Deleting an invoice")
        invoice_number = invoice_service.delete_invoice(invoice_id, operator=data.get("operator"))
        return jsonify({"deleted": True, "invoice_number": invoice_number}), 200

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete invoice")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# REFUNDS
# =============================================================================

@invoices_bp.post("/<int:invoice_id>/refunds")
def complete_refund_route(invoice_id: int):
    """
    Take back part of an invoice: restock and hand money back.

    Request body:
    {
        "items": [{"invoice_line_id": 7, "quantity": 2, "restock_quantity": 1}],
        "refund_amount_cents": 4000,    (optional, default: value of returned items)
        "reason": "Damaged in transit",
        "notes": "...",                 (optional)
        "operator": "alice",
        "confirm": true
    }
    """
    try:
        data = require_json()
        require_confirmation(data, "Completing a refund")
        items = data.get("items")
        if not isinstance(items, list):
            raise ValidationError("items must be a list")
        lines = []
        for item in items:
            if not isinstance(item, dict):
                raise ValidationError("Each item must be an object")
            lines.append(RefundLineDraft(
                invoice_line_id=item.get("invoice_line_id"),
                quantity=item.get("quantity"),
                restock_quantity=item.get("restock_quantity"),
            ))

        refund = refund_service.complete_refund(
            invoice_id,
            lines,
            operator=data.get("operator"),
            reason=data.get("reason"),
            refund_amount_cents=data.get("refund_amount_cents"),
            notes=data.get("notes"),
        )
        invoice = invoice_service.get_invoice(invoice_id)
        return jsonify({"refund": refund.to_dict(), "invoice": invoice.to_dict()}), 201

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to complete refund")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/<int:invoice_id>/refunds")
def list_refunds_route(invoice_id: int):
    refunds = refund_service.list_refunds(invoice_id=invoice_id)
    return jsonify({"refunds": [r.to_dict() for r in refunds]}), 200
