# backend/bizdesk/routes/inventory.py
"""
Inventory routes: products, stock ledger, adjustments and purchase receiving.

Stock levels are never written directly: product create/update ignore
current_stock, and every change goes through a ledger movement.
"""
from flask import Blueprint, request, jsonify, current_app

from ..services import products_service, purchase_service, stock_service
from ..services.purchase_service import PurchaseLine
from ..validation import ValidationError
from .errors import DOMAIN_ERRORS, error_response, require_json


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


# =============================================================================
# PRODUCTS
# =============================================================================

@inventory_bp.get("/products")
def list_products_route():
    products = products_service.list_products(
        category=request.args.get("category"),
        include_inactive=request.args.get("include_inactive") == "true",
        low_stock_only=request.args.get("low_stock") == "true",
    )
    return jsonify({"products": [p.to_dict() for p in products]}), 200


@inventory_bp.get("/products/<int:product_id>")
def get_product_route(product_id: int):
    try:
        product = stock_service.get_product(product_id)
        return jsonify({"product": product.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)


@inventory_bp.post("/products")
def create_product_route():
    """
    Register a product.

    Request body:
    {
        "sku": "PEN-001", "name": "Blue pen", "category": "stationery", "unit": "pcs",
        "selling_price_cents": 150, "cost_price_cents": 90, "min_stock": 10,
        "opening_stock": 100,
        "operator": "alice"
    }
    """
    try:
        data = dict(require_json())
        opening_stock = data.pop("opening_stock", 0)
        operator = data.pop("operator", None)
        product = products_service.create_product(data, opening_stock=opening_stock, operator=operator)
        return jsonify({"product": product.to_dict()}), 201

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.patch("/products/<int:product_id>")
def update_product_route(product_id: int):
    try:
        product = products_service.update_product(product_id, require_json())
        if product is None:
            return jsonify({"error": "Product not found"}), 404
        return jsonify({"product": product.to_dict()}), 200

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# STOCK LEDGER
# =============================================================================

@inventory_bp.get("/transactions")
def list_transactions_route():
    transactions = stock_service.list_transactions(
        product_id=request.args.get("product_id", type=int),
        related_type=request.args.get("related_type"),
        related_id=request.args.get("related_id"),
        limit=request.args.get("limit", default=200, type=int),
    )
    return jsonify({"transactions": [tx.to_dict() for tx in transactions]}), 200


@inventory_bp.post("/adjustments")
def adjust_stock_route():
    """
    Correct a product's stock after a physical count.

    Request body: {"product_id": 3, "new_stock": 42, "operator": "alice", "notes": "Count 2025-01"}
    """
    try:
        data = require_json()
        if data.get("product_id") is None:
            raise ValidationError("product_id is required")
        tx = stock_service.adjust_stock(
            data.get("product_id"),
            data.get("new_stock"),
            operator=data.get("operator"),
            notes=data.get("notes"),
        )
        return jsonify({"transaction": tx.to_dict()}), 201

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/verify")
def verify_stock_route():
    """Products whose counter differs from the ledger sum (empty when consistent)."""
    mismatches = stock_service.verify_stock(request.args.get("product_id", type=int))
    return jsonify({"consistent": not mismatches, "mismatches": mismatches}), 200


# =============================================================================
# PURCHASES
# =============================================================================

@inventory_bp.post("/purchases")
def receive_purchase_route():
    """
    Receive a supplier delivery.

    Request body:
    {
        "items": [{"product_id": 3, "quantity": 50, "unit_cost_cents": 820}],
        "operator": "alice",
        "supplier": "Supplier ABC",   (optional)
        "notes": "..."                (optional)
    }
    """
    try:
        data = require_json()
        items = data.get("items")
        if not isinstance(items, list):
            raise ValidationError("items must be a list")
        lines = []
        for item in items:
            if not isinstance(item, dict):
                raise ValidationError("Each item must be an object")
            lines.append(PurchaseLine(
                product_id=item.get("product_id"),
                quantity=item.get("quantity"),
                unit_cost_cents=item.get("unit_cost_cents"),
            ))

        receipt = purchase_service.receive_purchase(
            lines,
            operator=data.get("operator"),
            supplier=data.get("supplier"),
            notes=data.get("notes"),
        )
        return jsonify({
            "purchase_number": receipt.purchase_number,
            "supplier": receipt.supplier,
            "total_cost_cents": receipt.total_cost_cents,
            "transactions": [tx.to_dict() for tx in receipt.transactions],
        }), 201

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to receive purchase")
        return jsonify({"error": "Internal server error"}), 500
