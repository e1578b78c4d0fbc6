# Overview: Service-layer operations for the stock ledger; encapsulates business logic and database work.

# backend/bizdesk/services/stock_service.py

from __future__ import annotations

from datetime import datetime
from typing import Iterable

from sqlalchemy import case, func

from ..extensions import db
from ..models import Product, StockTransaction
from ..time_utils import utcnow
from ..validation import ValidationError, coerce_int, optional_text, require_text
from .concurrency import UnitOfWork, lock_for_update, run_unit_of_work
"""
Stock Ledger Invariants (authoritative)

- Product.current_stock == SUM(signed quantity) over that product's StockTransaction rows,
  from the product's opening stock onward.
- Signed quantity: IN -> +quantity, OUT -> -quantity, ADJUSTMENT -> after_stock - before_stock.
- quantity is always a positive magnitude.
- Stock may go negative. Callers decide (with operator confirmation) whether to allow it.
- StockTransaction rows are append-only: never updated, never deleted.
- Reversal is additive: restoring an invoice appends IN rows, it does not remove the OUT rows.
- apply_* functions only flush; the caller's unit of work commits.
"""

TX_IN = "IN"
TX_OUT = "OUT"
TX_ADJUSTMENT = "ADJUSTMENT"


class StockError(Exception):
    """Raised for stock ledger errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class ProductNotFound(StockError):
    pass


def get_product(product_id: int, *, lock: bool = False, require_active: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise ProductNotFound(f"Product {product_id} not found")
    if require_active and not product.is_active:
        raise StockError(f"Product {product.sku} is inactive")
    return product


def _append(
    product: Product,
    *,
    tx_type: str,
    quantity: int,
    after_stock: int,
    operator: str,
    related_id: str | None,
    related_type: str | None,
    reference: str | None,
    notes: str | None,
    occurred_at: datetime | None,
    unit_cost_cents: int | None = None,
) -> StockTransaction:
    tx = StockTransaction(
        product_id=product.id,
        product_name=product.name,
        type=tx_type,
        quantity=quantity,
        before_stock=product.current_stock,
        after_stock=after_stock,
        related_id=str(related_id) if related_id is not None else None,
        related_type=related_type,
        reference=reference,
        notes=notes,
        unit_cost_cents=unit_cost_cents,
        operator=operator,
        created_at=occurred_at or utcnow(),
    )
    product.current_stock = after_stock
    db.session.add(tx)
    db.session.flush()
    return tx


def apply_out(
    product: Product,
    quantity: int,
    *,
    operator: str,
    related_id: str | None = None,
    related_type: str = "order",
    reference: str | None = None,
    notes: str | None = None,
    occurred_at: datetime | None = None,
) -> StockTransaction:
    """
    Deduct quantity from the product's stock and append an OUT row.

    May leave the counter negative; insufficient stock is checked (and
    confirmed) upstream.
    """
    if quantity <= 0:
        raise StockError("quantity must be > 0 for OUT")
    return _append(
        product,
        tx_type=TX_OUT,
        quantity=quantity,
        after_stock=product.current_stock - quantity,
        operator=operator,
        related_id=related_id,
        related_type=related_type,
        reference=reference,
        notes=notes,
        occurred_at=occurred_at,
    )


def apply_in(
    product: Product,
    quantity: int,
    *,
    operator: str,
    related_id: str | None = None,
    related_type: str = "purchase",
    reference: str | None = None,
    notes: str | None = None,
    occurred_at: datetime | None = None,
    unit_cost_cents: int | None = None,
) -> StockTransaction:
    """Add quantity to the product's stock and append an IN row (purchases and reversals)."""
    if quantity <= 0:
        raise StockError("quantity must be > 0 for IN")
    return _append(
        product,
        tx_type=TX_IN,
        quantity=quantity,
        after_stock=product.current_stock + quantity,
        operator=operator,
        related_id=related_id,
        related_type=related_type,
        reference=reference,
        notes=notes,
        occurred_at=occurred_at,
        unit_cost_cents=unit_cost_cents,
    )


def apply_adjustment(
    product: Product,
    new_stock: int,
    *,
    operator: str,
    notes: str | None = None,
    occurred_at: datetime | None = None,
) -> StockTransaction:
    """Set the counter to new_stock (stock count correction); magnitude is the difference."""
    delta = new_stock - product.current_stock
    if delta == 0:
        raise StockError("Stock is already at the requested level")
    return _append(
        product,
        tx_type=TX_ADJUSTMENT,
        quantity=abs(delta),
        after_stock=new_stock,
        operator=operator,
        related_id=None,
        related_type="adjustment",
        reference=None,
        notes=notes,
        occurred_at=occurred_at,
    )


def record_opening_stock(product: Product, quantity: int, *, operator: str) -> StockTransaction | None:
    """
    Ledger row for stock a product starts with, so the ledger sum matches the
    counter from creation. Expects product.current_stock == 0.
    """
    if quantity <= 0:
        return None
    return apply_in(
        product,
        quantity,
        operator=operator,
        related_id=str(product.id),
        related_type="opening",
        notes="Opening stock",
    )


def signed_quantity_expr():
    return case(
        (StockTransaction.type == TX_IN, StockTransaction.quantity),
        (StockTransaction.type == TX_OUT, -StockTransaction.quantity),
        else_=StockTransaction.after_stock - StockTransaction.before_stock,
    )


def ledger_balance(product_id: int) -> int:
    """Stock level reconstructed from the ledger alone."""
    total = db.session.query(
        func.coalesce(func.sum(signed_quantity_expr()), 0)
    ).filter(StockTransaction.product_id == product_id).scalar()
    return int(total or 0)


def verify_stock(product_id: int | None = None) -> list[dict]:
    """
    Compare every product's counter with its ledger sum.

    Returns one row per mismatching product (empty list when consistent).
    """
    balances = dict(
        db.session.query(StockTransaction.product_id, func.sum(signed_quantity_expr()))
        .group_by(StockTransaction.product_id)
        .all()
    )
    q = db.session.query(Product)
    if product_id is not None:
        q = q.filter(Product.id == product_id)

    mismatches = []
    for product in q.order_by(Product.id).all():
        ledger = int(balances.get(product.id) or 0)
        if ledger != product.current_stock:
            mismatches.append({
                "product_id": product.id,
                "sku": product.sku,
                "current_stock": product.current_stock,
                "ledger_stock": ledger,
                "difference": product.current_stock - ledger,
            })
    return mismatches


def find_shortages(requested: Iterable[tuple[Product, int]]) -> list[dict]:
    """
    Aggregate requested quantities per product and report those exceeding
    current stock. Only the quantities in this request are considered; other
    open carts are not reserved against.
    """
    totals: dict[int, int] = {}
    products: dict[int, Product] = {}
    for product, quantity in requested:
        totals[product.id] = totals.get(product.id, 0) + quantity
        products[product.id] = product

    shortages = []
    for pid, qty in totals.items():
        product = products[pid]
        if product.current_stock < qty:
            shortages.append({
                "product_id": pid,
                "product_name": product.name,
                "requested_quantity": qty,
                "current_stock": product.current_stock,
                "resulting_stock": product.current_stock - qty,
            })
    return shortages


def list_transactions(
    *,
    product_id: int | None = None,
    related_type: str | None = None,
    related_types: Iterable[str] | None = None,
    related_id: str | None = None,
    limit: int = 200,
) -> list[StockTransaction]:
    q = db.session.query(StockTransaction)
    if product_id is not None:
        q = q.filter(StockTransaction.product_id == product_id)
    if related_type:
        q = q.filter(StockTransaction.related_type == related_type)
    if related_types is not None:
        q = q.filter(StockTransaction.related_type.in_(list(related_types)))
    if related_id is not None:
        q = q.filter(StockTransaction.related_id == str(related_id))
    return q.order_by(StockTransaction.created_at.desc(), StockTransaction.id.desc()).limit(limit).all()


def adjust_stock(product_id: int, new_stock, *, operator, notes: str | None = None) -> StockTransaction:
    """Public stock-count correction; commits its own unit of work."""
    new_stock = coerce_int(new_stock, "new_stock")
    operator = require_text(operator, "operator", max_length=128)
    notes = optional_text(notes)

    def _op():
        uow = UnitOfWork("adjust_stock")
        with uow.transaction(passthrough=(StockError,)):
            with uow.step("stock"):
                product = get_product(product_id, lock=True)
                try:
                    tx = apply_adjustment(product, new_stock, operator=operator, notes=notes)
                except StockError as exc:
                    raise ValidationError(str(exc))
        return tx

    return run_unit_of_work(_op, name="adjust_stock")
