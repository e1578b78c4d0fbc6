# Overview: Service-layer operations for products; encapsulates business logic and database work.

from __future__ import annotations

from ..extensions import db
from ..models import Product
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    coerce_int,
    enforce_rules_product,
    require_text,
    validate_payload,
)
from .concurrency import UnitOfWork, run_unit_of_work
from .stock_service import record_opening_stock


# current_stock is deliberately absent: it only moves through the stock ledger
PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({
        "sku", "name", "description", "category", "unit",
        "selling_price_cents", "cost_price_cents", "min_stock", "is_active",
    }),
    required_on_create=frozenset({"sku", "name"}),
)


def create_product(payload: dict, *, opening_stock=0, operator) -> Product:
    """
    Register a product. Any opening stock is booked as an IN row so the ledger
    sum matches the counter from the first day.
    """
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
    enforce_rules_product(patch)
    opening_stock = coerce_int(opening_stock, "opening_stock", minimum=0)
    operator = require_text(operator, "operator", max_length=128)

    def _op():
        uow = UnitOfWork("create_product")
        with uow.transaction():
            with uow.step("product"):
                if db.session.query(Product.id).filter_by(sku=patch["sku"]).first():
                    raise ConflictError(f"SKU {patch['sku']} already exists")
                product = Product(current_stock=0, **patch)
                db.session.add(product)
            with uow.step("opening_stock"):
                record_opening_stock(product, opening_stock, operator=operator)
        return product

    return run_unit_of_work(_op, name="create_product")


def update_product(product_id: int, payload: dict) -> Product | None:
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
    enforce_rules_product(patch)

    def _op():
        uow = UnitOfWork("update_product")
        with uow.transaction():
            with uow.step("product"):
                product = db.session.get(Product, product_id)
                if product is None:
                    return None
                if "sku" in patch and patch["sku"] != product.sku:
                    if db.session.query(Product.id).filter_by(sku=patch["sku"]).first():
                        raise ConflictError(f"SKU {patch['sku']} already exists")
                for key, value in patch.items():
                    setattr(product, key, value)
        return product

    return run_unit_of_work(_op, name="update_product")


def list_products(*, category: str | None = None, include_inactive: bool = False, low_stock_only: bool = False) -> list[Product]:
    q = db.session.query(Product)
    if category:
        q = q.filter(Product.category == category)
    if not include_inactive:
        q = q.filter(Product.is_active.is_(True))
    if low_stock_only:
        q = q.filter(Product.current_stock <= Product.min_stock)
    return q.order_by(Product.name.asc()).all()
