from __future__ import annotations

from ..extensions import db
from bizdesk.time_utils import to_utc_z


class Product(db.Model):
    """
    Product master data plus its running stock counter.

    STOCK DESIGN DECISION:
    Product.current_stock is a denormalized counter. It must always equal the
    signed sum of this product's StockTransaction rows, so it is only ever
    changed through stock_service (which appends the ledger row in the same
    unit of work).

    Negative stock is allowed. It is the "sold now, reconcile later" state an
    operator accepts when confirming an insufficient-stock warning.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.Index("ix_products_category", "category"),
        db.Index("ix_products_category_active", "category", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(64), nullable=False, default="general")
    unit = db.Column(db.String(32), nullable=False, default="pcs")

    # Authoritative storage in cents
    selling_price_cents = db.Column(db.Integer, nullable=False, default=0)
    cost_price_cents = db.Column(db.Integer, nullable=False, default=0)

    current_stock = db.Column(db.Integer, nullable=False, default=0)
    min_stock = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r} stock={self.current_stock}>"

    @property
    def is_low_stock(self) -> bool:
        return self.current_stock <= self.min_stock

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "unit": self.unit,
            "selling_price_cents": self.selling_price_cents,
            "cost_price_cents": self.cost_price_cents,
            "current_stock": self.current_stock,
            "min_stock": self.min_stock,
            "is_low_stock": self.is_low_stock,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockTransaction(db.Model):
    """
    Append-only stock ledger.

    TYPES:
    - IN: stock added (purchase, opening stock, refund restock, cancellation/deletion restore)
    - OUT: stock removed (invoice line)
    - ADJUSTMENT: manual correction; direction is after_stock - before_stock

    quantity is always a positive magnitude. related_id is a plain string, not
    a foreign key, so ledger rows outlive hard-deleted invoices.

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "stock_transactions"
    __table_args__ = (
        db.Index("ix_stock_txns_product_created", "product_id", "created_at"),
        db.Index("ix_stock_txns_related", "related_type", "related_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    product_name = db.Column(db.String(255), nullable=False)

    type = db.Column(db.String(16), nullable=False, index=True)  # IN, OUT, ADJUSTMENT
    quantity = db.Column(db.Integer, nullable=False)

    before_stock = db.Column(db.Integer, nullable=False)
    after_stock = db.Column(db.Integer, nullable=False)

    related_id = db.Column(db.String(64), nullable=True)
    related_type = db.Column(db.String(32), nullable=True)  # order, purchase, adjustment, opening, cancellation, deletion, refund
    reference = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.String(255), nullable=True)

    # Purchase cost per unit (purchase rows only)
    unit_cost_cents = db.Column(db.Integer, nullable=True)

    operator = db.Column(db.String(128), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    product = db.relationship("Product", backref=db.backref("stock_transactions", lazy=True))

    @property
    def signed_quantity(self) -> int:
        if self.type == "IN":
            return self.quantity
        if self.type == "OUT":
            return -self.quantity
        return self.after_stock - self.before_stock

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "type": self.type,
            "quantity": self.quantity,
            "signed_quantity": self.signed_quantity,
            "before_stock": self.before_stock,
            "after_stock": self.after_stock,
            "related_id": self.related_id,
            "related_type": self.related_type,
            "reference": self.reference,
            "notes": self.notes,
            "unit_cost_cents": self.unit_cost_cents,
            "operator": self.operator,
            "created_at": to_utc_z(self.created_at),
        }
