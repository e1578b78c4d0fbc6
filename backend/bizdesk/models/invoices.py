from __future__ import annotations

from sqlalchemy import text

from ..extensions import db
from bizdesk.time_utils import to_utc_z


class Invoice(db.Model):
    """
    Sales invoice document.

    LIFECYCLE:
    - active: created, stock deducted, may receive payments
    - cancelled: stock restored, record retained for audit (terminal)
    Hard deletion removes the row entirely (stock restored first).

    PAYMENT STATUS:
    Derived from paid_amount_cents vs total_amount_cents:
    0 -> unpaid, between -> partial, >= total -> paid.
    paid_amount_cents is clamped so it never exceeds total_amount_cents.

    NUMBERING:
    invoice_number is unique among active invoices only (partial unique index),
    so the number of a cancelled invoice can be entered again by hand.

    SNAPSHOTS:
    customer_* columns and InvoiceLine.product_name are copies taken at
    creation time; later edits to the customer or product do not change them.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.Index("ix_invoices_customer", "customer_id"),
        db.Index("ix_invoices_payment_status", "payment_status"),
        db.Index("ix_invoices_created_at", "created_at"),
        db.Index("ix_invoices_invoice_number", "invoice_number"),
        db.Index(
            "uq_invoices_active_number",
            "invoice_number",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_number = db.Column(db.String(64), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="active", index=True)  # active, cancelled

    # Customer snapshot
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False)
    customer_name = db.Column(db.String(255), nullable=False)
    customer_phone = db.Column(db.String(32), nullable=True)
    customer_address = db.Column(db.String(255), nullable=True)

    # Member the invoice was priced and accrued against (if any)
    member_id = db.Column(db.Integer, db.ForeignKey("members.id"), nullable=True, index=True)

    # Money (cents) and rates (basis points)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    member_discount_cents = db.Column(db.Integer, nullable=False, default=0)
    shipping_fee_cents = db.Column(db.Integer, nullable=False, default=0)
    other_fees_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    tax_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    # Payment tracking
    payment_status = db.Column(db.String(16), nullable=False, default="unpaid")  # unpaid, partial, paid
    paid_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    payment_method = db.Column(db.String(32), nullable=True)
    payment_reference = db.Column(db.String(128), nullable=True)

    notes = db.Column(db.Text, nullable=True)

    # Audit trail
    created_by = db.Column(db.String(128), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    cancelled_by = db.Column(db.String(128), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer")
    member = db.relationship("Member")
    lines = db.relationship(
        "InvoiceLine",
        backref="invoice",
        lazy=True,
        order_by="InvoiceLine.position",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def remaining_amount_cents(self) -> int:
        return max(self.total_amount_cents - self.paid_amount_cents, 0)

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "status": self.status,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "customer_address": self.customer_address,
            "member_id": self.member_id,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "member_discount_cents": self.member_discount_cents,
            "shipping_fee_cents": self.shipping_fee_cents,
            "other_fees_cents": self.other_fees_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "tax_amount_cents": self.tax_amount_cents,
            "total_amount_cents": self.total_amount_cents,
            "payment_status": self.payment_status,
            "paid_amount_cents": self.paid_amount_cents,
            "remaining_amount_cents": self.remaining_amount_cents,
            "payment_method": self.payment_method,
            "payment_reference": self.payment_reference,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "cancelled_by": self.cancelled_by,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancel_reason": self.cancel_reason,
            "version_id": self.version_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class InvoiceLine(db.Model):
    """
    Line snapshot on an invoice. Immutable once the invoice is created.

    product_id is a weak reference: the product's price or name may change
    later, the line keeps what was sold.
    """
    __tablename__ = "invoice_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)

    product_id = db.Column(db.Integer, nullable=False, index=True)
    product_name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_bps = db.Column(db.Integer, nullable=False, default=0)
    line_total_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "position": self.position,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "sku": self.sku,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_bps": self.discount_bps,
            "line_total_cents": self.line_total_cents,
        }
