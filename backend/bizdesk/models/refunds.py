from __future__ import annotations

from ..extensions import db
from bizdesk.time_utils import to_utc_z


class Refund(db.Model):
    """
    Completed return against an active invoice.

    EFFECTS (booked together when the refund is completed):
    - restock_quantity of each line comes back into stock (IN, related_type "refund")
    - refund_amount_cents is taken off the invoice's paid amount and its
      payment status recomputed

    Receivables and member points are not adjusted.

    invoice_id is nulled if the invoice is hard-deleted; invoice_number keeps
    the human reference.

    IMMUTABLE: Records are never updated once completed.
    """
    __tablename__ = "refunds"
    __table_args__ = (
        db.UniqueConstraint("refund_number", name="uq_refunds_refund_number"),
        db.Index("ix_refunds_invoice", "invoice_id"),
        db.Index("ix_refunds_created_at", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    refund_number = db.Column(db.String(64), nullable=False)

    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id", ondelete="SET NULL"), nullable=True)
    invoice_number = db.Column(db.String(64), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False)
    customer_name = db.Column(db.String(255), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="completed")

    # Value of the returned goods vs. the money actually handed back
    lines_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    refund_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    reason = db.Column(db.String(255), nullable=False)
    notes = db.Column(db.Text, nullable=True)

    completed_by = db.Column(db.String(128), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    lines = db.relationship(
        "RefundLine",
        backref="refund",
        lazy=True,
        order_by="RefundLine.id",
        cascade="all, delete-orphan",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "refund_number": self.refund_number,
            "invoice_id": self.invoice_id,
            "invoice_number": self.invoice_number,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "status": self.status,
            "lines_amount_cents": self.lines_amount_cents,
            "refund_amount_cents": self.refund_amount_cents,
            "reason": self.reason,
            "notes": self.notes,
            "completed_by": self.completed_by,
            "created_at": to_utc_z(self.created_at),
            "lines": [line.to_dict() for line in self.lines],
        }


class RefundLine(db.Model):
    """Returned quantity of one invoice line; restock_quantity <= quantity."""
    __tablename__ = "refund_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    refund_id = db.Column(db.Integer, db.ForeignKey("refunds.id", ondelete="CASCADE"), nullable=False, index=True)
    invoice_line_id = db.Column(
        db.Integer, db.ForeignKey("invoice_lines.id", ondelete="SET NULL"), nullable=True, index=True
    )

    product_id = db.Column(db.Integer, nullable=False)
    product_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    restock_quantity = db.Column(db.Integer, nullable=False, default=0)
    amount_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "refund_id": self.refund_id,
            "invoice_line_id": self.invoice_line_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "restock_quantity": self.restock_quantity,
            "amount_cents": self.amount_cents,
        }
