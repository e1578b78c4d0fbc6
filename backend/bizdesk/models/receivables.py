from __future__ import annotations

from ..extensions import db
from bizdesk.time_utils import to_utc_z


class AccountReceivable(db.Model):
    """
    Outstanding balance opened when an invoice is not fully paid at creation.

    One-to-one with the invoice's unpaid remainder at that moment. Later
    payments recorded on the invoice itself do not update this row; receipts
    posted here (ReceivablePayment) do.

    invoice_id is nulled if the invoice is hard-deleted; invoice_number keeps
    the human reference.

    STATUS: pending, partial, paid, overdue
    """
    __tablename__ = "accounts_receivable"
    __table_args__ = (
        db.Index("ix_receivables_customer", "customer_id"),
        db.Index("ix_receivables_status", "status"),
        db.Index("ix_receivables_due_date", "due_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id", ondelete="SET NULL"), nullable=True, index=True)
    invoice_number = db.Column(db.String(64), nullable=False)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False)
    customer_name = db.Column(db.String(255), nullable=False)

    total_amount_cents = db.Column(db.Integer, nullable=False)
    paid_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    remaining_amount_cents = db.Column(db.Integer, nullable=False)

    due_date = db.Column(db.DateTime(timezone=True), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="pending")

    notes = db.Column(db.String(255), nullable=True)
    created_by = db.Column(db.String(128), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "invoice_number": self.invoice_number,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "total_amount_cents": self.total_amount_cents,
            "paid_amount_cents": self.paid_amount_cents,
            "remaining_amount_cents": self.remaining_amount_cents,
            "due_date": to_utc_z(self.due_date),
            "status": self.status,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class ReceivablePayment(db.Model):
    """
    Append-only receipt posted against an AccountReceivable.

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "receivable_payments"
    __table_args__ = (
        db.Index("ix_receivable_payments_receivable_paid", "receivable_id", "paid_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    receivable_id = db.Column(db.Integer, db.ForeignKey("accounts_receivable.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(db.String(32), nullable=False)
    payment_reference = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.String(255), nullable=True)

    operator = db.Column(db.String(128), nullable=False)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    receivable = db.relationship("AccountReceivable", backref=db.backref("payments", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "receivable_id": self.receivable_id,
            "amount_cents": self.amount_cents,
            "payment_method": self.payment_method,
            "payment_reference": self.payment_reference,
            "notes": self.notes,
            "operator": self.operator,
            "paid_at": to_utc_z(self.paid_at),
        }
