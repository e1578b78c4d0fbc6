# Overview: Service-layer operations for accounts receivable; encapsulates business logic and database work.

"""
Accounts Receivable Service

WHY: An invoice that is not fully paid when it is created leaves money owed
by the customer. That balance is tracked here, with a due date, until it is
settled by receipts posted against it.

DESIGN PRINCIPLES:
- One receivable per invoice, opened only at invoice creation
- Due date = invoice creation + RECEIVABLE_TERM_DAYS (one term for all invoices)
- Independent of the invoice afterwards: invoice payments, cancellation and
  deletion do not touch it
- Receipts are an append-only ledger (receivable_payments)
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..extensions import db
from ..models import AccountReceivable, Invoice, ReceivablePayment
from ..time_utils import add_days, normalize_datetime, utcnow
from ..validation import coerce_cents, coerce_payment_method, optional_text, require_text
from .concurrency import UnitOfWork, lock_for_update, run_unit_of_work


class ReceivableError(Exception):
    """Raised for receivable operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class ReceivableNotFound(ReceivableError):
    pass


# =============================================================================
# RECEIVABLE STATUS (CONSTANTS)
# =============================================================================

STATUS_PENDING = "pending"
STATUS_PARTIAL = "partial"
STATUS_PAID = "paid"
STATUS_OVERDUE = "overdue"

OPEN_STATUSES = (STATUS_PENDING, STATUS_PARTIAL, STATUS_OVERDUE)


def open_if_needed(invoice: Invoice, paid_amount_cents: int, *, operator: str) -> AccountReceivable | None:
    """
    Open a receivable for the unpaid remainder of a newly created invoice.

    No-op when the invoice is fully paid. Only flushes.
    """
    remaining = invoice.total_amount_cents - paid_amount_cents
    if remaining <= 0:
        return None

    term_days = int(current_app.config.get("RECEIVABLE_TERM_DAYS", 30))
    created_at = invoice.created_at or utcnow()

    receivable = AccountReceivable(
        invoice_id=invoice.id,
        invoice_number=invoice.invoice_number,
        customer_id=invoice.customer_id,
        customer_name=invoice.customer_name,
        total_amount_cents=invoice.total_amount_cents,
        paid_amount_cents=paid_amount_cents,
        remaining_amount_cents=remaining,
        due_date=add_days(created_at, term_days),
        status=STATUS_PENDING,
        notes=f"Receivable for invoice {invoice.invoice_number}",
        created_by=operator,
        created_at=created_at,
    )
    db.session.add(receivable)
    db.session.flush()
    return receivable


def derive_status(receivable: AccountReceivable, as_of: datetime | None = None) -> str:
    """
    paid when nothing remains; partial when something was received; overdue
    when nothing was received and the due date has passed; pending otherwise.
    """
    as_of = normalize_datetime(as_of)
    if receivable.remaining_amount_cents <= 0:
        return STATUS_PAID
    if receivable.remaining_amount_cents < receivable.total_amount_cents:
        return STATUS_PARTIAL
    if receivable.due_date < as_of:
        return STATUS_OVERDUE
    return STATUS_PENDING


def refresh_status(receivable: AccountReceivable, as_of: datetime | None = None) -> bool:
    """Recompute status in place. Returns True if it changed."""
    status = derive_status(receivable, as_of)
    if status == receivable.status:
        return False
    receivable.status = status
    return True


def refresh_overdue(as_of: datetime | None = None) -> int:
    """Sweep all open receivables and persist status changes. Returns how many changed."""
    def _op():
        uow = UnitOfWork("refresh_receivables")
        changed = 0
        with uow.transaction():
            with uow.step("refresh"):
                receivables = (
                    db.session.query(AccountReceivable)
                    .filter(AccountReceivable.status.in_(OPEN_STATUSES))
                    .all()
                )
                for receivable in receivables:
                    if refresh_status(receivable, as_of):
                        changed += 1
        return changed

    return run_unit_of_work(_op, name="refresh_receivables")


def record_receipt(
    receivable_id: int,
    amount_cents,
    *,
    payment_method,
    operator,
    payment_reference: str | None = None,
    notes: str | None = None,
    paid_at: datetime | None = None,
) -> AccountReceivable:
    """
    Post a receipt against a receivable.

    The amount is clamped to the remaining balance. The invoice itself is not
    updated.
    """
    amount_cents = coerce_cents(amount_cents, "amount_cents", allow_zero=False)
    payment_method = coerce_payment_method(payment_method)
    operator = require_text(operator, "operator", max_length=128)

    def _op():
        uow = UnitOfWork("record_receipt")
        with uow.transaction(passthrough=(ReceivableError,)):
            with uow.step("receivable"):
                receivable = lock_for_update(
                    db.session.query(AccountReceivable).filter_by(id=receivable_id)
                ).first()
                if receivable is None:
                    raise ReceivableNotFound(f"Receivable {receivable_id} not found")
                if receivable.remaining_amount_cents <= 0:
                    raise ReceivableError("Receivable is already settled")

                applied = min(amount_cents, receivable.remaining_amount_cents)

                db.session.add(ReceivablePayment(
                    receivable_id=receivable.id,
                    amount_cents=applied,
                    payment_method=payment_method,
                    payment_reference=optional_text(payment_reference, max_length=128),
                    notes=optional_text(notes),
                    operator=operator,
                    paid_at=normalize_datetime(paid_at),
                ))

                receivable.paid_amount_cents += applied
                receivable.remaining_amount_cents -= applied
                refresh_status(receivable, paid_at)
        return receivable

    return run_unit_of_work(_op, name="record_receipt")


def get_for_invoice(invoice_id: int) -> AccountReceivable | None:
    return db.session.query(AccountReceivable).filter_by(invoice_id=invoice_id).first()


def list_receivables(*, customer_id: int | None = None, status: str | None = None) -> list[AccountReceivable]:
    q = db.session.query(AccountReceivable)
    if customer_id is not None:
        q = q.filter(AccountReceivable.customer_id == customer_id)
    if status:
        q = q.filter(AccountReceivable.status == status)
    return q.order_by(AccountReceivable.due_date.asc(), AccountReceivable.id.asc()).all()
