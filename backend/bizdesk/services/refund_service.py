"""
Refund Service - customer returns against an invoice

WHY: A customer can bring back part of what an invoice sold. The returned
units may go back on the shelf, and money may be handed back. Both must be
booked together with the refund record, or not at all.

LIFECYCLE:
- complete_refund: validate -> number -> refund + lines -> stock IN per
  restocked line -> invoice paid amount reduced, payment status recomputed
- The invoice stays active; cancelling it later restores only the units no
  refund has taken back

DESIGN PRINCIPLES:
- Only active invoices can be refunded
- Cumulative returned quantity per invoice line never exceeds what was sold
- Line value is the pro-rata share of the line total (line discount included)
- refund_amount_cents defaults to the returned value, capped at what was paid;
  an explicit amount may be lower (restocking fee) but never above paid
- Receivables and member points are not adjusted
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Invoice, Refund, RefundLine
from ..time_utils import normalize_datetime
from ..validation import ValidationError, coerce_cents, coerce_int, optional_text, require_text
from . import stock_service
from .concurrency import UnitOfWork, lock_for_update, run_unit_of_work
from .invoice_service import InvoiceError, InvoiceNotFound, InvoiceStateError, returned_quantities
from .invoice_totals import clamp_paid, derive_payment_status, round_div_half_up
from .numbering_service import next_refund_number


@dataclass(frozen=True)
class RefundLineDraft:
    invoice_line_id: int
    quantity: int
    # None -> every returned unit goes back into stock
    restock_quantity: int | None = None


def _check_lines(lines: list[RefundLineDraft]) -> list[RefundLineDraft]:
    if not lines:
        raise ValidationError("At least one refund line is required")
    checked = []
    for line in lines:
        quantity = coerce_int(line.quantity, "quantity", minimum=1)
        restock = quantity if line.restock_quantity is None else coerce_int(
            line.restock_quantity, "restock_quantity", minimum=0, maximum=quantity
        )
        checked.append(RefundLineDraft(
            invoice_line_id=coerce_int(line.invoice_line_id, "invoice_line_id", minimum=1),
            quantity=quantity,
            restock_quantity=restock,
        ))
    return checked


def complete_refund(
    invoice_id: int,
    lines: list[RefundLineDraft],
    *,
    operator,
    reason,
    refund_amount_cents=None,
    notes: str | None = None,
    now: datetime | None = None,
) -> Refund:
    """
    Return part of an active invoice in one transaction.

    Raises:
        ValidationError: bad lines, over-return, or refund above paid amount
        InvoiceNotFound / InvoiceStateError: missing or cancelled invoice
        PersistenceError: a write failed; every step was rolled back
    """
    operator = require_text(operator, "operator", max_length=128)
    reason = require_text(reason, "reason")
    notes = optional_text(notes, max_length=2000)
    checked = _check_lines(lines)
    explicit_amount = None
    if refund_amount_cents is not None:
        explicit_amount = coerce_cents(refund_amount_cents, "refund_amount_cents")
    created_at = normalize_datetime(now)

    def _op():
        uow = UnitOfWork("complete_refund")
        with uow.transaction(retry_on=(IntegrityError,), passthrough=(InvoiceError,)):
            with uow.step("load"):
                invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
                if invoice is None:
                    raise InvoiceNotFound(f"Invoice {invoice_id} not found")
                if invoice.status != "active":
                    raise InvoiceStateError(
                        f"Cannot refund a {invoice.status} invoice",
                        details={"status": invoice.status},
                    )
                by_id = {line.id: line for line in invoice.lines}
                already = returned_quantities(invoice.id)
                wanted = defaultdict(int)
                for draft in checked:
                    invoice_line = by_id.get(draft.invoice_line_id)
                    if invoice_line is None:
                        raise ValidationError(
                            f"Line {draft.invoice_line_id} is not on invoice {invoice.invoice_number}"
                        )
                    wanted[invoice_line.id] += draft.quantity
                    available = invoice_line.quantity - already.get(invoice_line.id, 0)
                    if wanted[invoice_line.id] > available:
                        raise ValidationError(
                            f"Cannot return {wanted[invoice_line.id]} x {invoice_line.product_name}: "
                            f"sold {invoice_line.quantity}, already returned {already.get(invoice_line.id, 0)}",
                        )

            with uow.step("refund"):
                refund = Refund(
                    refund_number=next_refund_number(created_at),
                    invoice_id=invoice.id,
                    invoice_number=invoice.invoice_number,
                    customer_id=invoice.customer_id,
                    customer_name=invoice.customer_name,
                    status="completed",
                    reason=reason,
                    notes=notes,
                    completed_by=operator,
                    created_at=created_at,
                )
                for draft in checked:
                    invoice_line = by_id[draft.invoice_line_id]
                    refund.lines.append(RefundLine(
                        invoice_line_id=invoice_line.id,
                        product_id=invoice_line.product_id,
                        product_name=invoice_line.product_name,
                        quantity=draft.quantity,
                        restock_quantity=draft.restock_quantity,
                        amount_cents=round_div_half_up(
                            invoice_line.line_total_cents * draft.quantity, invoice_line.quantity
                        ),
                    ))
                refund.lines_amount_cents = sum(line.amount_cents for line in refund.lines)
                if explicit_amount is None:
                    refund.refund_amount_cents = min(refund.lines_amount_cents, invoice.paid_amount_cents)
                elif explicit_amount > invoice.paid_amount_cents:
                    raise ValidationError(
                        f"Refund {explicit_amount} exceeds the {invoice.paid_amount_cents} paid on "
                        f"invoice {invoice.invoice_number}"
                    )
                else:
                    refund.refund_amount_cents = explicit_amount
                db.session.add(refund)

            for i, line in enumerate(refund.lines, start=1):
                if line.restock_quantity <= 0:
                    continue
                with uow.step(f"stock_in[{i}]"):
                    try:
                        product = stock_service.get_product(line.product_id, lock=True)
                    except stock_service.StockError:
                        current_app.logger.warning(
                            "Refund %s: product %s no longer exists, %s unit(s) not restocked",
                            refund.refund_number, line.product_id, line.restock_quantity,
                        )
                        continue
                    stock_service.apply_in(
                        product,
                        line.restock_quantity,
                        operator=operator,
                        related_id=str(refund.id),
                        related_type="refund",
                        reference=refund.refund_number,
                        notes=f"Refund {refund.refund_number} - invoice {invoice.invoice_number}",
                        occurred_at=created_at,
                    )

            with uow.step("invoice"):
                if refund.refund_amount_cents > 0:
                    invoice.paid_amount_cents = clamp_paid(
                        invoice.paid_amount_cents - refund.refund_amount_cents, invoice.total_amount_cents
                    )
                    invoice.payment_status = derive_payment_status(
                        invoice.paid_amount_cents, invoice.total_amount_cents
                    )
                    invoice.updated_at = created_at
        return refund

    refund = run_unit_of_work(_op, name="complete_refund", retry_on=(IntegrityError,))
    current_app.logger.info(
        "Refund %s completed on invoice %s by %s: returned=%s refunded=%s",
        refund.refund_number, refund.invoice_number, operator,
        refund.lines_amount_cents, refund.refund_amount_cents,
    )
    return refund


def list_refunds(*, invoice_id: int | None = None) -> list[Refund]:
    q = db.session.query(Refund)
    if invoice_id is not None:
        q = q.filter(Refund.invoice_id == invoice_id)
    return q.order_by(Refund.created_at.desc(), Refund.id.desc()).all()
