"""
Invoice Lifecycle Service - order fulfillment and invoicing

WHY: Creating an invoice touches five kinds of records (invoice, product
stock, stock ledger, receivables, membership points). They must change
together or not at all.

LIFECYCLE:
- create:  validate -> number -> invoice -> stock OUT per line -> payment
           -> receivable (if unpaid remainder) -> member accrual (if paid)
- record_payment: unpaid/partial -> partial/paid (invoice only)
- cancel:  active -> cancelled, stock IN per line (less refunded units), record kept
- delete:  stock IN per line (unless already cancelled), record removed
- refund:  see refund_service; returns part of an active invoice

DESIGN PRINCIPLES:
- Validation and the insufficient-stock gate run before any write
- Every mutating operation is one UnitOfWork: a failure at any step rolls
  back all earlier steps and surfaces as PersistenceError naming the step
- Customer, member and product data are resolved once and passed explicitly
  as frozen snapshots; nothing is read from ambient state
- Receivables and member points are not revisited by record_payment,
  cancel or delete
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import AccountReceivable, Customer, Invoice, InvoiceLine, Member, Product, Refund, RefundLine
from ..time_utils import normalize_datetime, utcnow
from ..validation import (
    ValidationError,
    coerce_bps,
    coerce_cents,
    coerce_int,
    coerce_payment_method,
    optional_text,
    require_text,
)
from . import membership_service, receivable_service, stock_service
from .concurrency import PersistenceError, UnitOfWork, lock_for_update, run_unit_of_work
from .invoice_totals import (
    InvoiceTotals,
    clamp_paid,
    compute_line_total,
    compute_totals,
    derive_payment_status,
    PAYMENT_STATUS_PAID,
)
from .numbering_service import resolve_invoice_number

__all__ = [
    "InvoiceError", "InvoiceNotFound", "InvoiceStateError", "InsufficientStockWarning",
    "PersistenceError", "ValidationError",
    "LineDraft", "PaymentIntent", "InvoiceDraft",
    "create_invoice", "record_payment", "cancel_invoice", "delete_invoice",
    "get_invoice", "list_invoices", "preview_totals",
]


# =============================================================================
# ERRORS
# =============================================================================

class InvoiceError(Exception):
    """Raised for invoice operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class InvoiceNotFound(InvoiceError):
    pass


class InvoiceStateError(InvoiceError):
    """Operation not allowed in the invoice's current status."""


class InsufficientStockWarning(InvoiceError):
    """
    Requested quantities exceed current stock. Not an error by policy: the
    caller may retry with confirm_insufficient_stock=True, and stock then goes
    negative.
    """
    def __init__(self, shortages: list[dict]):
        lines = [
            f"{s['product_name']}: stock {s['current_stock']}, requested {s['requested_quantity']}"
            for s in shortages
        ]
        super().__init__(
            "Insufficient stock: " + "; ".join(lines),
            details={"items": shortages},
        )
        self.shortages = shortages


# =============================================================================
# DRAFTS AND SNAPSHOTS
# =============================================================================

@dataclass(frozen=True)
class LineDraft:
    product_id: int
    quantity: int
    # None -> product's current selling price
    unit_price_cents: int | None = None
    discount_bps: int = 0


@dataclass(frozen=True)
class PaymentIntent:
    amount_cents: int
    payment_method: str | None = None
    payment_reference: str | None = None


@dataclass(frozen=True)
class InvoiceDraft:
    customer_id: int
    created_by: str
    lines: list[LineDraft] = field(default_factory=list)
    discount_cents: int = 0
    shipping_fee_cents: int = 0
    other_fees_cents: int = 0
    # None -> DEFAULT_TAX_RATE_BPS
    tax_rate_bps: int | None = None
    custom_number: str | None = None
    notes: str | None = None
    payment: PaymentIntent | None = None


@dataclass(frozen=True)
class CustomerSnapshot:
    customer_id: int
    name: str
    phone: str | None
    address: str | None


@dataclass(frozen=True)
class MemberSnapshot:
    member_id: int
    member_number: str
    rates: membership_service.TierRates


@dataclass(frozen=True)
class LineSnapshot:
    position: int
    product_id: int
    product_name: str
    sku: str
    quantity: int
    unit_price_cents: int
    discount_bps: int
    line_total_cents: int


@dataclass(frozen=True)
class PricedDraft:
    customer: CustomerSnapshot
    member: MemberSnapshot | None
    lines: tuple[LineSnapshot, ...]
    totals: InvoiceTotals
    discount_cents: int
    shipping_fee_cents: int
    other_fees_cents: int
    tax_rate_bps: int
    created_by: str
    notes: str | None
    custom_number: str | None
    pay_amount_cents: int
    payment_method: str | None
    payment_reference: str | None


# =============================================================================
# VALIDATION / PRICING (read-only)
# =============================================================================

def _resolve_member(customer_id: int) -> MemberSnapshot | None:
    member = membership_service.find_active_member(customer_id)
    if member is None:
        return None
    return MemberSnapshot(
        member_id=member.id,
        member_number=member.member_number,
        rates=membership_service.tier_rates(member.tier),
    )


def _price_draft(draft: InvoiceDraft) -> tuple[PricedDraft, list[tuple[Product, int]]]:
    """
    Validate a draft and freeze everything the write steps need.

    Raises ValidationError before anything is written.
    """
    if draft.customer_id in (None, ""):
        raise ValidationError("A customer must be selected")
    if not draft.lines:
        raise ValidationError("At least one line item is required")
    created_by = require_text(draft.created_by, "created_by", max_length=128)

    customer = db.session.get(Customer, coerce_int(draft.customer_id, "customer_id", minimum=1))
    if customer is None:
        raise ValidationError(f"Customer {draft.customer_id} not found")
    if not customer.is_active:
        raise ValidationError(f"Customer {customer.name} is inactive")

    discount_cents = coerce_cents(draft.discount_cents, "discount_cents")
    shipping_fee_cents = coerce_cents(draft.shipping_fee_cents, "shipping_fee_cents")
    other_fees_cents = coerce_cents(draft.other_fees_cents, "other_fees_cents")
    tax_rate_bps = draft.tax_rate_bps
    if tax_rate_bps is None:
        tax_rate_bps = current_app.config.get("DEFAULT_TAX_RATE_BPS", 0)
    tax_rate_bps = coerce_bps(tax_rate_bps, "tax_rate_bps")

    # Explicitly resolved here and passed along; never taken from caller state
    member = _resolve_member(customer.id)

    lines: list[LineSnapshot] = []
    requested: list[tuple[Product, int]] = []
    for position, line in enumerate(draft.lines, start=1):
        product_id = coerce_int(line.product_id, f"lines[{position}].product_id", minimum=1)
        quantity = coerce_int(line.quantity, f"lines[{position}].quantity", minimum=1)
        discount_bps = coerce_bps(line.discount_bps or 0, f"lines[{position}].discount_bps")

        product = db.session.get(Product, product_id)
        if product is None:
            raise ValidationError(f"Product {product_id} not found")
        if not product.is_active:
            raise ValidationError(f"Product {product.name} is inactive")

        unit_price = line.unit_price_cents
        if unit_price is None:
            unit_price = product.selling_price_cents
        unit_price = coerce_cents(unit_price, f"lines[{position}].unit_price_cents")

        lines.append(LineSnapshot(
            position=position,
            product_id=product.id,
            product_name=product.name,
            sku=product.sku,
            quantity=quantity,
            unit_price_cents=unit_price,
            discount_bps=discount_bps,
            line_total_cents=compute_line_total(unit_price, quantity, discount_bps),
        ))
        requested.append((product, quantity))

    totals = compute_totals(
        (line.line_total_cents for line in lines),
        discount_cents=discount_cents,
        shipping_fee_cents=shipping_fee_cents,
        other_fees_cents=other_fees_cents,
        tax_rate_bps=tax_rate_bps,
        member_discount_rate_bps=member.rates.discount_rate_bps if member else 0,
    )

    pay_amount = 0
    payment_method = None
    payment_reference = None
    if draft.payment is not None:
        pay_amount = coerce_cents(draft.payment.amount_cents, "payment.amount_cents")
        if pay_amount > 0:
            payment_method = coerce_payment_method(draft.payment.payment_method)
            payment_reference = optional_text(draft.payment.payment_reference, max_length=128)

    priced = PricedDraft(
        customer=CustomerSnapshot(
            customer_id=customer.id,
            name=customer.name,
            phone=customer.phone,
            address=customer.address,
        ),
        member=member,
        lines=tuple(lines),
        totals=totals,
        discount_cents=discount_cents,
        shipping_fee_cents=shipping_fee_cents,
        other_fees_cents=other_fees_cents,
        tax_rate_bps=tax_rate_bps,
        created_by=created_by,
        notes=optional_text(draft.notes, max_length=2000),
        custom_number=optional_text(draft.custom_number, max_length=64),
        pay_amount_cents=pay_amount,
        payment_method=payment_method,
        payment_reference=payment_reference,
    )
    return priced, requested


def preview_totals(draft: InvoiceDraft) -> InvoiceTotals:
    """Totals a draft would produce, including any member discount. Writes nothing."""
    priced, _ = _price_draft(draft)
    return priced.totals


# =============================================================================
# CREATE
# =============================================================================

def create_invoice(
    draft: InvoiceDraft,
    *,
    confirm_insufficient_stock: bool = False,
    now: datetime | None = None,
) -> Invoice:
    """
    Create an invoice from a draft and fulfil it.

    Raises:
        ValidationError: draft incomplete or invalid (nothing written)
        ConflictError: custom number already used by an active invoice
        InsufficientStockWarning: shortages and not confirmed (nothing written)
        PersistenceError: a write failed; every step was rolled back
    """
    priced, requested = _price_draft(draft)

    shortages = stock_service.find_shortages(requested)
    if shortages and not confirm_insufficient_stock:
        raise InsufficientStockWarning(shortages)

    created_at = normalize_datetime(now)
    # A generated number can collide with a concurrent create; allocate again.
    retry_on = () if priced.custom_number else (IntegrityError,)

    def _op():
        uow = UnitOfWork("create_invoice")
        with uow.transaction(retry_on=retry_on, passthrough=(InvoiceError,)):
            with uow.step("number"):
                invoice_number, _ = resolve_invoice_number(priced.custom_number, created_at)

            with uow.step("invoice"):
                invoice = Invoice(
                    invoice_number=invoice_number,
                    status="active",
                    customer_id=priced.customer.customer_id,
                    customer_name=priced.customer.name,
                    customer_phone=priced.customer.phone,
                    customer_address=priced.customer.address,
                    member_id=priced.member.member_id if priced.member else None,
                    subtotal_cents=priced.totals.subtotal_cents,
                    discount_cents=priced.discount_cents,
                    member_discount_cents=priced.totals.member_discount_cents,
                    shipping_fee_cents=priced.shipping_fee_cents,
                    other_fees_cents=priced.other_fees_cents,
                    tax_rate_bps=priced.tax_rate_bps,
                    tax_amount_cents=priced.totals.tax_amount_cents,
                    total_amount_cents=priced.totals.total_amount_cents,
                    payment_status="unpaid",
                    paid_amount_cents=0,
                    notes=priced.notes,
                    created_by=priced.created_by,
                    created_at=created_at,
                    updated_at=created_at,
                )
                for line in priced.lines:
                    invoice.lines.append(InvoiceLine(
                        position=line.position,
                        product_id=line.product_id,
                        product_name=line.product_name,
                        sku=line.sku,
                        quantity=line.quantity,
                        unit_price_cents=line.unit_price_cents,
                        discount_bps=line.discount_bps,
                        line_total_cents=line.line_total_cents,
                    ))
                db.session.add(invoice)

            for line in priced.lines:
                with uow.step(f"stock_out[{line.position}]"):
                    product = stock_service.get_product(line.product_id, lock=True)
                    stock_service.apply_out(
                        product,
                        line.quantity,
                        operator=priced.created_by,
                        related_id=str(invoice.id),
                        related_type="order",
                        reference=invoice.invoice_number,
                        notes=f"Sale - invoice {invoice.invoice_number}",
                        occurred_at=created_at,
                    )

            with uow.step("payment"):
                if priced.pay_amount_cents > 0:
                    invoice.paid_amount_cents = clamp_paid(priced.pay_amount_cents, invoice.total_amount_cents)
                    invoice.payment_status = derive_payment_status(
                        invoice.paid_amount_cents, invoice.total_amount_cents, payment_recorded=True
                    )
                    invoice.payment_method = priced.payment_method
                    invoice.payment_reference = priced.payment_reference

            with uow.step("receivable"):
                receivable_service.open_if_needed(
                    invoice, invoice.paid_amount_cents, operator=priced.created_by
                )

            with uow.step("membership"):
                if priced.member is not None and invoice.paid_amount_cents > 0:
                    member = lock_for_update(
                        db.session.query(Member).filter_by(id=priced.member.member_id)
                    ).first()
                    membership_service.accrue(
                        member,
                        priced.member.rates,
                        invoice.paid_amount_cents,
                        invoice=invoice,
                        operator=priced.created_by,
                        occurred_at=created_at,
                    )
        return invoice

    invoice = run_unit_of_work(_op, name="create_invoice", retry_on=retry_on)

    current_app.logger.info(
        "Invoice %s created for customer %s: total=%s paid=%s status=%s",
        invoice.invoice_number, invoice.customer_id, invoice.total_amount_cents,
        invoice.paid_amount_cents, invoice.payment_status,
    )
    if shortages:
        current_app.logger.warning(
            "Invoice %s confirmed with insufficient stock: %s", invoice.invoice_number, shortages
        )
    return invoice


# =============================================================================
# PAYMENT
# =============================================================================

def _get_locked_invoice(invoice_id: int) -> Invoice:
    invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
    if invoice is None:
        raise InvoiceNotFound(f"Invoice {invoice_id} not found")
    return invoice


def record_payment(
    invoice_id: int,
    amount_cents,
    *,
    payment_method=None,
    payment_reference: str | None = None,
    operator=None,
) -> Invoice:
    """
    Record a later payment against an active invoice.

    Cumulative paid is clamped to the total and the payment status recomputed.
    Receivables and member points are not touched.
    """
    amount_cents = coerce_cents(amount_cents, "amount_cents", allow_zero=False)
    method = coerce_payment_method(payment_method) if payment_method else None
    reference = optional_text(payment_reference, max_length=128)

    def _op():
        uow = UnitOfWork("record_payment")
        with uow.transaction(passthrough=(InvoiceError,)):
            with uow.step("payment"):
                invoice = _get_locked_invoice(invoice_id)
                if invoice.status != "active":
                    raise InvoiceStateError(
                        f"Cannot record payment on a {invoice.status} invoice",
                        details={"status": invoice.status},
                    )
                if invoice.payment_status == PAYMENT_STATUS_PAID:
                    raise InvoiceStateError("Invoice is already fully paid")

                invoice.paid_amount_cents = clamp_paid(
                    invoice.paid_amount_cents + amount_cents, invoice.total_amount_cents
                )
                invoice.payment_status = derive_payment_status(
                    invoice.paid_amount_cents, invoice.total_amount_cents, payment_recorded=True
                )
                if method:
                    invoice.payment_method = method
                if reference:
                    invoice.payment_reference = reference
                invoice.updated_at = utcnow()
        return invoice

    invoice = run_unit_of_work(_op, name="record_payment")
    current_app.logger.info(
        "Invoice %s payment of %s recorded by %s: paid=%s status=%s",
        invoice.invoice_number, amount_cents, operator or "-",
        invoice.paid_amount_cents, invoice.payment_status,
    )
    return invoice


# =============================================================================
# CANCEL / DELETE
# =============================================================================

def returned_quantities(invoice_id: int) -> dict[int, int]:
    """Units already returned through refunds, per invoice line id."""
    rows = (
        db.session.query(RefundLine.invoice_line_id, func.sum(RefundLine.quantity))
        .join(Refund, Refund.id == RefundLine.refund_id)
        .filter(Refund.invoice_id == invoice_id, RefundLine.invoice_line_id.isnot(None))
        .group_by(RefundLine.invoice_line_id)
        .all()
    )
    return {line_id: int(qty) for line_id, qty in rows}


def _restore_stock(uow: UnitOfWork, invoice: Invoice, *, operator: str, related_type: str, label: str) -> None:
    """
    Append one IN per line; reversal is by quantity, not by undoing the OUT rows.
    Units a refund already took back are not restored a second time.
    """
    returned = returned_quantities(invoice.id)
    for line in invoice.lines:
        quantity = line.quantity - returned.get(line.id, 0)
        if quantity <= 0:
            continue
        with uow.step(f"stock_in[{line.position}]"):
            try:
                product = stock_service.get_product(line.product_id, lock=True)
            except stock_service.StockError:
                current_app.logger.warning(
                    "Invoice %s line %s: product %s no longer exists, stock not restored",
                    invoice.invoice_number, line.position, line.product_id,
                )
                continue
            stock_service.apply_in(
                product,
                quantity,
                operator=operator,
                related_id=str(invoice.id),
                related_type=related_type,
                reference=invoice.invoice_number,
                notes=f"{label} - invoice {invoice.invoice_number}",
            )


def cancel_invoice(invoice_id: int, *, operator, reason: str | None = None) -> Invoice:
    """
    Cancel an active invoice: restore stock for every line and mark it
    cancelled. The record is kept; its number can be entered again by hand.
    """
    operator = require_text(operator, "operator", max_length=128)
    reason = optional_text(reason)

    def _op():
        uow = UnitOfWork("cancel_invoice")
        with uow.transaction(passthrough=(InvoiceError,)):
            with uow.step("load"):
                invoice = _get_locked_invoice(invoice_id)
                if invoice.status == "cancelled":
                    raise InvoiceStateError("Invoice is already cancelled")

            _restore_stock(uow, invoice, operator=operator, related_type="cancellation", label="Cancelled")

            with uow.step("invoice"):
                now = utcnow()
                invoice.status = "cancelled"
                invoice.cancelled_by = operator
                invoice.cancelled_at = now
                invoice.cancel_reason = reason
                invoice.updated_at = now
        return invoice

    invoice = run_unit_of_work(_op, name="cancel_invoice")
    current_app.logger.info("Invoice %s cancelled by %s", invoice.invoice_number, operator)
    return invoice


def delete_invoice(invoice_id: int, *, operator) -> str:
    """
    Permanently delete an invoice. Stock is restored first unless the invoice
    was already cancelled (cancellation restored it). Returns the deleted
    invoice number.
    """
    operator = require_text(operator, "operator", max_length=128)

    def _op():
        uow = UnitOfWork("delete_invoice")
        with uow.transaction(passthrough=(InvoiceError,)):
            with uow.step("load"):
                invoice = _get_locked_invoice(invoice_id)
                invoice_number = invoice.invoice_number

            if invoice.status == "active":
                _restore_stock(uow, invoice, operator=operator, related_type="deletion", label="Deleted")

            with uow.step("invoice"):
                db.session.query(AccountReceivable).filter_by(invoice_id=invoice.id).update(
                    {AccountReceivable.invoice_id: None}, synchronize_session=False
                )
                line_ids = [line.id for line in invoice.lines]
                if line_ids:
                    db.session.query(RefundLine).filter(RefundLine.invoice_line_id.in_(line_ids)).update(
                        {RefundLine.invoice_line_id: None}, synchronize_session=False
                    )
                db.session.query(Refund).filter_by(invoice_id=invoice.id).update(
                    {Refund.invoice_id: None}, synchronize_session=False
                )
                db.session.delete(invoice)
        return invoice_number

    invoice_number = run_unit_of_work(_op, name="delete_invoice")
    current_app.logger.info("Invoice %s deleted by %s", invoice_number, operator)
    return invoice_number


# =============================================================================
# QUERIES
# =============================================================================

def get_invoice(invoice_id: int) -> Invoice:
    invoice = db.session.get(Invoice, invoice_id)
    if invoice is None:
        raise InvoiceNotFound(f"Invoice {invoice_id} not found")
    return invoice


def list_invoices(
    *,
    customer_id: int | None = None,
    payment_status: str | None = None,
    status: str | None = None,
    limit: int = 200,
) -> list[Invoice]:
    q = db.session.query(Invoice)
    if customer_id is not None:
        q = q.filter(Invoice.customer_id == customer_id)
    if payment_status:
        q = q.filter(Invoice.payment_status == payment_status)
    if status:
        q = q.filter(Invoice.status == status)
    return q.order_by(Invoice.created_at.desc(), Invoice.id.desc()).limit(limit).all()
