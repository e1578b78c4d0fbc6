# Overview: Invoice, refund and purchase number allocation; derives the next number from persisted documents.

from __future__ import annotations

import re
from datetime import datetime

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Invoice, Refund, StockTransaction
from ..time_utils import normalize_datetime, period_key
from ..validation import ConflictError, optional_text


_SEQ_SUFFIX = re.compile(r"-(\d+)$")


def invoice_number_prefix(now: datetime | None = None) -> str:
    """INV<YYYY><MM>- for the calendar month of now."""
    now = normalize_datetime(now)
    prefix = current_app.config.get("INVOICE_NUMBER_PREFIX", "INV")
    return f"{prefix}{period_key(now)}-"


def _max_sequence(numbers) -> int:
    max_seq = 0
    for number in numbers:
        match = _SEQ_SUFFIX.search(number or "")
        if match:
            max_seq = max(max_seq, int(match.group(1)))
    return max_seq


def next_invoice_number(now: datetime | None = None) -> str:
    """
    Derive the next invoice number for the month of now.

    Sequence = highest numeric suffix among invoices already numbered in that
    month + 1, zero padded (INV202501-003). Read-only: calling it twice without
    persisting an invoice in between returns the same number.

    Cancelled invoices keep counting toward the highest suffix, so cancelling
    the latest invoice does not hand its number out again. With
    INVOICE_NUMBER_REUSE_CANCELLED they are skipped instead.
    """
    prefix = invoice_number_prefix(now)
    pad = int(current_app.config.get("INVOICE_NUMBER_PAD", 3))

    q = db.session.query(Invoice.invoice_number).filter(
        Invoice.invoice_number.like(f"{prefix}%")
    )
    if current_app.config.get("INVOICE_NUMBER_REUSE_CANCELLED", False):
        q = q.filter(Invoice.status != "cancelled")

    max_seq = _max_sequence(number for (number,) in q.all())
    return f"{prefix}{max_seq + 1:0{pad}d}"


def is_number_in_use(invoice_number: str) -> bool:
    """True when an active invoice already carries this number."""
    return db.session.query(Invoice.id).filter(
        Invoice.invoice_number == invoice_number,
        Invoice.status == "active",
    ).first() is not None


def resolve_invoice_number(custom_number: str | None = None, now: datetime | None = None) -> tuple[str, bool]:
    """
    Pick the number for a new invoice.

    Returns (number, generated). A non-blank custom number bypasses the
    allocator; it must not match an active invoice (numbers held only by
    cancelled invoices can be reused).
    """
    custom = optional_text(custom_number, max_length=64)
    if custom:
        if is_number_in_use(custom):
            raise ConflictError(f"Invoice number {custom} is already used by an active invoice")
        return custom, False
    return next_invoice_number(now), True


def next_refund_number(now: datetime | None = None) -> str:
    """RF<YYYY><MM>-<seq:03d>, sequence per calendar month like invoices."""
    now = normalize_datetime(now)
    prefix = f"RF{period_key(now)}-"
    q = db.session.query(Refund.refund_number).filter(Refund.refund_number.like(f"{prefix}%"))
    max_seq = _max_sequence(number for (number,) in q.all())
    return f"{prefix}{max_seq + 1:03d}"


def next_purchase_number(now: datetime | None = None) -> str:
    """
    PO<YYYYMMDD>-<seq:04d>, sequence per day, derived from purchase stock
    movements already recorded for that day.
    """
    now = normalize_datetime(now)
    prefix = f"PO{now:%Y%m%d}-"
    numbers = (
        db.session.query(func.distinct(StockTransaction.reference))
        .filter(
            StockTransaction.related_type == "purchase",
            StockTransaction.reference.like(f"{prefix}%"),
        )
        .all()
    )
    max_seq = _max_sequence(number for (number,) in numbers)
    return f"{prefix}{max_seq + 1:04d}"
