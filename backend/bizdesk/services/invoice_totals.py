# Overview: Pure money arithmetic for invoices (cents and basis points, no database access).

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from ..validation import ValidationError

BPS_DENOMINATOR = 10_000

PAYMENT_STATUS_UNPAID = "unpaid"
PAYMENT_STATUS_PARTIAL = "partial"
PAYMENT_STATUS_PAID = "paid"


def round_div_half_up(numerator: int, denominator: int) -> int:
    """Integer division rounded to nearest, halves away from zero."""
    if denominator <= 0:
        raise ValueError("denominator must be positive")
    if numerator >= 0:
        return (numerator + denominator // 2) // denominator
    return -((-numerator + denominator // 2) // denominator)


def apply_bps(amount_cents: int, rate_bps: int) -> int:
    """amount * rate, nearest cent."""
    return round_div_half_up(amount_cents * rate_bps, BPS_DENOMINATOR)


def compute_line_total(unit_price_cents: int, quantity: int, discount_bps: int = 0) -> int:
    """unit_price x quantity x (1 - discount), nearest cent."""
    gross = unit_price_cents * quantity
    return round_div_half_up(gross * (BPS_DENOMINATOR - discount_bps), BPS_DENOMINATOR)


@dataclass(frozen=True)
class InvoiceTotals:
    subtotal_cents: int
    member_discount_cents: int
    taxable_cents: int
    tax_amount_cents: int
    total_amount_cents: int


def compute_totals(
    line_totals_cents: Iterable[int],
    *,
    discount_cents: int = 0,
    shipping_fee_cents: int = 0,
    other_fees_cents: int = 0,
    tax_rate_bps: int = 0,
    member_discount_rate_bps: int = 0,
) -> InvoiceTotals:
    """
    total = (subtotal - discount - member discount + shipping + other fees) x (1 + tax rate)

    The member discount is a percentage of the subtotal; tax is applied to the
    discounted, fee-inclusive base. Each derived amount is rounded to the cent
    once, so total == taxable + tax exactly.
    """
    subtotal = sum(line_totals_cents)
    member_discount = apply_bps(subtotal, member_discount_rate_bps)

    taxable = subtotal - discount_cents - member_discount + shipping_fee_cents + other_fees_cents
    if taxable < 0:
        raise ValidationError("Discounts exceed the invoice amount")

    tax = apply_bps(taxable, tax_rate_bps)

    return InvoiceTotals(
        subtotal_cents=subtotal,
        member_discount_cents=member_discount,
        taxable_cents=taxable,
        tax_amount_cents=tax,
        total_amount_cents=taxable + tax,
    )


def derive_payment_status(paid_amount_cents: int, total_amount_cents: int, *, payment_recorded: bool = False) -> str:
    """
    unpaid / partial / paid from the paid amount. Once a payment has been
    recorded, an invoice with nothing outstanding (a zero total included) is paid.
    """
    if payment_recorded and paid_amount_cents >= total_amount_cents:
        return PAYMENT_STATUS_PAID
    if paid_amount_cents <= 0:
        return PAYMENT_STATUS_UNPAID
    if paid_amount_cents >= total_amount_cents:
        return PAYMENT_STATUS_PAID
    return PAYMENT_STATUS_PARTIAL


def clamp_paid(paid_amount_cents: int, total_amount_cents: int) -> int:
    return max(0, min(paid_amount_cents, total_amount_cents))
