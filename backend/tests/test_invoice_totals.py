"""
Invoice arithmetic tests (no database).

Verifies:
- Line totals apply quantity and line discount with half-up rounding
- Member discount is taken from the subtotal; tax applies to the discounted,
  fee-inclusive base
- Payment status derivation and clamping
"""

import pytest

from bizdesk.services.invoice_totals import (
    clamp_paid,
    compute_line_total,
    compute_totals,
    derive_payment_status,
    round_div_half_up,
)
from bizdesk.validation import ValidationError


class TestRounding:
    def test_half_rounds_up(self):
        assert round_div_half_up(5, 10) == 1
        assert round_div_half_up(4, 10) == 0

    def test_negative_rounds_away_from_zero(self):
        assert round_div_half_up(-5, 10) == -1

    def test_line_total_with_discount(self):
        # 3 x 333 = 999, 10% off = 899.1 -> 899
        assert compute_line_total(333, 3, 1000) == 899
        # 1 x 5 at 10% off = 4.5 -> 5
        assert compute_line_total(5, 1, 1000) == 5

    def test_line_total_without_discount(self):
        assert compute_line_total(5000, 2) == 10_000


class TestComputeTotals:
    def test_single_line_with_tax(self):
        totals = compute_totals([5000], tax_rate_bps=600)
        assert totals.subtotal_cents == 5000
        assert totals.tax_amount_cents == 300
        assert totals.total_amount_cents == 5300

    def test_discounts_and_fees_before_tax(self):
        totals = compute_totals(
            [10_000],
            discount_cents=1000,
            shipping_fee_cents=500,
            other_fees_cents=200,
            tax_rate_bps=1000,
            member_discount_rate_bps=500,
        )
        # member discount 5% of 100.00 = 5.00
        assert totals.member_discount_cents == 500
        # 100 - 10 - 5 + 5 + 2 = 92
        assert totals.taxable_cents == 9200
        assert totals.tax_amount_cents == 920
        assert totals.total_amount_cents == 10_120

    def test_total_is_taxable_plus_tax(self):
        totals = compute_totals([333, 667, 1], tax_rate_bps=650)
        assert totals.total_amount_cents == totals.taxable_cents + totals.tax_amount_cents

    def test_discount_larger_than_invoice_rejected(self):
        with pytest.raises(ValidationError):
            compute_totals([1000], discount_cents=1500)


class TestPaymentStatus:
    @pytest.mark.parametrize(
        "paid,total,expected",
        [
            (0, 5300, "unpaid"),
            (2000, 5300, "partial"),
            (5300, 5300, "paid"),
            (9999, 5300, "paid"),
        ],
    )
    def test_derive(self, paid, total, expected):
        assert derive_payment_status(paid, total) == expected

    @pytest.mark.parametrize(
        "paid,total,expected",
        [
            (0, 0, "paid"),
            (0, 5300, "unpaid"),
            (2000, 5300, "partial"),
            (5300, 5300, "paid"),
        ],
    )
    def test_derive_after_payment_recorded(self, paid, total, expected):
        assert derive_payment_status(paid, total, payment_recorded=True) == expected

    def test_zero_total_without_payment_is_unpaid(self):
        assert derive_payment_status(0, 0) == "unpaid"

    def test_clamp(self):
        assert clamp_paid(9999, 5300) == 5300
        assert clamp_paid(-1, 5300) == 0
        assert clamp_paid(100, 5300) == 100
