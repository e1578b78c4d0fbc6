"""
Invoice number allocation tests.

Verifies:
- INV<YYYY><MM>-<seq> format, per-month sequence
- Allocation is read-only (same answer until an invoice is persisted)
- Cancelling the latest invoice does not rewind the sequence (unless the
  reuse flag is on)
- Custom numbers: rejected only while an active invoice holds them
"""

from datetime import datetime

import pytest

from bizdesk.services import invoice_service, refund_service
from bizdesk.services.numbering_service import (
    next_invoice_number,
    next_purchase_number,
    next_refund_number,
    resolve_invoice_number,
)
from bizdesk.services.refund_service import RefundLineDraft
from bizdesk.validation import ConflictError

from conftest import JAN_15


def _create(make_draft, customer, product, **kwargs):
    return invoice_service.create_invoice(make_draft(customer, [(product, 1)], **kwargs), now=JAN_15)


class TestNextInvoiceNumber:
    def test_first_of_month(self, db_session):
        assert next_invoice_number(JAN_15) == "INV202501-001"

    def test_read_only(self, db_session, customer, widget, make_draft):
        _create(make_draft, customer, widget)
        assert next_invoice_number(JAN_15) == "INV202501-002"
        assert next_invoice_number(JAN_15) == "INV202501-002"

    def test_sequence_follows_highest_suffix(self, db_session, customer, widget, make_draft):
        first = _create(make_draft, customer, widget)
        second = _create(make_draft, customer, widget)
        assert first.invoice_number == "INV202501-001"
        assert second.invoice_number == "INV202501-002"
        assert next_invoice_number(JAN_15) == "INV202501-003"

    def test_new_month_restarts(self, db_session, customer, widget, make_draft):
        _create(make_draft, customer, widget)
        assert next_invoice_number(datetime(2025, 2, 1)) == "INV202502-001"

    def test_non_numeric_suffix_ignored(self, db_session, customer, widget, make_draft):
        _create(make_draft, customer, widget, custom_number="INV202501-ABC")
        assert next_invoice_number(JAN_15) == "INV202501-001"


class TestCancelledInvoices:
    def test_cancelled_latest_still_counts(self, db_session, customer, widget, make_draft):
        _create(make_draft, customer, widget)
        second = _create(make_draft, customer, widget)
        invoice_service.cancel_invoice(second.id, operator="tester")

        assert next_invoice_number(JAN_15) == "INV202501-003"

    def test_reuse_flag_skips_cancelled(self, app, monkeypatch, db_session, customer, widget, make_draft):
        monkeypatch.setitem(app.config, "INVOICE_NUMBER_REUSE_CANCELLED", True)
        _create(make_draft, customer, widget)
        second = _create(make_draft, customer, widget)
        invoice_service.cancel_invoice(second.id, operator="tester")

        assert next_invoice_number(JAN_15) == "INV202501-002"


class TestCustomNumbers:
    def test_custom_number_used_verbatim(self, db_session, customer, widget, make_draft):
        invoice = _create(make_draft, customer, widget, custom_number="  SHOP-7  ")
        assert invoice.invoice_number == "SHOP-7"

    def test_blank_custom_number_falls_back_to_allocator(self, db_session):
        assert resolve_invoice_number("   ", JAN_15) == ("INV202501-001", True)

    def test_duplicate_of_active_rejected(self, db_session, customer, widget, make_draft):
        _create(make_draft, customer, widget, custom_number="SHOP-7")
        with pytest.raises(ConflictError):
            _create(make_draft, customer, widget, custom_number="SHOP-7")

    def test_number_of_cancelled_invoice_reusable(self, db_session, customer, widget, make_draft):
        first = _create(make_draft, customer, widget, custom_number="SHOP-7")
        invoice_service.cancel_invoice(first.id, operator="tester")

        again = _create(make_draft, customer, widget, custom_number="SHOP-7")
        assert again.invoice_number == "SHOP-7"
        assert again.id != first.id


class TestPurchaseNumbers:
    def test_format(self, db_session):
        assert next_purchase_number(datetime(2025, 1, 15)) == "PO20250115-0001"


class TestRefundNumbers:
    def test_first_of_month(self, db_session):
        assert next_refund_number(JAN_15) == "RF202501-001"

    def test_follows_completed_refunds(self, db_session, customer, widget, make_draft):
        invoice = _create(make_draft, customer, widget, pay=5300)
        refund_service.complete_refund(
            invoice.id, [RefundLineDraft(invoice.lines[0].id, 1)],
            operator="manager", reason="Damaged", now=JAN_15,
        )

        assert next_refund_number(JAN_15) == "RF202501-002"
        assert next_refund_number(datetime(2025, 2, 1)) == "RF202502-001"
