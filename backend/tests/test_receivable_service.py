"""
Accounts receivable tests.

Verifies:
- A receivable opens only when an invoice is created with an unpaid remainder
- Due date is creation + RECEIVABLE_TERM_DAYS
- Receipts clamp to the balance and drive pending/partial/paid/overdue
"""

from datetime import datetime, timedelta

import pytest

from bizdesk.models import AccountReceivable, ReceivablePayment
from bizdesk.services import invoice_service, receivable_service
from bizdesk.services.receivable_service import ReceivableError, ReceivableNotFound
from bizdesk.validation import ValidationError

from conftest import JAN_15


@pytest.fixture
def open_receivable(db_session, customer, widget, make_draft):
    invoice = invoice_service.create_invoice(
        make_draft(customer, [(widget, 1)], pay=2000), now=JAN_15,
    )
    return receivable_service.get_for_invoice(invoice.id)


class TestOpening:
    def test_partial_payment_opens_receivable(self, open_receivable):
        ar = open_receivable
        assert ar.total_amount_cents == 5300
        assert ar.paid_amount_cents == 2000
        assert ar.remaining_amount_cents == 3300
        assert ar.status == "pending"
        assert ar.due_date == JAN_15 + timedelta(days=30)

    def test_fully_paid_invoice_has_no_receivable(self, db_session, customer, widget, make_draft):
        invoice = invoice_service.create_invoice(make_draft(customer, [(widget, 1)], pay=5300), now=JAN_15)
        assert receivable_service.get_for_invoice(invoice.id) is None

    def test_term_days_from_config(self, app, monkeypatch, db_session, customer, widget, make_draft):
        monkeypatch.setitem(app.config, "RECEIVABLE_TERM_DAYS", 7)
        invoice = invoice_service.create_invoice(make_draft(customer, [(widget, 1)]), now=JAN_15)
        ar = receivable_service.get_for_invoice(invoice.id)
        assert ar.due_date == JAN_15 + timedelta(days=7)
        assert ar.remaining_amount_cents == 5300


class TestReceipts:
    def test_partial_receipt(self, db_session, open_receivable):
        ar = receivable_service.record_receipt(
            open_receivable.id, 1000, payment_method="cash", operator="tester",
            paid_at=datetime(2025, 1, 20),
        )
        assert ar.paid_amount_cents == 3000
        assert ar.remaining_amount_cents == 2300
        assert ar.status == "partial"
        assert db_session.query(ReceivablePayment).filter_by(receivable_id=ar.id).count() == 1

    def test_receipt_clamped_to_balance(self, db_session, open_receivable):
        ar = receivable_service.record_receipt(
            open_receivable.id, 999_999, payment_method="bank_transfer", operator="tester",
        )
        assert ar.remaining_amount_cents == 0
        assert ar.status == "paid"
        payment = db_session.query(ReceivablePayment).filter_by(receivable_id=ar.id).one()
        assert payment.amount_cents == 3300

    def test_settled_receivable_rejects_more(self, db_session, open_receivable):
        receivable_service.record_receipt(open_receivable.id, 3300, payment_method="cash", operator="tester")
        with pytest.raises(ReceivableError):
            receivable_service.record_receipt(open_receivable.id, 1, payment_method="cash", operator="tester")

    def test_method_required(self, db_session, open_receivable):
        with pytest.raises(ValidationError):
            receivable_service.record_receipt(open_receivable.id, 100, payment_method=None, operator="tester")

    def test_unknown_receivable(self, db_session):
        with pytest.raises(ReceivableNotFound):
            receivable_service.record_receipt(404, 100, payment_method="cash", operator="tester")


class TestOverdue:
    def test_past_due_becomes_overdue(self, db_session, customer, widget, make_draft):
        invoice = invoice_service.create_invoice(make_draft(customer, [(widget, 1)]), now=JAN_15)

        changed = receivable_service.refresh_overdue(as_of=JAN_15 + timedelta(days=31))

        assert changed == 1
        assert receivable_service.get_for_invoice(invoice.id).status == "overdue"

    def test_not_yet_due_stays_pending(self, db_session, customer, widget, make_draft):
        invoice = invoice_service.create_invoice(make_draft(customer, [(widget, 1)]), now=JAN_15)
        assert receivable_service.refresh_overdue(as_of=JAN_15 + timedelta(days=29)) == 0
        assert receivable_service.get_for_invoice(invoice.id).status == "pending"

    def test_partially_collected_reports_partial(self, db_session, open_receivable):
        receivable_service.refresh_overdue(as_of=JAN_15 + timedelta(days=60))
        ar = db_session.get(AccountReceivable, open_receivable.id)
        assert ar.status == "partial"
