"""
CLI command tests (flask system / stock / receivables groups).
"""

from datetime import timedelta

from bizdesk.models import MembershipTierConfig, Product
from bizdesk.services import invoice_service, receivable_service

from conftest import JAN_15


def test_seed_tiers(app, db_session):
    runner = app.test_cli_runner()
    result = runner.invoke(args=["system", "seed-tiers"])
    assert result.exit_code == 0
    assert db_session.query(MembershipTierConfig).count() == 5

    result = runner.invoke(args=["system", "seed-tiers"])
    assert "already exist" in result.output


def test_stock_verify(app, db_session, widget):
    runner = app.test_cli_runner()
    result = runner.invoke(args=["stock", "verify"])
    assert result.exit_code == 0
    assert "PASS" in result.output

    db_session.query(Product).filter_by(id=widget.id).update({Product.current_stock: 3})
    db_session.commit()

    result = runner.invoke(args=["stock", "verify"])
    assert result.exit_code == 1
    assert "WDG-001" in result.output


def test_refresh_overdue(app, db_session, customer, widget, make_draft):
    invoice = invoice_service.create_invoice(make_draft(customer, [(widget, 1)]), now=JAN_15)

    runner = app.test_cli_runner()
    as_of = (JAN_15 + timedelta(days=45)).isoformat() + "Z"
    result = runner.invoke(args=["receivables", "refresh-overdue", "--as-of", as_of])

    assert result.exit_code == 0
    assert "Updated 1" in result.output
    db_session.expire_all()
    assert receivable_service.get_for_invoice(invoice.id).status == "overdue"


def test_refresh_overdue_rejects_bad_as_of(app, db_session):
    runner = app.test_cli_runner()
    result = runner.invoke(args=["receivables", "refresh-overdue", "--as-of", "not-a-date"])

    assert result.exit_code == 2
    assert "not an ISO-8601 timestamp" in result.output
