"""
Membership tests.

Verifies:
- Tier rate lookup with defaults
- Points = floor(paid x rate), credited once at invoice creation
- Member discount applied to the subtotal
- Member numbering and tier seeding
"""

import pytest

from bizdesk.models import Member, PointTransaction
from bizdesk.services import invoice_service, membership_service
from bizdesk.validation import ConflictError, ValidationError

from conftest import JAN_15


class TestTierRates:
    def test_defaults_without_config(self, db_session):
        rates = membership_service.tier_rates("platinum")
        assert rates.discount_rate_bps == 0
        assert rates.points_rate_bps == 10_000

    def test_inactive_config_ignored(self, db_session):
        membership_service.upsert_tier_config("silver", discount_rate_bps=300, points_rate_bps=12_000, is_active=False)
        assert membership_service.tier_rates("silver").points_rate_bps == 10_000

    def test_unknown_tier_rejected(self, db_session):
        with pytest.raises(ValidationError):
            membership_service.upsert_tier_config("bronze")

    def test_seed_is_idempotent(self, db_session):
        assert len(membership_service.seed_default_tiers()) == 5
        assert membership_service.seed_default_tiers() == []

    def test_points_floor(self):
        assert membership_service.points_for(5300, 15_000) == 79
        assert membership_service.points_for(10_000, 15_000) == 150
        assert membership_service.points_for(0, 15_000) == 0


class TestAccrualOnInvoice:
    def test_gold_member_earns_one_and_a_half_x(self, db_session, gold_member, customer, widget, make_draft):
        invoice = invoice_service.create_invoice(
            make_draft(customer, [(widget, 2)], pay=10_000, tax_rate_bps=0), now=JAN_15,
        )

        member = db_session.get(Member, gold_member.id)
        assert invoice.member_id == member.id
        assert member.points == 150
        assert member.total_spent_cents == 10_000

        tx = db_session.query(PointTransaction).filter_by(member_id=member.id).one()
        assert tx.type == "earn"
        assert tx.points == 150
        assert tx.before_points == 0
        assert tx.after_points == 150
        assert tx.related_id == str(invoice.id)
        assert membership_service.earned_for_invoice(invoice.id) == 150

    def test_points_on_paid_amount_only(self, db_session, gold_member, customer, widget, make_draft):
        invoice_service.create_invoice(make_draft(customer, [(widget, 1)], pay=2000), now=JAN_15)
        assert db_session.get(Member, gold_member.id).points == 30

    def test_unpaid_invoice_earns_nothing(self, db_session, gold_member, customer, widget, make_draft):
        invoice_service.create_invoice(make_draft(customer, [(widget, 1)]), now=JAN_15)

        member = db_session.get(Member, gold_member.id)
        assert member.points == 0
        assert member.total_spent_cents == 0
        assert db_session.query(PointTransaction).count() == 0

    def test_later_payment_earns_nothing(self, db_session, gold_member, customer, widget, make_draft):
        invoice = invoice_service.create_invoice(make_draft(customer, [(widget, 1)], pay=2000), now=JAN_15)
        invoice_service.record_payment(invoice.id, 3300, payment_method="cash")

        assert db_session.get(Member, gold_member.id).points == 30
        assert db_session.query(PointTransaction).count() == 1

    def test_suspended_member_not_applied(self, db_session, gold_member, customer, widget, make_draft):
        membership_service.set_member_status(gold_member.id, "suspended")
        invoice = invoice_service.create_invoice(make_draft(customer, [(widget, 1)], pay=5300), now=JAN_15)

        assert invoice.member_id is None
        assert db_session.get(Member, gold_member.id).points == 0

    def test_member_discount_on_subtotal(self, db_session, customer, widget, make_draft):
        membership_service.upsert_tier_config("silver", discount_rate_bps=1000, points_rate_bps=10_000)
        membership_service.create_member(customer.id, tier="silver", created_by="tester")

        invoice = invoice_service.create_invoice(make_draft(customer, [(widget, 2)]), now=JAN_15)

        # 100.00 - 10% = 90.00, + 6% tax = 95.40
        assert invoice.subtotal_cents == 10_000
        assert invoice.member_discount_cents == 1000
        assert invoice.tax_amount_cents == 540
        assert invoice.total_amount_cents == 9540


class TestMembers:
    def test_member_number_format(self, db_session, gold_member):
        number = gold_member.member_number
        assert number.startswith("G")
        assert number.endswith("-001")
        assert len(number) == len("G20250115-001")

    def test_one_membership_per_customer(self, db_session, gold_member, customer):
        with pytest.raises(ConflictError):
            membership_service.create_member(customer.id, created_by="tester")

    def test_invalid_status(self, db_session, gold_member):
        with pytest.raises(ValidationError):
            membership_service.set_member_status(gold_member.id, "banned")
