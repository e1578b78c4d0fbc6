"""
Pytest fixtures for bizdesk backend tests.

Provides an in-memory database app, per-test table wipe, test client, and
customer / product / member fixtures.
"""

from datetime import datetime

import pytest
from bizdesk import create_app
from bizdesk.extensions import db
from bizdesk.models import Customer
from bizdesk.services import membership_service, products_service
from bizdesk.services.invoice_service import InvoiceDraft, LineDraft, PaymentIntent


# Mid-January 2025; invoice numbers in tests are INV202501-NNN
JAN_15 = datetime(2025, 1, 15, 10, 0, 0)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'DEFAULT_TAX_RATE_BPS': 600,
        'RECEIVABLE_TERM_DAYS': 30,
        'INVOICE_NUMBER_REUSE_CANCELLED': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def customer(db_session):
    """Walk-in customer without membership."""
    c = Customer(name="Tan Ah Kow", phone="012-3456789", address="12 Jalan Ampang, Kuala Lumpur")
    db_session.add(c)
    db_session.commit()
    return c


@pytest.fixture(scope='function')
def widget(db_session):
    """RM50.00 product with 10 in stock."""
    return products_service.create_product(
        {"sku": "WDG-001", "name": "Widget", "category": "hardware", "selling_price_cents": 5000},
        opening_stock=10,
        operator="tester",
    )


@pytest.fixture(scope='function')
def gadget(db_session):
    """RM12.50 product with 3 in stock."""
    return products_service.create_product(
        {"sku": "GDG-001", "name": "Gadget", "category": "hardware", "selling_price_cents": 1250},
        opening_stock=3,
        operator="tester",
    )


@pytest.fixture(scope='function')
def gold_member(db_session, customer):
    """Customer enrolled in a gold tier earning 1.5 points per unit paid, no discount."""
    membership_service.upsert_tier_config(
        "gold", name="Gold", discount_rate_bps=0, points_rate_bps=15_000,
    )
    return membership_service.create_member(customer.id, tier="gold", created_by="tester")


@pytest.fixture(scope='function')
def make_draft():
    """Build an InvoiceDraft from (product, quantity) pairs."""
    def _make(customer, items, *, pay=None, method="cash", **kwargs):
        kwargs.setdefault("created_by", "tester")
        kwargs.setdefault("tax_rate_bps", 600)
        payment = PaymentIntent(amount_cents=pay, payment_method=method) if pay is not None else None
        return InvoiceDraft(
            customer_id=customer.id,
            lines=[LineDraft(product_id=p.id, quantity=q) for p, q in items],
            payment=payment,
            **kwargs,
        )
    return _make
