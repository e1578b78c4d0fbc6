"""
Stock ledger tests.

Verifies:
- current_stock always equals the signed sum of ledger rows
- Opening stock, purchases and adjustments are all ledger movements
- Negative stock is permitted at the ledger level
- Shortage detection aggregates repeated products
- Purchases record the unit cost paid
"""

import pytest

from bizdesk.extensions import db
from bizdesk.models import Product, StockTransaction
from bizdesk.services import invoice_service, products_service, purchase_service, stock_service
from bizdesk.services.purchase_service import PurchaseLine
from bizdesk.services.stock_service import ProductNotFound
from bizdesk.validation import ConflictError, ValidationError

from conftest import JAN_15


class TestOpeningStock:
    def test_opening_stock_is_an_in_row(self, db_session, widget):
        txs = stock_service.list_transactions(product_id=widget.id)
        assert len(txs) == 1
        assert txs[0].type == "IN"
        assert txs[0].related_type == "opening"
        assert txs[0].before_stock == 0
        assert txs[0].after_stock == 10
        assert stock_service.ledger_balance(widget.id) == 10

    def test_zero_opening_stock_has_no_row(self, db_session):
        product = products_service.create_product(
            {"sku": "EMPTY-1", "name": "Empty"}, opening_stock=0, operator="tester",
        )
        assert product.current_stock == 0
        assert stock_service.list_transactions(product_id=product.id) == []

    def test_duplicate_sku_rejected(self, db_session, widget):
        with pytest.raises(ConflictError):
            products_service.create_product({"sku": "WDG-001", "name": "Again"}, operator="tester")

    def test_current_stock_not_writable(self, db_session):
        with pytest.raises(ValidationError):
            products_service.create_product(
                {"sku": "X-1", "name": "X", "current_stock": 50}, operator="tester",
            )


class TestMovements:
    def test_out_may_go_negative(self, db_session, gadget):
        product = stock_service.get_product(gadget.id)
        tx = stock_service.apply_out(product, 5, operator="tester", related_id="1")
        db.session.commit()

        assert tx.before_stock == 3
        assert tx.after_stock == -2
        assert db.session.get(Product, gadget.id).current_stock == -2
        assert stock_service.verify_stock() == []

    def test_quantity_must_be_positive(self, db_session, gadget):
        product = stock_service.get_product(gadget.id)
        with pytest.raises(stock_service.StockError):
            stock_service.apply_in(product, 0, operator="tester")

    def test_adjustment_records_magnitude(self, db_session, widget):
        tx = stock_service.adjust_stock(widget.id, 7, operator="tester", notes="Count")

        assert tx.type == "ADJUSTMENT"
        assert tx.quantity == 3
        assert tx.signed_quantity == -3
        assert db.session.get(Product, widget.id).current_stock == 7
        assert stock_service.ledger_balance(widget.id) == 7

    def test_adjustment_to_same_level_rejected(self, db_session, widget):
        with pytest.raises(ValidationError):
            stock_service.adjust_stock(widget.id, 10, operator="tester")

    def test_adjust_unknown_product(self, db_session):
        with pytest.raises(ProductNotFound):
            stock_service.adjust_stock(9999, 1, operator="tester")


class TestVerify:
    def test_consistent_after_mixed_activity(self, db_session, widget, gadget):
        purchase_service.receive_purchase(
            [PurchaseLine(product_id=widget.id, quantity=5)], operator="tester",
        )
        stock_service.adjust_stock(gadget.id, 1, operator="tester")
        assert stock_service.verify_stock() == []

    def test_detects_counter_drift(self, db_session, widget):
        # Bypass the ledger on purpose
        db.session.query(Product).filter_by(id=widget.id).update({Product.current_stock: 99})
        db.session.commit()

        mismatches = stock_service.verify_stock()
        assert len(mismatches) == 1
        assert mismatches[0]["product_id"] == widget.id
        assert mismatches[0]["ledger_stock"] == 10
        assert mismatches[0]["difference"] == 89


class TestShortages:
    def test_aggregates_repeated_product(self, db_session, gadget, widget):
        g = stock_service.get_product(gadget.id)
        w = stock_service.get_product(widget.id)
        shortages = stock_service.find_shortages([(g, 2), (w, 1), (g, 2)])

        assert len(shortages) == 1
        assert shortages[0]["product_id"] == gadget.id
        assert shortages[0]["requested_quantity"] == 4
        assert shortages[0]["current_stock"] == 3
        assert shortages[0]["resulting_stock"] == -1

    def test_exact_stock_is_not_a_shortage(self, db_session, gadget):
        g = stock_service.get_product(gadget.id)
        assert stock_service.find_shortages([(g, 3)]) == []


class TestPurchases:
    def test_receive_purchase(self, db_session, widget, gadget):
        receipt = purchase_service.receive_purchase(
            [PurchaseLine(product_id=widget.id, quantity=5), PurchaseLine(product_id=gadget.id, quantity=2)],
            operator="tester",
            notes="Supplier ABC",
        )

        assert receipt.purchase_number.startswith("PO")
        assert receipt.purchase_number.endswith("-0001")
        assert db.session.get(Product, widget.id).current_stock == 15
        assert db.session.get(Product, gadget.id).current_stock == 5

        rows = db.session.query(StockTransaction).filter_by(reference=receipt.purchase_number).all()
        assert len(rows) == 2
        assert {r.related_type for r in rows} == {"purchase"}

    def test_purchase_numbers_increment(self, db_session, widget):
        first = purchase_service.receive_purchase([PurchaseLine(widget.id, 1)], operator="tester")
        second = purchase_service.receive_purchase([PurchaseLine(widget.id, 1)], operator="tester")
        assert first.purchase_number.endswith("-0001")
        assert second.purchase_number.endswith("-0002")

    def test_unknown_product_rolls_back_whole_purchase(self, db_session, widget):
        with pytest.raises(ValidationError):
            purchase_service.receive_purchase(
                [PurchaseLine(widget.id, 5), PurchaseLine(9999, 1)], operator="tester",
            )
        assert db.session.get(Product, widget.id).current_stock == 10
        assert stock_service.list_transactions(related_type="purchase") == []

    def test_unit_cost_and_supplier_recorded(self, db_session, widget, gadget):
        receipt = purchase_service.receive_purchase(
            [PurchaseLine(widget.id, 5, unit_cost_cents=3200), PurchaseLine(gadget.id, 2)],
            operator="tester",
            supplier="Syarikat Maju",
        )

        assert receipt.supplier == "Syarikat Maju"
        # gadget has no cost price, so its selling price is used
        assert [tx.unit_cost_cents for tx in receipt.transactions] == [3200, 1250]
        assert receipt.total_cost_cents == 5 * 3200 + 2 * 1250
        assert all("Syarikat Maju" in tx.notes for tx in receipt.transactions)

    def test_cost_price_is_default_unit_cost(self, db_session, widget):
        db.session.get(Product, widget.id).cost_price_cents = 4100
        db.session.commit()

        receipt = purchase_service.receive_purchase([PurchaseLine(widget.id, 2)], operator="tester")

        assert receipt.transactions[0].unit_cost_cents == 4100
        assert receipt.total_cost_cents == 8200

    def test_negative_unit_cost_rejected(self, db_session, widget):
        with pytest.raises(ValidationError):
            purchase_service.receive_purchase([PurchaseLine(widget.id, 1, unit_cost_cents=-1)], operator="tester")


class TestTransactionQueries:
    def test_related_types_filtered_before_limit(self, db_session, customer, widget, make_draft):
        invoice = invoice_service.create_invoice(make_draft(customer, [(widget, 1)]), now=JAN_15)
        # Newer rows of another kind sharing the same related_id
        for _ in range(3):
            stock_service.apply_in(
                stock_service.get_product(widget.id), 1,
                operator="tester", related_id=str(invoice.id), related_type="purchase",
            )
        db.session.commit()

        rows = stock_service.list_transactions(
            related_id=str(invoice.id), related_types=("order", "cancellation", "deletion"), limit=1,
        )

        assert [(tx.type, tx.related_type) for tx in rows] == [("OUT", "order")]
