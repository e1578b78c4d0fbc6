# Overview: Service-layer operations for purchase receiving; books supplier deliveries into stock.

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..models import StockTransaction
from ..validation import ValidationError, coerce_cents, coerce_int, optional_text, require_text
from .concurrency import UnitOfWork, run_unit_of_work
from .numbering_service import next_purchase_number
from .stock_service import StockError, apply_in, get_product


@dataclass(frozen=True)
class PurchaseLine:
    product_id: int
    quantity: int
    # None -> the product's cost price (selling price when no cost is set)
    unit_cost_cents: int | None = None


@dataclass(frozen=True)
class PurchaseReceipt:
    purchase_number: str
    supplier: str | None
    total_cost_cents: int
    transactions: list[StockTransaction]


def receive_purchase(
    lines: list[PurchaseLine],
    *,
    operator,
    supplier: str | None = None,
    notes: str | None = None,
) -> PurchaseReceipt:
    """
    Receive a delivery: one IN movement per line under a new purchase number,
    all in one transaction. Each IN row carries the unit cost paid, so the
    value of a purchase can be summed from the ledger.
    """
    operator = require_text(operator, "operator", max_length=128)
    supplier = optional_text(supplier, max_length=128)
    notes = optional_text(notes)
    if not lines:
        raise ValidationError("At least one purchase line is required")
    checked = [
        PurchaseLine(
            product_id=coerce_int(line.product_id, "product_id", minimum=1),
            quantity=coerce_int(line.quantity, "quantity", minimum=1),
            unit_cost_cents=(
                coerce_cents(line.unit_cost_cents, "unit_cost_cents")
                if line.unit_cost_cents is not None else None
            ),
        )
        for line in lines
    ]

    label = f"Purchase {{number}} from {supplier}" if supplier else "Purchase {number}"

    def _op():
        uow = UnitOfWork("receive_purchase")
        transactions = []
        with uow.transaction():
            with uow.step("number"):
                purchase_number = next_purchase_number()
            text = label.format(number=purchase_number)
            for i, line in enumerate(checked, start=1):
                with uow.step(f"stock_in[{i}]"):
                    try:
                        product = get_product(line.product_id, lock=True)
                    except StockError as exc:
                        raise ValidationError(str(exc))
                    unit_cost = line.unit_cost_cents
                    if unit_cost is None:
                        unit_cost = product.cost_price_cents or product.selling_price_cents
                    transactions.append(apply_in(
                        product,
                        line.quantity,
                        operator=operator,
                        related_id=purchase_number,
                        related_type="purchase",
                        reference=purchase_number,
                        notes=(f"{notes} - {text}" if notes else text)[:255],
                        unit_cost_cents=unit_cost,
                    ))
        total_cost = sum(tx.quantity * tx.unit_cost_cents for tx in transactions)
        current_app.logger.info(
            "Purchase %s received (%d lines, cost=%s, supplier=%s)",
            purchase_number, len(transactions), total_cost, supplier or "-",
        )
        return PurchaseReceipt(
            purchase_number=purchase_number,
            supplier=supplier,
            total_cost_cents=total_cost,
            transactions=transactions,
        )

    return run_unit_of_work(_op, name="receive_purchase")
