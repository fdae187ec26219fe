from __future__ import annotations

from settlement.persistence.models import OrderItemModel, OrderModel, ProductModel, RefundModel, TransactionModel
from settlement.reconciliation.rules import (
    check_inventory_non_negative,
    check_order_totals,
    check_refunds_within_total,
    check_transaction_matches_order,
)


def _order(order_id: int, total: int, fee: int = 300) -> OrderModel:
    order = OrderModel(id=order_id, total_cents=total, delivery_fee_cents=fee)
    order.lines = [OrderItemModel(product_id=1, product_name="Apple", quantity=5, unit_price_cents=500)]
    return order


def test_order_total_must_match_lines_plus_fee():
    good = _order(1, 2800)
    bad = _order(2, 2900)

    assert check_order_totals([good]).passed is True
    result = check_order_totals([good, bad])
    assert result.passed is False
    assert "order_id=2" in result.detail


def test_completed_refunds_cannot_exceed_total():
    orders = [_order(1, 2800)]
    within = [
        RefundModel(order_id=1, amount_cents=1000, status="completed"),
        RefundModel(order_id=1, amount_cents=1800, status="completed"),
        RefundModel(order_id=1, amount_cents=5000, status="rejected"),
    ]
    assert check_refunds_within_total(orders, within).passed is True

    over = within + [RefundModel(order_id=1, amount_cents=1, status="completed")]
    result = check_refunds_within_total(orders, over)
    assert result.passed is False
    assert result.detail == "order_id=1 refunded=2801 total=2800"


def test_inventory_non_negative():
    assert check_inventory_non_negative([ProductModel(id=1, name="Apple", quantity=0)]).passed is True
    assert check_inventory_non_negative([ProductModel(id=2, name="Pear", quantity=-1)]).passed is False


def test_transaction_amount_matches_order_total():
    orders = [_order(1, 2800)]
    matching = [TransactionModel(id=10, local_order_id=1, amount_cents=2800)]
    assert check_transaction_matches_order(orders, matching).passed is True

    short = [TransactionModel(id=11, local_order_id=1, amount_cents=2500)]
    result = check_transaction_matches_order(orders, short)
    assert result.passed is False
    assert "captured=2500" in result.detail

    orphan = [TransactionModel(id=12, local_order_id=99, amount_cents=100)]
    assert check_transaction_matches_order(orders, orphan).passed is False
