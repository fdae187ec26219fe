from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from settlement.domain.refunds.ledger import RefundStatus
from settlement.persistence.models import OrderModel, ProductModel, RefundModel, TransactionModel


@dataclass
class ReconciliationResult:
    rule: str
    passed: bool
    detail: str

    def as_dict(self) -> dict:
        return asdict(self)


def check_order_totals(orders: Iterable[OrderModel]) -> ReconciliationResult:
    mismatched: list[str] = []
    for order in orders:
        expected = sum(line.quantity * line.unit_price_cents for line in order.lines) + order.delivery_fee_cents
        if expected != order.total_cents:
            mismatched.append(f"order_id={order.id} total={order.total_cents} expected={expected}")
    if mismatched:
        return ReconciliationResult(rule="order_total_matches_lines", passed=False, detail="; ".join(mismatched))
    return ReconciliationResult(rule="order_total_matches_lines", passed=True, detail="ok")


def check_refunds_within_total(orders: Iterable[OrderModel], refunds: Iterable[RefundModel]) -> ReconciliationResult:
    completed: dict[int, int] = {}
    for refund in refunds:
        if refund.status == RefundStatus.COMPLETED:
            completed[refund.order_id] = completed.get(refund.order_id, 0) + refund.amount_cents

    totals = {order.id: order.total_cents for order in orders}
    for order_id, refunded in sorted(completed.items()):
        total = totals.get(order_id)
        if total is None:
            return ReconciliationResult(
                rule="refunds_within_total",
                passed=False,
                detail=f"completed refund for missing order_id={order_id}",
            )
        if refunded > total:
            return ReconciliationResult(
                rule="refunds_within_total",
                passed=False,
                detail=f"order_id={order_id} refunded={refunded} total={total}",
            )
    return ReconciliationResult(rule="refunds_within_total", passed=True, detail="ok")


def check_inventory_non_negative(products: Iterable[ProductModel]) -> ReconciliationResult:
    for product in products:
        if product.quantity < 0:
            return ReconciliationResult(
                rule="inventory_non_negative",
                passed=False,
                detail=f"negative inventory for product_id={product.id}",
            )
    return ReconciliationResult(rule="inventory_non_negative", passed=True, detail="ok")


def check_transaction_matches_order(
    orders: Iterable[OrderModel],
    transactions: Iterable[TransactionModel],
) -> ReconciliationResult:
    totals = {order.id: order.total_cents for order in orders}
    captured = 0
    mismatched: list[str] = []
    for tx in transactions:
        total = totals.get(tx.local_order_id)
        captured += tx.amount_cents
        if total is None:
            mismatched.append(f"transaction_id={tx.id} has no order")
        elif tx.amount_cents != total:
            mismatched.append(f"order_id={tx.local_order_id} captured={tx.amount_cents} total={total}")
    if mismatched:
        return ReconciliationResult(rule="transaction_matches_order", passed=False, detail="; ".join(mismatched))
    return ReconciliationResult(rule="transaction_matches_order", passed=True, detail=f"captured={captured}")


def run_reconciliation(session: Session) -> list[ReconciliationResult]:
    orders = list(session.scalars(select(OrderModel).options(selectinload(OrderModel.lines))).all())
    refunds = list(session.scalars(select(RefundModel)).all())
    products = list(session.scalars(select(ProductModel)).all())
    transactions = list(session.scalars(select(TransactionModel)).all())
    return [
        check_order_totals(orders),
        check_refunds_within_total(orders, refunds),
        check_inventory_non_negative(products),
        check_transaction_matches_order(orders, transactions),
    ]
