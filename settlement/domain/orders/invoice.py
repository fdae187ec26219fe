from __future__ import annotations

from sqlalchemy.orm import Session

from settlement.domain.orders.store import OrderStore, serialize_order
from settlement.domain.refunds.ledger import RefundLedger, serialize_refund
from settlement.domain.transactions.ledger import TransactionLedger, serialize_transaction


def invoice_ref(order_id: int) -> str:
    return f"/invoice/{order_id}"


def build_invoice(session: Session, order_id: int) -> dict:
    """Order with totals, latest refund and payment transaction, as the invoice page shows it."""
    order = OrderStore(session).get_order_by_id(order_id)
    refunds = RefundLedger(session)
    totals = OrderStore.summarize(order, refunded=refunds.sum_completed_by_order(order.id))
    latest_refund = refunds.get_latest_by_order_id(order.id)
    tx = TransactionLedger(session).find_by_order_id(order.id)

    payload = serialize_order(order, totals)
    payload["invoice_ref"] = invoice_ref(order.id)
    payload["latest_refund"] = serialize_refund(latest_refund) if latest_refund else None
    payload["transaction"] = serialize_transaction(tx) if tx else None
    return payload
