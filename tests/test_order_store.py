from __future__ import annotations

import pytest

from settlement.core.errors import InvalidOrderStatus, OrderDeletionBlocked, OrderNotFound
from settlement.domain.orders.aggregates import CartLine, OrderStatus, compute_total
from settlement.domain.orders.store import OrderStore, serialize_order
from settlement.domain.transactions.ledger import TransactionLedger


def _lines(product_id: int) -> list[CartLine]:
    return [
        CartLine(product_id=product_id, product_name="Apple", unit_price=500, quantity=2),
        CartLine(product_id=product_id, product_name="Apple", unit_price=500, quantity=3),
    ]


def _create(session, user_id=7, delivery_type="doorstep", payment_ref=None):
    lines = _lines(1)
    return OrderStore(session).create_order(
        user_id=user_id,
        address="1 Orchard Road",
        lines=lines,
        total=compute_total(lines, 300),
        delivery_type=delivery_type,
        delivery_fee=300,
        payment_method="PayPal",
        payment_ref=payment_ref,
    )


def test_create_order_persists_header_and_lines(session):
    order = _create(session)
    session.commit()

    loaded = OrderStore(session).get_order_by_id(order.id)
    assert loaded.total_cents == 2800
    assert loaded.status == OrderStatus.PENDING
    assert [line.quantity for line in loaded.lines] == [2, 3]

    payload = serialize_order(loaded, OrderStore.summarize(loaded, refunded=1000))
    assert payload["totals"] == {
        "subtotal": 2500,
        "delivery_fee": 300,
        "total": 2800,
        "refunded": 1000,
        "remaining": 1800,
    }


def test_orders_by_user_are_newest_first(session):
    first = _create(session, user_id=501)
    second = _create(session, user_id=501)
    _create(session, user_id=502)
    session.commit()

    rows = OrderStore(session).get_orders_by_user(501)
    assert [row.id for row in rows] == [second.id, first.id]


def test_update_status_validates_value(session):
    order = _create(session)
    store = OrderStore(session)

    assert store.update_status(order.id, OrderStatus.DELIVERED).status == OrderStatus.DELIVERED
    with pytest.raises(InvalidOrderStatus):
        store.update_status(order.id, "teleported")


def test_pickup_collected_moves_pickup_orders_to_collected(session):
    pickup = _create(session, delivery_type="pickup")
    doorstep = _create(session, delivery_type="doorstep")
    store = OrderStore(session)

    assert store.update_pickup_collected(pickup.id).status == OrderStatus.COLLECTED
    updated = store.update_pickup_collected(doorstep.id)
    assert updated.pickup_collected is True
    assert updated.status == OrderStatus.PENDING


def test_delete_order_removes_lines_and_header(session):
    order = _create(session)
    session.commit()
    store = OrderStore(session)

    store.delete_order(order.id)
    session.commit()
    with pytest.raises(OrderNotFound):
        store.get_order_by_id(order.id)
    with pytest.raises(OrderNotFound):
        store.delete_order(order.id)


def test_delete_order_blocked_by_transaction(session):
    order = _create(session, payment_ref="CAP-DELETE-BLOCKED")
    TransactionLedger(session).create(
        local_order_id=order.id,
        provider="paypal",
        provider_capture_id="CAP-DELETE-BLOCKED",
        amount=2800,
        currency="SGD",
        status="COMPLETED",
    )
    session.commit()

    with pytest.raises(OrderDeletionBlocked):
        OrderStore(session).delete_order(order.id)
    assert OrderStore(session).get_order_by_id(order.id).id == order.id


def test_total_is_lines_plus_delivery_fee():
    lines = [
        CartLine(product_id=1, product_name="Eggs", unit_price=1000, quantity=2),
        CartLine(product_id=2, product_name="Salt", unit_price=500, quantity=1),
    ]
    assert compute_total(lines, 300) == 2800
