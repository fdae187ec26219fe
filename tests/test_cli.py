from __future__ import annotations

import json

from settlement import cli
from settlement.domain.orders.aggregates import CartLine
from settlement.domain.orders.store import OrderStore
from settlement.domain.refunds.ledger import RefundLedger, RefundStatus


def test_cli_shows_order_and_reports_missing(session, capsys):
    order = OrderStore(session).create_order(
        user_id=1201,
        address="4 Jurong",
        lines=[CartLine(product_id=1, product_name="Apple", unit_price=500, quantity=2)],
        total=1000,
        delivery_type="doorstep",
        delivery_fee=0,
        payment_method="PayPal",
    )
    session.commit()

    assert cli.main(["orders", "show", str(order.id)]) == 0
    shown = json.loads(capsys.readouterr().out)
    assert shown["id"] == order.id
    assert shown["totals"]["remaining"] == 1000

    assert cli.main(["orders", "show", "999999"]) == 1
    assert json.loads(capsys.readouterr().out)["error"] == "order_not_found"


def test_cli_lists_and_rejects_pending_refunds(session, capsys):
    refund = RefundLedger(session).create(order_id=1202, amount=700, currency="SGD")
    session.commit()

    assert cli.main(["refunds", "pending"]) == 0
    listed = json.loads(capsys.readouterr().out)
    assert refund.id in [row["id"] for row in listed["refunds"]]

    assert cli.main(["refunds", "reject", str(refund.id), "--reason", "duplicate request"]) == 0
    rejected = json.loads(capsys.readouterr().out)
    assert rejected["status"] == RefundStatus.REJECTED
