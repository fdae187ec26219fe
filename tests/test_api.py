from __future__ import annotations

from settlement.domain.cart.store import SqlCartStore
from settlement.domain.inventory.ledger import InventoryLedger
from settlement.domain.orders.aggregates import CartLine
from settlement.providers.registry import get_nets_client
from settlement.providers.schemas import ProviderConfirmation


def _guest_items(product, quantity: int = 2) -> list[dict]:
    return [
        {
            "product_id": product.id,
            "product_name": product.name,
            "unit_price": product.price_cents,
            "quantity": quantity,
        }
    ]


def _paypal_checkout(client, headers: dict, body: dict) -> dict:
    created = client.post("/checkout/paypal/orders", json=body, headers=headers)
    assert created.status_code == 200
    captured = client.post(
        "/checkout/paypal/capture",
        json={**body, "provider_order_id": created.json()["provider_order_id"]},
        headers=headers,
    )
    assert captured.status_code == 200
    return captured.json()


def test_healthz(client):
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_endpoints_require_api_key_and_role(client, auth_headers):
    assert client.get("/admin/orders").status_code == 401
    assert client.get("/admin/orders", headers={"X-API-Key": "wrong"}).status_code == 401
    assert client.get("/admin/orders", headers=auth_headers["customer"]).status_code == 403
    assert client.get("/orders", headers=auth_headers["guest"]).status_code == 401
    assert client.get("/admin/orders", headers=auth_headers["admin"]).status_code == 200


def test_guest_paypal_checkout_is_idempotent(client, auth_headers, make_product):
    product = make_product(name="Kiwi", quantity=5, price=450)
    body = {"items": _guest_items(product), "delivery_fee": 300, "delivery_type": "doorstep", "address": "2 Bras Basah"}

    created = client.post("/checkout/paypal/orders", json=body, headers=auth_headers["guest"])
    assert created.status_code == 200
    assert created.json()["amount"] == 1200
    provider_order_id = created.json()["provider_order_id"]

    capture_body = {**body, "provider_order_id": provider_order_id}
    first = client.post("/checkout/paypal/capture", json=capture_body, headers=auth_headers["guest"])
    second = client.post("/checkout/paypal/capture", json=capture_body, headers=auth_headers["guest"])

    assert first.status_code == 200
    assert first.json()["duplicate"] is False
    assert first.json()["invoice_ref"] == f"/invoice/{first.json()['order_id']}"
    assert second.status_code == 200
    assert second.json()["duplicate"] is True
    assert second.json()["order_id"] == first.json()["order_id"]

    order = client.get(f"/orders/{first.json()['order_id']}", headers=auth_headers["admin"])
    assert order.status_code == 200
    assert order.json()["total"] == 1200
    assert order.json()["transaction"]["provider"] == "sandbox"


def test_checkout_errors_map_to_status_codes(client, auth_headers, make_product):
    product = make_product(name="Mango", quantity=1, price=300)

    empty = client.post("/checkout/paypal/orders", json={"items": []}, headers=auth_headers["guest"])
    assert empty.status_code == 400
    assert empty.json()["error"] == "empty_cart"

    body = {"items": _guest_items(product, quantity=3)}
    created = client.post("/checkout/paypal/orders", json=body, headers=auth_headers["guest"])
    short = client.post(
        "/checkout/paypal/capture",
        json={**body, "provider_order_id": created.json()["provider_order_id"]},
        headers=auth_headers["guest"],
    )
    assert short.status_code == 409
    assert short.json()["error"] == "insufficient_stock"
    assert short.json()["context"]["product_id"] == product.id

    unknown = client.post(
        "/checkout/paypal/capture",
        json={**body, "provider_order_id": "SANDBOX-ORD-UNKNOWN"},
        headers=auth_headers["guest"],
    )
    assert unknown.status_code == 502
    assert unknown.json()["error"] == "provider_error"

    admin = client.post("/checkout/paypal/orders", json=body, headers=auth_headers["admin"])
    assert admin.status_code == 403


def test_guest_lines_are_priced_from_the_catalog(client, auth_headers, make_product):
    product = make_product(name="Caviar", quantity=5, price=9900)
    items = [{"product_id": product.id, "product_name": "Caviar", "unit_price": 0, "quantity": 3}]

    created = client.post("/checkout/paypal/orders", json={"items": items}, headers=auth_headers["guest"])
    assert created.status_code == 200
    assert created.json()["amount"] == 29700

    settled = _paypal_checkout(client, auth_headers["guest"], {"items": items})
    order = client.get(f"/orders/{settled['order_id']}", headers=auth_headers["admin"]).json()
    assert order["total"] == 29700
    assert order["transaction"]["amount"] == 29700

    unknown = client.post(
        "/checkout/paypal/orders",
        json={"items": [{"product_id": 999999, "quantity": 1}]},
        headers=auth_headers["guest"],
    )
    assert unknown.status_code == 404
    assert unknown.json()["error"] == "product_not_found"


def test_capture_below_cart_total_is_rejected(client, auth_headers, session, make_product):
    product = make_product(name="Saffron", quantity=10, price=1000)
    cheap = {"items": _guest_items(product, quantity=1)}
    created = client.post("/checkout/paypal/orders", json=cheap, headers=auth_headers["guest"])
    assert created.json()["amount"] == 1000

    bigger = {"items": _guest_items(product, quantity=5), "provider_order_id": created.json()["provider_order_id"]}
    captured = client.post("/checkout/paypal/capture", json=bigger, headers=auth_headers["guest"])

    assert captured.status_code == 409
    assert captured.json()["error"] == "payment_amount_mismatch"
    assert captured.json()["context"]["captured"] == 1000
    assert captured.json()["context"]["total"] == 5000
    assert InventoryLedger(session).quantity_of(product.id) == 10

def test_customer_checkout_refund_request_and_approval(client, auth_headers, session, make_product):
    product = make_product(name="Grapes", quantity=10, price=500)
    carts = SqlCartStore(session)
    carts.clear_cart(42)
    carts.add_item(42, CartLine(product_id=product.id, product_name="Grapes", unit_price=500, quantity=5))
    session.commit()

    settled = _paypal_checkout(client, auth_headers["customer"], {"delivery_fee": 300, "address": "3 Tampines"})
    order_id = settled["order_id"]
    assert settled["total"] == 2800
    assert settled["cart_cleared"] is True
    assert carts.get_items_by_user(42) == []

    mine = client.get("/orders", headers=auth_headers["customer"])
    assert order_id in [row["id"] for row in mine.json()["orders"]]
    assert client.get(f"/orders/{order_id}", headers=auth_headers["other_customer"]).status_code == 403

    requested = client.post(f"/orders/{order_id}/refund-requests", headers=auth_headers["customer"])
    assert requested.status_code == 200
    refund_id = requested.json()["refund"]["id"]
    assert requested.json()["refund"]["amount"] == 2800

    denied = client.post(f"/orders/{order_id}/refund-requests", headers=auth_headers["other_customer"])
    assert denied.status_code == 403

    pending = client.get("/admin/refunds", headers=auth_headers["admin"])
    assert refund_id in [row["id"] for row in pending.json()["refunds"]]

    approved = client.post(f"/admin/refunds/{refund_id}/approve", headers=auth_headers["admin"])
    assert approved.status_code == 200
    assert approved.json()["amount"] == 2800
    assert approved.json()["order_status"] == "refunded"

    again = client.post(f"/admin/refunds/{refund_id}/approve", headers=auth_headers["admin"])
    assert again.status_code == 409
    assert again.json()["error"] == "refund_not_pending"

    invoice = client.get(f"/orders/{order_id}", headers=auth_headers["customer"]).json()
    assert invoice["status"] == "refunded"
    assert invoice["totals"]["remaining"] == 0
    assert invoice["latest_refund"]["status"] == "completed"


def test_admin_direct_refund_and_rejection(client, auth_headers, make_product):
    product = make_product(name="Lychee", quantity=10, price=1000)
    settled = _paypal_checkout(client, auth_headers["guest"], {"items": _guest_items(product, quantity=2)})
    order_id = settled["order_id"]

    partial = client.post(f"/admin/orders/{order_id}/refund", json={"amount": 500}, headers=auth_headers["admin"])
    assert partial.status_code == 200
    assert partial.json()["remaining"] == 1500

    rest = client.post(f"/admin/orders/{order_id}/refund", json={}, headers=auth_headers["admin"])
    assert rest.status_code == 200
    assert rest.json()["amount"] == 1500

    nothing = client.post(f"/admin/orders/{order_id}/refund", json={}, headers=auth_headers["admin"])
    assert nothing.status_code == 409
    assert nothing.json()["error"] == "nothing_to_refund"

    rejected = client.post("/admin/refunds/999999/reject", json={"reason": "n/a"}, headers=auth_headers["admin"])
    assert rejected.status_code == 404


def test_admin_order_maintenance(client, auth_headers, make_product):
    product = make_product(name="Papaya", quantity=10, price=700)
    settled = _paypal_checkout(
        client,
        auth_headers["guest"],
        {"items": _guest_items(product, quantity=1), "delivery_type": "pickup"},
    )
    order_id = settled["order_id"]

    status = client.post(f"/admin/orders/{order_id}/status", json={"status": "processing"}, headers=auth_headers["admin"])
    assert status.status_code == 200
    assert status.json()["order"]["status"] == "processing"

    bad = client.post(f"/admin/orders/{order_id}/status", json={"status": "lost"}, headers=auth_headers["admin"])
    assert bad.status_code == 422

    pickup = client.post(f"/admin/orders/{order_id}/pickup", json={"collected": True}, headers=auth_headers["admin"])
    assert pickup.json()["order"]["status"] == "collected"

    blocked = client.delete(f"/admin/orders/{order_id}", headers=auth_headers["admin"])
    assert blocked.status_code == 409
    assert blocked.json()["error"] == "order_deletion_blocked"

    missing = client.delete("/admin/orders/999999", headers=auth_headers["admin"])
    assert missing.status_code == 404


class FakeNetsClient:
    def __init__(self, status: str = "completed", ref: str = "NETS-API-1"):
        self.status = status
        self.ref = ref
        self.requested: list[int] = []

    def request_qr(self, amount: int):
        from settlement.providers.nets import NetsQrCode

        self.requested.append(amount)
        return NetsQrCode(txn_retrieval_ref=self.ref, qr_code="iVBOR", network_status=0, raw={})

    def query_status(self, txn_retrieval_ref: str, frontend_timeout_status: int = 0) -> ProviderConfirmation:
        return ProviderConfirmation(
            provider="nets",
            provider_order_id=txn_retrieval_ref,
            provider_capture_id=txn_retrieval_ref,
            status=self.status,
            raw_status="00/1" if self.status == "completed" else "00/0",
        )

    def wait_for_payment(self, txn_retrieval_ref: str, **_kwargs) -> ProviderConfirmation:
        return self.query_status(txn_retrieval_ref)


def test_nets_checkout(client, auth_headers, make_product):
    from settlement.main import app

    product = make_product(name="Starfruit", quantity=10, price=250)
    nets = FakeNetsClient(status="pending")
    app.dependency_overrides[get_nets_client] = lambda: nets
    body = {"items": _guest_items(product, quantity=4), "delivery_fee": 0}

    qr = client.post("/checkout/nets/qr", json=body, headers=auth_headers["guest"])
    assert qr.status_code == 200
    assert qr.json()["qr_code"] == "data:image/png;base64,iVBOR"
    assert nets.requested == [1000]

    status = client.get("/checkout/nets/NETS-API-1/status", headers=auth_headers["guest"])
    assert status.json()["status"] == "pending"

    complete_body = {**body, "txn_retrieval_ref": "NETS-API-1"}
    pending = client.post("/checkout/nets/complete", json=complete_body, headers=auth_headers["guest"])
    assert pending.status_code == 402
    assert pending.json()["error"] == "payment_not_completed"

    nets.status = "completed"
    done = client.post("/checkout/nets/complete", json={**complete_body, "wait": True}, headers=auth_headers["guest"])
    assert done.status_code == 200
    order = client.get(f"/orders/{done.json()['order_id']}", headers=auth_headers["admin"]).json()
    assert order["payment_method"] == "NETS"
    assert order["transaction"]["amount"] == 1000


def test_reconciliation_endpoint(client, auth_headers):
    assert client.get("/admin/reconciliation", headers=auth_headers["guest"]).status_code == 403
    response = client.get("/admin/reconciliation", headers=auth_headers["system"])
    assert response.status_code == 200
    rules = [row["rule"] for row in response.json()["results"]]
    assert rules == [
        "order_total_matches_lines",
        "refunds_within_total",
        "inventory_non_negative",
        "transaction_matches_order",
    ]


def test_nets_completion_is_checked_against_quoted_amount(client, auth_headers, session, make_product):
    from settlement.main import app

    product = make_product(name="Rambutan", quantity=10, price=300)
    nets = FakeNetsClient(status="completed", ref="NETS-API-QUOTED")
    app.dependency_overrides[get_nets_client] = lambda: nets

    quoted = client.post(
        "/checkout/nets/qr",
        json={"items": _guest_items(product, quantity=1)},
        headers=auth_headers["guest"],
    )
    assert quoted.json()["amount"] == 300

    larger = {"items": _guest_items(product, quantity=6), "txn_retrieval_ref": "NETS-API-QUOTED"}
    mismatch = client.post("/checkout/nets/complete", json=larger, headers=auth_headers["guest"])
    assert mismatch.status_code == 409
    assert mismatch.json()["error"] == "payment_amount_mismatch"
    assert mismatch.json()["context"]["captured"] == 300

    unquoted = {"items": _guest_items(product, quantity=1), "txn_retrieval_ref": "NETS-NEVER-QUOTED"}
    unknown = client.post("/checkout/nets/complete", json=unquoted, headers=auth_headers["guest"])
    assert unknown.status_code == 409
    assert unknown.json()["error"] == "payment_amount_mismatch"

    assert InventoryLedger(session).quantity_of(product.id) == 10
