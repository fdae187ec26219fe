from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from settlement.core.errors import ProviderError, ProviderRefundFailure
from settlement.domain.money import format_amount
from settlement.providers.base import RefundReceipt


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class SandboxPaymentProvider:
    """In-process stand-in for PayPal that answers with PayPal-shaped payloads."""

    provider_name = "sandbox"

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.orders: dict[str, dict[str, Any]] = {}
        self.captures: dict[str, dict[str, Any]] = {}

    def create_order(self, amount: int, currency: str) -> str:
        order_id = f"SANDBOX-ORD-{uuid4().hex[:12].upper()}"
        with self.lock:
            self.orders[order_id] = {"amount": amount, "currency": currency, "capture_id": None}
        return order_id

    def capture_order(self, provider_order_id: str) -> dict[str, Any]:
        with self.lock:
            order = self.orders.get(provider_order_id)
            if order is None:
                raise ProviderError(f"sandbox order {provider_order_id} not found")
            if order["capture_id"] is None:
                capture_id = f"SANDBOX-CAP-{uuid4().hex[:12].upper()}"
                order["capture_id"] = capture_id
                self.captures[capture_id] = {"amount": order["amount"], "currency": order["currency"], "refunded": 0}
            capture_id = order["capture_id"]

        return {
            "id": provider_order_id,
            "status": "COMPLETED",
            "payer": {"payer_id": "SANDBOXPAYER", "email_address": "buyer@sandbox.local"},
            "purchase_units": [
                {
                    "payments": {
                        "captures": [
                            {
                                "id": capture_id,
                                "status": "COMPLETED",
                                "amount": {
                                    "value": format_amount(order["amount"]),
                                    "currency_code": order["currency"],
                                },
                                "create_time": _utcnow(),
                            }
                        ]
                    }
                }
            ],
        }

    def refund_capture(self, capture_id: str, amount: int, currency: str) -> RefundReceipt:
        with self.lock:
            capture = self.captures.get(capture_id)
            if capture is None:
                raise ProviderRefundFailure(f"sandbox capture {capture_id} not found", capture_id=capture_id)
            if capture["refunded"] + amount > capture["amount"]:
                raise ProviderRefundFailure(
                    "refund amount exceeds captured amount",
                    capture_id=capture_id,
                )
            capture["refunded"] += amount
        refund_id = f"SANDBOX-REF-{uuid4().hex[:12].upper()}"
        return RefundReceipt(
            provider_ref=refund_id,
            status="COMPLETED",
            amount=amount,
            currency=currency,
            raw={"id": refund_id, "status": "COMPLETED", "amount": {"value": format_amount(amount), "currency_code": currency}},
        )
