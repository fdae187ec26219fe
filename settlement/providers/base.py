from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass
class RefundReceipt:
    provider_ref: str | None
    status: str
    amount: int
    currency: str
    raw: dict[str, Any] = field(default_factory=dict)


class PaymentProvider(Protocol):
    provider_name: str

    def create_order(self, amount: int, currency: str) -> str:
        ...

    def capture_order(self, provider_order_id: str) -> dict[str, Any]:
        ...

    def refund_capture(self, capture_id: str, amount: int, currency: str) -> RefundReceipt:
        ...
