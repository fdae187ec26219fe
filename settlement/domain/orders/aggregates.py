from __future__ import annotations

from dataclasses import dataclass, field


class OrderStatus:
    PENDING = "pending"
    PROCESSING = "processing"
    DELIVERED = "delivered"
    COLLECTED = "collected"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"

    ALL = frozenset({PENDING, PROCESSING, DELIVERED, COLLECTED, REFUNDED, CANCELLED})


@dataclass(frozen=True)
class CartLine:
    product_id: int
    product_name: str
    unit_price: int
    quantity: int

    def __post_init__(self) -> None:
        if self.quantity <= 0:
            raise ValueError(f"cart line quantity must be positive, got {self.quantity}")
        if self.unit_price < 0:
            raise ValueError(f"cart line unit_price must not be negative, got {self.unit_price}")

    @property
    def line_total(self) -> int:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class CartSnapshot:
    user_id: int | None
    lines: tuple[CartLine, ...] = field(default_factory=tuple)

    @classmethod
    def of(cls, user_id: int | None, lines: list[CartLine]) -> "CartSnapshot":
        return cls(user_id=user_id, lines=tuple(lines))

    @property
    def is_empty(self) -> bool:
        return not self.lines

    @property
    def subtotal(self) -> int:
        return sum(line.line_total for line in self.lines)


@dataclass(frozen=True)
class CheckoutDetails:
    address: str = ""
    delivery_type: str = "doorstep"
    delivery_fee: int = 0


def compute_total(lines: tuple[CartLine, ...] | list[CartLine], delivery_fee: int) -> int:
    return sum(line.quantity * line.unit_price for line in lines) + delivery_fee


@dataclass(frozen=True)
class OrderTotals:
    subtotal: int
    delivery_fee: int
    total: int
    refunded: int

    @property
    def remaining(self) -> int:
        return max(self.total - self.refunded, 0)

    def as_dict(self) -> dict[str, int]:
        return {
            "subtotal": self.subtotal,
            "delivery_fee": self.delivery_fee,
            "total": self.total,
            "refunded": self.refunded,
            "remaining": self.remaining,
        }
