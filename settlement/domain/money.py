from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation


def to_cents(value: str | int | float | Decimal) -> int:
    """Convert a decimal amount such as ``"28.00"`` to integer cents.

    Floats are routed through ``str`` so ``0.1`` becomes 10 cents rather than
    whatever its binary expansion rounds to.
    """
    if isinstance(value, bool):
        raise ValueError("amount must be numeric")
    try:
        amount = Decimal(str(value)) if isinstance(value, float) else Decimal(value)
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(f"invalid amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"invalid amount: {value!r}")
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def cents_to_amount(cents: int) -> Decimal:
    return Decimal(cents) / Decimal(100)


def format_amount(cents: int) -> str:
    return f"{cents_to_amount(cents):.2f}"
