from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from settlement.core.config import get_settings
from settlement.core.errors import (
    EmptyCart,
    InsufficientStock,
    OrderPersistenceFailure,
    PaymentAmountMismatch,
    PaymentNotCompleted,
    TransactionPersistenceFailure,
)
from settlement.domain.cart.store import CartStore
from settlement.domain.inventory.ledger import InventoryLedger
from settlement.domain.orders.aggregates import CartSnapshot, CheckoutDetails, compute_total
from settlement.domain.orders.invoice import invoice_ref
from settlement.domain.orders.store import OrderStore
from settlement.domain.transactions.ledger import TransactionLedger
from settlement.persistence.models import OrderModel
from settlement.providers.schemas import ProviderConfirmation

logger = logging.getLogger(__name__)


@dataclass
class SettlementResult:
    order_id: int
    total: int
    invoice_ref: str
    duplicate: bool = False
    transaction_id: int | None = None
    cart_cleared: bool = False
    transitions: list[dict[str, Any]] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "order_id": self.order_id,
            "total": self.total,
            "invoice_ref": self.invoice_ref,
            "duplicate": self.duplicate,
            "transaction_id": self.transaction_id,
            "cart_cleared": self.cart_cleared,
            "transitions": self.transitions,
        }


class SettlementOrchestrator:
    """Turns a provider payment confirmation plus a cart snapshot into an order.

    States: validate -> resolve_cart -> reserve -> create_order ->
    record_transaction -> clear_cart -> completed, or failed from any of the
    first four. Stock reservation and order creation share one database
    transaction; the orchestrator owns the commit boundaries. A confirmation
    whose captured amount differs from the cart total is refused before any
    stock moves.

    The order is authoritative and the payment transaction is an audit record:
    once the order is committed, a failure to record the transaction or to
    clear the cart is logged and settlement still succeeds.
    """

    def __init__(self, session: Session, cart_store: CartStore | None = None):
        self.session = session
        self.inventory = InventoryLedger(session)
        self.orders = OrderStore(session)
        self.transactions = TransactionLedger(session)
        self.cart_store = cart_store

    def settle(
        self,
        confirmation: ProviderConfirmation,
        cart: CartSnapshot,
        checkout: CheckoutDetails | None = None,
    ) -> SettlementResult:
        checkout = checkout or CheckoutDetails()
        capture_id = confirmation.provider_capture_id
        current_state: str | None = None
        transitions: list[dict[str, Any]] = []

        def transition(to_state: str, reason: str | None = None) -> None:
            nonlocal current_state
            transitions.append(
                {
                    "from": current_state,
                    "to": to_state,
                    "reason": reason,
                    "at": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
                }
            )
            logger.info(
                "settlement %s: %s -> %s%s",
                capture_id,
                current_state,
                to_state,
                f" ({reason})" if reason else "",
            )
            current_state = to_state

        transition("validate")
        if not confirmation.is_completed:
            transition("failed", reason=f"provider status {confirmation.raw_status or confirmation.status}")
            raise PaymentNotCompleted(
                "payment not completed",
                provider=confirmation.provider,
                status=confirmation.raw_status or confirmation.status,
            )

        existing = self.orders.find_by_payment_ref(capture_id)
        if existing is not None:
            transition("completed", reason="duplicate confirmation")
            return self._duplicate(existing, transitions)

        transition("resolve_cart")
        if cart.is_empty:
            transition("failed", reason="cart is empty")
            raise EmptyCart("cart is empty")

        total = compute_total(cart.lines, checkout.delivery_fee)
        if confirmation.amount is not None and confirmation.amount != total:
            transition("failed", reason=f"captured {confirmation.amount} != total {total}")
            raise PaymentAmountMismatch(
                "captured amount does not match the cart total",
                capture_id=capture_id,
                captured=confirmation.amount,
                total=total,
            )

        transition("reserve")
        try:
            self.inventory.reserve(cart.lines)
            transition("create_order")
            order = self.orders.create_order(
                user_id=cart.user_id,
                address=checkout.address,
                lines=cart.lines,
                total=total,
                delivery_type=checkout.delivery_type,
                delivery_fee=checkout.delivery_fee,
                payment_method=confirmation.payment_method,
                payment_ref=capture_id,
            )
            self.session.commit()
        except InsufficientStock as exc:
            self.session.rollback()
            transition("failed", reason=exc.message)
            raise
        except IntegrityError as exc:
            self.session.rollback()
            # A concurrent delivery of the same confirmation won the unique payment_ref.
            existing = self.orders.find_by_payment_ref(capture_id)
            if existing is not None:
                transition("completed", reason="duplicate confirmation")
                return self._duplicate(existing, transitions)
            transition("failed", reason="order persistence failure")
            raise OrderPersistenceFailure("failed to create local order", capture_id=capture_id) from exc
        except SQLAlchemyError as exc:
            self.session.rollback()
            transition("failed", reason="order persistence failure")
            raise OrderPersistenceFailure("failed to create local order", capture_id=capture_id) from exc
        except Exception as exc:
            self.session.rollback()
            transition("failed", reason=str(exc))
            raise

        transition("record_transaction")
        transaction_id = self._record_transaction(order, confirmation, total)

        transition("clear_cart")
        cart_cleared = self._clear_cart(cart)

        transition("completed")
        return SettlementResult(
            order_id=order.id,
            total=total,
            invoice_ref=invoice_ref(order.id),
            transaction_id=transaction_id,
            cart_cleared=cart_cleared,
            transitions=transitions,
        )

    def _duplicate(self, order: OrderModel, transitions: list[dict[str, Any]]) -> SettlementResult:
        tx = self.transactions.find_by_order_id(order.id)
        return SettlementResult(
            order_id=order.id,
            total=order.total_cents,
            invoice_ref=invoice_ref(order.id),
            duplicate=True,
            transaction_id=tx.id if tx else None,
            transitions=transitions,
        )

    def _record_transaction(self, order: OrderModel, confirmation: ProviderConfirmation, total: int) -> int | None:
        amount = confirmation.amount if confirmation.amount is not None else total
        try:
            row = self.transactions.create(
                local_order_id=order.id,
                provider=confirmation.provider,
                provider_order_id=confirmation.provider_order_id,
                provider_capture_id=confirmation.provider_capture_id,
                payer_id=confirmation.payer_id,
                payer_email=confirmation.payer_email,
                amount=amount,
                currency=confirmation.currency or get_settings().default_currency,
                status=confirmation.raw_status or confirmation.status,
                captured_at=confirmation.captured_at,
            )
            self.session.commit()
            return row.id
        except SQLAlchemyError:
            self.session.rollback()
            failure = TransactionPersistenceFailure(
                "failed to record payment transaction",
                order_id=order.id,
                capture_id=confirmation.provider_capture_id,
            )
            logger.exception("%s: %s", failure.message, failure.context)
            return None

    def _clear_cart(self, cart: CartSnapshot) -> bool:
        # Guest carts live with the caller and are discarded there.
        if cart.user_id is None or self.cart_store is None:
            return False
        try:
            self.cart_store.clear_cart(cart.user_id)
            self.session.commit()
            return True
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("failed to clear cart for user_id=%s after settlement", cart.user_id)
            return False
