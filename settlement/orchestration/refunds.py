from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from settlement.core.config import get_settings
from settlement.core.errors import (
    NoCaptureId,
    NothingToRefund,
    OrderAccessDenied,
    ProviderError,
    ProviderRefundFailure,
    RefundNotPending,
    RefundNotSupported,
    RefundRecordingFailure,
)
from settlement.domain.orders.aggregates import OrderStatus
from settlement.domain.orders.store import OrderStore
from settlement.domain.refunds.ledger import RefundLedger, RefundStatus
from settlement.domain.transactions.ledger import TransactionLedger
from settlement.persistence.models import OrderModel, RefundModel, TransactionModel
from settlement.providers.base import PaymentProvider, RefundReceipt

logger = logging.getLogger(__name__)

REFUNDABLE_METHOD = "paypal"
FAILED_REFUND_STATUSES = frozenset({"FAILED", "CANCELLED", "DENIED"})


def is_refundable_method(payment_method: str | None) -> bool:
    return bool(payment_method) and REFUNDABLE_METHOD in payment_method.lower()


@dataclass
class RefundOutcome:
    refund_id: int | None
    order_id: int
    amount: int
    currency: str
    provider_ref: str | None
    remaining: int
    order_status: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "refund_id": self.refund_id,
            "order_id": self.order_id,
            "amount": self.amount,
            "currency": self.currency,
            "provider_ref": self.provider_ref,
            "remaining": self.remaining,
            "order_status": self.order_status,
        }


class RefundOrchestrator:
    """Customer refund requests and admin refund decisions.

    The provider is called before any local write. A provider failure leaves the
    order and its refund rows untouched; a local failure after a successful
    provider refund raises RefundRecordingFailure carrying the provider reference
    so an operator can record it by hand.
    """

    def __init__(self, session: Session, provider: PaymentProvider):
        self.session = session
        self.provider = provider
        self.orders = OrderStore(session)
        self.refunds = RefundLedger(session)
        self.transactions = TransactionLedger(session)

    def remaining_balance(self, order_id: int) -> int:
        order = self.orders.get_order_by_id(order_id)
        return self._remaining(order)

    def _remaining(self, order: OrderModel) -> int:
        return max(0, order.total_cents - self.refunds.sum_completed_by_order(order.id))

    def request_refund(self, order_id: int, user_id: int) -> RefundModel:
        order = self.orders.get_order_by_id(order_id)
        if order.user_id != user_id:
            raise OrderAccessDenied("order belongs to another user", order_id=order_id)
        if not is_refundable_method(order.payment_method):
            raise RefundNotSupported(
                "refunds are only supported for PayPal payments",
                order_id=order_id,
                payment_method=order.payment_method,
            )
        remaining = self._remaining(order)
        if remaining <= 0:
            raise NothingToRefund("order is already fully refunded", order_id=order_id)

        existing = self.refunds.find_requested_by_order_id(order.id)
        if existing is not None:
            return existing

        tx = self.transactions.find_by_order_id(order.id)
        refund = self.refunds.create(
            order_id=order.id,
            amount=remaining,
            currency=tx.currency if tx else get_settings().default_currency,
            status=RefundStatus.REQUESTED,
            transaction_id=tx.id if tx else None,
            user_id=user_id,
            method=order.payment_method,
        )
        self.session.commit()
        logger.info("refund requested: refund_id=%s order_id=%s amount=%s", refund.id, order.id, remaining)
        return refund

    def approve_refund(self, refund_id: int, admin_id: str) -> RefundOutcome:
        refund = self.refunds.get_by_id(refund_id)
        self._ensure_pending(refund)
        # The order row lock serialises approvals; re-read the request under it.
        order = self.orders.get_order_by_id(refund.order_id, for_update=True)
        self.session.refresh(refund)
        self._ensure_pending(refund)
        tx = self._capture_for(order)
        remaining = self._remaining(order)
        if remaining <= 0:
            raise NothingToRefund("order is already fully refunded", order_id=order.id)
        amount = min(refund.amount_cents or remaining, remaining)

        receipt = self._call_provider(tx, amount)
        try:
            self.refunds.update_status(
                refund.id,
                RefundStatus.COMPLETED,
                provider_ref=receipt.provider_ref,
                provider_response=_provider_response(receipt, admin_id),
                amount=receipt.amount,
            )
            self.orders.update_status(order.id, OrderStatus.REFUNDED)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise self._recording_failure(order, receipt) from exc

        logger.info(
            "refund approved: refund_id=%s order_id=%s amount=%s provider_ref=%s admin=%s",
            refund.id,
            order.id,
            receipt.amount,
            receipt.provider_ref,
            admin_id,
        )
        return self._outcome(refund.id, order, receipt)

    def refund_order(self, order_id: int, admin_id: str, amount: int | None = None) -> RefundOutcome:
        """Refund an order directly, completing any open request for it."""
        if amount is not None and amount <= 0:
            raise ValueError("refund amount must be positive")
        order = self.orders.get_order_by_id(order_id, for_update=True)
        if not is_refundable_method(order.payment_method):
            raise RefundNotSupported(
                "refunds are only supported for PayPal payments",
                order_id=order_id,
                payment_method=order.payment_method,
            )
        tx = self._capture_for(order)
        remaining = self._remaining(order)
        if remaining <= 0:
            raise NothingToRefund("order is already fully refunded", order_id=order.id)
        amount = min(amount or remaining, remaining)

        receipt = self._call_provider(tx, amount)
        response = _provider_response(receipt, admin_id)
        try:
            pending = self.refunds.find_requested_by_order_id(order.id)
            updated = self.refunds.complete_requested_by_order_id(
                order.id,
                RefundStatus.COMPLETED,
                provider_ref=receipt.provider_ref,
                provider_response=response,
                amount=receipt.amount,
            )
            if updated and pending is not None:
                refund_id = pending.id
            else:
                row = self.refunds.create(
                    order_id=order.id,
                    amount=receipt.amount,
                    currency=receipt.currency,
                    status=RefundStatus.COMPLETED,
                    transaction_id=tx.id,
                    user_id=order.user_id,
                    method=order.payment_method,
                    provider_ref=receipt.provider_ref,
                    provider_response=response,
                )
                refund_id = row.id
            self.orders.update_status(order.id, OrderStatus.REFUNDED)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise self._recording_failure(order, receipt) from exc

        logger.info(
            "order refunded: order_id=%s amount=%s provider_ref=%s admin=%s",
            order.id,
            receipt.amount,
            receipt.provider_ref,
            admin_id,
        )
        return self._outcome(refund_id, order, receipt)

    def reject_refund(self, refund_id: int, admin_id: str, reason: str | None = None) -> RefundModel:
        refund = self.refunds.get_by_id(refund_id)
        response = json.dumps({"rejected_by": admin_id, "reason": reason or "rejected by admin"})
        self.refunds.update_status(refund.id, RefundStatus.REJECTED, provider_response=response)
        self.session.commit()
        logger.info("refund rejected: refund_id=%s order_id=%s admin=%s", refund.id, refund.order_id, admin_id)
        return refund

    @staticmethod
    def _ensure_pending(refund: RefundModel) -> None:
        if refund.status != RefundStatus.REQUESTED:
            raise RefundNotPending(
                f"refund {refund.id} is already {refund.status}",
                refund_id=refund.id,
                status=refund.status,
            )

    def _capture_for(self, order: OrderModel) -> TransactionModel:
        tx = self.transactions.find_by_order_id(order.id)
        if tx is None or not tx.provider_capture_id:
            raise NoCaptureId("no capture id recorded for order", order_id=order.id)
        return tx

    def _call_provider(self, tx: TransactionModel, amount: int) -> RefundReceipt:
        try:
            receipt = self.provider.refund_capture(tx.provider_capture_id, amount, tx.currency)
        except ProviderRefundFailure:
            raise
        except ProviderError as exc:
            raise ProviderRefundFailure(exc.message, capture_id=tx.provider_capture_id) from exc
        if receipt.status.upper() in FAILED_REFUND_STATUSES:
            raise ProviderRefundFailure(
                f"provider reported refund status {receipt.status}",
                capture_id=tx.provider_capture_id,
                provider_ref=receipt.provider_ref,
            )
        return receipt

    def _recording_failure(self, order: OrderModel, receipt: RefundReceipt) -> RefundRecordingFailure:
        logger.exception(
            "refund succeeded at provider but could not be recorded: order_id=%s provider_ref=%s amount=%s",
            order.id,
            receipt.provider_ref,
            receipt.amount,
        )
        return RefundRecordingFailure(
            "refund succeeded at the provider but could not be recorded locally",
            order_id=order.id,
            provider_ref=receipt.provider_ref,
            amount=receipt.amount,
        )

    def _outcome(self, refund_id: int | None, order: OrderModel, receipt: RefundReceipt) -> RefundOutcome:
        return RefundOutcome(
            refund_id=refund_id,
            order_id=order.id,
            amount=receipt.amount,
            currency=receipt.currency,
            provider_ref=receipt.provider_ref,
            remaining=self._remaining(order),
            order_status=order.status,
        )


def _provider_response(receipt: RefundReceipt, admin_id: str) -> str:
    return json.dumps({"admin_id": admin_id, "status": receipt.status, "response": receipt.raw}, default=str)
