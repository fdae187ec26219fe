from __future__ import annotations

from typing import Any


class SettlementError(Exception):
    """Base for every failure the settlement and refund paths surface."""

    code = "settlement_error"
    status_code = 500

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.code, "detail": self.message}
        if self.context:
            body["context"] = self.context
        return body


class MalformedProviderPayload(SettlementError):
    code = "malformed_provider_payload"
    status_code = 400


class PaymentNotCompleted(SettlementError):
    code = "payment_not_completed"
    status_code = 402


class EmptyCart(SettlementError):
    code = "empty_cart"
    status_code = 400


class InsufficientStock(SettlementError):
    code = "insufficient_stock"
    status_code = 409

    def __init__(self, product_id: int, requested: int):
        super().__init__(
            f"insufficient stock for product_id={product_id}, requested={requested}",
            product_id=product_id,
            requested=requested,
        )
        self.product_id = product_id
        self.requested = requested


class OrderPersistenceFailure(SettlementError):
    code = "order_persistence_failure"
    status_code = 500


class TransactionPersistenceFailure(SettlementError):
    # Logged by the settlement orchestrator, never raised to callers.
    code = "transaction_persistence_failure"
    status_code = 500


class NoCaptureId(SettlementError):
    code = "no_capture_id"
    status_code = 409


class NothingToRefund(SettlementError):
    code = "nothing_to_refund"
    status_code = 409


class ProviderError(SettlementError):
    code = "provider_error"
    status_code = 502


class ProviderRefundFailure(ProviderError):
    code = "provider_refund_failure"
    status_code = 502


class PaymentStatusTimeout(SettlementError):
    code = "payment_status_timeout"
    status_code = 504


class RefundRecordingFailure(SettlementError):
    code = "refund_recording_failure"
    status_code = 500


class OrderNotFound(SettlementError):
    code = "order_not_found"
    status_code = 404


class RefundNotFound(SettlementError):
    code = "refund_not_found"
    status_code = 404


class ProductNotFound(SettlementError):
    code = "product_not_found"
    status_code = 404


class OrderAccessDenied(SettlementError):
    code = "order_access_denied"
    status_code = 403


class RefundNotSupported(SettlementError):
    code = "refund_not_supported"
    status_code = 409


class RefundNotPending(SettlementError):
    code = "refund_not_pending"
    status_code = 409


class OrderDeletionBlocked(SettlementError):
    code = "order_deletion_blocked"
    status_code = 409


class ProductDeletionBlocked(SettlementError):
    code = "product_deletion_blocked"
    status_code = 409


class InvalidOrderStatus(SettlementError):
    code = "invalid_order_status"
    status_code = 400


class PaymentAmountMismatch(SettlementError):
    code = "payment_amount_mismatch"
    status_code = 409
