from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from settlement.core.errors import MalformedProviderPayload
from settlement.domain.money import to_cents

PAYMENT_COMPLETED = "completed"
PAYMENT_PENDING = "pending"
PAYMENT_FAILED = "failed"


class ProviderConfirmation(BaseModel):
    """A provider's statement that a payment happened, decoded once at the boundary."""

    provider: Literal["paypal", "nets", "sandbox"]
    provider_order_id: str | None = None
    provider_capture_id: str = Field(min_length=1)
    status: str
    raw_status: str | None = None
    payer_id: str | None = None
    payer_email: str | None = None
    amount: int | None = Field(default=None, ge=0, description="int cents")
    currency: str | None = None
    captured_at: datetime | None = None

    @field_validator("captured_at")
    @classmethod
    def _to_utc(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @property
    def is_completed(self) -> bool:
        return self.status == PAYMENT_COMPLETED

    @property
    def payment_method(self) -> str:
        return "NETS" if self.provider == "nets" else "PayPal"


class _PayPalAmount(BaseModel):
    value: str
    currency_code: str = Field(min_length=3, max_length=3)


class _PayPalCapture(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    status: str
    amount: _PayPalAmount | None = None
    create_time: datetime | None = None


class _PayPalPayments(BaseModel):
    model_config = ConfigDict(extra="ignore")

    captures: list[_PayPalCapture] = Field(min_length=1)


class _PayPalPurchaseUnit(BaseModel):
    model_config = ConfigDict(extra="ignore")

    payments: _PayPalPayments


class _PayPalPayer(BaseModel):
    model_config = ConfigDict(extra="ignore")

    payer_id: str | None = None
    email_address: str | None = None


class PayPalCapturePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    status: str | None = None
    payer: _PayPalPayer | None = None
    purchase_units: list[_PayPalPurchaseUnit] = Field(min_length=1)


class _NetsQueryData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    response_code: str
    txn_status: int
    txn_retrieval_ref: str | None = None
    network_status: int | None = None


class _NetsQueryResult(BaseModel):
    data: _NetsQueryData


class NetsQueryPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    result: _NetsQueryResult


def _normalize_status(raw: str | None) -> str:
    if raw is None:
        return PAYMENT_PENDING
    value = raw.strip().lower()
    if value == "completed":
        return PAYMENT_COMPLETED
    if value in {"declined", "failed", "voided", "denied"}:
        return PAYMENT_FAILED
    return value


def _errors(exc: ValidationError) -> list[dict[str, Any]]:
    return [{"loc": list(err["loc"]), "msg": err["msg"]} for err in exc.errors()]


def decode_paypal_capture(payload: Any, provider: str = "paypal") -> ProviderConfirmation:
    if not isinstance(payload, dict):
        raise MalformedProviderPayload("paypal capture payload must be a JSON object")
    try:
        parsed = PayPalCapturePayload.model_validate(payload)
    except ValidationError as exc:
        raise MalformedProviderPayload("malformed paypal capture payload", errors=_errors(exc)) from exc

    capture = parsed.purchase_units[0].payments.captures[0]
    raw_status = parsed.status or capture.status
    amount = None
    currency = None
    if capture.amount is not None:
        try:
            amount = to_cents(capture.amount.value)
        except ValueError as exc:
            raise MalformedProviderPayload(
                f"malformed capture amount: {capture.amount.value!r}"
            ) from exc
        currency = capture.amount.currency_code.upper()

    return ProviderConfirmation(
        provider=provider,
        provider_order_id=parsed.id,
        provider_capture_id=capture.id,
        status=_normalize_status(raw_status),
        raw_status=raw_status,
        payer_id=parsed.payer.payer_id if parsed.payer else None,
        payer_email=parsed.payer.email_address if parsed.payer else None,
        amount=amount,
        currency=currency,
        captured_at=capture.create_time,
    )


def nets_status(response_code: str, txn_status: int) -> str:
    if response_code == "00" and txn_status == 1:
        return PAYMENT_COMPLETED
    if txn_status == 2:
        return PAYMENT_FAILED
    return PAYMENT_PENDING


def decode_nets_query(payload: Any, txn_retrieval_ref: str) -> ProviderConfirmation:
    if not isinstance(payload, dict):
        raise MalformedProviderPayload("nets query payload must be a JSON object")
    try:
        parsed = NetsQueryPayload.model_validate(payload)
    except ValidationError as exc:
        raise MalformedProviderPayload("malformed nets query payload", errors=_errors(exc)) from exc

    data = parsed.result.data
    ref = data.txn_retrieval_ref or txn_retrieval_ref
    if not ref:
        raise MalformedProviderPayload("nets query payload has no txn_retrieval_ref")
    return ProviderConfirmation(
        provider="nets",
        provider_order_id=ref,
        provider_capture_id=ref,
        status=nets_status(data.response_code, data.txn_status),
        raw_status=f"{data.response_code}/{data.txn_status}",
    )
