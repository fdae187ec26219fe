from __future__ import annotations

import logging
from typing import Any

import httpx

from settlement.core.config import Settings, get_settings
from settlement.core.errors import ProviderError, ProviderRefundFailure
from settlement.domain.money import format_amount, to_cents
from settlement.providers.base import RefundReceipt

logger = logging.getLogger(__name__)


def _provider_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"http {response.status_code}"
    if isinstance(body, dict):
        details = body.get("details")
        if isinstance(details, list) and details and isinstance(details[0], dict):
            issue = details[0].get("description") or details[0].get("issue")
            if issue:
                return f"{body.get('message') or body.get('name')}: {issue}"
        return str(body.get("message") or body.get("error_description") or body.get("name") or body)
    return str(body)


class PayPalClient:
    provider_name = "paypal"

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self.base_url = self.settings.paypal_base_url.rstrip("/")
        self.timeout = max(1, self.settings.provider_timeout_seconds)

    def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: dict[str, Any] | None = None,
        data: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
        auth: tuple[str, str] | None = None,
    ) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.request(method, url, headers=headers, json=json_body, data=data, auth=auth)
        except httpx.TimeoutException as exc:
            raise ProviderError(f"paypal request timed out after {self.timeout}s", path=path) from exc
        except httpx.HTTPError as exc:
            raise ProviderError(f"paypal request failed: {exc}", path=path) from exc

        if response.status_code >= 400:
            raise ProviderError(
                f"paypal returned {response.status_code}: {_provider_message(response)}",
                path=path,
                status=response.status_code,
            )
        payload = response.json()
        if isinstance(payload, dict):
            return payload
        return {"result": payload}

    def _access_token(self) -> str:
        if not self.settings.paypal_client_id or not self.settings.paypal_client_secret:
            raise ProviderError("paypal credentials are not configured")
        payload = self._request(
            "POST",
            "/v1/oauth2/token",
            data={"grant_type": "client_credentials"},
            auth=(self.settings.paypal_client_id, self.settings.paypal_client_secret),
        )
        token = payload.get("access_token")
        if not token:
            raise ProviderError("paypal token response missing access_token")
        return str(token)

    def _authed(self, method: str, path: str, json_body: dict[str, Any] | None = None) -> dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self._access_token()}",
            "Content-Type": "application/json",
        }
        return self._request(method, path, json_body=json_body, headers=headers)

    def create_order(self, amount: int, currency: str) -> str:
        payload = self._authed(
            "POST",
            "/v2/checkout/orders",
            json_body={
                "intent": "CAPTURE",
                "purchase_units": [{"amount": {"currency_code": currency, "value": format_amount(amount)}}],
            },
        )
        order_id = payload.get("id")
        if not order_id:
            raise ProviderError("paypal create order response missing id")
        logger.info("paypal order created: provider_order_id=%s amount=%s", order_id, amount)
        return str(order_id)

    def capture_order(self, provider_order_id: str) -> dict[str, Any]:
        payload = self._authed("POST", f"/v2/checkout/orders/{provider_order_id}/capture", json_body={})
        logger.info("paypal order captured: provider_order_id=%s status=%s", provider_order_id, payload.get("status"))
        return payload

    def refund_capture(self, capture_id: str, amount: int, currency: str) -> RefundReceipt:
        try:
            payload = self._authed(
                "POST",
                f"/v2/payments/captures/{capture_id}/refund",
                json_body={"amount": {"currency_code": currency, "value": format_amount(amount)}},
            )
        except ProviderError as exc:
            raise ProviderRefundFailure(f"paypal refund failed: {exc.message}", capture_id=capture_id) from exc

        refunded = amount
        amount_block = payload.get("amount")
        if isinstance(amount_block, dict) and amount_block.get("value") is not None:
            refunded = to_cents(amount_block["value"])
            currency = str(amount_block.get("currency_code") or currency)
        return RefundReceipt(
            provider_ref=payload.get("id") or payload.get("refund_id"),
            status=str(payload.get("status") or payload.get("state") or "COMPLETED"),
            amount=refunded,
            currency=currency,
            raw=payload,
        )
