from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

import httpx

from settlement.core.config import Settings, get_settings
from settlement.core.errors import PaymentNotCompleted, PaymentStatusTimeout, ProviderError
from settlement.domain.money import cents_to_amount
from settlement.providers.schemas import PAYMENT_COMPLETED, PAYMENT_FAILED, ProviderConfirmation, decode_nets_query

logger = logging.getLogger(__name__)

QR_REQUEST_PATH = "/api/v1/common/payments/nets-qr/request"
QR_QUERY_PATH = "/api/v1/common/payments/nets-qr/query"


@dataclass
class NetsQrCode:
    txn_retrieval_ref: str
    qr_code: str
    network_status: int | None
    raw: dict[str, Any]

    @property
    def data_url(self) -> str:
        return f"data:image/png;base64,{self.qr_code}"


class NetsClient:
    provider_name = "nets"

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self.base_url = self.settings.nets_base_url.rstrip("/")
        self.timeout = max(1, self.settings.provider_timeout_seconds)

    def _headers(self) -> dict[str, str]:
        if not self.settings.nets_api_key or not self.settings.nets_project_id:
            raise ProviderError("NETS api credentials are not configured")
        return {
            "api-key": self.settings.nets_api_key,
            "project-id": self.settings.nets_project_id,
            "Content-Type": "application/json",
        }

    def _request(self, method: str, path: str, *, json_body: dict[str, Any] | None = None) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.request(method, url, headers=self._headers(), json=json_body)
        except httpx.TimeoutException as exc:
            raise ProviderError(f"NETS request timed out after {self.timeout}s", path=path) from exc
        except httpx.HTTPError as exc:
            raise ProviderError(f"NETS request failed: {exc}", path=path) from exc
        if response.status_code >= 400:
            raise ProviderError(f"NETS returned {response.status_code}: {response.text}", path=path)
        payload = response.json()
        if isinstance(payload, dict):
            return payload
        return {"result": payload}

    def request_qr(self, amount: int) -> NetsQrCode:
        payload = self._request(
            "POST",
            QR_REQUEST_PATH,
            json_body={
                "txn_id": self.settings.nets_txn_id,
                "amt_in_dollars": float(cents_to_amount(amount)),
                "notify_mobile": 0,
            },
        )
        result = payload.get("result")
        data = result.get("data") if isinstance(result, dict) else None
        if not isinstance(data, dict):
            raise ProviderError("NETS response missing result.data")
        if data.get("response_code") != "00" or data.get("txn_status") != 1 or not data.get("qr_code"):
            message = data.get("error_message") or data.get("instruction") or "invalid response code or missing QR code"
            raise ProviderError(
                f"NETS QR generation failed: {message}",
                response_code=data.get("response_code"),
            )
        return NetsQrCode(
            txn_retrieval_ref=str(data.get("txn_retrieval_ref") or ""),
            qr_code=str(data["qr_code"]),
            network_status=data.get("network_status"),
            raw=payload,
        )

    def query_status(self, txn_retrieval_ref: str, frontend_timeout_status: int = 0) -> ProviderConfirmation:
        payload = self._request(
            "POST",
            QR_QUERY_PATH,
            json_body={
                "txn_retrieval_ref": txn_retrieval_ref,
                "frontend_timeout_status": frontend_timeout_status,
            },
        )
        return decode_nets_query(payload, txn_retrieval_ref)

    def wait_for_payment(
        self,
        txn_retrieval_ref: str,
        max_attempts: int | None = None,
        interval_seconds: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> ProviderConfirmation:
        attempts = max_attempts or self.settings.nets_poll_max_attempts
        interval = self.settings.nets_poll_interval_seconds if interval_seconds is None else interval_seconds

        for attempt in range(1, attempts + 1):
            # The last query tells NETS the shopper-side timer has expired.
            timed_out = 1 if attempt == attempts else 0
            confirmation = self.query_status(txn_retrieval_ref, frontend_timeout_status=timed_out)
            if confirmation.status == PAYMENT_COMPLETED:
                logger.info("NETS payment completed: txn_retrieval_ref=%s attempt=%s", txn_retrieval_ref, attempt)
                return confirmation
            if confirmation.status == PAYMENT_FAILED:
                raise PaymentNotCompleted(
                    "NETS reported the payment as failed",
                    txn_retrieval_ref=txn_retrieval_ref,
                    raw_status=confirmation.raw_status,
                )
            if attempt < attempts:
                sleep(interval)

        raise PaymentStatusTimeout(
            f"NETS payment still pending after {attempts} attempts",
            txn_retrieval_ref=txn_retrieval_ref,
        )
