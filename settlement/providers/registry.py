from __future__ import annotations

from functools import lru_cache

from settlement.core.config import Settings, get_settings
from settlement.providers.base import PaymentProvider
from settlement.providers.nets import NetsClient
from settlement.providers.paypal import PayPalClient
from settlement.providers.sandbox import SandboxPaymentProvider


def build_payment_provider(settings: Settings | None = None) -> PaymentProvider:
    cfg = settings or get_settings()
    if cfg.payment_backend == "paypal":
        return PayPalClient(cfg)
    if cfg.payment_backend == "sandbox":
        return SandboxPaymentProvider()
    raise ValueError(f"unsupported payment backend: {cfg.payment_backend}")


@lru_cache(maxsize=1)
def get_payment_provider() -> PaymentProvider:
    # Cached so the sandbox keeps its orders/captures between requests.
    return build_payment_provider()


def get_nets_client() -> NetsClient:
    return NetsClient(get_settings())
