from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_STOREFRONT_API_KEY = "settle-storefront-dev-key"
DEFAULT_ADMIN_API_KEY = "settle-admin-dev-key"
DEFAULT_SYSTEM_API_KEY = "settle-system-dev-key"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_prefix="SETTLE_", extra="ignore")

    app_name: str = "Supermarket Settlement Service"
    env: str = "dev"
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    log_level: str = "INFO"

    database_url: str = "sqlite+pysqlite:///./settlement.db"

    default_currency: str = "SGD"

    # Payment backend: sandbox | paypal
    payment_backend: str = "sandbox"
    provider_timeout_seconds: int = 30

    paypal_base_url: str = "https://api-m.sandbox.paypal.com"
    paypal_client_id: str | None = None
    paypal_client_secret: str | None = None

    nets_base_url: str = "https://sandbox.nets.openapipaas.com"
    nets_api_key: str | None = None
    nets_project_id: str | None = None
    nets_txn_id: str = "sandbox_nets|m|8ff8e5b6-d43e-4786-8ac5-7accf8c5bd9b"
    nets_poll_max_attempts: int = Field(default=60, ge=1)
    nets_poll_interval_seconds: float = Field(default=5.0, ge=0)

    auth_enabled: bool = True
    storefront_api_key: str = DEFAULT_STOREFRONT_API_KEY
    admin_api_key: str = DEFAULT_ADMIN_API_KEY
    system_api_key: str = DEFAULT_SYSTEM_API_KEY
    admin_actor_id: str = "admin-001"
    system_actor_id: str = "system-001"

    def model_post_init(self, __context) -> None:
        if self.env.lower() == "dev":
            return

        insecure_items: list[str] = []
        if self.storefront_api_key == DEFAULT_STOREFRONT_API_KEY:
            insecure_items.append("SETTLE_STOREFRONT_API_KEY")
        if self.admin_api_key == DEFAULT_ADMIN_API_KEY:
            insecure_items.append("SETTLE_ADMIN_API_KEY")
        if self.system_api_key == DEFAULT_SYSTEM_API_KEY:
            insecure_items.append("SETTLE_SYSTEM_API_KEY")

        if insecure_items:
            raise ValueError(
                "insecure default api keys are not allowed outside dev mode; set env vars: "
                + ", ".join(sorted(insecure_items))
            )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
