from datetime import timedelta
from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./cashback.db"

    # Application URLs
    api_base_url: str = "http://localhost:8000"

    # Shopify Admin API
    shopify_api_version: str = "2025-10"
    shopify_api_secret: str = ""
    shopify_timeout_seconds: float = 10.0

    # Reward intake
    reward_cashback_percent: Decimal = Decimal("5")
    reward_dispatch_delay_minutes: int = 30 * 24 * 60
    reward_protection_attribute: str = "_protection_enabled"
    reward_amount_attribute: str = "_cashback_amount"
    reward_protection_keywords: list[str] = Field(
        default_factory=lambda: ["order protection", "protection", "checkout+", "order-protection"]
    )
    reward_default_customer_name: str = "Valued Customer"

    @field_validator("reward_protection_keywords", mode="before")
    @classmethod
    def _parse_keyword_list(cls, value: object) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [item.strip().lower() for item in value.split(",") if item.strip()]
        if isinstance(value, (list, tuple, set)):
            return [str(item).strip().lower() for item in value if str(item).strip()]
        return []

    # Reward issuance
    reward_code_prefix: str = "CASHBACK"
    reward_code_length: int = 8
    reward_code_expiry_days: int = 365
    reward_vip_tag: str = "VIP-CASHBACK"
    reward_currency: str = "USD"

    # Reward dispatch
    reward_dispatch_scheduler_enabled: bool = False
    reward_dispatch_cron: str | None = None
    reward_dispatch_timezone: str = "UTC"
    reward_dispatch_batch_size: int = 50
    reward_dispatch_max_attempts: int = 30
    reward_dispatch_tenant_concurrency: int = 4
    reward_claim_lease_seconds: int = 300
    reward_dispatch_trigger_label: str = "scheduler"

    # Internal API security
    reward_dispatch_api_key: str = ""

    # Email / notification settings
    email_sender: str = "Cashback Rewards <rewards@example.com>"
    email_timeout_seconds: float = 10.0
    resend_api_key: str | None = None
    resend_api_url: str = "https://api.resend.com/emails"
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_username: str | None = None
    smtp_password: str | None = None
    smtp_use_tls: bool = True

    @property
    def reward_dispatch_delay(self) -> timedelta:
        return timedelta(minutes=self.reward_dispatch_delay_minutes)

    @property
    def resolved_reward_dispatch_cron(self) -> str:
        """Cron expression for the dispatch sweep, daily in production and every minute elsewhere."""

        if self.reward_dispatch_cron:
            return self.reward_dispatch_cron
        if self.environment == "production":
            return "0 10 * * *"
        return "* * * * *"


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
