from __future__ import annotations

from decimal import Decimal
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Tip Ledger API"
    database_url: str = "sqlite:///tip_ledger.db"
    log_level: str = "INFO"
    sqlite_busy_timeout_ms: int = 5000

    paystack_secret_key: str = ""
    paystack_base_url: str = "https://api.paystack.co"
    paystack_timeout_seconds: float = 10.0
    currency: str = "GHS"
    public_app_url: str = "http://localhost:3000"
    enable_webhook: bool = True

    min_tip_amount: Decimal = Decimal("1.00")
    min_withdrawal_amount: Decimal = Decimal("10.00")
    # Share of a gross tip kept by the platform and charged by the processor.
    platform_fee_rate: Decimal = Decimal("0")
    processor_fee_rate: Decimal = Decimal("0")

    event_queue_size: int = 100

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="TIPLEDGER_",
        extra="ignore",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
