"""Configuration management using Pydantic Settings"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_prefix="BILLPAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Finance backend
    finance_api_base: str = "http://localhost:8000"
    api_token: str | None = None
    csrf_token: str | None = None

    # Service
    service_name: str = "billpay-gateway"
    log_level: str = "INFO"

    # HTTP Client
    http_timeout_seconds: float = 10.0
    send_idempotency_key: bool = True

    # Workflow defaults
    default_country_code: str = "UG"
    default_currency: str = "UGX"
    default_export_format: str = "csv"

    # Client-side caches
    bank_list_cache_seconds: float = 300.0
    bill_cache_seconds: float = 30.0

    # Open workflows untouched for this long are discarded
    session_idle_seconds: float = 1800.0


settings = Settings()
