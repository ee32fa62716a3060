"""
Application configuration.
All settings are loaded from environment variables (or a local .env file).
Use env.example as a reference for the available variables.
"""
from decimal import Decimal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Settings are built once by the entrypoint and handed to create_app();
    nothing in the package reads a module-level instance.
    """

    # ===========================================
    # APPLICATION
    # ===========================================
    app_env: str = "local"
    # Absolute origin used for download links (https://files.example.com). Empty = request origin.
    public_base_url: str = ""

    # ===========================================
    # KEY-VALUE STORE (token ledger)
    # ===========================================
    kv_backend: str = "redis"  # redis, memory
    redis_url: str = "redis://localhost:6379/0"
    redis_socket_timeout: float = 5.0

    # ===========================================
    # OBJECT STORAGE (deliverable files)
    # ===========================================
    storage_base_path: str = "/data/files"

    # ===========================================
    # CATALOG
    # ===========================================
    catalog_kv_key: str = "CATALOG_JSON"
    # Secondary source, read when the KV key is missing or unreadable. Empty = skip.
    catalog_file: str = ""

    # ===========================================
    # TOKENS
    # ===========================================
    token_ttl_seconds: int = 3600  # 60 minutes
    purchase_marker_ttl_seconds: int = 30 * 24 * 3600

    # ===========================================
    # PAYMENTS
    # ===========================================
    payment_provider: str = "none"  # none, paypal
    paypal_client_id: str = ""
    paypal_client_secret: str = ""
    paypal_api_base: str = "https://api-m.paypal.com"
    min_amount: Decimal = Decimal("10.00")
    currency: str = "EUR"

    # ===========================================
    # TELEGRAM NOTIFICATIONS
    # ===========================================
    telegram_bot_token: str = ""  # Optional, notifications are off without it
    telegram_chat_id: str = ""
    notify_timeout: float = 5.0

    # ===========================================
    # HTTP / CIRCUIT BREAKER
    # ===========================================
    http_client_timeout: float = 10.0
    cb_failure_threshold: int = 5
    cb_open_seconds: int = 30

    # ===========================================
    # DIAGNOSTICS
    # ===========================================
    admin_api_key: str | None = None  # Optional, but recommended when debug endpoints are on
    debug_endpoints_enabled: bool = True

    # ===========================================
    # LOGGING
    # ===========================================
    log_level: str = "INFO"
    log_file: str | None = None
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    @field_validator("token_ttl_seconds", "purchase_marker_ttl_seconds")
    @classmethod
    def validate_positive_ttl(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("ttl must be a positive number of seconds")
        return v

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("kv_backend", "payment_provider")
    @classmethod
    def normalize_choice(cls, v: str) -> str:
        return v.strip().lower()

    @model_validator(mode="after")
    def validate_paypal_credentials(self) -> "Settings":
        """PayPal needs both credentials; refuse to start half-configured."""
        if self.payment_provider == "paypal" and not (self.paypal_client_id and self.paypal_client_secret):
            raise ValueError("paypal_client_id and paypal_client_secret are required for payment_provider=paypal")
        if self.payment_provider not in ("none", "paypal"):
            raise ValueError(f"unknown payment_provider: {self.payment_provider}")
        if self.kv_backend not in ("redis", "memory"):
            raise ValueError(f"unknown kv_backend: {self.kv_backend}")
        return self

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_id)

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"
