"""Settings validation and the JSON log formatter."""
import json
import logging
from decimal import Decimal

import pytest
from pydantic import ValidationError

from fileclaim.core.config import Settings
from fileclaim.core.logging import JsonFormatter, TokenPathFilter, redact_token_paths, token_prefix


class TestSettings:
    def test_defaults(self):
        settings = Settings()
        assert settings.token_ttl_seconds == 3600
        assert settings.min_amount == Decimal("10.00")
        assert settings.currency == "EUR"
        assert settings.catalog_kv_key == "CATALOG_JSON"
        assert settings.payment_provider == "none"

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("TOKEN_TTL_SECONDS", "600")
        monkeypatch.setenv("MIN_AMOUNT", "4.99")
        monkeypatch.setenv("CURRENCY", " usd ")
        settings = Settings()
        assert settings.token_ttl_seconds == 600
        assert settings.min_amount == Decimal("4.99")
        assert settings.currency == "USD"

    def test_ttl_must_be_positive(self):
        with pytest.raises(ValidationError):
            Settings(token_ttl_seconds=0)

    def test_paypal_requires_credentials(self):
        with pytest.raises(ValidationError):
            Settings(payment_provider="paypal")
        settings = Settings(payment_provider="PayPal", paypal_client_id="id", paypal_client_secret="s")
        assert settings.payment_provider == "paypal"

    def test_unknown_backend(self):
        with pytest.raises(ValidationError):
            Settings(kv_backend="memcached")
        with pytest.raises(ValidationError):
            Settings(payment_provider="stripe")

    def test_telegram_enabled_needs_both(self):
        assert Settings(telegram_bot_token="t").telegram_enabled is False
        assert Settings(telegram_bot_token="t", telegram_chat_id="1").telegram_enabled is True


class TestJsonFormatter:
    def test_extra_fields(self):
        record = logging.LogRecord("fileclaim", logging.INFO, __file__, 1, "token_minted", None, None)
        record.transaction_ref = "TX1"
        record.token_prefix = "abcdefgh"
        record.unrelated = "dropped"
        payload = json.loads(JsonFormatter().format(record))

        assert payload["message"] == "token_minted"
        assert payload["level"] == "INFO"
        assert payload["transaction_ref"] == "TX1"
        assert payload["token_prefix"] == "abcdefgh"
        assert "unrelated" not in payload

    def test_token_prefix(self):
        assert token_prefix("abcdefghijklmnop") == "abcdefgh"
        assert token_prefix("") == ""


class TestTokenRedaction:
    def test_paths_shortened(self):
        assert redact_token_paths("GET /file/abcdefghijklmnop HTTP/1.1") == "GET /file/abcdefgh… HTTP/1.1"
        assert redact_token_paths("https://x.io/download/abcdefghijklmnop?json=1") == "https://x.io/download/abcdefgh…?json=1"
        assert redact_token_paths("/claim?ref=TX1") == "/claim?ref=TX1"

    def test_access_log_args(self):
        record = logging.LogRecord(
            "uvicorn.access", logging.INFO, __file__, 1,
            '%s - "%s %s HTTP/%s" %d',
            ("127.0.0.1:5000", "GET", "/file/abcdefghijklmnop", "1.1", 200),
            None,
        )
        assert TokenPathFilter().filter(record) is True
        assert "abcdefghijklmnop" not in record.getMessage()
        assert "/file/abcdefgh…" in record.getMessage()
