"""Tests for environment-driven API settings."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from api.config import APISettings, PlatformEnv, load_api_settings


class TestRequiredSecrets:
    def test_missing_secrets_rejected(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("API_STRIPE_SECRET_KEY", raising=False)
        monkeypatch.delenv("API_STRIPE_WEBHOOK_SECRET", raising=False)
        with pytest.raises(ValidationError) as exc_info:
            APISettings(_env_file=None)
        fields = {err["loc"][0] for err in exc_info.value.errors()}
        assert fields == {"stripe_secret_key", "stripe_webhook_secret"}

    def test_blank_secret_rejected(self) -> None:
        with pytest.raises(ValidationError, match="must not be blank"):
            APISettings(_env_file=None, stripe_secret_key="sk_test", stripe_webhook_secret="   ")

    def test_secrets_not_exposed_in_repr(self) -> None:
        settings = APISettings(_env_file=None, stripe_secret_key="sk_live_x", stripe_webhook_secret="whsec_y")
        assert "sk_live_x" not in repr(settings)
        assert settings.stripe_secret_key.get_secret_value() == "sk_live_x"


class TestEnvironment:
    def test_loads_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("API_STRIPE_SECRET_KEY", "sk_env")
        monkeypatch.setenv("API_STRIPE_WEBHOOK_SECRET", "whsec_env")
        monkeypatch.setenv("API_WEBHOOK_TOLERANCE_SECONDS", "60")
        monkeypatch.setenv("API_PLATFORM_ENV", "production")
        monkeypatch.setenv("API_OPS_EMAIL", "finance@platform.test")

        settings = load_api_settings()

        assert settings.webhook_tolerance_seconds == 60
        assert settings.platform_env is PlatformEnv.PRODUCTION
        assert settings.ops_email == "finance@platform.test"

    def test_defaults(self) -> None:
        settings = APISettings(_env_file=None, stripe_secret_key="sk", stripe_webhook_secret="whsec")
        assert settings.webhook_tolerance_seconds == 300
        assert settings.intent_invoice_metadata_key == "invoiceId"
        assert settings.storage_retries == 1
        assert settings.payment_retry_window_hours == 48

    def test_non_positive_tolerance_rejected(self) -> None:
        with pytest.raises(ValidationError, match="webhook_tolerance_seconds"):
            APISettings(
                _env_file=None,
                stripe_secret_key="sk",
                stripe_webhook_secret="whsec",
                webhook_tolerance_seconds=0,
            )
