"""Unit tests for configuration validation."""

from datetime import timedelta
from decimal import Decimal

import pytest

from crewflow.config import CurrencyConfig, MarketplaceConfig, RedisJobQueueConfig, WebhookConfig


class TestMarketplaceConfig:
    """Tests for MarketplaceConfig."""

    def test_defaults(self) -> None:
        """Defaults match the marketplace rules."""
        config = MarketplaceConfig()
        assert config.platform_fee_rate == Decimal("0.10")
        assert config.deposit_ratio == Decimal("0.5")
        assert config.customer_cancel_refund_rate == Decimal("0.75")
        assert config.token_ttl == timedelta(days=7)
        assert config.order_invoice_days_until_due == 7
        assert config.booking_invoice_days_until_due == 30

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"platform_fee_rate": Decimal("1")},
            {"platform_fee_rate": Decimal("-0.1")},
            {"customer_cancel_refund_rate": Decimal("1.5")},
            {"deposit_ratio": Decimal("0.4")},
            {"token_ttl": timedelta(0)},
            {"settlement_currency": "DOLLARS"},
            {"order_invoice_days_until_due": 0},
        ],
    )
    def test_rejects_invalid_values(self, kwargs: dict) -> None:
        """Out-of-range settings raise ValueError."""
        with pytest.raises(ValueError):
            MarketplaceConfig(**kwargs)

    def test_from_env(self) -> None:
        """CREWFLOW_* variables override defaults."""
        config = MarketplaceConfig.from_env(
            {
                "CREWFLOW_PLATFORM_FEE_RATE": "0.15",
                "CREWFLOW_OPS_EMAIL": "alerts@example.com",
                "CREWFLOW_FRONTEND_URL": "https://app.example.com/",
                "CREWFLOW_TOKEN_TTL_DAYS": "3",
            }
        )
        assert config.platform_fee_rate == Decimal("0.15")
        assert config.ops_alert_email == "alerts@example.com"
        assert config.frontend_url == "https://app.example.com"
        assert config.token_ttl == timedelta(days=3)

    def test_from_env_without_variables_keeps_defaults(self) -> None:
        """An empty environment gives the default config."""
        assert MarketplaceConfig.from_env({}) == MarketplaceConfig()


class TestWebhookConfig:
    """Tests for WebhookConfig."""

    def test_requires_secrets(self) -> None:
        """Empty secrets are rejected."""
        with pytest.raises(ValueError):
            WebhookConfig(payment_signing_secret="", tracking_signing_secret="x")
        with pytest.raises(ValueError):
            WebhookConfig(payment_signing_secret="x", tracking_signing_secret="")

    def test_tolerance_must_be_positive(self) -> None:
        """A zero tolerance is rejected."""
        with pytest.raises(ValueError):
            WebhookConfig("a", "b", signature_tolerance=timedelta(0))


class TestOtherConfigs:
    """Tests for RedisJobQueueConfig and CurrencyConfig."""

    def test_redis_url_scheme(self) -> None:
        """Only redis URLs are accepted."""
        with pytest.raises(ValueError):
            RedisJobQueueConfig(redis_url="http://localhost")

    def test_queues_must_differ(self) -> None:
        """Email and notification jobs use separate lists."""
        with pytest.raises(ValueError):
            RedisJobQueueConfig(email_queue="jobs", notification_queue="jobs")

    def test_currency_overrides_must_be_positive(self) -> None:
        """Zero or negative override rates are rejected."""
        with pytest.raises(ValueError):
            CurrencyConfig(overrides={"EUR": Decimal("0")})

    def test_currency_base_is_usd(self) -> None:
        """Rate tables are USD-relative."""
        with pytest.raises(ValueError):
            CurrencyConfig(base_currency="EUR")
