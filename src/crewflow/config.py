"""
Configuration for the crewflow workflow engine.

All settings are frozen dataclasses validated in ``__post_init__``. Nothing
here reads the environment implicitly; ``MarketplaceConfig.from_env`` is an
explicit opt-in for hosts that configure through environment variables.

Example:
    >>> config = MarketplaceConfig(platform_fee_rate=Decimal("0.10"))
    >>> webhooks = WebhookConfig(
    ...     payment_signing_secret="whsec_...",
    ...     tracking_signing_secret="trk_...",
    ... )
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal

DEFAULT_PLATFORM_FEE_RATE = Decimal("0.10")
DEFAULT_TOKEN_TTL = timedelta(days=7)


@dataclass(frozen=True)
class MarketplaceConfig:
    """
    Business rules shared by every workflow.

    Attributes:
        platform_fee_rate: Share of transaction value kept by the marketplace.
        settlement_currency: Currency used for fees, invoices and refunds.
        token_ttl: Lifetime of emailed confirmation tokens.
        deposit_ratio: Share of a booking total collected as deposit.
        customer_cancel_refund_rate: Share refunded when a customer cancels
            a paid order before anything shipped. The remainder goes to the
            supplying businesses as a handling fee.
        ops_alert_email: Recipient of supplier-cancellation alerts.
        order_invoice_days_until_due: Payment terms for order invoices.
        booking_invoice_days_until_due: Payment terms for booking invoices.
        frontend_url: Base URL used to build links in emails.
    """

    platform_fee_rate: Decimal = DEFAULT_PLATFORM_FEE_RATE
    settlement_currency: str = "USD"
    token_ttl: timedelta = DEFAULT_TOKEN_TTL
    deposit_ratio: Decimal = Decimal("0.5")
    customer_cancel_refund_rate: Decimal = Decimal("0.75")
    ops_alert_email: str = "ops@example.com"
    order_invoice_days_until_due: int = 7
    booking_invoice_days_until_due: int = 30
    frontend_url: str = "http://localhost:3000"

    def __post_init__(self) -> None:
        if not (Decimal("0") <= self.platform_fee_rate < Decimal("1")):
            raise ValueError(
                f"platform_fee_rate must be in [0, 1), got {self.platform_fee_rate}"
            )
        if not (Decimal("0") <= self.customer_cancel_refund_rate <= Decimal("1")):
            raise ValueError(
                "customer_cancel_refund_rate must be in [0, 1], "
                f"got {self.customer_cancel_refund_rate}"
            )
        if self.deposit_ratio != Decimal("0.5"):
            # Deposit invoices are built as a full invoice plus a half-price
            # discount line, which only balances for an even split.
            raise ValueError(f"deposit_ratio must be 0.5, got {self.deposit_ratio}")
        if self.token_ttl <= timedelta(0):
            raise ValueError(f"token_ttl must be positive, got {self.token_ttl}")
        if len(self.settlement_currency) != 3:
            raise ValueError(
                f"settlement_currency must be an ISO 4217 code, got {self.settlement_currency!r}"
            )
        if self.order_invoice_days_until_due < 1 or self.booking_invoice_days_until_due < 1:
            raise ValueError("invoice days_until_due must be at least 1")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "MarketplaceConfig":
        """
        Build a config from ``CREWFLOW_*`` environment variables.

        Unset variables keep their defaults.
        """
        env = os.environ if environ is None else environ
        kwargs: dict[str, object] = {}
        if "CREWFLOW_PLATFORM_FEE_RATE" in env:
            kwargs["platform_fee_rate"] = Decimal(env["CREWFLOW_PLATFORM_FEE_RATE"])
        if "CREWFLOW_OPS_EMAIL" in env:
            kwargs["ops_alert_email"] = env["CREWFLOW_OPS_EMAIL"]
        if "CREWFLOW_FRONTEND_URL" in env:
            kwargs["frontend_url"] = env["CREWFLOW_FRONTEND_URL"].rstrip("/")
        if "CREWFLOW_TOKEN_TTL_DAYS" in env:
            kwargs["token_ttl"] = timedelta(days=int(env["CREWFLOW_TOKEN_TTL_DAYS"]))
        return cls(**kwargs)  # type: ignore[arg-type]


@dataclass(frozen=True)
class WebhookConfig:
    """
    Secrets used to authenticate inbound webhooks.

    Attributes:
        payment_signing_secret: Shared secret for payment gateway events.
        tracking_signing_secret: Shared secret for carrier tracking events.
        signature_tolerance: Maximum age of a signed payment event.
    """

    payment_signing_secret: str
    tracking_signing_secret: str
    signature_tolerance: timedelta = timedelta(minutes=5)

    def __post_init__(self) -> None:
        if not self.payment_signing_secret:
            raise ValueError("payment_signing_secret must not be empty")
        if not self.tracking_signing_secret:
            raise ValueError("tracking_signing_secret must not be empty")
        if self.signature_tolerance <= timedelta(0):
            raise ValueError(
                f"signature_tolerance must be positive, got {self.signature_tolerance}"
            )


@dataclass(frozen=True)
class RedisJobQueueConfig:
    """Configuration for the Redis-backed job queue.

    Attributes:
        redis_url: Redis connection URL (e.g., "redis://localhost:6379")
        email_queue: List key receiving email jobs
        notification_queue: List key receiving notification jobs
        socket_timeout: Socket timeout in seconds
        socket_connect_timeout: Socket connection timeout in seconds
        enable_tracing: Enable OpenTelemetry tracing if available
    """

    redis_url: str = "redis://localhost:6379"
    email_queue: str = "email-queue"
    notification_queue: str = "notification-queue"
    socket_timeout: float = 5.0
    socket_connect_timeout: float = 5.0
    enable_tracing: bool = True

    def __post_init__(self) -> None:
        if not self.redis_url.startswith(("redis://", "rediss://", "unix://")):
            raise ValueError(f"redis_url must be a redis:// URL, got {self.redis_url!r}")
        if self.email_queue == self.notification_queue:
            raise ValueError("email_queue and notification_queue must differ")
        if self.socket_timeout <= 0 or self.socket_connect_timeout <= 0:
            raise ValueError("socket timeouts must be positive")


@dataclass(frozen=True)
class CurrencyConfig:
    """Configuration for currency conversion.

    Attributes:
        cache_ttl: How long a fetched rate table is reused.
        base_currency: Currency all rates are quoted against.
        overrides: Static rates that replace entries of the built-in table.
    """

    cache_ttl: timedelta = timedelta(hours=1)
    base_currency: str = "USD"
    overrides: Mapping[str, Decimal] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.cache_ttl < timedelta(0):
            raise ValueError(f"cache_ttl must not be negative, got {self.cache_ttl}")
        if self.base_currency != "USD":
            raise ValueError("rate tables are USD-relative; base_currency must be USD")
        for code, rate in self.overrides.items():
            if rate <= 0:
                raise ValueError(f"override rate for {code} must be positive, got {rate}")


__all__ = [
    "CurrencyConfig",
    "DEFAULT_PLATFORM_FEE_RATE",
    "DEFAULT_TOKEN_TTL",
    "MarketplaceConfig",
    "RedisJobQueueConfig",
    "WebhookConfig",
]
