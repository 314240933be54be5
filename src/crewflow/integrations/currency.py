"""
Currency conversion.

Rates are USD-relative ("units per 1 USD"). A ``RateSource`` may supply a
live table; its result is cached for ``CurrencyConfig.cache_ttl`` and any
failure falls back to the static table below.
"""

import asyncio
import logging
import time
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from decimal import Decimal
from typing import Protocol, runtime_checkable

from pydantic import BaseModel

from crewflow.config import CurrencyConfig
from crewflow.money import quantize, to_decimal

logger = logging.getLogger(__name__)

STATIC_RATES: dict[str, Decimal] = {
    "USD": Decimal("1"),
    "EUR": Decimal("0.92"),
    "GBP": Decimal("0.79"),
    "CAD": Decimal("1.36"),
    "AUD": Decimal("1.52"),
    "JPY": Decimal("149.50"),
    "CHF": Decimal("0.88"),
    "CNY": Decimal("7.24"),
    "INR": Decimal("83.12"),
    "MXN": Decimal("17.08"),
    "BRL": Decimal("4.97"),
    "ZAR": Decimal("18.65"),
    "AED": Decimal("3.67"),
    "SAR": Decimal("3.75"),
    "KRW": Decimal("1320.50"),
    "SGD": Decimal("1.34"),
    "HKD": Decimal("7.82"),
    "NOK": Decimal("10.87"),
    "SEK": Decimal("10.52"),
    "DKK": Decimal("6.87"),
    "PLN": Decimal("3.96"),
    "THB": Decimal("35.12"),
    "MYR": Decimal("4.72"),
    "IDR": Decimal("15678.50"),
    "PHP": Decimal("56.23"),
    "TRY": Decimal("32.15"),
    "RUB": Decimal("92.50"),
    "NZD": Decimal("1.67"),
}


@runtime_checkable
class RateSource(Protocol):
    """External rate lookup returning units-per-USD for each currency."""

    async def fetch_rates(self) -> Mapping[str, Decimal]: ...


class ConvertedPrice(BaseModel):
    original_amount: Decimal
    original_currency: str
    converted_amount: Decimal
    converted_currency: str
    conversion_rate: Decimal
    conversion_timestamp: datetime


class CurrencyConverter:
    """
    Converts amounts through USD.

    Example:
        >>> converter = CurrencyConverter()
        >>> await converter.to_usd(Decimal("92"), "EUR")
        Decimal('100.00')
    """

    def __init__(
        self,
        rate_source: RateSource | None = None,
        config: CurrencyConfig | None = None,
        *,
        monotonic: Callable[[], float] = time.monotonic,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._rate_source = rate_source
        self._config = config or CurrencyConfig()
        self._monotonic = monotonic
        self._clock = clock
        self._static = {**STATIC_RATES, **{k.upper(): v for k, v in self._config.overrides.items()}}
        self._cached: dict[str, Decimal] | None = None
        self._cached_at: float = 0.0
        self._lock = asyncio.Lock()

    async def rates(self) -> Mapping[str, Decimal]:
        """Current rate table: cached live rates, else the static table."""
        if self._rate_source is None:
            return self._static

        async with self._lock:
            now = self._monotonic()
            if self._cached is not None and now - self._cached_at < self._config.cache_ttl.total_seconds():
                return self._cached
            try:
                fetched = await self._rate_source.fetch_rates()
            except Exception as e:
                logger.warning(
                    "Rate source failed, using static rates: %s",
                    e,
                    extra={"error": str(e)},
                )
                return self._static
            self._cached = {**self._static, **{k.upper(): to_decimal(v) for k, v in fetched.items()}}
            self._cached_at = now
            logger.debug("Refreshed %d currency rates", len(fetched))
            return self._cached

    async def rate_for(self, currency: str) -> Decimal:
        """Units of ``currency`` per USD; unknown currencies pass through at 1."""
        code = currency.upper()
        table = await self.rates()
        rate = table.get(code)
        if rate is None or rate <= 0:
            logger.warning(
                "Unknown currency %s, converting at rate 1",
                code,
                extra={"currency": code},
            )
            return Decimal("1")
        return rate

    async def to_usd(self, amount: Decimal, currency: str) -> Decimal:
        rate = await self.rate_for(currency)
        return quantize(to_decimal(amount) / rate)

    async def from_usd(self, amount: Decimal, currency: str) -> Decimal:
        rate = await self.rate_for(currency)
        return quantize(to_decimal(amount) * rate)

    async def convert(self, amount: Decimal, from_currency: str, to_currency: str) -> Decimal:
        if from_currency.upper() == to_currency.upper():
            return quantize(amount)
        rate_from = await self.rate_for(from_currency)
        rate_to = await self.rate_for(to_currency)
        return quantize(to_decimal(amount) / rate_from * rate_to)

    async def convert_price(
        self, amount: Decimal, from_currency: str, to_currency: str = "USD"
    ) -> ConvertedPrice:
        """Convert and keep the rate and time used, for locking."""
        rate_from = await self.rate_for(from_currency)
        rate_to = await self.rate_for(to_currency)
        rate = rate_to / rate_from
        return ConvertedPrice(
            original_amount=quantize(amount),
            original_currency=from_currency.upper(),
            converted_amount=quantize(to_decimal(amount) * rate),
            converted_currency=to_currency.upper(),
            conversion_rate=rate,
            conversion_timestamp=self._clock(),
        )

    def clear_cache(self) -> None:
        self._cached = None
        self._cached_at = 0.0


__all__ = ["ConvertedPrice", "CurrencyConverter", "RateSource", "STATIC_RATES"]
