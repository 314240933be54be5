"""
Unit tests for CurrencyConverter.

Tests cover:
- Static table conversions through USD
- Unknown currencies passing through at rate 1
- Overrides from CurrencyConfig
- Live rate caching, expiry and fallback on failure
- convert_price() keeping the rate and timestamp
"""

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from crewflow.config import CurrencyConfig
from crewflow.integrations.currency import CurrencyConverter


class CountingRateSource:
    def __init__(self, rates: dict[str, Decimal], fail: bool = False) -> None:
        self.rates = rates
        self.fail = fail
        self.calls = 0

    async def fetch_rates(self) -> dict[str, Decimal]:
        self.calls += 1
        if self.fail:
            raise ConnectionError("rates offline")
        return self.rates


class FakeMonotonic:
    def __init__(self) -> None:
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value


class TestStaticRates:
    """Tests for the built-in table."""

    @pytest.mark.asyncio
    async def test_to_and_from_usd(self) -> None:
        converter = CurrencyConverter()
        assert await converter.to_usd(Decimal("92"), "EUR") == Decimal("100.00")
        assert await converter.from_usd(Decimal("100"), "eur") == Decimal("92.00")
        assert await converter.to_usd(Decimal("1495"), "JPY") == Decimal("10.00")

    @pytest.mark.asyncio
    async def test_same_currency_is_identity(self) -> None:
        """Converting to the same currency only rounds."""
        converter = CurrencyConverter()
        assert await converter.convert(Decimal("10.005"), "GBP", "gbp") == Decimal("10.01")

    @pytest.mark.asyncio
    async def test_unknown_currency_passes_through(self) -> None:
        """Codes missing from the table convert at 1."""
        converter = CurrencyConverter()
        assert await converter.rate_for("XYZ") == Decimal("1")
        assert await converter.to_usd(Decimal("12.34"), "XYZ") == Decimal("12.34")

    @pytest.mark.asyncio
    async def test_overrides(self) -> None:
        """Configured overrides replace table entries."""
        converter = CurrencyConverter(config=CurrencyConfig(overrides={"eur": Decimal("0.50")}))
        assert await converter.to_usd(Decimal("50"), "EUR") == Decimal("100.00")


class TestLiveRates:
    """Tests for a live rate source."""

    @pytest.mark.asyncio
    async def test_cached_until_ttl(self) -> None:
        """Rates are fetched once per TTL window."""
        source = CountingRateSource({"EUR": Decimal("0.80")})
        monotonic = FakeMonotonic()
        converter = CurrencyConverter(
            source, CurrencyConfig(cache_ttl=timedelta(minutes=10)), monotonic=monotonic
        )

        assert await converter.rate_for("EUR") == Decimal("0.80")
        assert await converter.rate_for("GBP") == Decimal("0.79")
        assert source.calls == 1

        monotonic.value += 601
        await converter.rate_for("EUR")
        assert source.calls == 2

        converter.clear_cache()
        await converter.rate_for("EUR")
        assert source.calls == 3

    @pytest.mark.asyncio
    async def test_failure_falls_back_to_static(self) -> None:
        """A failing source yields the static table."""
        converter = CurrencyConverter(CountingRateSource({}, fail=True))
        assert await converter.rate_for("EUR") == Decimal("0.92")


class TestConvertPrice:
    """Tests for convert_price()."""

    @pytest.mark.asyncio
    async def test_keeps_rate_and_time(self) -> None:
        """The result carries the rate used and the converter's clock time."""
        at = datetime(2025, 1, 15, 12, 0, tzinfo=UTC)
        converter = CurrencyConverter(clock=lambda: at)
        price = await converter.convert_price(Decimal("46.00"), "eur")

        assert price.original_currency == "EUR"
        assert price.converted_currency == "USD"
        assert price.converted_amount == Decimal("50.00")
        assert price.conversion_timestamp == at
        assert price.conversion_rate == Decimal("1") / Decimal("0.92")
