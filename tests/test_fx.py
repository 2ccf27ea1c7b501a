"""Tests for FX rate lookup and conversion."""

from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from statement_ingest.processing.fx import StaticFxRates, convert_amount

ON = date(2025, 1, 5)


class TestStaticFxRates:
    """Tests for StaticFxRates."""

    def test_configured_direction(self) -> None:
        rates = StaticFxRates({("usd", "eur"): Decimal("0.9")})
        assert rates.rate("USD", "EUR", ON) == Decimal("0.9")

    def test_inverse_direction(self) -> None:
        rates = StaticFxRates({("EUR", "USD"): Decimal("2")})
        assert rates.rate("USD", "EUR", ON) == Decimal("0.5")

    def test_same_currency(self) -> None:
        assert StaticFxRates().rate("GBP", "gbp", ON) == Decimal(1)

    def test_unknown_pair(self) -> None:
        assert StaticFxRates().rate("GBP", "JPY", ON) is None

    def test_rejects_non_positive_rate(self) -> None:
        with pytest.raises(ValueError):
            StaticFxRates({("USD", "EUR"): Decimal("0")})


class TestConvertAmount:
    """Tests for convert_amount."""

    def test_rounds_half_up(self) -> None:
        rates = StaticFxRates({("USD", "EUR"): Decimal("0.5")})
        assert convert_amount(Decimal("-0.05"), "USD", "EUR", ON, rates) == Decimal("-0.03")

    def test_same_currency_without_provider(self) -> None:
        assert convert_amount(Decimal("10.00"), "USD", "usd", ON) == Decimal("10.00")

    def test_no_provider(self) -> None:
        assert convert_amount(Decimal("10.00"), "USD", "EUR", ON) is None

    def test_provider_failure_is_not_raised(self) -> None:
        """Test that a failing rate source yields None instead of an error."""
        provider = MagicMock()
        provider.rate.side_effect = ConnectionError("rates service down")
        assert convert_amount(Decimal("10.00"), "USD", "EUR", ON, provider) is None

    def test_decimal_places(self) -> None:
        rates = StaticFxRates({("USD", "JPY"): Decimal("150.123")})
        assert convert_amount(Decimal("1.00"), "USD", "JPY", ON, rates, 0) == Decimal("150")
