"""Tests for per-row currency resolution."""

from decimal import Decimal
from typing import Optional

from statement_ingest.models.account import Account
from statement_ingest.models.statement import Statement
from statement_ingest.models.transaction import RawRow
from statement_ingest.processing.currency import CurrencyResolver
from statement_ingest.processing.normalizer import Normalizer


def make_row(
    amount_text: Optional[str] = "12.00",
    currency_hint: Optional[str] = None,
    debit_text: Optional[str] = None,
) -> RawRow:
    return RawRow(
        adapter="csv",
        line_number=2,
        date_text="2025-01-05",
        description="COFFEE",
        amount_text=amount_text,
        debit_text=debit_text,
        currency_hint=currency_hint,
    )


def make_account(currency: str = "USD") -> Account:
    return Account(id="acct", name="Account", default_currency=currency)


class TestCurrencyResolver:
    """Tests for CurrencyResolver."""

    def test_currency_column_wins(self) -> None:
        """Test that an explicit currency column is used."""
        result = CurrencyResolver().resolve(make_row(currency_hint="eur"), make_account())
        assert result.code == "EUR"
        assert result.source == "explicit"

    def test_iso_code_next_to_amount(self) -> None:
        """Test that an ISO code written with the amount is used."""
        result = CurrencyResolver().resolve(make_row("12.00 GBP"), make_account())
        assert result.code == "GBP"
        assert result.source == "explicit"

    def test_unambiguous_symbol(self) -> None:
        """Test that a single-currency symbol is used."""
        result = CurrencyResolver().resolve(make_row("\u00a312.00"), make_account())
        assert result.code == "GBP"

    def test_euro_symbol(self) -> None:
        result = CurrencyResolver().resolve(make_row("-\u20ac12,50"), make_account())
        assert result.code == "EUR"
        assert result.source == "explicit"

    def test_dollar_sign_follows_account(self) -> None:
        """Test that a shared dollar sign resolves to the account's dollar."""
        result = CurrencyResolver().resolve(make_row("$12.00"), make_account("CAD"))
        assert result.code == "CAD"

    def test_dollar_sign_defaults_to_usd(self) -> None:
        """Test that a dollar sign on a non-dollar account reads as USD."""
        result = CurrencyResolver().resolve(make_row("$12.00"), make_account("EUR"))
        assert result.code == "USD"

    def test_locale_formatting_confirms_default(self) -> None:
        """Test that comma-decimal amounts confirm a euro account's default."""
        result = CurrencyResolver().resolve(make_row("1.234,56"), make_account("EUR"))
        assert result.code == "EUR"
        assert result.source == "locale"

    def test_swiss_grouping(self) -> None:
        """Test that apostrophe grouping implies francs."""
        result = CurrencyResolver().resolve(make_row("1'234.50"), make_account("USD"))
        assert result.code == "CHF"
        assert result.source == "locale"

    def test_ambiguous_formatting_falls_back_to_default(self) -> None:
        """Test that formatting shared by many currencies does not pick one."""
        result = CurrencyResolver().resolve(make_row("-12,50"), make_account("USD"))
        assert result.code == "USD"
        assert result.source == "default"

    def test_plain_amount_uses_default(self) -> None:
        result = CurrencyResolver().resolve(make_row("12.00"), make_account("USD"))
        assert result.code == "USD"
        assert result.source == "default"

    def test_unrecognized_currency_column(self) -> None:
        """Test that an unknown currency value falls back to the default."""
        result = CurrencyResolver().resolve(make_row(currency_hint="XYZ"), make_account("USD"))
        assert result.code == "USD"
        assert result.source == "default"

    def test_debit_column_is_checked(self) -> None:
        """Test that split debit/credit cells are inspected too."""
        row = make_row(amount_text=None, debit_text="45.00 EUR")
        result = CurrencyResolver().resolve(row, make_account("USD"))
        assert result.code == "EUR"

    def test_mixed_currency_statement(self) -> None:
        """Test that resolution is per row."""
        resolver = CurrencyResolver()
        account = make_account("USD")
        codes = [
            resolver.resolve(make_row(text), account).code
            for text in ("12.00", "12.00 EUR", "\u00a35.00")
        ]
        assert codes == ["USD", "EUR", "GBP"]

    def test_lower_case_code_agrees_with_normalizer(self) -> None:
        """Test that a lower-case code is both resolved and parsed."""
        row = make_row("24.50 usd")
        account = make_account("EUR")
        resolution = CurrencyResolver().resolve(row, account)
        candidate = Normalizer().normalize(
            row, account, Statement(owner="default", account_id="acct", filename="x.csv"), resolution
        )

        assert resolution.code == "USD"
        assert candidate.amount == Decimal("24.50")
