"""Tests for row normalization and merchant guessing."""

from datetime import date
from decimal import Decimal
from typing import Optional

import pytest

from statement_ingest.models.account import Account
from statement_ingest.models.statement import Statement
from statement_ingest.models.transaction import RawRow
from statement_ingest.parsers.base import RowExtractionFailed
from statement_ingest.processing.currency import CurrencyResolution
from statement_ingest.processing.normalizer import Normalizer, guess_merchant

USD = CurrencyResolution("USD", "default")


def make_row(
    amount_text: Optional[str] = "-24.50",
    date_text: str = "2025-01-05",
    description: str = "UBER EATS 123",
    debit_text: Optional[str] = None,
    credit_text: Optional[str] = None,
    balance_text: Optional[str] = None,
) -> RawRow:
    return RawRow(
        adapter="csv",
        line_number=7,
        date_text=date_text,
        description=description,
        amount_text=amount_text,
        debit_text=debit_text,
        credit_text=credit_text,
        balance_text=balance_text,
    )


@pytest.fixture
def statement(account: Account) -> Statement:
    return Statement(owner=account.owner, account_id=account.id, filename="jan.csv")


class TestGuessMerchant:
    """Tests for guess_merchant."""

    @pytest.mark.parametrize(
        "description,expected",
        [
            ("UBER EATS 123", "UBER EATS"),
            ("SQ *BLUE BOTTLE COFFEE #42", "BLUE BOTTLE COFFEE"),
            ("AMAZON MKTPLACE XXXX1234", "AMAZON MKTPLACE"),
            ("TST* CORNER DELI 0042", "CORNER DELI"),
            ("CHECKCARD 0105 SHELL OIL 5744", "SHELL OIL"),
            ("NETFLIX.COM", "NETFLIX.COM"),
        ],
    )
    def test_strips_noise(self, description: str, expected: str) -> None:
        assert guess_merchant(description) == expected

    def test_collapses_whitespace(self) -> None:
        assert guess_merchant("  WHOLE   FOODS  ") == "WHOLE FOODS"

    def test_falls_back_to_description(self) -> None:
        """Test that a description made only of noise is kept as is."""
        assert guess_merchant("#12345") == "#12345"

    def test_empty(self) -> None:
        assert guess_merchant("") == ""


class TestNormalizer:
    """Tests for Normalizer."""

    def test_signed_amount_column(self, account: Account, statement: Statement) -> None:
        """Test a plain signed amount and the candidate's fields."""
        candidate = Normalizer().normalize(
            make_row(description="  UBER   EATS 123 "), account, statement, USD
        )

        assert candidate.amount == Decimal("-24.50")
        assert candidate.date == date(2025, 1, 5)
        assert candidate.description == "UBER EATS 123"
        assert candidate.merchant == "UBER EATS"
        assert candidate.currency == "USD"
        assert candidate.currency_source == "default"
        assert candidate.account_id == account.id
        assert candidate.owner == "alice"
        assert candidate.statement_id == statement.id
        assert candidate.line_number == 7

    def test_amount_is_exact_decimal(self, account: Account, statement: Statement) -> None:
        """Test that amounts are not rounded through floats."""
        candidate = Normalizer().normalize(make_row("0.10"), account, statement, USD)
        assert candidate.amount == Decimal("0.10")
        assert isinstance(candidate.amount, Decimal)

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("(12.00)", Decimal("-12.00")),
            ("12.00-", Decimal("-12.00")),
            ("12.00 DR", Decimal("-12.00")),
            ("12.00 CR", Decimal("12.00")),
            ("$1,234.56", Decimal("1234.56")),
            ("-24.50 usd", Decimal("-24.50")),
            ("EUR 12,50", Decimal("12.50")),
        ],
    )
    def test_sign_conventions(
        self, account: Account, statement: Statement, text: str, expected: Decimal
    ) -> None:
        candidate = Normalizer().normalize(make_row(text), account, statement, USD)
        assert candidate.amount == expected

    def test_debit_column_is_negative(self, account: Account, statement: Statement) -> None:
        """Test that the debit column decides the sign."""
        row = make_row(amount_text=None, debit_text="4.50")
        assert Normalizer().normalize(row, account, statement, USD).amount == Decimal("-4.50")

    def test_signed_debit_value_still_outflow(
        self, account: Account, statement: Statement
    ) -> None:
        """Test that a minus sign inside the debit column does not flip it."""
        row = make_row(amount_text=None, debit_text="-4.50")
        assert Normalizer().normalize(row, account, statement, USD).amount == Decimal("-4.50")

    def test_credit_column_is_positive(self, account: Account, statement: Statement) -> None:
        row = make_row(amount_text=None, credit_text="10.00")
        assert Normalizer().normalize(row, account, statement, USD).amount == Decimal("10.00")

    def test_both_debit_and_credit_fails(self, account: Account, statement: Statement) -> None:
        row = make_row(amount_text=None, debit_text="4.50", credit_text="10.00")
        with pytest.raises(RowExtractionFailed, match="both debit and credit"):
            Normalizer().normalize(row, account, statement, USD)

    def test_zero_debit_and_empty_credit(self, account: Account, statement: Statement) -> None:
        """Test that a zero-value row normalizes to zero."""
        row = make_row(amount_text=None, debit_text="0.00", credit_text="")
        assert Normalizer().normalize(row, account, statement, USD).amount == Decimal("0")

    def test_missing_amount_fails(self, account: Account, statement: Statement) -> None:
        with pytest.raises(RowExtractionFailed, match="missing amount"):
            Normalizer().normalize(make_row(amount_text=None), account, statement, USD)

    def test_unparseable_amount_fails(self, account: Account, statement: Statement) -> None:
        with pytest.raises(RowExtractionFailed):
            Normalizer().normalize(make_row("twelve"), account, statement, USD)

    def test_unparseable_date_fails(self, account: Account, statement: Statement) -> None:
        with pytest.raises(RowExtractionFailed):
            Normalizer().normalize(make_row(date_text="sometime"), account, statement, USD)

    def test_missing_description_fails(self, account: Account, statement: Statement) -> None:
        with pytest.raises(RowExtractionFailed, match="description"):
            Normalizer().normalize(make_row(description="   "), account, statement, USD)

    def test_flagged_row_fails(self, account: Account, statement: Statement) -> None:
        """Test that rows awaiting manual mapping never become candidates."""
        row = RawRow(adapter="assisted_csv", line_number=3, needs_manual_mapping=True)
        with pytest.raises(RowExtractionFailed, match="manual mapping"):
            Normalizer().normalize(row, account, statement, USD)

    def test_account_date_formats(self, statement: Statement) -> None:
        """Test that an account's own date formats replace the built-in list."""
        account = Account(id="uk", name="UK Current", owner="alice", date_formats=["%d/%m/%Y"])
        candidate = Normalizer().normalize(
            make_row(date_text="05/01/2025"), account, statement, USD
        )
        assert candidate.date == date(2025, 1, 5)

    def test_eu_locale_reads_slash_dates_day_first(self, statement: Statement) -> None:
        account = Account(id="de", name="Girokonto", owner="alice", locale="EU")
        candidate = Normalizer().normalize(
            make_row(date_text="05/01/2025"), account, statement, USD
        )
        assert candidate.date == date(2025, 1, 5)

    def test_layout_date_formats(self, account: Account, statement: Statement) -> None:
        """Test that formats carried on the row are used when the account has none."""
        row = make_row(date_text="13/01/2025")
        row.date_formats = ("%d/%m/%Y",)
        assert Normalizer().normalize(row, account, statement, USD).date == date(2025, 1, 13)

    def test_account_formats_win_over_layout(self, statement: Statement) -> None:
        account = Account(id="us", name="US Card", owner="alice", date_formats=["%m/%d/%Y"])
        row = make_row(date_text="05/01/2025")
        row.date_formats = ("%d/%m/%Y",)
        assert Normalizer().normalize(row, account, statement, USD).date == date(2025, 5, 1)

    @pytest.mark.parametrize(
        "date_text",
        [
            "2025-01-05 08:00:00",
            "2025-01-05T10:00:00",
            "2025-01-05T10:00:00Z",
            "01/05/2025 3:04 PM",
        ],
    )
    def test_time_of_day_is_ignored(
        self, date_text: str, account: Account, statement: Statement
    ) -> None:
        candidate = Normalizer().normalize(make_row(date_text=date_text), account, statement, USD)
        assert candidate.date == date(2025, 1, 5)

    def test_eu_locale_amount(self, statement: Statement) -> None:
        account = Account(id="de", name="Girokonto", owner="alice", locale="EU")
        eur = CurrencyResolution("EUR", "locale")
        candidate = Normalizer().normalize(make_row("-1.234,56"), account, statement, eur)
        assert candidate.amount == Decimal("-1234.56")
        assert candidate.currency == "EUR"

    def test_balance_is_optional(self, account: Account, statement: Statement) -> None:
        """Test that a bad balance cell is ignored rather than failing the row."""
        good = Normalizer().normalize(make_row(balance_text="1,000.00"), account, statement, USD)
        bad = Normalizer().normalize(make_row(balance_text="n/a"), account, statement, USD)
        assert good.balance == Decimal("1000.00")
        assert bad.balance is None
