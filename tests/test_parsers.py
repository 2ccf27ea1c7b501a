"""Tests for the deterministic CSV and QIF adapters."""

from datetime import date
from decimal import Decimal

import pytest

from statement_ingest.models.account import Account
from statement_ingest.models.statement import Statement
from statement_ingest.parsers.base import ExtractionError
from statement_ingest.parsers.csv_parser import CSVParser, sniff_csv_format
from statement_ingest.parsers.qif_parser import QIFParser
from statement_ingest.processing.currency import CurrencyResolution
from statement_ingest.processing.normalizer import Normalizer


class TestSniffCSVFormat:
    """Tests for CSV header sniffing."""

    def test_generic_amount_header(self) -> None:
        """Test that date/description/amount maps to a single amount column."""
        fmt = sniff_csv_format(["Date,Description,Amount", "2025-01-05,COFFEE,-4.50"])
        assert fmt is not None
        assert fmt.known
        assert fmt.column_mapping.date_col == 0
        assert fmt.column_mapping.description_col == 1
        assert fmt.column_mapping.amount_col == 2

    def test_currency_column_attached(self) -> None:
        """Test that a currency column is picked up alongside a known header."""
        fmt = sniff_csv_format(
            ["Date,Description,Amount,Currency", "2025-01-05,COFFEE,-4.50,EUR"]
        )
        assert fmt is not None
        assert fmt.column_mapping.currency_col == 3

    def test_no_header(self) -> None:
        """Test that headerless numeric data is not sniffed as CSV."""
        assert sniff_csv_format(["2025-01-05,-4.50", "2025-01-06,-3.00"]) is None


class TestCSVParser:
    """Tests for CSVParser."""

    def test_extracts_rows_as_text(self) -> None:
        """Test that values are kept as source text with line numbers."""
        content = (
            b"Date,Description,Amount\n"
            b"2025-01-05,UBER EATS 123,-24.50\n"
            b"2025-01-06,PAYROLL,1500.00\n"
        )
        result = CSVParser().extract(content, "bank.csv")

        assert len(result.rows) == 2
        assert result.failures == []
        first = result.rows[0]
        assert first.line_number == 2
        assert first.date_text == "2025-01-05"
        assert first.description == "UBER EATS 123"
        assert first.amount_text == "-24.50"
        assert first.adapter == "csv"

    def test_row_failure_does_not_abort(self) -> None:
        """Test that a row with an empty description is recorded and skipped."""
        content = (
            b"Date,Description,Amount\n"
            b"2025-01-05,UBER EATS 123,-24.50\n"
            b"2025-01-07,,10.00\n"
            b"2025-01-08,GROCER,-30.00\n"
        )
        result = CSVParser().extract(content, "bank.csv")

        assert len(result.rows) == 2
        assert len(result.failures) == 1
        assert result.failures[0].line_number == 4
        assert "description" in result.failures[0].reason

    def test_short_row_is_a_failure(self) -> None:
        """Test that a row missing required cells fails on its own."""
        content = b"Date,Description,Amount\n2025-01-05,UBER EATS\n2025-01-06,PAYROLL,1500.00\n"
        result = CSVParser().extract(content, "bank.csv")
        assert len(result.rows) == 1
        assert len(result.failures) == 1

    def test_debit_credit_columns(self) -> None:
        """Test that split debit/credit columns are carried separately."""
        content = (
            b"Date,Description,Debit,Credit\n"
            b"01/05/2025,COFFEE,4.50,\n"
            b"01/06/2025,REFUND,,10.00\n"
        )
        result = CSVParser().extract(content, "bank.csv")

        assert len(result.rows) == 2
        assert result.rows[0].debit_text == "4.50"
        assert not result.rows[0].credit_text
        assert result.rows[1].credit_text == "10.00"

    def test_skips_metadata_preamble(self) -> None:
        """Test that account metadata above the header is skipped."""
        content = (
            b"Account Number: 1234\n"
            b"Statement Period: Jan 2025\n"
            b"\n"
            b"Date,Description,Amount\n"
            b"2025-01-05,COFFEE,-4.50\n"
        )
        result = CSVParser().extract(content, "bank.csv")
        assert len(result.rows) == 1
        assert result.rows[0].line_number == 5

    def test_utf8_bom_is_dropped(self) -> None:
        """Test that a UTF-8 byte order mark does not break the header."""
        content = b"\xef\xbb\xbfDate,Description,Amount\n2025-01-05,COFFEE,-4.50\n"
        result = CSVParser().extract(content, "bank.csv")
        assert len(result.rows) == 1

    def test_unrecognized_file_raises(self) -> None:
        """Test that a file without a usable header fails as a whole."""
        with pytest.raises(ExtractionError):
            CSVParser().extract(b"just some text\nwith no columns\n", "notes.csv")

    def test_file_too_large(self) -> None:
        """Test the upload size limit."""
        parser = CSVParser(max_file_size=10)
        with pytest.raises(ExtractionError, match="too large"):
            parser.extract(b"Date,Description,Amount\n2025-01-05,COFFEE,-4.50\n", "bank.csv")

    def test_row_limit(self) -> None:
        """Test the per-statement row limit."""
        content = b"Date,Description,Amount\n" + b"2025-01-05,COFFEE,-4.50\n" * 3
        with pytest.raises(ExtractionError, match="row limit"):
            CSVParser(max_rows=2).extract(content, "bank.csv")

# One download per known institution layout. Every row is dated 5 January
# 2025 the way that institution writes it.
LAYOUT_SAMPLES = [
    (
        "Chase",
        "Transaction Date,Post Date,Description,Category,Type,Amount,Memo\n"
        "01/05/2025,01/06/2025,UBER EATS 123,Food & Drink,Sale,-24.50,\n",
    ),
    (
        "Bank of America",
        "Date,Description,Amount,Running Bal.\n"
        "01/05/2025,UBER EATS 123,-24.50,975.50\n",
    ),
    (
        "Capital One",
        "Transaction Date,Posted Date,Card No.,Description,Category,Debit,Credit\n"
        "2025-01-05,2025-01-06,1234,UBER EATS 123,Dining,24.50,\n",
    ),
    (
        "Discover",
        "Trans. Date,Post Date,Description,Amount,Category\n"
        "01/05/2025,01/06/2025,UBER EATS 123,-24.50,Restaurants\n",
    ),
    (
        "Monzo",
        "Transaction ID,Date,Time,Type,Name,Emoji,Category,Amount,Currency\n"
        "tx_0001,05/01/2025,12:30:00,Card payment,UBER EATS 123,,Eating out,-24.50,GBP\n",
    ),
    (
        "Revolut",
        "Type,Product,Started Date,Completed Date,Description,Amount,Fee,Currency,State,Balance\n"
        "CARD_PAYMENT,Current,2025-01-04 21:10:00,2025-01-05 08:00:00,UBER EATS 123,"
        "-24.50,0.00,EUR,COMPLETED,975.50\n",
    ),
]


class TestKnownLayouts:
    """Tests for dates in each known institution layout."""

    @pytest.mark.parametrize(
        "institution,content", LAYOUT_SAMPLES, ids=[s[0] for s in LAYOUT_SAMPLES]
    )
    def test_layout_date(self, institution: str, content: str, account: Account) -> None:
        """Test that each layout is recognized and its dates read as written."""
        fmt = sniff_csv_format(content.splitlines())
        assert fmt is not None
        assert fmt.institution == institution

        result = CSVParser().extract(content.encode("utf-8"), "download.csv")
        assert result.failures == []
        statement = Statement(owner=account.owner, account_id=account.id, filename="download.csv")
        candidate = Normalizer().normalize(
            result.rows[0], account, statement, CurrencyResolution("USD", "default")
        )

        assert candidate.date == date(2025, 1, 5)
        assert candidate.amount == Decimal("-24.50")
        assert candidate.description == "UBER EATS 123"

    def test_day_first_layout_past_twelfth(self, account: Account) -> None:
        """Test that a day above 12 parses for a day-first institution."""
        content = (
            "Transaction ID,Date,Time,Type,Name,Amount,Currency\n"
            "tx_0001,05/01/2025,09:00:00,Card payment,TESCO,-3.20,GBP\n"
            "tx_0002,13/01/2025,09:00:00,Card payment,TESCO,-4.10,GBP\n"
        )
        result = CSVParser().extract(content.encode("utf-8"), "monzo.csv")
        statement = Statement(owner=account.owner, account_id=account.id, filename="monzo.csv")
        gbp = CurrencyResolution("GBP", "explicit")
        dates = [
            Normalizer().normalize(row, account, statement, gbp).date for row in result.rows
        ]
        assert dates == [date(2025, 1, 5), date(2025, 1, 13)]

    def test_padded_quoted_fields(self) -> None:
        """Test that a quoted field after ", " loses its quotes."""
        content = (
            b"Date, Description, Amount, Currency\n"
            b'2025-01-05, "UBER EATS 123", -24.50, USD\n'
        )
        row = CSVParser().extract(content, "bank.csv").rows[0]

        assert row.description == "UBER EATS 123"
        assert row.amount_text == "-24.50"
        assert row.currency_hint == "USD"



class TestQIFParser:
    """Tests for QIFParser."""

    def test_extracts_records(self) -> None:
        """Test that each caret-terminated record becomes one row."""
        content = (
            b"!Type:Bank\n"
            b"D01/05/2025\n"
            b"T-24.50\n"
            b"PUBER EATS 123\n"
            b"MDinner\n"
            b"^\n"
            b"D01/06/2025\n"
            b"T1,500.00\n"
            b"PPAYROLL\n"
            b"^\n"
        )
        result = QIFParser().extract(content, "export.qif")

        assert len(result.rows) == 2
        first = result.rows[0]
        assert first.line_number == 2
        assert first.date_text == "01/05/2025"
        assert first.amount_text == "-24.50"
        assert first.description == "UBER EATS 123"
        assert first.memo == "Dinner"
        assert result.rows[1].amount_text == "1,500.00"

    def test_record_without_amount_fails(self) -> None:
        """Test that a record missing T is a row failure, not a file failure."""
        content = (
            b"!Type:Bank\n"
            b"D01/05/2025\nT-24.50\nPUBER EATS\n^\n"
            b"D01/06/2025\nPCOFFEE\n^\n"
        )
        result = QIFParser().extract(content, "export.qif")
        assert len(result.rows) == 1
        assert len(result.failures) == 1
        assert result.failures[0].line_number == 6
        assert "amount" in result.failures[0].reason

    def test_memo_used_when_no_payee(self) -> None:
        """Test that the memo stands in for a missing payee."""
        content = b"!Type:CCard\nD01/05/2025\nT-9.99\nMStreaming subscription\n^\n"
        result = QIFParser().extract(content, "card.qif")
        assert result.rows[0].description == "Streaming subscription"
        assert result.rows[0].memo is None

    def test_last_record_without_caret(self) -> None:
        """Test that a trailing record without ^ is still read."""
        content = b"!Type:Bank\nD01/05/2025\nT-24.50\nPUBER EATS\n"
        result = QIFParser().extract(content, "export.qif")
        assert len(result.rows) == 1

    def test_unsupported_section_only(self) -> None:
        """Test that a file with only investment records has nothing to extract."""
        content = b"!Type:Invst\nD01/05/2025\nNBuy\nT-100.00\n^\n"
        with pytest.raises(ExtractionError):
            QIFParser().extract(content, "invest.qif")

    def test_split_lines_ignored(self) -> None:
        """Test that split lines do not replace the record total."""
        content = (
            b"!Type:Bank\nD01/05/2025\nT-30.00\nPGROCER\n"
            b"SGroceries\n$-20.00\nSHousehold\n$-10.00\n^\n"
        )
        result = QIFParser().extract(content, "export.qif")
        assert result.rows[0].amount_text == "-30.00"
