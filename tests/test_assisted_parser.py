"""Tests for AI-assisted extraction of messy CSV and PDF statements."""

from unittest.mock import MagicMock, patch

import pytest

from statement_ingest.parsers.assisted_parser import MessyCSVParser, looks_like_transaction
from statement_ingest.parsers.base import ExtractionError
from statement_ingest.parsers.pdf_parser import PDFParser
from statement_ingest.processing.ai.client import AIUnavailableError
from statement_ingest.processing.ai.models import ExtractionHints

MESSY_CSV = (
    b"Buchungstag;Text;Betrag\n"
    b"05.01.2025;REWE MARKT;-12,50\n"
    b"06.01.2025;GEHALT;2.500,00\n"
    b"Saldo;;1.234,56\n"
)

PDF_TEXT = (
    "STATEMENT FOR JANUARY\n"
    "01/05/2025  UBER EATS 123   -24.50\n"
    "01/06/2025 PAYROLL 1,500.00\n"
    "Closing balance 1,475.50"
)

LINE_PATTERN = (
    r"^(?P<date>\d{2}/\d{2}/\d{4})\s+(?P<description>.+?)\s+(?P<amount>-?[\d,]+\.\d{2})$"
)


def column_hints(confidence: float = 0.9) -> ExtractionHints:
    return ExtractionHints(
        mode="columns",
        confidence=confidence,
        delimiter=";",
        header_lines=1,
        columns={"date": 0, "description": 1, "amount": 2},
    )


def make_extractor(hints: ExtractionHints) -> MagicMock:
    extractor = MagicMock()
    extractor.extract.return_value = hints
    return extractor


def mock_pdf(texts: list) -> MagicMock:
    """pdfplumber module stand-in whose document has one page per text."""
    pages = []
    for text in texts:
        page = MagicMock()
        page.extract_text.return_value = text
        pages.append(page)
    module = MagicMock()
    module.open.return_value.__enter__.return_value.pages = pages
    return module


class TestLooksLikeTransaction:
    """Tests for the transaction-looking line heuristic."""

    def test_amount_with_cents(self) -> None:
        assert looks_like_transaction("05 Jan Coffee 4.50")
        assert looks_like_transaction("Saldo;;1.234,56")

    def test_no_amount(self) -> None:
        assert not looks_like_transaction("Page 1 of 3")
        assert not looks_like_transaction("STATEMENT FOR JANUARY")


class TestMessyCSVParser:
    """Tests for MessyCSVParser."""

    def test_column_hints_map_values_from_source(self) -> None:
        """Test that mapped values are read from the source lines."""
        parser = MessyCSVParser(make_extractor(column_hints()))
        result = parser.extract(MESSY_CSV, "export.csv")

        mapped = result.mapped_rows
        assert len(mapped) == 2
        assert mapped[0].date_text == "05.01.2025"
        assert mapped[0].description == "REWE MARKT"
        assert mapped[0].amount_text == "-12,50"
        assert mapped[1].amount_text == "2.500,00"
        assert mapped[0].line_number == 2
        assert not result.ai_unavailable

    def test_unmappable_amount_line_is_flagged(self) -> None:
        """Test that a transaction-looking line the hints cannot map is flagged."""
        parser = MessyCSVParser(make_extractor(column_hints()))
        result = parser.extract(MESSY_CSV, "export.csv")

        flagged = result.flagged_rows
        assert len(flagged) == 1
        assert flagged[0].line_number == 4
        assert flagged[0].raw_text == "Saldo;;1.234,56"
        assert not flagged[0].confident

    def test_no_extractor_flags_everything(self) -> None:
        """Test that without a model every candidate row is flagged."""
        result = MessyCSVParser(None).extract(MESSY_CSV, "export.csv")

        assert result.ai_unavailable
        assert result.mapped_rows == []
        assert [r.line_number for r in result.flagged_rows] == [2, 3, 4]

    def test_unavailable_model_flags_everything(self) -> None:
        """Test that an open circuit degrades to flagging, not failing."""
        extractor = MagicMock()
        extractor.extract.side_effect = AIUnavailableError("circuit open")
        result = MessyCSVParser(extractor).extract(MESSY_CSV, "export.csv")

        assert result.ai_unavailable
        assert len(result.flagged_rows) == 3
        assert result.mapped_rows == []

    def test_low_confidence_hints_are_not_used(self) -> None:
        """Test that weak hints flag rows instead of guessing."""
        parser = MessyCSVParser(make_extractor(column_hints(confidence=0.3)))
        result = parser.extract(MESSY_CSV, "export.csv")

        assert not result.ai_unavailable
        assert result.mapped_rows == []
        assert len(result.flagged_rows) == 3

    def test_hints_with_bad_pattern_are_not_used(self) -> None:
        """Test that a pattern without the required groups is discarded."""
        hints = ExtractionHints(mode="pattern", confidence=0.9, line_pattern=r"(\d+)")
        result = MessyCSVParser(make_extractor(hints)).extract(MESSY_CSV, "export.csv")
        assert result.mapped_rows == []
        assert len(result.flagged_rows) == 3

    def test_model_sees_text_not_values(self) -> None:
        """Test that the extractor is asked for structure over the raw text."""
        extractor = make_extractor(column_hints())
        MessyCSVParser(extractor).extract(MESSY_CSV, "export.csv")

        sent_text = extractor.extract.call_args[0][0]
        assert "REWE MARKT" in sent_text


class TestPDFParser:
    """Tests for PDFParser."""

    def test_pattern_hints_over_pdf_text(self) -> None:
        """Test that PDF lines are mapped with a line pattern."""
        hints = ExtractionHints(mode="pattern", confidence=0.85, line_pattern=LINE_PATTERN)
        with patch("statement_ingest.parsers.pdf_parser.pdfplumber", mock_pdf([PDF_TEXT])):
            result = PDFParser(make_extractor(hints)).extract(b"%PDF-1.7", "jan.pdf")

        mapped = result.mapped_rows
        assert [r.description for r in mapped] == ["UBER EATS 123", "PAYROLL"]
        assert [r.amount_text for r in mapped] == ["-24.50", "1,500.00"]
        assert [r.line_number for r in result.flagged_rows] == [4]

    def test_pages_are_concatenated(self) -> None:
        """Test that lines from every page are considered."""
        pages = ["01/05/2025 COFFEE 4.50", "01/06/2025 BAKERY 6.25"]
        hints = ExtractionHints(mode="pattern", confidence=0.85, line_pattern=LINE_PATTERN)
        with patch("statement_ingest.parsers.pdf_parser.pdfplumber", mock_pdf(pages)):
            result = PDFParser(make_extractor(hints)).extract(b"%PDF-1.7", "jan.pdf")
        assert len(result.mapped_rows) == 2

    def test_scanned_pdf_fails(self) -> None:
        """Test that a PDF without a text layer fails as a whole."""
        with patch("statement_ingest.parsers.pdf_parser.pdfplumber", mock_pdf([None, ""])):
            with pytest.raises(ExtractionError, match="No extractable text"):
                PDFParser(None).extract(b"%PDF-1.7", "scan.pdf")

    def test_page_limit(self) -> None:
        """Test the PDF page limit."""
        with patch("statement_ingest.parsers.pdf_parser.pdfplumber", mock_pdf(["a", "b"])):
            with pytest.raises(ExtractionError, match="too many pages"):
                PDFParser(None, max_pages=1).extract(b"%PDF-1.7", "long.pdf")

    def test_unreadable_pdf(self) -> None:
        """Test that a corrupt PDF is reported as an extraction error."""
        module = MagicMock()
        module.open.side_effect = ValueError("broken xref")
        with patch("statement_ingest.parsers.pdf_parser.pdfplumber", module):
            with pytest.raises(ExtractionError, match="Failed to read PDF"):
                PDFParser(None).extract(b"%PDF-1.7", "broken.pdf")
