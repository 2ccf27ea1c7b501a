"""Tests for upload format detection."""

from statement_ingest.models.statement import StatementFormat
from statement_ingest.parsers.detector import FormatDetector, detect_format


class TestFormatDetector:
    """Tests for FormatDetector."""

    def test_pdf_magic_header(self) -> None:
        """Test that the PDF magic header wins regardless of filename."""
        result = detect_format(b"%PDF-1.7\n%\xe2\xe3\xcf\xd3\n1 0 obj", "statement.csv")
        assert result.format == StatementFormat.PDF
        assert result.confidence == 1.0

    def test_pdf_extension_without_header(self) -> None:
        """Test that a .pdf name without the header is a low-confidence PDF."""
        result = detect_format(b"not really a pdf", "statement.pdf")
        assert result.format == StatementFormat.PDF
        assert result.confidence < 1.0

    def test_qif_type_header(self) -> None:
        """Test QIF detection from the !Type header."""
        content = b"!Type:Bank\nD01/05/2025\nT-24.50\nPUBER EATS\n^\n"
        result = detect_format(content, "export.qif")
        assert result.format == StatementFormat.QIF
        assert result.confidence == 1.0

    def test_headerless_qif_records(self) -> None:
        """Test QIF detection from D/T/^ records alone."""
        content = b"D01/05/2025\nT-24.50\nPUBER EATS\n^\n"
        result = detect_format(content, "export.txt")
        assert result.format == StatementFormat.QIF
        assert result.confidence == 0.9

    def test_known_csv_header(self) -> None:
        """Test that a known bank header is a high-confidence structured CSV."""
        content = b"Date,Description,Amount\n2025-01-05,UBER EATS 123,-24.50\n"
        result = detect_format(content, "bank.csv")
        assert result.format == StatementFormat.STRUCTURED_CSV
        assert result.confidence == 0.9

    def test_auto_detected_csv_header(self) -> None:
        """Test that an unfamiliar but usable header is still structured CSV."""
        content = b"Posted On,Payee,Withdrawal,Deposit\n01/05/2025,Coffee Shop,4.50,\n"
        result = detect_format(content, "bank.csv")
        assert result.format == StatementFormat.STRUCTURED_CSV
        assert result.confidence == 0.7

    def test_unstructured_text_falls_back_to_messy(self) -> None:
        """Test that text with no signature goes to the assisted path."""
        content = b"FIRST NATIONAL BANK\nStatement of account\n05 Jan  Coffee  4.50\n"
        result = detect_format(content, "statement.txt")
        assert result.format == StatementFormat.MESSY_CSV
        assert result.confidence == 0.4

    def test_unknown_extension_lowers_confidence(self) -> None:
        """Test that an unexpected extension lowers messy confidence."""
        content = b"FIRST NATIONAL BANK\n05 Jan  Coffee  4.50\n"
        result = FormatDetector().detect(content, "statement.dat")
        assert result.format == StatementFormat.MESSY_CSV
        assert result.confidence == 0.3

    def test_detection_never_raises_on_empty_input(self) -> None:
        """Test that empty content still yields a result."""
        result = detect_format(b"", "")
        assert result.format == StatementFormat.MESSY_CSV
