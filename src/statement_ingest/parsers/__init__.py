"""Format detection and extraction adapters for statement files."""

from statement_ingest.parsers.assisted_parser import AssistedParser, MessyCSVParser
from statement_ingest.parsers.base import (
    BaseParser,
    ExtractionError,
    ExtractionResult,
    ParseError,
    RowExtractionFailed,
)
from statement_ingest.parsers.csv_parser import CSVParser, sniff_csv_format
from statement_ingest.parsers.detector import (
    DetectionResult,
    FormatDetector,
    detect_format,
    get_detector,
)
from statement_ingest.parsers.pdf_parser import PDFParser
from statement_ingest.parsers.qif_parser import QIFParser

__all__ = [
    "BaseParser",
    "ParseError",
    "ExtractionError",
    "ExtractionResult",
    "RowExtractionFailed",
    "CSVParser",
    "QIFParser",
    "AssistedParser",
    "MessyCSVParser",
    "PDFParser",
    "sniff_csv_format",
    "DetectionResult",
    "FormatDetector",
    "get_detector",
    "detect_format",
]
