"""Statement format detection."""

import re
from dataclasses import dataclass
from pathlib import Path

from statement_ingest.models.statement import StatementFormat
from statement_ingest.parsers.csv_parser import sniff_csv_format
from statement_ingest.utils.logging_config import get_logger

logger = get_logger(__name__)

# Bytes inspected for signatures
SNIFF_BYTES = 8192

PDF_MAGIC = b"%PDF-"

_QIF_HEADER = re.compile(r"^\s*!(type|account|option)\b", re.IGNORECASE)
_QIF_DATE_LINE = re.compile(r"(?m)^D\s*\d{1,4}[/\-.]\d{1,2}[/\-.' ]*\d{0,4}")
_QIF_AMOUNT_LINE = re.compile(r"(?m)^[TU][-+]?[\d,.]+\s*$")

TEXT_EXTENSIONS = {".csv", ".tsv", ".txt", ".qif"}


@dataclass(frozen=True)
class DetectionResult:
    """Detected parse strategy for an upload.

    Attributes:
        format: Chosen statement format.
        confidence: Detector confidence in [0, 1].
        reason: Short description of the signature that decided it.
    """

    format: StatementFormat
    confidence: float
    reason: str


class FormatDetector:
    """Classifies an upload into a parse strategy.

    Checks, in order: the PDF magic header, QIF markers, a CSV header from
    a known bank vocabulary, then an auto-detected CSV header. Anything
    else falls back to the AI-assisted messy CSV path. Detection never
    fails; correctness is left to the extraction step.
    """

    def detect(self, content: bytes, filename: str = "") -> DetectionResult:
        """Detect the format of an upload.

        Args:
            content: Raw file bytes.
            filename: Original filename (extension is a weak hint).

        Returns:
            DetectionResult with the chosen format and confidence.
        """
        result = self._detect(content, filename)
        logger.debug(
            f"Detected {filename or '<upload>'} as {result.format.value} "
            f"(confidence {result.confidence:.2f}: {result.reason})"
        )
        return result

    def _detect(self, content: bytes, filename: str) -> DetectionResult:
        head = content[:SNIFF_BYTES]
        extension = Path(filename).suffix.lower() if filename else ""

        if head.lstrip()[:5] == PDF_MAGIC:
            return DetectionResult(StatementFormat.PDF, 1.0, "PDF magic header")
        if extension == ".pdf":
            return DetectionResult(
                StatementFormat.PDF, 0.5, "pdf extension without PDF header"
            )
        if b"\x00" in head:
            return DetectionResult(StatementFormat.PDF, 0.2, "binary content")

        text = head.decode("utf-8", errors="replace").lstrip("\ufeff")

        if _QIF_HEADER.match(text):
            return DetectionResult(StatementFormat.QIF, 1.0, "QIF header")
        if _QIF_DATE_LINE.search(text) and _QIF_AMOUNT_LINE.search(text) and re.search(
            r"(?m)^\^\s*$", text
        ):
            return DetectionResult(StatementFormat.QIF, 0.9, "QIF D/T/^ records")

        # The sniff window may cut the last line; drop it
        lines = text.splitlines()
        if len(content) > SNIFF_BYTES and len(lines) > 1:
            lines = lines[:-1]

        fmt = sniff_csv_format(lines)
        if fmt is not None and fmt.known:
            return DetectionResult(
                StatementFormat.STRUCTURED_CSV,
                0.9,
                f"known CSV header ({fmt.institution or 'generic'})",
            )
        if fmt is not None:
            return DetectionResult(StatementFormat.STRUCTURED_CSV, 0.7, "auto-detected CSV columns")

        confidence = 0.4 if extension in TEXT_EXTENSIONS else 0.3
        return DetectionResult(StatementFormat.MESSY_CSV, confidence, "no deterministic signature")


# Singleton instance for convenience
_detector: FormatDetector | None = None


def get_detector() -> FormatDetector:
    """Get or create the shared FormatDetector instance."""
    global _detector
    if _detector is None:
        _detector = FormatDetector()
    return _detector


def detect_format(content: bytes, filename: str = "") -> DetectionResult:
    """Convenience function to detect the format of an upload."""
    return get_detector().detect(content, filename)
