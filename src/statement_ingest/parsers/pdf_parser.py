"""PDF extraction: text lines from pdfplumber, mapped with AI structural hints."""

import io
from pathlib import Path
from typing import Optional

import pdfplumber

from statement_ingest.models.statement import StatementFormat
from statement_ingest.parsers.assisted_parser import DEFAULT_MIN_CONFIDENCE, AssistedParser
from statement_ingest.parsers.base import ExtractionError, ExtractionResult
from statement_ingest.processing.ai.extractor import AIHintExtractor
from statement_ingest.utils.logging_config import get_logger

logger = get_logger(__name__)

# Maximum number of pages to process to prevent resource exhaustion
MAX_PDF_PAGES = 500


class PDFParser(AssistedParser):
    """Adapter for text-based PDF statements.

    Uses pdfplumber to pull the text of every page, then maps lines like
    any other unstructured statement. Does not use OCR: a scanned PDF with
    no text layer fails as a whole.
    """

    adapter_tag = "assisted_pdf"

    def __init__(
        self,
        extractor: Optional[AIHintExtractor] = None,
        min_confidence: float = DEFAULT_MIN_CONFIDENCE,
        max_pages: int = MAX_PDF_PAGES,
        **limits: int,
    ):
        super().__init__(extractor, min_confidence, **limits)
        self.max_pages = max_pages

    @property
    def format(self) -> StatementFormat:
        return StatementFormat.PDF

    def extract(self, content: bytes, filename: str) -> ExtractionResult:
        """Extract raw rows from a PDF statement.

        Args:
            content: Raw PDF bytes.
            filename: Original filename, for logging.

        Returns:
            ExtractionResult with mapped and flagged rows.

        Raises:
            ExtractionError: If the PDF cannot be opened, has too many pages,
                or has no text layer.
        """
        self._check_size(content, filename)
        lines = self._read_lines(content, filename)
        if not any(line.strip() for line in lines):
            raise ExtractionError(
                f"No extractable text in {filename} (scanned PDFs are not supported)",
                Path(filename),
            )
        return self._extract_lines(lines, filename)

    def _read_lines(self, content: bytes, filename: str) -> list[str]:
        lines: list[str] = []
        try:
            with pdfplumber.open(io.BytesIO(content)) as pdf:
                # Check page count to prevent resource exhaustion
                if len(pdf.pages) > self.max_pages:
                    raise ExtractionError(
                        f"PDF has too many pages ({len(pdf.pages)}). "
                        f"Maximum allowed is {self.max_pages}",
                        Path(filename),
                    )
                for page_num, page in enumerate(pdf.pages, start=1):
                    text = page.extract_text() or ""
                    page_lines = text.splitlines()
                    logger.debug(f"{filename} page {page_num}: {len(page_lines)} text lines")
                    lines.extend(page_lines)
        except ExtractionError:
            raise
        except Exception as e:
            raise ExtractionError(f"Failed to read PDF file: {e}", Path(filename)) from e

        logger.info(f"Read {len(lines)} text lines from {filename}")
        return lines
