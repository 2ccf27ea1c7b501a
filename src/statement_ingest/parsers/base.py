"""Abstract base class for statement extraction adapters."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from statement_ingest.models.statement import StatementFormat
from statement_ingest.models.transaction import RawRow, RowFailure
from statement_ingest.utils.logging_config import get_logger

logger = get_logger(__name__)

# Maximum upload size to prevent memory exhaustion (50 MB)
MAX_FILE_SIZE = 50 * 1024 * 1024

# Maximum number of rows to prevent memory exhaustion from many small rows
MAX_ROWS = 500_000


class ParseError(Exception):
    """Exception raised when parsing fails."""

    def __init__(self, message: str, file_path: Optional[Path] = None):
        """Initialize ParseError.

        Args:
            message: Error message.
            file_path: Optional path to the file that failed to parse.
        """
        self.file_path = file_path
        super().__init__(message)


class ExtractionError(ParseError):
    """Raised when no row at all can be extracted from a statement."""


class RowExtractionFailed(Exception):
    """Raised when a single row cannot be extracted or normalized.

    Row-scoped and non-fatal: callers record it and move on.
    """

    def __init__(self, message: str, line: int = 0):
        self.line = line
        super().__init__(message)


@dataclass
class ExtractionResult:
    """Output of one adapter run over one statement.

    Attributes:
        rows: Extracted rows, including rows flagged for manual mapping.
        failures: Rows that could not be extracted.
        ai_unavailable: The extraction model could not be reached, so
            candidate rows were flagged instead of mapped.
        notes: Human-readable remarks about the run.
    """

    rows: list[RawRow] = field(default_factory=list)
    failures: list[RowFailure] = field(default_factory=list)
    ai_unavailable: bool = False
    notes: list[str] = field(default_factory=list)

    @property
    def mapped_rows(self) -> list[RawRow]:
        """Rows whose fields were located and can be normalized."""
        return [r for r in self.rows if not r.needs_manual_mapping]

    @property
    def flagged_rows(self) -> list[RawRow]:
        """Rows left for the user to map by hand."""
        return [r for r in self.rows if r.needs_manual_mapping]


class BaseParser(ABC):
    """Abstract base class for all extraction adapters.

    Subclasses must implement:
    - format: The statement format this adapter handles
    - extract(): Turn statement bytes into raw rows
    """

    adapter_tag = "base"

    def __init__(self, max_file_size: int = MAX_FILE_SIZE, max_rows: int = MAX_ROWS):
        self.max_file_size = max_file_size
        self.max_rows = max_rows

    @property
    @abstractmethod
    def format(self) -> StatementFormat:
        """Return the statement format handled by this adapter."""
        pass

    @property
    def name(self) -> str:
        """Return parser name for logging.

        Returns:
            Parser name string.
        """
        return self.__class__.__name__

    @abstractmethod
    def extract(self, content: bytes, filename: str) -> ExtractionResult:
        """Extract raw rows from statement content.

        Row-level problems are reported in the result's ``failures`` and
        never abort the statement.

        Args:
            content: Raw file bytes.
            filename: Original upload filename, for logging.

        Returns:
            ExtractionResult with rows and row failures.

        Raises:
            ExtractionError: If the statement as a whole cannot be read.
        """
        pass

    def _check_size(self, content: bytes, filename: str) -> None:
        """Reject uploads above the size limit.

        Raises:
            ExtractionError: If the content is too large.
        """
        size = len(content)
        if size > self.max_file_size:
            raise ExtractionError(
                f"File too large ({size / 1024 / 1024:.1f} MB). "
                f"Maximum allowed is {self.max_file_size / 1024 / 1024:.0f} MB",
                Path(filename),
            )

    def _decode(self, content: bytes) -> str:
        """Decode text content, dropping a UTF-8 BOM.

        Falls back to Latin-1 when the bytes are not valid UTF-8, which
        covers the single-byte encodings banks commonly export.
        """
        try:
            return content.decode("utf-8-sig")
        except UnicodeDecodeError:
            logger.debug(f"{self.name}: content is not UTF-8, decoding as Latin-1")
            return content.decode("latin-1")

    def _check_row_limit(self, count: int, filename: str) -> None:
        if count > self.max_rows:
            raise ExtractionError(
                f"File exceeds maximum row limit ({self.max_rows:,} rows). "
                f"Split file into smaller chunks.",
                Path(filename),
            )
