"""AI-assisted extraction for statements without a recognizable structure."""

import csv
import re
from typing import Optional

from statement_ingest.models.statement import StatementFormat
from statement_ingest.models.transaction import RawRow
from statement_ingest.parsers.base import BaseParser, ExtractionResult
from statement_ingest.processing.ai.client import AIClientError
from statement_ingest.processing.ai.extractor import AIHintExtractor
from statement_ingest.processing.ai.models import TARGET_FIELDS, ExtractionHints
from statement_ingest.utils.date_utils import safe_parse_date
from statement_ingest.utils.logging_config import get_logger

logger = get_logger(__name__)

# Hints below this confidence are not trusted to map rows
DEFAULT_MIN_CONFIDENCE = 0.6

# A token that looks like a money amount with cents: 24.50, 1,234.56, 12,50
AMOUNT_TOKEN_PATTERN = re.compile(r"\d[\d.,' ]*[.,]\d{2}(?!\d)")

# Named groups a line pattern must define
_REQUIRED_GROUPS = ("date", "description")
_AMOUNT_GROUPS = ("amount", "debit", "credit")


def looks_like_transaction(line: str) -> bool:
    """Whether a line carries an amount-like token and so may be a transaction."""
    return bool(AMOUNT_TOKEN_PATTERN.search(line))


class AssistedParser(BaseParser):
    """Base adapter that maps text lines using model-supplied structure.

    The model is asked where the fields are (column indexes or a line
    regex). Every value is then read straight from the source line with
    those hints, so no number in the output can come from the model.

    A line the hints cannot map is flagged for manual mapping when it looks
    like a transaction, and ignored otherwise (page headers, totals without
    cents, blank filler). When the model is unavailable or its hints are
    weak, every transaction-looking line is flagged instead of guessed.
    """

    adapter_tag = "assisted"

    def __init__(
        self,
        extractor: Optional[AIHintExtractor] = None,
        min_confidence: float = DEFAULT_MIN_CONFIDENCE,
        **limits: int,
    ):
        super().__init__(**limits)
        self.extractor = extractor
        self.min_confidence = min_confidence

    def _extract_lines(self, lines: list[str], filename: str) -> ExtractionResult:
        """Map text lines to raw rows.

        Args:
            lines: Statement text, one entry per physical line.
            filename: Original filename, for logging.

        Returns:
            ExtractionResult with mapped and flagged rows.
        """
        self._check_row_limit(len(lines), filename)
        result = ExtractionResult()
        text = "\n".join(lines)

        hints = self._request_hints(text, filename, result)
        compiled: Optional[re.Pattern[str]] = None
        if hints.mode == "pattern" and hints.line_pattern:
            compiled = self._compile_pattern(hints.line_pattern)
            if compiled is None:
                hints = ExtractionHints.none("pattern does not compile or lacks required groups")

        usable = hints.mode in ("columns", "pattern") and hints.confidence >= self.min_confidence
        if not usable:
            reason = (
                "extraction model unavailable"
                if result.ai_unavailable
                else f"low-confidence hints ({hints.mode}, {hints.confidence:.2f})"
            )
            logger.warning(f"{filename}: {reason}; flagging candidate rows for manual mapping")
            result.notes.append(reason)
            self._flag_all(lines, result)
            return result

        for index, line in enumerate(lines):
            line_number = index + 1
            if not line.strip():
                continue
            if hints.mode == "columns" and index < hints.header_lines:
                continue

            if compiled is not None:
                row = self._map_pattern_line(compiled, line, line_number)
            else:
                row = self._map_column_line(hints, line, line_number)

            if row is not None:
                result.rows.append(row)
            elif looks_like_transaction(line):
                result.rows.append(self._flagged(line, line_number))

        logger.info(
            f"Extracted {len(result.mapped_rows)} rows from {filename} using {hints.mode} hints "
            f"({len(result.flagged_rows)} flagged for manual mapping)"
        )
        return result

    def _request_hints(
        self, text: str, filename: str, result: ExtractionResult
    ) -> ExtractionHints:
        if self.extractor is None:
            result.ai_unavailable = True
            return ExtractionHints.none("no extraction model configured")
        try:
            return self.extractor.extract(text, TARGET_FIELDS)
        except AIClientError as e:
            logger.warning(f"Extraction model failed for {filename}: {e}")
            result.ai_unavailable = True
            return ExtractionHints.none(str(e))

    def _compile_pattern(self, pattern: str) -> Optional[re.Pattern[str]]:
        try:
            compiled = re.compile(pattern)
        except re.error as e:
            logger.warning(f"Extraction pattern does not compile: {e}")
            return None
        groups = set(compiled.groupindex)
        if not all(g in groups for g in _REQUIRED_GROUPS) or not groups & set(_AMOUNT_GROUPS):
            logger.warning(f"Extraction pattern lacks required groups: {sorted(groups)}")
            return None
        return compiled

    def _map_pattern_line(
        self, compiled: re.Pattern[str], line: str, line_number: int
    ) -> Optional[RawRow]:
        match = compiled.search(line)
        if not match:
            return None
        groups = {k: (v.strip() if v else None) for k, v in match.groupdict().items()}
        return self._build_row(groups, line, line_number)

    def _map_column_line(
        self, hints: ExtractionHints, line: str, line_number: int
    ) -> Optional[RawRow]:
        try:
            cells = next(csv.reader([line], delimiter=hints.delimiter))
        except (csv.Error, StopIteration):
            return None
        values: dict[str, Optional[str]] = {}
        for name, idx in hints.columns.items():
            values[name] = cells[idx].strip() if idx < len(cells) and cells[idx].strip() else None
        return self._build_row(values, line, line_number)

    def _build_row(
        self, values: dict[str, Optional[str]], line: str, line_number: int
    ) -> Optional[RawRow]:
        """Build a row from located values, or None if the line does not fit the hints."""
        date_text = values.get("date")
        description = values.get("description")
        if not date_text or not description:
            return None
        if safe_parse_date(date_text) is None:
            return None
        amount_text = values.get("amount")
        debit_text = values.get("debit")
        credit_text = values.get("credit")
        if not (amount_text or debit_text or credit_text):
            return None

        return RawRow(
            adapter=self.adapter_tag,
            line_number=line_number,
            date_text=date_text,
            description=description,
            amount_text=amount_text,
            debit_text=debit_text,
            credit_text=credit_text,
            currency_hint=values.get("currency"),
            balance_text=values.get("balance"),
            raw_text=line,
        )

    def _flagged(self, line: str, line_number: int) -> RawRow:
        return RawRow(
            adapter=self.adapter_tag,
            line_number=line_number,
            confident=False,
            needs_manual_mapping=True,
            raw_text=line,
        )

    def _flag_all(self, lines: list[str], result: ExtractionResult) -> None:
        for index, line in enumerate(lines):
            if line.strip() and looks_like_transaction(line):
                result.rows.append(self._flagged(line, index + 1))


class MessyCSVParser(AssistedParser):
    """Adapter for delimited text whose header matches no known vocabulary."""

    adapter_tag = "assisted_csv"

    @property
    def format(self) -> StatementFormat:
        return StatementFormat.MESSY_CSV

    def extract(self, content: bytes, filename: str) -> ExtractionResult:
        """Extract raw rows from a messy CSV or text export.

        Args:
            content: Raw file bytes.
            filename: Original filename, for logging.

        Returns:
            ExtractionResult with mapped and flagged rows.

        Raises:
            ExtractionError: If the file is too large or too long.
        """
        self._check_size(content, filename)
        lines = self._decode(content).splitlines()
        return self._extract_lines(lines, filename)
