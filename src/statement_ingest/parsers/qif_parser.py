"""QIF (Quicken Interchange Format) extraction."""

import re
from typing import Optional

from statement_ingest.models.statement import StatementFormat
from statement_ingest.models.transaction import RawRow, RowFailure
from statement_ingest.parsers.base import BaseParser, ExtractionError, ExtractionResult
from statement_ingest.utils.logging_config import get_logger

logger = get_logger(__name__)

# Account types whose records are plain cash transactions
SUPPORTED_QIF_TYPES = {"bank", "ccard", "cash", "oth a", "oth l"}

# Header that starts a transaction section
_TYPE_HEADER = re.compile(r"^!type:\s*(.+)$", re.IGNORECASE)


class QIFParser(BaseParser):
    """Deterministic adapter for QIF files.

    Records are runs of single-letter field lines closed by ``^``:

        D01/05/2025
        T-24.50
        PUBER EATS 123
        MDinner
        ^

    A record without a date or amount is recorded as a row failure.
    ``!Account`` blocks and unsupported sections (investments, memorized
    transactions) are skipped.
    """

    adapter_tag = "qif"

    @property
    def format(self) -> StatementFormat:
        return StatementFormat.QIF

    def extract(self, content: bytes, filename: str) -> ExtractionResult:
        """Extract raw rows from a QIF file.

        Args:
            content: Raw file bytes.
            filename: Original filename, for logging.

        Returns:
            ExtractionResult with one row per transaction record.

        Raises:
            ExtractionError: If the file has no transaction records at all.
        """
        self._check_size(content, filename)
        text = self._decode(content)

        result = ExtractionResult()
        # Headerless files are treated as a bank section
        section: Optional[str] = "bank"
        record: dict[str, str] = {}
        record_start = 0
        record_lines: list[str] = []
        record_count = 0

        for line_number, raw_line in enumerate(text.splitlines(), start=1):
            line = raw_line.strip()
            if not line:
                continue

            if line.startswith("!"):
                type_match = _TYPE_HEADER.match(line)
                if type_match:
                    section = type_match.group(1).strip().lower()
                    if section not in SUPPORTED_QIF_TYPES:
                        result.notes.append(f"Skipped unsupported QIF section '{section}'")
                elif line.lower().startswith("!account"):
                    section = "account"
                # !Option and !Clear lines do not change the section
                record, record_lines = {}, []
                continue

            if line == "^":
                if section in SUPPORTED_QIF_TYPES and record_lines:
                    record_count += 1
                    self._check_row_limit(record_count, filename)
                    self._close_record(record, record_start, record_lines, result)
                record, record_lines = {}, []
                continue

            if not record_lines:
                record_start = line_number
            record_lines.append(line)

            code, value = line[0], line[1:].strip()
            if code == "S" or code == "E" or code == "$":
                # Split lines: the record's T total is authoritative
                continue
            if code in ("D", "T", "U", "P", "M", "L", "N"):
                record.setdefault("T" if code == "U" else code, value)

        if record_lines and section in SUPPORTED_QIF_TYPES:
            # Last record without a closing caret
            record_count += 1
            self._close_record(record, record_start, record_lines, result)

        if record_count == 0:
            raise ExtractionError(f"No QIF transaction records found in {filename}")

        logger.info(
            f"Extracted {len(result.rows)} rows from {filename} "
            f"({len(result.failures)} records failed)"
        )
        return result

    def _close_record(
        self,
        record: dict[str, str],
        line_number: int,
        lines: list[str],
        result: ExtractionResult,
    ) -> None:
        raw_text = "\n".join(lines)
        if not record.get("D"):
            result.failures.append(RowFailure(line_number, "record has no date (D) field", raw_text))
            return
        if not record.get("T"):
            result.failures.append(RowFailure(line_number, "record has no amount (T) field", raw_text))
            return

        description = record.get("P") or record.get("M") or ""
        if not description:
            result.failures.append(RowFailure(line_number, "record has no payee or memo", raw_text))
            return

        result.rows.append(
            RawRow(
                adapter=self.adapter_tag,
                line_number=line_number,
                date_text=record["D"],
                description=description,
                amount_text=record["T"],
                memo=record.get("M") if record.get("P") else None,
                raw_text=raw_text,
            )
        )
