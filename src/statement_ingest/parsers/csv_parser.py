"""Structured CSV extraction with multi-bank header detection."""

import csv
import io
import re
from dataclasses import dataclass
from typing import Optional

from statement_ingest.models.statement import StatementFormat
from statement_ingest.models.transaction import RawRow, RowFailure
from statement_ingest.parsers.base import BaseParser, ExtractionError, ExtractionResult
from statement_ingest.utils.logging_config import get_logger

logger = get_logger(__name__)

# Lines inspected when sniffing delimiter and header
SNIFF_LINES = 20


@dataclass
class ColumnMapping:
    """Mapping of CSV columns to raw row fields."""

    date_col: int
    description_col: int
    amount_col: Optional[int] = None  # Single amount column (signed)
    debit_col: Optional[int] = None  # Separate debit column
    credit_col: Optional[int] = None  # Separate credit column
    balance_col: Optional[int] = None
    currency_col: Optional[int] = None
    memo_col: Optional[int] = None

    @property
    def required_width(self) -> int:
        """Minimum number of cells a data row needs."""
        cols = [self.date_col, self.description_col]
        if self.amount_col is not None:
            cols.append(self.amount_col)
        else:
            cols.extend(c for c in (self.debit_col, self.credit_col) if c is not None)
        return max(cols) + 1


@dataclass
class CSVFormat:
    """Detected CSV format information."""

    delimiter: str
    header_line: int  # 0-based index of the header line
    column_mapping: ColumnMapping
    institution: Optional[str] = None
    known: bool = False  # Header matched a known bank vocabulary
    date_formats: tuple[str, ...] = ()


@dataclass(frozen=True)
class BankLayout:
    """Header vocabulary of one institution's CSV download.

    Attributes:
        name: Layout key, used in logs.
        institution: Display name, None for generic layouts.
        headers: Lowercase headers the layout is recognized by.
        roles: Column role to candidate header names; the first present wins.
        date_formats: Date formats the institution writes, tried instead of
            the built-in list. Empty for generic layouts.
    """

    name: str
    institution: Optional[str]
    headers: tuple[str, ...]
    roles: dict[str, tuple[str, ...]]
    date_formats: tuple[str, ...] = ()

    def score(self, col_indices: dict[str, int]) -> tuple[int, float]:
        matched = sum(1 for h in self.headers if h in col_indices)
        return matched, matched / len(self.headers)

    def build_mapping(self, col_indices: dict[str, int]) -> Optional[ColumnMapping]:
        """Resolve the layout's roles against a header, or None if incomplete."""
        found: dict[str, int] = {}
        for role, names in self.roles.items():
            idx = next((col_indices[n] for n in names if n in col_indices), None)
            if idx is not None:
                found[role] = idx
        return _mapping_from_roles(found)


def _mapping_from_roles(found: dict[str, int]) -> Optional[ColumnMapping]:
    if "date" not in found or "description" not in found:
        return None
    if "amount" not in found and not ("debit" in found and "credit" in found):
        return None
    return ColumnMapping(
        date_col=found["date"],
        description_col=found["description"],
        amount_col=found.get("amount"),
        debit_col=found.get("debit"),
        credit_col=found.get("credit"),
        balance_col=found.get("balance"),
        currency_col=found.get("currency"),
        memo_col=found.get("memo"),
    )


KNOWN_LAYOUTS: tuple[BankLayout, ...] = (
    BankLayout(
        "chase", "Chase",
        ("transaction date", "post date", "description", "category", "type", "amount"),
        {
            "date": ("transaction date", "posting date", "post date"),
            "description": ("description",),
            "amount": ("amount",),
            "memo": ("memo",),
        },
        ("%m/%d/%Y",),
    ),
    BankLayout(
        "bank_of_america", "Bank of America",
        ("date", "description", "amount", "running bal."),
        {
            "date": ("date",),
            "description": ("description",),
            "amount": ("amount",),
            "balance": ("running bal.",),
        },
        ("%m/%d/%Y",),
    ),
    BankLayout(
        "capital_one", "Capital One",
        ("transaction date", "posted date", "card no.", "description", "category", "debit",
         "credit"),
        {
            "date": ("transaction date", "posted date"),
            "description": ("description",),
            "debit": ("debit",),
            "credit": ("credit",),
        },
        ("%Y-%m-%d", "%m/%d/%Y"),
    ),
    BankLayout(
        "discover", "Discover",
        ("trans. date", "post date", "description", "amount", "category"),
        {
            "date": ("trans. date", "post date"),
            "description": ("description",),
            "amount": ("amount",),
        },
        ("%m/%d/%Y",),
    ),
    BankLayout(
        "monzo", "Monzo",
        ("transaction id", "date", "time", "type", "name", "amount", "currency"),
        {
            "date": ("date",),
            "description": ("name",),
            "amount": ("amount",),
            "currency": ("currency",),
        },
        ("%d/%m/%Y",),
    ),
    BankLayout(
        "revolut", "Revolut",
        ("type", "product", "started date", "completed date", "description", "amount",
         "currency", "balance"),
        {
            "date": ("completed date", "started date"),
            "description": ("description",),
            "amount": ("amount",),
            "currency": ("currency",),
            "balance": ("balance",),
        },
        ("%Y-%m-%d",),
    ),
    BankLayout(
        "generic_debit_credit", None,
        ("date", "description", "debit", "credit"),
        {
            "date": ("date",),
            "description": ("description",),
            "debit": ("debit",),
            "credit": ("credit",),
        },
    ),
    BankLayout(
        "generic_amount", None,
        ("date", "description", "amount"),
        {"date": ("date",), "description": ("description",), "amount": ("amount",)},
    ),
)

# Substrings that assign a role to an unrecognized header, in role order
_ROLE_KEYWORDS: dict[str, tuple[str, ...]] = {
    "date": ("date", "posted", "trans"),
    "description": ("description", "desc", "payee", "merchant", "narrative", "details"),
    "amount": ("amount",),
    "debit": ("debit", "withdrawal", "paid out"),
    "credit": ("credit", "deposit", "paid in"),
    "balance": ("balance", "bal", "running"),
}

_HEADER_KEYWORDS = [
    "date", "description", "amount", "debit", "credit", "balance",
    "type", "category", "memo", "check", "transaction", "posted",
    "currency", "payee", "name",
]

_METADATA_PATTERNS = [
    r"^account\s*(number|#|:)",
    r"^statement\s*(period|date)",
    r"^as\s*of",
    r"^downloaded",
    r"^generated",
    r"^\s*$",
]


def detect_delimiter(lines: list[str]) -> str:
    """Detect CSV delimiter from content.

    Args:
        lines: First few lines of file.

    Returns:
        Detected delimiter character.
    """
    # csv.Sniffer first, then per-line counts
    sample = "\n".join(lines[:10])
    try:
        dialect = csv.Sniffer().sniff(sample, delimiters=",\t;|")
        return dialect.delimiter
    except csv.Error:
        pass

    delimiters = [",", "\t", ";", "|"]
    delimiter_counts: dict[str, list[int]] = {d: [] for d in delimiters}

    for line in lines[:10]:
        for d in delimiters:
            delimiter_counts[d].append(line.count(d))

    best_delimiter = ","
    best_score = 0.0

    for d, counts in delimiter_counts.items():
        non_zero = [c for c in counts if c > 0]
        if not non_zero:
            continue
        avg = sum(non_zero) / len(non_zero)
        if avg > best_score and len(non_zero) > len(counts) / 2:
            best_score = avg
            best_delimiter = d

    return best_delimiter


def _split_line(line: str, delimiter: str) -> list[str]:
    try:
        return next(csv.reader([line], delimiter=delimiter, skipinitialspace=True))
    except (csv.Error, StopIteration):
        return line.split(delimiter)


def _looks_like_header(line: str, delimiter: str) -> bool:
    """Check if line looks like a CSV header: mostly text, with at least two known keywords."""
    parts = _split_line(line, delimiter)
    if len(parts) < 2:
        return False

    text_count = sum(
        1 for p in parts
        if p.strip() and not re.match(r"^[\d\$\-\.,\(\)]+$", p.strip())
    )
    keyword_count = sum(
        1 for p in parts
        if any(kw in p.lower() for kw in _HEADER_KEYWORDS)
    )
    return text_count >= len(parts) / 2 and keyword_count >= 2


def _is_metadata_line(line: str) -> bool:
    line = line.strip().lower()
    return any(re.match(p, line) for p in _METADATA_PATTERNS)


def _auto_detect_columns(col_indices: dict[str, int]) -> Optional[ColumnMapping]:
    """Assign roles to an unrecognized header by keyword.

    Each role takes the first column whose header contains one of its
    keywords. A header naming a description is never taken as the date.

    Args:
        col_indices: Mapping of lowercase header name to column index.

    Returns:
        ColumnMapping, or None when date, description or amounts are missing.
    """
    found: dict[str, int] = {}
    for header, idx in col_indices.items():
        for role, keywords in _ROLE_KEYWORDS.items():
            if role in found or not any(kw in header for kw in keywords):
                continue
            if role == "date" and "description" in header:
                continue
            found[role] = idx
    return _mapping_from_roles(found)


def _attach_optional_columns(mapping: ColumnMapping, col_indices: dict[str, int]) -> None:
    """Fill currency and memo columns that a known vocabulary does not name."""
    if mapping.currency_col is None:
        for header, idx in col_indices.items():
            if header in ("currency", "ccy", "currency code", "cur") or header.startswith("currency"):
                mapping.currency_col = idx
                break
    if mapping.memo_col is None:
        for header, idx in col_indices.items():
            if header in ("memo", "notes", "reference") and idx not in (
                mapping.description_col,
                mapping.date_col,
            ):
                mapping.memo_col = idx
                break


def sniff_csv_format(lines: list[str]) -> Optional[CSVFormat]:
    """Detect CSV format from the first lines of a file.

    Args:
        lines: Leading lines of the file.

    Returns:
        CSVFormat if a usable header was found, None otherwise.
    """
    lines = lines[:SNIFF_LINES]
    if not any(line.strip() for line in lines):
        return None

    delimiter = detect_delimiter(lines)

    header_idx = None
    for i, line in enumerate(lines):
        if _looks_like_header(line, delimiter):
            header_idx = i
            break
        # Lines that look like metadata (account info, dates, etc.) are skipped
        if _is_metadata_line(line):
            continue

    if header_idx is None:
        return None

    headers = _split_line(lines[header_idx], delimiter)
    col_indices: dict[str, int] = {}
    for i, h in enumerate(headers):
        col_indices.setdefault(h.lower().strip(), i)

    # Best known layout: most matched headers, then the largest share of its vocabulary
    best: Optional[tuple[tuple[int, float], BankLayout, ColumnMapping]] = None
    for layout in KNOWN_LAYOUTS:
        score = layout.score(col_indices)
        if score[0] < 3:
            continue
        mapping = layout.build_mapping(col_indices)
        if mapping is not None and (best is None or score > best[0]):
            best = (score, layout, mapping)

    if best is not None:
        _, layout, mapping = best
        _attach_optional_columns(mapping, col_indices)
        logger.debug(f"CSV header matched known layout '{layout.name}'")
        return CSVFormat(
            delimiter=delimiter,
            header_line=header_idx,
            column_mapping=mapping,
            institution=layout.institution,
            known=True,
            date_formats=layout.date_formats,
        )

    mapping = _auto_detect_columns(col_indices)
    if mapping:
        _attach_optional_columns(mapping, col_indices)
        return CSVFormat(
            delimiter=delimiter,
            header_line=header_idx,
            column_mapping=mapping,
            institution=None,
            known=False,
        )

    return None


class CSVParser(BaseParser):
    """Deterministic adapter for CSV files with a recognizable header.

    Produces one RawRow per data line. Values stay as text; the normalizer
    parses them. A data line too short for the mapping, or with an empty
    date or description, is recorded as a row failure.
    """

    adapter_tag = "csv"

    @property
    def format(self) -> StatementFormat:
        return StatementFormat.STRUCTURED_CSV

    def extract(self, content: bytes, filename: str) -> ExtractionResult:
        """Extract raw rows from a structured CSV file.

        Args:
            content: Raw file bytes.
            filename: Original filename, for logging.

        Returns:
            ExtractionResult with rows and row failures.

        Raises:
            ExtractionError: If the file is too large, too long, or has no
                recognizable header.
        """
        self._check_size(content, filename)
        text = self._decode(content)
        lines = text.splitlines()

        fmt = sniff_csv_format(lines)
        if fmt is None:
            raise ExtractionError(f"Could not detect CSV format for {filename}")

        logger.info(
            f"Extracting {filename} as {fmt.institution or 'generic'} CSV "
            f"(delimiter={fmt.delimiter!r}, header line {fmt.header_line + 1})"
        )

        result = ExtractionResult()
        mapping = fmt.column_mapping
        body = "\n".join(lines[fmt.header_line + 1 :])
        # Spaces after the delimiter are padding, so a quoted field after ", " still unquotes
        reader = csv.reader(io.StringIO(body), delimiter=fmt.delimiter, skipinitialspace=True)
        first_data_line = fmt.header_line + 2

        record_count = 0
        try:
            for row in reader:
                line_number = first_data_line + reader.line_num - 1
                if not row or all(cell.strip() == "" for cell in row):
                    continue

                record_count += 1
                self._check_row_limit(record_count, filename)

                raw_text = fmt.delimiter.join(row)
                failure = self._row_failure(row, mapping, line_number, raw_text)
                if failure:
                    logger.debug(f"{filename} line {line_number}: {failure.reason}")
                    result.failures.append(failure)
                    continue

                result.rows.append(self._to_raw_row(row, fmt, line_number, raw_text))
        except csv.Error as e:
            raise ExtractionError(f"Failed to read CSV file {filename}: {e}") from e

        logger.info(
            f"Extracted {len(result.rows)} rows from {filename} "
            f"({len(result.failures)} rows failed)"
        )
        return result

    def _row_failure(
        self, row: list[str], mapping: ColumnMapping, line_number: int, raw_text: str
    ) -> Optional[RowFailure]:
        if len(row) < mapping.required_width:
            return RowFailure(
                line_number,
                f"expected at least {mapping.required_width} columns, got {len(row)}",
                raw_text,
            )
        if not self._safe_get(row, mapping.date_col):
            return RowFailure(line_number, "empty date field", raw_text)
        if not self._safe_get(row, mapping.description_col):
            return RowFailure(line_number, "empty description", raw_text)
        return None

    def _to_raw_row(
        self, row: list[str], fmt: CSVFormat, line_number: int, raw_text: str
    ) -> RawRow:
        mapping = fmt.column_mapping
        return RawRow(
            adapter=self.adapter_tag,
            line_number=line_number,
            date_text=self._safe_get(row, mapping.date_col),
            description=self._safe_get(row, mapping.description_col),
            amount_text=self._optional(row, mapping.amount_col),
            debit_text=self._optional(row, mapping.debit_col),
            credit_text=self._optional(row, mapping.credit_col),
            currency_hint=self._optional(row, mapping.currency_col),
            balance_text=self._optional(row, mapping.balance_col),
            memo=self._optional(row, mapping.memo_col),
            raw_text=raw_text,
            date_formats=fmt.date_formats,
        )

    def _safe_get(self, row: list[str], idx: Optional[int], default: str = "") -> str:
        """Safely get a stripped value from row."""
        if idx is None or idx < 0 or idx >= len(row):
            return default
        return row[idx].strip()

    def _optional(self, row: list[str], idx: Optional[int]) -> Optional[str]:
        value = self._safe_get(row, idx)
        return value or None
