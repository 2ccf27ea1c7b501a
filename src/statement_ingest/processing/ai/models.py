"""AI-specific data models for categorization and extraction hints."""

from dataclasses import dataclass, field
from typing import Any, Optional

# Fields the extraction model is asked to locate
TARGET_FIELDS = ("date", "description", "amount", "currency", "balance")

# Fields a usable set of hints must locate
REQUIRED_FIELDS = ("date", "description")


@dataclass
class AISuggestion:
    """Result of AI categorization for a single transaction.

    Attributes:
        category_id: The suggested category ID (None if the response was unusable).
        confidence: AI's confidence in the categorization (0.0-1.0).
        reasoning: Brief explanation of why this category was chosen.
        tokens_used: Number of tokens used for this request.
    """

    category_id: Optional[str]
    confidence: float
    reasoning: str
    tokens_used: int = 0


@dataclass
class HistoricalExample:
    """A previously categorized transaction shown to the model as context."""

    description: str
    merchant: str
    category_id: str

    def to_dict(self) -> dict[str, str]:
        return {
            "description": self.description,
            "merchant": self.merchant,
            "category_id": self.category_id,
        }


@dataclass
class ExtractionHints:
    """Structural guidance for re-extracting rows from unstructured text.

    The model only says where fields are. Values are always read from the
    source text by the adapter, never taken from the model.

    Two modes:
    - ``columns``: delimited rows. ``columns`` maps field name to a
      0-based cell index; ``header_lines`` leading lines are skipped.
    - ``pattern``: one regex applied per line, with named groups for the
      fields (``date``, ``description``, ``amount`` required; ``debit``,
      ``credit``, ``currency``, ``balance`` optional).

    Attributes:
        mode: "columns", "pattern", or "none" when the model gave up.
        confidence: Model's confidence in the hints (0.0-1.0).
        delimiter: Cell delimiter for columns mode.
        header_lines: Leading lines to skip in columns mode.
        columns: Field name to cell index for columns mode.
        line_pattern: Regex for pattern mode.
        reasoning: Model's explanation.
    """

    mode: str
    confidence: float
    delimiter: str = ","
    header_lines: int = 0
    columns: dict[str, int] = field(default_factory=dict)
    line_pattern: Optional[str] = None
    reasoning: str = ""

    @classmethod
    def none(cls, reason: str) -> "ExtractionHints":
        """Hints that locate nothing."""
        return cls(mode="none", confidence=0.0, reasoning=reason)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExtractionHints":
        """Build hints from a parsed model response.

        Args:
            data: Parsed JSON object.

        Returns:
            ExtractionHints instance.

        Raises:
            ValueError: If the structure is invalid.
        """
        mode = str(data.get("mode", "")).lower()
        raw_confidence = float(data.get("confidence", 0.0))
        confidence = max(0.0, min(1.0, raw_confidence))
        reasoning = str(data.get("reasoning", ""))

        if mode == "columns":
            raw_columns = data.get("columns") or {}
            if not isinstance(raw_columns, dict):
                raise ValueError("'columns' must be an object")
            columns: dict[str, int] = {}
            for name, idx in raw_columns.items():
                if idx is None:
                    continue
                if isinstance(idx, bool) or not isinstance(idx, int) or idx < 0:
                    raise ValueError(f"Column index for '{name}' must be a non-negative integer")
                columns[str(name)] = idx
            missing = [f for f in REQUIRED_FIELDS if f not in columns]
            if missing:
                raise ValueError(f"Hints do not locate required fields: {missing}")
            if "amount" not in columns and not ("debit" in columns or "credit" in columns):
                raise ValueError("Hints do not locate an amount, debit or credit column")
            delimiter = str(data.get("delimiter", ","))
            if delimiter == "\\t":
                delimiter = "\t"
            if len(delimiter) != 1:
                raise ValueError(f"Delimiter must be a single character, got {delimiter!r}")
            header_lines = int(data.get("header_lines", 0))
            if header_lines < 0:
                raise ValueError("'header_lines' must not be negative")
            return cls(
                mode=mode,
                confidence=confidence,
                delimiter=delimiter,
                header_lines=header_lines,
                columns=columns,
                reasoning=reasoning,
            )

        if mode == "pattern":
            pattern = data.get("pattern")
            if not isinstance(pattern, str) or not pattern:
                raise ValueError("'pattern' must be a non-empty string")
            return cls(mode=mode, confidence=confidence, line_pattern=pattern, reasoning=reasoning)

        if mode == "none":
            return cls.none(reasoning or "model could not locate fields")

        raise ValueError(f"Unknown hint mode: {mode!r}")


@dataclass
class AIUsageStats:
    """Cumulative AI usage statistics for a session.

    Attributes:
        total_requests: Total API requests that returned a response.
        total_input_tokens: Total input tokens used.
        total_output_tokens: Total output tokens used.
        failed_requests: Requests that failed after all retries.
        rejected_requests: Requests refused because the circuit was open.
        categorizations_performed: Number of categorizations.
        extractions_performed: Number of extraction hint requests.
    """

    total_requests: int = 0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    failed_requests: int = 0
    rejected_requests: int = 0
    categorizations_performed: int = 0
    extractions_performed: int = 0

    def add_request(self, input_tokens: int, output_tokens: int) -> None:
        """Record a completed request."""
        self.total_requests += 1
        self.total_input_tokens += input_tokens
        self.total_output_tokens += output_tokens
