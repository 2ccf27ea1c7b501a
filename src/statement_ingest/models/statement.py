"""Statement data model: one uploaded source file."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class StatementFormat(Enum):
    """Parse strategy chosen for an uploaded file."""

    QIF = "qif"
    STRUCTURED_CSV = "structured_csv"
    MESSY_CSV = "messy_csv"
    PDF = "pdf"


class StatementStatus(Enum):
    """Parse status of a statement."""

    PENDING_PARSING = "PendingParsing"
    PARSING = "Parsing"
    PARSED_PARTIAL = "ParsedPartial"
    PARSED_COMPLETE = "ParsedComplete"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (
            StatementStatus.PARSED_COMPLETE,
            StatementStatus.PARSED_PARTIAL,
            StatementStatus.FAILED,
        )


_ALLOWED_TRANSITIONS: dict[StatementStatus, set[StatementStatus]] = {
    StatementStatus.PENDING_PARSING: {StatementStatus.PARSING, StatementStatus.FAILED},
    StatementStatus.PARSING: {
        StatementStatus.PARSED_PARTIAL,
        StatementStatus.PARSED_COMPLETE,
        StatementStatus.FAILED,
    },
    StatementStatus.PARSED_PARTIAL: set(),
    StatementStatus.PARSED_COMPLETE: set(),
    StatementStatus.FAILED: set(),
}


class InvalidStatusTransition(ValueError):
    """Raised when a statement is moved to a status it cannot reach."""


@dataclass
class Statement:
    """One uploaded bank or card statement file.

    Transactions reference the statement that produced them but are not
    owned by it: purging a statement nulls the reference and leaves the
    transactions in place.

    Attributes:
        owner: Uploading user.
        account_id: Account the statement belongs to.
        filename: Original upload filename.
        id: Unique identifier.
        detected_format: Parse strategy picked by the format detector.
        detection_confidence: Detector confidence in [0, 1].
        status: Current parse status.
        raw_row_count: Rows produced by the extraction adapter, including
            rows flagged for manual mapping.
        failed_row_count: Rows that could not be extracted or normalized.
        error: Statement-level failure reason, when status is Failed.
        created_at: Upload timestamp (ISO 8601, UTC).
    """

    owner: str
    account_id: str
    filename: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    detected_format: StatementFormat | None = None
    detection_confidence: float = 0.0
    status: StatementStatus = StatementStatus.PENDING_PARSING
    raw_row_count: int = 0
    failed_row_count: int = 0
    error: str | None = None
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def transition(self, new_status: StatementStatus) -> None:
        """Move to a new status, enforcing the lifecycle.

        Args:
            new_status: Target status.

        Raises:
            InvalidStatusTransition: If the lifecycle does not allow the move.
        """
        if new_status not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidStatusTransition(
                f"Statement {self.id}: cannot move from {self.status.value} to {new_status.value}"
            )
        self.status = new_status

    def fail(self, reason: str) -> None:
        """Mark the statement as failed with a reason."""
        self.transition(StatementStatus.FAILED)
        self.error = reason
