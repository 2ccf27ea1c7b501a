"""Transaction data models, from raw extracted rows to durable records."""

import re
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum

from statement_ingest.utils.decimal_utils import amount_key


class ClassificationSource(Enum):
    """Provenance of a transaction's category."""

    RULE = "Rule"
    AI = "AI"
    MANUAL = "Manual"
    UNCLASSIFIED = "Unclassified"


def normalize_description(description: str) -> str:
    """Normalize a description for key comparisons.

    Lowercases, strips and collapses whitespace.
    """
    return re.sub(r"\s+", " ", description.lower().strip())


@dataclass
class RawRow:
    """One statement line as an extraction adapter saw it.

    Every value is still text. Nothing here has been parsed into dates or
    amounts yet, so a row can always be traced back to the source.

    Attributes:
        adapter: Tag of the adapter that produced the row ("csv", "qif",
            "assisted_csv", "assisted_pdf").
        line_number: 1-based line (or record) number in the source.
        date_text: Date as written in the source.
        description: Description/payee text.
        amount_text: Signed amount column, if the source has one.
        debit_text: Debit column, if the source splits debits and credits.
        credit_text: Credit column, if the source splits debits and credits.
        currency_hint: Currency column or code found on the row.
        balance_text: Running balance as written, if present.
        memo: Secondary free text (QIF memo, CSV memo column).
        confident: Whether extraction is confident about the field mapping.
        needs_manual_mapping: Row could not be mapped without guessing.
        raw_text: Original source line for audit and manual mapping.
        date_formats: Date formats the source layout is known to use, tried
            instead of the built-in list.
    """

    adapter: str
    line_number: int
    date_text: str = ""
    description: str = ""
    amount_text: str | None = None
    debit_text: str | None = None
    credit_text: str | None = None
    currency_hint: str | None = None
    balance_text: str | None = None
    memo: str | None = None
    confident: bool = True
    needs_manual_mapping: bool = False
    raw_text: str = ""
    date_formats: tuple[str, ...] = ()


@dataclass
class RowFailure:
    """A row that could not be turned into a transaction candidate."""

    line_number: int
    reason: str
    raw_text: str = ""


@dataclass
class TransactionCandidate:
    """A normalized row that has not yet survived deduplication.

    Attributes:
        account_id: Account the statement was uploaded against.
        statement_id: Statement that produced the row.
        owner: Owner of the account.
        date: Transaction date.
        amount: Signed exact amount (negative = money out).
        currency: Resolved ISO 4217 code.
        description: Description as written in the source.
        merchant: Merchant guess with noise tokens stripped.
        line_number: Source line, for audit.
        currency_source: How the currency was resolved
            ("explicit", "locale", "default").
        balance: Running balance from the source, when present.
    """

    account_id: str
    statement_id: str
    owner: str
    date: date
    amount: Decimal
    currency: str
    description: str
    merchant: str
    line_number: int = 0
    currency_source: str = "default"
    balance: Decimal | None = None

    @property
    def natural_key(self) -> tuple[str, str, str, str, str]:
        """(account, date, amount, currency, normalized description)."""
        return natural_key(self.account_id, self.date, self.amount, self.currency, self.description)


def natural_key(
    account_id: str,
    txn_date: date,
    amount: Decimal,
    currency: str,
    description: str,
) -> tuple[str, str, str, str, str]:
    """Build the composite key used for exact duplicate detection."""
    return (
        account_id,
        txn_date.isoformat(),
        amount_key(amount),
        currency.upper(),
        normalize_description(description),
    )


@dataclass
class Transaction:
    """Durable transaction record.

    Attributes:
        account_id: Account the transaction belongs to.
        owner: Owning user.
        date: Transaction date.
        amount: Exact signed amount.
        currency: ISO 4217 code.
        description: Description as written in the source.
        merchant: Merchant guess.
        statement_id: Producing statement (None once the statement is purged).
        id: Unique identifier (UUID).
        category_id: Assigned category (None if unclassified).
        classification_source: How the category was assigned.
        confidence: Confidence in the category, in [0, 1].
        rule_id: Rule that assigned the category, for Rule-sourced rows.
        classification_reason: Short explanation (rule id, AI reasoning, ...).
        exported_profiles: Export profiles this transaction has been exported under.
        is_deleted: Soft-delete flag. Rows are never hard-deleted.
        created_at: Insert timestamp (ISO 8601, UTC).
    """

    account_id: str
    owner: str
    date: date
    amount: Decimal
    currency: str
    description: str
    merchant: str = ""
    statement_id: str | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    category_id: str | None = None
    classification_source: ClassificationSource = ClassificationSource.UNCLASSIFIED
    confidence: float = 0.0
    rule_id: str | None = None
    classification_reason: str = ""

    exported_profiles: set[str] = field(default_factory=set)
    is_deleted: bool = False
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @classmethod
    def from_candidate(cls, candidate: TransactionCandidate) -> "Transaction":
        """Create an unclassified transaction from a surviving candidate."""
        return cls(
            account_id=candidate.account_id,
            owner=candidate.owner,
            date=candidate.date,
            amount=candidate.amount,
            currency=candidate.currency,
            description=candidate.description,
            merchant=candidate.merchant,
            statement_id=candidate.statement_id,
        )

    @property
    def natural_key(self) -> tuple[str, str, str, str, str]:
        return natural_key(self.account_id, self.date, self.amount, self.currency, self.description)

    @property
    def is_manual(self) -> bool:
        return self.classification_source == ClassificationSource.MANUAL

    def is_exported(self, profile_id: str) -> bool:
        """Whether this transaction was exported under the given profile."""
        return profile_id in self.exported_profiles

    def __repr__(self) -> str:
        return (
            f"Transaction(date={self.date}, "
            f"description={self.description[:30]!r}, "
            f"amount={self.amount} {self.currency}, "
            f"account={self.account_id}, source={self.classification_source.value})"
        )


@dataclass(frozen=True)
class DuplicateLink:
    """Informational pointer from a discarded candidate to the retained transaction.

    The link does not own either side. It exists for audit only.
    """

    statement_id: str
    line_number: int
    existing_transaction_id: str
    match_kind: str
    similarity: float
