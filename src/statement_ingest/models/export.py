"""Export profile and export run data models."""

import hashlib
import json
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum


class TargetSchema(Enum):
    """Document format an export profile produces."""

    CSV = "csv"
    YNAB_CSV = "ynab_csv"
    QIF = "qif"
    XLSX = "xlsx"


class DateRangePolicy(Enum):
    """Range used when an export request does not give explicit dates."""

    PREVIOUS_MONTH = "previous_month"
    CURRENT_MONTH = "current_month"
    LAST_30_DAYS = "last_30_days"
    ALL = "all"


# Transaction attributes a field mapping may reference
EXPORTABLE_FIELDS = (
    "id",
    "date",
    "amount",
    "inflow",
    "outflow",
    "currency",
    "description",
    "merchant",
    "category",
    "category_id",
    "category_group",
    "classification_source",
    "confidence",
    "account_id",
    "converted_amount",
)


@dataclass
class FieldMapping:
    """One output column.

    Attributes:
        column: Output column header.
        source: Transaction attribute (one of EXPORTABLE_FIELDS).
        date_format: strftime format for date columns.
        invert_sign: Flip the amount sign (some tools want expenses positive).
        decimal_places: Rounding for monetary columns.
    """

    column: str
    source: str
    date_format: str = "%Y-%m-%d"
    invert_sign: bool = False
    decimal_places: int = 2

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "FieldMapping":
        return cls(
            column=str(data["column"]),
            source=str(data["source"]),
            date_format=str(data.get("date_format", "%Y-%m-%d")),
            invert_sign=bool(data.get("invert_sign", False)),
            decimal_places=int(data.get("decimal_places", 2)),  # type: ignore[arg-type]
        )


@dataclass
class ExportProfile:
    """Reusable mapping targeting one external budgeting tool's format.

    Attributes:
        id: Unique identifier.
        name: Display name.
        target_schema: Output document format.
        fields: Ordered column mapping. Empty means the schema's default.
        default_range: Range used when the caller gives no dates.
        reporting_currency: Currency for the converted_amount column.
    """

    id: str
    name: str
    target_schema: TargetSchema = TargetSchema.CSV
    fields: list[FieldMapping] = field(default_factory=list)
    default_range: DateRangePolicy = DateRangePolicy.PREVIOUS_MONTH
    reporting_currency: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "ExportProfile":
        """Create an ExportProfile from a dictionary (e.g., from YAML config).

        Args:
            data: Dictionary containing profile data.

        Returns:
            A new ExportProfile instance.

        Raises:
            ValueError: If the schema or range policy is unknown.
        """
        fields_data = data.get("fields", []) or []
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", data["id"])),
            target_schema=TargetSchema(str(data.get("schema", "csv"))),
            fields=[FieldMapping.from_dict(f) for f in fields_data],  # type: ignore[union-attr]
            default_range=DateRangePolicy(str(data.get("default_range", "previous_month"))),
            reporting_currency=(
                str(data["reporting_currency"]).upper() if data.get("reporting_currency") else None
            ),
        )


def export_run_key(
    profile_id: str,
    date_from: date | None,
    date_to: date | None,
    account_ids: list[str],
) -> str:
    """Deterministic identity of an export request."""
    payload = json.dumps(
        {
            "profile": profile_id,
            "from": date_from.isoformat() if date_from else None,
            "to": date_to.isoformat() if date_to else None,
            "accounts": sorted(set(account_ids)),
        },
        sort_keys=True,
    )
    return hashlib.sha256(payload.encode()).hexdigest()[:24]


@dataclass
class ExportRun:
    """A completed export that flipped exported markers.

    Stored so that repeating the same request returns the same document
    instead of an empty one.
    """

    run_key: str
    profile_id: str
    date_from: date | None
    date_to: date | None
    account_ids: list[str]
    document: bytes
    transaction_ids: list[str]
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


@dataclass
class ExportResult:
    """Outcome of an export request.

    Attributes:
        profile_id: Profile used.
        date_from: Start of the inclusive range (None = unbounded).
        date_to: End of the inclusive range (None = unbounded).
        account_ids: Accounts included.
        document: Generated document bytes.
        content_type: MIME type of the document.
        transaction_ids: Transactions included in the document.
        marked_ids: Transactions newly marked exported by this call.
        skipped_already_exported: In-range transactions left out because
            they were already exported under this profile.
        replayed: True when the document is the stored result of an
            identical earlier request.
    """

    profile_id: str
    date_from: date | None
    date_to: date | None
    account_ids: list[str]
    document: bytes
    content_type: str
    transaction_ids: list[str] = field(default_factory=list)
    marked_ids: list[str] = field(default_factory=list)
    skipped_already_exported: int = 0
    replayed: bool = False

    @property
    def is_empty(self) -> bool:
        """True when nothing in range was eligible (a no-op, not an error)."""
        return not self.transaction_ids
