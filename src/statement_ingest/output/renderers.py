"""Document renderers for export profiles.

Each renderer is a pure function of the profile, the selected
transactions and lookup data. Nothing here touches the store.
"""

import csv
import io
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Callable, Optional, Union

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from statement_ingest.models.category import Category
from statement_ingest.models.export import (
    EXPORTABLE_FIELDS,
    ExportProfile,
    FieldMapping,
    TargetSchema,
)
from statement_ingest.models.transaction import Transaction
from statement_ingest.processing.fx import FxRateProvider, convert_amount
from statement_ingest.utils.decimal_utils import format_amount
from statement_ingest.utils.logging_config import get_logger
from statement_ingest.utils.sanitize import sanitize_for_csv, sanitize_qif_text

logger = get_logger(__name__)

CellValue = Union[str, Decimal, date, float, None]

_MONEY_FIELDS = {"amount", "inflow", "outflow", "converted_amount"}

DEFAULT_FIELDS: dict[TargetSchema, list[FieldMapping]] = {
    TargetSchema.CSV: [
        FieldMapping("Date", "date"),
        FieldMapping("Account", "account_id"),
        FieldMapping("Description", "description"),
        FieldMapping("Merchant", "merchant"),
        FieldMapping("Category", "category"),
        FieldMapping("Amount", "amount"),
        FieldMapping("Currency", "currency"),
        FieldMapping("Source", "classification_source"),
    ],
    TargetSchema.YNAB_CSV: [
        FieldMapping("Date", "date", date_format="%m/%d/%Y"),
        FieldMapping("Payee", "merchant"),
        FieldMapping("Category", "category"),
        FieldMapping("Memo", "description"),
        FieldMapping("Outflow", "outflow"),
        FieldMapping("Inflow", "inflow"),
    ],
    TargetSchema.XLSX: [
        FieldMapping("Date", "date"),
        FieldMapping("Account", "account_id"),
        FieldMapping("Description", "description"),
        FieldMapping("Merchant", "merchant"),
        FieldMapping("Category", "category"),
        FieldMapping("Group", "category_group"),
        FieldMapping("Amount", "amount"),
        FieldMapping("Currency", "currency"),
        FieldMapping("Confidence", "confidence"),
    ],
}

CONTENT_TYPES = {
    TargetSchema.CSV: "text/csv",
    TargetSchema.YNAB_CSV: "text/csv",
    TargetSchema.QIF: "application/qif",
    TargetSchema.XLSX: "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}


class ExportError(Exception):
    """Raised when an export document cannot be generated."""

    def __init__(self, message: str, profile_id: Optional[str] = None):
        self.profile_id = profile_id
        super().__init__(message)


@dataclass
class RenderContext:
    """Lookup data shared by every row of one render.

    Attributes:
        categories: Categories by id, for name and group columns.
        fx_provider: Optional rate source for converted amounts.
    """

    categories: dict[str, Category]
    fx_provider: Optional[FxRateProvider] = None


def effective_fields(profile: ExportProfile) -> list[FieldMapping]:
    """The profile's columns, or its schema's defaults when it names none."""
    return profile.fields or DEFAULT_FIELDS.get(profile.target_schema, [])


def validate_profile(profile: ExportProfile) -> None:
    """Check that every mapped field exists.

    Raises:
        ExportError: If a mapping references an unknown attribute.
    """
    for mapping in effective_fields(profile):
        if mapping.source not in EXPORTABLE_FIELDS:
            raise ExportError(
                f"Profile {profile.id}: unknown field '{mapping.source}' for column '{mapping.column}'",
                profile.id,
            )
    if profile.target_schema != TargetSchema.QIF and not effective_fields(profile):
        raise ExportError(f"Profile {profile.id}: no columns to export", profile.id)


def field_value(
    txn: Transaction,
    mapping: FieldMapping,
    profile: ExportProfile,
    context: RenderContext,
) -> CellValue:
    """Resolve one cell for a transaction.

    Monetary values come back as Decimals rounded to the mapping's decimal
    places (None for an empty inflow/outflow cell). Dates come back
    formatted with the mapping's date format. Everything else is text.
    """
    source = mapping.source
    amount = -txn.amount if mapping.invert_sign else txn.amount
    category = context.categories.get(txn.category_id) if txn.category_id else None

    if source == "date":
        return txn.date.strftime(mapping.date_format)
    if source == "amount":
        return _money(amount, mapping)
    if source == "inflow":
        return _money(txn.amount, mapping) if txn.amount > 0 else None
    if source == "outflow":
        return _money(-txn.amount, mapping) if txn.amount < 0 else None
    if source == "converted_amount":
        if not profile.reporting_currency:
            return None
        converted = convert_amount(
            amount,
            txn.currency,
            profile.reporting_currency,
            txn.date,
            context.fx_provider,
            mapping.decimal_places,
        )
        return _money(converted, mapping) if converted is not None else None
    if source == "category":
        return category.name if category else ""
    if source == "category_group":
        return category.group if category else ""
    if source == "category_id":
        return txn.category_id or ""
    if source == "classification_source":
        return txn.classification_source.value
    if source == "confidence":
        return f"{txn.confidence:.2f}"
    if source == "currency":
        return txn.currency
    if source == "merchant":
        return txn.merchant or txn.description
    return str(getattr(txn, source))


def _money(value: Decimal, mapping: FieldMapping) -> Decimal:
    return Decimal(format_amount(value, mapping.decimal_places))


def _text_cell(value: CellValue) -> str:
    if value is None:
        return ""
    return str(value)


# -------------------------------------------------------------------------
# Renderers
# -------------------------------------------------------------------------


def render_csv(
    profile: ExportProfile,
    transactions: list[Transaction],
    context: RenderContext,
) -> bytes:
    """Render a delimited document with one header row."""
    fields = effective_fields(profile)
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow([sanitize_for_csv(m.column) for m in fields])

    for txn in transactions:
        row: list[Optional[str]] = []
        for mapping in fields:
            value = field_value(txn, mapping, profile, context)
            if mapping.source in _MONEY_FIELDS:
                row.append(_text_cell(value))
            else:
                row.append(sanitize_for_csv(_text_cell(value)))
        writer.writerow(row)

    return buffer.getvalue().encode("utf-8")


def render_qif(
    profile: ExportProfile,
    transactions: list[Transaction],
    context: RenderContext,
) -> bytes:
    """Render a QIF bank register.

    The record layout is fixed (D, T, P, M, L); the profile's mapping is
    used only for the date format of the D line when it maps a date.
    """
    date_format = "%m/%d/%Y"
    for mapping in profile.fields:
        if mapping.source == "date":
            date_format = mapping.date_format
            break

    lines = ["!Type:Bank"]
    for txn in transactions:
        category = context.categories.get(txn.category_id) if txn.category_id else None
        lines.append(f"D{txn.date.strftime(date_format)}")
        lines.append(f"T{format_amount(txn.amount)}")
        lines.append(f"P{sanitize_qif_text(txn.merchant or txn.description)}")
        if txn.merchant and txn.merchant != txn.description:
            lines.append(f"M{sanitize_qif_text(txn.description)}")
        if category is not None:
            lines.append(f"L{sanitize_qif_text(category.name)}")
        lines.append("^")

    return ("\n".join(lines) + "\n").encode("utf-8")


def render_xlsx(
    profile: ExportProfile,
    transactions: list[Transaction],
    context: RenderContext,
) -> bytes:
    """Render a single-sheet workbook with a styled header row."""
    fields = effective_fields(profile)
    header_font = Font(bold=True, color="FFFFFF")
    header_fill = PatternFill(start_color="4472C4", end_color="4472C4", fill_type="solid")
    money_negative = Font(color="CC0000")
    money_format = "#,##0.00;-#,##0.00"

    wb = Workbook()
    ws = wb.active
    ws.title = profile.name[:31] or "Export"

    for col, mapping in enumerate(fields, 1):
        cell = ws.cell(row=1, column=col, value=mapping.column)
        cell.font = header_font
        cell.fill = header_fill
        cell.alignment = Alignment(horizontal="center")

    for row, txn in enumerate(transactions, 2):
        for col, mapping in enumerate(fields, 1):
            value = field_value(txn, mapping, profile, context)
            if mapping.source in _MONEY_FIELDS:
                cell = ws.cell(row=row, column=col, value=value)
                cell.number_format = money_format
                if isinstance(value, Decimal) and value < 0:
                    cell.font = money_negative
            else:
                ws.cell(row=row, column=col, value=sanitize_for_csv(_text_cell(value)))

    for col, mapping in enumerate(fields, 1):
        width = 40 if mapping.source in ("description", "merchant") else 14
        ws.column_dimensions[get_column_letter(col)].width = width
    ws.freeze_panes = "A2"

    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


Renderer = Callable[[ExportProfile, list[Transaction], RenderContext], bytes]

RENDERERS: dict[TargetSchema, Renderer] = {
    TargetSchema.CSV: render_csv,
    TargetSchema.YNAB_CSV: render_csv,
    TargetSchema.QIF: render_qif,
    TargetSchema.XLSX: render_xlsx,
}


def render(
    profile: ExportProfile,
    transactions: list[Transaction],
    context: RenderContext,
) -> tuple[bytes, str]:
    """Render a document for a profile.

    Returns:
        Tuple of (document bytes, content type).

    Raises:
        ExportError: If the profile is invalid or rendering fails.
    """
    validate_profile(profile)
    renderer = RENDERERS[profile.target_schema]
    try:
        document = renderer(profile, transactions, context)
    except (ValueError, TypeError, KeyError) as e:
        raise ExportError(f"Failed to render {profile.target_schema.value}: {e}", profile.id) from e
    logger.debug(
        f"Rendered {len(transactions)} transactions as {profile.target_schema.value} "
        f"({len(document)} bytes)"
    )
    return document, CONTENT_TYPES[profile.target_schema]
