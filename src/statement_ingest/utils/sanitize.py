"""Sanitization utilities for export documents."""

from typing import Optional

# Characters that trigger formula execution in spreadsheet applications
# when they appear at the start of a cell value.
# Includes | for DDE (Dynamic Data Exchange) attack prevention.
_FORMULA_CHARS = ("=", "+", "-", "@", "\t", "\r", "\n", "|")


def sanitize_for_csv(value: Optional[str]) -> Optional[str]:
    """Neutralize spreadsheet formula injection in a text cell.

    Values beginning with a formula-triggering character get a leading
    single quote. Numeric cells should not be passed through this, since
    negative amounts legitimately start with "-".

    Args:
        value: String value to sanitize, or None.

    Returns:
        Sanitized string, or None if input was None.
    """
    if value is None:
        return None
    if not value:
        return value
    if value.startswith(_FORMULA_CHARS):
        return "'" + value
    return value


def sanitize_qif_text(value: Optional[str]) -> str:
    """Make a value safe for a single QIF line.

    QIF records are line-oriented, so embedded newlines would start a new
    field and a bare "^" would terminate the record early.
    """
    if not value:
        return ""
    flattened = " ".join(value.splitlines()).strip()
    if flattened == "^":
        return ""
    return flattened
