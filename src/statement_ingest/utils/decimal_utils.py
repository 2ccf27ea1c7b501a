"""Decimal utilities for monetary values.

Amounts are always held as Decimal. Floats never touch a ledger value.
"""

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

# Currency symbols stripped before numeric parsing, longest first
CURRENCY_SYMBOLS = ("CHF", "R$", "US$", "C$", "A$", "$", "\u20ac", "\u00a3", "\u00a5", "\u20b9", "\u20bd", "\u20a9", "\u20bf", "z\u0142", "kr")

# ISO-4217-looking codes that may prefix or suffix an amount ("USD 12.00", "12,00 EUR")
ISO_CODE_PATTERN = re.compile(r"(?<![A-Za-z])[A-Z]{3}(?![A-Za-z])", re.IGNORECASE)

# Parentheses-enclosed negatives: ($1,234.56) or (1234.56)
PARENS_NEGATIVE_PATTERN = re.compile(r"^\s*\(\s*([^)]+)\s*\)\s*$")

# Trailing DR/CR indicators
DR_CR_PATTERN = re.compile(r"\s*(DR|CR)\.?\s*$", re.IGNORECASE)

# Whatever remains after stripping must look like a number
_NUMERIC_PATTERN = re.compile(r"^\d+(\.\d+)?$")


def parse_amount(raw_amount: str, locale: str = "US") -> tuple[Decimal, bool]:
    """Parse a raw amount string into a Decimal.

    Handles:
    - Standard: 1234.56, -1234.56, +12.00
    - Currency symbols and codes: $1,234.56, -\u20ac12,50, 12.00 USD
    - Parentheses for negative: ($1,234.56)
    - Trailing minus: 1234.56-
    - European separators: 1.234,56 and 1 234,56
    - Swiss separators: 1'234.56
    - DR/CR suffix: 1234.56 DR

    A comma followed by exactly three digits with no other separator
    ("1,234") is ambiguous: US locale reads it as a thousands separator,
    EU locale as a decimal comma.

    Args:
        raw_amount: The raw amount string to parse.
        locale: Locale hint for ambiguous formats ("US" or "EU").

    Returns:
        Tuple of (absolute amount as Decimal, is_negative flag).

    Raises:
        ValueError: If anything non-numeric remains after stripping.
    """
    if raw_amount is None or not str(raw_amount).strip():
        raise ValueError("Empty amount string")

    original = raw_amount
    amount_str = str(raw_amount).strip()
    is_negative = False

    parens_match = PARENS_NEGATIVE_PATTERN.match(amount_str)
    if parens_match:
        amount_str = parens_match.group(1).strip()
        is_negative = True

    dr_cr_match = DR_CR_PATTERN.search(amount_str)
    if dr_cr_match:
        if dr_cr_match.group(1).upper() == "DR":
            is_negative = True
        amount_str = DR_CR_PATTERN.sub("", amount_str).strip()

    amount_str = ISO_CODE_PATTERN.sub("", amount_str)
    for symbol in CURRENCY_SYMBOLS:
        amount_str = amount_str.replace(symbol, "")
    amount_str = amount_str.strip()

    # Sign may sit before or after the currency symbol, or trail the number
    if amount_str.startswith("-"):
        is_negative = True
        amount_str = amount_str[1:].strip()
    elif amount_str.startswith("+"):
        amount_str = amount_str[1:].strip()
    if amount_str.endswith("-"):
        is_negative = True
        amount_str = amount_str[:-1].strip()

    amount_str = amount_str.replace("'", "").replace("\u00a0", " ")
    if re.search(r"\d \d{3}", amount_str):
        amount_str = amount_str.replace(" ", "")

    if "," in amount_str and "." in amount_str:
        if amount_str.rfind(",") > amount_str.rfind("."):
            # European: 1.234,56
            amount_str = amount_str.replace(".", "").replace(",", ".")
        else:
            # US: 1,234.56
            amount_str = amount_str.replace(",", "")
    elif "," in amount_str:
        if re.search(r",\d{1,2}$", amount_str):
            amount_str = amount_str.replace(",", ".")
        elif re.search(r",\d{3}$", amount_str) and locale == "EU" and amount_str.count(",") == 1:
            amount_str = amount_str.replace(",", ".")
        else:
            amount_str = amount_str.replace(",", "")
    elif amount_str.count(".") > 1:
        # 1.234.567 is a thousands-grouped integer
        amount_str = amount_str.replace(".", "")

    amount_str = amount_str.replace(" ", "")

    if not _NUMERIC_PATTERN.match(amount_str):
        raise ValueError(f"Cannot parse amount '{original}': non-numeric content")

    try:
        amount = Decimal(amount_str)
    except InvalidOperation as e:
        raise ValueError(f"Cannot parse amount '{original}': {e}") from e

    return abs(amount), is_negative


def amount_key(amount: Decimal) -> str:
    """Canonical string form of an amount for key comparisons.

    -24.50 and -24.5 produce the same key. Negative zero becomes "0".
    """
    if amount == 0:
        return "0"
    return format(amount.normalize(), "f")


def format_amount(
    amount: Decimal,
    decimal_places: int = 2,
    include_sign: bool = True,
) -> str:
    """Format a Decimal amount for output.

    Args:
        amount: The amount to format.
        decimal_places: Number of decimal places.
        include_sign: Whether to include sign for negative amounts.

    Returns:
        Formatted string like "-1234.56" or "1234.56".
    """
    quantize_str = "1" if decimal_places == 0 else "0." + "0" * decimal_places
    rounded = amount.quantize(Decimal(quantize_str), rounding=ROUND_HALF_UP)
    if include_sign and rounded < 0:
        return str(rounded)
    return str(abs(rounded))
