"""Per-row currency resolution."""

import re
from dataclasses import dataclass
from typing import Optional

from statement_ingest.models.account import Account
from statement_ingest.models.transaction import RawRow
from statement_ingest.utils.logging_config import get_logger

logger = get_logger(__name__)

# ISO 4217 codes accepted from statement text
KNOWN_CURRENCIES = {
    "USD", "EUR", "GBP", "JPY", "CHF", "CAD", "AUD", "NZD", "SEK", "NOK",
    "DKK", "ISK", "PLN", "CZK", "HUF", "RON", "BGN", "TRY", "RUB", "UAH",
    "CNY", "HKD", "SGD", "TWD", "KRW", "INR", "IDR", "MYR", "THB", "PHP",
    "VND", "ZAR", "BRL", "MXN", "ARS", "CLP", "COP", "PEN", "ILS", "AED",
    "SAR", "QAR", "EGP", "NGN", "KES", "MAD",
}

# Symbols that name exactly one currency, longest first
UNAMBIGUOUS_SYMBOLS = (
    ("US$", "USD"),
    ("C$", "CAD"),
    ("CA$", "CAD"),
    ("A$", "AUD"),
    ("AU$", "AUD"),
    ("NZ$", "NZD"),
    ("HK$", "HKD"),
    ("S$", "SGD"),
    ("R$", "BRL"),
    ("\u20ac", "EUR"),
    ("\u00a3", "GBP"),
    ("\u20b9", "INR"),
    ("\u20bd", "RUB"),
    ("\u20a9", "KRW"),
    ("\u20ba", "TRY"),
    ("\u20aa", "ILS"),
    ("z\u0142", "PLN"),
)

# Symbols shared by several currencies, with the default reading
SHARED_SYMBOLS = {
    "$": ("USD", {"USD", "CAD", "AUD", "NZD", "SGD", "HKD", "MXN", "ARS", "CLP", "COP", "TWD"}),
    "\u00a5": ("JPY", {"JPY", "CNY"}),
    "kr": ("SEK", {"SEK", "NOK", "DKK", "ISK"}),
}

# Currencies that conventionally write amounts with each formatting style
_STYLE_CANDIDATES = {
    "apostrophe_grouping": {"CHF"},
    "comma_decimal": {
        "EUR", "SEK", "NOK", "DKK", "PLN", "CZK", "HUF", "RON", "BGN",
        "TRY", "RUB", "UAH", "BRL", "ARS", "CLP", "COP", "IDR", "VND", "ZAR",
    },
    "space_grouping": {"EUR", "SEK", "NOK", "PLN", "CZK", "HUF", "RUB", "UAH", "CHF", "ZAR"},
}

_ISO_TOKEN = re.compile(r"(?<![A-Za-z])([A-Za-z]{3})(?![A-Za-z])")
_APOSTROPHE_GROUPING = re.compile(r"\d'\d{3}")
_COMMA_DECIMAL = re.compile(r"(?:^|[^\d,.])\d{1,3}(?:\.\d{3})*,\d{2}(?!\d)")
_SPACE_GROUPING = re.compile(r"\d[ \u00a0\u202f]\d{3}(?:[,.]\d{2})?(?!\d)")


@dataclass(frozen=True)
class CurrencyResolution:
    """Resolved currency for one row.

    Attributes:
        code: ISO 4217 code.
        source: "explicit" (code or symbol on the row), "locale" (inferred
            from number formatting) or "default" (account default).
    """

    code: str
    source: str


class CurrencyResolver:
    """Assigns an ISO currency to each raw row.

    Order of precedence:
    1. An explicit currency code or symbol on the row (currency column,
       or a code or symbol written next to the amount).
    2. The currency implied by the row's number formatting, when that
       narrows the choice to the account's default or a single currency.
    3. The account's default currency.

    Resolution is per row: a statement may mix currencies.
    """

    def resolve(self, row: RawRow, account: Account) -> CurrencyResolution:
        """Resolve the currency for a row.

        Args:
            row: Raw row from an extraction adapter.
            account: Account the statement belongs to.

        Returns:
            CurrencyResolution with the code and how it was found.
        """
        default = account.default_currency.upper()
        amount_texts = [t for t in (row.amount_text, row.debit_text, row.credit_text) if t]

        # A currency column is checked first, then the amount cells
        unrecognized: Optional[str] = None
        if row.currency_hint and row.currency_hint.strip():
            code = self._explicit_code(row.currency_hint, default)
            if code:
                return CurrencyResolution(code, "explicit")
            unrecognized = row.currency_hint.strip()

        for text in amount_texts:
            code = self._explicit_code(text, default)
            if code:
                return CurrencyResolution(code, "explicit")

        candidates = self._style_candidates(amount_texts)
        if candidates:
            if default in candidates:
                return CurrencyResolution(default, "locale")
            if len(candidates) == 1:
                return CurrencyResolution(next(iter(candidates)), "locale")

        if unrecognized:
            logger.warning(
                f"Line {row.line_number}: unrecognized currency {unrecognized!r}, "
                f"using account default {default}"
            )
        else:
            logger.debug(f"Line {row.line_number}: no currency on row, using account default {default}")
        return CurrencyResolution(default, "default")

    def _explicit_code(self, text: str, default: str) -> Optional[str]:
        """Find an ISO code or currency symbol in text."""
        for match in _ISO_TOKEN.finditer(text):
            token = match.group(1).upper()
            if token in KNOWN_CURRENCIES:
                return token

        for symbol, code in UNAMBIGUOUS_SYMBOLS:
            if symbol in text:
                return code

        lowered = text.lower()
        for symbol, (fallback, family) in SHARED_SYMBOLS.items():
            if symbol in lowered:
                return default if default in family else fallback
        return None

    def _style_candidates(self, texts: list[str]) -> set[str]:
        """Currencies consistent with how the amounts are written."""
        candidates: Optional[set[str]] = None
        for text in texts:
            style = self._formatting_style(text)
            if style is None:
                continue
            style_set = _STYLE_CANDIDATES[style]
            candidates = set(style_set) if candidates is None else candidates & style_set
        return candidates or set()

    def _formatting_style(self, text: str) -> Optional[str]:
        if _APOSTROPHE_GROUPING.search(text):
            return "apostrophe_grouping"
        if _COMMA_DECIMAL.search(text):
            return "comma_decimal"
        if _SPACE_GROUPING.search(text):
            return "space_grouping"
        return None
