"""Row normalizer: raw text rows to typed transaction candidates."""

import re
from decimal import Decimal
from typing import Optional

from statement_ingest.models.account import Account
from statement_ingest.models.statement import Statement
from statement_ingest.models.transaction import RawRow, TransactionCandidate
from statement_ingest.parsers.base import RowExtractionFailed
from statement_ingest.processing.currency import CurrencyResolution
from statement_ingest.utils.date_utils import parse_date
from statement_ingest.utils.decimal_utils import parse_amount
from statement_ingest.utils.logging_config import get_logger

logger = get_logger(__name__)

# Payment processor prefixes in front of the real merchant name
_PROCESSOR_PREFIXES = re.compile(
    r"^(?:SQ\s*\*|TST\s*\*|SP\s*\*|PAYPAL\s*\*|PP\s*\*|POS\s+(?:PURCHASE\s+|DEBIT\s+)?|"
    r"DEBIT\s+CARD\s+PURCHASE\s+|CHECKCARD\s+\d{4}\s+|PURCHASE\s+AUTHORIZED\s+ON\s+\S+\s+)",
    re.IGNORECASE,
)

# Tokens that never belong to a merchant name
_NOISE_PATTERNS = [
    re.compile(r"(?<!\w)(?:X{2,}|\*{2,})\d{2,}\b", re.IGNORECASE),  # masked card XXXX1234
    re.compile(r"\*\d{3,}\b"),  # *1234
    re.compile(r"\bCARD\s*(?:NO\.?\s*)?\d{4}\b", re.IGNORECASE),
    re.compile(r"#\s*\S+"),  # store or reference numbers
    re.compile(r"\bREF(?:ERENCE)?[:\s]+\S+", re.IGNORECASE),
    re.compile(r"\b\d{1,2}/\d{1,2}(?:/\d{2,4})?\b"),  # embedded dates
    re.compile(r"\bhttps?://\S+|\bwww\.\S+", re.IGNORECASE),
]

_TRAILING_DIGITS = re.compile(r"(?:\s+[\d\-]+)+$")
_TRAILING_PUNCT = re.compile(r"[\s*\-/.,:]+$")


def guess_merchant(description: str) -> str:
    """Guess the merchant name by stripping noise tokens from a description.

    Examples:
        "UBER EATS 123" -> "UBER EATS"
        "SQ *BLUE BOTTLE COFFEE #42" -> "BLUE BOTTLE COFFEE"
        "AMAZON MKTPLACE XXXX1234" -> "AMAZON MKTPLACE"

    Args:
        description: Description as written in the statement.

    Returns:
        The cleaned merchant guess, or the collapsed description when
        stripping would leave nothing.
    """
    text = " ".join(description.split())
    if not text:
        return ""

    merchant = _PROCESSOR_PREFIXES.sub("", text)
    for pattern in _NOISE_PATTERNS:
        merchant = pattern.sub(" ", merchant)
    merchant = " ".join(merchant.split())
    merchant = _TRAILING_DIGITS.sub("", merchant)
    merchant = _TRAILING_PUNCT.sub("", merchant).strip()

    return merchant or text


class Normalizer:
    """Turns raw rows into typed transaction candidates.

    Dates are parsed against the account's format list, else the source
    layout's, else the built-in list read day-first for EU accounts. First
    match wins. Amounts are exact Decimals. When a row has
    split debit/credit columns, the column decides the sign; otherwise the
    amount's own sign convention does (leading or trailing minus,
    parentheses, DR/CR suffix).
    """

    def normalize(
        self,
        row: RawRow,
        account: Account,
        statement: Statement,
        currency: CurrencyResolution,
    ) -> TransactionCandidate:
        """Normalize a single raw row.

        Args:
            row: Raw row from an extraction adapter.
            account: Account the statement belongs to.
            statement: Statement being ingested.
            currency: Resolved currency for this row.

        Returns:
            A TransactionCandidate.

        Raises:
            RowExtractionFailed: If the row is flagged for manual mapping or
                its date or amount cannot be parsed.
        """
        if row.needs_manual_mapping:
            raise RowExtractionFailed("row needs manual mapping", row.line_number)

        description = " ".join(row.description.split())
        if not description:
            raise RowExtractionFailed("missing description", row.line_number)

        try:
            txn_date = parse_date(
                row.date_text,
                account.date_formats or row.date_formats or None,
                day_first=account.locale == "EU",
            )
        except ValueError as e:
            raise RowExtractionFailed(str(e), row.line_number) from e

        amount = self._signed_amount(row, account.locale)
        balance = self._balance(row, account.locale)

        return TransactionCandidate(
            account_id=account.id,
            statement_id=statement.id,
            owner=account.owner,
            date=txn_date,
            amount=amount,
            currency=currency.code,
            description=description,
            merchant=guess_merchant(description),
            line_number=row.line_number,
            currency_source=currency.source,
            balance=balance,
        )

    def _signed_amount(self, row: RawRow, locale: str) -> Decimal:
        debit = self._parse_optional(row.debit_text, locale, row.line_number)
        credit = self._parse_optional(row.credit_text, locale, row.line_number)

        if debit is not None or credit is not None:
            # Column decides the sign; a sign on the value itself is ignored
            debit_value = debit[0] if debit is not None else Decimal(0)
            credit_value = credit[0] if credit is not None else Decimal(0)
            if debit_value and credit_value:
                raise RowExtractionFailed(
                    "both debit and credit columns hold a value", row.line_number
                )
            if debit_value:
                return -debit_value
            if credit_value:
                return credit_value
            # Both empty or zero: fall through to a plain amount column if any

        parsed = self._parse_optional(row.amount_text, locale, row.line_number)
        if parsed is not None:
            value, is_negative = parsed
            return -value if is_negative else value

        if debit is not None or credit is not None:
            return Decimal(0)
        raise RowExtractionFailed("missing amount", row.line_number)

    def _parse_optional(
        self, text: Optional[str], locale: str, line_number: int
    ) -> Optional[tuple[Decimal, bool]]:
        if text is None or not text.strip():
            return None
        try:
            return parse_amount(text, locale)
        except ValueError as e:
            raise RowExtractionFailed(str(e), line_number) from e

    def _balance(self, row: RawRow, locale: str) -> Optional[Decimal]:
        if not row.balance_text or not row.balance_text.strip():
            return None
        try:
            value, is_negative = parse_amount(row.balance_text, locale)
        except ValueError:
            logger.debug(f"Line {row.line_number}: ignoring unparseable balance {row.balance_text!r}")
            return None
        return -value if is_negative else value
