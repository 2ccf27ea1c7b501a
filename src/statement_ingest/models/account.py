"""Account data model for statement sources."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class AccountType(Enum):
    """Type of financial account."""

    CHECKING = "checking"
    SAVINGS = "savings"
    CREDIT_CARD = "credit_card"
    LOAN = "loan"
    INVESTMENT = "investment"
    CASH = "cash"
    OTHER = "other"


@dataclass
class Account:
    """A bank or card account that statements are uploaded against.

    Attributes:
        id: Unique identifier for this account.
        name: Human-readable account name (e.g., "Chase Checking ****1234").
        account_type: Type of account (checking, credit_card, etc.).
        owner: User that owns the account and everything ingested into it.
        default_currency: ISO 4217 code used when a row carries no currency.
        locale: Formatting hint ("US" or "EU") for ambiguous amounts and
            numeric dates. EU reads "05/01/2025" as 5 January.
        institution: Name of the financial institution.
        date_formats: Optional ordered strptime formats that replace the
            built-in list for this account's statements.
        is_active: Whether uploads are accepted for this account.
    """

    id: str
    name: str
    account_type: AccountType = AccountType.OTHER
    owner: str = "default"
    default_currency: str = "USD"
    locale: str = "US"
    institution: Optional[str] = None
    date_formats: list[str] = field(default_factory=list)
    is_active: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "Account":
        """Create an Account from a dictionary (e.g., from YAML config).

        Args:
            data: Dictionary containing account data.

        Returns:
            A new Account instance.
        """
        account_type_str = str(data.get("type", "other"))
        try:
            account_type = AccountType(account_type_str)
        except ValueError:
            account_type = AccountType.OTHER

        locale = str(data.get("locale", "US")).upper()
        if locale not in ("US", "EU"):
            locale = "US"

        return cls(
            id=str(data["id"]),
            name=str(data.get("name", data["id"])),
            account_type=account_type,
            owner=str(data.get("owner", "default")),
            default_currency=str(data.get("currency", "USD")).upper(),
            locale=locale,
            institution=str(data["institution"]) if "institution" in data else None,
            date_formats=list(data.get("date_formats", [])),  # type: ignore[arg-type]
            is_active=bool(data.get("is_active", True)),
        )

    def __repr__(self) -> str:
        return (
            f"Account(id={self.id!r}, name={self.name!r}, "
            f"currency={self.default_currency}, type={self.account_type.value})"
        )
