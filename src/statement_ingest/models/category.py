"""Category, categorization rule, and feedback data models."""

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from statement_ingest.utils.logging_config import get_logger

logger = get_logger(__name__)

# Maximum pattern length to prevent overly complex patterns
MAX_PATTERN_LENGTH = 500

# Patterns that can cause catastrophic backtracking (ReDoS)
DANGEROUS_PATTERN_SIGNATURES = [
    r"(\w+)+",
    r"(.*)*",
    r"(.+)+",
    r'([^"]+)+',
    r"(\s+)+",
]

# Group with an inner quantifier followed by an outer quantifier: (a+)+, (a+){2,}
_NESTED_QUANTIFIER_PATTERN = re.compile(
    r"\([^)]*[+*?][^)]*\)[+*?]|"
    r"\([^)]*[+*?][^)]*\)\{[0-9,]+\}"
)


def is_safe_pattern(pattern: str) -> tuple[bool, str]:
    """Check if a regex pattern is safe from ReDoS.

    Used for user-defined rules and for patterns suggested by the
    extraction model.

    Args:
        pattern: Regex pattern string to validate.

    Returns:
        Tuple of (is_safe, reason if unsafe).
    """
    if len(pattern) > MAX_PATTERN_LENGTH:
        return False, f"Pattern exceeds {MAX_PATTERN_LENGTH} character limit"

    if _NESTED_QUANTIFIER_PATTERN.search(pattern):
        return False, "Pattern contains dangerous nested quantifier"

    for dangerous in DANGEROUS_PATTERN_SIGNATURES:
        if dangerous in pattern:
            return False, "Pattern contains known dangerous signature"

    return True, ""


class CategoryType(Enum):
    """Direction of money a category normally covers."""

    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"


class RuleKind(Enum):
    """How a rule pattern is compared against the target field."""

    CONTAINS = "contains"
    REGEX = "regex"
    EQUALS = "equals"


class RuleField(Enum):
    """Transaction field a rule inspects."""

    DESCRIPTION = "description"
    MERCHANT = "merchant"


@dataclass
class Category:
    """User-scoped category.

    Attributes:
        id: Unique identifier for this category.
        name: Human-readable category name ("Eating Out").
        group: Grouping label ("Food", "Housing").
        owner: User the category belongs to.
        category_type: Direction of money.
    """

    id: str
    name: str
    group: str = ""
    owner: str = "default"
    category_type: CategoryType = CategoryType.EXPENSE

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "Category":
        """Create a Category from a dictionary (e.g., from YAML config).

        Args:
            data: Dictionary containing category data.

        Returns:
            A new Category instance.
        """
        type_str = str(data.get("type", "expense"))
        try:
            category_type = CategoryType(type_str)
        except ValueError:
            category_type = CategoryType.EXPENSE

        return cls(
            id=str(data["id"]),
            name=str(data.get("name", data["id"])),
            group=str(data.get("group", "")),
            owner=str(data.get("owner", "default")),
            category_type=category_type,
        )

    def __repr__(self) -> str:
        return f"Category(id={self.id!r}, name={self.name!r}, group={self.group!r})"


@dataclass
class CategoryRule:
    """Rule for deterministic transaction categorization.

    Rules are evaluated highest priority first. Ties are broken by creation
    order (``sequence``, lower first), then by id, so evaluation order is
    total and reproducible.

    Attributes:
        id: Unique identifier for this rule.
        category_id: Category to assign when the rule matches.
        pattern: Text or regex to look for.
        kind: contains / regex / equals. Matching is case-insensitive.
        target_field: Transaction field inspected by the rule.
        priority: Higher is evaluated first.
        enabled: Disabled rules never match.
        owner: User the rule belongs to.
        sequence: Creation order, assigned by the store.
    """

    id: str
    category_id: str
    pattern: str
    kind: RuleKind = RuleKind.CONTAINS
    target_field: RuleField = RuleField.DESCRIPTION
    priority: int = 0
    enabled: bool = True
    owner: str = "default"
    sequence: int = 0

    _compiled: Optional[re.Pattern[str]] = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        self._compiled = None
        if self.kind != RuleKind.REGEX:
            return
        is_safe, reason = is_safe_pattern(self.pattern)
        if not is_safe:
            logger.warning(
                f"Rejecting unsafe regex pattern '{self.pattern}' in rule '{self.id}': {reason}"
            )
            return
        try:
            self._compiled = re.compile(self.pattern, re.IGNORECASE)
        except re.error as e:
            logger.warning(f"Invalid regex pattern '{self.pattern}' in rule '{self.id}': {e}")

    @property
    def sort_key(self) -> tuple[int, int, str]:
        """Total evaluation order: priority desc, creation order asc, id."""
        return (-self.priority, self.sequence, self.id)

    def matches(self, description: str, merchant: str = "") -> bool:
        """Check if a transaction matches this rule.

        Args:
            description: Transaction description.
            merchant: Merchant guess.

        Returns:
            True if the rule is enabled and its pattern matches the target field.
            A regex rule whose pattern was rejected never matches.
        """
        if not self.enabled or not self.pattern:
            return False

        value = merchant if self.target_field == RuleField.MERCHANT else description
        if not value:
            return False

        if self.kind == RuleKind.CONTAINS:
            return self.pattern.lower() in value.lower()
        if self.kind == RuleKind.EQUALS:
            return self.pattern.strip().lower() == value.strip().lower()
        if self._compiled is None:
            return False
        return self._compiled.search(value) is not None

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "CategoryRule":
        """Create a CategoryRule from a dictionary (e.g., from YAML config).

        Args:
            data: Dictionary containing rule data.

        Returns:
            A new CategoryRule instance.
        """
        kind_str = str(data.get("kind", "contains")).lower()
        try:
            kind = RuleKind(kind_str)
        except ValueError:
            logger.warning(f"Unknown rule kind '{kind_str}', using 'contains'")
            kind = RuleKind.CONTAINS

        field_str = str(data.get("field", "description")).lower()
        try:
            target_field = RuleField(field_str)
        except ValueError:
            logger.warning(f"Unknown rule field '{field_str}', using 'description'")
            target_field = RuleField.DESCRIPTION

        return cls(
            id=str(data["id"]),
            category_id=str(data["category"]),
            pattern=str(data["pattern"]),
            kind=kind,
            target_field=target_field,
            priority=int(data.get("priority", 0)),  # type: ignore[arg-type]
            enabled=bool(data.get("enabled", True)),
            owner=str(data.get("owner", "default")),
        )

    def __repr__(self) -> str:
        return (
            f"CategoryRule(id={self.id!r}, {self.kind.value}({self.pattern!r}) "
            f"-> {self.category_id!r}, priority={self.priority})"
        )


@dataclass(frozen=True)
class CategoryFeedback:
    """Immutable record of a user correction.

    Append-only. Feeds rule proposal and the AI's historical examples.
    """

    transaction_id: str
    prior_category_id: str | None
    new_category_id: str
    owner: str = "default"
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class ProposalStatus(Enum):
    """Review state of a proposed rule."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass
class RuleProposal:
    """A rule suggested from recurring corrections, awaiting user approval.

    Attributes:
        pattern: Merchant text the corrections had in common.
        category_id: Category the user kept choosing.
        occurrences: Number of supporting corrections.
        owner: User the proposal is for.
        id: Unique identifier.
        status: Review state. Proposals never become rules on their own.
        rule_id: Rule created on approval.
        created_at: Proposal timestamp.
    """

    pattern: str
    category_id: str
    occurrences: int
    owner: str = "default"
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: ProposalStatus = ProposalStatus.PENDING
    rule_id: str | None = None
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
