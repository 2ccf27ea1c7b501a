"""Data models for statements, transactions, categories, and exports."""

from statement_ingest.models.account import Account, AccountType
from statement_ingest.models.category import (
    Category,
    CategoryFeedback,
    CategoryRule,
    CategoryType,
    ProposalStatus,
    RuleField,
    RuleKind,
    RuleProposal,
)
from statement_ingest.models.export import (
    DateRangePolicy,
    ExportProfile,
    ExportResult,
    ExportRun,
    FieldMapping,
    TargetSchema,
)
from statement_ingest.models.statement import (
    InvalidStatusTransition,
    Statement,
    StatementFormat,
    StatementStatus,
)
from statement_ingest.models.transaction import (
    ClassificationSource,
    DuplicateLink,
    RawRow,
    RowFailure,
    Transaction,
    TransactionCandidate,
)

__all__ = [
    "Account",
    "AccountType",
    "Category",
    "CategoryFeedback",
    "CategoryRule",
    "CategoryType",
    "ProposalStatus",
    "RuleField",
    "RuleKind",
    "RuleProposal",
    "DateRangePolicy",
    "ExportProfile",
    "ExportResult",
    "ExportRun",
    "FieldMapping",
    "TargetSchema",
    "InvalidStatusTransition",
    "Statement",
    "StatementFormat",
    "StatementStatus",
    "ClassificationSource",
    "DuplicateLink",
    "RawRow",
    "RowFailure",
    "Transaction",
    "TransactionCandidate",
]
