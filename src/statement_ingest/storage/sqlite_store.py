"""
SQLite-based store for statements, transactions and classification state.

Tables:
- statements: One row per uploaded file and its parse status
- transactions: Durable transactions, unique on the natural key
- duplicate_links: Informational pointers from discarded candidates
- categories / category_rules: User-scoped categories and rules
- category_feedback: Append-only correction log
- rule_proposals: Rules suggested from recurring corrections
- export_markers: exported[profile] flags per transaction
- export_runs: Documents of completed marking exports
"""

import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path

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
from statement_ingest.models.export import ExportRun
from statement_ingest.models.statement import Statement, StatementFormat, StatementStatus
from statement_ingest.models.transaction import (
    ClassificationSource,
    DuplicateLink,
    RowFailure,
    Transaction,
    normalize_description,
)
from statement_ingest.utils.decimal_utils import amount_key
from statement_ingest.utils.logging_config import get_logger

logger = get_logger(__name__)

# Separator for GROUP_CONCAT of profile ids (ASCII unit separator)
_MARKER_SEP = "\x1f"


class StorageError(Exception):
    """Base error for store operations."""


class StorageConflict(StorageError):
    """Raised when a write violates a uniqueness constraint."""


class NotFoundError(StorageError):
    """Raised when a referenced record does not exist."""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _transaction_from_row(row: sqlite3.Row) -> Transaction:
    markers = row["exported_profiles"]
    return Transaction(
        id=row["id"],
        account_id=row["account_id"],
        owner=row["owner"],
        statement_id=row["statement_id"],
        date=date.fromisoformat(row["date"]),
        amount=Decimal(row["amount"]),
        currency=row["currency"],
        description=row["description"],
        merchant=row["merchant"] or "",
        category_id=row["category_id"],
        classification_source=ClassificationSource(row["classification_source"]),
        confidence=float(row["confidence"]),
        rule_id=row["rule_id"],
        classification_reason=row["classification_reason"] or "",
        exported_profiles=set(markers.split(_MARKER_SEP)) if markers else set(),
        is_deleted=bool(row["is_deleted"]),
        created_at=row["created_at"],
    )


def _statement_from_row(row: sqlite3.Row) -> Statement:
    return Statement(
        id=row["id"],
        owner=row["owner"],
        account_id=row["account_id"],
        filename=row["filename"],
        detected_format=(
            StatementFormat(row["detected_format"]) if row["detected_format"] else None
        ),
        detection_confidence=float(row["detection_confidence"]),
        status=StatementStatus(row["status"]),
        raw_row_count=row["raw_row_count"],
        failed_row_count=row["failed_row_count"],
        error=row["error"],
        created_at=row["created_at"],
    )


def _rule_from_row(row: sqlite3.Row) -> CategoryRule:
    return CategoryRule(
        id=row["id"],
        category_id=row["category_id"],
        pattern=row["pattern"],
        kind=RuleKind(row["kind"]),
        target_field=RuleField(row["target_field"]),
        priority=row["priority"],
        enabled=bool(row["enabled"]),
        owner=row["owner"],
        sequence=row["sequence"],
    )


def _feedback_from_row(row: sqlite3.Row) -> CategoryFeedback:
    return CategoryFeedback(
        id=row["feedback_id"],
        transaction_id=row["transaction_id"],
        prior_category_id=row["prior_category_id"],
        new_category_id=row["new_category_id"],
        owner=row["feedback_owner"],
        created_at=row["feedback_created_at"],
    )


def _proposal_from_row(row: sqlite3.Row) -> RuleProposal:
    return RuleProposal(
        id=row["id"],
        owner=row["owner"],
        pattern=row["pattern"],
        category_id=row["category_id"],
        occurrences=row["occurrences"],
        status=ProposalStatus(row["status"]),
        rule_id=row["rule_id"],
        created_at=row["created_at"],
    )


_TRANSACTION_SELECT = f"""
    SELECT t.*,
        (SELECT GROUP_CONCAT(m.profile_id, '{_MARKER_SEP}')
         FROM export_markers m WHERE m.transaction_id = t.id) AS exported_profiles
    FROM transactions t
"""


class SQLiteStore:
    """
    SQLite store for the ingestion pipeline.

    Every public method runs in its own connection and transaction, so the
    store can be shared across worker threads. Writes that must land
    together (a statement's transactions, a correction and its feedback
    entry, an export's markers) happen in a single transaction.
    """

    def __init__(self, db_path: Path | str, timeout: float = 30.0):
        """
        Initialize the store.

        Args:
            db_path: Path to SQLite database file
            timeout: Seconds to wait on a locked database
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.timeout = timeout
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path), timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions.

        Commits on success and rolls back on any exception. A uniqueness
        violation is re-raised as StorageConflict.
        """
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except sqlite3.IntegrityError as e:
            conn.rollback()
            raise StorageConflict(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self.transaction() as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS statements (
                    id TEXT PRIMARY KEY,
                    owner TEXT NOT NULL,
                    account_id TEXT NOT NULL,
                    filename TEXT NOT NULL,
                    detected_format TEXT,
                    detection_confidence REAL NOT NULL DEFAULT 0,
                    status TEXT NOT NULL,
                    raw_row_count INTEGER NOT NULL DEFAULT 0,
                    failed_row_count INTEGER NOT NULL DEFAULT 0,
                    error TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS transactions (
                    id TEXT PRIMARY KEY,
                    account_id TEXT NOT NULL,
                    owner TEXT NOT NULL,
                    statement_id TEXT,
                    date TEXT NOT NULL,
                    amount TEXT NOT NULL,
                    amount_key TEXT NOT NULL,
                    currency TEXT NOT NULL,
                    description TEXT NOT NULL,
                    description_key TEXT NOT NULL,
                    merchant TEXT,
                    category_id TEXT,
                    classification_source TEXT NOT NULL,
                    confidence REAL NOT NULL DEFAULT 0,
                    rule_id TEXT,
                    classification_reason TEXT,
                    is_deleted INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE UNIQUE INDEX IF NOT EXISTS ux_transactions_natural_key
                    ON transactions(account_id, date, amount_key, currency, description_key)
                    WHERE is_deleted = 0;

                CREATE INDEX IF NOT EXISTS ix_transactions_dedup
                    ON transactions(account_id, amount_key, currency, date);

                CREATE TABLE IF NOT EXISTS duplicate_links (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    statement_id TEXT NOT NULL,
                    line_number INTEGER NOT NULL,
                    existing_transaction_id TEXT NOT NULL,
                    match_kind TEXT NOT NULL,
                    similarity REAL NOT NULL,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS flagged_rows (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    statement_id TEXT NOT NULL,
                    line_number INTEGER NOT NULL,
                    reason TEXT NOT NULL,
                    raw_text TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS categories (
                    id TEXT PRIMARY KEY,
                    owner TEXT NOT NULL,
                    name TEXT NOT NULL,
                    group_name TEXT,
                    category_type TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS category_rules (
                    sequence INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    owner TEXT NOT NULL,
                    category_id TEXT NOT NULL,
                    pattern TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    target_field TEXT NOT NULL,
                    priority INTEGER NOT NULL DEFAULT 0,
                    enabled INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS category_feedback (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    transaction_id TEXT NOT NULL,
                    prior_category_id TEXT,
                    new_category_id TEXT NOT NULL,
                    owner TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS rule_proposals (
                    id TEXT PRIMARY KEY,
                    owner TEXT NOT NULL,
                    pattern TEXT NOT NULL,
                    category_id TEXT NOT NULL,
                    occurrences INTEGER NOT NULL,
                    status TEXT NOT NULL,
                    rule_id TEXT,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS export_markers (
                    transaction_id TEXT NOT NULL,
                    profile_id TEXT NOT NULL,
                    run_key TEXT,
                    exported_at TEXT NOT NULL,
                    PRIMARY KEY (transaction_id, profile_id)
                );

                CREATE TABLE IF NOT EXISTS export_runs (
                    run_key TEXT PRIMARY KEY,
                    profile_id TEXT NOT NULL,
                    date_from TEXT,
                    date_to TEXT,
                    account_ids TEXT NOT NULL,
                    document BLOB NOT NULL,
                    transaction_ids TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );
                """
            )

    # -------------------------------------------------------------------------
    # Statements
    # -------------------------------------------------------------------------

    def save_statement(self, statement: Statement) -> None:
        """Insert or update a statement row."""
        with self.transaction() as conn:
            self._write_statement(conn, statement)

    def _write_statement(self, conn: sqlite3.Connection, statement: Statement) -> None:
        conn.execute(
            """
            INSERT INTO statements
            (id, owner, account_id, filename, detected_format, detection_confidence,
             status, raw_row_count, failed_row_count, error, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                detected_format = excluded.detected_format,
                detection_confidence = excluded.detection_confidence,
                status = excluded.status,
                raw_row_count = excluded.raw_row_count,
                failed_row_count = excluded.failed_row_count,
                error = excluded.error,
                updated_at = excluded.updated_at
        """,
            (
                statement.id,
                statement.owner,
                statement.account_id,
                statement.filename,
                statement.detected_format.value if statement.detected_format else None,
                statement.detection_confidence,
                statement.status.value,
                statement.raw_row_count,
                statement.failed_row_count,
                statement.error,
                statement.created_at,
                _now(),
            ),
        )

    def get_statement(self, statement_id: str) -> Statement | None:
        """Get a statement by id."""
        with self.transaction() as conn:
            row = conn.execute("SELECT * FROM statements WHERE id = ?", (statement_id,)).fetchone()
            return _statement_from_row(row) if row else None

    def save_flagged_rows(self, statement_id: str, rows: list[RowFailure]) -> None:
        """Record source rows left for the user to map by hand."""
        if not rows:
            return
        now = _now()
        with self.transaction() as conn:
            conn.executemany(
                """
                INSERT INTO flagged_rows (statement_id, line_number, reason, raw_text, created_at)
                VALUES (?, ?, ?, ?, ?)
            """,
                [(statement_id, r.line_number, r.reason, r.raw_text, now) for r in rows],
            )

    def list_flagged_rows(self, statement_id: str) -> list[RowFailure]:
        """Rows of a statement awaiting manual mapping, in line order."""
        with self.transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM flagged_rows WHERE statement_id = ? ORDER BY line_number, id",
                (statement_id,),
            ).fetchall()
            return [RowFailure(r["line_number"], r["reason"], r["raw_text"]) for r in rows]

    def purge_statement(self, statement_id: str) -> int:
        """Delete a statement, keeping the transactions it produced.

        Returns:
            Number of transactions whose statement reference was cleared.
        """
        with self.transaction() as conn:
            cursor = conn.execute(
                "UPDATE transactions SET statement_id = NULL, updated_at = ? "
                "WHERE statement_id = ?",
                (_now(), statement_id),
            )
            detached = cursor.rowcount
            conn.execute("DELETE FROM flagged_rows WHERE statement_id = ?", (statement_id,))
            deleted = conn.execute("DELETE FROM statements WHERE id = ?", (statement_id,))
            if deleted.rowcount == 0:
                raise NotFoundError(f"Statement not found: {statement_id}")
        logger.info(f"Purged statement {statement_id}, detached {detached} transactions")
        return detached

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    def _insert_transaction(self, conn: sqlite3.Connection, txn: Transaction) -> None:
        now = _now()
        conn.execute(
            """
            INSERT INTO transactions
            (id, account_id, owner, statement_id, date, amount, amount_key, currency,
             description, description_key, merchant, category_id, classification_source,
             confidence, rule_id, classification_reason, is_deleted, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
            (
                txn.id,
                txn.account_id,
                txn.owner,
                txn.statement_id,
                txn.date.isoformat(),
                str(txn.amount),
                amount_key(txn.amount),
                txn.currency.upper(),
                txn.description,
                normalize_description(txn.description),
                txn.merchant,
                txn.category_id,
                txn.classification_source.value,
                txn.confidence,
                txn.rule_id,
                txn.classification_reason,
                int(txn.is_deleted),
                txn.created_at,
                now,
            ),
        )

    def add_transaction(self, txn: Transaction) -> None:
        """Insert a single transaction.

        Raises:
            StorageConflict: If a live transaction with the same natural key exists.
        """
        with self.transaction() as conn:
            self._insert_transaction(conn, txn)

    def persist_ingestion(
        self,
        statement: Statement,
        transactions: list[Transaction],
        links: list[DuplicateLink],
    ) -> None:
        """Write a statement's outcome in one transaction.

        Either every surviving transaction, every duplicate link and the
        final statement status are written, or none are.

        Raises:
            StorageConflict: If any transaction collides on the natural key.
        """
        with self.transaction() as conn:
            for txn in transactions:
                self._insert_transaction(conn, txn)
            now = _now()
            conn.executemany(
                """
                INSERT INTO duplicate_links
                (statement_id, line_number, existing_transaction_id, match_kind,
                 similarity, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """,
                [
                    (
                        link.statement_id,
                        link.line_number,
                        link.existing_transaction_id,
                        link.match_kind,
                        link.similarity,
                        now,
                    )
                    for link in links
                ],
            )
            self._write_statement(conn, statement)

    def get_transaction(self, transaction_id: str) -> Transaction | None:
        """Get a transaction by id, including soft-deleted ones."""
        with self.transaction() as conn:
            row = conn.execute(
                _TRANSACTION_SELECT + " WHERE t.id = ?", (transaction_id,)
            ).fetchone()
            return _transaction_from_row(row) if row else None

    def find_near_transactions(
        self,
        account_id: str,
        amount: Decimal,
        currency: str,
        date_from: date,
        date_to: date,
    ) -> list[Transaction]:
        """Live transactions with the same account, amount and currency in a date window."""
        with self.transaction() as conn:
            rows = conn.execute(
                _TRANSACTION_SELECT
                + """
                WHERE t.account_id = ? AND t.amount_key = ? AND t.currency = ?
                  AND t.date BETWEEN ? AND ? AND t.is_deleted = 0
                ORDER BY t.date, t.id
            """,
                (
                    account_id,
                    amount_key(amount),
                    currency.upper(),
                    date_from.isoformat(),
                    date_to.isoformat(),
                ),
            ).fetchall()
            return [_transaction_from_row(r) for r in rows]

    def list_transactions(
        self,
        account_ids: list[str] | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
        owner: str | None = None,
        include_deleted: bool = False,
    ) -> list[Transaction]:
        """List transactions ordered by date, then insertion time, then id.

        Args:
            account_ids: Restrict to these accounts (None = all).
            date_from: Inclusive lower bound (None = unbounded).
            date_to: Inclusive upper bound (None = unbounded).
            owner: Restrict to one owner.
            include_deleted: Include soft-deleted transactions.
        """
        clauses: list[str] = []
        params: list[object] = []
        if account_ids is not None:
            if not account_ids:
                return []
            clauses.append(f"t.account_id IN ({', '.join('?' * len(account_ids))})")
            params.extend(account_ids)
        if date_from is not None:
            clauses.append("t.date >= ?")
            params.append(date_from.isoformat())
        if date_to is not None:
            clauses.append("t.date <= ?")
            params.append(date_to.isoformat())
        if owner is not None:
            clauses.append("t.owner = ?")
            params.append(owner)
        if not include_deleted:
            clauses.append("t.is_deleted = 0")

        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        with self.transaction() as conn:
            rows = conn.execute(
                _TRANSACTION_SELECT + where + " ORDER BY t.date, t.created_at, t.id",
                params,
            ).fetchall()
            return [_transaction_from_row(r) for r in rows]

    def list_reclassification_candidates(
        self,
        threshold: float,
        owner: str | None = None,
        include_unclassified: bool = False,
    ) -> list[Transaction]:
        """Rule or AI transactions with confidence below the threshold.

        Manual transactions are never returned.
        """
        sources = [ClassificationSource.RULE.value, ClassificationSource.AI.value]
        condition = "(t.classification_source IN (?, ?) AND t.confidence < ?)"
        params: list[object] = [*sources, threshold]
        if include_unclassified:
            condition = f"({condition} OR t.classification_source = ?)"
            params.append(ClassificationSource.UNCLASSIFIED.value)
        sql = _TRANSACTION_SELECT + f" WHERE {condition} AND t.is_deleted = 0"
        if owner is not None:
            sql += " AND t.owner = ?"
            params.append(owner)
        sql += " ORDER BY t.date, t.id"
        with self.transaction() as conn:
            rows = conn.execute(sql, params).fetchall()
            return [_transaction_from_row(r) for r in rows]

    def update_classification(
        self,
        transaction_id: str,
        category_id: str | None,
        source: ClassificationSource,
        confidence: float,
        rule_id: str | None = None,
        reason: str = "",
        expected_source: ClassificationSource | None = None,
        allow_manual: bool = False,
    ) -> bool:
        """Atomically update one transaction's classification.

        The update is a single guarded statement: it never touches a Manual
        transaction unless ``allow_manual`` is set, and with
        ``expected_source`` it only applies if the source is unchanged since
        the caller read it.

        Returns:
            True if the row was updated.
        """
        sql = """
            UPDATE transactions SET
                category_id = ?, classification_source = ?, confidence = ?,
                rule_id = ?, classification_reason = ?, updated_at = ?
            WHERE id = ? AND is_deleted = 0
        """
        params: list[object] = [
            category_id,
            source.value,
            confidence,
            rule_id,
            reason,
            _now(),
            transaction_id,
        ]
        if not allow_manual:
            sql += " AND classification_source != ?"
            params.append(ClassificationSource.MANUAL.value)
        if expected_source is not None:
            sql += " AND classification_source = ?"
            params.append(expected_source.value)

        with self.transaction() as conn:
            cursor = conn.execute(sql, params)
            return cursor.rowcount == 1

    def soft_delete_transaction(self, transaction_id: str) -> bool:
        """Flag a transaction as deleted. Rows are never removed."""
        with self.transaction() as conn:
            cursor = conn.execute(
                "UPDATE transactions SET is_deleted = 1, updated_at = ? "
                "WHERE id = ? AND is_deleted = 0",
                (_now(), transaction_id),
            )
            return cursor.rowcount == 1

    def list_duplicate_links(self, statement_id: str) -> list[DuplicateLink]:
        """Duplicate links recorded for a statement, in line order."""
        with self.transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM duplicate_links WHERE statement_id = ? ORDER BY line_number, id",
                (statement_id,),
            ).fetchall()
            return [
                DuplicateLink(
                    statement_id=r["statement_id"],
                    line_number=r["line_number"],
                    existing_transaction_id=r["existing_transaction_id"],
                    match_kind=r["match_kind"],
                    similarity=r["similarity"],
                )
                for r in rows
            ]

    # -------------------------------------------------------------------------
    # Categories and rules
    # -------------------------------------------------------------------------

    def upsert_category(self, category: Category) -> None:
        """Insert or update a category."""
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO categories (id, owner, name, group_name, category_type)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    owner = excluded.owner,
                    name = excluded.name,
                    group_name = excluded.group_name,
                    category_type = excluded.category_type
            """,
                (
                    category.id,
                    category.owner,
                    category.name,
                    category.group,
                    category.category_type.value,
                ),
            )

    def get_category(self, category_id: str) -> Category | None:
        with self.transaction() as conn:
            row = conn.execute("SELECT * FROM categories WHERE id = ?", (category_id,)).fetchone()
            if not row:
                return None
            return Category(
                id=row["id"],
                owner=row["owner"],
                name=row["name"],
                group=row["group_name"] or "",
                category_type=CategoryType(row["category_type"]),
            )

    def list_categories(self, owner: str | None = None) -> list[Category]:
        sql = "SELECT * FROM categories"
        params: tuple[object, ...] = ()
        if owner is not None:
            sql += " WHERE owner = ?"
            params = (owner,)
        with self.transaction() as conn:
            rows = conn.execute(sql + " ORDER BY id", params).fetchall()
            return [
                Category(
                    id=r["id"],
                    owner=r["owner"],
                    name=r["name"],
                    group=r["group_name"] or "",
                    category_type=CategoryType(r["category_type"]),
                )
                for r in rows
            ]

    def _write_rule(self, conn: sqlite3.Connection, rule: CategoryRule) -> int:
        conn.execute(
            """
            INSERT INTO category_rules
            (id, owner, category_id, pattern, kind, target_field, priority, enabled, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                owner = excluded.owner,
                category_id = excluded.category_id,
                pattern = excluded.pattern,
                kind = excluded.kind,
                target_field = excluded.target_field,
                priority = excluded.priority,
                enabled = excluded.enabled
        """,
            (
                rule.id,
                rule.owner,
                rule.category_id,
                rule.pattern,
                rule.kind.value,
                rule.target_field.value,
                rule.priority,
                int(rule.enabled),
                _now(),
            ),
        )
        row = conn.execute(
            "SELECT sequence FROM category_rules WHERE id = ?", (rule.id,)
        ).fetchone()
        return int(row["sequence"])

    def upsert_rule(self, rule: CategoryRule) -> CategoryRule:
        """Insert or update a rule.

        Creation order (``sequence``) is assigned on first insert and kept
        on later updates.

        Returns:
            The rule with its sequence set.
        """
        with self.transaction() as conn:
            rule.sequence = self._write_rule(conn, rule)
        return rule

    def list_rules(self, owner: str | None = None, enabled_only: bool = True) -> list[CategoryRule]:
        """Rules in evaluation order: priority desc, creation order asc, id."""
        clauses: list[str] = []
        params: list[object] = []
        if owner is not None:
            clauses.append("owner = ?")
            params.append(owner)
        if enabled_only:
            clauses.append("enabled = 1")
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        with self.transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM category_rules" + where + " ORDER BY priority DESC, sequence, id",
                params,
            ).fetchall()
            return [_rule_from_row(r) for r in rows]

    # -------------------------------------------------------------------------
    # Feedback
    # -------------------------------------------------------------------------

    def apply_correction(self, feedback: CategoryFeedback) -> Transaction:
        """Append a feedback entry and set the transaction to Manual, atomically.

        Raises:
            NotFoundError: If the transaction does not exist or is deleted.
        """
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE transactions SET
                    category_id = ?, classification_source = ?, confidence = 1.0,
                    rule_id = NULL, classification_reason = ?, updated_at = ?
                WHERE id = ? AND is_deleted = 0
            """,
                (
                    feedback.new_category_id,
                    ClassificationSource.MANUAL.value,
                    "user correction",
                    _now(),
                    feedback.transaction_id,
                ),
            )
            if cursor.rowcount != 1:
                raise NotFoundError(f"Transaction not found: {feedback.transaction_id}")
            conn.execute(
                """
                INSERT INTO category_feedback
                (id, transaction_id, prior_category_id, new_category_id, owner, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """,
                (
                    feedback.id,
                    feedback.transaction_id,
                    feedback.prior_category_id,
                    feedback.new_category_id,
                    feedback.owner,
                    feedback.created_at,
                ),
            )
            row = conn.execute(
                _TRANSACTION_SELECT + " WHERE t.id = ?", (feedback.transaction_id,)
            ).fetchone()
            return _transaction_from_row(row)

    def recent_corrections(
        self, owner: str, limit: int
    ) -> list[tuple[CategoryFeedback, Transaction]]:
        """Most recent corrections joined with their transactions, newest first."""
        with self.transaction() as conn:
            rows = conn.execute(
                f"""
                SELECT t.*,
                    (SELECT GROUP_CONCAT(m.profile_id, '{_MARKER_SEP}')
                     FROM export_markers m WHERE m.transaction_id = t.id) AS exported_profiles,
                    f.id AS feedback_id, f.transaction_id, f.prior_category_id,
                    f.new_category_id, f.owner AS feedback_owner,
                    f.created_at AS feedback_created_at
                FROM category_feedback f
                JOIN transactions t ON t.id = f.transaction_id
                WHERE f.owner = ?
                ORDER BY f.seq DESC
                LIMIT ?
            """,
                (owner, limit),
            ).fetchall()
            return [(_feedback_from_row(r), _transaction_from_row(r)) for r in rows]

    def list_labeled_transactions(self, owner: str, limit: int) -> list[Transaction]:
        """Recently updated Manual and Rule transactions, newest first."""
        with self.transaction() as conn:
            rows = conn.execute(
                _TRANSACTION_SELECT
                + """
                WHERE t.owner = ? AND t.is_deleted = 0 AND t.category_id IS NOT NULL
                  AND t.classification_source IN (?, ?)
                ORDER BY t.updated_at DESC, t.id
                LIMIT ?
            """,
                (
                    owner,
                    ClassificationSource.MANUAL.value,
                    ClassificationSource.RULE.value,
                    limit,
                ),
            ).fetchall()
            return [_transaction_from_row(r) for r in rows]

    # -------------------------------------------------------------------------
    # Rule proposals
    # -------------------------------------------------------------------------

    def save_proposal(self, proposal: RuleProposal) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO rule_proposals
                (id, owner, pattern, category_id, occurrences, status, rule_id, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    occurrences = excluded.occurrences,
                    status = excluded.status,
                    rule_id = excluded.rule_id
            """,
                (
                    proposal.id,
                    proposal.owner,
                    proposal.pattern,
                    proposal.category_id,
                    proposal.occurrences,
                    proposal.status.value,
                    proposal.rule_id,
                    proposal.created_at,
                ),
            )

    def get_proposal(self, proposal_id: str) -> RuleProposal | None:
        with self.transaction() as conn:
            row = conn.execute(
                "SELECT * FROM rule_proposals WHERE id = ?", (proposal_id,)
            ).fetchone()
            return _proposal_from_row(row) if row else None

    def list_proposals(
        self, owner: str | None = None, status: ProposalStatus | None = None
    ) -> list[RuleProposal]:
        clauses: list[str] = []
        params: list[object] = []
        if owner is not None:
            clauses.append("owner = ?")
            params.append(owner)
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        with self.transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM rule_proposals" + where + " ORDER BY created_at, id", params
            ).fetchall()
            return [_proposal_from_row(r) for r in rows]

    def approve_proposal(self, proposal_id: str, rule: CategoryRule) -> CategoryRule:
        """Create the rule for a pending proposal and mark it approved, atomically.

        Raises:
            NotFoundError: If no pending proposal has this id.
        """
        with self.transaction() as conn:
            cursor = conn.execute(
                "UPDATE rule_proposals SET status = ?, rule_id = ? WHERE id = ? AND status = ?",
                (
                    ProposalStatus.APPROVED.value,
                    rule.id,
                    proposal_id,
                    ProposalStatus.PENDING.value,
                ),
            )
            if cursor.rowcount != 1:
                raise NotFoundError(f"No pending proposal: {proposal_id}")
            rule.sequence = self._write_rule(conn, rule)
        return rule

    # -------------------------------------------------------------------------
    # Exports
    # -------------------------------------------------------------------------

    def get_export_run(self, run_key: str) -> ExportRun | None:
        with self.transaction() as conn:
            row = conn.execute("SELECT * FROM export_runs WHERE run_key = ?", (run_key,)).fetchone()
            if not row:
                return None
            return ExportRun(
                run_key=row["run_key"],
                profile_id=row["profile_id"],
                date_from=date.fromisoformat(row["date_from"]) if row["date_from"] else None,
                date_to=date.fromisoformat(row["date_to"]) if row["date_to"] else None,
                account_ids=json.loads(row["account_ids"]),
                document=bytes(row["document"]),
                transaction_ids=json.loads(row["transaction_ids"]),
                created_at=row["created_at"],
            )

    def record_export_run(self, run: ExportRun) -> list[str]:
        """Store an export run and flip its markers in one transaction.

        Markers that already exist are left untouched, so repeating a run
        never duplicates them.

        Returns:
            Ids of transactions newly marked exported.
        """
        newly_marked: list[str] = []
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO export_runs
                (run_key, profile_id, date_from, date_to, account_ids, document,
                 transaction_ids, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    run.run_key,
                    run.profile_id,
                    run.date_from.isoformat() if run.date_from else None,
                    run.date_to.isoformat() if run.date_to else None,
                    json.dumps(sorted(run.account_ids)),
                    sqlite3.Binary(run.document),
                    json.dumps(run.transaction_ids),
                    run.created_at,
                ),
            )
            for txn_id in run.transaction_ids:
                cursor = conn.execute(
                    """
                    INSERT OR IGNORE INTO export_markers
                    (transaction_id, profile_id, run_key, exported_at)
                    VALUES (?, ?, ?, ?)
                """,
                    (txn_id, run.profile_id, run.run_key, run.created_at),
                )
                if cursor.rowcount == 1:
                    newly_marked.append(txn_id)
        return newly_marked

    def count_markers(self, profile_id: str) -> int:
        with self.transaction() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM export_markers WHERE profile_id = ?", (profile_id,)
            ).fetchone()
            return int(row["n"])

    def get_stats(self) -> dict[str, int]:
        """Row counts for status output."""
        with self.transaction() as conn:
            stats: dict[str, int] = {}
            for table in ("statements", "duplicate_links", "category_feedback", "export_markers"):
                row = conn.execute(f"SELECT COUNT(*) AS n FROM {table}").fetchone()
                stats[table] = int(row["n"])
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM transactions WHERE is_deleted = 0"
            ).fetchone()
            stats["transactions"] = int(row["n"])
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM transactions WHERE is_deleted = 0 "
                "AND classification_source = ?",
                (ClassificationSource.UNCLASSIFIED.value,),
            ).fetchone()
            stats["unclassified"] = int(row["n"])
            return stats
