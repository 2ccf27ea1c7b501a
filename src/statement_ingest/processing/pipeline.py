"""Statement ingestion: detect, extract, normalize, deduplicate, classify, persist."""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from statement_ingest.models.account import Account
from statement_ingest.models.statement import Statement, StatementFormat, StatementStatus
from statement_ingest.models.transaction import DuplicateLink, RowFailure, TransactionCandidate
from statement_ingest.parsers.assisted_parser import DEFAULT_MIN_CONFIDENCE, MessyCSVParser
from statement_ingest.parsers.base import (
    MAX_FILE_SIZE,
    MAX_ROWS,
    BaseParser,
    ExtractionResult,
    ParseError,
    RowExtractionFailed,
)
from statement_ingest.parsers.csv_parser import CSVParser
from statement_ingest.parsers.detector import FormatDetector, get_detector
from statement_ingest.parsers.pdf_parser import MAX_PDF_PAGES, PDFParser
from statement_ingest.parsers.qif_parser import QIFParser
from statement_ingest.processing.ai.categorizer import AICategorizer
from statement_ingest.processing.ai.extractor import AIHintExtractor
from statement_ingest.processing.classifier import ClassificationOutcome, Classifier
from statement_ingest.processing.currency import CurrencyResolver
from statement_ingest.processing.deduplicator import Deduplicator
from statement_ingest.processing.locks import AccountLocks
from statement_ingest.processing.normalizer import Normalizer
from statement_ingest.storage.sqlite_store import NotFoundError, SQLiteStore, StorageConflict
from statement_ingest.utils.logging_config import LogContext, get_logger

if TYPE_CHECKING:
    from statement_ingest.config import Config

logger = get_logger(__name__)

DEFAULT_MAX_WORKERS = 4


@dataclass
class Upload:
    """One file handed to the upload boundary."""

    content: bytes
    filename: str
    account_id: str
    owner: Optional[str] = None
    format_hint: Optional[StatementFormat] = None


@dataclass
class IngestionResult:
    """Count summary returned for every upload.

    Attributes:
        statement_id: Statement created for the upload.
        status: Final statement status.
        detected_format: Parse strategy used.
        detection_confidence: Detector confidence (1.0 for a format hint).
        raw_rows: Rows the adapter produced, including failures and flagged rows.
        parsed: Rows normalized into candidates.
        inserted: New transactions stored.
        duplicates: Candidates discarded as duplicates.
        failed: Rows that failed extraction or normalization.
        flagged: Rows left for manual mapping.
        unclassified: Inserted transactions with no category.
        ai_unavailable: The extraction model could not be used.
        row_errors: Per-row failure details.
        flagged_rows: Source line and text of each row left for manual
            mapping. Also stored against the statement.
        duplicate_links: Links from discarded candidates to retained transactions.
        error: Statement-level failure reason.
    """

    statement_id: str
    status: StatementStatus
    detected_format: Optional[StatementFormat] = None
    detection_confidence: float = 0.0
    raw_rows: int = 0
    parsed: int = 0
    inserted: int = 0
    duplicates: int = 0
    failed: int = 0
    flagged: int = 0
    unclassified: int = 0
    ai_unavailable: bool = False
    row_errors: list[RowFailure] = field(default_factory=list)
    flagged_rows: list[RowFailure] = field(default_factory=list)
    duplicate_links: list[DuplicateLink] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status != StatementStatus.FAILED


def decide_status(parsed: int, failed: int, flagged: int) -> StatementStatus:
    """Final status from a statement's row counts.

    Nothing usable at all is a failure. Any failed or flagged row makes
    the statement partial.
    """
    if parsed == 0 and flagged == 0:
        return StatementStatus.FAILED
    if failed == 0 and flagged == 0:
        return StatementStatus.PARSED_COMPLETE
    return StatementStatus.PARSED_PARTIAL


class IngestionPipeline:
    """Turns uploaded statements into stored, categorized transactions.

    One statement is one unit of work. Several may run at once. The
    account's write lock is held from a final deduplication through insert,
    so concurrent uploads for the same account see each other's rows and
    re-ingesting a file inserts nothing. Classification happens between a
    preview deduplication and that final one, with the lock released.
    """

    def __init__(
        self,
        store: SQLiteStore,
        accounts: dict[str, Account],
        classifier: Optional[Classifier] = None,
        deduplicator: Optional[Deduplicator] = None,
        extractor: Optional[AIHintExtractor] = None,
        locks: Optional[AccountLocks] = None,
        detector: Optional[FormatDetector] = None,
        min_extraction_confidence: float = DEFAULT_MIN_CONFIDENCE,
        max_workers: int = DEFAULT_MAX_WORKERS,
        max_file_size: int = MAX_FILE_SIZE,
        max_rows: int = MAX_ROWS,
        max_pdf_pages: int = MAX_PDF_PAGES,
    ):
        """Initialize the pipeline.

        Args:
            store: Transaction store.
            accounts: Known accounts by id.
            classifier: Classifier for new transactions (rules only if None).
            deduplicator: Duplicate detector (defaults if None).
            extractor: AI structural-hint extractor for messy CSV and PDF.
                Without one those rows are flagged for manual mapping.
            locks: Per-account write locks, shared with the export engine.
            detector: Format detector.
            min_extraction_confidence: Hints below this are not used.
            max_workers: Upper bound on statements processed at once.
            max_file_size: Largest accepted upload in bytes.
            max_rows: Most rows accepted from one statement.
            max_pdf_pages: Most PDF pages read from one statement.
        """
        self.store = store
        self.accounts = accounts
        self.classifier = classifier or Classifier(store)
        self.deduplicator = deduplicator or Deduplicator()
        self.extractor = extractor
        self.locks = locks or AccountLocks()
        self.detector = detector or get_detector()
        self.min_extraction_confidence = min_extraction_confidence
        self.max_workers = max_workers
        self.max_file_size = max_file_size
        self.max_rows = max_rows
        self.max_pdf_pages = max_pdf_pages
        self.currency_resolver = CurrencyResolver()
        self.normalizer = Normalizer()

    @classmethod
    def from_config(
        cls,
        config: "Config",
        store: SQLiteStore,
        locks: Optional[AccountLocks] = None,
    ) -> "IngestionPipeline":
        """Build a pipeline from loaded configuration.

        AI capabilities are wired in only when enabled in settings.
        """
        extractor: Optional[AIHintExtractor] = None
        categorizer: Optional[AICategorizer] = None
        if config.ai.enabled:
            client_config = config.ai.to_client_config()
            extractor = AIHintExtractor.create(client_config)
            categorizer = AICategorizer(client=extractor.client)

        classifier = Classifier(
            store,
            categorizer=categorizer,
            history_sample_size=config.classification.history_sample_size,
        )
        deduplicator = Deduplicator(
            date_tolerance_days=config.dedup.date_tolerance_days,
            similarity_threshold=config.dedup.similarity_threshold,
        )
        return cls(
            store,
            config.accounts,
            classifier=classifier,
            deduplicator=deduplicator,
            extractor=extractor,
            locks=locks,
            min_extraction_confidence=config.ai.min_extraction_confidence,
            max_workers=config.ingestion.max_workers,
            max_file_size=config.ingestion.max_file_size,
            max_rows=config.ingestion.max_rows,
            max_pdf_pages=config.ingestion.max_pdf_pages,
        )

    def _adapter_for(self, fmt: StatementFormat) -> BaseParser:
        limits = {"max_file_size": self.max_file_size, "max_rows": self.max_rows}
        if fmt == StatementFormat.QIF:
            return QIFParser(**limits)
        if fmt == StatementFormat.STRUCTURED_CSV:
            return CSVParser(**limits)
        if fmt == StatementFormat.MESSY_CSV:
            return MessyCSVParser(self.extractor, self.min_extraction_confidence, **limits)
        return PDFParser(
            self.extractor,
            self.min_extraction_confidence,
            max_pages=self.max_pdf_pages,
            **limits,
        )

    def _resolve_account(self, account_id: str, owner: Optional[str]) -> Account:
        account = self.accounts.get(account_id)
        if account is None or (owner is not None and account.owner != owner):
            raise NotFoundError(f"Account not found: {account_id}")
        if not account.is_active:
            raise NotFoundError(f"Account is inactive: {account_id}")
        return account

    def ingest(
        self,
        content: bytes,
        filename: str,
        account_id: str,
        owner: Optional[str] = None,
        format_hint: Optional[StatementFormat] = None,
    ) -> IngestionResult:
        """Ingest one uploaded statement.

        Args:
            content: Raw file bytes.
            filename: Original filename.
            account_id: Account the statement belongs to.
            owner: Uploading user (defaults to the account's owner).
            format_hint: Skip detection and use this format.

        Returns:
            IngestionResult with the statement's final status and counts.
            Statement-level failures are reported here, not raised.

        Raises:
            NotFoundError: If the account is unknown, inactive, or belongs
                to another owner.
        """
        account = self._resolve_account(account_id, owner)
        statement = Statement(owner=account.owner, account_id=account.id, filename=filename)

        if format_hint is not None:
            statement.detected_format = format_hint
            statement.detection_confidence = 1.0
        else:
            detection = self.detector.detect(content, filename)
            statement.detected_format = detection.format
            statement.detection_confidence = detection.confidence
        self.store.save_statement(statement)

        result = IngestionResult(
            statement_id=statement.id,
            status=statement.status,
            detected_format=statement.detected_format,
            detection_confidence=statement.detection_confidence,
        )

        with LogContext(logger, "ingest", statement=statement.id, filename=filename):
            statement.transition(StatementStatus.PARSING)
            self.store.save_statement(statement)

            adapter = self._adapter_for(statement.detected_format)
            try:
                extraction = adapter.extract(content, filename)
            except ParseError as e:
                logger.warning(f"Extraction failed for {filename}: {e}")
                return self._fail(statement, result, str(e))

            candidates = self._normalize(extraction, account, statement, result)
            self._persist(statement, account, candidates, result)

        logger.info(
            f"Ingested {filename} ({statement.detected_format.value}): "
            f"{result.inserted} new, {result.duplicates} duplicates, "
            f"{result.failed} failed, {result.flagged} flagged -> {result.status.value}"
        )
        return result

    def _normalize(
        self,
        extraction: ExtractionResult,
        account: Account,
        statement: Statement,
        result: IngestionResult,
    ) -> list[TransactionCandidate]:
        result.ai_unavailable = extraction.ai_unavailable
        result.row_errors.extend(extraction.failures)
        reason = "AI unavailable" if extraction.ai_unavailable else "no confident field mapping"
        result.flagged_rows = [
            RowFailure(row.line_number, f"needs manual mapping: {reason}", row.raw_text)
            for row in extraction.flagged_rows
        ]
        result.flagged = len(result.flagged_rows)
        self.store.save_flagged_rows(statement.id, result.flagged_rows)
        result.raw_rows = len(extraction.rows) + len(extraction.failures)

        candidates: list[TransactionCandidate] = []
        for row in extraction.mapped_rows:
            try:
                currency = self.currency_resolver.resolve(row, account)
                candidates.append(self.normalizer.normalize(row, account, statement, currency))
            except RowExtractionFailed as e:
                logger.debug(f"{statement.filename} line {row.line_number}: {e}")
                result.row_errors.append(RowFailure(row.line_number, str(e), row.raw_text))

        result.parsed = len(candidates)
        result.failed = len(result.row_errors)
        statement.raw_row_count = result.raw_rows
        statement.failed_row_count = result.failed
        return candidates

    def _persist(
        self,
        statement: Statement,
        account: Account,
        candidates: list[TransactionCandidate],
        result: IngestionResult,
    ) -> None:
        final_status = decide_status(result.parsed, result.failed, result.flagged)
        if final_status == StatementStatus.FAILED:
            self._fail(statement, result, "no transactions could be extracted")
            return

        # Outcomes by natural key, so a retry never repeats a rule or AI pass
        outcomes: dict[tuple[str, str, str, str, str], ClassificationOutcome] = {}

        # A conflicting concurrent write is retried once with a fresh dedup
        for attempt in (1, 2):
            # Classification may wait on the AI, so it runs with the lock released
            with self.locks.hold(account.id):
                preview = self.deduplicator.deduplicate(candidates, self.store)
            self.classifier.classify_batch(preview.survivors, account.owner, outcomes)

            with self.locks.hold(account.id):
                outcome = self.deduplicator.deduplicate(candidates, self.store)
                # Only rows that turned new since the preview are classified here
                unclassified = self.classifier.classify_batch(
                    outcome.survivors, account.owner, outcomes
                )
                statement.transition(final_status)
                try:
                    self.store.persist_ingestion(statement, outcome.survivors, outcome.links)
                except StorageConflict as e:
                    # Nothing was written; the statement is back to Parsing
                    statement.status = StatementStatus.PARSING
                    logger.warning(
                        f"Storage conflict persisting {statement.filename} (attempt {attempt}): {e}"
                    )
                    continue

            result.status = statement.status
            result.inserted = len(outcome.survivors)
            result.duplicates = outcome.duplicate_count
            result.duplicate_links = outcome.links
            result.unclassified = unclassified
            return

        self._fail(statement, result, "storage conflict persisting transactions")

    def _fail(self, statement: Statement, result: IngestionResult, reason: str) -> IngestionResult:
        statement.fail(reason)
        self.store.save_statement(statement)
        result.status = statement.status
        result.error = reason
        return result

    def ingest_many(self, uploads: list[Upload]) -> list[IngestionResult]:
        """Ingest several uploads on a bounded worker pool.

        Results are returned in the order of ``uploads``.
        """
        if not uploads:
            return []
        workers = max(1, min(self.max_workers, len(uploads)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ingest") as pool:
            return list(
                pool.map(
                    lambda u: self.ingest(
                        u.content, u.filename, u.account_id, u.owner, u.format_hint
                    ),
                    uploads,
                )
            )
