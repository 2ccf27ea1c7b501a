"""Background reclassification of low-confidence transactions."""

import threading
from dataclasses import dataclass, field
from typing import Optional

from statement_ingest.models.transaction import Transaction
from statement_ingest.processing.classifier import (
    ClassificationContext,
    Classifier,
    should_apply,
)
from statement_ingest.storage.sqlite_store import SQLiteStore
from statement_ingest.utils.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_RECLASSIFY_THRESHOLD = 0.7


@dataclass
class ReclassificationReport:
    """Counts from one reclassification run.

    Attributes:
        scanned: Transactions in the snapshot.
        updated: Transactions whose classification changed.
        unchanged: Transactions the classifier left as they were.
        conflicts: Transactions changed by someone else mid-run and skipped.
        cancelled: Whether the run stopped early on request.
    """

    scanned: int = 0
    updated: int = 0
    unchanged: int = 0
    conflicts: int = 0
    cancelled: bool = False
    updated_ids: list[str] = field(default_factory=list)


class ReclassificationJob:
    """Re-runs classification over Rule and AI transactions below a threshold.

    The job works on a snapshot taken when it starts. Each transaction is
    updated on its own with a guarded write that fails if the row's
    classification source changed since the snapshot (for instance, the
    user corrected it meanwhile), so a Manual transaction is never touched.
    Running the job twice in a row changes nothing the second time unless
    rules or categories changed in between.
    """

    def __init__(
        self,
        store: SQLiteStore,
        classifier: Classifier,
        threshold: float = DEFAULT_RECLASSIFY_THRESHOLD,
        owner: Optional[str] = None,
        include_unclassified: bool = False,
    ):
        """Initialize job.

        Args:
            store: Transaction store.
            classifier: Classifier to re-run.
            threshold: Only transactions with confidence below this are revisited.
            owner: Restrict to one owner (None = all owners).
            include_unclassified: Also revisit Unclassified transactions.
        """
        self.store = store
        self.classifier = classifier
        self.threshold = threshold
        self.owner = owner
        self.include_unclassified = include_unclassified

    def snapshot(self) -> list[Transaction]:
        """Transactions eligible for reclassification right now."""
        return self.store.list_reclassification_candidates(
            self.threshold,
            owner=self.owner,
            include_unclassified=self.include_unclassified,
        )

    def run(self, cancel_event: Optional[threading.Event] = None) -> ReclassificationReport:
        """Reclassify every transaction in a fresh snapshot.

        Args:
            cancel_event: Checked before each transaction; when set the run
                stops, keeping the updates already made.

        Returns:
            ReclassificationReport with the run's counts.
        """
        report = ReclassificationReport()
        if cancel_event is not None and cancel_event.is_set():
            report.cancelled = True
            return report
        transactions = self.snapshot()
        report.scanned = len(transactions)
        contexts: dict[str, ClassificationContext] = {}

        for txn in transactions:
            if cancel_event is not None and cancel_event.is_set():
                report.cancelled = True
                logger.info(
                    f"Reclassification cancelled after {report.updated + report.unchanged + report.conflicts}"
                    f"/{report.scanned} transactions"
                )
                break

            context = contexts.get(txn.owner)
            if context is None:
                context = self.classifier.load_context(txn.owner)
                contexts[txn.owner] = context

            outcome = self.classifier.classify(txn, context)
            same = (
                outcome.category_id == txn.category_id
                and outcome.source == txn.classification_source
                and outcome.confidence == txn.confidence
            )
            if same or not should_apply(txn, outcome):
                report.unchanged += 1
                continue

            applied = self.store.update_classification(
                txn.id,
                outcome.category_id,
                outcome.source,
                outcome.confidence,
                rule_id=outcome.rule_id,
                reason=outcome.reason,
                expected_source=txn.classification_source,
            )
            if applied:
                report.updated += 1
                report.updated_ids.append(txn.id)
                logger.debug(
                    f"Reclassified {txn.id}: {txn.category_id} ({txn.classification_source.value}) "
                    f"-> {outcome.category_id} ({outcome.source.value})"
                )
            else:
                report.conflicts += 1
                logger.debug(f"Skipped {txn.id}: classification changed since snapshot")

        logger.info(
            f"Reclassification: {report.scanned} scanned, {report.updated} updated, "
            f"{report.unchanged} unchanged, {report.conflicts} conflicts"
        )
        return report
