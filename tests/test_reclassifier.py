"""Tests for background reclassification."""

import threading
from datetime import date
from typing import Callable
from unittest.mock import MagicMock

from statement_ingest.models.category import Category, CategoryFeedback, CategoryRule
from statement_ingest.models.transaction import ClassificationSource, Transaction
from statement_ingest.processing.ai.models import AISuggestion
from statement_ingest.processing.classifier import Classifier
from statement_ingest.processing.jobs import JobRunner
from statement_ingest.processing.reclassifier import ReclassificationJob
from statement_ingest.storage.sqlite_store import SQLiteStore


def store_low_confidence(
    store: SQLiteStore, make_transaction: Callable[..., Transaction], count: int = 2
) -> list[Transaction]:
    txns = []
    for day in range(1, count + 1):
        txn = make_transaction(
            description=f"UBER EATS {day:03d}",
            txn_date=date(2025, 1, day),
            category_id="transport",
            source=ClassificationSource.AI,
            confidence=0.4,
        )
        store.add_transaction(txn)
        txns.append(txn)
    return txns


class TestReclassificationJob:
    """Tests for ReclassificationJob."""

    def test_new_rule_updates_low_confidence_rows(
        self,
        store: SQLiteStore,
        categories: dict[str, Category],
        make_transaction: Callable[..., Transaction],
    ) -> None:
        """Test that a rule added later reclassifies AI guesses."""
        txns = store_low_confidence(store, make_transaction)
        store.upsert_rule(CategoryRule(id="uber", category_id="eating-out", pattern="uber eats",
                                       owner="alice"))

        report = ReclassificationJob(store, Classifier(store)).run()

        assert report.scanned == 2
        assert report.updated == 2
        assert set(report.updated_ids) == {t.id for t in txns}
        loaded = store.get_transaction(txns[0].id)
        assert loaded.category_id == "eating-out"
        assert loaded.classification_source == ClassificationSource.RULE
        assert loaded.rule_id == "uber"

    def test_second_run_changes_nothing(
        self,
        store: SQLiteStore,
        categories: dict[str, Category],
        make_transaction: Callable[..., Transaction],
    ) -> None:
        store_low_confidence(store, make_transaction)
        store.upsert_rule(CategoryRule(id="uber", category_id="eating-out", pattern="uber eats",
                                       owner="alice"))
        job = ReclassificationJob(store, Classifier(store))
        job.run()

        again = job.run()

        assert again.scanned == 0
        assert again.updated == 0

    def test_unavailable_ai_keeps_existing_category(
        self,
        store: SQLiteStore,
        categories: dict[str, Category],
        make_transaction: Callable[..., Transaction],
    ) -> None:
        """Test that a failed re-run never downgrades a row to Unclassified."""
        txns = store_low_confidence(store, make_transaction, 1)

        report = ReclassificationJob(store, Classifier(store, None)).run()

        assert report.unchanged == 1
        assert store.get_transaction(txns[0].id).category_id == "transport"

    def test_higher_confidence_ai_answer_applies(
        self,
        store: SQLiteStore,
        categories: dict[str, Category],
        make_transaction: Callable[..., Transaction],
    ) -> None:
        txns = store_low_confidence(store, make_transaction, 1)
        categorizer = MagicMock()
        categorizer.suggest.return_value = AISuggestion("eating-out", 0.9, "delivery app")

        report = ReclassificationJob(store, Classifier(store, categorizer)).run()

        assert report.updated == 1
        loaded = store.get_transaction(txns[0].id)
        assert loaded.category_id == "eating-out"
        assert loaded.confidence == 0.9

    def test_manual_rows_are_never_scanned(
        self,
        store: SQLiteStore,
        categories: dict[str, Category],
        make_transaction: Callable[..., Transaction],
    ) -> None:
        manual = make_transaction(category_id="groceries", source=ClassificationSource.MANUAL,
                                  confidence=0.2)
        store.add_transaction(manual)
        store.upsert_rule(CategoryRule(id="uber", category_id="eating-out", pattern="uber",
                                       owner="alice"))

        report = ReclassificationJob(store, Classifier(store)).run()

        assert report.scanned == 0
        assert store.get_transaction(manual.id).category_id == "groceries"

    def test_correction_during_run_is_a_conflict(
        self,
        store: SQLiteStore,
        categories: dict[str, Category],
        make_transaction: Callable[..., Transaction],
    ) -> None:
        """Test that a row corrected after the snapshot is left as the user set it."""
        [txn] = store_low_confidence(store, make_transaction, 1)
        store.upsert_rule(CategoryRule(id="uber", category_id="eating-out", pattern="uber eats",
                                       owner="alice"))
        classifier = Classifier(store)
        real_classify = classifier.classify

        def classify_after_user_edit(target, context):  # type: ignore[no-untyped-def]
            store.apply_correction(
                CategoryFeedback(target.id, target.category_id, "groceries", owner="alice")
            )
            return real_classify(target, context)

        classifier.classify = classify_after_user_edit  # type: ignore[method-assign]

        report = ReclassificationJob(store, classifier).run()

        assert report.conflicts == 1
        assert report.updated == 0
        loaded = store.get_transaction(txn.id)
        assert loaded.category_id == "groceries"
        assert loaded.classification_source == ClassificationSource.MANUAL

    def test_cancel_stops_between_transactions(
        self,
        store: SQLiteStore,
        categories: dict[str, Category],
        make_transaction: Callable[..., Transaction],
    ) -> None:
        """Test that cancellation keeps the updates already made."""
        store_low_confidence(store, make_transaction, 3)
        store.upsert_rule(CategoryRule(id="uber", category_id="eating-out", pattern="uber eats",
                                       owner="alice"))
        cancel = threading.Event()
        classifier = Classifier(store)
        real_classify = classifier.classify

        def classify_then_cancel(target, context):  # type: ignore[no-untyped-def]
            cancel.set()
            return real_classify(target, context)

        classifier.classify = classify_then_cancel  # type: ignore[method-assign]

        report = ReclassificationJob(store, classifier).run(cancel)

        assert report.cancelled
        assert report.updated == 1
        assert report.scanned == 3

    def test_include_unclassified(
        self,
        store: SQLiteStore,
        categories: dict[str, Category],
        make_transaction: Callable[..., Transaction],
    ) -> None:
        txn = make_transaction()
        store.add_transaction(txn)
        store.upsert_rule(CategoryRule(id="uber", category_id="eating-out", pattern="uber",
                                       owner="alice"))

        skipped = ReclassificationJob(store, Classifier(store)).run()
        included = ReclassificationJob(store, Classifier(store), include_unclassified=True).run()

        assert skipped.scanned == 0
        assert included.updated == 1


class TestJobRunner:
    """Tests for JobRunner."""

    def test_runs_job_in_background(
        self,
        store: SQLiteStore,
        categories: dict[str, Category],
        make_transaction: Callable[..., Transaction],
    ) -> None:
        store_low_confidence(store, make_transaction)
        store.upsert_rule(CategoryRule(id="uber", category_id="eating-out", pattern="uber eats",
                                       owner="alice"))

        with JobRunner() as runner:
            handle = runner.submit(ReclassificationJob(store, Classifier(store)))
            report = handle.result(timeout=30)

        assert handle.done
        assert report.updated == 2

    def test_cancelled_while_queued_returns_report(
        self,
        store: SQLiteStore,
        categories: dict[str, Category],
        make_transaction: Callable[..., Transaction],
    ) -> None:
        """Test that cancelling a job that has not started still yields a report."""
        store_low_confidence(store, make_transaction)
        release = threading.Event()
        blocker = MagicMock()
        blocker.run.side_effect = lambda cancel_event: release.wait(timeout=30)

        with JobRunner() as runner:
            runner.submit(blocker)
            handle = runner.submit(ReclassificationJob(store, Classifier(store)))
            handle.cancel()
            release.set()
            report = handle.result(timeout=30)

        assert report.cancelled
        assert report.updated == 0
