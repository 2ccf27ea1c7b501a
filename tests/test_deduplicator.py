"""Tests for duplicate detection."""

from datetime import date, timedelta
from decimal import Decimal
from typing import Callable

import pytest

from statement_ingest.models.transaction import Transaction, TransactionCandidate
from statement_ingest.processing.deduplicator import Deduplicator, description_similarity


class FakeStore:
    """In-memory stand-in for the store's near-transaction lookup."""

    def __init__(self, transactions: list[Transaction] | None = None):
        self.transactions = transactions or []
        self.calls = 0

    def find_near_transactions(
        self,
        account_id: str,
        amount: Decimal,
        currency: str,
        date_from: date,
        date_to: date,
    ) -> list[Transaction]:
        self.calls += 1
        return [
            txn
            for txn in self.transactions
            if txn.account_id == account_id
            and txn.amount == amount
            and txn.currency == currency
            and date_from <= txn.date <= date_to
            and not txn.is_deleted
        ]


def make_candidate(
    description: str = "UBER EATS 123",
    amount: str = "-24.50",
    txn_date: date = date(2025, 1, 5),
    line_number: int = 2,
    currency: str = "USD",
) -> TransactionCandidate:
    return TransactionCandidate(
        account_id="checking",
        statement_id="stmt-2",
        owner="alice",
        date=txn_date,
        amount=Decimal(amount),
        currency=currency,
        description=description,
        merchant=description,
        line_number=line_number,
    )


class TestDescriptionSimilarity:
    """Tests for description_similarity."""

    def test_identical_after_normalizing(self) -> None:
        assert description_similarity("Uber  Eats 123", " UBER EATS 123") == 1.0

    def test_reordered_tokens_are_close(self) -> None:
        assert description_similarity("COFFEE BLUE BOTTLE", "BLUE BOTTLE COFFEE") == 1.0

    def test_unrelated(self) -> None:
        assert description_similarity("UBER EATS", "SHELL OIL") < 0.5

    def test_empty(self) -> None:
        assert description_similarity("", "SHELL OIL") == 0.0


class TestDeduplicator:
    """Tests for Deduplicator."""

    def test_new_candidates_survive(self) -> None:
        """Test that candidates with no match become transactions."""
        candidates = [
            make_candidate(),
            make_candidate("PAYROLL", "1500.00", line_number=3),
        ]
        outcome = Deduplicator().deduplicate(candidates, FakeStore())

        assert len(outcome.survivors) == 2
        assert outcome.duplicate_count == 0
        assert outcome.survivors[0].statement_id == "stmt-2"
        assert outcome.survivors[1].description == "PAYROLL"

    def test_exact_match_against_store(self, make_transaction: Callable[..., Transaction]) -> None:
        """Test that a stored transaction with the same natural key wins."""
        existing = make_transaction(description="Uber Eats 123", amount="-24.5")
        outcome = Deduplicator().deduplicate([make_candidate()], FakeStore([existing]))

        assert outcome.survivors == []
        link = outcome.links[0]
        assert link.existing_transaction_id == existing.id
        assert link.match_kind == "exact"
        assert link.similarity == 1.0
        assert link.statement_id == "stmt-2"
        assert link.line_number == 2

    def test_near_match_within_tolerance(
        self, make_transaction: Callable[..., Transaction]
    ) -> None:
        """Test that a similar description one day apart is a duplicate."""
        existing = make_transaction(description="UBER EATS 124", txn_date=date(2025, 1, 6))
        outcome = Deduplicator().deduplicate([make_candidate()], FakeStore([existing]))

        assert outcome.survivors == []
        assert outcome.links[0].match_kind == "near"
        assert outcome.links[0].similarity >= 0.8

    def test_outside_date_tolerance(self, make_transaction: Callable[..., Transaction]) -> None:
        existing = make_transaction(txn_date=date(2025, 1, 5) + timedelta(days=3))
        outcome = Deduplicator().deduplicate([make_candidate()], FakeStore([existing]))
        assert len(outcome.survivors) == 1

    def test_different_amount_is_not_duplicate(
        self, make_transaction: Callable[..., Transaction]
    ) -> None:
        existing = make_transaction(amount="-24.51")
        outcome = Deduplicator().deduplicate([make_candidate()], FakeStore([existing]))
        assert len(outcome.survivors) == 1

    def test_different_currency_is_not_duplicate(
        self, make_transaction: Callable[..., Transaction]
    ) -> None:
        existing = make_transaction(currency="EUR")
        outcome = Deduplicator().deduplicate([make_candidate()], FakeStore([existing]))
        assert len(outcome.survivors) == 1

    def test_dissimilar_description_is_not_duplicate(
        self, make_transaction: Callable[..., Transaction]
    ) -> None:
        """Test that two same-amount purchases at different merchants both survive."""
        existing = make_transaction(description="SHELL OIL 5744")
        outcome = Deduplicator().deduplicate([make_candidate()], FakeStore([existing]))
        assert len(outcome.survivors) == 1

    def test_duplicate_within_batch(self) -> None:
        """Test that a repeated line in one upload links to the first occurrence."""
        candidates = [
            make_candidate(line_number=2),
            make_candidate(line_number=3),
        ]
        outcome = Deduplicator().deduplicate(candidates, FakeStore())

        assert len(outcome.survivors) == 1
        assert outcome.links[0].line_number == 3
        assert outcome.links[0].existing_transaction_id == outcome.survivors[0].id

    def test_exact_preferred_over_near(
        self, make_transaction: Callable[..., Transaction]
    ) -> None:
        """Test that an exact match is retained over a near one."""
        near = make_transaction(description="UBER EATS 12", txn_date=date(2025, 1, 4))
        exact = make_transaction()
        outcome = Deduplicator().deduplicate([make_candidate()], FakeStore([near, exact]))
        assert outcome.links[0].existing_transaction_id == exact.id

    def test_stored_preferred_over_batch(
        self, make_transaction: Callable[..., Transaction]
    ) -> None:
        """Test that a stored transaction wins a tie with an earlier batch row."""
        existing = make_transaction()
        candidates = [make_candidate(line_number=2), make_candidate(line_number=3)]
        outcome = Deduplicator().deduplicate(candidates, FakeStore([existing]))

        assert outcome.survivors == []
        assert {link.existing_transaction_id for link in outcome.links} == {existing.id}

    def test_deterministic(self, make_transaction: Callable[..., Transaction]) -> None:
        """Test that the same input picks the same retained transaction."""
        first = make_transaction(description="UBER EATS 124", txn_date=date(2025, 1, 4))
        second = make_transaction(description="UBER EATS 125", txn_date=date(2025, 1, 6))
        dedup = Deduplicator()

        a = dedup.deduplicate([make_candidate()], FakeStore([first, second]))
        b = dedup.deduplicate([make_candidate()], FakeStore([second, first]))
        assert a.links[0].existing_transaction_id == b.links[0].existing_transaction_id

    def test_zero_tolerance(self, make_transaction: Callable[..., Transaction]) -> None:
        existing = make_transaction(description="UBER EATS 124", txn_date=date(2025, 1, 6))
        outcome = Deduplicator(date_tolerance_days=0).deduplicate(
            [make_candidate()], FakeStore([existing])
        )
        assert len(outcome.survivors) == 1

    @pytest.mark.parametrize(
        "kwargs",
        [{"date_tolerance_days": -1}, {"similarity_threshold": 1.5}, {"similarity_threshold": -0.1}],
    )
    def test_invalid_parameters(self, kwargs: dict) -> None:
        with pytest.raises(ValueError):
            Deduplicator(**kwargs)
