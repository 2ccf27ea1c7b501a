"""Duplicate transaction detection against stored history and within a batch."""

from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from difflib import SequenceMatcher
from typing import Optional, Protocol

from statement_ingest.models.transaction import (
    DuplicateLink,
    Transaction,
    TransactionCandidate,
    normalize_description,
)
from statement_ingest.utils.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_DATE_TOLERANCE_DAYS = 1
DEFAULT_SIMILARITY_THRESHOLD = 0.8


class NearTransactionSource(Protocol):
    """Lookup of stored transactions close to a candidate."""

    def find_near_transactions(
        self,
        account_id: str,
        amount: Decimal,
        currency: str,
        date_from: date,
        date_to: date,
    ) -> list[Transaction]:
        ...


@dataclass
class DedupOutcome:
    """Result of deduplicating one batch of candidates.

    Attributes:
        survivors: New transactions to insert, in candidate order.
        links: One informational link per discarded candidate.
    """

    survivors: list[Transaction] = field(default_factory=list)
    links: list[DuplicateLink] = field(default_factory=list)

    @property
    def duplicate_count(self) -> int:
        return len(self.links)


def description_similarity(desc1: str, desc2: str) -> float:
    """Similarity between two descriptions in [0, 1].

    The larger of the character-level sequence ratio and the token Jaccard
    index, computed on normalized text. Token overlap keeps reordered
    descriptions ("COFFEE BLUE BOTTLE" vs "BLUE BOTTLE COFFEE") close.
    """
    a = normalize_description(desc1)
    b = normalize_description(desc2)
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0

    ratio = SequenceMatcher(None, a, b).ratio()
    tokens_a, tokens_b = set(a.split()), set(b.split())
    jaccard = len(tokens_a & tokens_b) / len(tokens_a | tokens_b)
    return max(ratio, jaccard)


class Deduplicator:
    """Discards candidates that repeat an existing or earlier transaction.

    A candidate is a duplicate when it matches a live stored transaction,
    or a candidate already accepted from the same batch, either:
    - exactly on the natural key (account, date, amount, currency,
      normalized description), or
    - nearly: same account, amount and currency, date within the
      tolerance, and description similarity at or above the threshold.

    When several transactions match, the retained one is chosen by: exact
    match first, then highest similarity, then smallest date gap, then
    stored before batch, then lowest id (stored) or earliest line (batch).
    The choice depends only on the data, so re-running over the same input
    gives the same result.

    Not thread-safe on its own: callers hold the account's write lock
    across deduplication and insert.
    """

    def __init__(
        self,
        date_tolerance_days: int = DEFAULT_DATE_TOLERANCE_DAYS,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    ):
        """Initialize deduplicator.

        Args:
            date_tolerance_days: Max date difference for a near match.
            similarity_threshold: Min description similarity for a near match.
        """
        if date_tolerance_days < 0:
            raise ValueError("date_tolerance_days must be non-negative")
        if not 0.0 <= similarity_threshold <= 1.0:
            raise ValueError("similarity_threshold must be between 0 and 1")
        self.date_tolerance_days = date_tolerance_days
        self.similarity_threshold = similarity_threshold

    def deduplicate(
        self,
        candidates: list[TransactionCandidate],
        store: NearTransactionSource,
    ) -> DedupOutcome:
        """Split candidates into new transactions and discarded duplicates.

        Args:
            candidates: Normalized candidates from one statement.
            store: Source of stored transactions to compare against.

        Returns:
            DedupOutcome with the surviving transactions and duplicate links.
        """
        outcome = DedupOutcome()
        tolerance = timedelta(days=self.date_tolerance_days)
        # Accepted candidates from this batch, with their batch position
        accepted: list[tuple[int, Transaction]] = []

        for candidate in candidates:
            stored = store.find_near_transactions(
                candidate.account_id,
                candidate.amount,
                candidate.currency,
                candidate.date - tolerance,
                candidate.date + tolerance,
            )
            in_batch = [
                (position, txn)
                for position, txn in accepted
                if txn.account_id == candidate.account_id
                and txn.amount == candidate.amount
                and txn.currency == candidate.currency
                and abs((txn.date - candidate.date).days) <= self.date_tolerance_days
            ]

            match = self._best_match(candidate, stored, in_batch)
            if match is None:
                txn = Transaction.from_candidate(candidate)
                accepted.append((len(accepted), txn))
                outcome.survivors.append(txn)
                continue

            retained, kind, similarity = match
            logger.debug(
                f"Line {candidate.line_number}: {kind} duplicate of {retained.id} "
                f"({candidate.description!r}, similarity {similarity:.2f})"
            )
            outcome.links.append(
                DuplicateLink(
                    statement_id=candidate.statement_id,
                    line_number=candidate.line_number,
                    existing_transaction_id=retained.id,
                    match_kind=kind,
                    similarity=round(similarity, 4),
                )
            )

        logger.info(
            f"Deduplicated {len(candidates)} candidates: {len(outcome.survivors)} new, "
            f"{outcome.duplicate_count} duplicates"
        )
        return outcome

    def _best_match(
        self,
        candidate: TransactionCandidate,
        stored: list[Transaction],
        in_batch: list[tuple[int, Transaction]],
    ) -> Optional[tuple[Transaction, str, float]]:
        """Pick the retained transaction for a candidate, or None if it is new."""
        candidate_key = candidate.natural_key
        ranked: list[tuple[tuple, Transaction, str, float]] = []

        pool: list[tuple[int, object, Transaction]] = [(0, txn.id, txn) for txn in stored]
        pool.extend((1, position, txn) for position, txn in in_batch)

        for origin, order, txn in pool:
            if txn.natural_key == candidate_key:
                kind, similarity = "exact", 1.0
            else:
                similarity = description_similarity(candidate.description, txn.description)
                if similarity < self.similarity_threshold:
                    continue
                kind = "near"
            gap = abs((txn.date - candidate.date).days)
            rank = (0 if kind == "exact" else 1, -similarity, gap, origin, order)
            ranked.append((rank, txn, kind, similarity))

        if not ranked:
            return None
        ranked.sort(key=lambda item: item[0])
        _, txn, kind, similarity = ranked[0]
        return txn, kind, similarity
