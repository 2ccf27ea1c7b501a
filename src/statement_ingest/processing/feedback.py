"""User corrections and rule proposals learned from them."""

import threading
import uuid
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Optional

from statement_ingest.models.category import (
    CategoryFeedback,
    CategoryRule,
    ProposalStatus,
    RuleField,
    RuleKind,
    RuleProposal,
)
from statement_ingest.models.transaction import Transaction, normalize_description
from statement_ingest.storage.sqlite_store import NotFoundError, SQLiteStore
from statement_ingest.utils.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_MIN_OCCURRENCES = 3
DEFAULT_PROPOSAL_LOOKBACK = 200


@dataclass
class ProposalReport:
    """Counts from one rule-proposal scan.

    Attributes:
        owners: Owners whose corrections were scanned.
        merchants: Merchants considered.
        created: Proposals saved by the scan.
        cancelled: Whether the scan stopped early on request.
    """

    owners: int = 0
    merchants: int = 0
    created: list[RuleProposal] = field(default_factory=list)
    cancelled: bool = False


class FeedbackRecorder:
    """Records user corrections.

    A correction appends an immutable feedback entry and sets the
    transaction to Manual with confidence 1.0 in one store transaction.
    Manual transactions are never touched by automatic classification
    afterwards.
    """

    def __init__(self, store: SQLiteStore):
        self.store = store

    def record_correction(
        self,
        transaction_id: str,
        category_id: str,
        owner: Optional[str] = None,
    ) -> Transaction:
        """Apply a user's category choice to a transaction.

        Args:
            transaction_id: Transaction being corrected.
            category_id: Category the user chose.
            owner: Acting user. Defaults to the transaction's owner; a
                different owner is rejected.

        Returns:
            The updated transaction.

        Raises:
            NotFoundError: If the transaction or category does not exist, or
                either belongs to another owner.
        """
        txn = self.store.get_transaction(transaction_id)
        if txn is None or txn.is_deleted:
            raise NotFoundError(f"Transaction not found: {transaction_id}")
        acting_owner = owner or txn.owner
        if txn.owner != acting_owner:
            raise NotFoundError(f"Transaction not found: {transaction_id}")

        category = self.store.get_category(category_id)
        if category is None or category.owner != acting_owner:
            raise NotFoundError(f"Category not found: {category_id}")

        feedback = CategoryFeedback(
            transaction_id=transaction_id,
            prior_category_id=txn.category_id,
            new_category_id=category_id,
            owner=acting_owner,
        )
        updated = self.store.apply_correction(feedback)
        logger.info(
            f"Recorded correction for {transaction_id}: "
            f"{txn.category_id or 'none'} -> {category_id} ({txn.classification_source.value} -> Manual)"
        )
        return updated


class RuleProposer:
    """Proposes rules from recurring corrections.

    Looks at an owner's most recent corrections (latest correction per
    transaction), groups them by merchant, and proposes a merchant rule for
    every merchant the user has put in the same category at least
    ``min_occurrences`` times. A merchant whose corrections are split
    evenly between categories is skipped. Merchants already covered by a
    rule for that category, or by a pending or rejected proposal, are skipped.

    Proposals are inert until approved: nothing is classified by them.
    """

    def __init__(
        self,
        store: SQLiteStore,
        min_occurrences: int = DEFAULT_MIN_OCCURRENCES,
        lookback: int = DEFAULT_PROPOSAL_LOOKBACK,
    ):
        """Initialize proposer.

        Args:
            store: Store holding feedback, rules and proposals.
            min_occurrences: Corrections needed before a rule is proposed.
            lookback: Number of most recent corrections scanned.
        """
        if min_occurrences < 1:
            raise ValueError("min_occurrences must be at least 1")
        self.store = store
        self.min_occurrences = min_occurrences
        self.lookback = lookback

    def propose(
        self,
        owner: str,
        cancel_event: Optional[threading.Event] = None,
        report: Optional[ProposalReport] = None,
    ) -> list[RuleProposal]:
        """Scan recent corrections and save new proposals.

        Running it again without new corrections proposes nothing new.

        Args:
            owner: User whose corrections are scanned.
            cancel_event: Checked before each merchant; when set the scan
                stops, keeping the proposals already saved.
            report: Report to add this owner's counts to.

        Returns:
            Newly created proposals.
        """
        report = report if report is not None else ProposalReport()
        report.owners += 1
        first_new = len(report.created)

        counts: dict[str, Counter[str]] = defaultdict(Counter)
        seen: set[str] = set()
        for feedback, txn in self.store.recent_corrections(owner, self.lookback):
            # Newest first: only the latest correction per transaction counts
            if txn.id in seen:
                continue
            seen.add(txn.id)
            merchant = normalize_description(txn.merchant or txn.description)
            if merchant:
                counts[merchant][feedback.new_category_id] += 1

        rules = self.store.list_rules(owner=owner, enabled_only=True)
        # Pending and rejected pairs are not proposed again
        reviewed = {
            (p.pattern, p.category_id)
            for p in self.store.list_proposals(owner=owner)
            if p.status != ProposalStatus.APPROVED
        }

        for merchant in sorted(counts):
            if cancel_event is not None and cancel_event.is_set():
                report.cancelled = True
                logger.info(
                    f"Rule proposal scan for {owner} cancelled after {report.merchants} merchants"
                )
                break
            report.merchants += 1

            ranked = counts[merchant].most_common()
            category_id, occurrences = ranked[0]
            if occurrences < self.min_occurrences:
                continue
            if len(ranked) > 1 and ranked[1][1] == occurrences:
                logger.debug(f"Skipping ambiguous merchant {merchant!r}: {dict(counts[merchant])}")
                continue
            if (merchant, category_id) in reviewed:
                continue
            if self._covered(merchant, category_id, rules):
                continue

            proposal = RuleProposal(
                pattern=merchant,
                category_id=category_id,
                occurrences=occurrences,
                owner=owner,
            )
            self.store.save_proposal(proposal)
            report.created.append(proposal)
            logger.info(
                f"Proposed rule {merchant!r} -> {category_id} ({occurrences} corrections)"
            )

        return report.created[first_new:]

    def _covered(self, merchant: str, category_id: str, rules: list[CategoryRule]) -> bool:
        """Whether the first rule that fires for the merchant already picks the category."""
        for rule in sorted(rules, key=lambda r: r.sort_key):
            if rule.matches(merchant, merchant):
                return rule.category_id == category_id
        return False

    def approve(self, proposal_id: str) -> CategoryRule:
        """Turn a pending proposal into an enabled merchant rule.

        The rule is given a priority above any existing rule that fires for
        the same merchant, so the user's repeated choice wins.

        Raises:
            NotFoundError: If no pending proposal has this id.
        """
        proposal = self.store.get_proposal(proposal_id)
        if proposal is None or proposal.status != ProposalStatus.PENDING:
            raise NotFoundError(f"No pending proposal: {proposal_id}")

        competing = [
            r.priority
            for r in self.store.list_rules(owner=proposal.owner, enabled_only=True)
            if r.matches(proposal.pattern, proposal.pattern)
        ]
        rule = CategoryRule(
            id=f"learned-{uuid.uuid4().hex[:12]}",
            category_id=proposal.category_id,
            pattern=proposal.pattern,
            kind=RuleKind.CONTAINS,
            target_field=RuleField.MERCHANT,
            priority=max(competing) + 1 if competing else 0,
            enabled=True,
            owner=proposal.owner,
        )
        rule = self.store.approve_proposal(proposal_id, rule)
        logger.info(f"Approved proposal {proposal_id} as rule {rule.id}")
        return rule

    def reject(self, proposal_id: str) -> RuleProposal:
        """Mark a pending proposal as rejected.

        Raises:
            NotFoundError: If no pending proposal has this id.
        """
        proposal = self.store.get_proposal(proposal_id)
        if proposal is None or proposal.status != ProposalStatus.PENDING:
            raise NotFoundError(f"No pending proposal: {proposal_id}")
        proposal.status = ProposalStatus.REJECTED
        self.store.save_proposal(proposal)
        logger.info(f"Rejected proposal {proposal_id}")
        return proposal


class RuleProposalJob:
    """Background scan proposing rules for several owners in turn.

    Each owner is scanned with ``RuleProposer.propose``, so the job is as
    idempotent as a single scan: a second run without new corrections
    creates nothing.
    """

    def __init__(self, proposer: RuleProposer, owners: list[str]):
        self.proposer = proposer
        self.owners = owners

    def run(self, cancel_event: Optional[threading.Event] = None) -> ProposalReport:
        """Scan every owner, stopping early when ``cancel_event`` is set."""
        report = ProposalReport()
        for owner in self.owners:
            if cancel_event is not None and cancel_event.is_set():
                report.cancelled = True
                break
            self.proposer.propose(owner, cancel_event, report)
            if report.cancelled:
                break

        logger.info(
            f"Rule proposal scan: {report.owners} owners, {report.merchants} merchants, "
            f"{len(report.created)} new proposals"
        )
        return report
