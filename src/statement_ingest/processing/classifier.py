"""Transaction classification: rules first, then AI, never over a user's choice."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Protocol

from statement_ingest.models.category import Category, CategoryFeedback, CategoryRule
from statement_ingest.models.transaction import ClassificationSource, Transaction
from statement_ingest.processing.ai.categorizer import AICategorizer
from statement_ingest.processing.ai.client import AIClientError
from statement_ingest.processing.ai.models import HistoricalExample
from statement_ingest.utils.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_HISTORY_SAMPLE_SIZE = 20


class ClassificationState(Enum):
    """States a transaction passes through while being classified."""

    UNCLASSIFIED = "Unclassified"
    RULE_EVALUATED = "RuleEvaluated"
    RULE_MATCHED = "RuleMatched"
    RULE_UNMATCHED = "RuleUnmatched"
    AI_EVALUATED = "AIEvaluated"
    AI_SUGGESTED = "AISuggested"
    AI_UNAVAILABLE = "AIUnavailable"
    USER_REVIEWED = "UserReviewed"


_TRANSITIONS: dict[ClassificationState, set[ClassificationState]] = {
    ClassificationState.UNCLASSIFIED: {
        ClassificationState.RULE_EVALUATED,
        ClassificationState.USER_REVIEWED,
    },
    ClassificationState.RULE_EVALUATED: {
        ClassificationState.RULE_MATCHED,
        ClassificationState.RULE_UNMATCHED,
    },
    ClassificationState.RULE_MATCHED: {ClassificationState.USER_REVIEWED},
    ClassificationState.RULE_UNMATCHED: {ClassificationState.AI_EVALUATED},
    ClassificationState.AI_EVALUATED: {
        ClassificationState.AI_SUGGESTED,
        ClassificationState.AI_UNAVAILABLE,
    },
    ClassificationState.AI_SUGGESTED: {ClassificationState.USER_REVIEWED},
    ClassificationState.AI_UNAVAILABLE: {ClassificationState.USER_REVIEWED},
    ClassificationState.USER_REVIEWED: set(),
}


class InvalidClassificationTransition(ValueError):
    """Raised when a classification run skips or repeats a state."""


@dataclass
class ClassificationRun:
    """State machine for one classification attempt.

    Attributes:
        state: Current state.
        path: Every state visited, in order, starting with Unclassified.
    """

    state: ClassificationState = ClassificationState.UNCLASSIFIED
    path: list[ClassificationState] = field(
        default_factory=lambda: [ClassificationState.UNCLASSIFIED]
    )

    def advance(self, new_state: ClassificationState) -> None:
        """Move to the next state.

        Raises:
            InvalidClassificationTransition: If the move is not allowed.
        """
        if new_state not in _TRANSITIONS[self.state]:
            raise InvalidClassificationTransition(
                f"Cannot move classification from {self.state.value} to {new_state.value}"
            )
        self.state = new_state
        self.path.append(new_state)


@dataclass
class ClassificationOutcome:
    """Decision produced by the classifier for one transaction.

    Attributes:
        category_id: Chosen category (None when unclassified).
        source: Rule, AI or Unclassified.
        confidence: Confidence in [0, 1].
        rule_id: Matching rule, for Rule outcomes.
        reason: Short explanation for audit.
        run: The state machine run that produced the decision.
    """

    category_id: Optional[str]
    source: ClassificationSource
    confidence: float
    rule_id: Optional[str] = None
    reason: str = ""
    run: ClassificationRun = field(default_factory=ClassificationRun)

    @property
    def final_state(self) -> ClassificationState:
        return self.run.state


class ClassificationStore(Protocol):
    """Store operations the classifier reads."""

    def list_rules(self, owner: str | None = None, enabled_only: bool = True) -> list[CategoryRule]:
        ...

    def list_categories(self, owner: str | None = None) -> list[Category]:
        ...

    def recent_corrections(
        self, owner: str, limit: int
    ) -> list[tuple[CategoryFeedback, Transaction]]:
        ...

    def list_labeled_transactions(self, owner: str, limit: int) -> list[Transaction]:
        ...


@dataclass
class ClassificationContext:
    """Per-owner inputs loaded once and reused for a batch.

    Attributes:
        owner: User whose rules and categories apply.
        rules: Enabled rules in evaluation order.
        categories: Categories the AI may choose from, by id.
        examples: Bounded sample of past categorizations for the AI.
    """

    owner: str
    rules: list[CategoryRule]
    categories: dict[str, Category]
    examples: list[HistoricalExample]


def should_apply(
    current: Transaction,
    outcome: ClassificationOutcome,
    force: bool = False,
) -> bool:
    """Whether an outcome may replace a transaction's current classification.

    A Manual classification is only replaced when forced. A categorized
    transaction is never moved to Unclassified, nor to a category of lower
    confidence.
    """
    if current.is_manual and not force:
        return False
    if current.category_id is None:
        return True
    if outcome.category_id is None:
        return False
    return outcome.confidence >= current.confidence


class Classifier:
    """Assigns a category to transactions.

    Evaluation order:
    1. Enabled rules, highest priority first, ties by creation order. The
       first match wins with confidence 1.0 and source Rule.
    2. The AI categorizer, given the description, merchant and a bounded
       sample of the owner's past categorizations. Its answer must name one
       of the owner's categories to be accepted (source AI).
    3. Otherwise Unclassified with confidence 0. An unreachable AI
       degrades to this state rather than failing ingestion.
    """

    def __init__(
        self,
        store: ClassificationStore,
        categorizer: Optional[AICategorizer] = None,
        history_sample_size: int = DEFAULT_HISTORY_SAMPLE_SIZE,
    ):
        """Initialize classifier.

        Args:
            store: Source of rules, categories and labeled history.
            categorizer: AI categorizer, or None to skip the AI step.
            history_sample_size: Max historical examples sent with each AI request.
        """
        self.store = store
        self.categorizer = categorizer
        self.history_sample_size = history_sample_size

    def load_context(self, owner: str) -> ClassificationContext:
        """Load the rules, categories and history that apply to an owner."""
        rules = sorted(
            self.store.list_rules(owner=owner, enabled_only=True),
            key=lambda r: r.sort_key,
        )
        categories = {c.id: c for c in self.store.list_categories(owner)}
        return ClassificationContext(
            owner=owner,
            rules=rules,
            categories=categories,
            examples=self._historical_examples(owner),
        )

    def _historical_examples(self, owner: str) -> list[HistoricalExample]:
        """Corrections first (newest first), topped up with other labeled rows."""
        limit = self.history_sample_size
        if limit <= 0:
            return []

        examples: list[HistoricalExample] = []
        seen: set[str] = set()
        for feedback, txn in self.store.recent_corrections(owner, limit):
            if txn.id in seen:
                continue
            seen.add(txn.id)
            examples.append(
                HistoricalExample(txn.description, txn.merchant, feedback.new_category_id)
            )

        if len(examples) < limit:
            for txn in self.store.list_labeled_transactions(owner, limit):
                if len(examples) >= limit:
                    break
                if txn.id in seen or txn.category_id is None:
                    continue
                seen.add(txn.id)
                examples.append(HistoricalExample(txn.description, txn.merchant, txn.category_id))

        return examples[:limit]

    def classify(self, txn: Transaction, context: ClassificationContext) -> ClassificationOutcome:
        """Decide a classification for one transaction without changing it.

        Args:
            txn: Transaction to classify.
            context: Rules, categories and history for the transaction's owner.

        Returns:
            ClassificationOutcome with the decision and its state path.
        """
        run = ClassificationRun()
        run.advance(ClassificationState.RULE_EVALUATED)

        for rule in context.rules:
            if rule.matches(txn.description, txn.merchant):
                run.advance(ClassificationState.RULE_MATCHED)
                return ClassificationOutcome(
                    category_id=rule.category_id,
                    source=ClassificationSource.RULE,
                    confidence=1.0,
                    rule_id=rule.id,
                    reason=f"rule {rule.id}",
                    run=run,
                )

        run.advance(ClassificationState.RULE_UNMATCHED)
        run.advance(ClassificationState.AI_EVALUATED)
        return self._classify_with_ai(txn, context, run)

    def _classify_with_ai(
        self,
        txn: Transaction,
        context: ClassificationContext,
        run: ClassificationRun,
    ) -> ClassificationOutcome:
        if self.categorizer is None or not context.categories:
            run.advance(ClassificationState.AI_UNAVAILABLE)
            reason = "no AI categorizer" if self.categorizer is None else "no categories defined"
            return self._unclassified(reason, run)

        try:
            suggestion = self.categorizer.suggest(
                description=txn.description,
                merchant=txn.merchant,
                historical_examples=context.examples,
                categories=list(context.categories.values()),
                amount=txn.amount,
                currency=txn.currency,
            )
        except AIClientError as e:
            logger.warning(f"AI categorization unavailable for transaction {txn.id}: {e}")
            run.advance(ClassificationState.AI_UNAVAILABLE)
            return self._unclassified(f"AI unavailable: {e}", run)

        if suggestion.category_id is None or suggestion.category_id not in context.categories:
            logger.debug(
                f"Discarding AI suggestion {suggestion.category_id!r} for {txn.description!r}: "
                f"not a category of {context.owner}"
            )
            run.advance(ClassificationState.AI_UNAVAILABLE)
            return self._unclassified("AI gave no usable category", run)

        run.advance(ClassificationState.AI_SUGGESTED)
        return ClassificationOutcome(
            category_id=suggestion.category_id,
            source=ClassificationSource.AI,
            confidence=suggestion.confidence,
            reason=suggestion.reasoning[:200],
            run=run,
        )

    def _unclassified(self, reason: str, run: ClassificationRun) -> ClassificationOutcome:
        return ClassificationOutcome(
            category_id=None,
            source=ClassificationSource.UNCLASSIFIED,
            confidence=0.0,
            reason=reason,
            run=run,
        )

    def apply(
        self,
        txn: Transaction,
        outcome: ClassificationOutcome,
        force: bool = False,
    ) -> bool:
        """Write an outcome onto an in-memory transaction if allowed.

        Returns:
            True if the transaction was changed.
        """
        if not should_apply(txn, outcome, force):
            return False
        txn.category_id = outcome.category_id
        txn.classification_source = outcome.source
        txn.confidence = outcome.confidence
        txn.rule_id = outcome.rule_id
        txn.classification_reason = outcome.reason
        return True

    def classify_batch(
        self,
        transactions: list[Transaction],
        owner: str,
        outcomes: Optional[dict[tuple[str, str, str, str, str], ClassificationOutcome]] = None,
    ) -> int:
        """Classify new transactions in place.

        Args:
            transactions: Transactions from one statement, not yet stored.
            owner: Owner whose rules and categories apply.
            outcomes: Optional cache of outcomes by natural key. Cached
                transactions reuse their outcome; new outcomes are added.

        Returns:
            Number of transactions left unclassified.
        """
        if not transactions:
            return 0

        cache = {} if outcomes is None else outcomes
        context: Optional[ClassificationContext] = None
        unclassified = 0
        by_source: dict[str, int] = {}
        for txn in transactions:
            outcome = cache.get(txn.natural_key)
            if outcome is None:
                if context is None:
                    context = self.load_context(owner)
                outcome = self.classify(txn, context)
                cache[txn.natural_key] = outcome
                by_source[outcome.source.value] = by_source.get(outcome.source.value, 0) + 1
            self.apply(txn, outcome)
            if txn.category_id is None:
                unclassified += 1

        if by_source:
            logger.info(f"Classified {sum(by_source.values())} transactions: {by_source}")
        return unclassified
