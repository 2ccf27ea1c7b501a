"""Transaction processing pipeline components.

The ingestion pipeline and background jobs live in
``statement_ingest.processing.pipeline``, ``statement_ingest.processing.jobs``
and ``statement_ingest.processing.reclassifier``; import them from there.
"""

from statement_ingest.processing.classifier import (
    ClassificationOutcome,
    ClassificationState,
    Classifier,
)
from statement_ingest.processing.currency import CurrencyResolution, CurrencyResolver
from statement_ingest.processing.deduplicator import (
    DedupOutcome,
    Deduplicator,
    description_similarity,
)
from statement_ingest.processing.fx import FxRateProvider, StaticFxRates, convert_amount
from statement_ingest.processing.locks import AccountLocks
from statement_ingest.processing.normalizer import Normalizer, guess_merchant

__all__ = [
    "CurrencyResolver",
    "CurrencyResolution",
    "Normalizer",
    "guess_merchant",
    "Deduplicator",
    "DedupOutcome",
    "description_similarity",
    "Classifier",
    "ClassificationOutcome",
    "ClassificationState",
    "AccountLocks",
    "FxRateProvider",
    "StaticFxRates",
    "convert_amount",
]
