"""AI-assisted categorization and extraction module.

This module wraps the Claude API behind two narrow capabilities:
category suggestions and structural extraction hints.

Example usage:
    from statement_ingest.processing.ai import AICategorizer, AIClientConfig

    categorizer = AICategorizer.create(AIClientConfig(timeout=30.0))

    if categorizer.is_available:
        suggestion = categorizer.suggest(
            "UBER EATS 123", "UBER EATS", examples, categories
        )
        print(suggestion.category_id, suggestion.confidence)
"""

from statement_ingest.processing.ai.categorizer import AICategorizer
from statement_ingest.processing.ai.client import (
    AIClient,
    AIClientConfig,
    AIClientError,
    AIUnavailableError,
    APIKeyNotFoundError,
    CircuitBreaker,
    CircuitState,
)
from statement_ingest.processing.ai.extractor import AIHintExtractor
from statement_ingest.processing.ai.models import (
    TARGET_FIELDS,
    AISuggestion,
    AIUsageStats,
    ExtractionHints,
    HistoricalExample,
)

__all__ = [
    # Capabilities
    "AICategorizer",
    "AIHintExtractor",
    # Client
    "AIClient",
    "AIClientConfig",
    "CircuitBreaker",
    "CircuitState",
    # Errors
    "AIClientError",
    "AIUnavailableError",
    "APIKeyNotFoundError",
    # Result models
    "AISuggestion",
    "AIUsageStats",
    "ExtractionHints",
    "HistoricalExample",
    "TARGET_FIELDS",
]
