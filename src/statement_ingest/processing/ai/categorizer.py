"""AI-powered category suggestions."""

from dataclasses import dataclass
from decimal import Decimal

from statement_ingest.models.category import Category
from statement_ingest.processing.ai.client import AIClient, AIClientConfig
from statement_ingest.processing.ai.models import AISuggestion, HistoricalExample
from statement_ingest.processing.ai.prompts import (
    CATEGORIZATION_SYSTEM_PROMPT,
    build_categorization_prompt,
)
from statement_ingest.utils.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class AICategorizer:
    """AI-powered categorizer for financial transactions.

    Suggests one of the user's categories for a transaction, using the
    user's own past categorizations as context.

    Attributes:
        client: AI API client.
    """

    client: AIClient

    @classmethod
    def create(cls, client_config: AIClientConfig) -> "AICategorizer":
        """Create an AI categorizer with its own client.

        Args:
            client_config: Client settings (model, timeout, retries, circuit).

        Returns:
            Configured AICategorizer instance.
        """
        return cls(client=AIClient(config=client_config))

    @property
    def is_available(self) -> bool:
        """Check if AI categorization is available."""
        return self.client.is_available

    def suggest(
        self,
        description: str,
        merchant: str,
        historical_examples: list[HistoricalExample],
        categories: list[Category],
        amount: Decimal = Decimal("0"),
        currency: str = "",
    ) -> AISuggestion:
        """Suggest a category for a single transaction.

        Args:
            description: Transaction description.
            merchant: Merchant guess.
            historical_examples: Bounded sample of the user's past categorizations.
            categories: Categories the suggestion must come from.
            amount: Signed amount, for direction context.
            currency: ISO currency code.

        Returns:
            AISuggestion. An unparseable response yields no category and
            zero confidence.

        Raises:
            AIUnavailableError: If the circuit is open.
            AIClientError: If the request fails.
        """
        prompt = build_categorization_prompt(
            description=description,
            merchant=merchant,
            amount=amount,
            currency=currency,
            categories=[{"id": c.id, "name": c.name} for c in categories],
            examples=[ex.to_dict() for ex in historical_examples],
        )

        response, input_tokens, output_tokens = self.client.send_message(
            CATEGORIZATION_SYSTEM_PROMPT, prompt
        )

        try:
            data = self.client.parse_json_response(response)
            if not isinstance(data, dict):
                raise ValueError("Expected dict response from AI")
            # Clamp confidence to valid 0.0-1.0 range
            raw_confidence = float(data.get("confidence", 0.0))
            confidence = max(0.0, min(1.0, raw_confidence))
            category_id = data.get("category_id")
            result = AISuggestion(
                category_id=str(category_id) if category_id else None,
                confidence=confidence,
                reasoning=str(data.get("reasoning", "")),
                tokens_used=input_tokens + output_tokens,
            )
            self.client.usage_stats.categorizations_performed += 1
            return result

        except (ValueError, TypeError) as e:
            logger.warning(f"Failed to parse AI response: {e}")
            return AISuggestion(
                category_id=None,
                confidence=0.0,
                reasoning=f"Parse error: {e}",
                tokens_used=input_tokens + output_tokens,
            )
