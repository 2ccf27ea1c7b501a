"""AI-assisted location of fields in unstructured statement text."""

from dataclasses import dataclass

from statement_ingest.models.category import is_safe_pattern
from statement_ingest.processing.ai.client import AIClient, AIClientConfig
from statement_ingest.processing.ai.models import TARGET_FIELDS, ExtractionHints
from statement_ingest.processing.ai.prompts import (
    EXTRACTION_SYSTEM_PROMPT,
    build_extraction_prompt,
)
from statement_ingest.utils.logging_config import get_logger

logger = get_logger(__name__)

# Lines of statement text sent to the model
DEFAULT_SAMPLE_LINES = 40

# Characters kept per sampled line
MAX_LINE_CHARS = 200


@dataclass
class AIHintExtractor:
    """Asks the model where transaction fields are in raw statement text.

    The model answers with structure only (column indexes or a line regex).
    It never supplies values: adapters re-read every date and amount from
    the source text using these hints.

    Attributes:
        client: AI API client.
        sample_lines: Maximum number of lines sent to the model.
    """

    client: AIClient
    sample_lines: int = DEFAULT_SAMPLE_LINES

    @classmethod
    def create(cls, client_config: AIClientConfig) -> "AIHintExtractor":
        """Create an extractor with its own client."""
        return cls(client=AIClient(config=client_config))

    @property
    def is_available(self) -> bool:
        return self.client.is_available

    def extract(
        self,
        raw_text: str,
        target_schema: tuple[str, ...] = TARGET_FIELDS,
    ) -> ExtractionHints:
        """Get structural hints for the given statement text.

        Args:
            raw_text: Statement text, one row per line.
            target_schema: Fields to locate.

        Returns:
            ExtractionHints. Unusable responses come back as mode "none"
            with zero confidence.

        Raises:
            AIUnavailableError: If the circuit is open.
            AIClientError: If the request fails.
        """
        lines = [line[:MAX_LINE_CHARS] for line in raw_text.splitlines()][: self.sample_lines]
        prompt = build_extraction_prompt(lines, target_schema)

        response, input_tokens, output_tokens = self.client.send_message(
            EXTRACTION_SYSTEM_PROMPT, prompt
        )
        self.client.usage_stats.extractions_performed += 1

        try:
            data = self.client.parse_json_response(response)
            if not isinstance(data, dict):
                raise ValueError("Expected dict response from AI")
            hints = ExtractionHints.from_dict(data)
        except (ValueError, TypeError) as e:
            logger.warning(f"Unusable extraction hints from AI: {e}")
            return ExtractionHints.none(f"Parse error: {e}")

        if hints.mode == "pattern" and hints.line_pattern:
            is_safe, reason = is_safe_pattern(hints.line_pattern)
            if not is_safe:
                logger.warning(f"Rejecting unsafe extraction pattern from AI: {reason}")
                return ExtractionHints.none(f"Unsafe pattern: {reason}")

        logger.debug(
            f"Extraction hints: mode={hints.mode}, confidence={hints.confidence:.2f}, "
            f"{input_tokens + output_tokens} tokens"
        )
        return hints
