"""Anthropic API client wrapper with retries and circuit breaking."""

import json
import os
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import anthropic
from rich.console import Console

from statement_ingest.processing.ai.models import AIUsageStats
from statement_ingest.utils.logging_config import get_logger

logger = get_logger(__name__)
_console = Console(stderr=True)


class AIClientError(Exception):
    """Base exception for AI client errors."""

    pass


class APIKeyNotFoundError(AIClientError):
    """Raised when API key is not found."""

    pass


class AIUnavailableError(AIClientError):
    """Raised when the circuit breaker is open and requests are refused."""

    pass


@dataclass
class AIClientConfig:
    """Configuration for the AI client.

    Attributes:
        api_key_env: Environment variable name for API key.
        model: Model to use for requests.
        max_tokens: Maximum tokens for response.
        timeout: Per-request timeout in seconds.
        retry_attempts: Number of attempts per request.
        retry_delay: Initial delay between retries (exponential backoff).
        failure_threshold: Consecutive failed requests that open the circuit.
        reset_after: Seconds the circuit stays open before a trial request.
    """

    api_key_env: str = "ANTHROPIC_API_KEY"
    model: str = "claude-sonnet-4-5-20250929"
    max_tokens: int = 300
    timeout: float = 30.0
    retry_attempts: int = 3
    retry_delay: float = 1.0
    failure_threshold: int = 3
    reset_after: float = 60.0


class CircuitState(Enum):
    """State of the circuit breaker."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreaker:
    """Stops calling a failing provider until it has had time to recover.

    Closed: requests pass. After ``failure_threshold`` consecutive failures
    the circuit opens and requests are refused. Once ``reset_after`` seconds
    have passed, the circuit is half-open: the next request is let through
    as a trial. Success closes the circuit, failure re-opens it.

    Thread-safe: one breaker is shared by every worker using the client.
    """

    failure_threshold: int = 3
    reset_after: float = 60.0
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)
    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failures: int = field(default=0, init=False)
    _opened_at: float = field(default=0.0, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._maybe_half_open()
            return self._state

    def _maybe_half_open(self) -> None:
        if (
            self._state == CircuitState.OPEN
            and self.clock() - self._opened_at >= self.reset_after
        ):
            self._state = CircuitState.HALF_OPEN

    def allow_request(self) -> bool:
        """Whether a request may be attempted now."""
        with self._lock:
            self._maybe_half_open()
            return self._state != CircuitState.OPEN

    def record_success(self) -> None:
        with self._lock:
            if self._state != CircuitState.CLOSED:
                logger.info("AI circuit closed after successful request")
            self._state = CircuitState.CLOSED
            self._failures = 0

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1
            if self._state == CircuitState.HALF_OPEN or self._failures >= self.failure_threshold:
                if self._state != CircuitState.OPEN:
                    logger.warning(
                        f"AI circuit opened after {self._failures} consecutive failures; "
                        f"retrying in {self.reset_after:.0f}s"
                    )
                self._state = CircuitState.OPEN
                self._opened_at = self.clock()


@dataclass
class AIClient:
    """Wrapper for the Anthropic API with retries and circuit breaking.

    This client provides:
    - Lazy initialization (only connects when first used)
    - A bounded timeout per request
    - Automatic retry with exponential backoff
    - A circuit breaker that fails fast while the provider is down
    - Token usage tracking
    """

    config: AIClientConfig = field(default_factory=AIClientConfig)
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)
    breaker: CircuitBreaker = field(init=False)
    usage_stats: AIUsageStats = field(default_factory=AIUsageStats)
    _client: Any = field(default=None, init=False, repr=False)
    _initialized: bool = field(default=False, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def __post_init__(self) -> None:
        """Initialize the circuit breaker from config."""
        self.breaker = CircuitBreaker(
            failure_threshold=self.config.failure_threshold,
            reset_after=self.config.reset_after,
        )

    @property
    def is_available(self) -> bool:
        """Check if AI client can be used (API key exists and circuit not open)."""
        if not self._initialized and not os.environ.get(self.config.api_key_env):
            return False
        return self.breaker.allow_request()

    def _ensure_initialized(self) -> None:
        """Lazily initialize the Anthropic client."""
        with self._lock:
            if self._initialized:
                return

            api_key = os.environ.get(self.config.api_key_env)
            if not api_key:
                raise APIKeyNotFoundError(
                    f"API key not found in environment variable: {self.config.api_key_env}"
                )

            self._client = anthropic.Anthropic(api_key=api_key, max_retries=0)
            self._initialized = True
            logger.info(f"AI client initialized with model: {self.config.model}")

    def _make_request(
        self,
        system_prompt: str,
        user_prompt: str,
    ) -> tuple[str, int, int]:
        """Make a single API request with retry logic.

        Args:
            system_prompt: The system prompt.
            user_prompt: The user prompt.

        Returns:
            Tuple of (response_text, input_tokens, output_tokens).

        Raises:
            AIClientError: If request fails after all retries.
        """
        delay = self.config.retry_delay
        attempts = max(1, self.config.retry_attempts)

        for attempt in range(attempts):
            try:
                response = self._client.messages.create(
                    model=self.config.model,
                    max_tokens=self.config.max_tokens,
                    system=system_prompt,
                    messages=[{"role": "user", "content": user_prompt}],
                    timeout=self.config.timeout,
                )

                content = response.content[0].text if response.content else ""
                input_tokens = response.usage.input_tokens
                output_tokens = response.usage.output_tokens

                with self._lock:
                    self.usage_stats.add_request(input_tokens, output_tokens)
                logger.debug(f"Request completed: {input_tokens} in, {output_tokens} out")

                return content, input_tokens, output_tokens

            except Exception as e:
                error_msg = str(e).lower()
                if attempt >= attempts - 1:
                    raise AIClientError(
                        f"Request failed after {attempt + 1} attempts: {e}"
                    ) from e

                if "rate" in error_msg or "429" in error_msg:
                    reason = "Rate limited"
                elif "overloaded" in error_msg or "529" in error_msg:
                    reason = "API overloaded"
                elif "timeout" in error_msg or "timed out" in error_msg:
                    reason = "Request timed out"
                else:
                    reason = "Request failed"

                _console.print(f"[yellow]{reason}, retrying in {delay:.0f}s...[/yellow]")
                logger.warning(f"{reason}: {e}, retrying in {delay}s")
                self.sleep(delay)
                delay *= 2

        raise AIClientError("Request failed: no attempts made")

    def send_message(
        self,
        system_prompt: str,
        user_prompt: str,
    ) -> tuple[str, int, int]:
        """Send a message to the AI and get response.

        Args:
            system_prompt: The system prompt.
            user_prompt: The user prompt.

        Returns:
            Tuple of (response_text, input_tokens, output_tokens).

        Raises:
            AIUnavailableError: If the circuit is open.
            APIKeyNotFoundError: If no API key is configured.
            AIClientError: If the request fails after all retries.
        """
        if not self.breaker.allow_request():
            with self._lock:
                self.usage_stats.rejected_requests += 1
            raise AIUnavailableError("AI provider unavailable (circuit open)")

        self._ensure_initialized()

        try:
            result = self._make_request(system_prompt, user_prompt)
        except AIClientError:
            with self._lock:
                self.usage_stats.failed_requests += 1
            self.breaker.record_failure()
            raise

        self.breaker.record_success()
        return result

    def parse_json_response(self, response: str) -> dict[str, Any] | list[Any]:
        """Parse a JSON response from the AI.

        Handles cases where the response contains extra text around the JSON.

        Args:
            response: The response string.

        Returns:
            Parsed JSON as a dictionary or list.

        Raises:
            ValueError: If JSON cannot be parsed.
        """
        # Try direct parse first
        try:
            result = json.loads(response)
            if isinstance(result, (dict, list)):
                return result
            raise ValueError(f"JSON parsed to unexpected type: {type(result)}")
        except json.JSONDecodeError:
            pass

        # Look for {...} or [...]
        start_brace = response.find("{")
        start_bracket = response.find("[")

        if start_brace == -1 and start_bracket == -1:
            raise ValueError(f"No JSON found in response: {response[:100]}")

        if start_brace == -1:
            start = start_bracket
        elif start_bracket == -1:
            start = start_brace
        else:
            start = min(start_brace, start_bracket)

        # Find matching end, ignoring brackets inside strings
        depth = 0
        in_string = False
        escaped = False
        for i, char in enumerate(response[start:], start):
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char in "{[":
                depth += 1
            elif char in "}]":
                depth -= 1
                if depth == 0:
                    try:
                        result = json.loads(response[start : i + 1])
                        if isinstance(result, (dict, list)):
                            return result
                        raise ValueError(f"JSON parsed to unexpected type: {type(result)}")
                    except json.JSONDecodeError:
                        break

        raise ValueError(f"Could not parse JSON from response: {response[:200]}")

    def get_usage_summary(self) -> str:
        """Get a summary of API usage.

        Returns:
            Human-readable usage summary.
        """
        stats = self.usage_stats
        return (
            f"AI Usage Summary:\n"
            f"  Total requests: {stats.total_requests}\n"
            f"  Input tokens: {stats.total_input_tokens:,}\n"
            f"  Output tokens: {stats.total_output_tokens:,}\n"
            f"  Failed requests: {stats.failed_requests}\n"
            f"  Refused (circuit open): {stats.rejected_requests}\n"
            f"  Categorizations: {stats.categorizations_performed}\n"
            f"  Extraction hints: {stats.extractions_performed}"
        )
