"""Logging configuration for statement ingestion.

Every module logs through ``get_logger(__name__)``, which nests its logger
under the ``statement_ingest`` root so ``setup_logging`` controls the
whole package from one place.
"""

import logging
import re
import sys
import time
from pathlib import Path

DEFAULT_LOG_FILE = "statement_ingest.log"

ROOT_LOGGER = "statement_ingest"

# Context keys whose values are never written to the log
SENSITIVE_FIELDS = {
    "password", "token", "account_number", "card_number", "iban", "pin", "secret", "api_key",
}

# Runs of 8+ digits in free text (card and account numbers in filenames).
# Digits inside hex identifiers are left alone.
_LONG_NUMBER = re.compile(r"(?<![0-9a-fA-F])\d{8,}(?![0-9a-fA-F])")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def mask_number(text: str) -> str:
    """Replace long digit runs with a mask keeping the last four digits.

    >>> mask_number("chase_4111111111111111_jan.csv")
    'chase_****1111_jan.csv'
    """
    return _LONG_NUMBER.sub(lambda m: "****" + m.group(0)[-4:], text)


def _sanitize_context(context: dict[str, object]) -> dict[str, object]:
    sanitized: dict[str, object] = {}
    for key, value in context.items():
        if key.lower() in SENSITIVE_FIELDS:
            sanitized[key] = "***"
        elif isinstance(value, str):
            sanitized[key] = mask_number(value)
        else:
            sanitized[key] = value
    return sanitized


def setup_logging(
    level: str = "INFO",
    log_file: str | None = None,
    console_output: bool = True,
) -> logging.Logger:
    """Configure the package root logger.

    Existing handlers are replaced, so calling this again (for example
    after reading the configured level) does not duplicate output.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Path to log file. None uses DEFAULT_LOG_FILE and an
            empty string disables file logging.
        console_output: Whether to also write to stderr.

    Returns:
        The package root logger.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(numeric_level)
    root.handlers.clear()

    handlers: list[logging.Handler] = []
    target = DEFAULT_LOG_FILE if log_file is None else log_file
    if target:
        handlers.append(logging.FileHandler(Path(target), encoding="utf-8"))
    if console_output:
        handlers.append(logging.StreamHandler(sys.stderr))

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    for handler in handlers:
        handler.setLevel(numeric_level)
        handler.setFormatter(formatter)
        root.addHandler(handler)
    return root


def get_logger(name: str) -> logging.Logger:
    """Logger for a module, nested under the package root logger."""
    if name == ROOT_LOGGER or name.startswith(ROOT_LOGGER + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


class LogContext:
    """Logs the start, duration and failure of one operation.

    Context values are masked before they reach the log. Exceptions are
    logged and then re-raised.

    Example:
        with LogContext(logger, "ingest", statement=statement.id):
            ...
    """

    def __init__(self, logger: logging.Logger, operation: str, **context: object):
        self.logger = logger
        self.operation = operation
        self.context = _sanitize_context(context)
        self.elapsed: float | None = None
        self._started = 0.0

    def _describe(self) -> str:
        if not self.context:
            return self.operation
        details = ", ".join(f"{k}={v}" for k, v in self.context.items())
        return f"{self.operation} ({details})"

    def __enter__(self) -> "LogContext":
        self._started = time.monotonic()
        self.logger.debug(f"Starting {self._describe()}")
        return self

    def __exit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object | None,
    ) -> bool:
        self.elapsed = time.monotonic() - self._started
        if exc_type is not None:
            self.logger.error(
                f"{self._describe()} failed after {self.elapsed:.2f}s: "
                f"{exc_type.__name__}: {exc_val}",
                exc_info=True,
            )
        else:
            self.logger.debug(f"Completed {self._describe()} in {self.elapsed:.2f}s")
        return False
