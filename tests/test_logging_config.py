"""Tests for logging configuration."""

import logging
from pathlib import Path

import pytest

from statement_ingest.utils.logging_config import (
    LogContext,
    get_logger,
    mask_number,
    setup_logging,
)


class TestMaskNumber:
    """Tests for mask_number."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("chase_4111111111111111_jan.csv", "chase_****1111_jan.csv"),
            ("acct 12345678", "acct ****5678"),
            ("jan-2025.csv", "jan-2025.csv"),
            ("run 3f2a12345678901b", "run 3f2a12345678901b"),
        ],
    )
    def test_mask(self, text: str, expected: str) -> None:
        assert mask_number(text) == expected


class TestGetLogger:
    """Tests for get_logger."""

    def test_nests_under_package_root(self) -> None:
        assert get_logger("tests.module").name == "statement_ingest.tests.module"

    def test_package_modules_keep_their_name(self) -> None:
        assert get_logger("statement_ingest.cli").name == "statement_ingest.cli"


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_file_handler(self, tmp_path: Path) -> None:
        log_file = tmp_path / "ingest.log"
        root = setup_logging("debug", str(log_file), console_output=False)

        get_logger("statement_ingest.test").info("hello")
        for handler in root.handlers:
            handler.flush()

        assert root.level == logging.DEBUG
        assert "hello" in log_file.read_text(encoding="utf-8")

    def test_repeated_setup_replaces_handlers(self, tmp_path: Path) -> None:
        setup_logging("INFO", str(tmp_path / "a.log"), console_output=True)
        root = setup_logging("INFO", "", console_output=True)
        assert len(root.handlers) == 1


class TestLogContext:
    """Tests for LogContext."""

    def test_masks_context(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test that sensitive values never reach the log."""
        logger = logging.getLogger("statement_ingest.test.context")
        with caplog.at_level(logging.DEBUG, logger="statement_ingest.test.context"):
            with LogContext(logger, "ingest", filename="card_4111111111111111.csv", api_key="k"):
                pass

        text = caplog.text
        assert "4111111111111111" not in text
        assert "****1111" in text
        assert "api_key=***" in text
        assert "Completed ingest" in text

    def test_logs_and_reraises(self, caplog: pytest.LogCaptureFixture) -> None:
        logger = logging.getLogger("statement_ingest.test.failure")
        with caplog.at_level(logging.DEBUG, logger="statement_ingest.test.failure"):
            with pytest.raises(ValueError):
                with LogContext(logger, "export") as ctx:
                    raise ValueError("bad range")

        assert ctx.elapsed is not None
        assert "export failed after" in caplog.text
        assert "bad range" in caplog.text
