"""Tests for logging setup and the timing context."""

from __future__ import annotations

import logging
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from bioblueprint.utils.logging import PACKAGE_NAME, LogContext, setup_logging


@pytest.fixture
def package_logger():
    """Restore the package logger after a test reconfigures it."""
    logger = logging.getLogger(PACKAGE_NAME)
    saved = (logger.level, list(logger.handlers), logger.propagate)
    yield logger
    logger.setLevel(saved[0])
    logger.handlers = saved[1]
    logger.propagate = saved[2]


class TestSetupLogging:
    """Tests for setup_logging()."""

    def test_level_and_handlers(self, package_logger: logging.Logger) -> None:
        """Test the package logger gets the level and one console handler."""
        setup_logging("DEBUG")

        assert package_logger.level == logging.DEBUG
        assert len(package_logger.handlers) == 1
        assert logging.getLogger("google").level == logging.WARNING

    def test_file_handler(self, package_logger: logging.Logger, tmp_path: Path) -> None:
        """Test a log file is written when requested."""
        log_file = tmp_path / "logs" / "run.log"

        setup_logging("INFO", log_file=log_file)
        logging.getLogger(f"{PACKAGE_NAME}.test").info("Phase 1 started")
        for handler in package_logger.handlers:
            handler.flush()

        assert "Phase 1 started" in log_file.read_text(encoding="utf-8")
        for handler in package_logger.handlers:
            handler.close()


class TestLogContext:
    """Tests for LogContext."""

    def test_logs_start_and_completion(self) -> None:
        """Test start and completion messages are logged with the elapsed time."""
        logger = MagicMock()

        with LogContext("Phase 1: Quick Scan", logger=logger) as ctx:
            pass

        messages = [c.args[1] for c in logger.log.call_args_list]
        assert messages[0] == "Phase 1: Quick Scan..."
        assert messages[1].startswith("Phase 1: Quick Scan completed in")
        assert ctx.elapsed >= 0.0

    def test_errors_logged_and_propagated(self) -> None:
        """Test a failure is logged and re-raised unchanged."""
        logger = MagicMock()

        with pytest.raises(ValueError, match="bad json"):
            with LogContext("Phase 2: Deep Analysis", logger=logger):
                raise ValueError("bad json")

        logger.error.assert_called_once()
        assert "Phase 2: Deep Analysis failed after" in logger.error.call_args.args[0]
