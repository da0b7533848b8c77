"""Logging setup for BioBlueprint.

All package loggers hang off ``bioblueprint``. The CLI calls
:func:`setup_logging` once; library users may attach their own handlers
instead. Each inference phase is wrapped in :class:`LogContext` so the log
shows how long every round-trip took.

Example:
    >>> setup_logging("DEBUG", log_file=Path("run.log"))
    >>> with LogContext("Phase 1: Quick Scan"):
    ...     scanner.run(images)
    # Phase 1: Quick Scan...
    # Phase 1: Quick Scan completed in 3.20s
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any, Union

from rich.console import Console
from rich.logging import RichHandler

PACKAGE_NAME = "bioblueprint"

# SDK and image libraries log every request and decoder step at INFO/DEBUG.
NOISY_LOGGERS = ("google", "google_genai", "httpx", "httpcore", "urllib3", "PIL")

FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s"
FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

AnyLogger = Union[logging.Logger, logging.LoggerAdapter]

_stderr = Console(stderr=True)


# =============================================================================
# Setup
# =============================================================================


def setup_logging(
    level: str = "INFO",
    log_file: Path | None = None,
    quiet_third_party: bool = True,
) -> logging.Logger:
    """Attach a Rich console handler (and optionally a file) to the package logger.

    Calling it again replaces the handlers from the previous call. The
    package logger does not propagate, so records are not duplicated by a
    root handler an embedding application may have installed.

    Args:
        level: Level name, e.g. ``"DEBUG"``. Unknown names fall back to INFO.
        log_file: Also write records to this file, creating parent directories.
        quiet_third_party: Raise SDK and Pillow loggers to WARNING.

    Returns:
        The configured package logger.
    """
    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        resolved = logging.INFO

    package_logger = logging.getLogger(PACKAGE_NAME)
    package_logger.setLevel(resolved)
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)

    package_logger.addHandler(
        RichHandler(
            console=_stderr,
            level=resolved,
            show_time=False,
            show_path=False,
            markup=False,
            rich_tracebacks=True,
            tracebacks_show_locals=resolved <= logging.DEBUG,
        )
    )

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        to_file = logging.FileHandler(log_file, encoding="utf-8")
        to_file.setLevel(resolved)
        to_file.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=FILE_DATE_FORMAT))
        package_logger.addHandler(to_file)

    if quiet_third_party:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    package_logger.propagate = False
    package_logger.debug(f"Logging ready at {logging.getLevelName(resolved)} (file: {log_file})")
    return package_logger


# =============================================================================
# Phase Timing
# =============================================================================


class LogContext:
    """Time a block and log its start, completion or failure.

    Works with plain loggers and with adapters such as the per-task
    ``[task_id]`` adapter, so phase timings carry the task prefix. Exceptions
    are logged at ERROR and re-raised untouched.

    Attributes:
        message: Label for the block, e.g. ``"Phase 2: Deep Analysis"``.
        level: Level for the start and completion lines.
        logger: Destination logger or adapter.
        elapsed: Seconds spent inside the block, set on exit.
    """

    def __init__(
        self,
        message: str,
        level: int = logging.INFO,
        logger: AnyLogger | None = None,
    ) -> None:
        self.message = message
        self.level = level
        self.logger = logger or logging.getLogger(PACKAGE_NAME)
        self.elapsed = 0.0
        self._started = 0.0

    def __enter__(self) -> "LogContext":
        self.logger.log(self.level, f"{self.message}...")
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type: Any, exc_val: BaseException | None, exc_tb: Any) -> bool:
        self.elapsed = time.perf_counter() - self._started
        if exc_val is None:
            self.logger.log(self.level, f"{self.message} completed in {self.elapsed:.2f}s")
        else:
            self.logger.error(f"{self.message} failed after {self.elapsed:.2f}s: {exc_val}")
        return False
