"""
Logging configuration for music-catalog.

This module sets up the logging system with up to three outputs:
    - Console: Colored, tqdm-compatible messages (INFO and above by default)
    - catalog_full_{timestamp}.log: Complete log of all events (DEBUG and above)
    - catalog_errors_{timestamp}.log: Only ERROR and CRITICAL level messages

File outputs are only created when a log directory is given; library
users embedding the package can skip setup_logging() entirely and attach
their own handlers to the 'music_catalog' logger hierarchy.

Usage:
    from music_catalog.core.logger import setup_logging, get_logger

    setup_logging(log_dir=Path("logs"), level="DEBUG")  # Call once at startup
    logger = get_logger(__name__)  # Get logger for each module

    logger.info("Resolving playlist")
    logger.warning("Quota exceeded, retrying", extra={'provider': 'deezer'})
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import TextIO

import colorama
from colorama import Fore, Style
from tqdm import tqdm


LOG_FULL_PREFIX = "catalog_full"
LOG_ERRORS_PREFIX = "catalog_errors"

# Log format for file output (detailed with timestamp)
FILE_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Log format for console output (compact, tqdm-friendly)
CONSOLE_LOG_FORMAT = "%(levelname)s: %(message)s"


class ColoredConsoleFormatter(logging.Formatter):
    """
    Custom formatter that adds colors to console output.

    Colors:
        - DEBUG: Cyan
        - INFO: Green
        - WARNING: Yellow
        - ERROR: Red
        - CRITICAL: Bright Red
    """

    LEVEL_COLORS = {
        logging.DEBUG: Fore.CYAN,
        logging.INFO: Fore.GREEN,
        logging.WARNING: Fore.YELLOW,
        logging.ERROR: Fore.RED,
        logging.CRITICAL: Style.BRIGHT + Fore.RED,
    }

    def format(self, record: logging.LogRecord) -> str:
        """
        Format the log record with colors.

        Args:
            record: The log record to format.

        Returns:
            Formatted string with ANSI color codes.
        """
        color = self.LEVEL_COLORS.get(record.levelno, Fore.WHITE)
        colored_levelname = f"{color}{record.levelname}{Style.RESET_ALL}"
        message = f"{colored_levelname}: {record.getMessage()}"
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        return message


class TqdmLoggingHandler(logging.Handler):
    """
    Logging handler that writes to console without breaking tqdm progress bars.

    Uses tqdm.write() so messages appear above any active progress bar
    (the CLI shows one while resolving several inputs).

    Attributes:
        stream: The output stream (defaults to sys.stderr).
    """

    def __init__(self, stream: TextIO = sys.stderr) -> None:
        super().__init__()
        self.stream = stream

    def emit(self, record: logging.LogRecord) -> None:
        """
        Emit a log record using tqdm.write().

        Args:
            record: The log record to emit.
        """
        try:
            msg = self.format(record)
            tqdm.write(msg, file=self.stream)
        except Exception:
            self.handleError(record)


class ErrorOnlyFilter(logging.Filter):
    """
    Filter that only passes ERROR and CRITICAL records.

    Used for the error-only log file.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        """
        Decide whether the record should be emitted.

        Args:
            record: The log record to check.

        Returns:
            True if record level is ERROR or higher.
        """
        return record.levelno >= logging.ERROR


def setup_logging(log_dir: Path | None = None, level: str = "INFO") -> None:
    """
    Configure the logging system for the application.

    This function should be called ONCE at application startup (the CLI
    does it before building the dispatcher).

    Args:
        log_dir: Optional directory for log files. Created if missing.
                 When None, only the console handler is installed.
        level: Console log level name ("DEBUG", "INFO", "WARNING", ...).

    Behavior:
        1. Initialize colorama (ANSI support on Windows consoles)
        2. Configure root logger level to DEBUG and drop existing handlers
        3. Add console handler (TqdmLoggingHandler) at the requested level
        4. If log_dir is given:
           - log_dir/catalog_full_{timestamp}.log at DEBUG
           - log_dir/catalog_errors_{timestamp}.log filtered to ERROR+
        5. Quiet noisy third-party loggers (aiohttp, urllib3, spotipy)

    Raises:
        ValueError: If level is not a valid logging level name.
    """
    console_level = logging.getLevelName(level.upper())
    if not isinstance(console_level, int):
        raise ValueError(f"Unknown log level: {level}")

    colorama.just_fix_windows_console()

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()

    console_handler = TqdmLoggingHandler()
    console_handler.setLevel(console_level)
    console_handler.setFormatter(ColoredConsoleFormatter(CONSOLE_LOG_FORMAT))
    root_logger.addHandler(console_handler)

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")

        full_handler = logging.FileHandler(
            log_dir / f"{LOG_FULL_PREFIX}_{timestamp}.log", mode="w", encoding="utf-8"
        )
        full_handler.setLevel(logging.DEBUG)
        full_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT, FILE_DATE_FORMAT))
        root_logger.addHandler(full_handler)

        error_handler = logging.FileHandler(
            log_dir / f"{LOG_ERRORS_PREFIX}_{timestamp}.log", mode="w", encoding="utf-8"
        )
        error_handler.setLevel(logging.DEBUG)  # Filter handles the level restriction
        error_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT, FILE_DATE_FORMAT))
        error_handler.addFilter(ErrorOnlyFilter())
        root_logger.addHandler(error_handler)

    for noisy in ("aiohttp", "urllib3", "spotipy"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.

    Thin wrapper around logging.getLogger() so every module names its
    logger the same way ('music_catalog.providers.deezer', ...).

    Args:
        name: The logger name, typically __name__ of the calling module.

    Returns:
        logging.Logger: A logger instance configured by setup_logging().
    """
    return logging.getLogger(name)


def shutdown_logging() -> None:
    """
    Flush and close all handlers attached to the root logger.

    Safe to call multiple times.
    """
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        try:
            handler.flush()
            handler.close()
        finally:
            root_logger.removeHandler(handler)
