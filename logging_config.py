"""Logging configuration for the Apple Store watch engine."""

import logging
import sys
import threading
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import List, Optional

LOGGER_NAME = "apple_store_watch"


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    buffer_handler: Optional[logging.Handler] = None
) -> logging.Logger:
    """
    Set up logging configuration for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to log file. If None, logs only to console.
        buffer_handler: Optional extra handler, e.g. a RecentLogHandler for a UI log pane

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, log_level.upper()))

    # Remove existing handlers
    logger.handlers.clear()

    console_formatter = logging.Formatter(
        '%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    file_formatter = logging.Formatter(
        '%(asctime)s | %(levelname)-8s | %(name)s | %(funcName)s:%(lineno)d | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG)
    console_handler.setFormatter(console_formatter)
    logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(file_formatter)
        logger.addHandler(file_handler)

    if buffer_handler is not None:
        if buffer_handler.formatter is None:
            buffer_handler.setFormatter(logging.Formatter(
                '%(asctime)s %(levelname)s %(message)s',
                datefmt='%H:%M:%S'
            ))
        logger.addHandler(buffer_handler)

    # Reduce noise from third-party libraries
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    return logger


class RecentLogHandler(logging.Handler):
    """Keeps the most recent formatted log lines for display in a log pane."""

    def __init__(self, max_lines: int = 1000, level: int = logging.INFO):
        super().__init__(level)
        self._lines = deque(maxlen=max_lines)
        self._lines_lock = threading.Lock()

    def emit(self, record: logging.LogRecord):
        try:
            line = self.format(record)
        except Exception:
            self.handleError(record)
            return
        with self._lines_lock:
            self._lines.append(line)

    def lines(self) -> List[str]:
        """Copy of the buffered lines, oldest first."""
        with self._lines_lock:
            return list(self._lines)

    def clear(self):
        with self._lines_lock:
            self._lines.clear()


class ContextLogger:
    """Logger wrapper that adds context to log messages."""

    def __init__(self, logger: logging.Logger, context: dict):
        self.logger = logger
        self.context = context

    def _format_message(self, msg: str) -> str:
        """Add context to message."""
        context_str = " | ".join(f"{k}={v}" for k, v in self.context.items())
        return f"[{context_str}] {msg}"

    def debug(self, msg: str, *args, **kwargs):
        self.logger.debug(self._format_message(msg), *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self.logger.info(self._format_message(msg), *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self.logger.warning(self._format_message(msg), *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self.logger.error(self._format_message(msg), *args, **kwargs)

    def exception(self, msg: str, *args, **kwargs):
        self.logger.exception(self._format_message(msg), *args, **kwargs)


class PerformanceLogger:
    """Context manager for logging operation performance."""

    def __init__(self, logger: logging.Logger, operation: str, level: int = logging.DEBUG):
        self.logger = logger
        self.operation = operation
        self.level = level
        self.start_time = None

    def __enter__(self):
        self.start_time = datetime.now()
        self.logger.log(self.level, f"Starting {self.operation}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = (datetime.now() - self.start_time).total_seconds()

        if exc_type:
            self.logger.error(
                f"{self.operation} failed after {duration:.2f}s: {exc_type.__name__}: {exc_val}"
            )
        else:
            self.logger.log(
                self.level,
                f"Completed {self.operation} in {duration:.2f}s"
            )

        return False  # Don't suppress exceptions
