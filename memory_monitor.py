"""
Process memory reporting for the long-running watch loop.

The engine polls every few seconds for days at a time, so the poller logs
resident memory every N ticks to make slow growth visible in the logs.
"""

import logging

import psutil


class MemoryMonitor:
    """Reads and logs memory usage of the current process."""

    def __init__(self):
        self.process = psutil.Process()
        self.baseline_mb = self.get_current_usage_mb()

    def get_current_usage_mb(self) -> float:
        """
        Get the current memory usage of the process in megabytes.

        Returns:
            float: Resident set size in MB
        """
        return self.process.memory_info().rss / (1024 * 1024)

    def log_memory_stats(self, logger: logging.Logger, context: str = "") -> None:
        """
        Log current memory statistics with optional context.

        Args:
            logger: Logger instance to use for logging
            context: Optional context string to include in the log message
        """
        try:
            memory_info = self.process.memory_info()
            rss_mb = memory_info.rss / (1024 * 1024)
            vms_mb = memory_info.vms / (1024 * 1024)

            context_str = f" [{context}]" if context else ""
            logger.info(
                f"Memory usage{context_str}: "
                f"RSS={rss_mb:.2f}MB, VMS={vms_mb:.2f}MB, "
                f"growth since start={rss_mb - self.baseline_mb:+.2f}MB"
            )
        except psutil.Error as e:
            logger.error(f"Failed to log memory stats: {e}")
