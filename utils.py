"""Utility functions for the Apple Store watch engine."""

import threading
import time
from typing import Callable, Dict, Hashable, Iterable, Tuple

from config import APP_CONFIG


class BackoffTracker:
    """
    Per-key exponential backoff.

    After the n-th consecutive failure a key is held back for
    ``base * factor ** (n - 1)`` seconds, capped at ``max_delay``. A success
    resets the key.
    """

    def __init__(
        self,
        base: float = APP_CONFIG.backoff_base_seconds,
        factor: float = APP_CONFIG.backoff_factor,
        max_delay: float = APP_CONFIG.backoff_max_seconds,
        clock: Callable[[], float] = time.monotonic
    ):
        self.base = base
        self.factor = factor
        self.max_delay = max_delay
        self.clock = clock
        self._lock = threading.Lock()
        # key -> (consecutive failures, retry not before)
        self._state: Dict[Hashable, Tuple[int, float]] = {}

    def delay_for(self, failures: int) -> float:
        if failures <= 0 or self.base <= 0:
            return 0.0
        return min(self.max_delay, self.base * (self.factor ** (failures - 1)))

    def record_failure(self, key: Hashable) -> float:
        """
        Register a failure for ``key``.

        Returns:
            Seconds until the key may be tried again
        """
        with self._lock:
            failures = self._state.get(key, (0, 0.0))[0] + 1
            delay = self.delay_for(failures)
            self._state[key] = (failures, self.clock() + delay)
            return delay

    def record_success(self, key: Hashable):
        with self._lock:
            self._state.pop(key, None)

    def should_skip(self, key: Hashable) -> bool:
        with self._lock:
            entry = self._state.get(key)
        return entry is not None and self.clock() < entry[1]

    def failures(self, key: Hashable) -> int:
        with self._lock:
            return self._state.get(key, (0, 0.0))[0]

    def forget(self, key: Hashable):
        with self._lock:
            self._state.pop(key, None)

    def retain(self, keys: Iterable[Hashable]):
        """Drop the state of every key not in ``keys``."""
        keep = set(keys)
        with self._lock:
            for key in [k for k in self._state if k not in keep]:
                del self._state[key]

    def clear(self):
        with self._lock:
            self._state.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._state)


def format_duration(seconds: float) -> str:
    """Short human readable duration, e.g. '45s' or '2m05s'."""
    seconds = int(round(seconds))
    if seconds < 60:
        return f"{seconds}s"
    minutes, seconds = divmod(seconds, 60)
    return f"{minutes}m{seconds:02d}s"
