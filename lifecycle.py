"""Running/Paused lifecycle of the watch engine."""

import logging
import threading
from enum import Enum
from typing import Callable, List, Optional


class RunState(Enum):
    RUNNING = "Running"
    PAUSED = "Paused"

    def __str__(self) -> str:
        return self.value


StateListener = Callable[[RunState], None]


class LifecycleController:
    """
    Observable holder of the engine's run state.

    The poll loop reads ``state`` at the start of every tick; writes are
    visible to the very next read. Listeners are notified after the change is
    committed, outside the lock, in subscription order.
    """

    def __init__(self, initial: RunState = RunState.PAUSED, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self._state = initial
        self._lock = threading.Lock()
        self._listeners: List[StateListener] = []

    @property
    def state(self) -> RunState:
        with self._lock:
            return self._state

    @property
    def is_running(self) -> bool:
        return self.state is RunState.RUNNING

    def set_state(self, state: RunState) -> bool:
        """
        Change the run state.

        Args:
            state: New state

        Returns:
            True if the state changed, False if it already had that value
        """
        with self._lock:
            if self._state is state:
                return False
            self._state = state
            listeners = list(self._listeners)

        self.logger.info(f"Watch status: {state}")
        for listener in listeners:
            try:
                listener(state)
            except Exception as e:
                self.logger.error(f"State listener failed: {e}", exc_info=True)
        return True

    def start(self) -> bool:
        return self.set_state(RunState.RUNNING)

    def pause(self) -> bool:
        return self.set_state(RunState.PAUSED)

    def toggle(self) -> RunState:
        with self._lock:
            target = RunState.PAUSED if self._state is RunState.RUNNING else RunState.RUNNING
        self.set_state(target)
        return target

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """
        Register a listener for state changes.

        Returns:
            A callable that removes the listener again
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe
