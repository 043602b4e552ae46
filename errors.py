"""Exception types for the Apple Store watch engine."""

from typing import Optional


class WatchError(Exception):
    """Base class for all watch engine errors."""


class ValidationError(WatchError):
    """A user selection is missing or cannot be resolved."""


class NotFoundError(WatchError):
    """A catalog title or code is not recognized."""


class TransientQueryError(WatchError):
    """An availability query failed in a way the next tick may not."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class NotificationDeliveryError(WatchError):
    """A push notification could not be delivered."""


class AudioPlaybackError(WatchError):
    """The audible alert could not be played."""
