"""Availability sources for the Apple Store watch engine."""

from .base import InventorySource
from .apple import AppleInventorySource

__all__ = [
    "InventorySource",
    "AppleInventorySource",
]
