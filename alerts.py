"""Alert deduplication and dispatch."""

import asyncio
import logging
import threading
import webbrowser
from dataclasses import dataclass
from typing import Callable, Optional, Set

from audio import SoundPlayer
from config import APP_CONFIG, AppConfig
from errors import AudioPlaybackError, NotificationDeliveryError
from models import ItemKey, WatchItem
from notifications import NotificationManager


class AlertMemory:
    """
    Keys already alerted in their current availability episode.

    Every ``clear()`` starts a new generation. Callers that captured the
    generation before a long operation pass it back so results belonging to a
    cleared watch list are ignored.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._keys: Set[ItemKey] = set()
        self._generation = 0

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def mark_alerted(self, key: ItemKey, generation: Optional[int] = None) -> bool:
        """
        Record that ``key`` is available.

        Returns:
            True if this starts a new episode and an alert should fire
        """
        with self._lock:
            if generation is not None and generation != self._generation:
                return False
            if key in self._keys:
                return False
            self._keys.add(key)
            return True

    def discard(self, key: ItemKey, generation: Optional[int] = None):
        """End the episode for ``key`` after it was seen unavailable."""
        with self._lock:
            if generation is not None and generation != self._generation:
                return
            self._keys.discard(key)

    def clear(self):
        with self._lock:
            self._keys.clear()
            self._generation += 1

    def snapshot(self) -> Set[ItemKey]:
        with self._lock:
            return set(self._keys)

    def __contains__(self, key: ItemKey) -> bool:
        with self._lock:
            return key in self._keys

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)


@dataclass
class AlertOutcome:
    """What happened when an alert fired."""

    sound_played: bool = False
    push_attempted: bool = False
    push_delivered: bool = False
    browser_opened: bool = False


class AlertDispatcher:
    """
    Plays the alert sound and sends the push for an available item.

    Without a notification manager pushes are skipped, which is enough for
    previewing the sound before the engine has a network session.
    """

    def __init__(
        self,
        notification_manager: Optional[NotificationManager],
        sound_player: SoundPlayer,
        logger: logging.Logger,
        config: AppConfig = APP_CONFIG,
        browser_opener: Callable[[str], bool] = webbrowser.open
    ):
        self.notification_manager = notification_manager
        self.sound_player = sound_player
        self.logger = logger
        self.config = config
        self.browser_opener = browser_opener

    async def fire(self, item: WatchItem, deep_link: str) -> AlertOutcome:
        """
        Alert the user that ``item`` is available.

        Sound, push and browser run concurrently and each absorbs its own
        failure, so none of them can block or cancel the others.

        Args:
            item: The available watch item
            deep_link: Retailer page to open from the notification

        Returns:
            AlertOutcome describing which side effects succeeded
        """
        messages = self.config.messages
        title = messages["alert_title"]
        body = messages["alert_body"].format(
            product=item.product_title or item.product_code,
            store=item.store_title or item.store_code,
        )

        self.logger.warning(f"AVAILABLE: {item.label} -> {deep_link}")

        outcome = AlertOutcome(push_attempted=bool(item.notify_url))
        sound_ok, push_ok, browser_ok = await asyncio.gather(
            self._play_sound(),
            self._send_push(item.notify_url, title, body, deep_link),
            self._open_browser(deep_link),
        )
        outcome.sound_played = sound_ok
        outcome.push_delivered = push_ok
        outcome.browser_opened = browser_ok
        return outcome

    def preview_sound(self) -> bool:
        """Play the alert sound once on the calling thread, for the user to hear it."""
        try:
            self.sound_player.play()
            return True
        except AudioPlaybackError as e:
            self.logger.warning(f"Could not play alert sound: {e}")
            return False

    async def test_notification(self, notify_url: str) -> bool:
        """
        Send the test push to the endpoint the user has entered.

        Falls back to DEFAULT_NOTIFY_URL when the entered endpoint is empty.
        """
        endpoint = (notify_url or "").strip() or self.config.default_notify_url
        if not endpoint:
            self.logger.warning("No notification endpoint entered, nothing to test")
            return False

        messages = self.config.messages
        return await self._send_push(
            endpoint,
            messages["test_title"],
            messages["test_body"],
            messages["test_url"],
        )

    async def _play_sound(self) -> bool:
        if not self.config.enable_sound:
            return False

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self.sound_player.play)
            return True
        except AudioPlaybackError as e:
            self.logger.warning(f"Could not play alert sound: {e}")
        except Exception as e:
            self.logger.exception(f"Unexpected error playing alert sound: {e}")
        return False

    async def _send_push(self, endpoint: str, title: str, body: str, url: str) -> bool:
        if not endpoint or self.notification_manager is None:
            return False

        try:
            return await self.notification_manager.send_push(endpoint, title, body, url)
        except NotificationDeliveryError as e:
            self.logger.warning(f"Push notification failed: {e}")
        except Exception as e:
            self.logger.exception(f"Unexpected error sending push notification: {e}")
        return False

    async def _open_browser(self, url: str) -> bool:
        if not self.config.open_browser_on_alert or not url:
            return False

        loop = asyncio.get_running_loop()
        try:
            return bool(await loop.run_in_executor(None, self.browser_opener, url))
        except Exception as e:
            self.logger.warning(f"Could not open browser for {url}: {e}")
            return False
