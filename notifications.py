"""Bark push notification delivery."""

import asyncio
import logging
from typing import Any, Dict

import aiohttp

from config import APP_CONFIG, AppConfig
from errors import NotificationDeliveryError
from logging_config import PerformanceLogger


class NotificationManager:
    """Sends push notifications to Bark-compatible endpoints."""

    def __init__(self, session: aiohttp.ClientSession, logger: logging.Logger, config: AppConfig = APP_CONFIG):
        """
        Initialize notification manager.

        Args:
            session: aiohttp session for requests
            logger: Logger instance
            config: Application configuration
        """
        self.session = session
        self.logger = logger
        self.config = config

    async def send_push(self, endpoint: str, title: str, body: str, url: str) -> bool:
        """
        Send a single push notification.

        Args:
            endpoint: Bark endpoint URL, e.g. https://api.day.app/<key>
            title: Notification title
            body: Notification body
            url: Link opened when the notification is tapped

        Returns:
            True if delivered, False if skipped (empty endpoint or notifications disabled)

        Raises:
            NotificationDeliveryError: if delivery failed
        """
        endpoint = (endpoint or "").strip()
        if not endpoint:
            self.logger.debug("No notification endpoint set, skipping push")
            return False

        if not self.config.enable_notifications:
            self.logger.info("Notifications are disabled in configuration")
            return False

        if not endpoint.startswith(("http://", "https://")):
            raise NotificationDeliveryError(f"Invalid notification endpoint: {endpoint}")

        payload = {
            "title": title,
            "body": body,
            "url": url,
            "group": self.config.notification_group,
        }

        with PerformanceLogger(self.logger, f"sending push '{title}'"):
            await self._post(endpoint, payload)

        self.logger.info(f"Push notification sent: {title}")
        return True

    async def _post(self, endpoint: str, payload: Dict[str, Any]):
        timeout = aiohttp.ClientTimeout(total=self.config.notification_timeout)

        try:
            async with self.session.post(endpoint, json=payload, timeout=timeout) as response:
                if response.status == 429:
                    retry_after = self._retry_after(response)
                    self.logger.warning(
                        f"Push endpoint rate limited. Waiting {retry_after}s before retry"
                    )
                    await asyncio.sleep(retry_after)

                    # Retry once
                    async with self.session.post(endpoint, json=payload, timeout=timeout) as retry_response:
                        await self._check_response(retry_response)
                        return

                await self._check_response(response)

        except asyncio.TimeoutError as e:
            raise NotificationDeliveryError(f"Timeout sending push to {endpoint}") from e
        except aiohttp.ClientError as e:
            raise NotificationDeliveryError(f"Network error sending push to {endpoint}: {e}") from e

    @staticmethod
    def _retry_after(response) -> float:
        try:
            return float(response.headers.get('Retry-After', 5))
        except (TypeError, ValueError):
            return 5.0

    @staticmethod
    async def _check_response(response):
        if not 200 <= response.status < 300:
            error_text = await response.text()
            raise NotificationDeliveryError(
                f"Push endpoint returned status {response.status}: {error_text[:200]}"
            )

        # Bark reports application errors in the body with a 2xx status
        try:
            data = await response.json(content_type=None)
        except (ValueError, aiohttp.ContentTypeError):
            return

        if isinstance(data, dict) and data.get("code") not in (None, 200):
            raise NotificationDeliveryError(
                f"Push endpoint rejected message: {data.get('message', data.get('code'))}"
            )
