"""Apple Store pickup availability source."""

import asyncio
from typing import Any, Optional

import aiohttp

from errors import TransientQueryError
from models import Area, AvailabilityResult, WatchItem
from inventory.base import InventorySource

AVAILABLE = "available"

# Apple answers 541 when a client polls too aggressively
THROTTLE_STATUSES = (403, 429, 503, 541)


class AppleInventorySource(InventorySource):
    """Queries the storefront's fulfillment-messages endpoint."""

    async def _fetch_availability(self, item: WatchItem, area: Area) -> AvailabilityResult:
        params = {
            "pl": "true",
            "mts.0": "regular",
            "parts.0": item.product_code,
            "store": item.store_code,
        }
        headers = {
            "User-Agent": self.config.user_agent,
            "Accept": "application/json",
            "Referer": area.bag_url,
        }
        timeout = aiohttp.ClientTimeout(total=self.config.query_timeout)

        try:
            async with self.session.get(
                area.fulfillment_url,
                params=params,
                headers=headers,
                timeout=timeout
            ) as response:
                if response.status in THROTTLE_STATUSES:
                    raise TransientQueryError(
                        f"Throttled by storefront (status {response.status})",
                        status=response.status
                    )
                if response.status != 200:
                    raise TransientQueryError(
                        f"Unexpected status {response.status}",
                        status=response.status
                    )
                data = await response.json(content_type=None)

        except asyncio.TimeoutError as e:
            raise TransientQueryError(f"Timeout checking {item.label}") from e
        except aiohttp.ClientError as e:
            raise TransientQueryError(f"Network error checking {item.label}: {e}") from e
        except ValueError as e:
            raise TransientQueryError(f"Invalid JSON for {item.label}: {e}") from e

        return self._parse_availability(item, area, data)

    def _parse_availability(self, item: WatchItem, area: Area, data: Any) -> AvailabilityResult:
        """
        Interpret a fulfillment-messages document.

        A store missing from the answer means the part is not offered there
        and is reported as unavailable. A document without the pickup section
        is treated as a failed query.
        """
        pickup = self._dig(data, "body", "content", "pickupMessage")
        if not isinstance(pickup, dict) or not isinstance(pickup.get("stores"), list):
            raise TransientQueryError(f"Unexpected response shape for {item.label}")

        store_data = None
        for candidate in pickup["stores"]:
            if isinstance(candidate, dict) and candidate.get("storeNumber") == item.store_code:
                store_data = candidate
                break

        if store_data is None:
            self.logger.debug(f"Store {item.store_code} not in response for {item.product_code}")
            return AvailabilityResult(key=item.key, available=False, deep_link=area.bag_url)

        part = self._dig(store_data, "partsAvailability", item.product_code)
        if not isinstance(part, dict):
            part = {}
        product_title = self._dig(part, "messageTypes", "regular", "storePickupProductTitle")

        return AvailabilityResult(
            key=item.key,
            available=part.get("pickupDisplay") == AVAILABLE,
            deep_link=area.bag_url,
            store_title=store_data.get("storeName"),
            product_title=product_title,
        )

    @staticmethod
    def _dig(data: Any, *path: str) -> Optional[Any]:
        for key in path:
            if not isinstance(data, dict):
                return None
            data = data.get(key)
        return data
