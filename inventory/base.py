"""Base class for availability sources."""

import logging
from abc import ABC, abstractmethod

import aiohttp

from catalog import Catalog
from config import APP_CONFIG, AppConfig
from errors import NotFoundError, TransientQueryError
from logging_config import ContextLogger
from models import Area, AvailabilityResult, WatchItem


class InventorySource(ABC):
    """Abstract base class for in-store pickup availability sources."""

    def __init__(
        self,
        catalog: Catalog,
        session: aiohttp.ClientSession,
        logger: logging.Logger,
        config: AppConfig = APP_CONFIG
    ):
        """
        Initialize source.

        Args:
            catalog: Catalog used to resolve the item's area
            session: aiohttp session for requests
            logger: Logger instance
            config: Application configuration
        """
        self.catalog = catalog
        self.session = session
        self.logger = logger
        self.config = config

    async def check(self, item: WatchItem) -> AvailabilityResult:
        """
        Query availability of one watch item.

        Returns:
            AvailabilityResult for the item

        Raises:
            TransientQueryError: if the query failed; the caller retries later
        """
        try:
            area = self.catalog.get_area_by_code(item.area_code)
        except NotFoundError as e:
            raise TransientQueryError(str(e)) from e

        item_logger = ContextLogger(self.logger, {
            "area": item.area_code,
            "store": item.store_code,
            "product": item.product_code,
        })

        item_logger.debug(f"Checking {item.label}")
        result = await self._fetch_availability(item, area)
        item_logger.debug("available" if result.available else "unavailable")
        return result

    @abstractmethod
    async def _fetch_availability(self, item: WatchItem, area: Area) -> AvailabilityResult:
        """
        Fetch and interpret the retailer's answer for one item.

        Args:
            item: Item to check
            area: The item's resolved area

        Returns:
            AvailabilityResult for the item
        """
        pass
