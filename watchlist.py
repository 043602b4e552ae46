"""The ordered set of monitored (area, store, product) combinations."""

import logging
import threading
from collections import OrderedDict
from typing import Dict, Iterable, List, Optional

from alerts import AlertMemory
from catalog import Catalog
from errors import NotFoundError, ValidationError
from models import ItemKey, WatchItem


class WatchList:
    """
    Watch items keyed by (area, store, product), in insertion order.

    Every read returns a copy, so a poll tick iterating its snapshot is never
    affected by a concurrent add or clean.
    """

    def __init__(self, catalog: Catalog, alert_memory: AlertMemory, logger: Optional[logging.Logger] = None):
        self.catalog = catalog
        self.alert_memory = alert_memory
        self.logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._items: "OrderedDict[ItemKey, WatchItem]" = OrderedDict()

    def add(self, area_title: str, store_title: str, product_title: str, notify_url: str = "") -> WatchItem:
        """
        Add a watch item, or update the endpoint of an existing one.

        Args:
            area_title: Area display title
            store_title: Store display title
            product_title: Product display title
            notify_url: Push endpoint for this item, may be empty

        Returns:
            The stored item

        Raises:
            ValidationError: if the store or product is missing or cannot be resolved
            NotFoundError: if the area is unknown
        """
        if not store_title or not product_title:
            raise ValidationError("Please select a store and a product")

        area = self.catalog.resolve_area(area_title)
        try:
            store = self.catalog.resolve_store(area, store_title)
            product = self.catalog.resolve_product(area, product_title)
        except NotFoundError as e:
            raise ValidationError(str(e)) from e

        item = WatchItem(
            area_code=area.code,
            store_code=store.code,
            product_code=product.code,
            notify_url=notify_url,
            store_title=store.title,
            product_title=product.title,
        )

        with self._lock:
            updated = item.key in self._items
            # Assigning to an existing key keeps its position
            self._items[item.key] = item

        if updated:
            self.logger.info(f"Updated watch item: {item.label}")
        else:
            self.logger.info(f"Added watch item: {item.label}")
        return item

    def remove(self, key: ItemKey) -> bool:
        with self._lock:
            removed = self._items.pop(key, None)
            if removed is not None:
                # Under the list lock, so a concurrent claim_alert cannot re-add the key
                self.alert_memory.discard(key)
        if removed is None:
            return False
        self.logger.info(f"Removed watch item: {removed.label}")
        return True

    def claim_alert(self, key: ItemKey, generation: Optional[int] = None) -> bool:
        """
        Start an availability episode for ``key`` if it is still watched.

        Returns:
            True if an alert should fire; False if the item was removed or
            cleaned meanwhile, or it is already alerted in this episode
        """
        with self._lock:
            if key not in self._items:
                return False
            return self.alert_memory.mark_alerted(key, generation)

    def clean(self):
        """Remove every item and forget all alerts."""
        with self._lock:
            count = len(self._items)
            self._items.clear()
        self.alert_memory.clear()
        self.logger.info(f"Watch list cleaned ({count} items removed)")

    def set_listen_items(self, items: Iterable[WatchItem]):
        """Replace the whole list, e.g. when restoring settings. Later duplicates win."""
        replacement: Dict[ItemKey, WatchItem] = OrderedDict()
        for item in items:
            replacement[item.key] = WatchItem(**item.to_dict())

        with self._lock:
            self._items = replacement
        self.alert_memory.clear()
        self.logger.info(f"Watch list restored with {len(replacement)} items")

    def get_listen_items(self) -> List[WatchItem]:
        """Copies of the items, in insertion order."""
        with self._lock:
            return [WatchItem(**item.to_dict()) for item in self._items.values()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __contains__(self, key: ItemKey) -> bool:
        with self._lock:
            return key in self._items
