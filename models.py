"""Data models for the Apple Store watch engine."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

# (area_code, store_code, product_code)
ItemKey = Tuple[str, str, str]


@dataclass(frozen=True)
class Store:
    """A retail store inside an area."""

    code: str
    title: str
    area_code: str


@dataclass(frozen=True)
class Product:
    """A purchasable model (part number) sold in an area."""

    code: str
    title: str
    area_code: str


@dataclass(frozen=True)
class Area:
    """An Apple retail area with its stores and products."""

    code: str
    title: str
    base_url: str
    stores: Tuple[Store, ...] = ()
    products: Tuple[Product, ...] = ()

    def find_store(self, title: str) -> Optional[Store]:
        for store in self.stores:
            if store.title == title:
                return store
        return None

    def find_product(self, title: str) -> Optional[Product]:
        for product in self.products:
            if product.title == title:
                return product
        return None

    @property
    def fulfillment_url(self) -> str:
        """Pickup availability endpoint for this area."""
        return f"{self.base_url}/shop/fulfillment-messages"

    @property
    def bag_url(self) -> str:
        """Shopping bag page used as the alert deep link."""
        return f"{self.base_url}/shop/bag"


@dataclass
class WatchItem:
    """One monitored (area, store, product) combination."""

    area_code: str
    store_code: str
    product_code: str
    notify_url: str = ""

    # Display titles, informational only
    store_title: str = ""
    product_title: str = ""

    def __post_init__(self):
        self.notify_url = (self.notify_url or "").strip()

    @property
    def key(self) -> ItemKey:
        """Identity of the item; two items with the same key are the same watch."""
        return (self.area_code, self.store_code, self.product_code)

    @property
    def label(self) -> str:
        store = self.store_title or self.store_code
        product = self.product_title or self.product_code
        return f"{product} @ {store}"

    def to_dict(self) -> Dict[str, str]:
        return {
            "area_code": self.area_code,
            "store_code": self.store_code,
            "product_code": self.product_code,
            "notify_url": self.notify_url,
            "store_title": self.store_title,
            "product_title": self.product_title,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WatchItem":
        """
        Build an item from its serialized form.

        Raises:
            KeyError: if one of the identity fields is missing
        """
        return cls(
            area_code=str(data["area_code"]),
            store_code=str(data["store_code"]),
            product_code=str(data["product_code"]),
            notify_url=str(data.get("notify_url") or ""),
            store_title=str(data.get("store_title") or ""),
            product_title=str(data.get("product_title") or ""),
        )


@dataclass
class AvailabilityResult:
    """Outcome of a single successful availability query."""

    key: ItemKey
    available: bool
    deep_link: str = ""
    store_title: Optional[str] = None
    product_title: Optional[str] = None
    checked_at: datetime = field(default_factory=datetime.now)


@dataclass
class TickReport:
    """Statistics for one execution of the polling loop body."""

    tick_number: int
    started_at: datetime = field(default_factory=datetime.now)
    ended_at: Optional[datetime] = None

    items_checked: int = 0
    items_available: int = 0
    items_skipped: int = 0
    alerts_fired: int = 0
    errors_encountered: int = 0
    timed_out: int = 0

    def record_result(self, available: bool):
        self.items_checked += 1
        if available:
            self.items_available += 1

    def record_error(self, timed_out: bool = False):
        self.items_checked += 1
        self.errors_encountered += 1
        if timed_out:
            self.timed_out += 1

    def finalize(self):
        """Mark tick as complete."""
        self.ended_at = datetime.now()

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.ended_at:
            return (self.ended_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tick_number": self.tick_number,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "duration_seconds": self.duration_seconds,
            "items_checked": self.items_checked,
            "items_available": self.items_available,
            "items_skipped": self.items_skipped,
            "alerts_fired": self.alerts_fired,
            "errors_encountered": self.errors_encountered,
            "timed_out": self.timed_out,
        }


@dataclass
class UserSettings:
    """Snapshot of the user's selections and watch list."""

    selected_area: str = ""
    selected_store: str = ""
    selected_product: str = ""
    notify_url: str = ""
    listen_items: List[WatchItem] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "selected_area": self.selected_area,
            "selected_store": self.selected_store,
            "selected_product": self.selected_product,
            "notify_url": self.notify_url,
            "listen_items": [item.to_dict() for item in self.listen_items],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserSettings":
        """Build settings from a parsed document, skipping malformed items."""
        items = []
        for raw in data.get("listen_items") or []:
            if not isinstance(raw, dict):
                continue
            try:
                items.append(WatchItem.from_dict(raw))
            except KeyError:
                continue

        return cls(
            selected_area=str(data.get("selected_area") or ""),
            selected_store=str(data.get("selected_store") or ""),
            selected_product=str(data.get("selected_product") or ""),
            notify_url=str(data.get("notify_url") or ""),
            listen_items=items,
        )
