"""Area, store and product reference data."""

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional

from config import APP_CONFIG, AREA_CONFIGS, AppConfig, AreaConfig
from errors import NotFoundError
from models import Area, Product, Store


def _build_area(area_config: AreaConfig) -> Area:
    stores = tuple(
        Store(code=code, title=title, area_code=area_config.code)
        for code, title in area_config.stores.items()
    )
    products = tuple(
        Product(code=code, title=title, area_code=area_config.code)
        for code, title in area_config.products.items()
    )
    return Area(
        code=area_config.code,
        title=area_config.title,
        base_url=area_config.base_url.rstrip("/"),
        stores=stores,
        products=products,
    )


class Catalog:
    """
    Read-only lookup of areas, stores and products.

    The backing data never changes after construction, so every method is
    safe to call from any thread.
    """

    def __init__(self, areas: List[Area], default_area_code: Optional[str] = None):
        if not areas:
            raise ValueError("Catalog needs at least one area")

        self._areas: Dict[str, Area] = {area.code: area for area in areas}
        self._by_title: Dict[str, Area] = {area.title: area for area in areas}

        if default_area_code not in self._areas:
            default_area_code = areas[0].code
        self._default_code = default_area_code

    @classmethod
    def from_configs(
        cls,
        area_configs: Dict[str, AreaConfig],
        default_area_code: Optional[str] = None
    ) -> "Catalog":
        return cls([_build_area(c) for c in area_configs.values()], default_area_code)

    @classmethod
    def from_file(cls, path: str, default_area_code: Optional[str] = None) -> "Catalog":
        """
        Load a catalog from a JSON file.

        The document maps area codes to objects with ``title``, ``base_url``,
        ``stores`` and ``products`` (the latter two map codes to titles).

        Raises:
            OSError: if the file cannot be read
            ValueError: if the document is not valid catalog JSON
        """
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)

        if not isinstance(data, dict):
            raise ValueError(f"Catalog file {path} must contain a JSON object")

        area_configs = {}
        for code, raw in data.items():
            try:
                area_configs[code] = AreaConfig(
                    code=code,
                    title=raw["title"],
                    base_url=raw["base_url"],
                    stores=dict(raw.get("stores", {})),
                    products=dict(raw.get("products", {})),
                )
            except (KeyError, TypeError) as e:
                raise ValueError(f"Invalid area '{code}' in {path}: {e}") from e

        return cls.from_configs(area_configs, default_area_code)

    @classmethod
    def load(cls, config: AppConfig = APP_CONFIG, logger: Optional[logging.Logger] = None) -> "Catalog":
        """Build the catalog from CATALOG_FILE when set, else from the bundled areas."""
        logger = logger or logging.getLogger(__name__)

        if config.catalog_file and Path(config.catalog_file).exists():
            catalog = cls.from_file(config.catalog_file, config.default_area)
            logger.info(f"Loaded catalog from {config.catalog_file}: {len(catalog)} areas")
            return catalog

        if config.catalog_file:
            logger.warning(f"Catalog file {config.catalog_file} not found, using bundled catalog")

        return cls.from_configs(AREA_CONFIGS, config.default_area)

    # Options for selection widgets

    def areas_for_options(self) -> List[str]:
        return [area.title for area in self._areas.values()]

    def stores_for_area(self, area_title: str) -> List[str]:
        return [store.title for store in self.resolve_area(area_title).stores]

    def products_for_area(self, area_title: str) -> List[str]:
        return [product.title for product in self.resolve_area(area_title).products]

    # Resolution

    def resolve_area(self, title: str) -> Area:
        """
        Resolve an area display title.

        Raises:
            NotFoundError: if the title is unknown
        """
        area = self._by_title.get(title)
        if area is None:
            raise NotFoundError(f"Unknown area: {title!r}")
        return area

    def resolve_store(self, area: Area, title: str) -> Store:
        store = area.find_store(title)
        if store is None:
            raise NotFoundError(f"Unknown store {title!r} in {area.title}")
        return store

    def resolve_product(self, area: Area, title: str) -> Product:
        product = area.find_product(title)
        if product is None:
            raise NotFoundError(f"Unknown product {title!r} in {area.title}")
        return product

    def get_area_by_code(self, code: str) -> Area:
        try:
            return self._areas[code]
        except KeyError:
            raise NotFoundError(f"Unknown area code: {code!r}") from None

    def default_area(self) -> Area:
        return self._areas[self._default_code]

    def __len__(self) -> int:
        return len(self._areas)
