"""In-process adapters for the checkout ports.

``InMemoryCatalog`` implements ``CatalogPort`` without network calls. It is
used by tests and local development, where the product list comes from
``settings.CATALOG_FIXTURES`` instead of the catalog service.
"""

from decimal import Decimal
from typing import Iterable, Optional

from .domain import CatalogPort, Product


class InMemoryCatalog(CatalogPort):
    """Dictionary-backed catalog keyed by product id."""

    def __init__(self, products: Iterable[Product] = ()):
        self._products = {p.id: p for p in products}

    @classmethod
    def from_fixtures(cls, rows: Iterable[dict]) -> "InMemoryCatalog":
        """Build a catalog from plain dicts as found in settings.

        Each row needs ``id``, ``name`` and ``price``; ``inStock``, ``image``,
        ``sizes`` and ``colors`` are optional.
        """
        return cls(
            Product(
                id=str(row["id"]),
                name=row["name"],
                price=Decimal(str(row["price"])),
                in_stock=row.get("inStock", True),
                image=row.get("image"),
                sizes=tuple(row.get("sizes", ())),
                colors=tuple(row.get("colors", ())),
            )
            for row in rows
        )

    def get_product(self, product_id: str) -> Optional[Product]:
        return self._products.get(product_id)
