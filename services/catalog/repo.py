"""SQLAlchemy repository for the product catalog.

The storefront's checkout only needs read access: one product by id with its
current price, stock flag and the sizes/colours it is offered in. Sizes and
colours are stored as comma-separated lists.

Database connection parameters are configured via ``DATABASE_URL`` or the
``DB_*`` environment variables.
"""

import os
from contextlib import contextmanager
from decimal import Decimal

from sqlalchemy import Boolean, Numeric, String, create_engine
from sqlalchemy.orm import DeclarativeBase, Session, mapped_column

DB_HOST = os.getenv("DB_HOST", "catalog-db")
DB_PORT = os.getenv("DB_PORT", "5432")
DB_NAME = os.getenv("DB_NAME", "catalog")
DB_USER = os.getenv("DB_USER", "catalog_user")
DB_PASSWORD = os.getenv("DB_PASSWORD", "catalog-pass")

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql+psycopg://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}",
)
engine = create_engine(DATABASE_URL, pool_pre_ping=True)


class Base(DeclarativeBase): pass


class Product(Base):
    """Catalog record.

    Attributes:
        id: Product id as used by the storefront cart.
        name: Display name, snapshotted onto order lines.
        price: Unit price in currency units.
        in_stock: Whether the product can be ordered.
        image: Main image URL.
        sizes: Comma-separated sizes on offer (empty when not applicable).
        colors: Comma-separated colours on offer (empty when not applicable).
    """
    __tablename__ = "products"
    id = mapped_column(String(64), primary_key=True)
    name = mapped_column(String(255), nullable=False)
    price = mapped_column(Numeric(10, 2), nullable=False)
    in_stock = mapped_column(Boolean, nullable=False, default=True)
    image = mapped_column(String(500), nullable=True)
    sizes = mapped_column(String(255), nullable=False, default="")
    colors = mapped_column(String(255), nullable=False, default="")


def init_db() -> None:
    Base.metadata.create_all(engine)


@contextmanager
def get_session():
    with Session(engine) as s:
        yield s


def _split(value: str | None) -> list[str]:
    return [v.strip() for v in (value or "").split(",") if v.strip()]


class CatalogRepo:
    def get(self, product_id: str) -> dict | None:
        """Return the product as a plain dict, or None when it does not exist."""
        with get_session() as s:
            obj = s.get(Product, product_id)
            if obj is None:
                return None
            return {
                "id": obj.id,
                "name": obj.name,
                "price": Decimal(obj.price),
                "inStock": bool(obj.in_stock),
                "image": obj.image,
                "sizes": _split(obj.sizes),
                "colors": _split(obj.colors),
            }
