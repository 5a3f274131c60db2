"""Server-side cart validation.

``CartValidator`` is the single place that decides what an order costs. It
re-reads every line from the catalog, replaces the client price with the
catalog price, clamps quantities and collects every failing line so the client
can show all problems at once.
"""

from decimal import Decimal, InvalidOperation
from typing import Iterable

from .domain import (
    CatalogPort,
    CartLine,
    CartValidation,
    LineError,
    ValidatedItem,
    to_money,
)

PRICE_TOLERANCE = Decimal("0.01")


def _price_matches(client_price, price: Decimal) -> bool:
    """True when the client price is within a cent of ``price``.

    Client prices are never quantized: an absurd value such as ``1e30`` is
    simply a mismatch.
    """
    if client_price is None:
        return False
    try:
        return abs(Decimal(client_price) - price) <= PRICE_TOLERANCE
    except (InvalidOperation, TypeError, ValueError):
        return False


class CartValidator:
    def __init__(self, catalog: CatalogPort, max_quantity: int = 99):
        self.catalog = catalog
        self.max_quantity = max_quantity

    def validate(self, lines: Iterable[CartLine]) -> CartValidation:
        """Validate ``lines`` against the catalog.

        A line fails when the product is unknown or out of stock, when the
        quantity is not positive, or when the requested size/colour is not
        offered. Price mismatches and quantities above the ceiling are
        corrected and reported in ``corrections`` without failing the line.

        Returns:
            CartValidation: ``valid`` is True only when no line failed and at
            least one line survived.

        Raises:
            Whatever the catalog port raises on transport failure; the caller
            decides how an unreachable catalog is reported.
        """
        lines = list(lines)
        if not lines:
            return CartValidation(
                valid=False,
                errors=[LineError("cart", "items", "Cart is empty")],
            )

        errors: list[LineError] = []
        corrections: list[LineError] = []
        validated: list[ValidatedItem] = []
        subtotal = Decimal("0.00")

        for line in lines:
            checked = self._check_line(line, corrections)
            if isinstance(checked, ValidatedItem):
                validated.append(checked)
                subtotal += checked.line_total
            else:
                errors.extend(checked)

        return CartValidation(
            valid=not errors and bool(validated),
            errors=errors,
            corrections=corrections,
            validated_items=validated,
            corrected_subtotal=to_money(subtotal),
        )

    def _check_line(self, line: CartLine, corrections: list[LineError]):
        pid = line.product_id
        if not pid:
            return [LineError("unknown", "productId", "Product ID is required")]

        product = self.catalog.get_product(pid)
        if product is None:
            return [LineError(pid, "productId", f"Product not found: {pid}")]

        errors: list[LineError] = []
        if not product.in_stock:
            errors.append(LineError(pid, "stock", f"{product.name} is out of stock"))

        if line.quantity is None or line.quantity <= 0:
            errors.append(LineError(pid, "quantity", "Quantity must be greater than 0"))

        if line.size and product.sizes and line.size not in product.sizes:
            errors.append(LineError(
                pid, "size",
                f'Size "{line.size}" is not available. Available sizes: {", ".join(product.sizes)}',
            ))
        if line.color and product.colors and line.color not in product.colors:
            errors.append(LineError(
                pid, "color",
                f'Color "{line.color}" is not available. Available colors: {", ".join(product.colors)}',
            ))
        if errors:
            return errors

        price = to_money(product.price)
        if not _price_matches(line.client_price, price):
            corrections.append(LineError(
                pid, "price", f"Price corrected from {line.client_price} to {price}",
            ))

        quantity = line.quantity
        if quantity > self.max_quantity:
            corrections.append(LineError(
                pid, "quantity",
                f"Quantity exceeds maximum ({self.max_quantity}). Limited to {self.max_quantity}",
            ))
            quantity = self.max_quantity

        return ValidatedItem(
            product_id=product.id,
            name=product.name,
            unit_price=price,
            quantity=quantity,
            image=product.image,
            size=line.size or None,
            color=line.color or None,
        )
