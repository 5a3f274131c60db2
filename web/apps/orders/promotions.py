"""Promo code quoting.

The discount an order receives is computed here from the stored promo code,
never taken from the client.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from django.utils import timezone

from .domain import DiscountType, PromoCodeError, to_money


@dataclass(frozen=True)
class PromoQuote:
    code: str
    discount: Decimal
    description: str = ""


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def quote_promo(promo, amount: Decimal, now: datetime | None = None) -> PromoQuote:
    """Compute the discount ``promo`` grants on ``amount``.

    Args:
        promo: A ``PromoCodeModel`` (or None when the code is unknown).
        amount: Subtotal the discount applies to.
        now: Current time, injectable for tests.

    Raises:
        PromoCodeError: With a customer-facing message when the code cannot
            be applied.
    """
    if promo is None:
        raise PromoCodeError("Invalid promo code")
    now = now or timezone.now()
    amount = to_money(amount)

    if not promo.is_active:
        raise PromoCodeError("This promo code is no longer active")
    if promo.valid_from and now < promo.valid_from:
        raise PromoCodeError("This promo code is not yet valid")
    if promo.valid_until and now > promo.valid_until:
        raise PromoCodeError("This promo code has expired")
    if promo.min_purchase and amount < promo.min_purchase:
        raise PromoCodeError(
            f"Minimum purchase of {to_money(promo.min_purchase)} required for this promo code"
        )
    if promo.usage_limit is not None and promo.used_count >= promo.usage_limit:
        raise PromoCodeError("This promo code has reached its usage limit")

    value = Decimal(promo.discount_value)
    if promo.discount_type == DiscountType.PERCENTAGE.value:
        discount = amount * value / Decimal(100)
        if promo.max_discount and discount > promo.max_discount:
            discount = Decimal(promo.max_discount)
    else:
        discount = min(value, amount)

    return PromoQuote(code=promo.code, discount=to_money(discount), description=promo.description)
