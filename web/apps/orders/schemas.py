"""Pydantic schemas for the checkout and orders API.

Request schemas parse the camelCase JSON sent by the storefront into domain
dataclasses. Read schemas render orders back as camelCase JSON.
"""

import re
from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .checkout import CheckoutRequest
from .domain import (
    CartLine,
    Identity,
    MobileMoneyDetails,
    OrderStatus,
    PaymentMethod,
    ShippingInfo,
)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
GHANA_PHONE_RE = re.compile(r"^0\d{9}$")
MAX_AMOUNT = Decimal("99999999.99")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)


# ---- requests ----
class CartItemIn(BaseModel):
    """One cart line. ``clientPrice`` is accepted for correction reports only."""

    model_config = ConfigDict(str_strip_whitespace=True)

    product_id: str = Field(validation_alias=AliasChoices("productId", "product_id", "id"), min_length=1)
    quantity: int
    client_price: Optional[Decimal] = Field(default=None, validation_alias=AliasChoices("clientPrice", "price"))
    size: Optional[str] = None
    color: Optional[str] = None

    def to_line(self) -> CartLine:
        return CartLine(
            product_id=self.product_id,
            quantity=self.quantity,
            client_price=self.client_price,
            size=self.size or None,
            color=self.color or None,
        )


class ShippingIn(CamelModel):
    full_name: str = Field(min_length=1, max_length=200)
    email: str = Field(max_length=254)
    phone: str = Field(min_length=1, max_length=32)
    address_line1: str = Field(min_length=1, max_length=255)
    address_line2: Optional[str] = None
    city: str = Field(min_length=1, max_length=120)
    region: Optional[str] = None
    postal_code: str = ""
    country: str = "Ghana"

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        v2 = v.strip().lower()
        if not EMAIL_RE.match(v2):
            raise ValueError("Invalid email address")
        return v2

    def to_domain(self) -> ShippingInfo:
        return ShippingInfo(
            full_name=self.full_name,
            email=self.email,
            phone=self.phone,
            address_line1=self.address_line1,
            address_line2=self.address_line2 or None,
            city=self.city,
            region=self.region or None,
            postal_code=self.postal_code,
            country=self.country or "Ghana",
        )


class MobileMoneyIn(CamelModel):
    provider: Literal["mtn", "vodafone", "airteltigo"]
    phone: str

    @field_validator("provider", mode="before")
    @classmethod
    def lower_provider(cls, v):
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        """Ghana mobile number in local format, ``0XXXXXXXXX``; inner spaces are dropped."""
        v2 = re.sub(r"\s+", "", v)
        if not GHANA_PHONE_RE.match(v2):
            raise ValueError("Phone number must be in the format 0XXXXXXXXX")
        return v2


class CheckoutIn(CamelModel):
    items: list[CartItemIn]
    shipping: ShippingIn = Field(
        validation_alias=AliasChoices("shipping", "shippingAddress", "shippingInfo")
    )
    delivery_method: str = "standard"
    promo_code: Optional[str] = None
    idempotency_key: Optional[str] = None
    payment_channel: Literal["card", "mobile_money"] = "card"
    mobile_money: Optional[MobileMoneyIn] = None

    def to_request(self, method: PaymentMethod, identity: Identity | None, header_token: str | None = None):
        channel = "mobile_money" if method is PaymentMethod.MOBILE_MONEY else self.payment_channel
        return CheckoutRequest(
            method=method,
            lines=[i.to_line() for i in self.items],
            shipping=self.shipping.to_domain(),
            delivery_method=self.delivery_method,
            promo_code=self.promo_code or None,
            identity=identity,
            idempotency_token=header_token or self.idempotency_key,
            channel=channel,
            mobile_money=(
                MobileMoneyDetails(self.mobile_money.provider, self.mobile_money.phone)
                if self.mobile_money else None
            ),
        )


class CartValidateIn(BaseModel):
    items: list[CartItemIn] = []

    def to_lines(self) -> list[CartLine]:
        return [i.to_line() for i in self.items]


class PromoValidateIn(CamelModel):
    code: str = Field(min_length=1, max_length=40)
    subtotal: Decimal = Field(ge=0, le=MAX_AMOUNT)


class OrderStatusIn(CamelModel):
    status: OrderStatus


# ---- reads ----
class OrderItemOut(CamelModel):
    product_id: str
    product_name: str
    product_image: Optional[str] = None
    unit_price: Decimal
    quantity: int
    size: Optional[str] = None
    color: Optional[str] = None


class ValidatedItemOut(CamelModel):
    product_id: str
    name: str
    price: Decimal
    quantity: int
    image: Optional[str] = None
    size: Optional[str] = None
    color: Optional[str] = None

    @classmethod
    def from_item(cls, item) -> "ValidatedItemOut":
        return cls(
            product_id=item.product_id,
            name=item.name,
            price=item.unit_price,
            quantity=item.quantity,
            image=item.image,
            size=item.size,
            color=item.color,
        )


class AddressOut(CamelModel):
    full_name: str
    email: str
    phone: str
    address_line1: str
    address_line2: Optional[str] = None
    city: str
    region: Optional[str] = None
    postal_code: str = ""
    country: str


class OrderReadDTO(CamelModel):
    """Order as returned by the read endpoints."""

    id: UUID
    order_number: str
    status: str
    payment_status: str
    payment_method: str
    currency: str
    subtotal: Decimal
    shipping_cost: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    promo_code: Optional[str] = None
    delivery_method: Optional[str] = None
    created_at: datetime
    paid_at: Optional[datetime] = None
    items: list[OrderItemOut] = []
    shipping_address: Optional[AddressOut] = None

    @classmethod
    def from_model(cls, o) -> "OrderReadDTO":
        addr = o.shipping_address
        return cls(
            id=o.id,
            order_number=o.order_number,
            status=o.status,
            payment_status=o.payment_status,
            payment_method=o.payment_method,
            currency=o.currency,
            subtotal=o.subtotal,
            shipping_cost=o.shipping_cost,
            discount_amount=o.discount_amount,
            total_amount=o.total_amount,
            promo_code=o.promo_code,
            delivery_method=o.delivery_method,
            created_at=o.created_at,
            paid_at=o.paid_at,
            items=[OrderItemOut.model_validate(i, from_attributes=True) for i in o.items.all()],
            shipping_address=AddressOut.model_validate(addr, from_attributes=True) if addr else None,
        )

    def as_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
