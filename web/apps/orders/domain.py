"""Domain types, ports and errors for checkout and payment reconciliation.

This module holds the plain dataclasses passed between the checkout pipeline
stages, the protocol definitions (ports) for the collaborators the pipeline
talks to (catalog, payment providers, mail), and the exception taxonomy the
HTTP layer maps to status codes. It has no Django or network dependencies.
"""

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Mapping, Optional, Protocol


CENT = Decimal("0.01")


# ---- Enums ----
class OrderStatus(str, Enum):
    """Fulfillment lifecycle of an order."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class PaymentStatus(str, Enum):
    """Payment lifecycle of an order, independent of fulfillment."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class PaymentMethod(str, Enum):
    CARD_STRIPE = "card-stripe"
    CARD_PAYSTACK = "card-paystack"
    MOBILE_MONEY = "mobile_money"


class DiscountType(str, Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED = "FIXED"


class NotificationOutcome(str, Enum):
    """What a provider notification says about a payment."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    IGNORED = "ignored"


# Order column holding the provider correlation id for each method.
PROVIDER_REFERENCE_FIELDS = {
    PaymentMethod.CARD_STRIPE: "stripe_session_id",
    PaymentMethod.CARD_PAYSTACK: "paystack_reference",
    PaymentMethod.MOBILE_MONEY: "mobile_money_transaction_id",
}


# ---- Money ----
def to_money(value) -> Decimal:
    """Coerce ``value`` to a 2-decimal ``Decimal``, rounding half up."""
    if isinstance(value, float):
        value = repr(value)
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal) -> int:
    """Convert currency units to the provider's smallest integer unit (x100)."""
    return int((to_money(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


# ---- Entities / DTOs ----
@dataclass(frozen=True)
class Identity:
    """Verified caller as yielded by the auth collaborator."""

    user_id: str
    email: str | None = None


@dataclass(frozen=True)
class Product:
    """Catalog record used for price and availability checks."""

    id: str
    name: str
    price: Decimal
    in_stock: bool = True
    image: str | None = None
    sizes: tuple[str, ...] = ()
    colors: tuple[str, ...] = ()


@dataclass(frozen=True)
class CartLine:
    """A line as submitted by the client. ``client_price`` is never trusted."""

    product_id: str
    quantity: int
    client_price: Decimal | None = None
    size: str | None = None
    color: str | None = None


@dataclass(frozen=True)
class LineError:
    product_id: str
    field: str
    message: str

    def as_dict(self) -> dict:
        return {"productId": self.product_id, "field": self.field, "message": self.message}


@dataclass(frozen=True)
class ValidatedItem:
    """A cart line after catalog validation, priced from the catalog.

    Name, image and unit price are the snapshot stored on the order line.
    """

    product_id: str
    name: str
    unit_price: Decimal
    quantity: int
    image: str | None = None
    size: str | None = None
    color: str | None = None

    @property
    def line_total(self) -> Decimal:
        return to_money(self.unit_price * self.quantity)


@dataclass
class CartValidation:
    valid: bool
    errors: list[LineError] = field(default_factory=list)
    corrections: list[LineError] = field(default_factory=list)
    validated_items: list[ValidatedItem] = field(default_factory=list)
    corrected_subtotal: Decimal = Decimal("0.00")


@dataclass(frozen=True)
class ShippingInfo:
    full_name: str
    email: str
    phone: str
    address_line1: str
    city: str
    postal_code: str = ""
    address_line2: str | None = None
    region: str | None = None
    country: str = "Ghana"


@dataclass(frozen=True)
class Totals:
    """Order money fields. ``total_amount`` is always derived, never supplied."""

    subtotal: Decimal
    shipping_cost: Decimal
    discount_amount: Decimal
    total_amount: Decimal

    @classmethod
    def compute(cls, subtotal, shipping_cost, discount_amount) -> "Totals":
        subtotal = max(to_money(subtotal), Decimal("0.00"))
        shipping_cost = max(to_money(shipping_cost), Decimal("0.00"))
        discount_amount = max(to_money(discount_amount), Decimal("0.00"))
        total = max(subtotal + shipping_cost - discount_amount, Decimal("0.00"))
        return cls(subtotal, shipping_cost, discount_amount, to_money(total))


@dataclass(frozen=True)
class MobileMoneyDetails:
    provider: str
    phone: str


@dataclass
class CheckoutDraft:
    """Everything the pipeline has established before the order is persisted."""

    method: PaymentMethod
    items: list[ValidatedItem]
    shipping: ShippingInfo
    totals: Totals
    idempotency_key: str
    currency: str
    delivery_method: str
    identity: Identity | None = None
    promo_code: str | None = None
    channel: str = "card"
    mobile_money: MobileMoneyDetails | None = None

    @property
    def user_id(self) -> str | None:
        return self.identity.user_id if self.identity else None


@dataclass(frozen=True)
class PaymentSession:
    """Result of initializing a payment with a provider."""

    provider_reference: str
    redirect_url: str | None = None
    access_code: str | None = None
    message: str | None = None


@dataclass(frozen=True)
class PaymentVerification:
    """Answer to a synchronous ``verify(reference)`` call."""

    success: bool
    status: str
    amount_minor: int | None = None
    provider_payment_id: str | None = None


@dataclass(frozen=True)
class PaymentNotification:
    """A verified provider signal normalized across providers.

    Attributes:
        method: Payment method whose provider sent the signal.
        reference: Provider correlation id (session id, reference, tx id).
        outcome: Whether the payment succeeded, failed or is irrelevant.
        event_type: Provider event name, kept for logs.
        provider_payment_id: Payment intent / transaction id, when given.
        amount_minor: Amount the provider says was paid, in minor units.
        order_hint: Order id the provider echoed back (e.g. Stripe
            ``client_reference_id``). Used only when the reference column has
            not been written yet.
    """

    method: PaymentMethod
    reference: str
    outcome: NotificationOutcome
    event_type: str = ""
    provider_payment_id: str | None = None
    amount_minor: int | None = None
    order_hint: str | None = None


# ---- Errors ----
class CheckoutError(Exception):
    """Base class for checkout failures surfaced to the client."""

    status_code = 400
    code = "CHECKOUT_ERROR"

    def __init__(self, message: str, details=None):
        super().__init__(message)
        self.message = message
        self.details = details

    def as_body(self) -> dict:
        body = {"error": self.message, "code": self.code}
        if self.details is not None:
            body["details"] = self.details
        return body


class CheckoutValidationError(CheckoutError):
    status_code = 400
    code = "VALIDATION_FAILED"


class DuplicateOrderError(CheckoutError):
    status_code = 409
    code = "DUPLICATE_ORDER"

    def __init__(
        self,
        order_id,
        order_number: str,
        *,
        payment_status: str | None = None,
        reference: str | None = None,
        payment_url: str | None = None,
        access_code: str | None = None,
    ):
        super().__init__("Duplicate order detected")
        self.order_id = str(order_id)
        self.order_number = order_number
        self.payment_status = payment_status
        self.reference = reference
        self.payment_url = payment_url
        self.access_code = access_code

    @classmethod
    def for_order(cls, order) -> "DuplicateOrderError":
        """Build the error from the existing order so the client can resume its session."""
        return cls(
            order.id,
            order.order_number,
            payment_status=order.payment_status,
            reference=order.provider_reference,
            payment_url=order.payment_url,
            access_code=order.payment_access_code,
        )

    def as_body(self) -> dict:
        body = super().as_body()
        body.update({"orderId": self.order_id, "orderNumber": self.order_number})
        optional = {
            "paymentStatus": self.payment_status,
            "reference": self.reference,
            "paymentUrl": self.payment_url,
            "accessCode": self.access_code,
        }
        body.update({k: v for k, v in optional.items() if v})
        return body


class PaymentInitializationError(CheckoutError):
    status_code = 500
    code = "PAYMENT_INIT_FAILED"


class ConfigurationError(CheckoutError):
    status_code = 500
    code = "NOT_CONFIGURED"


class CatalogUnavailableError(CheckoutError):
    status_code = 503
    code = "CATALOG_UNAVAILABLE"


class PromoCodeError(ValueError):
    """Promo code cannot be applied; the message is safe to show."""


class WebhookSignatureError(Exception):
    """Notification is missing a signature or the signature does not match."""


class MalformedNotificationError(Exception):
    """Notification passed signature checks but cannot be interpreted."""


class ProviderReferenceConflict(Exception):
    """An order already carries a different provider reference."""


# ---- Ports (DIP) ----
class CatalogPort(Protocol):
    """Read-only product lookup."""

    def get_product(self, product_id: str) -> Optional[Product]:
        """Return the current catalog record or None when it does not exist."""
        raise NotImplementedError()


class PaymentGatewayPort(Protocol):
    """One payment provider variant.

    ``initialize`` turns a persisted PENDING order into a provider session; it
    never reports the payment as completed. ``verify`` asks the provider about
    a reference synchronously. ``parse_notification`` authenticates and
    normalizes a webhook body.
    """

    method: PaymentMethod

    def ensure_configured(self) -> None:
        raise NotImplementedError()

    def initialize(self, order, draft: CheckoutDraft) -> PaymentSession:
        raise NotImplementedError()

    def verify(self, reference: str) -> PaymentVerification:
        raise NotImplementedError()

    def parse_notification(self, body: bytes, headers: Mapping[str, str]) -> PaymentNotification:
        raise NotImplementedError()


class MailerPort(Protocol):
    def send(self, to: str, subject: str, html: str) -> None:
        """Deliver one message. Raises on failure."""
        raise NotImplementedError()
