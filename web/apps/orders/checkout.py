"""Checkout pipeline.

One pipeline serves every payment method; only the final provider call varies:

1. Check the request itself (non-empty cart, wallet details for mobile money).
2. Resolve the gateway for the method and check it is configured.
3. Validate the cart against the catalog (authoritative prices).
4. Price shipping and the promo discount server-side; derive totals.
5. Derive the idempotency key and refuse duplicates with 409. The 409 body
   carries the existing session so the client can resume it. An order whose
   payment failed has released its key and does not count.
6. Persist the PENDING order (address first, then order + lines).
7. Initialize the provider session. On failure delete the order again.
8. Store the provider reference and hosted page on the order.

Nothing here marks a payment as completed; that is the reconciler's job.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Mapping

import httpx

from .cart import CartValidator
from .domain import (
    CartLine,
    CartValidation,
    CatalogPort,
    CatalogUnavailableError,
    CheckoutDraft,
    CheckoutValidationError,
    DuplicateOrderError,
    Identity,
    MobileMoneyDetails,
    PaymentGatewayPort,
    PaymentInitializationError,
    PaymentMethod,
    PaymentSession,
    PromoCodeError,
    ShippingInfo,
    Totals,
    to_money,
)
from .idempotency import derive_idempotency_key
from .promotions import normalize_code, quote_promo
from .repository import OrderRepository

logger = logging.getLogger("orders.checkout")


def validate_cart(validator: CartValidator, lines) -> CartValidation:
    """Run ``validator`` and report an unreachable catalog as ``CatalogUnavailableError``."""
    try:
        return validator.validate(lines)
    except (httpx.HTTPError, RuntimeError) as e:
        logger.error("catalog lookup failed", extra={"error": str(e)})
        raise CatalogUnavailableError("Product catalog is temporarily unavailable") from e


@dataclass
class CheckoutRequest:
    """Checkout input after request parsing, before any server-side checks."""

    method: PaymentMethod
    lines: list[CartLine]
    shipping: ShippingInfo
    delivery_method: str = "standard"
    promo_code: str | None = None
    identity: Identity | None = None
    idempotency_token: str | None = None
    channel: str = "card"
    mobile_money: MobileMoneyDetails | None = None


@dataclass
class CheckoutResult:
    order: object
    session: PaymentSession
    corrections: list = field(default_factory=list)


class CheckoutService:
    def __init__(
        self,
        catalog: CatalogPort,
        gateways: Mapping[PaymentMethod, PaymentGatewayPort],
        repository: OrderRepository,
        *,
        shipping_rates: Mapping[str, object],
        currency: str = "GHS",
        max_quantity: int = 99,
        idempotency_window: int = 300,
    ):
        self.catalog = catalog
        self.gateways = gateways
        self.repository = repository
        self.validator = CartValidator(catalog, max_quantity=max_quantity)
        self.shipping_rates = {k: to_money(v) for k, v in shipping_rates.items()}
        self.currency = currency
        self.idempotency_window = idempotency_window

    def checkout(self, req: CheckoutRequest) -> CheckoutResult:
        """Run the pipeline for one checkout attempt.

        Raises:
            CheckoutValidationError: Empty cart, bad fields, failing cart
                lines (all listed in ``details``), unknown delivery method,
                unusable promo code, or a non-positive total.
            DuplicateOrderError: An order already exists for this attempt.
            ConfigurationError: The payment method is not configured.
            CatalogUnavailableError: The catalog could not be reached.
            PaymentInitializationError: The provider refused or failed; the
                order has been deleted again.
        """
        if not req.lines:
            raise CheckoutValidationError("Cart is empty")
        mobile_money = self._check_mobile_money(req)

        gateway = self.gateways.get(req.method)
        if gateway is None:
            raise CheckoutValidationError(f"Unsupported payment method: {req.method}")
        gateway.ensure_configured()

        validation = self._validate_cart(req.lines)
        if not validation.valid:
            raise CheckoutValidationError(
                "Cart validation failed",
                details=[e.as_dict() for e in validation.errors],
            )

        subtotal = validation.corrected_subtotal
        shipping_cost = self._shipping_cost(req.delivery_method)
        promo_code, discount = self._discount(req.promo_code, subtotal)
        totals = Totals.compute(subtotal, shipping_cost, discount)
        if totals.total_amount <= 0:
            raise CheckoutValidationError("Order total must be greater than zero")

        key = derive_idempotency_key(
            req.lines,
            req.shipping.email,
            client_token=req.idempotency_token,
            window_secs=self.idempotency_window,
        )
        existing = self.repository.check_duplicate_order(key)
        if existing is not None:
            logger.info(
                "duplicate checkout",
                extra={"order_number": existing.order_number, "payment_method": req.method.value},
            )
            raise DuplicateOrderError.for_order(existing)

        draft = CheckoutDraft(
            method=req.method,
            items=validation.validated_items,
            shipping=req.shipping,
            totals=totals,
            idempotency_key=key,
            currency=self.currency,
            delivery_method=req.delivery_method,
            identity=req.identity,
            promo_code=promo_code,
            channel=req.channel,
            mobile_money=mobile_money,
        )
        order = self.repository.create_order(draft)
        logger.info(
            "order created",
            extra={
                "order_number": order.order_number,
                "payment_method": req.method.value,
                "total_amount": str(order.total_amount),
            },
        )

        try:
            session = gateway.initialize(order, draft)
        except PaymentInitializationError as e:
            self.repository.delete_order(order.id)
            logger.warning(
                "payment initialization failed, order removed",
                extra={"order_number": order.order_number, "error": e.message},
            )
            raise

        self.repository.attach_provider_reference(
            order.id,
            req.method,
            session.provider_reference,
            payment_url=session.redirect_url,
            access_code=session.access_code,
        )
        return CheckoutResult(order=order, session=session, corrections=validation.corrections)

    def _validate_cart(self, lines):
        return validate_cart(self.validator, lines)

    def _check_mobile_money(self, req: CheckoutRequest) -> MobileMoneyDetails | None:
        needs_wallet = req.method is PaymentMethod.MOBILE_MONEY or req.channel == "mobile_money"
        if not needs_wallet:
            return None
        if req.mobile_money is None or not req.mobile_money.provider or not req.mobile_money.phone:
            raise CheckoutValidationError("Mobile money provider and phone number are required")
        return req.mobile_money

    def _shipping_cost(self, delivery_method: str) -> Decimal:
        try:
            return self.shipping_rates[delivery_method]
        except KeyError:
            raise CheckoutValidationError(f"Unknown delivery method: {delivery_method}") from None

    def _discount(self, code: str | None, subtotal: Decimal) -> tuple[str | None, Decimal]:
        code = normalize_code(code or "")
        if not code:
            return None, Decimal("0.00")
        try:
            quote = quote_promo(self.repository.get_promo(code), subtotal)
        except PromoCodeError as e:
            raise CheckoutValidationError(str(e), details=[{"field": "promoCode", "message": str(e)}]) from e
        return quote.code, quote.discount
