"""Payment gateway variants.

Each gateway implements ``PaymentGatewayPort`` for one payment method:

- ``StripeCheckoutGateway``: card payments through a Stripe hosted checkout
  session (stripe SDK).
- ``PaystackGateway``: cards and mobile money through a Paystack hosted page
  (HTTP client in ``http_adapters``).
- ``MobileMoneyGateway``: direct mobile money with no redirect and no
  synchronous confirmation; the order stays PENDING until the provider's
  webhook arrives.

Gateways never mark a payment completed. They start a session for an order
that is already persisted, answer ``verify`` questions, and turn signed
webhook bodies into ``PaymentNotification`` objects for the reconciler.
"""

import hashlib
import hmac
import json
import secrets
import string
import time
from typing import Mapping

import stripe

from .domain import (
    CheckoutDraft,
    ConfigurationError,
    MalformedNotificationError,
    NotificationOutcome,
    PaymentInitializationError,
    PaymentMethod,
    PaymentNotification,
    PaymentSession,
    PaymentVerification,
    WebhookSignatureError,
    to_minor_units,
)
from .http_adapters import PaystackClient


def _signature_matches(secret: str, body: bytes, signature: str, digestmod) -> bool:
    expected = hmac.new(secret.encode("utf-8"), body, digestmod).hexdigest()
    return hmac.compare_digest(expected, signature.strip().lower())


def _load_json(body: bytes) -> dict:
    try:
        data = json.loads(body)
    except (TypeError, ValueError) as e:
        raise MalformedNotificationError("Body is not valid JSON") from e
    if not isinstance(data, dict):
        raise MalformedNotificationError("Body is not a JSON object")
    return data


def configure_stripe(timeout: float | None) -> None:
    """Install the HTTP client the stripe SDK uses for the whole process.

    Called once from ``OrdersConfig.ready``.
    """
    if timeout:
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout)


class StripeCheckoutGateway:
    method = PaymentMethod.CARD_STRIPE
    SIGNATURE_HEADER = "Stripe-Signature"

    SUCCESS_EVENTS = {"checkout.session.completed", "checkout.session.async_payment_succeeded"}
    FAILURE_EVENTS = {"checkout.session.async_payment_failed", "checkout.session.expired"}
    SIGNATURE_TOLERANCE = 300

    def __init__(self, api_key: str, webhook_secret: str, public_base_url: str):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.public_base_url = public_base_url.rstrip("/")

    def ensure_configured(self) -> None:
        if not self.api_key:
            raise ConfigurationError("Stripe is not configured")

    def _line_items(self, draft: CheckoutDraft, currency: str) -> list[dict]:
        items = [
            {
                "price_data": {
                    "currency": currency,
                    "product_data": {"name": it.name, **({"images": [it.image]} if it.image else {})},
                    "unit_amount": to_minor_units(it.unit_price),
                },
                "quantity": it.quantity,
            }
            for it in draft.items
        ]
        if draft.totals.shipping_cost > 0:
            items.append({
                "price_data": {
                    "currency": currency,
                    "product_data": {"name": f"Shipping ({draft.delivery_method})"},
                    "unit_amount": to_minor_units(draft.totals.shipping_cost),
                },
                "quantity": 1,
            })
        return items

    def initialize(self, order, draft: CheckoutDraft) -> PaymentSession:
        """Create a hosted checkout session for ``order``.

        Line items come from the validated cart plus a shipping line. Stripe
        rejects negative unit amounts, so a discount is applied as a one-off
        coupon for the exact discount amount.

        Raises:
            PaymentInitializationError: When Stripe rejects the request or
                cannot be reached.
        """
        currency = draft.currency.lower()
        params = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": self._line_items(draft, currency),
            "customer_email": order.email,
            "client_reference_id": str(order.id),
            "metadata": {"orderId": str(order.id), "orderNumber": order.order_number},
            "success_url": (
                f"{self.public_base_url}/checkout/success?orderId={order.id}"
                "&session_id={CHECKOUT_SESSION_ID}"
            ),
            "cancel_url": f"{self.public_base_url}/cart?cancelled=true",
        }
        try:
            if draft.totals.discount_amount > 0:
                coupon = stripe.Coupon.create(
                    api_key=self.api_key,
                    idempotency_key=f"coupon-{order.id}",
                    amount_off=to_minor_units(draft.totals.discount_amount),
                    currency=currency,
                    duration="once",
                    name=f"Promo {draft.promo_code or ''}".strip(),
                )
                params["discounts"] = [{"coupon": coupon.id}]
            session = stripe.checkout.Session.create(
                api_key=self.api_key,
                idempotency_key=f"checkout-{order.id}",
                **params,
            )
        except stripe.StripeError as e:
            raise PaymentInitializationError(
                getattr(e, "user_message", None) or "Failed to create checkout session"
            ) from e
        return PaymentSession(provider_reference=session.id, redirect_url=session.url)

    def verify(self, reference: str) -> PaymentVerification:
        try:
            session = stripe.checkout.Session.retrieve(reference, api_key=self.api_key)
        except stripe.StripeError:
            return PaymentVerification(success=False, status="unavailable")
        status = getattr(session, "payment_status", None) or "unknown"
        return PaymentVerification(
            success=status == "paid",
            status=status,
            amount_minor=getattr(session, "amount_total", None),
            provider_payment_id=getattr(session, "payment_intent", None),
        )

    def parse_notification(self, body: bytes, headers: Mapping[str, str]) -> PaymentNotification:
        signature = headers.get(self.SIGNATURE_HEADER)
        if not signature or not self.webhook_secret:
            raise WebhookSignatureError("Missing signature")
        try:
            payload = body.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedNotificationError("Body is not UTF-8") from e
        try:
            stripe.WebhookSignature.verify_header(
                payload, signature, self.webhook_secret, tolerance=self.SIGNATURE_TOLERANCE
            )
        except stripe.SignatureVerificationError as e:
            raise WebhookSignatureError("Invalid signature") from e

        event = _load_json(body)
        event_type = event.get("type", "")
        obj = (event.get("data") or {}).get("object") or {}
        if event_type in self.SUCCESS_EVENTS:
            paid = obj.get("payment_status") == "paid"
            outcome = NotificationOutcome.SUCCEEDED if paid else NotificationOutcome.IGNORED
        elif event_type in self.FAILURE_EVENTS:
            outcome = NotificationOutcome.FAILED
        else:
            outcome = NotificationOutcome.IGNORED

        reference = obj.get("id") or ""
        if outcome is not NotificationOutcome.IGNORED and not reference:
            raise MalformedNotificationError("Session id missing")
        return PaymentNotification(
            method=self.method,
            reference=reference,
            outcome=outcome,
            event_type=event_type,
            provider_payment_id=obj.get("payment_intent"),
            amount_minor=obj.get("amount_total"),
            order_hint=obj.get("client_reference_id"),
        )


class PaystackGateway:
    method = PaymentMethod.CARD_PAYSTACK
    SIGNATURE_HEADER = "X-Paystack-Signature"

    def __init__(self, secret_key: str, public_base_url: str, client: PaystackClient | None = None):
        self.secret_key = secret_key
        self.public_base_url = public_base_url.rstrip("/")
        self.client = client or PaystackClient(secret_key)

    def ensure_configured(self) -> None:
        if not self.secret_key:
            raise ConfigurationError("Paystack is not configured")

    def initialize(self, order, draft: CheckoutDraft) -> PaymentSession:
        """Initialize a Paystack transaction whose reference is the order number.

        Raises:
            PaymentInitializationError: On any provider rejection; the
                provider's message is carried.
        """
        custom_fields = []
        if draft.mobile_money is not None:
            custom_fields = [
                {
                    "display_name": "Mobile Money Provider",
                    "variable_name": "mobile_money_provider",
                    "value": draft.mobile_money.provider,
                },
                {
                    "display_name": "Mobile Money Phone",
                    "variable_name": "mobile_money_phone",
                    "value": draft.mobile_money.phone,
                },
            ]
        payload = {
            "email": order.email,
            "amount": to_minor_units(order.total_amount),
            "currency": order.currency,
            "reference": order.order_number,
            "callback_url": f"{self.public_base_url}/checkout/success?orderId={order.id}",
            "metadata": {
                "orderId": str(order.id),
                "orderNumber": order.order_number,
                "paymentMethod": draft.channel,
                "custom_fields": custom_fields,
            },
        }
        if draft.channel == "mobile_money":
            payload["channels"] = ["mobile_money"]

        data = self.client.initialize_transaction(payload)
        return PaymentSession(
            provider_reference=data.get("reference") or order.order_number,
            redirect_url=data.get("authorization_url"),
            access_code=data.get("access_code"),
        )

    def verify(self, reference: str) -> PaymentVerification:
        data = self.client.verify_transaction(reference)
        status = data.get("status") or "unknown"
        return PaymentVerification(
            success=status == "success",
            status=status,
            amount_minor=data.get("amount"),
            provider_payment_id=str(data["id"]) if data.get("id") else None,
        )

    def parse_notification(self, body: bytes, headers: Mapping[str, str]) -> PaymentNotification:
        signature = headers.get(self.SIGNATURE_HEADER)
        if not signature or not self.secret_key:
            raise WebhookSignatureError("Missing signature")
        if not _signature_matches(self.secret_key, body, signature, hashlib.sha512):
            raise WebhookSignatureError("Invalid signature")

        event = _load_json(body)
        event_type = event.get("event") or ""
        data = event.get("data") or {}
        if event_type == "charge.success":
            ok = data.get("status") == "success"
            outcome = NotificationOutcome.SUCCEEDED if ok else NotificationOutcome.IGNORED
        elif event_type == "charge.failed":
            outcome = NotificationOutcome.FAILED
        else:
            outcome = NotificationOutcome.IGNORED

        reference = data.get("reference") or ""
        if outcome is not NotificationOutcome.IGNORED and not reference:
            raise MalformedNotificationError("Reference missing")
        return PaymentNotification(
            method=self.method,
            reference=reference,
            outcome=outcome,
            event_type=event_type,
            provider_payment_id=str(data["id"]) if data.get("id") else None,
            amount_minor=data.get("amount"),
        )


def generate_transaction_id() -> str:
    alphabet = string.ascii_uppercase + string.digits
    return f"MM-{int(time.time() * 1000)}-{''.join(secrets.choice(alphabet) for _ in range(7))}"


class MobileMoneyGateway:
    """Direct mobile money. Weakest-consistency path.

    ``initialize`` only allocates a local transaction id; nothing confirms the
    payment until the provider's signed webhook arrives.
    """

    method = PaymentMethod.MOBILE_MONEY
    SIGNATURE_HEADER = "X-MobileMoney-Signature"
    SUCCESS_STATUSES = {"SUCCESSFUL", "SUCCESS", "COMPLETED"}
    FAILURE_STATUSES = {"FAILED", "REJECTED", "EXPIRED", "CANCELLED"}

    def __init__(self, webhook_secret: str):
        self.webhook_secret = webhook_secret

    def ensure_configured(self) -> None:
        if not self.webhook_secret:
            raise ConfigurationError("Mobile money is not configured")

    def initialize(self, order, draft: CheckoutDraft) -> PaymentSession:
        return PaymentSession(
            provider_reference=generate_transaction_id(),
            message=(
                "Order received. Approve the payment on your phone; "
                "the order is confirmed once the payment is received."
            ),
        )

    def verify(self, reference: str) -> PaymentVerification:
        return PaymentVerification(success=False, status="pending")

    def parse_notification(self, body: bytes, headers: Mapping[str, str]) -> PaymentNotification:
        signature = headers.get(self.SIGNATURE_HEADER)
        if not signature or not self.webhook_secret:
            raise WebhookSignatureError("Missing signature")
        if not _signature_matches(self.webhook_secret, body, signature, hashlib.sha256):
            raise WebhookSignatureError("Invalid signature")

        event = _load_json(body)
        reference = event.get("transactionId") or ""
        status = str(event.get("status") or "").upper()
        if status in self.SUCCESS_STATUSES:
            outcome = NotificationOutcome.SUCCEEDED
        elif status in self.FAILURE_STATUSES:
            outcome = NotificationOutcome.FAILED
        else:
            outcome = NotificationOutcome.IGNORED
        if not reference:
            raise MalformedNotificationError("transactionId missing")
        amount = event.get("amount")
        return PaymentNotification(
            method=self.method,
            reference=reference,
            outcome=outcome,
            event_type=f"mobile_money.{status.lower() or 'unknown'}",
            provider_payment_id=event.get("providerTransactionId"),
            amount_minor=int(amount) if isinstance(amount, (int, str)) and str(amount).isdigit() else None,
        )
