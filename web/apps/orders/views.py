"""HTTP views for the orders app.

Views are kept intentionally small: they validate requests (via Pydantic),
map them to domain dataclasses, delegate to the checkout pipeline or the
reconciler obtained from ``providers``, and translate domain errors into
``{"error", "code", "details"?}`` JSON responses.

Checkout is one pipeline for every payment method; the three checkout views
only differ in the payment method they pass and in how they render the
provider session. Webhook views authenticate the raw body with the
provider's signature before anything touches an order.
"""

import logging

from django.core.paginator import Paginator
from pydantic import ValidationError
from rest_framework import status
from rest_framework.permissions import AllowAny, IsAdminUser
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from .domain import (
    CheckoutError,
    Identity,
    MalformedNotificationError,
    PaymentMethod,
    PaymentStatus,
    PromoCodeError,
    WebhookSignatureError,
)
from .checkout import validate_cart
from .promotions import quote_promo
from .providers import (
    get_cart_validator,
    get_checkout_service,
    get_dispatcher,
    get_gateway,
    get_reconciler,
    get_repository,
)
from .schemas import (
    CartValidateIn,
    CheckoutIn,
    OrderReadDTO,
    OrderStatusIn,
    PromoValidateIn,
    ValidatedItemOut,
)

logger = logging.getLogger("orders.checkout")

PAYMENT_NOT_CONFIRMED = (
    "We couldn't confirm your payment. Please check your account or contact support."
)


def _identity(request) -> Identity | None:
    user = getattr(request, "user", None)
    if user is None or not user.is_authenticated:
        return None
    return Identity(user_id=str(user.pk), email=user.email or None)


def _user_id(request) -> str | None:
    ident = _identity(request)
    return ident.user_id if ident else None


def _invalid(e: ValidationError) -> Response:
    return Response(
        {
            "error": "Invalid request",
            "code": "VALIDATION_FAILED",
            "details": e.errors(include_url=False, include_context=False, include_input=False),
        },
        status=status.HTTP_400_BAD_REQUEST,
    )


def _not_found() -> Response:
    return Response({"error": "Order not found", "code": "NOT_FOUND"}, status=status.HTTP_404_NOT_FOUND)


def _int_param(value, default: int, upper: int | None = None) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError):
        return default
    n = max(1, n)
    return min(n, upper) if upper else n


# ---------------- Checkout ---------------- #

class CheckoutView(APIView):
    """Create a PENDING order and start a payment session.

    Subclasses set ``method`` and render the provider session. The response
    codes are shared:

    - 400 validation failure (empty cart, bad fields, failing cart lines with
      every failing line in ``details``, unusable promo code).
    - 409 duplicate checkout, with the existing ``orderId``/``orderNumber``.
    - 500 provider not configured, or payment initialization failed (the
      order has been removed again).
    - 503 catalog unavailable.
    """

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "checkout"
    method: PaymentMethod
    success_status = status.HTTP_201_CREATED

    def post(self, request):
        try:
            dto = CheckoutIn.model_validate(request.data)
        except ValidationError as e:
            return _invalid(e)

        req = dto.to_request(
            self.method,
            identity=_identity(request),
            header_token=request.headers.get("Idempotency-Key"),
        )
        try:
            result = get_checkout_service(self.method).checkout(req)
        except CheckoutError as e:
            return Response(e.as_body(), status=e.status_code)

        body = {
            "orderId": str(result.order.id),
            "orderNumber": result.order.order_number,
            **self.render(result),
        }
        if result.corrections:
            body["corrections"] = [c.as_dict() for c in result.corrections]
        return Response(body, status=self.success_status)

    def render(self, result) -> dict:
        raise NotImplementedError()


class StripeCheckoutView(CheckoutView):
    method = PaymentMethod.CARD_STRIPE

    def render(self, result) -> dict:
        return {"url": result.session.redirect_url, "sessionId": result.session.provider_reference}


class PaystackCheckoutView(CheckoutView):
    method = PaymentMethod.CARD_PAYSTACK

    def render(self, result) -> dict:
        return {
            "authorizationUrl": result.session.redirect_url,
            "accessCode": result.session.access_code,
            "reference": result.session.provider_reference,
        }


class MobileMoneyCheckoutView(CheckoutView):
    """Direct mobile money: 202, the payment is not confirmed yet."""

    method = PaymentMethod.MOBILE_MONEY
    success_status = status.HTTP_202_ACCEPTED

    def render(self, result) -> dict:
        return {
            "transactionId": result.session.provider_reference,
            "paymentStatus": result.order.payment_status,
            "message": result.session.message,
        }


class CheckoutVerifyView(APIView):
    """Payment status lookup for the checkout success page.

    Accepts exactly one of ``orderId``, ``session_id`` (Stripe) or
    ``reference`` (Paystack reference or mobile money transaction id).
    """

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "verify"

    def get(self, request):
        repo = get_repository()
        uid = _user_id(request)
        params = request.query_params

        order = None
        if params.get("orderId"):
            order = repo.get_order_by_id(params["orderId"], uid)
        elif params.get("session_id"):
            order = repo.find_by_provider_reference(PaymentMethod.CARD_STRIPE, params["session_id"])
        elif params.get("reference"):
            ref = params["reference"]
            order = (
                repo.find_by_provider_reference(PaymentMethod.CARD_PAYSTACK, ref)
                or repo.find_by_provider_reference(PaymentMethod.MOBILE_MONEY, ref)
            )
        else:
            return Response(
                {"error": "orderId, session_id or reference is required", "code": "VALIDATION_FAILED"},
                status=status.HTTP_400_BAD_REQUEST,
            )

        if order is not None and not params.get("orderId"):
            order = repo.get_order_by_id(order.id, uid)
        if order is None:
            return _not_found()

        return Response({
            "orderId": str(order.id),
            "orderNumber": order.order_number,
            "paymentStatus": order.payment_status,
            "orderStatus": order.status,
            "totalAmount": str(order.total_amount),
            "paid": order.payment_status == PaymentStatus.COMPLETED.value,
        })


# ---------------- Webhooks ---------------- #

class WebhookView(APIView):
    """Signed provider notification.

    The raw body is authenticated before it is parsed. A bad or missing
    signature is rejected with 400; anything that passes the signature check
    is acknowledged with 200, including notifications for unknown orders, so
    the provider stops retrying.
    """

    authentication_classes: list = []
    permission_classes = [AllowAny]
    method: PaymentMethod

    def post(self, request):
        gateway = get_gateway(self.method)
        try:
            notification = gateway.parse_notification(request.body, request.headers)
        except WebhookSignatureError as e:
            logger.warning(
                "webhook rejected",
                extra={"payment_method": self.method.value, "error": str(e)},
            )
            return Response({"error": "Invalid signature"}, status=status.HTTP_400_BAD_REQUEST)
        except MalformedNotificationError as e:
            logger.warning(
                "malformed webhook",
                extra={"payment_method": self.method.value, "error": str(e)},
            )
            return Response({"error": "Malformed payload"}, status=status.HTTP_400_BAD_REQUEST)

        outcome = get_reconciler().apply(notification)
        return Response({"received": True, "outcome": outcome.value}, status=status.HTTP_200_OK)


class StripeWebhookView(WebhookView):
    method = PaymentMethod.CARD_STRIPE


class PaystackWebhookView(WebhookView):
    method = PaymentMethod.CARD_PAYSTACK


class MobileMoneyWebhookView(WebhookView):
    method = PaymentMethod.MOBILE_MONEY


# ---------------- Orders ---------------- #

class OrdersCollectionView(APIView):
    """Order history of the signed-in customer, newest first."""

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_list"

    def get(self, request):
        uid = _user_id(request)
        if uid is None:
            return Response(
                {"error": "Authentication required", "code": "UNAUTHENTICATED"},
                status=status.HTTP_401_UNAUTHORIZED,
            )

        qs = get_repository().list_orders_for_user(uid)
        page = _int_param(request.GET.get("page"), 1)
        page_size = _int_param(request.GET.get("page_size"), 20, upper=100)
        p = Paginator(qs, page_size)
        page_obj = p.get_page(page)

        return Response(
            {
                "count": p.count,
                "page": page_obj.number,
                "page_size": page_size,
                "results": [OrderReadDTO.from_model(o).as_json() for o in page_obj.object_list],
            },
            status=200,
        )


class RetrieveOrderView(APIView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_detail"

    def get(self, request, oid):
        order = get_repository().get_order_by_id(oid, _user_id(request))
        if order is None:
            return _not_found()
        return Response(OrderReadDTO.from_model(order).as_json(), status=200)


class VerifyPaymentView(APIView):
    """Ask the provider whether the order was paid and reconcile on success.

    A confirmed payment goes through the same conditional transition as a
    webhook, so a verify racing a webhook still completes the order once.
    """

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "verify"

    def post(self, request, oid):
        repo = get_repository()
        order = repo.get_order_by_id(oid, _user_id(request))
        if order is None:
            return _not_found()

        outcome = get_reconciler().verify_order(order, get_gateway(PaymentMethod(order.payment_method)))
        order = repo.get(order.id)
        paid = order.payment_status == PaymentStatus.COMPLETED.value
        body = {
            "orderId": str(order.id),
            "orderNumber": order.order_number,
            "paymentStatus": order.payment_status,
            "paid": paid,
            "outcome": outcome.value,
        }
        if not paid:
            body["message"] = PAYMENT_NOT_CONFIRMED
        return Response(body, status=200)


class SendOrderEmailView(APIView):
    """Staff: resend the confirmation of a paid order that has not gone out."""

    permission_classes = [IsAdminUser]

    def post(self, request, oid):
        repo = get_repository()
        order = repo.get(oid)
        if order is None:
            return _not_found()
        if order.payment_status != PaymentStatus.COMPLETED.value:
            return Response(
                {"error": "Order has not been paid", "code": "NOT_PAID"},
                status=status.HTTP_400_BAD_REQUEST,
            )
        if order.email_sent:
            return Response(
                {"error": "Confirmation already sent", "code": "ALREADY_SENT"},
                status=status.HTTP_409_CONFLICT,
            )
        sent = get_dispatcher(repo).order_paid(order.id)
        return Response({"sent": sent}, status=200 if sent else status.HTTP_502_BAD_GATEWAY)


class OrderStatusView(APIView):
    """Staff: set the fulfillment status."""

    permission_classes = [IsAdminUser]

    def patch(self, request, oid):
        try:
            dto = OrderStatusIn.model_validate(request.data)
        except ValidationError as e:
            return _invalid(e)
        repo = get_repository()
        if not repo.update_order_status(oid, dto.status):
            return _not_found()
        return Response(OrderReadDTO.from_model(repo.get(oid)).as_json(), status=200)


# ---------------- Cart ---------------- #

class CartValidateView(APIView):
    """Check a cart against the catalog without creating anything.

    Always 200 for a parsed body; ``valid`` tells whether checkout would
    accept the cart. 503 when the catalog cannot be reached.
    """

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "cart"

    def post(self, request):
        try:
            dto = CartValidateIn.model_validate(request.data)
        except ValidationError as e:
            return _invalid(e)
        try:
            result = validate_cart(get_cart_validator(), dto.to_lines())
        except CheckoutError as e:
            return Response(e.as_body(), status=e.status_code)

        return Response({
            "valid": result.valid,
            "errors": [err.as_dict() for err in result.errors],
            "corrections": [c.as_dict() for c in result.corrections],
            "validatedItems": [
                ValidatedItemOut.from_item(i).model_dump(mode="json", by_alias=True)
                for i in result.validated_items
            ],
            "correctedSubtotal": str(result.corrected_subtotal),
            "message": (
                "Cart validated successfully" if result.valid
                else f"Validation completed with {len(result.errors)} error(s)"
            ),
        })


# ---------------- Promo ---------------- #

class PromoValidateView(APIView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "promo"

    def post(self, request):
        try:
            dto = PromoValidateIn.model_validate(request.data)
        except ValidationError as e:
            return _invalid(e)
        try:
            quote = quote_promo(get_repository().get_promo(dto.code), dto.subtotal)
        except PromoCodeError as e:
            return Response({"valid": False, "error": str(e)}, status=status.HTTP_400_BAD_REQUEST)
        return Response({
            "valid": True,
            "code": quote.code,
            "discount": str(quote.discount),
            "description": quote.description,
        })
