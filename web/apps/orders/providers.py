"""Service provider helpers for wiring the checkout pipeline with ports.

The factories here read Django settings and return configured collaborators.
When ``settings.USE_HTTP_ADAPTERS`` is truthy the catalog is reached over
HTTP and mail goes through SendGrid (if a key is set); otherwise the
in-process catalog built from ``settings.CATALOG_FIXTURES`` and Django's
email backend are used, which is what tests and local development run on.

Payment gateways are always the real provider variants. A missing secret is
reported by ``ensure_configured`` at checkout time, not here.
"""

from django.conf import settings

from .adapters import InMemoryCatalog
from .cart import CartValidator
from .checkout import CheckoutService
from .domain import CatalogPort, MailerPort, PaymentGatewayPort, PaymentMethod
from .gateways import MobileMoneyGateway, PaystackGateway, StripeCheckoutGateway
from .http_adapters import HttpCatalogClient, PaystackClient, SendGridMailer
from .notifications import DjangoMailer, NotificationDispatcher
from .reconciler import PaymentReconciler
from .repository import OrderRepository


def get_repository() -> OrderRepository:
    return OrderRepository(order_number_prefix=settings.ORDER_NUMBER_PREFIX)


def get_catalog() -> CatalogPort:
    if getattr(settings, "USE_HTTP_ADAPTERS", True):
        return HttpCatalogClient()
    return InMemoryCatalog.from_fixtures(getattr(settings, "CATALOG_FIXTURES", []))


def get_gateway(method: PaymentMethod) -> PaymentGatewayPort:
    if method is PaymentMethod.CARD_STRIPE:
        return StripeCheckoutGateway(
            api_key=settings.STRIPE_SECRET_KEY,
            webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
            public_base_url=settings.PUBLIC_BASE_URL,
        )
    if method is PaymentMethod.CARD_PAYSTACK:
        return PaystackGateway(
            secret_key=settings.PAYSTACK_SECRET_KEY,
            public_base_url=settings.PUBLIC_BASE_URL,
            client=PaystackClient(settings.PAYSTACK_SECRET_KEY),
        )
    return MobileMoneyGateway(webhook_secret=settings.MOBILE_MONEY_WEBHOOK_SECRET)


def get_mailer() -> MailerPort:
    if getattr(settings, "USE_HTTP_ADAPTERS", True) and settings.SENDGRID_API_KEY:
        return SendGridMailer(settings.SENDGRID_API_KEY, settings.SENDGRID_FROM_EMAIL)
    return DjangoMailer()


def get_dispatcher(repository: OrderRepository | None = None) -> NotificationDispatcher:
    return NotificationDispatcher(
        repository or get_repository(),
        get_mailer(),
        admin_email=settings.ADMIN_ORDER_EMAIL,
        brand_name=settings.BRAND_NAME,
    )


def get_checkout_service(method: PaymentMethod) -> CheckoutService:
    """Return a ``CheckoutService`` wired for one payment method."""
    return CheckoutService(
        catalog=get_catalog(),
        gateways={method: get_gateway(method)},
        repository=get_repository(),
        shipping_rates=settings.SHIPPING_RATES,
        currency=settings.STORE_CURRENCY,
        max_quantity=settings.MAX_LINE_QUANTITY,
        idempotency_window=settings.IDEMPOTENCY_WINDOW_SECS,
    )


def get_reconciler() -> PaymentReconciler:
    repository = get_repository()
    return PaymentReconciler(repository, get_dispatcher(repository))


def get_cart_validator() -> CartValidator:
    return CartValidator(get_catalog(), max_quantity=settings.MAX_LINE_QUANTITY)
