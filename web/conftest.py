import pytest
from django.core.cache import cache

from apps.orders.http_adapters import reset_breakers

CATALOG = [
    {"id": "p1", "name": "Classic Tee", "price": "50.00", "inStock": True,
     "image": "https://cdn.example.com/p1.jpg", "sizes": ["S", "M", "L"], "colors": ["black", "white"]},
    {"id": "p2", "name": "Logo Cap", "price": "25.00", "inStock": True},
    {"id": "p3", "name": "Sold Out Hoodie", "price": "120.00", "inStock": False},
]


@pytest.fixture(autouse=True)
def use_stubs_for_tests(settings):
    settings.USE_HTTP_ADAPTERS = False
    settings.CATALOG_FIXTURES = CATALOG
    settings.SHIPPING_RATES = {"standard": "10.00", "express": "25.00", "pickup": "0.00"}
    settings.STORE_CURRENCY = "GHS"
    settings.STRIPE_SECRET_KEY = "sk_test_123"
    settings.STRIPE_WEBHOOK_SECRET = "whsec_test"
    settings.PAYSTACK_SECRET_KEY = "sk_paystack_test"
    settings.MOBILE_MONEY_WEBHOOK_SECRET = "mm_secret"
    settings.SENDGRID_API_KEY = ""
    settings.ADMIN_ORDER_EMAIL = "admin@shop.test"
    settings.EMAIL_BACKEND = "django.core.mail.backends.locmem.EmailBackend"
    settings.MAINTENANCE_MODE = False
    settings.HTTP_RETRY_BACKOFF_BASE = 0
    settings.HTTP_RETRY_MAX_SLEEP = 0
    reset_breakers()
    cache.clear()
    yield
    reset_breakers()
    cache.clear()


@pytest.fixture
def shipping():
    return {
        "fullName": "Ama Mensah",
        "email": "ama@example.com",
        "phone": "0241234567",
        "addressLine1": "12 Ring Road",
        "city": "Accra",
        "region": "Greater Accra",
    }


@pytest.fixture
def checkout_body(shipping):
    return {
        "items": [{"productId": "p1", "quantity": 2, "clientPrice": 999}],
        "shipping": shipping,
        "deliveryMethod": "standard",
    }


@pytest.fixture
def make_draft():
    from decimal import Decimal

    from apps.orders.domain import (
        CheckoutDraft, Identity, PaymentMethod, ShippingInfo, Totals, ValidatedItem,
    )

    def build(key="h_key1", user_id=None, method=PaymentMethod.CARD_PAYSTACK, promo_code=None,
              discount=Decimal("0")):
        return CheckoutDraft(
            method=method,
            items=[ValidatedItem("p1", "Classic Tee", Decimal("50.00"), 2, size="M")],
            shipping=ShippingInfo("Ama Mensah", "ama@example.com", "0241234567", "12 Ring Road", "Accra"),
            totals=Totals.compute(Decimal("100.00"), Decimal("10.00"), discount),
            idempotency_key=key,
            currency="GHS",
            delivery_method="standard",
            identity=Identity(user_id) if user_id else None,
            promo_code=promo_code,
        )

    return build


@pytest.fixture
def make_order(make_draft):
    """Persist a PENDING order; the provider reference is attached unless ``reference=None``."""
    from apps.orders.repository import OrderRepository

    counter = {"n": 0}

    def create(reference="", **kw):
        counter["n"] += 1
        kw.setdefault("key", f"h_test{counter['n']}")
        draft = make_draft(**kw)
        repo = OrderRepository("SOG")
        order = repo.create_order(draft)
        if reference is not None:
            repo.attach_provider_reference(order.id, draft.method, reference or order.order_number)
        return repo.get(order.id)

    return create
