"""API tests for the checkout endpoints.

Providers are faked at their seams: ``PaystackClient.initialize_transaction``
for Paystack and the ``stripe`` SDK resources for Stripe. The catalog is the
in-memory one built from ``settings.CATALOG_FIXTURES``.
"""
import hashlib
import hmac
import json
from decimal import Decimal
from types import SimpleNamespace

import httpx
import pytest
import stripe

from apps.monitoring.maintenance import set_maintenance
from apps.orders.domain import PaymentInitializationError
from apps.orders.http_adapters import PaystackClient
from apps.orders.models import AddressModel, OrderModel, PromoCodeModel

CARD_URL = "/api/checkout/card/"
PAYSTACK_URL = "/api/checkout/paystack/"
MOMO_URL = "/api/checkout/mobile-money/"

pytestmark = pytest.mark.django_db


@pytest.fixture
def paystack_calls(monkeypatch):
    calls = []

    def fake_init(self, payload):
        calls.append(payload)
        return {
            "authorization_url": "https://checkout.paystack.com/abc",
            "access_code": "abc",
            "reference": payload["reference"],
        }

    monkeypatch.setattr(PaystackClient, "initialize_transaction", fake_init, raising=True)
    return calls


@pytest.fixture
def stripe_calls(monkeypatch):
    calls = {"session": [], "coupon": []}

    def fake_session(**kw):
        calls["session"].append(kw)
        return SimpleNamespace(id="cs_test_1", url="https://checkout.stripe.com/c/pay/cs_test_1")

    def fake_coupon(**kw):
        calls["coupon"].append(kw)
        return SimpleNamespace(id="co_test_1")

    monkeypatch.setattr(stripe.checkout.Session, "create", fake_session)
    monkeypatch.setattr(stripe.Coupon, "create", fake_coupon)
    return calls


def post(client, url, body, **headers):
    return client.post(url, data=body, content_type="application/json", **headers)


def test_empty_cart_is_rejected(client, checkout_body, stripe_calls):
    checkout_body["items"] = []
    r = post(client, CARD_URL, checkout_body)
    assert r.status_code == 400
    assert r.json()["error"] == "Cart is empty"
    assert OrderModel.objects.count() == 0
    assert stripe_calls["session"] == []


def test_paystack_happy_path_charges_catalog_price(client, checkout_body, paystack_calls):
    r = post(client, PAYSTACK_URL, checkout_body)
    assert r.status_code == 201
    body = r.json()
    assert body["authorizationUrl"] == "https://checkout.paystack.com/abc"
    assert body["accessCode"] == "abc"
    assert body["reference"] == body["orderNumber"]
    assert body["corrections"][0]["field"] == "price"

    order = OrderModel.objects.get(id=body["orderId"])
    assert order.subtotal == Decimal("100.00")
    assert order.shipping_cost == Decimal("10.00")
    assert order.total_amount == Decimal("110.00")
    assert (order.status, order.payment_status) == ("PENDING", "PENDING")
    assert order.paystack_reference == order.order_number
    assert order.order_number.startswith("SOG-")

    (payload,) = paystack_calls
    assert payload["amount"] == 11000
    assert payload["currency"] == "GHS"
    assert payload["reference"] == order.order_number
    assert payload["email"] == "ama@example.com"


def test_paystack_mobile_money_channel_sends_custom_fields(client, checkout_body, paystack_calls):
    checkout_body["paymentChannel"] = "mobile_money"
    checkout_body["mobileMoney"] = {"provider": "MTN", "phone": "024 123 4567"}
    r = post(client, PAYSTACK_URL, checkout_body)
    assert r.status_code == 201
    payload = paystack_calls[0]
    assert payload["channels"] == ["mobile_money"]
    values = {f["variable_name"]: f["value"] for f in payload["metadata"]["custom_fields"]}
    assert values == {"mobile_money_provider": "mtn", "mobile_money_phone": "0241234567"}


def test_same_cart_twice_returns_409_with_first_order(client, checkout_body, paystack_calls):
    first = post(client, PAYSTACK_URL, checkout_body).json()
    r = post(client, PAYSTACK_URL, checkout_body)
    assert r.status_code == 409
    assert r.json()["orderId"] == first["orderId"]
    assert r.json()["orderNumber"] == first["orderNumber"]
    assert OrderModel.objects.count() == 1
    assert len(paystack_calls) == 1


def test_idempotency_key_header_dedupes_across_payloads(client, checkout_body, paystack_calls):
    r1 = post(client, PAYSTACK_URL, checkout_body, HTTP_IDEMPOTENCY_KEY="attempt-0001")
    checkout_body["items"] = [{"productId": "p2", "quantity": 1}]
    r2 = post(client, PAYSTACK_URL, checkout_body, HTTP_IDEMPOTENCY_KEY="attempt-0001")
    assert r1.status_code == 201
    assert r2.status_code == 409
    assert r2.json()["orderId"] == r1.json()["orderId"]


def test_provider_failure_deletes_order(client, checkout_body, monkeypatch):
    def boom(self, payload):
        raise PaymentInitializationError("Invalid key")

    monkeypatch.setattr(PaystackClient, "initialize_transaction", boom, raising=True)
    r = post(client, PAYSTACK_URL, checkout_body)
    assert r.status_code == 500
    assert r.json()["error"] == "Invalid key"
    assert OrderModel.objects.count() == 0
    assert AddressModel.objects.count() == 1


def test_retry_after_provider_failure_can_succeed(client, checkout_body, monkeypatch, paystack_calls):
    original = PaystackClient.initialize_transaction

    def fail_once(self, payload):
        monkeypatch.setattr(PaystackClient, "initialize_transaction", original)
        raise PaymentInitializationError("Temporarily unavailable")

    monkeypatch.setattr(PaystackClient, "initialize_transaction", fail_once)
    assert post(client, PAYSTACK_URL, checkout_body).status_code == 500
    assert post(client, PAYSTACK_URL, checkout_body).status_code == 201
    assert OrderModel.objects.count() == 1


def test_failing_lines_are_all_listed(client, checkout_body, paystack_calls):
    checkout_body["items"] = [
        {"productId": "missing", "quantity": 1},
        {"productId": "p3", "quantity": 1},
        {"productId": "p1", "quantity": 1, "size": "XXL"},
    ]
    r = post(client, PAYSTACK_URL, checkout_body)
    assert r.status_code == 400
    details = r.json()["details"]
    assert {d["productId"] for d in details} == {"missing", "p3", "p1"}
    assert OrderModel.objects.count() == 0


def test_schema_errors_are_400(client, checkout_body):
    checkout_body["shipping"]["email"] = "not-an-email"
    r = post(client, PAYSTACK_URL, checkout_body)
    assert r.status_code == 400
    assert r.json()["code"] == "VALIDATION_FAILED"
    assert r.json()["details"]


def test_unknown_delivery_method(client, checkout_body, paystack_calls):
    checkout_body["deliveryMethod"] = "drone"
    r = post(client, PAYSTACK_URL, checkout_body)
    assert r.status_code == 400
    assert "delivery method" in r.json()["error"]


def test_promo_discount_is_computed_server_side(client, checkout_body, paystack_calls):
    PromoCodeModel.objects.create(code="SAVE10", discount_type="PERCENTAGE", discount_value=Decimal("10"))
    checkout_body["promoCode"] = " save10 "
    checkout_body["discountAmount"] = "100.00"
    r = post(client, PAYSTACK_URL, checkout_body)
    assert r.status_code == 201
    order = OrderModel.objects.get(id=r.json()["orderId"])
    assert order.discount_amount == Decimal("10.00")
    assert order.total_amount == Decimal("100.00")
    assert order.promo_code == "SAVE10"
    assert paystack_calls[0]["amount"] == 10000
    # counted only once the payment completes
    assert PromoCodeModel.objects.get(code="SAVE10").used_count == 0


def test_invalid_promo_is_rejected(client, checkout_body, paystack_calls):
    checkout_body["promoCode"] = "NOPE"
    r = post(client, PAYSTACK_URL, checkout_body)
    assert r.status_code == 400
    assert r.json()["error"] == "Invalid promo code"


def test_stripe_session_line_items(client, checkout_body, stripe_calls):
    r = post(client, CARD_URL, checkout_body)
    assert r.status_code == 201
    body = r.json()
    assert body["url"].startswith("https://checkout.stripe.com/")
    assert body["sessionId"] == "cs_test_1"

    kw = stripe_calls["session"][0]
    amounts = [(li["price_data"]["unit_amount"], li["quantity"]) for li in kw["line_items"]]
    assert amounts == [(5000, 2), (1000, 1)]
    assert kw["line_items"][0]["price_data"]["currency"] == "ghs"
    assert kw["client_reference_id"] == body["orderId"]
    assert kw["idempotency_key"] == f"checkout-{body['orderId']}"
    assert "discounts" not in kw
    assert OrderModel.objects.get(id=body["orderId"]).stripe_session_id == "cs_test_1"


def test_stripe_discount_uses_one_off_coupon(client, checkout_body, stripe_calls):
    PromoCodeModel.objects.create(code="FIVE", discount_type="FIXED", discount_value=Decimal("5"))
    checkout_body["promoCode"] = "FIVE"
    assert post(client, CARD_URL, checkout_body).status_code == 201
    coupon = stripe_calls["coupon"][0]
    assert coupon["amount_off"] == 500 and coupon["duration"] == "once"
    assert stripe_calls["session"][0]["discounts"] == [{"coupon": "co_test_1"}]


def test_stripe_error_deletes_order(client, checkout_body, monkeypatch):
    def fail(**kw):
        raise stripe.APIConnectionError("network down")

    monkeypatch.setattr(stripe.checkout.Session, "create", fail)
    r = post(client, CARD_URL, checkout_body)
    assert r.status_code == 500
    assert OrderModel.objects.count() == 0


def test_unconfigured_provider_is_500_before_persisting(client, checkout_body, settings):
    settings.STRIPE_SECRET_KEY = ""
    r = post(client, CARD_URL, checkout_body)
    assert r.status_code == 500
    assert r.json()["error"] == "Stripe is not configured"
    assert AddressModel.objects.count() == 0


def test_mobile_money_returns_202_pending(client, checkout_body):
    checkout_body["mobileMoney"] = {"provider": "vodafone", "phone": "0201234567"}
    r = post(client, MOMO_URL, checkout_body)
    assert r.status_code == 202
    body = r.json()
    assert body["transactionId"].startswith("MM-")
    assert body["paymentStatus"] == "PENDING"
    order = OrderModel.objects.get(id=body["orderId"])
    assert order.mobile_money_transaction_id == body["transactionId"]
    assert order.mobile_money_provider == "vodafone"
    assert order.payment_channel == "mobile_money"


def test_mobile_money_requires_wallet_details(client, checkout_body):
    r = post(client, MOMO_URL, checkout_body)
    assert r.status_code == 400
    checkout_body["mobileMoney"] = {"provider": "mtn", "phone": "+233241234567"}
    r = post(client, MOMO_URL, checkout_body)
    assert r.status_code == 400
    assert OrderModel.objects.count() == 0


def test_maintenance_mode_blocks_checkout(client, checkout_body, paystack_calls):
    set_maintenance(True, ttl=60)
    r = post(client, PAYSTACK_URL, checkout_body)
    assert r.status_code == 503
    assert r.json()["code"] == "MAINTENANCE"
    assert OrderModel.objects.count() == 0


def test_catalog_outage_is_503(client, checkout_body, settings, monkeypatch):
    settings.USE_HTTP_ADAPTERS = True
    settings.CATALOG_BASE_URL = "http://catalog:9001"

    def down(self, method, url, **kw):
        raise httpx.ConnectError("boom")

    monkeypatch.setattr(httpx.Client, "request", down, raising=True)
    r = post(client, PAYSTACK_URL, checkout_body)
    assert r.status_code == 503
    assert OrderModel.objects.count() == 0


def test_empty_cart_is_400_even_when_provider_is_not_configured(client, checkout_body, settings):
    settings.STRIPE_SECRET_KEY = ""
    checkout_body["items"] = []
    r = post(client, CARD_URL, checkout_body)
    assert r.status_code == 400
    assert r.json()["error"] == "Cart is empty"


def test_huge_client_price_is_corrected_not_an_error(client, checkout_body, paystack_calls):
    checkout_body["items"] = [{"productId": "p1", "quantity": 2, "clientPrice": 1e30}]
    r = post(client, PAYSTACK_URL, checkout_body)
    assert r.status_code == 201
    assert [c["field"] for c in r.json()["corrections"]] == ["price"]
    assert paystack_calls[0]["amount"] == 11000


def test_duplicate_checkout_returns_session_to_resume(client, checkout_body, paystack_calls):
    first = post(client, PAYSTACK_URL, checkout_body).json()
    r = post(client, PAYSTACK_URL, checkout_body)
    assert r.status_code == 409
    body = r.json()
    assert body["orderId"] == first["orderId"]
    assert body["paymentStatus"] == "PENDING"
    assert body["paymentUrl"] == "https://checkout.paystack.com/abc"
    assert body["accessCode"] == "abc"
    assert body["reference"] == first["reference"]


def test_resubmit_after_failed_payment_creates_new_order(client, checkout_body):
    checkout_body["mobileMoney"] = {"provider": "mtn", "phone": "0241234567"}
    first = post(client, MOMO_URL, checkout_body)
    assert first.status_code == 202

    raw = json.dumps({"transactionId": first.json()["transactionId"], "status": "FAILED"}).encode()
    sig = hmac.new(b"mm_secret", raw, hashlib.sha256).hexdigest()
    r = client.post(
        "/api/webhooks/mobile-money/", data=raw, content_type="application/json",
        HTTP_X_MOBILEMONEY_SIGNATURE=sig,
    )
    assert r.json()["outcome"] == "failed"

    again = post(client, MOMO_URL, checkout_body)
    assert again.status_code == 202
    assert again.json()["orderId"] != first.json()["orderId"]
    failed = OrderModel.objects.get(id=first.json()["orderId"])
    assert failed.payment_status == "FAILED"
    assert failed.idempotency_key is None
