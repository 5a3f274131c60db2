"""Tests for the payment lookup, provider verification and staff endpoints."""
from decimal import Decimal

import pytest

from apps.orders.domain import PaymentMethod, PaymentVerification
from apps.orders.gateways import PaystackGateway
from apps.orders.models import OrderModel, PromoCodeModel

pytestmark = pytest.mark.django_db

VERIFY_URL = "/api/checkout/verify/"


def test_lookup_by_order_id_and_reference(client, make_order):
    order = make_order()
    by_id = client.get(VERIFY_URL, {"orderId": str(order.id)}).json()
    by_ref = client.get(VERIFY_URL, {"reference": order.order_number}).json()
    assert by_id == by_ref
    assert by_id["paid"] is False
    assert by_id["paymentStatus"] == "PENDING"
    assert by_id["totalAmount"] == "110.00"


def test_lookup_by_stripe_session(client, make_order):
    order = make_order(method=PaymentMethod.CARD_STRIPE, reference="cs_lookup")
    r = client.get(VERIFY_URL, {"session_id": "cs_lookup"})
    assert r.json()["orderNumber"] == order.order_number


def test_lookup_requires_a_parameter(client):
    assert client.get(VERIFY_URL).status_code == 400
    assert client.get(VERIFY_URL, {"reference": "nope"}).status_code == 404


def test_verify_payment_completes_on_provider_success(client, make_order, monkeypatch, mailoutbox):
    order = make_order()
    monkeypatch.setattr(
        PaystackGateway, "verify",
        lambda self, ref: PaymentVerification(True, "success", 11000, "4099"),
    )
    r = client.post(f"/api/orders/{order.id}/verify-payment/")
    assert r.status_code == 200
    assert r.json()["paid"] is True
    assert r.json()["outcome"] == "completed"

    again = client.post(f"/api/orders/{order.id}/verify-payment/").json()
    assert again["outcome"] == "duplicate"
    assert len(mailoutbox) == 2


def test_verify_payment_unconfirmed_shows_generic_message(client, make_order, monkeypatch):
    order = make_order()
    monkeypatch.setattr(
        PaystackGateway, "verify", lambda self, ref: PaymentVerification(False, "abandoned")
    )
    body = client.post(f"/api/orders/{order.id}/verify-payment/").json()
    assert body["paid"] is False
    assert "couldn't confirm your payment" in body["message"]
    assert OrderModel.objects.get(id=order.id).payment_status == "PENDING"


def test_mobile_money_verify_stays_pending(client, make_order):
    order = make_order(method=PaymentMethod.MOBILE_MONEY, reference="MM-1-ABCDEFG")
    body = client.post(f"/api/orders/{order.id}/verify-payment/").json()
    assert body["paid"] is False
    assert body["paymentStatus"] == "PENDING"


def test_send_email_requires_staff(client, make_order):
    order = make_order()
    assert client.post(f"/api/orders/{order.id}/send-email/").status_code in (401, 403)


def test_staff_resend_confirmation(admin_client, make_order, mailoutbox):
    order = make_order()
    assert admin_client.post(f"/api/orders/{order.id}/send-email/").status_code == 400

    OrderModel.objects.filter(id=order.id).update(payment_status="COMPLETED")
    r = admin_client.post(f"/api/orders/{order.id}/send-email/")
    assert r.status_code == 200 and r.json()["sent"] is True
    assert len(mailoutbox) == 2
    assert admin_client.post(f"/api/orders/{order.id}/send-email/").status_code == 409


def test_staff_updates_fulfillment_status(admin_client, make_order):
    order = make_order()
    r = admin_client.patch(
        f"/api/orders/{order.id}/status/", data={"status": "SHIPPED"}, content_type="application/json"
    )
    assert r.status_code == 200
    assert r.json()["status"] == "SHIPPED"
    bad = admin_client.patch(
        f"/api/orders/{order.id}/status/", data={"status": "LOST"}, content_type="application/json"
    )
    assert bad.status_code == 400


def test_promo_validate_endpoint(client):
    PromoCodeModel.objects.create(
        code="SAVE10", discount_type="PERCENTAGE", discount_value=Decimal("10"), description="10% off"
    )
    r = client.post("/api/promo/validate/", data={"code": "save10", "subtotal": "80.00"},
                    content_type="application/json")
    assert r.status_code == 200
    assert r.json() == {"valid": True, "code": "SAVE10", "discount": "8.00", "description": "10% off"}

    r = client.post("/api/promo/validate/", data={"code": "nope", "subtotal": "80.00"},
                    content_type="application/json")
    assert r.status_code == 400
    assert r.json()["valid"] is False
