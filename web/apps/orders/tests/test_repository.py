"""Repository tests against the test database.

Covers the guarantees the reconciler and checkout rely on: duplicate keys,
ownership, set-once provider references, conditional status transitions and
the atomic promo counter.
"""
from decimal import Decimal

import pytest

from apps.orders.domain import (
    DuplicateOrderError,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ProviderReferenceConflict,
)
from apps.orders.models import AddressModel, OrderModel, PromoCodeModel
from apps.orders.repository import OrderRepository, generate_order_number

pytestmark = pytest.mark.django_db


@pytest.fixture
def repo():
    return OrderRepository("SOG")


def test_order_number_format():
    number = generate_order_number("SOG")
    prefix, stamp, rand = number.split("-")
    assert prefix == "SOG" and stamp.isalnum() and len(rand) == 4


def test_create_order_persists_header_lines_and_address(repo, make_draft):
    order = repo.create_order(make_draft())
    stored = repo.get(order.id)
    assert stored.status == "PENDING" and stored.payment_status == "PENDING"
    assert stored.total_amount == Decimal("110.00")
    assert stored.totals_consistent()
    assert stored.shipping_address.city == "Accra"
    assert [(i.product_id, i.quantity, i.unit_price) for i in stored.items.all()] == [
        ("p1", 2, Decimal("50.00"))
    ]


def test_duplicate_key_raises_with_existing_ids(repo, make_draft):
    first = repo.create_order(make_draft("h_same"))
    with pytest.raises(DuplicateOrderError) as exc:
        repo.create_order(make_draft("h_same"))
    assert exc.value.order_id == str(first.id)
    assert exc.value.order_number == first.order_number
    assert OrderModel.objects.count() == 1


def test_ownership_rule(repo, make_draft):
    owned = repo.create_order(make_draft("h_owned", user_id="u1"))
    guest = repo.create_order(make_draft("h_guest"))
    assert repo.get_order_by_id(owned.id, "u1") is not None
    assert repo.get_order_by_id(owned.id, "u2") is None
    assert repo.get_order_by_id(owned.id, None) is None
    assert repo.get_order_by_id(guest.id, None) is not None
    assert repo.get_order_by_id("not-a-uuid", "u1") is None


def test_provider_reference_is_set_once(repo, make_draft):
    order = repo.create_order(make_draft())
    repo.attach_provider_reference(order.id, PaymentMethod.CARD_PAYSTACK, order.order_number)
    repo.attach_provider_reference(order.id, PaymentMethod.CARD_PAYSTACK, order.order_number)
    with pytest.raises(ProviderReferenceConflict):
        repo.attach_provider_reference(order.id, PaymentMethod.CARD_PAYSTACK, "other")
    with pytest.raises(ProviderReferenceConflict):
        repo.attach_provider_reference(order.id, PaymentMethod.CARD_STRIPE, "cs_x")


def test_find_paystack_order_by_number_before_reference_is_stored(repo, make_draft):
    order = repo.create_order(make_draft())
    found = repo.find_by_provider_reference(PaymentMethod.CARD_PAYSTACK, order.order_number)
    assert found.id == order.id
    assert repo.find_by_provider_reference(PaymentMethod.CARD_STRIPE, order.order_number) is None


def test_find_by_order_hint_only_without_reference(repo, make_draft):
    order = repo.create_order(make_draft(method=PaymentMethod.CARD_STRIPE))
    assert repo.find_by_provider_reference(PaymentMethod.CARD_STRIPE, "cs_1", str(order.id)).id == order.id
    repo.attach_provider_reference(order.id, PaymentMethod.CARD_STRIPE, "cs_1")
    assert repo.find_by_provider_reference(PaymentMethod.CARD_STRIPE, "cs_2", str(order.id)) is None


def test_conditional_payment_update_happens_once(repo, make_draft):
    order = repo.create_order(make_draft())
    kwargs = dict(order_status=OrderStatus.PROCESSING, from_statuses=(PaymentStatus.PENDING,))
    assert repo.update_payment_status(order.id, PaymentStatus.COMPLETED, "trx_1", **kwargs) is True
    paid_at = repo.get(order.id).paid_at
    assert repo.update_payment_status(order.id, PaymentStatus.COMPLETED, "trx_1", **kwargs) is False

    stored = repo.get(order.id)
    assert stored.paid_at == paid_at is not None
    assert stored.webhook_processed is True
    assert stored.provider_payment_id == "trx_1"
    assert stored.status == "PROCESSING"


def test_email_claim_is_exclusive(repo, make_draft):
    order = repo.create_order(make_draft())
    assert repo.claim_email_dispatch(order.id) is True
    assert repo.claim_email_dispatch(order.id) is False
    repo.release_email_dispatch(order.id)
    assert repo.claim_email_dispatch(order.id) is True


def test_delete_order_keeps_address_and_only_removes_unpaid(repo, make_draft):
    order = repo.create_order(make_draft("h_a"))
    assert repo.delete_order(order.id) is True
    assert repo.get_order_by_id(order.id) is None
    assert AddressModel.objects.count() == 1

    paid = repo.create_order(make_draft("h_b"))
    repo.update_payment_status(paid.id, PaymentStatus.COMPLETED)
    assert repo.delete_order(paid.id) is False


def test_promo_increment_counts_from_stored_value_not_a_stale_read(repo):
    PromoCodeModel.objects.create(code="save10", discount_type="PERCENTAGE", discount_value=Decimal("10"))
    # Both callers read 0 before either increments.
    seen_a = PromoCodeModel.objects.get(code="SAVE10").used_count
    seen_b = PromoCodeModel.objects.get(code="SAVE10").used_count
    assert seen_a == seen_b == 0

    assert repo.increment_promo_usage("SAVE10") is True
    assert repo.increment_promo_usage("save10") is True
    assert PromoCodeModel.objects.get(code="SAVE10").used_count == 2


def test_promo_increment_respects_usage_limit(repo):
    PromoCodeModel.objects.create(
        code="ONCE", discount_type="FIXED", discount_value=Decimal("5"), usage_limit=1
    )
    assert repo.increment_promo_usage("ONCE") is True
    assert repo.increment_promo_usage("ONCE") is False
    assert repo.increment_promo_usage("MISSING") is False
    assert PromoCodeModel.objects.get(code="ONCE").used_count == 1


def test_failed_payment_releases_idempotency_key(repo, make_draft):
    order = repo.create_order(make_draft("h_retry"))
    assert repo.update_payment_status(order.id, PaymentStatus.FAILED) is True
    order.refresh_from_db()
    assert order.idempotency_key is None
    assert repo.check_duplicate_order("h_retry") is None

    retry = repo.create_order(make_draft("h_retry"))
    assert retry.id != order.id
    # Payment may still succeed on the old order after the key was released.
    assert repo.update_payment_status(
        order.id, PaymentStatus.COMPLETED, from_statuses=(PaymentStatus.FAILED,)
    ) is True


def test_duplicate_carries_stored_session(repo, make_draft):
    order = repo.create_order(make_draft("h_resume"))
    repo.attach_provider_reference(
        order.id, PaymentMethod.CARD_PAYSTACK, order.order_number,
        payment_url="https://checkout.paystack.com/xyz", access_code="xyz",
    )
    with pytest.raises(DuplicateOrderError) as exc:
        repo.create_order(make_draft("h_resume"))
    body = exc.value.as_body()
    assert body["paymentUrl"] == "https://checkout.paystack.com/xyz"
    assert body["accessCode"] == "xyz"
    assert body["reference"] == order.order_number
