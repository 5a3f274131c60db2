"""Repository layer for orders, addresses and promo codes.

``OrderRepository`` is the only code that touches the order tables. Every
state change it exposes is a single conditional ``UPDATE`` so concurrent
checkouts and duplicated webhook deliveries are arbitrated by the database,
not by read-then-write logic in Python.
"""

import logging
import secrets
import string
import time

from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.db.models import DateTimeField, F, Q, Value
from django.db.models.functions import Coalesce
from django.utils import timezone

from .domain import (
    CheckoutDraft,
    DuplicateOrderError,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    PROVIDER_REFERENCE_FIELDS,
    ProviderReferenceConflict,
)
from .models import AddressModel, OrderItemModel, OrderModel, PromoCodeModel
from .promotions import normalize_code

logger = logging.getLogger("orders.repository")

_BASE36 = string.digits + string.ascii_uppercase


def _base36(n: int) -> str:
    out = ""
    while True:
        n, r = divmod(n, 36)
        out = _BASE36[r] + out
        if n == 0:
            return out


def generate_order_number(prefix: str = "SOG") -> str:
    """Return ``<prefix>-<base36 ms timestamp>-<4 random base36 chars>``."""
    stamp = _base36(int(time.time() * 1000))
    rand = "".join(secrets.choice(_BASE36) for _ in range(4))
    return f"{prefix}-{stamp}-{rand}"


class OrderRepository:
    """Persist and mutate orders through the Django ORM."""

    ORDER_NUMBER_ATTEMPTS = 3

    def __init__(self, order_number_prefix: str = "SOG"):
        self.order_number_prefix = order_number_prefix

    # ---- creation ----
    def create_order(self, draft: CheckoutDraft) -> OrderModel:
        """Create the shipping address, then the PENDING order and its lines.

        The address is committed on its own first: if the order insert fails
        the address is left orphaned, but an order never exists without its
        address.

        Raises:
            DuplicateOrderError: When another order already holds
                ``draft.idempotency_key`` (including a concurrent insert that
                won the race).
        """
        address = self._create_address(draft)

        for attempt in range(self.ORDER_NUMBER_ATTEMPTS):
            try:
                with transaction.atomic():
                    order = OrderModel.objects.create(
                        order_number=generate_order_number(self.order_number_prefix),
                        user_id=draft.user_id,
                        email=draft.shipping.email,
                        phone=draft.shipping.phone,
                        status=OrderStatus.PENDING.value,
                        payment_status=PaymentStatus.PENDING.value,
                        payment_method=draft.method.value,
                        payment_channel=draft.channel,
                        currency=draft.currency,
                        subtotal=draft.totals.subtotal,
                        shipping_cost=draft.totals.shipping_cost,
                        discount_amount=draft.totals.discount_amount,
                        total_amount=draft.totals.total_amount,
                        promo_code=draft.promo_code,
                        delivery_method=draft.delivery_method,
                        mobile_money_provider=draft.mobile_money.provider if draft.mobile_money else None,
                        mobile_money_phone=draft.mobile_money.phone if draft.mobile_money else None,
                        idempotency_key=draft.idempotency_key,
                        shipping_address=address,
                    )
                    OrderItemModel.objects.bulk_create([
                        OrderItemModel(
                            order=order,
                            position=i,
                            product_id=item.product_id,
                            product_name=item.name,
                            product_image=item.image,
                            unit_price=item.unit_price,
                            quantity=item.quantity,
                            size=item.size,
                            color=item.color,
                        )
                        for i, item in enumerate(draft.items)
                    ])
                return order
            except IntegrityError:
                existing = self.check_duplicate_order(draft.idempotency_key)
                if existing is not None:
                    raise DuplicateOrderError.for_order(existing)
                # order_number collision: try a fresh one
                if attempt == self.ORDER_NUMBER_ATTEMPTS - 1:
                    raise
                logger.warning("order number collision", extra={"attempt": attempt + 1})
        raise RuntimeError("unreachable")

    def _create_address(self, draft: CheckoutDraft) -> AddressModel:
        s = draft.shipping
        return AddressModel.objects.create(
            user_id=draft.user_id,
            full_name=s.full_name,
            email=s.email,
            phone=s.phone,
            address_line1=s.address_line1,
            address_line2=s.address_line2,
            city=s.city,
            region=s.region,
            postal_code=s.postal_code,
            country=s.country,
        )

    # ---- reads ----
    def _base_qs(self):
        return OrderModel.objects.select_related("shipping_address").prefetch_related("items")

    def get(self, order_id) -> OrderModel | None:
        """Fetch an order without any ownership check (internal use)."""
        try:
            return self._base_qs().filter(pk=order_id).first()
        except (ValidationError, ValueError):
            return None

    def get_order_by_id(self, order_id, requesting_user_id: str | None = None) -> OrderModel | None:
        """Fetch an order the caller is allowed to see.

        Orders with an owner are only returned to that owner; anyone else gets
        None, exactly as if the order did not exist. Guest orders are returned
        to whoever holds the id.
        """
        order = self.get(order_id)
        if order is None:
            return None
        if order.user_id and order.user_id != requesting_user_id:
            return None
        return order

    def check_duplicate_order(self, idempotency_key: str) -> OrderModel | None:
        return OrderModel.objects.filter(idempotency_key=idempotency_key).first()

    def find_by_provider_reference(
        self, method: PaymentMethod, reference: str, order_hint: str | None = None
    ) -> OrderModel | None:
        """Locate the order a provider notification refers to.

        Lookup is by the method's correlation column. Paystack references are
        the order number, so the order number also matches before the
        reference column is written. ``order_hint`` (an order id echoed back
        by the provider) is only honoured for an order of the same method
        whose correlation column is still empty.
        """
        if not reference:
            return None
        ref_field = PROVIDER_REFERENCE_FIELDS[method]
        cond = Q(**{ref_field: reference})
        if method is PaymentMethod.CARD_PAYSTACK:
            cond |= Q(order_number=reference, paystack_reference__isnull=True)
        order = self._base_qs().filter(cond, payment_method=method.value).first()
        if order is not None or not order_hint:
            return order
        try:
            return self._base_qs().filter(
                pk=order_hint, payment_method=method.value, **{f"{ref_field}__isnull": True}
            ).first()
        except (ValidationError, ValueError):
            return None

    def find_by_order_number(self, order_number: str) -> OrderModel | None:
        return self._base_qs().filter(order_number=order_number).first()

    def list_orders_for_user(self, user_id: str):
        return self._base_qs().filter(user_id=user_id).order_by("-created_at")

    # ---- mutations ----
    def attach_provider_reference(
        self,
        order_id,
        method: PaymentMethod,
        reference: str,
        *,
        payment_url: str | None = None,
        access_code: str | None = None,
    ) -> None:
        """Write the provider correlation id once.

        ``payment_url`` and ``access_code`` (the hosted page of the session)
        are stored in the same statement. Re-attaching the same value is a
        no-op.

        Raises:
            ProviderReferenceConflict: If the order already carries a
                different reference (for any provider).
        """
        ref_field = PROVIDER_REFERENCE_FIELDS[method]
        empty = Q()
        for f in PROVIDER_REFERENCE_FIELDS.values():
            empty &= Q(**{f"{f}__isnull": True})
        values = {ref_field: reference, "updated_at": timezone.now()}
        if payment_url:
            values["payment_url"] = payment_url
        if access_code:
            values["payment_access_code"] = access_code
        updated = OrderModel.objects.filter(pk=order_id).filter(empty).update(**values)
        if updated:
            return
        current = OrderModel.objects.filter(pk=order_id).values_list(ref_field, flat=True).first()
        if current != reference:
            raise ProviderReferenceConflict(
                f"order {order_id} already has a provider reference"
            )

    def update_order_status(self, order_id, status: OrderStatus) -> bool:
        updated = OrderModel.objects.filter(pk=order_id).update(
            status=OrderStatus(status).value, updated_at=timezone.now()
        )
        return updated == 1

    def update_payment_status(
        self,
        order_id,
        payment_status: PaymentStatus,
        provider_payment_id: str | None = None,
        *,
        order_status: OrderStatus | None = None,
        from_statuses: tuple[PaymentStatus, ...] | None = None,
    ) -> bool:
        """Set the payment status and mark the order as webhook-processed.

        Args:
            order_id: Order primary key.
            payment_status: New payment status.
            provider_payment_id: Provider payment intent / transaction id to
                attach, if supplied.
            order_status: Optional fulfillment status to set in the same
                statement.
            from_statuses: When given, the update only applies if the current
                payment status is one of these. This is what makes a
                transition happen exactly once under concurrent deliveries.

        Returns:
            bool: True when this call performed the update.
        """
        now = timezone.now()
        values = {
            "payment_status": PaymentStatus(payment_status).value,
            "webhook_processed": True,
            "updated_at": now,
        }
        if provider_payment_id:
            values["provider_payment_id"] = provider_payment_id
        if order_status is not None:
            values["status"] = OrderStatus(order_status).value
        if payment_status is PaymentStatus.COMPLETED:
            values["paid_at"] = Coalesce(F("paid_at"), Value(now, output_field=DateTimeField()))
        if payment_status is PaymentStatus.FAILED:
            # release the checkout key so resubmitting the same cart creates a new order
            values["idempotency_key"] = None

        qs = OrderModel.objects.filter(pk=order_id)
        if from_statuses is not None:
            qs = qs.filter(payment_status__in=[s.value for s in from_statuses])
        return qs.update(**values) == 1

    def claim_email_dispatch(self, order_id) -> bool:
        """Flip ``email_sent`` False -> True; only one caller ever wins."""
        return OrderModel.objects.filter(pk=order_id, email_sent=False).update(
            email_sent=True, updated_at=timezone.now()
        ) == 1

    def release_email_dispatch(self, order_id) -> None:
        OrderModel.objects.filter(pk=order_id).update(email_sent=False, updated_at=timezone.now())

    def delete_order(self, order_id) -> bool:
        """Compensating delete for an order whose payment never started."""
        deleted, _ = OrderModel.objects.filter(
            pk=order_id, payment_status=PaymentStatus.PENDING.value
        ).delete()
        return deleted > 0

    # ---- promo codes ----
    def get_promo(self, code: str) -> PromoCodeModel | None:
        return PromoCodeModel.objects.filter(code=normalize_code(code)).first()

    def increment_promo_usage(self, code: str) -> bool:
        """Atomically add one use to ``code``.

        The increment is a single ``UPDATE ... SET used_count = used_count + 1``
        guarded by the usage limit, so concurrent redemptions are all counted
        and the limit is never exceeded.

        Returns:
            bool: False when the code is unknown or already at its limit.
        """
        updated = (
            PromoCodeModel.objects.filter(code=normalize_code(code))
            .filter(Q(usage_limit__isnull=True) | Q(used_count__lt=F("usage_limit")))
            .update(used_count=F("used_count") + 1)
        )
        return updated == 1
