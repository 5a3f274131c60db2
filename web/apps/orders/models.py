import uuid
from decimal import Decimal

from django.db import models
from django.db.models import Q

from .domain import Totals


class AddressModel(models.Model):
    """Shipping destination snapshot, owned by the order that references it."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user_id = models.CharField(max_length=128, null=True, blank=True, db_index=True)
    full_name = models.CharField(max_length=200)
    email = models.EmailField(max_length=254)
    phone = models.CharField(max_length=32, blank=True, default="")
    address_line1 = models.CharField(max_length=255)
    address_line2 = models.CharField(max_length=255, null=True, blank=True)
    city = models.CharField(max_length=120)
    region = models.CharField(max_length=120, null=True, blank=True)
    postal_code = models.CharField(max_length=32, blank=True, default="")
    country = models.CharField(max_length=80, default="Ghana")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "addresses"


class PromoCodeModel(models.Model):
    class DiscountType(models.TextChoices):
        PERCENTAGE = "PERCENTAGE"
        FIXED = "FIXED"

    code = models.CharField(max_length=40, unique=True)
    description = models.CharField(max_length=255, blank=True, default="")
    discount_type = models.CharField(max_length=16, choices=DiscountType.choices)
    discount_value = models.DecimalField(max_digits=10, decimal_places=2)
    min_purchase = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    max_discount = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    used_count = models.PositiveIntegerField(default=0)
    usage_limit = models.PositiveIntegerField(null=True, blank=True)
    is_active = models.BooleanField(default=True)
    valid_from = models.DateTimeField(null=True, blank=True)
    valid_until = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "promo_codes"

    def save(self, *args, **kwargs):
        self.code = self.code.strip().upper()
        super().save(*args, **kwargs)


class OrderModel(models.Model):
    # UUID PK exposed in the API; doubles as the capability token for guest orders
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order_number = models.CharField(max_length=40, unique=True)
    user_id = models.CharField(max_length=128, null=True, blank=True, db_index=True)
    email = models.EmailField(max_length=254)
    phone = models.CharField(max_length=32, blank=True, default="")

    class Status(models.TextChoices):
        PENDING = "PENDING"
        PROCESSING = "PROCESSING"
        SHIPPED = "SHIPPED"
        DELIVERED = "DELIVERED"
        CANCELLED = "CANCELLED"
        REFUNDED = "REFUNDED"

    class PaymentStatus(models.TextChoices):
        PENDING = "PENDING"
        PROCESSING = "PROCESSING"
        COMPLETED = "COMPLETED"
        FAILED = "FAILED"
        REFUNDED = "REFUNDED"

    class PaymentMethod(models.TextChoices):
        CARD_STRIPE = "card-stripe"
        CARD_PAYSTACK = "card-paystack"
        MOBILE_MONEY = "mobile_money"

    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    payment_status = models.CharField(
        max_length=16, choices=PaymentStatus.choices, default=PaymentStatus.PENDING
    )
    payment_method = models.CharField(max_length=16, choices=PaymentMethod.choices)
    payment_channel = models.CharField(max_length=16, default="card")

    currency = models.CharField(max_length=3, default="GHS")
    subtotal = models.DecimalField(max_digits=12, decimal_places=2)
    shipping_cost = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    discount_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    total_amount = models.DecimalField(max_digits=12, decimal_places=2)

    promo_code = models.CharField(max_length=40, null=True, blank=True)
    delivery_method = models.CharField(max_length=32, null=True, blank=True)

    # Provider correlation ids: at most one populated, written once
    stripe_session_id = models.CharField(max_length=255, null=True, blank=True, unique=True)
    paystack_reference = models.CharField(max_length=255, null=True, blank=True, unique=True)
    mobile_money_transaction_id = models.CharField(max_length=64, null=True, blank=True, unique=True)
    provider_payment_id = models.CharField(max_length=255, null=True, blank=True)
    # Hosted payment page of the current session
    payment_url = models.URLField(max_length=1024, null=True, blank=True)
    payment_access_code = models.CharField(max_length=128, null=True, blank=True)
    mobile_money_provider = models.CharField(max_length=32, null=True, blank=True)
    mobile_money_phone = models.CharField(max_length=32, null=True, blank=True)

    # NULL once the payment has failed; a new checkout may then take the key
    idempotency_key = models.CharField(max_length=80, unique=True, null=True, blank=True)
    webhook_processed = models.BooleanField(default=False)
    email_sent = models.BooleanField(default=False)

    shipping_address = models.OneToOneField(
        AddressModel, on_delete=models.PROTECT, related_name="order"
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    paid_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "orders"
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(
                condition=Q(subtotal__gte=0)
                & Q(shipping_cost__gte=0)
                & Q(discount_amount__gte=0)
                & Q(total_amount__gte=0),
                name="orders_money_non_negative",
            ),
        ]

    def totals_consistent(self) -> bool:
        expected = Totals.compute(self.subtotal, self.shipping_cost, self.discount_amount)
        return expected.total_amount == self.total_amount

    @property
    def provider_reference(self) -> str | None:
        return self.stripe_session_id or self.paystack_reference or self.mobile_money_transaction_id


class OrderItemModel(models.Model):
    """Order line with product details snapshotted at checkout."""

    order = models.ForeignKey(OrderModel, on_delete=models.CASCADE, related_name="items")
    position = models.PositiveSmallIntegerField(default=0)
    product_id = models.CharField(max_length=64)
    product_name = models.CharField(max_length=255)
    product_image = models.CharField(max_length=500, null=True, blank=True)
    unit_price = models.DecimalField(max_digits=12, decimal_places=2)
    quantity = models.PositiveIntegerField()
    size = models.CharField(max_length=32, null=True, blank=True)
    color = models.CharField(max_length=32, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "order_items"
        ordering = ["position"]

    @property
    def line_total(self):
        return self.unit_price * self.quantity
