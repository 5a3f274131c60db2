"""Payment reconciliation.

Turns authenticated provider signals (webhooks, or a synchronous verify call)
into payment state transitions on the matching order:

    PENDING/PROCESSING/FAILED --success--> COMPLETED (order -> PROCESSING, paid_at set)
    PENDING/PROCESSING        --failure--> FAILED
    COMPLETED                 --anything-> no-op

Each transition is one conditional UPDATE, so only one of several concurrent
or replayed deliveries performs it. Side effects (promo redemption and
confirmation emails) run only for the delivery that won the transition.
"""

import logging
from enum import Enum

import httpx
from django.db import DatabaseError

from .domain import (
    NotificationOutcome,
    OrderStatus,
    PaymentGatewayPort,
    PaymentMethod,
    PaymentNotification,
    PaymentStatus,
    ProviderReferenceConflict,
    to_minor_units,
)
from .repository import OrderRepository

logger = logging.getLogger("orders.reconciler")


class ReconcileOutcome(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    UNKNOWN_ORDER = "unknown_order"
    REJECTED = "rejected"


# A success may still land after a failure report (provider retried the charge).
COMPLETABLE = (PaymentStatus.PENDING, PaymentStatus.PROCESSING, PaymentStatus.FAILED)
FAILABLE = (PaymentStatus.PENDING, PaymentStatus.PROCESSING)


class PaymentReconciler:
    def __init__(self, repository: OrderRepository, dispatcher=None):
        self.repository = repository
        self.dispatcher = dispatcher

    def apply(self, notification: PaymentNotification) -> ReconcileOutcome:
        """Apply one verified provider notification."""
        if notification.outcome is NotificationOutcome.IGNORED:
            return ReconcileOutcome.IGNORED

        order = self.repository.find_by_provider_reference(
            notification.method, notification.reference, notification.order_hint
        )
        if order is None:
            logger.error(
                "payment notification for unknown order",
                extra={
                    "payment_method": notification.method.value,
                    "reference": notification.reference,
                    "event_type": notification.event_type,
                },
            )
            return ReconcileOutcome.UNKNOWN_ORDER

        if notification.outcome is NotificationOutcome.SUCCEEDED:
            return self._complete(
                order,
                reference=notification.reference,
                provider_payment_id=notification.provider_payment_id,
                amount_minor=notification.amount_minor,
            )
        return self._fail(order, notification.provider_payment_id)

    def verify_order(self, order, gateway: PaymentGatewayPort) -> ReconcileOutcome:
        """Ask the provider about ``order`` and complete it on a confirmed success.

        Anything short of a confirmed success (pending, unknown, provider
        unreachable) leaves the order untouched and returns IGNORED.
        """
        if order.payment_status == PaymentStatus.COMPLETED.value:
            return ReconcileOutcome.DUPLICATE
        reference = order.provider_reference
        if not reference:
            return ReconcileOutcome.IGNORED
        try:
            result = gateway.verify(reference)
        except (httpx.HTTPError, RuntimeError, ValueError) as e:
            logger.warning(
                "payment verification unavailable",
                extra={"order_number": order.order_number, "error": str(e)},
            )
            return ReconcileOutcome.IGNORED
        if not result.success:
            return ReconcileOutcome.IGNORED
        return self._complete(
            order,
            reference=reference,
            provider_payment_id=result.provider_payment_id,
            amount_minor=result.amount_minor,
        )

    def _complete(self, order, *, reference, provider_payment_id, amount_minor) -> ReconcileOutcome:
        expected = to_minor_units(order.total_amount)
        if amount_minor is not None and int(amount_minor) != expected:
            logger.warning(
                "paid amount does not match order total",
                extra={
                    "order_number": order.order_number,
                    "expected_minor": expected,
                    "paid_minor": amount_minor,
                },
            )
            return ReconcileOutcome.REJECTED

        # Located through order number or order hint before checkout stored the reference.
        if reference and order.provider_reference is None:
            try:
                self.repository.attach_provider_reference(
                    order.id, PaymentMethod(order.payment_method), reference
                )
            except ProviderReferenceConflict:
                logger.error(
                    "provider reference conflict",
                    extra={"order_number": order.order_number, "reference": reference},
                )
                return ReconcileOutcome.REJECTED

        won = self.repository.update_payment_status(
            order.id,
            PaymentStatus.COMPLETED,
            provider_payment_id,
            order_status=OrderStatus.PROCESSING,
            from_statuses=COMPLETABLE,
        )
        if not won:
            return ReconcileOutcome.DUPLICATE

        logger.info("payment completed", extra={"order_number": order.order_number})
        self._redeem_promo(order)
        if self.dispatcher is not None:
            self.dispatcher.order_paid(order.id)
        return ReconcileOutcome.COMPLETED

    def _fail(self, order, provider_payment_id) -> ReconcileOutcome:
        won = self.repository.update_payment_status(
            order.id,
            PaymentStatus.FAILED,
            provider_payment_id,
            from_statuses=FAILABLE,
        )
        if not won:
            return ReconcileOutcome.DUPLICATE
        logger.info("payment failed", extra={"order_number": order.order_number})
        return ReconcileOutcome.FAILED

    def _redeem_promo(self, order) -> None:
        if not order.promo_code:
            return
        try:
            counted = self.repository.increment_promo_usage(order.promo_code)
        except DatabaseError:
            logger.exception(
                "promo usage increment failed",
                extra={"order_number": order.order_number, "promo_code": order.promo_code},
            )
            return
        if not counted:
            logger.warning(
                "promo usage not recorded",
                extra={"order_number": order.order_number, "promo_code": order.promo_code},
            )
