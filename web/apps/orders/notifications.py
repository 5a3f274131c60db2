"""Order confirmation emails.

``NotificationDispatcher.order_paid`` is called by the reconciler after the
COMPLETED transition. It sends the customer confirmation and the admin alert
independently and never raises: the order's payment state is final whatever
happens to the emails.

``email_sent`` on the order is claimed before sending, so replayed webhooks
or a concurrent manual resend cannot send twice. The claim is released when
neither email could be sent, which leaves the resend endpoint usable.
"""

import logging

from django.conf import settings
from django.core.mail import EmailMultiAlternatives
from django.template.loader import render_to_string
from django.utils.html import strip_tags

from .domain import MailerPort
from .repository import OrderRepository

logger = logging.getLogger("orders.notifications")


class DjangoMailer:
    """``MailerPort`` over Django's configured email backend."""

    def __init__(self, from_email: str | None = None):
        self.from_email = from_email or settings.DEFAULT_FROM_EMAIL

    def send(self, to: str, subject: str, html: str) -> None:
        msg = EmailMultiAlternatives(subject, strip_tags(html), self.from_email, [to])
        msg.attach_alternative(html, "text/html")
        msg.send(fail_silently=False)


class NotificationDispatcher:
    def __init__(self, repository: OrderRepository, mailer: MailerPort, *, admin_email: str, brand_name: str):
        self.repository = repository
        self.mailer = mailer
        self.admin_email = admin_email
        self.brand_name = brand_name

    def order_paid(self, order_id) -> bool:
        """Send the paid-order emails at most once.

        Returns:
            bool: True when at least one email went out on this call.
        """
        try:
            if not self.repository.claim_email_dispatch(order_id):
                return False
            order = self.repository.get(order_id)
            if order is None:
                return False

            ctx = {
                "order": order,
                "items": list(order.items.all()),
                "address": order.shipping_address,
                "brand_name": self.brand_name,
            }
            customer_ok = self._send(
                order,
                order.email,
                f"Order Confirmation - {order.order_number}",
                render_to_string("orders/emails/customer_confirmation.html", ctx),
            )
            admin_ok = self._send(
                order,
                self.admin_email,
                f"New Order Received - {order.order_number}",
                render_to_string("orders/emails/admin_alert.html", ctx),
            )
            if not (customer_ok or admin_ok):
                self.repository.release_email_dispatch(order_id)
                return False
            return True
        except Exception:
            logger.exception("order notification failed", extra={"order_id": str(order_id)})
            return False

    def _send(self, order, to: str, subject: str, html: str) -> bool:
        if not to:
            return False
        try:
            self.mailer.send(to, subject, html)
        except Exception:
            logger.exception(
                "email send failed",
                extra={"order_number": order.order_number, "subject": subject},
            )
            return False
        return True
