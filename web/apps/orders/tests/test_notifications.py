import pytest

from apps.orders.notifications import NotificationDispatcher
from apps.orders.repository import OrderRepository

pytestmark = pytest.mark.django_db


class RecordingMailer:
    def __init__(self, fail_for=()):
        self.sent = []
        self.fail_for = set(fail_for)

    def send(self, to, subject, html):
        if to in self.fail_for:
            raise RuntimeError("provider down")
        self.sent.append((to, subject, html))


def dispatcher(mailer):
    return NotificationDispatcher(OrderRepository(), mailer, admin_email="admin@shop.test", brand_name="Shop")


def test_sends_customer_and_admin_once(make_order):
    order = make_order()
    mailer = RecordingMailer()
    d = dispatcher(mailer)
    assert d.order_paid(order.id) is True
    assert d.order_paid(order.id) is False

    assert [m[0] for m in mailer.sent] == ["ama@example.com", "admin@shop.test"]
    subject, html = mailer.sent[0][1], mailer.sent[0][2]
    assert order.order_number in subject
    assert "Classic Tee" in html and "110.00" in html


def test_one_failure_still_counts_as_sent(make_order):
    order = make_order()
    mailer = RecordingMailer(fail_for={"admin@shop.test"})
    assert dispatcher(mailer).order_paid(order.id) is True
    order.refresh_from_db()
    assert order.email_sent is True


def test_total_failure_releases_claim_and_never_raises(make_order):
    order = make_order()
    mailer = RecordingMailer(fail_for={"admin@shop.test", "ama@example.com"})
    assert dispatcher(mailer).order_paid(order.id) is False
    order.refresh_from_db()
    assert order.email_sent is False


def test_unexpected_errors_are_swallowed(make_order, monkeypatch):
    order = make_order()
    monkeypatch.setattr(OrderRepository, "claim_email_dispatch", lambda self, oid: 1 / 0)
    assert dispatcher(RecordingMailer()).order_paid(order.id) is False
