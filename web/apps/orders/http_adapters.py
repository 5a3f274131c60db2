"""HTTP clients for the checkout collaborators.

This module implements the network-facing adapters using ``httpx``:

- ``HttpCatalogClient``: product lookups against the catalog service.
- ``PaystackClient``: transaction initialize / verify calls.
- ``SendGridMailer``: transactional email through the SendGrid v3 API.

Every call goes through ``_send`` which adds:

- Request correlation: ``X-Request-ID`` from the ContextVar set by the
  gateway middleware.
- A circuit breaker per downstream dependency, with HALF_OPEN probing after
  a timeout.
- Retries with exponential backoff on transport errors and 5xx. 4xx answers
  are business outcomes: they are returned to the caller and do not count as
  circuit failures.
- An explicit timeout on every request.
"""

import logging
import threading
import time
from decimal import Decimal
from typing import Optional

import httpx
from django.conf import settings

from gateway.middleware import REQUEST_ID_CTX

from .domain import PaymentInitializationError, Product

logger = logging.getLogger("orders.http")


# ---------------- Circuit Breaker ---------------- #

class CircuitBreaker:
    """Minimal circuit breaker with CLOSED/OPEN/HALF_OPEN states.

    Transitions:
    - CLOSED -> OPEN when failures reach ``fail_threshold``.
    - OPEN -> HALF_OPEN after ``reset_timeout`` seconds.
    - HALF_OPEN -> CLOSED on a successful probe; back to OPEN on failure.
      Only one probe may be in flight.

    Thread-safe via an internal lock.
    """

    def __init__(self, name: str, fail_threshold: int, reset_timeout: float):
        self.name = name
        self.fail_threshold = fail_threshold
        self.reset_timeout = reset_timeout
        self._lock = threading.RLock()
        self._failures = 0
        self._state = "CLOSED"
        self._opened_at = 0.0
        self._half_open_probe_in_flight = False

    @property
    def state(self) -> str:
        with self._lock:
            if self._state == "OPEN" and (time.monotonic() - self._opened_at) >= self.reset_timeout:
                self._state = "HALF_OPEN"
                self._half_open_probe_in_flight = False
            return self._state

    def before_call(self) -> str:
        """Check the breaker before a protected call.

        Raises:
            RuntimeError: If the circuit is OPEN or a HALF_OPEN probe is busy.
        """
        with self._lock:
            st = self.state
            if st == "OPEN":
                raise RuntimeError("CIRCUIT_OPEN")
            if st == "HALF_OPEN":
                if self._half_open_probe_in_flight:
                    raise RuntimeError("CIRCUIT_HALF_OPEN_BUSY")
                self._half_open_probe_in_flight = True
            return st

    def on_success(self):
        with self._lock:
            self._failures = 0
            self._state = "CLOSED"
            self._half_open_probe_in_flight = False

    def on_failure(self):
        with self._lock:
            self._failures += 1
            if self._state == "HALF_OPEN" or (
                self._failures >= self.fail_threshold and self._state != "OPEN"
            ):
                self._state = "OPEN"
                self._opened_at = time.monotonic()
                self._half_open_probe_in_flight = False

    def on_finish(self):
        with self._lock:
            if self._state == "HALF_OPEN":
                self._half_open_probe_in_flight = False


def _breaker(name: str) -> CircuitBreaker:
    return CircuitBreaker(
        name,
        getattr(settings, "HTTP_CIRCUIT_FAIL_THRESHOLD", 5),
        getattr(settings, "HTTP_CIRCUIT_RESET_TIMEOUT", 30.0),
    )


_catalog_cb = _breaker("catalog")
_paystack_cb = _breaker("paystack")
_sendgrid_cb = _breaker("sendgrid")

BREAKERS = (_catalog_cb, _paystack_cb, _sendgrid_cb)


def reset_breakers() -> None:
    for cb in BREAKERS:
        cb.on_success()


# ---------------- Helpers ---------------- #

def _request_headers(extra: Optional[dict] = None) -> dict:
    """Base headers: ``X-Request-ID`` when known, then caller extras."""
    headers: dict[str, str] = {}
    rid = REQUEST_ID_CTX.get()
    if rid and rid != "-":
        headers["X-Request-ID"] = rid
    if extra:
        headers.update(extra)
    return headers


def _retry_policy():
    """Return ``(max_attempts, backoff_base_seconds)``."""
    return (
        max(1, getattr(settings, "HTTP_RETRY_MAX", 3)),
        getattr(settings, "HTTP_RETRY_BACKOFF_BASE", 0.15),
    )


def _should_retry(resp: Optional[httpx.Response], exc: Optional[Exception]) -> bool:
    if exc is not None:
        return True
    return resp is not None and 500 <= resp.status_code < 600


def _send(
    breaker: CircuitBreaker,
    method: str,
    url: str,
    *,
    timeout: float,
    headers: Optional[dict] = None,
    **kwargs,
) -> httpx.Response:
    """Perform one logical HTTP call with breaker, retries and timeout.

    Returns:
        httpx.Response: The first non-5xx response.

    Raises:
        RuntimeError: If the circuit is open.
        httpx.RequestError: Transport error (including timeouts) after the
            last attempt.
        httpx.HTTPStatusError: 5xx after the last attempt.
    """
    max_attempts, backoff = _retry_policy()
    tries = 0
    state = breaker.before_call()
    headers = _request_headers({**(headers or {}), "X-Circuit-State": state, "X-Retry-Count": "0"})

    try:
        with httpx.Client(timeout=timeout) as client:
            while True:
                resp = None
                exc = None
                try:
                    resp = client.request(method, url, headers=headers, **kwargs)
                    if not _should_retry(resp, None):
                        breaker.on_success()
                        return resp
                except httpx.RequestError as e:
                    exc = e

                tries += 1
                headers["X-Retry-Count"] = str(tries)
                if tries >= max_attempts:
                    breaker.on_failure()
                    logger.warning(
                        "downstream call failed",
                        extra={"dependency": breaker.name, "url": url, "attempts": tries},
                    )
                    if exc:
                        raise exc
                    resp.raise_for_status()

                sleep_s = backoff * (2 ** (tries - 1))
                cap = getattr(settings, "HTTP_RETRY_MAX_SLEEP", 0.5)
                time.sleep(min(sleep_s, cap))
    finally:
        breaker.on_finish()


# ---------------- Catalog Adapter ---------------- #

class HttpCatalogClient:
    """Catalog lookups over HTTP. Implements ``CatalogPort``."""

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        self.base_url = (base_url or settings.CATALOG_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECS

    def get_product(self, product_id: str) -> Optional[Product]:
        """Return the product, or None on 404.

        Raises:
            httpx.HTTPError / RuntimeError: When the catalog cannot be reached.
        """
        resp = _send(_catalog_cb, "GET", f"{self.base_url}/products/{product_id}", timeout=self.timeout)
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        data = resp.json()
        return Product(
            id=str(data["id"]),
            name=data["name"],
            price=Decimal(str(data["price"])),
            in_stock=bool(data.get("inStock", True)),
            image=data.get("image"),
            sizes=tuple(data.get("sizes") or ()),
            colors=tuple(data.get("colors") or ()),
        )


# ---------------- Paystack Adapter ---------------- #

class PaystackClient:
    """Thin client over the Paystack transaction API."""

    def __init__(self, secret_key: str, base_url: str | None = None, timeout: float | None = None):
        self.secret_key = secret_key
        self.base_url = (base_url or settings.PAYSTACK_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECS

    def _auth(self) -> dict:
        return {"Authorization": f"Bearer {self.secret_key}"}

    def initialize_transaction(self, payload: dict) -> dict:
        """POST /transaction/initialize and return its ``data`` object.

        Raises:
            PaymentInitializationError: On a non-2xx answer, a ``status: false``
                body, or when Paystack cannot be reached. The provider message
                is carried when there is one.
        """
        try:
            resp = _send(
                _paystack_cb, "POST", f"{self.base_url}/transaction/initialize",
                timeout=self.timeout, headers=self._auth(), json=payload,
            )
        except (httpx.HTTPError, RuntimeError) as e:
            raise PaymentInitializationError("Failed to initialize payment") from e

        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not (200 <= resp.status_code < 300) or not body.get("status"):
            raise PaymentInitializationError(body.get("message") or "Failed to initialize payment")
        return body.get("data") or {}

    def verify_transaction(self, reference: str) -> dict:
        """GET /transaction/verify/{reference}.

        Returns:
            dict: The ``data`` object, or ``{}`` when Paystack answers
            ``status: false`` (unknown reference).
        """
        resp = _send(
            _paystack_cb, "GET", f"{self.base_url}/transaction/verify/{reference}",
            timeout=self.timeout, headers=self._auth(),
        )
        body = resp.json()
        if not body.get("status"):
            return {}
        return body.get("data") or {}


# ---------------- SendGrid Adapter ---------------- #

class SendGridMailer:
    """Send mail through the SendGrid v3 API. Implements ``MailerPort``."""

    def __init__(self, api_key: str, from_email: str, base_url: str | None = None, timeout: float | None = None):
        self.api_key = api_key
        self.from_email = from_email
        self.base_url = (base_url or settings.SENDGRID_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECS

    def send(self, to: str, subject: str, html: str) -> None:
        payload = {
            "personalizations": [{"to": [{"email": to}]}],
            "from": {"email": self.from_email},
            "subject": subject,
            "content": [{"type": "text/html", "value": html}],
        }
        resp = _send(
            _sendgrid_cb, "POST", f"{self.base_url}/v3/mail/send",
            timeout=self.timeout,
            headers={"Authorization": f"Bearer {self.api_key}"},
            json=payload,
        )
        resp.raise_for_status()
