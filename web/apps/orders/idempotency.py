"""Idempotency key derivation for checkout attempts.

A checkout key is derived, never random, so a double click or a network retry
of the same request maps to the same key and collides with the order already
created for it:

- When the client sends an ``Idempotency-Key`` header (or ``idempotencyKey``
  field) the key is a digest of that token.
- Otherwise the key is a digest of the cart lines, the shipping email and the
  current time bucket (``IDEMPOTENCY_WINDOW_SECS``).

The ``orders.idempotency_key`` unique column is the backstop: a concurrent
second insert with the same key fails at the database and is reported as a
duplicate by the repository.
"""

import hashlib
import json
import re
import time
from typing import Iterable

from .domain import CartLine, CheckoutValidationError

TOKEN_RE = re.compile(r"^[A-Za-z0-9_.:-]{8,200}$")


def _hash(payload: dict) -> str:
    """Compute a stable SHA-256 hex digest for a JSON-serializable payload.

    Keys are sorted and separators compacted so equal payloads hash equally.
    """
    body = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


def _cart_fingerprint(lines: Iterable[CartLine]) -> list:
    merged: dict[tuple, int] = {}
    for line in lines:
        k = (line.product_id, line.size or "", line.color or "")
        merged[k] = merged.get(k, 0) + (line.quantity or 0)
    return sorted([*k, q] for k, q in merged.items())


def derive_idempotency_key(
    lines: Iterable[CartLine],
    email: str,
    client_token: str | None = None,
    window_secs: int = 300,
    now: float | None = None,
) -> str:
    """Return the idempotency key for one checkout attempt.

    Args:
        lines: Cart lines as submitted (before price correction).
        email: Shipping email; normalized to lower case.
        client_token: Optional client-generated token. Takes precedence.
        window_secs: Width of the time bucket used without a client token.
        now: Epoch seconds, injectable for tests.

    Raises:
        CheckoutValidationError: If the client token has an invalid format.
    """
    if client_token:
        if not TOKEN_RE.match(client_token):
            raise CheckoutValidationError("Invalid Idempotency-Key header")
        return "c_" + _hash({"token": client_token})

    now = time.time() if now is None else now
    bucket = int(now // max(window_secs, 1))
    return "h_" + _hash({
        "items": _cart_fingerprint(lines),
        "email": (email or "").strip().lower(),
        "bucket": bucket,
    })
