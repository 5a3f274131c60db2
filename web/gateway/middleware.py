"""Middleware that assigns request identifiers and guards the API surface.

``RequestIdMiddleware`` makes sure every request carries an identifier. It
reuses the incoming ``X-Request-Id`` header when the client (or a provider
webhook relay) sends one and generates a UUIDv4 otherwise. The id is stored on
the request and in a context variable so log records and outbound HTTP calls
can pick it up without passing it around.

``ApiSizeLimitMiddleware`` rejects oversized API bodies before they are read.

``MaintenanceModeMiddleware`` answers 503 on checkout endpoints while the
maintenance flag is on. Webhooks and reads keep flowing so payments that are
already in flight still reconcile.
"""

import uuid
import contextvars

from django.conf import settings
from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

from apps.monitoring.maintenance import is_maintenance_enabled

REQUEST_ID_CTX = contextvars.ContextVar("request_id", default="-")


class RequestIdMiddleware(MiddlewareMixin):
    """Set and return a per-request identifier.

    Attributes:
        HEADER (str): Incoming header name in ``request.META`` casing.
        RESPONSE_HEADER (str): Header added to every response.
    """

    HEADER = "HTTP_X_REQUEST_ID"
    RESPONSE_HEADER = "X-Request-ID"

    def process_request(self, request):
        """Attach the request id to ``request`` and the ContextVar."""
        rid = request.META.get(self.HEADER)
        if not rid:
            rid = str(uuid.uuid4())
        request.request_id = rid
        REQUEST_ID_CTX.set(rid)

    def process_response(self, request, response):
        """Echo the request id back on the response."""
        rid = getattr(request, "request_id", REQUEST_ID_CTX.get())
        response[self.RESPONSE_HEADER] = rid
        return response


class ApiSizeLimitMiddleware(MiddlewareMixin):
    def process_request(self, request):
        if request.path.startswith("/api/"):
            clen = request.META.get("CONTENT_LENGTH")
            limit = getattr(settings, "API_MAX_BYTES", 1024 * 1024)
            if clen and clen.isdigit() and int(clen) > limit:
                return JsonResponse({"error": "Payload too large", "code": "PAYLOAD_TOO_LARGE"}, status=413)


class MaintenanceModeMiddleware(MiddlewareMixin):
    """Short-circuit checkout with 503 while maintenance mode is on."""

    GUARDED_PREFIXES = ("/api/checkout/",)

    def process_request(self, request):
        if request.method != "POST" or not request.path.startswith(self.GUARDED_PREFIXES):
            return None
        if is_maintenance_enabled():
            return JsonResponse(
                {"error": "Checkout is temporarily unavailable", "code": "MAINTENANCE"},
                status=503,
            )
        return None
