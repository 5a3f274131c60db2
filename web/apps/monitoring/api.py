import json

from django.db import connection
from django.db.utils import DatabaseError
from django.http import JsonResponse
from django.views.decorators.http import require_GET, require_POST

from apps.orders.http_adapters import BREAKERS

from .maintenance import is_maintenance_enabled, set_maintenance


@require_GET
def health_view(_request):
    db_ok = False
    try:
        with connection.cursor() as cur:
            cur.execute("SELECT 1;")
        db_ok = True
    except DatabaseError:
        db_ok = False

    breakers = {cb.name: cb.state for cb in BREAKERS}
    ok = db_ok
    code = 200 if ok else 503
    return JsonResponse(
        {
            "ok": ok,
            "components": {
                "db": {"ok": db_ok},
                "circuits": breakers,
                "maintenance": is_maintenance_enabled(),
            },
        },
        status=code,
    )


@require_POST
def maintenance_view(request):
    """Staff toggle for the maintenance flag: ``{"enabled": bool, "ttl"?: int}``."""
    user = getattr(request, "user", None)
    if user is None or not user.is_staff:
        return JsonResponse({"error": "Forbidden", "code": "FORBIDDEN"}, status=403)
    try:
        payload = json.loads(request.body or b"{}")
        enabled = bool(payload["enabled"])
        ttl = int(payload["ttl"]) if payload.get("ttl") is not None else None
    except (ValueError, KeyError, TypeError):
        return JsonResponse({"error": "Invalid request", "code": "VALIDATION_FAILED"}, status=400)
    set_maintenance(enabled, ttl)
    return JsonResponse({"maintenance": is_maintenance_enabled()})
