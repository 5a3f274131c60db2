"""Maintenance flag backed by the Django cache.

The flag is explicit, bounded state: a cache entry with a TTL that falls back
to ``settings.MAINTENANCE_MODE`` once it expires. Nothing in the checkout
pipeline depends on it for correctness; it only keeps new checkouts out while
operators work on the system.
"""

from django.conf import settings
from django.core.cache import cache

CACHE_KEY = "monitoring:maintenance_mode"


def is_maintenance_enabled() -> bool:
    cached = cache.get(CACHE_KEY)
    if cached is not None:
        return bool(cached)
    return bool(getattr(settings, "MAINTENANCE_MODE", False))


def set_maintenance(enabled: bool, ttl: int | None = None) -> None:
    """Override the configured flag for ``ttl`` seconds."""
    ttl = ttl if ttl is not None else getattr(settings, "MAINTENANCE_CACHE_TTL", 60)
    cache.set(CACHE_KEY, bool(enabled), timeout=ttl)


def clear_maintenance_override() -> None:
    cache.delete(CACHE_KEY)
