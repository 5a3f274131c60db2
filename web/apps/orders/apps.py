from django.apps import AppConfig
from django.conf import settings


class OrdersConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.orders"
    label = "orders"

    def ready(self):
        from .gateways import configure_stripe

        configure_stripe(getattr(settings, "HTTP_TIMEOUT_SECS", None))
