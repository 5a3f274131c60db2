from django.urls import path

from .api import health_view, maintenance_view

urlpatterns = [
    path("health/", health_view, name="health"),
    path("maintenance/", maintenance_view, name="maintenance"),
]
