"""URL routes for the payments app (v1)."""

from django.urls import path

from .views import HelcimWebhookView, PaymentsHealthView

app_name = "payments"

urlpatterns = [
    path("health/", PaymentsHealthView.as_view(), name="payments-health"),
    # Canonical webhook path
    path("webhooks/helcim/", HelcimWebhookView.as_view(), name="helcim-webhook"),
]
