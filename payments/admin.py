"""Admin configuration for payments models."""

from django.contrib import admin

from .models import PaymentPlan, WebhookEvent


@admin.register(PaymentPlan)
class PaymentPlanAdmin(admin.ModelAdmin):
    """Admin for the cached gateway payment plans."""

    list_display = ("id", "amount", "currency", "frequency", "gateway_plan_id", "created_at")
    list_filter = ("currency", "frequency")
    search_fields = ("gateway_plan_id",)
    readonly_fields = ("idempotency_key", "created_at", "updated_at")
    ordering = ("amount", "currency", "frequency")


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    """Read-only log of gateway webhook deliveries."""

    list_display = (
        "id",
        "gateway_event_id",
        "event_type",
        "outcome",
        "attempts",
        "received_at",
        "processed_at",
    )
    list_filter = ("outcome", "event_type", "received_at")
    search_fields = ("gateway_event_id", "detail")
    readonly_fields = [f.name for f in WebhookEvent._meta.fields]
    ordering = ("-received_at",)

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False
