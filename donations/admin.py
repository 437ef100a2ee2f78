"""Admin configuration for donations models."""

from django.contrib import admin, messages

from payments.gateway import GatewayError, HelcimClient

from .models import Donation, IdempotencyKey, Subscription, SubscriptionStatusEvent


class SubscriptionInline(admin.StackedInline):
    model = Subscription
    extra = 0
    can_delete = False
    readonly_fields = (
        "plan",
        "gateway_subscription_id",
        "customer_code",
        "amount",
        "currency",
        "frequency",
        "status",
        "next_billing_at",
        "last_event_at",
    )
    exclude = ("idempotency_key",)

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Donation)
class DonationAdmin(admin.ModelAdmin):
    """Admin for donations. Statuses are read-only; webhooks own them."""

    list_display = (
        "id",
        "reference",
        "kind",
        "amount",
        "currency",
        "status",
        "donor_email",
        "created_at",
        "confirmed_at",
    )
    list_filter = ("kind", "status", "currency", "created_at")
    search_fields = ("reference", "donor_email", "donor_name", "gateway_txn_id")
    readonly_fields = (
        "reference",
        "status",
        "gateway_txn_id",
        "checkout_token",
        "failure_reason",
        "confirmed_at",
        "created_at",
        "updated_at",
    )
    exclude = ("secret_token",)
    ordering = ("-id",)
    inlines = [SubscriptionInline]


class SubscriptionStatusEventInline(admin.TabularInline):
    model = SubscriptionStatusEvent
    extra = 0
    can_delete = False
    readonly_fields = ("from_status", "to_status", "event_type", "gateway_event_id", "applied", "reason", "created_at")


@admin.register(Subscription)
class SubscriptionAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "donation",
        "gateway_subscription_id",
        "amount",
        "currency",
        "frequency",
        "status",
        "next_billing_at",
        "last_event_at",
    )
    list_filter = ("status", "frequency", "currency")
    search_fields = ("gateway_subscription_id", "customer_code", "donation__reference", "donation__donor_email")
    readonly_fields = ("status", "last_event_at", "idempotency_key", "created_at", "updated_at")
    ordering = ("-id",)
    inlines = [SubscriptionStatusEventInline]

    actions = ["request_gateway_cancellation"]

    @admin.action(description="Request cancellation at the gateway")
    def request_gateway_cancellation(self, request, queryset):
        """Ask the gateway to cancel the selected subscriptions.

        The local status changes when the `subscription.canceled` webhook
        arrives. Unlinked and already-ended subscriptions are skipped.
        """
        client = HelcimClient()
        sent = 0
        skipped = 0
        for sub in queryset:
            if not sub.gateway_subscription_id or sub.is_terminal:
                skipped += 1
                continue
            try:
                client.cancel_subscription(sub.gateway_subscription_id)
                sent += 1
            except GatewayError as exc:
                skipped += 1
                messages.warning(request, f"Could not cancel subscription {sub.id}: {exc}")
        if sent:
            messages.success(request, f"Cancellation requested for {sent} subscription(s).")
        if skipped:
            messages.info(request, f"Skipped {skipped} subscription(s).")


@admin.register(IdempotencyKey)
class IdempotencyKeyAdmin(admin.ModelAdmin):
    list_display = ("id", "key", "method", "path", "response_code", "created_at")
    list_filter = ("method", "response_code")
    search_fields = ("key", "path")
    readonly_fields = ("request_hash", "response_code", "response_body", "created_at", "updated_at")
    ordering = ("-id",)
