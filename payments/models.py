"""Payment gateway models.

`PaymentPlan` mirrors the gateway's billing templates, one row per
(amount, currency, frequency) tier. `WebhookEvent` is the durable log of
every verified notification and is what makes webhook handling idempotent.
"""

from common.choices import BillingFrequency, Currency, WebhookOutcome
from common.models import TimeStampedModel
from django.db import models
from django.utils import timezone


class PaymentPlan(TimeStampedModel):
    """Locally cached gateway payment plan.

    A row may exist with a blank `gateway_plan_id` while its creation on the
    gateway is in flight; `idempotency_key` is the key every caller uses for
    that creation so concurrent requests collapse into one gateway plan.
    """

    amount = models.PositiveIntegerField(help_text="Recurring amount in minor units (cents)")
    currency = models.CharField(max_length=8, choices=Currency.choices)
    frequency = models.CharField(max_length=16, choices=BillingFrequency.choices)
    gateway_plan_id = models.CharField(max_length=64, blank=True, db_index=True)
    idempotency_key = models.CharField(max_length=36)

    class Meta:
        ordering = ["amount", "currency", "frequency"]
        constraints = [
            models.UniqueConstraint(fields=["amount", "currency", "frequency"], name="paymentplan_unique_tier"),
            models.CheckConstraint(condition=models.Q(amount__gt=0), name="paymentplan_amount_positive"),
        ]

    def __str__(self) -> str:  # pragma: no cover
        return f"PaymentPlan#{self.id} {self.amount} {self.currency} {self.frequency} gw={self.gateway_plan_id or '-'}"

    @property
    def is_provisioned(self) -> bool:
        return bool(self.gateway_plan_id)

    def save(self, *args, **kwargs):
        if self.currency:
            self.currency = self.currency.upper()
        super().save(*args, **kwargs)


class WebhookEvent(TimeStampedModel):
    """One inbound gateway notification, keyed by the gateway's event id."""

    FINAL_OUTCOMES = (WebhookOutcome.SUCCEEDED, WebhookOutcome.IGNORED)

    gateway_event_id = models.CharField(max_length=128, unique=True)
    # Free-form so unknown event types are still logged verbatim.
    event_type = models.CharField(max_length=64, db_index=True)
    payload = models.TextField()
    signature_verified = models.BooleanField(default=False)
    outcome = models.CharField(
        max_length=16,
        choices=WebhookOutcome.choices,
        default=WebhookOutcome.PROCESSING,
        db_index=True,
    )
    detail = models.TextField(blank=True)
    attempts = models.PositiveIntegerField(default=0)
    received_at = models.DateTimeField(default=timezone.now)
    processed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-received_at", "-id"]
        indexes = [
            models.Index(fields=["outcome", "received_at"], name="payments_webhook_outcome_idx"),
        ]

    def __str__(self) -> str:  # pragma: no cover
        return f"WebhookEvent {self.gateway_event_id} type={self.event_type} outcome={self.outcome}"

    @property
    def is_final(self) -> bool:
        return self.outcome in self.FINAL_OUTCOMES
