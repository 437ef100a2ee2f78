"""Donation domain models.

Defines the Donation (one gift, or the first installment of a recurring
gift), the Subscription that carries a recurring gift forward, an audit
trail of subscription transitions and the idempotency records used by the
checkout endpoint.
"""

import secrets

from common.choices import (
    BillingFrequency,
    Currency,
    DonationKind,
    DonationStatus,
    SubscriptionStatus,
)
from common.models import TimeStampedModel
from django.db import models
from django.utils import timezone


def generate_reference() -> str:
    """Random donation reference, also sent to the gateway as invoice number."""

    return f"DON-{secrets.token_hex(8).upper()}"


class Donation(TimeStampedModel):
    """A single gift tracked from checkout to gateway confirmation.

    `status` is the only lifecycle field; `confirmed_at` is derived from it and
    a database constraint keeps the two in step.
    """

    STATUS_PENDING = DonationStatus.PENDING
    STATUS_CONFIRMED = DonationStatus.CONFIRMED
    STATUS_FAILED = DonationStatus.FAILED
    STATUS_CHOICES = DonationStatus.choices

    reference = models.CharField(max_length=32, unique=True, default=generate_reference, editable=False)
    kind = models.CharField(max_length=16, choices=DonationKind.choices)
    amount = models.PositiveIntegerField(help_text="Amount in minor units (cents)")
    currency = models.CharField(max_length=8, choices=Currency.choices)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    gateway_txn_id = models.CharField(max_length=64, null=True, blank=True)
    checkout_token = models.CharField(max_length=128, blank=True, db_index=True)
    secret_token = models.CharField(max_length=128, blank=True)

    donor_name = models.CharField(max_length=200)
    donor_email = models.EmailField()
    donor_phone = models.CharField(max_length=32, blank=True)
    address_line1 = models.CharField(max_length=200, blank=True)
    address_line2 = models.CharField(max_length=200, blank=True)
    city = models.CharField(max_length=100, blank=True)
    state = models.CharField(max_length=100, blank=True)
    zip_code = models.CharField(max_length=20, blank=True)
    comments = models.TextField(blank=True)

    failure_reason = models.CharField(max_length=255, blank=True)
    confirmed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-id"]
        indexes = [
            models.Index(fields=["status", "created_at"], name="donations_status_created_idx"),
        ]
        constraints = [
            models.CheckConstraint(condition=models.Q(amount__gt=0), name="donation_amount_positive"),
            models.CheckConstraint(
                condition=(
                    models.Q(status=DonationStatus.CONFIRMED, confirmed_at__isnull=False)
                    | (~models.Q(status=DonationStatus.CONFIRMED) & models.Q(confirmed_at__isnull=True))
                ),
                name="donation_confirmed_at_matches_status",
            ),
            models.UniqueConstraint(
                fields=["gateway_txn_id"],
                condition=models.Q(gateway_txn_id__isnull=False),
                name="donation_unique_gateway_txn",
            ),
        ]

    def __str__(self) -> str:  # pragma: no cover
        return f"Donation {self.reference} {self.amount} {self.currency} {self.kind} status={self.status}"

    @property
    def is_recurring(self) -> bool:
        return self.kind == DonationKind.RECURRING

    @property
    def is_confirmed(self) -> bool:
        return self.status == DonationStatus.CONFIRMED

    def mark_confirmed(self, *, transaction_id: str = "", when=None) -> None:
        self.status = DonationStatus.CONFIRMED
        self.confirmed_at = when or timezone.now()
        if transaction_id:
            self.gateway_txn_id = transaction_id
        self.failure_reason = ""

    def mark_failed(self, *, reason: str = "") -> None:
        self.status = DonationStatus.FAILED
        self.confirmed_at = None
        self.failure_reason = (reason or "")[:255]

    def save(self, *args, **kwargs):
        if self.currency:
            self.currency = self.currency.upper()
        if self.donor_email:
            self.donor_email = self.donor_email.strip().lower()
        super().save(*args, **kwargs)


class Subscription(TimeStampedModel):
    """Recurring billing agreement created by a recurring Donation."""

    TERMINAL_STATUSES = (SubscriptionStatus.CANCELED, SubscriptionStatus.COMPLETED)

    donation = models.OneToOneField("donations.Donation", related_name="subscription", on_delete=models.PROTECT)
    plan = models.ForeignKey("payments.PaymentPlan", related_name="subscriptions", on_delete=models.PROTECT)
    gateway_subscription_id = models.CharField(max_length=64, null=True, blank=True)
    customer_code = models.CharField(max_length=64, blank=True, db_index=True)
    # Key for the one logical "create subscription" call made for this row.
    idempotency_key = models.CharField(max_length=36)
    amount = models.PositiveIntegerField(help_text="Recurring amount in minor units (cents)")
    currency = models.CharField(max_length=8, choices=Currency.choices)
    frequency = models.CharField(max_length=16, choices=BillingFrequency.choices)
    status = models.CharField(
        max_length=16,
        choices=SubscriptionStatus.choices,
        default=SubscriptionStatus.PENDING,
        db_index=True,
    )
    next_billing_at = models.DateField(null=True, blank=True)
    last_event_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-id"]
        constraints = [
            models.UniqueConstraint(
                fields=["gateway_subscription_id"],
                condition=models.Q(gateway_subscription_id__isnull=False),
                name="subscription_unique_gateway_id",
            ),
            models.CheckConstraint(condition=models.Q(amount__gt=0), name="subscription_amount_positive"),
        ]

    def __str__(self) -> str:  # pragma: no cover
        return f"Subscription#{self.id} gw={self.gateway_subscription_id or '-'} status={self.status}"

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES


class SubscriptionStatusEvent(TimeStampedModel):
    """Audit row for every transition attempt, applied or rejected."""

    subscription = models.ForeignKey(
        "donations.Subscription", related_name="status_events", on_delete=models.CASCADE
    )
    from_status = models.CharField(max_length=16, choices=SubscriptionStatus.choices)
    to_status = models.CharField(max_length=16, choices=SubscriptionStatus.choices)
    event_type = models.CharField(max_length=64)
    gateway_event_id = models.CharField(max_length=128, blank=True)
    applied = models.BooleanField(default=True)
    reason = models.CharField(max_length=255, blank=True)

    class Meta:
        ordering = ["-created_at", "id"]
        indexes = [
            models.Index(fields=["subscription", "created_at"], name="donations_subevent_sub_idx"),
        ]

    def __str__(self) -> str:  # pragma: no cover
        flag = "applied" if self.applied else "rejected"
        return f"{self.event_type}: {self.from_status} -> {self.to_status} ({flag})"


class IdempotencyKey(TimeStampedModel):
    """Stored response for a client-supplied `Idempotency-Key` header."""

    key = models.CharField(max_length=128)
    path = models.CharField(max_length=255)
    method = models.CharField(max_length=8)
    request_hash = models.CharField(max_length=64, null=True, blank=True)
    response_code = models.PositiveSmallIntegerField(null=True, blank=True)
    response_body = models.JSONField(null=True, blank=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["key", "path", "method"], name="idempotency_unique_scope"),
        ]

    def __str__(self) -> str:  # pragma: no cover
        return f"IdempotencyKey {self.method} {self.path} {self.key}"
