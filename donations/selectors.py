"""Read-only query helpers for donations and subscriptions."""

from __future__ import annotations

from datetime import timedelta
from typing import Optional

from common.choices import DonationStatus, SubscriptionStatus
from django.db.models import QuerySet
from django.utils import timezone
from donations.models import Donation, Subscription


def get_donation_by_reference(reference: str) -> Optional[Donation]:
    """Return a single `Donation` by its public reference, or None."""

    if not reference:
        return None
    return Donation.objects.select_related("subscription").filter(reference=reference).first()


def find_donation_for_payment(
    *,
    invoice_number: str = "",
    checkout_token: str = "",
    transaction_id: str = "",
    subscription_id: str = "",
) -> Optional[Donation]:
    """Locate the Donation a payment webhook refers to.

    Tries our own reference first (sent as the invoice number), then the
    checkout token, then a previously stored gateway transaction id. A
    subscription id only matches while its first installment is unconfirmed;
    later installments have no Donation of their own.
    """

    qs = Donation.objects.all()
    if invoice_number:
        found = qs.filter(reference=invoice_number).first()
        if found:
            return found
    if checkout_token:
        found = qs.filter(checkout_token=checkout_token).first()
        if found:
            return found
    if transaction_id:
        found = qs.filter(gateway_txn_id=transaction_id).first()
        if found:
            return found
    if subscription_id:
        return (
            qs.filter(subscription__gateway_subscription_id=subscription_id)
            .exclude(status=DonationStatus.CONFIRMED)
            .first()
        )
    return None


def find_subscription_for_event(
    *,
    gateway_subscription_id: str,
    customer_code: str = "",
    gateway_plan_id: str = "",
) -> Optional[Subscription]:
    """Locate the Subscription a `subscription.*` webhook refers to.

    Falls back to an unlinked pending subscription with the same customer
    code (and plan, when given) for the case where the gateway answered the
    create call ambiguously and never told us the id.
    """

    found = Subscription.objects.filter(gateway_subscription_id=gateway_subscription_id).first()
    if found or not customer_code:
        return found

    qs = Subscription.objects.filter(
        customer_code=customer_code,
        gateway_subscription_id__isnull=True,
        status=SubscriptionStatus.PENDING,
    )
    if gateway_plan_id:
        qs = qs.filter(plan__gateway_plan_id=gateway_plan_id)
    return qs.order_by("-created_at").first()


def list_stale_pending_donations(*, older_than: timedelta) -> QuerySet[Donation]:
    """Pending donations created before `now - older_than`, oldest first."""

    cutoff = timezone.now() - older_than
    return (
        Donation.objects.select_related("subscription")
        .filter(status=DonationStatus.PENDING, created_at__lt=cutoff)
        .order_by("created_at")
    )


def list_linked_open_subscriptions() -> QuerySet[Subscription]:
    """Non-terminal subscriptions that have a gateway id to poll."""

    return (
        Subscription.objects.select_related("donation", "plan")
        .filter(gateway_subscription_id__isnull=False)
        .exclude(status__in=Subscription.TERMINAL_STATUSES)
        .order_by("id")
    )
