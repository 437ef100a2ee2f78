"""Donation and subscription lifecycle transitions.

Statuses only change through the functions in this module, all of which are
driven by verified gateway webhooks. Each function locks the affected row
for the duration of the local update only.

Anomalies (late, duplicated or out-of-order deliveries, and events for a
subscription that already ended) are expected with at-least-once webhook
delivery. They are recorded and logged, then raised as `LifecycleAnomaly`
subclasses so the caller can treat them as no-ops rather than failures.
"""

import logging
from functools import partial
from typing import Optional

import sentry_sdk
from common.choices import DonationStatus, SubscriptionStatus, WebhookEventType
from django.db import transaction
from django.utils import timezone
from donations.emails import send_donation_receipt
from donations.models import Donation, Subscription, SubscriptionStatusEvent

logger = logging.getLogger("avr.donations")

PENDING = SubscriptionStatus.PENDING
ACTIVE = SubscriptionStatus.ACTIVE
PAST_DUE = SubscriptionStatus.PAST_DUE
CANCELED = SubscriptionStatus.CANCELED
COMPLETED = SubscriptionStatus.COMPLETED

CREATED = WebhookEventType.SUBSCRIPTION_CREATED
UPDATED = WebhookEventType.SUBSCRIPTION_UPDATED
RENEWED = WebhookEventType.SUBSCRIPTION_RENEWED
PAYMENT_FAILED = WebhookEventType.SUBSCRIPTION_PAYMENT_FAILED
CANCELED_EVENT = WebhookEventType.SUBSCRIPTION_CANCELED
COMPLETED_EVENT = WebhookEventType.SUBSCRIPTION_COMPLETED

# (current status, event) -> next status. Pairs not listed are rejected.
SUBSCRIPTION_TRANSITIONS = {
    (PENDING, CREATED): ACTIVE,
    (PENDING, UPDATED): ACTIVE,
    (PENDING, RENEWED): ACTIVE,
    (PENDING, CANCELED_EVENT): CANCELED,
    (PENDING, COMPLETED_EVENT): COMPLETED,
    (ACTIVE, CREATED): ACTIVE,
    (ACTIVE, UPDATED): ACTIVE,
    (ACTIVE, RENEWED): ACTIVE,
    (ACTIVE, PAYMENT_FAILED): PAST_DUE,
    (ACTIVE, CANCELED_EVENT): CANCELED,
    (ACTIVE, COMPLETED_EVENT): COMPLETED,
    (PAST_DUE, CREATED): ACTIVE,
    (PAST_DUE, UPDATED): ACTIVE,
    (PAST_DUE, RENEWED): ACTIVE,
    (PAST_DUE, PAYMENT_FAILED): PAST_DUE,
    (PAST_DUE, CANCELED_EVENT): CANCELED,
    (PAST_DUE, COMPLETED_EVENT): COMPLETED,
}


class LifecycleAnomaly(Exception):
    """An event that was recognized but deliberately not applied."""


class StaleOrDuplicateEvent(LifecycleAnomaly):
    """The event is older than the last applied one, or was already applied."""


class TransitionRejected(LifecycleAnomaly):
    """The event is not a legal move from the current status."""


def next_subscription_status(current: str, event_type: str) -> str:
    if current in Subscription.TERMINAL_STATUSES:
        raise TransitionRejected(f"Subscription is {current}; {event_type} ignored")
    try:
        return SUBSCRIPTION_TRANSITIONS[(current, event_type)]
    except KeyError:
        raise TransitionRejected(f"No transition from {current} on {event_type}") from None


def apply_subscription_event(
    subscription: Subscription,
    event_type: str,
    *,
    occurred_at=None,
    gateway_event_id: str = "",
    gateway_subscription_id: str = "",
    next_billing_at=None,
) -> Subscription:
    """Apply one `subscription.*` event and return the refreshed row."""

    occurred_at = occurred_at or timezone.now()
    anomaly: Optional[LifecycleAnomaly] = None

    with transaction.atomic():
        sub = Subscription.objects.select_for_update().get(pk=subscription.pk)
        from_status = sub.status
        to_status = from_status
        try:
            to_status = next_subscription_status(from_status, event_type)
            if sub.last_event_at and occurred_at < sub.last_event_at:
                raise StaleOrDuplicateEvent(
                    f"{event_type} at {occurred_at.isoformat()} is older than {sub.last_event_at.isoformat()}"
                )
        except LifecycleAnomaly as exc:
            anomaly = exc
            SubscriptionStatusEvent.objects.create(
                subscription=sub,
                from_status=from_status,
                to_status=from_status,
                event_type=event_type,
                gateway_event_id=gateway_event_id,
                applied=False,
                reason=str(exc)[:255],
            )
        else:
            sub.status = to_status
            sub.last_event_at = occurred_at
            if next_billing_at is not None:
                sub.next_billing_at = next_billing_at
            if gateway_subscription_id and not sub.gateway_subscription_id:
                sub.gateway_subscription_id = gateway_subscription_id
            sub.save(
                update_fields=[
                    "status",
                    "last_event_at",
                    "next_billing_at",
                    "gateway_subscription_id",
                    "updated_at",
                ]
            )
            SubscriptionStatusEvent.objects.create(
                subscription=sub,
                from_status=from_status,
                to_status=to_status,
                event_type=event_type,
                gateway_event_id=gateway_event_id,
            )

    if anomaly is not None:
        logger.warning(
            "subscription_event_anomaly",
            extra={
                "subscription_id": sub.id,
                "status": from_status,
                "event_type": event_type,
                "gateway_event_id": gateway_event_id,
                "reason": str(anomaly),
            },
        )
        raise anomaly

    logger.info(
        "subscription_transition_applied",
        extra={
            "subscription_id": sub.id,
            "from_status": from_status,
            "to_status": to_status,
            "event_type": event_type,
        },
    )
    return sub


def _payment_mismatch(donation: Donation, amount: Optional[int], currency: str) -> str:
    if amount is not None and amount != donation.amount:
        return f"amount_mismatch: expected {donation.amount}, charged {amount}"
    if currency and currency.upper() != donation.currency.upper():
        return f"currency_mismatch: expected {donation.currency}, charged {currency.upper()}"
    return ""


def confirm_donation(
    donation: Donation,
    *,
    transaction_id: str = "",
    amount: Optional[int] = None,
    currency: str = "",
    occurred_at=None,
) -> Donation:
    """Confirm a donation from a `payment.succeeded` event.

    A charged amount or currency that differs from the pledged one fails
    the donation instead; a zero amount counts as a mismatch. On
    confirmation the receipt is scheduled to go out after the surrounding
    transaction commits.
    """

    anomaly: Optional[LifecycleAnomaly] = None
    with transaction.atomic():
        d = Donation.objects.select_for_update().get(pk=donation.pk)
        mismatch = _payment_mismatch(d, amount, currency)
        if d.status == DonationStatus.CONFIRMED:
            anomaly = StaleOrDuplicateEvent(f"Donation {d.reference} is already confirmed")
        elif mismatch:
            logger.error(
                "donation_payment_mismatch",
                extra={
                    "reference": d.reference,
                    "expected_amount": d.amount,
                    "actual_amount": amount,
                    "expected_currency": d.currency,
                    "actual_currency": currency,
                    "transaction_id": transaction_id,
                },
            )
            sentry_sdk.capture_message("donation_payment_mismatch", level="warning")
            d.mark_failed(reason=mismatch)
            d.save(update_fields=["status", "confirmed_at", "failure_reason", "updated_at"])
            return d
        else:
            d.mark_confirmed(transaction_id=transaction_id, when=occurred_at)
            d.save(update_fields=["status", "confirmed_at", "gateway_txn_id", "failure_reason", "updated_at"])
            transaction.on_commit(partial(send_donation_receipt, d.pk))

    if anomaly is not None:
        logger.warning("donation_event_anomaly", extra={"reference": d.reference, "reason": str(anomaly)})
        raise anomaly

    logger.info("donation_confirmed", extra={"reference": d.reference, "transaction_id": transaction_id})
    return d


def fail_donation(donation: Donation, *, reason: str = "", transaction_id: str = "") -> Donation:
    """Mark a pending donation failed from a `payment.failed` event.

    Retrying the charge is the gateway's business; a confirmed donation is
    never downgraded by a late failure notice.
    """

    anomaly: Optional[LifecycleAnomaly] = None
    with transaction.atomic():
        d = Donation.objects.select_for_update().get(pk=donation.pk)
        if d.status == DonationStatus.CONFIRMED:
            anomaly = TransitionRejected(f"Donation {d.reference} is confirmed; failure notice ignored")
        elif d.status == DonationStatus.FAILED:
            anomaly = StaleOrDuplicateEvent(f"Donation {d.reference} is already failed")
        else:
            d.mark_failed(reason=reason or "payment_failed")
            d.save(update_fields=["status", "confirmed_at", "failure_reason", "updated_at"])

    if anomaly is not None:
        logger.warning("donation_event_anomaly", extra={"reference": d.reference, "reason": str(anomaly)})
        raise anomaly

    logger.info(
        "donation_failed",
        extra={"reference": d.reference, "transaction_id": transaction_id, "reason": d.failure_reason},
    )
    return d
