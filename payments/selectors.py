"""Read-only query helpers for payments.

Selectors return data without side effects.
"""

from __future__ import annotations

from typing import Optional

from common.choices import WebhookOutcome
from django.db.models import QuerySet
from payments.models import PaymentPlan, WebhookEvent


def get_provisioned_plan(*, amount: int, currency: str, frequency: str) -> Optional[PaymentPlan]:
    """Return the local plan for a tier if its gateway id is known, else None."""

    return (
        PaymentPlan.objects.filter(amount=amount, currency=currency.upper(), frequency=frequency)
        .exclude(gateway_plan_id="")
        .first()
    )


def get_webhook_event(gateway_event_id: str) -> Optional[WebhookEvent]:
    if not gateway_event_id:
        return None
    return WebhookEvent.objects.filter(gateway_event_id=gateway_event_id).first()


def list_recent_failed_webhook_events(limit: int = 20) -> QuerySet[WebhookEvent]:
    """Return recent failed deliveries, most recent first.

    The default `limit` is 20; callers may further slice the queryset.
    """

    qs = WebhookEvent.objects.filter(outcome=WebhookOutcome.FAILED).order_by("-received_at")
    return qs[:limit]
