import uuid
from datetime import timedelta

import pytest
from common.choices import WebhookOutcome
from django.utils import timezone
from payments.models import PaymentPlan, WebhookEvent
from payments.selectors import get_provisioned_plan, get_webhook_event, list_recent_failed_webhook_events

pytestmark = pytest.mark.django_db


def test_get_provisioned_plan_ignores_unprovisioned_claims():
    PaymentPlan.objects.create(amount=2000, currency="USD", frequency="monthly", idempotency_key=str(uuid.uuid4()))
    assert get_provisioned_plan(amount=2000, currency="usd", frequency="monthly") is None

    PaymentPlan.objects.filter(amount=2000).update(gateway_plan_id="42")
    plan = get_provisioned_plan(amount=2000, currency="USD", frequency="monthly")
    assert plan and plan.gateway_plan_id == "42"


def test_get_webhook_event():
    assert get_webhook_event("") is None
    assert get_webhook_event("missing") is None
    WebhookEvent.objects.create(gateway_event_id="evt_s1", event_type="payment.succeeded", payload="{}")
    assert get_webhook_event("evt_s1").event_type == "payment.succeeded"


def test_list_recent_failed_webhook_events_orders_and_limits():
    now = timezone.now()
    for i in range(3):
        WebhookEvent.objects.create(
            gateway_event_id=f"evt_f{i}",
            event_type="payment.succeeded",
            payload="{}",
            outcome=WebhookOutcome.FAILED,
            received_at=now - timedelta(minutes=i),
        )
    WebhookEvent.objects.create(
        gateway_event_id="evt_ok", event_type="payment.succeeded", payload="{}", outcome=WebhookOutcome.SUCCEEDED
    )

    rows = list(list_recent_failed_webhook_events(limit=2))
    assert [r.gateway_event_id for r in rows] == ["evt_f0", "evt_f1"]
