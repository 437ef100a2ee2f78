from datetime import timedelta
from io import StringIO
from unittest.mock import patch

import pytest
from common.choices import DonationStatus, SubscriptionStatus, WebhookOutcome
from django.core.management import call_command
from django.utils import timezone
from donations.models import Donation
from donations.tests.factories import DonationFactory, SubscriptionFactory
from payments.gateway import GatewayUnavailable
from payments.models import WebhookEvent

pytestmark = pytest.mark.django_db


def age(donation, hours):
    Donation.objects.filter(pk=donation.pk).update(created_at=timezone.now() - timedelta(hours=hours))


def test_reconcile_simulate_lists_stale_pending_without_gateway():
    old = DonationFactory()
    age(old, 48)
    DonationFactory()  # fresh
    out = StringIO()

    with patch("donations.management.commands.reconcile_pending_donations.HelcimClient") as client_cls:
        call_command("reconcile_pending_donations", "--hours", "24", "--simulate", stdout=out)

    client_cls.assert_not_called()
    text = out.getvalue()
    assert "Pending donations older than 24h: 1" in text
    assert old.reference in text


def test_reconcile_reports_drift_without_changing_status():
    sub = SubscriptionFactory(gateway_subscription_id="SUB-D", status=SubscriptionStatus.ACTIVE)
    SubscriptionFactory(gateway_subscription_id="SUB-E", status=SubscriptionStatus.ACTIVE)
    out = StringIO()

    def fake_get(subscription_id):
        if subscription_id == "SUB-E":
            raise GatewayUnavailable("down")
        return {"id": subscription_id, "status": "cancelled"}

    with patch("donations.management.commands.reconcile_pending_donations.HelcimClient") as client_cls:
        client_cls.return_value.get_subscription.side_effect = fake_get
        call_command("reconcile_pending_donations", stdout=out)

    text = out.getvalue()
    assert "local=active gateway=cancelled" in text
    assert "lookup failed" in text
    assert "Subscriptions with status drift: 1" in text
    sub.refresh_from_db()
    assert sub.status == SubscriptionStatus.ACTIVE


def test_prune_webhook_events_keeps_failed_and_recent():
    old = timezone.now() - timedelta(days=120)
    WebhookEvent.objects.create(
        gateway_event_id="old_ok", event_type="x", payload="{}", outcome=WebhookOutcome.SUCCEEDED, received_at=old
    )
    WebhookEvent.objects.create(
        gateway_event_id="old_ignored", event_type="x", payload="{}", outcome=WebhookOutcome.IGNORED, received_at=old
    )
    WebhookEvent.objects.create(
        gateway_event_id="old_failed", event_type="x", payload="{}", outcome=WebhookOutcome.FAILED, received_at=old
    )
    WebhookEvent.objects.create(
        gateway_event_id="new_ok", event_type="x", payload="{}", outcome=WebhookOutcome.SUCCEEDED
    )

    out = StringIO()
    call_command("prune_webhook_events", "--days", "90", "--simulate", stdout=out)
    assert "Would delete 2" in out.getvalue()
    assert WebhookEvent.objects.count() == 4

    out = StringIO()
    call_command("prune_webhook_events", "--days", "90", stdout=out)
    assert "Deleted 2 webhook events, kept 1 failed" in out.getvalue()
    assert set(WebhookEvent.objects.values_list("gateway_event_id", flat=True)) == {"old_failed", "new_ok"}


def test_confirmed_donations_are_not_reported():
    d = DonationFactory()
    Donation.objects.filter(pk=d.pk).update(status=DonationStatus.CONFIRMED, confirmed_at=timezone.now())
    age(d, 100)
    out = StringIO()
    call_command("reconcile_pending_donations", "--simulate", stdout=out)
    assert "Pending donations older than 24h: 0" in out.getvalue()
