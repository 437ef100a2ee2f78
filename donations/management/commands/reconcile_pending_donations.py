import logging
from datetime import timedelta

from django.conf import settings
from django.core.management.base import BaseCommand
from donations.selectors import list_linked_open_subscriptions, list_stale_pending_donations
from payments.gateway import GatewayError, HelcimClient

logger = logging.getLogger("avr.donations")


class Command(BaseCommand):
    help = (
        "Reports donations still pending after the threshold and subscriptions "
        "whose gateway status differs from ours. Nothing is modified: statuses "
        "only change through verified webhooks."
    )

    def add_arguments(self, parser):
        parser.add_argument(
            "--hours",
            type=int,
            default=None,
            help="Report donations pending for longer than this many hours.",
        )
        parser.add_argument(
            "--simulate",
            action="store_true",
            default=False,
            help="List local candidates only, without querying the gateway.",
        )

    def handle(self, *args, **options):
        hours = options["hours"]
        if hours is None:
            hours = getattr(settings, "DONATIONS_RECONCILE_AFTER_HOURS", 24)

        stale = list(list_stale_pending_donations(older_than=timedelta(hours=hours)))
        self.stdout.write(f"Pending donations older than {hours}h: {len(stale)}\n")
        for donation in stale:
            self.stdout.write(
                f"  {donation.reference} {donation.kind} {donation.amount} {donation.currency} "
                f"created {donation.created_at.isoformat()}\n"
            )

        if options["simulate"]:
            self.stdout.write("Simulate mode: gateway not queried.\n")
            return

        client = HelcimClient()
        drift = 0
        for sub in list_linked_open_subscriptions():
            try:
                remote = client.get_subscription(sub.gateway_subscription_id)
            except GatewayError as exc:
                logger.warning(
                    "reconcile_subscription_lookup_failed",
                    extra={"subscription_id": sub.id, "error": str(exc)},
                )
                self.stdout.write(f"  subscription {sub.id}: lookup failed ({exc})\n")
                continue
            remote_status = str(remote.get("status", "")).lower()
            if remote_status and remote_status != sub.status:
                drift += 1
                logger.warning(
                    "reconcile_subscription_drift",
                    extra={
                        "subscription_id": sub.id,
                        "gateway_subscription_id": sub.gateway_subscription_id,
                        "local_status": sub.status,
                        "gateway_status": remote_status,
                    },
                )
                self.stdout.write(
                    f"  subscription {sub.id} ({sub.gateway_subscription_id}): "
                    f"local={sub.status} gateway={remote_status}\n"
                )
        self.stdout.write(f"Subscriptions with status drift: {drift}\n")
