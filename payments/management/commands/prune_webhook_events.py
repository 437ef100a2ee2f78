from datetime import timedelta

from common.choices import WebhookOutcome
from django.core.management.base import BaseCommand
from django.utils.timezone import now
from payments.models import WebhookEvent


class Command(BaseCommand):
    help = (
        "Deletes finished webhook deliveries older than the retention window. "
        "Failed deliveries are kept for review."
    )

    def add_arguments(self, parser):
        parser.add_argument(
            "--days",
            type=int,
            default=90,
            help="Delete deliveries received more than this many days ago.",
        )
        parser.add_argument(
            "--simulate",
            action="store_true",
            default=False,
            help="Only report how many rows would be deleted.",
        )

    def handle(self, *args, **options):
        cutoff = now() - timedelta(days=options["days"])
        qs = WebhookEvent.objects.filter(
            received_at__lt=cutoff,
            outcome__in=WebhookEvent.FINAL_OUTCOMES,
        )
        count = qs.count()
        if options["simulate"]:
            self.stdout.write(f"Would delete {count} webhook events.\n")
            return
        qs.delete()
        kept = WebhookEvent.objects.filter(received_at__lt=cutoff, outcome=WebhookOutcome.FAILED).count()
        self.stdout.write(f"Deleted {count} webhook events, kept {kept} failed.\n")
