import django.db.models.deletion
import donations.models
from django.db import migrations, models

SUBSCRIPTION_STATUS_CHOICES = [
    ("pending", "Pending"),
    ("active", "Active"),
    ("past_due", "Past due"),
    ("canceled", "Canceled"),
    ("completed", "Completed"),
]
CURRENCY_CHOICES = [("USD", "US Dollar"), ("CAD", "Canadian Dollar")]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("payments", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Donation",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "reference",
                    models.CharField(
                        default=donations.models.generate_reference, editable=False, max_length=32, unique=True
                    ),
                ),
                (
                    "kind",
                    models.CharField(choices=[("one_time", "One-time"), ("recurring", "Recurring")], max_length=16),
                ),
                ("amount", models.PositiveIntegerField(help_text="Amount in minor units (cents)")),
                ("currency", models.CharField(choices=CURRENCY_CHOICES, max_length=8)),
                (
                    "status",
                    models.CharField(
                        choices=[("pending", "Pending"), ("confirmed", "Confirmed"), ("failed", "Failed")],
                        db_index=True,
                        default="pending",
                        max_length=16,
                    ),
                ),
                ("gateway_txn_id", models.CharField(blank=True, max_length=64, null=True)),
                ("checkout_token", models.CharField(blank=True, db_index=True, max_length=128)),
                ("secret_token", models.CharField(blank=True, max_length=128)),
                ("donor_name", models.CharField(max_length=200)),
                ("donor_email", models.EmailField(max_length=254)),
                ("donor_phone", models.CharField(blank=True, max_length=32)),
                ("address_line1", models.CharField(blank=True, max_length=200)),
                ("address_line2", models.CharField(blank=True, max_length=200)),
                ("city", models.CharField(blank=True, max_length=100)),
                ("state", models.CharField(blank=True, max_length=100)),
                ("zip_code", models.CharField(blank=True, max_length=20)),
                ("comments", models.TextField(blank=True)),
                ("failure_reason", models.CharField(blank=True, max_length=255)),
                ("confirmed_at", models.DateTimeField(blank=True, null=True)),
            ],
            options={
                "ordering": ["-id"],
                "indexes": [models.Index(fields=["status", "created_at"], name="donations_status_created_idx")],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(("amount__gt", 0)), name="donation_amount_positive"),
                    models.CheckConstraint(
                        condition=models.Q(
                            models.Q(("confirmed_at__isnull", False), ("status", "confirmed")),
                            models.Q(models.Q(("status", "confirmed"), _negated=True), ("confirmed_at__isnull", True)),
                            _connector="OR",
                        ),
                        name="donation_confirmed_at_matches_status",
                    ),
                    models.UniqueConstraint(
                        condition=models.Q(("gateway_txn_id__isnull", False)),
                        fields=("gateway_txn_id",),
                        name="donation_unique_gateway_txn",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="IdempotencyKey",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("key", models.CharField(max_length=128)),
                ("path", models.CharField(max_length=255)),
                ("method", models.CharField(max_length=8)),
                ("request_hash", models.CharField(blank=True, max_length=64, null=True)),
                ("response_code", models.PositiveSmallIntegerField(blank=True, null=True)),
                ("response_body", models.JSONField(blank=True, null=True)),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(fields=("key", "path", "method"), name="idempotency_unique_scope"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Subscription",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("gateway_subscription_id", models.CharField(blank=True, max_length=64, null=True)),
                ("customer_code", models.CharField(blank=True, db_index=True, max_length=64)),
                ("idempotency_key", models.CharField(max_length=36)),
                ("amount", models.PositiveIntegerField(help_text="Recurring amount in minor units (cents)")),
                ("currency", models.CharField(choices=CURRENCY_CHOICES, max_length=8)),
                (
                    "frequency",
                    models.CharField(
                        choices=[("weekly", "Weekly"), ("monthly", "Monthly"), ("yearly", "Yearly")], max_length=16
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=SUBSCRIPTION_STATUS_CHOICES, db_index=True, default="pending", max_length=16
                    ),
                ),
                ("next_billing_at", models.DateField(blank=True, null=True)),
                ("last_event_at", models.DateTimeField(blank=True, null=True)),
                (
                    "donation",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="subscription",
                        to="donations.donation",
                    ),
                ),
                (
                    "plan",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="subscriptions",
                        to="payments.paymentplan",
                    ),
                ),
            ],
            options={
                "ordering": ["-id"],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("gateway_subscription_id__isnull", False)),
                        fields=("gateway_subscription_id",),
                        name="subscription_unique_gateway_id",
                    ),
                    models.CheckConstraint(condition=models.Q(("amount__gt", 0)), name="subscription_amount_positive"),
                ],
            },
        ),
        migrations.CreateModel(
            name="SubscriptionStatusEvent",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("from_status", models.CharField(choices=SUBSCRIPTION_STATUS_CHOICES, max_length=16)),
                ("to_status", models.CharField(choices=SUBSCRIPTION_STATUS_CHOICES, max_length=16)),
                ("event_type", models.CharField(max_length=64)),
                ("gateway_event_id", models.CharField(blank=True, max_length=128)),
                ("applied", models.BooleanField(default=True)),
                ("reason", models.CharField(blank=True, max_length=255)),
                (
                    "subscription",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="status_events",
                        to="donations.subscription",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at", "id"],
                "indexes": [models.Index(fields=["subscription", "created_at"], name="donations_subevent_sub_idx")],
            },
        ),
    ]
