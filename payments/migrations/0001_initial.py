import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="PaymentPlan",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("amount", models.PositiveIntegerField(help_text="Recurring amount in minor units (cents)")),
                (
                    "currency",
                    models.CharField(choices=[("USD", "US Dollar"), ("CAD", "Canadian Dollar")], max_length=8),
                ),
                (
                    "frequency",
                    models.CharField(
                        choices=[("weekly", "Weekly"), ("monthly", "Monthly"), ("yearly", "Yearly")], max_length=16
                    ),
                ),
                ("gateway_plan_id", models.CharField(blank=True, db_index=True, max_length=64)),
                ("idempotency_key", models.CharField(max_length=36)),
            ],
            options={
                "ordering": ["amount", "currency", "frequency"],
                "constraints": [
                    models.UniqueConstraint(fields=("amount", "currency", "frequency"), name="paymentplan_unique_tier"),
                    models.CheckConstraint(condition=models.Q(("amount__gt", 0)), name="paymentplan_amount_positive"),
                ],
            },
        ),
        migrations.CreateModel(
            name="WebhookEvent",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("gateway_event_id", models.CharField(max_length=128, unique=True)),
                ("event_type", models.CharField(db_index=True, max_length=64)),
                ("payload", models.TextField()),
                ("signature_verified", models.BooleanField(default=False)),
                (
                    "outcome",
                    models.CharField(
                        choices=[
                            ("processing", "Processing"),
                            ("succeeded", "Succeeded"),
                            ("failed", "Failed"),
                            ("ignored", "Ignored"),
                        ],
                        db_index=True,
                        default="processing",
                        max_length=16,
                    ),
                ),
                ("detail", models.TextField(blank=True)),
                ("attempts", models.PositiveIntegerField(default=0)),
                ("received_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
            ],
            options={
                "ordering": ["-received_at", "-id"],
                "indexes": [models.Index(fields=["outcome", "received_at"], name="payments_webhook_outcome_idx")],
            },
        ),
    ]
