"""Serializers for the donation checkout endpoints.

Input serializers only check shape and types; amount limits, supported
currencies and the recurring rules live in `donations.services`.
"""

from common.choices import BillingFrequency, DonationKind
from drf_spectacular.utils import extend_schema_field
from rest_framework import serializers

from .models import Donation, Subscription


class DonationCheckoutSerializer(serializers.Serializer):
    """Donor submission for starting a checkout.

    `amount` is in cents. `frequency` is required for recurring gifts and
    ignored for one-time gifts.
    """

    kind = serializers.ChoiceField(choices=DonationKind.choices)
    amount = serializers.IntegerField()
    currency = serializers.CharField(max_length=8, required=False, allow_blank=True)
    frequency = serializers.ChoiceField(
        choices=BillingFrequency.choices, required=False, allow_null=True, allow_blank=True
    )
    donor_name = serializers.CharField(max_length=200)
    donor_email = serializers.EmailField()
    donor_phone = serializers.CharField(max_length=32, required=False, allow_blank=True)
    address_line1 = serializers.CharField(max_length=200, required=False, allow_blank=True)
    address_line2 = serializers.CharField(max_length=200, required=False, allow_blank=True)
    city = serializers.CharField(max_length=100, required=False, allow_blank=True)
    state = serializers.CharField(max_length=100, required=False, allow_blank=True)
    zip_code = serializers.CharField(max_length=20, required=False, allow_blank=True)
    comments = serializers.CharField(required=False, allow_blank=True)


class DonationCompleteSerializer(serializers.Serializer):
    """Customer code returned by the gateway after the card was verified."""

    customer_code = serializers.CharField(max_length=64)


class SubscriptionSummarySerializer(serializers.ModelSerializer):
    class Meta:
        model = Subscription
        fields = ("status", "frequency", "amount", "currency", "next_billing_at")


class DonationSerializer(serializers.ModelSerializer):
    """Public donation state. Never exposes gateway tokens."""

    subscription = serializers.SerializerMethodField()

    class Meta:
        model = Donation
        fields = (
            "reference",
            "kind",
            "amount",
            "currency",
            "status",
            "created_at",
            "confirmed_at",
            "subscription",
        )

    @extend_schema_field(SubscriptionSummarySerializer(allow_null=True))
    def get_subscription(self, obj):
        if not obj.is_recurring:
            return None
        sub = Subscription.objects.filter(donation=obj).first()
        return SubscriptionSummarySerializer(sub).data if sub else None
