"""Parsing of inbound gateway webhook bodies.

A delivery is an envelope `{"id", "type", "createdAt", "data"}`. The `type`
is the tag: every `WebhookEventType` maps to exactly one payload serializer
in `EVENT_SHAPES`, and a tag outside the enum is rejected with
`UnsupportedEventType` instead of falling through silently.
"""

import json
from typing import Dict, Tuple

from common.choices import WebhookEventType
from django.core.exceptions import ImproperlyConfigured
from rest_framework import serializers


class InvalidEventPayload(Exception):
    """The body is not a well-formed webhook envelope or payload."""


class UnsupportedEventType(Exception):
    """The envelope names an event type this system does not handle."""


class WebhookEnvelopeSerializer(serializers.Serializer):
    id = serializers.CharField(max_length=128)
    type = serializers.CharField(max_length=64)
    createdAt = serializers.DateTimeField(source="occurred_at", required=False, allow_null=True)
    data = serializers.DictField(required=False, default=dict)


class PaymentEventSerializer(serializers.Serializer):
    """Payload of `payment.*` events."""

    transactionId = serializers.CharField(source="transaction_id", required=False, allow_blank=True, default="")
    invoiceNumber = serializers.CharField(source="invoice_number", required=False, allow_blank=True, default="")
    checkoutToken = serializers.CharField(source="checkout_token", required=False, allow_blank=True, default="")
    subscriptionId = serializers.CharField(source="subscription_id", required=False, allow_blank=True, default="")
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, allow_null=True, default=None)
    currency = serializers.CharField(required=False, allow_blank=True, default="")
    reason = serializers.CharField(required=False, allow_blank=True, default="")

    def validate(self, attrs):
        if not any(attrs.get(k) for k in ("transaction_id", "invoice_number", "checkout_token", "subscription_id")):
            raise serializers.ValidationError("Payment event carries no identifier")
        return attrs


class SubscriptionEventSerializer(serializers.Serializer):
    """Payload of `subscription.*` events."""

    subscriptionId = serializers.CharField(source="subscription_id")
    paymentPlanId = serializers.CharField(source="payment_plan_id", required=False, allow_blank=True, default="")
    customerCode = serializers.CharField(source="customer_code", required=False, allow_blank=True, default="")
    nextBillingDate = serializers.DateField(source="next_billing_date", required=False, allow_null=True, default=None)
    status = serializers.CharField(required=False, allow_blank=True, default="")


EVENT_SHAPES = {
    WebhookEventType.PAYMENT_SUCCEEDED: PaymentEventSerializer,
    WebhookEventType.PAYMENT_FAILED: PaymentEventSerializer,
    WebhookEventType.SUBSCRIPTION_CREATED: SubscriptionEventSerializer,
    WebhookEventType.SUBSCRIPTION_UPDATED: SubscriptionEventSerializer,
    WebhookEventType.SUBSCRIPTION_RENEWED: SubscriptionEventSerializer,
    WebhookEventType.SUBSCRIPTION_PAYMENT_FAILED: SubscriptionEventSerializer,
    WebhookEventType.SUBSCRIPTION_CANCELED: SubscriptionEventSerializer,
    WebhookEventType.SUBSCRIPTION_COMPLETED: SubscriptionEventSerializer,
}

_unmapped = set(WebhookEventType) - set(EVENT_SHAPES)
if _unmapped:  # pragma: no cover
    raise ImproperlyConfigured(f"Webhook event types without a payload shape: {sorted(_unmapped)}")


def parse_envelope(raw_body: bytes) -> Dict:
    """Decode the raw body into a validated envelope.

    Returns a dict with `id`, `type`, `data` and, when sent, `occurred_at`.
    """

    try:
        body = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise InvalidEventPayload("Body is not valid JSON") from exc
    if not isinstance(body, dict):
        raise InvalidEventPayload("Body is not a JSON object")

    s = WebhookEnvelopeSerializer(data=body)
    if not s.is_valid():
        raise InvalidEventPayload(f"Invalid envelope: {s.errors}")
    return dict(s.validated_data)


def parse_event_data(event_type: str, data: Dict) -> Tuple[WebhookEventType, Dict]:
    """Resolve the tag and validate `data` against its shape."""

    try:
        kind = WebhookEventType(event_type)
    except ValueError as exc:
        raise UnsupportedEventType(event_type) from exc

    s = EVENT_SHAPES[kind](data=data or {})
    if not s.is_valid():
        raise InvalidEventPayload(f"Invalid {kind.value} payload: {s.errors}")
    return kind, dict(s.validated_data)
