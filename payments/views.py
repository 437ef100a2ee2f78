"""Payments API endpoints.

Includes healthcheck and the Helcim webhook receiver.
"""

import logging

import sentry_sdk
from common.choices import WebhookOutcome
from django.conf import settings
from django.utils.decorators import method_decorator
from django.views.decorators.csrf import csrf_exempt
from drf_spectacular.utils import extend_schema, inline_serializer
from payments.events import InvalidEventPayload, parse_envelope
from payments.services import SignatureVerificationFailed, process_webhook_event, verify_helcim_signature
from rest_framework import serializers as rf_serializers
from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

logger = logging.getLogger("avr.payments")


class PaymentsHealthView(APIView):
    """Basic health endpoint for the payments app."""

    permission_classes = [AllowAny]
    throttle_scope = "payments"

    @extend_schema(tags=["Payments Endpoints"], summary="Payments health")
    def get(self, request, *args, **kwargs):
        return Response({"status": "ok"})


@method_decorator(csrf_exempt, name="dispatch")
class HelcimWebhookView(APIView):
    """Handle Helcim webhook deliveries.

    Authenticates the raw body, records the delivery by event id and applies
    it at most once. Processing failures answer 500 so the gateway retries;
    event data that does not fit its type answers 400.
    """

    permission_classes = [AllowAny]
    throttle_scope = "payments"
    throttle_classes = [ScopedRateThrottle]

    @extend_schema(
        tags=["Payments Endpoints"],
        summary="Helcim webhook handler",
        description=(
            "Verifies `X-Helcim-Signature` (HMAC-SHA256 of the raw body) and processes "
            "payment and subscription events idempotently by event id."
        ),
        request=inline_serializer(
            name="HelcimWebhookPayload",
            fields={
                "id": rf_serializers.CharField(),
                "type": rf_serializers.CharField(),
                "createdAt": rf_serializers.DateTimeField(required=False),
                "data": rf_serializers.JSONField(),
            },
        ),
        responses={
            200: inline_serializer(
                name="WebhookProcessed",
                fields={"status": rf_serializers.CharField(), "event_id": rf_serializers.CharField()},
            ),
            400: inline_serializer(name="WebhookPayloadError", fields={"detail": rf_serializers.CharField()}),
            401: inline_serializer(name="WebhookAuthError", fields={"detail": rf_serializers.CharField()}),
            403: inline_serializer(name="WebhookForbidden", fields={"detail": rf_serializers.CharField()}),
            500: inline_serializer(name="WebhookFailed", fields={"detail": rf_serializers.CharField()}),
        },
    )
    def post(self, request, *args, **kwargs):
        raw = request.body or b""
        remote_ip = request.META.get("REMOTE_ADDR")
        try:
            verify_helcim_signature(raw, request.headers.get("X-Helcim-Signature"))
        except SignatureVerificationFailed as exc:
            logger.warning(
                "payments_webhook_invalid_signature",
                extra={"remote_addr": remote_ip, "path": request.path, "reason": exc.reason},
            )
            sentry_sdk.capture_message("payments_webhook_invalid_signature", level="warning")
            return Response({"detail": "Invalid signature"}, status=status.HTTP_401_UNAUTHORIZED)

        ips = getattr(settings, "HELCIM_WEBHOOK_IPS", [])
        if ips and remote_ip not in ips:
            logger.warning("payments_webhook_forbidden_ip", extra={"remote_addr": remote_ip, "allowed": ips})
            return Response({"detail": "Forbidden"}, status=status.HTTP_403_FORBIDDEN)

        try:
            envelope = parse_envelope(raw)
        except InvalidEventPayload as exc:
            logger.warning(
                "payments_webhook_invalid_payload",
                extra={"remote_addr": remote_ip, "path": request.path, "error": str(exc)},
            )
            return Response({"detail": "Invalid payload"}, status=status.HTTP_400_BAD_REQUEST)

        try:
            record, duplicate = process_webhook_event(envelope=envelope, raw_body=raw)
        except InvalidEventPayload:
            return Response({"detail": "Invalid payload"}, status=status.HTTP_400_BAD_REQUEST)
        if duplicate:
            return Response({"status": "duplicate", "event_id": record.gateway_event_id})
        if record.outcome == WebhookOutcome.FAILED:
            return Response({"detail": "Webhook processing failed"}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)
        return Response({"status": record.outcome, "event_id": record.gateway_event_id})
