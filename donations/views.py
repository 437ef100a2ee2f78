"""Donation API endpoints.

Checkout initiation, completion of the recurring flow once the donor's card
is verified, and a public status lookup by reference.
"""

import logging

from django.utils.decorators import method_decorator
from django.views.decorators.csrf import csrf_exempt
from drf_spectacular.utils import OpenApiExample, OpenApiParameter, extend_schema, inline_serializer
from payments.gateway import GatewayAmbiguous, GatewayRejected, GatewayUnavailable
from rest_framework import serializers as rf_serializers
from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from .selectors import get_donation_by_reference
from .serializers import DonationCheckoutSerializer, DonationCompleteSerializer, DonationSerializer
from .services import (
    DONOR_FIELDS,
    CheckoutNotCompletable,
    InvalidDonationRequest,
    complete_recurring_checkout,
    compute_request_hash,
    initialize_donation,
    with_idempotency,
)

logger = logging.getLogger("avr.donations")

DonationsError = inline_serializer(name="DonationsError", fields={"detail": rf_serializers.CharField()})


@method_decorator(csrf_exempt, name="dispatch")
class DonationCheckoutView(APIView):
    """Start a one-time or recurring donation checkout.

    Returns the checkout token the browser hands to HelcimPay.js. The
    donation stays pending until the gateway confirms it by webhook.
    """

    permission_classes = [AllowAny]
    throttle_scope = "donations_write"
    throttle_classes = [ScopedRateThrottle]

    @extend_schema(
        tags=["Donations Endpoints"],
        summary="Initialize donation checkout",
        description=(
            "Validates the donor's submission and opens a gateway checkout session. One-time gifts "
            "open a `purchase` session for the exact amount (in cents); recurring gifts open a "
            "`verify` session and provision the payment plan for the amount and frequency."
        ),
        parameters=[
            OpenApiParameter(
                name="Idempotency-Key",
                location=OpenApiParameter.HEADER,
                required=False,
                description="Replays the first response for repeated submissions with the same key",
                type=str,
            )
        ],
        request=DonationCheckoutSerializer,
        responses={
            200: inline_serializer(
                name="DonationCheckoutResponse",
                fields={
                    "reference": rf_serializers.CharField(),
                    "checkout_token": rf_serializers.CharField(),
                    "kind": rf_serializers.CharField(),
                    "amount": rf_serializers.IntegerField(),
                    "currency": rf_serializers.CharField(),
                    "status": rf_serializers.CharField(),
                },
            ),
            400: inline_serializer(
                name="DonationsValidationError",
                fields={"detail": rf_serializers.CharField(), "errors": rf_serializers.DictField()},
            ),
            409: DonationsError,
            502: DonationsError,
            503: DonationsError,
        },
        examples=[
            OpenApiExample(
                "One-time gift",
                value={
                    "kind": "one_time",
                    "amount": 5000,
                    "currency": "USD",
                    "donor_name": "Ada",
                    "donor_email": "ada@example.com",
                },
                request_only=True,
            ),
            OpenApiExample(
                "Monthly gift",
                value={
                    "kind": "recurring",
                    "amount": 2000,
                    "frequency": "monthly",
                    "donor_name": "Ada",
                    "donor_email": "ada@example.com",
                },
                request_only=True,
            ),
        ],
    )
    def post(self, request, *args, **kwargs):
        idem_key = request.headers.get("Idempotency-Key")
        serializer = DonationCheckoutSerializer(data=request.data)
        if not serializer.is_valid():
            logger.warning("donations_checkout_invalid_payload", extra={"errors": serializer.errors})
            return Response(
                {"detail": "Invalid donation request", "errors": serializer.errors},
                status=status.HTTP_400_BAD_REQUEST,
            )
        body = serializer.validated_data

        def handler():
            try:
                donation, token = initialize_donation(
                    kind=body["kind"],
                    amount=body["amount"],
                    currency=body.get("currency"),
                    frequency=body.get("frequency") or None,
                    donor={k: body.get(k, "") for k in DONOR_FIELDS},
                    comments=body.get("comments", ""),
                )
            except InvalidDonationRequest as exc:
                logger.warning("donations_checkout_rejected", extra={"errors": exc.errors})
                return {"detail": "Invalid donation request", "errors": exc.errors}, status.HTTP_400_BAD_REQUEST
            except GatewayRejected as exc:
                logger.error("donations_checkout_gateway_rejected", extra={"code": exc.status_code})
                return {"detail": "Payment gateway rejected the request"}, status.HTTP_502_BAD_GATEWAY
            except (GatewayUnavailable, GatewayAmbiguous) as exc:
                logger.error("donations_checkout_gateway_unavailable", extra={"error": str(exc)})
                return (
                    {"detail": "Payment gateway unavailable, please try again"},
                    status.HTTP_503_SERVICE_UNAVAILABLE,
                )
            return (
                {
                    "reference": donation.reference,
                    "checkout_token": token,
                    "kind": donation.kind,
                    "amount": donation.amount,
                    "currency": donation.currency,
                    "status": donation.status,
                },
                status.HTTP_200_OK,
            )

        resp_body, code = with_idempotency(
            key=idem_key,
            path=request.path,
            method=request.method,
            handler=handler,
            request_hash=compute_request_hash(dict(body)),
        )
        logger.info(
            "donations_checkout_result",
            extra={"status_code": int(code), "idem_key_provided": bool(idem_key), "kind": body["kind"]},
        )
        return Response(resp_body, status=code)


@method_decorator(csrf_exempt, name="dispatch")
class DonationCompleteView(APIView):
    """Create the gateway subscription for a verified recurring donation."""

    permission_classes = [AllowAny]
    throttle_scope = "donations_write"
    throttle_classes = [ScopedRateThrottle]

    @extend_schema(
        tags=["Donations Endpoints"],
        summary="Complete recurring donation",
        description=(
            "Called after HelcimPay.js verified the card. Creates the subscription on the gateway. "
            "The subscription stays `pending` until the gateway's webhook activates it; a lost "
            "gateway answer yields 202 and the webhook links the subscription later."
        ),
        request=DonationCompleteSerializer,
        responses={
            200: inline_serializer(
                name="DonationCompleteResponse",
                fields={
                    "reference": rf_serializers.CharField(),
                    "status": rf_serializers.CharField(),
                    "subscription_linked": rf_serializers.BooleanField(),
                },
            ),
            202: inline_serializer(
                name="DonationCompletePending",
                fields={"reference": rf_serializers.CharField(), "status": rf_serializers.CharField()},
            ),
            400: DonationsError,
            404: DonationsError,
            409: DonationsError,
            502: DonationsError,
            503: DonationsError,
        },
    )
    def post(self, request, reference: str, *args, **kwargs):
        serializer = DonationCompleteSerializer(data=request.data)
        if not serializer.is_valid():
            return Response({"detail": "customer_code is required"}, status=status.HTTP_400_BAD_REQUEST)

        donation = get_donation_by_reference(reference)
        if not donation:
            return Response({"detail": "Donation not found"}, status=status.HTTP_404_NOT_FOUND)

        try:
            subscription = complete_recurring_checkout(
                donation=donation, customer_code=serializer.validated_data["customer_code"]
            )
        except CheckoutNotCompletable as exc:
            logger.warning("donations_complete_not_allowed", extra={"reference": reference, "reason": str(exc)})
            return Response({"detail": "Donation cannot be completed"}, status=status.HTTP_409_CONFLICT)
        except GatewayAmbiguous:
            logger.warning("donations_complete_ambiguous", extra={"reference": reference})
            return Response({"reference": reference, "status": "pending"}, status=status.HTTP_202_ACCEPTED)
        except GatewayRejected as exc:
            logger.error("donations_complete_gateway_rejected", extra={"reference": reference, "code": exc.status_code})
            return Response({"detail": "Payment gateway rejected the request"}, status=status.HTTP_502_BAD_GATEWAY)
        except GatewayUnavailable:
            logger.error("donations_complete_gateway_unavailable", extra={"reference": reference})
            return Response(
                {"detail": "Payment gateway unavailable, please try again"},
                status=status.HTTP_503_SERVICE_UNAVAILABLE,
            )

        return Response(
            {
                "reference": reference,
                "status": subscription.status,
                "subscription_linked": bool(subscription.gateway_subscription_id),
            }
        )


class DonationDetailView(APIView):
    """Public status of a donation by its reference."""

    permission_classes = [AllowAny]
    throttle_scope = "donations"
    throttle_classes = [ScopedRateThrottle]

    @extend_schema(
        tags=["Donations Endpoints"],
        summary="Get donation by reference",
        responses={200: DonationSerializer, 404: DonationsError},
    )
    def get(self, request, reference: str, *args, **kwargs):
        donation = get_donation_by_reference(reference)
        if not donation:
            return Response({"detail": "Donation not found"}, status=status.HTTP_404_NOT_FOUND)
        return Response(DonationSerializer(donation).data)
