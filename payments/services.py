"""Business logic for payments.

Implements Helcim webhook signature validation, payment plan provisioning
and the idempotent processing of verified webhook deliveries, which drives
every donation and subscription status change.
"""

import hashlib
import hmac
import logging
from typing import Callable, Dict, Optional, Tuple

import sentry_sdk
from common.choices import WebhookEventType, WebhookOutcome
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.db import transaction
from django.utils import timezone
from donations.lifecycle import LifecycleAnomaly, apply_subscription_event, confirm_donation, fail_donation
from donations.selectors import find_donation_for_payment, find_subscription_for_event
from payments.events import InvalidEventPayload, UnsupportedEventType, parse_event_data
from payments.gateway import HelcimClient, new_idempotency_key, to_minor_units
from payments.models import PaymentPlan, WebhookEvent
from payments.selectors import get_provisioned_plan

logger = logging.getLogger("avr.payments")

SIGNATURE_PREFIX = "sha256="


class SignatureVerificationFailed(Exception):
    """The webhook body could not be authenticated."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


def compute_helcim_signature(raw_body: bytes, secret: str) -> str:
    """Return the `X-Helcim-Signature` value for a body: `sha256=<hex digest>`."""

    digest = hmac.new(secret.encode("utf-8"), msg=raw_body, digestmod=hashlib.sha256).hexdigest()
    return SIGNATURE_PREFIX + digest


def validate_helcim_signature(raw_body: bytes, signature: str) -> bool:
    """Validate a webhook signature against HELCIM_WEBHOOK_VERIFIER_TOKEN."""

    secret = getattr(settings, "HELCIM_WEBHOOK_VERIFIER_TOKEN", "")
    if not secret or not signature:
        return False
    expected = compute_helcim_signature(raw_body, secret)
    return hmac.compare_digest(signature.strip().encode("utf-8"), expected.encode("utf-8"))


def verify_helcim_signature(raw_body: bytes, signature: Optional[str]) -> None:
    """Raise `SignatureVerificationFailed` unless the signature is valid.

    An unset verifier token rejects everything rather than accepting
    unauthenticated deliveries.
    """

    if not getattr(settings, "HELCIM_WEBHOOK_VERIFIER_TOKEN", ""):
        raise SignatureVerificationFailed("missing_secret")
    if not signature:
        raise SignatureVerificationFailed("missing_signature")
    if not validate_helcim_signature(raw_body, signature):
        raise SignatureVerificationFailed("bad_signature")


def find_or_create_payment_plan(
    *, amount: int, currency: str, frequency: str, client: Optional[HelcimClient] = None
) -> PaymentPlan:
    """Return the provisioned plan for a tier, creating it on the gateway once.

    Concurrent callers for the same tier all claim the same local row and
    send its stored idempotency key, so the gateway creates a single plan.
    No database transaction is held while talking to the gateway.
    """

    currency = currency.upper()
    plan = get_provisioned_plan(amount=amount, currency=currency, frequency=frequency)
    if plan:
        return plan

    client = client or HelcimClient()
    gateway_plan_id = client.find_payment_plan(amount=amount, currency=currency, frequency=frequency)

    plan, created = PaymentPlan.objects.get_or_create(
        amount=amount,
        currency=currency,
        frequency=frequency,
        defaults={"idempotency_key": new_idempotency_key()},
    )
    if plan.is_provisioned:
        return plan

    if not gateway_plan_id:
        gateway_plan_id = client.create_payment_plan(
            amount=amount,
            currency=currency,
            frequency=frequency,
            idempotency_key=plan.idempotency_key,
        )
        logger.info(
            "payment_plan_created",
            extra={"plan_id": plan.id, "gateway_plan_id": gateway_plan_id, "claimed": created},
        )

    # First writer wins; everyone re-reads the stored id.
    PaymentPlan.objects.filter(pk=plan.pk, gateway_plan_id="").update(
        gateway_plan_id=gateway_plan_id, updated_at=timezone.now()
    )
    plan.refresh_from_db()
    return plan


def handle_payment_succeeded(payload: Dict, *, occurred_at=None, gateway_event_id: str = "") -> str:
    donation = find_donation_for_payment(
        invoice_number=payload.get("invoice_number", ""),
        checkout_token=payload.get("checkout_token", ""),
        transaction_id=payload.get("transaction_id", ""),
        subscription_id=payload.get("subscription_id", ""),
    )
    if donation is None:
        if payload.get("subscription_id"):
            logger.info(
                "payments_renewal_payment_recorded",
                extra={
                    "subscription_id": payload["subscription_id"],
                    "transaction_id": payload.get("transaction_id", ""),
                    "event_id": gateway_event_id,
                },
            )
            return "renewal payment"
        logger.warning(
            "payments_webhook_donation_not_found",
            extra={"event_id": gateway_event_id, "transaction_id": payload.get("transaction_id", "")},
        )
        return "no matching donation"

    amount = payload.get("amount")
    confirm_donation(
        donation,
        transaction_id=payload.get("transaction_id", ""),
        amount=to_minor_units(amount) if amount is not None else None,
        currency=payload.get("currency", ""),
        occurred_at=occurred_at,
    )
    return f"donation {donation.reference} processed"


def handle_payment_failed(payload: Dict, *, occurred_at=None, gateway_event_id: str = "") -> str:
    donation = find_donation_for_payment(
        invoice_number=payload.get("invoice_number", ""),
        checkout_token=payload.get("checkout_token", ""),
        transaction_id=payload.get("transaction_id", ""),
        subscription_id=payload.get("subscription_id", ""),
    )
    if donation is None:
        logger.warning(
            "payments_webhook_donation_not_found",
            extra={"event_id": gateway_event_id, "transaction_id": payload.get("transaction_id", "")},
        )
        return "no matching donation"

    fail_donation(
        donation,
        reason=payload.get("reason") or "payment_failed",
        transaction_id=payload.get("transaction_id", ""),
    )
    return f"donation {donation.reference} failed"


def _subscription_handler(event_type: WebhookEventType) -> Callable[..., str]:
    def handler(payload: Dict, *, occurred_at=None, gateway_event_id: str = "") -> str:
        subscription = find_subscription_for_event(
            gateway_subscription_id=payload["subscription_id"],
            customer_code=payload.get("customer_code", ""),
            gateway_plan_id=payload.get("payment_plan_id", ""),
        )
        if subscription is None:
            logger.warning(
                "payments_webhook_subscription_not_found",
                extra={"event_id": gateway_event_id, "subscription_id": payload["subscription_id"]},
            )
            return "no matching subscription"

        sub = apply_subscription_event(
            subscription,
            event_type,
            occurred_at=occurred_at,
            gateway_event_id=gateway_event_id,
            gateway_subscription_id=payload["subscription_id"],
            next_billing_at=payload.get("next_billing_date"),
        )
        return f"subscription {sub.id} is {sub.status}"

    handler.__name__ = f"handle_{event_type.value.replace('.', '_')}"
    return handler


EVENT_HANDLERS: Dict[WebhookEventType, Callable[..., str]] = {
    WebhookEventType.PAYMENT_SUCCEEDED: handle_payment_succeeded,
    WebhookEventType.PAYMENT_FAILED: handle_payment_failed,
}
for _kind in WebhookEventType:
    if _kind.value.startswith("subscription."):
        EVENT_HANDLERS[_kind] = _subscription_handler(_kind)

_unhandled = set(WebhookEventType) - set(EVENT_HANDLERS)
if _unhandled:  # pragma: no cover
    raise ImproperlyConfigured(f"Webhook event types without a handler: {sorted(_unhandled)}")


def dispatch_event(
    event_type: str, data: Dict, *, occurred_at=None, gateway_event_id: str = ""
) -> Tuple[str, str]:
    """Route one event to its handler and return `(outcome, detail)`.

    Unknown types are ignored. Lifecycle anomalies are a normal outcome of
    at-least-once delivery and are reported as succeeded with the anomaly as
    detail. Anything else propagates so the delivery is retried.
    """

    try:
        kind, payload = parse_event_data(event_type, data)
    except UnsupportedEventType:
        logger.info("payments_webhook_ignored_event", extra={"event": event_type, "event_id": gateway_event_id})
        return WebhookOutcome.IGNORED, f"Unsupported event type {event_type}"

    try:
        detail = EVENT_HANDLERS[kind](payload, occurred_at=occurred_at, gateway_event_id=gateway_event_id)
    except LifecycleAnomaly as exc:
        return WebhookOutcome.SUCCEEDED, f"{exc.__class__.__name__}: {exc}"
    return WebhookOutcome.SUCCEEDED, detail or ""


def process_webhook_event(*, envelope: Dict, raw_body: bytes) -> Tuple[WebhookEvent, bool]:
    """Record and apply one verified delivery exactly once.

    Returns `(record, duplicate)`. A delivery whose id already finished is
    returned untouched. A failed handler leaves the record `failed` (its
    partial writes rolled back) so a redelivery runs it again. Event data
    that does not match its type is recorded `failed` and then raised as
    `InvalidEventPayload`.
    """

    event_id = envelope["id"]
    event_type = envelope["type"]
    payload_text = raw_body.decode("utf-8", errors="replace")
    invalid: Optional[InvalidEventPayload] = None

    with transaction.atomic():
        record, created = WebhookEvent.objects.select_for_update().get_or_create(
            gateway_event_id=event_id,
            defaults={
                "event_type": event_type,
                "payload": payload_text,
                "signature_verified": True,
            },
        )
        if not created and record.is_final:
            logger.info(
                "payments_webhook_ignored_duplicate",
                extra={"event_id": event_id, "event": event_type, "outcome": record.outcome},
            )
            return record, True

        record.event_type = event_type
        record.payload = payload_text
        record.signature_verified = True
        record.outcome = WebhookOutcome.PROCESSING
        record.attempts += 1
        record.save(update_fields=["event_type", "payload", "signature_verified", "outcome", "attempts", "updated_at"])

        try:
            with transaction.atomic():
                outcome, detail = dispatch_event(
                    event_type,
                    envelope.get("data") or {},
                    occurred_at=envelope.get("occurred_at"),
                    gateway_event_id=event_id,
                )
        except InvalidEventPayload as exc:
            invalid = exc
            outcome, detail = WebhookOutcome.FAILED, f"{exc.__class__.__name__}: {exc}"
        except Exception as exc:
            logger.exception(
                "payments_webhook_processing_failed",
                extra={"event_id": event_id, "event": event_type, "attempts": record.attempts},
            )
            sentry_sdk.capture_exception(exc)
            outcome, detail = WebhookOutcome.FAILED, f"{exc.__class__.__name__}: {exc}"

        record.outcome = outcome
        record.detail = detail
        record.processed_at = timezone.now()
        record.save(update_fields=["outcome", "detail", "processed_at", "updated_at"])

    if invalid is not None:
        logger.warning(
            "payments_webhook_invalid_event_data",
            extra={"event_id": event_id, "event": event_type, "error": str(invalid)},
        )
        raise invalid

    logger.info(
        "payments_webhook_processed",
        extra={"event_id": event_id, "event": event_type, "outcome": record.outcome, "attempts": record.attempts},
    )
    return record, False
