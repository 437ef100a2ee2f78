"""Checkout orchestration for donations.

Turns a donor's submission into a pending Donation (plus a Subscription
placeholder for recurring gifts) and a gateway checkout token. Statuses are
never advanced here; that is left to verified webhooks.
"""

import hashlib
import json
import logging
from typing import Callable, Dict, Optional, Tuple

from common.choices import BillingFrequency, CheckoutMode, Currency, DonationKind, SubscriptionStatus
from django.conf import settings
from django.db import IntegrityError, transaction
from donations.models import Donation, IdempotencyKey, Subscription, generate_reference
from payments.gateway import HelcimClient, new_idempotency_key
from payments.services import find_or_create_payment_plan

logger = logging.getLogger("avr.donations")

DONOR_FIELDS = (
    "donor_name",
    "donor_email",
    "donor_phone",
    "address_line1",
    "address_line2",
    "city",
    "state",
    "zip_code",
)


class InvalidDonationRequest(Exception):
    """The submission failed validation; `errors` maps field to message."""

    def __init__(self, errors: Dict[str, str]):
        super().__init__("Invalid donation request")
        self.errors = errors


class CheckoutNotCompletable(Exception):
    """The donation is not a recurring gift awaiting its subscription."""


def validate_donation_request(
    *, kind: str, amount, currency: Optional[str], donor: Dict, frequency: Optional[str] = None
) -> Dict:
    """Return normalized checkout input or raise `InvalidDonationRequest`."""

    errors: Dict[str, str] = {}

    if kind not in DonationKind.values:
        errors["kind"] = "Must be one of: " + ", ".join(DonationKind.values)

    try:
        amount = int(amount)
    except (TypeError, ValueError):
        errors["amount"] = "Amount must be a whole number of cents"
    else:
        max_amount = getattr(settings, "DONATIONS_MAX_AMOUNT", None)
        if amount <= 0:
            errors["amount"] = "Amount must be greater than zero"
        elif max_amount and amount > int(max_amount):
            errors["amount"] = f"Amount must not exceed {max_amount}"

    currency = (currency or getattr(settings, "DONATIONS_DEFAULT_CURRENCY", Currency.USD)).upper()
    supported = getattr(settings, "DONATIONS_SUPPORTED_CURRENCIES", None) or Currency.values
    if currency not in set(supported) or currency not in Currency.values:
        errors["currency"] = "Unsupported currency"

    donor = {k: (donor.get(k) or "").strip() for k in DONOR_FIELDS}
    if not donor["donor_name"]:
        errors["donor_name"] = "Donor name is required"
    if not donor["donor_email"]:
        errors["donor_email"] = "Donor email is required"

    if kind == DonationKind.RECURRING:
        if frequency not in BillingFrequency.values:
            errors["frequency"] = "Must be one of: " + ", ".join(BillingFrequency.values)
    else:
        frequency = None

    if errors:
        raise InvalidDonationRequest(errors)
    return {"kind": kind, "amount": amount, "currency": currency, "donor": donor, "frequency": frequency}


def _customer_request(donor: Dict) -> Dict:
    customer = {
        "contactName": donor["donor_name"],
        "email": donor["donor_email"],
    }
    if donor.get("donor_phone"):
        customer["cellPhone"] = donor["donor_phone"]
    if donor.get("address_line1"):
        customer["billingAddress"] = {
            "name": donor["donor_name"],
            "street1": donor["address_line1"],
            "street2": donor.get("address_line2", ""),
            "city": donor.get("city", ""),
            "province": donor.get("state", ""),
            "postalCode": donor.get("zip_code", ""),
            "email": donor["donor_email"],
        }
    return customer


def initialize_donation(
    *,
    kind: str,
    amount,
    currency: Optional[str],
    donor: Dict,
    frequency: Optional[str] = None,
    comments: str = "",
    client: Optional[HelcimClient] = None,
) -> Tuple[Donation, str]:
    """Validate, open a gateway checkout session and persist a pending donation.

    Returns `(donation, checkout_token)`. Every gateway call happens before
    any local row is written, so a gateway error leaves nothing behind.
    """

    clean = validate_donation_request(kind=kind, amount=amount, currency=currency, donor=donor, frequency=frequency)
    client = client or HelcimClient()
    reference = generate_reference()
    recurring = clean["kind"] == DonationKind.RECURRING

    session = client.create_checkout_session(
        amount=clean["amount"],
        currency=clean["currency"],
        mode=CheckoutMode.VERIFY if recurring else CheckoutMode.PURCHASE,
        customer=_customer_request(clean["donor"]),
        invoice_number=reference,
        idempotency_key=new_idempotency_key(),
    )

    plan = None
    if recurring:
        plan = find_or_create_payment_plan(
            amount=clean["amount"],
            currency=clean["currency"],
            frequency=clean["frequency"],
            client=client,
        )

    with transaction.atomic():
        donation = Donation.objects.create(
            reference=reference,
            kind=clean["kind"],
            amount=clean["amount"],
            currency=clean["currency"],
            checkout_token=session["checkout_token"],
            secret_token=session.get("secret_token", ""),
            comments=comments or "",
            **clean["donor"],
        )
        if plan is not None:
            Subscription.objects.create(
                donation=donation,
                plan=plan,
                idempotency_key=new_idempotency_key(),
                amount=clean["amount"],
                currency=clean["currency"],
                frequency=clean["frequency"],
            )

    logger.info(
        "donation_checkout_initialized",
        extra={
            "reference": donation.reference,
            "kind": donation.kind,
            "amount": donation.amount,
            "currency": donation.currency,
            "plan_id": getattr(plan, "id", None),
        },
    )
    return donation, session["checkout_token"]


def complete_recurring_checkout(
    *, donation: Donation, customer_code: str, client: Optional[HelcimClient] = None
) -> Subscription:
    """Create the gateway subscription once the donor's card is verified.

    The customer code is stored first so a `subscription.created` webhook can
    be matched even if the create call's answer is lost. The subscription's
    own idempotency key is reused on every attempt. Status stays `pending`.
    """

    if not donation.is_recurring:
        raise CheckoutNotCompletable(f"Donation {donation.reference} is not recurring")
    try:
        subscription = Subscription.objects.select_related("plan").get(donation=donation)
    except Subscription.DoesNotExist:
        raise CheckoutNotCompletable(f"Donation {donation.reference} has no subscription") from None
    if subscription.gateway_subscription_id:
        return subscription
    if subscription.status != SubscriptionStatus.PENDING:
        raise CheckoutNotCompletable(f"Subscription {subscription.id} is {subscription.status}")

    Subscription.objects.filter(pk=subscription.pk).update(customer_code=customer_code)
    subscription.customer_code = customer_code

    client = client or HelcimClient()
    gateway_id = client.create_subscription(
        customer_code=customer_code,
        plan_id=subscription.plan.gateway_plan_id,
        amount=subscription.amount,
        idempotency_key=subscription.idempotency_key,
    )

    Subscription.objects.filter(pk=subscription.pk, gateway_subscription_id__isnull=True).update(
        gateway_subscription_id=gateway_id
    )
    subscription.refresh_from_db()
    logger.info(
        "donation_subscription_linked",
        extra={
            "reference": donation.reference,
            "subscription_id": subscription.id,
            "gateway_subscription_id": subscription.gateway_subscription_id,
        },
    )
    return subscription


def compute_request_hash(body) -> Optional[str]:
    """Stable hash of a request body, or None when it cannot be serialized."""

    if not body:
        return None
    try:
        encoded = json.dumps(body, sort_keys=True, separators=(",", ":")).encode("utf-8")
    except (TypeError, ValueError):
        return None
    return hashlib.sha256(encoded).hexdigest()


def with_idempotency(
    *,
    key: Optional[str],
    path: str,
    method: str,
    handler: Callable[[], Tuple[Dict, int]],
    request_hash: Optional[str] = None,
) -> Tuple[Dict, int]:
    """Run `handler` at most once per (key, path, method) and replay its response.

    Server-side failures (5xx or an exception) release the key so the
    client may retry with it.
    """

    if not key:
        return handler()

    try:
        with transaction.atomic():
            record = IdempotencyKey.objects.create(key=key, path=path, method=method, request_hash=request_hash)
    except IntegrityError:
        existing = IdempotencyKey.objects.get(key=key, path=path, method=method)
        if existing.request_hash and request_hash and existing.request_hash != request_hash:
            logger.warning("idempotency_key_conflict", extra={"key": key, "path": path})
            return {"detail": "Idempotency key reused with different request payload"}, 409
        if existing.response_code is None:
            return {"detail": "Request in progress"}, 409
        logger.info("idempotency_replayed", extra={"key": key, "path": path, "code": existing.response_code})
        return existing.response_body, existing.response_code

    try:
        body, code = handler()
    except Exception:
        record.delete()
        raise

    if int(code) >= 500:
        record.delete()
    else:
        record.response_code = int(code)
        record.response_body = body
        record.save(update_fields=["response_code", "response_body", "updated_at"])
    return body, code
