"""Donation receipt emails.

Receipts are sent after the confirming transaction commits. Sending is
best-effort: a failure is logged and reported but never undoes the
confirmation.
"""

import logging
from typing import Dict

import sentry_sdk
from django.conf import settings
from django.core.mail import EmailMultiAlternatives
from django.template.loader import render_to_string
from django.utils import timezone
from donations.models import Donation
from payments.gateway import to_major_units

logger = logging.getLogger("avr.donations")


def build_receipt(donation: Donation) -> Dict:
    """Collect everything a receipt shows for a confirmed donation."""

    subscription = getattr(donation, "subscription", None) if donation.is_recurring else None
    confirmed_at = donation.confirmed_at or timezone.now()
    return {
        "reference": donation.reference,
        "donor_name": donation.donor_name,
        "donor_email": donation.donor_email,
        "amount": to_major_units(donation.amount),
        "amount_cents": donation.amount,
        "currency": donation.currency,
        "kind": donation.kind,
        "kind_display": donation.get_kind_display(),
        "date": timezone.localtime(confirmed_at).date(),
        "transaction_id": donation.gateway_txn_id or "",
        "is_recurring": donation.is_recurring,
        "frequency": subscription.get_frequency_display() if subscription else "",
        "subscription_id": (subscription.gateway_subscription_id or "") if subscription else "",
        "next_billing_date": subscription.next_billing_at if subscription else None,
        "organization_name": getattr(settings, "ORGANIZATION_NAME", ""),
        "organization_ein": getattr(settings, "ORGANIZATION_EIN", ""),
        "organization_address": getattr(settings, "ORGANIZATION_ADDRESS", ""),
    }


def render_receipt(receipt: Dict) -> Dict[str, str]:
    subject = render_to_string("donations/emails/receipt_subject.txt", receipt)
    return {
        "subject": " ".join(subject.split()),
        "text": render_to_string("donations/emails/receipt.txt", receipt),
        "html": render_to_string("donations/emails/receipt.html", receipt),
    }


def send_receipt(rendered: Dict[str, str], recipient: str) -> None:
    """Hand a rendered receipt to the configured email backend."""

    message = EmailMultiAlternatives(
        subject=rendered["subject"],
        body=rendered["text"],
        from_email=getattr(settings, "DEFAULT_FROM_EMAIL", None),
        to=[recipient],
    )
    message.attach_alternative(rendered["html"], "text/html")
    message.send(fail_silently=False)


def send_donation_receipt(donation_id: int) -> bool:
    """Send the receipt for a confirmed donation. Returns True when sent."""

    try:
        donation = Donation.objects.select_related("subscription").get(pk=donation_id)
        if not donation.is_confirmed:
            logger.warning("donation_receipt_skipped", extra={"donation_id": donation_id, "status": donation.status})
            return False
        if not donation.donor_email:
            logger.warning("donation_receipt_no_recipient", extra={"reference": donation.reference})
            return False
        send_receipt(render_receipt(build_receipt(donation)), donation.donor_email)
    except Exception as e:
        logger.exception("donation_receipt_failed", extra={"donation_id": donation_id})
        sentry_sdk.capture_exception(e)
        return False

    logger.info("donation_receipt_sent", extra={"reference": donation.reference})
    return True
