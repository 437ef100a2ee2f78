import hashlib
import hmac

import pytest
from payments.models import WebhookEvent
from payments.services import (
    SignatureVerificationFailed,
    compute_helcim_signature,
    validate_helcim_signature,
    verify_helcim_signature,
)

BODY = b'{"id":"evt_1","type":"payment.succeeded","data":{}}'


def test_compute_signature_format(settings):
    expected = hmac.new(b"whsec_test", msg=BODY, digestmod=hashlib.sha256).hexdigest()
    assert compute_helcim_signature(BODY, "whsec_test") == f"sha256={expected}"


def test_validate_signature_accepts_exact_body_only():
    sig = compute_helcim_signature(BODY, "whsec_test")
    assert validate_helcim_signature(BODY, sig)
    assert not validate_helcim_signature(BODY + b" ", sig)
    assert not validate_helcim_signature(BODY, sig[:-1] + "0" if sig[-1] != "0" else sig[:-1] + "1")
    assert not validate_helcim_signature(BODY, "")


def test_verify_signature_reasons(settings):
    with pytest.raises(SignatureVerificationFailed) as exc:
        verify_helcim_signature(BODY, None)
    assert exc.value.reason == "missing_signature"

    with pytest.raises(SignatureVerificationFailed) as exc:
        verify_helcim_signature(BODY, "sha256=deadbeef")
    assert exc.value.reason == "bad_signature"

    verify_helcim_signature(BODY, compute_helcim_signature(BODY, "whsec_test"))


def test_verify_signature_rejects_when_secret_unset(settings):
    settings.HELCIM_WEBHOOK_VERIFIER_TOKEN = ""
    with pytest.raises(SignatureVerificationFailed) as exc:
        verify_helcim_signature(BODY, compute_helcim_signature(BODY, ""))
    assert exc.value.reason == "missing_secret"


@pytest.mark.django_db
def test_webhook_invalid_signature_returns_401_and_writes_nothing(sign):
    from rest_framework.test import APIClient

    raw, _sig = sign({"id": "evt_bad", "type": "payment.succeeded", "data": {"invoiceNumber": "DON-X"}})
    client = APIClient()
    r = client.post(
        "/api/v1/payments/webhooks/helcim/",
        data=raw,
        content_type="application/json",
        HTTP_X_HELCIM_SIGNATURE="sha256=deadbeef",
    )
    assert r.status_code == 401
    assert r.json()["detail"] == "Invalid signature"
    assert WebhookEvent.objects.count() == 0


@pytest.mark.django_db
def test_webhook_missing_signature_returns_401(sign):
    from rest_framework.test import APIClient

    raw, _sig = sign({"id": "evt_nosig", "type": "payment.succeeded", "data": {}})
    r = APIClient().post("/api/v1/payments/webhooks/helcim/", data=raw, content_type="application/json")
    assert r.status_code == 401
    assert WebhookEvent.objects.count() == 0


@pytest.mark.django_db
def test_webhook_forbidden_ip_returns_403(settings, post_webhook):
    # Test client REMOTE_ADDR defaults to 127.0.0.1
    settings.HELCIM_WEBHOOK_IPS = ["1.2.3.4"]
    r = post_webhook({"id": "evt_ip", "type": "payment.succeeded", "data": {"invoiceNumber": "DON-X"}})
    assert r.status_code == 403
    assert r.json()["detail"] == "Forbidden"
    assert WebhookEvent.objects.count() == 0


@pytest.mark.django_db
def test_webhook_allowed_ip_passes(settings, post_webhook):
    settings.HELCIM_WEBHOOK_IPS = ["127.0.0.1"]
    r = post_webhook({"id": "evt_ip_ok", "type": "unknown.thing", "data": {}})
    assert r.status_code == 200
