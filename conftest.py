"""Shared pytest fixtures."""

import hashlib
import hmac
import json

import pytest
from django.core.cache import cache

WEBHOOK_SECRET = "whsec_test"


@pytest.fixture(autouse=True)
def _reset_cache_and_gateway_settings(settings):
    # Throttle counters live in the cache.
    cache.clear()
    settings.HELCIM_API_TOKEN = "test-token"
    settings.HELCIM_BASE_URL = "https://api.helcim.test/v2"
    settings.HELCIM_WEBHOOK_VERIFIER_TOKEN = WEBHOOK_SECRET
    settings.HELCIM_WEBHOOK_IPS = []
    settings.HELCIM_MAX_RETRIES = 2
    settings.HELCIM_RETRY_BACKOFF = 0
    settings.EMAIL_BACKEND = "django.core.mail.backends.locmem.EmailBackend"
    yield
    cache.clear()


@pytest.fixture
def sign():
    """Return a helper producing (raw_body, X-Helcim-Signature) for a payload."""

    def _sign(payload, secret=WEBHOOK_SECRET):
        raw = payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")
        digest = hmac.new(secret.encode("utf-8"), msg=raw, digestmod=hashlib.sha256).hexdigest()
        return raw, f"sha256={digest}"

    return _sign


@pytest.fixture
def post_webhook(sign):
    """POST a signed delivery to the Helcim webhook endpoint."""

    from rest_framework.test import APIClient

    client = APIClient()

    def _post(payload, **extra):
        raw, sig = sign(payload)
        return client.post(
            "/api/v1/payments/webhooks/helcim/",
            data=raw,
            content_type="application/json",
            HTTP_X_HELCIM_SIGNATURE=sig,
            **extra,
        )

    return _post
