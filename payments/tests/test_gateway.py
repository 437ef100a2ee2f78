import json
import uuid
from decimal import Decimal
from unittest.mock import patch

import httpx
import pytest
from payments.gateway import (
    GatewayAmbiguous,
    GatewayRejected,
    GatewayUnavailable,
    HelcimClient,
    new_idempotency_key,
    to_major_units,
    to_minor_units,
)


def make_client(handler, max_retries=2):
    return HelcimClient(
        api_token="tok_123",
        base_url="https://api.helcim.test/v2",
        timeout=1,
        max_retries=max_retries,
        transport=httpx.MockTransport(handler),
    )


def test_new_idempotency_key_is_uuid4_and_unique():
    keys = {new_idempotency_key() for _ in range(50)}
    assert len(keys) == 50
    for key in keys:
        assert uuid.UUID(key).version == 4


def test_money_conversions():
    assert to_major_units(5000) == Decimal("50.00")
    assert to_major_units(1) == Decimal("0.01")
    assert to_minor_units("20.00") == 2000
    assert to_minor_units(19.99) == 1999
    assert to_minor_units(None) == 0


def test_purchase_session_sends_key_in_header_only():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"checkoutToken": "chk_1", "secretToken": "sec_1"})

    result = make_client(handler).create_checkout_session(
        amount=5000, currency="usd", mode="purchase", invoice_number="DON-1"
    )

    assert result == {"checkout_token": "chk_1", "secret_token": "sec_1"}
    req = seen[0]
    assert req.method == "POST"
    assert req.url.path == "/v2/helcim-pay/initialize"
    assert req.headers["api-token"] == "tok_123"
    assert uuid.UUID(req.headers["Idempotency-Key"]).version == 4
    body = json.loads(req.content)
    assert body == {"paymentType": "purchase", "amount": 50.0, "currency": "USD", "invoiceNumber": "DON-1"}
    assert "idempotencyKey" not in body and "Idempotency-Key" not in body


def test_verify_session_charges_nothing():
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"checkoutToken": "chk_v"})

    result = make_client(handler).create_checkout_session(amount=2000, currency="USD", mode="verify")

    assert result["checkout_token"] == "chk_v"
    assert bodies[0]["paymentType"] == "verify"
    assert bodies[0]["amount"] == 0


def test_missing_checkout_token_is_unavailable():
    client = make_client(lambda request: httpx.Response(200, json={}))
    with pytest.raises(GatewayUnavailable):
        client.create_checkout_session(amount=100, currency="USD", mode="purchase")


def test_retry_after_timeout_reuses_same_key():
    keys = []

    def handler(request):
        keys.append(request.headers["Idempotency-Key"])
        if len(keys) == 1:
            raise httpx.ReadTimeout("timed out", request=request)
        return httpx.Response(200, json={"checkoutToken": "chk_2"})

    result = make_client(handler).create_checkout_session(
        amount=100, currency="USD", mode="purchase", idempotency_key="key-fixed"
    )

    assert result["checkout_token"] == "chk_2"
    assert keys == ["key-fixed", "key-fixed"]


def test_mutating_timeout_exhausted_is_ambiguous():
    calls = []

    def handler(request):
        calls.append(request.headers["Idempotency-Key"])
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(GatewayAmbiguous):
        make_client(handler).create_subscription(
            customer_code="CST1", plan_id="77", amount=2000, idempotency_key="sub-key"
        )
    assert calls == ["sub-key"] * 3


def test_connect_error_is_unavailable():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(GatewayUnavailable) as exc:
        make_client(handler, max_retries=0).create_checkout_session(amount=100, currency="USD", mode="purchase")
    assert not isinstance(exc.value, GatewayAmbiguous)


def test_server_error_retried_then_unavailable():
    calls = []

    def handler(request):
        calls.append(1)
        return httpx.Response(503, text="maintenance")

    with pytest.raises(GatewayUnavailable) as exc:
        make_client(handler).create_checkout_session(amount=100, currency="USD", mode="purchase")
    assert exc.value.status_code == 503
    assert len(calls) == 3


def test_client_error_is_rejected_without_retry():
    calls = []

    def handler(request):
        calls.append(1)
        return httpx.Response(422, json={"errors": {"amount": "invalid"}})

    with pytest.raises(GatewayRejected) as exc:
        make_client(handler).create_checkout_session(amount=100, currency="USD", mode="purchase")
    assert exc.value.status_code == 422
    assert "amount" in exc.value.body
    assert len(calls) == 1


def test_read_timeout_on_get_is_unavailable_not_ambiguous():
    def handler(request):
        assert "Idempotency-Key" not in request.headers
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(GatewayUnavailable) as exc:
        make_client(handler, max_retries=1).get_subscription("123")
    assert not isinstance(exc.value, GatewayAmbiguous)


def test_unreadable_success_body_on_post_is_ambiguous():
    client = make_client(lambda request: httpx.Response(200, text="<html>ok</html>"))
    with pytest.raises(GatewayAmbiguous):
        client.create_payment_plan(amount=2000, currency="USD", frequency="monthly", idempotency_key="k")


def test_find_payment_plan_matches_attributes():
    plans = [
        {"id": 1, "status": "inactive", "currency": "USD", "billingPeriod": "monthly", "recurringAmount": 20},
        {"id": 2, "status": "active", "currency": "CAD", "billingPeriod": "monthly", "recurringAmount": 20},
        {"id": 3, "status": "active", "currency": "USD", "billingPeriod": "yearly", "recurringAmount": 20},
        {"id": 4, "status": "active", "currency": "USD", "billingPeriod": "monthly", "recurringAmount": "20.00"},
    ]

    def handler(request):
        assert request.method == "GET"
        assert request.url.path == "/v2/payment-plans"
        return httpx.Response(200, json=plans)

    client = make_client(handler)
    assert client.find_payment_plan(amount=2000, currency="USD", frequency="monthly") == "4"
    assert client.find_payment_plan(amount=2500, currency="USD", frequency="monthly") is None


def test_create_payment_plan_posts_tier_and_returns_id():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=[{"id": 88, "name": "Monthly donation"}])

    plan_id = make_client(handler).create_payment_plan(
        amount=2000, currency="usd", frequency="monthly", idempotency_key="plan-key"
    )

    assert plan_id == "88"
    assert seen[0].headers["Idempotency-Key"] == "plan-key"
    plan = json.loads(seen[0].content)["paymentPlans"][0]
    assert plan["recurringAmount"] == 20.0
    assert plan["billingPeriod"] == "monthly"
    assert plan["currency"] == "USD"


def test_create_subscription_returns_id():
    seen = []

    def handler(request):
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={"data": [{"id": 555}]})

    sub_id = make_client(handler).create_subscription(
        customer_code="CST1", plan_id="88", amount=2000, idempotency_key="k"
    )

    assert sub_id == "555"
    sub = seen[0]["subscriptions"][0]
    assert sub["customerCode"] == "CST1"
    assert sub["paymentPlanId"] == 88
    assert sub["recurringAmount"] == 20.0


def test_cancel_subscription_sends_delete():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(204)

    make_client(handler).cancel_subscription("555", idempotency_key="cancel-key")

    assert seen[0].method == "DELETE"
    assert seen[0].url.path == "/v2/subscriptions/555"
    assert seen[0].headers["Idempotency-Key"] == "cancel-key"


def test_client_defaults_come_from_settings(settings):
    settings.HELCIM_API_TOKEN = "from-settings"
    settings.HELCIM_BASE_URL = "https://gateway.example/v2/"
    settings.HELCIM_MAX_RETRIES = 4

    client = HelcimClient()

    assert client.api_token == "from-settings"
    assert client.base_url == "https://gateway.example/v2"
    assert client.max_retries == 4


def test_retries_back_off_between_attempts_with_a_cap():
    client = HelcimClient(
        api_token="tok_123",
        base_url="https://api.helcim.test/v2",
        max_retries=5,
        backoff=2,
        transport=httpx.MockTransport(lambda request: httpx.Response(502)),
    )

    with patch("payments.gateway.time.sleep") as sleep:
        with pytest.raises(GatewayUnavailable):
            client.get_subscription("123")

    assert [c.args[0] for c in sleep.call_args_list] == [2, 4, 8, 8, 8]


def test_no_sleep_when_backoff_disabled():
    with patch("payments.gateway.time.sleep") as sleep:
        with pytest.raises(GatewayUnavailable):
            make_client(lambda request: httpx.Response(503)).get_subscription("1")
    sleep.assert_not_called()
