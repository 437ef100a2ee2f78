import datetime as dt

import pytest
from common.choices import WebhookEventType
from payments.events import EVENT_SHAPES, InvalidEventPayload, UnsupportedEventType, parse_envelope, parse_event_data
from payments.services import EVENT_HANDLERS


def test_every_event_type_has_shape_and_handler():
    assert set(EVENT_SHAPES) == set(WebhookEventType)
    assert set(EVENT_HANDLERS) == set(WebhookEventType)


def test_parse_envelope_valid():
    env = parse_envelope(
        b'{"id": "evt_1", "type": "subscription.created", "createdAt": "2026-01-05T10:00:00Z", "data": {"a": 1}}'
    )
    assert env["id"] == "evt_1"
    assert env["type"] == "subscription.created"
    assert env["data"] == {"a": 1}
    assert env["occurred_at"] == dt.datetime(2026, 1, 5, 10, 0, tzinfo=dt.timezone.utc)


def test_parse_envelope_defaults_data():
    env = parse_envelope(b'{"id": "evt_2", "type": "payment.failed"}')
    assert env["data"] == {}
    assert "occurred_at" not in env


@pytest.mark.parametrize(
    "raw",
    [b"not json", b"[1, 2]", b'{"type": "payment.succeeded"}', b'{"id": "evt"}', b"\xff\xfe"],
)
def test_parse_envelope_rejects_malformed(raw):
    with pytest.raises(InvalidEventPayload):
        parse_envelope(raw)


def test_parse_event_data_unknown_type():
    with pytest.raises(UnsupportedEventType):
        parse_event_data("invoice.paid", {})


def test_payment_payload_requires_an_identifier():
    with pytest.raises(InvalidEventPayload):
        parse_event_data("payment.succeeded", {"amount": "50.00"})


def test_payment_payload_maps_fields():
    kind, payload = parse_event_data(
        "payment.succeeded", {"transactionId": "T1", "invoiceNumber": "DON-1", "amount": "50.00", "currency": "USD"}
    )
    assert kind == WebhookEventType.PAYMENT_SUCCEEDED
    assert payload["transaction_id"] == "T1"
    assert payload["invoice_number"] == "DON-1"
    assert str(payload["amount"]) == "50.00"


def test_subscription_payload_requires_subscription_id():
    with pytest.raises(InvalidEventPayload):
        parse_event_data("subscription.created", {"customerCode": "CST1"})

    kind, payload = parse_event_data(
        "subscription.renewed", {"subscriptionId": "S1", "nextBillingDate": "2026-02-01"}
    )
    assert kind == WebhookEventType.SUBSCRIPTION_RENEWED
    assert payload["subscription_id"] == "S1"
    assert payload["next_billing_date"] == dt.date(2026, 2, 1)
