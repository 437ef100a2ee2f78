"""Outbound client for the Helcim payment gateway.

Every call to the gateway goes through `HelcimClient`. It authenticates with
the private API token, attaches an `Idempotency-Key` header to every mutating
request and normalizes transport and HTTP failures into the `GatewayError`
family so callers never inspect raw httpx exceptions.
"""

import logging
import time
import uuid
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional

import httpx
from django.conf import settings

from common.choices import CheckoutMode

logger = logging.getLogger("avr.payments")

DEFAULT_BASE_URL = "https://api.helcim.com/v2"
IDEMPOTENCY_HEADER = "Idempotency-Key"
MAX_BACKOFF_SECONDS = 8.0


class GatewayError(Exception):
    """Base class for failures talking to the payment gateway."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, body=None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class GatewayRejected(GatewayError):
    """The gateway refused the request (4xx). Retrying the same call will not help."""


class GatewayUnavailable(GatewayError):
    """Network failure or 5xx. Nothing is known to have happened on the gateway."""


class GatewayAmbiguous(GatewayError):
    """A mutating call may have reached the gateway but its outcome is unknown.

    Callers must not assume success and must not retry with a new key; the
    authoritative answer arrives later as a webhook.
    """


def new_idempotency_key() -> str:
    """Return a fresh version-4 UUID for one logical gateway operation."""

    return str(uuid.uuid4())


def to_major_units(amount: int) -> Decimal:
    """Convert an integer amount in cents to a two-place decimal amount."""

    return (Decimal(int(amount)) / Decimal(100)).quantize(Decimal("0.01"))


def to_minor_units(amount) -> int:
    """Convert a gateway decimal amount (number or string) to integer cents."""

    if amount is None or amount == "":
        return 0
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _gateway_id(value):
    # Helcim numbers its resources; keep non-numeric ids (sandbox fixtures) as-is.
    text = str(value)
    return int(text) if text.isdigit() else text


def _first_record(data) -> Dict:
    """Return the first resource from a Helcim response.

    Helcim answers either with a bare object, a bare list, or a
    `{"status": "ok", "data": [...]}` wrapper depending on the endpoint.
    """

    if isinstance(data, dict) and "data" in data:
        data = data["data"]
    if isinstance(data, list):
        return data[0] if data else {}
    return data if isinstance(data, dict) else {}


class HelcimClient:
    """Thin, retry-aware wrapper over the Helcim REST API."""

    def __init__(
        self,
        *,
        api_token: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_token = api_token if api_token is not None else getattr(settings, "HELCIM_API_TOKEN", "")
        self.base_url = (base_url or getattr(settings, "HELCIM_BASE_URL", DEFAULT_BASE_URL)).rstrip("/")
        self.timeout = timeout if timeout is not None else getattr(settings, "HELCIM_TIMEOUT", 15)
        self.max_retries = max_retries if max_retries is not None else getattr(settings, "HELCIM_MAX_RETRIES", 2)
        self.backoff = backoff if backoff is not None else getattr(settings, "HELCIM_RETRY_BACKOFF", 0.5)
        self._transport = transport

    def _retry_delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt `attempt`: doubling, capped."""
        return min(self.backoff * 2 ** (attempt - 1), MAX_BACKOFF_SECONDS)

    def _client(self) -> httpx.Client:
        headers = {
            "api-token": self.api_token,
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        return httpx.Client(
            base_url=self.base_url,
            headers=headers,
            timeout=self.timeout,
            transport=self._transport,
        )

    def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict] = None,
        params: Optional[Dict] = None,
        idempotency_key: Optional[str] = None,
    ):
        """Send one logical request, retrying transport failures with the same key."""

        mutating = method.upper() != "GET"
        headers = {}
        if mutating:
            # One key per logical operation; every retry below reuses it.
            headers[IDEMPOTENCY_HEADER] = idempotency_key or new_idempotency_key()

        ambiguous = False
        failure: Optional[GatewayError] = None
        attempts = self.max_retries + 1
        with self._client() as client:
            for attempt in range(1, attempts + 1):
                try:
                    response = client.request(method, path, json=json, params=params, headers=headers)
                except (httpx.ConnectError, httpx.ConnectTimeout) as exc:
                    failure = GatewayUnavailable(f"Could not reach gateway: {exc}")
                except httpx.TransportError as exc:
                    # Read/write timeouts and dropped connections: the request may have landed.
                    ambiguous = ambiguous or mutating
                    failure = GatewayUnavailable(f"Gateway transport error: {exc}")
                else:
                    if response.status_code < 500:
                        return self._decode(response, method=method, path=path, mutating=mutating)
                    failure = GatewayUnavailable(
                        f"Gateway error {response.status_code}",
                        status_code=response.status_code,
                        body=response.text,
                    )
                logger.warning(
                    "helcim_request_retry",
                    extra={
                        "method": method,
                        "path": path,
                        "attempt": attempt,
                        "attempts": attempts,
                        "error": str(failure),
                    },
                )
                if attempt < attempts and self.backoff > 0:
                    time.sleep(self._retry_delay(attempt))

        if ambiguous:
            logger.error("helcim_request_ambiguous", extra={"method": method, "path": path})
            raise GatewayAmbiguous(f"Outcome of {method} {path} is unknown after {attempts} attempts")
        logger.error("helcim_request_unavailable", extra={"method": method, "path": path})
        raise failure

    def _decode(self, response: httpx.Response, *, method: str, path: str, mutating: bool):
        if response.status_code >= 400:
            logger.error(
                "helcim_request_rejected",
                extra={"method": method, "path": path, "code": response.status_code},
            )
            raise GatewayRejected(
                f"Gateway rejected {method} {path} with {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            error_cls = GatewayAmbiguous if mutating else GatewayUnavailable
            raise error_cls(
                f"Unreadable gateway response for {method} {path}",
                status_code=response.status_code,
                body=response.text,
            ) from exc

    def create_checkout_session(
        self,
        *,
        amount: int,
        currency: str,
        mode: str,
        customer: Optional[Dict] = None,
        invoice_number: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, str]:
        """Initialize a HelcimPay.js checkout and return its tokens.

        `purchase` charges `amount` once; `verify` only stores the payment
        method, so the amount sent is always zero.
        """

        mode = CheckoutMode(mode)
        payload = {
            "paymentType": mode.value,
            "amount": float(to_major_units(amount)) if mode == CheckoutMode.PURCHASE else 0,
            "currency": currency.upper(),
        }
        if invoice_number:
            payload["invoiceNumber"] = invoice_number
        if customer:
            payload["customerRequest"] = customer

        data = self._request("POST", "/helcim-pay/initialize", json=payload, idempotency_key=idempotency_key)
        token = (data or {}).get("checkoutToken")
        if not token:
            raise GatewayUnavailable("Gateway response did not include a checkout token", body=data)
        return {"checkout_token": token, "secret_token": data.get("secretToken", "")}

    def list_payment_plans(self) -> List[Dict]:
        data = self._request("GET", "/payment-plans")
        if isinstance(data, dict):
            data = data.get("data", [])
        return data if isinstance(data, list) else []

    def find_payment_plan(self, *, amount: int, currency: str, frequency: str) -> Optional[str]:
        """Return the id of an active gateway plan matching the tier, if any."""

        for plan in self.list_payment_plans():
            if str(plan.get("status", "active")).lower() != "active":
                continue
            if str(plan.get("currency", "")).upper() != currency.upper():
                continue
            if str(plan.get("billingPeriod", "")).lower() != frequency:
                continue
            if to_minor_units(plan.get("recurringAmount")) != amount:
                continue
            return str(plan["id"])
        return None

    def create_payment_plan(self, *, amount: int, currency: str, frequency: str, idempotency_key: str) -> str:
        major = to_major_units(amount)
        payload = {
            "paymentPlans": [
                {
                    "name": f"{frequency.capitalize()} donation - {major} {currency.upper()}",
                    "description": f"{frequency.capitalize()} donation plan for {major} {currency.upper()}",
                    "type": "subscription",
                    "currency": currency.upper(),
                    "recurringAmount": float(major),
                    "billingPeriod": frequency,
                    "billingPeriodIncrements": 1,
                    "dateBilling": "Sign-up",
                    "termType": "forever",
                    "paymentMethod": "card",
                    "taxType": "no_tax",
                    "status": "active",
                }
            ]
        }
        plan = _first_record(self._request("POST", "/payment-plans", json=payload, idempotency_key=idempotency_key))
        if not plan.get("id"):
            raise GatewayAmbiguous("Gateway accepted the plan request but returned no plan id", body=plan)
        return str(plan["id"])

    def create_subscription(self, *, customer_code: str, plan_id: str, amount: int, idempotency_key: str) -> str:
        payload = {
            "subscriptions": [
                {
                    "customerCode": customer_code,
                    "paymentPlanId": _gateway_id(plan_id),
                    "recurringAmount": float(to_major_units(amount)),
                    "activationDate": date.today().isoformat(),
                    "paymentMethod": "card",
                }
            ]
        }
        sub = _first_record(self._request("POST", "/subscriptions", json=payload, idempotency_key=idempotency_key))
        if not sub.get("id"):
            raise GatewayAmbiguous("Gateway accepted the subscription request but returned no id", body=sub)
        return str(sub["id"])

    def get_subscription(self, subscription_id: str) -> Dict:
        return _first_record(self._request("GET", f"/subscriptions/{subscription_id}"))

    def cancel_subscription(self, subscription_id: str, *, idempotency_key: Optional[str] = None) -> None:
        self._request("DELETE", f"/subscriptions/{subscription_id}", idempotency_key=idempotency_key)
