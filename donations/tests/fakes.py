"""In-memory stand-in for `HelcimClient` used by checkout tests."""

import itertools


class FakeHelcim:
    def __init__(self, *, session_error=None, subscription_error=None, existing_plan=None):
        self.session_error = session_error
        self.subscription_error = subscription_error
        self.existing_plan = existing_plan
        self.sessions = []
        self.plan_keys = []
        self.subscription_calls = []
        self._ids = itertools.count(100)

    def create_checkout_session(self, *, amount, currency, mode, customer=None, invoice_number=None, idempotency_key=None):
        self.sessions.append(
            {
                "amount": amount,
                "currency": currency,
                "mode": mode,
                "customer": customer,
                "invoice_number": invoice_number,
                "idempotency_key": idempotency_key,
            }
        )
        if self.session_error:
            raise self.session_error
        n = next(self._ids)
        return {"checkout_token": f"chk_{n}", "secret_token": f"sec_{n}"}

    def find_payment_plan(self, *, amount, currency, frequency):
        return self.existing_plan

    def create_payment_plan(self, *, amount, currency, frequency, idempotency_key):
        self.plan_keys.append(idempotency_key)
        return f"plan_{amount}_{frequency}"

    def create_subscription(self, *, customer_code, plan_id, amount, idempotency_key):
        self.subscription_calls.append(
            {"customer_code": customer_code, "plan_id": plan_id, "amount": amount, "idempotency_key": idempotency_key}
        )
        if self.subscription_error:
            raise self.subscription_error
        return f"sub_{next(self._ids)}"
