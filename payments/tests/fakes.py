"""
Test doubles for Stripe.

``FakeGateway`` stands in for Stripe: it records every call, returns
simple objects shaped like the Stripe responses the app reads, and can be
told to fail specific operations.  Webhook signature verification is
inherited unchanged from ``StripeGateway``, and ``sign_payload`` signs
test payloads with the same HMAC scheme Stripe uses.
"""
import hashlib
import hmac
import itertools
import json
import time
from types import SimpleNamespace

from django.conf import settings

from payments.exceptions import ProviderGatewayError
from payments.gateway import StripeGateway

class FakeGateway(StripeGateway):
    def __init__(self):
        super().__init__(api_key="sk_test_fake", webhook_secret=settings.STRIPE_WEBHOOK_SECRET)
        self.calls = []
        self.errors = {}
        self.intents = {}
        self.accounts = {}
        self.subscriptions = {}
        self.checkout_sessions = {}
        self.missing_customers = set()
        self.failing_payouts = set()
        self._ids = itertools.count(1)

    def _record(self, name, **kwargs):
        self.calls.append((name, kwargs))
        error = self.errors.get(name)
        if error is not None:
            raise error

    def calls_to(self, name):
        return [kwargs for called, kwargs in self.calls if called == name]

    def create_payment_intent(self, amount, currency, metadata, idempotency_key):
        self._record(
            "create_payment_intent",
            amount=amount,
            currency=currency,
            metadata=metadata,
            idempotency_key=idempotency_key,
        )
        intent_id = f"pi_test_{next(self._ids)}"
        self.intents[intent_id] = "requires_payment_method"
        return SimpleNamespace(id=intent_id, client_secret=f"{intent_id}_secret", amount=amount)

    def retrieve_payment_intent(self, payment_intent_id):
        self._record("retrieve_payment_intent", payment_intent_id=payment_intent_id)
        return SimpleNamespace(
            id=payment_intent_id,
            status=self.intents.get(payment_intent_id, "requires_payment_method"),
            latest_charge=f"ch_{payment_intent_id}",
        )

    def cancel_payment_intent(self, payment_intent_id):
        self._record("cancel_payment_intent", payment_intent_id=payment_intent_id)
        self.intents[payment_intent_id] = "canceled"
        return SimpleNamespace(id=payment_intent_id, status="canceled")

    def create_transfer(self, amount, currency, destination, transfer_group, metadata, idempotency_key):
        self._record(
            "create_transfer",
            amount=amount,
            currency=currency,
            destination=destination,
            transfer_group=transfer_group,
            metadata=metadata,
            idempotency_key=idempotency_key,
        )
        if int(metadata["payoutId"]) in self.failing_payouts:
            raise ProviderGatewayError("Insufficient funds in platform balance", provider_code="balance_insufficient")
        return SimpleNamespace(id=f"tr_test_{next(self._ids)}", amount=amount)

    def create_refund(self, amount, idempotency_key, charge=None, payment_intent=None, metadata=None):
        self._record(
            "create_refund",
            amount=amount,
            idempotency_key=idempotency_key,
            charge=charge,
            payment_intent=payment_intent,
            metadata=metadata,
        )
        return SimpleNamespace(id=f"re_test_{next(self._ids)}", amount=amount, status="succeeded")

    def create_account(self, email, metadata, idempotency_key):
        self._record("create_account", email=email, metadata=metadata, idempotency_key=idempotency_key)
        return SimpleNamespace(id=f"acct_test_{next(self._ids)}")

    def retrieve_account(self, account_id):
        self._record("retrieve_account", account_id=account_id)
        return self.accounts.get(
            account_id,
            {"id": account_id, "details_submitted": False, "charges_enabled": False, "payouts_enabled": False},
        )

    def create_account_link(self, account_id):
        self._record("create_account_link", account_id=account_id)
        return SimpleNamespace(url=f"https://connect.stripe.test/setup/{account_id}")

    def create_login_link(self, account_id):
        self._record("create_login_link", account_id=account_id)
        return SimpleNamespace(url=f"https://connect.stripe.test/express/{account_id}")

    def create_checkout_session(self, line_item, metadata, success_url, cancel_url, customer=None, customer_email=None):
        self._record(
            "create_checkout_session",
            line_item=line_item,
            metadata=metadata,
            success_url=success_url,
            cancel_url=cancel_url,
            customer=customer,
            customer_email=customer_email,
        )
        if customer in self.missing_customers:
            raise ProviderGatewayError(f"No such customer: '{customer}'", provider_code="resource_missing")
        session_id = f"cs_test_{next(self._ids)}"
        return SimpleNamespace(id=session_id, url=f"https://checkout.stripe.test/{session_id}")

    def retrieve_checkout_session(self, session_id):
        self._record("retrieve_checkout_session", session_id=session_id)
        return self.checkout_sessions[session_id]

    def retrieve_subscription(self, subscription_id):
        self._record("retrieve_subscription", subscription_id=subscription_id)
        return self.subscriptions[subscription_id]

    def update_subscription(self, subscription_id, cancel_at_period_end):
        self._record(
            "update_subscription", subscription_id=subscription_id, cancel_at_period_end=cancel_at_period_end
        )
        subscription = {**self.subscriptions[subscription_id], "cancel_at_period_end": cancel_at_period_end}
        self.subscriptions[subscription_id] = subscription
        return subscription


def enabled_account_payload(account_id, **overrides):
    data = {
        "id": account_id,
        "object": "account",
        "details_submitted": True,
        "charges_enabled": True,
        "payouts_enabled": True,
        "business_type": "individual",
        "business_profile": {"name": "Host Events"},
    }
    data.update(overrides)
    return data


def sign_payload(payload: str, secret: str = None, timestamp: int = None) -> str:
    """Build a ``Stripe-Signature`` header the way Stripe does."""
    secret = secret or settings.STRIPE_WEBHOOK_SECRET
    timestamp = timestamp or int(time.time())
    signature = hmac.new(
        secret.encode("utf-8"), f"{timestamp}.{payload}".encode("utf-8"), hashlib.sha256
    ).hexdigest()
    return f"t={timestamp},v1={signature}"


def stripe_event(event_type: str, obj: dict, event_id: str = None) -> str:
    event_id = event_id or f"evt_{event_type.replace('.', '_')}_{obj.get('id', 'x')}"
    return json.dumps(
        {"id": event_id, "object": "event", "type": event_type, "data": {"object": obj}}
    )


CONTACT = {"first_name": "Ada", "last_name": "Lovelace", "email": "ada@example.com", "phone": "555-0100"}
