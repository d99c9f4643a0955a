"""
Thin wrapper around the Stripe SDK.

All Stripe traffic from the payments app goes through ``StripeGateway``
so that every call uses the configured API key and version, a bounded
network timeout and an idempotency key where the call creates money
movements.  Stripe SDK errors are translated into
``ProviderGatewayError``; connection failures and timeouts are flagged
as ``ambiguous`` because the request may have been applied anyway.
"""
from __future__ import annotations

import json
import logging

import stripe
from django.conf import settings

from .exceptions import InvalidWebhookSignature, ProviderGatewayError

logger = logging.getLogger(__name__)


def configure_stripe() -> None:
    """Apply process-wide SDK settings (timeouts, retries)."""
    stripe.max_network_retries = settings.STRIPE_MAX_NETWORK_RETRIES
    stripe.default_http_client = stripe.RequestsClient(timeout=settings.STRIPE_TIMEOUT_SECONDS)


def get_gateway() -> "StripeGateway":
    return StripeGateway()


def stripe_value(obj, key: str, default=None):
    """Read a field from a Stripe object or a decoded webhook dict."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


def _onboarding_url(flag: str) -> str:
    return f"{settings.FRONTEND_URL.rstrip('/')}/settings/payments?{flag}=true"


class StripeGateway:
    def __init__(self, api_key: str | None = None, webhook_secret: str | None = None):
        self.api_key = api_key or settings.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret or settings.STRIPE_WEBHOOK_SECRET

    def _call(self, operation: str, func, *args, **params):
        try:
            return func(
                *args,
                api_key=self.api_key,
                stripe_version=settings.STRIPE_API_VERSION,
                **params,
            )
        except stripe.APIConnectionError as exc:
            logger.warning("Stripe %s did not complete: %s", operation, exc)
            raise ProviderGatewayError(
                f"Stripe {operation} timed out or lost connection", ambiguous=True
            ) from exc
        except stripe.StripeError as exc:
            message = exc.user_message or str(exc) or f"Stripe {operation} failed"
            logger.warning("Stripe %s failed: %s", operation, message)
            raise ProviderGatewayError(message, provider_code=exc.code) from exc

    # ---- payment intents -------------------------------------------------

    def create_payment_intent(self, amount: int, currency: str, metadata: dict, idempotency_key: str):
        # No transfer_data: funds stay on the platform balance until the event is over.
        return self._call(
            "payment intent creation",
            stripe.PaymentIntent.create,
            amount=amount,
            currency=currency,
            automatic_payment_methods={"enabled": True},
            metadata=metadata,
            idempotency_key=idempotency_key,
        )

    def retrieve_payment_intent(self, payment_intent_id: str):
        return self._call("payment intent lookup", stripe.PaymentIntent.retrieve, payment_intent_id)

    def cancel_payment_intent(self, payment_intent_id: str):
        return self._call("payment intent cancellation", stripe.PaymentIntent.cancel, payment_intent_id)

    # ---- money movement --------------------------------------------------

    def create_transfer(
        self,
        amount: int,
        currency: str,
        destination: str,
        transfer_group: str,
        metadata: dict,
        idempotency_key: str,
    ):
        return self._call(
            "transfer",
            stripe.Transfer.create,
            amount=amount,
            currency=currency,
            destination=destination,
            transfer_group=transfer_group,
            metadata=metadata,
            idempotency_key=idempotency_key,
        )

    def create_refund(
        self,
        amount: int,
        idempotency_key: str,
        charge: str | None = None,
        payment_intent: str | None = None,
        metadata: dict | None = None,
    ):
        params = {"amount": amount, "metadata": metadata or {}}
        if charge:
            params["charge"] = charge
        else:
            params["payment_intent"] = payment_intent
        return self._call("refund", stripe.Refund.create, idempotency_key=idempotency_key, **params)

    # ---- connected accounts ----------------------------------------------

    def create_account(self, email: str, metadata: dict, idempotency_key: str):
        return self._call(
            "account creation",
            stripe.Account.create,
            type="express",
            country=settings.STRIPE_CONNECT_COUNTRY,
            email=email or None,
            capabilities={
                "card_payments": {"requested": True},
                "transfers": {"requested": True},
            },
            business_type="individual",
            business_profile={
                "mcc": "7941",
                "product_description": "Event tickets for community events",
            },
            metadata=metadata,
            idempotency_key=idempotency_key,
        )

    def retrieve_account(self, account_id: str):
        return self._call("account lookup", stripe.Account.retrieve, account_id)

    def create_account_link(self, account_id: str):
        return self._call(
            "onboarding link",
            stripe.AccountLink.create,
            account=account_id,
            refresh_url=_onboarding_url("refresh"),
            return_url=_onboarding_url("success"),
            type="account_onboarding",
        )

    def create_login_link(self, account_id: str):
        return self._call("dashboard link", stripe.Account.create_login_link, account_id)

    # ---- subscriptions ---------------------------------------------------

    def create_checkout_session(
        self,
        line_item: dict,
        metadata: dict,
        success_url: str,
        cancel_url: str,
        customer: str | None = None,
        customer_email: str | None = None,
    ):
        params = {
            "mode": "subscription",
            "payment_method_types": ["card"],
            "line_items": [line_item],
            "metadata": metadata,
            "subscription_data": {"metadata": metadata},
            "success_url": success_url,
            "cancel_url": cancel_url,
        }
        if customer:
            params["customer"] = customer
        elif customer_email:
            params["customer_email"] = customer_email
        return self._call("checkout session creation", stripe.checkout.Session.create, **params)

    def retrieve_checkout_session(self, session_id: str):
        return self._call("checkout session lookup", stripe.checkout.Session.retrieve, session_id)

    def retrieve_subscription(self, subscription_id: str):
        return self._call("subscription lookup", stripe.Subscription.retrieve, subscription_id)

    def update_subscription(self, subscription_id: str, cancel_at_period_end: bool):
        return self._call(
            "subscription update",
            stripe.Subscription.modify,
            subscription_id,
            cancel_at_period_end=cancel_at_period_end,
        )

    # ---- webhooks --------------------------------------------------------

    def construct_event(self, payload: bytes, sig_header: str) -> dict:
        """Verify a webhook signature against the raw body and decode it.

        The body must be the exact bytes Stripe sent; re-serialised JSON
        will not verify.
        """
        try:
            if hasattr(payload, "decode"):
                payload = payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            logger.warning("Webhook body is not valid UTF-8")
            raise InvalidWebhookSignature("Webhook Error: invalid payload") from exc
        try:
            stripe.WebhookSignature.verify_header(
                payload,
                sig_header or "",
                self.webhook_secret,
                settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
            )
        except stripe.SignatureVerificationError as exc:
            logger.warning("Webhook signature verification failed: %s", exc)
            raise InvalidWebhookSignature(f"Webhook Error: {exc}") from exc
        try:
            event = json.loads(payload)
        except ValueError as exc:
            raise InvalidWebhookSignature("Webhook Error: invalid payload") from exc
        if not isinstance(event, dict) or "type" not in event or "id" not in event:
            raise InvalidWebhookSignature("Webhook Error: malformed event")
        return event
