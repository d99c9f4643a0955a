"""
Stripe webhook reconciliation.

Each Stripe event type maps to one handler in ``WEBHOOK_HANDLERS``.
Handlers may run more than once for the same event (Stripe redelivers,
and the synchronous confirm path races ``payment_intent.succeeded``), so
each one delegates to an idempotent ledger, scheduler or account
operation.

Every delivery is recorded in ``WebhookEvent``.  An event already
processed is acknowledged without dispatch; a handler failure is logged,
stored on the record and swallowed, because answering Stripe with an
error only produces redelivery storms.  A later redelivery of a failed
event is processed again.
"""
from __future__ import annotations

import logging

from django.db.models import F
from django.utils import timezone

from .accounts import ConnectedAccountManager
from .exceptions import PaymentNotFound
from .gateway import get_gateway
from .ledger import PaymentLedger
from .models import WebhookEvent
from .payouts import PayoutScheduler
from .subscriptions import SubscriptionSync

logger = logging.getLogger(__name__)

WEBHOOK_HANDLERS = {}


def register_handler(*event_types):
    def decorator(func):
        for event_type in event_types:
            WEBHOOK_HANDLERS[event_type] = func
        return func

    return decorator


class WebhookReconciler:
    def __init__(self, gateway=None):
        self.gateway = gateway or get_gateway()
        self.scheduler = PayoutScheduler(gateway=self.gateway)
        self.ledger = PaymentLedger(gateway=self.gateway, scheduler=self.scheduler)
        self.accounts = ConnectedAccountManager(gateway=self.gateway, scheduler=self.scheduler)
        self.subscriptions = SubscriptionSync(gateway=self.gateway)

    def process(self, event: dict) -> str:
        """Dispatch one verified event; returns the resulting ``WebhookEvent`` status."""
        event_id = event["id"]
        event_type = event["type"]
        record, created = WebhookEvent.objects.get_or_create(
            stripe_event_id=event_id,
            defaults={"event_type": event_type, "payload": event},
        )
        if not created and record.status in (WebhookEvent.STATUS_PROCESSED, WebhookEvent.STATUS_IGNORED):
            logger.info("Duplicate webhook %s (%s) already %s", event_id, event_type, record.status)
            return record.status

        WebhookEvent.objects.filter(pk=record.pk).update(attempts=F("attempts") + 1)
        handler = WEBHOOK_HANDLERS.get(event_type)
        if handler is None:
            logger.info("Unhandled webhook event type %s", event_type)
            return self._finish(record, WebhookEvent.STATUS_IGNORED)

        logger.info("Processing webhook %s (%s)", event_id, event_type)
        obj = (event.get("data") or {}).get("object") or {}
        try:
            handled = handler(self, obj)
        except Exception as exc:
            logger.exception("Webhook handler for %s (%s) failed", event_id, event_type)
            return self._finish(record, WebhookEvent.STATUS_FAILED, error=str(exc) or exc.__class__.__name__)
        status = WebhookEvent.STATUS_IGNORED if handled is False else WebhookEvent.STATUS_PROCESSED
        return self._finish(record, status)

    def _finish(self, record: WebhookEvent, status: str, error: str = "") -> str:
        WebhookEvent.objects.filter(pk=record.pk).update(
            status=status, error_message=error, processed_at=timezone.now()
        )
        return status


@register_handler("payment_intent.succeeded")
def handle_payment_succeeded(reconciler: WebhookReconciler, intent: dict):
    try:
        reconciler.ledger.reconcile_succeeded(intent["id"], intent.get("latest_charge"))
    except PaymentNotFound:
        logger.info("No payment record for succeeded intent %s", intent.get("id"))
        return False
    return True


@register_handler("payment_intent.payment_failed")
def handle_payment_failed(reconciler: WebhookReconciler, intent: dict):
    error = intent.get("last_payment_error") or {}
    reason = error.get("message") or "Payment failed"
    try:
        reconciler.ledger.reconcile_failed(intent["id"], reason)
    except PaymentNotFound:
        logger.info("No payment record for failed intent %s", intent.get("id"))
        return False
    return True


@register_handler("account.updated")
def handle_account_updated(reconciler: WebhookReconciler, account: dict):
    return reconciler.accounts.apply_account_update(account) is not None


@register_handler("transfer.created")
def handle_transfer_created(reconciler: WebhookReconciler, transfer: dict):
    payout_id = (transfer.get("metadata") or {}).get("payoutId")
    if not payout_id:
        return False
    reconciler.scheduler.confirm_transfer(int(payout_id), transfer["id"])
    return True


@register_handler("charge.refunded")
def handle_charge_refunded(reconciler: WebhookReconciler, charge: dict):
    try:
        reconciler.ledger.apply_charge_refund(
            charge["id"],
            charge.get("payment_intent"),
            amount_refunded=charge.get("amount_refunded") or 0,
            amount=charge.get("amount") or 0,
        )
    except PaymentNotFound:
        logger.info("No payment record for refunded charge %s", charge.get("id"))
        return False
    return True


@register_handler("charge.succeeded")
def handle_charge_succeeded(reconciler: WebhookReconciler, charge: dict):
    logger.debug("Charge %s succeeded (handled via payment_intent.succeeded)", charge.get("id"))
    return False


@register_handler("checkout.session.completed")
def handle_checkout_completed(reconciler: WebhookReconciler, session: dict):
    return reconciler.subscriptions.checkout_completed(session) is not None


@register_handler("customer.subscription.updated")
def handle_subscription_updated(reconciler: WebhookReconciler, subscription: dict):
    return bool(reconciler.subscriptions.subscription_updated(subscription))


@register_handler("customer.subscription.deleted")
def handle_subscription_deleted(reconciler: WebhookReconciler, subscription: dict):
    return bool(reconciler.subscriptions.subscription_deleted(subscription))
