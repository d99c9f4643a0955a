"""
Social media management subscriptions billed through Stripe Checkout.

Users start a subscription with a Checkout session.  The row is written
either when they return with the session id (``verify``) or when the
``checkout.session.completed`` webhook arrives, whichever comes first;
webhooks remain the source of truth afterwards.  Cancelling only turns
off auto-renew, so the subscription stays usable until the period ends.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone as dt_timezone

from django.conf import settings
from django.contrib.auth import get_user_model
from django.utils import timezone

from .exceptions import (
    InvalidState,
    NotSubscriptionOwner,
    PaymentNotCompleted,
    ProviderGatewayError,
    SubscriptionAlreadyActive,
    SubscriptionNotFound,
)
from .gateway import get_gateway, stripe_value
from .models import AuditLog, SocialSubscription

logger = logging.getLogger(__name__)

# Stripe metadata values are capped at 500 characters.
METADATA_VALUE_LIMIT = 500


def _from_timestamp(value):
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=dt_timezone.utc)


def _ref_id(value):
    if value is None or isinstance(value, str):
        return value
    return stripe_value(value, "id")


def _price_id(subscription):
    items = stripe_value(subscription, "items") or {}
    data = stripe_value(items, "data") or []
    if not data:
        return None
    return _ref_id(stripe_value(data[0], "price"))


def _line_item() -> dict:
    if settings.SOCIAL_SUBSCRIPTION_PRICE_ID:
        return {"price": settings.SOCIAL_SUBSCRIPTION_PRICE_ID, "quantity": 1}
    return {
        "price_data": {
            "currency": settings.PAYMENT_CURRENCY,
            "product_data": {
                "name": settings.SOCIAL_SUBSCRIPTION_PRODUCT_NAME,
                "description": "Monthly Social Media Management Service",
            },
            "unit_amount": settings.SOCIAL_SUBSCRIPTION_AMOUNT_CENTS,
            "recurring": {"interval": "month"},
        },
        "quantity": 1,
    }


def _return_urls() -> dict:
    base = settings.FRONTEND_URL.rstrip("/")
    return {
        # Stripe fills in {CHECKOUT_SESSION_ID} on redirect.
        "success_url": f"{base}/settings?subscription=success&session_id={{CHECKOUT_SESSION_ID}}",
        "cancel_url": f"{base}/social-media-subscription?cancelled=true",
    }


def _metadata(user_id, business_name, business_type, social_handles, email, phone, description) -> dict:
    return {
        "userId": str(user_id),
        "businessName": business_name,
        "businessType": business_type,
        "socialHandles": json.dumps(social_handles or {}),
        "contactEmail": email or "",
        "contactPhone": phone or "",
        "description": (description or "")[:METADATA_VALUE_LIMIT],
    }


class SubscriptionSync:
    def __init__(self, gateway=None):
        self.gateway = gateway or get_gateway()

    # ---- local state -----------------------------------------------------

    def _upsert(self, user, subscription, metadata: dict, customer_id=None) -> SocialSubscription:
        try:
            social_handles = json.loads(metadata.get("socialHandles") or "{}")
        except ValueError:
            logger.warning("Invalid socialHandles metadata for subscription %s", stripe_value(subscription, "id"))
            social_handles = {}

        now = timezone.now()
        record, created = SocialSubscription.objects.update_or_create(
            user=user,
            defaults={
                "status": stripe_value(subscription, "status"),
                "stripe_subscription_id": stripe_value(subscription, "id"),
                "stripe_customer_id": customer_id or _ref_id(stripe_value(subscription, "customer")),
                "stripe_price_id": _price_id(subscription),
                "current_period_start": _from_timestamp(stripe_value(subscription, "current_period_start")) or now,
                "current_period_end": _from_timestamp(stripe_value(subscription, "current_period_end")) or now,
                "cancel_at_period_end": bool(stripe_value(subscription, "cancel_at_period_end", False)),
                "cancelled_at": _from_timestamp(stripe_value(subscription, "canceled_at")),
                "business_name": metadata.get("businessName") or "Business",
                "business_type": metadata.get("businessType") or "Other",
                "social_handles": social_handles,
                "contact_email": metadata.get("contactEmail") or "",
                "contact_phone": metadata.get("contactPhone") or "",
                "description": metadata.get("description") or None,
            },
        )
        logger.info(
            "%s social subscription %s for user %s",
            "Created" if created else "Updated", record.stripe_subscription_id, user.pk,
        )
        return record

    def _apply(self, record: SocialSubscription, subscription, **overrides) -> SocialSubscription:
        """Copy Stripe's view of the subscription onto ``record``."""
        fields = {
            "status": stripe_value(subscription, "status") or record.status,
            "cancel_at_period_end": bool(stripe_value(subscription, "cancel_at_period_end", False)),
        }
        for key in ("current_period_start", "current_period_end"):
            value = _from_timestamp(stripe_value(subscription, key))
            if value:
                fields[key] = value
        price_id = _price_id(subscription)
        if price_id:
            fields["stripe_price_id"] = price_id
        fields.update(overrides)
        for name, value in fields.items():
            setattr(record, name, value)
        record.save(update_fields=[*fields, "updated_at"])
        return record

    def _record_for(self, user) -> SocialSubscription | None:
        return SocialSubscription.objects.filter(user=user).first()

    # ---- user operations -------------------------------------------------

    def create_session(self, user, details: dict) -> dict:
        """Open a Checkout session for a new subscription."""
        existing = self._record_for(user)
        if existing is not None and existing.is_active:
            raise SubscriptionAlreadyActive()

        social_handles = {
            "hasExistingAccounts": details.get("has_existing_accounts", False),
            "instagram": details.get("instagram_handle") or None,
            "facebook": details.get("facebook_handle") or None,
            "tiktok": details.get("tiktok_handle") or None,
            "twitter": details.get("twitter_handle") or None,
            "linkedin": details.get("linkedin_handle") or None,
        }
        session = self.gateway.create_checkout_session(
            line_item=_line_item(),
            metadata=_metadata(
                user.pk,
                details["business_name"],
                details["business_type"],
                social_handles,
                details["email"],
                details["phone"],
                details["description"],
            ),
            customer_email=user.email or details["email"],
            **_return_urls(),
        )
        logger.info("Opened subscription checkout %s for user %s", session.id, user.pk)
        return {"session_id": session.id, "url": session.url}

    def verify(self, user, session_id: str) -> SocialSubscription:
        """Record the subscription as soon as the user returns from Checkout."""
        session = self.gateway.retrieve_checkout_session(session_id)
        if stripe_value(session, "payment_status") != "paid":
            raise PaymentNotCompleted()
        metadata = stripe_value(session, "metadata") or {}
        if str(stripe_value(metadata, "userId", "")) != str(user.pk):
            logger.warning("User %s tried to verify checkout %s of another user", user.pk, session_id)
            raise NotSubscriptionOwner()

        subscription = self.gateway.retrieve_subscription(_ref_id(stripe_value(session, "subscription")))
        return self._upsert(
            user, subscription, dict(metadata), customer_id=_ref_id(stripe_value(session, "customer"))
        )

    def my_subscription(self, user) -> SocialSubscription | None:
        """The caller's subscription, refreshed from Stripe when it has drifted.

        A Stripe outage never fails the request; the stored row is returned.
        """
        record = self._record_for(user)
        if record is None or not record.stripe_subscription_id:
            return record
        try:
            subscription = self.gateway.retrieve_subscription(record.stripe_subscription_id)
        except ProviderGatewayError:
            logger.exception("Could not refresh subscription %s from Stripe", record.stripe_subscription_id)
            return record

        period_end = _from_timestamp(stripe_value(subscription, "current_period_end"))
        if (
            stripe_value(subscription, "status") != record.status
            or bool(stripe_value(subscription, "cancel_at_period_end", False)) != record.cancel_at_period_end
            or (period_end is not None and period_end != record.current_period_end)
        ):
            self._apply(
                record, subscription, cancelled_at=_from_timestamp(stripe_value(subscription, "canceled_at"))
            )
            logger.info("Refreshed drifted subscription %s", record.stripe_subscription_id)
        return record

    def cancel(self, user) -> SocialSubscription:
        """Turn off auto-renew; access continues until the period ends."""
        record = self._record_for(user)
        if record is None or not record.stripe_subscription_id:
            raise SubscriptionNotFound("No active subscription found.")
        subscription = self.gateway.update_subscription(record.stripe_subscription_id, cancel_at_period_end=True)
        self._apply(record, subscription, cancel_at_period_end=True)
        logger.info("User %s cancelled subscription %s at period end", user.pk, record.stripe_subscription_id)
        return record

    def renew(self, user) -> dict:
        """Resume a subscription scheduled to cancel, or check out a new one.

        Returns ``{"subscription": record}`` when auto-renew was resumed and
        ``{"session_id": ..., "url": ...}`` when the user must pay again.
        """
        record = self._record_for(user)
        if record is None:
            raise SubscriptionNotFound("No subscription found to renew.")
        if not record.stripe_subscription_id:
            raise InvalidState("Subscription cannot be renewed at this time.")

        try:
            current = self.gateway.retrieve_subscription(record.stripe_subscription_id)
        except ProviderGatewayError:
            logger.exception("Renew could not load subscription %s", record.stripe_subscription_id)
            current = None

        if current is not None and stripe_value(current, "status") in SocialSubscription.ACTIVE_STATUSES:
            if not stripe_value(current, "cancel_at_period_end", False):
                raise InvalidState("Subscription is already active.")
            resumed = self.gateway.update_subscription(record.stripe_subscription_id, cancel_at_period_end=False)
            self._apply(record, resumed, cancel_at_period_end=False, cancelled_at=None)
            logger.info("User %s resumed subscription %s", user.pk, record.stripe_subscription_id)
            return {"subscription": record}

        params = {
            "line_item": _line_item(),
            "metadata": _metadata(
                user.pk,
                record.business_name,
                record.business_type,
                record.social_handles,
                record.contact_email,
                record.contact_phone,
                record.description,
            ),
            **_return_urls(),
        }
        email = record.contact_email or user.email
        if record.stripe_customer_id:
            try:
                session = self.gateway.create_checkout_session(customer=record.stripe_customer_id, **params)
            except ProviderGatewayError as exc:
                if exc.ambiguous:
                    raise
                # The stored customer may have been deleted in Stripe.
                logger.warning(
                    "Checkout with customer %s failed (%s); retrying by email", record.stripe_customer_id, exc
                )
                session = self.gateway.create_checkout_session(customer_email=email, **params)
        else:
            session = self.gateway.create_checkout_session(customer_email=email, **params)
        logger.info("Opened renewal checkout %s for user %s", session.id, user.pk)
        return {"session_id": session.id, "url": session.url}

    # ---- admin operations ------------------------------------------------

    def admin_cancel(self, record: SocialSubscription, operator) -> SocialSubscription:
        if not record.stripe_subscription_id:
            raise SubscriptionNotFound("Subscription not found.")
        subscription = self.gateway.retrieve_subscription(record.stripe_subscription_id)
        if stripe_value(subscription, "status") in SocialSubscription.ACTIVE_STATUSES and not stripe_value(
            subscription, "cancel_at_period_end", False
        ):
            subscription = self.gateway.update_subscription(record.stripe_subscription_id, cancel_at_period_end=True)
        self._apply(record, subscription)
        AuditLog.record(operator, "subscription.cancel", "subscription", record.pk, status=record.status)
        return record

    def admin_reactivate(self, record: SocialSubscription, operator) -> SocialSubscription:
        if not record.stripe_subscription_id:
            raise SubscriptionNotFound("Subscription not found.")
        subscription = self.gateway.retrieve_subscription(record.stripe_subscription_id)
        if stripe_value(subscription, "status") not in SocialSubscription.ACTIVE_STATUSES:
            raise InvalidState(
                "Only active subscriptions can be reactivated. Ask the user to renew from checkout."
            )
        if not stripe_value(subscription, "cancel_at_period_end", False):
            raise InvalidState("Subscription is already active and auto-renewing.")
        resumed = self.gateway.update_subscription(record.stripe_subscription_id, cancel_at_period_end=False)
        self._apply(record, resumed, cancel_at_period_end=False, cancelled_at=None)
        AuditLog.record(operator, "subscription.reactivate", "subscription", record.pk, status=record.status)
        return record

    # ---- webhooks --------------------------------------------------------

    def checkout_completed(self, session: dict) -> SocialSubscription | None:
        if session.get("mode") != "subscription" or not session.get("subscription"):
            return None
        metadata = session.get("metadata") or {}
        user_id = metadata.get("userId")
        if not user_id:
            logger.info("Subscription checkout %s has no userId metadata", session.get("id"))
            return None
        user = get_user_model().objects.filter(pk=user_id).first()
        if user is None:
            logger.warning("Subscription checkout %s references unknown user %s", session.get("id"), user_id)
            return None

        subscription = self.gateway.retrieve_subscription(_ref_id(session["subscription"]))
        return self._upsert(user, subscription, metadata, customer_id=_ref_id(session.get("customer")))

    def subscription_updated(self, subscription: dict) -> int:
        fields = {
            "status": subscription.get("status"),
            "cancel_at_period_end": bool(subscription.get("cancel_at_period_end")),
            "cancelled_at": _from_timestamp(subscription.get("canceled_at")),
        }
        price_id = _price_id(subscription)
        if price_id:
            fields["stripe_price_id"] = price_id
        for key in ("current_period_start", "current_period_end"):
            if subscription.get(key):
                fields[key] = _from_timestamp(subscription[key])
        return SocialSubscription.objects.filter(stripe_subscription_id=subscription.get("id")).update(
            updated_at=timezone.now(), **fields
        )

    def subscription_deleted(self, subscription: dict) -> int:
        fields = {
            "status": subscription.get("status") or "canceled",
            "cancel_at_period_end": True,
            "cancelled_at": _from_timestamp(subscription.get("canceled_at")) or timezone.now(),
        }
        if subscription.get("current_period_end"):
            fields["current_period_end"] = _from_timestamp(subscription["current_period_end"])
        return SocialSubscription.objects.filter(stripe_subscription_id=subscription.get("id")).update(
            updated_at=timezone.now(), **fields
        )
