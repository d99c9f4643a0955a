"""
Stripe Connect onboarding for organizers.

An organizer has at most one Express account.  Its flags are pulled from
Stripe on demand (status endpoint) and pushed by the ``account.updated``
webhook; both paths go through ``ConnectedAccountManager._apply``.  The
account becoming fully enabled is what moves the organizer's pending
manual payouts onto Stripe transfers.
"""
from __future__ import annotations

import logging

from django.db import transaction

from .exceptions import AccountAlreadyConnected, AccountNotFound, InvalidState
from .gateway import get_gateway, stripe_value
from .models import Payment, StripeAccount
from .payouts import PayoutScheduler

logger = logging.getLogger(__name__)


class ConnectedAccountManager:
    def __init__(self, gateway=None, scheduler: PayoutScheduler | None = None):
        self.gateway = gateway or get_gateway()
        self.scheduler = scheduler or PayoutScheduler(gateway=self.gateway)

    def _get_account(self, organizer) -> StripeAccount:
        account = StripeAccount.objects.filter(user=organizer).first()
        if account is None:
            raise AccountNotFound()
        return account

    def create_account(self, organizer) -> dict:
        existing = StripeAccount.objects.filter(user=organizer).first()
        if existing is not None:
            if existing.is_onboarding_complete:
                raise AccountAlreadyConnected()
            link = self.gateway.create_account_link(existing.stripe_account_id)
            return {"account_id": existing.stripe_account_id, "onboarding_url": link.url}

        provider_account = self.gateway.create_account(
            email=organizer.email,
            metadata={"userId": str(organizer.pk), "platform": "community"},
            idempotency_key=f"connect-account-{organizer.pk}",
        )
        account, _ = StripeAccount.objects.get_or_create(
            user=organizer,
            defaults={
                "stripe_account_id": provider_account.id,
                "stripe_account_type": "express",
            },
        )
        logger.info("Created connected account %s for organizer %s", account.stripe_account_id, organizer.pk)
        link = self.gateway.create_account_link(account.stripe_account_id)
        return {"account_id": account.stripe_account_id, "onboarding_url": link.url}

    def refresh_link(self, organizer) -> str:
        account = self._get_account(organizer)
        return self.gateway.create_account_link(account.stripe_account_id).url

    def dashboard_link(self, organizer) -> str:
        account = self._get_account(organizer)
        if not account.is_onboarding_complete:
            raise InvalidState("Please complete Stripe onboarding first.")
        return self.gateway.create_login_link(account.stripe_account_id).url

    def sync_status(self, organizer) -> dict:
        """Pull the latest flags from Stripe and persist them."""
        account = StripeAccount.objects.filter(user=organizer).first()
        if account is None:
            return {"connected": False, "onboarding_complete": False}
        provider_account = self.gateway.retrieve_account(account.stripe_account_id)
        account = self._apply(account, provider_account)
        return {
            "connected": True,
            "account_id": account.stripe_account_id,
            "onboarding_complete": account.is_onboarding_complete,
            "charges_enabled": account.charges_enabled,
            "payouts_enabled": account.payouts_enabled,
            "business_name": account.business_name,
            "business_type": account.business_type,
        }

    def apply_account_update(self, provider_account) -> StripeAccount | None:
        """Apply an ``account.updated`` payload; unknown accounts are ignored."""
        account_id = stripe_value(provider_account, "id")
        account = StripeAccount.objects.filter(stripe_account_id=account_id).first()
        if account is None:
            logger.info("Ignoring update for unknown connected account %s", account_id)
            return None
        return self._apply(account, provider_account)

    def _apply(self, account: StripeAccount, provider_account) -> StripeAccount:
        profile = stripe_value(provider_account, "business_profile") or {}
        account.is_onboarding_complete = bool(stripe_value(provider_account, "details_submitted", False))
        account.charges_enabled = bool(stripe_value(provider_account, "charges_enabled", False))
        account.payouts_enabled = bool(stripe_value(provider_account, "payouts_enabled", False))
        account.business_name = stripe_value(profile, "name") or None
        account.business_type = stripe_value(provider_account, "business_type") or None
        account.save(
            update_fields=[
                "is_onboarding_complete",
                "charges_enabled",
                "payouts_enabled",
                "business_name",
                "business_type",
                "updated_at",
            ]
        )
        if account.is_fully_enabled:
            self._on_fully_enabled(account)
        return account

    def _on_fully_enabled(self, account: StripeAccount) -> None:
        # Both steps are idempotent, so repeated updates for an enabled account are harmless.
        with transaction.atomic():
            self.scheduler.migrate_organizer_to_stripe(account.user_id)
            backfilled = Payment.objects.filter(
                event__organizer_id=account.user_id,
                organizer_stripe_account_id__isnull=True,
                status__in=[Payment.STATUS_PENDING, Payment.STATUS_SUCCEEDED],
            ).update(organizer_stripe_account_id=account.stripe_account_id)
        if backfilled:
            logger.info(
                "Backfilled connected account %s onto %s payments", account.stripe_account_id, backfilled
            )
