"""
Fixtures for the payments tests.

Every test that touches Stripe gets the ``gateway`` fixture, which puts a
``FakeGateway`` behind ``get_gateway`` in each payments module.
"""
from datetime import timedelta

import pytest
from django.utils import timezone

from events.models import Event
from payments.ledger import PaymentLedger
from payments.models import Payment, StripeAccount
from payments.payouts import PayoutScheduler

from .fakes import CONTACT, FakeGateway


@pytest.fixture
def gateway(monkeypatch):
    """Install a FakeGateway everywhere the app looks one up."""
    fake = FakeGateway()
    for module in ("payments.views", "payments.tasks", "payments.ledger", "payments.payouts",
                   "payments.accounts", "payments.webhooks", "payments.subscriptions"):
        monkeypatch.setattr(f"{module}.get_gateway", lambda: fake)
    return fake


@pytest.fixture
def ledger(gateway):
    return PaymentLedger(gateway=gateway)


@pytest.fixture
def scheduler(gateway):
    return PayoutScheduler(gateway=gateway)


@pytest.fixture
def paid_event(organizer):
    start = timezone.now() + timedelta(days=7)
    return Event.objects.create(
        organizer=organizer,
        title="Spring Gala",
        start_date=start,
        end_date=start + timedelta(hours=4),
        ticket_price_cents=1234,
    )


@pytest.fixture
def limited_event(organizer):
    start = timezone.now() + timedelta(days=3)
    return Event.objects.create(
        organizer=organizer,
        title="Small Workshop",
        start_date=start,
        end_date=start + timedelta(hours=2),
        ticket_price_cents=2000,
        available_tickets=5,
    )


@pytest.fixture
def past_event(organizer):
    """A paid event that has already ended, so its payouts are due."""
    start = timezone.now() - timedelta(days=2)
    return Event.objects.create(
        organizer=organizer,
        title="Last Week Meetup",
        start_date=start,
        end_date=start + timedelta(hours=3),
        ticket_price_cents=2500,
    )


@pytest.fixture
def free_event(organizer):
    return Event.objects.create(
        organizer=organizer,
        title="Open House",
        start_date=timezone.now() + timedelta(days=1),
        is_free=True,
    )


@pytest.fixture
def connected_account(organizer):
    return StripeAccount.objects.create(
        user=organizer,
        stripe_account_id="acct_host",
        is_onboarding_complete=True,
        charges_enabled=True,
        payouts_enabled=True,
    )


@pytest.fixture
def purchase(ledger):
    """Create an intent for ``quantity`` tickets and reconcile it as succeeded."""

    def _purchase(buyer, event, quantity=1):
        result = ledger.create_intent(buyer, event.pk, quantity, CONTACT)
        payment = Payment.objects.get(pk=result.payment_id)
        ledger.reconcile_succeeded(payment.stripe_payment_intent_id, f"ch_{payment.pk}")
        payment.refresh_from_db()
        return payment

    return _purchase
