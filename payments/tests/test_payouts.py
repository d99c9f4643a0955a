"""
Tests for payout scheduling, execution, retries and method migration.
"""
from datetime import timedelta

import pytest
from django.db import DatabaseError
from django.utils import timezone

from events.models import Event
from payments.exceptions import InvalidState, ProviderGatewayError
from payments.models import AuditLog, Payment, Payout, StripeAccount


@pytest.mark.django_db
def test_stripe_payout_scheduled_for_connected_organizer(user, past_event, connected_account, purchase):
    payment = purchase(user, past_event, quantity=2)

    payout = Payout.objects.get(payment=payment)
    assert payout.payout_method == Payout.METHOD_STRIPE
    assert payout.stripe_account == connected_account
    assert payout.amount == 4000
    assert payout.status == Payout.STATUS_PENDING


@pytest.mark.django_db
def test_batch_continues_past_failed_transfer(scheduler, gateway, user, past_event, connected_account, purchase):
    payouts = [Payout.objects.get(payment=purchase(user, past_event)) for _ in range(3)]
    gateway.failing_payouts.add(payouts[1].pk)

    outcomes = scheduler.process_due()

    assert [o.status for o in outcomes] == ["paid", "failed", "paid"]
    paid, failed, paid_again = [Payout.objects.get(pk=p.pk) for p in payouts]
    assert paid.status == paid_again.status == Payout.STATUS_PAID
    assert paid.stripe_transfer_id.startswith("tr_test_")
    assert paid.processed_at is not None
    assert failed.status == Payout.STATUS_FAILED
    assert failed.failure_reason == "Insufficient funds in platform balance"
    assert failed.attempts == 1

    calls = gateway.calls_to("create_transfer")
    assert len(calls) == 3
    assert {c["transfer_group"] for c in calls} == {f"event_{past_event.pk}"}
    assert calls[0]["destination"] == "acct_host"
    assert calls[0]["idempotency_key"] == f"payout-{payouts[0].pk}-0"


@pytest.mark.django_db
def test_payouts_not_yet_due_are_skipped(scheduler, gateway, user, paid_event, connected_account, purchase):
    purchase(user, paid_event)

    assert scheduler.process_due() == []
    assert gateway.calls_to("create_transfer") == []

    later = paid_event.end_date + timedelta(minutes=1)
    assert [o.status for o in scheduler.process_due(now=later)] == ["paid"]


@pytest.mark.django_db
def test_process_due_for_single_event(scheduler, user, organizer, past_event, connected_account, purchase):
    other_event = Event.objects.create(
        organizer=organizer,
        title="Other Meetup",
        start_date=past_event.start_date,
        ticket_price_cents=1000,
    )
    purchase(user, past_event)
    purchase(user, other_event)

    outcomes = scheduler.process_due(event_id=other_event.pk)

    assert len(outcomes) == 1
    assert Payout.objects.get(event=other_event).status == Payout.STATUS_PAID
    assert Payout.objects.get(event=past_event).status == Payout.STATUS_PENDING


@pytest.mark.django_db
def test_ambiguous_failure_keeps_idempotency_key(scheduler, gateway, staff_user, user, past_event,
                                                 connected_account, purchase):
    payout = Payout.objects.get(payment=purchase(user, past_event))
    gateway.errors["create_transfer"] = ProviderGatewayError("timed out", ambiguous=True)

    scheduler.process_due()
    payout.refresh_from_db()
    assert payout.status == Payout.STATUS_FAILED
    assert payout.attempts == 0

    del gateway.errors["create_transfer"]
    outcome = scheduler.retry(payout, operator=staff_user)

    assert outcome.status == Payout.STATUS_PAID
    keys = [c["idempotency_key"] for c in gateway.calls_to("create_transfer")]
    assert keys == [f"payout-{payout.pk}-0", f"payout-{payout.pk}-0"]


@pytest.mark.django_db
def test_retry_after_definitive_failure_uses_new_key(scheduler, gateway, staff_user, user, past_event,
                                                     connected_account, purchase):
    payout = Payout.objects.get(payment=purchase(user, past_event))
    gateway.failing_payouts.add(payout.pk)
    scheduler.process_due()

    gateway.failing_payouts.clear()
    payout.refresh_from_db()
    outcome = scheduler.retry(payout, operator=staff_user)

    assert outcome.status == Payout.STATUS_PAID
    payout.refresh_from_db()
    assert payout.status == Payout.STATUS_PAID
    assert payout.failure_reason == ""
    assert gateway.calls_to("create_transfer")[-1]["idempotency_key"] == f"payout-{payout.pk}-1"
    log = AuditLog.objects.get(action="payout.retry")
    assert log.actor == staff_user
    assert log.details["result"] == "paid"


@pytest.mark.django_db
def test_retry_rules(scheduler, user, past_event, connected_account, purchase):
    payout = Payout.objects.get(payment=purchase(user, past_event))

    with pytest.raises(InvalidState):
        scheduler.retry(payout)

    Payout.objects.filter(pk=payout.pk).update(
        status=Payout.STATUS_FAILED, payout_method=Payout.METHOD_MANUAL, stripe_account=None
    )
    payout.refresh_from_db()
    with pytest.raises(InvalidState):
        scheduler.retry(payout)


@pytest.mark.django_db
def test_payout_already_processing_is_not_sent_twice(scheduler, gateway, user, past_event,
                                                     connected_account, purchase):
    payout = Payout.objects.get(payment=purchase(user, past_event))
    Payout.objects.filter(pk=payout.pk).update(status=Payout.STATUS_PROCESSING)

    outcome = scheduler.execute(payout)

    assert outcome.status == "skipped"
    assert gateway.calls_to("create_transfer") == []


@pytest.mark.django_db
def test_mark_manual_paid(scheduler, staff_user, user, past_event, purchase):
    payout = Payout.objects.get(payment=purchase(user, past_event))
    assert payout.payout_method == Payout.METHOD_MANUAL

    scheduler.mark_manual_paid(payout, staff_user, note="Paid by cheque #42")

    payout.refresh_from_db()
    assert payout.status == Payout.STATUS_PAID
    assert payout.processed_by == staff_user
    assert payout.note == "Paid by cheque #42"
    assert payout.processed_at is not None
    assert AuditLog.objects.filter(action="payout.mark_paid", target_id=str(payout.pk)).exists()

    with pytest.raises(InvalidState):
        scheduler.mark_manual_paid(payout, staff_user)


@pytest.mark.django_db
def test_mark_paid_rejects_stripe_payouts(scheduler, staff_user, user, past_event, connected_account, purchase):
    payout = Payout.objects.get(payment=purchase(user, past_event))

    with pytest.raises(InvalidState):
        scheduler.mark_manual_paid(payout, staff_user)


@pytest.mark.django_db
def test_manual_payouts_are_not_executed(scheduler, gateway, user, past_event, purchase):
    purchase(user, past_event)

    assert scheduler.process_due() == []
    assert gateway.calls_to("create_transfer") == []


@pytest.mark.django_db
def test_migrate_moves_only_pending_manual_payouts(scheduler, staff_user, organizer, user, past_event, purchase):
    payouts = [Payout.objects.get(payment=purchase(user, past_event)) for _ in range(4)]
    scheduler.mark_manual_paid(payouts[0], staff_user)
    account = StripeAccount.objects.create(
        user=organizer,
        stripe_account_id="acct_late",
        is_onboarding_complete=True,
        charges_enabled=True,
        payouts_enabled=True,
    )

    migrated = scheduler.migrate_organizer_to_stripe(organizer.pk, operator=staff_user)

    assert migrated == 3
    already_paid = Payout.objects.get(pk=payouts[0].pk)
    assert already_paid.payout_method == Payout.METHOD_MANUAL
    assert already_paid.stripe_account is None
    for payout in payouts[1:]:
        payout.refresh_from_db()
        assert payout.payout_method == Payout.METHOD_STRIPE
        assert payout.stripe_account == account
        assert payout.amount == 2000
    assert AuditLog.objects.get(action="payout.migrate").details == {"migrated": 3}


@pytest.mark.django_db
def test_migrate_requires_fully_enabled_account(scheduler, organizer):
    with pytest.raises(InvalidState):
        scheduler.migrate_organizer_to_stripe(organizer.pk)

    StripeAccount.objects.create(user=organizer, stripe_account_id="acct_new", is_onboarding_complete=True)
    with pytest.raises(InvalidState):
        scheduler.migrate_organizer_to_stripe(organizer.pk)


@pytest.mark.django_db
def test_confirm_transfer_is_idempotent(scheduler, user, past_event, connected_account, purchase):
    payout = Payout.objects.get(payment=purchase(user, past_event))

    assert scheduler.confirm_transfer(payout.pk, "tr_from_webhook") is True
    assert scheduler.confirm_transfer(payout.pk, "tr_from_webhook") is False
    payout.refresh_from_db()
    assert payout.status == Payout.STATUS_PAID
    assert payout.stripe_transfer_id == "tr_from_webhook"


@pytest.mark.django_db
def test_summary_and_earnings(scheduler, gateway, organizer, user, past_event, connected_account, purchase):
    payouts = [Payout.objects.get(payment=purchase(user, past_event)) for _ in range(3)]
    gateway.failing_payouts.add(payouts[2].pk)
    scheduler.execute(payouts[0])
    scheduler.execute(payouts[2])

    summary = scheduler.summary()
    assert summary["pending_amount"] == 2000
    assert summary["paid_amount"] == 2000
    assert summary["by_status"]["failed"] == {"count": 1, "amount": 2000}
    assert summary["pending_by_method"] == {"stripe": {"count": 1, "amount": 2000}}

    earnings = scheduler.earnings_for(organizer)
    assert earnings["total_earnings"] == 6000
    assert earnings["pending_payouts"] == 2000
    assert earnings["completed_payouts"] == 2000
    assert len(earnings["payout_history"]) == 3
    assert timezone.is_aware(earnings["payout_history"][0]["scheduled_for"])


@pytest.mark.django_db
def test_full_refund_cancels_failed_payout(scheduler, ledger, gateway, staff_user, user, past_event,
                                           connected_account, purchase):
    payment = purchase(user, past_event)
    payout = Payout.objects.get(payment=payment)
    gateway.failing_payouts.add(payout.pk)
    scheduler.process_due()
    gateway.failing_payouts.clear()

    ledger.apply_charge_refund(
        payment.stripe_charge_id, None, amount_refunded=payment.total_amount, amount=payment.total_amount
    )

    payout.refresh_from_db()
    assert payout.status == Payout.STATUS_CANCELLED
    with pytest.raises(InvalidState):
        scheduler.retry(payout, operator=staff_user)
    assert len(gateway.calls_to("create_transfer")) == 1


@pytest.mark.django_db
def test_payout_of_refunded_payment_is_never_claimed(scheduler, gateway, user, past_event,
                                                     connected_account, purchase):
    payment = purchase(user, past_event)
    payout = Payout.objects.get(payment=payment)
    Payout.objects.filter(pk=payout.pk).update(status=Payout.STATUS_FAILED)
    Payment.objects.filter(pk=payment.pk).update(status=Payment.STATUS_REFUNDED)
    payout.refresh_from_db()

    with pytest.raises(InvalidState):
        scheduler.retry(payout)
    assert scheduler.execute(payout).status == "skipped"
    assert gateway.calls_to("create_transfer") == []


@pytest.mark.django_db
def test_bookkeeping_error_after_transfer_does_not_stop_batch(scheduler, gateway, monkeypatch, user,
                                                              past_event, connected_account, purchase):
    payouts = [Payout.objects.get(payment=purchase(user, past_event)) for _ in range(2)]
    recorded = scheduler._record_success

    def flaky_record(payout, transfer_id):
        if payout.pk == payouts[0].pk:
            raise DatabaseError("connection lost")
        recorded(payout, transfer_id)

    monkeypatch.setattr(scheduler, "_record_success", flaky_record)

    outcomes = scheduler.process_due()

    assert [o.status for o in outcomes] == ["paid", "paid"]
    assert outcomes[0].transfer_id.startswith("tr_test_")
    assert Payout.objects.get(pk=payouts[0].pk).status == Payout.STATUS_PROCESSING
    assert Payout.objects.get(pk=payouts[1].pk).status == Payout.STATUS_PAID

    scheduler.confirm_transfer(payouts[0].pk, outcomes[0].transfer_id)
    assert Payout.objects.get(pk=payouts[0].pk).status == Payout.STATUS_PAID
