"""
Payout scheduling and execution.

Each succeeded payment gets exactly one ``Payout`` row, scheduled for
the end of its event (or the start, when no end is set).  Payouts for
organizers with a fully enabled Stripe account at purchase time use the
``stripe`` method and are settled by a transfer to the connected
account; everything else is ``manual`` and settled off-platform by an
admin.  Manual payouts move to ``stripe`` once the organizer finishes
onboarding.

Before a transfer is attempted the payout is claimed by a conditional
update into ``processing``, so a scheduled batch and an admin retry can
never send the same payout twice.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from django.db import DatabaseError
from django.db.models import Count, Q, Sum
from django.utils import timezone

from .exceptions import InvalidState
from .gateway import get_gateway
from .models import AuditLog, Payment, Payout, StripeAccount

logger = logging.getLogger(__name__)


@dataclass
class PayoutOutcome:
    payout_id: int
    status: str
    transfer_id: str = ""
    error: str = ""

    def as_dict(self) -> dict:
        data = {"payout_id": self.payout_id, "status": self.status}
        if self.transfer_id:
            data["transfer_id"] = self.transfer_id
        if self.error:
            data["error"] = self.error
        return data


class PayoutScheduler:
    def __init__(self, gateway=None):
        self.gateway = gateway or get_gateway()

    def schedule_for_payment(self, payment: Payment, event) -> Payout:
        """Create the payout owed for a succeeded payment.

        The method follows the connected-account decision stored on the
        payment at intent time; it is not re-evaluated here.
        """
        account = None
        if payment.organizer_stripe_account_id:
            account = StripeAccount.objects.filter(
                stripe_account_id=payment.organizer_stripe_account_id
            ).first()
        method = Payout.METHOD_STRIPE if account else Payout.METHOD_MANUAL
        payout, created = Payout.objects.get_or_create(
            payment=payment,
            defaults={
                "user_id": event.organizer_id,
                "event": event,
                "stripe_account": account,
                "amount": payment.organizer_amount,
                "currency": payment.currency,
                "status": Payout.STATUS_PENDING,
                "payout_method": method,
                "scheduled_for": event.payout_date,
            },
        )
        if created:
            logger.info(
                "Scheduled %s payout %s of %s for payment %s on %s",
                method, payout.pk, payout.amount, payment.pk, payout.scheduled_for,
            )
        return payout

    def due_stripe_payouts(self, now=None, event_id=None):
        now = now or timezone.now()
        qs = Payout.objects.filter(
            status=Payout.STATUS_PENDING,
            payout_method=Payout.METHOD_STRIPE,
            stripe_account__isnull=False,
            scheduled_for__lte=now,
        )
        if event_id is not None:
            qs = qs.filter(event_id=event_id)
        return qs.select_related("stripe_account").order_by("scheduled_for", "id")

    def _claim(self, payout: Payout) -> bool:
        claimed = Payout.objects.filter(
            pk=payout.pk,
            payout_method=Payout.METHOD_STRIPE,
            stripe_account__isnull=False,
            status__in=Payout.OPEN_STATUSES,
        ).exclude(
            payment__status=Payment.STATUS_REFUNDED,
        ).update(status=Payout.STATUS_PROCESSING, updated_at=timezone.now())
        return bool(claimed)

    def _record_failure(self, payout: Payout, reason: str, count_attempt: bool) -> None:
        fields = {
            "status": Payout.STATUS_FAILED,
            "failure_reason": reason,
            "updated_at": timezone.now(),
        }
        if count_attempt:
            fields["attempts"] = payout.attempts + 1
        Payout.objects.filter(pk=payout.pk, status=Payout.STATUS_PROCESSING).update(**fields)

    def execute(self, payout: Payout) -> PayoutOutcome:
        """Transfer one payout to the organizer's connected account.

        Never raises: the result of the attempt is returned and persisted
        on the payout, so one bad payout cannot stop a batch.
        """
        if not self._claim(payout):
            logger.info("Payout %s is not executable, skipping", payout.pk)
            return PayoutOutcome(payout.pk, "skipped", error="Payout is not executable")

        payout = Payout.objects.select_related("stripe_account").get(pk=payout.pk)
        # A new idempotency key is used only after Stripe definitively rejected the previous attempt.
        idempotency_key = f"payout-{payout.pk}-{payout.attempts}"
        try:
            transfer = self.gateway.create_transfer(
                amount=payout.amount,
                currency=payout.currency,
                destination=payout.stripe_account.stripe_account_id,
                transfer_group=f"event_{payout.event_id}",
                metadata={
                    "payoutId": str(payout.pk),
                    "eventId": str(payout.event_id),
                    "paymentId": str(payout.payment_id),
                },
                idempotency_key=idempotency_key,
            )
        except Exception as exc:
            ambiguous = getattr(exc, "ambiguous", False)
            reason = str(exc) or exc.__class__.__name__
            self._record_failure(payout, reason, count_attempt=not ambiguous)
            logger.warning("Payout %s failed: %s", payout.pk, reason)
            return PayoutOutcome(payout.pk, Payout.STATUS_FAILED, error=reason)

        try:
            self._record_success(payout, transfer.id)
        except DatabaseError:
            # The money has moved; transfer.created will settle the row later.
            logger.exception("Payout %s sent as %s but could not be marked paid", payout.pk, transfer.id)
        else:
            logger.info("Payout %s paid via transfer %s", payout.pk, transfer.id)
        return PayoutOutcome(payout.pk, Payout.STATUS_PAID, transfer_id=transfer.id)

    def _record_success(self, payout: Payout, transfer_id: str) -> None:
        Payout.objects.filter(pk=payout.pk).exclude(status=Payout.STATUS_PAID).update(
            status=Payout.STATUS_PAID,
            stripe_transfer_id=transfer_id,
            processed_at=timezone.now(),
            failure_reason="",
            attempts=payout.attempts + 1,
            updated_at=timezone.now(),
        )

    def execute_batch(self, payouts) -> list[PayoutOutcome]:
        return [self.execute(payout) for payout in payouts]

    def process_due(self, now=None, event_id=None) -> list[PayoutOutcome]:
        outcomes = self.execute_batch(list(self.due_stripe_payouts(now=now, event_id=event_id)))
        if outcomes:
            paid = sum(1 for o in outcomes if o.status == Payout.STATUS_PAID)
            logger.info("Processed %s due payouts, %s paid", len(outcomes), paid)
        return outcomes

    def retry(self, payout: Payout, operator=None) -> PayoutOutcome:
        if payout.payout_method != Payout.METHOD_STRIPE:
            raise InvalidState("Manual payouts cannot be retried; mark them paid instead.")
        if payout.status != Payout.STATUS_FAILED:
            raise InvalidState("Only failed payouts can be retried.")
        if Payment.objects.filter(pk=payout.payment_id, status=Payment.STATUS_REFUNDED).exists():
            raise InvalidState("The payment behind this payout has been refunded.")
        outcome = self.execute(payout)
        AuditLog.record(
            operator, "payout.retry", "payout", payout.pk, result=outcome.status, error=outcome.error
        )
        return outcome

    def mark_manual_paid(self, payout: Payout, operator, note: str = "") -> Payout:
        updated = Payout.objects.filter(
            pk=payout.pk,
            status=Payout.STATUS_PENDING,
            payout_method=Payout.METHOD_MANUAL,
        ).update(
            status=Payout.STATUS_PAID,
            processed_at=timezone.now(),
            processed_by=operator,
            note=note,
            updated_at=timezone.now(),
        )
        if not updated:
            raise InvalidState("Only pending manual payouts can be marked as paid.")
        AuditLog.record(
            operator, "payout.mark_paid", "payout", payout.pk, amount=payout.amount, note=note
        )
        logger.info("Manual payout %s marked paid by %s", payout.pk, getattr(operator, "pk", None))
        payout.refresh_from_db()
        return payout

    def migrate_organizer_to_stripe(self, organizer_id, operator=None) -> int:
        """Move an organizer's pending manual payouts onto their Stripe account."""
        account = StripeAccount.objects.filter(user_id=organizer_id).first()
        if account is None or not account.is_fully_enabled:
            raise InvalidState("Organizer does not have a fully enabled Stripe account.")
        migrated = Payout.objects.filter(
            user_id=organizer_id,
            status=Payout.STATUS_PENDING,
            payout_method=Payout.METHOD_MANUAL,
        ).update(
            payout_method=Payout.METHOD_STRIPE,
            stripe_account=account,
            updated_at=timezone.now(),
        )
        if migrated:
            logger.info("Migrated %s manual payouts to Stripe for organizer %s", migrated, organizer_id)
        if operator is not None:
            AuditLog.record(operator, "payout.migrate", "user", organizer_id, migrated=migrated)
        return migrated

    def confirm_transfer(self, payout_id, transfer_id: str) -> bool:
        """Record a transfer Stripe reports for a payout; returns whether anything changed."""
        updated = Payout.objects.filter(pk=payout_id).exclude(status=Payout.STATUS_PAID).update(
            status=Payout.STATUS_PAID,
            stripe_transfer_id=transfer_id,
            processed_at=timezone.now(),
            failure_reason="",
            updated_at=timezone.now(),
        )
        if updated:
            logger.info("Payout %s confirmed paid by transfer %s", payout_id, transfer_id)
        return bool(updated)

    def cancel_open_for_payment(self, payment_id, reason: str) -> int:
        """Cancel the payment's payout unless it is already paid or in flight."""
        cancelled = Payout.objects.filter(
            payment_id=payment_id, status__in=Payout.OPEN_STATUSES
        ).update(status=Payout.STATUS_CANCELLED, failure_reason=reason, updated_at=timezone.now())
        if cancelled:
            logger.info("Cancelled unsettled payout for payment %s: %s", payment_id, reason)
        return cancelled

    # ---- reporting -------------------------------------------------------

    def summary(self, queryset=None) -> dict:
        qs = Payout.objects.all() if queryset is None else queryset
        by_status = {
            row["status"]: {"count": row["count"], "amount": row["amount"] or 0}
            for row in qs.values("status").annotate(count=Count("id"), amount=Sum("amount"))
        }
        by_method = {
            row["payout_method"]: {"count": row["count"], "amount": row["amount"] or 0}
            for row in qs.filter(status=Payout.STATUS_PENDING)
            .values("payout_method")
            .annotate(count=Count("id"), amount=Sum("amount"))
        }
        return {
            "pending_amount": by_status.get(Payout.STATUS_PENDING, {}).get("amount", 0),
            "paid_amount": by_status.get(Payout.STATUS_PAID, {}).get("amount", 0),
            "by_status": by_status,
            "pending_by_method": by_method,
        }

    def earnings_for(self, organizer) -> dict:
        payouts = Payout.objects.filter(user=organizer).order_by("-scheduled_for")
        totals = payouts.aggregate(
            total=Sum("amount", filter=~Q(status=Payout.STATUS_CANCELLED)),
            pending=Sum("amount", filter=Q(status=Payout.STATUS_PENDING)),
            paid=Sum("amount", filter=Q(status=Payout.STATUS_PAID)),
        )
        return {
            "total_earnings": totals["total"] or 0,
            "pending_payouts": totals["pending"] or 0,
            "completed_payouts": totals["paid"] or 0,
            "payout_history": [
                {
                    "id": p.pk,
                    "event_id": p.event_id,
                    "amount": p.amount,
                    "status": p.status,
                    "payout_method": p.payout_method,
                    "scheduled_for": p.scheduled_for,
                    "processed_at": p.processed_at,
                }
                for p in payouts
            ],
        }
