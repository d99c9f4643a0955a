"""
Payment ledger: quotes, payment intents, ticket issuance and refunds.

A ``Payment`` row is created before the Stripe PaymentIntent exists and
later reconciled to ``succeeded`` or ``failed`` by whichever path gets
there first: the buyer's synchronous confirm call or the
``payment_intent.*`` webhook.  Reconciliation is a conditional status
update inside one transaction, so a duplicate or concurrent call either
sees the work not yet done or fully done.

Inventory is reserved when the intent is created (``inventory_held``)
and released when the payment fails or expires; a succeeded payment
keeps its hold as issued tickets.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta

from django.conf import settings
from django.db import transaction
from django.db.models import Count, F, Q, Sum
from django.utils import timezone

from events.models import Event

from . import fees
from .exceptions import (
    EventNotFound,
    InsufficientInventory,
    InvalidState,
    NotPaymentOwner,
    NotTicketOwner,
    PaymentNotCompleted,
    PaymentNotFound,
    ProviderGatewayError,
    TicketNotFound,
    WrongFlow,
)
from .gateway import get_gateway
from .models import Payment, StripeAccount, Ticket
from .payouts import PayoutScheduler

logger = logging.getLogger(__name__)


@dataclass
class IntentResult:
    client_secret: str
    payment_id: int
    breakdown: fees.PriceBreakdown
    organizer_has_stripe: bool


@dataclass
class RefundResult:
    refund_id: str
    amount: int


def _ticket_code() -> str:
    return f"TKT-{uuid.uuid4().hex[:8].upper()}"


def _charge_id(value) -> str:
    # latest_charge may be an id or an expanded Charge object
    if not value:
        return ""
    if isinstance(value, str):
        return value
    return getattr(value, "id", None) or value.get("id", "")


class PaymentLedger:
    def __init__(self, gateway=None, scheduler: PayoutScheduler | None = None):
        self.gateway = gateway or get_gateway()
        self.scheduler = scheduler or PayoutScheduler(gateway=self.gateway)

    def _get_event(self, event_id) -> Event:
        try:
            return Event.objects.get(pk=event_id)
        except Event.DoesNotExist:
            raise EventNotFound()

    def quote(self, event_id, quantity: int) -> fees.PriceBreakdown:
        event = self._get_event(event_id)
        if event.is_free:
            return fees.free_breakdown(quantity)
        return fees.price_breakdown(event.ticket_price_cents, quantity)

    # ---- checkout --------------------------------------------------------

    def create_intent(self, buyer, event_id, quantity: int, contact: dict) -> IntentResult:
        if quantity < 1:
            raise InvalidState("Quantity must be at least 1.")
        event = self._get_event(event_id)
        if event.is_free:
            raise WrongFlow()
        unit_price = event.ticket_price_cents
        if unit_price < settings.PLATFORM_FEE_PER_TICKET_CENTS:
            raise InvalidState("Ticket price does not cover the platform fee.")

        # The payout route is decided once, here, and stored on the payment.
        account = StripeAccount.objects.filter(user_id=event.organizer_id).first()
        connected_account_id = account.stripe_account_id if account and account.is_fully_enabled else None

        buyer_total = fees.buyer_total(unit_price, quantity)
        payout = fees.organizer_payout(unit_price, quantity)

        with transaction.atomic():
            if event.tracks_inventory and not Event.objects.reserve_tickets(event.pk, quantity):
                event.refresh_from_db(fields=["available_tickets"])
                raise InsufficientInventory(f"Only {event.available_tickets} tickets available.")
            payment = Payment.objects.create(
                stripe_payment_intent_id=f"pending_{uuid.uuid4()}",
                user=buyer,
                event=event,
                subtotal=buyer_total.subtotal,
                platform_fee=payout.platform_fee,
                processing_fee=buyer_total.processing_fee,
                total_amount=buyer_total.total,
                organizer_amount=payout.payout,
                currency=event.currency or settings.PAYMENT_CURRENCY,
                organizer_stripe_account_id=connected_account_id,
                inventory_held=quantity if event.tracks_inventory else 0,
                metadata={
                    "quantity": quantity,
                    "firstName": contact.get("first_name", ""),
                    "lastName": contact.get("last_name", ""),
                    "email": contact.get("email", ""),
                    "phone": contact.get("phone", ""),
                    "eventTitle": event.title,
                    "organizerId": event.organizer_id,
                    "organizerHasStripe": connected_account_id is not None,
                },
            )

        try:
            intent = self.gateway.create_payment_intent(
                amount=buyer_total.total,
                currency=payment.currency,
                metadata={
                    "paymentId": str(payment.pk),
                    "eventId": str(event.pk),
                    "userId": str(buyer.pk),
                    "quantity": str(quantity),
                    "organizerHasStripe": "true" if connected_account_id else "false",
                },
                idempotency_key=f"payment-{payment.pk}",
            )
        except ProviderGatewayError as exc:
            if not exc.ambiguous:
                # Stripe refused the intent outright; nothing can complete this payment.
                self._fail(payment.pk, f"Intent creation failed: {exc}")
            raise

        Payment.objects.filter(pk=payment.pk).update(
            stripe_payment_intent_id=intent.id, updated_at=timezone.now()
        )
        logger.info(
            "Created payment %s (intent %s) for %s x event %s, total %s",
            payment.pk, intent.id, quantity, event.pk, buyer_total.total,
        )
        return IntentResult(
            client_secret=intent.client_secret,
            payment_id=payment.pk,
            breakdown=fees.price_breakdown(unit_price, quantity),
            organizer_has_stripe=connected_account_id is not None,
        )

    def confirm(self, payment_intent_id: str, requester) -> list[Ticket]:
        """Synchronous confirmation from the buyer's client after Stripe.js succeeds."""
        payment = Payment.objects.filter(stripe_payment_intent_id=payment_intent_id).first()
        if payment is None:
            raise PaymentNotFound()
        if payment.user_id != requester.pk:
            raise NotPaymentOwner()
        if payment.status in (
            Payment.STATUS_SUCCEEDED,
            Payment.STATUS_REFUNDED,
            Payment.STATUS_PARTIALLY_REFUNDED,
        ):
            return list(payment.tickets.all())

        # Gateway errors propagate without touching the payment; the webhook settles it.
        intent = self.gateway.retrieve_payment_intent(payment_intent_id)
        if intent.status != "succeeded":
            raise PaymentNotCompleted()
        return self.reconcile_succeeded(payment_intent_id, intent.latest_charge)

    # ---- reconciliation --------------------------------------------------

    def reconcile_succeeded(self, payment_intent_id: str, charge_id=None) -> list[Ticket]:
        with transaction.atomic():
            payment = (
                Payment.objects.select_for_update()
                .select_related("event")
                .filter(stripe_payment_intent_id=payment_intent_id)
                .first()
            )
            if payment is None:
                raise PaymentNotFound()

            claimed = Payment.objects.filter(
                pk=payment.pk,
                status__in=[Payment.STATUS_PENDING, Payment.STATUS_FAILED],
            ).update(
                status=Payment.STATUS_SUCCEEDED,
                stripe_charge_id=_charge_id(charge_id),
                failure_reason="",
                updated_at=timezone.now(),
            )
            if not claimed:
                logger.info("Payment %s already reconciled as %s", payment.pk, payment.status)
                return list(payment.tickets.all())

            event = payment.event
            quantity = payment.quantity
            if event.tracks_inventory and payment.inventory_held < quantity:
                # The hold was released (failure or expiry) before this late success.
                missing = quantity - payment.inventory_held
                if not Event.objects.reserve_tickets(event.pk, missing):
                    raise InsufficientInventory("Tickets sold out before the payment completed.")
                Payment.objects.filter(pk=payment.pk).update(inventory_held=quantity)

            tickets = self._issue_tickets(payment, quantity)
            payment.refresh_from_db()
            self.scheduler.schedule_for_payment(payment, event)
            if payment.amount_refunded and self._apply_refund_status(
                payment, full=payment.amount_refunded >= payment.total_amount
            ):
                # charge.refunded was delivered before this success.
                tickets = list(payment.tickets.all())

        logger.info("Payment %s succeeded, issued %s tickets", payment.pk, len(tickets))
        return tickets

    def _issue_tickets(self, payment: Payment, quantity: int) -> list[Ticket]:
        contact = payment.metadata
        shares = zip(
            fees.split_evenly(payment.subtotal, quantity),
            fees.split_evenly(payment.total_amount, quantity),
            fees.split_evenly(payment.platform_fee, quantity),
            fees.split_evenly(payment.processing_fee, quantity),
        )
        Ticket.objects.bulk_create(
            [
                Ticket(
                    ticket_code=_ticket_code(),
                    event_id=payment.event_id,
                    user_id=payment.user_id,
                    payment=payment,
                    first_name=contact.get("firstName") or "",
                    last_name=contact.get("lastName") or "",
                    email=contact.get("email") or "",
                    phone=contact.get("phone") or "",
                    unit_price=unit_price,
                    total_price=total_price,
                    platform_fee=platform_fee,
                    processing_fee=processing_fee,
                    status=Ticket.STATUS_CONFIRMED,
                )
                for unit_price, total_price, platform_fee, processing_fee in shares
            ]
        )
        return list(payment.tickets.all())

    def reconcile_failed(self, payment_intent_id: str, reason: str) -> Payment:
        payment = Payment.objects.filter(stripe_payment_intent_id=payment_intent_id).first()
        if payment is None:
            raise PaymentNotFound()
        if self._fail(payment.pk, reason):
            logger.info("Payment %s failed: %s", payment.pk, reason)
        else:
            logger.info("Ignoring failure for payment %s in status %s", payment.pk, payment.status)
        payment.refresh_from_db()
        return payment

    def _fail(self, payment_pk, reason: str) -> bool:
        """Move a pending payment to failed and give back its inventory hold."""
        with transaction.atomic():
            payment = Payment.objects.select_for_update().get(pk=payment_pk)
            updated = Payment.objects.filter(pk=payment.pk, status=Payment.STATUS_PENDING).update(
                status=Payment.STATUS_FAILED,
                failure_reason=reason,
                inventory_held=0,
                updated_at=timezone.now(),
            )
            if updated and payment.inventory_held:
                Event.objects.release_tickets(payment.event_id, payment.inventory_held)
        return bool(updated)

    def expire_stale(self, now=None) -> int:
        """Cancel pending payments older than the reservation TTL and free their tickets.

        Intents that Stripe will not cancel (for example because they just
        succeeded) are left pending for the webhook to settle.
        """
        now = now or timezone.now()
        cutoff = now - timedelta(minutes=settings.PAYMENT_RESERVATION_TTL_MINUTES)
        expired = 0
        stale = Payment.objects.filter(status=Payment.STATUS_PENDING, created_at__lt=cutoff)
        for payment in stale.iterator():
            if payment.has_provider_intent:
                try:
                    self.gateway.cancel_payment_intent(payment.stripe_payment_intent_id)
                except ProviderGatewayError as exc:
                    logger.info("Could not cancel stale payment %s: %s", payment.pk, exc)
                    continue
            if self._fail(payment.pk, "Payment expired"):
                expired += 1
        if expired:
            logger.info("Expired %s stale pending payments", expired)
        return expired

    def apply_charge_refund(self, charge_id: str, payment_intent_id, amount_refunded: int, amount: int):
        """Mirror a refund Stripe reports for a charge onto the payment.

        Stripe may deliver ``charge.refunded`` before the payment is
        reconciled as succeeded.  The refunded amount is stored either way
        and applied by ``reconcile_succeeded`` once the success arrives.
        """
        lookup = Q(stripe_charge_id=charge_id)
        if payment_intent_id:
            lookup |= Q(stripe_payment_intent_id=payment_intent_id)
        with transaction.atomic():
            payment = Payment.objects.select_for_update().filter(lookup).first()
            if payment is None:
                raise PaymentNotFound()
            if amount_refunded > payment.amount_refunded:
                Payment.objects.filter(pk=payment.pk).update(
                    amount_refunded=amount_refunded, updated_at=timezone.now()
                )
            if payment.status in (Payment.STATUS_PENDING, Payment.STATUS_FAILED):
                logger.info(
                    "Recorded refund of %s on unsettled payment %s (%s)",
                    amount_refunded, payment.pk, payment.status,
                )
            else:
                self._apply_refund_status(payment, full=amount_refunded >= amount)
        payment.refresh_from_db()
        return payment

    def _apply_refund_status(self, payment: Payment, full: bool) -> bool:
        new_status = Payment.STATUS_REFUNDED if full else Payment.STATUS_PARTIALLY_REFUNDED
        if payment.status not in (
            Payment.STATUS_SUCCEEDED,
            Payment.STATUS_PARTIALLY_REFUNDED,
        ) or payment.status == new_status:
            return False
        Payment.objects.filter(pk=payment.pk).update(status=new_status, updated_at=timezone.now())
        if full:
            self.scheduler.cancel_open_for_payment(payment.pk, "Payment refunded")
            self._refund_remaining_tickets(payment)
        logger.info("Payment %s marked %s", payment.pk, new_status)
        return True

    def _refund_remaining_tickets(self, payment: Payment) -> None:
        confirmed = payment.tickets.filter(status=Ticket.STATUS_CONFIRMED)
        count = confirmed.update(status=Ticket.STATUS_REFUNDED, refunded_at=timezone.now())
        if count and payment.inventory_held:
            released = min(count, payment.inventory_held)
            Event.objects.release_tickets(payment.event_id, released)
            Payment.objects.filter(pk=payment.pk).update(inventory_held=F("inventory_held") - released)

    # ---- refunds ---------------------------------------------------------

    def refund_ticket(self, ticket_id, requester) -> RefundResult:
        ticket = Ticket.objects.select_related("payment", "event").filter(pk=ticket_id).first()
        if ticket is None:
            raise TicketNotFound()
        if ticket.user_id != requester.pk:
            raise NotTicketOwner()
        if ticket.status == Ticket.STATUS_REFUNDED:
            raise InvalidState("Ticket has already been refunded.")
        if ticket.status == Ticket.STATUS_USED:
            raise InvalidState("Cannot refund a used ticket.")
        if ticket.event.start_date <= timezone.now():
            raise InvalidState("Cannot refund after event has started.")

        payment = ticket.payment
        refund = self.gateway.create_refund(
            amount=ticket.total_price,
            charge=payment.stripe_charge_id or None,
            payment_intent=payment.stripe_payment_intent_id,
            metadata={"ticketId": str(ticket.pk), "paymentId": str(payment.pk)},
            idempotency_key=f"ticket-refund-{ticket.pk}",
        )

        with transaction.atomic():
            updated = Ticket.objects.filter(pk=ticket.pk, status=Ticket.STATUS_CONFIRMED).update(
                status=Ticket.STATUS_REFUNDED,
                stripe_refund_id=refund.id,
                refunded_at=timezone.now(),
            )
            if updated:
                if ticket.event.tracks_inventory:
                    Event.objects.release_tickets(ticket.event_id, 1)
                    Payment.objects.filter(pk=payment.pk, inventory_held__gt=0).update(
                        inventory_held=F("inventory_held") - 1
                    )
                self.scheduler.cancel_open_for_payment(payment.pk, f"Ticket {ticket.ticket_code} refunded")

        logger.info("Refunded ticket %s (%s cents) as %s", ticket.pk, ticket.total_price, refund.id)
        return RefundResult(refund_id=refund.id, amount=refund.amount)

    # ---- reporting -------------------------------------------------------

    def revenue_report(self) -> dict:
        """Platform revenue from fees kept on completed payments."""
        kept = Payment.objects.filter(
            status__in=[Payment.STATUS_SUCCEEDED, Payment.STATUS_PARTIALLY_REFUNDED]
        )
        totals = kept.aggregate(
            platform_fees=Sum("platform_fee"),
            gross=Sum("total_amount"),
            payments=Count("id"),
        )
        tickets_sold = Ticket.objects.exclude(status=Ticket.STATUS_REFUNDED).count()
        return {
            "platform_revenue": totals["platform_fees"] or 0,
            "gross_volume": totals["gross"] or 0,
            "completed_payments": totals["payments"],
            "tickets_sold": tickets_sold,
        }
