"""
Views for the payments app.

Buyer endpoints quote prices, create payment intents, confirm payments
and refund tickets.  Organizer endpoints manage the Stripe Connect
account and show earnings.  Subscribers buy, cancel and renew the
social media subscription through Stripe Checkout.  The admin payout and
subscription dashboards are staff-only viewsets.  All endpoints require authentication except the price
calculator and the Stripe webhook, which relies solely on signature
verification against the raw request body.
"""
from __future__ import annotations

import logging

from django.http import Http404
from django.utils.decorators import method_decorator
from django.views.decorators.csrf import csrf_exempt
from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import permissions, status, views, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from .accounts import ConnectedAccountManager
from .exceptions import PayoutNotFound, SubscriptionNotFound
from .filters import PayoutFilter, SocialSubscriptionFilter
from .gateway import get_gateway
from .ledger import PaymentLedger
from .models import AuditLog, Payout, SocialSubscription
from .payouts import PayoutScheduler
from .serializers import (
    ConfirmPaymentSerializer,
    CreateIntentSerializer,
    CreateSubscriptionSessionSerializer,
    MarkPaidSerializer,
    MigrateOrganizerSerializer,
    PaymentSerializer,
    PayoutSerializer,
    PriceQuerySerializer,
    ProcessPayoutsSerializer,
    SocialSubscriptionSerializer,
    TicketSerializer,
    VerifySubscriptionSerializer,
)
from .subscriptions import SubscriptionSync
from .webhooks import WebhookReconciler

logger = logging.getLogger(__name__)


class CalculatePriceView(views.APIView):
    """Price breakdown for ``quantity`` tickets; no login required."""

    permission_classes = [permissions.AllowAny]

    def get(self, request):
        serializer = PriceQuerySerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        breakdown = PaymentLedger(gateway=get_gateway()).quote(
            serializer.validated_data["event_id"], serializer.validated_data["quantity"]
        )
        return Response(breakdown.as_dict())


class CreatePaymentIntentView(views.APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        serializer = CreateIntentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        result = PaymentLedger(gateway=get_gateway()).create_intent(
            buyer=request.user,
            event_id=data["event_id"],
            quantity=data["quantity"],
            contact={
                "first_name": data["first_name"],
                "last_name": data["last_name"],
                "email": data["email"],
                "phone": data["phone"],
            },
        )
        return Response(
            {
                "client_secret": result.client_secret,
                "payment_id": result.payment_id,
                "breakdown": result.breakdown.as_dict(),
                "organizer_has_stripe": result.organizer_has_stripe,
            },
            status=status.HTTP_201_CREATED,
        )


class ConfirmPaymentView(views.APIView):
    """Synchronous confirmation after the buyer's client completes payment."""

    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        serializer = ConfirmPaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        tickets = PaymentLedger(gateway=get_gateway()).confirm(
            serializer.validated_data["payment_intent_id"], request.user
        )
        return Response(
            {
                "success": True,
                "tickets": TicketSerializer(tickets, many=True).data,
            }
        )


class RefundTicketView(views.APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, ticket_id: int):
        result = PaymentLedger(gateway=get_gateway()).refund_ticket(ticket_id, request.user)
        return Response({"success": True, "refund_id": result.refund_id, "amount": result.amount})


class OrganizerEarningsView(views.APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        return Response(PayoutScheduler(gateway=get_gateway()).earnings_for(request.user))


# ---- Stripe Connect ------------------------------------------------------


class ConnectAccountCreateView(views.APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        result = ConnectedAccountManager(gateway=get_gateway()).create_account(request.user)
        return Response(result, status=status.HTTP_201_CREATED)


class ConnectAccountStatusView(views.APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        return Response(ConnectedAccountManager(gateway=get_gateway()).sync_status(request.user))


class ConnectRefreshLinkView(views.APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        url = ConnectedAccountManager(gateway=get_gateway()).refresh_link(request.user)
        return Response({"onboarding_url": url})


class ConnectDashboardLinkView(views.APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        url = ConnectedAccountManager(gateway=get_gateway()).dashboard_link(request.user)
        return Response({"dashboard_url": url})


# ---- webhook -------------------------------------------------------------


@method_decorator(csrf_exempt, name="dispatch")
class StripeWebhookView(views.APIView):
    """Receive Stripe events.

    The signature is checked against ``request.body`` exactly as sent;
    once verified the event is always acknowledged, even if its handler
    fails.
    """

    authentication_classes = []
    permission_classes = [permissions.AllowAny]
    throttle_classes = []

    def post(self, request):
        gateway = get_gateway()
        event = gateway.construct_event(request.body, request.META.get("HTTP_STRIPE_SIGNATURE", ""))
        result = WebhookReconciler(gateway=gateway).process(event)
        logger.debug("Webhook %s finished as %s", event["id"], result)
        return Response({"received": True})


# ---- admin dashboard -----------------------------------------------------


class AdminPayoutViewSet(viewsets.ReadOnlyModelViewSet):
    """Staff-only payout dashboard: list, aggregate and act on payouts."""

    queryset = Payout.objects.select_related("user", "event", "stripe_account").order_by("scheduled_for", "id")
    serializer_class = PayoutSerializer
    permission_classes = [permissions.IsAdminUser]
    filter_backends = [DjangoFilterBackend]
    filterset_class = PayoutFilter

    def get_object(self):
        try:
            return super().get_object()
        except Http404:
            raise PayoutNotFound()

    def _scheduler(self) -> PayoutScheduler:
        return PayoutScheduler(gateway=get_gateway())

    @action(detail=False, methods=["get"], url_path="summary")
    def summary(self, request):
        queryset = self.filter_queryset(self.get_queryset())
        return Response(self._scheduler().summary(queryset))

    @action(detail=False, methods=["post"], url_path="process")
    def process(self, request):
        """Execute every due stripe payout, optionally for one event only."""
        serializer = ProcessPayoutsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        event_id = serializer.validated_data.get("event_id")
        outcomes = self._scheduler().process_due(event_id=event_id)
        succeeded = sum(1 for o in outcomes if o.status == Payout.STATUS_PAID)
        failed = sum(1 for o in outcomes if o.status == Payout.STATUS_FAILED)
        AuditLog.record(
            request.user,
            "payout.batch",
            "event" if event_id else "payout",
            event_id or "",
            processed=len(outcomes),
            succeeded=succeeded,
            failed=failed,
        )
        return Response(
            {
                "processed": len(outcomes),
                "succeeded": succeeded,
                "failed": failed,
                "results": [o.as_dict() for o in outcomes],
            }
        )

    @action(detail=True, methods=["post"], url_path="mark-paid")
    def mark_paid(self, request, pk=None):
        serializer = MarkPaidSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        payout = self._scheduler().mark_manual_paid(
            self.get_object(), request.user, note=serializer.validated_data["note"]
        )
        return Response(PayoutSerializer(payout).data)

    @action(detail=True, methods=["post"], url_path="retry")
    def retry(self, request, pk=None):
        outcome = self._scheduler().retry(self.get_object(), operator=request.user)
        return Response(outcome.as_dict())

    @action(detail=False, methods=["post"], url_path="migrate")
    def migrate(self, request):
        serializer = MigrateOrganizerSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        migrated = self._scheduler().migrate_organizer_to_stripe(
            serializer.validated_data["organizer_id"], operator=request.user
        )
        return Response({"migrated": migrated})


class AdminRevenueView(views.APIView):
    permission_classes = [permissions.IsAdminUser]

    def get(self, request):
        return Response(PaymentLedger(gateway=get_gateway()).revenue_report())


class MyPaymentsView(views.APIView):
    """The caller's payments, newest first."""

    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        payments = request.user.payments.select_related("event").order_by("-created_at")
        return Response(PaymentSerializer(payments, many=True).data)


# ---- social media subscriptions -----------------------------------------


class CreateSubscriptionSessionView(views.APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        serializer = CreateSubscriptionSessionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        session = SubscriptionSync(gateway=get_gateway()).create_session(request.user, serializer.validated_data)
        return Response({"success": True, **session}, status=status.HTTP_201_CREATED)


class VerifySubscriptionView(views.APIView):
    """Fast post-checkout sync; the webhook records the same subscription."""

    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        serializer = VerifySubscriptionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        record = SubscriptionSync(gateway=get_gateway()).verify(
            request.user, serializer.validated_data["session_id"]
        )
        return Response({"success": True, "subscription": SocialSubscriptionSerializer(record).data})


class MySubscriptionView(views.APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        record = SubscriptionSync(gateway=get_gateway()).my_subscription(request.user)
        data = SocialSubscriptionSerializer(record).data if record is not None else None
        return Response({"success": True, "subscription": data})


class CancelSubscriptionView(views.APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        record = SubscriptionSync(gateway=get_gateway()).cancel(request.user)
        return Response(
            {
                "success": True,
                "message": "Subscription cancelled. It will remain active until the end of the billing period.",
                "subscription": SocialSubscriptionSerializer(record).data,
            }
        )


class RenewSubscriptionView(views.APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        result = SubscriptionSync(gateway=get_gateway()).renew(request.user)
        if "subscription" in result:
            return Response(
                {
                    "success": True,
                    "message": "Subscription renewed successfully.",
                    "subscription": SocialSubscriptionSerializer(result["subscription"]).data,
                }
            )
        return Response({"success": True, "message": "Redirecting to checkout...", **result})


class AdminSubscriptionViewSet(viewsets.ReadOnlyModelViewSet):
    """Staff-only subscription list with cancel and reactivate actions."""

    queryset = SocialSubscription.objects.select_related("user").order_by("-created_at")
    serializer_class = SocialSubscriptionSerializer
    permission_classes = [permissions.IsAdminUser]
    filter_backends = [DjangoFilterBackend]
    filterset_class = SocialSubscriptionFilter

    def get_object(self):
        try:
            return super().get_object()
        except Http404:
            raise SubscriptionNotFound("Subscription not found.")

    @action(detail=True, methods=["post"], url_path="cancel")
    def cancel(self, request, pk=None):
        record = SubscriptionSync(gateway=get_gateway()).admin_cancel(self.get_object(), request.user)
        return Response(SocialSubscriptionSerializer(record).data)

    @action(detail=True, methods=["post"], url_path="reactivate")
    def reactivate(self, request, pk=None):
        record = SubscriptionSync(gateway=get_gateway()).admin_reactivate(self.get_object(), request.user)
        return Response(SocialSubscriptionSerializer(record).data)
