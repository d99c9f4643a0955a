"""
URL configuration for the payments app.

Include this module under ``/api/payments/`` in the project-level URL
config.  The webhook path must be registered with Stripe as
``/api/payments/webhook/stripe/``.
"""
from django.urls import path
from rest_framework.routers import DefaultRouter

from .views import (
    AdminPayoutViewSet,
    AdminRevenueView,
    AdminSubscriptionViewSet,
    CalculatePriceView,
    CancelSubscriptionView,
    ConfirmPaymentView,
    ConnectAccountCreateView,
    ConnectAccountStatusView,
    ConnectDashboardLinkView,
    ConnectRefreshLinkView,
    CreatePaymentIntentView,
    CreateSubscriptionSessionView,
    MyPaymentsView,
    MySubscriptionView,
    OrganizerEarningsView,
    RefundTicketView,
    RenewSubscriptionView,
    StripeWebhookView,
    VerifySubscriptionView,
)


router = DefaultRouter()
router.register(r"admin/payouts", AdminPayoutViewSet, basename="admin-payout")
router.register(r"admin/subscriptions", AdminSubscriptionViewSet, basename="admin-subscription")

urlpatterns = [
    *router.urls,
    path("calculate/", CalculatePriceView.as_view(), name="payment-calculate"),
    path("create-payment-intent/", CreatePaymentIntentView.as_view(), name="payment-create-intent"),
    path("confirm/", ConfirmPaymentView.as_view(), name="payment-confirm"),
    path("refund/<int:ticket_id>/", RefundTicketView.as_view(), name="ticket-refund"),
    path("mine/", MyPaymentsView.as_view(), name="payment-mine"),
    path("earnings/", OrganizerEarningsView.as_view(), name="organizer-earnings"),
    path("connect/create/", ConnectAccountCreateView.as_view(), name="connect-create"),
    path("connect/status/", ConnectAccountStatusView.as_view(), name="connect-status"),
    path("connect/refresh-link/", ConnectRefreshLinkView.as_view(), name="connect-refresh-link"),
    path("connect/dashboard/", ConnectDashboardLinkView.as_view(), name="connect-dashboard"),
    path("subscriptions/create-session/", CreateSubscriptionSessionView.as_view(), name="subscription-create-session"),
    path("subscriptions/verify/", VerifySubscriptionView.as_view(), name="subscription-verify"),
    path("subscriptions/mine/", MySubscriptionView.as_view(), name="subscription-mine"),
    path("subscriptions/cancel/", CancelSubscriptionView.as_view(), name="subscription-cancel"),
    path("subscriptions/renew/", RenewSubscriptionView.as_view(), name="subscription-renew"),
    path("admin/revenue/", AdminRevenueView.as_view(), name="admin-revenue"),
    path("webhook/stripe/", StripeWebhookView.as_view(), name="stripe-webhook"),
]
