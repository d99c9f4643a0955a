"""
Database models for the payments app.

This module defines the records behind paid ticketing: the organizer's
Stripe Connect account, one ``Payment`` per checkout, the ``Ticket`` rows
issued once that payment succeeds, and the ``Payout`` owed to the
organizer for it.  Every amount is stored in cents.  ``WebhookEvent``
logs each Stripe event id once, ``AuditLog`` records admin payout
actions, and ``SocialSubscription`` mirrors the recurring subscription
product billed through Stripe.
"""
from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone

from events.models import Event


class StripeAccount(models.Model):
    """An organizer's Stripe Connect (Express) account."""

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="stripe_account",
    )
    stripe_account_id = models.CharField(max_length=255, unique=True)
    stripe_account_type = models.CharField(max_length=20, default="express")
    is_onboarding_complete = models.BooleanField(default=False)
    charges_enabled = models.BooleanField(default=False)
    payouts_enabled = models.BooleanField(default=False)
    business_name = models.CharField(max_length=255, blank=True, null=True)
    business_type = models.CharField(max_length=50, blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]

    @property
    def is_fully_enabled(self) -> bool:
        return self.is_onboarding_complete and self.charges_enabled and self.payouts_enabled

    def __str__(self) -> str:
        return f"{self.stripe_account_id} (user {self.user_id})"


class Payment(models.Model):
    """One buyer checkout for N tickets to one event."""

    STATUS_PENDING = "pending"
    STATUS_SUCCEEDED = "succeeded"
    STATUS_FAILED = "failed"
    STATUS_REFUNDED = "refunded"
    STATUS_PARTIALLY_REFUNDED = "partially_refunded"
    STATUS_CHOICES = [
        (STATUS_PENDING, "Pending"),
        (STATUS_SUCCEEDED, "Succeeded"),
        (STATUS_FAILED, "Failed"),
        (STATUS_REFUNDED, "Refunded"),
        (STATUS_PARTIALLY_REFUNDED, "Partially refunded"),
    ]

    stripe_payment_intent_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Stripe PaymentIntent id; a pending_ placeholder until the intent exists",
    )
    stripe_charge_id = models.CharField(max_length=255, blank=True, db_index=True)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="payments",
    )
    event = models.ForeignKey(
        Event,
        on_delete=models.PROTECT,
        related_name="payments",
    )
    subtotal = models.PositiveIntegerField()
    platform_fee = models.PositiveIntegerField()
    processing_fee = models.PositiveIntegerField()
    total_amount = models.PositiveIntegerField()
    organizer_amount = models.PositiveIntegerField()
    currency = models.CharField(max_length=10, default="usd")
    organizer_stripe_account_id = models.CharField(
        max_length=255,
        blank=True,
        null=True,
        help_text="Organizer's connected account at purchase time; null routes the payout to manual",
    )
    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_PENDING,
    )
    failure_reason = models.TextField(blank=True)
    inventory_held = models.PositiveIntegerField(
        default=0,
        help_text="Tickets currently taken out of the event inventory for this payment",
    )
    amount_refunded = models.PositiveIntegerField(
        default=0,
        help_text="Cents Stripe reports as refunded on the charge, recorded even before the payment settles",
    )
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["event", "status"], name="payment_event_status_idx"),
            models.Index(fields=["status", "created_at"], name="payment_status_created_idx"),
        ]
        ordering = ["-created_at"]

    @property
    def quantity(self) -> int:
        return int(self.metadata.get("quantity") or 1)

    @property
    def has_provider_intent(self) -> bool:
        return not self.stripe_payment_intent_id.startswith("pending_")

    def __str__(self) -> str:
        return f"Payment {self.id} ({self.get_status_display()})"


class Ticket(models.Model):
    """One unit of admission, issued when its payment succeeds."""

    STATUS_CONFIRMED = "confirmed"
    STATUS_USED = "used"
    STATUS_REFUNDED = "refunded"
    STATUS_CHOICES = [
        (STATUS_CONFIRMED, "Confirmed"),
        (STATUS_USED, "Used"),
        (STATUS_REFUNDED, "Refunded"),
    ]

    ticket_code = models.CharField(max_length=32, unique=True)
    event = models.ForeignKey(Event, on_delete=models.PROTECT, related_name="tickets")
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="tickets",
    )
    payment = models.ForeignKey(Payment, on_delete=models.PROTECT, related_name="tickets")
    first_name = models.CharField(max_length=150, blank=True)
    last_name = models.CharField(max_length=150, blank=True)
    email = models.EmailField(blank=True)
    phone = models.CharField(max_length=50, blank=True)
    unit_price = models.PositiveIntegerField(help_text="Ticket price share in cents")
    total_price = models.PositiveIntegerField(help_text="Amount the buyer paid for this ticket, in cents")
    platform_fee = models.PositiveIntegerField()
    processing_fee = models.PositiveIntegerField()
    status = models.CharField(max_length=12, choices=STATUS_CHOICES, default=STATUS_CONFIRMED)
    stripe_refund_id = models.CharField(max_length=255, blank=True)
    purchased_at = models.DateTimeField(auto_now_add=True)
    used_at = models.DateTimeField(null=True, blank=True)
    refunded_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        indexes = [
            models.Index(fields=["event", "user", "status"], name="ticket_event_user_status_idx"),
        ]
        ordering = ["id"]

    def __str__(self) -> str:
        return f"{self.ticket_code} ({self.get_status_display()})"


class Payout(models.Model):
    """Organizer proceeds owed for one succeeded payment."""

    STATUS_PENDING = "pending"
    STATUS_PROCESSING = "processing"
    STATUS_PAID = "paid"
    STATUS_FAILED = "failed"
    STATUS_CANCELLED = "cancelled"
    STATUS_CHOICES = [
        (STATUS_PENDING, "Pending"),
        (STATUS_PROCESSING, "Processing"),
        (STATUS_PAID, "Paid"),
        (STATUS_FAILED, "Failed"),
        (STATUS_CANCELLED, "Cancelled"),
    ]
    # Not yet settled; a refund of the payment cancels these.
    OPEN_STATUSES = [STATUS_PENDING, STATUS_FAILED]

    METHOD_STRIPE = "stripe"
    METHOD_MANUAL = "manual"
    METHOD_CHOICES = [
        (METHOD_STRIPE, "Stripe transfer"),
        (METHOD_MANUAL, "Manual"),
    ]

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="payouts",
        help_text="Organizer receiving the funds",
    )
    payment = models.OneToOneField(Payment, on_delete=models.PROTECT, related_name="payout")
    event = models.ForeignKey(Event, on_delete=models.PROTECT, related_name="payouts")
    stripe_account = models.ForeignKey(
        StripeAccount,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="payouts",
    )
    amount = models.PositiveIntegerField(help_text="Amount in cents")
    currency = models.CharField(max_length=10, default="usd")
    status = models.CharField(max_length=12, choices=STATUS_CHOICES, default=STATUS_PENDING)
    payout_method = models.CharField(max_length=10, choices=METHOD_CHOICES, default=METHOD_MANUAL)
    scheduled_for = models.DateTimeField()
    processed_at = models.DateTimeField(null=True, blank=True)
    stripe_transfer_id = models.CharField(max_length=255, blank=True)
    failure_reason = models.TextField(blank=True)
    attempts = models.PositiveIntegerField(default=0)
    processed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="processed_payouts",
    )
    note = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.CheckConstraint(
                condition=(
                    Q(payout_method="manual", stripe_account__isnull=True)
                    | Q(payout_method="stripe", stripe_account__isnull=False)
                ),
                name="payout_method_matches_account",
            ),
        ]
        indexes = [
            models.Index(fields=["status", "payout_method", "scheduled_for"], name="payout_due_idx"),
            models.Index(fields=["user", "status"], name="payout_user_status_idx"),
        ]
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"Payout {self.id} {self.payout_method} ({self.get_status_display()})"


class WebhookEvent(models.Model):
    """A Stripe webhook event, recorded once per Stripe event id."""

    STATUS_RECEIVED = "received"
    STATUS_PROCESSED = "processed"
    STATUS_IGNORED = "ignored"
    STATUS_FAILED = "failed"
    STATUS_CHOICES = [
        (STATUS_RECEIVED, "Received"),
        (STATUS_PROCESSED, "Processed"),
        (STATUS_IGNORED, "Ignored"),
        (STATUS_FAILED, "Failed"),
    ]

    stripe_event_id = models.CharField(max_length=255, unique=True)
    event_type = models.CharField(max_length=100, db_index=True)
    payload = models.JSONField(default=dict)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=STATUS_RECEIVED)
    error_message = models.TextField(blank=True)
    attempts = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    processed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.stripe_event_id} ({self.event_type})"


class AuditLog(models.Model):
    """Who did what to which payments record, from the admin side."""

    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="payment_audit_logs",
    )
    action = models.CharField(max_length=64, db_index=True)
    target_type = models.CharField(max_length=64)
    target_id = models.CharField(max_length=64, blank=True)
    details = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["-created_at"]

    @classmethod
    def record(cls, actor, action: str, target_type: str, target_id="", **details) -> "AuditLog":
        return cls.objects.create(
            actor=actor if getattr(actor, "pk", None) else None,
            action=action,
            target_type=target_type,
            target_id=str(target_id),
            details=details,
        )

    def __str__(self) -> str:
        return f"{self.action} {self.target_type}:{self.target_id}"


class SocialSubscription(models.Model):
    """Monthly social media promotion subscription billed through Stripe.

    ``status`` is Stripe's raw subscription status; ``ui_status`` folds it
    into the states the dashboards show.
    """

    ACTIVE_STATUSES = ["active", "trialing"]
    PAST_DUE_STATUSES = ["past_due", "unpaid", "incomplete"]
    CANCELLED_STATUSES = ["canceled", "cancelled", "incomplete_expired"]

    UI_ACTIVE = "active"
    UI_CANCELS_SOON = "cancels_soon"
    UI_PAST_DUE = "past_due"
    UI_CANCELLED = "cancelled"
    UI_EXPIRED = "expired"
    UI_STATUS_CHOICES = [
        (UI_ACTIVE, "Active"),
        (UI_CANCELS_SOON, "Cancels soon"),
        (UI_PAST_DUE, "Past due"),
        (UI_CANCELLED, "Cancelled"),
        (UI_EXPIRED, "Expired"),
    ]

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="social_subscription",
    )
    status = models.CharField(max_length=30)
    stripe_subscription_id = models.CharField(max_length=255, unique=True, null=True, blank=True)
    stripe_customer_id = models.CharField(max_length=255, blank=True, null=True)
    stripe_price_id = models.CharField(max_length=255, blank=True, null=True)
    current_period_start = models.DateTimeField(null=True, blank=True)
    current_period_end = models.DateTimeField(null=True, blank=True)
    cancel_at_period_end = models.BooleanField(default=False)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    business_name = models.CharField(max_length=255, default="Business")
    business_type = models.CharField(max_length=100, default="Other")
    social_handles = models.JSONField(default=dict, blank=True)
    contact_email = models.CharField(max_length=255, blank=True)
    contact_phone = models.CharField(max_length=50, blank=True)
    description = models.TextField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"Subscription {self.stripe_subscription_id} ({self.status})"

    @property
    def is_active(self) -> bool:
        return self.status in self.ACTIVE_STATUSES

    @property
    def ui_status(self) -> str:
        ended = self.current_period_end is not None and self.current_period_end < timezone.now()
        if self.is_active:
            return self.UI_CANCELS_SOON if self.cancel_at_period_end else self.UI_ACTIVE
        if self.status in self.PAST_DUE_STATUSES:
            return self.UI_PAST_DUE
        if self.status in self.CANCELLED_STATUSES:
            return self.UI_EXPIRED if ended else self.UI_CANCELLED
        if ended:
            return self.UI_EXPIRED
        return self.status or "unknown"
