"""
Django admin registration for the payments app.

Provides list displays and filters for every payments model to help
administrators troubleshoot checkouts, payouts and webhook deliveries.
Money-moving fields are read-only; state changes go through the payout
dashboard API so they are audited.
"""
from django.contrib import admin

from .models import AuditLog, Payment, Payout, SocialSubscription, StripeAccount, Ticket, WebhookEvent


@admin.register(StripeAccount)
class StripeAccountAdmin(admin.ModelAdmin):
    list_display = (
        "user",
        "stripe_account_id",
        "is_onboarding_complete",
        "charges_enabled",
        "payouts_enabled",
        "created_at",
    )
    list_filter = ("is_onboarding_complete", "charges_enabled", "payouts_enabled")
    search_fields = ("stripe_account_id", "user__username", "user__email", "business_name")


class TicketInline(admin.TabularInline):
    model = Ticket
    extra = 0
    fields = ("ticket_code", "status", "unit_price", "total_price", "refunded_at")
    readonly_fields = fields
    can_delete = False


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "event",
        "user",
        "status",
        "total_amount",
        "organizer_amount",
        "currency",
        "created_at",
    )
    list_filter = ("status", "currency")
    search_fields = ("stripe_payment_intent_id", "stripe_charge_id", "user__username", "user__email")
    readonly_fields = (
        "stripe_payment_intent_id",
        "stripe_charge_id",
        "subtotal",
        "platform_fee",
        "processing_fee",
        "total_amount",
        "organizer_amount",
        "organizer_stripe_account_id",
        "inventory_held",
    )
    inlines = [TicketInline]
    ordering = ("-created_at",)


@admin.register(Ticket)
class TicketAdmin(admin.ModelAdmin):
    list_display = ("ticket_code", "event", "user", "status", "total_price", "purchased_at")
    list_filter = ("status",)
    search_fields = ("ticket_code", "email", "user__username")


@admin.register(Payout)
class PayoutAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "user",
        "event",
        "amount",
        "status",
        "payout_method",
        "scheduled_for",
        "processed_at",
        "attempts",
    )
    list_filter = ("status", "payout_method")
    search_fields = ("user__username", "user__email", "stripe_transfer_id")
    readonly_fields = ("payment", "amount", "stripe_transfer_id", "attempts", "processed_by")
    ordering = ("scheduled_for",)


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    list_display = ("stripe_event_id", "event_type", "status", "attempts", "created_at", "processed_at")
    list_filter = ("status", "event_type")
    search_fields = ("stripe_event_id",)


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    list_display = ("created_at", "actor", "action", "target_type", "target_id")
    list_filter = ("action", "target_type")
    search_fields = ("target_id", "actor__username")


@admin.register(SocialSubscription)
class SocialSubscriptionAdmin(admin.ModelAdmin):
    list_display = ("user", "business_name", "status", "current_period_end", "cancel_at_period_end")
    list_filter = ("status", "cancel_at_period_end")
    search_fields = ("stripe_subscription_id", "stripe_customer_id", "user__email", "business_name")
