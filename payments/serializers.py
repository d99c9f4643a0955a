"""
Serializers for the payments app.

Request serializers validate input for the checkout, confirm and admin
payout endpoints; the model serializers are read-only views of tickets,
payments and payouts.  The service classes in ``ledger``, ``payouts`` and
``accounts`` do the actual work.
"""
from __future__ import annotations

from rest_framework import serializers

from .models import Payment, Payout, SocialSubscription, Ticket


class PriceQuerySerializer(serializers.Serializer):
    event_id = serializers.IntegerField()
    quantity = serializers.IntegerField(min_value=1, default=1)


class CreateIntentSerializer(serializers.Serializer):
    """Checkout request for ``quantity`` tickets to one paid event."""

    event_id = serializers.IntegerField()
    quantity = serializers.IntegerField(min_value=1, max_value=50)
    first_name = serializers.CharField(max_length=150)
    last_name = serializers.CharField(max_length=150)
    email = serializers.EmailField()
    phone = serializers.CharField(max_length=50, required=False, allow_blank=True, default="")


class ConfirmPaymentSerializer(serializers.Serializer):
    payment_intent_id = serializers.CharField(max_length=255)


class TicketSerializer(serializers.ModelSerializer):
    event_id = serializers.IntegerField(read_only=True)
    payment_id = serializers.IntegerField(read_only=True)

    class Meta:
        model = Ticket
        fields = [
            "id",
            "ticket_code",
            "event_id",
            "payment_id",
            "first_name",
            "last_name",
            "email",
            "phone",
            "unit_price",
            "total_price",
            "platform_fee",
            "processing_fee",
            "status",
            "purchased_at",
            "used_at",
            "refunded_at",
        ]
        read_only_fields = fields


class PaymentSerializer(serializers.ModelSerializer):
    event_id = serializers.IntegerField(read_only=True)
    user_id = serializers.IntegerField(read_only=True)

    class Meta:
        model = Payment
        fields = [
            "id",
            "stripe_payment_intent_id",
            "event_id",
            "user_id",
            "subtotal",
            "platform_fee",
            "processing_fee",
            "total_amount",
            "organizer_amount",
            "currency",
            "status",
            "failure_reason",
            "created_at",
        ]
        read_only_fields = fields


class PayoutSerializer(serializers.ModelSerializer):
    """Payout row as shown on the admin dashboard."""

    organizer_id = serializers.IntegerField(source="user_id", read_only=True)
    organizer_email = serializers.EmailField(source="user.email", read_only=True)
    event_id = serializers.IntegerField(read_only=True)
    event_title = serializers.CharField(source="event.title", read_only=True)
    payment_id = serializers.IntegerField(read_only=True)
    stripe_account_id = serializers.CharField(
        source="stripe_account.stripe_account_id", read_only=True, default=None
    )

    class Meta:
        model = Payout
        fields = [
            "id",
            "organizer_id",
            "organizer_email",
            "event_id",
            "event_title",
            "payment_id",
            "stripe_account_id",
            "amount",
            "currency",
            "status",
            "payout_method",
            "scheduled_for",
            "processed_at",
            "stripe_transfer_id",
            "failure_reason",
            "attempts",
            "processed_by",
            "note",
            "created_at",
        ]
        read_only_fields = fields


class MarkPaidSerializer(serializers.Serializer):
    note = serializers.CharField(required=False, allow_blank=True, default="")


class ProcessPayoutsSerializer(serializers.Serializer):
    event_id = serializers.IntegerField(required=False)


class MigrateOrganizerSerializer(serializers.Serializer):
    organizer_id = serializers.IntegerField()


class CreateSubscriptionSessionSerializer(serializers.Serializer):
    """Business details collected before the subscription checkout."""

    business_name = serializers.CharField(max_length=255)
    business_type = serializers.CharField(max_length=100)
    email = serializers.EmailField()
    phone = serializers.CharField(max_length=50)
    description = serializers.CharField()
    has_existing_accounts = serializers.BooleanField(required=False, default=False)
    instagram_handle = serializers.CharField(max_length=100, required=False, allow_blank=True)
    facebook_handle = serializers.CharField(max_length=100, required=False, allow_blank=True)
    tiktok_handle = serializers.CharField(max_length=100, required=False, allow_blank=True)
    twitter_handle = serializers.CharField(max_length=100, required=False, allow_blank=True)
    linkedin_handle = serializers.CharField(max_length=100, required=False, allow_blank=True)


class VerifySubscriptionSerializer(serializers.Serializer):
    session_id = serializers.CharField(max_length=255)


class SocialSubscriptionSerializer(serializers.ModelSerializer):
    user_id = serializers.IntegerField(read_only=True)
    user_email = serializers.EmailField(source="user.email", read_only=True)
    ui_status = serializers.CharField(read_only=True)

    class Meta:
        model = SocialSubscription
        fields = [
            "id",
            "user_id",
            "user_email",
            "status",
            "ui_status",
            "stripe_subscription_id",
            "stripe_price_id",
            "current_period_start",
            "current_period_end",
            "cancel_at_period_end",
            "cancelled_at",
            "business_name",
            "business_type",
            "social_handles",
            "contact_email",
            "contact_phone",
            "description",
            "created_at",
        ]
        read_only_fields = fields
