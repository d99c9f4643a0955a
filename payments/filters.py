"""
django-filter FilterSet definitions for the payments app.

``PayoutFilter`` backs the admin payout dashboard: payouts can be
narrowed by status, method, event and organizer, and by the scheduled
date range.  ``SocialSubscriptionFilter`` backs the admin subscription
list and filters on the dashboard status rather than Stripe's.
"""
from django.db.models import Q
from django.utils import timezone
from django_filters import rest_framework as filters

from .models import Payout, SocialSubscription


class PayoutFilter(filters.FilterSet):
    """Filter set for the admin payout list."""

    status = filters.ChoiceFilter(choices=Payout.STATUS_CHOICES)
    payout_method = filters.ChoiceFilter(choices=Payout.METHOD_CHOICES)
    event = filters.NumberFilter(field_name="event_id")
    organizer = filters.NumberFilter(field_name="user_id")
    scheduled_after = filters.IsoDateTimeFilter(field_name="scheduled_for", lookup_expr="gte")
    scheduled_before = filters.IsoDateTimeFilter(field_name="scheduled_for", lookup_expr="lte")

    class Meta:
        model = Payout
        fields = []


class SocialSubscriptionFilter(filters.FilterSet):
    status = filters.CharFilter(method="filter_status")
    search = filters.CharFilter(method="filter_search")

    class Meta:
        model = SocialSubscription
        fields = []

    def filter_status(self, queryset, name, value):
        if value == SocialSubscription.UI_ACTIVE:
            return queryset.filter(status__in=SocialSubscription.ACTIVE_STATUSES)
        if value == SocialSubscription.UI_CANCELS_SOON:
            return queryset.filter(status__in=SocialSubscription.ACTIVE_STATUSES, cancel_at_period_end=True)
        if value == SocialSubscription.UI_PAST_DUE:
            return queryset.filter(status__in=SocialSubscription.PAST_DUE_STATUSES)
        if value == SocialSubscription.UI_CANCELLED:
            return queryset.filter(status__in=["canceled", "cancelled"])
        if value == SocialSubscription.UI_EXPIRED:
            return queryset.exclude(status__in=SocialSubscription.ACTIVE_STATUSES).filter(
                current_period_end__lt=timezone.now()
            )
        return queryset.filter(status=value)

    def filter_search(self, queryset, name, value):
        return queryset.filter(
            Q(business_name__icontains=value)
            | Q(business_type__icontains=value)
            | Q(contact_email__icontains=value)
            | Q(user__first_name__icontains=value)
            | Q(user__last_name__icontains=value)
            | Q(user__email__icontains=value)
        )
