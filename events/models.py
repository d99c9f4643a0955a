"""
Models for the events app.

An `Event` is owned by its organizer and carries the ticketing fields the
payments app depends on: price (in cents), a free flag and an optional
ticket inventory.  ``available_tickets`` is null for events without a
capacity limit.  Slugs are automatically generated based on the title
and organizer ID.
"""

from django.contrib.auth.models import User
from django.db import models
from django.db.models import F
from django.utils.text import slugify


class EventQuerySet(models.QuerySet):
    def reserve_tickets(self, event_id, quantity: int) -> bool:
        """Atomically take ``quantity`` tickets out of a finite inventory.

        Returns False when fewer than ``quantity`` tickets remain.  Events
        without an inventory limit always succeed and are left untouched.
        """
        limited = self.filter(pk=event_id, available_tickets__isnull=False)
        updated = limited.filter(available_tickets__gte=quantity).update(
            available_tickets=F("available_tickets") - quantity
        )
        if updated:
            return True
        return not limited.exists()

    def release_tickets(self, event_id, quantity: int) -> None:
        """Return ``quantity`` tickets to a finite inventory."""
        self.filter(pk=event_id, available_tickets__isnull=False).update(
            available_tickets=F("available_tickets") + quantity
        )


class Event(models.Model):
    """Represents a ticketed or free event hosted by an organizer."""
    STATUS_CHOICES = [
        ("draft", "Draft"),
        ("published", "Published"),
        ("ended", "Ended"),
    ]
    organizer = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name="organized_events",
    )
    title = models.CharField(max_length=255)
    slug = models.SlugField(max_length=255, unique=True, blank=True)
    description = models.TextField(blank=True)
    location = models.CharField(max_length=255, blank=True)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default="published")
    start_date = models.DateTimeField()
    end_date = models.DateTimeField(null=True, blank=True)
    is_free = models.BooleanField(default=False)
    ticket_price_cents = models.PositiveIntegerField(default=0, help_text="Ticket price in cents")
    currency = models.CharField(max_length=10, default="usd")
    available_tickets = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="Remaining tickets; leave empty for unlimited",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = EventQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]

    def save(self, *args, **kwargs):
        if not self.slug:
            base = f"{self.title}-{self.organizer_id}"
            self.slug = slugify(base)
        super().save(*args, **kwargs)

    @property
    def tracks_inventory(self) -> bool:
        return self.available_tickets is not None

    @property
    def payout_date(self):
        """When organizer proceeds for this event become payable."""
        return self.end_date or self.start_date

    def __str__(self) -> str:
        return f"{self.title} ({self.organizer_id})"
