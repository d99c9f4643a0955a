"""
Admin configuration for the events app.

Defines the list display and search fields for events in the Django
admin site.
"""
from django.contrib import admin

from .models import Event


@admin.register(Event)
class EventAdmin(admin.ModelAdmin):
    list_display = (
        "title",
        "organizer",
        "status",
        "is_free",
        "ticket_price_cents",
        "available_tickets",
        "start_date",
        "end_date",
    )
    list_filter = ("status", "is_free")
    search_fields = ("title", "organizer__username", "organizer__email")
    prepopulated_fields = {"slug": ("title",)}
