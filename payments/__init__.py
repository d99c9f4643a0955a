"""
Payments app package for the community platform backend.

Paid ticketing on Stripe: price quotes, payment intents, ticket issuance,
refunds, organizer payouts through Stripe Connect (or manually, for
organizers who have not onboarded) and webhook reconciliation.  See
payments/views.py for the API surface.
"""
