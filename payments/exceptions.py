"""
Domain errors for the payments app.

These are Django REST Framework exceptions so that the service layer can
raise them directly and views return the matching status code without
any translation.
"""
from rest_framework import status
from rest_framework.exceptions import APIException, NotFound, PermissionDenied


class EventNotFound(NotFound):
    default_detail = "Event not found."
    default_code = "event_not_found"


class PaymentNotFound(NotFound):
    default_detail = "Payment record not found."
    default_code = "payment_not_found"


class TicketNotFound(NotFound):
    default_detail = "Ticket not found."
    default_code = "ticket_not_found"


class PayoutNotFound(NotFound):
    default_detail = "Payout not found."
    default_code = "payout_not_found"


class AccountNotFound(NotFound):
    default_detail = "No Stripe account found. Please create one first."
    default_code = "account_not_found"


class SubscriptionNotFound(NotFound):
    default_detail = "No subscription found."
    default_code = "subscription_not_found"


class InvalidState(APIException):
    """The record is not in a state that allows the requested transition."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid state for this operation."
    default_code = "invalid_state"


class WrongFlow(InvalidState):
    default_detail = "This is a free event. Use the registration endpoint instead."
    default_code = "wrong_flow"


class PaymentNotCompleted(InvalidState):
    default_detail = "Payment has not been completed."
    default_code = "payment_not_completed"


class AccountAlreadyConnected(InvalidState):
    default_detail = "You already have a connected Stripe account."
    default_code = "account_already_connected"


class SubscriptionAlreadyActive(InvalidState):
    default_detail = "You already have an active subscription."
    default_code = "subscription_already_active"


class InsufficientInventory(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Not enough tickets available."
    default_code = "insufficient_inventory"


class NotTicketOwner(PermissionDenied):
    default_detail = "You can only refund your own tickets."
    default_code = "not_ticket_owner"


class NotPaymentOwner(PermissionDenied):
    default_detail = "You can only confirm your own payments."
    default_code = "not_payment_owner"


class NotSubscriptionOwner(PermissionDenied):
    default_detail = "This checkout session belongs to another user."
    default_code = "not_subscription_owner"


class ProviderGatewayError(APIException):
    """A Stripe call failed.

    ``ambiguous`` is set for timeouts and connection errors, where the
    request may or may not have been applied on Stripe's side.
    """

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "Payment provider is unavailable, please retry."
    default_code = "provider_error"

    def __init__(self, detail=None, code=None, ambiguous=False, provider_code=None):
        super().__init__(detail=detail, code=code)
        self.ambiguous = ambiguous
        self.provider_code = provider_code


class InvalidWebhookSignature(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid webhook signature."
    default_code = "invalid_signature"
