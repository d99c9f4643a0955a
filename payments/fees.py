"""
Ticket money calculations.

Every amount is an integer number of cents.  The buyer pays the ticket
subtotal plus an estimated card processing fee computed on the whole
order; the organizer receives the subtotal minus a flat platform fee per
ticket.  The processing fee never reaches the organizer payout.

Processing fee rounding is half-up (``decimal.ROUND_HALF_UP``), so an
order whose percentage part lands exactly on half a cent rounds up.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass
from decimal import ROUND_HALF_UP, Decimal

from django.conf import settings


@dataclass(frozen=True)
class BuyerTotal:
    subtotal: int
    processing_fee: int
    total: int


@dataclass(frozen=True)
class OrganizerPayout:
    subtotal: int
    platform_fee: int
    payout: int


@dataclass(frozen=True)
class PriceBreakdown:
    """What a buyer sees before paying, in cents."""

    is_free: bool
    ticket_price: int
    quantity: int
    subtotal: int
    processing_fee: int
    total: int

    def as_dict(self) -> dict:
        data = asdict(self)
        for key in ("ticket_price", "subtotal", "processing_fee", "total"):
            data[f"{key}_display"] = f"{data[key] / 100:.2f}"
        return data


def stripe_processing_fee(amount_cents: int, percent=None, fixed_cents: int | None = None) -> int:
    """Estimated card fee: ``round(amount * 2.9%) + 30`` cents by default."""
    if percent is None:
        percent = settings.STRIPE_PROCESSING_FEE_PERCENT
    if fixed_cents is None:
        fixed_cents = settings.STRIPE_PROCESSING_FEE_FIXED_CENTS
    variable = (Decimal(amount_cents) * Decimal(str(percent))).quantize(
        Decimal("1"), rounding=ROUND_HALF_UP
    )
    return int(variable) + fixed_cents


def buyer_total(unit_price_cents: int, quantity: int) -> BuyerTotal:
    subtotal = unit_price_cents * quantity
    processing_fee = stripe_processing_fee(subtotal)
    return BuyerTotal(subtotal=subtotal, processing_fee=processing_fee, total=subtotal + processing_fee)


def organizer_payout(unit_price_cents: int, quantity: int, fee_per_ticket: int | None = None) -> OrganizerPayout:
    if fee_per_ticket is None:
        fee_per_ticket = settings.PLATFORM_FEE_PER_TICKET_CENTS
    subtotal = unit_price_cents * quantity
    platform_fee = fee_per_ticket * quantity
    return OrganizerPayout(subtotal=subtotal, platform_fee=platform_fee, payout=subtotal - platform_fee)


def free_breakdown(quantity: int) -> PriceBreakdown:
    return PriceBreakdown(
        is_free=True, ticket_price=0, quantity=quantity, subtotal=0, processing_fee=0, total=0
    )


def price_breakdown(unit_price_cents: int, quantity: int) -> PriceBreakdown:
    totals = buyer_total(unit_price_cents, quantity)
    return PriceBreakdown(
        is_free=False,
        ticket_price=unit_price_cents,
        quantity=quantity,
        subtotal=totals.subtotal,
        processing_fee=totals.processing_fee,
        total=totals.total,
    )


def split_evenly(amount: int, parts: int) -> list[int]:
    """Split ``amount`` cents into ``parts`` shares that add back up exactly.

    The remainder goes one cent at a time to the leading shares.
    """
    share, remainder = divmod(amount, parts)
    return [share + 1 if i < remainder else share for i in range(parts)]
