"""
Tests for the ticket money calculations.

The processing fee rounding is pinned on odd-cent amounts; the organizer
payout must never include the processing fee.
"""
import pytest

from payments import fees


@pytest.mark.parametrize(
    "amount,expected",
    [
        (333, 40),  # 9.657 -> 10
        (500, 45),  # 14.5 rounds half up -> 15
        (1500, 74),  # 43.5 -> 44
        (1234, 66),  # 35.786 -> 36
        (2000, 88),  # 58 exactly
        (8638, 281),  # 250.502 -> 251
    ],
)
def test_processing_fee_rounds_half_up(amount, expected):
    assert fees.stripe_processing_fee(amount) == expected


def test_buyer_total_is_subtotal_plus_fee_on_aggregate():
    total = fees.buyer_total(333, 1)
    assert (total.subtotal, total.processing_fee, total.total) == (333, 40, 373)

    # The fee is computed once on the whole order, not per ticket.
    total = fees.buyer_total(1234, 7)
    assert total.subtotal == 8638
    assert total.processing_fee == 281
    assert total.total == 8919
    assert total.processing_fee != 7 * fees.stripe_processing_fee(1234)


def test_organizer_payout_uses_flat_fee_per_ticket():
    payout = fees.organizer_payout(2000, 3)
    assert payout.subtotal == 6000
    assert payout.platform_fee == 1500
    assert payout.payout == 4500


def test_organizer_payout_ignores_processing_fee():
    for quantity in (1, 2, 5):
        buyer = fees.buyer_total(1234, quantity)
        payout = fees.organizer_payout(1234, quantity)
        assert payout.payout == buyer.subtotal - 500 * quantity


def test_custom_fee_settings(settings):
    settings.STRIPE_PROCESSING_FEE_FIXED_CENTS = 0
    settings.PLATFORM_FEE_PER_TICKET_CENTS = 100
    assert fees.stripe_processing_fee(1000) == 29
    assert fees.organizer_payout(1000, 2).payout == 1800


@pytest.mark.parametrize(
    "amount,parts,expected",
    [
        (100, 3, [34, 33, 33]),
        (8919, 7, [1275, 1274, 1274, 1274, 1274, 1274, 1274]),
        (10, 1, [10]),
        (0, 2, [0, 0]),
    ],
)
def test_split_evenly_reconstructs_amount(amount, parts, expected):
    shares = fees.split_evenly(amount, parts)
    assert shares == expected
    assert sum(shares) == amount


def test_price_breakdown_display_values():
    data = fees.price_breakdown(333, 1).as_dict()
    assert data["is_free"] is False
    assert data["total"] == 373
    assert data["total_display"] == "3.73"
    assert data["processing_fee_display"] == "0.40"


def test_free_breakdown_is_all_zero():
    data = fees.free_breakdown(4).as_dict()
    assert data["is_free"] is True
    assert data["quantity"] == 4
    assert data["subtotal"] == data["processing_fee"] == data["total"] == 0
