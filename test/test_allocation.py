from decimal import Decimal
from fractions import Fraction

import pytest

from launchpad.calculators import allocate
from launchpad.errors import InvalidAllocationInput


def test_default_launch_split():
    allocation = allocate(1_000_000_000, 9, 0.8)

    assert allocation.total_supply_base_units == 10 ** 18
    assert allocation.creator_amount == 800_000_000 * 10 ** 9
    assert allocation.liquidity_amount == 200_000_000 * 10 ** 9
    assert allocation.creator_share == Fraction(4, 5)


@pytest.mark.parametrize("supply, decimals, share", [
    (1, 0, Fraction(1, 3)),
    (7, 0, Fraction(2, 3)),
    (1_000_000_000, 9, Fraction(1, 7)),
    (123_456_789, 6, Decimal("0.333333")),
    (21_000_000, 8, "0.9999"),
    (10, 18, 1),
])
def test_sides_add_up_to_supply(supply, decimals, share):
    allocation = allocate(supply, decimals, share)

    assert allocation.creator_amount + allocation.liquidity_amount == supply * 10 ** decimals
    assert allocation.liquidity_amount >= 0


def test_floor_remainder_goes_to_liquidity():
    allocation = allocate(10, 0, Fraction(1, 3))

    assert allocation.creator_amount == 3
    assert allocation.liquidity_amount == 7


def test_full_share_leaves_no_liquidity():
    allocation = allocate(100, 2, 1)

    assert allocation.creator_amount == 10_000
    assert allocation.liquidity_amount == 0


@pytest.mark.parametrize("supply, decimals, share", [
    (0, 9, 0.8),
    (-5, 9, 0.8),
    (1.5, 9, 0.8),
    (True, 9, 0.8),
    (1000, -1, 0.8),
    (1000, 19, 0.8),
    (1000, 9, 0),
    (1000, 9, 1.2),
    (1000, 9, "abc"),
    (1000, 9, None),
])
def test_invalid_input(supply, decimals, share):
    with pytest.raises(InvalidAllocationInput):
        allocate(supply, decimals, share)


def test_base_units_must_fit_64_bits():
    allocate(18, 18, 0.5)
    with pytest.raises(InvalidAllocationInput):
        allocate(10 ** 12, 18, 0.5)
