"""
Creator / liquidity supply split.

All arithmetic is on integers and Fractions; a float share is read through
its shortest repr so that 0.8 means 4/5 and not the nearest binary double.
"""

from decimal import Decimal
from fractions import Fraction
from numbers import Rational

from launchpad.errors import InvalidAllocationInput
from launchpad.models import TokenAllocation

MAX_DECIMALS = 18
U64_MAX = 2 ** 64 - 1


def _as_fraction(value) -> Fraction:
    if isinstance(value, bool):
        raise InvalidAllocationInput(f"creator_share must be a number, got {value!r}")
    if isinstance(value, float):
        return Fraction(repr(value))
    if isinstance(value, (Rational, Decimal, str)):
        try:
            return Fraction(value)
        except (ValueError, ZeroDivisionError, OverflowError):
            raise InvalidAllocationInput(f"creator_share is not a valid number: {value!r}")
    raise InvalidAllocationInput(f"creator_share must be a number, got {type(value).__name__}")


def allocate(total_supply: int, decimals: int, creator_share, max_base_units: int = U64_MAX) -> TokenAllocation:
    """Split ``total_supply`` whole tokens between creator and liquidity.

    ``creator_amount`` is floored; whatever the floor drops goes to
    liquidity, so the two sides always add up to the full supply.
    """
    if isinstance(total_supply, bool) or not isinstance(total_supply, int):
        raise InvalidAllocationInput(f"total_supply must be an integer, got {total_supply!r}")
    if total_supply <= 0:
        raise InvalidAllocationInput("total_supply must be > 0")

    if isinstance(decimals, bool) or not isinstance(decimals, int):
        raise InvalidAllocationInput(f"decimals must be an integer, got {decimals!r}")
    if decimals < 0 or decimals > MAX_DECIMALS:
        raise InvalidAllocationInput(f"decimals must be between 0 and {MAX_DECIMALS}")

    share = _as_fraction(creator_share)
    if share <= 0 or share > 1:
        raise InvalidAllocationInput("creator_share must be > 0 and <= 1")

    total_base_units = total_supply * 10 ** decimals
    if total_base_units > max_base_units:
        raise InvalidAllocationInput(
            f"Supply of {total_supply} with {decimals} decimals is {total_base_units} base units, "
            f"above the {max_base_units} limit"
        )

    creator_amount = (total_base_units * share.numerator) // share.denominator
    liquidity_amount = total_base_units - creator_amount

    return TokenAllocation(
        total_supply=total_supply,
        decimals=decimals,
        creator_share=share,
        total_supply_base_units=total_base_units,
        creator_amount=creator_amount,
        liquidity_amount=liquidity_amount,
    )
