"""
Price <-> bin index conversion for a geometric bin ladder.

Bin ``b`` has price ``(1 + step/10000) ** b`` (quote per base). Converting a
price to a bin rounds to the nearest bin; exact half-way values round away
from zero (Python's ``round`` would send them to the even bin instead).
The map is lossy: ``bin_to_price(price_to_bin(p, s), s)`` is within one bin
width of ``p`` but is not ``p``.
"""

import math
from decimal import Decimal
from fractions import Fraction

from launchpad.errors import InvalidPriceInput

BASIS_POINT_MAX = 10_000
MAX_BIN_ID = 443_636
MIN_BIN_ID = -443_636


def _check_step(step_bps) -> int:
    if isinstance(step_bps, bool) or not isinstance(step_bps, int):
        raise InvalidPriceInput(f"step_bps must be an integer, got {step_bps!r}")
    if step_bps <= 0:
        raise InvalidPriceInput("step_bps must be > 0")
    return step_bps


def _check_price(price) -> float:
    if isinstance(price, bool) or not isinstance(price, (int, float, Decimal, Fraction)):
        raise InvalidPriceInput(f"price must be a number, got {price!r}")
    try:
        value = float(price)
    except (OverflowError, ValueError):
        raise InvalidPriceInput(f"price is out of range: {price!r}")
    if not math.isfinite(value) or value <= 0:
        raise InvalidPriceInput(f"price must be a positive finite number, got {price!r}")
    return value


def _round_half_away(x: float) -> int:
    if x >= 0:
        return int(math.floor(x + 0.5))
    return -int(math.floor(-x + 0.5))


def bin_growth(step_bps: int) -> float:
    """Price ratio between two adjacent bins"""
    return 1 + _check_step(step_bps) / BASIS_POINT_MAX


def price_to_bin(price, step_bps: int) -> int:
    value = _check_price(price)
    step = _check_step(step_bps)

    bin_id = _round_half_away(math.log(value) / math.log1p(step / BASIS_POINT_MAX))
    if bin_id < MIN_BIN_ID or bin_id > MAX_BIN_ID:
        raise InvalidPriceInput(f"Price {price} maps to bin {bin_id}, outside [{MIN_BIN_ID}, {MAX_BIN_ID}]")
    return bin_id


def bin_to_price(bin_id: int, step_bps: int) -> float:
    if isinstance(bin_id, bool) or not isinstance(bin_id, int):
        raise InvalidPriceInput(f"bin_id must be an integer, got {bin_id!r}")
    step = _check_step(step_bps)
    try:
        return math.exp(bin_id * math.log1p(step / BASIS_POINT_MAX))
    except OverflowError:
        raise InvalidPriceInput(f"Bin {bin_id} is out of range for step {step_bps}")


def bin_width(bin_id: int, step_bps: int) -> float:
    """Price distance from ``bin_id`` to the next bin up"""
    return bin_to_price(bin_id, step_bps) * (bin_growth(step_bps) - 1)
