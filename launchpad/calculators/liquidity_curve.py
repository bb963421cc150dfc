"""
Liquidity curve around the active bin.

Weight of bin ``b`` is ``exp(-decay * |b - active|)``. Weights are turned into
fixed-point integers before dividing so every bin amount is an exact floor
and the floors can never add up to more than the total. The few units the
floors drop are put back into the active bin.
"""

import math
from decimal import Decimal
from fractions import Fraction

from launchpad.errors import InvalidCurveInput
from launchpad.models import BinAmount, BinDistribution

DEFAULT_RADIUS = 10
DEFAULT_DECAY = 0.1
WEIGHT_SCALE = 10 ** 12


def _check_positive_int(name: str, value) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidCurveInput(f"{name} must be an integer, got {value!r}")
    if value <= 0:
        raise InvalidCurveInput(f"{name} must be > 0")
    return value


def _check_decay(decay) -> float:
    if isinstance(decay, bool) or not isinstance(decay, (int, float, Decimal, Fraction)):
        raise InvalidCurveInput(f"decay must be a number, got {decay!r}")
    value = float(decay)
    if not math.isfinite(value) or value <= 0:
        raise InvalidCurveInput("decay must be a positive finite number")
    return value


def curve_weights(radius: int, decay=DEFAULT_DECAY):
    """Integer weights for offsets -radius..radius"""
    radius = _check_positive_int("radius", radius)
    decay = _check_decay(decay)
    return [int(round(math.exp(-decay * abs(offset)) * WEIGHT_SCALE))
            for offset in range(-radius, radius + 1)]


def build_curve(active_bin: int, radius: int, total_amount: int, decay=DEFAULT_DECAY) -> BinDistribution:
    """Spread ``total_amount`` over ``[active_bin - radius, active_bin + radius]``.

    Bins below the active bin carry base-token (sell side) liquidity, bins
    above carry quote-side (buy side) liquidity and the active bin holds
    both, base taking the odd unit. The sum over every bin of both sides is
    exactly ``total_amount``.
    """
    if isinstance(active_bin, bool) or not isinstance(active_bin, int):
        raise InvalidCurveInput(f"active_bin must be an integer, got {active_bin!r}")
    radius = _check_positive_int("radius", radius)
    total_amount = _check_positive_int("total_amount", total_amount)

    weights = curve_weights(radius, decay)
    weight_sum = sum(weights)

    amounts = [total_amount * weight // weight_sum for weight in weights]
    amounts[radius] += total_amount - sum(amounts)

    bins = []
    for offset, amount in zip(range(-radius, radius + 1), amounts):
        bin_id = active_bin + offset
        if offset < 0:
            bins.append(BinAmount(bin_id, amount, 0))
        elif offset > 0:
            bins.append(BinAmount(bin_id, 0, amount))
        else:
            quote = amount // 2
            bins.append(BinAmount(bin_id, amount - quote, quote))

    return BinDistribution(active_bin=active_bin, bins=tuple(bins))
