from launchpad.calculators.allocation import allocate
from launchpad.calculators.liquidity_curve import build_curve
from launchpad.calculators.price_bins import bin_to_price, bin_width, price_to_bin

__all__ = ["allocate", "bin_to_price", "bin_width", "build_curve", "price_to_bin"]
