"""
Token launchpad: mint a token and seed its bin-based liquidity pool in one launch
"""

__version__ = "1.0.0"
