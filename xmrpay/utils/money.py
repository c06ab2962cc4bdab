"""
Amount conversion helpers.
"""

from decimal import Decimal

from xmrpay.config.constants import ATOMIC_UNITS_PER_COIN


def atomic_to_coin(amount: int) -> Decimal:
    """Convert atomic units (piconero) to coin units."""
    return Decimal(amount) / Decimal(ATOMIC_UNITS_PER_COIN)
