"""
Standard type definitions for database models.
"""

from sqlalchemy import DECIMAL

# Coin amounts with full atomic precision
# Precision: 24 digits total, 12 after decimal point (1 piconero)
CoinAmountType = DECIMAL(24, 12)
