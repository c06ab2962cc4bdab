"""
xmrpay listener.

Reconciles incoming Monero-like wallet transfers against pending invoices.
"""

__version__ = "1.4.0"
