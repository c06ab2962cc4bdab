"""
Database models.

Exports all SQLAlchemy models for easy imports.
"""

from xmrpay.models.base import Base
from xmrpay.models.details import MoneroLikePaymentData, MoneroPromptDetails
from xmrpay.models.enums import (
    MONITORED_INVOICE_STATUSES,
    InvoiceStatus,
    PaymentStatus,
    SpeedPolicy,
)
from xmrpay.models.invoice import Invoice, PaymentPrompt
from xmrpay.models.payment import Payment, chain_payment_method_id, payment_key


__all__ = [
    "Base",
    "Invoice",
    "InvoiceStatus",
    "MONITORED_INVOICE_STATUSES",
    "MoneroLikePaymentData",
    "MoneroPromptDetails",
    "Payment",
    "PaymentPrompt",
    "PaymentStatus",
    "SpeedPolicy",
    "chain_payment_method_id",
    "payment_key",
]
