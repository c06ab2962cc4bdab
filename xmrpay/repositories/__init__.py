"""
Repositories and stores.

Repositories wrap a session; stores open a session per operation and
implement the collaborator interfaces used by the reconciler.
"""

from xmrpay.repositories.invoice_repository import InvoiceRepository
from xmrpay.repositories.payment_repository import PaymentRepository
from xmrpay.repositories.stores import SqlInvoiceStore, SqlPaymentStore


__all__ = [
    "InvoiceRepository",
    "PaymentRepository",
    "SqlInvoiceStore",
    "SqlPaymentStore",
]
