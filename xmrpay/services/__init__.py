"""
Reconciliation services.

Confirmation policy, transfer matching, payment reconciliation and the
signal driven scanner.
"""

from xmrpay.services.confirmation_policy import (
    confirmations_required,
    is_settled,
    payment_status,
)
from xmrpay.services.event_scanner import EventDrivenScanner, ScannerState
from xmrpay.services.payment_reconciler import PaymentReconciler, ReconcileResult
from xmrpay.services.transfer_matcher import TransferMatcher


__all__ = [
    "EventDrivenScanner",
    "PaymentReconciler",
    "ReconcileResult",
    "ScannerState",
    "TransferMatcher",
    "confirmations_required",
    "is_settled",
    "payment_status",
]
