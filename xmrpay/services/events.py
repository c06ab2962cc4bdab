"""
Inbound signals and outbound notifications.

Signals drive the scanner; notifications report invoice changes to the
rest of the system.
"""

from dataclasses import dataclass
from typing import Any

from xmrpay.models import Invoice, Payment


# ------------------------------------------------------------------------
# Inbound signals
# ------------------------------------------------------------------------


@dataclass(frozen=True)
class DaemonAvailabilityChanged:
    """Daemon/wallet of a currency became available or unavailable."""

    crypto_code: str
    available: bool


@dataclass(frozen=True)
class NewBlock:
    """Daemon reported a new block."""

    crypto_code: str
    block_hash: str


@dataclass(frozen=True)
class TransactionUpdated:
    """Wallet reported a new or changed transaction."""

    crypto_code: str
    tx_hash: str


Signal = DaemonAvailabilityChanged | NewBlock | TransactionUpdated


# ------------------------------------------------------------------------
# Outbound notifications
# ------------------------------------------------------------------------


@dataclass(frozen=True)
class PaymentReceived:
    """A new payment was recorded for an invoice."""

    invoice: Invoice
    payment: Payment

    def to_payload(self) -> dict[str, Any]:
        return {
            "invoice_id": self.invoice.id,
            "payment_id": self.payment.id,
            "payment_method_id": self.payment.payment_method_id,
            "amount": str(self.payment.amount),
            "currency": self.payment.currency,
            "status": str(self.payment.status),
            "destination": self.payment.destination,
        }


@dataclass(frozen=True)
class InvoiceNeedsUpdate:
    """Payments of an invoice changed; its state must be recomputed."""

    invoice_id: str

    def to_payload(self) -> dict[str, Any]:
        return {"invoice_id": self.invoice_id}


@dataclass(frozen=True)
class NewBlockProcessed:
    """A new block was processed for a payment method."""

    payment_method_id: str

    def to_payload(self) -> dict[str, Any]:
        return {"payment_method_id": self.payment_method_id}


Notification = PaymentReceived | InvoiceNeedsUpdate | NewBlockProcessed
