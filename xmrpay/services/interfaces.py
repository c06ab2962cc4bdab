"""
Collaborator interfaces consumed by the reconciler and scanner.

Concrete implementations are wired by the composition root.
"""

from contextlib import AbstractAsyncContextManager
from typing import Protocol

from xmrpay.models import Invoice, Payment
from xmrpay.rpc.client import TransferLookup
from xmrpay.rpc.models import TransferEntry
from xmrpay.services.events import Notification


class WalletRpc(Protocol):
    """Wallet operations, callable concurrently per account."""

    async def get_transfers(
        self,
        account_index: int,
        incoming_only: bool,
        subaddr_indices: list[int],
    ) -> list[TransferEntry]: ...

    async def get_accounts(self) -> list[int]: ...

    async def get_transfer_by_txid(
        self, tx_id: str, account_index: int | None
    ) -> TransferLookup: ...


class InvoiceStore(Protocol):
    async def get_monitored_invoices(self, payment_method_id: str) -> list[Invoice]: ...

    async def get_invoice_from_address(
        self, payment_method_id: str, address: str
    ) -> Invoice | None: ...

    async def get_invoice(self, invoice_id: str) -> Invoice | None: ...

    async def activate_payment_method(
        self, invoice_id: str, payment_method_id: str
    ) -> None: ...


class PaymentStore(Protocol):
    async def add_payment(
        self, payment: Payment, related_tx_ids: list[str]
    ) -> Payment | None:
        """Persist a new payment; None if the invoice is already fully paid."""
        ...

    async def update_payments(self, payments: list[Payment]) -> None:
        """Persist a batch of changed payments in one write."""
        ...


class NotificationPublisher(Protocol):
    async def publish(self, notification: Notification) -> None: ...


class InvoiceLocks(Protocol):
    def hold(self, invoice_id: str) -> AbstractAsyncContextManager[None]: ...
