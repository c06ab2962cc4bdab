"""
Test factories and in-memory collaborators.

Builders for invoices, payments and wallet transfers plus fakes of the
invoice/payment stores and the notification publisher.
"""

import asyncio
import copy
from decimal import Decimal

from xmrpay.models import (
    MONITORED_INVOICE_STATUSES,
    Invoice,
    InvoiceStatus,
    MoneroLikePaymentData,
    Payment,
    PaymentPrompt,
    PaymentStatus,
    SpeedPolicy,
    payment_key,
)
from xmrpay.rpc.client import TransferLookup
from xmrpay.rpc.models import GetTransferByTransactionIdResponse
from xmrpay.rpc.models import SubaddrIndex, TransferEntry


PMID = "XMR-CHAIN"

PAYMENT_COLUMNS = (
    "id",
    "payment_method_id",
    "invoice_id",
    "amount",
    "currency",
    "status",
    "destination",
    "created_at",
    "details",
    "related_tx_ids",
)
PROMPT_COLUMNS = (
    "payment_method_id",
    "currency",
    "destination",
    "activated",
    "due",
    "details",
)


def address_for(account_index: int, address_index: int) -> str:
    return f"8addr-{account_index}-{address_index}"


def make_invoice(
    invoice_id: str = "inv-1",
    account_index: int = 0,
    address_index: int = 1,
    destination: str | None = None,
    due: Decimal = Decimal("1"),
    speed_policy: str = SpeedPolicy.MEDIUM_SPEED,
    threshold: int | None = None,
    activated: bool = True,
    status: str = InvoiceStatus.NEW,
    payments: list[Payment] | None = None,
) -> Invoice:
    """Build a transient invoice with one XMR prompt."""
    prompt = PaymentPrompt(
        payment_method_id=PMID,
        currency="XMR",
        destination=destination or address_for(account_index, address_index),
        activated=activated,
        due=due,
        details={
            "account_index": account_index,
            "address_index": address_index,
            "invoice_settled_confirmation_threshold": threshold,
        },
    )
    return Invoice(
        id=invoice_id,
        status=status,
        speed_policy=speed_policy,
        prompts=[prompt],
        payments=payments or [],
    )


def make_payment(
    invoice_id: str,
    tx_id: str,
    account_index: int = 0,
    address_index: int = 1,
    destination: str | None = None,
    amount: Decimal = Decimal("0.5"),
    confirmations: int = 0,
    status: str = PaymentStatus.PROCESSING,
    payment_method_id: str = PMID,
) -> Payment:
    details = MoneroLikePaymentData(
        subaccount_index=account_index,
        subaddress_index=address_index,
        transaction_id=tx_id,
        confirmation_count=confirmations,
        block_height=100,
        lock_time=0,
    )
    return Payment(
        id=payment_key(tx_id, account_index, address_index),
        payment_method_id=payment_method_id,
        invoice_id=invoice_id,
        amount=amount,
        currency="XMR",
        status=status,
        destination=destination or address_for(account_index, address_index),
        details=details.model_dump(),
        related_tx_ids=[tx_id],
    )


def make_transfer(
    tx_id: str = "tx-1",
    account_index: int = 0,
    address_index: int = 1,
    address: str | None = None,
    amount: int = 500_000_000_000,
    confirmations: int = 0,
    height: int = 100,
    unlock_time: int = 0,
) -> TransferEntry:
    return TransferEntry(
        address=address or address_for(account_index, address_index),
        amount=amount,
        confirmations=confirmations,
        height=height,
        txid=tx_id,
        unlock_time=unlock_time,
        subaddr_index=SubaddrIndex(major=account_index, minor=address_index),
    )


class InMemoryStore:
    """
    Invoice and payment store keeping plain rows.

    Every read materializes fresh entities, like a database session would.
    """

    def __init__(self, invoices: list[Invoice] | None = None) -> None:
        self.invoices: dict[str, dict] = {}
        self.payments: dict[tuple[str, str], dict] = {}
        self.activations: list[tuple[str, str]] = []
        self.add_calls: list[str] = []
        self.update_calls: list[list[str]] = []
        for invoice in invoices or []:
            self.add_invoice(invoice)

    def add_invoice(self, invoice: Invoice) -> None:
        self.invoices[invoice.id] = {
            "id": invoice.id,
            "status": invoice.status,
            "speed_policy": invoice.speed_policy,
            "prompts": [
                {c: copy.deepcopy(getattr(p, c)) for c in PROMPT_COLUMNS}
                for p in invoice.prompts
            ],
        }
        for payment in invoice.payments:
            self._store_row(payment)

    def _store_row(self, payment: Payment) -> None:
        self.payments[(payment.id, payment.payment_method_id)] = {
            c: copy.deepcopy(getattr(payment, c)) for c in PAYMENT_COLUMNS
        }

    def payment_rows(self, invoice_id: str | None = None) -> list[dict]:
        return [
            row
            for row in self.payments.values()
            if invoice_id is None or row["invoice_id"] == invoice_id
        ]

    def _materialize(self, invoice_id: str) -> Invoice:
        data = self.invoices[invoice_id]
        return Invoice(
            id=data["id"],
            status=data["status"],
            speed_policy=data["speed_policy"],
            prompts=[PaymentPrompt(**copy.deepcopy(p)) for p in data["prompts"]],
            payments=[Payment(**copy.deepcopy(row)) for row in self.payment_rows(invoice_id)],
        )

    async def get_monitored_invoices(self, payment_method_id: str) -> list[Invoice]:
        return [
            self._materialize(invoice_id)
            for invoice_id, data in self.invoices.items()
            if data["status"] in MONITORED_INVOICE_STATUSES
            and any(p["payment_method_id"] == payment_method_id for p in data["prompts"])
        ]

    async def get_invoice_from_address(self, payment_method_id: str, address: str) -> Invoice | None:
        for invoice_id, data in self.invoices.items():
            for prompt in data["prompts"]:
                if prompt["payment_method_id"] == payment_method_id and prompt["destination"] == address:
                    return self._materialize(invoice_id)
        for row in self.payments.values():
            if row["payment_method_id"] == payment_method_id and row["destination"] == address:
                return self._materialize(row["invoice_id"])
        return None

    async def get_invoice(self, invoice_id: str) -> Invoice | None:
        # Yield so that concurrent passes interleave here
        await asyncio.sleep(0)
        if invoice_id not in self.invoices:
            return None
        return self._materialize(invoice_id)

    async def activate_payment_method(self, invoice_id: str, payment_method_id: str) -> None:
        self.activations.append((invoice_id, payment_method_id))
        for prompt in self.invoices[invoice_id]["prompts"]:
            if prompt["payment_method_id"] == payment_method_id:
                prompt["activated"] = True

    async def add_payment(self, payment: Payment, related_tx_ids: list[str]) -> Payment | None:
        self.add_calls.append(payment.id)
        if (payment.id, payment.payment_method_id) in self.payments:
            return None
        invoice = self._materialize(payment.invoice_id)
        if invoice.remaining_due(payment.payment_method_id) <= 0:
            return None
        payment.related_tx_ids = sorted(set(related_tx_ids))
        self._store_row(payment)
        return payment

    async def update_payments(self, payments: list[Payment]) -> None:
        self.update_calls.append([p.id for p in payments])
        for payment in payments:
            row = self.payments[(payment.id, payment.payment_method_id)]
            row["status"] = payment.status
            row["details"] = copy.deepcopy(payment.details)


class RecordingPublisher:
    """Collects published notifications."""

    def __init__(self) -> None:
        self.notifications: list = []

    async def publish(self, notification) -> None:
        self.notifications.append(notification)

    def of_type(self, notification_type: type) -> list:
        return [n for n in self.notifications if isinstance(n, notification_type)]


def found_lookup(*transfers: TransferEntry) -> TransferLookup:
    """Wallet answer for a transaction with the given incoming outputs."""
    return TransferLookup.found(
        GetTransferByTransactionIdResponse(transfer=transfers[0], transfers=list(transfers))
    )
