"""
Payment reconciler.

Queries the wallet for transfers, attributes them to invoices and records
them as payments:
- Bulk scan of every pending invoice, one get_transfers call per account
- Single transaction scan after a wallet transaction notification
- Idempotent create-or-update keyed by {txId}#{account}#{address}
- One batched payment update and one notification per touched invoice
"""

import asyncio
from collections import defaultdict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime

from loguru import logger

from xmrpay.models import (
    Invoice,
    MoneroLikePaymentData,
    Payment,
    chain_payment_method_id,
    payment_key,
)
from xmrpay.rpc.client import LookupOutcome
from xmrpay.rpc.models import GetTransferByTransactionIdResponse, TransferEntry
from xmrpay.services.confirmation_policy import payment_status
from xmrpay.services.events import InvoiceNeedsUpdate, PaymentReceived
from xmrpay.services.interfaces import (
    InvoiceLocks,
    InvoiceStore,
    NotificationPublisher,
    PaymentStore,
    WalletRpc,
)
from xmrpay.services.transfer_matcher import TransferMatcher
from xmrpay.utils.exceptions import (
    ListenerError,
    PaymentInvariantError,
    WalletRpcTransportError,
)
from xmrpay.utils.locks import LocalInvoiceLocks
from xmrpay.utils.money import atomic_to_coin


@dataclass(frozen=True)
class ObservedTransfer:
    """Transfer facts applied to one invoice through the upsert path."""

    destination: str
    amount: int  # atomic units
    account_index: int
    address_index: int
    tx_id: str
    confirmations: int
    block_height: int
    lock_time: int

    @property
    def key(self) -> str:
        return payment_key(self.tx_id, self.account_index, self.address_index)

    @classmethod
    def from_transfer(cls, transfer: TransferEntry) -> "ObservedTransfer":
        return cls(
            destination=transfer.address,
            amount=transfer.amount,
            account_index=transfer.subaddr_index.major,
            address_index=transfer.subaddr_index.minor,
            tx_id=transfer.txid,
            confirmations=transfer.confirmations,
            block_height=transfer.height,
            lock_time=transfer.unlock_time,
        )


@dataclass
class ReconcileResult:
    """Outcome of one reconciliation pass."""

    created: list[Payment] = field(default_factory=list)
    updated: list[tuple[Payment, Invoice]] = field(default_factory=list)
    failed_accounts: list[int] = field(default_factory=list)
    skipped_tx_ids: list[str] = field(default_factory=list)

    @property
    def touched_invoice_ids(self) -> list[str]:
        """Invoices with at least one updated payment, in first-touched order."""
        return list(dict.fromkeys(invoice.id for _, invoice in self.updated))


def merge_observations(observations: Iterable[ObservedTransfer]) -> list[ObservedTransfer]:
    """Collapse observations sharing a payment key, summing their amounts."""
    merged: dict[str, ObservedTransfer] = {}
    for observed in observations:
        previous = merged.get(observed.key)
        if previous is not None:
            observed = ObservedTransfer(
                destination=observed.destination,
                amount=previous.amount + observed.amount,
                account_index=observed.account_index,
                address_index=observed.address_index,
                tx_id=observed.tx_id,
                confirmations=observed.confirmations,
                block_height=observed.block_height,
                lock_time=observed.lock_time,
            )
        merged[observed.key] = observed
    return list(merged.values())


class PaymentReconciler:
    """
    Reconciles wallet transfers with invoice payments.

    Collaborators are injected; nothing is looked up globally.
    """

    def __init__(
        self,
        wallet_rpc_clients: Mapping[str, WalletRpc],
        invoice_store: InvoiceStore,
        payment_store: PaymentStore,
        publisher: NotificationPublisher,
        locks: InvoiceLocks | None = None,
    ) -> None:
        """
        Initialize reconciler.

        Args:
            wallet_rpc_clients: Wallet RPC per upper-case crypto code
            invoice_store: Invoice reads and payment method activation
            payment_store: Payment persistence
            publisher: Outbound notifications
            locks: Per-invoice locks (default: in-process)
        """
        self.wallet_rpc_clients = wallet_rpc_clients
        self.invoice_store = invoice_store
        self.payment_store = payment_store
        self.publisher = publisher
        self.locks = locks or LocalInvoiceLocks()

    def _wallet(self, crypto_code: str) -> WalletRpc:
        try:
            return self.wallet_rpc_clients[crypto_code]
        except KeyError:
            raise ListenerError(f"No wallet RPC configured for {crypto_code}") from None

    # ------------------------------------------------------------------
    # Bulk scan
    # ------------------------------------------------------------------

    async def update_any_pending_payment(self, crypto_code: str) -> ReconcileResult:
        """
        Reconcile every monitored invoice with an activated prompt.

        Args:
            crypto_code: Currency to scan

        Returns:
            ReconcileResult of the pass
        """
        payment_method_id = chain_payment_method_id(crypto_code)
        invoices = await self.invoice_store.get_monitored_invoices(payment_method_id)
        invoices = [
            invoice
            for invoice in invoices
            if (prompt := invoice.get_payment_prompt(payment_method_id)) is not None
            and prompt.activated
        ]
        if not invoices:
            logger.debug(f"[{crypto_code}] No pending invoices to reconcile")
            return ReconcileResult()
        return await self.reconcile_all(crypto_code, invoices)

    async def reconcile_all(
        self, crypto_code: str, invoices: list[Invoice]
    ) -> ReconcileResult:
        """
        Bulk scan a set of invoices.

        Builds one query per account covering the expected address index of
        every invoice on that account plus every sub-address already used by
        its payments. Queries run concurrently; a failed account is logged and
        skipped while the others are still applied. A transfer claimed by
        several invoices is logged as critical and left out of the pass.

        Args:
            crypto_code: Currency to scan
            invoices: Invoices with an activated prompt for the currency

        Returns:
            ReconcileResult of the pass
        """
        result = ReconcileResult()
        if not invoices:
            return result

        wallet = self._wallet(crypto_code)
        payment_method_id = chain_payment_method_id(crypto_code)

        account_to_address_query: dict[int, set[int]] = defaultdict(set)
        for invoice in invoices:
            prompt = invoice.get_payment_prompt(payment_method_id)
            if prompt is None:
                continue
            details = prompt.prompt_details
            indices = account_to_address_query[details.account_index]
            indices.add(details.address_index)
            indices.update(
                payment.payment_data.subaddress_index
                for payment in invoice.get_payments(payment_method_id)
            )

        accounts = list(account_to_address_query)
        responses = await asyncio.gather(
            *(
                wallet.get_transfers(account, True, sorted(account_to_address_query[account]))
                for account in accounts
            ),
            return_exceptions=True,
        )

        matcher = TransferMatcher(payment_method_id, invoices)
        invoices_by_id = {invoice.id: invoice for invoice in invoices}
        observed_by_invoice: dict[str, list[ObservedTransfer]] = defaultdict(list)

        for account, response in zip(accounts, responses, strict=True):
            if isinstance(response, asyncio.CancelledError):
                raise response
            if isinstance(response, BaseException):
                logger.error(
                    f"[{crypto_code}] get_transfers failed for account {account}, "
                    f"skipping it this pass: {response}"
                )
                result.failed_accounts.append(account)
                continue

            for transfer in response:
                try:
                    invoice = matcher.match(transfer)
                except PaymentInvariantError as e:
                    logger.critical(
                        f"[{crypto_code}] Skipping transfer {transfer.txid} to {transfer.address}: {e}"
                    )
                    result.skipped_tx_ids.append(transfer.txid)
                    continue
                if invoice is None:
                    continue
                observed_by_invoice[invoice.id].append(ObservedTransfer.from_transfer(transfer))

        for invoice_id, observations in observed_by_invoice.items():
            await self._apply(crypto_code, invoices_by_id[invoice_id], observations, result)

        await self._flush(crypto_code, result)

        logger.info(
            f"[{crypto_code}] Reconciled {len(invoices)} invoices over "
            f"{len(accounts)} accounts: {len(result.created)} new, "
            f"{len(result.updated)} updated payments"
        )
        return result

    # ------------------------------------------------------------------
    # Single transaction scan
    # ------------------------------------------------------------------

    async def get_transfer_by_txid(
        self, crypto_code: str, tx_id: str
    ) -> GetTransferByTransactionIdResponse | None:
        """
        Find a transaction in the wallet.

        Probes the wallet's accounts one after another and stops at the first
        account that owns the transaction. Accounts answering "not found" are
        skipped silently; accounts failing with a transport error are skipped
        with a warning.

        Args:
            crypto_code: Currency
            tx_id: Transaction id

        Returns:
            Transfer details or None if no account owns the transaction

        Raises:
            WalletRpcTransportError: If no account had it and at least one probe failed
        """
        wallet = self._wallet(crypto_code)
        account_indices: list[int | None] = list(await wallet.get_accounts())
        if not account_indices:
            account_indices.append(None)

        errors: list[Exception] = []
        for account_index in account_indices:
            lookup = await wallet.get_transfer_by_txid(tx_id, account_index)
            if lookup.is_found:
                return lookup.detail
            if lookup.outcome is LookupOutcome.TRANSIENT_ERROR:
                logger.warning(
                    f"[{crypto_code}] Lookup of {tx_id} in account {account_index} failed: "
                    f"{lookup.error}"
                )
                errors.append(lookup.error)

        if errors:
            raise WalletRpcTransportError(
                f"Transaction {tx_id} not found and {len(errors)} account lookups failed"
            ) from errors[-1]
        return None

    async def reconcile_one(self, crypto_code: str, tx_id: str) -> ReconcileResult:
        """
        Reconcile a single transaction.

        Outputs of the transaction are grouped by destination address; each
        group is applied to the invoice owning that address with the amounts
        summed.

        Args:
            crypto_code: Currency
            tx_id: Transaction id

        Returns:
            ReconcileResult of the pass
        """
        result = ReconcileResult()
        transfer_detail = await self.get_transfer_by_txid(crypto_code, tx_id)
        if transfer_detail is None:
            logger.debug(f"[{crypto_code}] Transaction {tx_id} is not ours")
            return result

        payment_method_id = chain_payment_method_id(crypto_code)
        summary = transfer_detail.transfer
        destinations: dict[str, list[TransferEntry]] = defaultdict(list)
        for entry in transfer_detail.transfers or [summary]:
            destinations[entry.address].append(entry)

        for address, entries in destinations.items():
            invoice = await self.invoice_store.get_invoice_from_address(
                payment_method_id, address
            )
            if invoice is None:
                continue

            index = entries[0].subaddr_index
            observed = ObservedTransfer(
                destination=address,
                amount=sum(entry.amount for entry in entries),
                account_index=index.major,
                address_index=index.minor,
                tx_id=summary.txid,
                confirmations=summary.confirmations,
                block_height=summary.height,
                lock_time=summary.unlock_time,
            )
            await self._apply(crypto_code, invoice, [observed], result)

        await self._flush(crypto_code, result)
        return result

    # ------------------------------------------------------------------
    # Upsert path
    # ------------------------------------------------------------------

    async def _apply(
        self,
        crypto_code: str,
        invoice: Invoice,
        observations: list[ObservedTransfer],
        result: ReconcileResult,
    ) -> None:
        """Apply observations to an invoice while holding its lock."""
        async with self.locks.hold(invoice.id):
            current = await self.invoice_store.get_invoice(invoice.id)
            if current is None:
                logger.warning(
                    f"[{crypto_code}] Invoice {invoice.id} disappeared, "
                    f"dropping {len(observations)} transfers"
                )
                return
            for observed in merge_observations(observations):
                await self._handle_payment_data(crypto_code, current, observed, result)

    async def _handle_payment_data(
        self,
        crypto_code: str,
        invoice: Invoice,
        observed: ObservedTransfer,
        result: ReconcileResult,
    ) -> None:
        payment_method_id = chain_payment_method_id(crypto_code)
        prompt = invoice.get_payment_prompt(payment_method_id)
        if prompt is None:
            logger.warning(
                f"[{crypto_code}] Invoice {invoice.id} has no {payment_method_id} prompt, "
                f"ignoring {observed.tx_id}"
            )
            return

        details = MoneroLikePaymentData(
            subaccount_index=observed.account_index,
            subaddress_index=observed.address_index,
            transaction_id=observed.tx_id,
            confirmation_count=observed.confirmations,
            block_height=observed.block_height,
            lock_time=observed.lock_time,
            invoice_settled_confirmation_threshold=(
                prompt.prompt_details.invoice_settled_confirmation_threshold
            ),
        )
        status = payment_status(details, invoice.speed_policy)
        key = observed.key

        existing = [p for p in invoice.get_payments(payment_method_id) if p.id == key]
        if len(existing) > 1:
            raise PaymentInvariantError(
                f"Invoice {invoice.id} holds {len(existing)} payments with key {key}"
            )

        if not existing:
            payment = Payment(
                id=key,
                payment_method_id=payment_method_id,
                invoice_id=invoice.id,
                amount=atomic_to_coin(observed.amount),
                currency=crypto_code,
                status=status,
                destination=observed.destination,
                created_at=datetime.now(UTC),
                details=details.model_dump(),
                related_tx_ids=[observed.tx_id],
            )
            added = await self.payment_store.add_payment(payment, [observed.tx_id])
            if added is None:
                logger.info(
                    f"[{crypto_code}] Payment {key} not recorded for invoice {invoice.id}"
                )
                return
            result.created.append(added)
            await self._received_payment(invoice, added)
            invoice.payments.append(added)
            return

        payment = existing[0]
        if payment.destination != observed.destination:
            raise PaymentInvariantError(
                f"Payment {key} of invoice {invoice.id} was recorded for "
                f"{payment.destination}, now observed for {observed.destination}"
            )
        if payment.status != status:
            logger.info(
                f"[{crypto_code}] Payment {key} of invoice {invoice.id}: "
                f"{payment.status} -> {status} ({observed.confirmations} confirmations)"
            )
        payment.status = status
        payment.set_payment_data(details)
        result.updated.append((payment, invoice))

    async def _received_payment(self, invoice: Invoice, payment: Payment) -> None:
        """Activate the prompt again if money is still due, then announce the payment."""
        logger.success(
            f"Invoice {invoice.id} received payment {payment.amount} "
            f"{payment.currency} {payment.id}"
        )

        prompt = invoice.get_payment_prompt(payment.payment_method_id)
        still_due = invoice.remaining_due(payment.payment_method_id) - payment.amount
        if (
            prompt is not None
            and prompt.activated
            and prompt.destination == payment.destination
            and still_due > 0
        ):
            await self.invoice_store.activate_payment_method(
                invoice.id, payment.payment_method_id
            )
            invoice = await self.invoice_store.get_invoice(invoice.id) or invoice

        await self.publisher.publish(PaymentReceived(invoice=invoice, payment=payment))

    async def _flush(self, crypto_code: str, result: ReconcileResult) -> None:
        """Write every updated payment at once, then notify once per invoice."""
        if not result.updated:
            return

        # Once started the write completes even if the scan is cancelled.
        await asyncio.shield(
            self.payment_store.update_payments([payment for payment, _ in result.updated])
        )
        for invoice_id in result.touched_invoice_ids:
            await self.publisher.publish(InvoiceNeedsUpdate(invoice_id=invoice_id))

        logger.debug(
            f"[{crypto_code}] Flushed {len(result.updated)} payment updates for "
            f"{len(result.touched_invoice_ids)} invoices"
        )
