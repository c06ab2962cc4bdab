"""
Transfer matcher.

Attributes wallet transfers to the invoices they settle.
"""

from collections import defaultdict
from collections.abc import Iterable

from loguru import logger

from xmrpay.models import Invoice
from xmrpay.rpc.models import TransferEntry
from xmrpay.utils.exceptions import PaymentInvariantError


class TransferMatcher:
    """
    Resolves a transfer to an invoice.

    Resolution order, first match wins:
    1. An existing payment with the same destination and transaction id:
       the transfer is a re-observation and stays with that payment's invoice.
    2. An activated prompt of a pending invoice with the same destination.
    3. Otherwise the transfer belongs to no tracked invoice.
    """

    def __init__(self, payment_method_id: str, invoices: Iterable[Invoice]) -> None:
        """
        Index invoices for matching.

        Args:
            payment_method_id: Payment method whose prompts and payments count
            invoices: Pending invoices with their existing payments
        """
        self.payment_method_id = payment_method_id
        self._by_payment: dict[tuple[str, str], list[Invoice]] = defaultdict(list)
        self._by_prompt: dict[str, list[Invoice]] = defaultdict(list)

        for invoice in invoices:
            for payment in invoice.get_payments(payment_method_id):
                key = (payment.destination, payment.payment_data.transaction_id)
                self._by_payment[key].append(invoice)

            prompt = invoice.get_payment_prompt(payment_method_id)
            if prompt is not None and prompt.activated:
                self._by_prompt[prompt.destination].append(invoice)

    def match(self, transfer: TransferEntry) -> Invoice | None:
        """
        Find the invoice a transfer settles.

        Args:
            transfer: Observed wallet transfer

        Returns:
            Matching invoice or None

        Raises:
            PaymentInvariantError: If the transfer resolves to more than one invoice
        """
        existing = self._by_payment.get((transfer.address, transfer.txid))
        if existing:
            return self._single(existing, transfer, "existing payments")

        candidates = self._by_prompt.get(transfer.address)
        if candidates:
            return self._single(candidates, transfer, "activated prompts")

        return None

    def _single(
        self, invoices: list[Invoice], transfer: TransferEntry, source: str
    ) -> Invoice:
        distinct = {invoice.id: invoice for invoice in invoices}
        if len(distinct) > 1:
            raise PaymentInvariantError(
                f"Transfer {transfer.txid} to {transfer.address} matches {source} "
                f"of several invoices: {sorted(distinct)}"
            )
        if len(invoices) > 1:
            logger.warning(
                f"Transfer {transfer.txid} to {transfer.address} matches "
                f"{len(invoices)} {source} of invoice {invoices[0].id}, using the first"
            )
        return invoices[0]
