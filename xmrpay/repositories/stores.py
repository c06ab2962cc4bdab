"""
SQL backed invoice and payment stores.

Each operation runs in its own session. Returned entities are fully loaded
and stay usable after the session closes.
"""

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from xmrpay.models import Invoice, Payment
from xmrpay.repositories.invoice_repository import InvoiceRepository
from xmrpay.repositories.payment_repository import PaymentRepository


class SqlInvoiceStore:
    """Invoice reads and payment method activation."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        self.session_maker = session_maker

    async def get_monitored_invoices(self, payment_method_id: str) -> list[Invoice]:
        async with self.session_maker() as session:
            return await InvoiceRepository(session).get_monitored(payment_method_id)

    async def get_invoice_from_address(
        self, payment_method_id: str, address: str
    ) -> Invoice | None:
        async with self.session_maker() as session:
            return await InvoiceRepository(session).get_by_address(payment_method_id, address)

    async def get_invoice(self, invoice_id: str) -> Invoice | None:
        async with self.session_maker() as session:
            return await InvoiceRepository(session).get_by_id(invoice_id)

    async def activate_payment_method(self, invoice_id: str, payment_method_id: str) -> None:
        """
        Activate the payment method of an invoice for the remaining due.

        Allocation of a fresh receiving address is left to the wallet
        integration that created the prompt.
        """
        async with self.session_maker() as session, session.begin():
            updated = await InvoiceRepository(session).activate_prompt(
                invoice_id, payment_method_id
            )
        if updated:
            logger.info(f"Activated {payment_method_id} on invoice {invoice_id}")
        else:
            logger.warning(f"Invoice {invoice_id} has no {payment_method_id} prompt to activate")


class SqlPaymentStore:
    """Payment persistence."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        self.session_maker = session_maker

    async def add_payment(
        self, payment: Payment, related_tx_ids: list[str]
    ) -> Payment | None:
        """
        Record a new payment.

        Args:
            payment: Payment to insert
            related_tx_ids: Transaction ids to index the payment under

        Returns:
            The stored payment, or None if the invoice has nothing left due or
            a payment with the same key exists already
        """
        try:
            async with self.session_maker() as session, session.begin():
                payments = PaymentRepository(session)
                if await payments.get_by_key(payment.id, payment.payment_method_id):
                    logger.warning(
                        f"Payment {payment.id} already recorded, not adding it again"
                    )
                    return None

                invoice = await InvoiceRepository(session).get_by_id(payment.invoice_id)
                if invoice is None:
                    logger.warning(
                        f"Invoice {payment.invoice_id} not found for payment {payment.id}"
                    )
                    return None
                if invoice.remaining_due(payment.payment_method_id) <= 0:
                    logger.info(
                        f"Invoice {invoice.id} already fully paid, ignoring payment {payment.id}"
                    )
                    return None

                payment.related_tx_ids = sorted(set(related_tx_ids))
                session.add(payment)
        except IntegrityError as e:
            logger.warning(f"Payment {payment.id} was recorded concurrently: {e}")
            return None
        return payment

    async def update_payments(self, payments: list[Payment]) -> None:
        """Write status and details of every payment in one transaction."""
        if not payments:
            return
        async with self.session_maker() as session, session.begin():
            repo = PaymentRepository(session)
            for payment in payments:
                if not await repo.update_state(payment):
                    logger.warning(f"Payment {payment.id} vanished before its update")
