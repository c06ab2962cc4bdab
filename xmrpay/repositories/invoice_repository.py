"""
Invoice repository.

Data access layer for invoices and their payment prompts.
"""

from datetime import UTC, datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from xmrpay.models import MONITORED_INVOICE_STATUSES, Invoice, Payment, PaymentPrompt
from xmrpay.repositories.base import BaseRepository


class InvoiceRepository(BaseRepository[Invoice]):
    """Repository for invoices. Prompts and payments are always loaded eagerly."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository."""
        super().__init__(Invoice, session)

    async def get_monitored(self, payment_method_id: str) -> list[Invoice]:
        """
        Get invoices still watched for a payment method.

        Args:
            payment_method_id: Payment method id (e.g. XMR-CHAIN)

        Returns:
            Invoices in a monitored status with a prompt for the method
        """
        stmt = (
            select(Invoice)
            .join(PaymentPrompt, PaymentPrompt.invoice_id == Invoice.id)
            .where(
                PaymentPrompt.payment_method_id == payment_method_id,
                Invoice.status.in_([str(s) for s in MONITORED_INVOICE_STATUSES]),
            )
            .order_by(Invoice.created_at)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().unique().all())

    async def get_by_address(
        self, payment_method_id: str, address: str
    ) -> Invoice | None:
        """
        Get the invoice owning a destination address.

        Looks at current prompt destinations first, then at destinations of
        recorded payments so that addresses replaced by a later activation
        still resolve.

        Args:
            payment_method_id: Payment method id
            address: Destination address

        Returns:
            Invoice or None
        """
        stmt = select(Invoice).join(PaymentPrompt).where(
            PaymentPrompt.payment_method_id == payment_method_id,
            PaymentPrompt.destination == address,
        )
        result = await self.session.execute(stmt)
        invoice = result.scalars().first()
        if invoice is not None:
            return invoice

        stmt = select(Invoice).join(Payment).where(
            Payment.payment_method_id == payment_method_id,
            Payment.destination == address,
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def activate_prompt(self, invoice_id: str, payment_method_id: str) -> bool:
        """
        Mark the prompt of an invoice activated.

        Returns:
            True if a prompt was updated
        """
        stmt = (
            update(PaymentPrompt)
            .where(
                PaymentPrompt.invoice_id == invoice_id,
                PaymentPrompt.payment_method_id == payment_method_id,
            )
            .values(activated=True, activated_at=datetime.now(UTC))
        )
        result = await self.session.execute(stmt)
        return result.rowcount > 0
