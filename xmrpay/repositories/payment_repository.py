"""
Payment repository.

Data access layer for recorded payments.
"""

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from xmrpay.models import Payment
from xmrpay.repositories.base import BaseRepository


class PaymentRepository(BaseRepository[Payment]):
    """Repository for payments."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository."""
        super().__init__(Payment, session)

    async def get_by_key(self, payment_id: str, payment_method_id: str) -> Payment | None:
        """Get payment by its key and payment method."""
        return await self.get_by_id((payment_id, payment_method_id))

    async def get_for_invoice(self, invoice_id: str) -> list[Payment]:
        return await self.find_all(invoice_id=invoice_id)

    async def update_state(self, payment: Payment) -> bool:
        """
        Write status and details of a payment.

        Amount, destination and ownership never change after creation.

        Returns:
            True if the row exists
        """
        stmt = (
            update(Payment)
            .where(
                Payment.id == payment.id,
                Payment.payment_method_id == payment.payment_method_id,
            )
            .values(status=str(payment.status), details=payment.details)
        )
        result = await self.session.execute(stmt)
        return result.rowcount > 0
