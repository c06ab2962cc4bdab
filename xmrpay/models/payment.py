"""
Payment model.

The listener's record of a wallet transfer applied to an invoice.
"""

from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from xmrpay.config.constants import CHAIN_PAYMENT_TYPE
from xmrpay.models.base import Base
from xmrpay.models.details import MoneroLikePaymentData
from xmrpay.models.enums import PaymentStatus
from xmrpay.models.invoice import Invoice
from xmrpay.models.types import CoinAmountType


def chain_payment_method_id(crypto_code: str) -> str:
    """On-chain payment method id of a currency, e.g. XMR-CHAIN."""
    return f"{crypto_code.upper()}-{CHAIN_PAYMENT_TYPE}"


def payment_key(tx_id: str, account_index: int, address_index: int) -> str:
    """Deterministic payment id: {txId}#{accountIndex}#{addressIndex}."""
    return f"{tx_id}#{account_index}#{address_index}"


class Payment(Base):
    """
    Transfer applied to an invoice.

    Identified by the payment key and payment method. Re-observing the same
    transfer updates the row instead of adding another one.
    """

    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(200), primary_key=True)
    payment_method_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    invoice_id: Mapped[str] = mapped_column(
        ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(CoinAmountType, nullable=False)
    currency: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.PROCESSING
    )
    destination: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    related_tx_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    invoice: Mapped[Invoice] = relationship(back_populates="payments")

    @property
    def payment_data(self) -> MoneroLikePaymentData:
        """Parsed ledger facts of this payment."""
        return MoneroLikePaymentData.model_validate(self.details)

    def set_payment_data(self, data: MoneroLikePaymentData) -> None:
        """Replace the details blob."""
        self.details = data.model_dump()

    @property
    def is_settled(self) -> bool:
        return self.status == PaymentStatus.SETTLED

    def __repr__(self) -> str:
        return (
            f"<Payment(id={self.id!r}, invoice_id={self.invoice_id!r}, "
            f"amount={self.amount}, status={self.status!r})>"
        )
