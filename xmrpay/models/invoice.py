"""
Invoice and PaymentPrompt models.

An invoice requests payment through one prompt per accepted payment method.
"""

from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from xmrpay.models.base import Base
from xmrpay.models.details import MoneroPromptDetails
from xmrpay.models.enums import InvoiceStatus, SpeedPolicy
from xmrpay.models.types import CoinAmountType


if TYPE_CHECKING:
    from xmrpay.models.payment import Payment


class Invoice(Base):
    """Payment request with one or more payment prompts."""

    __tablename__ = "invoices"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=InvoiceStatus.NEW, index=True
    )
    speed_policy: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SpeedPolicy.MEDIUM_SPEED
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    prompts: Mapped[list["PaymentPrompt"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    payments: Mapped[list["Payment"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def get_payment_prompt(self, payment_method_id: str) -> "PaymentPrompt | None":
        """Get the prompt for a payment method, if the invoice accepts it."""
        for prompt in self.prompts:
            if prompt.payment_method_id == payment_method_id:
                return prompt
        return None

    def get_payments(self, payment_method_id: str) -> list["Payment"]:
        """Get all payments recorded for a payment method."""
        return [p for p in self.payments if p.payment_method_id == payment_method_id]

    def paid_amount(self, payment_method_id: str) -> Decimal:
        """Sum of recorded payments for a payment method."""
        return sum(
            (p.amount for p in self.get_payments(payment_method_id)),
            Decimal("0"),
        )

    def remaining_due(self, payment_method_id: str) -> Decimal:
        """
        Amount still due through a payment method.

        Returns:
            Due minus paid, never below zero; zero if there is no prompt
        """
        prompt = self.get_payment_prompt(payment_method_id)
        if prompt is None:
            return Decimal("0")
        return max(prompt.due - self.paid_amount(payment_method_id), Decimal("0"))

    def __repr__(self) -> str:
        return f"<Invoice(id={self.id!r}, status={self.status!r})>"


class PaymentPrompt(Base):
    """Currency specific destination and amount due bound to an invoice."""

    __tablename__ = "payment_prompts"
    __table_args__ = (
        UniqueConstraint("invoice_id", "payment_method_id", name="uq_prompt_invoice_method"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    invoice_id: Mapped[str] = mapped_column(
        ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True
    )
    payment_method_id: Mapped[str] = mapped_column(String(32), nullable=False)
    currency: Mapped[str] = mapped_column(String(16), nullable=False)
    destination: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    activated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    activated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    due: Mapped[Decimal] = mapped_column(CoinAmountType, nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    invoice: Mapped[Invoice] = relationship(back_populates="prompts")

    @property
    def prompt_details(self) -> MoneroPromptDetails:
        """Parsed wallet location of this prompt."""
        return MoneroPromptDetails.model_validate(self.details)

    def __repr__(self) -> str:
        return (
            f"<PaymentPrompt(invoice_id={self.invoice_id!r}, "
            f"method={self.payment_method_id!r}, destination={self.destination!r})>"
        )
