"""
Payment method specific details.

Stored as JSON on prompts and payments.
"""

from pydantic import BaseModel, ConfigDict


class MoneroPromptDetails(BaseModel):
    """Wallet location bound to an invoice prompt. Immutable once bound."""

    model_config = ConfigDict(frozen=True)

    account_index: int
    address_index: int
    invoice_settled_confirmation_threshold: int | None = None


class MoneroLikePaymentData(BaseModel):
    """Ledger facts recorded with a payment."""

    subaccount_index: int
    subaddress_index: int
    transaction_id: str
    confirmation_count: int
    block_height: int
    lock_time: int
    invoice_settled_confirmation_threshold: int | None = None
