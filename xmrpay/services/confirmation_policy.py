"""
Confirmation policy.

Decides how many confirmations a payment needs before it is settled.
"""

from xmrpay.config.constants import (
    DEFAULT_REQUIRED_CONFIRMATIONS,
    SPEED_POLICY_CONFIRMATIONS,
)
from xmrpay.models import MoneroLikePaymentData, PaymentStatus


def confirmations_required(
    lock_time: int,
    confirmations: int,
    threshold_override: int | None,
    speed_policy: str | None,
) -> int:
    """
    Required confirmations for a payment.

    Rules, first match wins:
    1. A transfer still inside its lock time needs the remaining blocks
       (lock_time - confirmations), whatever the invoice says.
    2. An invoice specific threshold override.
    3. The speed policy table; unknown policies need 6.

    Args:
        lock_time: Unlock time of the transfer, in blocks
        confirmations: Confirmations observed so far
        threshold_override: Invoice specific threshold, if any
        speed_policy: Invoice speed policy

    Returns:
        Number of confirmations required
    """
    if confirmations < lock_time:
        return lock_time - confirmations
    if threshold_override is not None:
        return threshold_override
    return SPEED_POLICY_CONFIRMATIONS.get(
        str(speed_policy) if speed_policy is not None else "",
        DEFAULT_REQUIRED_CONFIRMATIONS,
    )


def is_settled(
    lock_time: int,
    confirmations: int,
    threshold_override: int | None,
    speed_policy: str | None,
) -> bool:
    """
    Whether a payment has enough confirmations.

    A transfer is never settled before its lock time has passed. This is
    stricter than comparing against confirmations_required() alone: with
    lock_time=10 and 6 confirmations the remaining-blocks rule asks for 4,
    which 6 would satisfy, yet the funds cannot be spent for 4 more blocks.
    """
    if confirmations < lock_time:
        return False
    return confirmations >= confirmations_required(
        lock_time, confirmations, threshold_override, speed_policy
    )


def payment_status(details: MoneroLikePaymentData, speed_policy: str | None) -> PaymentStatus:
    """Status of a payment given its recorded details."""
    settled = is_settled(
        details.lock_time,
        details.confirmation_count,
        details.invoice_settled_confirmation_threshold,
        speed_policy,
    )
    return PaymentStatus.SETTLED if settled else PaymentStatus.PROCESSING
