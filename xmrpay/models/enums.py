"""
Enum definitions for database models.

Values are stored as strings.
"""

from enum import StrEnum


class SpeedPolicy(StrEnum):
    """Invoice preference trading settlement speed against double-spend risk."""

    HIGH_SPEED = "HighSpeed"
    MEDIUM_SPEED = "MediumSpeed"
    LOW_MEDIUM_SPEED = "LowMediumSpeed"
    LOW_SPEED = "LowSpeed"


class PaymentStatus(StrEnum):
    """Confirmation status of a recorded payment."""

    PROCESSING = "Processing"
    SETTLED = "Settled"


class InvoiceStatus(StrEnum):
    """Invoice lifecycle status (owned by the invoice store)."""

    NEW = "new"
    PROCESSING = "processing"
    SETTLED = "settled"
    EXPIRED = "expired"
    INVALID = "invalid"


# Invoices in these states are watched for incoming transfers
MONITORED_INVOICE_STATUSES = (InvoiceStatus.NEW, InvoiceStatus.PROCESSING)
