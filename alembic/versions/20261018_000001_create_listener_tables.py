"""Create invoice, payment prompt and payment tables.

Revision ID: 20261018_000001
Revises:
Create Date: 2026-10-18

Payments are keyed by {txId}#{accountIndex}#{addressIndex} plus the
payment method, so re-observing a transfer updates its row.
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261018_000001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create listener tables."""
    op.create_table(
        "invoices",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),  # new, processing, settled, ...
        sa.Column("speed_policy", sa.String(length=20), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_invoices_status", "invoices", ["status"])

    op.create_table(
        "payment_prompts",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("invoice_id", sa.String(length=64), nullable=False),
        sa.Column("payment_method_id", sa.String(length=32), nullable=False),  # e.g. XMR-CHAIN
        sa.Column("currency", sa.String(length=16), nullable=False),
        sa.Column("destination", sa.String(length=128), nullable=False),
        sa.Column("activated", sa.Boolean(), nullable=False),
        sa.Column("activated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("due", sa.DECIMAL(precision=24, scale=12), nullable=False),
        sa.Column("details", sa.JSON(), nullable=False),  # account and address index
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("invoice_id", "payment_method_id", name="uq_prompt_invoice_method"),
    )
    op.create_index("ix_payment_prompts_invoice_id", "payment_prompts", ["invoice_id"])
    op.create_index("ix_payment_prompts_destination", "payment_prompts", ["destination"])

    op.create_table(
        "payments",
        sa.Column("id", sa.String(length=200), nullable=False),
        sa.Column("payment_method_id", sa.String(length=32), nullable=False),
        sa.Column("invoice_id", sa.String(length=64), nullable=False),
        sa.Column("amount", sa.DECIMAL(precision=24, scale=12), nullable=False),
        sa.Column("currency", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),  # Processing, Settled
        sa.Column("destination", sa.String(length=128), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("details", sa.JSON(), nullable=False),  # ledger facts of the transfer
        sa.Column("related_tx_ids", sa.JSON(), nullable=False),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id", "payment_method_id"),
    )
    op.create_index("ix_payments_invoice_id", "payments", ["invoice_id"])
    op.create_index("ix_payments_destination", "payments", ["destination"])


def downgrade() -> None:
    """Drop listener tables."""
    op.drop_index("ix_payments_destination", table_name="payments")
    op.drop_index("ix_payments_invoice_id", table_name="payments")
    op.drop_table("payments")

    op.drop_index("ix_payment_prompts_destination", table_name="payment_prompts")
    op.drop_index("ix_payment_prompts_invoice_id", table_name="payment_prompts")
    op.drop_table("payment_prompts")

    op.drop_index("ix_invoices_status", table_name="invoices")
    op.drop_table("invoices")
