"""Billing store schema: businesses, invoices, payout log, event ledger.

Revision ID: 001
Revises:
Create Date: 2026-10-18 00:00:00.000000+00:00

"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "businesses",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("company_name", sa.String(256), nullable=True),
        sa.Column("brand", sa.String(256), nullable=True),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("contact_email", sa.String(320), nullable=True),
        sa.Column("subscription_id", sa.String(256), nullable=True),
        sa.Column("subscription_status", sa.String(32), nullable=True),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_businesses_subscription", "businesses", ["subscription_id"])

    op.create_table(
        "invoices",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("business_id", sa.String(64), nullable=True),
        sa.Column("stripe_invoice_id", sa.String(256), nullable=True),
        sa.Column("invoice_number", sa.String(128), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="draft"),
        sa.Column("amount_due", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("paid_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("currency", sa.String(3), nullable=False, server_default="eur"),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("stripe_payment_intent_id", sa.String(256), nullable=True),
        sa.Column("business_name", sa.String(256), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("stripe_invoice_id", name="uq_invoices_stripe_invoice_id"),
    )
    op.create_index("ix_invoices_invoice_number", "invoices", ["invoice_number"])
    op.create_index("ix_invoices_business", "invoices", ["business_id"])

    op.create_table(
        "payout_records",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("payout_id", sa.String(256), nullable=False),
        sa.Column("stripe_event_id", sa.String(256), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("arrival_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failure_code", sa.String(128), nullable=True),
        sa.Column("failure_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("stripe_event_id", name="uq_payout_records_event"),
    )
    op.create_index("ix_payout_records_payout", "payout_records", ["payout_id"])

    op.create_table(
        "processed_events",
        sa.Column("event_id", sa.String(256), primary_key=True),
        sa.Column("event_type", sa.String(128), nullable=False),
        sa.Column("outcome", sa.String(32), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_processed_events_type", "processed_events", ["event_type"])


def downgrade() -> None:
    op.drop_index("ix_processed_events_type", table_name="processed_events")
    op.drop_table("processed_events")
    op.drop_index("ix_payout_records_payout", table_name="payout_records")
    op.drop_table("payout_records")
    op.drop_index("ix_invoices_business", table_name="invoices")
    op.drop_index("ix_invoices_invoice_number", table_name="invoices")
    op.drop_table("invoices")
    op.drop_index("ix_businesses_subscription", table_name="businesses")
    op.drop_table("businesses")
