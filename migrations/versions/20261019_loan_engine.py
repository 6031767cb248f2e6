"""farmers, produce, loans, loan payments and audit logs

Revision ID: 20261019_loan_engine
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "20261019_loan_engine"
down_revision = None
branch_labels = None
depends_on = None


LOAN_STATUSES = (
    "'DRAFT', 'PENDING', 'APPROVED', 'ACTIVE', 'REPAID', 'DEFAULTED', 'LIQUIDATION', 'CANCELLED'"
)
PAYMENT_METHODS = "'CASH', 'MOBILE_MONEY', 'BANK_TRANSFER', 'CARD', 'OTHER'"


def upgrade() -> None:
    op.create_table(
        "farmers",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=50), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_farmers_email", "farmers", ["email"])

    op.create_table(
        "produce",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("farmer_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("produce_type", sa.String(length=100), nullable=False),
        sa.Column("quantity", sa.Numeric(18, 3), nullable=False, server_default="0"),
        sa.Column("current_market_price", sa.Numeric(18, 2), nullable=True),
        sa.Column("condition", sa.String(length=50), nullable=True),
        sa.Column("status", sa.String(length=50), nullable=True),
        sa.Column("sold", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_pledged", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("pledged_to_loan_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("pledged_quantity", sa.Numeric(18, 3), nullable=True),
        sa.Column("pledged_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("collateral_value", sa.Numeric(18, 2), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("quantity >= 0", name="ck_produce_quantity_nonneg"),
        sa.CheckConstraint("pledged_quantity >= 0", name="ck_produce_pledged_quantity_nonneg"),
        sa.CheckConstraint(
            "(is_pledged = false) OR (pledged_to_loan_id IS NOT NULL)",
            name="ck_produce_pledge_has_loan",
        ),
        sa.CheckConstraint("version >= 1", name="ck_produce_version_positive"),
        sa.ForeignKeyConstraint(["farmer_id"], ["farmers.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_produce_farmer_id", "produce", ["farmer_id"])
    op.create_index("ix_produce_pledged_to_loan_id", "produce", ["pledged_to_loan_id"])

    op.create_table(
        "loans",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("farmer_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("produce_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("collateral_value", sa.Numeric(18, 2), nullable=False),
        sa.Column("collateral_quantity", sa.Numeric(18, 3), nullable=False),
        sa.Column("principal", sa.Numeric(18, 2), nullable=False),
        sa.Column("ltv", sa.Numeric(5, 4), nullable=False, server_default="0.6"),
        sa.Column("term_days", sa.Integer(), nullable=False, server_default="60"),
        sa.Column("interest_rate", sa.Numeric(8, 6), nullable=False, server_default="0.18"),
        sa.Column("origination_fee", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("processing_fee", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("total_fees", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("interest_amount", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("total_due", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("net_disbursement", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="PENDING"),
        sa.Column("applied_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("disbursed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("due_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("repaid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("defaulted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("amount_paid", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("outstanding_balance", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("margin_call_triggered", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("margin_call_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revaluation_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("current_collateral_value", sa.Numeric(18, 2), nullable=True),
        sa.Column("purpose", sa.String(length=255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("ltv >= 0.5 AND ltv <= 0.8", name="ck_loan_ltv_range"),
        sa.CheckConstraint("term_days >= 7 AND term_days <= 365", name="ck_loan_term_range"),
        sa.CheckConstraint("interest_rate >= 0 AND interest_rate <= 1", name="ck_loan_interest_rate_range"),
        sa.CheckConstraint("collateral_value >= 0", name="ck_loan_collateral_value_nonneg"),
        sa.CheckConstraint("collateral_quantity >= 0", name="ck_loan_collateral_quantity_nonneg"),
        sa.CheckConstraint("principal >= 0", name="ck_loan_principal_nonneg"),
        sa.CheckConstraint("origination_fee >= 0", name="ck_loan_origination_fee_nonneg"),
        sa.CheckConstraint("processing_fee >= 0", name="ck_loan_processing_fee_nonneg"),
        sa.CheckConstraint("interest_amount >= 0", name="ck_loan_interest_nonneg"),
        sa.CheckConstraint("total_due >= 0", name="ck_loan_total_due_nonneg"),
        sa.CheckConstraint("amount_paid >= 0", name="ck_loan_amount_paid_nonneg"),
        sa.CheckConstraint("outstanding_balance >= 0", name="ck_loan_outstanding_nonneg"),
        sa.CheckConstraint("version >= 1", name="ck_loan_version_positive"),
        sa.CheckConstraint(f"status IN ({LOAN_STATUSES})", name="ck_loan_status"),
        sa.ForeignKeyConstraint(["farmer_id"], ["farmers.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["produce_id"], ["produce.id"], ondelete="RESTRICT"),
    )
    op.create_index("ix_loans_status", "loans", ["status"])
    op.create_index("ix_loans_produce_id", "loans", ["produce_id"])
    op.create_index("ix_loans_farmer_status", "loans", ["farmer_id", "status"])
    op.create_index("ix_loans_status_due_at", "loans", ["status", "due_at"])
    op.create_index(
        "uq_loans_active_produce",
        "loans",
        ["produce_id"],
        unique=True,
        postgresql_where=sa.text("status = 'ACTIVE'"),
    )

    op.create_foreign_key(
        "fk_produce_pledged_to_loan",
        "produce",
        "loans",
        ["pledged_to_loan_id"],
        ["id"],
        ondelete="SET NULL",
    )

    op.create_table(
        "loan_payments",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("loan_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("paid_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("method", sa.String(length=20), nullable=False, server_default="MOBILE_MONEY"),
        sa.Column("reference", sa.String(length=100), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("recorded_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("amount > 0", name="ck_loan_payment_amount_positive"),
        sa.CheckConstraint(f"method IN ({PAYMENT_METHODS})", name="ck_loan_payment_method"),
        sa.UniqueConstraint("loan_id", "reference", name="uq_loan_payment_reference"),
        sa.ForeignKeyConstraint(["loan_id"], ["loans.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_loan_payments_loan_id", "loan_payments", ["loan_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("actor_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("resource_type", sa.String(length=255), nullable=False),
        sa.Column("resource_id", sa.String(length=255), nullable=False),
        sa.Column("old_value", sa.JSON(), nullable=True),
        sa.Column("new_value", sa.JSON(), nullable=True),
        sa.Column("changes", sa.JSON(), nullable=True),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_resource_id", "audit_logs", ["resource_id"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_resource_id", table_name="audit_logs")
    op.drop_index("ix_audit_logs_action", table_name="audit_logs")
    op.drop_table("audit_logs")

    op.drop_index("ix_loan_payments_loan_id", table_name="loan_payments")
    op.drop_table("loan_payments")

    op.drop_constraint("fk_produce_pledged_to_loan", "produce", type_="foreignkey")

    op.drop_index("uq_loans_active_produce", table_name="loans")
    op.drop_index("ix_loans_status_due_at", table_name="loans")
    op.drop_index("ix_loans_farmer_status", table_name="loans")
    op.drop_index("ix_loans_produce_id", table_name="loans")
    op.drop_index("ix_loans_status", table_name="loans")
    op.drop_table("loans")

    op.drop_index("ix_produce_pledged_to_loan_id", table_name="produce")
    op.drop_index("ix_produce_farmer_id", table_name="produce")
    op.drop_table("produce")

    op.drop_index("ix_farmers_email", table_name="farmers")
    op.drop_table("farmers")
