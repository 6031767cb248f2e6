import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.base import Base


class Loan(Base):
    __tablename__ = "loans"
    __allow_unmapped__ = True
    __table_args__ = (
        CheckConstraint("ltv >= 0.5 AND ltv <= 0.8", name="ck_loan_ltv_range"),
        CheckConstraint("term_days >= 7 AND term_days <= 365", name="ck_loan_term_range"),
        CheckConstraint(
            "interest_rate >= 0 AND interest_rate <= 1", name="ck_loan_interest_rate_range"
        ),
        CheckConstraint("collateral_value >= 0", name="ck_loan_collateral_value_nonneg"),
        CheckConstraint("collateral_quantity >= 0", name="ck_loan_collateral_quantity_nonneg"),
        CheckConstraint("principal >= 0", name="ck_loan_principal_nonneg"),
        CheckConstraint("origination_fee >= 0", name="ck_loan_origination_fee_nonneg"),
        CheckConstraint("processing_fee >= 0", name="ck_loan_processing_fee_nonneg"),
        CheckConstraint("interest_amount >= 0", name="ck_loan_interest_nonneg"),
        CheckConstraint("total_due >= 0", name="ck_loan_total_due_nonneg"),
        CheckConstraint("amount_paid >= 0", name="ck_loan_amount_paid_nonneg"),
        CheckConstraint("outstanding_balance >= 0", name="ck_loan_outstanding_nonneg"),
        CheckConstraint("version >= 1", name="ck_loan_version_positive"),
        CheckConstraint(
            "status IN ('DRAFT', 'PENDING', 'APPROVED', 'ACTIVE', 'REPAID', "
            "'DEFAULTED', 'LIQUIDATION', 'CANCELLED')",
            name="ck_loan_status",
        ),
        Index("ix_loans_farmer_status", "farmer_id", "status"),
        Index("ix_loans_status_due_at", "status", "due_at"),
        Index(
            "uq_loans_active_produce",
            "produce_id",
            unique=True,
            postgresql_where=text("status = 'ACTIVE'"),
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    farmer_id = Column(
        UUID(as_uuid=True), ForeignKey("farmers.id", ondelete="CASCADE"), nullable=False
    )
    produce_id = Column(
        UUID(as_uuid=True),
        ForeignKey("produce.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    collateral_value = Column(Numeric(18, 2), nullable=False)
    collateral_quantity = Column(Numeric(18, 3), nullable=False)

    principal = Column(Numeric(18, 2), nullable=False)
    ltv = Column(Numeric(5, 4), nullable=False, default=0.6)
    term_days = Column(Integer, nullable=False, default=60)
    interest_rate = Column(Numeric(8, 6), nullable=False, default=0.18)

    origination_fee = Column(Numeric(18, 2), nullable=False, default=0)
    processing_fee = Column(Numeric(18, 2), nullable=False, default=0)
    total_fees = Column(Numeric(18, 2), nullable=False, default=0)
    interest_amount = Column(Numeric(18, 2), nullable=False, default=0)
    total_due = Column(Numeric(18, 2), nullable=False, default=0)
    net_disbursement = Column(Numeric(18, 2), nullable=False, default=0)

    status = Column(String(20), nullable=False, default="PENDING", index=True)
    applied_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    approved_at = Column(DateTime(timezone=True), nullable=True)
    approved_by = Column(UUID(as_uuid=True), nullable=True)
    disbursed_at = Column(DateTime(timezone=True), nullable=True)
    due_at = Column(DateTime(timezone=True), nullable=True)
    repaid_at = Column(DateTime(timezone=True), nullable=True)
    defaulted_at = Column(DateTime(timezone=True), nullable=True)

    amount_paid = Column(Numeric(18, 2), nullable=False, default=0)
    outstanding_balance = Column(Numeric(18, 2), nullable=False, default=0)

    margin_call_triggered = Column(Boolean, nullable=False, default=False)
    margin_call_date = Column(DateTime(timezone=True), nullable=True)
    revaluation_date = Column(DateTime(timezone=True), nullable=True)
    current_collateral_value = Column(Numeric(18, 2), nullable=True)

    purpose = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)
    rejection_reason = Column(Text, nullable=True)

    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    payments = relationship(
        "LoanPayment",
        back_populates="loan",
        order_by="LoanPayment.paid_at",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version}
