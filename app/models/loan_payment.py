import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.base import Base


class LoanPayment(Base):
    __tablename__ = "loan_payments"
    __allow_unmapped__ = True
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_loan_payment_amount_positive"),
        CheckConstraint(
            "method IN ('CASH', 'MOBILE_MONEY', 'BANK_TRANSFER', 'CARD', 'OTHER')",
            name="ck_loan_payment_method",
        ),
        UniqueConstraint("loan_id", "reference", name="uq_loan_payment_reference"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    loan_id = Column(
        UUID(as_uuid=True),
        ForeignKey("loans.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    amount = Column(Numeric(18, 2), nullable=False)
    paid_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    method = Column(String(20), nullable=False, default="MOBILE_MONEY")
    reference = Column(String(100), nullable=True)
    note = Column(Text, nullable=True)
    recorded_by = Column(UUID(as_uuid=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    loan = relationship("Loan", back_populates="payments")
