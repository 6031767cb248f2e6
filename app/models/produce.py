import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    func,
)
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base


class Produce(Base):
    __tablename__ = "produce"
    __allow_unmapped__ = True
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_produce_quantity_nonneg"),
        CheckConstraint("pledged_quantity >= 0", name="ck_produce_pledged_quantity_nonneg"),
        CheckConstraint(
            "(is_pledged = false) OR (pledged_to_loan_id IS NOT NULL)",
            name="ck_produce_pledge_has_loan",
        ),
        CheckConstraint("version >= 1", name="ck_produce_version_positive"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    farmer_id = Column(
        UUID(as_uuid=True),
        ForeignKey("farmers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    produce_type = Column(String(100), nullable=False)
    quantity = Column(Numeric(18, 3), nullable=False, default=0)
    current_market_price = Column(Numeric(18, 2), nullable=True)
    condition = Column(String(50), nullable=True)
    status = Column(String(50), nullable=True)
    sold = Column(Boolean, nullable=False, default=False)

    # Pledge fields are owned by the loan engine.
    is_pledged = Column(Boolean, nullable=False, default=False)
    pledged_to_loan_id = Column(
        UUID(as_uuid=True),
        ForeignKey(
            "loans.id",
            ondelete="SET NULL",
            use_alter=True,
            name="fk_produce_pledged_to_loan",
        ),
        nullable=True,
        index=True,
    )
    pledged_quantity = Column(Numeric(18, 3), nullable=True)
    pledged_at = Column(DateTime(timezone=True), nullable=True)
    collateral_value = Column(Numeric(18, 2), nullable=True)

    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __mapper_args__ = {"version_id_col": version}
