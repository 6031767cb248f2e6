from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, computed_field

from app.schemas.eligibility import EligibilityReason
from app.services import loan_terms


class LoanStatus(str, Enum):
    DRAFT = "DRAFT"
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    ACTIVE = "ACTIVE"
    REPAID = "REPAID"
    DEFAULTED = "DEFAULTED"
    LIQUIDATION = "LIQUIDATION"
    CANCELLED = "CANCELLED"


class PaymentMethod(str, Enum):
    CASH = "CASH"
    MOBILE_MONEY = "MOBILE_MONEY"
    BANK_TRANSFER = "BANK_TRANSFER"
    CARD = "CARD"
    OTHER = "OTHER"


class LoanQuoteRequest(BaseModel):
    quantity: Decimal = Field(ge=0)
    price_per_kg: Decimal = Field(ge=0)
    ltv: Decimal | None = None
    term_days: int | None = Field(default=None, ge=7, le=365)


class LoanApplyRequest(BaseModel):
    farmer_id: UUID
    produce_id: UUID
    requested_ltv: Decimal | None = None
    term_days: int | None = Field(default=None, ge=7, le=365)
    purpose: str | None = Field(default=None, max_length=255)
    notes: str | None = None


class LoanRejectRequest(BaseModel):
    reason: str | None = None


class LoanRepaymentRequest(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    # Non-positive amounts are rejected by the ledger with an engine error code.
    amount: Decimal
    method: PaymentMethod = PaymentMethod.MOBILE_MONEY
    reference: str | None = Field(default=None, max_length=100)
    note: str | None = None


class LoanRevalueRequest(BaseModel):
    collateral_value: Decimal | None = None


class LoanTermsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    collateral_value: Decimal
    ltv: Decimal
    principal: Decimal
    term_days: int
    interest_rate: Decimal
    interest_amount: Decimal
    origination_fee: Decimal
    processing_fee: Decimal
    total_fees: Decimal
    total_due: Decimal
    net_disbursement: Decimal
    due_at: datetime | None = None


class LoanPaymentDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)

    id: UUID
    loan_id: UUID
    amount: Decimal
    paid_at: datetime | None = None
    method: PaymentMethod
    reference: str | None = None
    note: str | None = None
    recorded_by: UUID | None = None


class LoanDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)

    id: UUID
    farmer_id: UUID
    produce_id: UUID
    collateral_value: Decimal
    collateral_quantity: Decimal
    principal: Decimal
    ltv: Decimal
    term_days: int
    interest_rate: Decimal
    origination_fee: Decimal
    processing_fee: Decimal
    total_fees: Decimal
    interest_amount: Decimal
    total_due: Decimal
    net_disbursement: Decimal
    status: LoanStatus
    applied_at: datetime | None = None
    approved_at: datetime | None = None
    approved_by: UUID | None = None
    disbursed_at: datetime | None = None
    due_at: datetime | None = None
    repaid_at: datetime | None = None
    defaulted_at: datetime | None = None
    amount_paid: Decimal
    outstanding_balance: Decimal
    margin_call_triggered: bool = False
    margin_call_date: datetime | None = None
    revaluation_date: datetime | None = None
    current_collateral_value: Decimal | None = None
    purpose: str | None = None
    notes: str | None = None
    rejection_reason: str | None = None
    payments: list[LoanPaymentDTO] = Field(default_factory=list)

    @computed_field
    @property
    def days_until_due(self) -> int | None:
        return loan_terms.days_until_due(self)

    @computed_field
    @property
    def is_overdue(self) -> bool:
        return loan_terms.is_overdue(self)

    @computed_field
    @property
    def days_overdue(self) -> int:
        return loan_terms.days_overdue(self)

    @computed_field
    @property
    def current_ltv(self) -> Decimal:
        return loan_terms.current_ltv(self)


class LoanApplyResponse(BaseModel):
    eligible: bool
    reasons: list[EligibilityReason] = Field(default_factory=list)
    loan: LoanDTO | None = None
    summary: LoanTermsOut | None = None


class LoanRepaymentResponse(BaseModel):
    loan: LoanDTO
    payment: LoanPaymentDTO | None = None
    outstanding_balance: Decimal
    fully_repaid: bool
    duplicate: bool = False


class MarginCallCheckResponse(BaseModel):
    triggered: bool
    newly_flagged: bool
    current_ltv: Decimal | None = None
    loan: LoanDTO


class LoanStatsSummary(BaseModel):
    total_loans: int
    pending_loans: int
    active_loans: int
    repaid_loans: int
    defaulted_loans: int
    total_disbursed: Decimal
    total_repaid: Decimal
    total_outstanding: Decimal
