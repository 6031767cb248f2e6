from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.loan import Loan
from app.schemas.eligibility import EligibilityResult
from app.schemas.loan import LoanApplyRequest, LoanQuoteRequest, LoanStatus
from app.services import inventory, loan_terms
from app.services.audit import model_snapshot, record_audit_log
from app.services.collateral import ZERO, compute_collateral_value
from app.services.eligibility import EligibilityRules, check_eligibility
from app.services.loan_errors import LoanForbiddenError
from app.services.notifications import (
    LoanEventType,
    NotificationGateway,
    build_event,
    dispatch,
)

logger = logging.getLogger(__name__)

DEFAULT_PURPOSE = "Working capital"


@dataclass
class LoanQuote:
    terms: loan_terms.TermsSummary
    due_at: datetime


@dataclass
class LoanApplyOutcome:
    eligibility: EligibilityResult
    loan: Loan | None = None
    terms: loan_terms.TermsSummary | None = None

    @property
    def created(self) -> bool:
        return self.loan is not None


def quote_terms(
    payload: LoanQuoteRequest,
    *,
    policy: loan_terms.LoanPolicy | None = None,
    now: datetime | None = None,
) -> LoanQuote:
    """Preview the terms a lot would attract without persisting anything."""
    policy = policy or loan_terms.default_policy()
    term_days = payload.term_days or policy.default_term_days
    collateral_value = compute_collateral_value(payload.quantity, payload.price_per_kg)
    terms = loan_terms.compute_terms(
        collateral_value,
        payload.quantity,
        payload.ltv if payload.ltv is not None else policy.default_ltv,
        term_days,
        policy.annual_interest_rate,
        policy.origination_fee_rate,
        policy.processing_fee,
    )
    start = now or datetime.now(timezone.utc)
    return LoanQuote(terms=terms, due_at=loan_terms.compute_due_date(start, term_days))


async def apply_for_loan(
    db: AsyncSession,
    payload: LoanApplyRequest,
    *,
    policy: loan_terms.LoanPolicy | None = None,
    rules: EligibilityRules | None = None,
    notifier: NotificationGateway | None = None,
    actor_id=None,
) -> LoanApplyOutcome:
    policy = policy or loan_terms.default_policy()

    await inventory.get_farmer(db, payload.farmer_id)
    produce = await inventory.get_produce(db, payload.produce_id)
    if produce.farmer_id != payload.farmer_id:
        raise LoanForbiddenError(
            code="produce_not_owned",
            message="Produce does not belong to this farmer",
            details={"farmer_id": str(payload.farmer_id), "produce_id": str(payload.produce_id)},
        )

    eligibility = check_eligibility(produce, rules)
    if not eligibility.eligible:
        logger.info(
            "Loan application declined",
            extra={
                "farmer_id": str(payload.farmer_id),
                "produce_id": str(payload.produce_id),
                "reasons": [reason.code.value for reason in eligibility.reasons],
            },
        )
        return LoanApplyOutcome(eligibility=eligibility)

    quantity = Decimal(str(produce.quantity))
    term_days = payload.term_days or policy.default_term_days
    collateral_value = compute_collateral_value(quantity, produce.current_market_price)
    terms = loan_terms.compute_terms(
        collateral_value,
        quantity,
        payload.requested_ltv if payload.requested_ltv is not None else policy.default_ltv,
        term_days,
        policy.annual_interest_rate,
        policy.origination_fee_rate,
        policy.processing_fee,
    )

    loan = Loan(
        farmer_id=payload.farmer_id,
        produce_id=payload.produce_id,
        collateral_value=terms.collateral_value,
        collateral_quantity=quantity,
        principal=terms.principal,
        ltv=terms.ltv,
        term_days=terms.term_days,
        interest_rate=terms.interest_rate,
        origination_fee=terms.origination_fee,
        processing_fee=terms.processing_fee,
        total_fees=terms.total_fees,
        interest_amount=terms.interest_amount,
        total_due=terms.total_due,
        net_disbursement=terms.net_disbursement,
        amount_paid=ZERO,
        outstanding_balance=terms.total_due,
        status=LoanStatus.PENDING.value,
        applied_at=datetime.now(timezone.utc),
        margin_call_triggered=False,
        purpose=payload.purpose or DEFAULT_PURPOSE,
        notes=payload.notes,
    )
    loan.payments = []
    loan_terms.recompute_derived(loan)
    db.add(loan)
    await db.flush()

    record_audit_log(
        db,
        actor_id=actor_id,
        action="loan.applied",
        resource_type="loan",
        resource_id=str(loan.id),
        old_value=None,
        new_value=model_snapshot(loan),
    )
    await db.commit()
    logger.info(
        "Loan application received",
        extra={"loan_id": str(loan.id), "farmer_id": str(loan.farmer_id)},
    )

    await dispatch(notifier, build_event(LoanEventType.APPLICATION_RECEIVED, loan))
    return LoanApplyOutcome(eligibility=eligibility, loan=loan, terms=terms)
