import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.limiter import limiter
from app.core.settings import settings
from app.db.session import get_db
from app.schemas.loan import (
    LoanApplyRequest,
    LoanApplyResponse,
    LoanDTO,
    LoanPaymentDTO,
    LoanQuoteRequest,
    LoanRejectRequest,
    LoanRepaymentRequest,
    LoanRepaymentResponse,
    LoanRevalueRequest,
    LoanStatsSummary,
    LoanTermsOut,
    MarginCallCheckResponse,
)
from app.services import loan_ledger, loan_originator, revaluation
from app.services.notifications import NotificationGateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/loans", tags=["loans"])


def _terms_out(terms, due_at=None) -> LoanTermsOut:
    return LoanTermsOut.model_validate(terms).model_copy(update={"due_at": due_at})


@router.post("/quote", response_model=LoanTermsOut, summary="Preview loan terms for a produce lot")
async def quote_loan(payload: LoanQuoteRequest) -> LoanTermsOut:
    quote = loan_originator.quote_terms(payload)
    return _terms_out(quote.terms, quote.due_at)


@router.post(
    "/apply",
    response_model=LoanApplyResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Apply for a produce-collateralized loan",
)
@limiter.limit(lambda: f"{settings.rate_limit_per_minute}/minute")
async def apply_for_loan(
    payload: LoanApplyRequest,
    request: Request,
    response: Response,
    actor_id: UUID | None = Depends(deps.get_actor_id),
    notifier: NotificationGateway = Depends(deps.get_notifier),
    db: AsyncSession = Depends(get_db),
) -> LoanApplyResponse:
    outcome = await loan_originator.apply_for_loan(
        db, payload, notifier=notifier, actor_id=actor_id or payload.farmer_id
    )
    if not outcome.created:
        response.status_code = status.HTTP_200_OK
        return LoanApplyResponse(eligible=False, reasons=outcome.eligibility.reasons)
    return LoanApplyResponse(
        eligible=True,
        loan=LoanDTO.model_validate(outcome.loan),
        summary=_terms_out(outcome.terms),
    )


@router.get("/pending", response_model=list[LoanDTO], summary="List loans awaiting approval")
async def list_pending_loans(db: AsyncSession = Depends(get_db)) -> list[LoanDTO]:
    loans = await loan_ledger.list_pending_loans(db)
    return [LoanDTO.model_validate(loan) for loan in loans]


@router.get("/active", response_model=list[LoanDTO], summary="List active loans by due date")
async def list_active_loans(db: AsyncSession = Depends(get_db)) -> list[LoanDTO]:
    loans = await loan_ledger.list_active_loans(db)
    return [LoanDTO.model_validate(loan) for loan in loans]


@router.get("/stats/summary", response_model=LoanStatsSummary, summary="Portfolio statistics")
async def loan_stats_summary(db: AsyncSession = Depends(get_db)) -> LoanStatsSummary:
    return await loan_ledger.build_stats_summary(db)


@router.get(
    "/farmer/{farmer_id}", response_model=list[LoanDTO], summary="List a farmer's loans"
)
async def list_farmer_loans(farmer_id: UUID, db: AsyncSession = Depends(get_db)) -> list[LoanDTO]:
    loans = await loan_ledger.list_loans_for_farmer(db, farmer_id)
    return [LoanDTO.model_validate(loan) for loan in loans]


@router.get("/{loan_id}", response_model=LoanDTO, summary="Get a loan")
async def get_loan(loan_id: UUID, db: AsyncSession = Depends(get_db)) -> LoanDTO:
    loan = await loan_ledger.get_loan(db, loan_id)
    return LoanDTO.model_validate(loan)


@router.patch("/{loan_id}/approve", response_model=LoanDTO, summary="Approve and disburse a loan")
async def approve_loan(
    loan_id: UUID,
    actor_id: UUID | None = Depends(deps.get_actor_id),
    notifier: NotificationGateway = Depends(deps.get_notifier),
    db: AsyncSession = Depends(get_db),
) -> LoanDTO:
    loan = await loan_ledger.approve_loan(db, loan_id, actor_id, notifier=notifier)
    return LoanDTO.model_validate(loan)


@router.patch("/{loan_id}/reject", response_model=LoanDTO, summary="Reject a pending loan")
async def reject_loan(
    loan_id: UUID,
    payload: LoanRejectRequest | None = None,
    actor_id: UUID | None = Depends(deps.get_actor_id),
    notifier: NotificationGateway = Depends(deps.get_notifier),
    db: AsyncSession = Depends(get_db),
) -> LoanDTO:
    reason = payload.reason if payload else None
    loan = await loan_ledger.reject_loan(db, loan_id, actor_id, reason, notifier=notifier)
    return LoanDTO.model_validate(loan)


@router.post(
    "/{loan_id}/repay", response_model=LoanRepaymentResponse, summary="Record a loan payment"
)
@limiter.limit(lambda: f"{settings.rate_limit_per_minute}/minute")
async def repay_loan(
    loan_id: UUID,
    payload: LoanRepaymentRequest,
    request: Request,
    actor_id: UUID | None = Depends(deps.get_actor_id),
    notifier: NotificationGateway = Depends(deps.get_notifier),
    db: AsyncSession = Depends(get_db),
) -> LoanRepaymentResponse:
    outcome = await loan_ledger.repay_loan(
        db, loan_id, payload, recorded_by=actor_id, notifier=notifier
    )
    return LoanRepaymentResponse(
        loan=LoanDTO.model_validate(outcome.loan),
        payment=LoanPaymentDTO.model_validate(outcome.payment) if outcome.payment else None,
        outstanding_balance=outcome.outstanding_balance,
        fully_repaid=outcome.fully_repaid,
        duplicate=outcome.duplicate,
    )


@router.post("/{loan_id}/revalue", response_model=LoanDTO, summary="Revalue loan collateral")
async def revalue_loan(
    loan_id: UUID,
    payload: LoanRevalueRequest | None = None,
    actor_id: UUID | None = Depends(deps.get_actor_id),
    db: AsyncSession = Depends(get_db),
) -> LoanDTO:
    if payload is not None and payload.collateral_value is not None:
        loan = await revaluation.revalue_loan(
            db, loan_id, payload.collateral_value, actor_id=actor_id
        )
    else:
        loan = await revaluation.revalue_from_market(db, loan_id, actor_id=actor_id)
    return LoanDTO.model_validate(loan)


@router.post(
    "/{loan_id}/margin-call/check",
    response_model=MarginCallCheckResponse,
    summary="Check a loan against the margin-call threshold",
)
async def check_margin_call(
    loan_id: UUID,
    actor_id: UUID | None = Depends(deps.get_actor_id),
    notifier: NotificationGateway = Depends(deps.get_notifier),
    db: AsyncSession = Depends(get_db),
) -> MarginCallCheckResponse:
    check = await revaluation.check_and_flag(db, loan_id, actor_id=actor_id, notifier=notifier)
    if check.newly_flagged:
        logger.info("Margin call flagged via API", extra={"loan_id": str(loan_id)})
    return MarginCallCheckResponse(
        triggered=check.triggered,
        newly_flagged=check.newly_flagged,
        current_ltv=check.current_ltv,
        loan=LoanDTO.model_validate(check.loan),
    )
