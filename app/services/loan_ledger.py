from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError

from app.models.loan import Loan
from app.models.loan_payment import LoanPayment
from app.schemas.loan import LoanRepaymentRequest, LoanStatsSummary, LoanStatus
from app.services import collateral_pledges, loan_terms
from app.services.audit import model_snapshot, record_audit_log
from app.services.collateral import ZERO, round_money
from app.services.loan_errors import (
    CollateralConflictError,
    ConcurrentUpdateError,
    LoanEngineError,
    LoanValidationError,
    invalid_transition,
    loan_not_found,
)
from app.services.notifications import (
    LoanEventType,
    NotificationGateway,
    build_event,
    dispatch,
)

logger = logging.getLogger(__name__)

DEFAULT_REJECTION_REASON = "Application did not meet approval criteria"


def _as_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass
class RepaymentOutcome:
    loan: Loan
    payment: LoanPayment | None
    outstanding_balance: Decimal
    fully_repaid: bool
    duplicate: bool = False


def _loan_query():
    return select(Loan).options(selectinload(Loan.payments))


async def lock_loan(db: AsyncSession, loan_id) -> Loan:
    stmt = (
        _loan_query()
        .where(Loan.id == loan_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    loan = (await db.execute(stmt)).scalar_one_or_none()
    if loan is None:
        raise loan_not_found(loan_id)
    return loan


async def commit_loan(db: AsyncSession, loan: Loan) -> None:
    try:
        await db.commit()
    except StaleDataError as exc:
        await db.rollback()
        raise ConcurrentUpdateError(
            code="concurrent_update",
            message="Loan was modified by another request",
            details={"loan_id": str(loan.id)},
        ) from exc
    except IntegrityError as exc:
        await db.rollback()
        if "uq_loans_active_produce" in str(exc.orig):
            raise CollateralConflictError(
                code="collateral_conflict",
                message="Produce already secures another active loan",
                details={"loan_id": str(loan.id), "produce_id": str(loan.produce_id)},
            ) from exc
        raise ConcurrentUpdateError(
            code="concurrent_update",
            message="Loan update conflicted with another request",
            details={"loan_id": str(loan.id)},
        ) from exc


async def approve_loan(
    db: AsyncSession,
    loan_id,
    approver_id,
    *,
    notifier: NotificationGateway | None = None,
    now: datetime | None = None,
) -> Loan:
    loan = await lock_loan(db, loan_id)
    if loan.status != LoanStatus.PENDING.value:
        raise invalid_transition(loan, "approve")

    approved_at = now or datetime.now(timezone.utc)
    # Pledge first: a conflict must leave the loan untouched.
    await collateral_pledges.pledge(
        db,
        produce_id=loan.produce_id,
        loan_id=loan.id,
        quantity=loan.collateral_quantity,
        collateral_value=loan.collateral_value,
        pledged_at=approved_at,
    )

    old_snapshot = model_snapshot(loan)
    loan.status = LoanStatus.ACTIVE.value
    loan.approved_at = approved_at
    loan.approved_by = approver_id
    loan.disbursed_at = approved_at
    loan.due_at = loan_terms.compute_due_date(approved_at, loan.term_days)
    loan_terms.recompute_derived(loan)
    db.add(loan)
    record_audit_log(
        db,
        actor_id=approver_id,
        action="loan.approved",
        resource_type="loan",
        resource_id=str(loan.id),
        old_value=old_snapshot,
        new_value=model_snapshot(loan),
    )
    await commit_loan(db, loan)
    logger.info("Loan approved", extra={"loan_id": str(loan.id), "due_at": str(loan.due_at)})

    await dispatch(notifier, build_event(LoanEventType.APPROVED, loan))
    return loan


async def reject_loan(
    db: AsyncSession,
    loan_id,
    approver_id,
    reason: str | None = None,
    *,
    notifier: NotificationGateway | None = None,
    now: datetime | None = None,
) -> Loan:
    loan = await lock_loan(db, loan_id)
    if loan.status != LoanStatus.PENDING.value:
        raise invalid_transition(loan, "reject")

    old_snapshot = model_snapshot(loan)
    loan.status = LoanStatus.CANCELLED.value
    loan.rejection_reason = (reason or "").strip() or DEFAULT_REJECTION_REASON
    loan.approved_by = approver_id
    loan.approved_at = now or datetime.now(timezone.utc)
    db.add(loan)
    record_audit_log(
        db,
        actor_id=approver_id,
        action="loan.rejected",
        resource_type="loan",
        resource_id=str(loan.id),
        old_value=old_snapshot,
        new_value=model_snapshot(loan),
    )
    await commit_loan(db, loan)
    logger.info("Loan rejected", extra={"loan_id": str(loan.id)})

    await dispatch(notifier, build_event(LoanEventType.REJECTED, loan))
    return loan


async def repay_loan(
    db: AsyncSession,
    loan_id,
    payload: LoanRepaymentRequest,
    *,
    recorded_by=None,
    notifier: NotificationGateway | None = None,
    now: datetime | None = None,
) -> RepaymentOutcome:
    amount = _as_decimal(payload.amount)
    if amount <= 0:
        raise LoanValidationError(
            code="invalid_amount",
            message="Payment amount must be greater than zero",
            details={"amount": str(payload.amount)},
        )
    amount = round_money(amount)
    if amount <= 0:
        raise LoanValidationError(
            code="invalid_amount",
            message="Payment amount must be at least 0.01",
            details={"amount": str(payload.amount)},
        )

    loan = await lock_loan(db, loan_id)

    if payload.reference:
        existing = next(
            (payment for payment in loan.payments if payment.reference == payload.reference),
            None,
        )
        if existing is not None:
            logger.info(
                "Duplicate payment reference ignored",
                extra={"loan_id": str(loan.id), "reference": payload.reference},
            )
            return RepaymentOutcome(
                loan=loan,
                payment=existing,
                outstanding_balance=_as_decimal(loan.outstanding_balance),
                fully_repaid=loan.status == LoanStatus.REPAID.value,
                duplicate=True,
            )

    if loan.status != LoanStatus.ACTIVE.value:
        raise invalid_transition(loan, "repay")

    old_snapshot = model_snapshot(loan)
    paid_at = now or datetime.now(timezone.utc)
    payment = LoanPayment(
        id=uuid.uuid4(),
        loan_id=loan.id,
        amount=amount,
        paid_at=paid_at,
        method=payload.method,
        reference=payload.reference,
        note=payload.note,
        recorded_by=recorded_by,
    )
    loan.payments.append(payment)
    loan_terms.recompute_derived(loan)

    fully_repaid = loan.outstanding_balance <= ZERO
    if fully_repaid:
        loan.status = LoanStatus.REPAID.value
        loan.repaid_at = paid_at
        try:
            await collateral_pledges.release(db, produce_id=loan.produce_id, loan_id=loan.id)
        except LoanEngineError:
            await db.rollback()
            raise

    db.add(payment)
    db.add(loan)
    record_audit_log(
        db,
        actor_id=recorded_by,
        action="loan_payment.recorded",
        resource_type="loan_payment",
        resource_id=str(payment.id),
        old_value=None,
        new_value=model_snapshot(payment),
    )
    if fully_repaid:
        record_audit_log(
            db,
            actor_id=recorded_by,
            action="loan.repaid",
            resource_type="loan",
            resource_id=str(loan.id),
            old_value=old_snapshot,
            new_value=model_snapshot(loan),
        )
    await commit_loan(db, loan)
    logger.info(
        "Loan payment recorded",
        extra={
            "loan_id": str(loan.id),
            "amount": str(amount),
            "outstanding_balance": str(loan.outstanding_balance),
        },
    )

    await dispatch(notifier, build_event(LoanEventType.PAYMENT_RECEIVED, loan, payment))
    if fully_repaid:
        await dispatch(notifier, build_event(LoanEventType.FULLY_REPAID, loan))

    return RepaymentOutcome(
        loan=loan,
        payment=payment,
        outstanding_balance=_as_decimal(loan.outstanding_balance),
        fully_repaid=fully_repaid,
    )


async def get_loan(db: AsyncSession, loan_id) -> Loan:
    loan = (await db.execute(_loan_query().where(Loan.id == loan_id))).scalar_one_or_none()
    if loan is None:
        raise loan_not_found(loan_id)
    return loan


async def list_loans_for_farmer(db: AsyncSession, farmer_id) -> list[Loan]:
    stmt = _loan_query().where(Loan.farmer_id == farmer_id).order_by(Loan.applied_at.desc())
    return list((await db.execute(stmt)).scalars().all())


async def list_pending_loans(db: AsyncSession) -> list[Loan]:
    stmt = (
        _loan_query()
        .where(Loan.status == LoanStatus.PENDING.value)
        .order_by(Loan.applied_at.desc())
    )
    return list((await db.execute(stmt)).scalars().all())


async def list_active_loans(db: AsyncSession) -> list[Loan]:
    stmt = (
        _loan_query()
        .where(Loan.status == LoanStatus.ACTIVE.value)
        .order_by(Loan.due_at.asc())
    )
    return list((await db.execute(stmt)).scalars().all())


async def build_stats_summary(db: AsyncSession) -> LoanStatsSummary:
    status_stmt = select(Loan.status, func.count()).group_by(Loan.status)
    status_rows = (await db.execute(status_stmt)).all()
    status_counts = {row[0]: int(row[1]) for row in status_rows}

    totals_stmt = select(
        func.coalesce(
            func.sum(Loan.principal).filter(
                Loan.status.in_([LoanStatus.ACTIVE.value, LoanStatus.REPAID.value])
            ),
            0,
        ),
        func.coalesce(
            func.sum(Loan.amount_paid).filter(Loan.status == LoanStatus.REPAID.value), 0
        ),
        func.coalesce(
            func.sum(Loan.outstanding_balance).filter(Loan.status == LoanStatus.ACTIVE.value), 0
        ),
    )
    row = (await db.execute(totals_stmt)).first()
    disbursed, repaid, outstanding = row if row else (0, 0, 0)

    return LoanStatsSummary(
        total_loans=sum(status_counts.values()),
        pending_loans=status_counts.get(LoanStatus.PENDING.value, 0),
        active_loans=status_counts.get(LoanStatus.ACTIVE.value, 0),
        repaid_loans=status_counts.get(LoanStatus.REPAID.value, 0),
        defaulted_loans=status_counts.get(LoanStatus.DEFAULTED.value, 0),
        total_disbursed=round_money(disbursed),
        total_repaid=round_money(repaid),
        total_outstanding=round_money(outstanding),
    )
