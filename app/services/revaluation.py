from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.settings import settings
from app.models.loan import Loan
from app.schemas.loan import LoanStatus
from app.services import inventory, loan_terms
from app.services.audit import model_snapshot, record_audit_log
from app.services.collateral import compute_collateral_value, round_money
from app.services.loan_errors import (
    LoanEngineError,
    LoanValidationError,
    invalid_transition,
)
from app.services.loan_ledger import commit_loan, lock_loan
from app.services.notifications import (
    LoanEventType,
    NotificationGateway,
    build_event,
    dispatch,
)

logger = logging.getLogger(__name__)


def _as_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass
class MarginCallCheck:
    loan: Loan
    triggered: bool
    newly_flagged: bool
    current_ltv: Decimal | None = None


@dataclass
class RevaluationSweepSummary:
    scanned: int = 0
    revalued: int = 0
    flagged: int = 0
    failed: int = 0


def _threshold(threshold) -> Decimal:
    return _as_decimal(threshold if threshold is not None else settings.margin_call_threshold)


def needs_margin_call(outstanding, current_value, threshold=None) -> bool:
    if current_value is None:
        return False
    current = _as_decimal(current_value)
    if current <= 0:
        return False
    return _as_decimal(outstanding or 0) / current > _threshold(threshold)


async def _lock_active(db: AsyncSession, loan_id) -> Loan:
    loan = await lock_loan(db, loan_id)
    if loan.status != LoanStatus.ACTIVE.value:
        raise invalid_transition(loan, "revalue")
    return loan


async def _apply_revaluation(
    db: AsyncSession, loan: Loan, value: Decimal, *, actor_id, now: datetime | None
) -> Loan:
    old_snapshot = model_snapshot(loan)
    loan.current_collateral_value = round_money(value)
    loan.revaluation_date = now or datetime.now(timezone.utc)
    loan_terms.recompute_derived(loan)
    db.add(loan)
    record_audit_log(
        db,
        actor_id=actor_id,
        action="loan.revalued",
        resource_type="loan",
        resource_id=str(loan.id),
        old_value=old_snapshot,
        new_value=model_snapshot(loan),
    )
    await commit_loan(db, loan)
    logger.info(
        "Loan collateral revalued",
        extra={"loan_id": str(loan.id), "current_collateral_value": str(value)},
    )
    return loan


async def revalue_loan(
    db: AsyncSession,
    loan_id,
    new_collateral_value,
    *,
    actor_id=None,
    now: datetime | None = None,
) -> Loan:
    value = _as_decimal(new_collateral_value)
    if value < 0:
        raise LoanValidationError(
            code="invalid_collateral_value",
            message="Collateral value cannot be negative",
            details={"collateral_value": str(new_collateral_value)},
        )
    loan = await _lock_active(db, loan_id)
    return await _apply_revaluation(db, loan, value, actor_id=actor_id, now=now)


async def revalue_from_market(
    db: AsyncSession,
    loan_id,
    *,
    actor_id=None,
    now: datetime | None = None,
) -> Loan:
    """Revalue an active loan at its pledged quantity times the produce's market price."""
    loan = await _lock_active(db, loan_id)
    produce = await inventory.get_produce(db, loan.produce_id)
    value = compute_collateral_value(loan.collateral_quantity, produce.current_market_price)
    return await _apply_revaluation(db, loan, value, actor_id=actor_id, now=now)


async def check_and_flag(
    db: AsyncSession,
    loan_id,
    threshold=None,
    *,
    actor_id=None,
    notifier: NotificationGateway | None = None,
    now: datetime | None = None,
) -> MarginCallCheck:
    loan = await lock_loan(db, loan_id)
    if loan.status != LoanStatus.ACTIVE.value:
        return MarginCallCheck(loan=loan, triggered=False, newly_flagged=False)

    current_ltv = (
        loan_terms.current_ltv(loan) if loan.current_collateral_value is not None else None
    )
    triggered = needs_margin_call(
        loan.outstanding_balance, loan.current_collateral_value, threshold
    )
    if not triggered or loan.margin_call_triggered:
        return MarginCallCheck(
            loan=loan, triggered=triggered, newly_flagged=False, current_ltv=current_ltv
        )

    old_snapshot = model_snapshot(loan)
    loan.margin_call_triggered = True
    loan.margin_call_date = now or datetime.now(timezone.utc)
    db.add(loan)
    record_audit_log(
        db,
        actor_id=actor_id,
        action="loan.margin_call",
        resource_type="loan",
        resource_id=str(loan.id),
        old_value=old_snapshot,
        new_value=model_snapshot(loan),
    )
    await commit_loan(db, loan)
    logger.warning(
        "Margin call triggered",
        extra={"loan_id": str(loan.id), "current_ltv": str(current_ltv)},
    )

    await dispatch(
        notifier,
        build_event(LoanEventType.MARGIN_CALL, loan, current_ltv=current_ltv),
    )
    return MarginCallCheck(loan=loan, triggered=True, newly_flagged=True, current_ltv=current_ltv)


async def sweep_active_loans(
    db: AsyncSession,
    threshold=None,
    *,
    notifier: NotificationGateway | None = None,
) -> RevaluationSweepSummary:
    summary = RevaluationSweepSummary()
    stmt = (
        select(Loan.id)
        .where(Loan.status == LoanStatus.ACTIVE.value)
        .order_by(Loan.due_at.asc())
    )
    loan_ids = list((await db.execute(stmt)).scalars().all())

    for loan_id in loan_ids:
        summary.scanned += 1
        try:
            await revalue_from_market(db, loan_id)
            summary.revalued += 1
            check = await check_and_flag(db, loan_id, threshold, notifier=notifier)
        except LoanEngineError as exc:
            summary.failed += 1
            logger.warning(
                "Skipping loan during revaluation sweep",
                extra={"loan_id": str(loan_id), "code": exc.code},
            )
            continue
        if check.newly_flagged:
            summary.flagged += 1

    logger.info(
        "Revaluation sweep finished",
        extra={
            "scanned": summary.scanned,
            "revalued": summary.revalued,
            "flagged": summary.flagged,
            "failed": summary.failed,
        },
    )
    return summary
