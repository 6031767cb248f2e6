from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP

from app.core.settings import settings
from app.services.collateral import TWOPLACES, ZERO, round_money


MIN_LTV = Decimal("0.50")
MAX_LTV = Decimal("0.80")
MIN_TERM_DAYS = 7
MAX_TERM_DAYS = 365
DAYS_PER_YEAR = Decimal("365")
FOURPLACES = Decimal("0.0001")
SECONDS_PER_DAY = 86400


def _as_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass(frozen=True)
class LoanPolicy:
    default_ltv: Decimal
    default_term_days: int
    annual_interest_rate: Decimal
    origination_fee_rate: Decimal
    processing_fee: Decimal = ZERO


def default_policy() -> LoanPolicy:
    return LoanPolicy(
        default_ltv=_as_decimal(settings.loan_default_ltv),
        default_term_days=int(settings.loan_default_term_days),
        annual_interest_rate=_as_decimal(settings.loan_annual_interest_rate),
        origination_fee_rate=_as_decimal(settings.loan_origination_fee_rate),
        processing_fee=_as_decimal(settings.loan_processing_fee),
    )


@dataclass(frozen=True)
class TermsSummary:
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


def clamp_ltv(requested_ltv) -> Decimal:
    ltv = _as_decimal(requested_ltv)
    return max(MIN_LTV, min(MAX_LTV, ltv))


def compute_interest(principal, annual_rate, term_days) -> Decimal:
    """Simple pro-rata interest over a 365-day year."""
    principal = _as_decimal(principal)
    annual_rate = _as_decimal(annual_rate)
    if principal <= 0 or annual_rate < 0 or term_days is None or term_days <= 0:
        return ZERO
    return round_money(principal * annual_rate * Decimal(term_days) / DAYS_PER_YEAR)


def compute_origination_fee(principal, fee_rate) -> Decimal:
    principal = _as_decimal(principal)
    fee_rate = _as_decimal(fee_rate)
    if principal <= 0 or fee_rate <= 0:
        return ZERO
    return round_money(principal * fee_rate)


def compute_terms(
    collateral_value,
    quantity,
    requested_ltv,
    term_days: int,
    apr,
    origination_fee_rate,
    processing_fee=ZERO,
) -> TermsSummary:
    collateral = round_money(collateral_value)
    ltv = clamp_ltv(requested_ltv)
    principal = round_money(collateral * ltv)
    interest = compute_interest(principal, apr, term_days)
    origination_fee = compute_origination_fee(principal, origination_fee_rate)
    processing = round_money(processing_fee or ZERO)
    total_fees = origination_fee + processing
    total_due = principal + interest + total_fees
    net_disbursement = max(ZERO, principal - total_fees)
    return TermsSummary(
        collateral_value=collateral,
        ltv=ltv,
        principal=principal,
        term_days=int(term_days),
        interest_rate=_as_decimal(apr),
        interest_amount=interest,
        origination_fee=origination_fee,
        processing_fee=processing,
        total_fees=total_fees,
        total_due=total_due,
        net_disbursement=net_disbursement,
    )


def recompute_derived(loan) -> None:
    """Rebuild every derived money field of ``loan`` from its stored terms and payments."""
    principal = round_money(loan.principal)
    loan.total_fees = round_money(loan.origination_fee or ZERO) + round_money(
        loan.processing_fee or ZERO
    )
    loan.interest_amount = compute_interest(principal, loan.interest_rate, loan.term_days)
    loan.total_due = principal + loan.interest_amount + loan.total_fees
    loan.net_disbursement = max(ZERO, principal - loan.total_fees)
    paid = sum((round_money(payment.amount) for payment in loan.payments or []), ZERO)
    loan.amount_paid = paid
    loan.outstanding_balance = max(ZERO, loan.total_due - paid)


def compute_due_date(start: datetime, term_days: int) -> datetime:
    return start + timedelta(days=int(term_days))


def _now(now: datetime | None) -> datetime:
    return now or datetime.now(timezone.utc)


def _is_active(loan) -> bool:
    return str(getattr(loan, "status", "") or "").upper() == "ACTIVE"


def days_until_due(loan, now: datetime | None = None) -> int | None:
    if not loan.due_at or not _is_active(loan):
        return None
    delta = (loan.due_at - _now(now)).total_seconds()
    return math.ceil(delta / SECONDS_PER_DAY)


def is_overdue(loan, now: datetime | None = None) -> bool:
    if not loan.due_at or not _is_active(loan):
        return False
    return _now(now) > loan.due_at


def days_overdue(loan, now: datetime | None = None) -> int:
    current = _now(now)
    if not is_overdue(loan, current):
        return 0
    delta = (current - loan.due_at).total_seconds()
    return math.ceil(delta / SECONDS_PER_DAY)


def current_ltv(loan) -> Decimal:
    """Outstanding balance over the latest collateral value, or the origination LTV."""
    current_value = loan.current_collateral_value
    if current_value is None:
        return _as_decimal(loan.ltv)
    current_value = _as_decimal(current_value)
    if current_value <= 0:
        return Decimal("1")
    outstanding = _as_decimal(loan.outstanding_balance or ZERO)
    return (outstanding / current_value).quantize(FOURPLACES, rounding=ROUND_HALF_UP)


__all__ = [
    "LoanPolicy",
    "MAX_LTV",
    "MAX_TERM_DAYS",
    "MIN_LTV",
    "MIN_TERM_DAYS",
    "TWOPLACES",
    "TermsSummary",
    "clamp_ltv",
    "compute_due_date",
    "compute_interest",
    "compute_origination_fee",
    "compute_terms",
    "current_ltv",
    "days_overdue",
    "days_until_due",
    "default_policy",
    "is_overdue",
    "recompute_derived",
]
