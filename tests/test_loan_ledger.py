from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from conftest import (
    FailingGateway,
    FakeAsyncSession,
    FakeResult,
    RecordingGateway,
    entity_handler,
    loan_session,
    make_loan,
    make_payment,
    make_produce,
    sequence_handler,
)

from app.models.audit_log import AuditLog
from app.models.loan import Loan
from app.models.loan_payment import LoanPayment
from app.models.produce import Produce
from app.schemas.loan import LoanRepaymentRequest
from app.services import loan_ledger
from app.services.loan_errors import (
    CollateralConflictError,
    ConcurrentUpdateError,
    InvalidStateTransitionError,
    LoanNotFoundError,
    LoanValidationError,
)


def _pledged(produce, loan):
    produce.is_pledged = True
    produce.pledged_to_loan_id = loan.id
    produce.pledged_quantity = loan.collateral_quantity
    produce.pledged_at = loan.approved_at
    return produce


def _audit_actions(session: FakeAsyncSession) -> list[str]:
    return [entry.action for entry in session.added_of(AuditLog)]


# ---------------------------------------------------------------------------
# approve / reject
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_approve_activates_loan_and_pledges_collateral():
    produce = make_produce()
    loan = make_loan(produce=produce)
    session = loan_session(loan, produce)
    gateway = RecordingGateway()
    approver = uuid4()
    now = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)

    result = await loan_ledger.approve_loan(session, loan.id, approver, notifier=gateway, now=now)

    assert result is loan
    assert loan.status == "ACTIVE"
    assert loan.approved_by == approver
    assert loan.approved_at == now
    assert loan.disbursed_at == now
    assert loan.due_at == now + timedelta(days=60)
    assert produce.is_pledged is True
    assert produce.pledged_to_loan_id == loan.id
    assert produce.pledged_quantity == Decimal("200")
    assert produce.collateral_value == Decimal("10000.00")
    assert session.commits == 1
    assert _audit_actions(session) == ["loan.approved"]
    assert gateway.types == ["APPROVED"]


@pytest.mark.parametrize("status", ["ACTIVE", "CANCELLED", "REPAID"])
@pytest.mark.asyncio
async def test_approve_requires_pending_status(status):
    produce = make_produce()
    loan = make_loan(produce=produce, status=status)
    session = loan_session(loan, produce)
    gateway = RecordingGateway()
    with pytest.raises(InvalidStateTransitionError) as excinfo:
        await loan_ledger.approve_loan(session, loan.id, uuid4(), notifier=gateway)
    assert excinfo.value.code == "invalid_state_transition"
    assert excinfo.value.details["status"] == status
    assert loan.status == status
    assert produce.is_pledged is False
    assert session.added == []
    assert session.commits == 0
    assert gateway.events == []


@pytest.mark.asyncio
async def test_approve_fails_when_collateral_pledged_elsewhere():
    produce = make_produce(is_pledged=True, pledged_to_loan_id=uuid4())
    loan = make_loan(produce=produce)
    session = loan_session(loan, produce)
    gateway = RecordingGateway()

    with pytest.raises(CollateralConflictError):
        await loan_ledger.approve_loan(session, loan.id, uuid4(), notifier=gateway)
    assert loan.status == "PENDING"
    assert loan.due_at is None
    assert loan.approved_by is None
    assert session.added == []
    assert session.commits == 0
    assert gateway.events == []


@pytest.mark.asyncio
async def test_approve_unknown_loan():
    session = FakeAsyncSession()
    session.on_execute(entity_handler(Loan, FakeResult(scalar=None)))
    with pytest.raises(LoanNotFoundError) as excinfo:
        await loan_ledger.approve_loan(session, uuid4(), uuid4())
    assert excinfo.value.code == "loan_not_found"


@pytest.mark.asyncio
async def test_reject_cancels_with_default_reason():
    loan = make_loan()
    session = loan_session(loan)
    gateway = RecordingGateway()

    await loan_ledger.reject_loan(session, loan.id, uuid4(), "   ", notifier=gateway)

    assert loan.status == "CANCELLED"
    assert loan.rejection_reason == loan_ledger.DEFAULT_REJECTION_REASON
    assert _audit_actions(session) == ["loan.rejected"]
    assert gateway.types == ["REJECTED"]
    assert gateway.events[0].payload["rejection_reason"] == loan_ledger.DEFAULT_REJECTION_REASON


@pytest.mark.asyncio
async def test_reject_keeps_given_reason():
    loan = make_loan()
    session = loan_session(loan)
    await loan_ledger.reject_loan(session, loan.id, uuid4(), "Produce quality unverified")
    assert loan.rejection_reason == "Produce quality unverified"


@pytest.mark.asyncio
async def test_reject_active_loan_is_invalid():
    loan = make_loan(status="ACTIVE")
    with pytest.raises(InvalidStateTransitionError):
        await loan_ledger.reject_loan(loan_session(loan), loan.id, uuid4())


# ---------------------------------------------------------------------------
# repay
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_partial_repayment_reduces_outstanding():
    loan = make_loan(status="ACTIVE")
    session = loan_session(loan)
    gateway = RecordingGateway()

    outcome = await loan_ledger.repay_loan(
        session,
        loan.id,
        LoanRepaymentRequest(amount=Decimal("3000"), reference="MP-001"),
        notifier=gateway,
    )

    assert outcome.fully_repaid is False
    assert outcome.duplicate is False
    assert outcome.outstanding_balance == Decimal("3297.53")
    assert loan.amount_paid == Decimal("3000.00")
    assert loan.status == "ACTIVE"
    assert outcome.payment in loan.payments
    assert outcome.payment.method == "MOBILE_MONEY"
    assert session.added_of(LoanPayment) == [outcome.payment]
    assert _audit_actions(session) == ["loan_payment.recorded"]
    assert gateway.types == ["PAYMENT_RECEIVED"]
    assert session.commits == 1


@pytest.mark.asyncio
async def test_full_repayment_closes_loan_and_releases_collateral():
    produce = make_produce()
    loan = make_loan(produce=produce, status="ACTIVE")
    _pledged(produce, loan)
    make_payment(loan, "3000.00", reference="MP-001")
    loan.amount_paid = Decimal("3000.00")
    loan.outstanding_balance = Decimal("3297.53")
    session = loan_session(loan, produce)
    gateway = RecordingGateway()
    now = datetime(2026, 4, 1, tzinfo=timezone.utc)

    outcome = await loan_ledger.repay_loan(
        session,
        loan.id,
        LoanRepaymentRequest(amount=Decimal("3297.53"), method="CASH"),
        notifier=gateway,
        now=now,
    )

    assert outcome.fully_repaid is True
    assert outcome.outstanding_balance == Decimal("0.00")
    assert loan.status == "REPAID"
    assert loan.repaid_at == now
    assert loan.amount_paid == Decimal("6297.53")
    assert produce.is_pledged is False
    assert produce.pledged_to_loan_id is None
    assert _audit_actions(session) == ["loan_payment.recorded", "loan.repaid"]
    assert gateway.types == ["PAYMENT_RECEIVED", "FULLY_REPAID"]


@pytest.mark.asyncio
async def test_overpayment_clamps_outstanding_to_zero():
    produce = make_produce()
    loan = make_loan(produce=produce, status="ACTIVE")
    _pledged(produce, loan)
    session = loan_session(loan, produce)

    outcome = await loan_ledger.repay_loan(
        session, loan.id, LoanRepaymentRequest(amount=Decimal("7000"))
    )

    assert outcome.fully_repaid is True
    assert loan.outstanding_balance == Decimal("0.00")
    assert loan.amount_paid == Decimal("7000.00")


@pytest.mark.asyncio
async def test_duplicate_reference_is_not_recorded_twice():
    loan = make_loan(status="ACTIVE")
    existing = make_payment(loan, "3000.00", reference="MP-001")
    loan.amount_paid = Decimal("3000.00")
    loan.outstanding_balance = Decimal("3297.53")
    session = loan_session(loan)
    gateway = RecordingGateway()

    outcome = await loan_ledger.repay_loan(
        session,
        loan.id,
        LoanRepaymentRequest(amount=Decimal("3000"), reference="MP-001"),
        notifier=gateway,
    )

    assert outcome.duplicate is True
    assert outcome.payment is existing
    assert outcome.outstanding_balance == Decimal("3297.53")
    assert len(loan.payments) == 1
    assert session.added == []
    assert session.commits == 0
    assert gateway.events == []


@pytest.mark.asyncio
async def test_duplicate_reference_on_repaid_loan_reports_repaid():
    loan = make_loan(status="REPAID")
    make_payment(loan, "6297.53", reference="BANK-9")
    loan.amount_paid = Decimal("6297.53")
    loan.outstanding_balance = Decimal("0.00")

    outcome = await loan_ledger.repay_loan(
        loan_session(loan),
        loan.id,
        LoanRepaymentRequest(amount=Decimal("6297.53"), reference="BANK-9"),
    )
    assert outcome.duplicate is True
    assert outcome.fully_repaid is True


@pytest.mark.parametrize("amount", ["0", "-10", "0.004"])
@pytest.mark.asyncio
async def test_repay_rejects_non_positive_amount_before_lookup(amount):
    session = FakeAsyncSession()
    with pytest.raises(LoanValidationError) as excinfo:
        await loan_ledger.repay_loan(
            session, uuid4(), LoanRepaymentRequest(amount=Decimal(amount))
        )
    assert excinfo.value.code == "invalid_amount"
    assert session.statements == []


@pytest.mark.asyncio
async def test_repay_pending_loan_is_invalid():
    loan = make_loan()
    with pytest.raises(InvalidStateTransitionError):
        await loan_ledger.repay_loan(
            loan_session(loan), loan.id, LoanRepaymentRequest(amount=Decimal("100"))
        )


@pytest.mark.asyncio
async def test_repay_survives_failing_gateway():
    loan = make_loan(status="ACTIVE")
    session = loan_session(loan)

    outcome = await loan_ledger.repay_loan(
        session,
        loan.id,
        LoanRepaymentRequest(amount=Decimal("100")),
        notifier=FailingGateway(),
    )
    assert outcome.payment is not None
    assert session.commits == 1


@pytest.mark.asyncio
async def test_stale_commit_maps_to_concurrent_update():
    loan = make_loan(status="ACTIVE")
    session = loan_session(loan)
    session.commit_error = StaleDataError("version mismatch")

    with pytest.raises(ConcurrentUpdateError) as excinfo:
        await loan_ledger.repay_loan(
            session, loan.id, LoanRepaymentRequest(amount=Decimal("100"))
        )
    assert excinfo.value.code == "concurrent_update"
    assert excinfo.value.http_status == 409
    assert session.rollbacks == 1


@pytest.mark.asyncio
async def test_active_produce_index_violation_maps_to_collateral_conflict():
    produce = make_produce()
    loan = make_loan(produce=produce)
    session = loan_session(loan, produce)
    session.commit_error = IntegrityError(
        "UPDATE loans",
        {},
        Exception('duplicate key value violates unique constraint "uq_loans_active_produce"'),
    )

    with pytest.raises(CollateralConflictError) as excinfo:
        await loan_ledger.approve_loan(session, loan.id, uuid4())
    assert excinfo.value.code == "collateral_conflict"
    assert session.rollbacks == 1


@pytest.mark.asyncio
async def test_other_integrity_errors_map_to_concurrent_update():
    loan = make_loan(status="ACTIVE")
    session = loan_session(loan)
    session.commit_error = IntegrityError(
        "INSERT INTO loan_payments",
        {},
        Exception('duplicate key value violates unique constraint "uq_loan_payment_reference"'),
    )

    with pytest.raises(ConcurrentUpdateError):
        await loan_ledger.repay_loan(
            session, loan.id, LoanRepaymentRequest(amount=Decimal("10"), reference="R1")
        )


@pytest.mark.asyncio
async def test_successive_repayments_settle_the_loan():
    produce = make_produce()
    loan = make_loan(produce=produce, status="ACTIVE")
    _pledged(produce, loan)
    session = loan_session(loan, produce)
    gateway = RecordingGateway()

    first = await loan_ledger.repay_loan(
        session, loan.id, LoanRepaymentRequest(amount=Decimal("1800.00")), notifier=gateway
    )

    assert first.outstanding_balance == Decimal("4497.53")
    assert first.fully_repaid is False
    assert loan.status == "ACTIVE"
    assert produce.is_pledged is True

    second = await loan_ledger.repay_loan(
        session, loan.id, LoanRepaymentRequest(amount=Decimal("4497.53")), notifier=gateway
    )

    assert second.outstanding_balance == Decimal("0.00")
    assert second.fully_repaid is True
    assert loan.status == "REPAID"
    assert loan.amount_paid == Decimal("6297.53")
    assert len(loan.payments) == 2
    assert produce.is_pledged is False
    assert session.commits == 2
    assert gateway.types == ["PAYMENT_RECEIVED", "PAYMENT_RECEIVED", "FULLY_REPAID"]


@pytest.mark.asyncio
async def test_final_payment_rolls_back_when_collateral_is_missing():
    loan = make_loan(status="ACTIVE")
    session = FakeAsyncSession()
    session.on_execute(entity_handler(Loan, FakeResult(scalar=loan)))
    session.on_execute(entity_handler(Produce, FakeResult(scalar=None)))
    gateway = RecordingGateway()

    with pytest.raises(LoanNotFoundError) as excinfo:
        await loan_ledger.repay_loan(
            session, loan.id, LoanRepaymentRequest(amount=Decimal("6297.53")), notifier=gateway
        )

    assert excinfo.value.code == "produce_not_found"
    assert session.rollbacks == 1
    assert session.commits == 0
    assert gateway.events == []


@pytest.mark.asyncio
async def test_approve_without_produce_leaves_loan_pending():
    loan = make_loan()
    session = FakeAsyncSession()
    session.on_execute(entity_handler(Loan, FakeResult(scalar=loan)))
    session.on_execute(entity_handler(Produce, FakeResult(scalar=None)))

    with pytest.raises(LoanNotFoundError):
        await loan_ledger.approve_loan(session, loan.id, uuid4())

    assert loan.status == "PENDING"
    assert loan.due_at is None
    assert session.commits == 0


@pytest.mark.asyncio
async def test_lock_loan_refreshes_identity_map():
    loan = make_loan(status="ACTIVE")
    session = loan_session(loan)

    assert await loan_ledger.lock_loan(session, loan.id) is loan

    stmt = session.statements[0]
    assert stmt._for_update_arg is not None
    assert stmt.get_execution_options()["populate_existing"] is True


# ---------------------------------------------------------------------------
# read projections
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_get_loan_not_found():
    session = FakeAsyncSession()
    with pytest.raises(LoanNotFoundError):
        await loan_ledger.get_loan(session, uuid4())


@pytest.mark.asyncio
async def test_list_functions_return_scalars():
    loans = [make_loan(), make_loan()]
    session = FakeAsyncSession().on_execute_return(FakeResult(items=loans))

    assert await loan_ledger.list_pending_loans(session) == loans
    assert await loan_ledger.list_active_loans(session) == loans
    assert await loan_ledger.list_loans_for_farmer(session, uuid4()) == loans
    assert len(session.statements) == 3


@pytest.mark.asyncio
async def test_stats_summary_aggregates_counts_and_totals():
    session = FakeAsyncSession()
    session.on_execute(
        sequence_handler(
            [
                FakeResult(rows=[("PENDING", 2), ("ACTIVE", 3), ("REPAID", 1), ("DEFAULTED", 1)]),
                FakeResult(rows=[(Decimal("24000"), Decimal("6297.53"), Decimal("9000.456"))]),
            ]
        )
    )

    summary = await loan_ledger.build_stats_summary(session)

    assert summary.total_loans == 7
    assert summary.pending_loans == 2
    assert summary.active_loans == 3
    assert summary.repaid_loans == 1
    assert summary.defaulted_loans == 1
    assert summary.total_disbursed == Decimal("24000.00")
    assert summary.total_repaid == Decimal("6297.53")
    assert summary.total_outstanding == Decimal("9000.46")


@pytest.mark.asyncio
async def test_stats_summary_empty_portfolio():
    session = FakeAsyncSession()
    session.on_execute(
        sequence_handler([FakeResult(rows=[]), FakeResult(rows=[(0, 0, 0)])])
    )
    summary = await loan_ledger.build_stats_summary(session)
    assert summary.total_loans == 0
    assert summary.total_outstanding == Decimal("0.00")
