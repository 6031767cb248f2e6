from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(eq=False)
class LoanEngineError(ValueError):
    code: str
    message: str
    details: dict = field(default_factory=dict)

    http_status = 400

    def __str__(self) -> str:
        return self.message


class LoanValidationError(LoanEngineError):
    http_status = 400


class LoanNotFoundError(LoanEngineError):
    http_status = 404


class LoanForbiddenError(LoanEngineError):
    http_status = 403


class InvalidStateTransitionError(LoanEngineError):
    http_status = 409


class CollateralConflictError(LoanEngineError):
    http_status = 409


class ConcurrentUpdateError(LoanEngineError):
    http_status = 409


def loan_not_found(loan_id) -> LoanNotFoundError:
    return LoanNotFoundError(
        code="loan_not_found",
        message="Loan not found",
        details={"loan_id": str(loan_id)},
    )


def invalid_transition(loan, action: str) -> InvalidStateTransitionError:
    status = str(loan.status or "").lower()
    return InvalidStateTransitionError(
        code="invalid_state_transition",
        message=f"Cannot {action} a loan that is {status}",
        details={"loan_id": str(loan.id), "status": loan.status, "action": action},
    )
