from app.models.audit_log import AuditLog
from app.models.farmer import Farmer
from app.models.loan import Loan
from app.models.loan_payment import LoanPayment
from app.models.produce import Produce

__all__ = [
    "AuditLog",
    "Farmer",
    "Loan",
    "LoanPayment",
    "Produce",
]
