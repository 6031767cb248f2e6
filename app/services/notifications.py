from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Protocol

from app.core.logging import get_notification_logger
from app.services.audit import serialize_for_audit

logger = logging.getLogger(__name__)


class LoanEventType(str, Enum):
    APPLICATION_RECEIVED = "APPLICATION_RECEIVED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    PAYMENT_RECEIVED = "PAYMENT_RECEIVED"
    FULLY_REPAID = "FULLY_REPAID"
    MARGIN_CALL = "MARGIN_CALL"


@dataclass(frozen=True)
class LoanEvent:
    event_type: LoanEventType
    loan_id: str
    farmer_id: str
    status: str
    payload: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_dict(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type.value,
            "loan_id": self.loan_id,
            "farmer_id": self.farmer_id,
            "status": self.status,
            "payload": self.payload,
            "occurred_at": self.occurred_at.isoformat(),
        }


class NotificationGateway(Protocol):
    async def publish(self, event: LoanEvent) -> None: ...


class LoggingNotificationGateway:
    """Writes loan events to the notification log stream."""

    def __init__(self, event_logger: logging.Logger | None = None) -> None:
        self._logger = event_logger or get_notification_logger()

    async def publish(self, event: LoanEvent) -> None:
        self._logger.info(
            "Loan event %s", event.event_type.value, extra={"event": event.as_dict()}
        )


_default_gateway = LoggingNotificationGateway()


def get_notification_gateway() -> NotificationGateway:
    return _default_gateway


def build_event(event_type: LoanEventType, loan, payment=None, **extra: Any) -> LoanEvent:
    payload: dict[str, Any] = {
        "principal": loan.principal,
        "total_due": loan.total_due,
        "outstanding_balance": loan.outstanding_balance,
        "due_at": loan.due_at,
    }
    if event_type == LoanEventType.REJECTED:
        payload["rejection_reason"] = loan.rejection_reason
    if event_type == LoanEventType.MARGIN_CALL:
        payload["current_collateral_value"] = loan.current_collateral_value
    if payment is not None:
        payload["payment"] = {
            "id": payment.id,
            "amount": payment.amount,
            "method": payment.method,
            "reference": payment.reference,
            "paid_at": payment.paid_at,
        }
    payload.update(extra)
    return LoanEvent(
        event_type=event_type,
        loan_id=str(loan.id),
        farmer_id=str(loan.farmer_id),
        status=str(loan.status),
        payload=serialize_for_audit(payload),
    )


async def dispatch(gateway: NotificationGateway | None, event: LoanEvent) -> bool:
    """Publish ``event``; failures are logged and reported as ``False``."""
    target = gateway or get_notification_gateway()
    try:
        await target.publish(event)
    except Exception:
        logger.exception(
            "Loan notification failed",
            extra={"event_type": event.event_type.value, "loan_id": event.loan_id},
        )
        return False
    return True
