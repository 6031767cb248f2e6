from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection

from app.core.settings import settings
from app.db.session import engine
from app.services import loan_terms

APP_VERSION = "0.1.0"


async def _check_db() -> dict[str, str]:
    try:
        async with engine.begin() as conn:  # type: AsyncConnection
            await conn.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:  # pragma: no cover - exercised in runtime
        return {"status": "error", "error": str(exc)}


def _check_loan_policy() -> dict[str, Any]:
    """Configured lending policy, flagged when it falls outside the engine's bounds."""
    policy = loan_terms.default_policy()
    threshold = Decimal(str(settings.margin_call_threshold))
    invalid = []
    if not loan_terms.MIN_LTV <= policy.default_ltv <= loan_terms.MAX_LTV:
        invalid.append("default_ltv")
    if not loan_terms.MIN_TERM_DAYS <= policy.default_term_days <= loan_terms.MAX_TERM_DAYS:
        invalid.append("default_term_days")
    if not Decimal("0") <= policy.annual_interest_rate <= Decimal("1"):
        invalid.append("annual_interest_rate")
    if not Decimal("0") < threshold <= Decimal("1"):
        invalid.append("margin_call_threshold")

    check: dict[str, Any] = {
        "status": "error" if invalid else "ok",
        "default_ltv": str(policy.default_ltv),
        "default_term_days": policy.default_term_days,
        "annual_interest_rate": str(policy.annual_interest_rate),
        "margin_call_threshold": str(threshold),
    }
    if invalid:
        check["invalid"] = invalid
    return check


def _overall_status(checks: dict[str, dict[str, Any]]) -> tuple[str, bool]:
    ready = all(check.get("status") == "ok" for check in checks.values())
    return ("ok" if ready else "degraded", ready)


async def live_payload() -> dict[str, str]:
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


async def ready_payload() -> dict[str, Any]:
    checks = {
        "database": await _check_db(),
        "loan_policy": _check_loan_policy(),
    }
    overall, ready = _overall_status(checks)
    return {
        "status": overall,
        "ready": ready,
        "environment": settings.environment,
        "version": APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": checks,
    }
