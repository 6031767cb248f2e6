from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from app.core.settings import settings
from app.models.produce import Produce
from app.schemas.eligibility import EligibilityReason, EligibilityReasonCode, EligibilityResult


def _as_decimal(value) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass(frozen=True)
class EligibilityRules:
    min_quantity_kg: Decimal = Decimal("50")
    min_price_per_kg: Decimal = Decimal("10")
    allowed_conditions: tuple[str, ...] = field(
        default_factory=lambda: ("Fresh", "Good", "Excellent", "A")
    )
    allowed_statuses: tuple[str, ...] = field(
        default_factory=lambda: ("Active", "Listed", "Monitoring", "Stocked")
    )


def default_rules() -> EligibilityRules:
    return EligibilityRules(
        min_quantity_kg=_as_decimal(settings.collateral_min_quantity_kg),
        min_price_per_kg=_as_decimal(settings.collateral_min_price_per_kg),
        allowed_conditions=tuple(settings.collateral_allowed_conditions),
        allowed_statuses=tuple(settings.collateral_allowed_statuses),
    )


def _allowed(value: str, allowed: tuple[str, ...]) -> bool:
    normalized = value.strip().lower()
    return any(normalized == candidate.strip().lower() for candidate in allowed)


def check_eligibility(produce: Produce, rules: EligibilityRules | None = None) -> EligibilityResult:
    rules = rules or default_rules()
    reasons: list[EligibilityReason] = []

    if produce.is_pledged:
        reasons.append(
            EligibilityReason(
                code=EligibilityReasonCode.ALREADY_PLEDGED,
                message="Produce is already pledged as collateral",
            )
        )

    if produce.sold:
        reasons.append(
            EligibilityReason(code=EligibilityReasonCode.SOLD, message="Produce has been sold")
        )

    quantity = _as_decimal(produce.quantity)
    if quantity < rules.min_quantity_kg:
        reasons.append(
            EligibilityReason(
                code=EligibilityReasonCode.BELOW_MIN_QUANTITY,
                message=f"Quantity ({quantity}kg) is below minimum ({rules.min_quantity_kg}kg)",
            )
        )

    price = _as_decimal(produce.current_market_price)
    if price < rules.min_price_per_kg:
        reasons.append(
            EligibilityReason(
                code=EligibilityReasonCode.BELOW_MIN_PRICE,
                message=f"Price ({price}/kg) is below minimum ({rules.min_price_per_kg}/kg)",
            )
        )

    # Condition and status only disqualify when recorded.
    if produce.condition and not _allowed(produce.condition, rules.allowed_conditions):
        reasons.append(
            EligibilityReason(
                code=EligibilityReasonCode.CONDITION_NOT_ALLOWED,
                message=f'Condition "{produce.condition}" is not acceptable for collateral',
            )
        )

    if produce.status and not _allowed(produce.status, rules.allowed_statuses):
        reasons.append(
            EligibilityReason(
                code=EligibilityReasonCode.STATUS_NOT_ALLOWED,
                message=f'Status "{produce.status}" is not eligible for collateral',
            )
        )

    if price <= 0:
        reasons.append(
            EligibilityReason(
                code=EligibilityReasonCode.NO_MARKET_PRICE,
                message="Produce has no current market price for valuation",
            )
        )

    return EligibilityResult(eligible=len(reasons) == 0, reasons=reasons)
