from enum import Enum

from pydantic import BaseModel, Field


class EligibilityReasonCode(str, Enum):
    ALREADY_PLEDGED = "ALREADY_PLEDGED"
    SOLD = "SOLD"
    BELOW_MIN_QUANTITY = "BELOW_MIN_QUANTITY"
    BELOW_MIN_PRICE = "BELOW_MIN_PRICE"
    CONDITION_NOT_ALLOWED = "CONDITION_NOT_ALLOWED"
    STATUS_NOT_ALLOWED = "STATUS_NOT_ALLOWED"
    NO_MARKET_PRICE = "NO_MARKET_PRICE"


class EligibilityReason(BaseModel):
    code: EligibilityReasonCode
    message: str


class EligibilityResult(BaseModel):
    eligible: bool
    reasons: list[EligibilityReason] = Field(default_factory=list)
