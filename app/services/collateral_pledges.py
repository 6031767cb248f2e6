from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.produce import Produce
from app.services import inventory
from app.services.loan_errors import CollateralConflictError

logger = logging.getLogger(__name__)


async def pledge(
    db: AsyncSession,
    *,
    produce_id,
    loan_id,
    quantity,
    collateral_value,
    pledged_at: datetime,
) -> Produce:
    """Mark a produce lot as collateral for ``loan_id`` inside the caller's transaction."""
    produce = await inventory.get_produce(db, produce_id, for_update=True)
    if produce.is_pledged:
        if produce.pledged_to_loan_id == loan_id:
            return produce
        raise CollateralConflictError(
            code="collateral_conflict",
            message="Produce is already pledged to another loan",
            details={
                "produce_id": str(produce_id),
                "pledged_to_loan_id": str(produce.pledged_to_loan_id),
            },
        )

    produce.is_pledged = True
    produce.pledged_to_loan_id = loan_id
    produce.pledged_quantity = quantity
    produce.pledged_at = pledged_at
    produce.collateral_value = collateral_value
    db.add(produce)
    logger.info(
        "Collateral pledged",
        extra={"produce_id": str(produce_id), "loan_id": str(loan_id)},
    )
    return produce


async def release(db: AsyncSession, *, produce_id, loan_id) -> Produce:
    produce = await inventory.get_produce(db, produce_id, for_update=True)
    if not produce.is_pledged:
        logger.info(
            "Collateral already released",
            extra={"produce_id": str(produce_id), "loan_id": str(loan_id)},
        )
        return produce
    if produce.pledged_to_loan_id != loan_id:
        logger.warning(
            "Skipping release of collateral pledged to another loan",
            extra={
                "produce_id": str(produce_id),
                "loan_id": str(loan_id),
                "pledged_to_loan_id": str(produce.pledged_to_loan_id),
            },
        )
        return produce

    produce.is_pledged = False
    produce.pledged_to_loan_id = None
    produce.pledged_quantity = None
    produce.pledged_at = None
    db.add(produce)
    logger.info(
        "Collateral released",
        extra={"produce_id": str(produce_id), "loan_id": str(loan_id)},
    )
    return produce
