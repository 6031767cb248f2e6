from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.farmer import Farmer
from app.models.produce import Produce
from app.services.loan_errors import LoanNotFoundError


async def get_farmer(db: AsyncSession, farmer_id) -> Farmer:
    result = await db.execute(select(Farmer).where(Farmer.id == farmer_id))
    farmer = result.scalar_one_or_none()
    if farmer is None:
        raise LoanNotFoundError(
            code="farmer_not_found",
            message="Farmer not found",
            details={"farmer_id": str(farmer_id)},
        )
    return farmer


async def get_produce(db: AsyncSession, produce_id, *, for_update: bool = False) -> Produce:
    stmt = select(Produce).where(Produce.id == produce_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(stmt)
    produce = result.scalar_one_or_none()
    if produce is None:
        raise LoanNotFoundError(
            code="produce_not_found",
            message="Produce not found",
            details={"produce_id": str(produce_id)},
        )
    return produce
