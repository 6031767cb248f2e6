#!/usr/bin/env python3
"""
Revalue every ACTIVE loan at the current market price of its pledged produce and
flag loans whose loan-to-value has crossed the margin-call threshold.

Usage:
    python scripts/revalue_collateral.py [--threshold 0.75]
"""

from __future__ import annotations

import argparse
import asyncio
from decimal import Decimal

from app.core.logging import configure_logging
from app.db.session import AsyncSessionLocal, engine
from app.services import revaluation


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Revalue collateral for active loans")
    parser.add_argument(
        "--threshold",
        type=Decimal,
        default=None,
        help="Margin-call LTV threshold (defaults to MARGIN_CALL_THRESHOLD)",
    )
    return parser.parse_args()


async def main(threshold: Decimal | None) -> revaluation.RevaluationSweepSummary:
    async with AsyncSessionLocal() as session:
        summary = await revaluation.sweep_active_loans(session, threshold)
    await engine.dispose()
    return summary


if __name__ == "__main__":
    configure_logging()
    args = _parse_args()
    result = asyncio.run(main(args.threshold))
    print(
        f"scanned={result.scanned} revalued={result.revalued} "
        f"flagged={result.flagged} failed={result.failed}"
    )
