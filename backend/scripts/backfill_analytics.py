#!/usr/bin/env python3
"""
Backfill daily ticket analytics for a date range.

Usage:
    python scripts/backfill_analytics.py 2024-01-01 2024-03-31

Both dates are inclusive. Each day is recomputed from the synced tickets, so
the script is safe to re-run over days that were already aggregated.
"""

import asyncio
import logging
import sys
from datetime import date

from ticketsync.database import async_session_maker, engine
from ticketsync.services.aggregation import AggregationService

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("backfill_analytics")


def parse_day(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise SystemExit(f"Invalid date '{value}'. Use YYYY-MM-DD")


async def backfill(start: date, end: date) -> int:
    async with async_session_maker() as db:
        result = await AggregationService(db).backfill_daily(start, end)
    await engine.dispose()

    logger.info(f"Backfill complete: {result.days} days, {result.records} records")
    if result.failed_days:
        logger.error(f"Failed days: {', '.join(str(d) for d in result.failed_days)}")
        return 1
    return 0


if __name__ == "__main__":
    if len(sys.argv) != 3:
        print(__doc__)
        sys.exit(2)

    start, end = parse_day(sys.argv[1]), parse_day(sys.argv[2])
    if start > end:
        print(f"Error: start {start} is after end {end}")
        sys.exit(2)

    sys.exit(asyncio.run(backfill(start, end)))
