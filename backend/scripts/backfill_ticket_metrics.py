#!/usr/bin/env python3
"""
Fill in metrics for tickets that were synced without a metric set.

Usage:
    python scripts/backfill_ticket_metrics.py [BATCH_SIZE]

Tickets are re-fetched from Zendesk in batches (at most 100 ids each).
Only tickets that still have no metric set are requested, so the script is
safe to re-run.
"""

import asyncio
import logging
import sys

from ticketsync.database import async_session_maker, engine
from ticketsync.services.ingestion import TicketMetricsBackfill

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("backfill_ticket_metrics")


async def backfill(batch_size: int) -> int:
    async with async_session_maker() as db:
        result = await TicketMetricsBackfill(db, batch_size=batch_size).run()
    await engine.dispose()

    if result.candidates == 0:
        logger.info("All tickets already have metrics")
    if result.failed_batches:
        logger.error(f"{result.failed_batches} batches failed; re-run to retry them")
        return 1
    return 0


if __name__ == "__main__":
    if len(sys.argv) > 2:
        print(__doc__)
        sys.exit(2)

    batch_size = TicketMetricsBackfill.max_batch_size
    if len(sys.argv) == 2:
        try:
            batch_size = int(sys.argv[1])
        except ValueError:
            print(f"Error: invalid batch size '{sys.argv[1]}'")
            sys.exit(2)

    sys.exit(asyncio.run(backfill(batch_size)))
