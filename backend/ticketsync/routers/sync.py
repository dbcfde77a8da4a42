"""Manual sync and aggregation triggers."""

import logging
from datetime import date
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ticketsync.config import get_settings
from ticketsync.database import get_db
from ticketsync.limiter import limiter
from ticketsync.schemas import (
    AggregationRunOut,
    AggregationStatusOut,
    BackfillOut,
    BackfillRequest,
    CheckpointOut,
    SyncRunOut,
    SyncStatusResponse,
)
from ticketsync.services.aggregation import AGGREGATION_TYPES, AggregationService
from ticketsync.services.cache import CacheInvalidator, NullCacheInvalidator
from ticketsync.services.checkpoints import CheckpointStore
from ticketsync.services.ingestion import SYNC_ENTITY_TYPES, build_syncer
from ticketsync.services.zendesk_client import ZendeskClient, ZendeskClientError

logger = logging.getLogger(__name__)
settings = get_settings()
router = APIRouter(tags=["sync"])


def get_zendesk_client() -> ZendeskClient:
    return ZendeskClient()


def get_cache(request: Request) -> CacheInvalidator:
    return getattr(request.app.state, "cache", None) or NullCacheInvalidator()


@router.get("/sync/status", response_model=SyncStatusResponse)
async def sync_status(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> SyncStatusResponse:
    """Checkpoint of every entity type and a summary of aggregation runs."""
    checkpoints = await CheckpointStore(db).list_all()
    aggregations = await AggregationService(db).get_aggregation_status()

    return SyncStatusResponse(
        checkpoints=[CheckpointOut.model_validate(cp) for cp in checkpoints],
        aggregations=[AggregationStatusOut(**row) for row in aggregations],
    )


@router.post("/sync/{entity_type}", response_model=SyncRunOut)
@limiter.limit(settings.manual_trigger_rate_limit)
async def trigger_sync(
    request: Request,
    entity_type: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    client: Annotated[ZendeskClient, Depends(get_zendesk_client)],
    cache: Annotated[CacheInvalidator, Depends(get_cache)],
) -> SyncRunOut:
    """
    Run one entity sync now.

    The run is the same as the scheduled one: it resumes from the stored
    checkpoint and advances it on completion.
    """
    if entity_type not in SYNC_ENTITY_TYPES:
        raise HTTPException(
            status_code=404,
            detail=f"Unknown entity type '{entity_type}'. Use one of: {', '.join(SYNC_ENTITY_TYPES)}",
        )

    logger.info(f"Manual {entity_type} sync requested")
    syncer = build_syncer(entity_type, db, client=client, cache=cache)
    try:
        result = await syncer.sync()
    except ZendeskClientError as e:
        raise HTTPException(status_code=502, detail=f"Upstream error: {e}") from e

    return SyncRunOut(
        entity_type=result.entity_type,
        records_synced=result.records_synced,
        pages=result.pages,
        end_of_stream=result.end_of_stream,
        cursor=result.cursor,
        message=f"Synced {result.records_synced} {entity_type}",
    )


@router.post("/aggregations/backfill", response_model=BackfillOut)
@limiter.limit(settings.manual_trigger_rate_limit)
async def trigger_backfill(
    request: Request,
    body: BackfillRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> BackfillOut:
    """Recompute daily analytics for every day of an inclusive range."""
    result = await AggregationService(db).backfill_daily(body.start, body.end)
    return BackfillOut(
        start=result.start,
        end=result.end,
        days=result.days,
        records=result.records,
        failed_days=result.failed_days,
    )


@router.post("/aggregations/{kind}", response_model=AggregationRunOut)
@limiter.limit(settings.manual_trigger_rate_limit)
async def trigger_aggregation(
    request: Request,
    kind: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    period: date | None = Query(
        None, description="Day, week start or month start; defaults to the previous period"
    ),
) -> AggregationRunOut:
    """Run the daily, weekly or monthly aggregation for one period."""
    if kind not in AGGREGATION_TYPES:
        raise HTTPException(
            status_code=404,
            detail=f"Unknown aggregation '{kind}'. Use one of: {', '.join(AGGREGATION_TYPES)}",
        )

    result = await AggregationService(db).aggregate(kind, period)
    return AggregationRunOut(
        aggregation_type=result.aggregation_type,
        period=result.period,
        success=result.success,
        records=result.records,
        error=result.error,
    )
