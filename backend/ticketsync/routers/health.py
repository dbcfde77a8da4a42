"""Health and readiness endpoints."""

from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ticketsync.database import get_db
from ticketsync.models import Agent, Group, Organization, Ticket
from ticketsync.schemas import CheckpointOut
from ticketsync.services.checkpoints import CheckpointStore

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: datetime
    record_counts: dict[str, int]
    checkpoints: list[CheckpointOut]


@router.get("/health", response_model=HealthResponse)
async def health_check(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> HealthResponse:
    """
    Health check endpoint with ingestion status.

    Returns record counts for each mirrored entity and the sync checkpoints.
    Reports "degraded" when any entity's last run ended in error.
    """
    counts = {}
    for name, model in (
        ("tickets", Ticket),
        ("organizations", Organization),
        ("agents", Agent),
        ("groups", Group),
    ):
        result = await db.execute(select(func.count(model.id)))
        counts[name] = result.scalar() or 0

    checkpoints = [
        CheckpointOut.model_validate(cp) for cp in await CheckpointStore(db).list_all()
    ]
    status = "degraded" if any(cp.status == "error" for cp in checkpoints) else "healthy"

    return HealthResponse(
        status=status,
        timestamp=datetime.now(UTC),
        record_counts=counts,
        checkpoints=checkpoints,
    )


@router.get("/ready")
async def readiness_check() -> dict:
    """Simple readiness check for container orchestration."""
    return {"status": "ready"}


@router.get("/live")
async def liveness_check() -> dict:
    """Simple liveness check for container orchestration."""
    return {"status": "alive"}
