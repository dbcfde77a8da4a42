"""Pydantic schemas for API request/response validation."""

from ticketsync.schemas.sync import (
    AggregationRunOut,
    AggregationStatusOut,
    BackfillOut,
    BackfillRequest,
    CheckpointOut,
    SyncRunOut,
    SyncStatusResponse,
)

__all__ = [
    "AggregationRunOut",
    "AggregationStatusOut",
    "BackfillOut",
    "BackfillRequest",
    "CheckpointOut",
    "SyncRunOut",
    "SyncStatusResponse",
]
