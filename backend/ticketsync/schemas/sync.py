"""Pydantic schemas for sync and aggregation operations."""

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator


class CheckpointOut(BaseModel):
    """Sync checkpoint for one entity type."""

    model_config = ConfigDict(from_attributes=True)

    entity_type: str
    cursor: datetime | None = None
    status: str
    error_message: str | None = None
    records_synced: int = 0
    updated_at: datetime | None = None


class AggregationStatusOut(BaseModel):
    """Summary of aggregation runs for one aggregation type."""

    aggregation_type: str
    last_processed: date | None = None
    success_count: int = 0
    error_count: int = 0
    last_completed: datetime | None = None


class SyncStatusResponse(BaseModel):
    """Checkpoints plus aggregation run summary."""

    checkpoints: list[CheckpointOut]
    aggregations: list[AggregationStatusOut]


class SyncRunOut(BaseModel):
    """Result of a manual sync run."""

    entity_type: str
    records_synced: int
    pages: int
    end_of_stream: bool
    cursor: datetime | None = None
    message: str


class AggregationRunOut(BaseModel):
    """Result of a manual aggregation run."""

    aggregation_type: str
    period: date
    success: bool
    records: int
    error: str | None = None


class BackfillRequest(BaseModel):
    """Inclusive day range for a daily analytics backfill."""

    start: date
    end: date

    @model_validator(mode="after")
    def check_range(self) -> "BackfillRequest":
        if self.start > self.end:
            raise ValueError("start must not be after end")
        return self


class BackfillOut(BaseModel):
    """Result of a daily analytics backfill."""

    start: date
    end: date
    days: int
    records: int
    failed_days: list[date] = Field(default_factory=list)
