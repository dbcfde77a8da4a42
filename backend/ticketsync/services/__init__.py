"""Services for Zendesk ingestion and analytics aggregation."""

from ticketsync.services.aggregation import AggregationService
from ticketsync.services.checkpoints import CheckpointStore
from ticketsync.services.ingestion import (
    SnapshotSyncer,
    TicketMetricsBackfill,
    TicketSyncer,
    build_syncer,
)
from ticketsync.services.zendesk_client import ZendeskClient

__all__ = [
    "AggregationService",
    "CheckpointStore",
    "SnapshotSyncer",
    "TicketMetricsBackfill",
    "TicketSyncer",
    "ZendeskClient",
    "build_syncer",
]
