"""Ingestion of Zendesk entities into the local database."""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ticketsync.config import get_settings
from ticketsync.database import Base, upsert
from ticketsync.models import Agent, Group, Organization, Ticket
from ticketsync.services.cache import CacheInvalidator, NullCacheInvalidator
from ticketsync.services.checkpoints import CheckpointStore
from ticketsync.services.dates import from_unix, parse_datetime, to_unix, utc_now
from ticketsync.services.zendesk_client import ZendeskClient, ZendeskClientError

logger = logging.getLogger(__name__)
settings = get_settings()

TICKETS = "tickets"
ORGANIZATIONS = "organizations"
AGENTS = "agents"
GROUPS = "groups"

SNAPSHOT_ENTITY_TYPES = (ORGANIZATIONS, AGENTS, GROUPS)
SYNC_ENTITY_TYPES = (TICKETS, *SNAPSHOT_ENTITY_TYPES)


@dataclass
class SyncRunResult:
    """Outcome of one syncer run."""

    entity_type: str
    records_synced: int
    pages: int
    end_of_stream: bool
    cursor: datetime | None


def _to_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _business_minutes(metric_set: dict[str, Any], key: str) -> int | None:
    """Business-hours value of a metric like ``reply_time_in_minutes``."""
    value = metric_set.get(key)
    if isinstance(value, dict):
        return _to_int(value.get("business"))
    return None


def transform_ticket(record: dict, metric_set: dict | None = None) -> dict | None:
    """Transform a raw ticket (plus its metric set, if any) into database values."""
    ticket_id = _to_int(record.get("id"))
    if ticket_id is None:
        return None

    metrics = metric_set or {}

    return {
        "id": ticket_id,
        "subject": record.get("subject"),
        "description": record.get("description"),
        "status": record.get("status"),
        "priority": record.get("priority"),
        "request_type": record.get("type"),
        "created_at": parse_datetime(record.get("created_at")),
        "updated_at": parse_datetime(record.get("updated_at")),
        "requester_id": _to_int(record.get("requester_id")),
        "assignee_id": _to_int(record.get("assignee_id")),
        "organization_id": _to_int(record.get("organization_id")),
        "group_id": _to_int(record.get("group_id")),
        "tags": record.get("tags") or [],
        "custom_fields": record.get("custom_fields") or [],
        "metric_set": metric_set,
        "reply_count": _to_int(metrics.get("replies")),
        "reopens": _to_int(metrics.get("reopens")) or 0,
        "first_reply_time_minutes": _business_minutes(metrics, "reply_time_in_minutes"),
        "full_resolution_time_minutes": _business_minutes(
            metrics, "full_resolution_time_in_minutes"
        ),
        "agent_wait_time_minutes": _business_minutes(metrics, "agent_wait_time_in_minutes"),
        "requester_wait_time_minutes": _business_minutes(
            metrics, "requester_wait_time_in_minutes"
        ),
        "on_hold_time_minutes": _business_minutes(metrics, "on_hold_time_in_minutes"),
    }


def transform_organization(record: dict) -> dict | None:
    org_id = _to_int(record.get("id"))
    if org_id is None:
        return None

    return {
        "id": org_id,
        "name": record.get("name"),
        "created_at": parse_datetime(record.get("created_at")),
        "updated_at": parse_datetime(record.get("updated_at")),
        "domain_names": record.get("domain_names") or [],
        "details": record.get("details"),
        "notes": record.get("notes"),
        "tags": record.get("tags") or [],
    }


def transform_agent(record: dict) -> dict | None:
    agent_id = _to_int(record.get("id"))
    if agent_id is None:
        return None

    return {
        "id": agent_id,
        "name": record.get("name"),
        "email": record.get("email"),
        "role": record.get("role"),
        "created_at": parse_datetime(record.get("created_at")),
        "updated_at": parse_datetime(record.get("updated_at")),
        "last_login_at": parse_datetime(record.get("last_login_at")),
        "active": record.get("active"),
        "suspended": record.get("suspended"),
        "tags": record.get("tags") or [],
    }


def transform_group(record: dict) -> dict | None:
    group_id = _to_int(record.get("id"))
    if group_id is None:
        return None

    return {
        "id": group_id,
        "name": record.get("name"),
        "created_at": parse_datetime(record.get("created_at")),
        "updated_at": parse_datetime(record.get("updated_at")),
        "deleted": record.get("deleted"),
    }


def index_metric_sets(metric_sets: list[Any]) -> dict[Any, dict]:
    """Map side-loaded metric sets by ticket id, ignoring malformed entries."""
    return {
        ms["ticket_id"]: ms
        for ms in metric_sets
        if isinstance(ms, dict) and ms.get("ticket_id") is not None
    }


@dataclass(frozen=True)
class EntitySpec:
    """How to list and store one full-snapshot entity type."""

    entity_type: str
    path: str
    items_key: str
    model: type[Base]
    transform: Callable[[dict], dict | None]
    params: tuple[tuple[str, str], ...] = ()


ENTITY_SPECS: dict[str, EntitySpec] = {
    ORGANIZATIONS: EntitySpec(
        entity_type=ORGANIZATIONS,
        path="organizations.json",
        items_key="organizations",
        model=Organization,
        transform=transform_organization,
    ),
    AGENTS: EntitySpec(
        entity_type=AGENTS,
        path="users.json",
        items_key="users",
        model=Agent,
        transform=transform_agent,
        params=(("role[]", "agent"), ("role[]", "admin")),
    ),
    GROUPS: EntitySpec(
        entity_type=GROUPS,
        path="groups.json",
        items_key="groups",
        model=Group,
        transform=transform_group,
    ),
}


class BaseSyncer:
    """Shared plumbing: per-record upserts and failure bookkeeping."""

    entity_type: str

    def __init__(
        self,
        db: AsyncSession,
        client: ZendeskClient | None = None,
        checkpoints: CheckpointStore | None = None,
    ):
        self.db = db
        self.client = client or ZendeskClient()
        self.checkpoints = checkpoints or CheckpointStore(db)

    async def _upsert_record(self, model: type[Base], values: dict[str, Any]) -> bool:
        """
        Upsert a single row and commit it.

        A failing row is rolled back, logged and skipped so it cannot block
        the rest of the page.
        """
        try:
            await self.db.execute(upsert(self.db, model, values, ["id"]))
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Error upserting {model.__tablename__} {values.get('id')}: {e}")
            return False
        return True

    async def _save_record(
        self,
        model: type[Base],
        transform: Callable[..., dict | None],
        record: Any,
        *extra: Any,
    ) -> bool:
        """
        Transform and upsert one upstream record.

        Malformed records (wrong shape, unparseable fields) are logged and
        skipped like rows the database rejects.
        """
        try:
            values = transform(record, *extra)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.error(f"Skipping malformed {model.__tablename__} record: {e}")
            return False

        if values is None:
            logger.warning(f"Skipping {model.__tablename__} record without id")
            return False
        return await self._upsert_record(model, values)

    async def _record_failure(self, error: Exception) -> None:
        await self.db.rollback()
        logger.error(f"{self.entity_type} sync failed: {error}", exc_info=True)
        await self.checkpoints.mark_error(self.entity_type, str(error) or repr(error))


class SnapshotSyncer(BaseSyncer):
    """
    Full-snapshot sync for organizations, agents and groups.

    Always re-reads the complete upstream list, so a run is safe to repeat
    from scratch at any time.
    """

    def __init__(
        self,
        db: AsyncSession,
        spec: EntitySpec,
        client: ZendeskClient | None = None,
        checkpoints: CheckpointStore | None = None,
        page_size: int = settings.page_size,
        max_pages: int = settings.snapshot_max_pages,
    ):
        super().__init__(db, client, checkpoints)
        self.spec = spec
        self.entity_type = spec.entity_type
        self.page_size = page_size
        self.max_pages = max_pages

    async def fetch_all(self) -> tuple[list[dict], int]:
        """
        Page through the list endpoint until an empty page or no next page.

        Returns:
            Tuple of (all records, number of pages fetched)
        """
        records: list[dict] = []
        url: str | None = self.client.url_for(self.spec.path)
        params: list[tuple[str, Any]] | None = [
            *self.spec.params,
            ("per_page", self.page_size),
            ("page", 1),
        ]
        pages = 0

        while url:
            if pages >= self.max_pages:
                logger.warning(
                    f"Reached safety limit of {self.max_pages} pages for {self.entity_type}"
                )
                break

            payload, next_page = await self.client.fetch_page(url, params)
            pages += 1

            batch = payload.get(self.spec.items_key) or []
            if not batch:
                break

            records.extend(batch)
            logger.info(
                f"Retrieved {len(batch)} {self.entity_type} (total: {len(records)})"
            )

            # next_page is a complete URL including the query string
            url, params = next_page, None

        return records, pages

    async def sync(self) -> SyncRunResult:
        logger.info(f"Starting {self.entity_type} sync")

        try:
            await self.checkpoints.mark_syncing(self.entity_type)
            records, pages = await self.fetch_all()

            upserted = 0
            for record in records:
                if await self._save_record(self.spec.model, self.spec.transform, record):
                    upserted += 1

            cursor = await self.checkpoints.mark_success(
                self.entity_type, cursor=utc_now(), records=upserted
            )
        except Exception as e:
            await self._record_failure(e)
            raise

        logger.info(f"{self.entity_type} sync complete: {upserted} records")
        return SyncRunResult(
            entity_type=self.entity_type,
            records_synced=upserted,
            pages=pages,
            end_of_stream=True,
            cursor=cursor,
        )


class TicketSyncer(BaseSyncer):
    """
    Incremental ticket sync over the time-based incremental export.

    Pages are saved as they arrive. The checkpoint cursor moves to "now" only
    when the export reports end_of_stream; a run stopped by the page ceiling
    stores the server's end_time of the last processed page so the next run
    picks up exactly there.
    """

    entity_type = TICKETS

    def __init__(
        self,
        db: AsyncSession,
        client: ZendeskClient | None = None,
        checkpoints: CheckpointStore | None = None,
        cache: CacheInvalidator | None = None,
        page_size: int = settings.page_size,
        max_pages: int = settings.ticket_max_pages,
        initial_lookback_days: int = settings.initial_lookback_days,
        cache_pattern: str = settings.analytics_cache_pattern,
    ):
        super().__init__(db, client, checkpoints)
        self.cache = cache or NullCacheInvalidator()
        self.page_size = page_size
        self.max_pages = max_pages
        self.initial_lookback_days = initial_lookback_days
        self.cache_pattern = cache_pattern

    async def get_start_time(self) -> datetime:
        """Checkpoint cursor, or the initial lookback window when there is none."""
        cursor = await self.checkpoints.get_cursor(self.entity_type)
        if cursor is not None:
            return cursor

        start = utc_now() - timedelta(days=self.initial_lookback_days)
        logger.info(
            "No ticket checkpoint found; seeding with last %d days (since=%s)",
            self.initial_lookback_days,
            start,
        )
        return start

    async def _save_page(self, tickets: list[dict], metric_sets: list[dict]) -> int:
        """Join metric sets onto tickets and upsert them. Returns rows saved."""
        metrics_by_ticket = index_metric_sets(metric_sets)

        saved = 0
        for ticket in tickets:
            metric_set = (
                metrics_by_ticket.get(ticket.get("id")) if isinstance(ticket, dict) else None
            )
            if await self._save_record(Ticket, transform_ticket, ticket, metric_set):
                saved += 1
        return saved

    async def _invalidate_cache(self) -> None:
        try:
            await self.cache.invalidate(self.cache_pattern)
        except Exception as e:
            # Stale cache entries expire on their own TTL
            logger.error(f"Analytics cache invalidation failed: {e}")

    async def sync(self) -> SyncRunResult:
        logger.info("Starting ticket sync")

        total = 0
        pages = 0
        end_of_stream = False

        try:
            start = await self.get_start_time()
            start_time = to_unix(start)
            logger.info(f"Using start_time {start_time} ({start.isoformat()})")

            await self.checkpoints.mark_syncing(self.entity_type)
            url = self.client.url_for("incremental/tickets.json")

            while pages < self.max_pages:
                payload, _ = await self.client.fetch_page(
                    url,
                    {
                        "start_time": start_time,
                        "per_page": self.page_size,
                        "include": "metric_sets",
                    },
                )
                pages += 1

                tickets = payload.get("tickets") or []
                if not tickets:
                    # Nothing newer than start_time
                    end_of_stream = True
                    break

                saved = await self._save_page(tickets, payload.get("metric_sets") or [])
                total += saved
                logger.info(f"Saved {saved} tickets from page {pages} (total: {total})")

                end_of_stream = bool(payload.get("end_of_stream"))
                end_time = _to_int(payload.get("end_time"))
                if end_time is not None and end_time > start_time:
                    start_time = end_time
                elif not end_of_stream:
                    logger.warning(
                        f"Export window did not advance past start_time {start_time} "
                        f"(end_time={payload.get('end_time')!r}); stopping this run"
                    )
                    break

                if end_of_stream:
                    break

            if end_of_stream:
                cursor = utc_now()
            else:
                logger.info(
                    f"Stopped after {pages} pages before end of stream; "
                    f"resuming next run from end_time {start_time}"
                )
                cursor = from_unix(start_time)

            cursor = await self.checkpoints.mark_success(
                self.entity_type, cursor=cursor, records=total
            )
        except Exception as e:
            await self._record_failure(e)
            raise

        await self._invalidate_cache()

        logger.info(
            f"Ticket sync complete: {total} tickets, end_of_stream={end_of_stream}, "
            f"cursor={cursor.isoformat()}"
        )
        return SyncRunResult(
            entity_type=self.entity_type,
            records_synced=total,
            pages=pages,
            end_of_stream=end_of_stream,
            cursor=cursor,
        )


@dataclass
class MetricsBackfillResult:
    """Outcome of one metrics backfill."""

    candidates: int
    updated: int
    without_metrics: int
    failed_batches: int


class TicketMetricsBackfill(BaseSyncer):
    """
    Repair tickets that were stored without a metric set.

    Such tickets are re-fetched through ``tickets/show_many.json`` with their
    metric sets side-loaded, at most 100 ids per request. Tickets that still
    come back without a metric set are left as they are. A failed batch is
    logged and the remaining batches continue. The sync checkpoint is not
    touched.
    """

    entity_type = TICKETS
    max_batch_size = 100

    def __init__(
        self,
        db: AsyncSession,
        client: ZendeskClient | None = None,
        batch_size: int = max_batch_size,
    ):
        super().__init__(db, client)
        self.batch_size = max(1, min(batch_size, self.max_batch_size))

    async def find_ticket_ids(self) -> list[int]:
        """Ids of stored tickets without a metric set, newest first."""
        result = await self.db.execute(
            select(Ticket.id)
            .where(Ticket.metric_set.is_(None))
            .order_by(Ticket.created_at.desc(), Ticket.id)
        )
        return list(result.scalars().all())

    async def run(self) -> MetricsBackfillResult:
        ticket_ids = await self.find_ticket_ids()
        logger.info(f"Found {len(ticket_ids)} tickets without metrics")

        batches = [
            ticket_ids[i : i + self.batch_size]
            for i in range(0, len(ticket_ids), self.batch_size)
        ]
        url = self.client.url_for("tickets/show_many.json")
        updated = 0
        without_metrics = 0
        failed_batches = 0

        for number, batch in enumerate(batches, start=1):
            try:
                payload, _ = await self.client.fetch_page(
                    url,
                    {"ids": ",".join(str(i) for i in batch), "include": "metric_sets"},
                )
            except ZendeskClientError as e:
                failed_batches += 1
                logger.error(f"Metrics batch {number}/{len(batches)} failed: {e}")
                continue

            metrics_by_ticket = index_metric_sets(payload.get("metric_sets") or [])
            batch_updated = 0
            for ticket in payload.get("tickets") or []:
                metric_set = (
                    metrics_by_ticket.get(ticket.get("id")) if isinstance(ticket, dict) else None
                )
                if metric_set is None:
                    without_metrics += 1
                    continue
                if await self._save_record(Ticket, transform_ticket, ticket, metric_set):
                    batch_updated += 1

            updated += batch_updated
            logger.info(
                f"Metrics batch {number}/{len(batches)}: updated {batch_updated} "
                f"of {len(batch)} tickets (total: {updated})"
            )

        logger.info(
            f"Metrics backfill complete: {updated} updated, {without_metrics} still "
            f"without metrics, {failed_batches} failed batches"
        )
        return MetricsBackfillResult(
            candidates=len(ticket_ids),
            updated=updated,
            without_metrics=without_metrics,
            failed_batches=failed_batches,
        )


def build_syncer(
    entity_type: str,
    db: AsyncSession,
    client: ZendeskClient | None = None,
    cache: CacheInvalidator | None = None,
) -> TicketSyncer | SnapshotSyncer:
    """Create the syncer for an entity type name."""
    if entity_type == TICKETS:
        return TicketSyncer(db, client=client, cache=cache)
    if entity_type in ENTITY_SPECS:
        return SnapshotSyncer(db, ENTITY_SPECS[entity_type], client=client)
    raise ValueError(f"Unknown entity type: {entity_type}")
