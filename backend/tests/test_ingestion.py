"""Tests for entity syncers."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select

from ticketsync.models import Agent, Group, Organization, Ticket
from ticketsync.models.sync_checkpoint import STATUS_ERROR, STATUS_SUCCESS
from ticketsync.services.checkpoints import CheckpointStore
from ticketsync.services.dates import from_unix, to_unix
from ticketsync.services.ingestion import (
    AGENTS,
    ENTITY_SPECS,
    GROUPS,
    ORGANIZATIONS,
    MetricsBackfillResult,
    SnapshotSyncer,
    TicketMetricsBackfill,
    TicketSyncer,
    build_syncer,
    transform_organization,
    transform_ticket,
)
from ticketsync.services.zendesk_client import ZendeskClientError

NOW = "ticketsync.services.ingestion.utc_now"


async def _count(db, model) -> int:
    result = await db.execute(select(func.count()).select_from(model))
    return result.scalar_one()


class TestTransforms:
    """Tests for record transforms."""

    def test_transform_ticket_with_metrics(self, sample_ticket_records, sample_metric_sets):
        values = transform_ticket(sample_ticket_records[0], sample_metric_sets[0])

        assert values["id"] == 101
        assert values["request_type"] == "incident"
        assert values["created_at"] == datetime(2024, 1, 15, 9, 0, tzinfo=UTC)
        assert values["tags"] == ["hardware", "Billable-Support"]
        assert values["reply_count"] == 1
        assert values["reopens"] == 0
        # Business-hours values, not calendar
        assert values["first_reply_time_minutes"] == 45
        assert values["agent_wait_time_minutes"] == 90
        assert values["requester_wait_time_minutes"] == 30

    def test_transform_ticket_without_metrics(self, sample_ticket_records):
        values = transform_ticket(sample_ticket_records[1])

        assert values["id"] == 102
        assert values["metric_set"] is None
        assert values["reply_count"] is None
        assert values["reopens"] == 0
        assert values["first_reply_time_minutes"] is None
        assert values["organization_id"] is None

    def test_transform_without_id(self):
        assert transform_ticket({"subject": "no id"}) is None
        assert transform_organization({"name": "no id"}) is None

    @pytest.mark.asyncio
    async def test_build_syncer(self, db_session, zendesk):
        client = zendesk.client()

        assert isinstance(build_syncer("tickets", db_session, client=client), TicketSyncer)
        syncer = build_syncer(GROUPS, db_session, client=client)
        assert isinstance(syncer, SnapshotSyncer)
        assert syncer.spec.model is Group

        with pytest.raises(ValueError):
            build_syncer("macros", db_session, client=client)


class TestSnapshotSyncer:
    """Tests for full-snapshot syncers."""

    @pytest.mark.asyncio
    async def test_follows_next_page(self, db_session, zendesk, sample_organization_records):
        next_url = "https://acme.zendesk.com/api/v2/organizations.json?page=2&per_page=100"
        zendesk.add(
            "organizations.json",
            {"organizations": sample_organization_records[:1], "next_page": next_url},
        )
        zendesk.add(
            "organizations.json",
            {"organizations": sample_organization_records[1:], "next_page": None},
        )
        syncer = SnapshotSyncer(db_session, ENTITY_SPECS[ORGANIZATIONS], client=zendesk.client())

        result = await syncer.sync()

        assert result.records_synced == 2
        assert result.pages == 2
        assert await _count(db_session, Organization) == 2

        first, second = zendesk.requests
        assert first.url.params["page"] == "1"
        assert first.url.params["per_page"] == "100"
        assert str(second.url) == next_url

    @pytest.mark.asyncio
    async def test_stops_on_empty_page(self, db_session, zendesk, sample_organization_records):
        next_url = "https://acme.zendesk.com/api/v2/organizations.json?page=2"
        zendesk.add(
            "organizations.json",
            {"organizations": sample_organization_records, "next_page": next_url},
        )
        zendesk.add("organizations.json", {"organizations": [], "next_page": next_url})
        syncer = SnapshotSyncer(db_session, ENTITY_SPECS[ORGANIZATIONS], client=zendesk.client())

        result = await syncer.sync()

        assert result.pages == 2
        assert len(zendesk.requests) == 2

    @pytest.mark.asyncio
    async def test_page_ceiling(self, db_session, zendesk):
        """Test the safety limit stops a never-ending listing."""
        zendesk.add(
            "groups.json",
            {
                "groups": [{"id": 1, "name": "Tier 1"}],
                "next_page": "https://acme.zendesk.com/api/v2/groups.json?page=2",
            },
        )
        syncer = SnapshotSyncer(
            db_session, ENTITY_SPECS[GROUPS], client=zendesk.client(), max_pages=3
        )

        records, pages = await syncer.fetch_all()

        assert pages == 3
        assert len(records) == 3
        assert len(zendesk.requests) == 3

    @pytest.mark.asyncio
    async def test_agents_filtered_by_role(self, db_session, zendesk):
        zendesk.add(
            "users.json",
            {
                "users": [
                    {
                        "id": 501,
                        "name": "Ada",
                        "email": "ada@acme.test",
                        "role": "agent",
                        "active": True,
                        "suspended": False,
                        "last_login_at": "2024-01-17T08:00:00Z",
                    }
                ],
                "next_page": None,
            },
        )
        syncer = SnapshotSyncer(db_session, ENTITY_SPECS[AGENTS], client=zendesk.client())

        await syncer.sync()

        request = zendesk.requests[0]
        assert request.url.params.get_list("role[]") == ["agent", "admin"]
        agent = await db_session.get(Agent, 501)
        assert agent.email == "ada@acme.test"
        assert agent.active is True

    @pytest.mark.asyncio
    async def test_resync_is_idempotent(
        self, db_session, zendesk, sample_organization_records, sample_datetime
    ):
        """Test applying the same snapshot twice leaves the rows unchanged."""
        zendesk.add(
            "organizations.json",
            {"organizations": sample_organization_records, "next_page": None},
        )
        syncer = SnapshotSyncer(db_session, ENTITY_SPECS[ORGANIZATIONS], client=zendesk.client())

        async def snapshot():
            result = await db_session.execute(select(Organization).order_by(Organization.id))
            return [
                (o.id, o.name, o.domain_names, o.details, o.tags)
                for o in result.scalars().all()
            ]

        with patch(NOW, return_value=sample_datetime):
            await syncer.sync()
        before = await snapshot()
        with patch(NOW, return_value=sample_datetime + timedelta(hours=1)):
            await syncer.sync()
        db_session.expire_all()
        after = await snapshot()

        assert before == after
        assert len(after) == 2
        checkpoint = await CheckpointStore(db_session).get(ORGANIZATIONS)
        assert checkpoint.status == STATUS_SUCCESS
        assert checkpoint.records_synced == 4
        assert await CheckpointStore(db_session).get_cursor(ORGANIZATIONS) == (
            sample_datetime + timedelta(hours=1)
        )

    @pytest.mark.asyncio
    async def test_upstream_failure_marks_error(self, db_session, zendesk):
        zendesk.add("groups.json", {"error": "boom"}, 503)
        syncer = SnapshotSyncer(db_session, ENTITY_SPECS[GROUPS], client=zendesk.client())

        with pytest.raises(ZendeskClientError):
            await syncer.sync()

        checkpoint = await CheckpointStore(db_session).get(GROUPS)
        assert checkpoint.status == STATUS_ERROR
        assert checkpoint.cursor is None


    @pytest.mark.asyncio
    async def test_malformed_record_mid_page_is_skipped(
        self, db_session, zendesk, sample_organization_records
    ):
        first, second = sample_organization_records
        zendesk.add(
            "organizations.json",
            {
                "organizations": [
                    first,
                    {"id": 7999, "name": "Broken", "updated_at": ["2024-01-01"]},
                    None,
                    second,
                ],
                "next_page": None,
            },
        )
        syncer = SnapshotSyncer(db_session, ENTITY_SPECS[ORGANIZATIONS], client=zendesk.client())

        result = await syncer.sync()

        assert result.records_synced == 2
        assert await _count(db_session, Organization) == 2
        assert await db_session.get(Organization, 7999) is None
        checkpoint = await CheckpointStore(db_session).get(ORGANIZATIONS)
        assert checkpoint.status == STATUS_SUCCESS


def _ticket(ticket_id: int, **overrides) -> dict:
    record = {
        "id": ticket_id,
        "subject": f"Ticket {ticket_id}",
        "status": "open",
        "priority": "normal",
        "created_at": "2022-04-10T12:00:00Z",
        "updated_at": "2022-04-10T12:00:00Z",
    }
    record.update(overrides)
    return record


class TestTicketSyncer:
    """Tests for the incremental ticket syncer."""

    @pytest.mark.asyncio
    async def test_initial_window_is_lookback(self, db_session, zendesk, sample_datetime):
        """Test a missing checkpoint starts the window 90 days back."""
        zendesk.add("incremental/tickets.json", {"tickets": [], "end_of_stream": True})
        syncer = TicketSyncer(db_session, client=zendesk.client(), initial_lookback_days=90)

        with patch(NOW, return_value=sample_datetime):
            start = await syncer.get_start_time()
            await syncer.sync()

        assert start == sample_datetime - timedelta(days=90)
        request = zendesk.requests[0]
        assert request.url.params["start_time"] == str(to_unix(start))
        assert request.url.params["include"] == "metric_sets"

    @pytest.mark.asyncio
    async def test_resumes_from_checkpoint(self, db_session, zendesk, sample_datetime):
        cursor = sample_datetime - timedelta(hours=2)
        await CheckpointStore(db_session).mark_success("tickets", cursor=cursor, records=0)
        zendesk.add("incremental/tickets.json", {"tickets": [], "end_of_stream": True})
        syncer = TicketSyncer(db_session, client=zendesk.client())

        with patch(NOW, return_value=sample_datetime):
            await syncer.sync()

        assert zendesk.requests[0].url.params["start_time"] == str(to_unix(cursor))

    @pytest.mark.asyncio
    async def test_end_of_stream_sets_cursor_to_now(
        self, db_session, zendesk, sample_datetime, sample_ticket_records, sample_metric_sets
    ):
        """Test reaching end_of_stream moves the cursor to the current time."""
        zendesk.add(
            "incremental/tickets.json",
            {
                "tickets": sample_ticket_records,
                "metric_sets": sample_metric_sets,
                "end_time": 1_700_000_000,
                "end_of_stream": True,
            },
        )
        syncer = TicketSyncer(db_session, client=zendesk.client())

        with patch(NOW, return_value=sample_datetime):
            result = await syncer.sync()

        assert result.end_of_stream is True
        assert result.records_synced == 2
        assert result.cursor == sample_datetime
        assert await CheckpointStore(db_session).get_cursor("tickets") == sample_datetime

        ticket = await db_session.get(Ticket, 101)
        assert ticket.first_reply_time_minutes == 45
        assert ticket.metric_set["ticket_id"] == 101

    @pytest.mark.asyncio
    async def test_page_ceiling_keeps_last_end_time(self, db_session, zendesk):
        """Test hitting the page ceiling stores exactly the last end_time."""
        last_end_time = 1_650_000_000
        for page in range(1, 51):
            zendesk.add(
                "incremental/tickets.json",
                {
                    "tickets": [_ticket(page)],
                    "end_time": last_end_time - (50 - page) * 60,
                    "end_of_stream": False,
                },
            )
        syncer = TicketSyncer(db_session, client=zendesk.client(), max_pages=50)

        with patch(NOW, return_value=datetime(2022, 5, 1, tzinfo=UTC)):
            result = await syncer.sync()

        assert result.pages == 50
        assert result.end_of_stream is False
        assert result.cursor == from_unix(last_end_time)
        assert await CheckpointStore(db_session).get_cursor("tickets") == from_unix(
            last_end_time
        )
        assert await _count(db_session, Ticket) == 50

        requests = zendesk.requests_for("incremental/tickets.json")
        assert len(requests) == 50
        # Each page starts where the previous one ended
        assert requests[1].url.params["start_time"] == str(last_end_time - 49 * 60)
        assert requests[-1].url.params["start_time"] == str(last_end_time - 60)

    @pytest.mark.asyncio
    async def test_resync_same_page_is_idempotent(
        self, db_session, zendesk, sample_datetime, sample_ticket_records, sample_metric_sets
    ):
        zendesk.add(
            "incremental/tickets.json",
            {
                "tickets": sample_ticket_records,
                "metric_sets": sample_metric_sets,
                "end_time": 1_700_000_000,
                "end_of_stream": True,
            },
        )
        syncer = TicketSyncer(db_session, client=zendesk.client())

        with patch(NOW, return_value=sample_datetime):
            await syncer.sync()
            await syncer.sync()

        assert await _count(db_session, Ticket) == 2
        ticket = await db_session.get(Ticket, 101)
        assert ticket.subject == "Printer on fire"

    @pytest.mark.asyncio
    async def test_failure_keeps_cursor(self, db_session, zendesk, sample_datetime):
        """Test an upstream failure marks error and leaves the cursor alone."""
        cursor = sample_datetime - timedelta(hours=1)
        await CheckpointStore(db_session).mark_success("tickets", cursor=cursor, records=0)
        zendesk.add("incremental/tickets.json", {"error": "boom"}, 500)
        cache = AsyncMock()
        syncer = TicketSyncer(db_session, client=zendesk.client(), cache=cache)

        with pytest.raises(ZendeskClientError):
            await syncer.sync()

        checkpoint = await CheckpointStore(db_session).get("tickets")
        assert checkpoint.status == STATUS_ERROR
        assert await CheckpointStore(db_session).get_cursor("tickets") == cursor
        cache.invalidate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalidates_cache_after_success(self, db_session, zendesk, sample_datetime):
        zendesk.add("incremental/tickets.json", {"tickets": [], "end_of_stream": True})
        cache = AsyncMock()
        syncer = TicketSyncer(
            db_session, client=zendesk.client(), cache=cache, cache_pattern="analytics:*"
        )

        with patch(NOW, return_value=sample_datetime):
            await syncer.sync()

        cache.invalidate.assert_awaited_once_with("analytics:*")

    @pytest.mark.asyncio
    async def test_cache_failure_does_not_fail_sync(self, db_session, zendesk, sample_datetime):
        zendesk.add("incremental/tickets.json", {"tickets": [], "end_of_stream": True})
        cache = AsyncMock()
        cache.invalidate.side_effect = ConnectionError("redis down")
        syncer = TicketSyncer(db_session, client=zendesk.client(), cache=cache)

        with patch(NOW, return_value=sample_datetime):
            result = await syncer.sync()

        assert result.cursor == sample_datetime

    @pytest.mark.asyncio
    async def test_bad_record_is_skipped(self, db_session, zendesk):
        """Test a row that fails to write does not block the rest."""
        syncer = TicketSyncer(db_session, client=zendesk.client())

        # reopens is NOT NULL
        assert await syncer._upsert_record(Ticket, {"id": 1, "reopens": None}) is False
        saved = await syncer._save_page([_ticket(2), {"subject": "no id"}, _ticket(3)], [])

        assert saved == 2
        assert await _count(db_session, Ticket) == 2

    @pytest.mark.asyncio
    async def test_malformed_record_mid_page_is_skipped(
        self, db_session, zendesk, sample_datetime
    ):
        """Test records that cannot be transformed do not abort the run."""
        zendesk.add(
            "incremental/tickets.json",
            {
                "tickets": [
                    _ticket(1),
                    _ticket(2, created_at=1_700_000_000),
                    "not a ticket",
                    _ticket(3),
                ],
                "metric_sets": ["not a metric set", {"ticket_id": 3, "replies": 2}],
                "end_time": 1_700_000_000,
                "end_of_stream": True,
            },
        )
        syncer = TicketSyncer(db_session, client=zendesk.client())

        with patch(NOW, return_value=sample_datetime):
            result = await syncer.sync()

        assert result.records_synced == 2
        assert await _count(db_session, Ticket) == 2
        assert await db_session.get(Ticket, 2) is None
        assert (await db_session.get(Ticket, 3)).reply_count == 2
        checkpoint = await CheckpointStore(db_session).get("tickets")
        assert checkpoint.status == STATUS_SUCCESS
        assert await CheckpointStore(db_session).get_cursor("tickets") == sample_datetime

    @pytest.mark.asyncio
    async def test_stalled_end_time_stops_run(self, db_session, zendesk, sample_datetime):
        """Test a page whose end_time does not advance is not requested again."""
        cursor = sample_datetime - timedelta(hours=1)
        await CheckpointStore(db_session).mark_success("tickets", cursor=cursor, records=0)
        zendesk.add(
            "incremental/tickets.json",
            {"tickets": [_ticket(1)], "end_of_stream": False},
        )
        syncer = TicketSyncer(db_session, client=zendesk.client(), max_pages=50)

        with patch(NOW, return_value=sample_datetime):
            result = await syncer.sync()

        assert len(zendesk.requests_for("incremental/tickets.json")) == 1
        assert result.pages == 1
        assert result.records_synced == 1
        assert result.end_of_stream is False
        assert result.cursor == cursor
        assert await CheckpointStore(db_session).get_cursor("tickets") == cursor

    @pytest.mark.asyncio
    async def test_end_time_equal_to_start_stops_run(self, db_session, zendesk, sample_datetime):
        cursor = sample_datetime - timedelta(hours=1)
        await CheckpointStore(db_session).mark_success("tickets", cursor=cursor, records=0)
        zendesk.add(
            "incremental/tickets.json",
            {"tickets": [_ticket(1)], "end_time": to_unix(cursor), "end_of_stream": False},
        )
        syncer = TicketSyncer(db_session, client=zendesk.client())

        with patch(NOW, return_value=sample_datetime):
            result = await syncer.sync()

        assert len(zendesk.requests) == 1
        assert result.cursor == cursor


class TestTicketMetricsBackfill:
    """Tests for re-fetching metrics of tickets stored without them."""

    async def _seed(self, db_session, zendesk):
        syncer = TicketSyncer(db_session, client=zendesk.client())
        await syncer._save_page(
            [_ticket(1), _ticket(2), _ticket(3)],
            [{"ticket_id": 3, "replies": 1}],
        )

    @pytest.mark.asyncio
    async def test_fills_missing_metrics_in_batches(self, db_session, zendesk):
        await self._seed(db_session, zendesk)
        zendesk.add(
            "tickets/show_many.json",
            {
                "tickets": [_ticket(1)],
                "metric_sets": [
                    {
                        "ticket_id": 1,
                        "replies": 3,
                        "reopens": 1,
                        "reply_time_in_minutes": {"calendar": 20, "business": 12},
                    }
                ],
            },
        )
        zendesk.add("tickets/show_many.json", {"tickets": [_ticket(2)], "metric_sets": []})
        backfill = TicketMetricsBackfill(db_session, client=zendesk.client(), batch_size=1)

        assert await backfill.find_ticket_ids() == [1, 2]
        result = await backfill.run()

        assert result == MetricsBackfillResult(
            candidates=2, updated=1, without_metrics=1, failed_batches=0
        )
        requests = zendesk.requests_for("tickets/show_many.json")
        assert [r.url.params["ids"] for r in requests] == ["1", "2"]
        assert all(r.url.params["include"] == "metric_sets" for r in requests)

        ticket = await db_session.get(Ticket, 1)
        assert ticket.reply_count == 3
        assert ticket.reopens == 1
        assert ticket.first_reply_time_minutes == 12
        assert ticket.metric_set["ticket_id"] == 1
        assert await backfill.find_ticket_ids() == [2]

    @pytest.mark.asyncio
    async def test_failed_batch_does_not_stop_the_rest(self, db_session, zendesk):
        await self._seed(db_session, zendesk)
        zendesk.add("tickets/show_many.json", {"error": "boom"}, 500)
        zendesk.add(
            "tickets/show_many.json",
            {"tickets": [_ticket(2)], "metric_sets": [{"ticket_id": 2, "replies": 4}]},
        )
        backfill = TicketMetricsBackfill(db_session, client=zendesk.client(), batch_size=1)

        result = await backfill.run()

        assert result.failed_batches == 1
        assert result.updated == 1
        assert len(zendesk.requests_for("tickets/show_many.json")) == 2
        assert await backfill.find_ticket_ids() == [1]

    @pytest.mark.asyncio
    async def test_nothing_to_backfill(self, db_session, zendesk):
        backfill = TicketMetricsBackfill(db_session, client=zendesk.client())

        result = await backfill.run()

        assert result.candidates == 0
        assert zendesk.requests == []

    @pytest.mark.asyncio
    async def test_batch_size_is_capped(self, db_session, zendesk):
        backfill = TicketMetricsBackfill(db_session, client=zendesk.client(), batch_size=500)

        assert backfill.batch_size == 100
